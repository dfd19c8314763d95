"""
Randomness request submission and request id extraction.
"""
import logging
from typing import Optional, Union

from eth_abi.exceptions import DecodingError
from pydantic import Field, model_validator

from .classifier import ErrorClassifier
from .config import EnvSettings
from .contracts import ConsumerContract, CoordinatorContract
from .events import REQUEST_DECODERS, RequestSubmitted, decode_logs
from .exceptions import RequestIdMismatch, RequestIdNotFound, RevertError
from .models import ZERO_HASH, RandomnessRequest, TxReceipt, to_bytes

logger = logging.getLogger(__name__)


class SubmitterSettings(EnvSettings):
    """Bounds applied to request parameters before anything is sent."""

    env_section = "REQUEST"

    min_confirmations: int = Field(3, ge=0)
    max_confirmations: int = Field(200, ge=0)
    max_num_words: int = Field(500, gt=0)
    gas_limit: Optional[int] = None

    @model_validator(mode="after")
    def _check_range(self) -> "SubmitterSettings":
        if self.min_confirmations > self.max_confirmations:
            raise ValueError("min_confirmations must not exceed max_confirmations")
        return self


class RequestSubmitter:
    """
    Submits a request through the consumer and extracts the coordinator's
    request id.

    Two sources are consulted: the consumer's ``s_requestId()`` and the
    receipt logs. When both answer they must agree.
    """

    def __init__(
        self,
        consumer: ConsumerContract,
        coordinator: CoordinatorContract,
        classifier: Optional[ErrorClassifier] = None,
        settings: Optional[SubmitterSettings] = None
    ):
        self.consumer = consumer
        self.coordinator = coordinator
        self.classifier = classifier or ErrorClassifier()
        self.settings = settings or SubmitterSettings()

    def validate(self, num_words: int, confirmations: int, callback_gas_limit: int) -> None:
        """
        Raises:
            ValueError: If a parameter is outside its allowed range
        """
        if num_words < 1 or num_words > self.settings.max_num_words:
            raise ValueError(f"num_words must be between 1 and {self.settings.max_num_words}, got {num_words}")
        low, high = self.settings.min_confirmations, self.settings.max_confirmations
        if not low <= confirmations <= high:
            raise ValueError(f"confirmations must be between {low} and {high}, got {confirmations}")
        if callback_gas_limit <= 0:
            raise ValueError(f"callback_gas_limit must be positive, got {callback_gas_limit}")

    def resolve_key_hash(self, key_hash: Union[bytes, str, None] = None) -> bytes:
        """Return the given key hash, or the coordinator's first proving key."""
        if key_hash:
            return to_bytes(key_hash).rjust(32, b"\x00")
        try:
            resolved = self.coordinator.proving_key_hash(0)
            logger.info(f"Using coordinator proving key hash 0x{resolved.hex()}")
            return resolved
        except (RevertError, DecodingError) as e:
            logger.warning(f"Could not read proving key hash, using zero hash: {e}")
            return ZERO_HASH

    def submit(
        self,
        sub_id: int,
        num_words: int = 1,
        confirmations: int = 3,
        callback_gas_limit: int = 100000,
        key_hash: Union[bytes, str, None] = None,
        native_payment: bool = False
    ) -> RandomnessRequest:
        """
        Submit ``requestRandomWords`` and wait for it to be mined.

        Returns:
            The request, carrying the id confirmed by the consumer or the logs

        Raises:
            ValueError: If the parameters are out of range
            RevertError: Classified revert of the request transaction
            RequestIdMismatch: If the consumer and the logs disagree
            RequestIdNotFound: If no source exposes a request id
        """
        self.validate(num_words, confirmations, callback_gas_limit)
        resolved_key = self.resolve_key_hash(key_hash)

        logger.info(
            f"Requesting {num_words} words on subscription {sub_id} "
            f"(confirmations={confirmations}, callback gas={callback_gas_limit})"
        )
        try:
            receipt = self.consumer.request_random_words(
                sub_id, num_words, confirmations, callback_gas_limit,
                native_payment=native_payment, gas=self.settings.gas_limit
            )
        except RevertError as e:
            raise self.classifier.classify(e)

        request_id = self.extract_request_id(receipt, expected_key_hash=resolved_key)
        return RandomnessRequest(
            request_id=request_id,
            sub_id=sub_id,
            num_words=num_words,
            confirmations=confirmations,
            callback_gas_limit=callback_gas_limit,
            key_hash=resolved_key,
            tx_hash=receipt.tx_hash,
            consumer=self.consumer.address,
            block_number=receipt.block_number,
            native_payment=native_payment,
        )

    def submit_dice_roll(self, sub_id: int, roller: str) -> RandomnessRequest:
        """Submit through a dice consumer's ``rollDice(roller)``; it fixes its own parameters."""
        try:
            receipt = self.consumer.roll_dice(roller, gas=self.settings.gas_limit)
        except RevertError as e:
            raise self.classifier.classify(e)
        request_id = self.extract_request_id(receipt)
        return RandomnessRequest(
            request_id=request_id,
            sub_id=sub_id,
            num_words=1,
            tx_hash=receipt.tx_hash,
            consumer=self.consumer.address,
            block_number=receipt.block_number,
        )

    def direct_request_id(self) -> Optional[int]:
        """Read ``s_requestId()``; None when unsupported or unset."""
        try:
            value = self.consumer.last_request_id()
        except (RevertError, DecodingError) as e:
            logger.debug(f"Consumer does not expose s_requestId: {e}")
            return None
        return value or None

    def request_from_logs(self, receipt: TxReceipt) -> Optional[RequestSubmitted]:
        """Return the first request announcement in the receipt from the consumer or coordinator."""
        sources = {self.consumer.address.lower(), self.coordinator.address.lower()}
        found: Optional[RequestSubmitted] = None
        for event in decode_logs(receipt.logs, REQUEST_DECODERS):
            if not isinstance(event, RequestSubmitted) or event.log is None:
                continue
            if event.log.address.lower() not in sources:
                continue
            if found is None:
                found = event
            elif event.request_id != found.request_id:
                logger.warning(
                    f"{event.source} reports request {event.request_id}; "
                    f"keeping {found.request_id} from {found.source}"
                )
        return found

    def extract_request_id(self, receipt: TxReceipt, expected_key_hash: Optional[bytes] = None) -> int:
        direct = self.direct_request_id()
        event = self.request_from_logs(receipt)

        if event is not None and expected_key_hash and event.key_hash is not None:
            if expected_key_hash != ZERO_HASH and event.key_hash != expected_key_hash:
                logger.warning(
                    f"Request logged with key hash 0x{event.key_hash.hex()}, "
                    f"expected 0x{expected_key_hash.hex()}"
                )

        if direct is not None and event is not None:
            if direct != event.request_id:
                raise RequestIdMismatch(direct, event.request_id)
            logger.info(f"Request id {direct} confirmed by consumer state and {event.source}")
            return direct
        if direct is not None:
            logger.info(f"Request id {direct} read from consumer state")
            return direct
        if event is not None:
            logger.info(f"Request id {event.request_id} read from {event.source}")
            return event.request_id
        raise RequestIdNotFound(f"No request id exposed by consumer or logs of {receipt.tx_hash}")
