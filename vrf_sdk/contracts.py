"""
Thin wrappers over the coordinator, payment token and consumer contracts.

Each wrapper encodes calls with the ABI fragments in ``abi`` and routes them
through a ``LedgerClient``. Reverts propagate as ``RevertError``.
"""
import logging
from typing import List, Optional, Tuple

from eth_abi.exceptions import DecodingError, EncodingError

from . import abi
from .abi import CoordinatorLayout, COORDINATOR_V2, COORDINATOR_V2_5
from .exceptions import RevertError
from .ledger.base import LedgerClient
from .models import Subscription, TxReceipt, TxRequest

logger = logging.getLogger(__name__)


class CoordinatorContract:
    """The VRF coordinator: subscriptions, commitments and proving keys."""

    def __init__(self, ledger: LedgerClient, address: str, layout: CoordinatorLayout = COORDINATOR_V2_5):
        self.ledger = ledger
        self.address = address
        self.layout = layout

    def get_subscription(self, sub_id: int) -> Subscription:
        """
        Read a subscription.

        Raises:
            RevertError: If the coordinator rejects the id (usually: it does not exist)
            DecodingError: If the response does not match the layout
        """
        fn = self.layout.get_subscription
        raw = self.ledger.call(self.address, fn.encode(sub_id))
        fields = self.layout.subscription_fields(fn.decode_output(raw))
        return Subscription(sub_id=sub_id, **fields)

    def find_subscription(self, sub_id: int) -> Optional[Subscription]:
        """Return the subscription, or None when the coordinator has no such id."""
        try:
            return self.get_subscription(sub_id)
        except RevertError:
            return None
        except (DecodingError, EncodingError, OverflowError, ValueError) as e:
            logger.debug(f"Subscription {sub_id} unreadable: {e}")
            return None

    def get_active_subscription_ids(self, start: int = 0, max_count: int = 100) -> List[int]:
        fn = self.layout.get_active_subscription_ids
        raw = self.ledger.call(self.address, fn.encode(start, max_count))
        return list(fn.decode_output(raw)[0])

    def create_subscription(self) -> TxReceipt:
        data = self.layout.create_subscription.encode()
        return self.ledger.send_and_wait(TxRequest(to=self.address, data=data))

    def add_consumer(self, sub_id: int, consumer: str) -> TxReceipt:
        data = self.layout.add_consumer.encode(sub_id, consumer)
        return self.ledger.send_and_wait(TxRequest(to=self.address, data=data))

    def fund_with_native(self, sub_id: int, amount: int) -> TxReceipt:
        data = self.layout.fund_with_native.encode(sub_id)
        return self.ledger.send_and_wait(TxRequest(to=self.address, data=data, value=amount))

    def request_commitment(self, request_id: int) -> bytes:
        fn = self.layout.request_commitment
        raw = self.ledger.call(self.address, fn.encode(request_id))
        return fn.decode_output(raw)[0]

    def proving_key_hash(self, index: int = 0) -> bytes:
        fn = self.layout.proving_key_hashes
        raw = self.ledger.call(self.address, fn.encode(index))
        return fn.decode_output(raw)[0]

    def type_and_version(self) -> Optional[str]:
        fn = self.layout.type_and_version
        try:
            raw = self.ledger.call(self.address, fn.encode())
            if not raw:
                return None
            return fn.decode_output(raw)[0]
        except (RevertError, DecodingError) as e:
            logger.debug(f"typeAndVersion unavailable on {self.address}: {e}")
            return None


def layout_for_version(type_and_version: Optional[str]) -> CoordinatorLayout:
    """
    Pick the coordinator layout from a ``typeAndVersion()`` string.

    Unknown or missing versions default to the v2.5 layout.
    """
    if not type_and_version:
        return COORDINATOR_V2_5
    text = type_and_version.replace("_", ".")
    if "2.5" in text or "2Plus" in text or "V2Plus" in text:
        return COORDINATOR_V2_5
    if "V2" in text.split(" ")[0]:
        return COORDINATOR_V2
    return COORDINATOR_V2_5


def detect_coordinator(ledger: LedgerClient, address: str) -> CoordinatorContract:
    """Build a coordinator wrapper using the layout its version string implies."""
    probe = CoordinatorContract(ledger, address)
    version = probe.type_and_version()
    layout = layout_for_version(version)
    logger.info(f"Coordinator {address} reports {version or 'no version'}; using {layout.version} layout")
    return CoordinatorContract(ledger, address, layout)


class TokenContract:
    """ERC-677 payment token."""

    def __init__(self, ledger: LedgerClient, address: str):
        self.ledger = ledger
        self.address = address

    def balance_of(self, owner: str) -> int:
        raw = self.ledger.call(self.address, abi.TOKEN_BALANCE_OF.encode(owner))
        return abi.TOKEN_BALANCE_OF.decode_output(raw)[0]

    def approve(self, spender: str, amount: int) -> TxReceipt:
        data = abi.TOKEN_APPROVE.encode(spender, amount)
        return self.ledger.send_and_wait(TxRequest(to=self.address, data=data))

    def transfer_and_call(self, to: str, amount: int, payload: bytes) -> TxReceipt:
        data = abi.TOKEN_TRANSFER_AND_CALL.encode(to, amount, payload)
        return self.ledger.send_and_wait(TxRequest(to=self.address, data=data))


class ConsumerContract:
    """A VRF consumer that requests and stores random words."""

    def __init__(self, ledger: LedgerClient, address: str):
        self.ledger = ledger
        self.address = address

    def request_random_words(
        self,
        sub_id: int,
        num_words: int,
        confirmations: int,
        callback_gas_limit: int,
        native_payment: bool = False,
        gas: Optional[int] = None
    ) -> TxReceipt:
        data = abi.CONSUMER_REQUEST_RANDOM_WORDS.encode(
            sub_id, num_words, confirmations, callback_gas_limit, native_payment
        )
        return self.ledger.send_and_wait(TxRequest(to=self.address, data=data, gas=gas))

    def roll_dice(self, roller: str, gas: Optional[int] = None) -> TxReceipt:
        data = abi.CONSUMER_ROLL_DICE.encode(roller)
        return self.ledger.send_and_wait(TxRequest(to=self.address, data=data, gas=gas))

    def last_request_id(self) -> int:
        raw = self.ledger.call(self.address, abi.CONSUMER_LAST_REQUEST_ID.encode())
        return abi.CONSUMER_LAST_REQUEST_ID.decode_output(raw)[0]

    def request_status(self, request_id: int) -> Tuple[bool, List[int]]:
        raw = self.ledger.call(self.address, abi.CONSUMER_REQUEST_STATUS.encode(request_id))
        fulfilled, words = abi.CONSUMER_REQUEST_STATUS.decode_output(raw)
        return bool(fulfilled), list(words)
