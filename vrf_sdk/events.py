"""
Decoding of coordinator and consumer logs into tagged event variants.

Each known log shape maps to one dataclass. Logs whose topic is known but
whose payload does not decode, and logs with unknown topics, become
``UnknownEvent`` so callers decide explicitly what to do with them.
"""
import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Sequence, Union

from eth_abi import decode as decode_abi
from eth_abi.exceptions import DecodingError

from . import abi
from .models import FulfillmentRecord, LogRecord

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SubscriptionCreatedLiteral:
    """Creation event whose first indexed topic is the subscription id itself."""
    sub_id: int
    owner: Optional[str]
    log: LogRecord = field(repr=False, compare=False)


@dataclass(frozen=True)
class SubscriptionCreatedHashed:
    """Creation event whose first indexed topic is an opaque hash of (id, owner)."""
    topic: bytes
    owner: Optional[str]
    log: LogRecord = field(repr=False, compare=False)

    @property
    def topic_value(self) -> int:
        return int.from_bytes(self.topic, "big")


@dataclass(frozen=True)
class RequestSubmitted:
    """A randomness request announced by the consumer or the coordinator."""
    request_id: int
    source: str
    sub_id: Optional[int] = None
    num_words: Optional[int] = None
    key_hash: Optional[bytes] = None
    log: Optional[LogRecord] = field(default=None, repr=False, compare=False)


@dataclass(frozen=True)
class Fulfilled:
    """A fulfillment announced by the coordinator or the consumer."""
    request_id: int
    source: str
    random_words: List[int] = field(default_factory=list)
    payment: Optional[int] = None
    output_seed: Optional[int] = None
    success: Optional[bool] = None
    log: Optional[LogRecord] = field(default=None, repr=False, compare=False)

    def to_record(self) -> FulfillmentRecord:
        return FulfillmentRecord(
            request_id=self.request_id,
            random_words=list(self.random_words),
            payment=self.payment,
            output_seed=self.output_seed,
            success=self.success,
        )


@dataclass(frozen=True)
class UnknownEvent:
    """A log that matched no known shape, or matched a topic but failed to decode."""
    log: LogRecord
    reason: str

    @property
    def first_topic_value(self) -> Optional[int]:
        return self.log.topic_int(1)


SubscriptionCreated = Union[SubscriptionCreatedLiteral, SubscriptionCreatedHashed]
DecodedEvent = Union[SubscriptionCreatedLiteral, SubscriptionCreatedHashed, RequestSubmitted,
                     Fulfilled, UnknownEvent]


def _subscription_literal(log: LogRecord) -> DecodedEvent:
    try:
        values = abi.SUBSCRIPTION_CREATED_V2.decode(log.topics, log.data)
    except ValueError:
        # A topic wider than uint64 is a hash of (id, owner), not the id
        if len(log.topics) != 2 or len(log.topics[1]) != 32:
            raise
        owner = None
        if log.data:
            owner = decode_abi(["address"], log.data)[0]
        return SubscriptionCreatedHashed(topic=log.topics[1], owner=owner, log=log)
    return SubscriptionCreatedLiteral(sub_id=values["subId"], owner=values["owner"], log=log)


def _subscription_hashed(log: LogRecord) -> DecodedEvent:
    if len(log.topics) != 2:
        raise ValueError("hashed creation event needs exactly one indexed topic")
    owner = None
    if log.data:
        owner = abi.SUBSCRIPTION_CREATED_V2_5.decode(log.topics, log.data)["owner"]
    return SubscriptionCreatedHashed(topic=log.topics[1], owner=owner, log=log)


def _requested(event: abi.Event, source: str) -> Callable[[LogRecord], DecodedEvent]:
    def decode(log: LogRecord) -> DecodedEvent:
        values = event.decode(log.topics, log.data)
        return RequestSubmitted(
            request_id=values["requestId"],
            source=source,
            sub_id=values.get("subId"),
            num_words=values.get("numWords"),
            key_hash=values.get("keyHash"),
            log=log,
        )
    return decode


def _fulfilled(event: abi.Event, source: str) -> Callable[[LogRecord], DecodedEvent]:
    def decode(log: LogRecord) -> DecodedEvent:
        values = event.decode(log.topics, log.data)
        words = list(values.get("randomWords", []))
        if "result" in values:
            words = [values["result"]]
        return Fulfilled(
            request_id=values["requestId"],
            source=source,
            random_words=words,
            payment=values.get("payment"),
            output_seed=values.get("outputSeed"),
            success=values.get("success"),
            log=log,
        )
    return decode


SUBSCRIPTION_DECODERS: Dict[bytes, Callable[[LogRecord], DecodedEvent]] = {
    abi.SUBSCRIPTION_CREATED_V2.topic: _subscription_literal,
    abi.SUBSCRIPTION_CREATED_V2_5.topic: _subscription_hashed,
}

REQUEST_DECODERS: Dict[bytes, Callable[[LogRecord], DecodedEvent]] = {
    abi.REQUEST_SENT.topic: _requested(abi.REQUEST_SENT, "consumer:RequestSent"),
    abi.DICE_ROLLED.topic: _requested(abi.DICE_ROLLED, "consumer:DiceRolled"),
    abi.RANDOM_WORDS_REQUESTED_V2_5.topic: _requested(
        abi.RANDOM_WORDS_REQUESTED_V2_5, "coordinator:RandomWordsRequested"
    ),
    abi.RANDOM_WORDS_REQUESTED_V2.topic: _requested(
        abi.RANDOM_WORDS_REQUESTED_V2, "coordinator:RandomWordsRequested(v2)"
    ),
}

FULFILLMENT_DECODERS: Dict[bytes, Callable[[LogRecord], DecodedEvent]] = {
    abi.RANDOM_WORDS_FULFILLED_V2_5.topic: _fulfilled(
        abi.RANDOM_WORDS_FULFILLED_V2_5, "coordinator:RandomWordsFulfilled"
    ),
    abi.RANDOM_WORDS_FULFILLED_V2.topic: _fulfilled(
        abi.RANDOM_WORDS_FULFILLED_V2, "coordinator:RandomWordsFulfilled(v2)"
    ),
    abi.REQUEST_FULFILLED.topic: _fulfilled(abi.REQUEST_FULFILLED, "consumer:RequestFulfilled"),
    abi.DICE_LANDED.topic: _fulfilled(abi.DICE_LANDED, "consumer:DiceLanded"),
}

FULFILLMENT_TOPICS: List[bytes] = list(FULFILLMENT_DECODERS)
REQUEST_TOPICS: List[bytes] = list(REQUEST_DECODERS)


def decode_log(log: LogRecord, decoders: Dict[bytes, Callable[[LogRecord], DecodedEvent]]) -> DecodedEvent:
    """
    Decode one log with the first decoder registered for its topic.

    Never raises: undecodable logs become ``UnknownEvent``.
    """
    if not log.topics:
        return UnknownEvent(log=log, reason="anonymous log")
    decoder = decoders.get(log.topics[0])
    if decoder is None:
        return UnknownEvent(log=log, reason=f"unknown topic 0x{log.topics[0].hex()}")
    try:
        return decoder(log)
    except (ValueError, KeyError, DecodingError) as e:
        logger.debug(f"Known topic 0x{log.topics[0].hex()} failed to decode: {e}")
        return UnknownEvent(log=log, reason=str(e))


def decode_logs(
    logs: Sequence[LogRecord],
    decoders: Dict[bytes, Callable[[LogRecord], DecodedEvent]],
    address: Optional[str] = None
) -> List[DecodedEvent]:
    """Decode every log, optionally keeping only logs emitted by ``address``."""
    decoded = []
    for log in logs:
        if address is not None and log.address.lower() != address.lower():
            continue
        decoded.append(decode_log(log, decoders))
    return decoded
