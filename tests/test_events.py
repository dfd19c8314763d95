"""
Tests for ABI encoding helpers and tagged event decoding.
"""
from eth_abi import encode

from vrf_sdk import abi
from vrf_sdk.events import (
    FULFILLMENT_DECODERS,
    REQUEST_DECODERS,
    SUBSCRIPTION_DECODERS,
    Fulfilled,
    RequestSubmitted,
    SubscriptionCreatedHashed,
    SubscriptionCreatedLiteral,
    UnknownEvent,
    decode_log,
    decode_logs,
)
from vrf_sdk.models import LogRecord

from tests.test_helpers import TEST_CONSUMER, TEST_COORDINATOR

OWNER = "0x1111111111111111111111111111111111111111"


def _log(event, address=TEST_COORDINATOR, **values):
    topics, data = event.encode_log(**values)
    return LogRecord(address=address, topics=topics, data=data)


def test_selectors_match_canonical_signatures():
    assert abi.selector("transfer(address,uint256)").hex() == "a9059cbb"
    assert abi.TOKEN_APPROVE.selector.hex() == "095ea7b3"
    assert abi.COORDINATOR_V2_5.type_and_version.selector.hex() == "181f5a77"


def test_function_roundtrip_through_selector():
    data = abi.COORDINATOR_V2.add_consumer.encode(7, TEST_CONSUMER)
    assert data[:4] == abi.COORDINATOR_V2.add_consumer.selector
    sub_id, consumer = abi.COORDINATOR_V2.add_consumer.decode_input(data)
    assert sub_id == 7
    assert consumer.lower() == TEST_CONSUMER.lower()


def test_layouts_differ_in_id_width():
    assert abi.COORDINATOR_V2.get_subscription.selector != abi.COORDINATOR_V2_5.get_subscription.selector
    assert abi.COORDINATOR_V2.id_type == "uint64"
    assert abi.COORDINATOR_V2_5.id_type == "uint256"


def test_subscription_created_literal():
    event = decode_log(_log(abi.SUBSCRIPTION_CREATED_V2, subId=12, owner=OWNER), SUBSCRIPTION_DECODERS)
    assert isinstance(event, SubscriptionCreatedLiteral)
    assert event.sub_id == 12
    assert event.owner.lower() == OWNER


def test_subscription_created_hashed_keeps_opaque_topic():
    hashed = abi.keccak(encode(["uint256", "address"], [3, OWNER]))
    log = LogRecord(
        address=TEST_COORDINATOR,
        topics=[abi.SUBSCRIPTION_CREATED_V2_5.topic, hashed],
        data=encode(["address"], [OWNER]),
    )
    event = decode_log(log, SUBSCRIPTION_DECODERS)
    assert isinstance(event, SubscriptionCreatedHashed)
    assert event.topic == hashed
    assert event.owner.lower() == OWNER


def test_uint64_creation_event_with_hashed_topic():
    hashed = abi.keccak(encode(["uint256", "address"], [3, OWNER]))
    log = LogRecord(
        address=TEST_COORDINATOR,
        topics=[abi.SUBSCRIPTION_CREATED_V2.topic, hashed],
        data=encode(["address"], [OWNER]),
    )
    event = decode_log(log, SUBSCRIPTION_DECODERS)
    assert isinstance(event, SubscriptionCreatedHashed)
    assert event.topic == hashed
    assert event.owner.lower() == OWNER


def test_short_topic_becomes_unknown():
    log = LogRecord(
        address=TEST_COORDINATOR,
        topics=[abi.SUBSCRIPTION_CREATED_V2.topic, b"\x01" * 31],
        data=encode(["address"], [OWNER]),
    )
    event = decode_log(log, SUBSCRIPTION_DECODERS)
    assert isinstance(event, UnknownEvent)
    assert "subId" in event.reason


def test_malformed_fulfillment_log_does_not_hide_valid_one():
    malformed = LogRecord(
        address=TEST_CONSUMER,
        topics=[abi.DICE_LANDED.topic, b"\x02" * 31, b"\x00" * 32],
    )
    valid = _log(abi.REQUEST_FULFILLED, address=TEST_CONSUMER, requestId=5, randomWords=[7])

    events = decode_logs([malformed, valid], FULFILLMENT_DECODERS)

    assert isinstance(events[0], UnknownEvent)
    assert isinstance(events[1], Fulfilled)
    assert events[1].random_words == [7]


def test_request_events_read_id_from_the_right_field():
    key_hash = b"\x42" * 32
    coordinator_log = _log(
        abi.RANDOM_WORDS_REQUESTED_V2_5, keyHash=key_hash, requestId=99, preSeed=1, subId=5,
        minimumRequestConfirmations=3, callbackGasLimit=100000, numWords=2, extraArgs=b"",
        sender=TEST_CONSUMER,
    )
    consumer_log = _log(abi.REQUEST_SENT, address=TEST_CONSUMER, requestId=99, numWords=2)
    dice_log = _log(abi.DICE_ROLLED, address=TEST_CONSUMER, requestId=99, roller=OWNER)

    for log in (coordinator_log, consumer_log, dice_log):
        event = decode_log(log, REQUEST_DECODERS)
        assert isinstance(event, RequestSubmitted)
        assert event.request_id == 99

    coordinator_event = decode_log(coordinator_log, REQUEST_DECODERS)
    assert coordinator_event.key_hash == key_hash
    assert coordinator_event.sub_id == 5


def test_fulfillment_events():
    v25 = decode_log(
        _log(abi.RANDOM_WORDS_FULFILLED_V2_5, requestId=5, outputSeed=1, subId=2, payment=300,
             nativePayment=False, success=True, onlyPremium=False),
        FULFILLMENT_DECODERS,
    )
    assert isinstance(v25, Fulfilled)
    assert v25.payment == 300
    assert v25.success is True

    consumer = decode_log(
        _log(abi.REQUEST_FULFILLED, address=TEST_CONSUMER, requestId=5, randomWords=[10, 20]),
        FULFILLMENT_DECODERS,
    )
    assert consumer.random_words == [10, 20]
    assert consumer.to_record().random_words == [10, 20]

    dice = decode_log(_log(abi.DICE_LANDED, address=TEST_CONSUMER, requestId=5, result=4), FULFILLMENT_DECODERS)
    assert dice.random_words == [4]


def test_known_topic_with_bad_payload_is_unknown():
    topics, _ = abi.RANDOM_WORDS_FULFILLED_V2.encode_log(requestId=8, outputSeed=0, payment=0, success=True)
    event = decode_log(LogRecord(address=TEST_COORDINATOR, topics=topics, data=b"\x01"), FULFILLMENT_DECODERS)
    assert isinstance(event, UnknownEvent)
    assert event.first_topic_value == 8


def test_unknown_topic_and_anonymous_logs():
    unknown = decode_log(LogRecord(address=TEST_COORDINATOR, topics=[b"\x00" * 32]), REQUEST_DECODERS)
    assert isinstance(unknown, UnknownEvent)
    assert "unknown topic" in unknown.reason

    anonymous = decode_log(LogRecord(address=TEST_COORDINATOR), REQUEST_DECODERS)
    assert isinstance(anonymous, UnknownEvent)


def test_decode_logs_filters_by_emitter():
    logs = [
        _log(abi.REQUEST_SENT, address=TEST_CONSUMER, requestId=1, numWords=1),
        _log(abi.REQUEST_SENT, address=OWNER, requestId=2, numWords=1),
    ]
    decoded = decode_logs(logs, REQUEST_DECODERS, address=TEST_CONSUMER)
    assert [e.request_id for e in decoded] == [1]


def test_log_record_accepts_hex_strings():
    log = LogRecord.model_validate({
        "address": TEST_COORDINATOR,
        "topics": ["0x" + "00" * 31 + "05"],
        "data": "0x",
        "blockNumber": 10,
        "transactionHash": b"\x01" * 32,
    })
    assert log.topic_int(0) == 5
    assert log.topic_int(1) is None
    assert log.data == b""
    assert log.tx_hash == "0x" + "01" * 32
