"""
Minimal ABI surface of the contracts the SDK talks to.

Only the functions and events the lifecycle needs are described. Selectors
and topics are derived from the canonical signatures at import time.
"""
from typing import Any, Dict, List, Sequence, Tuple

from eth_abi import decode, encode
from web3 import Web3


def keccak(data: bytes) -> bytes:
    return bytes(Web3.keccak(data))


def selector(signature: str) -> bytes:
    """Return the 4-byte function selector for a canonical signature."""
    return bytes(Web3.keccak(text=signature)[:4])


def topic(signature: str) -> bytes:
    """Return the 32-byte event topic for a canonical signature."""
    return bytes(Web3.keccak(text=signature))


def _arg_types(signature: str) -> List[str]:
    inner = signature[signature.index("(") + 1:signature.rindex(")")]
    return [t for t in inner.split(",") if t]


class Function:
    """A contract function: selector, argument encoding and output decoding"""

    def __init__(self, signature: str, outputs: Sequence[str] = ()):
        self.signature = signature
        self.name = signature[:signature.index("(")]
        self.inputs = _arg_types(signature)
        self.outputs = list(outputs)
        self.selector = selector(signature)

    def encode(self, *args: Any) -> bytes:
        return self.selector + encode(self.inputs, list(args))

    def decode_input(self, data: bytes) -> Tuple[Any, ...]:
        return decode(self.inputs, data[4:])

    def decode_output(self, data: bytes) -> Tuple[Any, ...]:
        return decode(self.outputs, data)

    def encode_output(self, *values: Any) -> bytes:
        return encode(self.outputs, list(values))

    def __repr__(self) -> str:
        return f"Function({self.signature})"


class Event:
    """
    An event: topic plus the split between indexed and data fields.

    ``fields`` is an ordered list of ``(name, type, indexed)`` triples.
    """

    def __init__(self, signature: str, fields: Sequence[Tuple[str, str, bool]]):
        self.signature = signature
        self.name = signature[:signature.index("(")]
        self.fields = list(fields)
        self.topic = topic(signature)

    @property
    def data_types(self) -> List[str]:
        return [t for _, t, indexed in self.fields if not indexed]

    @property
    def indexed_fields(self) -> List[Tuple[str, str]]:
        return [(n, t) for n, t, indexed in self.fields if indexed]

    def decode(self, topics: Sequence[bytes], data: bytes) -> Dict[str, Any]:
        """
        Decode a log into a field dictionary.

        Raises:
            ValueError: If the topic count or data layout does not match
        """
        indexed = self.indexed_fields
        if len(topics) != len(indexed) + 1 or topics[0] != self.topic:
            raise ValueError(f"log does not match {self.signature}")
        values: Dict[str, Any] = {}
        for (name, typ), raw in zip(indexed, topics[1:]):
            try:
                values[name] = decode([typ], raw)[0]
            except Exception as e:
                raise ValueError(f"cannot decode {self.name} topic {name}: {e}") from e
        try:
            decoded = decode(self.data_types, data)
        except Exception as e:
            raise ValueError(f"cannot decode {self.name} data: {e}") from e
        data_names = [n for n, _, indexed in self.fields if not indexed]
        values.update(zip(data_names, decoded))
        return values

    def encode_log(self, **values: Any) -> Tuple[List[bytes], bytes]:
        """Build ``(topics, data)`` for this event. Used to script test chains."""
        topics = [self.topic]
        for name, typ in self.indexed_fields:
            topics.append(encode([typ], [values[name]]))
        data_names = [n for n, _, indexed in self.fields if not indexed]
        data = encode(self.data_types, [values[n] for n in data_names])
        return topics, data

    def __repr__(self) -> str:
        return f"Event({self.signature})"


class CoordinatorLayout:
    """
    Function set of one coordinator generation.

    ``v2`` coordinators key subscriptions by ``uint64`` and expose the
    commitment through ``getCommitment``; ``v2.5`` coordinators use
    ``uint256`` ids and the public ``s_requestCommitments`` mapping.
    """

    def __init__(self, version: str, id_type: str, get_subscription_outputs: Sequence[str],
                 commitment_signature: str):
        self.version = version
        self.id_type = id_type
        self.create_subscription = Function("createSubscription()", [id_type])
        self.get_subscription = Function(f"getSubscription({id_type})", get_subscription_outputs)
        self.get_active_subscription_ids = Function(
            "getActiveSubscriptionIds(uint256,uint256)", ["uint256[]"]
        )
        self.add_consumer = Function(f"addConsumer({id_type},address)")
        self.fund_with_native = Function(f"fundSubscriptionWithNative({id_type})")
        self.request_commitment = Function(commitment_signature, ["bytes32"])
        self.proving_key_hashes = Function("s_provingKeyHashes(uint256)", ["bytes32"])
        self.type_and_version = Function("typeAndVersion()", ["string"])

    def subscription_fields(self, values: Sequence[Any]) -> Dict[str, Any]:
        if self.version == "v2":
            balance, req_count, owner, consumers = values
            native_balance = 0
        else:
            balance, native_balance, req_count, owner, consumers = values
        return {
            "balance": balance,
            "native_balance": native_balance,
            "req_count": req_count,
            "owner": owner,
            "consumers": list(consumers),
        }


COORDINATOR_V2 = CoordinatorLayout(
    "v2", "uint64", ["uint96", "uint64", "address", "address[]"], "getCommitment(uint256)"
)
COORDINATOR_V2_5 = CoordinatorLayout(
    "v2.5", "uint256", ["uint96", "uint96", "uint64", "address", "address[]"],
    "s_requestCommitments(uint256)"
)

# Payment token (ERC-677)
TOKEN_BALANCE_OF = Function("balanceOf(address)", ["uint256"])
TOKEN_APPROVE = Function("approve(address,uint256)", ["bool"])
TOKEN_TRANSFER_AND_CALL = Function("transferAndCall(address,uint256,bytes)", ["bool"])

# Consumer
CONSUMER_REQUEST_RANDOM_WORDS = Function("requestRandomWords(uint256,uint32,uint16,uint32,bool)", ["uint256"])
CONSUMER_LAST_REQUEST_ID = Function("s_requestId()", ["uint256"])
CONSUMER_REQUEST_STATUS = Function("getRequestStatus(uint256)", ["bool", "uint256[]"])
CONSUMER_ROLL_DICE = Function("rollDice(address)", ["uint256"])

# Coordinator events
SUBSCRIPTION_CREATED_V2 = Event(
    "SubscriptionCreated(uint64,address)",
    [("subId", "uint64", True), ("owner", "address", False)],
)
SUBSCRIPTION_CREATED_V2_5 = Event(
    "SubscriptionCreated(uint256,address)",
    [("subId", "uint256", True), ("owner", "address", False)],
)
RANDOM_WORDS_REQUESTED_V2 = Event(
    "RandomWordsRequested(bytes32,uint256,uint256,uint64,uint16,uint32,uint32,address)",
    [
        ("keyHash", "bytes32", True),
        ("requestId", "uint256", False),
        ("preSeed", "uint256", False),
        ("subId", "uint64", True),
        ("minimumRequestConfirmations", "uint16", False),
        ("callbackGasLimit", "uint32", False),
        ("numWords", "uint32", False),
        ("sender", "address", True),
    ],
)
RANDOM_WORDS_REQUESTED_V2_5 = Event(
    "RandomWordsRequested(bytes32,uint256,uint256,uint256,uint16,uint32,uint32,bytes,address)",
    [
        ("keyHash", "bytes32", True),
        ("requestId", "uint256", False),
        ("preSeed", "uint256", False),
        ("subId", "uint256", True),
        ("minimumRequestConfirmations", "uint16", False),
        ("callbackGasLimit", "uint32", False),
        ("numWords", "uint32", False),
        ("extraArgs", "bytes", False),
        ("sender", "address", True),
    ],
)
RANDOM_WORDS_FULFILLED_V2 = Event(
    "RandomWordsFulfilled(uint256,uint256,uint96,bool)",
    [
        ("requestId", "uint256", True),
        ("outputSeed", "uint256", False),
        ("payment", "uint96", False),
        ("success", "bool", False),
    ],
)
RANDOM_WORDS_FULFILLED_V2_5 = Event(
    "RandomWordsFulfilled(uint256,uint256,uint256,uint96,bool,bool,bool)",
    [
        ("requestId", "uint256", True),
        ("outputSeed", "uint256", False),
        ("subId", "uint256", True),
        ("payment", "uint96", False),
        ("nativePayment", "bool", False),
        ("success", "bool", False),
        ("onlyPremium", "bool", False),
    ],
)

# Consumer events
REQUEST_SENT = Event(
    "RequestSent(uint256,uint32)",
    [("requestId", "uint256", False), ("numWords", "uint32", False)],
)
REQUEST_FULFILLED = Event(
    "RequestFulfilled(uint256,uint256[])",
    [("requestId", "uint256", False), ("randomWords", "uint256[]", False)],
)
DICE_ROLLED = Event(
    "DiceRolled(uint256,address)",
    [("requestId", "uint256", True), ("roller", "address", True)],
)
DICE_LANDED = Event(
    "DiceLanded(uint256,uint256)",
    [("requestId", "uint256", True), ("result", "uint256", True)],
)
