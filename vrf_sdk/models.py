"""
Data models for the VRF SDK.
"""
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

ZERO_HASH = b"\x00" * 32


def to_bytes(value: Any) -> Any:
    """Accept 0x-prefixed hex strings where raw bytes are expected."""
    if isinstance(value, str):
        text = value[2:] if value.startswith(("0x", "0X")) else value
        if len(text) % 2:
            text = "0" + text
        return bytes.fromhex(text)
    if isinstance(value, (bytes, bytearray)):
        return bytes(value)
    return value


class LogRecord(BaseModel):
    """A single event log as returned by a receipt or a log query"""
    address: str
    topics: List[bytes] = Field(default_factory=list)
    data: bytes = b""
    block_number: Optional[int] = Field(None, alias="blockNumber")
    tx_hash: Optional[str] = Field(None, alias="transactionHash")
    log_index: Optional[int] = Field(None, alias="logIndex")

    model_config = ConfigDict(populate_by_name=True)

    @field_validator("topics", mode="before")
    @classmethod
    def _topics_to_bytes(cls, value: Any) -> Any:
        if isinstance(value, (list, tuple)):
            return [to_bytes(t) for t in value]
        return value

    @field_validator("data", mode="before")
    @classmethod
    def _data_to_bytes(cls, value: Any) -> Any:
        return to_bytes(value)

    @field_validator("tx_hash", mode="before")
    @classmethod
    def _hash_to_hex(cls, value: Any) -> Any:
        if isinstance(value, (bytes, bytearray)):
            return "0x" + bytes(value).hex()
        return value

    def topic_int(self, index: int) -> Optional[int]:
        """Return topic ``index`` as an unsigned integer, or None when absent."""
        if index >= len(self.topics):
            return None
        return int.from_bytes(self.topics[index], "big")


class TxReceipt(BaseModel):
    """Transaction receipt from the blockchain"""
    tx_hash: str = Field(..., alias="transactionHash")
    block_number: int = Field(..., alias="blockNumber")
    block_hash: Optional[str] = Field(None, alias="blockHash")
    status: int
    gas_used: int = Field(0, alias="gasUsed")
    from_address: Optional[str] = Field(None, alias="from")
    to_address: Optional[str] = Field(None, alias="to")
    logs: List[LogRecord] = Field(default_factory=list)

    model_config = ConfigDict(populate_by_name=True)

    @property
    def succeeded(self) -> bool:
        return self.status == 1


class TxRequest(BaseModel):
    """An unsigned contract transaction"""
    to: str
    data: bytes = b""
    value: int = 0
    gas: Optional[int] = None


class Subscription(BaseModel):
    """A prepaid coordinator subscription, as last read from the chain"""
    sub_id: int
    owner: str
    balance: int = 0
    native_balance: int = 0
    req_count: int = 0
    consumers: List[str] = Field(default_factory=list)

    def owned_by(self, address: str) -> bool:
        return self.owner.lower() == address.lower()

    def has_consumer(self, address: str) -> bool:
        return address.lower() in {c.lower() for c in self.consumers}


class SubscriptionResolution(BaseModel):
    """Outcome of subscription discovery"""
    sub_id: int
    is_new: bool
    strategy: str
    verified: bool = True


class RandomnessRequest(BaseModel):
    """
    A submitted randomness request. Immutable once created.

    Dice-roll consumers choose their own confirmations and callback gas, so
    those fields stay unset for requests submitted through ``rollDice``.
    """
    request_id: int
    sub_id: int
    num_words: int
    confirmations: Optional[int] = None
    callback_gas_limit: Optional[int] = None
    key_hash: bytes = ZERO_HASH
    tx_hash: str
    consumer: str
    block_number: Optional[int] = None
    native_payment: bool = False

    model_config = ConfigDict(frozen=True)


class FulfillmentRecord(BaseModel):
    """Fulfillment data reported by the coordinator or the consumer"""
    request_id: int
    random_words: List[int] = Field(default_factory=list)
    payment: Optional[int] = None
    output_seed: Optional[int] = None
    success: Optional[bool] = None


class WatchState(str, Enum):
    PENDING = "PENDING"
    FULFILLED = "FULFILLED"
    TIMED_OUT = "TIMED_OUT"
    FAILED = "FAILED"


class WatchResult(BaseModel):
    """Terminal report of a fulfillment watch"""
    state: WatchState
    request_id: int
    ticks: int = 0
    elapsed: float = 0.0
    random_words: List[int] = Field(default_factory=list)
    payment: Optional[int] = None
    evidence: List[str] = Field(default_factory=list)
    error: Optional[str] = None
    cancelled: bool = False

    @property
    def fulfilled(self) -> bool:
        return self.state == WatchState.FULFILLED


class FundingReceipt(BaseModel):
    """Summary of the funding transactions sent for a subscription"""
    sub_id: int
    token_amount: int = 0
    native_amount: int = 0
    approve_tx: Optional[str] = None
    transfer_tx: Optional[str] = None
    native_tx: Optional[str] = None


class LifecycleResult(BaseModel):
    """Everything produced by one end-to-end randomness run"""
    subscription: SubscriptionResolution
    funding: Optional[FundingReceipt] = None
    request: RandomnessRequest
    watch: WatchResult
    metadata: Optional[Dict[str, Any]] = None
