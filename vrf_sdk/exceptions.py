"""
Exceptions for the VRF SDK.
"""
from enum import Enum
from typing import Optional


class RevertKind(str, Enum):
    """
    Known coordinator revert reasons.

    These match the custom errors declared by the VRF coordinator contracts.
    """
    NON_EXISTENT_SUBSCRIPTION = "NonExistentSubscription"
    INSUFFICIENT_BALANCE = "InsufficientBalance"
    INVALID_CONSUMER = "InvalidConsumer"
    INVALID_SUBSCRIPTION = "InvalidSubscription"
    UNKNOWN = "Unknown"


class VRFError(Exception):
    """Base exception for all VRF SDK errors."""
    pass


class TransportError(VRFError):
    """Raised when the RPC endpoint cannot be reached or times out. Always retryable."""
    pass


class ReceiptTimeout(TransportError):
    """Raised when a transaction was sent but no receipt was mined in time."""

    def __init__(self, message: str, tx_hash: Optional[str] = None):
        self.tx_hash = tx_hash
        super().__init__(message)


class RevertError(VRFError):
    """
    Raised when a contract call or transaction reverts.

    Carries the raw revert payload. The classification is attached by
    ``ErrorClassifier.classify`` before the error leaves a component.
    """

    def __init__(self, message: str, data: bytes = b""):
        self.data = data or b""
        self.kind: Optional[RevertKind] = None
        self.selector: Optional[str] = None
        self.reason: Optional[str] = None
        super().__init__(message)

    @property
    def classified(self) -> bool:
        return self.kind is not None

    def __str__(self) -> str:
        base = super().__str__()
        if self.kind is None:
            return base
        if self.kind == RevertKind.UNKNOWN:
            detail = f"Unknown selector {self.selector}"
            if self.reason:
                detail += f": {self.reason}"
            return f"{base} [{detail}]"
        return f"{base} [{self.kind.value}]"


class TransactionError(VRFError):
    """Raised when signing, sending or mining a transaction fails."""

    def __init__(self, message: str, tx_hash: Optional[str] = None):
        self.tx_hash = tx_hash
        super().__init__(message)


class SubscriptionResolutionFailed(VRFError):
    """Raised when every subscription discovery strategy is exhausted."""
    pass


class RequestIdMismatch(VRFError):
    """Raised when two trusted request id sources disagree."""

    def __init__(self, direct_id: int, event_id: int):
        self.direct_id = direct_id
        self.event_id = event_id
        super().__init__(
            f"Request id mismatch: consumer reports {direct_id}, receipt logs report {event_id}"
        )


class RequestIdNotFound(VRFError):
    """Raised when neither the consumer nor the receipt logs expose a request id."""
    pass


class ApprovalFailed(VRFError):
    """Raised when the payment token approval reverts or fails to mine."""

    def __init__(self, message: str, kind: Optional[RevertKind] = None):
        self.kind = kind
        super().__init__(message)


class NetworkError(VRFError):
    """Raised when the endpoint serves a different chain than the one configured."""
    pass
