"""
VRF lifecycle SDK - request verifiable randomness and confirm its delivery.
"""
from .classifier import ErrorClassifier
from .client import VRFClient
from .config import NetworkConfig
from .exceptions import (
    ApprovalFailed,
    NetworkError,
    ReceiptTimeout,
    RequestIdMismatch,
    RequestIdNotFound,
    RevertError,
    RevertKind,
    SubscriptionResolutionFailed,
    TransactionError,
    TransportError,
    VRFError,
)
from .funding import FundingManager
from .ledger import LedgerClient, Web3LedgerClient
from .models import (
    FulfillmentRecord,
    FundingReceipt,
    LifecycleResult,
    RandomnessRequest,
    Subscription,
    SubscriptionResolution,
    WatchResult,
    WatchState,
)
from .request import RequestSubmitter, SubmitterSettings
from .signer import LocalSigner, Signer
from .subscription import ResolverSettings, SubscriptionResolver
from .version import __version__
from .watcher import FulfillmentWatcher, WatcherSettings

__all__ = [
    "VRFClient",
    "NetworkConfig",
    "ErrorClassifier",
    "SubscriptionResolver",
    "ResolverSettings",
    "FundingManager",
    "RequestSubmitter",
    "SubmitterSettings",
    "FulfillmentWatcher",
    "WatcherSettings",
    "LedgerClient",
    "Web3LedgerClient",
    "Signer",
    "LocalSigner",
    "Subscription",
    "SubscriptionResolution",
    "RandomnessRequest",
    "FulfillmentRecord",
    "FundingReceipt",
    "WatchResult",
    "WatchState",
    "LifecycleResult",
    "VRFError",
    "TransportError",
    "ReceiptTimeout",
    "RevertError",
    "RevertKind",
    "TransactionError",
    "SubscriptionResolutionFailed",
    "RequestIdMismatch",
    "RequestIdNotFound",
    "ApprovalFailed",
    "NetworkError",
    "__version__",
]
