"""
VRFClient - orchestrates the randomness request lifecycle.
"""
import logging
import threading
from typing import Any, Dict, List, Optional, Union

from web3 import Web3

from .classifier import ErrorClassifier
from .config import NetworkConfig, validate_rpc_url
from .contracts import ConsumerContract, CoordinatorContract, TokenContract, detect_coordinator
from .events import REQUEST_DECODERS, RequestSubmitted, decode_logs
from .exceptions import NetworkError, RevertError, TransportError
from .funding import FundingManager
from .ledger.base import LedgerClient, build_log_filter
from .ledger.web3_client import Web3LedgerClient
from .models import (
    FundingReceipt,
    LifecycleResult,
    RandomnessRequest,
    Subscription,
    SubscriptionResolution,
    WatchResult,
)
from .request import RequestSubmitter, SubmitterSettings
from .signer import LocalSigner, Signer
from .subscription import ResolverSettings, SubscriptionResolver
from .watcher import FulfillmentWatcher, WatcherSettings

DEFAULT_EXPLORERS = {
    1: "https://etherscan.io",
    11155111: "https://sepolia.etherscan.io",
}


class VRFClient:
    """
    Client for requesting verifiable randomness from a VRF coordinator.

    The client handles:
    1. Resolving or creating a subscription owned by the signer
    2. Registering the consumer contract on it
    3. Funding it with the payment token or the native asset
    4. Submitting the request and confirming its id
    5. Watching for fulfillment

    Each step is also available on its own.
    """

    def __init__(
        self,
        coordinator_address: str,
        rpc_url: Optional[str] = None,
        consumer_address: Optional[str] = None,
        token_address: Optional[str] = None,
        priv_key: Optional[str] = None,
        signer: Optional[Signer] = None,
        ledger: Optional[LedgerClient] = None,
        expected_chain_id: Optional[int] = None,
        key_hash: Optional[str] = None,
        resolver_settings: Optional[ResolverSettings] = None,
        submitter_settings: Optional[SubmitterSettings] = None,
        watcher_settings: Optional[WatcherSettings] = None,
        detect_version: bool = True,
        retry_count: int = 3,
        timeout: int = 30,
        logger: Optional[logging.Logger] = None
    ):
        """
        Initialize the VRFClient

        Args:
            coordinator_address: VRF coordinator contract address
            rpc_url: Ethereum RPC endpoint URL (ignored when ``ledger`` is given)
            consumer_address: Consumer contract that requests the randomness
            token_address: Payment token address (required for token funding)
            priv_key: Ethereum private key (optional if signer provided)
            signer: Custom signer object (optional if priv_key provided)
            ledger: Pre-built ledger client, mostly for tests
            expected_chain_id: Chain id the endpoint must report
            key_hash: Default key hash for requests
            resolver_settings: Subscription discovery bounds
            submitter_settings: Request parameter bounds
            watcher_settings: Fulfillment polling configuration
            detect_version: Pick the coordinator layout from ``typeAndVersion()``
            retry_count: Number of retries for RPC requests
            timeout: Timeout for RPC requests in seconds
            logger: Optional logger instance to use for debug/info logging

        Raises:
            ValueError: If neither rpc_url nor ledger is given
            ValueError: If the RPC URL doesn't use https (unless it is localhost/127.0.0.1)
        """
        self.logger = logger or logging.getLogger(__name__)
        if signer is None and priv_key:
            signer = LocalSigner(priv_key)
        self.signer = signer

        if ledger is None:
            if not rpc_url:
                raise ValueError("Either rpc_url or ledger must be provided")
            validate_rpc_url(rpc_url)
            ledger = Web3LedgerClient(
                rpc_url, signer=signer, retry_count=retry_count, timeout=timeout, logger=self.logger
            )
        self.rpc_url = rpc_url
        self.ledger = ledger

        self.coordinator_address = coordinator_address
        self.consumer_address = consumer_address
        self.token_address = token_address
        self.expected_chain_id = expected_chain_id
        self.key_hash = key_hash
        self.detect_version = detect_version
        self.classifier = ErrorClassifier()
        self.resolver_settings = resolver_settings or ResolverSettings.from_env()
        self.submitter_settings = submitter_settings or SubmitterSettings.from_env()
        self.watcher_settings = watcher_settings or WatcherSettings.from_env()
        self._network_name: Optional[str] = None
        self._explorer: Optional[str] = None
        self._coordinator: Optional[CoordinatorContract] = None

    @classmethod
    def from_network(
        cls,
        network: str,
        consumer_address: Optional[str] = None,
        priv_key: Optional[str] = None,
        signer: Optional[Signer] = None,
        rpc_url: Optional[str] = None,
        **kwargs: Any
    ) -> "VRFClient":
        """
        Create a client from the bundled network configuration.

        Args:
            network: Network name (e.g. "sepolia")
            consumer_address: Consumer contract address
            priv_key: Ethereum private key (optional if signer provided)
            signer: Custom signer object (optional if priv_key provided)
            rpc_url: Override for the network's RPC URL
            **kwargs: Passed through to the constructor

        Raises:
            ValueError: If the network is unknown
        """
        config = NetworkConfig.get_network(network)
        bounds = config.get("confirmations") or {}
        if "submitter_settings" not in kwargs and bounds:
            kwargs["submitter_settings"] = SubmitterSettings.from_env(
                min_confirmations=bounds.get("min"), max_confirmations=bounds.get("max")
            )
        kwargs.setdefault("token_address", config.get("token"))
        kwargs.setdefault("key_hash", config.get("keyHash"))
        client = cls(
            coordinator_address=NetworkConfig.get_coordinator_address(network),
            rpc_url=NetworkConfig.get_rpc_url(network, rpc_url),
            consumer_address=consumer_address,
            priv_key=priv_key,
            signer=signer,
            expected_chain_id=NetworkConfig.get_chain_id(network),
            **kwargs
        )
        client._network_name = network
        client._explorer = config.get("explorer")
        return client

    @property
    def address(self) -> str:
        """
        Get the signing account address

        Raises:
            ValueError: If no signer is available
        """
        if self.signer is None:
            raise ValueError("No account or signer available")
        return self.signer.address

    @property
    def coordinator(self) -> CoordinatorContract:
        if self._coordinator is None:
            if self.detect_version:
                self._coordinator = detect_coordinator(self.ledger, self.coordinator_address)
            else:
                self._coordinator = CoordinatorContract(self.ledger, self.coordinator_address)
        return self._coordinator

    @property
    def consumer(self) -> ConsumerContract:
        if not self.consumer_address:
            raise ValueError("consumer_address is required for this operation")
        return ConsumerContract(self.ledger, self.consumer_address)

    @property
    def token(self) -> Optional[TokenContract]:
        if not self.token_address:
            return None
        return TokenContract(self.ledger, self.token_address)

    def assert_chain_id(self) -> None:
        """
        Check that the endpoint serves the expected chain.

        Raises:
            NetworkError: On mismatch or when the chain id cannot be read
        """
        if self.expected_chain_id is None:
            self.logger.warning("No expected chain ID set, skipping chain ID validation")
            return
        try:
            actual = self.chain_id()
        except (TransportError, ValueError) as e:
            raise NetworkError(f"Failed to validate chain ID: {e}") from e
        if actual != self.expected_chain_id:
            network = self._network_name or "configured network"
            raise NetworkError(
                f"Chain ID mismatch: expected {self.expected_chain_id} for {network}, got {actual}"
            )

    def chain_id(self) -> int:
        chain_id = getattr(self.ledger, "chain_id", None)
        if chain_id is None:
            raise ValueError("Ledger client does not expose a chain id")
        return int(chain_id)

    def tx_url(self, tx_hash: Union[str, bytes]) -> str:
        """Return a block explorer URL for a transaction hash."""
        if isinstance(tx_hash, bytes):
            tx_hash = Web3.to_hex(tx_hash)
        elif not tx_hash.startswith("0x"):
            tx_hash = "0x" + tx_hash
        base = self._explorer or DEFAULT_EXPLORERS.get(self.expected_chain_id or 0, "https://etherscan.io")
        return f"{base.rstrip('/')}/tx/{tx_hash}"

    def resolver(self) -> SubscriptionResolver:
        return SubscriptionResolver(self.coordinator, self.classifier, self.resolver_settings)

    def submitter(self) -> RequestSubmitter:
        return RequestSubmitter(self.consumer, self.coordinator, self.classifier, self.submitter_settings)

    def watcher(self) -> FulfillmentWatcher:
        consumer = self.consumer if self.consumer_address else None
        return FulfillmentWatcher(self.ledger, self.coordinator, consumer, self.watcher_settings)

    def get_subscription(self, sub_id: int) -> Subscription:
        try:
            return self.coordinator.get_subscription(sub_id)
        except RevertError as e:
            raise self.classifier.classify(e)

    def resolve_subscription(self, sub_id: Optional[int] = None) -> SubscriptionResolution:
        return self.resolver().resolve(self.address, sub_id)

    def register_consumer(self, sub_id: int, consumer_address: Optional[str] = None) -> bool:
        consumer = consumer_address or self.consumer.address
        return self.resolver().register_consumer(sub_id, consumer)

    def fund(self, sub_id: int, token_amount: int = 0, native_amount: int = 0) -> FundingReceipt:
        manager = FundingManager(self.token, self.coordinator, self.classifier)
        return manager.fund(sub_id, token_amount=token_amount, native_amount=native_amount)

    def submit(
        self,
        sub_id: int,
        num_words: int = 1,
        confirmations: int = 3,
        callback_gas_limit: int = 100000,
        key_hash: Optional[str] = None,
        native_payment: bool = False
    ) -> RandomnessRequest:
        return self.submitter().submit(
            sub_id,
            num_words=num_words,
            confirmations=confirmations,
            callback_gas_limit=callback_gas_limit,
            key_hash=key_hash or self.key_hash,
            native_payment=native_payment,
        )

    def watch(self, request_id: int, cancel: Optional[threading.Event] = None) -> WatchResult:
        return self.watcher().watch(request_id, cancel=cancel)

    def commitment(self, request_id: int) -> bytes:
        return self.coordinator.request_commitment(request_id)

    def find_request_events(self, request_id: int, lookback: Optional[int] = None) -> List[RequestSubmitted]:
        """Search recent coordinator and consumer logs for the announcement of ``request_id``."""
        lookback = self.watcher_settings.event_lookback_blocks if lookback is None else lookback
        latest = self.ledger.block_number()
        addresses = [self.coordinator_address]
        if self.consumer_address:
            addresses.append(self.consumer_address)
        log_filter = build_log_filter(
            addresses,
            topics=[list(REQUEST_DECODERS)],
            from_block=max(0, latest - lookback),
            to_block=latest,
        )
        return [
            event for event in decode_logs(self.ledger.get_logs(log_filter), REQUEST_DECODERS)
            if isinstance(event, RequestSubmitted) and event.request_id == request_id
        ]

    def request_randomness(
        self,
        sub_id: Optional[int] = None,
        num_words: int = 1,
        confirmations: int = 3,
        callback_gas_limit: int = 100000,
        token_amount: int = 0,
        native_amount: int = 0,
        key_hash: Optional[str] = None,
        native_payment: bool = False,
        cancel: Optional[threading.Event] = None
    ) -> LifecycleResult:
        """
        Run the whole lifecycle: subscription, consumer, funding, request, watch.

        Steps are strictly sequential; each uses the mined result of the one
        before it.

        Returns:
            LifecycleResult. A timed out watch is reported in ``result.watch``.

        Raises:
            SubscriptionResolutionFailed: If no subscription can be resolved
            ApprovalFailed: If the token approval fails
            RevertError: Classified revert from any transaction
            RequestIdMismatch: If request id sources disagree
            NetworkError: If the endpoint serves another chain
        """
        self.assert_chain_id()
        subscription = self.resolve_subscription(sub_id)
        self.register_consumer(subscription.sub_id)

        funding = None
        if token_amount or native_amount:
            funding = self.fund(subscription.sub_id, token_amount=token_amount, native_amount=native_amount)

        request = self.submit(
            subscription.sub_id,
            num_words=num_words,
            confirmations=confirmations,
            callback_gas_limit=callback_gas_limit,
            key_hash=key_hash,
            native_payment=native_payment,
        )
        self.logger.info(f"Request {request.request_id} submitted in {request.tx_hash}")
        watch = self.watch(request.request_id, cancel=cancel)

        metadata: Dict[str, Any] = {"coordinator_version": self.coordinator.layout.version}
        if self._network_name:
            metadata["network"] = self._network_name
            metadata["tx_url"] = self.tx_url(request.tx_hash)
        return LifecycleResult(
            subscription=subscription, funding=funding, request=request, watch=watch, metadata=metadata
        )

    def close(self) -> None:
        self.ledger.close()
