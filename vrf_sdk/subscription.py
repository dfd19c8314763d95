"""
Subscription discovery and consumer registration.

Coordinators differ in whether they enumerate active subscriptions and in
how the creation event encodes the new id, so discovery is an ordered list
of strategies. Each strategy takes a ``ResolutionContext`` and returns a
``SubscriptionResolution`` or None; the first result wins. No strategy
returns an id whose on-chain owner has not been compared with the caller,
except the explicit last-resort fallback which marks its result unverified.
"""
import logging
from typing import Callable, List, Optional, Sequence, Set

from eth_abi import encode
from eth_abi.exceptions import DecodingError
from pydantic import Field

from . import abi
from .classifier import ErrorClassifier
from .config import EnvSettings
from .contracts import CoordinatorContract
from .events import (
    SUBSCRIPTION_DECODERS,
    SubscriptionCreatedHashed,
    SubscriptionCreatedLiteral,
    UnknownEvent,
    decode_logs,
)
from .exceptions import RevertError, RevertKind, SubscriptionResolutionFailed, TransactionError
from .models import Subscription, SubscriptionResolution, TxReceipt

logger = logging.getLogger(__name__)


class ResolverSettings(EnvSettings):
    """Probe bounds used by subscription discovery. All are heuristics."""

    env_section = "RESOLVER"

    enumeration_page_size: int = Field(100, gt=0)
    enumeration_max_pages: int = Field(10, gt=0)
    hashed_probe_window: int = Field(100, gt=0)
    linear_probe_limit: int = Field(30, ge=0)
    binary_search_upper_bound: int = Field(1000, gt=0)
    recent_window: int = Field(5, ge=0)


class ResolutionContext:
    """
    State shared by the strategies of one resolution run.

    The creation transaction is sent at most once per run; strategies that
    need it call ``ensure_created``.
    """

    def __init__(
        self,
        coordinator: CoordinatorContract,
        owner: str,
        settings: ResolverSettings,
        classifier: ErrorClassifier,
        requested_sub_id: Optional[int] = None
    ):
        self.coordinator = coordinator
        self.owner = owner
        self.settings = settings
        self.classifier = classifier
        self.requested_sub_id = requested_sub_id
        self.creation_receipt: Optional[TxReceipt] = None
        self.creation_error: Optional[Exception] = None
        self.ids_before: Optional[Set[int]] = None
        self._creation_attempted = False

    @property
    def created(self) -> bool:
        return self.creation_receipt is not None

    def ensure_created(self) -> Optional[TxReceipt]:
        """Send the creation transaction once; later calls return the same receipt."""
        if self._creation_attempted:
            return self.creation_receipt
        self._creation_attempted = True
        try:
            self.creation_receipt = self.coordinator.create_subscription()
            logger.info(f"Subscription creation mined in tx {self.creation_receipt.tx_hash}")
        except RevertError as e:
            self.classifier.classify(e)
            self.creation_error = e
            logger.warning(f"Subscription creation reverted: {e}")
        except TransactionError as e:
            self.creation_error = e
            logger.warning(f"Subscription creation failed: {e}")
        return self.creation_receipt

    def lookup(self, sub_id: int) -> Optional[Subscription]:
        return self.coordinator.find_subscription(sub_id)

    def owned(self, sub_id: int) -> Optional[Subscription]:
        """Return the subscription only if it exists and the caller owns it."""
        sub = self.lookup(sub_id)
        if sub is not None and sub.owned_by(self.owner):
            return sub
        return None

    def fresh(self, sub_id: int) -> Optional[Subscription]:
        """Owned and never used for a request."""
        sub = self.owned(sub_id)
        if sub is not None and sub.req_count == 0:
            return sub
        return None

    def active_ids(self) -> Optional[Set[int]]:
        """Enumerate active subscription ids, or None if the coordinator cannot."""
        page_size = self.settings.enumeration_page_size
        ids: Set[int] = set()
        for page in range(self.settings.enumeration_max_pages):
            try:
                batch = self.coordinator.get_active_subscription_ids(page * page_size, page_size)
            except (RevertError, DecodingError) as e:
                logger.debug(f"Active subscription enumeration unsupported: {e}")
                return None
            ids.update(batch)
            if len(batch) < page_size:
                break
        return ids

    def resolution(self, sub_id: int, strategy: str, verified: bool = True) -> SubscriptionResolution:
        return SubscriptionResolution(sub_id=sub_id, is_new=self.created, strategy=strategy,
                                      verified=verified)


Strategy = Callable[[ResolutionContext], Optional[SubscriptionResolution]]


def explicit_subscription(ctx: ResolutionContext) -> Optional[SubscriptionResolution]:
    """Use the id the caller asked for, after checking that the caller owns it."""
    if ctx.requested_sub_id is None:
        return None
    sub = ctx.lookup(ctx.requested_sub_id)
    if sub is None:
        raise SubscriptionResolutionFailed(f"Subscription {ctx.requested_sub_id} does not exist")
    if not sub.owned_by(ctx.owner):
        raise SubscriptionResolutionFailed(
            f"Subscription {ctx.requested_sub_id} is owned by {sub.owner}, not {ctx.owner}"
        )
    return SubscriptionResolution(sub_id=sub.sub_id, is_new=False, strategy="explicit")


def event_diff(ctx: ResolutionContext) -> Optional[SubscriptionResolution]:
    """Diff the active id set around the creation transaction."""
    before = ctx.active_ids()
    if before is None:
        return None
    ctx.ids_before = before
    if ctx.ensure_created() is None:
        return None
    after = ctx.active_ids() or set()
    for candidate in sorted(after - before):
        if ctx.owned(candidate) is not None:
            logger.info(f"Found new subscription {candidate} by active id diff")
            return ctx.resolution(candidate, "event-diff")
    logger.debug(f"Active id diff yielded no owned candidate ({len(after - before)} new ids)")
    return None


def log_topic(ctx: ResolutionContext) -> Optional[SubscriptionResolution]:
    """Decode the creation receipt's SubscriptionCreated log."""
    receipt = ctx.ensure_created()
    if receipt is None:
        return None
    events = decode_logs(receipt.logs, SUBSCRIPTION_DECODERS, address=ctx.coordinator.address)
    for event in events:
        if isinstance(event, SubscriptionCreatedLiteral):
            if ctx.owned(event.sub_id) is not None:
                logger.info(f"Found new subscription {event.sub_id} in creation log")
                return ctx.resolution(event.sub_id, "log-topic")
            logger.warning(f"Creation log names subscription {event.sub_id} but ownership does not match")
        elif isinstance(event, SubscriptionCreatedHashed):
            found = _probe_hashed(ctx, event)
            if found is not None:
                return ctx.resolution(found, "log-topic-hashed")
        elif isinstance(event, UnknownEvent) and event.log.topics:
            logger.debug(f"Ignoring creation receipt log: {event.reason}")
    return None


def _probe_hashed(ctx: ResolutionContext, event: SubscriptionCreatedHashed) -> Optional[int]:
    # The topic may still be the literal id on coordinators that index uint256 ids
    direct = event.topic_value
    if ctx.owned(direct) is not None:
        logger.info(f"Hashed-format creation topic is the subscription id {direct}")
        return direct

    window = range(1, ctx.settings.hashed_probe_window + 1)
    owner = event.owner or ctx.owner
    for candidate in window:
        if abi.keccak(encode(["uint256", "address"], [candidate, owner])) == event.topic:
            if ctx.owned(candidate) is not None:
                logger.info(f"Creation topic hash matches subscription {candidate}")
                return candidate

    for candidate in window:
        if ctx.fresh(candidate) is not None:
            logger.info(f"Recovered subscription {candidate} by probing ids 1..{len(window)}")
            return candidate
    return None


def linear_probe(ctx: ResolutionContext) -> Optional[SubscriptionResolution]:
    """Scan small sequential ids for an owned, unused subscription."""
    for candidate in range(1, ctx.settings.linear_probe_limit + 1):
        if ctx.fresh(candidate) is not None:
            logger.info(f"Found subscription {candidate} by linear probe")
            return ctx.resolution(candidate, "linear-probe")
    return None


def binary_search_probe(ctx: ResolutionContext) -> Optional[SubscriptionResolution]:
    """Locate the highest existing id, then check the most recent ids below it."""
    highest = find_highest_subscription(ctx.coordinator, ctx.settings.binary_search_upper_bound)
    if highest == 0:
        return None
    lowest = max(1, highest - ctx.settings.recent_window)
    for candidate in range(highest, lowest - 1, -1):
        if ctx.owned(candidate) is not None:
            logger.info(f"Found subscription {candidate} near the highest id {highest}")
            return ctx.resolution(candidate, "binary-search")
    return None


def last_resort(ctx: ResolutionContext) -> Optional[SubscriptionResolution]:
    """Fall back to id 1 if it is unclaimed or ours; otherwise give up."""
    sub = ctx.lookup(1)
    if sub is None:
        logger.warning("No subscription could be discovered; assuming id 1 is usable (unverified)")
        return ctx.resolution(1, "last-resort", verified=False)
    if sub.owned_by(ctx.owner):
        logger.warning("No new subscription discovered; falling back to owned subscription 1")
        return ctx.resolution(1, "last-resort")
    raise SubscriptionResolutionFailed(
        f"All discovery strategies failed and subscription 1 is owned by {sub.owner}"
    )


def find_highest_subscription(coordinator: CoordinatorContract, upper_bound: int) -> int:
    """
    Binary search for the highest existing subscription id in [1, upper_bound].

    Assumes ids are assigned sequentially. Returns 0 when none exists.
    """
    lo, hi = 0, upper_bound + 1
    while hi - lo > 1:
        mid = (lo + hi) // 2
        if coordinator.find_subscription(mid) is not None:
            lo = mid
        else:
            hi = mid
    return lo


DEFAULT_STRATEGIES: List[Strategy] = [
    explicit_subscription,
    event_diff,
    log_topic,
    linear_probe,
    binary_search_probe,
    last_resort,
]


class SubscriptionResolver:
    """Finds or creates the subscription a randomness request is billed to."""

    def __init__(
        self,
        coordinator: CoordinatorContract,
        classifier: Optional[ErrorClassifier] = None,
        settings: Optional[ResolverSettings] = None,
        strategies: Optional[Sequence[Strategy]] = None
    ):
        self.coordinator = coordinator
        self.classifier = classifier or ErrorClassifier()
        self.settings = settings or ResolverSettings()
        self.strategies = list(strategies) if strategies is not None else list(DEFAULT_STRATEGIES)

    def resolve(self, owner: str, sub_id: Optional[int] = None) -> SubscriptionResolution:
        """
        Resolve a subscription owned by ``owner``.

        Args:
            owner: Address that must own the subscription
            sub_id: Use this existing subscription instead of creating one

        Returns:
            The resolution, naming the strategy that produced it

        Raises:
            SubscriptionResolutionFailed: If every strategy is exhausted
            TransportError: If the ledger stays unreachable
        """
        ctx = ResolutionContext(self.coordinator, owner, self.settings, self.classifier, sub_id)
        for strategy in self.strategies:
            result = strategy(ctx)
            if result is not None:
                logger.info(
                    f"Resolved subscription {result.sub_id} via {result.strategy} "
                    f"(new={result.is_new}, verified={result.verified})"
                )
                return result
            logger.debug(f"Strategy {strategy.__name__} produced no subscription")

        if ctx.creation_error is not None:
            raise SubscriptionResolutionFailed(
                f"Subscription discovery failed; creation error: {ctx.creation_error}"
            )
        raise SubscriptionResolutionFailed("Subscription discovery strategies exhausted")

    def register_consumer(self, sub_id: int, consumer: str) -> bool:
        """
        Add ``consumer`` to the subscription.

        When the coordinator reports the subscription as non-existent, one
        subscription is created and the call retried once.

        Returns:
            True if a transaction was sent, False if the consumer was already listed

        Raises:
            RevertError: Classified revert from the last attempt
        """
        sub = self.coordinator.find_subscription(sub_id)
        if sub is not None and sub.has_consumer(consumer):
            logger.info(f"Consumer {consumer} already registered on subscription {sub_id}")
            return False

        try:
            self.coordinator.add_consumer(sub_id, consumer)
        except RevertError as e:
            if not self.classifier.is_kind(e, RevertKind.NON_EXISTENT_SUBSCRIPTION):
                raise
            logger.warning(f"Subscription {sub_id} does not exist; creating one and retrying addConsumer")
            try:
                self.coordinator.create_subscription()
            except RevertError as create_error:
                raise self.classifier.classify(create_error)
            try:
                self.coordinator.add_consumer(sub_id, consumer)
            except RevertError as retry_error:
                raise self.classifier.classify(retry_error)
        logger.info(f"Consumer {consumer} added to subscription {sub_id}")
        return True
