"""
Fulfillment detection for submitted randomness requests.

The watcher polls a set of independent probes once per tick. Probes run
concurrently and each is bounded by ``probe_timeout``; their outcomes are
combined only after all of them returned or timed out.

Evidence grades:

* ``STRONG``: fulfillment observed (storage written, consumer status, or a
  decoded fulfillment event for this request id).
* ``WEAK``: corroborating only (a commitment that went from non-zero to
  zero, or a fulfillment log for this id whose payload does not decode).
* ``PENDING``: the coordinator still holds a commitment for the request.
* ``NONE``: nothing observed.

A single ``STRONG`` outcome ends the watch as ``FULFILLED``.
"""
import logging
import math
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Sequence

from eth_abi.exceptions import DecodingError
from pydantic import Field, field_validator

from . import abi
from .config import EnvSettings
from .contracts import ConsumerContract, CoordinatorContract
from .events import FULFILLMENT_DECODERS, FULFILLMENT_TOPICS, Fulfilled, UnknownEvent, decode_logs
from .exceptions import RevertError, TransportError
from .ledger._rate_limited_log import rate_limited_log
from .ledger.base import LedgerClient, build_log_filter
from .models import ZERO_HASH, WatchResult, WatchState

logger = logging.getLogger(__name__)

ALL_PROBES = ("storage", "commitment", "event", "status")


class WatcherSettings(EnvSettings):
    """Polling cadence and probe configuration."""

    env_section = "WATCH"

    interval: float = Field(5.0, gt=0)
    timeout: float = Field(300.0, gt=0)
    probe_timeout: float = Field(10.0, gt=0)
    event_lookback_blocks: int = Field(1000, ge=0)
    random_words_slot: int = Field(3, ge=0)
    gas_available_slot: Optional[int] = 5
    max_words_read: int = Field(10, ge=0)
    probes: List[str] = Field(default_factory=lambda: list(ALL_PROBES))

    @field_validator("probes", mode="before")
    @classmethod
    def _split_probes(cls, value: Any) -> Any:
        if isinstance(value, str):
            value = [p.strip() for p in value.split(",") if p.strip()]
        unknown = set(value) - set(ALL_PROBES)
        if unknown:
            raise ValueError(f"Unknown probes: {sorted(unknown)}")
        return value

    @property
    def max_ticks(self) -> int:
        return max(1, math.ceil(self.timeout / self.interval))


class Evidence(str, Enum):
    NONE = "none"
    PENDING = "pending"
    WEAK = "weak"
    STRONG = "strong"


@dataclass
class ProbeOutcome:
    probe: str
    evidence: Evidence
    detail: str = ""
    words: List[int] = field(default_factory=list)
    payment: Optional[int] = None

    def describe(self) -> str:
        text = f"{self.probe}:{self.evidence.value}"
        if self.detail:
            text += f":{self.detail}"
        return text


class Probe:
    """One fulfillment check. Instances hold per-watch state."""

    name = "probe"

    def check(self, request_id: int) -> ProbeOutcome:
        raise NotImplementedError

    def outcome(self, evidence: Evidence, detail: str = "", **kwargs: Any) -> ProbeOutcome:
        return ProbeOutcome(self.name, evidence, detail, **kwargs)


class StorageProbe(Probe):
    """Reads the consumer's random-word array length and gas marker slots."""

    name = "storage"

    def __init__(self, ledger: LedgerClient, consumer: str, words_slot: int,
                 gas_slot: Optional[int], max_words: int):
        self.ledger = ledger
        self.consumer = consumer
        self.words_slot = words_slot
        self.gas_slot = gas_slot
        self.max_words = max_words

    def check(self, request_id: int) -> ProbeOutcome:
        length = self.ledger.get_storage_at(self.consumer, self.words_slot)
        if length:
            return self.outcome(Evidence.STRONG, f"{length} words stored", words=self.read_words(length))
        if self.gas_slot is not None:
            gas = self.ledger.get_storage_at(self.consumer, self.gas_slot)
            if gas:
                return self.outcome(Evidence.STRONG, f"gas marker {gas}")
        return self.outcome(Evidence.NONE)

    def read_words(self, length: int) -> List[int]:
        # Dynamic array elements start at keccak(slot)
        base = int.from_bytes(abi.keccak(self.words_slot.to_bytes(32, "big")), "big")
        return [
            self.ledger.get_storage_at(self.consumer, base + i)
            for i in range(min(length, self.max_words))
        ]


class CommitmentProbe(Probe):
    """Tracks the coordinator commitment; a cleared commitment only corroborates."""

    name = "commitment"

    def __init__(self, coordinator: CoordinatorContract):
        self.coordinator = coordinator
        self.seen_pending = False

    def check(self, request_id: int) -> ProbeOutcome:
        commitment = self.coordinator.request_commitment(request_id)
        if commitment != ZERO_HASH:
            self.seen_pending = True
            return self.outcome(Evidence.PENDING, "0x" + commitment.hex())
        if self.seen_pending:
            return self.outcome(Evidence.WEAK, "commitment cleared")
        # Zero without a prior commitment may also mean the request never existed
        return self.outcome(Evidence.NONE)


class EventProbe(Probe):
    """Scans recent blocks for fulfillment events of this request id."""

    name = "event"

    def __init__(self, ledger: LedgerClient, addresses: Sequence[str], lookback: int):
        self.ledger = ledger
        self.addresses = [a for a in addresses if a]
        self.lookback = lookback

    def check(self, request_id: int) -> ProbeOutcome:
        latest = self.ledger.block_number()
        log_filter = build_log_filter(
            self.addresses,
            topics=[FULFILLMENT_TOPICS],
            from_block=max(0, latest - self.lookback),
            to_block=latest,
        )
        logs = self.ledger.get_logs(log_filter)
        undecodable = None
        for event in decode_logs(logs, FULFILLMENT_DECODERS):
            if isinstance(event, Fulfilled) and event.request_id == request_id:
                return self.outcome(
                    Evidence.STRONG, event.source, words=list(event.random_words), payment=event.payment
                )
            if isinstance(event, UnknownEvent) and event.first_topic_value == request_id:
                logger.warning(f"Fulfillment log for request {request_id} did not decode: {event.reason}")
                undecodable = event
        if undecodable is not None:
            return self.outcome(Evidence.WEAK, "undecodable fulfillment log")
        return self.outcome(Evidence.NONE)


class StatusProbe(Probe):
    """Asks the consumer's ``getRequestStatus``."""

    name = "status"

    def __init__(self, consumer: ConsumerContract):
        self.consumer = consumer

    def check(self, request_id: int) -> ProbeOutcome:
        fulfilled, words = self.consumer.request_status(request_id)
        if fulfilled:
            return self.outcome(Evidence.STRONG, "consumer reports fulfilled", words=words)
        return self.outcome(Evidence.NONE)


# Words are taken from the most specific source available
_WORD_PREFERENCE = ("status", "event", "storage")


class FulfillmentWatcher:
    """
    Polls until a request is fulfilled, fails, or the deadline passes.

    ``watch`` holds no state between calls: a timed-out or cancelled watch
    can be resumed by calling it again with the same request id.
    """

    def __init__(
        self,
        ledger: LedgerClient,
        coordinator: CoordinatorContract,
        consumer: Optional[ConsumerContract] = None,
        settings: Optional[WatcherSettings] = None,
        probe_factory: Optional[Callable[[], List[Probe]]] = None
    ):
        self.ledger = ledger
        self.coordinator = coordinator
        self.consumer = consumer
        self.settings = settings or WatcherSettings()
        self.probe_factory = probe_factory or self.default_probes

    def default_probes(self) -> List[Probe]:
        settings = self.settings
        probes: List[Probe] = []
        consumer_address = self.consumer.address if self.consumer else None
        for name in settings.probes:
            if name == "storage" and consumer_address:
                probes.append(StorageProbe(
                    self.ledger, consumer_address, settings.random_words_slot,
                    settings.gas_available_slot, settings.max_words_read
                ))
            elif name == "commitment":
                probes.append(CommitmentProbe(self.coordinator))
            elif name == "event":
                addresses = [self.coordinator.address]
                if consumer_address:
                    addresses.append(consumer_address)
                probes.append(EventProbe(self.ledger, addresses, settings.event_lookback_blocks))
            elif name == "status" and self.consumer is not None:
                probes.append(StatusProbe(self.consumer))
        return probes

    def watch(self, request_id: int, cancel: Optional[threading.Event] = None) -> WatchResult:
        """
        Watch ``request_id`` until a terminal state or cancellation.

        Args:
            request_id: Request id returned by the submitter
            cancel: Set to stop the loop between ticks

        Returns:
            WatchResult. ``TIMED_OUT`` and cancellation are results, not errors.
        """
        probes = self.probe_factory()
        if not probes:
            return WatchResult(state=WatchState.FAILED, request_id=request_id, error="No probes configured")

        settings = self.settings
        run = _WatchRun(request_id, probes, settings.probe_timeout)
        started = time.monotonic()
        logger.info(
            f"Watching request {request_id} every {settings.interval}s for up to {settings.timeout}s "
            f"with probes {[p.name for p in probes]}"
        )

        try:
            for tick in range(1, settings.max_ticks + 1):
                if cancel is not None and cancel.is_set():
                    return run.result(WatchState.PENDING, tick - 1, started, cancelled=True)

                run.tick()
                if run.state != WatchState.PENDING:
                    return run.result(run.state, tick, started)

                if tick == settings.max_ticks or time.monotonic() - started >= settings.timeout:
                    break
                if cancel is not None:
                    if cancel.wait(settings.interval):
                        return run.result(WatchState.PENDING, tick, started, cancelled=True)
                else:
                    time.sleep(settings.interval)
            logger.info(f"Request {request_id} not fulfilled within {settings.timeout}s")
            return run.result(WatchState.TIMED_OUT, tick, started)
        finally:
            run.close()


class _WatchRun:
    """Mutable state of a single ``watch`` call."""

    def __init__(self, request_id: int, probes: List[Probe], probe_timeout: float):
        self.request_id = request_id
        self.active = list(probes)
        self.unsupported: List[str] = []
        self.probe_timeout = probe_timeout
        self.state = WatchState.PENDING
        self.error: Optional[str] = None
        self.evidence: List[str] = []
        self.words: List[int] = []
        self.payment: Optional[int] = None
        self.in_flight: Dict[str, Future] = {}
        self.executor = ThreadPoolExecutor(max_workers=max(1, len(probes)), thread_name_prefix="vrf-probe")

    def tick(self) -> None:
        futures: Dict[Future, Probe] = {}
        late: Dict[Future, Probe] = {}
        for probe in self.active:
            previous = self.in_flight.get(probe.name)
            if previous is not None:
                if previous.done():
                    # Finished after an earlier tick stopped waiting for it
                    late[previous] = probe
                    del self.in_flight[probe.name]
                else:
                    rate_limited_log(f"Probe {probe.name} still running from previous tick", level="debug",
                                     logger_instance=logger)
                continue
            future = self.executor.submit(probe.check, self.request_id)
            self.in_flight[probe.name] = future
            futures[future] = probe

        done, not_done = wait(futures, timeout=self.probe_timeout)
        for future in not_done:
            rate_limited_log(f"Probe {futures[future].name} exceeded {self.probe_timeout}s",
                             logger_instance=logger)
        for future in done:
            del self.in_flight[futures[future].name]

        finished = list(late.items()) + [(future, futures[future]) for future in done]
        outcomes: List[ProbeOutcome] = []
        for future, probe in finished:
            try:
                outcomes.append(future.result())
            except TransportError as e:
                rate_limited_log(f"Probe {probe.name} transport failure: {e}", logger_instance=logger)
            except (RevertError, DecodingError) as e:
                logger.info(f"Probe {probe.name} unsupported on this deployment: {e}")
                self.active.remove(probe)
                self.unsupported.append(probe.name)
            except Exception as e:
                logger.error(f"Probe {probe.name} failed unexpectedly: {e}")
                self.state = WatchState.FAILED
                self.error = f"{probe.name}: {e}"
                return

        self.combine(outcomes)
        if self.state == WatchState.PENDING and not self.active:
            self.state = WatchState.FAILED
            self.error = f"All probes unsupported: {', '.join(self.unsupported)}"

    def combine(self, outcomes: List[ProbeOutcome]) -> None:
        for outcome in outcomes:
            if outcome.evidence != Evidence.NONE:
                description = outcome.describe()
                if description not in self.evidence:
                    self.evidence.append(description)

        strong = {o.probe: o for o in outcomes if o.evidence == Evidence.STRONG}
        if not strong:
            weak = [o.probe for o in outcomes if o.evidence == Evidence.WEAK]
            if weak:
                logger.info(f"Request {self.request_id}: corroborating signals {weak} without strong evidence")
            return

        self.state = WatchState.FULFILLED
        for name in _WORD_PREFERENCE:
            if name in strong and strong[name].words:
                self.words = list(strong[name].words)
                break
        for outcome in outcomes:
            if outcome.payment is not None:
                self.payment = outcome.payment
        logger.info(f"Request {self.request_id} fulfilled (evidence: {sorted(strong)})")

    def result(self, state: WatchState, ticks: int, started: float, cancelled: bool = False) -> WatchResult:
        return WatchResult(
            state=state,
            request_id=self.request_id,
            ticks=ticks,
            elapsed=time.monotonic() - started,
            random_words=self.words,
            payment=self.payment,
            evidence=self.evidence,
            error=self.error,
            cancelled=cancelled,
        )

    def close(self) -> None:
        self.executor.shutdown(wait=False, cancel_futures=True)
