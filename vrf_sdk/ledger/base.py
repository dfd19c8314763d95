"""
Transport layer for the remote ledger.

This module defines the narrow RPC surface the lifecycle components depend
on. Implementations must raise ``TransportError`` for network level failures
and ``RevertError`` (carrying the raw revert bytes) for contract reverts.
"""
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Sequence, Union

from ..models import LogRecord, TxReceipt, TxRequest

logger = logging.getLogger(__name__)

LogFilter = Dict[str, Any]


class LedgerClient(ABC):
    """
    Abstract base class for ledger access.

    All implementations share one synchronous interface; the lifecycle
    components never talk to web3 directly.
    """

    @property
    @abstractmethod
    def sender(self) -> str:
        """Address transactions are sent from."""
        pass

    @abstractmethod
    def call(self, address: str, data: bytes) -> bytes:
        """
        Perform a stateless contract read.

        Raises:
            TransportError: If the endpoint cannot be reached
            RevertError: If the call reverts
        """
        pass

    @abstractmethod
    def get_storage_at(self, address: str, slot: int) -> int:
        """Read one raw storage word as an unsigned integer."""
        pass

    @abstractmethod
    def get_logs(self, log_filter: LogFilter) -> List[LogRecord]:
        """Query indexed logs by address, topics and block range."""
        pass

    @abstractmethod
    def send_and_wait(self, tx: TxRequest) -> TxReceipt:
        """
        Sign and submit a transaction, blocking until it is mined.

        Raises:
            RevertError: If the transaction reverts during gas estimation
            TransactionError: If signing/sending fails or the receipt reports failure
            ReceiptTimeout: If no receipt is mined within the bounded wait
        """
        pass

    @abstractmethod
    def block_number(self) -> int:
        """Return the current block number."""
        pass

    def close(self) -> None:
        """Close any open connections or resources."""
        pass


def build_log_filter(
    address: Union[str, Sequence[str]],
    topics: Optional[List[Any]] = None,
    from_block: Union[int, str] = 0,
    to_block: Union[int, str] = "latest",
) -> LogFilter:
    """Build an ``eth_getLogs`` filter in the shape web3 expects."""
    log_filter: LogFilter = {
        "address": address if isinstance(address, str) else list(address),
        "fromBlock": from_block,
        "toBlock": to_block,
    }
    if topics:
        log_filter["topics"] = topics
    return log_filter
