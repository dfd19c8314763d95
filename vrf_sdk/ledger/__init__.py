"""
Ledger access for the VRF SDK.

The lifecycle components only depend on ``LedgerClient``; ``Web3LedgerClient``
is the JSON-RPC implementation used in production.
"""
from .base import LedgerClient, LogFilter, build_log_filter
from .web3_client import Web3LedgerClient, build_session
from ._rate_limited_log import rate_limited_log

__all__ = [
    'LedgerClient',
    'LogFilter',
    'Web3LedgerClient',
    'build_log_filter',
    'build_session',
    'rate_limited_log',
]
