"""
Revert payload classification.
"""
import logging
from dataclasses import dataclass
from typing import Dict, Optional, Union

from eth_abi import decode

from .exceptions import RevertError, RevertKind

logger = logging.getLogger(__name__)

KNOWN_SELECTORS: Dict[str, RevertKind] = {
    "0x1f6a65b6": RevertKind.NON_EXISTENT_SUBSCRIPTION,
    "0x7aa5175d": RevertKind.INSUFFICIENT_BALANCE,
    "0x756688fe": RevertKind.INVALID_CONSUMER,
    "0x756e89cb": RevertKind.INVALID_SUBSCRIPTION,
}

ERROR_STRING_SELECTOR = "0x08c379a0"


@dataclass(frozen=True)
class Classification:
    kind: RevertKind
    selector: str
    reason: Optional[str] = None


class ErrorClassifier:
    """Maps raw revert bytes to a closed set of known failure kinds."""

    def __init__(self, table: Optional[Dict[str, RevertKind]] = None):
        self.table = dict(KNOWN_SELECTORS)
        if table:
            self.table.update({k.lower(): v for k, v in table.items()})

    def classify_data(self, data: Union[bytes, str, None]) -> Classification:
        """
        Classify a revert payload.

        Unknown selectors are reported verbatim, never dropped.
        """
        raw = _as_bytes(data)
        selector = "0x" + raw[:4].hex()
        kind = self.table.get(selector, RevertKind.UNKNOWN)
        reason = None
        if kind == RevertKind.UNKNOWN and selector == ERROR_STRING_SELECTOR:
            try:
                reason = decode(["string"], raw[4:])[0]
            except Exception as e:
                logger.debug(f"Undecodable Error(string) payload {raw.hex()}: {e}")
        return Classification(kind=kind, selector=selector, reason=reason)

    def classify(self, error: RevertError) -> RevertError:
        """Attach the classification to ``error`` and return it for re-raising."""
        if not error.classified:
            result = self.classify_data(error.data)
            error.kind = result.kind
            error.selector = result.selector
            error.reason = result.reason
        return error

    def is_kind(self, error: RevertError, kind: RevertKind) -> bool:
        return self.classify(error).kind == kind


def _as_bytes(data: Union[bytes, str, None]) -> bytes:
    if data is None:
        return b""
    if isinstance(data, str):
        text = data[2:] if data.startswith("0x") else data
        try:
            return bytes.fromhex(text)
        except ValueError:
            return b""
    return bytes(data)
