"""
web3.py implementation of the ledger transport.
"""
import logging
import time
from typing import Any, Callable, Dict, List, Optional, TypeVar

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry
from web3 import Web3
from web3.exceptions import ContractLogicError, TimeExhausted, Web3RPCError

from ..exceptions import ReceiptTimeout, RevertError, TransactionError, TransportError
from ..models import LogRecord, TxReceipt, TxRequest
from ..signer import Signer
from .base import LedgerClient, LogFilter

T = TypeVar('T')

logger = logging.getLogger(__name__)

DEFAULT_GAS_LIMIT = 500000

_TRANSPORT_ERRORS = (requests.RequestException, ConnectionError, TimeoutError)
# JSON-RPC error responses such as provider rate limits; reverts are matched first
_RETRYABLE_ERRORS = _TRANSPORT_ERRORS + (Web3RPCError,)


def build_session(retry_count: int = 3) -> requests.Session:
    """
    Create an HTTP session with connection-level retries for the RPC provider.

    Args:
        retry_count: Number of retries for connection errors and 5xx responses

    Returns:
        Configured requests session
    """
    session = requests.Session()
    retries = Retry(
        total=retry_count,
        backoff_factor=0.5,
        status_forcelist=[500, 502, 503, 504],
        allowed_methods=["POST"],
        raise_on_status=False,
        connect=retry_count,
        read=retry_count,
        other=retry_count
    )
    session.mount("http://", HTTPAdapter(max_retries=retries))
    session.mount("https://", HTTPAdapter(max_retries=retries))
    return session


class Web3LedgerClient(LedgerClient):
    """
    Ledger access over a JSON-RPC endpoint through web3.py.

    Reads are retried on transport failures with exponential backoff; reverts
    are converted to ``RevertError`` and never retried.
    """

    def __init__(
        self,
        rpc_url: str,
        signer: Optional[Signer] = None,
        retry_count: int = 3,
        backoff_factor: float = 0.5,
        timeout: int = 30,
        receipt_timeout: int = 120,
        poll_interval: float = 0.5,
        default_gas: int = DEFAULT_GAS_LIMIT,
        w3: Optional[Web3] = None,
        logger: Optional[logging.Logger] = None
    ):
        """
        Initialize the client.

        Args:
            rpc_url: JSON-RPC endpoint URL
            signer: Signer used for transactions (reads work without one)
            retry_count: Attempts per read before a TransportError surfaces
            backoff_factor: Base of the exponential backoff between attempts
            timeout: HTTP request timeout in seconds
            receipt_timeout: Maximum seconds to wait for a transaction receipt
            poll_interval: Receipt polling latency in seconds
            default_gas: Gas limit used when estimation fails for a non-revert reason
            w3: Pre-built Web3 instance (mostly for tests)
            logger: Optional logger instance
        """
        self.rpc_url = rpc_url
        self.signer = signer
        self.retry_count = max(1, retry_count)
        self.backoff_factor = backoff_factor
        self.receipt_timeout = receipt_timeout
        self.poll_interval = poll_interval
        self.default_gas = default_gas
        self.logger = logger or logging.getLogger(__name__)
        self._chain_id: Optional[int] = None

        if w3 is None:
            self.session = build_session(retry_count)
            w3 = Web3(Web3.HTTPProvider(
                rpc_url,
                request_kwargs={"timeout": timeout},
                session=self.session
            ))
        else:
            self.session = None
        self.w3 = w3

    @property
    def sender(self) -> str:
        if self.signer is None:
            raise ValueError("No signer available")
        return self.signer.address

    @property
    def chain_id(self) -> int:
        if self._chain_id is None:
            self._chain_id = self._with_retries(lambda: self.w3.eth.chain_id, "eth_chainId")
        return self._chain_id

    def call(self, address: str, data: bytes) -> bytes:
        tx = {"to": Web3.to_checksum_address(address), "data": Web3.to_hex(data)}
        return bytes(self._with_retries(lambda: self.w3.eth.call(tx, "latest"), "eth_call"))

    def get_storage_at(self, address: str, slot: int) -> int:
        checksum = Web3.to_checksum_address(address)
        raw = self._with_retries(
            lambda: self.w3.eth.get_storage_at(checksum, slot), "eth_getStorageAt"
        )
        return int.from_bytes(bytes(raw), "big")

    def get_logs(self, log_filter: LogFilter) -> List[LogRecord]:
        params = self._format_filter(log_filter)
        raw_logs = self._with_retries(lambda: self.w3.eth.get_logs(params), "eth_getLogs")
        return [LogRecord.model_validate(_plain_log(log)) for log in raw_logs]

    def block_number(self) -> int:
        return int(self._with_retries(lambda: self.w3.eth.block_number, "eth_blockNumber"))

    def send_and_wait(self, tx: TxRequest) -> TxReceipt:
        from_address = self.sender
        to_address = Web3.to_checksum_address(tx.to)
        data_hex = Web3.to_hex(tx.data)

        nonce = self._with_retries(
            lambda: self.w3.eth.get_transaction_count(from_address), "eth_getTransactionCount"
        )

        gas = tx.gas
        if gas is None:
            try:
                gas = self.w3.eth.estimate_gas({
                    'from': from_address,
                    'to': to_address,
                    'data': data_hex,
                    'value': tx.value,
                })
                # Add 10% buffer to gas estimate
                gas = int(gas * 1.1)
                self.logger.debug(f"Estimated gas: {gas}")
            except ContractLogicError as e:
                raise _revert_from(e, f"Transaction to {to_address} would revert")
            except Exception as e:
                gas = self.default_gas
                self.logger.warning(f"Gas estimation failed, using default: {gas}. Error: {e}")

        tx_params: Dict[str, Any] = {
            'from': from_address,
            'to': to_address,
            'data': data_hex,
            'value': tx.value,
            'nonce': nonce,
            'gas': gas,
            'gasPrice': self._with_retries(lambda: self.w3.eth.gas_price, "eth_gasPrice"),
            'chainId': self.chain_id,
        }

        try:
            signed_tx = self.signer.sign_transaction(tx_params)
        except Exception as e:
            self.logger.error(f"Transaction signing failed: {e}")
            raise TransactionError(f"Failed to sign transaction: {str(e)}")

        try:
            tx_hash = self.w3.eth.send_raw_transaction(signed_tx.raw_transaction)
        except ContractLogicError as e:
            raise _revert_from(e, f"Transaction to {to_address} reverted")
        except _TRANSPORT_ERRORS as e:
            self.logger.error(f"Failed to send transaction: {e}")
            raise TransportError(f"Failed to send transaction: {str(e)}") from e
        except Exception as e:
            self.logger.error(f"Failed to send transaction: {e}")
            raise TransactionError(f"Failed to send transaction: {str(e)}")

        tx_hash_hex = Web3.to_hex(tx_hash)
        self.logger.info(f"Transaction sent: {tx_hash_hex}")

        try:
            receipt = self.w3.eth.wait_for_transaction_receipt(
                tx_hash,
                timeout=self.receipt_timeout,
                poll_latency=self.poll_interval
            )
        except TimeExhausted as e:
            raise ReceiptTimeout(
                f"Transaction {tx_hash_hex} not mined within {self.receipt_timeout}s", tx_hash=tx_hash_hex
            ) from e
        except _TRANSPORT_ERRORS as e:
            raise ReceiptTimeout(
                f"Lost connection while waiting for {tx_hash_hex}: {e}", tx_hash=tx_hash_hex
            ) from e

        converted = self._convert_receipt(receipt)
        if not converted.succeeded:
            raise TransactionError(
                f"Transaction {tx_hash_hex} failed in block {converted.block_number}",
                tx_hash=tx_hash_hex
            )
        self.logger.debug(f"Transaction {tx_hash_hex} mined in block {converted.block_number}")
        return converted

    def close(self) -> None:
        if self.session is not None:
            self.session.close()

    def _with_retries(self, fn: Callable[[], T], description: str) -> T:
        attempt = 0
        while True:
            try:
                return fn()
            except ContractLogicError as e:
                raise _revert_from(e, f"{description} reverted")
            except _RETRYABLE_ERRORS as e:
                if attempt < self.retry_count - 1:
                    attempt += 1
                    wait_time = self.backoff_factor * (2 ** (attempt - 1))
                    self.logger.warning(f"Retrying {description} after {wait_time}s due to transport error: {e}")
                    time.sleep(wait_time)
                    continue
                self.logger.error(f"{description} failed after {attempt + 1} attempts: {e}")
                raise TransportError(f"{description} failed: {str(e)}") from e

    @staticmethod
    def _format_filter(log_filter: LogFilter) -> Dict[str, Any]:
        params = dict(log_filter)
        address = params.get("address")
        if isinstance(address, str):
            params["address"] = Web3.to_checksum_address(address)
        elif address:
            params["address"] = [Web3.to_checksum_address(a) for a in address]
        if params.get("topics"):
            params["topics"] = [_topic_param(t) for t in params["topics"]]
        return params

    def _convert_receipt(self, web3_receipt: Any) -> TxReceipt:
        """
        Convert Web3 receipt to our TxReceipt model

        Args:
            web3_receipt: The Web3 transaction receipt

        Returns:
            Our TxReceipt model
        """
        receipt_dict = dict(web3_receipt)

        # Convert bytes to hex strings
        for key, value in list(receipt_dict.items()):
            if isinstance(value, bytes):
                receipt_dict[key] = '0x' + value.hex()

        receipt_dict["logs"] = [_plain_log(log) for log in web3_receipt.get("logs", [])]
        return TxReceipt.model_validate(receipt_dict)


def _plain_log(log: Any) -> Dict[str, Any]:
    plain = dict(log)
    plain["topics"] = [bytes(t) for t in plain.get("topics", [])]
    plain["data"] = plain.get("data") or b""
    return plain


def _topic_param(value: Any) -> Any:
    if value is None:
        return None
    if isinstance(value, (list, tuple)):
        return [_topic_param(v) for v in value]
    if isinstance(value, (bytes, bytearray)):
        return Web3.to_hex(bytes(value).rjust(32, b"\x00"))
    return value


def _revert_from(error: ContractLogicError, message: str) -> RevertError:
    data = getattr(error, "data", None)
    if isinstance(data, str):
        try:
            raw = bytes.fromhex(data[2:] if data.startswith("0x") else data)
        except ValueError:
            raw = b""
    elif isinstance(data, (bytes, bytearray)):
        raw = bytes(data)
    else:
        raw = b""
    revert = RevertError(f"{message}: {error}", data=raw)
    revert.__cause__ = error
    return revert
