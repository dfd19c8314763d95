"""
Subscription funding with the payment token or the native asset.
"""
import logging
from typing import Optional

from eth_abi import encode
from eth_abi.exceptions import EncodingError

from .classifier import ErrorClassifier
from .contracts import CoordinatorContract, TokenContract
from .exceptions import ApprovalFailed, RevertError, TransactionError
from .models import FundingReceipt, TxReceipt

logger = logging.getLogger(__name__)


def encode_subscription_id(sub_id: int) -> bytes:
    """
    Encode the transferAndCall payload for a subscription id.

    ``uint64`` is tried first; ids beyond its range fall back to ``uint256``.
    """
    try:
        return encode(["uint64"], [sub_id])
    except EncodingError:
        logger.debug(f"Subscription id {sub_id} does not fit uint64; encoding as uint256")
        return encode(["uint256"], [sub_id])


class FundingManager:
    """
    Moves value into a subscription.

    Token funding is two transactions: ``approve`` to the coordinator, then
    ``transferAndCall``. The transfer is refused unless an approval covering
    the amount was observed to succeed first.
    """

    def __init__(
        self,
        token: Optional[TokenContract],
        coordinator: CoordinatorContract,
        classifier: Optional[ErrorClassifier] = None
    ):
        self.token = token
        self.coordinator = coordinator
        self.classifier = classifier or ErrorClassifier()
        self._approved = 0

    def _require_token(self) -> TokenContract:
        if self.token is None:
            raise ValueError("No payment token configured")
        return self.token

    def approve(self, amount: int) -> TxReceipt:
        """
        Approve the coordinator to pull ``amount`` tokens.

        Raises:
            ApprovalFailed: If the approval reverts or does not mine successfully
        """
        token = self._require_token()
        try:
            receipt = token.approve(self.coordinator.address, amount)
        except RevertError as e:
            self.classifier.classify(e)
            raise ApprovalFailed(f"Token approval reverted: {e}", kind=e.kind) from e
        except TransactionError as e:
            raise ApprovalFailed(f"Token approval failed: {e}") from e

        if not receipt.succeeded:
            raise ApprovalFailed(f"Token approval {receipt.tx_hash} did not succeed")
        self._approved = amount
        logger.info(f"Approved {amount} tokens for coordinator {self.coordinator.address} in {receipt.tx_hash}")
        return receipt

    def transfer_and_call(self, sub_id: int, amount: int) -> TxReceipt:
        """
        Transfer ``amount`` tokens into the subscription.

        Raises:
            ApprovalFailed: If no successful approval covering ``amount`` was observed
            RevertError: Classified revert from the token or coordinator
        """
        token = self._require_token()
        if self._approved < amount:
            raise ApprovalFailed(
                f"Refusing transferAndCall of {amount}: approved amount is {self._approved}"
            )
        payload = encode_subscription_id(sub_id)
        try:
            receipt = token.transfer_and_call(self.coordinator.address, amount, payload)
        except RevertError as e:
            raise self.classifier.classify(e)
        self._approved -= amount
        logger.info(f"Funded subscription {sub_id} with {amount} tokens in {receipt.tx_hash}")
        return receipt

    def fund_native(self, sub_id: int, amount: int) -> TxReceipt:
        try:
            receipt = self.coordinator.fund_with_native(sub_id, amount)
        except RevertError as e:
            raise self.classifier.classify(e)
        logger.info(f"Funded subscription {sub_id} with {amount} wei native in {receipt.tx_hash}")
        return receipt

    def token_balance(self) -> Optional[int]:
        if self.token is None:
            return None
        return self.token.balance_of(self.token.ledger.sender)

    def fund(self, sub_id: int, token_amount: int = 0, native_amount: int = 0) -> FundingReceipt:
        """
        Fund a subscription, strictly one transaction after another.

        Args:
            sub_id: Subscription to fund
            token_amount: Payment token amount (approve + transferAndCall)
            native_amount: Native amount (fundSubscriptionWithNative)

        Returns:
            Summary of the transactions sent
        """
        summary = FundingReceipt(sub_id=sub_id, token_amount=token_amount, native_amount=native_amount)

        if token_amount > 0:
            balance = self.token_balance()
            logger.info(f"Token balance before funding: {balance}")
            if balance is not None and balance < token_amount:
                logger.warning(f"Token balance {balance} is below the funding amount {token_amount}")
            summary.approve_tx = self.approve(token_amount).tx_hash
            summary.transfer_tx = self.transfer_and_call(sub_id, token_amount).tx_hash

        if native_amount > 0:
            summary.native_tx = self.fund_native(sub_id, native_amount).tx_hash

        return summary
