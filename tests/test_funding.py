"""
Tests for subscription funding.
"""
import pytest
from eth_abi import decode
from hypothesis import given, strategies as st

from vrf_sdk.exceptions import ApprovalFailed, RevertError, RevertKind
from vrf_sdk.funding import FundingManager, encode_subscription_id

from tests.test_helpers import INSUFFICIENT_BALANCE, NON_EXISTENT_SUBSCRIPTION


@pytest.fixture
def manager(token, coordinator):
    return FundingManager(token, coordinator)


def test_fund_sends_approve_before_transfer(chain, manager, owner):
    chain.add_subscription(owner)

    summary = manager.fund(1, token_amount=5 * 10 ** 18)

    assert [name for name, _ in chain.sent] == ["approve", "transferAndCall"]
    assert chain.subscriptions[1]["balance"] == 5 * 10 ** 18
    assert summary.approve_tx and summary.transfer_tx
    assert summary.native_tx is None


def test_transfer_refused_without_observed_approval(chain, manager, owner):
    chain.add_subscription(owner)

    with pytest.raises(ApprovalFailed):
        manager.transfer_and_call(1, 100)

    assert chain.sent == []


def test_transfer_refused_above_approved_amount(chain, manager, owner):
    chain.add_subscription(owner)
    manager.approve(100)

    with pytest.raises(ApprovalFailed):
        manager.transfer_and_call(1, 101)

    assert [name for name, _ in chain.sent] == ["approve"]


def test_approval_revert_is_classified(chain, manager, owner):
    chain.add_subscription(owner)
    chain.approve_revert = INSUFFICIENT_BALANCE

    with pytest.raises(ApprovalFailed) as exc_info:
        manager.fund(1, token_amount=10)

    assert exc_info.value.kind == RevertKind.INSUFFICIENT_BALANCE
    assert chain.sent == []


def test_transfer_revert_surfaces_classified(chain, manager):
    # Subscription 3 does not exist; the coordinator rejects the transfer
    manager.approve(10)

    with pytest.raises(RevertError) as exc_info:
        manager.transfer_and_call(3, 10)

    assert exc_info.value.kind == RevertKind.NON_EXISTENT_SUBSCRIPTION


def test_fund_native(chain, manager, owner):
    chain.add_subscription(owner)

    summary = manager.fund(1, native_amount=777)

    assert chain.subscriptions[1]["native_balance"] == 777
    assert summary.native_tx is not None
    assert [name for name, _ in chain.sent] == ["fundSubscriptionWithNative"]


def test_fund_native_missing_subscription(manager):
    with pytest.raises(RevertError) as exc_info:
        manager.fund_native(9, 1)
    assert exc_info.value.data == NON_EXISTENT_SUBSCRIPTION
    assert exc_info.value.kind == RevertKind.NON_EXISTENT_SUBSCRIPTION


def test_token_funding_requires_token(coordinator):
    manager = FundingManager(None, coordinator)
    with pytest.raises(ValueError):
        manager.approve(1)
    assert manager.token_balance() is None


def test_low_balance_only_warns(chain, manager, owner, caplog):
    chain.add_subscription(owner)
    chain.balances[owner.lower()] = 5

    with caplog.at_level("WARNING"):
        with pytest.raises(RevertError):
            manager.fund(1, token_amount=10)

    assert "below the funding amount" in caplog.text


@given(st.integers(min_value=0, max_value=2 ** 256 - 1))
def test_subscription_id_payload_decodes_to_same_id(sub_id):
    payload = encode_subscription_id(sub_id)
    assert len(payload) == 32
    assert decode(["uint256"], payload)[0] == sub_id
    if sub_id < 2 ** 64:
        assert decode(["uint64"], payload)[0] == sub_id
