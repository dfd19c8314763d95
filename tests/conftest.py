"""
Pytest fixtures for the VRF SDK tests.
"""
import time

import pytest
from eth_account import Account

from vrf_sdk.classifier import ErrorClassifier
from vrf_sdk.config import NetworkConfig
from vrf_sdk.contracts import ConsumerContract, CoordinatorContract, TokenContract
from vrf_sdk.ledger._rate_limited_log import reset_rate_limits

from tests.test_helpers import FakeChain, TEST_CONSUMER, TEST_COORDINATOR, TEST_PRIV_KEY, TEST_TOKEN


# Make time.sleep instantaneous so retries and poll loops don't slow the suite down
@pytest.fixture(autouse=True)
def _fast_sleep(monkeypatch):
    monkeypatch.setattr(time, "sleep", lambda *_a, **_kw: None)


@pytest.fixture(autouse=True)
def _reset_module_state():
    reset_rate_limits()
    yield
    NetworkConfig._networks_cache = None


@pytest.fixture
def account():
    """Create a deterministic test account"""
    return Account.from_key(TEST_PRIV_KEY)


@pytest.fixture
def owner(account):
    return account.address


@pytest.fixture
def chain(owner):
    return FakeChain(sender=owner)


@pytest.fixture
def coordinator(chain):
    return CoordinatorContract(chain, TEST_COORDINATOR)


@pytest.fixture
def consumer(chain):
    return ConsumerContract(chain, TEST_CONSUMER)


@pytest.fixture
def token(chain):
    return TokenContract(chain, TEST_TOKEN)


@pytest.fixture
def classifier():
    return ErrorClassifier()
