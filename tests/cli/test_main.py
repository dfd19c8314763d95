"""
Tests for the vrf CLI.
"""
from unittest.mock import MagicMock, patch

import pytest
import typer
from typer.testing import CliRunner

from vrf_cli.main import app, parse_int, should_use_color
from vrf_sdk.events import RequestSubmitted
from vrf_sdk.exceptions import SubscriptionResolutionFailed
from vrf_sdk.models import (
    LifecycleResult,
    RandomnessRequest,
    Subscription,
    SubscriptionResolution,
    WatchResult,
    WatchState,
)
from vrf_sdk.watcher import WatcherSettings

runner = CliRunner()

CONSUMER = "0x2345678901234567890123456789012345678901"
KEY = "0x" + "11" * 32


def lifecycle(state=WatchState.FULFILLED, verified=True):
    return LifecycleResult(
        subscription=SubscriptionResolution(sub_id=7, is_new=True, strategy="event-diff", verified=verified),
        request=RandomnessRequest(
            request_id=42, sub_id=7, num_words=1, confirmations=3, callback_gas_limit=100000,
            tx_hash="0x" + "ab" * 32, consumer=CONSUMER,
        ),
        watch=WatchResult(state=state, request_id=42, ticks=3, random_words=[99]),
    )


@pytest.fixture
def client():
    mock_client = MagicMock()
    mock_client.tx_url.side_effect = lambda h: f"https://explorer/tx/{h}"
    mock_client.watcher_settings = WatcherSettings()
    with patch("vrf_cli.main.build_client", return_value=mock_client) as build:
        mock_client.build = build
        yield mock_client


def test_parse_int():
    assert parse_int("0x2a") == 42
    assert parse_int("42") == 42
    with pytest.raises(typer.BadParameter):
        parse_int("forty-two")


def test_should_use_color():
    with patch("sys.stdout.isatty", return_value=False):
        assert should_use_color() is False
    with patch("sys.stdout.isatty", return_value=True):
        assert should_use_color() is True


def test_request_runs_lifecycle(client):
    client.request_randomness.return_value = lifecycle()

    result = runner.invoke(app, [
        "request", "--consumer", CONSUMER, "--private-key", KEY, "--subid", "0x7", "--numwords", "2",
    ])

    assert result.exit_code == 0, result.output
    assert "Subscription: 7 (strategy=event-diff, new=True)" in result.output
    assert "Request ID: 42" in result.output
    assert "Random words: 99" in result.output
    kwargs = client.request_randomness.call_args.kwargs
    assert kwargs["sub_id"] == 7
    assert kwargs["num_words"] == 2


def test_request_warns_on_unverified_subscription(client):
    client.request_randomness.return_value = lifecycle(verified=False)

    result = runner.invoke(app, ["request", "--consumer", CONSUMER, "--private-key", KEY])

    assert "could not be verified" in result.output


def test_request_timeout_is_not_an_error(client):
    client.request_randomness.return_value = lifecycle(state=WatchState.TIMED_OUT)

    result = runner.invoke(app, ["request", "--consumer", CONSUMER, "--private-key", KEY])

    assert result.exit_code == 0
    assert "vrf watch 42" in result.output


def test_request_requires_private_key(client, monkeypatch):
    monkeypatch.delenv("PRIVATE_KEY", raising=False)

    result = runner.invoke(app, ["request", "--consumer", CONSUMER])

    assert result.exit_code == 1
    assert "private key is required" in result.output
    client.request_randomness.assert_not_called()


def test_request_sdk_error_exits_nonzero(client):
    client.request_randomness.side_effect = SubscriptionResolutionFailed("nothing owned")

    result = runner.invoke(app, ["request", "--consumer", CONSUMER, "--private-key", KEY])

    assert result.exit_code == 1
    assert "nothing owned" in result.output


def test_watch_applies_overrides(client):
    client.watch.return_value = WatchResult(state=WatchState.FULFILLED, request_id=42, ticks=1, payment=5)

    result = runner.invoke(app, ["watch", "0x2a", "--timeout", "10", "--interval", "2"])

    assert result.exit_code == 0, result.output
    client.watch.assert_called_once_with(42)
    assert client.watcher_settings.timeout == 10
    assert client.watcher_settings.interval == 2
    assert "Payment: 5" in result.output


def test_watch_failure_exits_nonzero(client):
    client.watch.return_value = WatchResult(
        state=WatchState.FAILED, request_id=42, error="All probes unsupported: status"
    )

    result = runner.invoke(app, ["watch", "42"])

    assert result.exit_code == 1
    assert "All probes unsupported" in result.output


def test_watch_rejects_bad_request_id(client):
    result = runner.invoke(app, ["watch", "not-a-number"])
    assert result.exit_code != 0
    client.watch.assert_not_called()


def test_commitment(client):
    client.commitment.return_value = b"\x01" * 32
    client.find_request_events.return_value = [
        RequestSubmitted(request_id=42, source="coordinator:RandomWordsRequested", sub_id=7)
    ]

    result = runner.invoke(app, ["commitment", "42", "--lookback", "50"])

    assert result.exit_code == 0, result.output
    assert "(pending)" in result.output
    assert "Requested via coordinator:RandomWordsRequested" in result.output
    client.find_request_events.assert_called_once_with(42, lookback=50)


def test_commitment_cleared_and_no_events(client):
    client.commitment.return_value = b"\x00" * 32
    client.find_request_events.return_value = []

    result = runner.invoke(app, ["commitment", "42"])

    assert "Commitment: none" in result.output
    assert "No request event found in the last 1000 blocks" in result.output


def test_subscription_by_id(client):
    client.get_subscription.return_value = Subscription(
        sub_id=7, owner="0x" + "99" * 20, balance=10, req_count=2, consumers=[CONSUMER]
    )

    result = runner.invoke(app, ["subscription", "--subid", "7"])

    assert result.exit_code == 0, result.output
    assert "Subscription 7" in result.output
    assert CONSUMER in result.output
    client.resolve_subscription.assert_not_called()


def test_subscription_resolution_needs_key(client, monkeypatch):
    monkeypatch.delenv("PRIVATE_KEY", raising=False)

    result = runner.invoke(app, ["subscription"])

    assert result.exit_code == 1
    client.resolve_subscription.assert_not_called()


def test_subscription_resolves_for_signer(client):
    client.resolve_subscription.return_value = SubscriptionResolution(sub_id=3, is_new=False, strategy="linear-probe")
    client.get_subscription.return_value = Subscription(sub_id=3, owner="0x" + "11" * 20)

    result = runner.invoke(app, ["subscription", "--private-key", KEY])

    assert result.exit_code == 0, result.output
    assert "Resolved subscription 3 via linear-probe" in result.output
    assert "consumers: -" in result.output
