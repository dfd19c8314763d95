"""
Tests for the shared rate-limited logging implementation.
"""
from unittest.mock import MagicMock, patch

from cachetools import TTLCache

from vrf_sdk.ledger._rate_limited_log import rate_limited_log, reset_rate_limits


class TestRateLimitedLog:
    """Tests for the rate-limited logging implementation."""

    def test_repeated_message_suppressed(self):
        mock_logger = MagicMock()

        assert rate_limited_log("Endpoint down", logger_instance=mock_logger) is True
        assert rate_limited_log("Endpoint down", logger_instance=mock_logger) is False

        mock_logger.warning.assert_called_once_with("Endpoint down")

    def test_level_and_message_are_part_of_the_key(self):
        mock_logger = MagicMock()

        rate_limited_log("Endpoint down", logger_instance=mock_logger)
        rate_limited_log("Endpoint down", level="error", logger_instance=mock_logger)
        rate_limited_log("Endpoint slow", logger_instance=mock_logger)

        mock_logger.error.assert_called_once_with("Endpoint down")
        assert mock_logger.warning.call_count == 2

    def test_reset_forgets_suppressed_messages(self):
        mock_logger = MagicMock()
        rate_limited_log("Endpoint down", logger_instance=mock_logger)

        reset_rate_limits()

        assert rate_limited_log("Endpoint down", logger_instance=mock_logger) is True
        assert mock_logger.warning.call_count == 2

    def test_expired_entries_log_again(self):
        mock_logger = MagicMock()
        clock = [0.0]

        cache = TTLCache(maxsize=8, ttl=10, timer=lambda: clock[0])

        with patch("vrf_sdk.ledger._rate_limited_log._log_caches", {10: cache}):
            rate_limited_log("Probe timeout", interval=10, logger_instance=mock_logger)
            assert not rate_limited_log("Probe timeout", interval=10, logger_instance=mock_logger)
            clock[0] = 11.0
            assert rate_limited_log("Probe timeout", interval=10, logger_instance=mock_logger)

        assert mock_logger.warning.call_count == 2

    def test_unknown_level_falls_back_to_warning(self):
        mock_logger = MagicMock(spec=["warning"])
        rate_limited_log("Odd level", level="verbose", logger_instance=mock_logger)
        mock_logger.warning.assert_called_once_with("Odd level")
