from unittest.mock import Mock, patch

import pytest

from services.github_service import GitHubError, RateLimitError
from services.retry import backoff_delay, call_with_rate_limit_retry


def test_returns_result_without_retry():
    func = Mock(return_value="ok")

    with patch("services.retry.time.sleep") as sleep:
        assert call_with_rate_limit_retry(func, 1, key="value") == "ok"

    func.assert_called_once_with(1, key="value")
    sleep.assert_not_called()


def test_retries_rate_limit_then_succeeds():
    func = Mock(side_effect=[RateLimitError("limited", 403), "ok"])

    with patch("services.retry.time.sleep") as sleep:
        assert call_with_rate_limit_retry(func) == "ok"

    assert func.call_count == 2
    sleep.assert_called_once()


def test_gives_up_after_max_attempts():
    func = Mock(side_effect=RateLimitError("limited", 429))

    with patch("services.retry.time.sleep") as sleep:
        with pytest.raises(RateLimitError):
            call_with_rate_limit_retry(func, max_attempts=3)

    assert func.call_count == 3
    assert sleep.call_count == 2


def test_other_errors_are_not_retried():
    func = Mock(side_effect=GitHubError("Server error", 500))

    with patch("services.retry.time.sleep") as sleep:
        with pytest.raises(GitHubError):
            call_with_rate_limit_retry(func)

    assert func.call_count == 1
    sleep.assert_not_called()


def test_retry_after_header_is_honoured():
    assert backoff_delay(1, retry_after=7) == 7


def test_retry_after_is_capped():
    assert backoff_delay(1, retry_after=3600) == 60.0


def test_backoff_grows_exponentially_with_bounded_jitter():
    first = backoff_delay(1)
    second = backoff_delay(2)

    assert 2.0 <= first <= 2.2
    assert 4.0 <= second <= 4.4
