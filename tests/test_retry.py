"""Tests for the remote call retry policy."""

import pytest
from unittest.mock import MagicMock

from catalog_sync.services.retry import RetryPolicy, is_transient
from catalog_sync.utils.config import APIConfig
from catalog_sync.utils.exceptions import (
    PersistenceError,
    RemoteErrorKind,
    RemotePlatformError,
)


def remote_error(kind, retry_after=None):
    return RemotePlatformError(f"remote {kind.value}", kind=kind, retry_after=retry_after)


class TestIsTransient:
    """Tests for is_transient."""

    @pytest.mark.parametrize("kind", [RemoteErrorKind.RATE_LIMITED, RemoteErrorKind.UNAVAILABLE])
    def test_retryable_kinds(self, kind):
        assert is_transient(remote_error(kind)) is True

    @pytest.mark.parametrize("kind", [
        RemoteErrorKind.NOT_FOUND, RemoteErrorKind.VALIDATION, RemoteErrorKind.UNAUTHORIZED,
    ])
    def test_permanent_kinds(self, kind):
        assert is_transient(remote_error(kind)) is False

    def test_local_failures_never_retried(self):
        assert is_transient(PersistenceError("disk full")) is False


class TestRetryPolicy:
    """Tests for RetryPolicy.call."""

    def test_success_first_try(self):
        """Test a successful call is not repeated."""
        fn = MagicMock(return_value="ok")
        policy = RetryPolicy(sleep=lambda s: None)

        assert policy.call(fn, 1, key="v") == "ok"
        fn.assert_called_once_with(1, key="v")

    def test_retries_transient_then_succeeds(self):
        """Test unavailable failures are retried with exponential backoff."""
        waits = []
        fn = MagicMock(side_effect=[
            remote_error(RemoteErrorKind.UNAVAILABLE),
            remote_error(RemoteErrorKind.UNAVAILABLE),
            "ok",
        ])
        policy = RetryPolicy(max_attempts=3, base_delay=1, max_delay=30, sleep=waits.append)

        assert policy.call(fn) == "ok"
        assert fn.call_count == 3
        assert len(waits) == 2
        assert waits[1] >= waits[0]

    def test_gives_up_after_max_attempts(self):
        """Test the last failure surfaces when attempts run out."""
        fn = MagicMock(side_effect=remote_error(RemoteErrorKind.RATE_LIMITED))
        policy = RetryPolicy(max_attempts=3, sleep=lambda s: None)

        with pytest.raises(RemotePlatformError) as exc_info:
            policy.call(fn)

        assert exc_info.value.error_kind == RemoteErrorKind.RATE_LIMITED
        assert fn.call_count == 3

    def test_permanent_failure_not_retried(self):
        """Test validation failures surface immediately."""
        fn = MagicMock(side_effect=remote_error(RemoteErrorKind.VALIDATION))
        policy = RetryPolicy(max_attempts=5, sleep=lambda s: None)

        with pytest.raises(RemotePlatformError):
            policy.call(fn)

        assert fn.call_count == 1

    def test_honors_retry_after(self):
        """Test a Retry-After hint raises the wait."""
        waits = []
        fn = MagicMock(side_effect=[remote_error(RemoteErrorKind.RATE_LIMITED, retry_after=7), "ok"])
        policy = RetryPolicy(max_attempts=2, base_delay=1, max_delay=30, sleep=waits.append)

        policy.call(fn)

        assert waits == [7.0]

    def test_retry_after_capped(self):
        """Test an excessive Retry-After is capped at the maximum delay."""
        waits = []
        fn = MagicMock(side_effect=[remote_error(RemoteErrorKind.RATE_LIMITED, retry_after=600), "ok"])
        policy = RetryPolicy(max_attempts=2, base_delay=1, max_delay=30, sleep=waits.append)

        policy.call(fn)

        assert waits == [30.0]

    def test_from_config(self):
        """Test the policy reads the api section."""
        config = APIConfig(max_retries=4, retry_delay=2, max_retry_delay=10, exponential_backoff=False)

        policy = RetryPolicy.from_config(config)

        assert policy.max_attempts == 4
        assert policy.base_delay == 2
        assert policy.max_delay == 10
        assert policy.exponential is False
