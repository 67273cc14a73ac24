"""Tests for ticket_pilot.utils.retry and ticket_pilot.utils.logging_config."""

from unittest.mock import AsyncMock, patch

import pytest
import structlog

from ticket_pilot.utils.logging_config import configure_logging, get_logger
from ticket_pilot.utils.retry import async_retry


class TestAsyncRetry:
    """Test async_retry decorator."""

    @pytest.mark.asyncio
    async def test_successful_call_no_retry(self):
        """Test successful call does not retry."""
        call_count = 0

        @async_retry(max_attempts=3)
        async def successful_func():
            nonlocal call_count
            call_count += 1
            return "success"

        assert await successful_func() == "success"
        assert call_count == 1

    @pytest.mark.asyncio
    async def test_retry_with_exponential_backoff(self):
        """Test retries sleep backoff_factor ** attempt seconds."""
        call_count = 0

        @async_retry(max_attempts=3, backoff_factor=2.0, exceptions=(ConnectionError,))
        async def flaky():
            nonlocal call_count
            call_count += 1
            if call_count < 3:
                raise ConnectionError("reset")
            return "ok"

        with patch("ticket_pilot.utils.retry.asyncio.sleep", new_callable=AsyncMock) as sleep:
            assert await flaky() == "ok"

        assert [c.args[0] for c in sleep.await_args_list] == [2.0, 4.0]

    @pytest.mark.asyncio
    async def test_max_attempts_exhausted(self):
        """Test the last exception propagates after max attempts."""

        @async_retry(max_attempts=2, exceptions=(ValueError,))
        async def always_fails():
            raise ValueError("Persistent failure")

        with patch("ticket_pilot.utils.retry.asyncio.sleep", new_callable=AsyncMock):
            with pytest.raises(ValueError, match="Persistent failure"):
                await always_fails()

    @pytest.mark.asyncio
    async def test_other_exceptions_propagate_immediately(self):
        """Test exceptions outside the retry list are not retried."""
        call_count = 0

        @async_retry(max_attempts=3, exceptions=(ValueError,))
        async def wrong_kind():
            nonlocal call_count
            call_count += 1
            raise KeyError("nope")

        with pytest.raises(KeyError):
            await wrong_kind()

        assert call_count == 1

    def test_preserves_function_metadata(self):
        """Test functools.wraps keeps the name."""

        @async_retry()
        async def fetch_item():
            """Fetch."""

        assert fetch_item.__name__ == "fetch_item"
        assert fetch_item.__doc__ == "Fetch."


class TestLoggingConfig:
    """Test structlog configuration."""

    @pytest.fixture(autouse=True)
    def restore_structlog(self):
        yield
        structlog.reset_defaults()

    @pytest.mark.parametrize("json_logs", [True, False])
    def test_configure_logging_renderer(self, json_logs):
        configure_logging("WARNING", json_logs=json_logs)

        processors = structlog.get_config()["processors"]
        expected = structlog.processors.JSONRenderer if json_logs else structlog.dev.ConsoleRenderer
        assert isinstance(processors[-1], expected)

    def test_get_logger(self):
        assert get_logger(__name__) is not None
