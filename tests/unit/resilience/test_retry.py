"""Unit tests for retry logic"""
import pytest
import httpx
from unittest.mock import patch

from taskquest.exceptions import ConcurrencyConflict, ValidationError
from taskquest.resilience.retry import (
    retry_with_backoff,
    is_retryable_error,
    calculate_backoff,
)


@pytest.fixture(autouse=True)
def no_backoff():
    """Skip real backoff delays"""
    with patch("taskquest.resilience.retry.calculate_backoff", return_value=0.0) as backoff:
        yield backoff


def test_is_retryable_error_timeout():
    """Test that timeout errors are retryable"""
    assert is_retryable_error(httpx.TimeoutException("Timeout")) == True
    assert is_retryable_error(httpx.ConnectTimeout("Connect timeout")) == True
    assert is_retryable_error(httpx.ReadTimeout("Read timeout")) == True


def test_is_retryable_error_http_status():
    """Test that certain HTTP status codes are retryable"""
    request = httpx.Request("GET", "https://example.com")
    for code in [429, 500, 502, 503, 504]:
        error = httpx.HTTPStatusError("Error", request=request, response=httpx.Response(code, request=request))
        assert is_retryable_error(error) == True, f"HTTP {code} should be retryable"

    for code in [400, 401, 403, 404, 422]:
        error = httpx.HTTPStatusError("Error", request=request, response=httpx.Response(code, request=request))
        assert is_retryable_error(error) == False, f"HTTP {code} should not be retryable"


def test_version_conflicts_are_retryable():
    assert is_retryable_error(ConcurrencyConflict("stale")) == True


def test_is_retryable_error_non_retryable():
    """Test that non-retryable errors are identified correctly"""
    assert is_retryable_error(ValueError("Bad value")) == False
    assert is_retryable_error(ValidationError("already completed")) == False


def test_calculate_backoff():
    """Test exponential backoff calculation"""
    delay_0 = calculate_backoff(0)
    assert 0.9 <= delay_0 <= 1.1  # 1s ± 10% jitter

    delay_2 = calculate_backoff(2)
    assert 3.6 <= delay_2 <= 4.4  # 4s ± 10% jitter


def test_calculate_backoff_custom_base():
    delay = calculate_backoff(1, base_delay=0.05)
    assert 0.09 <= delay <= 0.11


def test_calculate_backoff_max_delay():
    """Test that backoff respects max delay"""
    assert calculate_backoff(20) <= 33.0  # 30s + 10% jitter


@pytest.mark.asyncio
async def test_retry_with_backoff_success_first_try(no_backoff):
    """Test that function succeeds on first try"""
    call_count = 0

    async def successful_function():
        nonlocal call_count
        call_count += 1
        return "success"

    result = await retry_with_backoff(successful_function, max_retries=3)

    assert result == "success"
    assert call_count == 1
    no_backoff.assert_not_called()


@pytest.mark.asyncio
async def test_retry_passes_arguments():
    async def add(a, b, scale=1):
        return (a + b) * scale

    assert await retry_with_backoff(add, 1, 2, scale=3, max_retries=1) == 9


@pytest.mark.asyncio
async def test_retry_with_backoff_success_after_conflicts():
    """Succeeds once the conflict clears"""
    attempt = 0

    async def contended_write():
        nonlocal attempt
        attempt += 1
        if attempt < 3:
            raise ConcurrencyConflict("stale version")
        return "saved"

    result = await retry_with_backoff(contended_write, max_retries=3, base_delay=0.05)

    assert result == "saved"
    assert attempt == 3


@pytest.mark.asyncio
async def test_retry_with_backoff_exhausted():
    """Test that retries are exhausted for persistent failures"""
    attempt = 0

    async def always_fails():
        nonlocal attempt
        attempt += 1
        raise httpx.TimeoutException("Always fails")

    with pytest.raises(httpx.TimeoutException, match="Always fails"):
        await retry_with_backoff(always_fails, max_retries=3)

    # initial + 3 retries
    assert attempt == 4


@pytest.mark.asyncio
async def test_retry_with_backoff_non_retryable_error():
    """Test that non-retryable errors are not retried"""
    attempt = 0

    async def non_retryable_function():
        nonlocal attempt
        attempt += 1
        raise ValueError("Non-retryable error")

    with pytest.raises(ValueError, match="Non-retryable error"):
        await retry_with_backoff(non_retryable_function, max_retries=3)

    assert attempt == 1


@pytest.mark.asyncio
async def test_zero_retries_runs_once():
    attempt = 0

    async def conflicted():
        nonlocal attempt
        attempt += 1
        raise ConcurrencyConflict("stale")

    with pytest.raises(ConcurrencyConflict):
        await retry_with_backoff(conflicted, max_retries=0)

    assert attempt == 1
