# tests/unit/llm/test_retry.py — v1
"""Tests for llm/retry.py — error classification, backoff and with_retry."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock

import pytest

from qagate.llm.retry import LLMRetryExhausted, RetryConfig, classify_error, compute_backoff, with_retry

FAST = {
    "rate_limit": RetryConfig(max_retries=2, base_delay_s=0.0, jitter=False),
    "server_error": RetryConfig(max_retries=1, base_delay_s=0.0, jitter=False),
}


class TestClassifyError:
    @pytest.mark.parametrize("error, kind", [
        (asyncio.TimeoutError(), "timeout"),
        (RuntimeError("Request timeout"), "timeout"),
        (RuntimeError("429 Too Many Requests"), "rate_limit"),
        (RuntimeError("quota exceeded"), "rate_limit"),
        (RuntimeError("503 Service Unavailable"), "server_error"),
        (ValueError("JSON decode failed"), "parse_error"),
        (RuntimeError("token limit exceeded"), "token_limit"),
        (RuntimeError("boom"), "unknown"),
    ])
    def test_classify(self, error, kind):
        assert classify_error(error) == kind


class TestComputeBackoff:
    def test_exponential_and_capped(self):
        assert [compute_backoff(n, 1.0, 5.0) for n in range(5)] == [0.0, 1.0, 2.0, 4.0, 5.0]


class TestWithRetry:
    @pytest.mark.asyncio
    async def test_success_after_transient(self):
        fn = AsyncMock(side_effect=[RuntimeError("429 rate"), "ok"])
        assert await with_retry(fn, 1, component="auditor", retry_configs=FAST, flag=True) == "ok"
        assert fn.await_count == 2
        fn.assert_awaited_with(1, flag=True)

    @pytest.mark.asyncio
    async def test_exhausted(self):
        fn = AsyncMock(side_effect=RuntimeError("503 unavailable"))
        with pytest.raises(LLMRetryExhausted) as exc_info:
            await with_retry(fn, component="auditor", retry_configs=FAST)
        assert exc_info.value.attempts == 2
        assert exc_info.value.error_type == "server_error"

    @pytest.mark.asyncio
    async def test_unknown_error_not_retried(self):
        fn = AsyncMock(side_effect=RuntimeError("boom"))
        with pytest.raises(LLMRetryExhausted, match="unknown"):
            await with_retry(fn, component="auditor", retry_configs=FAST)
        assert fn.await_count == 1
