"""Unit tests for TokenCounter and token oracles."""

import asyncio
import json
import math
import time
from unittest.mock import AsyncMock, Mock

import httpx
import pytest
from pydantic import SecretStr

from context_engine.config.models import OracleConfig, TokenCounterConfig
from context_engine.services.compression.oracle import (
    AnthropicTokenOracle,
    TiktokenOracle,
    build_oracle,
)
from context_engine.services.compression.token_counter import TokenCounter
from context_engine.utils.errors import TokenOracleError


def _mock_oracle(**kwargs) -> Mock:
    oracle = Mock()
    oracle.name = "mock"
    oracle.count_tokens = AsyncMock(**kwargs)
    return oracle


class TestEstimate:
    """Character-ratio estimate tests."""

    def setup_method(self):
        self.counter = TokenCounter()

    def test_estimate_is_ceil_of_ratio(self):
        for text in ["a", "abcd", "abcde", "x" * 1001]:
            assert self.counter.estimate(text) == math.ceil(len(text) / 4)

    def test_empty_content_is_zero(self):
        assert self.counter.estimate("") == 0
        assert self.counter.estimate(None) == 0

    def test_structured_content_is_serialized(self):
        data = {"role": "user", "content": "hello"}
        expected = math.ceil(len(json.dumps(data, ensure_ascii=False)) / 4)
        assert self.counter.estimate(data) == expected

    def test_custom_ratio(self):
        counter = TokenCounter(TokenCounterConfig(chars_per_token=2.0))
        assert counter.estimate("abcde") == 3


class TestCount:
    """Async count, caching and oracle fallback."""

    @pytest.mark.asyncio
    async def test_count_empty(self):
        result = await TokenCounter().count("")
        assert result.tokens == 0
        assert result.from_cache is False

    @pytest.mark.asyncio
    async def test_second_call_is_cached(self):
        counter = TokenCounter()
        first = await counter.count("some content")
        second = await counter.count("some content")

        assert first.from_cache is False
        assert second.from_cache is True
        assert first.tokens == second.tokens
        stats = counter.get_cache_stats()
        assert stats["hits"] == 1
        assert stats["misses"] == 1

    @pytest.mark.asyncio
    async def test_cache_bypass(self):
        counter = TokenCounter()
        await counter.count("abc")
        result = await counter.count("abc", use_cache=False)
        assert result.from_cache is False

    @pytest.mark.asyncio
    async def test_fifo_eviction(self):
        counter = TokenCounter(TokenCounterConfig(cache_max_size=2))
        await counter.count("first")
        await counter.count("second")
        await counter.count("third")

        assert counter.get_cache_stats()["size"] == 2
        assert (await counter.count("first")).from_cache is False
        assert (await counter.count("third")).from_cache is True

    @pytest.mark.asyncio
    async def test_clear_cache(self):
        counter = TokenCounter()
        await counter.count("abc")
        counter.clear_cache()
        assert counter.get_cache_stats() == {
            "size": 0,
            "max_size": 1000,
            "hits": 0,
            "misses": 0,
            "hit_rate": 0.0,
        }

    @pytest.mark.asyncio
    async def test_oracle_used_when_available(self):
        oracle = _mock_oracle(return_value=42)
        counter = TokenCounter(oracle=oracle)

        result = await counter.count("hello world")

        assert result.tokens == 42
        assert result.source == "oracle"
        oracle.count_tokens.assert_awaited_once_with("hello world")

    @pytest.mark.asyncio
    async def test_oracle_failure_falls_back(self):
        counter = TokenCounter(oracle=_mock_oracle(side_effect=TokenOracleError("unavailable")))
        result = await counter.count("x" * 40)
        assert result.tokens == 10
        assert result.source == "estimate"

    @pytest.mark.asyncio
    async def test_unexpected_oracle_error_falls_back(self):
        counter = TokenCounter(oracle=_mock_oracle(side_effect=RuntimeError("boom")))
        result = await counter.count("x" * 8)
        assert result.tokens == 2

    @pytest.mark.asyncio
    async def test_oracle_timeout_falls_back(self):
        async def slow(text: str) -> int:
            await asyncio.sleep(5)
            return 1

        oracle = Mock()
        oracle.name = "slow"
        oracle.count_tokens = slow
        config = TokenCounterConfig(oracle=OracleConfig(timeout_seconds=0.05))
        counter = TokenCounter(config, oracle=oracle)

        result = await counter.count("x" * 12)

        assert result.tokens == 3
        assert result.source == "estimate"

    @pytest.mark.asyncio
    async def test_slow_local_encoder_times_out(self):
        def slow_encode(text, **kwargs):
            time.sleep(0.5)
            return [1]

        oracle = TiktokenOracle()
        oracle._encoding = Mock(encode=Mock(side_effect=slow_encode))
        config = TokenCounterConfig(oracle=OracleConfig(timeout_seconds=0.05))
        counter = TokenCounter(config, oracle=oracle)

        started = time.perf_counter()
        result = await counter.count("x" * 12)

        assert result.source == "estimate"
        assert result.tokens == 3
        assert time.perf_counter() - started < 0.4

    @pytest.mark.asyncio
    async def test_local_encoder_counts_off_loop(self):
        oracle = TiktokenOracle()
        oracle._encoding = Mock(encode=Mock(return_value=[1, 2, 3, 4]))

        assert await oracle.count_tokens("four tokens here ok") == 4
        oracle._encoding.encode.assert_called_once_with("four tokens here ok", disallowed_special=())

    @pytest.mark.asyncio
    async def test_force_estimate_skips_oracle(self):
        oracle = _mock_oracle(return_value=99)
        counter = TokenCounter(oracle=oracle)
        result = await counter.count("abcd", force_estimate=True)
        assert result.tokens == 1
        oracle.count_tokens.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_count_messages(self):
        counter = TokenCounter()
        messages = [
            {"role": "user", "content": "Hello"},
            {"role": "assistant", "content": "Hi there!"},
        ]
        total = await counter.count_messages(messages)
        single = await counter.count_messages([messages[0]])
        assert total > single


class TestUsage:
    """Context limit and percentage breakdown."""

    def setup_method(self):
        self.counter = TokenCounter()

    def test_default_limit_for_unknown_profile(self):
        assert self.counter.get_context_limit("unknown-model") == 200000

    def test_breakpoints(self):
        near = self.counter.calculate_usage(130000)
        assert near.is_near_limit is True
        assert near.is_critical is False

        critical = self.counter.calculate_usage(185000)
        assert critical.is_critical is True
        assert critical.should_compact is False

        compact = self.counter.calculate_usage(195000)
        assert compact.should_compact is True

    def test_percentages_sum_to_100_within_limit(self):
        usage = self.counter.calculate_usage(50000)
        assert usage.used_percentage == pytest.approx(25.0)
        assert usage.used_percentage + usage.remaining_percentage == pytest.approx(100.0)

    def test_over_limit(self):
        usage = self.counter.calculate_usage(250000)
        assert usage.used_percentage == pytest.approx(125.0)
        assert usage.remaining_percentage == 0.0

    def test_monotonic(self):
        values = [self.counter.calculate_usage(t).used_percentage for t in range(0, 300000, 7919)]
        assert values == sorted(values)


class TestOracles:
    """Oracle construction and the HTTP oracle."""

    def test_build_none(self):
        assert build_oracle(OracleConfig()) is None

    def test_build_anthropic_without_key(self):
        assert build_oracle(OracleConfig(provider="anthropic")) is None

    def test_build_anthropic(self):
        oracle = build_oracle(OracleConfig(provider="anthropic", api_key=SecretStr("k")))
        assert isinstance(oracle, AnthropicTokenOracle)
        assert oracle.api_key == "k"

    def test_build_tiktoken_is_lazy(self):
        oracle = build_oracle(OracleConfig(provider="tiktoken"))
        assert isinstance(oracle, TiktokenOracle)
        assert oracle._encoding is None

    @pytest.mark.asyncio
    async def test_anthropic_oracle_success(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["key"] = request.headers["x-api-key"]
            return httpx.Response(200, json={"input_tokens": 17})

        oracle = AnthropicTokenOracle(
            api_key="secret",
            model="claude-3-5-sonnet-20241022",
            transport=httpx.MockTransport(handler),
        )

        assert await oracle.count_tokens("hello") == 17
        assert seen["url"].endswith("/v1/messages/count_tokens")
        assert seen["key"] == "secret"

    @pytest.mark.asyncio
    async def test_anthropic_oracle_http_error(self):
        oracle = AnthropicTokenOracle(
            api_key="secret",
            model="m",
            transport=httpx.MockTransport(lambda request: httpx.Response(429)),
        )
        with pytest.raises(TokenOracleError):
            await oracle.count_tokens("hello")

    @pytest.mark.asyncio
    async def test_anthropic_oracle_failure_is_contained_by_counter(self):
        oracle = AnthropicTokenOracle(
            api_key="secret",
            model="m",
            transport=httpx.MockTransport(lambda request: httpx.Response(500)),
        )
        counter = TokenCounter(oracle=oracle)
        result = await counter.count("x" * 20)
        assert result.tokens == 5
        assert result.source == "estimate"
