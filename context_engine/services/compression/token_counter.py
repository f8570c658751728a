"""Token accounting for session event logs."""

import asyncio
import json
import math
import zlib
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any

from ...config.models import TokenCounterConfig
from ...utils.errors import TokenOracleError
from ...utils.logger import get_logger
from .oracle import TokenOracle, build_oracle

logger = get_logger(__name__)

SOURCE_ORACLE = "oracle"
SOURCE_ESTIMATE = "estimate"


@dataclass
class TokenCount:
    """Result of counting one piece of content."""

    tokens: int
    source: str
    from_cache: bool = False


@dataclass
class UsageBreakdown:
    """Token usage expressed against the active context limit."""

    tokens: int
    limit: int
    used_percentage: float
    remaining_percentage: float
    is_near_limit: bool
    is_critical: bool
    should_compact: bool

    def to_dict(self) -> dict[str, Any]:
        return {
            "tokens": self.tokens,
            "limit": self.limit,
            "used_percentage": self.used_percentage,
            "remaining_percentage": self.remaining_percentage,
            "is_near_limit": self.is_near_limit,
            "is_critical": self.is_critical,
            "should_compact": self.should_compact,
        }


class TokenCounter:
    """Count tokens with an optional precise oracle and a ratio fallback.

    Oracle failures never reach the caller: they are logged and the
    deterministic estimate `ceil(len / chars_per_token)` is returned instead.
    """

    def __init__(
        self,
        config: TokenCounterConfig | None = None,
        oracle: TokenOracle | None = None,
    ) -> None:
        """Initialize token counter.

        Args:
            config: Token counter configuration (defaults when omitted)
            oracle: Precise oracle; built from `config.oracle` when omitted
        """
        self.config = config or TokenCounterConfig()
        self.oracle = oracle if oracle is not None else build_oracle(self.config.oracle)
        self._cache: OrderedDict[str, TokenCount] = OrderedDict()
        self._hits = 0
        self._misses = 0

    @property
    def chars_per_token(self) -> float:
        return self.config.chars_per_token

    @staticmethod
    def _to_text(content: Any) -> str:
        if content is None:
            return ""
        if isinstance(content, str):
            return content
        return json.dumps(content, ensure_ascii=False, default=str)

    @staticmethod
    def _cache_key(text: str) -> str:
        return f"{zlib.crc32(text.encode('utf-8')):08x}:{len(text)}"

    def estimate(self, content: Any) -> int:
        """Deterministic estimate: ceil(characters / chars_per_token)."""
        text = self._to_text(content)
        if not text:
            return 0
        return math.ceil(len(text) / self.config.chars_per_token)

    async def count(
        self,
        content: Any,
        use_cache: bool = True,
        force_estimate: bool = False,
    ) -> TokenCount:
        """Count tokens of content.

        Args:
            content: Serialized log text or any JSON-serializable fragment
            use_cache: Consult and fill the content cache
            force_estimate: Skip the oracle even when one is configured

        Returns:
            TokenCount with the source that produced the number
        """
        text = self._to_text(content)
        if not text:
            return TokenCount(tokens=0, source=SOURCE_ESTIMATE)

        key = self._cache_key(text)
        if use_cache and key in self._cache:
            self._hits += 1
            cached = self._cache[key]
            logger.debug("Token cache hit", extra={"tokens": cached.tokens})
            return TokenCount(tokens=cached.tokens, source=cached.source, from_cache=True)

        self._misses += 1
        result = await self._count_uncached(text, force_estimate)

        if use_cache:
            self._cache[key] = result
            while len(self._cache) > self.config.cache_max_size:
                self._cache.popitem(last=False)

        return result

    async def _count_uncached(self, text: str, force_estimate: bool) -> TokenCount:
        if self.oracle is not None and not force_estimate:
            timeout = self.config.oracle.timeout_seconds
            try:
                tokens = await asyncio.wait_for(self.oracle.count_tokens(text), timeout=timeout)
                return TokenCount(tokens=int(tokens), source=SOURCE_ORACLE)
            except asyncio.TimeoutError:
                logger.warning(
                    "Token oracle timed out, using estimate",
                    extra={"oracle": self.oracle.name, "timeout_seconds": timeout},
                )
            except TokenOracleError as e:
                logger.warning(
                    "Token oracle failed, using estimate",
                    extra={"oracle": self.oracle.name, "error": e.message},
                )
            except Exception as e:
                logger.warning(
                    "Token oracle raised unexpectedly, using estimate",
                    extra={"oracle": self.oracle.name, "error": str(e)},
                )

        return TokenCount(tokens=self.estimate(text), source=SOURCE_ESTIMATE)

    async def count_tokens(self, content: Any) -> int:
        """Shortcut returning only the token number."""
        return (await self.count(content)).tokens

    async def count_messages(self, messages: list[dict]) -> int:
        """Count tokens of chat-style messages by joining their contents."""
        parts = []
        for msg in messages:
            content = msg.get("content", "")
            parts.append(content if isinstance(content, str) else self._to_text(content))
        return await self.count_tokens("\n".join(p for p in parts if p))

    def get_context_limit(self, profile: str | None = None) -> int:
        """Context window size of a profile, falling back to the default entry."""
        limits = self.config.context_limits
        name = profile or self.config.profile
        return limits.get(name, limits["default"])

    def calculate_usage(self, tokens: int, profile: str | None = None) -> UsageBreakdown:
        """Express a token count as used/remaining percentages of the limit.

        `used_percentage` is not capped at 100; `remaining_percentage` is
        floored at 0 so the two only sum to 100 while within the limit.
        """
        limit = self.get_context_limit(profile)
        used = (tokens / limit) * 100 if limit > 0 else 100.0
        return UsageBreakdown(
            tokens=tokens,
            limit=limit,
            used_percentage=used,
            remaining_percentage=max(0.0, 100.0 - used),
            is_near_limit=used > self.config.near_limit_percent,
            is_critical=used > self.config.critical_percent,
            should_compact=used > self.config.compact_percent,
        )

    def get_cache_stats(self) -> dict[str, Any]:
        total = self._hits + self._misses
        return {
            "size": len(self._cache),
            "max_size": self.config.cache_max_size,
            "hits": self._hits,
            "misses": self._misses,
            "hit_rate": self._hits / total if total else 0.0,
        }

    def clear_cache(self) -> None:
        self._cache.clear()
        self._hits = 0
        self._misses = 0
