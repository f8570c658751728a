"""Precise token-counting oracles.

An oracle is optional. Any failure raises TokenOracleError, which the
TokenCounter catches and answers with its character-ratio estimate.
"""

import asyncio
from typing import Protocol, runtime_checkable

import httpx
import tiktoken

from ...config.models import OracleConfig
from ...utils.errors import TokenOracleError
from ...utils.logger import get_logger

logger = get_logger(__name__)

ANTHROPIC_API_VERSION = "2023-06-01"


@runtime_checkable
class TokenOracle(Protocol):
    """Anything that can count tokens of a text precisely."""

    name: str

    async def count_tokens(self, text: str) -> int:
        ...


class TiktokenOracle:
    """Local BPE oracle using tiktoken.

    The encoding is loaded on first use so that constructing the oracle never
    touches the network. Loading and encoding run in a worker thread so the
    counter's timeout can interrupt a slow count.
    """

    name = "tiktoken"

    def __init__(self, encoding_name: str = "cl100k_base") -> None:
        self.encoding_name = encoding_name
        self._encoding: tiktoken.Encoding | None = None

    @property
    def encoding(self) -> tiktoken.Encoding:
        if self._encoding is None:
            self._encoding = tiktoken.get_encoding(self.encoding_name)
        return self._encoding

    def _encode_count(self, text: str) -> int:
        return len(self.encoding.encode(text, disallowed_special=()))

    async def count_tokens(self, text: str) -> int:
        if not text:
            return 0
        try:
            return await asyncio.to_thread(self._encode_count, text)
        except Exception as e:
            raise TokenOracleError(f"tiktoken encoding failed: {e}") from e


class AnthropicTokenOracle:
    """Remote oracle calling the Anthropic `count_tokens` endpoint."""

    name = "anthropic"

    def __init__(
        self,
        api_key: str,
        model: str,
        base_url: str = "https://api.anthropic.com",
        timeout: float = 5.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the remote oracle.

        Args:
            api_key: Anthropic API key
            model: Model id the count is computed for
            base_url: API base URL
            timeout: Request timeout in seconds
            transport: Optional httpx transport (used by tests)
        """
        self.api_key = api_key
        self.model = model
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport

    async def count_tokens(self, text: str) -> int:
        url = f"{self.base_url}/v1/messages/count_tokens"
        headers = {
            "x-api-key": self.api_key,
            "anthropic-version": ANTHROPIC_API_VERSION,
            "content-type": "application/json",
        }
        body = {
            "model": self.model,
            "messages": [{"role": "user", "content": text or " "}],
        }

        try:
            async with httpx.AsyncClient(
                timeout=httpx.Timeout(self.timeout),
                transport=self._transport,
            ) as client:
                response = await client.post(url, headers=headers, json=body)
                response.raise_for_status()
                data = response.json()
        except httpx.TimeoutException as e:
            raise TokenOracleError("Token oracle timed out", timeout_seconds=self.timeout) from e
        except httpx.HTTPError as e:
            raise TokenOracleError(f"Token oracle request failed: {e}") from e
        except ValueError as e:
            raise TokenOracleError(f"Token oracle returned invalid JSON: {e}") from e

        tokens = data.get("input_tokens")
        if not isinstance(tokens, int) or tokens < 0:
            raise TokenOracleError(f"Token oracle returned no input_tokens: {data}")
        return tokens


def build_oracle(config: OracleConfig) -> TokenOracle | None:
    """Create the configured oracle, or None when estimation only is wanted."""
    if config.provider == "tiktoken":
        return TiktokenOracle(config.encoding)

    if config.provider == "anthropic":
        if config.api_key is None:
            logger.warning(
                "Anthropic token oracle configured without api_key, using estimates",
                extra={"model": config.model},
            )
            return None
        return AnthropicTokenOracle(
            api_key=config.api_key.get_secret_value(),
            model=config.model,
            base_url=config.base_url,
            timeout=config.timeout_seconds,
        )

    return None
