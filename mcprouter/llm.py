"""Oracle backends — prompt in, text out, via OpenAI or Anthropic."""
import logging
from abc import ABC, abstractmethod
from typing import Optional

import httpx
from openai import AsyncOpenAI, OpenAIError

from .config import Settings, settings as default_settings
from .errors import OracleUnavailable

logger = logging.getLogger(__name__)

ANTHROPIC_VERSION = "2023-06-01"


class Oracle(ABC):
    """Black-box text generator. Hard failures raise OracleUnavailable."""

    name = "oracle"

    @abstractmethod
    async def generate(self, prompt: str) -> str:
        ...


class OpenAIOracle(Oracle):
    name = "openai"

    def __init__(self, api_key: str, model: str, base_url: Optional[str] = None,
                 timeout: float = 60.0, client: Optional[AsyncOpenAI] = None):
        if not api_key and client is None:
            raise OracleUnavailable("OpenAI API key not set")
        self.model = model
        self._client = client or AsyncOpenAI(api_key=api_key, base_url=base_url or None, timeout=timeout)

    async def generate(self, prompt: str) -> str:
        try:
            response = await self._client.chat.completions.create(
                model=self.model,
                messages=[{"role": "user", "content": prompt}],
                temperature=0.7,
            )
        except OpenAIError as e:
            logger.error(f"OpenAI request failed: {type(e).__name__}: {e}")
            raise OracleUnavailable(f"OpenAI request failed: {e}") from e

        try:
            content = response.choices[0].message.content
        except (AttributeError, IndexError) as e:
            raise OracleUnavailable("Malformed OpenAI response") from e
        raw = (content or "").strip()
        logger.info(f"OpenAI raw: {raw[:200]}")
        return raw


class AnthropicOracle(Oracle):
    name = "anthropic"

    def __init__(self, api_key: str, model: str, base_url: str = "https://api.anthropic.com",
                 max_tokens: int = 2048, timeout: float = 60.0,
                 client: Optional[httpx.AsyncClient] = None):
        if not api_key:
            raise OracleUnavailable("Anthropic API key not set")
        self.api_key = api_key
        self.model = model
        self.base_url = base_url.rstrip("/")
        self.max_tokens = max_tokens
        self.timeout = timeout
        self._client = client

    async def generate(self, prompt: str) -> str:
        payload = {
            "model": self.model,
            "max_tokens": self.max_tokens,
            "messages": [{"role": "user", "content": prompt}],
        }
        headers = {
            "x-api-key": self.api_key,
            "anthropic-version": ANTHROPIC_VERSION,
            "content-type": "application/json",
        }
        url = f"{self.base_url}/v1/messages"
        try:
            if self._client is not None:
                resp = await self._client.post(url, json=payload, headers=headers, timeout=self.timeout)
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    resp = await client.post(url, json=payload, headers=headers)
            resp.raise_for_status()
            data = resp.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"Anthropic request failed: {type(e).__name__}: {e}")
            raise OracleUnavailable(f"Anthropic request failed: {e}") from e

        blocks = data.get("content") if isinstance(data, dict) else None
        if not isinstance(blocks, list):
            raise OracleUnavailable("Malformed Anthropic response")
        raw = "".join(b.get("text", "") for b in blocks if isinstance(b, dict) and b.get("type") == "text").strip()
        logger.info(f"Anthropic raw: {raw[:200]}")
        return raw


def create_oracle(config: Optional[Settings] = None) -> Oracle:
    """Build the oracle named by ``config.default_llm_provider``."""
    config = config or default_settings
    provider = config.default_llm_provider
    if provider == "openai":
        return OpenAIOracle(
            api_key=config.openai_api_key,
            model=config.openai_model,
            base_url=config.openai_base_url,
            timeout=config.oracle_timeout_s,
        )
    if provider == "anthropic":
        return AnthropicOracle(
            api_key=config.anthropic_api_key,
            model=config.anthropic_model,
            base_url=config.anthropic_base_url,
            max_tokens=config.anthropic_max_tokens,
            timeout=config.oracle_timeout_s,
        )
    raise ValueError(f"Unsupported LLM provider: {provider}")
