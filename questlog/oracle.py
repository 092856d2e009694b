"""Text oracle client over an OpenAI-compatible completion API (vLLM/Ollama)."""

from __future__ import annotations

import asyncio
import logging
from typing import Optional, Protocol

import httpx

from .config import PipelineConfig
from .errors import OracleRateLimited, OracleTimeout, OracleUnavailable

logger = logging.getLogger(__name__)

DEFAULT_SYSTEM_PROMPT = "You are a precise assistant."
STRUCTURED_SYSTEM_PROMPT = "You are a strict JSON generator. Output ONLY valid JSON, no prose."


class TextOracle(Protocol):
    """Anything that can turn a prompt into text."""

    async def generate(
        self,
        prompt: str,
        *,
        structured: bool = False,
        max_output_tokens: int = 1000,
        temperature: float = 0.3,
        system: Optional[str] = None,
    ) -> str: ...


def _retry_after(response: httpx.Response) -> Optional[float]:
    value = response.headers.get("retry-after")
    if value is None:
        return None
    try:
        return float(value)
    except ValueError:
        return None


class OracleClient:
    """
    Client for the hosted generative-text capability.

    Performs exactly one outbound call per ``generate``; retries belong to
    callers. A semaphore bounds the number of calls in flight so the
    concurrent analysis paths cannot flood the provider.
    """

    def __init__(
        self,
        base_url: str | None = None,
        model: str | None = None,
        api_key: str | None = None,
        timeout: float = 60.0,
        max_concurrent_calls: int = 4,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        config = PipelineConfig()
        self.base_url = (base_url or config.oracle_url).rstrip("/")
        self.model = model or config.oracle_model
        self.api_key = api_key
        self.timeout = timeout
        self._transport = transport
        self._semaphore = asyncio.Semaphore(max_concurrent_calls)
        self._client: httpx.AsyncClient | None = None

    @classmethod
    def from_config(
        cls,
        config: PipelineConfig,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> "OracleClient":
        return cls(
            base_url=config.oracle_url,
            model=config.oracle_model,
            api_key=config.oracle_api_key,
            timeout=config.oracle_timeout,
            max_concurrent_calls=config.max_concurrent_calls,
            transport=transport,
        )

    @property
    def headers(self) -> dict[str, str]:
        """Build request headers."""
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    async def get_client(self) -> httpx.AsyncClient:
        """Get or create async HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(timeout=self.timeout, transport=self._transport)
        return self._client

    async def close(self):
        """Close the HTTP client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def _post(self, endpoint: str, payload: dict, structured: bool) -> httpx.Response:
        # The slot wait counts against the call timeout.
        async with self._semaphore:
            client = await self.get_client()
            logger.debug(f"Making request to {endpoint} (structured={structured})")
            return await client.post(endpoint, json=payload, headers=self.headers)

    async def generate(
        self,
        prompt: str,
        *,
        structured: bool = False,
        max_output_tokens: int = 1000,
        temperature: float = 0.3,
        system: Optional[str] = None,
    ) -> str:
        """
        Send a single prompt to the oracle.

        Args:
            prompt: User message content
            structured: Ask the provider for a JSON object response
            max_output_tokens: Maximum tokens to generate
            temperature: Sampling temperature
            system: Optional system message override

        Returns:
            Raw response text (a JSON string when ``structured`` is set)

        Raises:
            OracleTimeout: The call exceeded the configured timeout
            OracleRateLimited: The provider answered 429
            OracleUnavailable: Any other transport failure or a malformed body
        """
        system_prompt = system or (STRUCTURED_SYSTEM_PROMPT if structured else DEFAULT_SYSTEM_PROMPT)
        payload = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": prompt},
            ],
            "temperature": temperature,
            "max_tokens": max_output_tokens,
            "stream": False,
        }
        if structured:
            payload["response_format"] = {"type": "json_object"}

        endpoint = f"{self.base_url}/v1/chat/completions"

        try:
            response = await asyncio.wait_for(self._post(endpoint, payload, structured), timeout=self.timeout)
        except (asyncio.TimeoutError, httpx.TimeoutException) as e:
            raise OracleTimeout(f"Oracle request timed out after {self.timeout}s") from e
        except httpx.HTTPError as e:
            raise OracleUnavailable(f"Oracle request failed: {e}") from e

        if response.status_code == 429:
            raise OracleRateLimited(
                "Oracle rate limit exceeded", retry_after=_retry_after(response)
            )
        if not response.is_success:
            logger.error(f"Oracle API error: {response.status_code} - {response.text[:200]}")
            raise OracleUnavailable(f"Oracle API error: {response.status_code}")

        try:
            content = response.json()["choices"][0]["message"]["content"]
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise OracleUnavailable(f"Invalid oracle response format: {e}") from e
        if not isinstance(content, str):
            raise OracleUnavailable("Oracle response content is not text")
        return content

    async def check_health(self) -> bool:
        """Check if the oracle API is reachable."""
        try:
            client = await self.get_client()
            response = await client.get(
                f"{self.base_url}/v1/models",
                headers=self.headers,
                timeout=5.0,
            )
            return response.is_success
        except httpx.HTTPError as e:
            logger.warning(f"Oracle health check failed: {e}")
            return False
