"""
HTTP client for the OpenRouter chat completions API.

One shared httpx.AsyncClient is created lazily and reused for both single-shot
and streaming calls. It must be closed at shutdown via `close()`.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import httpx

logger = logging.getLogger(__name__)

TEMPERATURE = 0.7
MAX_TOKENS = 1000


class ProviderError(Exception):
    """Raised when the completion provider call fails for any reason."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        is_retryable: bool = False,
        original_error: Optional[Exception] = None,
    ):
        self.message = message
        self.status_code = status_code
        self.is_retryable = is_retryable
        self.original_error = original_error
        super().__init__(message)


@dataclass(frozen=True)
class RelayConfig:
    """
    Connection settings for the provider.

    A timeout of 0 (or None) disables the timeout.
    """

    api_key: str
    base_url: str = "https://openrouter.ai/api/v1"
    referer: str = "https://peekai.app"
    title: str = "PeekAI Browser Extension"
    timeout_seconds: Optional[float] = 120.0

    @property
    def timeout(self) -> Optional[float]:
        return self.timeout_seconds or None

    @classmethod
    def from_settings(cls, settings=None) -> "RelayConfig":
        if settings is None:
            from src.config import get_settings

            settings = get_settings()
        openrouter = settings.openrouter
        api_key = openrouter.openrouter_api_key
        return cls(
            api_key=api_key.get_secret_value() if api_key else "",
            base_url=openrouter.openrouter_base_url,
            referer=openrouter.openrouter_referer,
            title=openrouter.openrouter_title,
            timeout_seconds=openrouter.openrouter_timeout_seconds,
        )


class OpenRouterClient:
    """Thin async client over POST /chat/completions."""

    def __init__(
        self,
        config: RelayConfig,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.config = config
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    def _get_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client (lazy initialization)."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.config.base_url,
                timeout=httpx.Timeout(self.config.timeout),
                limits=httpx.Limits(max_connections=100, max_keepalive_connections=20),
                headers=self._headers(),
                transport=self._transport,
            )
        return self._client

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.config.api_key}",
            "HTTP-Referer": self.config.referer,
            "X-Title": self.config.title,
            "Content-Type": "application/json",
        }

    @staticmethod
    def build_payload(
        model: str,
        messages: List[Dict[str, str]],
        stream: bool,
    ) -> Dict[str, Any]:
        return {
            "model": model,
            "messages": messages,
            "temperature": TEMPERATURE,
            "max_tokens": MAX_TOKENS,
            "stream": stream,
        }

    async def complete(self, model: str, messages: List[Dict[str, str]]) -> Dict[str, Any]:
        """
        Run a single-shot completion and return the decoded JSON body.

        Raises:
            ProviderError: On non-2xx status, transport failure, timeout or
                a body that is not JSON
        """
        client = self._get_client()
        try:
            response = await client.post(
                "/chat/completions",
                json=self.build_payload(model, messages, stream=False),
            )
        except httpx.TimeoutException as e:
            raise ProviderError(
                f"OpenRouter timeout after {self.config.timeout}s",
                is_retryable=True,
                original_error=e,
            )
        except httpx.RequestError as e:
            raise ProviderError(
                f"OpenRouter request failed: {type(e).__name__}",
                is_retryable=True,
                original_error=e,
            )

        if not response.is_success:
            raise ProviderError(
                f"OpenRouter API HTTP error: {response.status_code}",
                status_code=response.status_code,
                is_retryable=response.status_code >= 500,
            )

        try:
            return response.json()
        except ValueError as e:
            raise ProviderError(
                "OpenRouter returned a non-JSON body",
                status_code=response.status_code,
                original_error=e,
            )

    async def open_stream(
        self,
        model: str,
        messages: List[Dict[str, str]],
    ) -> httpx.Response:
        """
        Open a streaming completion and return the live response.

        The status is checked before returning, so connection and HTTP
        failures surface here rather than mid-stream. The caller owns the
        returned response and must `aclose()` it.

        Raises:
            ProviderError: On non-2xx status, transport failure or timeout
        """
        client = self._get_client()
        request = client.build_request(
            "POST",
            "/chat/completions",
            json=self.build_payload(model, messages, stream=True),
            headers={"Accept": "text/event-stream"},
        )
        try:
            response = await client.send(request, stream=True)
        except httpx.TimeoutException as e:
            raise ProviderError(
                f"OpenRouter timeout after {self.config.timeout}s",
                is_retryable=True,
                original_error=e,
            )
        except httpx.RequestError as e:
            raise ProviderError(
                f"OpenRouter request failed: {type(e).__name__}",
                is_retryable=True,
                original_error=e,
            )

        if not response.is_success:
            status_code = response.status_code
            await response.aclose()
            raise ProviderError(
                f"OpenRouter API HTTP error: {status_code}",
                status_code=status_code,
                is_retryable=status_code >= 500,
            )

        return response

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
