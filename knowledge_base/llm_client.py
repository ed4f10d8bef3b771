"""HTTP clients for the Voyage AI embedding and Anthropic generation APIs."""
import httpx
from typing import Any, List, Dict, Optional
import structlog

from knowledge_base import config
from knowledge_base.errors import (
    AuthenticationError,
    ConfigurationError,
    ProviderProtocolError,
    ProviderTimeoutError,
    RateLimitError,
)

logger = structlog.get_logger()


def _raise_for_status(response: httpx.Response, provider: str) -> None:
    """Map a non-2xx provider response onto the error taxonomy."""
    if response.is_success:
        return

    status = response.status_code
    message = f"{provider} error: {status} - {response.text[:500]}"

    if status == 429:
        raise RateLimitError(message, status_code=status)
    if status in (401, 403):
        raise AuthenticationError(message, status_code=status)
    raise ProviderProtocolError(message, status_code=status)


class _ProviderClient:
    """Shared request plumbing. Holds read-only configuration only."""

    provider = "provider"

    def __init__(
        self,
        api_key: Optional[str],
        base_url: str,
        timeout: float,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.transport = transport

    def _headers(self) -> Dict[str, str]:
        raise NotImplementedError

    def _require_api_key(self, setting: str) -> str:
        if not self.api_key:
            raise ConfigurationError(f"{self.provider} API key not configured ({setting})")
        return self.api_key

    async def _post(self, path: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        headers = self._headers()

        try:
            async with httpx.AsyncClient(
                timeout=self.timeout, transport=self.transport
            ) as client:
                response = await client.post(
                    f"{self.base_url}{path}",
                    json=payload,
                    headers=headers,
                )
        except httpx.TimeoutException as e:
            logger.error(
                "provider_timeout",
                provider=self.provider,
                timeout=self.timeout,
                error=str(e),
            )
            raise ProviderTimeoutError(
                f"{self.provider} request timed out after {self.timeout}s"
            ) from e
        except httpx.HTTPError as e:
            logger.error("provider_connection_error", provider=self.provider, error=str(e))
            raise ProviderProtocolError(f"{self.provider} request failed: {e}") from e

        _raise_for_status(response, self.provider)

        try:
            data = response.json()
        except ValueError as e:
            raise ProviderProtocolError(
                f"Invalid JSON from {self.provider}: {response.text[:200]}",
                status_code=response.status_code,
            ) from e

        if not isinstance(data, dict):
            raise ProviderProtocolError(f"Unexpected response shape from {self.provider}")

        return data


class VoyageClient(_ProviderClient):
    """Async client for the Voyage AI embeddings endpoint."""

    provider = "Voyage AI"

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        model: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize the Voyage client.

        Args:
            api_key: Voyage API key (defaults to config.VOYAGE_API_KEY)
            base_url: API base URL (defaults to config.VOYAGE_BASE_URL)
            model: Embedding model (defaults to config.EMBEDDING_MODEL)
            timeout: Per-request deadline in seconds
            transport: Optional httpx transport (tests pass a MockTransport)
        """
        super().__init__(
            api_key=config.VOYAGE_API_KEY if api_key is None else api_key,
            base_url=base_url or config.VOYAGE_BASE_URL,
            timeout=timeout or config.REQUEST_TIMEOUT,
            transport=transport,
        )
        self.model = model or config.EMBEDDING_MODEL

    def _headers(self) -> Dict[str, str]:
        api_key = self._require_api_key("VOYAGE_API_KEY")
        return {"Authorization": f"Bearer {api_key}"}

    async def embeddings(self, texts: List[str]) -> List[Dict[str, Any]]:
        """Request embeddings for a batch of texts.

        Args:
            texts: Batch of input strings

        Returns:
            The provider's ``data`` items, each with ``index`` and ``embedding``,
            in whatever order the provider sent them

        Raises:
            ConfigurationError: If no API key is configured
            RateLimitError: On HTTP 429
            AuthenticationError: On HTTP 401/403
            ProviderProtocolError: On other failures or an empty body
            ProviderTimeoutError: If the deadline expires
        """
        logger.debug("voyage_embedding_request", model=self.model, batch_size=len(texts))

        data = await self._post("/embeddings", {"input": texts, "model": self.model})

        items = data.get("data")
        if not items:
            raise ProviderProtocolError(f"Invalid response from Voyage AI: {data}")

        logger.debug("voyage_embedding_response", model=self.model, items=len(items))
        return items


class AnthropicClient(_ProviderClient):
    """Async client for the Anthropic Messages API."""

    provider = "Claude"

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        model: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__(
            api_key=config.ANTHROPIC_API_KEY if api_key is None else api_key,
            base_url=base_url or config.ANTHROPIC_BASE_URL,
            timeout=timeout or config.REQUEST_TIMEOUT,
            transport=transport,
        )
        self.model = model or config.CHAT_MODEL

    def _headers(self) -> Dict[str, str]:
        api_key = self._require_api_key("ANTHROPIC_API_KEY")
        return {
            "x-api-key": api_key,
            "anthropic-version": config.ANTHROPIC_VERSION,
        }

    async def create_message(
        self,
        system: str,
        messages: List[Dict[str, str]],
        max_tokens: Optional[int] = None,
    ) -> Dict[str, Any]:
        """Send a Messages API request.

        Args:
            system: System instruction
            messages: Ordered list of dicts with 'role' and 'content'
            max_tokens: Generation cap (defaults to config.GENERATION_MAX_TOKENS)

        Returns:
            Raw response dict; text lives in ``content[i]["text"]``
        """
        payload = {
            "model": self.model,
            "max_tokens": max_tokens or config.GENERATION_MAX_TOKENS,
            "system": system,
            "messages": messages,
        }

        logger.info(
            "claude_message_request",
            model=self.model,
            message_count=len(messages),
        )

        data = await self._post("/messages", payload)

        logger.info(
            "claude_message_response",
            model=self.model,
            content_blocks=len(data.get("content") or []),
            stop_reason=data.get("stop_reason"),
        )
        return data
