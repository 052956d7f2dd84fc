"""
Async HTTP client for the Rain issuing API.

Example usage:
    ```python
    from rain_issuing import AsyncRainClient, Environment

    async with AsyncRainClient(api_key="your-api-key", environment=Environment.DEV) as client:
        card = await client.cards.get("card-id")
        groups = await client.shipping_groups.list()
        balance = await client.balances.get_tenant()
    ```

The client builds requests, attaches authentication headers and maps HTTP
failures onto the package's error types. It never retries; retry policy
belongs to the caller.
"""
from __future__ import annotations

import logging
import time
from typing import Any, Mapping, Optional

import httpx

from .config import Environment, RainSettings
from .exceptions import APIError, RateLimitError, TransportError
from .logging import log_request, log_response
from .resources.balances import AsyncBalancesResource
from .resources.cards import AsyncCardsResource
from .resources.shipping_groups import AsyncShippingGroupsResource
from .resources.transactions import AsyncTransactionsResource

logger = logging.getLogger(__name__)


class AsyncRainClient:
    """
    Rain issuing API client.

    Provides access to:
    - cards: Create, read and update cards; fetch encrypted secrets and PINs
    - shipping_groups: Bulk shipping groups
    - balances: Tenant and user balances

    Args:
        api_key: Rain API key, sent as the ``Api-Key`` header
        environment: Target environment; selects the default base URL
        base_url: Optional custom base URL (overrides the environment's)
        timeout: Request timeout in seconds (default: 30)
        user_agent: User-Agent header value
        transport: Optional httpx transport (e.g. ``httpx.MockTransport``)
        enable_logging: Log masked requests and responses at DEBUG level
    """

    DEFAULT_TIMEOUT = 30.0
    DEFAULT_USER_AGENT = "rain-issuing-python/0.1.0"

    def __init__(
        self,
        api_key: Optional[str] = None,
        environment: Environment = Environment.DEV,
        base_url: Optional[str] = None,
        timeout: float = DEFAULT_TIMEOUT,
        user_agent: str = DEFAULT_USER_AGENT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        enable_logging: bool = False,
    ):
        if not api_key:
            raise ValueError("API key is required")

        self._api_key = api_key
        self._environment = Environment(environment)
        self._base_url = (base_url or self._environment.base_url).rstrip("/")
        self._timeout = timeout
        self._user_agent = user_agent
        self._transport = transport
        self._enable_logging = enable_logging
        self._client: Optional[httpx.AsyncClient] = None

        self.cards = AsyncCardsResource(self)
        self.shipping_groups = AsyncShippingGroupsResource(self)
        self.balances = AsyncBalancesResource(self)
        self.transactions = AsyncTransactionsResource(self)

    @classmethod
    def from_settings(
        cls,
        settings: RainSettings,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> "AsyncRainClient":
        return cls(
            api_key=settings.api_key,
            environment=settings.environment,
            base_url=settings.base_url,
            timeout=settings.timeout_seconds,
            user_agent=settings.user_agent,
            transport=transport,
            enable_logging=settings.enable_logging,
        )

    @property
    def environment(self) -> Environment:
        return self._environment

    @property
    def base_url(self) -> str:
        return self._base_url

    def _default_headers(self) -> dict[str, str]:
        return {
            "Api-Key": self._api_key,
            "Accept": "application/json",
            "Content-Type": "application/json",
            "User-Agent": self._user_agent,
        }

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self._base_url,
                headers=self._default_headers(),
                timeout=self._timeout,
                transport=self._transport,
            )
        return self._client

    async def _request(
        self,
        method: str,
        path: str,
        params: Optional[Mapping[str, Any]] = None,
        json: Optional[Any] = None,
        headers: Optional[Mapping[str, str]] = None,
    ) -> Any:
        """Make a single HTTP request and decode the JSON body."""
        client = await self._get_client()
        if params:
            params = {k: v for k, v in params.items() if v is not None}

        if self._enable_logging:
            log_request(
                logger,
                method,
                f"{self._base_url}{path}",
                headers={**self._default_headers(), **(headers or {})},
                body=json,
            )

        started = time.monotonic()
        try:
            response = await client.request(
                method=method,
                url=path,
                params=params or None,
                json=json,
                headers=dict(headers) if headers else None,
            )
        except httpx.TimeoutException as e:
            raise TransportError(f"{method} {path} timed out", details={"path": path}) from e
        except httpx.RequestError as e:
            raise TransportError(
                f"{method} {path} failed: {type(e).__name__}", details={"path": path}
            ) from e
        duration_ms = (time.monotonic() - started) * 1000

        body = self._decode(response)

        if self._enable_logging:
            log_response(logger, response.status_code, body, duration_ms)

        if response.status_code == 429:
            raise RateLimitError("Rate limit exceeded", retry_after=_retry_after(response))
        if response.status_code >= 400:
            raise APIError.from_response(response.status_code, body)
        return body

    @staticmethod
    def _decode(response: httpx.Response) -> Any:
        if response.status_code == 204 or not response.content:
            return None
        try:
            return response.json()
        except ValueError as e:
            if response.status_code >= 400:
                return {"message": response.text}
            raise APIError(
                "Response body is not valid JSON",
                status_code=response.status_code,
                error_code="INVALID_RESPONSE",
            ) from e

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "AsyncRainClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()


def _retry_after(response: httpx.Response) -> Optional[int]:
    value = response.headers.get("Retry-After")
    if value is None:
        return None
    try:
        return int(value)
    except ValueError:
        return None
