"""Base resource class for rain-issuing API resources."""
from __future__ import annotations

from typing import TYPE_CHECKING, Any, Mapping, Optional

if TYPE_CHECKING:
    from ..client import AsyncRainClient


class AsyncBaseResource:
    """Base class for async API resources.

    Attributes:
        _client: The async client instance
    """

    def __init__(self, client: "AsyncRainClient") -> None:
        self._client = client

    async def _get(
        self,
        path: str,
        params: Optional[Mapping[str, Any]] = None,
        headers: Optional[Mapping[str, str]] = None,
    ) -> Any:
        return await self._client._request("GET", path, params=params, headers=headers)

    async def _post(
        self,
        path: str,
        data: Optional[Any] = None,
        headers: Optional[Mapping[str, str]] = None,
    ) -> Any:
        return await self._client._request("POST", path, json=data, headers=headers)

    async def _patch(
        self,
        path: str,
        data: Optional[Any] = None,
        headers: Optional[Mapping[str, str]] = None,
    ) -> Any:
        return await self._client._request("PATCH", path, json=data, headers=headers)

    async def _put(
        self,
        path: str,
        data: Optional[Any] = None,
        headers: Optional[Mapping[str, str]] = None,
    ) -> Any:
        return await self._client._request("PUT", path, json=data, headers=headers)
