"""Balances resource for rain-issuing."""
from __future__ import annotations

from ..models.balance import Balance
from .base import AsyncBaseResource


class AsyncBalancesResource(AsyncBaseResource):
    """Tenant and user balances."""

    async def get_tenant(self) -> Balance:
        """Balance for the whole tenant."""
        data = await self._get("/issuing/balances")
        return Balance.model_validate(data)

    async def get_user(self, user_id: str) -> Balance:
        """Balance for one authorized user."""
        data = await self._get(f"/issuing/users/{user_id}/balances")
        return Balance.model_validate(data)
