"""Shipping groups resource for rain-issuing."""
from __future__ import annotations

from typing import Optional

from ..models.shipping_group import (
    CreateShippingGroupRequest,
    ListShippingGroupsParams,
    ShippingGroup,
)
from .base import AsyncBaseResource


class AsyncShippingGroupsResource(AsyncBaseResource):
    """Bulk shipping groups.

    Example:
        ```python
        group = await client.shipping_groups.create(CreateShippingGroupRequest(
            recipient_first_name="Ada",
            address=Address(line1="1 Main St", city="NYC", region="NY",
                            postal_code="10001", country_code="US"),
        ))
        ```
    """

    async def create(self, request: CreateShippingGroupRequest) -> ShippingGroup:
        """Create a bulk shipping group."""
        data = await self._post("/issuing/shipping-groups", request.to_dict())
        return ShippingGroup.model_validate(data)

    async def get(self, group_id: str) -> ShippingGroup:
        data = await self._get(f"/issuing/shipping-groups/{group_id}")
        return ShippingGroup.model_validate(data)

    async def list(self, params: Optional[ListShippingGroupsParams] = None) -> list[ShippingGroup]:
        query = params.to_dict() if params else None
        data = await self._get("/issuing/shipping-groups", params=query)
        return [ShippingGroup.model_validate(item) for item in data or []]
