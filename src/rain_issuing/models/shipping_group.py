"""Shipping group models for rain-issuing."""
from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import Field

from .base import RainModel


class Address(RainModel):
    line1: str
    line2: Optional[str] = None
    city: str
    region: str
    postal_code: str
    country_code: str
    country: Optional[str] = None


class ShippingGroup(RainModel):
    """A bulk-shipping destination that physical cards reference by id."""

    id: str
    recipient_first_name: str
    recipient_last_name: Optional[str] = None
    recipient_phone_country_code: Optional[str] = None
    recipient_phone_number: Optional[str] = None
    address: Address
    created_at: Optional[datetime] = None


class CreateShippingGroupRequest(RainModel):
    recipient_first_name: str
    recipient_last_name: Optional[str] = None
    recipient_phone_country_code: Optional[str] = None
    recipient_phone_number: Optional[str] = None
    address: Address


class ListShippingGroupsParams(RainModel):
    cursor: Optional[str] = None
    limit: Optional[int] = Field(default=None, ge=1)
