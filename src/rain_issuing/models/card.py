"""Card models for rain-issuing."""
from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import Field

from .base import RainModel


class CardStatus(str, Enum):
    NOT_ACTIVATED = "notActivated"
    ACTIVE = "active"
    LOCKED = "locked"
    CANCELED = "canceled"


class CardType(str, Enum):
    PHYSICAL = "physical"
    VIRTUAL = "virtual"


class LimitFrequency(str, Enum):
    PER_24_HOUR_PERIOD = "per24HourPeriod"
    PER_7_DAY_PERIOD = "per7DayPeriod"
    PER_30_DAY_PERIOD = "per30DayPeriod"
    PER_YEAR_PERIOD = "perYearPeriod"
    ALL_TIME = "allTime"
    PER_AUTHORIZATION = "perAuthorization"


class ShippingMethod(str, Enum):
    STANDARD = "standard"
    EXPRESS = "express"
    # DHL-class carrier; printable Latin charset only
    INTERNATIONAL = "international"
    APC = "apc"
    USPS_INTERNATIONAL = "uspsInternational"


class CardLimit(RainModel):
    """Spend limit in minor units (cents)."""

    amount: int = Field(ge=0)
    frequency: LimitFrequency = LimitFrequency.PER_30_DAY_PERIOD


class CardConfiguration(RainModel):
    display_name: Optional[str] = None
    product_id: Optional[str] = None
    product_ref: Optional[str] = None
    virtual_card_art: Optional[str] = None


class ShippingAddress(RainModel):
    line1: str
    line2: Optional[str] = None
    city: str
    region: Optional[str] = None
    postal_code: str
    country_code: str
    phone_number: str
    method: Optional[ShippingMethod] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None


class BillingAddress(RainModel):
    line1: str
    line2: Optional[str] = None
    city: str
    region: str
    postal_code: str
    country_code: str
    country: Optional[str] = None


class CreateCardRequest(RainModel):
    type: CardType
    status: Optional[CardStatus] = None
    limit: Optional[CardLimit] = None
    configuration: Optional[CardConfiguration] = None
    shipping: Optional[ShippingAddress] = None
    bulk_shipping_group_id: Optional[str] = None
    billing: Optional[BillingAddress] = None


class UpdateCardRequest(RainModel):
    status: Optional[CardStatus] = None
    limit: Optional[CardLimit] = None
    billing: Optional[BillingAddress] = None
    configuration: Optional[CardConfiguration] = None


class Card(RainModel):
    id: str
    company_id: Optional[str] = None
    user_id: str
    type: CardType
    status: CardStatus
    limit: Optional[CardLimit] = None
    last4: str
    expiration_month: str
    expiration_year: str
    token_wallets: Optional[list[str]] = None
    bulk_shipping_group_id: Optional[str] = None
    created_at: Optional[datetime] = None


class EncryptedData(RainModel):
    """Base64 IV and base64 ciphertext of one sensitive field."""

    iv: str
    data: str


class CardSecrets(RainModel):
    encrypted_pan: EncryptedData
    encrypted_cvc: EncryptedData


class CardPin(RainModel):
    encrypted_pin: EncryptedData


class UpdateCardPinRequest(RainModel):
    encrypted_pin: EncryptedData


class ProcessorDetails(RainModel):
    processor_card_id: str
    time_based_secret: Optional[str] = None


class ListCardsParams(RainModel):
    company_id: Optional[str] = None
    user_id: Optional[str] = None
    status: Optional[CardStatus] = None
    cursor: Optional[str] = None
    limit: Optional[int] = Field(default=None, ge=1)
