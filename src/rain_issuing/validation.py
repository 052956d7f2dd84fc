"""Pre-issuance validation of card personalization and shipping details."""
from __future__ import annotations

import re
import unicodedata
from typing import Optional

from .exceptions import DisplayNameError, ShippingAddressError, ValidationError
from .models.card import CardType, CreateCardRequest, ShippingAddress, ShippingMethod

MAX_DISPLAY_NAME_LENGTH = 26

DISPLAY_NAME_PATTERN = re.compile(r"^[A-Za-z0-9 .\-]+$")
_DISPLAY_NAME_DISALLOWED = re.compile(r"[^A-Za-z0-9 .\-]")

# Latin letters, digits, space and . , ' - / # & ( )
RESTRICTED_ADDRESS_PATTERN = re.compile(r"^[A-Za-z0-9 .,'\-/#&()]*$")

RESTRICTED_CHARSET_METHODS = frozenset({ShippingMethod.INTERNATIONAL.value})

_ADDRESS_FIELDS = (
    "line1",
    "line2",
    "city",
    "region",
    "postal_code",
    "country_code",
    "first_name",
    "last_name",
)


def validate_display_name(name: str) -> str:
    """Return ``name`` if it may be embossed/printed on a card.

    Raises:
        DisplayNameError: If empty, longer than 26 characters or using
            anything other than letters, digits, space, period and hyphen.
    """
    if not name or not name.strip():
        raise DisplayNameError("Display name must not be empty", field="display_name")
    if len(name) > MAX_DISPLAY_NAME_LENGTH:
        raise DisplayNameError(
            f"Display name is {len(name)} characters; maximum is {MAX_DISPLAY_NAME_LENGTH}",
            field="display_name",
        )
    if not DISPLAY_NAME_PATTERN.match(name):
        bad = sorted(set(_DISPLAY_NAME_DISALLOWED.findall(name)))
        raise DisplayNameError(
            f"Display name contains disallowed characters: {''.join(bad)!r}",
            field="display_name",
        )
    return name


def derive_display_name(full_name: str) -> str:
    """Build a valid display name from a user's full name.

    Accents are folded to ASCII ("José" -> "Jose"), other disallowed
    characters dropped, whitespace collapsed and the result truncated to 26
    characters.
    """
    folded = unicodedata.normalize("NFKD", full_name).encode("ascii", "ignore").decode("ascii")
    cleaned = _DISPLAY_NAME_DISALLOWED.sub("", folded)
    collapsed = " ".join(cleaned.split())
    truncated = collapsed[:MAX_DISPLAY_NAME_LENGTH].rstrip()
    if not truncated:
        raise DisplayNameError(
            f"Cannot derive a display name from {full_name!r}",
            field="display_name",
        )
    return truncated


def resolve_display_name(display_name: Optional[str], full_name: Optional[str]) -> str:
    """Explicit display name if given (validated), else derived from ``full_name``."""
    if display_name is not None:
        return validate_display_name(display_name)
    if not full_name:
        raise DisplayNameError(
            "Either a display name or the user's full name is required",
            field="display_name",
        )
    return derive_display_name(full_name)


def validate_shipping_address(address: ShippingAddress) -> ShippingAddress:
    """Check address characters against the shipping method's printable set.

    Only the DHL-class ``international`` method is restricted; every other
    method accepts any character set.
    """
    if address.method not in RESTRICTED_CHARSET_METHODS:
        return address
    for field_name in _ADDRESS_FIELDS:
        value = getattr(address, field_name)
        if value and not RESTRICTED_ADDRESS_PATTERN.match(value):
            raise ShippingAddressError(
                f"Field '{field_name}' contains characters not supported by "
                f"{address.method} shipping",
                field=f"shipping.{field_name}",
            )
    return address


def validate_create_card_request(request: CreateCardRequest) -> CreateCardRequest:
    """Validate a card-creation request before it leaves the process.

    Raises:
        ShippingAddressError: Shipping missing for a physical card, or
            present (address or bulk group) for a virtual one.
        DisplayNameError: Invalid configured display name.
        ValidationError: Negative limit.
    """
    if request.type == CardType.PHYSICAL:
        if request.shipping is None:
            raise ShippingAddressError(
                "Physical cards require a shipping address", field="shipping"
            )
        validate_shipping_address(request.shipping)
    else:
        if request.shipping is not None:
            raise ShippingAddressError(
                "Virtual cards cannot have a shipping address", field="shipping"
            )
        if request.bulk_shipping_group_id is not None:
            raise ShippingAddressError(
                "Virtual cards cannot join a bulk shipping group",
                field="bulk_shipping_group_id",
            )

    if request.configuration is not None and request.configuration.display_name is not None:
        validate_display_name(request.configuration.display_name)

    if request.limit is not None:
        validate_limit_amount(request.limit.amount)

    return request


def validate_limit_amount(amount: int) -> int:
    """Limits are non-negative integers in minor units."""
    if isinstance(amount, bool) or not isinstance(amount, int):
        raise ValidationError("Limit amount must be an integer number of minor units", field="limit")
    if amount < 0:
        raise ValidationError("Limit amount must not be negative", field="limit")
    return amount
