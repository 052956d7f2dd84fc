"""Balance models for rain-issuing."""
from __future__ import annotations

from .base import RainModel


class Balance(RainModel):
    """Balance summary; all amounts in minor units."""

    credit_limit: int
    pending_charges: int
    posted_charges: int
    balance_due: int
    spending_power: int
