"""Transaction models for rain-issuing."""
from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Mapping, Optional, Union

from pydantic import Field

from .base import RainModel
from .card import CardType


class TransactionType(str, Enum):
    SPEND = "spend"
    COLLATERAL = "collateral"
    PAYMENT = "payment"
    FEE = "fee"


class SpendTransactionStatus(str, Enum):
    PENDING = "pending"
    REVERSED = "reversed"
    DECLINED = "declined"
    COMPLETED = "completed"


class Transaction(RainModel):
    """Fields shared by every transaction type.

    Spend transactions parse to SpendTransaction; collateral, payment and
    fee transactions keep only these common fields.
    """

    id: str
    type: TransactionType
    amount: Union[int, float]
    currency: Optional[str] = None
    memo: Optional[str] = None
    company_id: Optional[str] = None
    user_id: Optional[str] = None
    posted_at: Optional[datetime] = None


class SpendTransaction(Transaction):
    """A card purchase (or refund) in minor units."""

    type: TransactionType = TransactionType.SPEND
    amount: int
    card_id: str
    card_type: Optional[CardType] = None
    status: SpendTransactionStatus
    authorized_at: datetime
    authorized_amount: Optional[int] = None
    authorization_method: Optional[str] = None
    local_amount: Optional[int] = None
    local_currency: Optional[str] = None
    merchant_name: Optional[str] = None
    merchant_category: Optional[str] = None
    merchant_category_code: Optional[str] = None
    merchant_id: Optional[str] = None
    declined_reason: Optional[str] = None
    receipt: bool = False

    @property
    def counts_toward_limit(self) -> bool:
        return self.status in (SpendTransactionStatus.PENDING, SpendTransactionStatus.COMPLETED)


def parse_transaction(data: Mapping[str, Any]) -> Transaction:
    """Parse a transaction payload into SpendTransaction or Transaction by ``type``."""
    if data.get("type") == TransactionType.SPEND.value:
        return SpendTransaction.model_validate(data)
    return Transaction.model_validate(data)


class ListTransactionsParams(RainModel):
    company_id: Optional[str] = None
    user_id: Optional[str] = None
    card_id: Optional[str] = None
    type: Optional[list[TransactionType]] = None
    transaction_hash: Optional[str] = None
    authorized_before: Optional[datetime] = None
    authorized_after: Optional[datetime] = None
    posted_before: Optional[datetime] = None
    posted_after: Optional[datetime] = None
    cursor: Optional[str] = None
    limit: Optional[int] = Field(default=None, ge=1)


class UpdateTransactionRequest(RainModel):
    memo: Optional[str] = None
