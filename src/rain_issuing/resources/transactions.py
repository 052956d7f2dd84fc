"""Transactions resource for rain-issuing."""
from __future__ import annotations

from typing import Optional

from ..models.transaction import (
    ListTransactionsParams,
    Transaction,
    UpdateTransactionRequest,
    parse_transaction,
)
from .base import AsyncBaseResource


class AsyncTransactionsResource(AsyncBaseResource):
    """Async resource for spend, collateral, payment and fee transactions.

    Example:
        ```python
        params = ListTransactionsParams(card_id=card_id, type=[TransactionType.SPEND])
        for txn in await client.transactions.list(params):
            print(txn.id, txn.amount)
        ```
    """

    async def list(self, params: Optional[ListTransactionsParams] = None) -> list[Transaction]:
        query = params.to_dict() if params else None
        data = await self._get("/issuing/transactions", params=query)
        return [parse_transaction(item) for item in data or []]

    async def get(self, transaction_id: str) -> Transaction:
        data = await self._get(f"/issuing/transactions/{transaction_id}")
        return parse_transaction(data)

    async def update(self, transaction_id: str, request: UpdateTransactionRequest) -> None:
        """Update a transaction's memo. The API answers 204."""
        await self._patch(f"/issuing/transactions/{transaction_id}", request.to_dict())
