"""Card lifecycle state machine.

    notActivated ──activate──▶ active ◀──unlock── locked
         │                      │  └────lock─────▶  │
         └──────────cancel──────┴──────cancel───────┴──▶ canceled (terminal)

Status and limit changes are committed locally only after the optional remote
update succeeds, and are pushed into the RollingLimitLedger so that later
authorizations see them.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, Optional

from .clock import Clock, SystemClock
from .exceptions import (
    CardCanceledError,
    CardNotFoundError,
    InvalidTransitionError,
    StateConflictError,
)
from .ledger import RollingLimitLedger
from .models.card import Card, CardStatus, CardType
from .validation import validate_limit_amount

logger = logging.getLogger(__name__)

RemoteUpdate = Callable[[], Awaitable[Any]]

ALLOWED_TRANSITIONS: Dict[CardStatus, frozenset[CardStatus]] = {
    CardStatus.NOT_ACTIVATED: frozenset({CardStatus.ACTIVE, CardStatus.CANCELED}),
    CardStatus.ACTIVE: frozenset({CardStatus.LOCKED, CardStatus.CANCELED}),
    CardStatus.LOCKED: frozenset({CardStatus.ACTIVE, CardStatus.CANCELED}),
    CardStatus.CANCELED: frozenset(),
}


def initial_status(activation_required: bool) -> CardStatus:
    return CardStatus.NOT_ACTIVATED if activation_required else CardStatus.ACTIVE


def can_transition(current: CardStatus, new: CardStatus) -> bool:
    return CardStatus(new) in ALLOWED_TRANSITIONS[CardStatus(current)]


@dataclass
class CardRecord:
    """Local view of an issued card.

    ``bulk_shipping_group_id`` is fixed at creation; assigning it again raises
    StateConflictError.
    """

    card_id: str
    user_id: str
    card_type: CardType
    status: CardStatus
    limit: int
    created_at: datetime
    display_name: Optional[str] = None
    last4: str = ""
    expiration_month: str = ""
    expiration_year: str = ""
    bulk_shipping_group_id: Optional[str] = None
    status_changed_at: Optional[datetime] = None
    history: list[tuple[CardStatus, datetime]] = field(default_factory=list)

    def __setattr__(self, name: str, value: Any) -> None:
        if name == "bulk_shipping_group_id" and name in self.__dict__:
            raise StateConflictError(
                f"Card '{self.card_id}' bulk shipping group is fixed at creation",
                details={
                    "card_id": self.card_id,
                    "bulk_shipping_group_id": self.__dict__[name],
                },
            )
        super().__setattr__(name, value)

    @property
    def is_physical(self) -> bool:
        return self.card_type == CardType.PHYSICAL

    @property
    def is_canceled(self) -> bool:
        return self.status == CardStatus.CANCELED

    @classmethod
    def from_card(
        cls,
        card: Card,
        created_at: datetime,
        display_name: Optional[str] = None,
        bulk_shipping_group_id: Optional[str] = None,
        limit: int = 0,
    ) -> "CardRecord":
        """Build a record from the API's card payload.

        ``limit`` is used when the payload carries no limit.
        """
        return cls(
            card_id=card.id,
            user_id=card.user_id,
            card_type=CardType(card.type),
            status=CardStatus(card.status),
            limit=card.limit.amount if card.limit else limit,
            created_at=card.created_at or created_at,
            display_name=display_name,
            last4=card.last4,
            expiration_month=card.expiration_month,
            expiration_year=card.expiration_year,
            bulk_shipping_group_id=card.bulk_shipping_group_id or bulk_shipping_group_id,
        )


class CardLifecycle:
    """Owns card records and serializes every change to a card."""

    def __init__(self, ledger: RollingLimitLedger, clock: Optional[Clock] = None) -> None:
        self._ledger = ledger
        self._clock = clock or SystemClock()
        self._records: Dict[str, CardRecord] = {}
        self._locks: Dict[str, asyncio.Lock] = {}

    @property
    def ledger(self) -> RollingLimitLedger:
        return self._ledger

    async def register(self, record: CardRecord) -> CardRecord:
        """Start tracking a card and open its ledger account."""
        if record.card_id in self._records:
            raise StateConflictError(
                f"Card '{record.card_id}' is already tracked",
                details={"card_id": record.card_id},
            )
        validate_limit_amount(record.limit)
        await self._ledger.open_account(record.card_id, record.limit, record.status)
        self._locks[record.card_id] = asyncio.Lock()
        self._records[record.card_id] = record
        logger.info(
            "Tracking card %s (%s, %s)",
            record.card_id, CardStatus(record.status).value, CardType(record.card_type).value,
        )
        return record

    def get(self, card_id: str) -> CardRecord:
        record = self._records.get(card_id)
        if record is None:
            raise CardNotFoundError(card_id)
        return record

    def records(self) -> list[CardRecord]:
        return list(self._records.values())

    def ensure_not_canceled(self, card_id: str, operation: Optional[str] = None) -> CardRecord:
        """Gate for operations that are meaningless on a canceled card."""
        record = self.get(card_id)
        if record.is_canceled:
            raise CardCanceledError(card_id, operation=operation)
        return record

    async def transition(
        self,
        card_id: str,
        new_status: CardStatus,
        apply: Optional[RemoteUpdate] = None,
        from_statuses: Optional[frozenset[CardStatus]] = None,
    ) -> CardRecord:
        """Move a card to ``new_status``.

        Args:
            card_id: Card to update
            new_status: Target status
            apply: Optional coroutine factory performing the remote update;
                awaited after the precondition check and before the commit.
            from_statuses: Further restricts the statuses the move may start
                from (``activate`` only starts from notActivated).

        Returns:
            The updated record

        Raises:
            CardCanceledError: Card is already canceled
            InvalidTransitionError: Transition not allowed from current status
        """
        new_status = CardStatus(new_status)
        record = self.get(card_id)
        async with self._locks[card_id]:
            current = CardStatus(record.status)
            if current == CardStatus.CANCELED:
                raise CardCanceledError(card_id, operation=f"transition to {new_status.value}")
            if not can_transition(current, new_status) or (
                from_statuses is not None and current not in from_statuses
            ):
                raise InvalidTransitionError(card_id, current.value, new_status.value)

            if apply is not None:
                await apply()

            # Ledger first; nothing after it awaits, so the record and the
            # ledger change together or not at all.
            await self._ledger.apply_status(card_id, new_status)
            now = self._clock.now()
            record.status = new_status
            record.status_changed_at = now
            record.history.append((new_status, now))

        logger.info("Card %s: %s -> %s", card_id, current.value, new_status.value)
        return record

    async def activate(self, card_id: str, apply: Optional[RemoteUpdate] = None) -> CardRecord:
        return await self.transition(
            card_id, CardStatus.ACTIVE, apply, from_statuses=frozenset({CardStatus.NOT_ACTIVATED})
        )

    async def lock(self, card_id: str, apply: Optional[RemoteUpdate] = None) -> CardRecord:
        return await self.transition(card_id, CardStatus.LOCKED, apply)

    async def unlock(self, card_id: str, apply: Optional[RemoteUpdate] = None) -> CardRecord:
        return await self.transition(
            card_id, CardStatus.ACTIVE, apply, from_statuses=frozenset({CardStatus.LOCKED})
        )

    async def cancel(self, card_id: str, apply: Optional[RemoteUpdate] = None) -> CardRecord:
        return await self.transition(card_id, CardStatus.CANCELED, apply)

    async def update_limit(
        self,
        card_id: str,
        amount: int,
        apply: Optional[RemoteUpdate] = None,
    ) -> CardRecord:
        """Change the spend limit; affects only later authorizations."""
        validate_limit_amount(amount)
        record = self.get(card_id)
        async with self._locks[card_id]:
            if record.is_canceled:
                raise CardCanceledError(card_id, operation="limit update")
            if apply is not None:
                await apply()
            await self._ledger.apply_limit(card_id, amount)
            previous = record.limit
            record.limit = amount

        logger.info("Card %s limit: %d -> %d", card_id, previous, amount)
        return record
