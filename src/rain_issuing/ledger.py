"""Rolling 30-day spend-limit ledger.

Each card has an account holding its limit, its status as last pushed by the
lifecycle, and an append-only list of charge events. Exposure is the sum of
events inside the trailing window ``(as_of - 30 days, as_of]``; events older
than that are never deleted, they simply stop counting.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Dict, List, Optional

from .clock import Clock, SystemClock
from .exceptions import (
    CardCanceledError,
    CardNotActiveError,
    CardNotFoundError,
    LimitExceededError,
    StateConflictError,
    ValidationError,
)
from .models.card import CardStatus

logger = logging.getLogger(__name__)

WINDOW = timedelta(days=30)


def truncate_to_second(at: datetime) -> datetime:
    if at.tzinfo is None or at.utcoffset() is None:
        raise ValidationError("Charge timestamps must be timezone-aware", field="timestamp")
    return at.replace(microsecond=0)


@dataclass(frozen=True)
class ChargeEvent:
    """A single signed charge: positive is a purchase, negative a refund."""

    card_id: str
    amount: int
    timestamp: datetime
    event_id: str = field(default_factory=lambda: f"chg_{uuid.uuid4().hex[:16]}")


@dataclass
class LedgerAccount:
    """Per-card ledger state."""

    card_id: str
    limit: int
    status: CardStatus
    events: List[ChargeEvent] = field(default_factory=list)
    seen: Dict[str, ChargeEvent] = field(default_factory=dict, repr=False)
    lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False)

    @property
    def is_inert(self) -> bool:
        return self.status == CardStatus.CANCELED

    def exposure(self, as_of: datetime, window: timedelta = WINDOW) -> int:
        start = as_of - window
        return sum(e.amount for e in self.events if start < e.timestamp <= as_of)

    def peak_exposure(self, at: datetime, window: timedelta = WINDOW) -> int:
        """Highest exposure over every window that an event at ``at`` would fall into.

        Exposure only changes when an event enters a window or when one
        leaves it, so the windows ending at ``at``, at each later event time
        and at each later expiry before ``at + window`` cover every case.
        """
        end = at + window
        points = {at}
        for e in self.events:
            if at < e.timestamp < end:
                points.add(e.timestamp)
            if at < e.timestamp + window < end:
                points.add(e.timestamp + window)
        return max(self.exposure(point, window) for point in points)

    def find_duplicate(self, event_id: Optional[str], amount: int) -> Optional[ChargeEvent]:
        """Return the event already recorded under ``event_id``, if any.

        Raises:
            StateConflictError: The id was recorded with a different amount
        """
        if event_id is None or event_id not in self.seen:
            return None
        existing = self.seen[event_id]
        if existing.amount != amount:
            raise StateConflictError(
                f"Event '{event_id}' on card '{self.card_id}' was recorded with a different amount",
                details={
                    "card_id": self.card_id,
                    "event_id": event_id,
                    "recorded_amount": existing.amount,
                    "amount": amount,
                },
            )
        return existing


class RollingLimitLedger:
    """Tracks charge events and enforces the rolling spend limit per card.

    Example:
        ledger = RollingLimitLedger(clock)
        await ledger.open_account("card-1", limit=10_000, status=CardStatus.ACTIVE)
        await ledger.authorize("card-1", 9_500)
        ledger.available("card-1")  # 500
    """

    def __init__(self, clock: Optional[Clock] = None, window: timedelta = WINDOW) -> None:
        self._clock = clock or SystemClock()
        self._window = window
        self._accounts: Dict[str, LedgerAccount] = {}

    @property
    def window(self) -> timedelta:
        return self._window

    def _account(self, card_id: str) -> LedgerAccount:
        account = self._accounts.get(card_id)
        if account is None:
            raise CardNotFoundError(card_id)
        return account

    def _as_of(self, as_of: Optional[datetime]) -> datetime:
        return truncate_to_second(as_of if as_of is not None else self._clock.now())

    def has_account(self, card_id: str) -> bool:
        return card_id in self._accounts

    async def open_account(self, card_id: str, limit: int, status: CardStatus) -> LedgerAccount:
        if card_id in self._accounts:
            raise StateConflictError(
                f"Ledger account for card '{card_id}' already exists",
                details={"card_id": card_id},
            )
        account = LedgerAccount(card_id=card_id, limit=limit, status=CardStatus(status))
        self._accounts[card_id] = account
        logger.debug("Opened ledger account %s (limit=%d, status=%s)", card_id, limit, account.status.value)
        return account

    async def apply_status(self, card_id: str, status: CardStatus) -> None:
        account = self._account(card_id)
        async with account.lock:
            account.status = CardStatus(status)

    async def apply_limit(self, card_id: str, limit: int) -> None:
        """Set the limit used by subsequent authorizations. Past events are untouched."""
        account = self._account(card_id)
        async with account.lock:
            if account.is_inert:
                raise CardCanceledError(card_id, operation="limit update")
            account.limit = limit

    def limit(self, card_id: str) -> int:
        return self._account(card_id).limit

    def status(self, card_id: str) -> CardStatus:
        return self._account(card_id).status

    def current_exposure(self, card_id: str, as_of: Optional[datetime] = None) -> int:
        """Sum of charge amounts with ``as_of - 30d < timestamp <= as_of``."""
        return self._account(card_id).exposure(self._as_of(as_of), self._window)

    def available(self, card_id: str, as_of: Optional[datetime] = None) -> int:
        """Limit minus exposure. May be negative after a limit decrease."""
        account = self._account(card_id)
        return account.limit - account.exposure(self._as_of(as_of), self._window)

    async def authorize(
        self,
        card_id: str,
        amount: int,
        as_of: Optional[datetime] = None,
        event_id: Optional[str] = None,
    ) -> ChargeEvent:
        """Check the charge against the limit and record it in one step.

        Concurrent calls on the same card are serialized, so of two requests
        that each fit alone but not together, only one is recorded. A
        backdated charge must also fit every later window it falls into.

        Args:
            card_id: Card to charge
            amount: Positive amount in minor units
            as_of: Charge time (defaults to the clock's now)
            event_id: Optional caller-supplied event id; retrying with the
                same id and amount returns the original event

        Returns:
            The recorded ChargeEvent

        Raises:
            CardCanceledError: Card is canceled
            CardNotActiveError: Card is not active
            LimitExceededError: ``exposure + amount`` would exceed the limit
            StateConflictError: ``event_id`` already used with another amount
        """
        if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
            raise ValidationError("Authorization amount must be a positive integer", field="amount")
        account = self._account(card_id)
        async with account.lock:
            if account.is_inert:
                raise CardCanceledError(card_id, operation="authorization")
            if account.status != CardStatus.ACTIVE:
                raise CardNotActiveError(card_id, account.status.value)
            duplicate = account.find_duplicate(event_id, amount)
            if duplicate is not None:
                return duplicate

            at = self._as_of(as_of)
            exposure = account.peak_exposure(at, self._window)
            if exposure + amount > account.limit:
                logger.info(
                    "Declined charge of %d on %s: exposure %d, limit %d",
                    amount, card_id, exposure, account.limit,
                )
                raise LimitExceededError(card_id, amount, exposure, account.limit)

            event = self._append(account, amount, at, event_id)
        logger.debug("Authorized charge %s of %d on %s", event.event_id, amount, card_id)
        return event

    async def record(
        self,
        card_id: str,
        amount: int,
        at: Optional[datetime] = None,
        event_id: Optional[str] = None,
    ) -> ChargeEvent:
        """Ingest an externally authorized charge or refund without a limit check.

        Re-delivery of an ``event_id`` already recorded on this card returns
        the original event instead of counting it twice. Event ids are
        scoped to the card.
        """
        if isinstance(amount, bool) or not isinstance(amount, int) or amount == 0:
            raise ValidationError("Charge amount must be a non-zero integer", field="amount")
        account = self._account(card_id)
        async with account.lock:
            duplicate = account.find_duplicate(event_id, amount)
            if duplicate is not None:
                return duplicate
            if account.is_inert:
                raise CardCanceledError(card_id, operation="charge ingestion")
            event = self._append(account, amount, self._as_of(at), event_id)
        return event

    def find_event(self, card_id: str, event_id: str) -> Optional[ChargeEvent]:
        return self._account(card_id).seen.get(event_id)

    def events(self, card_id: str) -> tuple[ChargeEvent, ...]:
        """Full event history, including events outside the window."""
        return tuple(self._account(card_id).events)

    def _append(
        self,
        account: LedgerAccount,
        amount: int,
        at: datetime,
        event_id: Optional[str],
    ) -> ChargeEvent:
        if event_id is not None:
            event = ChargeEvent(card_id=account.card_id, amount=amount, timestamp=at, event_id=event_id)
        else:
            event = ChargeEvent(card_id=account.card_id, amount=amount, timestamp=at)
        account.events.append(event)
        account.seen[event.event_id] = event
        return event
