"""Bulk shipment batching for physical cards.

Cards that share a bulk shipping group and fall into the same shipping window
go out as one consolidated shipment. A shipping window is identified by its
cutoff instant: 12:00 in the business timezone on a business day (Mon-Fri).
A card created strictly before a business day's cutoff ships with that
cutoff; anything later, or created on a weekend, rolls to the next business
day's cutoff.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import Iterable, Optional
from zoneinfo import ZoneInfo

from .clock import Clock, SystemClock
from .config import RainSettings
from .exceptions import ValidationError
from .lifecycle import CardRecord

logger = logging.getLogger(__name__)

DEFAULT_TIMEZONE = "America/New_York"
DEFAULT_CUTOFF = time(12, 0)
BUSINESS_DAYS = frozenset({0, 1, 2, 3, 4})  # Monday-Friday


@dataclass(frozen=True)
class ShipmentBatch:
    """Cards that leave together. Derived on demand, never stored."""

    group_id: Optional[str]
    cutoff: datetime
    card_ids: tuple[str, ...]

    @property
    def is_bulk(self) -> bool:
        return self.group_id is not None and len(self.card_ids) >= 2

    @property
    def size(self) -> int:
        return len(self.card_ids)


class ShipmentBatcher:
    """Computes shipping windows and shipment batches.

    Args:
        timezone: IANA name of the business timezone
        cutoff: Local cutoff time on business days
        clock: Time source for ``next_cutoff``
        holidays: Optional local dates treated as non-business days
    """

    def __init__(
        self,
        timezone: str = DEFAULT_TIMEZONE,
        cutoff: time = DEFAULT_CUTOFF,
        clock: Optional[Clock] = None,
        holidays: Iterable[date] = (),
    ) -> None:
        self._tz = ZoneInfo(timezone)
        self._cutoff = cutoff
        self._clock = clock or SystemClock()
        self._holidays = frozenset(holidays)

    @classmethod
    def from_settings(cls, settings: RainSettings, clock: Optional[Clock] = None) -> "ShipmentBatcher":
        return cls(settings.business_timezone, settings.shipment_cutoff, clock)

    @property
    def tz(self) -> ZoneInfo:
        return self._tz

    def is_business_day(self, day: date) -> bool:
        return day.weekday() in BUSINESS_DAYS and day not in self._holidays

    def _cutoff_on(self, day: date) -> datetime:
        return datetime.combine(day, self._cutoff, tzinfo=self._tz)

    def next_business_day(self, day: date) -> date:
        candidate = day + timedelta(days=1)
        while not self.is_business_day(candidate):
            candidate += timedelta(days=1)
        return candidate

    def shipping_window(self, created_at: datetime) -> datetime:
        """Cutoff instant a card created at ``created_at`` ships with."""
        if created_at.tzinfo is None or created_at.utcoffset() is None:
            raise ValidationError("Card creation time must be timezone-aware", field="created_at")
        local = created_at.astimezone(self._tz)
        day = local.date()
        if self.is_business_day(day) and local < self._cutoff_on(day):
            return self._cutoff_on(day)
        return self._cutoff_on(self.next_business_day(day))

    def next_cutoff(self) -> datetime:
        """Cutoff a card created right now would ship with."""
        return self.shipping_window(self._clock.now())

    def plan(self, cards: Iterable[CardRecord]) -> list[ShipmentBatch]:
        """Group physical cards into shipment batches.

        Cards with the same bulk shipping group and the same shipping window
        form one batch. Cards without a group each ship on their own. Virtual
        cards are ignored. Output is ordered by window, then group id, then
        creation time.
        """
        grouped: dict[tuple[str, datetime], list[CardRecord]] = defaultdict(list)
        batches: list[tuple[tuple, ShipmentBatch]] = []

        for card in cards:
            if not card.is_physical:
                continue
            window = self.shipping_window(card.created_at)
            if card.bulk_shipping_group_id is None:
                batch = ShipmentBatch(group_id=None, cutoff=window, card_ids=(card.card_id,))
                batches.append(((window, 1, "", card.created_at, card.card_id), batch))
            else:
                grouped[(card.bulk_shipping_group_id, window)].append(card)

        for (group_id, window), members in grouped.items():
            members.sort(key=lambda c: (c.created_at, c.card_id))
            batch = ShipmentBatch(
                group_id=group_id,
                cutoff=window,
                card_ids=tuple(c.card_id for c in members),
            )
            first = members[0]
            batches.append(((window, 0, group_id, first.created_at, first.card_id), batch))

        batches.sort(key=lambda item: item[0])
        result = [batch for _, batch in batches]
        logger.debug(
            "Planned %d shipment(s), %d bulk",
            len(result), sum(1 for b in result if b.is_bulk),
        )
        return result

    def bulk_batches(self, cards: Iterable[CardRecord]) -> list[ShipmentBatch]:
        return [b for b in self.plan(cards) if b.is_bulk]

    def individual_shipments(self, cards: Iterable[CardRecord]) -> list[ShipmentBatch]:
        return [b for b in self.plan(cards) if not b.is_bulk]

    def batch_for(self, card: CardRecord, cards: Iterable[CardRecord]) -> Optional[ShipmentBatch]:
        """The batch ``card`` belongs to within ``cards``, or None for virtual cards."""
        for batch in self.plan(cards):
            if card.card_id in batch.card_ids:
                return batch
        return None
