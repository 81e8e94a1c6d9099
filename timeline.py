"""Merge events, expanded occurrences and posted transactions into day buckets."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Optional

from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from config import get_settings
from models import CalendarEvent, EventType, Transaction, TransactionType
from recurrence import expand, occurrence_id
from services import get_current_user_id


logger = logging.getLogger(__name__)


class EntryKind(str, Enum):
    event = "event"
    occurrence = "occurrence"
    transaction = "transaction"


TYPE_PRECEDENCE = {
    EventType.income: 0,
    EventType.expense: 1,
    EventType.reminder: 2,
    EventType.prediction: 3,
}

KIND_ORDER = {
    EntryKind.event: 0,
    EntryKind.occurrence: 1,
    EntryKind.transaction: 2,
}


@dataclass
class TimelineEntry:
    kind: EntryKind
    id: str
    record_id: int
    date: date
    title: str
    type: EventType
    amount_cents: Optional[int] = None
    description: Optional[str] = None
    category_id: Optional[int] = None
    source_id: Optional[int] = None
    parent_id: Optional[int] = None
    is_recurring: bool = False
    metadata: Optional[dict[str, object]] = None

    @property
    def is_transaction(self) -> bool:
        return self.kind == EntryKind.transaction

    @property
    def editable(self) -> bool:
        return self.kind == EntryKind.event and self.type != EventType.prediction

    @property
    def counts_toward_totals(self) -> bool:
        return self.type in (EventType.income, EventType.expense)

    def sort_key(self) -> tuple[date, int, int, int]:
        return (
            self.date,
            TYPE_PRECEDENCE[self.type],
            KIND_ORDER[self.kind],
            self.record_id,
        )


@dataclass
class DayAggregate:
    income_cents: int = 0
    expense_cents: int = 0

    @property
    def net_cents(self) -> int:
        return self.income_cents - self.expense_cents

    def add(self, entry: TimelineEntry) -> None:
        if not entry.counts_toward_totals or not entry.amount_cents:
            return
        if entry.type == EventType.income:
            self.income_cents += entry.amount_cents
        else:
            self.expense_cents += entry.amount_cents


@dataclass
class DayBucket:
    date: date
    entries: list[TimelineEntry]
    overflow: int
    aggregate: DayAggregate
    running_net_cents: int


@dataclass
class TimelineResult:
    start: date
    end: date
    days: list[DayBucket] = field(default_factory=list)
    income_cents: int = 0
    expense_cents: int = 0

    @property
    def net_cents(self) -> int:
        return self.income_cents - self.expense_cents

    @property
    def entry_count(self) -> int:
        return sum(len(day.entries) + day.overflow for day in self.days)


def _event_entry(event: CalendarEvent) -> TimelineEntry:
    return TimelineEntry(
        kind=EntryKind.event,
        id=str(event.id),
        record_id=event.id,
        date=event.start_date,
        title=event.title,
        type=event.type,
        amount_cents=event.amount_cents,
        description=event.description,
        category_id=event.category_id,
        source_id=event.source_id,
        metadata=event.metadata_dict,
    )


def _occurrence_entry(event: CalendarEvent, day: date) -> TimelineEntry:
    return TimelineEntry(
        kind=EntryKind.occurrence,
        id=occurrence_id(event.id, day),
        record_id=event.id,
        date=day,
        title=event.title,
        type=event.type,
        amount_cents=event.amount_cents,
        description=event.description,
        category_id=event.category_id,
        source_id=event.source_id,
        parent_id=event.id,
        is_recurring=True,
        metadata=event.metadata_dict,
    )


def _transaction_entry(txn: Transaction) -> TimelineEntry:
    return TimelineEntry(
        kind=EntryKind.transaction,
        id=str(txn.id),
        record_id=txn.id,
        date=txn.date,
        title=txn.description or "",
        type=(
            EventType.income
            if txn.type == TransactionType.income
            else EventType.expense
        ),
        amount_cents=txn.amount_cents,
        description=txn.description,
        category_id=txn.category_id,
        source_id=txn.source_id,
    )


class TimelineService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id if user_id is not None else get_current_user_id()

    def collect_entries(self, start: date, end: date) -> list[TimelineEntry]:
        if start >= end:
            return []
        entries: list[TimelineEntry] = []

        one_off = self.session.scalars(
            select(CalendarEvent).where(
                CalendarEvent.user_id == self.user_id,
                CalendarEvent.is_recurring.is_(False),
                CalendarEvent.start_date >= start,
                CalendarEvent.start_date < end,
            )
        ).all()
        entries.extend(_event_entry(event) for event in one_off)

        recurring = self.session.scalars(
            select(CalendarEvent).where(
                CalendarEvent.user_id == self.user_id,
                CalendarEvent.is_recurring.is_(True),
                CalendarEvent.start_date < end,
                or_(CalendarEvent.end_date.is_(None), CalendarEvent.end_date >= start),
            )
        ).all()
        for event in recurring:
            entries.extend(
                _occurrence_entry(event, day) for day in expand(event, start, end)
            )

        transactions = self.session.scalars(
            select(Transaction).where(
                Transaction.user_id == self.user_id,
                Transaction.date >= start,
                Transaction.date < end,
            )
        ).all()
        entries.extend(_transaction_entry(txn) for txn in transactions)

        entries.sort(key=TimelineEntry.sort_key)
        return entries

    def get_timeline(
        self, start: date, end: date, entry_limit: Optional[int] = None
    ) -> TimelineResult:
        if entry_limit is None:
            entry_limit = get_settings().timeline_day_entry_limit
        result = TimelineResult(start=start, end=end)
        entries = self.collect_entries(start, end)

        by_day: dict[date, list[TimelineEntry]] = {}
        for entry in entries:
            by_day.setdefault(entry.date, []).append(entry)

        running = 0
        for day in sorted(by_day):
            day_entries = by_day[day]
            aggregate = DayAggregate()
            for entry in day_entries:
                aggregate.add(entry)
            running += aggregate.net_cents
            result.income_cents += aggregate.income_cents
            result.expense_cents += aggregate.expense_cents
            result.days.append(
                DayBucket(
                    date=day,
                    entries=day_entries[:entry_limit],
                    overflow=max(0, len(day_entries) - entry_limit),
                    aggregate=aggregate,
                    running_net_cents=running,
                )
            )
        logger.debug(
            f"timeline: user={self.user_id} start={start} end={end} "
            f"days={len(result.days)} entries={len(entries)}"
        )
        return result


def get_timeline(
    session: Session,
    owner_id: Optional[int],
    start: date,
    end: date,
    entry_limit: Optional[int] = None,
) -> TimelineResult:
    """Timeline for ``owner_id``; an unknown owner gets an empty result."""
    if owner_id is None:
        return TimelineResult(start=start, end=end)
    return TimelineService(session, owner_id).get_timeline(
        start, end, entry_limit=entry_limit
    )
