from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Callable, Optional, TypeVar, Union

from sqlalchemy import case, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, joinedload
from sqlalchemy.orm.exc import StaleDataError

from errors import AlreadyResolved, ConflictError, NotFound, ValidationError
from ledger import BalanceLedger, conflict_retrying, lock_sources
from models import (
    CalendarEvent,
    Category,
    EventType,
    PredictionResolution,
    Provenance,
    Resolution,
    Source,
    SourceStatus,
    Transaction,
    TransactionType,
    signed_amount,
)
from periods import Window
from recurrence import (
    expand,
    local_today,
    next_occurrence_after,
    parse_occurrence_id,
)
from schemas import (
    AcceptPredictionIn,
    CalendarEventIn,
    CalendarEventPatch,
    CategoryIn,
    PredictionIn,
    SourceIn,
    SourceUpdate,
    TransactionIn,
    TransactionPatch,
)


logger = logging.getLogger(__name__)

T = TypeVar("T")


def get_current_user_id() -> int:
    return 1


def commit_ledger_write(
    session: Session,
    source_ids: Union[tuple[Optional[int], ...], Callable[[], tuple]],
    work: Callable[[], T],
) -> T:
    """Run ``work`` under the source locks and commit it as one unit.

    ``source_ids`` may be a callable; it is re-evaluated on every attempt so a
    retry locks whatever the affected rows reference by then. Any failure rolls
    the whole unit back. Lost races are retried with backoff and surface as
    ``ConflictError`` once attempts run out.
    """
    for attempt in conflict_retrying():
        with attempt:
            ids = source_ids() if callable(source_ids) else source_ids
            with lock_sources(*ids):
                try:
                    result = work()
                    session.commit()
                except StaleDataError as exc:
                    session.rollback()
                    raise ConflictError(
                        "Ledger entry was modified concurrently, please retry"
                    ) from exc
                except Exception:
                    session.rollback()
                    raise
    return result


@dataclass
class TransactionFilters:
    type: Optional[TransactionType] = None
    category_id: Optional[int] = None
    source_id: Optional[int] = None
    provenance: Optional[Provenance] = None


class SourceService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id if user_id is not None else get_current_user_id()

    def list_all(self) -> list[Source]:
        stmt = (
            select(Source)
            .where(Source.user_id == self.user_id)
            .order_by(Source.name, Source.id)
        )
        return self.session.scalars(stmt).all()

    def get(self, source_id: int) -> Source:
        source = self.session.get(Source, source_id)
        if not source or source.user_id != self.user_id:
            raise NotFound("Source not found")
        return source

    def create(self, data: SourceIn) -> Source:
        source = Source(
            user_id=self.user_id,
            name=data.name.strip(),
            kind=data.kind,
            balance_cents=data.balance_cents,
            opening_balance_cents=data.balance_cents,
            status=data.status,
            interest_rate=data.interest_rate,
            interest_period=data.interest_period,
            transfer_latency=data.transfer_latency,
        )
        self.session.add(source)
        self.session.commit()
        self.session.refresh(source)
        logger.info(
            f"source_created: id={source.id} user={self.user_id} "
            f"opening={source.opening_balance_cents}"
        )
        return source

    def update(self, source_id: int, data: SourceUpdate) -> Source:
        source = self.get(source_id)
        for field, value in data.model_dump(exclude_unset=True).items():
            if value is None:
                continue
            setattr(source, field, value.strip() if field == "name" else value)
        self._commit_versioned()
        self.session.refresh(source)
        return source

    def set_status(self, source_id: int, status: SourceStatus) -> Source:
        source = self.get(source_id)
        source.status = status
        self._commit_versioned()
        self.session.refresh(source)
        logger.info(f"source_status: id={source.id} status={status.value}")
        return source

    def delete(self, source_id: int) -> bool:
        """Delete an unused source; a referenced one is soft-locked instead.

        Returns True when the row was removed.
        """
        source = self.get(source_id)
        in_use = self.session.scalar(
            select(func.count(Transaction.id)).where(Transaction.source_id == source.id)
        )
        if in_use:
            source.status = SourceStatus.locked
            self._commit_versioned()
            logger.info(f"source_locked_instead_of_delete: id={source.id}")
            return False
        self.session.delete(source)
        self._commit_versioned()
        return True

    def can_afford(self, source_id: int, expense_cents: int) -> bool:
        return BalanceLedger(self.session, self.user_id).can_afford(
            source_id, expense_cents
        )

    def total_balance(self) -> int:
        stmt = select(func.coalesce(func.sum(Source.balance_cents), 0)).where(
            Source.user_id == self.user_id,
            Source.status != SourceStatus.unavailable,
        )
        return int(self.session.execute(stmt).scalar_one() or 0)

    def _commit_versioned(self) -> None:
        try:
            self.session.commit()
        except StaleDataError as exc:
            self.session.rollback()
            raise ConflictError(
                "Source was modified concurrently, please retry"
            ) from exc


class CategoryService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id if user_id is not None else get_current_user_id()

    def list_all(self, type: Optional[TransactionType] = None) -> list[Category]:
        stmt = (
            select(Category)
            .where(Category.user_id == self.user_id)
            .order_by(Category.type, Category.name)
        )
        if type:
            stmt = stmt.where(Category.type == type)
        return self.session.scalars(stmt).all()

    def get(self, category_id: int) -> Category:
        category = self.session.get(Category, category_id)
        if not category or category.user_id != self.user_id:
            raise NotFound("Category not found")
        return category

    def create(self, data: CategoryIn) -> Category:
        existing = self.session.scalar(
            select(Category).where(
                Category.user_id == self.user_id,
                Category.type == data.type,
                func.lower(Category.name) == data.name.strip().lower(),
            )
        )
        if existing:
            raise ValidationError("Category with this name already exists")
        category = Category(
            user_id=self.user_id,
            name=data.name.strip(),
            type=data.type,
            color=data.color,
        )
        self.session.add(category)
        self.session.commit()
        self.session.refresh(category)
        return category

    def rename(self, category_id: int, name: str) -> Category:
        category = self.get(category_id)
        clean_name = name.strip()
        if not clean_name:
            raise ValidationError("Category name cannot be empty")
        category.name = clean_name
        self.session.commit()
        return category

    def delete(self, category_id: int) -> None:
        category = self.get(category_id)
        in_use = self.session.scalar(
            select(func.count(Transaction.id)).where(
                Transaction.category_id == category.id
            )
        )
        if in_use:
            raise ValidationError("Category is used by transactions")
        self.session.delete(category)
        self.session.commit()


class TransactionService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id if user_id is not None else get_current_user_id()
        self.ledger = BalanceLedger(session, self.user_id)

    def _category_for(self, category_id: int, txn_type: TransactionType) -> Category:
        category = self.session.get(Category, category_id)
        if not category or category.user_id != self.user_id:
            raise NotFound("Category not found")
        if category.type != txn_type:
            raise ValidationError("Category type mismatch")
        return category

    def post(self, data: TransactionIn) -> Transaction:
        def work() -> Transaction:
            self._category_for(data.category_id, data.type)
            txn = Transaction(
                user_id=self.user_id,
                amount_cents=data.amount_cents,
                type=data.type,
                date=data.date,
                description=data.description,
                category_id=data.category_id,
                source_id=data.source_id,
                provenance=data.provenance,
            )
            self.session.add(txn)
            self.ledger.apply(
                data.source_id,
                signed_amount(data.type, data.amount_cents),
                allow_overdraft=data.allow_overdraft,
            )
            self.session.flush()
            return txn

        txn = commit_ledger_write(self.session, (data.source_id,), work)
        self.session.refresh(txn)
        logger.info(
            f"transaction_posted: id={txn.id} source={txn.source_id} "
            f"type={txn.type.value} amount={txn.amount_cents}"
        )
        return txn

    def get(self, transaction_id: int) -> Transaction:
        stmt = (
            select(Transaction)
            .options(joinedload(Transaction.category), joinedload(Transaction.source))
            .where(
                Transaction.user_id == self.user_id, Transaction.id == transaction_id
            )
            .execution_options(populate_existing=True)
        )
        txn = self.session.scalar(stmt)
        if not txn:
            raise NotFound("Transaction not found")
        return txn

    def _source_ids_for(
        self, transaction_id: int, target_source_id: Optional[int] = None
    ) -> tuple[int, ...]:
        current = self.get(transaction_id)
        return (current.source_id, target_source_id or current.source_id)

    def _check_locked(self, locked: tuple[int, ...], *source_ids: int) -> None:
        if any(source_id not in locked for source_id in source_ids):
            raise ConflictError("Transaction moved concurrently, please retry")

    def edit(self, transaction_id: int, patch: TransactionPatch) -> Transaction:
        locked: tuple[int, ...] = ()

        def lock_ids() -> tuple[int, ...]:
            nonlocal locked
            locked = self._source_ids_for(transaction_id, patch.source_id)
            return locked

        def work() -> Transaction:
            txn = self.get(transaction_id)
            old_source_id = txn.source_id
            old_signed = txn.signed_amount_cents
            new_source_id = patch.source_id or old_source_id
            self._check_locked(locked, old_source_id, new_source_id)

            new_type = patch.type or txn.type
            new_amount = patch.amount_cents or txn.amount_cents
            new_category_id = patch.category_id or txn.category_id
            if patch.type is not None or patch.category_id is not None:
                self._category_for(new_category_id, new_type)

            ledger_changed = (
                new_source_id != old_source_id
                or new_amount != txn.amount_cents
                or new_type != txn.type
            )
            if ledger_changed:
                self.ledger.reverse(old_source_id, old_signed)
                self.ledger.apply(
                    new_source_id,
                    signed_amount(new_type, new_amount),
                    allow_overdraft=patch.allow_overdraft,
                )

            txn.type = new_type
            txn.amount_cents = new_amount
            txn.category_id = new_category_id
            txn.source_id = new_source_id
            if patch.date is not None:
                txn.date = patch.date
            if "description" in patch.model_fields_set:
                txn.description = patch.description
            self.session.flush()
            return txn

        txn = commit_ledger_write(self.session, lock_ids, work)
        self.session.refresh(txn)
        logger.info(f"transaction_edited: id={txn.id} source={txn.source_id}")
        return txn

    def delete(self, transaction_id: int) -> None:
        locked: tuple[int, ...] = ()

        def lock_ids() -> tuple[int, ...]:
            nonlocal locked
            locked = self._source_ids_for(transaction_id)
            return locked

        def work() -> None:
            txn = self.get(transaction_id)
            self._check_locked(locked, txn.source_id)
            self.ledger.reverse(txn.source_id, txn.signed_amount_cents)
            self.session.delete(txn)
            self.session.flush()

        commit_ledger_write(self.session, lock_ids, work)
        logger.info(f"transaction_deleted: id={transaction_id}")

    def list(
        self,
        window: Window,
        filters: Optional[TransactionFilters] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[Transaction]:
        filters = filters or TransactionFilters()
        stmt = (
            select(Transaction)
            .options(joinedload(Transaction.category), joinedload(Transaction.source))
            .where(
                Transaction.user_id == self.user_id,
                Transaction.date >= window.start,
                Transaction.date < window.end,
            )
            .order_by(Transaction.date.desc(), Transaction.id.desc())
            .offset(offset)
            .limit(limit)
        )
        if filters.type:
            stmt = stmt.where(Transaction.type == filters.type)
        if filters.category_id:
            stmt = stmt.where(Transaction.category_id == filters.category_id)
        if filters.source_id:
            stmt = stmt.where(Transaction.source_id == filters.source_id)
        if filters.provenance:
            stmt = stmt.where(Transaction.provenance == filters.provenance)
        return self.session.scalars(stmt).all()


class CalendarEventService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id if user_id is not None else get_current_user_id()

    def get(self, event_id: int) -> CalendarEvent:
        event = self.session.get(CalendarEvent, event_id)
        if not event or event.user_id != self.user_id:
            raise NotFound("Event not found")
        return event

    def list(self, include_predictions: bool = True) -> list[CalendarEvent]:
        stmt = (
            select(CalendarEvent)
            .where(CalendarEvent.user_id == self.user_id)
            .order_by(CalendarEvent.start_date, CalendarEvent.id)
        )
        if not include_predictions:
            stmt = stmt.where(CalendarEvent.type != EventType.prediction)
        return self.session.scalars(stmt).all()

    def _check_references(
        self, category_id: Optional[int], source_id: Optional[int]
    ) -> None:
        if category_id is not None:
            category = self.session.get(Category, category_id)
            if not category or category.user_id != self.user_id:
                raise NotFound("Category not found")
        if source_id is not None:
            source = self.session.get(Source, source_id)
            if not source or source.user_id != self.user_id:
                raise NotFound("Source not found")

    def create(self, data: CalendarEventIn) -> CalendarEvent:
        if data.type == EventType.prediction:
            raise ValidationError("Predictions are proposed by the generator")
        self._check_references(data.category_id, data.source_id)
        event = CalendarEvent(user_id=self.user_id, **data.model_dump())
        self.session.add(event)
        self.session.commit()
        self.session.refresh(event)
        return event

    def edit(self, event_id: int, patch: CalendarEventPatch) -> CalendarEvent:
        event = self.get(event_id)
        if event.type == EventType.prediction:
            raise ValidationError("Predictions are resolved by accepting or dismissing")
        merged = {
            "title": event.title,
            "description": event.description,
            "type": event.type,
            "amount_cents": event.amount_cents,
            "start_date": event.start_date,
            "is_recurring": event.is_recurring,
            "frequency": event.frequency,
            "recurrence_count": event.recurrence_count,
            "end_date": event.end_date,
            "category_id": event.category_id,
            "source_id": event.source_id,
        }
        merged.update(patch.model_dump(exclude_unset=True))
        try:
            data = CalendarEventIn(**merged)
        except ValueError as exc:
            raise ValidationError(str(exc)) from exc
        if data.type == EventType.prediction:
            raise ValidationError("Events cannot be turned into predictions")
        self._check_references(data.category_id, data.source_id)
        for field, value in data.model_dump().items():
            setattr(event, field, value)
        self.session.commit()
        self.session.refresh(event)
        return event

    def resolve_occurrence(self, value: str) -> tuple[CalendarEvent, date]:
        try:
            parent_id, day = parse_occurrence_id(value)
        except ValueError as exc:
            raise ValidationError(str(exc)) from exc
        event = self.get(parent_id)
        if day not in expand(event, day, day + timedelta(days=1)):
            raise NotFound("Occurrence not found")
        return event, day

    def delete(self, event_id: int) -> None:
        event = self.get(event_id)
        if event.is_proposed_prediction:
            raise ValidationError("Dismiss predictions instead of deleting them")
        self.session.delete(event)
        self.session.commit()


class PredictionService:
    """Lifecycle of generator-proposed bills: proposed -> accepted | dismissed."""

    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id if user_id is not None else get_current_user_id()
        self.ledger = BalanceLedger(session, self.user_id)

    def list_proposed(self, window: Optional[Window] = None) -> list[CalendarEvent]:
        stmt = (
            select(CalendarEvent)
            .where(
                CalendarEvent.user_id == self.user_id,
                CalendarEvent.type == EventType.prediction,
                CalendarEvent.prediction_generator.isnot(None),
            )
            .order_by(CalendarEvent.start_date, CalendarEvent.id)
        )
        if window:
            stmt = stmt.where(
                CalendarEvent.start_date >= window.start,
                CalendarEvent.start_date < window.end,
            )
        return self.session.scalars(stmt).all()

    def propose(self, data: PredictionIn) -> CalendarEvent:
        existing = self.session.scalar(
            select(CalendarEvent).where(
                CalendarEvent.user_id == self.user_id,
                CalendarEvent.type == EventType.prediction,
                CalendarEvent.title == data.title,
                CalendarEvent.prediction_pattern == data.pattern,
                CalendarEvent.start_date == data.start_date,
            )
        )
        if existing:
            logger.info(f"prediction_duplicate: id={existing.id} title={data.title}")
            return existing

        if data.category_id is not None:
            category = self.session.get(Category, data.category_id)
            if not category or category.user_id != self.user_id:
                raise NotFound("Category not found")
        if data.source_id is not None:
            source = self.session.get(Source, data.source_id)
            if not source or source.user_id != self.user_id:
                raise NotFound("Source not found")

        event = CalendarEvent(
            user_id=self.user_id,
            title=data.title,
            description=data.description
            or f"Predicted bill - {data.pattern}\n"
            f"Confidence: {data.confidence * 100:.0f}%",
            type=EventType.prediction,
            amount_cents=data.amount_cents,
            start_date=data.start_date,
            is_recurring=data.frequency is not None,
            frequency=data.frequency,
            recurrence_count=data.recurrence_count,
            category_id=data.category_id,
            source_id=data.source_id,
            prediction_confidence=data.confidence,
            prediction_pattern=data.pattern,
            prediction_generator=data.generator,
            prediction_generated_at=data.generated_at or datetime.utcnow(),
        )
        self.session.add(event)
        self.session.commit()
        self.session.refresh(event)
        logger.info(
            f"prediction_proposed: id={event.id} user={self.user_id} "
            f"generator={data.generator} confidence={data.confidence}"
        )
        return event

    def _proposed(self, event_id: int) -> CalendarEvent:
        resolved = self.session.scalar(
            select(PredictionResolution).where(
                PredictionResolution.event_id == event_id,
                PredictionResolution.user_id == self.user_id,
            )
        )
        if resolved:
            raise AlreadyResolved(
                f"Prediction {event_id} was already {resolved.resolution.value}"
            )
        event = self.session.get(
            CalendarEvent, event_id, populate_existing=True
        )
        if not event or event.user_id != self.user_id:
            raise NotFound("Prediction not found")
        if not event.is_proposed_prediction:
            raise ValidationError("Event is not a proposed prediction")
        return event

    def _resolve(
        self,
        event: CalendarEvent,
        resolution: Resolution,
        transaction_id: Optional[int] = None,
    ) -> None:
        self.session.add(
            PredictionResolution(
                user_id=self.user_id,
                event_id=event.id,
                resolution=resolution,
                transaction_id=transaction_id,
                title=event.title,
                amount_cents=event.amount_cents,
            )
        )
        self.session.delete(event)
        try:
            self.session.flush()
        except IntegrityError as exc:
            raise AlreadyResolved(
                f"Prediction {event.id} was resolved concurrently"
            ) from exc

    def _carry_schedule_forward(self, event: CalendarEvent) -> Optional[CalendarEvent]:
        following = next_occurrence_after(event, event.start_date)
        if following is None:
            return None
        index, next_date = following
        remaining = (
            event.recurrence_count - index + 1
            if event.recurrence_count is not None
            else None
        )
        category = self.session.get(Category, event.category_id)
        successor = CalendarEvent(
            user_id=self.user_id,
            title=event.title,
            description=event.description,
            type=EventType(category.type.value),
            amount_cents=event.amount_cents,
            start_date=next_date,
            is_recurring=True,
            frequency=event.frequency,
            recurrence_count=remaining,
            end_date=event.end_date,
            category_id=event.category_id,
            source_id=event.source_id,
        )
        self.session.add(successor)
        return successor

    def accept(
        self, event_id: int, options: Optional[AcceptPredictionIn] = None
    ) -> Transaction:
        options = options or AcceptPredictionIn()
        event = self._proposed(event_id)
        source_id = options.source_id or event.source_id
        category_id = options.category_id or event.category_id
        if source_id is None:
            raise ValidationError("A source is required to accept this prediction")
        if category_id is None:
            raise ValidationError("A category is required to accept this prediction")

        def work() -> Transaction:
            prediction = self._proposed(event_id)
            category = self.session.get(Category, category_id)
            if not category or category.user_id != self.user_id:
                raise NotFound("Category not found")
            txn = Transaction(
                user_id=self.user_id,
                amount_cents=prediction.amount_cents,
                type=category.type,
                date=prediction.start_date,
                description=prediction.title,
                category_id=category.id,
                source_id=source_id,
                provenance=Provenance.prediction_confirmed,
                origin_event_id=prediction.id,
            )
            self.session.add(txn)
            self.ledger.apply(
                source_id,
                signed_amount(category.type, prediction.amount_cents),
                allow_overdraft=options.allow_overdraft,
            )
            self.session.flush()
            prediction.category_id = category.id
            prediction.source_id = source_id
            if prediction.is_recurring:
                self._carry_schedule_forward(prediction)
            self._resolve(prediction, Resolution.accepted, transaction_id=txn.id)
            return txn

        txn = commit_ledger_write(self.session, (source_id,), work)
        self.session.refresh(txn)
        logger.info(
            f"prediction_accepted: id={event_id} transaction={txn.id} "
            f"amount={txn.amount_cents}"
        )
        return txn

    def dismiss(self, event_id: int) -> None:
        event = self._proposed(event_id)
        try:
            self._resolve(event, Resolution.dismissed)
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise
        logger.info(f"prediction_dismissed: id={event_id}")

    def resolution_for(self, event_id: int) -> Optional[PredictionResolution]:
        return self.session.scalar(
            select(PredictionResolution).where(
                PredictionResolution.event_id == event_id,
                PredictionResolution.user_id == self.user_id,
            )
        )

    def prune_stale(
        self, older_than_days: int, today: Optional[date] = None
    ) -> int:
        """Expire proposals whose date is older than the retention cutoff."""
        today = today or local_today()
        cutoff = today - timedelta(days=older_than_days)
        stale = self.session.scalars(
            select(CalendarEvent).where(
                CalendarEvent.user_id == self.user_id,
                CalendarEvent.type == EventType.prediction,
                CalendarEvent.prediction_generator.isnot(None),
                CalendarEvent.start_date < cutoff,
            )
        ).all()
        try:
            for event in stale:
                self._resolve(event, Resolution.expired)
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise
        if stale:
            logger.info(f"prediction_expired: user={self.user_id} count={len(stale)}")
        return len(stale)


class MetricsService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id if user_id is not None else get_current_user_id()

    def _in_window(self, window: Window) -> tuple:
        return (
            Transaction.user_id == self.user_id,
            Transaction.date >= window.start,
            Transaction.date < window.end,
        )

    def kpis(self, window: Window) -> dict[str, int]:
        def total_of(txn_type: TransactionType):
            return func.coalesce(
                func.sum(
                    case(
                        (Transaction.type == txn_type, Transaction.amount_cents),
                        else_=0,
                    )
                ),
                0,
            )

        stmt = select(
            total_of(TransactionType.income).label("income"),
            total_of(TransactionType.expense).label("expenses"),
        ).where(*self._in_window(window))
        row = self.session.execute(stmt).one()
        income = int(row.income or 0)
        expenses = int(row.expenses or 0)
        return {"income": income, "expenses": expenses, "net": income - expenses}

    def category_breakdown(
        self,
        window: Window,
        transaction_type: TransactionType = TransactionType.expense,
    ) -> list[dict[str, object]]:
        total_col = func.sum(Transaction.amount_cents)
        stmt = (
            select(
                Category.id.label("category_id"),
                Category.name.label("name"),
                total_col.label("total"),
            )
            .join(Category, Category.id == Transaction.category_id)
            .where(*self._in_window(window), Transaction.type == transaction_type)
            .group_by(Category.id, Category.name)
            .order_by(total_col.desc(), Category.name)
        )
        rows = self.session.execute(stmt).all()
        total = sum(row.total or 0 for row in rows)
        breakdown = []
        for row in rows:
            amount = int(row.total or 0)
            percent = (amount / total * 100) if total else 0
            breakdown.append(
                {
                    "category_id": row.category_id,
                    "name": row.name,
                    "amount_cents": amount,
                    "percent": percent,
                }
            )
        return breakdown

    def cash_flow(self, window: Window) -> list[dict[str, object]]:
        """Net movement per day of ``window`` with a running total.

        Days without transactions are included with a zero net so the series
        is continuous.
        """
        signed = case(
            (Transaction.type == TransactionType.income, Transaction.amount_cents),
            else_=-Transaction.amount_cents,
        )
        stmt = (
            select(Transaction.date, func.sum(signed).label("net"))
            .where(*self._in_window(window))
            .group_by(Transaction.date)
        )
        daily = {row.date: int(row.net or 0) for row in self.session.execute(stmt)}

        running = 0
        series = []
        for day in window.days():
            net = daily.get(day, 0)
            running += net
            series.append({"date": day, "net_cents": net, "running_net_cents": running})
        return series

    def summary(self, window: Window) -> dict[str, object]:
        totals = self.kpis(window)
        return {
            "start": window.start,
            "end": window.end,
            "income_cents": totals["income"],
            "expense_cents": totals["expenses"],
            "net_cents": totals["net"],
            "spending_by_category": self.category_breakdown(window),
            "cash_flow": self.cash_flow(window),
            "total_balance_cents": SourceService(
                self.session, self.user_id
            ).total_balance(),
        }


def prune_stale_predictions(
    session: Session, older_than_days: int, today: Optional[date] = None
) -> int:
    user_ids = session.scalars(
        select(CalendarEvent.user_id)
        .where(CalendarEvent.type == EventType.prediction)
        .distinct()
    ).all()
    total = 0
    for user_id in user_ids:
        total += PredictionService(session, user_id).prune_stale(
            older_than_days, today=today
        )
    return total