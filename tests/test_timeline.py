from datetime import date

from sqlalchemy import create_engine
from sqlalchemy.orm import Session

from database import Base
from models import EventType, Frequency, TransactionType
from schemas import CalendarEventIn, CategoryIn, PredictionIn, SourceIn, TransactionIn
from services import CalendarEventService, CategoryService, PredictionService
from services import SourceService, TransactionService
from timeline import EntryKind, TimelineService, get_timeline


def _seed(session: Session):
    source = SourceService(session).create(
        SourceIn(name="Checking", balance_cents=10000)
    )
    groceries = CategoryService(session).create(
        CategoryIn(name="Groceries", type=TransactionType.expense)
    )
    events = CalendarEventService(session)
    events.create(
        CalendarEventIn(
            title="Dinner",
            type=EventType.expense,
            amount_cents=1000,
            start_date=date(2024, 3, 5),
        )
    )
    events.create(
        CalendarEventIn(
            title="Call bank",
            type=EventType.reminder,
            start_date=date(2024, 3, 5),
        )
    )
    events.create(
        CalendarEventIn(
            title="Salary",
            type=EventType.income,
            amount_cents=5000,
            start_date=date(2024, 1, 10),
            is_recurring=True,
            frequency=Frequency.monthly,
        )
    )
    TransactionService(session).post(
        TransactionIn(
            amount_cents=200,
            type=TransactionType.expense,
            date=date(2024, 3, 5),
            description="Bakery",
            category_id=groceries.id,
            source_id=source.id,
        )
    )
    return source, groceries


def test_timeline_merges_events_occurrences_and_transactions():
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        _seed(session)
        result = TimelineService(session).get_timeline(
            date(2024, 3, 1), date(2024, 4, 1)
        )

        assert [day.date for day in result.days] == [
            date(2024, 3, 5),
            date(2024, 3, 10),
        ]
        first, second = result.days

        assert [(entry.kind, entry.type) for entry in first.entries] == [
            (EntryKind.event, EventType.expense),
            (EntryKind.transaction, EventType.expense),
            (EntryKind.event, EventType.reminder),
        ]
        assert first.entries[1].is_transaction
        assert not first.entries[1].editable
        assert first.entries[0].editable
        assert first.aggregate.expense_cents == 1200
        assert first.aggregate.income_cents == 0
        assert first.running_net_cents == -1200

        occurrence = second.entries[0]
        assert occurrence.kind == EntryKind.occurrence
        assert occurrence.id == f"{occurrence.parent_id}:2024-03-10"
        assert second.aggregate.income_cents == 5000
        assert second.running_net_cents == 3800

        assert result.income_cents == 5000
        assert result.expense_cents == 1200
        assert result.net_cents == 3800


def test_day_overflow_beyond_entry_limit():
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        _seed(session)
        result = TimelineService(session).get_timeline(
            date(2024, 3, 5), date(2024, 3, 6), entry_limit=2
        )

        assert len(result.days) == 1
        day = result.days[0]
        assert len(day.entries) == 2
        assert day.overflow == 1
        assert day.aggregate.expense_cents == 1200
        assert result.entry_count == 3


def test_occurrence_ids_are_stable_across_queries():
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        _seed(session)
        service = TimelineService(session)
        window = (date(2024, 1, 1), date(2024, 7, 1))
        first = [e.id for e in service.collect_entries(*window) if e.is_recurring]
        second = [e.id for e in service.collect_entries(*window) if e.is_recurring]
        assert first == second
        assert len(first) == 6


def test_predictions_show_but_do_not_count_toward_totals():
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        PredictionService(session).propose(
            PredictionIn(
                title="Electricity",
                amount_cents=7500,
                start_date=date(2024, 3, 20),
                confidence=0.8,
                pattern="monthly",
                generator="bill-predictor",
            )
        )
        result = TimelineService(session).get_timeline(
            date(2024, 3, 1), date(2024, 4, 1)
        )

        assert len(result.days) == 1
        entry = result.days[0].entries[0]
        assert entry.type == EventType.prediction
        assert entry.metadata["confidence"] == 0.8
        assert not entry.editable
        assert result.days[0].aggregate.net_cents == 0
        assert result.expense_cents == 0


def test_empty_window_and_missing_owner_yield_empty_timeline():
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        _seed(session)
        service = TimelineService(session)
        assert service.get_timeline(date(2024, 3, 5), date(2024, 3, 5)).days == []
        assert service.get_timeline(date(2024, 4, 1), date(2024, 3, 1)).days == []
        missing = get_timeline(session, None, date(2024, 3, 1), date(2024, 4, 1))
        assert missing.days == []


def test_timeline_is_scoped_to_owner():
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        _seed(session)
        result = get_timeline(session, 2, date(2024, 1, 1), date(2025, 1, 1))
        assert result.days == []
