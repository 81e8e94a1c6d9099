from datetime import date

from sqlalchemy import create_engine
from sqlalchemy.orm import Session

from database import Base
from models import TransactionType
from periods import Window
from schemas import CategoryIn, SourceIn, TransactionIn
from services import CategoryService, MetricsService, SourceService
from services import TransactionService


def _post(session, source_id, category_id, txn_type, amount, day):
    return TransactionService(session).post(
        TransactionIn(
            amount_cents=amount,
            type=txn_type,
            date=day,
            category_id=category_id,
            source_id=source_id,
        )
    )


def _seed(session: Session):
    source = SourceService(session).create(
        SourceIn(name="Checking", balance_cents=10_000)
    )
    categories = CategoryService(session)
    groceries = categories.create(
        CategoryIn(name="Groceries", type=TransactionType.expense)
    )
    rent = categories.create(CategoryIn(name="Rent", type=TransactionType.expense))
    salary = categories.create(CategoryIn(name="Salary", type=TransactionType.income))

    income, expense = TransactionType.income, TransactionType.expense
    _post(session, source.id, salary.id, income, 5_000, date(2024, 3, 1))
    _post(session, source.id, rent.id, expense, 3_000, date(2024, 3, 2))
    _post(session, source.id, groceries.id, expense, 1_000, date(2024, 3, 2))
    _post(session, source.id, groceries.id, expense, 500, date(2024, 4, 1))
    return source, groceries, rent


def test_kpis_cover_only_the_window():
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        _seed(session)
        march = MetricsService(session).kpis(
            Window("custom", date(2024, 3, 1), date(2024, 4, 1))
        )
        assert march == {"income": 5_000, "expenses": 4_000, "net": 1_000}

        april = MetricsService(session).kpis(
            Window("custom", date(2024, 4, 1), date(2024, 5, 1))
        )
        assert april == {"income": 0, "expenses": 500, "net": -500}


def test_spending_by_category_has_percentages_largest_first():
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        _, groceries, rent = _seed(session)
        breakdown = MetricsService(session).category_breakdown(
            Window("custom", date(2024, 3, 1), date(2024, 4, 1))
        )

        assert [row["category_id"] for row in breakdown] == [rent.id, groceries.id]
        assert [row["amount_cents"] for row in breakdown] == [3_000, 1_000]
        assert [row["percent"] for row in breakdown] == [75.0, 25.0]


def test_cash_flow_is_continuous_with_running_net():
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        _seed(session)
        series = MetricsService(session).cash_flow(
            Window("custom", date(2024, 3, 1), date(2024, 3, 4))
        )

        assert [point["date"] for point in series] == [
            date(2024, 3, 1),
            date(2024, 3, 2),
            date(2024, 3, 3),
        ]
        assert [point["net_cents"] for point in series] == [5_000, -4_000, 0]
        assert [point["running_net_cents"] for point in series] == [
            5_000,
            1_000,
            1_000,
        ]


def test_summary_combines_totals_breakdown_and_balance():
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        _seed(session)
        window = Window("month", date(2024, 3, 1), date(2024, 4, 1))
        summary = MetricsService(session).summary(window)

        assert summary["income_cents"] == 5_000
        assert summary["expense_cents"] == 4_000
        assert summary["net_cents"] == 1_000
        assert len(summary["spending_by_category"]) == 2
        assert len(summary["cash_flow"]) == 31
        assert summary["cash_flow"][-1]["running_net_cents"] == 1_000
        assert summary["total_balance_cents"] == 10_500


def test_empty_and_inverted_windows_summarize_to_nothing():
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        _seed(session)
        service = MetricsService(session)
        for window in (
            Window("custom", date(2024, 3, 2), date(2024, 3, 2)),
            Window("custom", date(2024, 4, 1), date(2024, 3, 1)),
        ):
            summary = service.summary(window)
            assert summary["net_cents"] == 0
            assert summary["spending_by_category"] == []
            assert summary["cash_flow"] == []


def test_metrics_are_scoped_to_owner():
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        _seed(session)
        summary = MetricsService(session, 0).summary(
            Window("custom", date(2024, 1, 1), date(2025, 1, 1))
        )
        assert summary["income_cents"] == 0
        assert summary["spending_by_category"] == []
        assert summary["total_balance_cents"] == 0
