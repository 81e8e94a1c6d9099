import random
import threading
from contextlib import contextmanager
from datetime import date, timedelta

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session

import services
from database import Base
from errors import ConflictError, InsufficientFunds, NotFound, SourceLocked
from ledger import BalanceLedger, find_drifted_sources, lock_sources
from models import Source, SourceStatus, Transaction, TransactionType
from schemas import CategoryIn, SourceIn, TransactionIn, TransactionPatch
from services import (
    CategoryService,
    SourceService,
    TransactionService,
    commit_ledger_write,
)


def _setup(session: Session, balance_cents: int = 1000):
    source = SourceService(session).create(
        SourceIn(name="Checking", balance_cents=balance_cents)
    )
    groceries = CategoryService(session).create(
        CategoryIn(name="Groceries", type=TransactionType.expense)
    )
    salary = CategoryService(session).create(
        CategoryIn(name="Salary", type=TransactionType.income)
    )
    return source, groceries, salary


def _expense(source_id: int, category_id: int, amount: int, **extra) -> TransactionIn:
    return TransactionIn(
        amount_cents=amount,
        type=TransactionType.expense,
        date=date(2024, 3, 1),
        category_id=category_id,
        source_id=source_id,
        **extra,
    )


def test_post_then_delete_restores_balance():
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        source, groceries, _ = _setup(session)
        service = TransactionService(session)

        txn = service.post(_expense(source.id, groceries.id, 200))
        assert session.get(Source, source.id).balance_cents == 800

        service.delete(txn.id)
        assert session.get(Source, source.id).balance_cents == 1000
        assert session.get(Transaction, txn.id) is None


def test_overdraft_is_blocked_and_nothing_is_written():
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        source, groceries, _ = _setup(session, balance_cents=100)
        service = TransactionService(session)

        with pytest.raises(InsufficientFunds) as excinfo:
            service.post(_expense(source.id, groceries.id, 150))

        assert excinfo.value.balance_cents == 100
        assert excinfo.value.required_cents == 150
        assert session.get(Source, source.id).balance_cents == 100
        assert session.query(Transaction).count() == 0


def test_overdraft_allowed_when_requested():
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        source, groceries, _ = _setup(session, balance_cents=100)
        TransactionService(session).post(
            _expense(source.id, groceries.id, 150, allow_overdraft=True)
        )
        assert session.get(Source, source.id).balance_cents == -50


def test_income_increases_balance():
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        source, _, salary = _setup(session, balance_cents=0)
        TransactionService(session).post(
            TransactionIn(
                amount_cents=2500,
                type=TransactionType.income,
                date=date(2024, 3, 1),
                category_id=salary.id,
                source_id=source.id,
            )
        )
        assert session.get(Source, source.id).balance_cents == 2500


def test_category_type_must_match_transaction_type():
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        source, _, salary = _setup(session)
        with pytest.raises(ValueError, match="Category type mismatch"):
            TransactionService(session).post(_expense(source.id, salary.id, 10))
        assert session.get(Source, source.id).balance_cents == 1000


def test_undoing_income_may_overdraft():
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        source, groceries, salary = _setup(session, balance_cents=0)
        service = TransactionService(session)
        income = service.post(
            TransactionIn(
                amount_cents=500,
                type=TransactionType.income,
                date=date(2024, 3, 1),
                category_id=salary.id,
                source_id=source.id,
            )
        )
        service.post(_expense(source.id, groceries.id, 400))

        service.delete(income.id)
        assert session.get(Source, source.id).balance_cents == -400


def test_locked_source_rejects_postings():
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        source, groceries, _ = _setup(session)
        service = TransactionService(session)
        txn = service.post(_expense(source.id, groceries.id, 200))
        SourceService(session).set_status(source.id, SourceStatus.locked)

        with pytest.raises(SourceLocked):
            service.post(_expense(source.id, groceries.id, 10))
        with pytest.raises(SourceLocked):
            service.delete(txn.id)

        assert session.get(Source, source.id).balance_cents == 800
        assert session.get(Transaction, txn.id) is not None


def test_edit_moves_posting_between_sources():
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        source_a, groceries, _ = _setup(session)
        source_b = SourceService(session).create(
            SourceIn(name="Wallet", balance_cents=500)
        )
        service = TransactionService(session)
        txn = service.post(_expense(source_a.id, groceries.id, 200))

        service.edit(txn.id, TransactionPatch(source_id=source_b.id, amount_cents=300))

        assert session.get(Source, source_a.id).balance_cents == 1000
        assert session.get(Source, source_b.id).balance_cents == 200
        assert service.get(txn.id).source_id == source_b.id


def test_failed_edit_leaves_both_sources_untouched():
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        source_a, groceries, _ = _setup(session)
        source_b = SourceService(session).create(
            SourceIn(name="Wallet", balance_cents=100)
        )
        service = TransactionService(session)
        txn = service.post(_expense(source_a.id, groceries.id, 200))

        with pytest.raises(InsufficientFunds):
            service.edit(
                txn.id, TransactionPatch(source_id=source_b.id, amount_cents=500)
            )

        assert session.get(Source, source_a.id).balance_cents == 800
        assert session.get(Source, source_b.id).balance_cents == 100
        reloaded = service.get(txn.id)
        assert reloaded.source_id == source_a.id
        assert reloaded.amount_cents == 200


def test_description_and_date_edits_do_not_touch_ledger():
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        source, groceries, _ = _setup(session)
        service = TransactionService(session)
        txn = service.post(_expense(source.id, groceries.id, 200))
        SourceService(session).set_status(source.id, SourceStatus.locked)

        edited = service.edit(
            txn.id,
            TransactionPatch(description="Market", date=date(2024, 3, 5)),
        )

        assert edited.description == "Market"
        assert edited.date == date(2024, 3, 5)
        assert session.get(Source, source.id).balance_cents == 800


def test_unknown_source_is_not_found():
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        _, groceries, _ = _setup(session)
        with pytest.raises(NotFound):
            TransactionService(session).post(_expense(999, groceries.id, 10))


def test_other_owner_cannot_post_to_source():
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        source, _, _ = _setup(session)
        foreign = CategoryService(session, user_id=2).create(
            CategoryIn(name="Groceries", type=TransactionType.expense)
        )
        with pytest.raises(NotFound):
            TransactionService(session, user_id=2).post(
                _expense(source.id, foreign.id, 10)
            )
        assert session.get(Source, source.id).balance_cents == 1000


def test_can_afford_is_advisory():
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        source, _, _ = _setup(session, balance_cents=100)
        assert SourceService(session).can_afford(source.id, 100)
        assert not SourceService(session).can_afford(source.id, 101)
        assert session.get(Source, source.id).balance_cents == 100


def test_random_operations_keep_balance_equal_to_history():
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    rng = random.Random(20240301)

    with Session(engine) as session:
        source_a, groceries, salary = _setup(session, balance_cents=5000)
        source_b = SourceService(session).create(
            SourceIn(name="Wallet", balance_cents=1200)
        )
        sources = [source_a.id, source_b.id]
        service = TransactionService(session)
        live: list[int] = []

        for step in range(120):
            action = rng.choice(["post", "post", "edit", "delete"])
            if action == "post" or not live:
                txn_type = rng.choice([TransactionType.income, TransactionType.expense])
                category = salary if txn_type == TransactionType.income else groceries
                txn = service.post(
                    TransactionIn(
                        amount_cents=rng.randint(1, 900),
                        type=txn_type,
                        date=date(2024, 1, 1) + timedelta(days=step),
                        category_id=category.id,
                        source_id=rng.choice(sources),
                        allow_overdraft=True,
                    )
                )
                live.append(txn.id)
            elif action == "edit":
                service.edit(
                    rng.choice(live),
                    TransactionPatch(
                        amount_cents=rng.randint(1, 900),
                        source_id=rng.choice(sources),
                        allow_overdraft=True,
                    ),
                )
            else:
                txn_id = live.pop(rng.randrange(len(live)))
                service.delete(txn_id)

            ledger = BalanceLedger(session, 1)
            for source_id in sources:
                assert ledger.drift(source_id) == 0

        assert find_drifted_sources(session) == []


def test_drift_audit_reports_tampered_balance():
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        source, groceries, _ = _setup(session)
        TransactionService(session).post(_expense(source.id, groceries.id, 200))
        tampered = session.get(Source, source.id)
        tampered.balance_cents = 900
        session.commit()

        drifted = find_drifted_sources(session)
        assert [(record.id, diff) for record, diff in drifted] == [(source.id, 100)]
        assert BalanceLedger(session, 1).expected_balance(source.id) == 800


def test_lock_sources_times_out_with_conflict():
    with lock_sources(41, 42):
        with pytest.raises(ConflictError):
            with lock_sources(42, timeout=0.01):
                pass
    with lock_sources(42, timeout=0.01):
        pass


def test_conflicts_are_retried_until_work_succeeds():
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    calls = []

    def work():
        calls.append(1)
        if len(calls) < 3:
            raise ConflictError("busy")
        return "done"

    with Session(engine) as session:
        assert commit_ledger_write(session, (1,), work) == "done"
    assert len(calls) == 3


def test_conflict_surfaces_when_retries_run_out():
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    calls = []

    def work():
        calls.append(1)
        raise ConflictError("busy")

    with Session(engine) as session:
        with pytest.raises(ConflictError):
            commit_ledger_write(session, (1,), work)
    assert len(calls) == 4


def _move_before_lock(engine, transaction_id: int, target_source_id: int):
    """Stand-in for ``lock_sources`` that lets another session move the
    transaction to ``target_source_id`` right before the first lock is taken."""
    real_lock_sources = services.lock_sources
    calls = []

    @contextmanager
    def racing_lock_sources(*source_ids, **kwargs):
        calls.append(source_ids)
        if len(calls) == 1:
            with Session(engine) as other:
                TransactionService(other).edit(
                    transaction_id, TransactionPatch(source_id=target_source_id)
                )
        with real_lock_sources(*source_ids, **kwargs):
            yield

    return racing_lock_sources, calls


def _two_sources_with_expense(engine):
    with Session(engine) as session:
        checking, groceries, _ = _setup(session)
        savings = SourceService(session).create(
            SourceIn(name="Savings", balance_cents=1000)
        )
        txn = TransactionService(session).post(
            _expense(checking.id, groceries.id, 100)
        )
        return checking.id, savings.id, txn.id


def test_edit_relocks_when_transaction_moves_before_lock(tmp_path, monkeypatch):
    engine = create_engine(f"sqlite:///{tmp_path / 'ledger.db'}")
    Base.metadata.create_all(engine)
    checking_id, savings_id, txn_id = _two_sources_with_expense(engine)
    racing, calls = _move_before_lock(engine, txn_id, savings_id)
    monkeypatch.setattr(services, "lock_sources", racing)

    with Session(engine) as session:
        edited = TransactionService(session).edit(
            txn_id, TransactionPatch(amount_cents=300)
        )
        assert edited.source_id == savings_id
        assert edited.amount_cents == 300
        assert session.get(Source, checking_id).balance_cents == 1000
        assert session.get(Source, savings_id).balance_cents == 700

    assert calls[0] == (checking_id, checking_id)
    assert calls[-1] == (savings_id, savings_id)


def test_delete_relocks_when_transaction_moves_before_lock(tmp_path, monkeypatch):
    engine = create_engine(f"sqlite:///{tmp_path / 'ledger.db'}")
    Base.metadata.create_all(engine)
    checking_id, savings_id, txn_id = _two_sources_with_expense(engine)
    racing, _ = _move_before_lock(engine, txn_id, savings_id)
    monkeypatch.setattr(services, "lock_sources", racing)

    with Session(engine) as session:
        TransactionService(session).delete(txn_id)
        assert session.get(Transaction, txn_id) is None
        assert session.get(Source, checking_id).balance_cents == 1000
        assert session.get(Source, savings_id).balance_cents == 1000


def test_concurrent_overdrawing_posts_admit_only_one(tmp_path):
    engine = create_engine(
        f"sqlite:///{tmp_path / 'ledger.db'}",
        connect_args={"check_same_thread": False},
    )
    Base.metadata.create_all(engine)
    with Session(engine) as session:
        source, groceries, _ = _setup(session, balance_cents=100)
        source_id, category_id = source.id, groceries.id

    barrier = threading.Barrier(2)
    outcomes = []
    errors = []

    def spend():
        with Session(engine) as session:
            barrier.wait()
            try:
                TransactionService(session).post(
                    _expense(source_id, category_id, 60)
                )
                outcomes.append("posted")
            except InsufficientFunds:
                outcomes.append("refused")
            except Exception as exc:
                errors.append(exc)

    threads = [threading.Thread(target=spend) for _ in range(2)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=30)

    assert errors == []
    assert sorted(outcomes) == ["posted", "refused"]
    with Session(engine) as session:
        assert session.get(Source, source_id).balance_cents == 40
        assert session.query(Transaction).count() == 1
