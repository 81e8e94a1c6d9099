"""Balance ledger: the only code path allowed to move ``Source.balance_cents``.

A source balance is a materialized running total. Writers serialize per source
in two layers: an in-process lock registry (acquired in ascending id order so
two-source edits cannot deadlock) and the ``version`` column on ``Source``,
which turns a lost cross-process race into ``ConflictError``.
"""

import logging
import threading
from contextlib import contextmanager
from typing import Iterator, Optional

from sqlalchemy import case, func, select
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError
from tenacity import (
    Retrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from config import get_settings
from errors import ConflictError, InsufficientFunds, NotFound, SourceLocked
from models import Source, SourceStatus, Transaction, TransactionType


logger = logging.getLogger(__name__)

_registry_guard = threading.Lock()
_source_locks: dict[int, threading.Lock] = {}


def _lock_for(source_id: int) -> threading.Lock:
    with _registry_guard:
        lock = _source_locks.get(source_id)
        if lock is None:
            lock = threading.Lock()
            _source_locks[source_id] = lock
        return lock


@contextmanager
def lock_sources(
    *source_ids: Optional[int], timeout: Optional[float] = None
) -> Iterator[None]:
    ordered = sorted({sid for sid in source_ids if sid is not None})
    if timeout is None:
        timeout = get_settings().ledger_lock_timeout_secs
    acquired: list[threading.Lock] = []
    try:
        for source_id in ordered:
            lock = _lock_for(source_id)
            if not lock.acquire(timeout=timeout):
                raise ConflictError(f"Source {source_id} is busy, please retry")
            acquired.append(lock)
        yield
    finally:
        for lock in reversed(acquired):
            lock.release()


def conflict_retrying() -> Retrying:
    settings = get_settings()
    return Retrying(
        retry=retry_if_exception_type(ConflictError),
        stop=stop_after_attempt(settings.ledger_max_attempts),
        wait=wait_exponential(multiplier=settings.ledger_retry_backoff_secs, max=2),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )


def _signed_sum():
    return func.coalesce(
        func.sum(
            case(
                (
                    Transaction.type == TransactionType.income,
                    Transaction.amount_cents,
                ),
                else_=-Transaction.amount_cents,
            )
        ),
        0,
    )


class BalanceLedger:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id
        self.settings = get_settings()

    def _load(self, source_id: int, *, for_update: bool = False) -> Source:
        stmt = select(Source).where(
            Source.id == source_id, Source.user_id == self.user_id
        )
        if for_update:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        source = self.session.scalar(stmt)
        if not source:
            raise NotFound("Source not found")
        return source

    def apply(
        self, source_id: int, signed_cents: int, *, allow_overdraft: bool = False
    ) -> int:
        source = self._load(source_id, for_update=True)
        if source.status != SourceStatus.available:
            raise SourceLocked(
                f"Source {source.name} is {source.status.value}, posting is blocked"
            )
        new_balance = source.balance_cents + signed_cents
        if signed_cents < 0 and new_balance < 0:
            if not (allow_overdraft or self.settings.allow_overdraft):
                raise InsufficientFunds(
                    f"Insufficient funds in {source.name}. "
                    f"Current balance: {source.balance_cents / 100:.2f}",
                    balance_cents=source.balance_cents,
                    required_cents=-signed_cents,
                )
        source.balance_cents = new_balance
        try:
            self.session.flush()
        except StaleDataError as exc:
            raise ConflictError(
                f"Source {source_id} was modified concurrently, please retry"
            ) from exc
        logger.info(
            f"ledger_apply: source={source_id} delta={signed_cents} "
            f"balance={new_balance}"
        )
        return new_balance

    def reverse(self, source_id: int, signed_cents: int) -> int:
        return self.apply(source_id, -signed_cents, allow_overdraft=True)

    def can_afford(self, source_id: int, expense_cents: int) -> bool:
        source = self._load(source_id)
        return source.balance_cents >= expense_cents

    def expected_balance(self, source_id: int) -> int:
        source = self._load(source_id)
        applied = self.session.execute(
            select(_signed_sum()).where(Transaction.source_id == source.id)
        ).scalar_one()
        return source.opening_balance_cents + int(applied or 0)

    def drift(self, source_id: int) -> int:
        source = self._load(source_id)
        return source.balance_cents - self.expected_balance(source_id)


def find_drifted_sources(session: Session) -> list[tuple[Source, int]]:
    """Sources (any owner) whose balance disagrees with their transaction history."""
    applied = (
        select(Transaction.source_id, _signed_sum().label("applied"))
        .group_by(Transaction.source_id)
        .subquery()
    )
    rows = session.execute(
        select(Source, func.coalesce(applied.c.applied, 0))
        .outerjoin(applied, applied.c.source_id == Source.id)
        .order_by(Source.id)
    ).all()
    drifted: list[tuple[Source, int]] = []
    for source, total in rows:
        diff = source.balance_cents - (source.opening_balance_cents + int(total))
        if diff:
            drifted.append((source, diff))
    return drifted
