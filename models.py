from datetime import date, datetime
from enum import Enum
from typing import Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Enum as SAEnum,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from database import Base


class TransactionType(str, Enum):
    income = "income"
    expense = "expense"


class EventType(str, Enum):
    income = "income"
    expense = "expense"
    reminder = "reminder"
    prediction = "prediction"


MONEY_EVENT_TYPES = frozenset(
    {EventType.income, EventType.expense, EventType.prediction}
)


class Frequency(str, Enum):
    daily = "daily"
    weekly = "weekly"
    biweekly = "bi-weekly"
    monthly = "monthly"
    quarterly = "quarterly"
    yearly = "yearly"


FREQUENCY_ENUM = SAEnum(
    Frequency,
    name="frequency",
    values_callable=lambda enum_cls: [member.value for member in enum_cls],
)


class SourceKind(str, Enum):
    bank = "bank"
    e_wallet = "e-wallet"
    cash = "cash"
    other = "other"


SOURCE_KIND_ENUM = SAEnum(
    SourceKind,
    name="sourcekind",
    values_callable=lambda enum_cls: [member.value for member in enum_cls],
)


class SourceStatus(str, Enum):
    available = "available"
    locked = "locked"
    unavailable = "unavailable"


class Provenance(str, Enum):
    manual = "manual"
    prediction_confirmed = "prediction_confirmed"
    ai_assisted = "ai_assisted"


class Resolution(str, Enum):
    accepted = "accepted"
    dismissed = "dismissed"
    expired = "expired"


def signed_amount(txn_type: TransactionType, amount_cents: int) -> int:
    if txn_type == TransactionType.income:
        return amount_cents
    return -amount_cents


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )


class Source(Base, TimestampMixin):
    __tablename__ = "sources"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    kind: Mapped[SourceKind] = mapped_column(
        SOURCE_KIND_ENUM, nullable=False, default=SourceKind.bank
    )
    balance_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    opening_balance_cents: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0
    )
    status: Mapped[SourceStatus] = mapped_column(
        SAEnum(SourceStatus), nullable=False, default=SourceStatus.available
    )
    interest_rate: Mapped[Optional[float]] = mapped_column(Float)
    interest_period: Mapped[Optional[str]] = mapped_column(String(40))
    transfer_latency: Mapped[str] = mapped_column(
        String(60), nullable=False, default="Instant"
    )
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    transactions: Mapped[list["Transaction"]] = relationship(
        "Transaction", back_populates="source"
    )

    __mapper_args__ = {"version_id_col": version}
    __table_args__ = (Index("ix_sources_user", "user_id"),)


class Category(Base, TimestampMixin):
    __tablename__ = "categories"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    type: Mapped[TransactionType] = mapped_column(
        SAEnum(TransactionType), nullable=False
    )
    color: Mapped[Optional[str]] = mapped_column(String(7))

    transactions: Mapped[list["Transaction"]] = relationship(
        "Transaction", back_populates="category"
    )

    __table_args__ = (
        UniqueConstraint("user_id", "type", "name", name="uq_category_user_type_name"),
    )


class Transaction(Base, TimestampMixin):
    __tablename__ = "transactions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    date: Mapped[date] = mapped_column(Date, nullable=False)
    type: Mapped[TransactionType] = mapped_column(
        SAEnum(TransactionType), nullable=False
    )
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    category_id: Mapped[int] = mapped_column(
        ForeignKey("categories.id"), nullable=False
    )
    source_id: Mapped[int] = mapped_column(ForeignKey("sources.id"), nullable=False)
    provenance: Mapped[Provenance] = mapped_column(
        SAEnum(Provenance), nullable=False, default=Provenance.manual
    )
    origin_event_id: Mapped[Optional[int]] = mapped_column(Integer)
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    category: Mapped["Category"] = relationship(
        "Category", back_populates="transactions"
    )
    source: Mapped["Source"] = relationship("Source", back_populates="transactions")

    @property
    def signed_amount_cents(self) -> int:
        return signed_amount(self.type, self.amount_cents)

    __mapper_args__ = {"version_id_col": version}
    __table_args__ = (
        Index("ix_transactions_user_date", "user_id", "date"),
        Index("ix_transactions_source", "source_id"),
        CheckConstraint("amount_cents > 0", name="ck_transactions_amount_positive"),
    )


class CalendarEvent(Base, TimestampMixin):
    __tablename__ = "calendar_events"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    title: Mapped[str] = mapped_column(String(120), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    type: Mapped[EventType] = mapped_column(SAEnum(EventType), nullable=False)
    amount_cents: Mapped[Optional[int]] = mapped_column(Integer)
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    is_recurring: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    frequency: Mapped[Optional[Frequency]] = mapped_column(FREQUENCY_ENUM)
    recurrence_count: Mapped[Optional[int]] = mapped_column(Integer)
    end_date: Mapped[Optional[date]] = mapped_column(Date)
    category_id: Mapped[Optional[int]] = mapped_column(ForeignKey("categories.id"))
    source_id: Mapped[Optional[int]] = mapped_column(ForeignKey("sources.id"))

    prediction_confidence: Mapped[Optional[float]] = mapped_column(Float)
    prediction_pattern: Mapped[Optional[str]] = mapped_column(String(120))
    prediction_generator: Mapped[Optional[str]] = mapped_column(String(60))
    prediction_generated_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    category: Mapped[Optional["Category"]] = relationship("Category")
    source: Mapped[Optional["Source"]] = relationship("Source")

    @property
    def is_proposed_prediction(self) -> bool:
        return self.type == EventType.prediction and bool(self.prediction_generator)

    @property
    def metadata_dict(self) -> Optional[dict[str, object]]:
        if self.type != EventType.prediction:
            return None
        return {
            "confidence": self.prediction_confidence,
            "pattern": self.prediction_pattern,
            "generator": self.prediction_generator,
            "generated_at": (
                self.prediction_generated_at.isoformat()
                if self.prediction_generated_at
                else None
            ),
        }

    __table_args__ = (
        Index("ix_events_user_start", "user_id", "start_date"),
        Index("ix_events_user_recurring", "user_id", "is_recurring"),
        CheckConstraint(
            "NOT is_recurring OR frequency IS NOT NULL",
            name="ck_event_recurring_frequency",
        ),
        CheckConstraint(
            "recurrence_count IS NULL OR recurrence_count > 0",
            name="ck_event_count_positive",
        ),
        CheckConstraint(
            "amount_cents IS NULL OR amount_cents >= 0",
            name="ck_event_amount_positive",
        ),
        # event ids are referenced by prediction tombstones, never reuse them
        {"sqlite_autoincrement": True},
    )


class PredictionResolution(Base, TimestampMixin):
    __tablename__ = "prediction_resolutions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    event_id: Mapped[int] = mapped_column(Integer, nullable=False)
    resolution: Mapped[Resolution] = mapped_column(SAEnum(Resolution), nullable=False)
    transaction_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("transactions.id", ondelete="SET NULL")
    )
    title: Mapped[Optional[str]] = mapped_column(String(120))
    amount_cents: Mapped[Optional[int]] = mapped_column(Integer)
    resolved_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )

    __table_args__ = (
        UniqueConstraint("event_id", name="uq_prediction_resolution_event"),
        Index("ix_prediction_resolution_user", "user_id", "resolved_at"),
    )
