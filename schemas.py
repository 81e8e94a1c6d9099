import datetime as dt
from datetime import date, datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from models import (
    MONEY_EVENT_TYPES,
    EventType,
    Frequency,
    Provenance,
    SourceKind,
    SourceStatus,
    TransactionType,
)


class SourceIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    kind: SourceKind = SourceKind.bank
    balance_cents: int = 0
    status: SourceStatus = SourceStatus.available
    interest_rate: Optional[float] = Field(default=None, ge=0)
    interest_period: Optional[str] = Field(default=None, max_length=40)
    transfer_latency: str = Field(default="Instant", max_length=60)


class SourceUpdate(BaseModel):
    """Descriptive fields only; the balance moves through the ledger."""

    model_config = ConfigDict(extra="forbid")

    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    kind: Optional[SourceKind] = None
    interest_rate: Optional[float] = Field(default=None, ge=0)
    interest_period: Optional[str] = Field(default=None, max_length=40)
    transfer_latency: Optional[str] = Field(default=None, max_length=60)


class CategoryIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    type: TransactionType
    color: Optional[str] = Field(default=None, max_length=7)


class TransactionIn(BaseModel):
    amount_cents: int = Field(..., gt=0)
    type: TransactionType
    date: date
    description: Optional[str] = Field(default=None, max_length=500)
    category_id: int
    source_id: int
    provenance: Provenance = Provenance.manual
    allow_overdraft: bool = False

    @field_validator("provenance")
    @classmethod
    def _client_provenance(cls, value: Provenance) -> Provenance:
        if value == Provenance.prediction_confirmed:
            raise ValueError("Only accepting a prediction may confirm it")
        return value


class TransactionPatch(BaseModel):
    model_config = ConfigDict(extra="forbid")

    amount_cents: Optional[int] = Field(default=None, gt=0)
    type: Optional[TransactionType] = None
    date: Optional[dt.date] = None
    description: Optional[str] = Field(default=None, max_length=500)
    category_id: Optional[int] = None
    source_id: Optional[int] = None
    allow_overdraft: bool = False


class CalendarEventIn(BaseModel):
    title: str = Field(..., min_length=1, max_length=120)
    description: Optional[str] = Field(default=None, max_length=1000)
    type: EventType
    amount_cents: Optional[int] = Field(default=None, ge=0)
    start_date: date
    is_recurring: bool = False
    frequency: Optional[Frequency] = None
    recurrence_count: Optional[int] = Field(default=None, gt=0)
    end_date: Optional[date] = None
    category_id: Optional[int] = None
    source_id: Optional[int] = None

    @model_validator(mode="after")
    def _check_event_rules(self) -> "CalendarEventIn":
        if self.is_recurring and self.frequency is None:
            raise ValueError("Recurring events require a frequency")
        if not self.is_recurring:
            self.frequency = None
            self.recurrence_count = None
            self.end_date = None
        if self.type in MONEY_EVENT_TYPES and not self.amount_cents:
            raise ValueError(f"{self.type.value} events require a positive amount")
        if self.end_date is not None and self.end_date < self.start_date:
            raise ValueError("End date must not be before start date")
        return self


class CalendarEventPatch(BaseModel):
    model_config = ConfigDict(extra="forbid")

    title: Optional[str] = Field(default=None, min_length=1, max_length=120)
    description: Optional[str] = Field(default=None, max_length=1000)
    type: Optional[EventType] = None
    amount_cents: Optional[int] = Field(default=None, ge=0)
    start_date: Optional[date] = None
    is_recurring: Optional[bool] = None
    frequency: Optional[Frequency] = None
    recurrence_count: Optional[int] = Field(default=None, gt=0)
    end_date: Optional[date] = None
    category_id: Optional[int] = None
    source_id: Optional[int] = None


class PredictionIn(BaseModel):
    """Proposal produced by the external bill-prediction generator."""

    model_config = ConfigDict(extra="forbid")

    title: str = Field(..., min_length=1, max_length=120)
    description: Optional[str] = Field(default=None, max_length=1000)
    amount_cents: int = Field(..., gt=0)
    start_date: date
    frequency: Optional[Frequency] = None
    recurrence_count: Optional[int] = Field(default=None, gt=0)
    category_id: Optional[int] = None
    source_id: Optional[int] = None
    confidence: float = Field(..., ge=0, le=1)
    pattern: str = Field(..., min_length=1, max_length=120)
    generator: str = Field(..., min_length=1, max_length=60)
    generated_at: Optional[datetime] = None


class AcceptPredictionIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    source_id: Optional[int] = None
    category_id: Optional[int] = None
    allow_overdraft: bool = False


class SourceStatusIn(BaseModel):
    status: SourceStatus
