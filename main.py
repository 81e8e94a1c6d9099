import logging
from typing import Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Request, Response
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from csrf import generate_csrf_token, validate_csrf_token
from database import get_db, init_db
from errors import EngineError, InsufficientFunds
from models import (
    CalendarEvent,
    Category,
    Provenance,
    Source,
    Transaction,
    TransactionType,
)
from periods import Window, resolve_window
from recurrence import local_today, occurrence_id
from scheduler import SchedulerManager
from schemas import (
    AcceptPredictionIn,
    CalendarEventIn,
    CalendarEventPatch,
    CategoryIn,
    PredictionIn,
    SourceIn,
    SourceStatusIn,
    SourceUpdate,
    TransactionIn,
    TransactionPatch,
)
from services import (
    CalendarEventService,
    CategoryService,
    MetricsService,
    PredictionService,
    SourceService,
    TransactionFilters,
    TransactionService,
    get_current_user_id,
)
from timeline import TimelineEntry, TimelineResult, TimelineService


logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

app = FastAPI(title="Finance Calendar")

scheduler_manager = SchedulerManager()


@app.on_event("startup")
def startup_event():
    init_db()
    scheduler_manager.start()


@app.on_event("shutdown")
def shutdown_event():
    scheduler_manager.stop()


def get_owner_id(x_owner_id: Optional[int] = Header(default=None)) -> int:
    return x_owner_id if x_owner_id is not None else get_current_user_id()


def require_csrf(
    owner_id: int = Depends(get_owner_id),
    x_csrf_token: Optional[str] = Header(default=None),
) -> int:
    if not validate_csrf_token(x_csrf_token, owner_id):
        raise HTTPException(status_code=400, detail="Invalid CSRF token")
    return owner_id


def http_error(exc: EngineError) -> HTTPException:
    detail: dict[str, object] = {"code": exc.code, "message": str(exc)}
    if isinstance(exc, InsufficientFunds):
        detail["balance_cents"] = exc.balance_cents
        detail["required_cents"] = exc.required_cents
    return HTTPException(status_code=exc.status_code, detail=detail)


def window_from_request(request: Request) -> Window:
    params = request.query_params
    try:
        return resolve_window(
            params.get("view"),
            params.get("start"),
            params.get("end"),
            anchor=params.get("anchor"),
            today=local_today(),
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


def source_payload(source: Source) -> dict[str, object]:
    return {
        "id": source.id,
        "name": source.name,
        "kind": source.kind.value,
        "balance_cents": source.balance_cents,
        "status": source.status.value,
        "interest_rate": source.interest_rate,
        "interest_period": source.interest_period,
        "transfer_latency": source.transfer_latency,
    }


def category_payload(category: Category) -> dict[str, object]:
    return {
        "id": category.id,
        "name": category.name,
        "type": category.type.value,
        "color": category.color,
    }


def transaction_payload(txn: Transaction) -> dict[str, object]:
    return {
        "id": txn.id,
        "date": txn.date.isoformat(),
        "type": txn.type.value,
        "amount_cents": txn.amount_cents,
        "description": txn.description,
        "category_id": txn.category_id,
        "source_id": txn.source_id,
        "provenance": txn.provenance.value,
        "origin_event_id": txn.origin_event_id,
    }


def event_payload(event: CalendarEvent) -> dict[str, object]:
    return {
        "id": event.id,
        "title": event.title,
        "description": event.description,
        "type": event.type.value,
        "amount_cents": event.amount_cents,
        "start_date": event.start_date.isoformat(),
        "is_recurring": event.is_recurring,
        "frequency": event.frequency.value if event.frequency else None,
        "recurrence_count": event.recurrence_count,
        "end_date": event.end_date.isoformat() if event.end_date else None,
        "category_id": event.category_id,
        "source_id": event.source_id,
        "metadata": event.metadata_dict,
    }


def entry_payload(entry: TimelineEntry) -> dict[str, object]:
    return {
        "id": entry.id,
        "kind": entry.kind.value,
        "date": entry.date.isoformat(),
        "title": entry.title,
        "type": entry.type.value,
        "amount_cents": entry.amount_cents,
        "category_id": entry.category_id,
        "source_id": entry.source_id,
        "parent_id": entry.parent_id,
        "is_recurring": entry.is_recurring,
        "is_transaction": entry.is_transaction,
        "editable": entry.editable,
        "metadata": entry.metadata,
    }


def timeline_payload(result: TimelineResult) -> dict[str, object]:
    return {
        "start": result.start.isoformat(),
        "end": result.end.isoformat(),
        "income_cents": result.income_cents,
        "expense_cents": result.expense_cents,
        "net_cents": result.net_cents,
        "days": [
            {
                "date": day.date.isoformat(),
                "entries": [entry_payload(entry) for entry in day.entries],
                "overflow": day.overflow,
                "income_cents": day.aggregate.income_cents,
                "expense_cents": day.aggregate.expense_cents,
                "net_cents": day.aggregate.net_cents,
                "running_net_cents": day.running_net_cents,
            }
            for day in result.days
        ],
    }


@app.get("/api/csrf-token")
def csrf_token(owner_id: int = Depends(get_owner_id)):
    return {"token": generate_csrf_token(owner_id)}


@app.get("/api/sources")
def list_sources(
    db: Session = Depends(get_db), owner_id: int = Depends(get_owner_id)
):
    service = SourceService(db, owner_id)
    return {
        "items": [source_payload(source) for source in service.list_all()],
        "total_balance_cents": service.total_balance(),
    }


@app.post("/api/sources", status_code=201)
def create_source(
    data: SourceIn,
    db: Session = Depends(get_db),
    owner_id: int = Depends(require_csrf),
):
    return source_payload(SourceService(db, owner_id).create(data))


@app.get("/api/sources/{source_id}")
def get_source(
    source_id: int,
    db: Session = Depends(get_db),
    owner_id: int = Depends(get_owner_id),
):
    try:
        return source_payload(SourceService(db, owner_id).get(source_id))
    except EngineError as exc:
        raise http_error(exc) from exc


@app.patch("/api/sources/{source_id}")
def update_source(
    source_id: int,
    data: SourceUpdate,
    db: Session = Depends(get_db),
    owner_id: int = Depends(require_csrf),
):
    try:
        return source_payload(SourceService(db, owner_id).update(source_id, data))
    except EngineError as exc:
        raise http_error(exc) from exc


@app.post("/api/sources/{source_id}/status")
def set_source_status(
    source_id: int,
    data: SourceStatusIn,
    db: Session = Depends(get_db),
    owner_id: int = Depends(require_csrf),
):
    try:
        source = SourceService(db, owner_id).set_status(source_id, data.status)
    except EngineError as exc:
        raise http_error(exc) from exc
    return source_payload(source)


@app.delete("/api/sources/{source_id}")
def delete_source(
    source_id: int,
    db: Session = Depends(get_db),
    owner_id: int = Depends(require_csrf),
):
    try:
        removed = SourceService(db, owner_id).delete(source_id)
    except EngineError as exc:
        raise http_error(exc) from exc
    return {"deleted": removed, "locked": not removed}


@app.get("/api/sources/{source_id}/can-afford")
def can_afford(
    source_id: int,
    amount_cents: int,
    db: Session = Depends(get_db),
    owner_id: int = Depends(get_owner_id),
):
    try:
        ok = SourceService(db, owner_id).can_afford(source_id, amount_cents)
    except EngineError as exc:
        raise http_error(exc) from exc
    return {"source_id": source_id, "amount_cents": amount_cents, "can_afford": ok}


@app.get("/api/categories")
def list_categories(
    type: Optional[TransactionType] = None,
    db: Session = Depends(get_db),
    owner_id: int = Depends(get_owner_id),
):
    items = CategoryService(db, owner_id).list_all(type)
    return {"items": [category_payload(category) for category in items]}


@app.post("/api/categories", status_code=201)
def create_category(
    data: CategoryIn,
    db: Session = Depends(get_db),
    owner_id: int = Depends(require_csrf),
):
    try:
        return category_payload(CategoryService(db, owner_id).create(data))
    except EngineError as exc:
        raise http_error(exc) from exc


class CategoryRename(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)


@app.patch("/api/categories/{category_id}")
def rename_category(
    category_id: int,
    data: CategoryRename,
    db: Session = Depends(get_db),
    owner_id: int = Depends(require_csrf),
):
    try:
        category = CategoryService(db, owner_id).rename(category_id, data.name)
    except EngineError as exc:
        raise http_error(exc) from exc
    return category_payload(category)


@app.delete("/api/categories/{category_id}", status_code=204)
def delete_category(
    category_id: int,
    db: Session = Depends(get_db),
    owner_id: int = Depends(require_csrf),
):
    try:
        CategoryService(db, owner_id).delete(category_id)
    except EngineError as exc:
        raise http_error(exc) from exc
    return Response(status_code=204)


@app.get("/api/transactions")
def list_transactions(
    request: Request,
    type: Optional[TransactionType] = None,
    category_id: Optional[int] = None,
    source_id: Optional[int] = None,
    provenance: Optional[Provenance] = None,
    page: int = 1,
    limit: int = 50,
    db: Session = Depends(get_db),
    owner_id: int = Depends(get_owner_id),
):
    window = window_from_request(request)
    page = max(page, 1)
    limit = min(max(limit, 1), 100)
    filters = TransactionFilters(
        type=type, category_id=category_id, source_id=source_id, provenance=provenance
    )
    items = TransactionService(db, owner_id).list(
        window, filters, limit=limit + 1, offset=(page - 1) * limit
    )
    return {
        "items": [transaction_payload(txn) for txn in items[:limit]],
        "page": page,
        "limit": limit,
        "has_more": len(items) > limit,
    }


@app.post("/api/transactions", status_code=201)
def post_transaction(
    data: TransactionIn,
    db: Session = Depends(get_db),
    owner_id: int = Depends(require_csrf),
):
    try:
        txn = TransactionService(db, owner_id).post(data)
    except EngineError as exc:
        raise http_error(exc) from exc
    return transaction_payload(txn)


@app.get("/api/transactions/{transaction_id}")
def get_transaction(
    transaction_id: int,
    db: Session = Depends(get_db),
    owner_id: int = Depends(get_owner_id),
):
    try:
        return transaction_payload(TransactionService(db, owner_id).get(transaction_id))
    except EngineError as exc:
        raise http_error(exc) from exc


@app.patch("/api/transactions/{transaction_id}")
def edit_transaction(
    transaction_id: int,
    patch: TransactionPatch,
    db: Session = Depends(get_db),
    owner_id: int = Depends(require_csrf),
):
    try:
        txn = TransactionService(db, owner_id).edit(transaction_id, patch)
    except EngineError as exc:
        raise http_error(exc) from exc
    return transaction_payload(txn)


@app.delete("/api/transactions/{transaction_id}", status_code=204)
def delete_transaction(
    transaction_id: int,
    db: Session = Depends(get_db),
    owner_id: int = Depends(require_csrf),
):
    try:
        TransactionService(db, owner_id).delete(transaction_id)
    except EngineError as exc:
        raise http_error(exc) from exc
    return Response(status_code=204)


@app.get("/api/events")
def list_events(
    include_predictions: bool = True,
    db: Session = Depends(get_db),
    owner_id: int = Depends(get_owner_id),
):
    events = CalendarEventService(db, owner_id).list(include_predictions)
    return {"items": [event_payload(event) for event in events]}


@app.post("/api/events", status_code=201)
def create_event(
    data: CalendarEventIn,
    db: Session = Depends(get_db),
    owner_id: int = Depends(require_csrf),
):
    try:
        return event_payload(CalendarEventService(db, owner_id).create(data))
    except EngineError as exc:
        raise http_error(exc) from exc


@app.get("/api/events/{event_id}")
def get_event(
    event_id: int,
    db: Session = Depends(get_db),
    owner_id: int = Depends(get_owner_id),
):
    try:
        return event_payload(CalendarEventService(db, owner_id).get(event_id))
    except EngineError as exc:
        raise http_error(exc) from exc


@app.get("/api/occurrences/{occurrence_key}")
def get_occurrence(
    occurrence_key: str,
    db: Session = Depends(get_db),
    owner_id: int = Depends(get_owner_id),
):
    try:
        event, day = CalendarEventService(db, owner_id).resolve_occurrence(
            occurrence_key
        )
    except EngineError as exc:
        raise http_error(exc) from exc
    payload = event_payload(event)
    payload["id"] = occurrence_id(event.id, day)
    payload["parent_id"] = event.id
    payload["occurrence_date"] = day.isoformat()
    return payload


@app.patch("/api/events/{event_id}")
def edit_event(
    event_id: int,
    patch: CalendarEventPatch,
    db: Session = Depends(get_db),
    owner_id: int = Depends(require_csrf),
):
    try:
        event = CalendarEventService(db, owner_id).edit(event_id, patch)
    except EngineError as exc:
        raise http_error(exc) from exc
    return event_payload(event)


@app.delete("/api/events/{event_id}", status_code=204)
def delete_event(
    event_id: int,
    db: Session = Depends(get_db),
    owner_id: int = Depends(require_csrf),
):
    try:
        CalendarEventService(db, owner_id).delete(event_id)
    except EngineError as exc:
        raise http_error(exc) from exc
    return Response(status_code=204)


@app.get("/api/timeline")
def timeline(
    request: Request,
    entry_limit: Optional[int] = None,
    db: Session = Depends(get_db),
    owner_id: int = Depends(get_owner_id),
):
    window = window_from_request(request)
    if entry_limit is not None and entry_limit < 1:
        raise HTTPException(status_code=400, detail="entry_limit must be positive")
    result = TimelineService(db, owner_id).get_timeline(
        window.start, window.end, entry_limit=entry_limit
    )
    payload = timeline_payload(result)
    payload["view"] = window.slug
    return payload


def summary_payload(summary: dict[str, object]) -> dict[str, object]:
    payload = dict(summary)
    payload["start"] = summary["start"].isoformat()
    payload["end"] = summary["end"].isoformat()
    payload["cash_flow"] = [
        {**point, "date": point["date"].isoformat()} for point in summary["cash_flow"]
    ]
    return payload


@app.get("/api/summary")
def summary(
    request: Request,
    db: Session = Depends(get_db),
    owner_id: int = Depends(get_owner_id),
):
    window = window_from_request(request)
    payload = summary_payload(MetricsService(db, owner_id).summary(window))
    payload["view"] = window.slug
    return payload


@app.get("/api/predictions")
def list_predictions(
    request: Request,
    db: Session = Depends(get_db),
    owner_id: int = Depends(get_owner_id),
):
    window = None
    if request.query_params.get("start") or request.query_params.get("view"):
        window = window_from_request(request)
    events = PredictionService(db, owner_id).list_proposed(window)
    return {"items": [event_payload(event) for event in events]}


@app.post("/api/predictions", status_code=201)
def propose_prediction(
    data: PredictionIn,
    db: Session = Depends(get_db),
    owner_id: int = Depends(require_csrf),
):
    try:
        return event_payload(PredictionService(db, owner_id).propose(data))
    except EngineError as exc:
        raise http_error(exc) from exc


@app.post("/api/predictions/{event_id}/accept")
def accept_prediction(
    event_id: int,
    options: Optional[AcceptPredictionIn] = None,
    db: Session = Depends(get_db),
    owner_id: int = Depends(require_csrf),
):
    try:
        txn = PredictionService(db, owner_id).accept(event_id, options)
    except EngineError as exc:
        raise http_error(exc) from exc
    return transaction_payload(txn)


@app.post("/api/predictions/{event_id}/dismiss")
def dismiss_prediction(
    event_id: int,
    db: Session = Depends(get_db),
    owner_id: int = Depends(require_csrf),
):
    try:
        PredictionService(db, owner_id).dismiss(event_id)
    except EngineError as exc:
        raise http_error(exc) from exc
    return {"id": event_id, "resolution": "dismissed"}
