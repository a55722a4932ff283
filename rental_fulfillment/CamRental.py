import os
import logging
from datetime import date

from fastapi import Depends, FastAPI, Header, HTTPException, Query
from fastapi.encoders import jsonable_encoder
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import select, text
from sqlalchemy.orm import Session

try:
    from dotenv import load_dotenv

    load_dotenv()
except Exception:
    pass

from db.deps import get_rental_db
from models.rental_models import NotificationQueue, Unit
from schemas.rentals import (
    CancelRequest,
    ExtensionDecisionRequest,
    ExtensionRequest,
    RedistributeRequest,
    RejectRequest,
    ResolveConflictRequest,
    ShippingEventRequest,
    SubmitBookingDto,
    UpdatePotentialBookingDto,
)
from services.actors import ADMIN, CUSTOMER, Actor
from services.allocation_service import list_available_units
from services.availability_service import (
    bookings_by_unit_month,
    calendar_bookings,
    is_available,
    suggest_alternative_dates,
)
from services.cache import TTLCache
from services.conflict_service import confirm, redistribute_model, resolve_conflict, scan_conflicts
from services.errors import (
    AuthorizationError,
    AvailabilityError,
    CancellationNotAllowedError,
    ConflictError,
    DependencyError,
    NotFoundError,
    Outcome,
    RentalError,
    ValidationError,
)
from services.extension_service import decide_extension, list_extensions, request_extension
from services.pricing_service import quote_price
from services.rental_service import (
    cancel,
    complete_rental,
    delete_potential_booking,
    force_delete,
    get_rental,
    list_rentals,
    reject,
    remove_cancelled,
    serialize_conflict,
    start_rental,
    submit_booking,
    update_potential_booking,
)
from services.shipping_service import advance_shipping, sweep_overdue_returns

LOGGER = logging.getLogger("rental_fulfillment.api")

app = FastAPI()

def _parse_csv_env(name: str, default: str) -> list[str]:
    raw = os.environ.get(name, default)
    return [item.strip() for item in str(raw).split(",") if item.strip()]


_CORS_ALLOW_ORIGINS = _parse_csv_env(
    "CORS_ALLOW_ORIGINS",
    "http://127.0.0.1,http://localhost,http://127.0.0.1:5173,http://localhost:5173",
)
_CORS_ALLOW_CREDENTIALS = str(os.environ.get("CORS_ALLOW_CREDENTIALS", "true")).strip().lower() in {"1", "true", "yes", "on"}
if "*" in _CORS_ALLOW_ORIGINS:
    # Browsers reject wildcard origins with credentials; force safe behavior.
    _CORS_ALLOW_CREDENTIALS = False

app.add_middleware(
    CORSMiddleware,
    allow_origins=_CORS_ALLOW_ORIGINS,
    allow_credentials=_CORS_ALLOW_CREDENTIALS,
    allow_methods=["*"],
    allow_headers=["*"]
)

CALENDAR_CACHE_TTL_SECONDS = float(os.environ.get("CALENDAR_CACHE_TTL_SECONDS") or "30")
RETURN_SWEEP_GRACE_DAYS = int(os.environ.get("RETURN_SWEEP_GRACE_DAYS") or "0")
CALENDAR_CACHE = TTLCache(CALENDAR_CACHE_TTL_SECONDS)

_ERROR_STATUS = [
    (ValidationError, 400),
    (AuthorizationError, 403),
    (NotFoundError, 404),
    (ConflictError, 409),
    (AvailabilityError, 409),
    (CancellationNotAllowedError, 409),
    (DependencyError, 409),
]


def _status_for(error: RentalError) -> int:
    for error_cls, status_code in _ERROR_STATUS:
        if isinstance(error, error_cls):
            return status_code
    return 400


def _http_error(error: RentalError, step: str | None = None, rental: dict | None = None) -> HTTPException:
    detail = error.to_dict()
    if step:
        detail["failedStep"] = step
    if rental is not None:
        detail["rental"] = rental
    return HTTPException(status_code=_status_for(error), detail=jsonable_encoder(detail))


def _unwrap(outcome: Outcome):
    if not outcome.ok:
        raise _http_error(outcome.error, outcome.step, outcome.rental)
    return outcome.data


def _mutated(outcome: Outcome):
    CALENDAR_CACHE.clear()
    return _unwrap(outcome)


def _resolve_actor(
    x_actor_id: str | None = Header(None, alias="X-Actor-ID"),
    x_actor_role: str | None = Header(None, alias="X-Actor-Role"),
) -> Actor:
    role = (x_actor_role or "").strip().lower()
    if role not in {ADMIN, CUSTOMER}:
        raise HTTPException(status_code=401, detail="X-Actor-Role must be admin or customer.")
    raw_id = (x_actor_id or "").strip()
    if not raw_id:
        if role == CUSTOMER:
            raise HTTPException(status_code=401, detail="X-Actor-ID is required for customers.")
        return Actor(actor_id=None, role=role)
    if not raw_id.isdigit() or int(raw_id) <= 0:
        raise HTTPException(status_code=400, detail="X-Actor-ID must be a positive number.")
    return Actor(actor_id=int(raw_id), role=role)


def _require_admin_or_403(actor: Actor, action: str) -> None:
    try:
        actor.require_admin(action)
    except AuthorizationError as exc:
        raise _http_error(exc) from exc


@app.get("/healthz")
def healthcheck():
    return {"status": "ok"}


@app.get("/api/healthz")
def healthcheck_api(db: Session = Depends(get_rental_db)):
    try:
        db.execute(text("SELECT 1"))
        return {"status": "ok"}
    except Exception as exc:
        raise HTTPException(status_code=503, detail=f"db_unavailable: {exc}") from exc


# --- bookings -------------------------------------------------------------


@app.get("/api/rentals")
def get_rentals(
    status: str | None = Query(None, alias="status"),
    db: Session = Depends(get_rental_db),
    actor: Actor = Depends(_resolve_actor),
):
    return list_rentals(db, actor, status)


@app.get("/api/rentals/{rental_id}")
def get_rental_detail(rental_id: int, db: Session = Depends(get_rental_db), actor: Actor = Depends(_resolve_actor)):
    return _unwrap(get_rental(db, rental_id, actor))


@app.post("/api/rentals")
def create_rental(payload: SubmitBookingDto, db: Session = Depends(get_rental_db), actor: Actor = Depends(_resolve_actor)):
    outcome = submit_booking(db, payload, actor)
    created = dict(_mutated(outcome))
    created["warnings"] = outcome.warnings
    return created


@app.post("/api/rentals/{rental_id}/confirm")
def confirm_rental(rental_id: int, db: Session = Depends(get_rental_db), actor: Actor = Depends(_resolve_actor)):
    return _mutated(confirm(db, rental_id, actor))


@app.post("/api/rentals/{rental_id}/resolve-conflict")
def resolve_rental_conflict(
    rental_id: int,
    payload: ResolveConflictRequest,
    db: Session = Depends(get_rental_db),
    actor: Actor = Depends(_resolve_actor),
):
    return _mutated(
        resolve_conflict(
            db,
            rental_id,
            payload.strategy,
            actor,
            target_unit_id=payload.targetUnitID,
            reject_rental_ids=payload.rejectRentalIDs,
            reason=payload.reason,
        )
    )


@app.post("/api/rentals/{rental_id}/reject")
def reject_rental_request(
    rental_id: int,
    payload: RejectRequest,
    db: Session = Depends(get_rental_db),
    actor: Actor = Depends(_resolve_actor),
):
    return _mutated(reject(db, rental_id, payload.reason, actor))


@app.post("/api/rentals/{rental_id}/cancel")
def cancel_rental_request(
    rental_id: int,
    payload: CancelRequest,
    db: Session = Depends(get_rental_db),
    actor: Actor = Depends(_resolve_actor),
):
    return _mutated(cancel(db, rental_id, payload.reason, actor))


@app.post("/api/rentals/{rental_id}/shipping")
def post_shipping_event(
    rental_id: int,
    payload: ShippingEventRequest,
    db: Session = Depends(get_rental_db),
    actor: Actor = Depends(_resolve_actor),
):
    return _mutated(advance_shipping(db, rental_id, payload.event, actor))


@app.post("/api/rentals/{rental_id}/start")
def start_rental_request(rental_id: int, db: Session = Depends(get_rental_db), actor: Actor = Depends(_resolve_actor)):
    return _mutated(start_rental(db, rental_id, actor))


@app.post("/api/rentals/{rental_id}/complete")
def complete_rental_request(rental_id: int, db: Session = Depends(get_rental_db), actor: Actor = Depends(_resolve_actor)):
    return _mutated(complete_rental(db, rental_id, actor))


@app.delete("/api/rentals/{rental_id}")
def delete_rental(rental_id: int, db: Session = Depends(get_rental_db), actor: Actor = Depends(_resolve_actor)):
    return _mutated(force_delete(db, rental_id, actor))


@app.delete("/api/rentals/{rental_id}/cancelled")
def delete_cancelled_rental(rental_id: int, db: Session = Depends(get_rental_db), actor: Actor = Depends(_resolve_actor)):
    return _mutated(remove_cancelled(db, rental_id, actor))


@app.put("/api/potential-bookings/{rental_id}")
def edit_potential_booking(
    rental_id: int,
    payload: UpdatePotentialBookingDto,
    db: Session = Depends(get_rental_db),
    actor: Actor = Depends(_resolve_actor),
):
    return _mutated(update_potential_booking(db, rental_id, payload, actor))


@app.delete("/api/potential-bookings/{rental_id}")
def remove_potential_booking(rental_id: int, db: Session = Depends(get_rental_db), actor: Actor = Depends(_resolve_actor)):
    return _mutated(delete_potential_booking(db, rental_id, actor))


# --- conflicts ------------------------------------------------------------


@app.post("/api/conflicts/redistribute")
def redistribute_bookings(
    payload: RedistributeRequest,
    db: Session = Depends(get_rental_db),
    actor: Actor = Depends(_resolve_actor),
):
    return _mutated(redistribute_model(db, payload.modelName, actor))


@app.get("/api/conflicts")
def get_conflicts(db: Session = Depends(get_rental_db), actor: Actor = Depends(_resolve_actor)):
    return _unwrap(scan_conflicts(db, actor))


# --- calendar & availability ------------------------------------------------


@app.get("/api/calendar")
def get_calendar(
    start_date: date = Query(..., alias="startDate"),
    end_date: date = Query(..., alias="endDate"),
    unit_id: int | None = Query(None, alias="unitID"),
    db: Session = Depends(get_rental_db),
    actor: Actor = Depends(_resolve_actor),
):
    _require_admin_or_403(actor, "view the booking calendar")

    def load():
        return [serialize_conflict(r) for r in calendar_bookings(db, start_date, end_date, unit_id=unit_id)]

    try:
        return CALENDAR_CACHE.get_or_set(("calendar", start_date, end_date, unit_id), load)
    except RentalError as exc:
        raise _http_error(exc) from exc


@app.get("/api/units/{unit_id}/bookings")
def get_unit_month_bookings(
    unit_id: int,
    month: int = Query(..., ge=1, le=12),
    year: int = Query(..., ge=2000),
    db: Session = Depends(get_rental_db),
):
    return [serialize_conflict(r) for r in bookings_by_unit_month(db, unit_id, month, year)]


@app.get("/api/units/{unit_id}/availability")
def get_unit_availability(
    unit_id: int,
    start_date: date = Query(..., alias="startDate"),
    end_date: date = Query(..., alias="endDate"),
    db: Session = Depends(get_rental_db),
):
    if not db.get(Unit, unit_id):
        raise HTTPException(status_code=404, detail="Camera unit not found")
    try:
        available = is_available(db, unit_id, start_date, end_date)
        alternatives = [] if available else suggest_alternative_dates(db, unit_id, start_date, end_date)
    except RentalError as exc:
        raise _http_error(exc) from exc
    return {
        "unitID": unit_id,
        "startDate": start_date,
        "endDate": end_date,
        "available": available,
        "alternatives": alternatives,
    }


@app.get("/api/units/{unit_id}/quote")
def get_unit_quote(
    unit_id: int,
    start_date: date = Query(..., alias="startDate"),
    end_date: date = Query(..., alias="endDate"),
    db: Session = Depends(get_rental_db),
):
    try:
        return quote_price(db, unit_id, start_date, end_date).to_dict()
    except RentalError as exc:
        raise _http_error(exc) from exc


@app.get("/api/models/{model_name}/availability")
def get_model_availability(
    model_name: str,
    start_date: date = Query(..., alias="startDate"),
    end_date: date = Query(..., alias="endDate"),
    db: Session = Depends(get_rental_db),
):
    try:
        units = list_available_units(db, model_name, start_date, end_date)
    except RentalError as exc:
        raise _http_error(exc) from exc
    return {
        "modelName": model_name,
        "startDate": start_date,
        "endDate": end_date,
        "availableCount": len(units),
        "availableUnitIDs": [unit.UnitID for unit in units],
    }


# --- extensions -------------------------------------------------------------


@app.post("/api/rentals/{rental_id}/extensions")
def create_extension(
    rental_id: int,
    payload: ExtensionRequest,
    db: Session = Depends(get_rental_db),
    actor: Actor = Depends(_resolve_actor),
):
    return _mutated(request_extension(db, rental_id, payload.newEndDate, actor))


@app.post("/api/extensions/{extension_id}/decision")
def decide_extension_request(
    extension_id: int,
    payload: ExtensionDecisionRequest,
    db: Session = Depends(get_rental_db),
    actor: Actor = Depends(_resolve_actor),
):
    return _mutated(decide_extension(db, extension_id, payload.decision, actor, payload.notes))


@app.get("/api/extensions")
def get_extensions(
    status: str | None = Query(None, alias="status"),
    db: Session = Depends(get_rental_db),
    actor: Actor = Depends(_resolve_actor),
):
    try:
        return list_extensions(db, actor, status)
    except RentalError as exc:
        raise _http_error(exc) from exc


# --- operations -------------------------------------------------------------


@app.post("/api/shipping/return-sweep")
def run_return_sweep(db: Session = Depends(get_rental_db), actor: Actor = Depends(_resolve_actor)):
    _require_admin_or_403(actor, "run the return sweep")
    result = sweep_overdue_returns(db, grace_days=RETURN_SWEEP_GRACE_DAYS)
    CALENDAR_CACHE.clear()
    LOGGER.info("Return sweep requested by actor_id=%s scheduled=%s", actor.actor_id, result["scheduled"])
    return result


@app.get("/api/notifications/pending")
def get_pending_notifications(db: Session = Depends(get_rental_db), actor: Actor = Depends(_resolve_actor)):
    _require_admin_or_403(actor, "read the notification queue")
    rows = db.execute(
        select(NotificationQueue)
        .where(NotificationQueue.SentAt.is_(None))
        .order_by(NotificationQueue.NotificationID)
    ).scalars().all()
    return [
        {
            "notificationID": row.NotificationID,
            "rentalID": row.RentalID,
            "notificationType": row.NotificationType,
            "payload": row.Payload,
            "createdAt": row.CreatedAt,
        }
        for row in rows
    ]
