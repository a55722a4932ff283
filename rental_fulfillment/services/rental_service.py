from __future__ import annotations

import logging
from datetime import date, datetime
from typing import Callable

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload

from models.rental_models import Payment, Rental, RentalExtension, Unit
from schemas.rentals import SubmitBookingDto, UpdatePotentialBookingDto
from services.actors import Actor
from services.allocation_service import UNIT_AVAILABLE, allocate_unit
from services.availability_service import blocking_rental_exists, find_overlapping_rentals, is_available
from services.collaborators import create_rental_payment, enqueue_notification, log_audit
from services.errors import (
    AuthorizationError,
    AvailabilityError,
    CancellationNotAllowedError,
    ConflictError,
    DependencyError,
    NoUnitAvailableError,
    NotFoundError,
    Outcome,
    RentalError,
    TransitionError,
    ValidationError,
)
from services.pricing_service import quote_price, rental_days
from services.rental_states import (
    ACTIVE,
    BLOCKING_STATES,
    CANCELLED,
    COMPLETED,
    CONFIRMED,
    DELIVERED,
    LAST_CUSTOMER_CANCELLABLE_SHIPPING,
    PENDING,
    REGISTERED_USER,
    REJECTED,
    RENTAL_TRANSITIONS,
    RETURNED,
    TEMPORARY,
    shipping_rank,
)


LOGGER = logging.getLogger("rental_fulfillment.booking")


def serialize_rental(rental: Rental) -> dict:
    unit = rental.Unit
    customer = rental.Customer
    return {
        "rentalID": rental.RentalID,
        "unitID": rental.UnitID,
        "customerID": rental.CustomerID,
        "customerName": rental.CustomerName,
        "customerContact": rental.CustomerContact,
        "customerEmail": rental.CustomerEmail,
        "startDate": rental.StartDate,
        "endDate": rental.EndDate,
        "rentalStatus": rental.RentalStatus,
        "shippingStatus": rental.ShippingStatus,
        "pricePerDay": float(rental.PricePerDay) if rental.PricePerDay is not None else None,
        "totalPrice": float(rental.TotalPrice) if rental.TotalPrice is not None else None,
        "bookingType": rental.BookingType,
        "cancellationReason": rental.CancellationReason,
        "cancelledBy": rental.CancelledBy,
        "cancelledAt": rental.CancelledAt,
        "rejectionReason": rental.RejectionReason,
        "contractPdfUrl": rental.ContractPdfUrl,
        "confirmedAt": rental.ConfirmedAt,
        "createdDate": rental.CreatedDate,
        "updatedDate": rental.UpdatedDate,
        "unit": {
            "unitID": unit.UnitID,
            "modelName": unit.ModelName,
            "serialNumber": unit.SerialNumber,
            "cameraStatus": unit.CameraStatus,
        } if unit else None,
        "customer": {
            "customerID": customer.CustomerID,
            "firstName": customer.FirstName,
            "lastName": customer.LastName,
            "email": customer.Email,
            "contactNumber": customer.ContactNumber,
        } if customer else None,
    }


def serialize_conflict(rental: Rental) -> dict:
    return {
        "rentalID": rental.RentalID,
        "unitID": rental.UnitID,
        "rentalStatus": rental.RentalStatus,
        "startDate": rental.StartDate,
        "endDate": rental.EndDate,
        "customerName": rental.CustomerName,
        "customerID": rental.CustomerID,
        "bookingType": rental.BookingType,
    }


def load_rental(db: Session, rental_id: int) -> Rental:
    rental = db.execute(
        select(Rental)
        .options(selectinload(Rental.Unit), selectinload(Rental.Customer))
        .where(Rental.RentalID == rental_id)
    ).scalars().first()
    if not rental:
        raise NotFoundError("Rental not found.", rentalID=rental_id)
    return rental


def transition_status(rental: Rental, target_status: str) -> None:
    current = rental.RentalStatus
    if target_status == current:
        return
    if target_status not in RENTAL_TRANSITIONS.get(current, set()):
        raise TransitionError(
            f"Invalid state transition: {current} -> {target_status}",
            rentalID=rental.RentalID,
            currentStatus=current,
            targetStatus=target_status,
        )
    rental.RentalStatus = target_status
    rental.UpdatedDate = datetime.now()


def run_operation(db: Session, operation: str, rental_id: int | None, action: Callable[[], Rental | dict]) -> Outcome:
    """Commit ``action`` or roll back and hand its business error to the caller."""
    try:
        result = action()
        db.commit()
    except RentalError as exc:
        db.rollback()
        LOGGER.warning("%s refused rental_id=%s code=%s message=%s", operation, rental_id, exc.code, exc.message)
        return Outcome.failure(exc)
    if isinstance(result, Rental):
        return Outcome.success(serialize_rental(result))
    return Outcome.success(result)


# --- confirmation -------------------------------------------------------


def commit_confirmation(db: Session, rental: Rental, actor: Actor) -> Rental:
    """pending -> confirmed, guarded in the UPDATE itself.

    The row only changes if it is still pending and no confirmed/active rental
    overlaps it on the same unit at the moment of the write; otherwise the
    losing side gets a fresh ``ConflictError`` or ``TransitionError``.
    """
    actor.require_admin("confirm rentals")
    quote = quote_price(db, rental.UnitID, rental.StartDate, rental.EndDate)
    now = datetime.now()

    db.flush()
    result = db.execute(
        update(Rental)
        .where(Rental.RentalID == rental.RentalID)
        .where(Rental.RentalStatus == PENDING)
        .where(
            ~blocking_rental_exists(
                Rental.UnitID,
                Rental.StartDate,
                Rental.EndDate,
                exclude_rental_id=Rental.RentalID,
            )
        )
        .values(
            RentalStatus=CONFIRMED,
            PricePerDay=quote.price_per_day,
            TotalPrice=quote.total_price,
            ConfirmedAt=now,
            UpdatedDate=now,
        )
        .execution_options(synchronize_session=False)
    )
    db.refresh(rental)

    if result.rowcount != 1:
        if rental.RentalStatus != PENDING:
            raise TransitionError(
                f"Rental is {rental.RentalStatus}; only pending rentals can be confirmed.",
                rentalID=rental.RentalID,
                currentStatus=rental.RentalStatus,
            )
        blockers = find_overlapping_rentals(
            db, rental.UnitID, rental.StartDate, rental.EndDate, BLOCKING_STATES, exclude_rental_id=rental.RentalID
        )
        LOGGER.warning(
            "Confirmation lost to blocking rental rental_id=%s unit_id=%s blockers=%s",
            rental.RentalID,
            rental.UnitID,
            [b.RentalID for b in blockers],
        )
        raise ConflictError(
            "Unit is already booked for these dates by a confirmed or active rental.",
            conflicts=[serialize_conflict(b) for b in blockers],
            rentalID=rental.RentalID,
        )

    create_rental_payment(db, rental, created_by=actor.actor_id)
    enqueue_notification(
        db,
        rental,
        "RentalConfirmed",
        f"Rental {rental.RentalID} confirmed for {rental.StartDate} to {rental.EndDate}",
    )
    log_audit(db, "Rental", rental.RentalID, "Confirm", f"Confirmed on unit {rental.UnitID}", user_id=actor.actor_id)
    LOGGER.info(
        "Rental confirmed rental_id=%s unit_id=%s total=%s", rental.RentalID, rental.UnitID, rental.TotalPrice
    )
    return rental


def reject_rental(db: Session, rental: Rental, reason: str | None, actor: Actor) -> Rental:
    actor.require_admin("reject rentals")
    text = (reason or "").strip()
    if not text:
        raise ValidationError("Reject reason is required.")
    transition_status(rental, REJECTED)
    rental.RejectionReason = text
    if rental.ContractPdfUrl:
        enqueue_notification(db, rental, "ContractVoided", f"Contract for rental {rental.RentalID} is void")
    enqueue_notification(db, rental, "RentalRejected", f"Rental {rental.RentalID} rejected: {text}")
    log_audit(db, "Rental", rental.RentalID, "Reject", text, user_id=actor.actor_id)
    LOGGER.info("Rental rejected rental_id=%s", rental.RentalID)
    return rental


def cancel_rental(db: Session, rental: Rental, reason: str | None, actor: Actor) -> Rental:
    actor.require_owner_or_admin(rental, "cancel")
    text = (reason or "").strip()
    if not text:
        raise ValidationError("Cancellation reason is required.")
    if rental.RentalStatus not in {PENDING, CONFIRMED}:
        raise TransitionError(
            f"Invalid state transition: {rental.RentalStatus} -> {CANCELLED}",
            rentalID=rental.RentalID,
            currentStatus=rental.RentalStatus,
        )
    if (
        not actor.is_admin
        and rental.RentalStatus == CONFIRMED
        and shipping_rank(rental.ShippingStatus) > shipping_rank(LAST_CUSTOMER_CANCELLABLE_SHIPPING)
    ):
        raise CancellationNotAllowedError(
            "This rental can no longer be cancelled: the camera has already left for delivery.",
            rentalID=rental.RentalID,
            shippingStatus=rental.ShippingStatus,
        )

    transition_status(rental, CANCELLED)
    rental.CancellationReason = text
    rental.CancelledBy = actor.cancelled_by
    rental.CancelledAt = datetime.now()
    rental.ShippingStatus = None
    enqueue_notification(db, rental, "RentalCancelled", f"Rental {rental.RentalID} cancelled: {text}")
    log_audit(db, "Rental", rental.RentalID, "Cancel", f"By {rental.CancelledBy}: {text}", user_id=actor.actor_id)
    LOGGER.info("Rental cancelled rental_id=%s by=%s", rental.RentalID, rental.CancelledBy)
    return rental


def activate_rental(db: Session, rental: Rental, actor: Actor, today: date | None = None) -> Rental:
    current = today or date.today()
    if rental.ShippingStatus != DELIVERED:
        raise TransitionError(
            "Rental can only start once the camera is delivered.",
            rentalID=rental.RentalID,
            shippingStatus=rental.ShippingStatus,
        )
    if current < rental.StartDate:
        raise ValidationError(
            f"Rental period starts on {rental.StartDate}.",
            rentalID=rental.RentalID,
            startDate=str(rental.StartDate),
        )
    transition_status(rental, ACTIVE)
    enqueue_notification(db, rental, "RentalActive", f"Rental {rental.RentalID} is now active")
    log_audit(db, "Rental", rental.RentalID, "Start", "Rental started", user_id=actor.actor_id)
    LOGGER.info("Rental active rental_id=%s", rental.RentalID)
    return rental


# --- public operations --------------------------------------------------


def get_rental(db: Session, rental_id: int, actor: Actor) -> Outcome:
    def action():
        rental = load_rental(db, rental_id)
        actor.require_owner_or_admin(rental, "view")
        return rental

    return run_operation(db, "GetRental", rental_id, action)


def list_rentals(db: Session, actor: Actor, status: str | None = None) -> list[dict]:
    stmt = (
        select(Rental)
        .options(selectinload(Rental.Unit), selectinload(Rental.Customer))
        .order_by(Rental.CreatedDate.desc(), Rental.RentalID.desc())
    )
    if status:
        stmt = stmt.where(Rental.RentalStatus == status)
    if not actor.is_admin:
        stmt = stmt.where(Rental.CustomerID == actor.actor_id)
    return [serialize_rental(rental) for rental in db.execute(stmt).scalars().all()]


def _resolve_booking_unit(db: Session, payload: SubmitBookingDto, forced: bool, warnings: list[str]) -> int:
    if payload.modelName:
        try:
            return allocate_unit(db, payload.modelName, payload.startDate, payload.endDate)
        except NoUnitAvailableError:
            if not forced:
                raise
        fallback = db.execute(
            select(Unit.UnitID)
            .where(Unit.ModelName == payload.modelName)
            .where(Unit.CameraStatus == UNIT_AVAILABLE)
            .order_by(Unit.UnitID)
            .limit(1)
        ).scalar()
        if fallback is None:
            raise NotFoundError(f"No {payload.modelName} units exist.", modelName=payload.modelName)
        warnings.append(f"Unit {fallback} assigned despite overlapping bookings.")
        return int(fallback)

    unit = db.get(Unit, payload.unitID)
    if not unit:
        raise NotFoundError("Camera unit not found.", unitID=payload.unitID)
    if unit.CameraStatus != UNIT_AVAILABLE:
        raise AvailabilityError("Camera is not available for rental.", unitID=unit.UnitID, cameraStatus=unit.CameraStatus)
    if not is_available(db, unit.UnitID, payload.startDate, payload.endDate):
        if not forced:
            raise AvailabilityError(
                "Selected camera is not available for the chosen dates.",
                unitID=unit.UnitID,
                startDate=str(payload.startDate),
                endDate=str(payload.endDate),
            )
        warnings.append(f"Unit {unit.UnitID} assigned despite overlapping bookings.")
    return int(unit.UnitID)


def submit_booking(db: Session, payload: SubmitBookingDto, actor: Actor, today: date | None = None) -> Outcome:
    warnings: list[str] = []

    def action():
        rental_days(payload.startDate, payload.endDate)
        if bool(payload.unitID) == bool(payload.modelName):
            raise ValidationError("Provide exactly one of unitID or modelName.")

        if actor.is_admin:
            booking_type = TEMPORARY
            customer_id = payload.customerID
            customer_name = (payload.customerName or "").strip()
            customer_contact = (payload.customerContact or "").strip()
            if customer_id is None and (not customer_name or not customer_contact):
                raise ValidationError("Customer name and contact are required for staff bookings.")
        else:
            if actor.actor_id is None:
                raise AuthorizationError("A customer account is required to book.")
            if payload.initialStatus != PENDING or payload.allowOverlap:
                raise AuthorizationError("Only staff can confirm bookings or override availability.")
            if payload.startDate < (today or date.today()):
                raise ValidationError("Start date cannot be in the past.", startDate=str(payload.startDate))
            booking_type = REGISTERED_USER
            customer_id = actor.actor_id
            customer_name = (payload.customerName or "").strip()
            customer_contact = (payload.customerContact or "").strip()

        unit_id = _resolve_booking_unit(db, payload, forced=actor.is_admin and payload.allowOverlap, warnings=warnings)
        quote = quote_price(db, unit_id, payload.startDate, payload.endDate)

        rental = Rental(
            UnitID=unit_id,
            CustomerID=customer_id,
            CustomerName=customer_name or None,
            CustomerContact=customer_contact or None,
            CustomerEmail=(payload.customerEmail or "").strip() or None,
            StartDate=payload.startDate,
            EndDate=payload.endDate,
            RentalStatus=PENDING,
            ShippingStatus=None,
            PricePerDay=quote.price_per_day,
            TotalPrice=quote.total_price,
            BookingType=booking_type,
            CreatedDate=datetime.now(),
            UpdatedDate=datetime.now(),
        )
        db.add(rental)
        db.flush()
        log_audit(
            db,
            "Rental",
            rental.RentalID,
            "SubmitBooking",
            f"{booking_type} booking on unit {unit_id} for {quote.rental_days} days",
            user_id=actor.actor_id,
        )
        LOGGER.info(
            "Booking submitted rental_id=%s unit_id=%s type=%s days=%s",
            rental.RentalID,
            unit_id,
            booking_type,
            quote.rental_days,
        )

        if payload.initialStatus == CONFIRMED:
            commit_confirmation(db, rental, actor)
        else:
            enqueue_notification(db, rental, "BookingSubmitted", f"New booking request {rental.RentalID}")
        return rental

    outcome = run_operation(db, "SubmitBooking", None, action)
    if outcome.ok:
        outcome.warnings = warnings
    return outcome


def reject(db: Session, rental_id: int, reason: str | None, actor: Actor) -> Outcome:
    return run_operation(db, "Reject", rental_id, lambda: reject_rental(db, load_rental(db, rental_id), reason, actor))


def cancel(db: Session, rental_id: int, reason: str | None, actor: Actor) -> Outcome:
    return run_operation(db, "Cancel", rental_id, lambda: cancel_rental(db, load_rental(db, rental_id), reason, actor))


def start_rental(db: Session, rental_id: int, actor: Actor, today: date | None = None) -> Outcome:
    def action():
        rental = load_rental(db, rental_id)
        actor.require_owner_or_admin(rental, "confirm receipt")
        return activate_rental(db, rental, actor, today=today)

    return run_operation(db, "StartRental", rental_id, action)


def complete_rental(db: Session, rental_id: int, actor: Actor) -> Outcome:
    def action():
        actor.require_admin("complete rentals")
        rental = load_rental(db, rental_id)
        if rental.RentalStatus == ACTIVE and rental.ShippingStatus != RETURNED:
            raise TransitionError(
                "Rental can only be completed once the camera is returned.",
                rentalID=rental.RentalID,
                shippingStatus=rental.ShippingStatus,
            )
        transition_status(rental, COMPLETED)
        rental.ShippingStatus = None
        enqueue_notification(db, rental, "RentalCompleted", f"Rental {rental.RentalID} completed")
        log_audit(db, "Rental", rental.RentalID, "Complete", "Rental completed", user_id=actor.actor_id)
        LOGGER.info("Rental completed rental_id=%s", rental.RentalID)
        return rental

    return run_operation(db, "CompleteRental", rental_id, action)


def _delete_rental_cascade(db: Session, rental: Rental, actor: Actor, action_name: str) -> dict:
    rental_id = rental.RentalID
    try:
        db.execute(delete(Payment).where(Payment.RentalID == rental_id))
        db.execute(delete(RentalExtension).where(RentalExtension.RentalID == rental_id))
        db.execute(delete(Rental).where(Rental.RentalID == rental_id))
        db.flush()
    except IntegrityError as exc:
        LOGGER.warning("Delete blocked by dependent records rental_id=%s", rental_id)
        raise DependencyError(
            "Rental could not be deleted because other records still reference it.",
            rentalID=rental_id,
        ) from exc
    log_audit(db, "Rental", rental_id, action_name, f"Deleted while {rental.RentalStatus}", user_id=actor.actor_id)
    LOGGER.info("Rental deleted rental_id=%s action=%s", rental_id, action_name)
    return {"rentalID": rental_id, "deleted": True}


def force_delete(db: Session, rental_id: int, actor: Actor) -> Outcome:
    def action():
        actor.require_admin("delete rentals")
        return _delete_rental_cascade(db, load_rental(db, rental_id), actor, "ForceDelete")

    return run_operation(db, "ForceDelete", rental_id, action)


def remove_cancelled(db: Session, rental_id: int, actor: Actor) -> Outcome:
    def action():
        actor.require_admin("remove cancelled rentals")
        rental = load_rental(db, rental_id)
        if rental.RentalStatus != CANCELLED:
            raise ValidationError("Only cancelled rentals can be removed.", rentalID=rental_id, currentStatus=rental.RentalStatus)
        return _delete_rental_cascade(db, rental, actor, "RemoveCancelled")

    return run_operation(db, "RemoveCancelled", rental_id, action)


def _require_potential_booking(rental: Rental) -> None:
    if rental.BookingType != TEMPORARY or rental.RentalStatus != PENDING:
        raise ValidationError("Only pending staff bookings can be changed here.", rentalID=rental.RentalID)


def update_potential_booking(db: Session, rental_id: int, payload: UpdatePotentialBookingDto, actor: Actor) -> Outcome:
    def action():
        actor.require_admin("edit bookings")
        rental = load_rental(db, rental_id)
        _require_potential_booking(rental)

        if payload.customerName:
            rental.CustomerName = payload.customerName.strip()
        if payload.customerContact:
            rental.CustomerContact = payload.customerContact.strip()
        if payload.customerEmail is not None:
            rental.CustomerEmail = payload.customerEmail.strip() or None

        if payload.unitID or payload.startDate or payload.endDate:
            unit_id = payload.unitID or rental.UnitID
            start_date = payload.startDate or rental.StartDate
            end_date = payload.endDate or rental.EndDate
            unit = db.get(Unit, unit_id)
            if not unit:
                raise NotFoundError("Camera unit not found.", unitID=unit_id)
            if unit.UnitID != rental.UnitID:
                if unit.ModelName != rental.Unit.ModelName:
                    raise ValidationError(
                        "A booking can only move to another unit of the same model.",
                        unitID=unit.UnitID,
                        modelName=rental.Unit.ModelName,
                    )
                if unit.CameraStatus != UNIT_AVAILABLE:
                    raise AvailabilityError(
                        "Camera is not available for rental.", unitID=unit.UnitID, cameraStatus=unit.CameraStatus
                    )
            if not is_available(db, unit_id, start_date, end_date, exclude_rental_id=rental.RentalID):
                raise AvailabilityError(
                    "Selected camera is not available for the chosen dates.",
                    unitID=unit_id,
                    startDate=str(start_date),
                    endDate=str(end_date),
                )
            quote = quote_price(db, unit_id, start_date, end_date)
            rental.Unit = unit
            rental.StartDate = start_date
            rental.EndDate = end_date
            rental.PricePerDay = quote.price_per_day
            rental.TotalPrice = quote.total_price

        rental.UpdatedDate = datetime.now()
        log_audit(db, "Rental", rental.RentalID, "UpdateBooking", "Potential booking updated", user_id=actor.actor_id)
        return rental

    return run_operation(db, "UpdatePotentialBooking", rental_id, action)


def delete_potential_booking(db: Session, rental_id: int, actor: Actor) -> Outcome:
    def action():
        actor.require_admin("delete bookings")
        rental = load_rental(db, rental_id)
        _require_potential_booking(rental)
        return _delete_rental_cascade(db, rental, actor, "DeletePotentialBooking")

    return run_operation(db, "DeletePotentialBooking", rental_id, action)
