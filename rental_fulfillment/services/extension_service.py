from __future__ import annotations

import logging
from datetime import date, datetime, timedelta
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.orm import Session

from models.rental_models import RentalExtension
from services.actors import Actor
from services.availability_service import is_available
from services.collaborators import create_extension_payment, enqueue_notification, log_audit
from services.errors import AvailabilityError, NotFoundError, Outcome, TransitionError, ValidationError
from services.pricing_service import rental_days
from services.rental_service import load_rental, run_operation
from services.rental_states import ACTIVE, CONFIRMED


LOGGER = logging.getLogger("rental_fulfillment.extensions")

EXTENSION_PENDING = "pending"
EXTENSION_APPROVED = "approved"
EXTENSION_REJECTED = "rejected"
EXTENDABLE_STATES = {CONFIRMED, ACTIVE}


def serialize_extension(extension: RentalExtension) -> dict:
    return {
        "extensionID": extension.ExtensionID,
        "rentalID": extension.RentalID,
        "requestedBy": extension.RequestedBy,
        "originalEndDate": extension.OriginalEndDate,
        "requestedEndDate": extension.RequestedEndDate,
        "extensionDays": extension.ExtensionDays,
        "additionalPrice": float(extension.AdditionalPrice) if extension.AdditionalPrice is not None else None,
        "extensionStatus": extension.ExtensionStatus,
        "adminNotes": extension.AdminNotes,
        "requestedAt": extension.RequestedAt,
        "decidedAt": extension.DecidedAt,
    }


def _check_extension_window(db: Session, rental, new_end_date: date) -> int:
    if new_end_date <= rental.EndDate:
        raise ValidationError(
            "New end date must be after the current end date.",
            rentalID=rental.RentalID,
            endDate=str(rental.EndDate),
            newEndDate=str(new_end_date),
        )
    window_start = rental.EndDate + timedelta(days=1)
    if not is_available(db, rental.UnitID, window_start, new_end_date, exclude_rental_id=rental.RentalID):
        raise AvailabilityError(
            "Camera is already booked during the requested extension.",
            rentalID=rental.RentalID,
            unitID=rental.UnitID,
            startDate=str(window_start),
            endDate=str(new_end_date),
        )
    return rental_days(window_start, new_end_date)


def request_extension(db: Session, rental_id: int, new_end_date: date, actor: Actor) -> Outcome:
    """Ask to keep the camera longer.

    The extra days are priced at the rental's frozen per-day price and a
    pending extension payment is recorded next to the request.
    """

    def action():
        rental = load_rental(db, rental_id)
        actor.require_owner_or_admin(rental, "extend")
        if rental.RentalStatus not in EXTENDABLE_STATES:
            raise TransitionError(
                f"Rental is {rental.RentalStatus}; only confirmed or active rentals can be extended.",
                rentalID=rental_id,
                currentStatus=rental.RentalStatus,
            )
        already_pending = db.execute(
            select(RentalExtension.ExtensionID)
            .where(RentalExtension.RentalID == rental_id)
            .where(RentalExtension.ExtensionStatus == EXTENSION_PENDING)
        ).first()
        if already_pending:
            raise ValidationError("An extension request is already pending for this rental.", rentalID=rental_id)

        extension_days = _check_extension_window(db, rental, new_end_date)
        price_per_day = Decimal(str(rental.PricePerDay or 0))
        extension = RentalExtension(
            RentalID=rental_id,
            RequestedBy=actor.actor_id,
            OriginalEndDate=rental.EndDate,
            RequestedEndDate=new_end_date,
            ExtensionDays=extension_days,
            AdditionalPrice=price_per_day * extension_days,
            ExtensionStatus=EXTENSION_PENDING,
            RequestedAt=datetime.now(),
        )
        db.add(extension)
        db.flush()
        create_extension_payment(db, extension, created_by=actor.actor_id)
        enqueue_notification(
            db, rental, "ExtensionRequested", f"Rental {rental_id} extension to {new_end_date} requested"
        )
        log_audit(
            db,
            "RentalExtension",
            extension.ExtensionID,
            "Request",
            f"Rental {rental_id}: {rental.EndDate} -> {new_end_date} ({extension_days} days)",
            user_id=actor.actor_id,
        )
        LOGGER.info(
            "Extension requested extension_id=%s rental_id=%s days=%s", extension.ExtensionID, rental_id, extension_days
        )
        return serialize_extension(extension)

    return run_operation(db, "RequestExtension", rental_id, action)


def decide_extension(db: Session, extension_id: int, decision: str, actor: Actor, notes: str | None = None) -> Outcome:
    def action():
        actor.require_admin("decide extension requests")
        extension = db.get(RentalExtension, extension_id)
        if not extension:
            raise NotFoundError("Extension request not found.", extensionID=extension_id)
        if extension.ExtensionStatus != EXTENSION_PENDING:
            raise TransitionError(
                f"Extension is already {extension.ExtensionStatus}.",
                extensionID=extension_id,
                currentStatus=extension.ExtensionStatus,
            )
        if decision not in {"approve", "reject"}:
            raise ValidationError(f"Unknown extension decision: {decision}", decision=decision)

        rental = load_rental(db, extension.RentalID)
        if decision == "approve":
            if rental.RentalStatus not in EXTENDABLE_STATES:
                raise TransitionError(
                    f"Rental is {rental.RentalStatus}; only confirmed or active rentals can be extended.",
                    rentalID=rental.RentalID,
                    currentStatus=rental.RentalStatus,
                )
            # The window may have been booked since the request was made.
            _check_extension_window(db, rental, extension.RequestedEndDate)
            rental.EndDate = extension.RequestedEndDate
            rental.UpdatedDate = datetime.now()
            extension.ExtensionStatus = EXTENSION_APPROVED
        else:
            extension.ExtensionStatus = EXTENSION_REJECTED

        extension.AdminNotes = (notes or "").strip() or None
        extension.DecidedAt = datetime.now()
        enqueue_notification(
            db, rental, f"Extension{extension.ExtensionStatus.capitalize()}", f"Rental {rental.RentalID} extension {extension.ExtensionStatus}"
        )
        log_audit(db, "RentalExtension", extension_id, decision.capitalize(), extension.AdminNotes, user_id=actor.actor_id)
        LOGGER.info(
            "Extension decided extension_id=%s rental_id=%s status=%s", extension_id, rental.RentalID, extension.ExtensionStatus
        )
        return serialize_extension(extension)

    return run_operation(db, "DecideExtension", extension_id, action)


def list_extensions(db: Session, actor: Actor, status: str | None = None) -> list[dict]:
    actor.require_admin("review extension requests")
    stmt = select(RentalExtension).order_by(RentalExtension.RequestedAt.desc(), RentalExtension.ExtensionID.desc())
    if status:
        stmt = stmt.where(RentalExtension.ExtensionStatus == status)
    return [serialize_extension(ext) for ext in db.execute(stmt).scalars().all()]
