from __future__ import annotations

import logging
from datetime import date, datetime, timedelta

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from models.rental_models import Rental
from services.actors import Actor, SYSTEM_ACTOR
from services.collaborators import enqueue_notification, log_audit
from services.errors import AuthorizationError, TransitionError, ValidationError
from services.rental_service import activate_rental, load_rental, run_operation
from services.rental_states import (
    ACTIVE,
    CONFIRMED,
    DELIVERED,
    RETURN_LEG_EVENTS,
    RETURN_SCHEDULED,
    SHIPPING_ALLOWED_RENTAL_STATES,
    SHIPPING_EVENT_ROLES,
    SHIPPING_TRANSITIONS,
)


LOGGER = logging.getLogger("rental_fulfillment.shipping")

SHIPPING_NOTIFICATIONS = {
    "ready_to_ship": "Camera packed and ready to ship",
    "in_transit_to_user": "Camera is on its way",
    "delivered": "Camera delivered",
    "return_scheduled": "Return scheduled",
    "in_transit_to_owner": "Camera is on its way back",
    "returned": "Camera returned",
}


def _apply_shipping_event(db: Session, rental: Rental, event: str, actor: Actor, today: date) -> Rental:
    if event not in SHIPPING_EVENT_ROLES:
        raise ValidationError(f"Unknown shipping event: {event}", event=event)
    allowed_roles = SHIPPING_EVENT_ROLES[event]
    if actor.is_admin:
        if "admin" not in allowed_roles:
            raise AuthorizationError(f"Only the customer can mark a rental {event}.", event=event)
    else:
        if "customer" not in allowed_roles:
            raise AuthorizationError(f"Only staff can mark a rental {event}.", event=event)
        actor.require_owner_or_admin(rental, f"mark {event}")

    if rental.RentalStatus not in SHIPPING_ALLOWED_RENTAL_STATES:
        raise TransitionError(
            f"Shipping updates need a confirmed or active rental; rental is {rental.RentalStatus}.",
            rentalID=rental.RentalID,
            currentStatus=rental.RentalStatus,
        )
    if event in RETURN_LEG_EVENTS and rental.RentalStatus != ACTIVE:
        raise TransitionError(
            f"Return steps need an active rental; rental is {rental.RentalStatus}.",
            rentalID=rental.RentalID,
            currentStatus=rental.RentalStatus,
            event=event,
        )
    current = rental.ShippingStatus
    if event not in SHIPPING_TRANSITIONS.get(current, set()):
        raise TransitionError(
            f"Invalid shipping transition: {current or 'none'} -> {event}",
            rentalID=rental.RentalID,
            shippingStatus=current,
            event=event,
        )

    rental.ShippingStatus = event
    rental.UpdatedDate = datetime.now()
    enqueue_notification(db, rental, "ShippingUpdate", f"Rental {rental.RentalID}: {SHIPPING_NOTIFICATIONS[event]}")
    log_audit(db, "Rental", rental.RentalID, "Shipping", f"{current} -> {event}", user_id=actor.actor_id)
    LOGGER.info("Shipping advanced rental_id=%s from=%s to=%s", rental.RentalID, current, event)

    # Delivery is the one point where custody drives the commercial status.
    if event == DELIVERED and rental.RentalStatus == CONFIRMED and today >= rental.StartDate:
        activate_rental(db, rental, actor, today=today)
    return rental


def advance_shipping(db: Session, rental_id: int, event: str, actor: Actor, today: date | None = None):
    current_day = today or date.today()
    return run_operation(
        db,
        "AdvanceShipping",
        rental_id,
        lambda: _apply_shipping_event(db, load_rental(db, rental_id), event, actor, current_day),
    )


def sweep_overdue_returns(db: Session, today: date | None = None, grace_days: int = 0) -> dict:
    """Schedule returns for active rentals whose end date has passed.

    Only rows still at ``delivered`` are touched, each with a guarded UPDATE, so
    re-running the sweep neither moves a rental twice nor repeats notifications.
    """
    current_day = today or date.today()
    cutoff = current_day - timedelta(days=max(grace_days, 0))
    candidate_ids = db.execute(
        select(Rental.RentalID)
        .where(Rental.RentalStatus == ACTIVE)
        .where(Rental.ShippingStatus == DELIVERED)
        .where(Rental.EndDate < cutoff)
        .order_by(Rental.RentalID)
    ).scalars().all()

    scheduled: list[int] = []
    for rental_id in candidate_ids:
        result = db.execute(
            update(Rental)
            .where(Rental.RentalID == rental_id)
            .where(Rental.RentalStatus == ACTIVE)
            .where(Rental.ShippingStatus == DELIVERED)
            .values(ShippingStatus=RETURN_SCHEDULED, UpdatedDate=datetime.now())
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            continue
        rental = db.get(Rental, rental_id)
        db.refresh(rental)
        enqueue_notification(db, rental, "ShippingUpdate", f"Rental {rental_id}: {SHIPPING_NOTIFICATIONS[RETURN_SCHEDULED]}")
        log_audit(db, "Rental", rental_id, "Shipping", f"{DELIVERED} -> {RETURN_SCHEDULED} (sweep)", user_id=SYSTEM_ACTOR.actor_id)
        scheduled.append(rental_id)

    db.commit()
    LOGGER.info("Return sweep finished cutoff=%s candidates=%s scheduled=%s", cutoff, len(candidate_ids), len(scheduled))
    return {"checked": len(candidate_ids), "scheduled": scheduled}
