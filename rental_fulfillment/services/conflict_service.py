"""Conflict detection and admin-driven resolution at confirmation time.

Detection is a read; every resolution path ends in ``commit_confirmation``,
whose guarded UPDATE re-checks the unit at write time. Two admins racing on
the same unit therefore leave one confirmed rental and one fresh conflict.
"""

from __future__ import annotations

import logging

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from models.rental_models import Rental, Unit
from services.actors import Actor
from services.allocation_service import list_available_units, reassign_unit
from services.availability_service import find_overlapping_rentals
from services.collaborators import log_audit
from services.errors import ConflictError, NotFoundError, Outcome, RentalError, TransitionError, ValidationError
from services.rental_service import (
    cancel_rental,
    commit_confirmation,
    load_rental,
    reject_rental,
    run_operation,
    serialize_conflict,
    serialize_rental,
)
from services.rental_states import BLOCKING_STATES, CONFIRMED, CONFLICT_STATES, PENDING, REJECTED


LOGGER = logging.getLogger("rental_fulfillment.conflicts")

CONFIRM_ANYWAY = "confirm_anyway"
TRANSFER = "transfer"
REJECT_COMPETITORS = "reject_competitors"
STRATEGIES = {CONFIRM_ANYWAY, TRANSFER, REJECT_COMPETITORS}


def detect_conflicts(db: Session, rental: Rental) -> list[Rental]:
    return find_overlapping_rentals(
        db,
        rental.UnitID,
        rental.StartDate,
        rental.EndDate,
        CONFLICT_STATES,
        exclude_rental_id=rental.RentalID,
    )


def _available_unit_payload(db: Session, rental: Rental) -> list[dict]:
    model_name = rental.Unit.ModelName if rental.Unit else None
    if not model_name:
        return []
    units = list_available_units(
        db,
        model_name,
        rental.StartDate,
        rental.EndDate,
        exclude_rental_id=rental.RentalID,
        exclude_unit_id=rental.UnitID,
    )
    return [{"unitID": u.UnitID, "modelName": u.ModelName, "serialNumber": u.SerialNumber} for u in units]


def confirm(db: Session, rental_id: int, actor: Actor) -> Outcome:
    """Confirm a pending rental, or report who else wants the unit.

    With no overlapping pending/confirmed competitor the rental is confirmed
    directly. Otherwise nothing is written and the outcome carries a
    ``ConflictError`` listing the competitors and the free units of the same
    model, for ``resolve_conflict``.
    """
    try:
        actor.require_admin("confirm rentals")
        rental = load_rental(db, rental_id)
        if rental.RentalStatus != PENDING:
            raise TransitionError(
                f"Rental is {rental.RentalStatus}; only pending rentals can be confirmed.",
                rentalID=rental_id,
                currentStatus=rental.RentalStatus,
            )
        competitors = detect_conflicts(db, rental)
        if competitors:
            LOGGER.info(
                "Conflict detected rental_id=%s unit_id=%s competitors=%s",
                rental_id,
                rental.UnitID,
                [c.RentalID for c in competitors],
            )
            raise ConflictError(
                f"Rental overlaps {len(competitors)} other booking(s) on this unit.",
                conflicts=[serialize_conflict(c) for c in competitors],
                rentalID=rental_id,
                availableUnits=_available_unit_payload(db, rental),
            )
        commit_confirmation(db, rental, actor)
        db.commit()
    except RentalError as exc:
        db.rollback()
        LOGGER.warning("Confirm refused rental_id=%s code=%s", rental_id, exc.code)
        return Outcome.failure(exc)
    return Outcome.success(serialize_rental(rental))


def _state_of(db: Session, rental_id: int) -> dict | None:
    try:
        return serialize_rental(load_rental(db, rental_id))
    except NotFoundError:
        return None


def _confirm_anyway(db: Session, rental: Rental, actor: Actor) -> Outcome:
    try:
        commit_confirmation(db, rental, actor)
        db.commit()
    except RentalError as exc:
        db.rollback()
        LOGGER.warning("Confirm-anyway refused rental_id=%s code=%s", rental.RentalID, exc.code)
        return Outcome.failure(exc, step="confirm", rental=_state_of(db, rental.RentalID))
    LOGGER.info("Rental confirmed over pending competitors rental_id=%s", rental.RentalID)
    return Outcome.success(serialize_rental(rental))


def _transfer_then_confirm(db: Session, rental: Rental, actor: Actor, target_unit_id: int | None) -> Outcome:
    rental_id = rental.RentalID
    try:
        previous_unit_id = rental.UnitID
        new_unit_id = reassign_unit(db, rental, target_unit_id)
        log_audit(db, "Rental", rental_id, "Transfer", f"Unit {previous_unit_id} -> {new_unit_id}", user_id=actor.actor_id)
        db.commit()
    except RentalError as exc:
        db.rollback()
        return Outcome.failure(exc, step="transfer", rental=_state_of(db, rental_id))

    try:
        commit_confirmation(db, rental, actor)
        db.commit()
    except RentalError as exc:
        db.rollback()
        LOGGER.warning("Confirm after transfer failed rental_id=%s code=%s", rental_id, exc.code)
        return Outcome.failure(exc, step="confirm", rental=_state_of(db, rental_id))
    return Outcome.success(serialize_rental(rental))


def _reject_competitors(db: Session, rental: Rental, actor: Actor, rental_ids: list[int], reason: str | None) -> Outcome:
    rental_id = rental.RentalID
    try:
        if not rental_ids:
            raise ValidationError("Select at least one booking to reject.")
        overlapping = {c.RentalID for c in detect_conflicts(db, rental)} | {rental_id}
        unknown = [rid for rid in rental_ids if rid not in overlapping]
        if unknown:
            raise ValidationError("Only overlapping bookings can be rejected here.", rentalIDs=unknown)

        for competitor_id in dict.fromkeys(rental_ids):
            competitor = load_rental(db, competitor_id)
            if competitor.RentalStatus == CONFIRMED:
                # confirmed -> rejected is not a lifecycle move; the admin cancels instead.
                cancel_rental(db, competitor, reason, actor)
            else:
                reject_rental(db, competitor, reason, actor)
        db.commit()
    except RentalError as exc:
        db.rollback()
        return Outcome.failure(exc, step="reject_competitors", rental=_state_of(db, rental_id))

    if rental.RentalStatus == REJECTED:
        LOGGER.info("Rental rejected among its competitors rental_id=%s", rental_id)
        return Outcome.success(serialize_rental(rental))

    try:
        commit_confirmation(db, rental, actor)
        db.commit()
    except RentalError as exc:
        db.rollback()
        return Outcome.failure(exc, step="confirm", rental=_state_of(db, rental_id))
    return Outcome.success(serialize_rental(rental))


def resolve_conflict(
    db: Session,
    rental_id: int,
    strategy: str,
    actor: Actor,
    target_unit_id: int | None = None,
    reject_rental_ids: list[int] | None = None,
    reason: str | None = None,
) -> Outcome:
    try:
        actor.require_admin("resolve booking conflicts")
        if strategy not in STRATEGIES:
            raise ValidationError(f"Unknown resolution strategy: {strategy}", strategy=strategy)
        rental = load_rental(db, rental_id)
        if rental.RentalStatus != PENDING:
            raise TransitionError(
                f"Rental is {rental.RentalStatus}; only pending rentals can be confirmed.",
                rentalID=rental_id,
                currentStatus=rental.RentalStatus,
            )
    except RentalError as exc:
        db.rollback()
        return Outcome.failure(exc)

    LOGGER.info("Resolving conflict rental_id=%s strategy=%s", rental_id, strategy)
    if strategy == CONFIRM_ANYWAY:
        return _confirm_anyway(db, rental, actor)
    if strategy == TRANSFER:
        return _transfer_then_confirm(db, rental, actor, target_unit_id)
    return _reject_competitors(db, rental, actor, list(reject_rental_ids or []), reason)


def redistribute_model(db: Session, model_name: str, actor: Actor) -> Outcome:
    """Confirm every pending rental of a model, first come first served.

    Each rental keeps its unit when that unit is still free, otherwise it moves
    to another free unit of the model. Items succeed or fail on their own and
    are all reported.
    """
    try:
        actor.require_admin("redistribute bookings")
    except RentalError as exc:
        return Outcome.failure(exc)

    pending_ids = db.execute(
        select(Rental.RentalID)
        .join(Unit, Unit.UnitID == Rental.UnitID)
        .where(Unit.ModelName == model_name)
        .where(Rental.RentalStatus == PENDING)
        .order_by(Rental.CreatedDate, Rental.RentalID)
    ).scalars().all()

    report: list[dict] = []
    for rental_id in pending_ids:
        rental = load_rental(db, rental_id)
        from_unit_id = rental.UnitID
        blocked = find_overlapping_rentals(
            db, rental.UnitID, rental.StartDate, rental.EndDate, BLOCKING_STATES, exclude_rental_id=rental_id
        )
        if blocked:
            outcome = _transfer_then_confirm(db, rental, actor, None)
            action = "transferred"
        else:
            outcome = _confirm_anyway(db, rental, actor)
            action = "confirmed"

        item = {"rentalID": rental_id, "ok": outcome.ok, "fromUnitID": from_unit_id}
        if outcome.ok:
            item.update({"action": action, "toUnitID": outcome.data["unitID"]})
        else:
            item.update(
                {
                    "failedStep": outcome.step,
                    "error": outcome.error.to_dict() if outcome.error else None,
                    "rentalStatus": (outcome.rental or {}).get("rentalStatus"),
                    "unitID": (outcome.rental or {}).get("unitID"),
                }
            )
        report.append(item)

    succeeded = sum(1 for item in report if item["ok"])
    LOGGER.info(
        "Redistribution finished model=%s total=%s succeeded=%s failed=%s",
        model_name,
        len(report),
        succeeded,
        len(report) - succeeded,
    )
    return Outcome.success(
        {
            "modelName": model_name,
            "total": len(report),
            "succeeded": succeeded,
            "failed": len(report) - succeeded,
            "items": report,
        }
    )


def scan_conflicts(db: Session, actor: Actor) -> Outcome:
    """Every pending rental that currently overlaps a confirmed/active one."""

    def action():
        actor.require_admin("review booking conflicts")
        pending = db.execute(
            select(Rental)
            .options(selectinload(Rental.Unit))
            .where(Rental.RentalStatus == PENDING)
            .order_by(Rental.CreatedDate, Rental.RentalID)
        ).scalars().all()
        results = []
        for rental in pending:
            blockers = find_overlapping_rentals(
                db, rental.UnitID, rental.StartDate, rental.EndDate, BLOCKING_STATES, exclude_rental_id=rental.RentalID
            )
            if blockers:
                results.append(
                    {
                        "rental": serialize_conflict(rental),
                        "conflicts": [serialize_conflict(b) for b in blockers],
                    }
                )
        return {"conflicts": results}

    return run_operation(db, "ScanConflicts", None, action)
