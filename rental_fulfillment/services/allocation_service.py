from __future__ import annotations

import logging
from datetime import date, datetime

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from models.rental_models import Rental, Unit
from services.availability_service import blocking_rental_exists
from services.errors import NoUnitAvailableError, NotFoundError, ValidationError
from services.pricing_service import rental_days
from services.rental_states import PENDING


LOGGER = logging.getLogger("rental_fulfillment.allocation")

UNIT_AVAILABLE = "available"


def _available_units_stmt(
    model_name: str,
    start_date: date,
    end_date: date,
    exclude_rental_id: int | None = None,
    exclude_unit_id: int | None = None,
):
    # Units of the model that are in service and not held by a blocking rental.
    stmt = (
        select(Unit)
        .where(Unit.ModelName == model_name)
        .where(Unit.CameraStatus == UNIT_AVAILABLE)
        .where(~blocking_rental_exists(Unit.UnitID, start_date, end_date, exclude_rental_id=exclude_rental_id))
        .order_by(Unit.UnitID)
    )
    if exclude_unit_id is not None:
        stmt = stmt.where(Unit.UnitID != exclude_unit_id)
    return stmt


def list_available_units(
    db: Session,
    model_name: str,
    start_date: date,
    end_date: date,
    exclude_rental_id: int | None = None,
    exclude_unit_id: int | None = None,
) -> list[Unit]:
    rental_days(start_date, end_date)  # rejects inverted ranges
    return db.execute(
        _available_units_stmt(model_name, start_date, end_date, exclude_rental_id, exclude_unit_id)
    ).scalars().all()


def allocate_unit(
    db: Session,
    model_name: str,
    start_date: date,
    end_date: date,
    exclude_rental_id: int | None = None,
    exclude_unit_id: int | None = None,
) -> int:
    """Pick the lowest-numbered free unit of ``model_name`` in one statement."""
    rental_days(start_date, end_date)  # rejects inverted ranges
    stmt = _available_units_stmt(
        model_name, start_date, end_date, exclude_rental_id, exclude_unit_id
    ).with_only_columns(Unit.UnitID).limit(1)
    unit_id = db.execute(stmt).scalar()
    if unit_id is None:
        LOGGER.warning(
            "No unit available model=%s start=%s end=%s", model_name, start_date, end_date
        )
        raise NoUnitAvailableError(
            f"No {model_name} unit is available from {start_date} to {end_date}.",
            modelName=model_name,
            startDate=str(start_date),
            endDate=str(end_date),
        )
    return int(unit_id)


def reassign_unit(db: Session, rental: Rental, target_unit_id: int | None = None) -> int:
    """Move a pending rental onto another free unit of the same model.

    Selection and reassignment are a single UPDATE, so a unit claimed by a
    concurrent session between the two is never written. With ``target_unit_id``
    the admin-chosen unit must itself pass the same check.
    """
    if rental.RentalStatus != PENDING:
        raise ValidationError("Only pending rentals can be transferred to another unit.", rentalID=rental.RentalID)
    current_unit = rental.Unit or db.get(Unit, rental.UnitID)
    if current_unit is None:
        raise NotFoundError("Camera unit not found.", unitID=rental.UnitID)

    if target_unit_id is not None:
        target = db.get(Unit, target_unit_id)
        if target is None:
            raise NotFoundError("Camera unit not found.", unitID=target_unit_id)
        if target.ModelName != current_unit.ModelName:
            raise ValidationError(
                "Rentals can only be transferred between units of the same model.",
                unitID=target_unit_id,
                modelName=current_unit.ModelName,
            )
        if target.UnitID == current_unit.UnitID:
            raise ValidationError("Rental is already assigned to that unit.", unitID=target_unit_id)

    candidates = _available_units_stmt(
        current_unit.ModelName,
        rental.StartDate,
        rental.EndDate,
        exclude_rental_id=rental.RentalID,
        exclude_unit_id=current_unit.UnitID,
    )
    if target_unit_id is not None:
        candidates = candidates.where(Unit.UnitID == target_unit_id)
    candidate_id = candidates.with_only_columns(Unit.UnitID).limit(1)

    db.flush()
    result = db.execute(
        update(Rental)
        .where(Rental.RentalID == rental.RentalID)
        .where(Rental.RentalStatus == PENDING)
        .where(candidate_id.exists())
        .values(UnitID=candidate_id.scalar_subquery(), UpdatedDate=datetime.now())
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        LOGGER.warning(
            "Transfer found no free unit rental_id=%s model=%s target=%s",
            rental.RentalID,
            current_unit.ModelName,
            target_unit_id,
        )
        raise NoUnitAvailableError(
            f"No other {current_unit.ModelName} unit is free from {rental.StartDate} to {rental.EndDate}.",
            modelName=current_unit.ModelName,
            rentalID=rental.RentalID,
        )

    db.refresh(rental)
    db.expire(rental, ["Unit"])
    LOGGER.info(
        "Rental transferred rental_id=%s from_unit=%s to_unit=%s",
        rental.RentalID,
        current_unit.UnitID,
        rental.UnitID,
    )
    return int(rental.UnitID)
