"""Side effects owned by other systems.

Payments, notifications and audit entries are written as rows for their owners
to pick up; nothing here talks to a payment provider or a push service.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from sqlalchemy.orm import Session

from models.rental_models import AuditLog, NotificationQueue, Payment, Rental, RentalExtension


def log_audit(db: Session, entity_type: str, entity_id: int, action: str, details: str | None = None, user_id: int | None = None) -> None:
    db.add(
        AuditLog(
            EntityType=entity_type,
            EntityID=entity_id,
            Action=action,
            Details=details,
            UserID=user_id,
            CreatedAt=datetime.now(),
        )
    )


def enqueue_notification(db: Session, rental: Rental, notification_type: str, payload: str) -> None:
    db.add(
        NotificationQueue(
            RentalID=rental.RentalID,
            NotificationType=notification_type,
            Payload=payload,
            CreatedAt=datetime.now(),
        )
    )


def create_rental_payment(db: Session, rental: Rental, created_by: int | None = None) -> Payment:
    payment = Payment(
        RentalID=rental.RentalID,
        PaymentType="rental",
        Amount=Decimal(str(rental.TotalPrice or 0)),
        PaymentStatus="pending",
        CreatedBy=created_by,
        CreatedDate=datetime.now(),
    )
    db.add(payment)
    return payment


def create_extension_payment(db: Session, extension: RentalExtension, created_by: int | None = None) -> Payment:
    payment = Payment(
        RentalID=extension.RentalID,
        ExtensionID=extension.ExtensionID,
        PaymentType="extension",
        Amount=Decimal(str(extension.AdditionalPrice or 0)),
        PaymentStatus="pending",
        CreatedBy=created_by,
        CreatedDate=datetime.now(),
    )
    db.add(payment)
    return payment
