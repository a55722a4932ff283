from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


class RentalError(Exception):
    code = "rental_error"

    def __init__(self, message: str, **details: Any):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict:
        payload = {"code": self.code, "message": self.message}
        payload.update(self.details)
        return payload


class ValidationError(RentalError):
    code = "validation_error"


class InvalidRangeError(ValidationError):
    code = "invalid_range"


class NoPricingTierError(ValidationError):
    code = "no_pricing_tier"


class TransitionError(ValidationError):
    code = "invalid_transition"


class NotFoundError(RentalError):
    code = "not_found"


class AuthorizationError(RentalError):
    code = "not_authorized"


class AvailabilityError(RentalError):
    code = "unavailable"


class NoUnitAvailableError(AvailabilityError):
    code = "no_unit_available"


class ConflictError(RentalError):
    code = "conflict"

    def __init__(self, message: str, conflicts: list[dict] | None = None, **details: Any):
        super().__init__(message, conflicts=list(conflicts or []), **details)
        self.conflicts = list(conflicts or [])


class CancellationNotAllowedError(RentalError):
    code = "cancellation_not_allowed"


class DependencyError(RentalError):
    code = "dependency_error"


@dataclass
class Outcome:
    """Result of a public engine operation.

    Expected business failures come back as ``ok=False`` with the typed error.
    ``step`` and ``rental`` tell the caller where a multi-step flow stopped and
    how the rental row was left.
    """

    ok: bool
    data: Any = None
    error: RentalError | None = None
    step: str | None = None
    rental: dict | None = None
    warnings: list[str] = field(default_factory=list)

    @classmethod
    def success(cls, data: Any = None, warnings: list[str] | None = None) -> "Outcome":
        return cls(ok=True, data=data, warnings=list(warnings or []))

    @classmethod
    def failure(cls, error: RentalError, step: str | None = None, rental: dict | None = None) -> "Outcome":
        return cls(ok=False, error=error, step=step, rental=rental)

    def to_dict(self) -> dict:
        if self.ok:
            return {"ok": True, "data": self.data, "warnings": self.warnings}
        payload = {"ok": False, "error": self.error.to_dict() if self.error else None}
        if self.step:
            payload["failedStep"] = self.step
        if self.rental is not None:
            payload["rental"] = self.rental
        return payload
