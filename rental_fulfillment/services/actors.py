from __future__ import annotations

from dataclasses import dataclass

from services.errors import AuthorizationError


ADMIN = "admin"
CUSTOMER = "customer"
SYSTEM = "system"
ROLES = {ADMIN, CUSTOMER, SYSTEM}


@dataclass(frozen=True)
class Actor:
    actor_id: int | None
    role: str

    @property
    def is_admin(self) -> bool:
        return self.role in {ADMIN, SYSTEM}

    @property
    def cancelled_by(self) -> str:
        return "admin" if self.is_admin else "user"

    def require_admin(self, action: str) -> None:
        if not self.is_admin:
            raise AuthorizationError(f"Admin role required to {action}.", action=action)

    def require_owner_or_admin(self, rental, action: str) -> None:
        if self.is_admin:
            return
        if rental.CustomerID is None or self.actor_id is None or int(rental.CustomerID) != int(self.actor_id):
            raise AuthorizationError(f"Not authorized to {action} for this rental.", action=action, rentalID=rental.RentalID)


SYSTEM_ACTOR = Actor(actor_id=None, role=SYSTEM)
