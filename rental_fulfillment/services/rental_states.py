PENDING = "pending"
CONFIRMED = "confirmed"
ACTIVE = "active"
COMPLETED = "completed"
CANCELLED = "cancelled"
REJECTED = "rejected"

RENTAL_STATES = {PENDING, CONFIRMED, ACTIVE, COMPLETED, CANCELLED, REJECTED}
TERMINAL_STATES = {COMPLETED, CANCELLED, REJECTED}
RENTAL_TRANSITIONS = {
    PENDING: {CONFIRMED, REJECTED, CANCELLED},
    CONFIRMED: {ACTIVE, CANCELLED},
    ACTIVE: {COMPLETED},
    COMPLETED: set(),
    CANCELLED: set(),
    REJECTED: set(),
}

# Statuses that occupy a unit for allocation and the commit-time guard.
BLOCKING_STATES = {CONFIRMED, ACTIVE}
# Competitors surfaced to an admin when confirming.
CONFLICT_STATES = {PENDING, CONFIRMED}
CALENDAR_STATES = {CONFIRMED, ACTIVE, COMPLETED}

READY_TO_SHIP = "ready_to_ship"
IN_TRANSIT_TO_USER = "in_transit_to_user"
DELIVERED = "delivered"
RETURN_SCHEDULED = "return_scheduled"
IN_TRANSIT_TO_OWNER = "in_transit_to_owner"
RETURNED = "returned"

SHIPPING_SEQUENCE = [
    None,
    READY_TO_SHIP,
    IN_TRANSIT_TO_USER,
    DELIVERED,
    RETURN_SCHEDULED,
    IN_TRANSIT_TO_OWNER,
    RETURNED,
]
SHIPPING_TRANSITIONS = {
    None: {READY_TO_SHIP},
    READY_TO_SHIP: {IN_TRANSIT_TO_USER},
    IN_TRANSIT_TO_USER: {DELIVERED},
    DELIVERED: {RETURN_SCHEDULED},
    RETURN_SCHEDULED: {RETURN_SCHEDULED, IN_TRANSIT_TO_OWNER},
    IN_TRANSIT_TO_OWNER: {RETURNED},
    RETURNED: set(),
}
SHIPPING_EVENT_ROLES = {
    READY_TO_SHIP: {"admin"},
    IN_TRANSIT_TO_USER: {"admin"},
    DELIVERED: {"customer", "admin"},
    RETURN_SCHEDULED: {"customer", "admin"},
    IN_TRANSIT_TO_OWNER: {"customer", "admin"},
    RETURNED: {"admin"},
}
SHIPPING_ALLOWED_RENTAL_STATES = {CONFIRMED, ACTIVE}
# The return leg only follows a rental that has actually started.
RETURN_LEG_EVENTS = {RETURN_SCHEDULED, IN_TRANSIT_TO_OWNER, RETURNED}
# A customer may still cancel a confirmed rental up to this shipping step.
LAST_CUSTOMER_CANCELLABLE_SHIPPING = READY_TO_SHIP

REGISTERED_USER = "registered_user"
TEMPORARY = "temporary"
BOOKING_TYPES = {REGISTERED_USER, TEMPORARY}


def shipping_rank(status: str | None) -> int:
    return SHIPPING_SEQUENCE.index(status)
