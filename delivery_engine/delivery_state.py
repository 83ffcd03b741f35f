"""
Delivery lifecycle state machine. Valid transitions enforce business rules.
"""
from enum import Enum

from delivery_engine.errors import ValidationError


class DeliveryStatus(str, Enum):
    OPEN = "OPEN"
    ASSIGNED = "ASSIGNED"
    ON_ROUTE = "ON_ROUTE"
    DELIVERED = "DELIVERED"
    PAID = "PAID"
    CLOSED = "CLOSED"
    CANCELLED = "CANCELLED"
    DISPUTE = "DISPUTE"
    RETURNED = "RETURNED"  # legacy rows only; never written


# Values older rows were written with
_ALIASES = {
    "PICKED_UP": DeliveryStatus.ON_ROUTE,
}

INITIAL_STATUS = DeliveryStatus.OPEN

# Current state -> allowed next states
VALID_TRANSITIONS: dict[DeliveryStatus, frozenset[DeliveryStatus]] = {
    DeliveryStatus.OPEN: frozenset({DeliveryStatus.ASSIGNED, DeliveryStatus.CANCELLED}),
    DeliveryStatus.ASSIGNED: frozenset({
        DeliveryStatus.ON_ROUTE,
        DeliveryStatus.DISPUTE,
        DeliveryStatus.OPEN,  # seller releases the chosen driver before pickup
    }),
    DeliveryStatus.ON_ROUTE: frozenset({DeliveryStatus.DELIVERED, DeliveryStatus.DISPUTE}),
    DeliveryStatus.DELIVERED: frozenset({
        DeliveryStatus.PAID,
        DeliveryStatus.CLOSED,
        DeliveryStatus.DISPUTE,
    }),
    DeliveryStatus.PAID: frozenset({DeliveryStatus.CLOSED, DeliveryStatus.DISPUTE}),
    DeliveryStatus.CLOSED: frozenset(),  # terminal
    DeliveryStatus.CANCELLED: frozenset(),  # terminal
    DeliveryStatus.DISPUTE: frozenset(),  # resolved by support, outside the engine
    DeliveryStatus.RETURNED: frozenset(),
}

TERMINAL_STATUSES = frozenset({
    DeliveryStatus.CLOSED,
    DeliveryStatus.CANCELLED,
    DeliveryStatus.DISPUTE,
})

# States in which chosen_driver_id must be set
DRIVER_BOUND_STATUSES = frozenset({
    DeliveryStatus.ASSIGNED,
    DeliveryStatus.ON_ROUTE,
    DeliveryStatus.DELIVERED,
    DeliveryStatus.PAID,
    DeliveryStatus.CLOSED,
    DeliveryStatus.DISPUTE,
})

# States at or past pickup; the drop-off side of the route is disclosed from here on
PICKED_UP_STATUSES = frozenset({
    DeliveryStatus.ON_ROUTE,
    DeliveryStatus.DELIVERED,
    DeliveryStatus.PAID,
    DeliveryStatus.CLOSED,
    DeliveryStatus.DISPUTE,
})

# Sources from which either party may escalate
DISPUTABLE_STATUSES = frozenset(
    status for status, targets in VALID_TRANSITIONS.items() if DeliveryStatus.DISPUTE in targets
)

# Dashboard may drop these from view (per role)
HIDEABLE_STATUSES = frozenset({
    DeliveryStatus.CLOSED,
    DeliveryStatus.CANCELLED,
    DeliveryStatus.RETURNED,
})


def parse_status(raw: str | DeliveryStatus) -> DeliveryStatus:
    """Read a stored status value, mapping legacy spellings. Unknown values are rejected."""
    if isinstance(raw, DeliveryStatus):
        return raw
    value = (raw or "").strip().upper()
    if value in _ALIASES:
        return _ALIASES[value]
    try:
        return DeliveryStatus(value)
    except ValueError:
        raise ValidationError(f"unknown delivery status {raw!r}", field="status")


def is_valid_transition(current: DeliveryStatus, target: DeliveryStatus) -> bool:
    """True if target is allowed after current. RETURNED is never a source or target."""
    if target is DeliveryStatus.RETURNED:
        return False
    return target in VALID_TRANSITIONS.get(current, frozenset())


def is_terminal(status: DeliveryStatus) -> bool:
    return status in TERMINAL_STATUSES


def requires_driver(status: DeliveryStatus) -> bool:
    return status in DRIVER_BOUND_STATUSES


def sources_for(target: DeliveryStatus) -> frozenset[DeliveryStatus]:
    """All states from which target may be entered."""
    return frozenset(src for src, targets in VALID_TRANSITIONS.items() if target in targets)


# Dashboard tabs. Closed-looking states collapse into one tab.
SELLER_TABS = ("OPEN", "ASSIGNED", "ON_ROUTE", "DELIVERED", "CLOSED", "DISPUTE")
DRIVER_TABS = ("OPEN", "REQUESTS", "ASSIGNED", "ON_ROUTE", "DELIVERED", "CLOSED", "DISPUTE")

_TAB_FOR_STATUS = {
    DeliveryStatus.OPEN: "OPEN",
    DeliveryStatus.ASSIGNED: "ASSIGNED",
    DeliveryStatus.ON_ROUTE: "ON_ROUTE",
    DeliveryStatus.DELIVERED: "DELIVERED",
    DeliveryStatus.PAID: "DELIVERED",  # settlement in progress
    DeliveryStatus.CLOSED: "CLOSED",
    DeliveryStatus.CANCELLED: "CLOSED",
    DeliveryStatus.RETURNED: "CLOSED",
    DeliveryStatus.DISPUTE: "DISPUTE",
}


def seller_tab_for_status(status: DeliveryStatus) -> str:
    return _TAB_FOR_STATUS[status]


def driver_tab_for_status(status: DeliveryStatus) -> str:
    # REQUESTS is never derived from status; it is OPEN + "I have a bid" (see dashboards)
    return _TAB_FOR_STATUS[status]
