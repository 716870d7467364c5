"""PO status enumeration and the forward-only transition table."""

from enum import Enum

from core.errors import InvalidTransitionError


class POStatus(str, Enum):
    DRAFT = "draft"
    OPEN = "open"
    CLOSED = "closed"
    ORDERED = "ordered"
    IN_TRANSIT_CHINA = "in_transit_china"
    IN_TRANSIT_USA = "in_transit_usa"
    ARRIVED_HUB = "arrived_hub"
    PROCESSING = "processing"
    COMPLETED = "completed"


# Statuses that still accept new order links
ACCEPTING_STATUSES = frozenset({POStatus.DRAFT, POStatus.OPEN})

# Closed or ordered, before China tracking is known
PRE_TRACKING_STATUSES = frozenset({POStatus.CLOSED, POStatus.ORDERED})

TRANSITIONS: dict[POStatus, frozenset[POStatus]] = {
    POStatus.DRAFT: frozenset({POStatus.OPEN}),
    POStatus.OPEN: frozenset({POStatus.CLOSED}),
    POStatus.CLOSED: frozenset({POStatus.ORDERED, POStatus.IN_TRANSIT_CHINA}),
    POStatus.ORDERED: frozenset({POStatus.IN_TRANSIT_CHINA}),
    POStatus.IN_TRANSIT_CHINA: frozenset({POStatus.IN_TRANSIT_USA}),
    POStatus.IN_TRANSIT_USA: frozenset({POStatus.ARRIVED_HUB}),
    POStatus.ARRIVED_HUB: frozenset({POStatus.PROCESSING}),
    POStatus.PROCESSING: frozenset({POStatus.COMPLETED}),
    POStatus.COMPLETED: frozenset(),
}

# PurchaseOrder column stamped when the PO enters each stage
STAGE_TIMESTAMPS: dict[POStatus, str] = {
    POStatus.CLOSED: "closed_at",
    POStatus.ORDERED: "ordered_at",
    POStatus.IN_TRANSIT_CHINA: "shipped_from_china_at",
    POStatus.IN_TRANSIT_USA: "arrived_usa_at",
    POStatus.ARRIVED_HUB: "arrived_hub_at",
    POStatus.PROCESSING: "processing_at",
    POStatus.COMPLETED: "completed_at",
}


def parse_status(value: str | POStatus) -> POStatus:
    try:
        return POStatus(value)
    except ValueError:
        raise InvalidTransitionError(str(value), str(value), detail=f"Unknown PO status '{value}'") from None


def is_accepting_orders(status: str | POStatus) -> bool:
    return parse_status(status) in ACCEPTING_STATUSES


def allowed_next(status: str | POStatus) -> frozenset[POStatus]:
    return TRANSITIONS[parse_status(status)]


def validate_transition(current: str | POStatus, new: str | POStatus) -> POStatus:
    """Return the target status, or raise InvalidTransitionError if the table forbids it."""
    current_status = parse_status(current)
    target = parse_status(new)
    if target not in TRANSITIONS[current_status]:
        raise InvalidTransitionError(current_status.value, target.value)
    return target
