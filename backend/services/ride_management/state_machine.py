"""Legal ride status transitions."""

from rides.models import (
    STATUS_SEARCHING,
    STATUS_START,
    STATUS_ARRIVED,
    STATUS_COMPLETED,
    STATUS_CANCELLED,
    STATUS_TIMEOUT,
)

TRANSITIONS = {
    STATUS_SEARCHING: {STATUS_START, STATUS_CANCELLED, STATUS_TIMEOUT},
    STATUS_START: {STATUS_ARRIVED, STATUS_COMPLETED, STATUS_CANCELLED},
    STATUS_ARRIVED: {STATUS_COMPLETED, STATUS_CANCELLED},
    STATUS_COMPLETED: set(),
    STATUS_CANCELLED: set(),
    STATUS_TIMEOUT: set(),
}

# Targets a rider may request through update_ride_status
UPDATABLE_STATUSES = (STATUS_START, STATUS_ARRIVED, STATUS_COMPLETED)

CANCELLABLE_STATUSES = (STATUS_SEARCHING, STATUS_START, STATUS_ARRIVED)

# Statuses in which a rider is assigned
ASSIGNED_STATUSES = (STATUS_START, STATUS_ARRIVED)


def can_transition(current: str, target: str) -> bool:
    return target in TRANSITIONS.get(current, set())
