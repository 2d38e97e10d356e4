# receiving_hub/services/arrival_state.py
"""
Arrival lifecycle rules.

    not_initiated -> upcoming -> in_progress -> finished
                                             -> completed_with_discrepancy

Both pre-start states are editable; status never moves backwards.
"""
from __future__ import annotations
import enum
from typing import Dict, FrozenSet

from receiving_hub.db_models import Arrival, ArrivalStatus
from receiving_hub.errors import ForbiddenStateError


class ArrivalAction(str, enum.Enum):
    attach_products = "attach_products"
    update = "update"
    start = "start"
    scan = "scan"
    finish = "finish"
    delete = "delete"


PRE_START: FrozenSet[ArrivalStatus] = frozenset({ArrivalStatus.not_initiated, ArrivalStatus.upcoming})

ALLOWED_FROM: Dict[ArrivalAction, FrozenSet[ArrivalStatus]] = {
    ArrivalAction.attach_products: PRE_START,
    ArrivalAction.update: PRE_START,
    ArrivalAction.start: frozenset({ArrivalStatus.upcoming}),
    ArrivalAction.scan: frozenset({ArrivalStatus.in_progress}),
    ArrivalAction.finish: frozenset({ArrivalStatus.in_progress}),
    ArrivalAction.delete: frozenset(ArrivalStatus),
}

_REFUSALS: Dict[ArrivalAction, str] = {
    ArrivalAction.attach_products: "Only upcoming or not initiated arrivals can be edited",
    ArrivalAction.update: "You can only edit upcoming or not initiated arrivals",
    ArrivalAction.start: "Only upcoming arrivals can be processed",
    ArrivalAction.scan: "Only in progress arrivals can be scanned",
    ArrivalAction.finish: "Only in progress arrivals can be finished",
    ArrivalAction.delete: "Arrivals that have started processing cannot be deleted",
}

# forward order, used to assert transitions never regress
_RANK: Dict[ArrivalStatus, int] = {
    ArrivalStatus.not_initiated: 0,
    ArrivalStatus.upcoming: 1,
    ArrivalStatus.in_progress: 2,
    ArrivalStatus.finished: 3,
    ArrivalStatus.completed_with_discrepancy: 3,
}


def can(status: ArrivalStatus, action: ArrivalAction) -> bool:
    return status in ALLOWED_FROM[action]


def ensure_allowed(arrival: Arrival, action: ArrivalAction) -> None:
    """Raise ForbiddenStateError unless ``action`` is legal in the arrival's current status."""
    if not can(arrival.status, action):
        raise ForbiddenStateError(
            _REFUSALS[action],
            data={"arrival_number": arrival.arrival_number, "status": arrival.status.value},
        )


def ensure_deletable(arrival: Arrival, allow_started: bool) -> None:
    if allow_started:
        ensure_allowed(arrival, ArrivalAction.delete)
        return
    if arrival.status not in PRE_START:
        raise ForbiddenStateError(
            _REFUSALS[ArrivalAction.delete],
            data={"arrival_number": arrival.arrival_number, "status": arrival.status.value},
        )


def move_to(arrival: Arrival, target: ArrivalStatus) -> None:
    current = arrival.status
    if current == target:
        return
    if current.is_terminal or _RANK[target] < _RANK[current]:
        raise ForbiddenStateError(
            f"Cannot move arrival from {current.value} to {target.value}",
            data={"arrival_number": arrival.arrival_number, "status": current.value},
        )
    arrival.status = target
