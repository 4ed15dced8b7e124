from abc import ABC, abstractmethod
from enum import Enum
from typing import Dict, FrozenSet, Mapping, Optional, Set


class TicketStatus(str, Enum):
    NEW = "NEW"
    ASSIGNED = "ASSIGNED"
    IN_PROGRESS = "IN_PROGRESS"
    REPAIRED = "REPAIRED"
    SCRAP = "SCRAP"


TERMINAL_STATUSES: FrozenSet[str] = frozenset(
    {TicketStatus.REPAIRED.value, TicketStatus.SCRAP.value}
)


class MaintenanceFor(str, Enum):
    EQUIPMENT = "EQUIPMENT"
    WORK_CENTER = "WORK_CENTER"


# The target column that must be set for each kind of request
TARGET_FIELD: Dict[MaintenanceFor, str] = {
    MaintenanceFor.EQUIPMENT: "equipment_id",
    MaintenanceFor.WORK_CENTER: "work_center_id",
}


def parse_maintenance_for(value) -> Optional[MaintenanceFor]:
    if not isinstance(value, str):
        return None
    try:
        return MaintenanceFor(value)
    except ValueError:
        return None


def _value(status) -> str:
    return status.value if isinstance(status, TicketStatus) else status


class StatusValidator(ABC):
    """Decides whether a caller-supplied status may replace the current one."""

    @abstractmethod
    def allows(self, current: str, requested: str) -> bool:
        ...


class PermissiveStatusValidator(StatusValidator):
    """Accept any non-empty status, except going back to NEW.

    NEW is produced only by creation, so a ticket that already left NEW
    can never return to it. Re-sending NEW on a NEW ticket is a no-op and
    allowed.
    """

    def allows(self, current: str, requested: str) -> bool:
        if not isinstance(requested, str) or not requested.strip():
            return False
        if requested == TicketStatus.NEW.value:
            return _value(current) == TicketStatus.NEW.value
        return True


DEFAULT_TRANSITIONS: Mapping[str, Set[str]] = {
    TicketStatus.NEW.value: {
        TicketStatus.ASSIGNED.value,
        TicketStatus.IN_PROGRESS.value,
        TicketStatus.SCRAP.value,
    },
    TicketStatus.ASSIGNED.value: {
        TicketStatus.IN_PROGRESS.value,
        TicketStatus.REPAIRED.value,
        TicketStatus.SCRAP.value,
    },
    TicketStatus.IN_PROGRESS.value: {
        TicketStatus.ASSIGNED.value,
        TicketStatus.REPAIRED.value,
        TicketStatus.SCRAP.value,
    },
    TicketStatus.REPAIRED.value: set(),
    TicketStatus.SCRAP.value: set(),
}


class TransitionGraphValidator(StatusValidator):
    """Only follow the edges of an explicit transition graph.

    Staying in the current status is always allowed.
    """

    def __init__(self, transitions: Mapping[str, Set[str]] = DEFAULT_TRANSITIONS):
        self.transitions = {k: frozenset(v) for k, v in transitions.items()}

    def allows(self, current: str, requested: str) -> bool:
        if not isinstance(requested, str):
            return False
        current = _value(current)
        if requested == current:
            return True
        return requested in self.transitions.get(current, frozenset())


_VALIDATORS = {
    "permissive": PermissiveStatusValidator,
    "strict": TransitionGraphValidator,
}


def get_status_validator(name: str = "permissive") -> StatusValidator:
    """Return the validator configured by name (``permissive`` or ``strict``)."""
    try:
        return _VALIDATORS[(name or "permissive").lower()]()
    except KeyError:
        raise ValueError(f"Unknown status validation mode: {name!r}")
