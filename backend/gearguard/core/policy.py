"""Authorization and lifecycle decisions for maintenance requests.

Every function here is pure with respect to its inputs: it looks at the
actor, a snapshot of the ticket and (for technicians) team membership,
and returns a ``Decision``. Expected denials are returned, never raised.

Decisions are dispatched on the actor's ``Capabilities`` (see
``gearguard.core.roles``). The rule tables below must cover every
capability value; ``_check_rule_tables`` enforces that at import time.
"""
import math
from collections.abc import Mapping
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, FrozenSet, Optional

from gearguard.core.lifecycle import (
    TARGET_FIELD,
    PermissiveStatusValidator,
    StatusValidator,
    TicketStatus,
    parse_maintenance_for,
)
from gearguard.core.roles import (
    CAPABILITIES,
    Actor,
    ReadScope,
    Role,
    UpdateScope,
    capabilities_for,
)


class DenyReason(str, Enum):
    ROLE_NOT_PERMITTED = "RoleNotPermitted"
    NOT_TEAM_MEMBER = "NotTeamMember"
    ASSIGNED_TO_OTHER = "AssignedToOther"
    SELF_ASSIGN_ONLY = "SelfAssignOnly"
    MISSING_FIELDS = "MissingFields"
    INVALID_TARGET = "InvalidTarget"
    INVALID_STATUS = "InvalidStatus"
    INVALID_VALUE = "InvalidValue"

    @property
    def status_code(self) -> int:
        return _DENY_STATUS_CODES[self]

    @property
    def message(self) -> str:
        return _DENY_MESSAGES[self]


_DENY_STATUS_CODES = {
    DenyReason.ROLE_NOT_PERMITTED: 403,
    DenyReason.NOT_TEAM_MEMBER: 403,
    DenyReason.ASSIGNED_TO_OTHER: 403,
    DenyReason.SELF_ASSIGN_ONLY: 403,
    DenyReason.MISSING_FIELDS: 400,
    DenyReason.INVALID_TARGET: 400,
    DenyReason.INVALID_STATUS: 400,
    DenyReason.INVALID_VALUE: 400,
}

_DENY_MESSAGES = {
    DenyReason.ROLE_NOT_PERMITTED: "Your role is not permitted to perform this action",
    DenyReason.NOT_TEAM_MEMBER: "You are not a member of the team handling this request",
    DenyReason.ASSIGNED_TO_OTHER: "This request is assigned to another technician",
    DenyReason.SELF_ASSIGN_ONLY: "Technician can only assign themselves",
    DenyReason.MISSING_FIELDS: "Missing required fields",
    DenyReason.INVALID_TARGET: "Invalid maintenance target",
    DenyReason.INVALID_STATUS: "Status change is not allowed",
    DenyReason.INVALID_VALUE: "Invalid field value",
}


# Field allow-lists. Anything not listed is dropped from a requested patch.
TECHNICIAN_UPDATE_FIELDS: FrozenSet[str] = frozenset(
    {"assigned_to_id", "status", "scheduled_date", "duration_hours"}
)
ADMIN_UPDATE_FIELDS: FrozenSet[str] = frozenset(
    {"team_id", "assigned_to_id", "status", "scheduled_date", "duration_hours"}
)
TECHNICIAN_ASSIGN_FIELDS: FrozenSet[str] = frozenset({"assigned_to_id", "status"})
ADMIN_ASSIGN_FIELDS: FrozenSet[str] = frozenset({"team_id", "assigned_to_id", "status"})

REQUIRED_CREATE_FIELDS = (
    "subject",
    "maintenance_for",
    "maintenance_type",
    "category_id",
    "priority",
)
TEXT_CREATE_FIELDS = ("subject", "maintenance_type", "priority")

# Integer primary keys are 32-bit signed in PostgreSQL
MAX_ID = 2**31 - 1


@dataclass(frozen=True)
class TicketSnapshot:
    """The fields of a maintenance request that decisions depend on."""

    id: Optional[int]
    created_by_id: int
    team_id: Optional[int]
    assigned_to_id: Optional[int]
    status: str

    @classmethod
    def from_model(cls, request) -> "TicketSnapshot":
        return cls(
            id=request.id,
            created_by_id=request.created_by_id,
            team_id=request.team_id,
            assigned_to_id=request.assigned_to_id,
            status=request.status,
        )


class SanitizedPatch(Mapping):
    """Immutable field -> value mapping restricted to an allow-list."""

    def __init__(self, allowed: FrozenSet[str], values: Optional[Dict[str, Any]] = None):
        values = dict(values or {})
        unknown = set(values) - set(allowed)
        if unknown:
            raise ValueError(f"Fields not allowed in patch: {sorted(unknown)}")
        self._values = values

    def __getitem__(self, key):
        return self._values[key]

    def __iter__(self):
        return iter(self._values)

    def __len__(self):
        return len(self._values)

    def __repr__(self):
        return f"SanitizedPatch({self._values!r})"

    def as_dict(self) -> Dict[str, Any]:
        return dict(self._values)


@dataclass(frozen=True)
class CreateData:
    subject: str
    description: Optional[str]
    maintenance_for: str
    maintenance_type: str
    equipment_id: Optional[int]
    work_center_id: Optional[int]
    category_id: int
    priority: str
    created_by_id: int
    status: str = TicketStatus.NEW.value

    def as_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class Decision:
    allowed: bool
    value: Any = None
    reason: Optional[DenyReason] = None

    @classmethod
    def allow(cls, value=None) -> "Decision":
        return cls(allowed=True, value=value)

    @classmethod
    def deny(cls, reason: DenyReason) -> "Decision":
        return cls(allowed=False, reason=reason)


@dataclass(frozen=True)
class ListScope:
    """Row filter equivalent to ``authorize_read`` for list queries.

    ``None`` on a field means no restriction on that column.
    """

    created_by_id: Optional[int] = None
    team_ids: Optional[FrozenSet[int]] = None


class _InvalidValue(Exception):
    pass


def _is_blank(value) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    return False


def _parse_id(value) -> Optional[int]:
    if value is None:
        return None
    if isinstance(value, bool):
        raise _InvalidValue(value)
    if isinstance(value, str) and value.strip().isdigit():
        value = int(value.strip())
    if not isinstance(value, int) or not 0 < value <= MAX_ID:
        raise _InvalidValue(value)
    return value


def parse_timestamp(value) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp; naive values are taken as UTC."""
    if value is None:
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str) and value.strip():
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            raise _InvalidValue(value)
    else:
        raise _InvalidValue(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _parse_duration(value) -> Optional[float]:
    if value is None:
        return None
    if isinstance(value, bool):
        raise _InvalidValue(value)
    try:
        hours = float(value)
    except (TypeError, ValueError, OverflowError):
        raise _InvalidValue(value)
    if not math.isfinite(hours) or hours < 0:
        raise _InvalidValue(value)
    return hours


def _sanitize_work_fields(
    ticket: TicketSnapshot,
    patch: Mapping,
    validator: StatusValidator,
    out: Dict[str, Any],
) -> Optional[DenyReason]:
    """Copy status/scheduled_date/duration_hours from ``patch`` into ``out``."""
    if "status" in patch:
        requested = patch["status"]
        if not validator.allows(ticket.status, requested):
            return DenyReason.INVALID_STATUS
        out["status"] = requested
    try:
        if "scheduled_date" in patch:
            out["scheduled_date"] = parse_timestamp(patch["scheduled_date"])
        if "duration_hours" in patch:
            out["duration_hours"] = _parse_duration(patch["duration_hours"])
    except _InvalidValue:
        return DenyReason.INVALID_VALUE
    return None


def authorize_create(actor: Actor, payload: Mapping) -> Decision:
    if not capabilities_for(actor.role).can_create:
        return Decision.deny(DenyReason.ROLE_NOT_PERMITTED)

    if any(_is_blank(payload.get(f)) for f in REQUIRED_CREATE_FIELDS):
        return Decision.deny(DenyReason.MISSING_FIELDS)
    if not all(isinstance(payload[f], str) for f in TEXT_CREATE_FIELDS):
        return Decision.deny(DenyReason.INVALID_VALUE)
    if not isinstance(payload.get("description"), (str, type(None))):
        return Decision.deny(DenyReason.INVALID_VALUE)

    maintenance_for = parse_maintenance_for(payload.get("maintenance_for"))
    if maintenance_for is None:
        return Decision.deny(DenyReason.INVALID_TARGET)

    target_field = TARGET_FIELD[maintenance_for]
    try:
        target_id = _parse_id(payload.get(target_field))
    except _InvalidValue:
        return Decision.deny(DenyReason.INVALID_TARGET)
    if target_id is None:
        return Decision.deny(DenyReason.INVALID_TARGET)

    try:
        category_id = _parse_id(payload.get("category_id"))
    except _InvalidValue:
        return Decision.deny(DenyReason.INVALID_VALUE)

    # The target that does not apply is always cleared, even when supplied
    targets = {field: None for field in TARGET_FIELD.values()}
    targets[target_field] = target_id

    return Decision.allow(
        CreateData(
            subject=payload["subject"],
            description=payload.get("description"),
            maintenance_for=maintenance_for.value,
            maintenance_type=payload["maintenance_type"],
            equipment_id=targets["equipment_id"],
            work_center_id=targets["work_center_id"],
            category_id=category_id,
            priority=payload["priority"],
            created_by_id=actor.id,
        )
    )


def _read_own(actor, ticket, membership) -> bool:
    return ticket.created_by_id == actor.id


def _read_team(actor, ticket, membership) -> bool:
    return membership.is_member(actor.id, ticket.team_id)


def _read_all(actor, ticket, membership) -> bool:
    return True


_READ_RULES: Dict[ReadScope, Callable[..., bool]] = {
    ReadScope.OWN: _read_own,
    ReadScope.TEAM: _read_team,
    ReadScope.ALL: _read_all,
}

_LIST_RULES: Dict[ReadScope, Callable[..., ListScope]] = {
    ReadScope.OWN: lambda actor, membership: ListScope(created_by_id=actor.id),
    ReadScope.TEAM: lambda actor, membership: ListScope(
        team_ids=frozenset(membership.teams_of(actor.id))
    ),
    ReadScope.ALL: lambda actor, membership: ListScope(),
}


def authorize_read(actor: Actor, ticket: TicketSnapshot, membership) -> bool:
    rule = _READ_RULES[capabilities_for(actor.role).read_scope]
    return rule(actor, ticket, membership)


def list_scope(actor: Actor, membership) -> ListScope:
    """Return the row filter that lists exactly what ``authorize_read`` allows."""
    rule = _LIST_RULES[capabilities_for(actor.role).read_scope]
    return rule(actor, membership)


def _technician_gate(
    actor: Actor, ticket: TicketSnapshot, membership
) -> Optional[DenyReason]:
    """Ownership check for technician writes.

    ``membership`` is ``None`` when writes are not team-scoped; team
    membership then only gates reads.
    """
    if ticket.assigned_to_id is not None and ticket.assigned_to_id != actor.id:
        return DenyReason.ASSIGNED_TO_OTHER
    if membership is not None and not membership.is_member(actor.id, ticket.team_id):
        return DenyReason.NOT_TEAM_MEMBER
    return None


def _update_denied(actor, ticket, patch, membership, validator) -> Decision:
    return Decision.deny(DenyReason.ROLE_NOT_PERMITTED)


def _update_self_assigned(actor, ticket, patch, membership, validator) -> Decision:
    reason = _technician_gate(actor, ticket, membership)
    if reason is not None:
        return Decision.deny(reason)

    out: Dict[str, Any] = {}
    if patch.get("assign_to_self") is True:
        out["assigned_to_id"] = actor.id
    reason = _sanitize_work_fields(ticket, patch, validator, out)
    if reason is not None:
        return Decision.deny(reason)
    return Decision.allow(SanitizedPatch(TECHNICIAN_UPDATE_FIELDS, out))


def _update_all(actor, ticket, patch, membership, validator) -> Decision:
    out: Dict[str, Any] = {}
    try:
        for field in ("team_id", "assigned_to_id"):
            if field in patch:
                out[field] = _parse_id(patch[field])
    except _InvalidValue:
        return Decision.deny(DenyReason.INVALID_VALUE)
    reason = _sanitize_work_fields(ticket, patch, validator, out)
    if reason is not None:
        return Decision.deny(reason)
    return Decision.allow(SanitizedPatch(ADMIN_UPDATE_FIELDS, out))


_UPDATE_RULES: Dict[UpdateScope, Callable[..., Decision]] = {
    UpdateScope.NONE: _update_denied,
    UpdateScope.SELF_ASSIGNED: _update_self_assigned,
    UpdateScope.ALL: _update_all,
}


def authorize_update(
    actor: Actor,
    ticket: TicketSnapshot,
    patch: Mapping,
    membership,
    validator: Optional[StatusValidator] = None,
    team_scoped_writes: bool = False,
) -> Decision:
    """General field update. Status is only changed when the caller asks.

    With ``team_scoped_writes`` a technician must also belong to the
    ticket's team (``NotTeamMember`` otherwise).
    """
    rule = _UPDATE_RULES[capabilities_for(actor.role).update_scope]
    return rule(
        actor,
        ticket,
        patch,
        membership if team_scoped_writes else None,
        validator or PermissiveStatusValidator(),
    )


def _assign_denied(actor, ticket, patch, membership) -> Decision:
    return Decision.deny(DenyReason.ROLE_NOT_PERMITTED)


def _assign_self(actor, ticket, patch, membership) -> Decision:
    reason = _technician_gate(actor, ticket, membership)
    if reason is not None:
        return Decision.deny(reason)
    if patch.get("assign_to_self") is not True:
        return Decision.deny(DenyReason.SELF_ASSIGN_ONLY)
    return Decision.allow(
        SanitizedPatch(
            TECHNICIAN_ASSIGN_FIELDS,
            {"assigned_to_id": actor.id, "status": TicketStatus.ASSIGNED.value},
        )
    )


def _assign_any(actor, ticket, patch, membership) -> Decision:
    out: Dict[str, Any] = {}
    try:
        if "team_id" in patch:
            out["team_id"] = _parse_id(patch["team_id"])
        if "assigned_to_id" in patch:
            out["assigned_to_id"] = _parse_id(patch["assigned_to_id"])
    except _InvalidValue:
        return Decision.deny(DenyReason.INVALID_VALUE)
    if out.get("assigned_to_id") is not None:
        out["status"] = TicketStatus.ASSIGNED.value
    return Decision.allow(SanitizedPatch(ADMIN_ASSIGN_FIELDS, out))


_ASSIGN_RULES: Dict[UpdateScope, Callable[..., Decision]] = {
    UpdateScope.NONE: _assign_denied,
    UpdateScope.SELF_ASSIGNED: _assign_self,
    UpdateScope.ALL: _assign_any,
}


def authorize_assign(
    actor: Actor,
    ticket: TicketSnapshot,
    patch: Mapping,
    membership,
    team_scoped_writes: bool = False,
) -> Decision:
    """Assignment endpoint; the only path that sets status as a side effect."""
    rule = _ASSIGN_RULES[capabilities_for(actor.role).update_scope]
    return rule(actor, ticket, patch, membership if team_scoped_writes else None)


def _check_rule_tables() -> None:
    missing_roles = set(Role) - set(CAPABILITIES)
    if missing_roles:
        raise RuntimeError(f"Roles without capabilities: {sorted(missing_roles)}")
    for name, table, keys in (
        ("read", _READ_RULES, ReadScope),
        ("list", _LIST_RULES, ReadScope),
        ("update", _UPDATE_RULES, UpdateScope),
        ("assign", _ASSIGN_RULES, UpdateScope),
    ):
        missing = set(keys) - set(table)
        if missing:
            raise RuntimeError(f"No {name} rule for {sorted(missing)}")


_check_rule_tables()
