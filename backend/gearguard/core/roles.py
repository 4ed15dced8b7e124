"""Roles and what each of them may do with a maintenance request.

``CAPABILITIES`` is the table every policy decision is derived from. The
policy engine keys its rule tables on ``Role`` and refuses to load when a
role is missing from any of them.
"""
from dataclasses import dataclass
from enum import Enum


class Role(str, Enum):
    EMPLOYEE = "EMPLOYEE"
    TECHNICIAN = "TECHNICIAN"
    ADMIN = "ADMIN"


class ReadScope(str, Enum):
    OWN = "OWN"
    TEAM = "TEAM"
    ALL = "ALL"


class UpdateScope(str, Enum):
    NONE = "NONE"
    # assignment (self only) + status/schedule/duration, while the ticket is
    # unassigned or assigned to the actor
    SELF_ASSIGNED = "SELF_ASSIGNED"
    ALL = "ALL"


@dataclass(frozen=True)
class Capabilities:
    can_create: bool
    read_scope: ReadScope
    update_scope: UpdateScope


CAPABILITIES = {
    Role.EMPLOYEE: Capabilities(
        can_create=True, read_scope=ReadScope.OWN, update_scope=UpdateScope.NONE
    ),
    Role.TECHNICIAN: Capabilities(
        can_create=False,
        read_scope=ReadScope.TEAM,
        update_scope=UpdateScope.SELF_ASSIGNED,
    ),
    Role.ADMIN: Capabilities(
        can_create=False, read_scope=ReadScope.ALL, update_scope=UpdateScope.ALL
    ),
}


def capabilities_for(role: Role) -> Capabilities:
    return CAPABILITIES[role]


@dataclass(frozen=True)
class Actor:
    """The verified identity performing a request."""

    id: int
    role: Role

    @classmethod
    def from_user(cls, user) -> "Actor":
        """Build an actor from a ``User`` row. Raises ValueError on an unknown role."""
        return cls(id=user.id, role=Role(user.role))
