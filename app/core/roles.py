# app/core/roles.py
"""
Centralized role-to-capability mapping for class access actors.

Presenters run live sessions, attendees are the student devices behind a
class login, and managers administer class logins and their devices.
"""

from enum import Enum
from typing import Dict, FrozenSet

from app.core.errors import ForbiddenError


class Role(str, Enum):
    PRESENTER = "presenter"
    ATTENDEE = "attendee"
    MANAGER = "manager"


class Capability(str, Enum):
    START_SESSION = "start_session"
    END_SESSION = "end_session"
    CONTROL_PARTICIPANTS = "control_participants"
    JOIN_AS_PRESENTER = "join_as_presenter"
    JOIN_AS_ATTENDEE = "join_as_attendee"
    MANAGE_CREDENTIALS = "manage_credentials"
    MANAGE_DEVICES = "manage_devices"


ROLE_DESCRIPTIONS = {
    Role.PRESENTER: "Teacher running a live session on a class login",
    Role.ATTENDEE: "Student device admitted under a shared class login",
    Role.MANAGER: "School administrator managing class logins and devices",
}

ROLE_CAPABILITIES: Dict[Role, FrozenSet[Capability]] = {
    Role.PRESENTER: frozenset({
        Capability.START_SESSION,
        Capability.END_SESSION,
        Capability.CONTROL_PARTICIPANTS,
        Capability.JOIN_AS_PRESENTER,
    }),
    Role.ATTENDEE: frozenset({
        Capability.JOIN_AS_ATTENDEE,
    }),
    Role.MANAGER: frozenset({
        Capability.MANAGE_CREDENTIALS,
        Capability.MANAGE_DEVICES,
    }),
}


def parse_role(role: str) -> Role:
    """
    Convert a raw role string (from a token or request body) into a Role.

    Raises:
        ForbiddenError: If the role is not recognized
    """
    try:
        return Role(role.lower())
    except (ValueError, AttributeError):
        raise ForbiddenError(
            f"Unknown role '{role}'. Must be one of: {', '.join(r.value for r in Role)}",
            details={"role": role},
        )


def has_capability(role: Role, capability: Capability) -> bool:
    return capability in ROLE_CAPABILITIES.get(role, frozenset())


def require_capability(role: Role, capability: Capability) -> None:
    if not has_capability(role, capability):
        raise ForbiddenError(
            f"Role '{role.value}' is not allowed to {capability.value.replace('_', ' ')}",
            details={"role": role.value, "capability": capability.value},
        )
