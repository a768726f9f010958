"""Role-based access control for Beacon.

Roles and permissions are static tables. ``has_permission`` is a pure
lookup of (role, action); nothing is assembled at runtime.

- Member: read events, channels and webhooks; manage own push subscriptions
- Admin: member permissions plus deleting events and managing channels,
  webhooks and API keys
- Owner: everything, including organization settings
"""

from __future__ import annotations

from enum import Enum


class Action(str, Enum):
    """Actions guarded by RBAC."""

    READ_EVENTS = "event:read"
    DELETE_EVENTS = "event:delete"
    READ_CHANNELS = "channel:read"
    CREATE_CHANNELS = "channel:create"
    DELETE_CHANNELS = "channel:delete"
    READ_WEBHOOKS = "webhook:read"
    MANAGE_WEBHOOKS = "webhook:manage"
    SUBSCRIBE_PUSH = "push:subscribe"
    MANAGE_API_KEYS = "apikey:manage"
    MANAGE_ORGANIZATION = "organization:manage"


class Role(str, Enum):
    """Organization membership roles."""

    OWNER = "owner"
    ADMIN = "admin"
    MEMBER = "member"


_MEMBER_ACTIONS: frozenset[Action] = frozenset(
    {
        Action.READ_EVENTS,
        Action.READ_CHANNELS,
        Action.READ_WEBHOOKS,
        Action.SUBSCRIBE_PUSH,
    }
)

_ADMIN_ACTIONS: frozenset[Action] = _MEMBER_ACTIONS | {
    Action.DELETE_EVENTS,
    Action.CREATE_CHANNELS,
    Action.DELETE_CHANNELS,
    Action.MANAGE_WEBHOOKS,
    Action.MANAGE_API_KEYS,
}

ROLE_PERMISSIONS: dict[Role, frozenset[Action]] = {
    Role.MEMBER: _MEMBER_ACTIONS,
    Role.ADMIN: frozenset(_ADMIN_ACTIONS),
    Role.OWNER: frozenset(Action),
}


def parse_role(value: str | Role | None) -> Role | None:
    """Map a stored role name to ``Role``; unknown names map to None."""
    if value is None or isinstance(value, Role):
        return value
    try:
        return Role(value.lower())
    except ValueError:
        return None


def has_permission(role: str | Role | None, action: Action) -> bool:
    """Check whether ``role`` may perform ``action``. Unknown roles may not."""
    parsed = parse_role(role)
    if parsed is None:
        return False
    return action in ROLE_PERMISSIONS[parsed]
