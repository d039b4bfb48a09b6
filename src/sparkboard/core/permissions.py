# src/sparkboard/core/permissions.py

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

DEFAULT_ORG_ID = "sparkboard-demo"

ADMIN_GROUP = "Admin"
MODERATOR_GROUP = "Moderators"


@dataclass(slots=True, frozen=True)
class Actor:
    """An authenticated user as seen by the item lifecycle."""

    user_id: str
    org_id: str = DEFAULT_ORG_ID
    username: str | None = None
    email: str | None = None
    groups: tuple[str, ...] = field(default_factory=tuple)

    @property
    def is_admin(self) -> bool:
        return ADMIN_GROUP in self.groups

    @property
    def is_moderator(self) -> bool:
        return MODERATOR_GROUP in self.groups


def user_from_claims(claims: Mapping[str, Any] | None) -> Actor | None:
    """
    Build an Actor from verified token claims.

    Returns None when there are no claims or no subject.
    """
    if not claims:
        return None
    user_id = claims.get("sub")
    if not user_id:
        return None

    raw_groups = claims.get("cognito:groups") or ""
    if isinstance(raw_groups, str):
        groups = tuple(g.strip() for g in raw_groups.split(",") if g.strip())
    else:
        groups = tuple(str(g) for g in raw_groups)

    return Actor(
        user_id=str(user_id),
        org_id=str(claims.get("custom:orgId") or DEFAULT_ORG_ID),
        username=claims.get("cognito:username") or claims.get("username"),
        email=claims.get("email"),
        groups=groups,
    )


def _owner_of(resource: Any) -> str | None:
    if resource is None:
        return None
    if isinstance(resource, Mapping):
        return resource.get("ownerId") or resource.get("userId")
    return getattr(resource, "owner_id", None)


def check_permission(user: Actor | None, action: str, resource: Any = None) -> bool:
    """
    Decide whether `user` may perform `action` on `resource`.

    Unknown actions are denied.
    """
    if user is None:
        return False

    if user.is_admin:
        return True

    privileged = user.is_moderator

    if action == "create:announcement":
        return privileged

    if action == "create:task":
        return True

    if action in ("update:task", "delete:task"):
        if resource is None:
            return False
        return _owner_of(resource) == user.user_id or privileged

    if action in ("update:announcement", "delete:announcement"):
        return privileged

    return False
