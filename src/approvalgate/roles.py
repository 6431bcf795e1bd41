"""Ordered actor roles shared by every policy.

Dependencies: (none — leaf module)
Wired in: approval/types.py, policy/helpers.py, policy/defaults.py
"""

from __future__ import annotations

from enum import StrEnum


class Role(StrEnum):
    """Resolved tenant role of an actor or approver."""

    VIEWER = "VIEWER"
    DEVELOPER = "DEVELOPER"
    ADMIN = "ADMIN"
    OWNER = "OWNER"


_ROLE_ORDER = {Role.VIEWER: 0, Role.DEVELOPER: 1, Role.ADMIN: 2, Role.OWNER: 3}


def role_rank(role: Role | str) -> int:
    """Return the position of *role* in the hierarchy; unknown roles raise ``ValueError``."""
    return _ROLE_ORDER[Role(role)]


def role_at_least(actual: Role | str, required: Role | str) -> bool:
    return role_rank(actual) >= role_rank(required)
