"""
Field Operations Platform
Role hierarchy and route-level authorization decorators.

Provides:
    - Role: ordered enumeration tech < supervisor < admin
    - role_satisfies(): the single ">= required role" comparison
    - require_auth / require_role decorators for blueprints

Identity comes from the JWT middleware (``fieldops.middleware.jwt_auth``),
which loads the active ``User`` for the bearer token into ``g.current_user``.
"""

import functools
import logging
from enum import IntEnum

from flask import current_app, g

from fieldops.utils.errors import E, api_error

logger = logging.getLogger(__name__)


# ── Roles ────────────────────────────────────────────────────────────────────


class Role(IntEnum):
    """Field roles, ordered by authority."""

    TECH = 1
    SUPERVISOR = 2
    ADMIN = 3

    @property
    def label(self) -> str:
        return self.name.lower()

    @classmethod
    def parse(cls, value) -> "Role":
        """Return the Role for ``value`` (a Role or its label); ValueError otherwise."""
        if isinstance(value, Role):
            return value
        if isinstance(value, str):
            try:
                return cls[value.strip().upper()]
            except KeyError:
                pass
        raise ValueError(f"Unknown role {value!r}. Must be one of: {', '.join(ROLES)}")

    def satisfies(self, required: "Role | str | None") -> bool:
        """True when this role is at or above ``required`` (None = no requirement)."""
        if required is None:
            return True
        return self >= Role.parse(required)


ROLES = tuple(r.label for r in Role)


def role_satisfies(actual, required) -> bool:
    """Compare two role labels on the tech < supervisor < admin ordering.

    An unknown or missing ``actual`` role never satisfies a requirement.
    """
    if required is None:
        return True
    try:
        return Role.parse(actual).satisfies(required)
    except ValueError:
        return False


# ── Request helpers ──────────────────────────────────────────────────────────


def get_current_user():
    """Return the authenticated User for this request, or None."""
    return getattr(g, "current_user", None)


def require_auth(f):
    """Decorator: reject the request with 401 unless a user is authenticated."""

    @functools.wraps(f)
    def decorated(*args, **kwargs):
        if get_current_user() is None:
            return api_error(E.UNAUTHENTICATED, "Authentication required")
        return f(*args, **kwargs)

    return decorated


def require_role(minimum=None, *, config_key=None):
    """
    Decorator: require the authenticated user's role to be >= ``minimum``.

    Args:
        minimum: Role or role label.
        config_key: Read the minimum role from ``current_app.config`` at
            request time instead (e.g. "EPM_MIN_APPROVER_ROLE").
    """

    def decorator(f):
        @functools.wraps(f)
        def decorated(*args, **kwargs):
            user = get_current_user()
            if user is None:
                return api_error(E.UNAUTHENTICATED, "Authentication required")

            required = current_app.config.get(config_key) if config_key else minimum
            if not role_satisfies(user.role, required):
                required_label = Role.parse(required).label
                logger.warning(
                    "User %s denied: role '%s' below '%s' on %s",
                    user.id, user.role, required_label, f.__name__,
                )
                return api_error(
                    E.INSUFFICIENT_ROLE,
                    "Access denied",
                    details={"required_role": required_label, "current_role": user.role},
                )
            return f(*args, **kwargs)

        return decorated

    return decorator
