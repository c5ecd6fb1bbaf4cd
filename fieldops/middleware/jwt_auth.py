"""
JWT Auth Middleware: Parses JWT from Authorization header, sets g.current_user.

Runs as a before_request hook on every ``/api/v1/`` request except the
skip-listed prefixes.  An absent, expired or invalid token leaves
``g.current_user = None``; the route decorators in ``fieldops.auth`` then
answer 401.  The user row is reloaded on each request so the stored role
is the one that authorizes, never the token claim.
"""

import logging

import jwt as pyjwt
from flask import g, request

from fieldops.models import db
from fieldops.models.auth import User
from fieldops.services.jwt_service import decode_access_token

logger = logging.getLogger(__name__)

# Paths that skip JWT auth entirely
JWT_SKIP_PREFIXES = (
    "/api/v1/health",
)


def init_jwt_middleware(app):
    """Register JWT middleware as a before_request hook."""

    @app.before_request
    def _jwt_auth():
        g.current_user = None
        g.jwt_user_id = None

        path = request.path
        if not path.startswith("/api/v1/"):
            return
        for prefix in JWT_SKIP_PREFIXES:
            if path.startswith(prefix):
                return

        auth_header = request.headers.get("Authorization", "")
        if not auth_header.startswith("Bearer "):
            return

        token = auth_header[7:]  # Strip "Bearer "

        try:
            payload = decode_access_token(token)
        except pyjwt.ExpiredSignatureError:
            logger.info("Expired access token on %s", path)
            return
        except pyjwt.InvalidTokenError as exc:
            logger.info("Rejected access token on %s: %s", path, exc)
            return

        user_id = payload.get("sub")
        user = db.session.get(User, user_id) if user_id else None
        if user is None or not user.is_active:
            logger.info("Token subject %s is unknown or inactive", user_id)
            return

        g.jwt_user_id = user.id
        g.current_user = user
