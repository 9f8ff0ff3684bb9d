"""
JWT Auth Middleware — parses the Bearer token and sets g.access_context.

Invalid or expired tokens are not rejected here; they simply leave
g.access_context as None and the blueprints answer 401.
"""

import logging

import jwt as pyjwt
from flask import g, request

from backoffice.services.access_context import AccessContext
from backoffice.services.jwt_service import decode_access_token

logger = logging.getLogger(__name__)

# Paths that skip JWT auth entirely
JWT_SKIP_PREFIXES = (
    "/api/v1/health",
)


def init_jwt_middleware(app):
    """Register JWT middleware as a before_request hook."""

    @app.before_request
    def _jwt_auth():
        g.access_context = None

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
            g.access_context = AccessContext.from_token_payload(payload)
        except pyjwt.ExpiredSignatureError:
            logger.info("Expired access token", extra={"path": path})
        except (pyjwt.InvalidTokenError, KeyError, TypeError, ValueError):
            logger.warning("Rejected malformed access token", extra={"path": path})
