"""
Session Blueprint — the caller's business-unit assignments.

Endpoints:
    GET    /api/v1/session            assignments carried by the current token
    POST   /api/v1/session/refresh    re-project assignments from the database
                                      and issue a fresh access token
"""

import logging

from flask import Blueprint, jsonify

from backoffice.blueprints import authenticated
from backoffice.services.access_context import build_access_context
from backoffice.services.jwt_service import generate_access_token
from backoffice.utils.errors import E, api_error

logger = logging.getLogger(__name__)

session_bp = Blueprint("session", __name__, url_prefix="/api/v1")


@session_bp.route("/session", methods=["GET"])
@authenticated
def current_session(ctx):
    return jsonify({
        "success": True,
        "user_id": ctx.user_id,
        "assignments": ctx.to_token_payload(),
    }), 200


@session_bp.route("/session/refresh", methods=["POST"])
@authenticated
def refresh_session(ctx):
    fresh = build_access_context(ctx.user_id)
    if fresh is None:
        return api_error(E.UNAUTHENTICATED, "User is inactive or no longer exists")
    assignments = fresh.to_token_payload()
    logger.info(
        "Session refreshed with %d assignment(s)", len(assignments),
        extra={"actor_id": ctx.user_id},
    )
    return jsonify({
        "success": True,
        "access_token": generate_access_token(fresh.user_id, assignments),
        "token_type": "Bearer",
        "assignments": assignments,
    }), 200
