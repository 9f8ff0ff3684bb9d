"""
Property Back Office
Blueprint registry and shared view helpers.
"""

import functools

from flask import g, request

from backoffice.utils.errors import E, api_error
from backoffice.utils.helpers import parse_bool


def authenticated(view):
    """Pass the caller's AccessContext to the view as ``ctx``.

    401 without a context; 403 when the route's ``bu_id`` is outside the
    caller's assignments.
    """

    @functools.wraps(view)
    def wrapper(*args, **kwargs):
        ctx = getattr(g, "access_context", None)
        if ctx is None:
            return api_error(E.UNAUTHENTICATED, "Authentication required")
        # Business-unit scope is checked before any body validation.
        bu_id = kwargs.get("bu_id")
        if bu_id is not None and not ctx.has_access(bu_id):
            return api_error(E.FORBIDDEN, "Access denied to this business unit")
        return view(ctx, *args, **kwargs)

    return wrapper


def json_body() -> dict:
    return request.get_json(silent=True) or {}


def list_args(*names) -> dict:
    """Common list query params plus the named filters, Nones dropped."""
    args = {
        "search": request.args.get("search") or None,
        "page": request.args.get("page", 1, type=int),
        "limit": request.args.get("limit", 10, type=int),
        "date_from": request.args.get("date_from") or None,
        "date_to": request.args.get("date_to") or None,
    }
    for name in names:
        args[name] = request.args.get(name) or None
    return {k: v for k, v in args.items() if v is not None}


def bool_arg(name):
    return parse_bool(request.args.get(name))
