# Overview: Request decorators for API routes.

from functools import wraps

from flask import g, jsonify, request

from .context import Actor


_TRUE_VALUES = {"1", "true", "yes", "si", "sí"}


def _header_int(name: str) -> int | None:
    raw = request.headers.get(name, "").strip()
    if not raw or not raw.isdigit():
        return None
    return int(raw)


def require_actor(f):
    """
    Require the caller identity resolved by the upstream gateway.

    Sets g.actor from:
    - X-User-Id: authenticated user id (required)
    - X-Tenant-Id: tenant the request is scoped to (required)
    - X-Supervisor: supervisor capability ("true"/"1"), optional

    Returns 401 when either id header is missing or not a positive integer.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        user_id = _header_int("X-User-Id")
        tenant_id = _header_int("X-Tenant-Id")

        if not user_id or not tenant_id:
            return jsonify({"error": "UNAUTHENTICATED", "message": "Authentication required"}), 401

        is_supervisor = request.headers.get("X-Supervisor", "").strip().lower() in _TRUE_VALUES
        g.actor = Actor(user_id=user_id, tenant_id=tenant_id, is_supervisor=is_supervisor)

        return f(*args, **kwargs)

    return decorated_function


def json_body() -> dict:
    """Request JSON as a dict; empty dict when missing or not an object."""
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}
