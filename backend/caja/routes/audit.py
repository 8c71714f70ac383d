# Overview: Flask API route exposing the audit / notification log to supervisors.

from flask import Blueprint, g, jsonify, request

from ..decorators import require_actor
from ..errors import Unauthorized
from ..services import audit_service
from ..validation import parse_int


audit_bp = Blueprint("audit", __name__, url_prefix="/api/audit")


@audit_bp.get("/events")
@require_actor
def list_events_route():
    """
    Query params:
    - event_type: e.g. cash_session.administrative_close
    - session_id: events of one session
    - limit: default 100, max 500
    """
    if not g.actor.is_supervisor:
        raise Unauthorized("Only supervisors can read the audit log")

    limit = parse_int(request.args.get("limit"), "limit", allow_none=True) or 100
    events = audit_service.list_events(
        g.actor.tenant_id,
        event_type=request.args.get("event_type"),
        session_id=parse_int(request.args.get("session_id"), "session_id", allow_none=True),
        limit=min(limit, 500),
    )
    return jsonify({"events": [e.to_dict() for e in events]}), 200
