# Overview: Flask API routes for cash session lifecycle, blind-count close and session reads.

"""
Cash Session API Routes

Blind count: responses built for a non-supervisor never contain the
theoretical balance of an OPEN session. The close response is where the
cashier first sees it.
"""

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import json_body, require_actor
from ..errors import CajaError
from ..extensions import db
from ..services import admin_close_service, cash_session_service
from ..time_utils import parse_iso_datetime
from ..validation import parse_bool, parse_int


sessions_bp = Blueprint("sessions", __name__, url_prefix="/api/sessions")


def _internal_error(message: str):
    db.session.rollback()
    current_app.logger.exception(message)
    return jsonify({"error": "INTERNAL_ERROR", "message": "Internal server error"}), 500


@sessions_bp.post("/")
@sessions_bp.post("")
@require_actor
def open_session_route():
    """
    Open a session.

    Request body:
    {
        "register_id": 1,
        "opening_amount_cents": 10000
    }
    """
    data = json_body()
    try:
        register_id = parse_int(data.get("register_id"), "register_id")
        session = cash_session_service.open_session(g.actor, register_id, data.get("opening_amount_cents"))
        return jsonify({"session": cash_session_service.serialize_session(g.actor, session)}), 201
    except CajaError:
        raise
    except Exception:
        return _internal_error("Failed to open session")


@sessions_bp.get("/active")
@require_actor
def active_session_route():
    """The caller's own OPEN session, or null."""
    session = cash_session_service.get_active_session_for_user(g.actor)
    return jsonify({
        "session": cash_session_service.serialize_session(g.actor, session) if session else None
    }), 200


@sessions_bp.get("/open")
@require_actor
def open_sessions_route():
    """Supervisor monitor: every OPEN session of the tenant."""
    sessions = cash_session_service.list_open_sessions(g.actor)
    return jsonify({
        "sessions": [cash_session_service.serialize_session(g.actor, s) for s in sessions]
    }), 200


@sessions_bp.get("/closed")
@require_actor
def closed_sessions_route():
    """
    Closure history.

    Query params:
    - only_discrepancies: true to keep FALTANTE / SOBRANTE closes
    - user_id: filter by cashier (supervisors only)
    - limit: default 100
    """
    only_discrepancies = parse_bool(request.args.get("only_discrepancies"), "only_discrepancies")
    user_id = parse_int(request.args.get("user_id"), "user_id", allow_none=True)
    limit = parse_int(request.args.get("limit"), "limit", allow_none=True) or 100

    sessions = cash_session_service.list_closed_sessions(
        g.actor,
        only_discrepancies=only_discrepancies,
        user_id=user_id,
        limit=min(limit, 500),
    )
    return jsonify({"sessions": [s.to_dict() for s in sessions]}), 200


@sessions_bp.get("/<int:session_id>")
@require_actor
def get_session_route(session_id: int):
    session = cash_session_service.get_session_for(g.actor, session_id)
    return jsonify({"session": cash_session_service.serialize_session(g.actor, session)}), 200


@sessions_bp.get("/<int:session_id>/summary")
@require_actor
def session_summary_route(session_id: int):
    return jsonify(cash_session_service.session_summary(g.actor, session_id)), 200


@sessions_bp.get("/<int:session_id>/theoretical-balance")
@require_actor
def theoretical_balance_route(session_id: int):
    """
    Theoretical balance (supervisors, or anyone once the session is CLOSED).

    Query params:
    - as_of: ISO-8601 cut-off; movements created after it are excluded
    """
    try:
        as_of = parse_iso_datetime(request.args.get("as_of"))
    except ValueError:
        return jsonify({"error": "VALIDATION_ERROR", "message": "as_of must be an ISO-8601 datetime"}), 400

    balance = cash_session_service.theoretical_balance_for(g.actor, session_id, as_of)
    return jsonify({"session_id": session_id, "theoretical_cents": balance}), 200


@sessions_bp.post("/<int:session_id>/close")
@require_actor
def close_session_route(session_id: int):
    """
    Normal close by the session owner (blind count).

    Request body (one of counted_amount_cents / denominations):
    {
        "counted_amount_cents": 25000,
        "denominations": {"100": 2, "50": 1},
        "notes": "Sin novedades"
    }
    """
    data = json_body()
    try:
        result = cash_session_service.close_session_normal(
            g.actor,
            session_id,
            data.get("counted_amount_cents"),
            denominations=data.get("denominations"),
            notes=data.get("notes"),
        )
        return jsonify({"closure": result.to_dict()}), 200
    except CajaError:
        raise
    except Exception:
        return _internal_error("Failed to close session")


@sessions_bp.post("/<int:session_id>/close-administrative")
@require_actor
def close_session_administrative_route(session_id: int):
    """
    Supervisor close of another user's session.

    Request body:
    {
        "counted_amount_cents": 25000,
        "justification": "Cajero se retiró por emergencia",
        "notes": null
    }
    """
    data = json_body()
    try:
        result = admin_close_service.close_session_administrative(
            g.actor,
            session_id,
            data.get("counted_amount_cents"),
            data.get("justification"),
            notes=data.get("notes"),
        )
        return jsonify({"closure": result.to_dict()}), 200
    except CajaError:
        raise
    except Exception:
        return _internal_error("Failed to close session administratively")
