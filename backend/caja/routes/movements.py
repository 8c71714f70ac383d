# Overview: Flask API routes for a session's movement journal.

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import json_body, require_actor
from ..errors import CajaError
from ..extensions import db
from ..services import cash_session_service, journal_service
from ..time_utils import parse_iso_datetime


movements_bp = Blueprint("movements", __name__, url_prefix="/api/sessions")


@movements_bp.post("/<int:session_id>/movements")
@require_actor
def add_movement_route(session_id: int):
    """
    Append a movement to the session journal.

    Request body:
    {
        "type": "INGRESO",
        "amount_cents": 5000,
        "payment_method": "EFECTIVO",
        "description": "Sencillo para vuelto",
        "source": "MANUAL"
    }
    """
    data = json_body()
    try:
        movement = journal_service.add_movement(
            g.actor,
            session_id,
            data.get("type"),
            data.get("amount_cents"),
            data.get("payment_method"),
            data.get("description"),
            data.get("source") or journal_service.SOURCE_MANUAL,
            sale_id=data.get("sale_id"),
            credit_note_id=data.get("credit_note_id"),
            payment_id=data.get("payment_id"),
        )
        return jsonify({"movement": movement.to_dict()}), 201
    except CajaError:
        raise
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to add movement")
        return jsonify({"error": "INTERNAL_ERROR", "message": "Internal server error"}), 500


@movements_bp.get("/<int:session_id>/movements")
@require_actor
def list_movements_route(session_id: int):
    """Movements of a session, oldest first (?as_of= cut-off). Cashiers see them after the close."""
    try:
        as_of = parse_iso_datetime(request.args.get("as_of"))
    except ValueError:
        return jsonify({"error": "VALIDATION_ERROR", "message": "as_of must be an ISO-8601 datetime"}), 400

    movements = cash_session_service.list_session_movements(g.actor, session_id, as_of)
    return jsonify({"movements": [m.to_dict() for m in movements]}), 200
