# Overview: Flask API routes for the register catalog and register-addressed cash operations.

"""
Register API Routes

DESIGN:
- Register setup (create / deactivate) is supervisor-only
- Opening a session and register-addressed movements resolve the register's
  OPEN session; a missing session answers REQUIRES_SESSION_OPEN so the POS can
  start the opening flow
"""

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import json_body, require_actor
from ..errors import CajaError
from ..extensions import db
from ..services import cash_session_service, journal_service, register_service
from ..validation import parse_bool


registers_bp = Blueprint("registers", __name__, url_prefix="/api/registers")


def _internal_error(message: str):
    db.session.rollback()
    current_app.logger.exception(message)
    return jsonify({"error": "INTERNAL_ERROR", "message": "Internal server error"}), 500


@registers_bp.post("/")
@registers_bp.post("")
@require_actor
def create_register_route():
    """
    Create a new cash register.

    Request body:
    {
        "code": "CAJA-01",
        "name": "Caja principal"
    }
    """
    data = json_body()
    try:
        register = register_service.create_register(g.actor, data.get("code"), data.get("name"))
        return jsonify({"register": register.to_dict()}), 201
    except CajaError:
        raise
    except Exception:
        return _internal_error("Failed to create register")


@registers_bp.get("/")
@registers_bp.get("")
@require_actor
def list_registers_route():
    """List registers with their current OPEN session (?all=true includes inactive)."""
    include_inactive = parse_bool(request.args.get("all"), "all")
    result = []
    for register in register_service.list_registers(g.actor, include_inactive=include_inactive):
        d = register.to_dict()
        current_session = cash_session_service.get_open_session(g.actor, register.id)
        d["current_session"] = (
            cash_session_service.serialize_session(g.actor, current_session) if current_session else None
        )
        result.append(d)
    return jsonify({"registers": result}), 200


@registers_bp.get("/<int:register_id>")
@require_actor
def get_register_route(register_id: int):
    register = register_service.get_register(g.actor, register_id)
    current_session = cash_session_service.get_open_session(g.actor, register_id)

    result = register.to_dict()
    result["current_session"] = (
        cash_session_service.serialize_session(g.actor, current_session) if current_session else None
    )
    return jsonify(result), 200


@registers_bp.post("/<int:register_id>/deactivate")
@require_actor
def deactivate_register_route(register_id: int):
    try:
        register = register_service.deactivate_register(g.actor, register_id)
        return jsonify({"register": register.to_dict()}), 200
    except CajaError:
        raise
    except Exception:
        return _internal_error("Failed to deactivate register")


# =============================================================================
# REGISTER-ADDRESSED CASH OPERATIONS
# =============================================================================

@registers_bp.post("/<int:register_id>/sessions")
@require_actor
def open_session_route(register_id: int):
    """
    Open a session on this register for the caller.

    Request body:
    {
        "opening_amount_cents": 10000
    }
    """
    data = json_body()
    try:
        session = cash_session_service.open_session(g.actor, register_id, data.get("opening_amount_cents"))
        return jsonify({"session": cash_session_service.serialize_session(g.actor, session)}), 201
    except CajaError:
        raise
    except Exception:
        return _internal_error("Failed to open session")


@registers_bp.post("/<int:register_id>/movements")
@require_actor
def register_movement_route(register_id: int):
    """
    Manual movement on the register's OPEN session.

    Request body:
    {
        "type": "EGRESO",
        "amount_cents": 1500,
        "payment_method": "EFECTIVO",
        "description": "Pago de movilidad"
    }
    """
    data = json_body()
    try:
        movement = journal_service.record_register_movement(
            g.actor,
            register_id,
            data.get("type"),
            data.get("amount_cents"),
            data.get("payment_method"),
            data.get("description"),
        )
        return jsonify({"movement": movement.to_dict()}), 201
    except CajaError:
        raise
    except Exception:
        return _internal_error("Failed to register movement")
