# Overview: Flask API routes for credit-note issuance, SUNAT state ingestion and cash reversals.

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import json_body, require_actor
from ..errors import CajaError
from ..extensions import db
from ..services import credit_note_service
from ..validation import parse_int


credit_notes_bp = Blueprint("credit_notes", __name__, url_prefix="/api/credit-notes")


@credit_notes_bp.post("/")
@credit_notes_bp.post("")
@require_actor
def issue_credit_note_route():
    """
    Issue a credit note against an accepted sale.

    Request body:
    {
        "sale_id": 12,
        "tipo_nota": "DEVOLUCION_PARCIAL",
        "motivo_sustento": "Cliente devuelve producto fallado",
        "monto_total_cents": 2500,          // or "lines"
        "lines": [{"producto_id": 3, "cantidad": "1.5", "precio_unitario_cents": 1000}],
        "devolver_stock": true,
        "devolver_efectivo": true,
        "cash_register_id": 1               // defaults to the sale's register
    }

    Returns 201 with cash_refund_pending=true when a cash refund was requested
    but the register has no open session.
    """
    data = json_body()
    try:
        sale_id = parse_int(data.get("sale_id"), "sale_id")
        issued = credit_note_service.issue_credit_note(
            g.actor,
            sale_id,
            data.get("tipo_nota"),
            data.get("motivo_sustento"),
            data.get("monto_total_cents"),
            lines=data.get("lines"),
            devolver_stock=data.get("devolver_stock", False),
            devolver_efectivo=data.get("devolver_efectivo", False),
            cash_register_id=parse_int(data.get("cash_register_id"), "cash_register_id", allow_none=True),
        )
        return jsonify(issued.to_dict()), 201
    except CajaError:
        raise
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to issue credit note")
        return jsonify({"error": "INTERNAL_ERROR", "message": "Internal server error"}), 500


@credit_notes_bp.get("/")
@credit_notes_bp.get("")
@require_actor
def list_credit_notes_route():
    """Credit notes of one sale (?sale_id=)."""
    sale_id = parse_int(request.args.get("sale_id"), "sale_id")
    notes = credit_note_service.list_credit_notes(g.actor, sale_id)
    return jsonify({"credit_notes": [n.to_dict() for n in notes]}), 200


@credit_notes_bp.post("/<int:note_id>/sunat-state")
@require_actor
def set_credit_note_sunat_state_route(note_id: int):
    """SUNAT collaborator callback: {"sunat_state": "RECHAZADO"}."""
    data = json_body()
    try:
        note = credit_note_service.set_credit_note_sunat_state(g.actor, note_id, data.get("sunat_state"))
        return jsonify({"credit_note": note.to_dict()}), 200
    except CajaError:
        raise
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to update credit note SUNAT state")
        return jsonify({"error": "INTERNAL_ERROR", "message": "Internal server error"}), 500


@credit_notes_bp.post("/<int:note_id>/cash-reversal")
@require_actor
def reverse_cash_refund_route(note_id: int):
    """Take back the cash of a rejected note into its register's open session."""
    try:
        note = credit_note_service.reverse_pending_cash_refund(g.actor, note_id)
        return jsonify({"credit_note": note.to_dict()}), 200
    except CajaError:
        raise
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to reverse credit note cash refund")
        return jsonify({"error": "INTERNAL_ERROR", "message": "Internal server error"}), 500
