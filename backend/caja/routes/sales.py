# Overview: Flask API routes for sales intake, SUNAT state ingestion and the credit-sale / credit-note guards.

from flask import Blueprint, current_app, g, jsonify

from ..decorators import json_body, require_actor
from ..errors import CajaError
from ..extensions import db
from ..services import credit_note_service, credit_sale_service, sales_service
from ..validation import parse_int


sales_bp = Blueprint("sales", __name__, url_prefix="/api/sales")


def _internal_error(message: str):
    db.session.rollback()
    current_app.logger.exception(message)
    return jsonify({"error": "INTERNAL_ERROR", "message": "Internal server error"}), 500


@sales_bp.post("/")
@sales_bp.post("")
@require_actor
def create_sale_route():
    """
    Post a sale on a register's open session.

    Request body:
    {
        "register_id": 1,
        "total_cents": 15000,
        "condicion_pago": "CREDITO",
        "payment_method": "EFECTIVO",
        "client_id": 7,                 // CREDITO only
        "initial_payment_cents": 5000   // CREDITO only
    }
    """
    data = json_body()
    try:
        register_id = parse_int(data.get("register_id"), "register_id")
        sale = sales_service.create_sale(
            g.actor,
            register_id,
            data.get("total_cents"),
            data.get("condicion_pago") or "CONTADO",
            data.get("payment_method"),
            client_id=parse_int(data.get("client_id"), "client_id", allow_none=True),
            initial_payment_cents=data.get("initial_payment_cents", 0),
        )
        payload = {"sale": sale.to_dict()}
        if sale.receivable is not None:
            payload["receivable"] = sale.receivable.to_dict()
        return jsonify(payload), 201
    except CajaError:
        raise
    except Exception:
        return _internal_error("Failed to create sale")


@sales_bp.post("/credit-check")
@require_actor
def validate_credit_sale_route():
    """
    Advisory credit-line check before confirming a credit sale.

    Request body:
    {
        "client_id": 7,
        "total_cents": 15000,
        "initial_payment_cents": 5000
    }
    """
    data = json_body()
    client_id = parse_int(data.get("client_id"), "client_id")
    decision = credit_sale_service.validate_credit_sale(
        g.actor,
        client_id,
        data.get("total_cents"),
        data.get("initial_payment_cents", 0),
    )
    payload = decision.to_dict()
    payload["credit"] = credit_sale_service.credit_summary(g.actor, client_id)
    return jsonify(payload), 200


@sales_bp.get("/<int:sale_id>")
@require_actor
def get_sale_route(sale_id: int):
    sale = sales_service.get_sale(g.actor, sale_id)
    return jsonify({"sale": sale.to_dict()}), 200


@sales_bp.post("/<int:sale_id>/sunat-state")
@require_actor
def set_sale_sunat_state_route(sale_id: int):
    """SUNAT collaborator callback: {"sunat_state": "ACEPTADO"}."""
    data = json_body()
    try:
        sale = sales_service.set_sale_sunat_state(g.actor, sale_id, data.get("sunat_state"))
        return jsonify({"sale": sale.to_dict()}), 200
    except CajaError:
        raise
    except Exception:
        return _internal_error("Failed to update sale SUNAT state")


@sales_bp.get("/<int:sale_id>/credit-note-balance")
@require_actor
def credit_note_balance_route(sale_id: int):
    return jsonify(credit_note_service.credit_note_balance(g.actor, sale_id)), 200


@sales_bp.post("/<int:sale_id>/credit-note-check")
@require_actor
def can_issue_credit_note_route(sale_id: int):
    """Advisory refund check: {"monto_total_cents": 5000}."""
    data = json_body()
    decision = credit_note_service.can_issue(g.actor, sale_id, data.get("monto_total_cents"))
    return jsonify(decision.to_dict()), 200


@sales_bp.get("/<int:sale_id>/dispatch-guide-check")
@require_actor
def can_issue_dispatch_guide_route(sale_id: int):
    decision = credit_note_service.can_issue_dispatch_guide(g.actor, sale_id)
    return jsonify(decision.to_dict()), 200
