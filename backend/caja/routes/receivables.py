# Overview: Flask API routes for receivables (cobranza) and client credit lines.

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import json_body, require_actor
from ..errors import CajaError
from ..extensions import db
from ..services import credit_sale_service, receivable_service
from ..validation import parse_int


receivables_bp = Blueprint("receivables", __name__, url_prefix="/api/receivables")


@receivables_bp.get("/")
@receivables_bp.get("")
@require_actor
def list_receivables_route():
    """
    Query params:
    - client_id: filter by client
    - status: VIGENTE, POR_VENCER, VENCIDA, PAGADA, CANCELADA
    """
    client_id = parse_int(request.args.get("client_id"), "client_id", allow_none=True)
    rows = receivable_service.list_receivables(g.actor, client_id=client_id, status=request.args.get("status"))
    return jsonify({"receivables": rows}), 200


@receivables_bp.post("/<int:receivable_id>/payments")
@require_actor
def register_payment_route(receivable_id: int):
    """
    Collect a payment at a register.

    Request body:
    {
        "register_id": 1,
        "amount_cents": 3000,
        "payment_method": "YAPE"
    }
    """
    data = json_body()
    try:
        register_id = parse_int(data.get("register_id"), "register_id")
        payment = receivable_service.register_receivable_payment(
            g.actor,
            receivable_id,
            data.get("amount_cents"),
            data.get("payment_method"),
            register_id=register_id,
        )
        receivable = receivable_service.get_receivable(g.actor, receivable_id)
        return jsonify({
            "payment": payment.to_dict(),
            "receivable": receivable.to_dict(display_status=receivable_service.display_status(receivable)),
        }), 201
    except CajaError:
        raise
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to register receivable payment")
        return jsonify({"error": "INTERNAL_ERROR", "message": "Internal server error"}), 500


@receivables_bp.get("/clients/<int:client_id>/credit")
@require_actor
def client_credit_route(client_id: int):
    return jsonify(credit_sale_service.credit_summary(g.actor, client_id)), 200
