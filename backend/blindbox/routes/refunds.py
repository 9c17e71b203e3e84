# Overview: Flask API routes for refunds and cancellations; parses input and returns JSON responses.

"""
Refund routes.

Tickets: buyer opens, admin approves/rejects, admin pays.
Direct path: admin approves an amount on the order, buyer claims it.
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..errors import LedgerError
from ..services import refund_service
from ..validation import PayloadPolicy, INT, STR, validate_payload
from ..decorators import require_account, require_admin_account, ledger_error_response

OPEN_REFUND_POLICY = PayloadPolicy(
    fields={"order_id": INT, "type": STR, "amount_wei": INT, "reason": STR},
    required=frozenset({"order_id", "type", "amount_wei"}),
)
REJECT_POLICY = PayloadPolicy(fields={"reason": STR})
PARTIAL_POLICY = PayloadPolicy(fields={"amount_wei": INT}, required=frozenset({"amount_wei"}))

refunds_bp = Blueprint("refunds", __name__, url_prefix="/api/refunds")


@refunds_bp.post("")
@require_account
def open_refund_route():
    """
    Request body:
    {
        "order_id": 1,
        "type": "PARTIAL",
        "amount_wei": 500,
        "reason": "One figure was damaged"  (optional)
    }
    """
    try:
        data = validate_payload(request.get_json(silent=True), OPEN_REFUND_POLICY)
        ticket = refund_service.open_refund(
            g.caller, data["order_id"], data["type"], data["amount_wei"], reason=data.get("reason"),
        )
        return jsonify({"ticket": ticket.to_dict()}), 201
    except LedgerError as e:
        return ledger_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to open refund")
        return jsonify({"error": "Internal server error"}), 500


@refunds_bp.get("")
@require_account
@require_admin_account
def list_tickets_route():
    tickets = refund_service.list_refund_tickets(
        status=request.args.get("status"),
        order_id=request.args.get("order_id", type=int),
    )
    return jsonify({"items": [t.to_dict() for t in tickets], "count": len(tickets)})


@refunds_bp.get("/<int:ticket_id>")
@require_account
def get_ticket_route(ticket_id: int):
    try:
        ticket = refund_service.get_refund_ticket(ticket_id)
        if not (g.current_account.is_admin or ticket.requester_account_id == g.current_account.id):
            return jsonify({"error": "Refund ticket not found"}), 404
        return jsonify({"ticket": ticket.to_dict()})
    except LedgerError as e:
        return ledger_error_response(e)


@refunds_bp.post("/<int:ticket_id>/approve")
@require_account
def approve_route(ticket_id: int):
    try:
        return jsonify({"ticket": refund_service.approve_refund(g.caller, ticket_id).to_dict()})
    except LedgerError as e:
        return ledger_error_response(e)


@refunds_bp.post("/<int:ticket_id>/reject")
@require_account
def reject_route(ticket_id: int):
    try:
        data = validate_payload(request.get_json(silent=True), REJECT_POLICY)
        ticket = refund_service.reject_refund(g.caller, ticket_id, data.get("reason"))
        return jsonify({"ticket": ticket.to_dict()})
    except LedgerError as e:
        return ledger_error_response(e)


@refunds_bp.post("/<int:ticket_id>/pay")
@require_account
def pay_route(ticket_id: int):
    try:
        return jsonify({"ticket": refund_service.pay_refund(g.caller, ticket_id).to_dict()})
    except LedgerError as e:
        return ledger_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to pay refund")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# DIRECT CLAIM PATH AND CANCELLATION
# =============================================================================

@refunds_bp.post("/orders/<int:order_id>/approve-partial")
@require_account
def approve_partial_route(order_id: int):
    try:
        data = validate_payload(request.get_json(silent=True), PARTIAL_POLICY)
        payment = refund_service.approve_partial_refund(g.caller, order_id, data["amount_wei"])
        return jsonify({"payment": payment.to_dict()})
    except LedgerError as e:
        return ledger_error_response(e)


@refunds_bp.post("/orders/<int:order_id>/approve-full")
@require_account
def approve_full_route(order_id: int):
    try:
        return jsonify({"payment": refund_service.approve_full_refund(g.caller, order_id).to_dict()})
    except LedgerError as e:
        return ledger_error_response(e)


@refunds_bp.post("/orders/<int:order_id>/claim")
@require_account
def claim_route(order_id: int):
    try:
        disbursement = refund_service.claim_refund(g.caller, order_id)
        return jsonify({"disbursement": disbursement.to_dict()})
    except LedgerError as e:
        return ledger_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to claim refund")
        return jsonify({"error": "Internal server error"}), 500


@refunds_bp.post("/orders/<int:order_id>/cancel")
@require_account
def cancel_route(order_id: int):
    try:
        data = validate_payload(request.get_json(silent=True), REJECT_POLICY)
        order = refund_service.cancel_order(g.caller, order_id, reason=data.get("reason"))
        return jsonify({"order": order.to_dict()})
    except LedgerError as e:
        return ledger_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to cancel order")
        return jsonify({"error": "Internal server error"}), 500
