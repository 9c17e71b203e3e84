# Overview: Flask API routes for the delivery state machine; parses input and returns JSON responses.

from flask import Blueprint, request, jsonify, g, current_app

from ..errors import LedgerError
from ..services import delivery_service, order_service
from ..validation import PayloadPolicy, STR, validate_payload
from ..decorators import require_account, ledger_error_response

OUT_FOR_DELIVERY_POLICY = PayloadPolicy(fields={"delivery_id": STR, "note": STR})
PROOF_POLICY = PayloadPolicy(fields={"proof_image": STR, "note": STR}, required=frozenset({"proof_image"}))
NOTE_POLICY = PayloadPolicy(fields={"note": STR})
ASSIGN_POLICY = PayloadPolicy(fields={"address": STR}, required=frozenset({"address"}))
STATUS_POLICY = PayloadPolicy(
    fields={"status": STR, "note": STR, "proof_image": STR, "delivery_id": STR},
    required=frozenset({"status"}),
)

delivery_bp = Blueprint("delivery", __name__, url_prefix="/api/delivery")


def _order_response(order):
    return jsonify({"order": order.to_dict()})


@delivery_bp.post("/<int:order_id>/out-for-delivery")
@require_account
def out_for_delivery_route(order_id: int):
    try:
        data = validate_payload(request.get_json(silent=True), OUT_FOR_DELIVERY_POLICY)
        order = delivery_service.mark_out_for_delivery(
            g.caller, order_id, delivery_id=data.get("delivery_id"), note=data.get("note"),
        )
        return _order_response(order)
    except LedgerError as e:
        return ledger_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to mark order out for delivery")
        return jsonify({"error": "Internal server error"}), 500


@delivery_bp.post("/<int:order_id>/proof")
@require_account
def submit_proof_route(order_id: int):
    try:
        data = validate_payload(request.get_json(silent=True), PROOF_POLICY)
        order = delivery_service.submit_proof(g.caller, order_id, data["proof_image"], note=data.get("note"))
        return _order_response(order)
    except LedgerError as e:
        return ledger_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to submit proof of delivery")
        return jsonify({"error": "Internal server error"}), 500


@delivery_bp.post("/<int:order_id>/confirm")
@require_account
def confirm_route(order_id: int):
    try:
        data = validate_payload(request.get_json(silent=True), NOTE_POLICY)
        order = delivery_service.confirm_delivery(g.caller, order_id, note=data.get("note"))
        return _order_response(order)
    except LedgerError as e:
        return ledger_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to confirm delivery")
        return jsonify({"error": "Internal server error"}), 500


@delivery_bp.post("/<int:order_id>/assign")
@require_account
def assign_route(order_id: int):
    try:
        data = validate_payload(request.get_json(silent=True), ASSIGN_POLICY)
        order = delivery_service.assign_delivery_man_to_order(g.caller, order_id, data["address"])
        return _order_response(order)
    except LedgerError as e:
        return ledger_error_response(e)


@delivery_bp.post("/<int:order_id>/status")
@require_account
def add_status_route(order_id: int):
    try:
        data = validate_payload(request.get_json(silent=True), STATUS_POLICY)
        entry = delivery_service.delivery_update_status(
            g.caller,
            order_id,
            data["status"],
            note=data.get("note"),
            proof_image=data.get("proof_image"),
            delivery_id=data.get("delivery_id"),
        )
        return jsonify({"entry": entry.to_dict(), "order": order_service.get_order(order_id).to_dict()}), 201
    except LedgerError as e:
        return ledger_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to add delivery status")
        return jsonify({"error": "Internal server error"}), 500


@delivery_bp.get("/<int:order_id>/history")
@require_account
def history_route(order_id: int):
    try:
        order = order_service.get_order(order_id)
        account = g.current_account
        if not (account.is_admin or account.is_delivery_man or order.buyer_account_id == account.id):
            return jsonify({"error": "Order not found"}), 404
        entries = delivery_service.get_delivery_history(order_id)
        return jsonify({"items": [e.to_dict() for e in entries], "count": len(entries)})
    except LedgerError as e:
        return ledger_error_response(e)
