# Overview: Flask API routes for the caller's cart; parses input and returns JSON responses.

from flask import Blueprint, request, jsonify, g, current_app

from ..errors import LedgerError
from ..services import cart_service
from ..validation import PayloadPolicy, INT, BOOL, STR, validate_payload
from ..decorators import require_account, ledger_error_response

CART_ITEM_POLICY = PayloadPolicy(
    fields={"product_id": INT, "quantity": INT, "is_set": BOOL},
    required=frozenset({"product_id"}),
    defaults={"quantity": 1, "is_set": False},
)
QUANTITY_POLICY = PayloadPolicy(fields={"quantity": INT}, required=frozenset({"quantity"}))
CHECKOUT_POLICY = PayloadPolicy(
    fields={"payment_wei": INT, "delivery_id": STR},
    required=frozenset({"payment_wei"}),
)

cart_bp = Blueprint("cart", __name__, url_prefix="/api/cart")


@cart_bp.get("")
@require_account
def get_cart_route():
    """Cart lines with subtotal, shipping fee, and total."""
    try:
        return jsonify(cart_service.get_cart_summary(g.caller))
    except LedgerError as e:
        return ledger_error_response(e)


@cart_bp.post("/items")
@require_account
def add_item_route():
    try:
        data = validate_payload(request.get_json(silent=True), CART_ITEM_POLICY)
        item = cart_service.add_to_cart(g.caller, data["product_id"], data["quantity"], data["is_set"])
        return jsonify({"item": item.to_dict(), "cart": cart_service.get_cart_summary(g.caller)}), 201
    except LedgerError as e:
        return ledger_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to add cart item")
        return jsonify({"error": "Internal server error"}), 500


@cart_bp.patch("/items/<int:index>")
@require_account
def update_item_route(index: int):
    """Set a line's quantity; 0 removes the line."""
    try:
        data = validate_payload(request.get_json(silent=True), QUANTITY_POLICY)
        item = cart_service.update_cart_item(g.caller, index, data["quantity"])
        return jsonify({
            "item": item.to_dict() if item else None,
            "cart": cart_service.get_cart_summary(g.caller),
        })
    except LedgerError as e:
        return ledger_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to update cart item")
        return jsonify({"error": "Internal server error"}), 500


@cart_bp.delete("/items/<int:index>")
@require_account
def remove_item_route(index: int):
    try:
        cart_service.remove_from_cart(g.caller, index)
        return jsonify({"cart": cart_service.get_cart_summary(g.caller)})
    except LedgerError as e:
        return ledger_error_response(e)


@cart_bp.delete("")
@require_account
def clear_cart_route():
    try:
        removed = cart_service.clear_cart(g.caller)
        return jsonify({"removed": removed, "cart": cart_service.get_cart_summary(g.caller)})
    except LedgerError as e:
        return ledger_error_response(e)


@cart_bp.post("/checkout")
@require_account
def checkout_route():
    """
    Request body:
    {
        "payment_wei": 2000,
        "delivery_id": "DHL-123"  (optional)
    }
    """
    try:
        data = validate_payload(request.get_json(silent=True), CHECKOUT_POLICY)
        orders = cart_service.checkout_cart(g.caller, data["payment_wei"], data.get("delivery_id"))
        return jsonify({"orders": [o.to_dict() for o in orders], "count": len(orders)}), 201
    except LedgerError as e:
        return ledger_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to check out cart")
        return jsonify({"error": "Internal server error"}), 500
