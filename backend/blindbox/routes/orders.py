# Overview: Flask API routes for purchases and order lookups; parses input and returns JSON responses.

"""
Order routes.

Buyers see their own orders; admins and delivery men see every order.
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..errors import LedgerError
from ..services import order_service
from ..validation import PayloadPolicy, INT, BOOL, STR, validate_payload
from ..decorators import require_account, ledger_error_response

BUY_POLICY = PayloadPolicy(
    fields={"product_id": INT, "is_set": BOOL, "qty": INT, "delivery_id": STR, "payment_wei": INT},
    required=frozenset({"product_id", "qty", "payment_wei"}),
    defaults={"is_set": False},
)
DIRECT_PAYMENT_POLICY = PayloadPolicy(
    fields={"order_ref": STR, "product_id": INT, "payment_wei": INT, "delivery_id": STR},
    required=frozenset({"order_ref", "product_id", "payment_wei"}),
)

orders_bp = Blueprint("orders", __name__, url_prefix="/api/orders")


def _can_view(order) -> bool:
    account = g.current_account
    return account.is_admin or account.is_delivery_man or order.buyer_account_id == account.id


@orders_bp.post("")
@require_account
def buy_route():
    """
    Request body:
    {
        "product_id": 1,
        "is_set": false,
        "qty": 2,
        "payment_wei": 2000,
        "delivery_id": "DHL-123"  (optional)
    }
    """
    try:
        data = validate_payload(request.get_json(silent=True), BUY_POLICY)
        order = order_service.buy(
            g.caller,
            data["product_id"],
            data["is_set"],
            data["qty"],
            data.get("delivery_id"),
            data["payment_wei"],
        )
        return jsonify({"order": order.to_dict()}), 201
    except LedgerError as e:
        return ledger_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to buy")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.post("/direct")
@require_account
def direct_payment_route():
    """Legacy one-unit purchase keyed by a caller-supplied order reference."""
    try:
        data = validate_payload(request.get_json(silent=True), DIRECT_PAYMENT_POLICY)
        order = order_service.pay_with_metamask(
            g.caller,
            data["order_ref"],
            data["product_id"],
            data["payment_wei"],
            delivery_id=data.get("delivery_id"),
        )
        return jsonify({"order": order.to_dict()}), 201
    except LedgerError as e:
        return ledger_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to take direct payment")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.get("")
@require_account
def list_orders_route():
    """
    Query params:
    - status: str (optional)
    - buyer: str (optional, admins and delivery men only)
    """
    account = g.current_account
    buyer = request.args.get("buyer")
    if not (account.is_admin or account.is_delivery_man):
        buyer = account.address
    orders = order_service.list_orders(buyer=buyer, status=request.args.get("status"))
    return jsonify({"items": [o.to_dict() for o in orders], "count": len(orders)})


@orders_bp.get("/<int:order_id>")
@require_account
def order_detail_route(order_id: int):
    try:
        order = order_service.get_order(order_id)
        if not _can_view(order):
            return jsonify({"error": "Order not found"}), 404
        return jsonify(order_service.get_order_detail(order_id))
    except LedgerError as e:
        return ledger_error_response(e)
