# Overview: Flask API routes for the product catalog; parses input and returns JSON responses.

"""
Product catalog routes.

SECURITY: Reads are public. Writes require X-Account-Address of an admin;
the admin check itself lives in the catalog service.
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..errors import LedgerError
from ..services import catalog_service, order_service
from ..validation import PayloadPolicy, INT, BOOL, STR, coerce_bool, coerce_int, validate_payload
from ..decorators import require_account, ledger_error_response

PRODUCT_POLICY = PayloadPolicy(
    fields={
        "name": STR,
        "description": STR,
        "enable_individual": BOOL,
        "individual_price_wei": INT,
        "individual_stock": INT,
        "enable_set": BOOL,
        "set_price_wei": INT,
        "set_stock": INT,
        "set_boxes": INT,
        "price_wei": INT,
    },
    required=frozenset({"name"}),
    defaults={
        "description": "",
        "enable_individual": False,
        "individual_price_wei": 0,
        "individual_stock": 0,
        "enable_set": False,
        "set_price_wei": 0,
        "set_stock": 0,
        "set_boxes": 0,
        "price_wei": 0,
    },
)

products_bp = Blueprint("products", __name__, url_prefix="/api/products")


@products_bp.get("")
def list_products_route():
    """
    Query params:
    - include_inactive: bool (optional) - include deactivated products
    """
    try:
        include_inactive = coerce_bool("include_inactive", request.args.get("include_inactive", "false"))
        products = catalog_service.list_products(include_inactive=include_inactive)
        return jsonify({"items": [p.to_dict() for p in products], "count": len(products)})
    except LedgerError as e:
        return ledger_error_response(e)


@products_bp.get("/<int:product_id>")
def get_product_route(product_id: int):
    try:
        return jsonify({"product": catalog_service.get_product(product_id).to_dict()})
    except LedgerError as e:
        return ledger_error_response(e)


@products_bp.get("/<int:product_id>/in-stock")
def in_stock_route(product_id: int):
    try:
        return jsonify({"product_id": product_id, "in_stock": catalog_service.is_in_stock(product_id)})
    except LedgerError as e:
        return ledger_error_response(e)


@products_bp.get("/<int:product_id>/price")
def price_route(product_id: int):
    """
    Query params:
    - is_set: bool (default false)
    - qty: int (default 1)
    """
    try:
        is_set = coerce_bool("is_set", request.args.get("is_set", "false"))
        qty = coerce_int("qty", request.args.get("qty", "1"))
        price = order_service.product_price(product_id, is_set, qty)
        return jsonify({"product_id": product_id, "is_set": is_set, "qty": qty, "price_wei": price})
    except LedgerError as e:
        return ledger_error_response(e)


@products_bp.post("")
@require_account
def create_product_route():
    try:
        fields = validate_payload(request.get_json(silent=True), PRODUCT_POLICY)
        product = catalog_service.add_product(g.caller, **fields)
        return jsonify({"product": product.to_dict()}), 201
    except LedgerError as e:
        return ledger_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to add product")
        return jsonify({"error": "Internal server error"}), 500


@products_bp.put("/<int:product_id>")
@require_account
def update_product_route(product_id: int):
    try:
        fields = validate_payload(request.get_json(silent=True), PRODUCT_POLICY)
        product = catalog_service.update_product(g.caller, product_id, **fields)
        return jsonify({"product": product.to_dict()})
    except LedgerError as e:
        return ledger_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to update product")
        return jsonify({"error": "Internal server error"}), 500


@products_bp.post("/<int:product_id>/deactivate")
@require_account
def deactivate_product_route(product_id: int):
    try:
        product = catalog_service.deactivate_product(g.caller, product_id)
        return jsonify({"product": product.to_dict()})
    except LedgerError as e:
        return ledger_error_response(e)


@products_bp.post("/<int:product_id>/reactivate")
@require_account
def reactivate_product_route(product_id: int):
    try:
        product = catalog_service.reactivate_product(g.caller, product_id)
        return jsonify({"product": product.to_dict()})
    except LedgerError as e:
        return ledger_error_response(e)


@products_bp.get("/<int:product_id>/audit")
def audit_trail_route(product_id: int):
    try:
        entries = catalog_service.get_audit_trail(product_id)
        return jsonify({"items": [e.to_dict() for e in entries], "count": len(entries)})
    except LedgerError as e:
        return ledger_error_response(e)


@products_bp.get("/<int:product_id>/audit/<int:index>")
def audit_entry_route(product_id: int, index: int):
    try:
        return jsonify({"entry": catalog_service.get_audit_entry(product_id, index).to_dict()})
    except LedgerError as e:
        return ledger_error_response(e)
