# Overview: Flask API routes for accounts and roles; parses input and returns JSON responses.

"""
Account & role routes.

SECURITY:
- Registration and the address check are public
- Everything else requires X-Account-Address of an active account
- Role changes are gated in the service layer (owner / admin)
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..errors import LedgerError
from ..services import account_service
from ..validation import PayloadPolicy, STR, validate_payload
from ..decorators import require_account, require_admin_account, ledger_error_response

REGISTER_POLICY = PayloadPolicy(
    fields={"address": STR, "name": STR, "role": STR},
    required=frozenset({"address"}),
    defaults={"role": "BUYER"},
)
PROFILE_POLICY = PayloadPolicy(fields={"name": STR, "contact": STR, "postal_address": STR})
ADDRESS_POLICY = PayloadPolicy(fields={"address": STR}, required=frozenset({"address"}))
ROLE_POLICY = PayloadPolicy(fields={"role": STR}, required=frozenset({"role"}))

accounts_bp = Blueprint("accounts", __name__, url_prefix="/api/accounts")


@accounts_bp.post("/register")
def register_route():
    try:
        data = validate_payload(request.get_json(silent=True), REGISTER_POLICY)
        account = account_service.register_account(data["address"], data.get("name"), data["role"])
        return jsonify({"account": account.to_dict()}), 201
    except LedgerError as e:
        return ledger_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to register account")
        return jsonify({"error": "Internal server error"}), 500


@accounts_bp.get("/check")
def check_address_route():
    """Whether a wallet address is already registered."""
    address = request.args.get("address", "")
    if not address.strip():
        return jsonify({"in_use": False})
    return jsonify({"in_use": account_service.is_address_registered(address)})


@accounts_bp.get("/me")
@require_account
def me_route():
    return jsonify({"account": g.current_account.to_dict()})


@accounts_bp.patch("/me")
@require_account
def update_profile_route():
    try:
        data = validate_payload(request.get_json(silent=True), PROFILE_POLICY)
        account = account_service.update_profile(
            g.caller,
            name=data.get("name"),
            contact=data.get("contact"),
            postal_address=data.get("postal_address"),
        )
        return jsonify({"account": account.to_dict()})
    except LedgerError as e:
        return ledger_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to update profile")
        return jsonify({"error": "Internal server error"}), 500


@accounts_bp.get("")
@require_account
@require_admin_account
def list_accounts_route():
    try:
        accounts = account_service.list_accounts(role=request.args.get("role"))
        return jsonify({"items": [a.to_dict() for a in accounts], "count": len(accounts)})
    except LedgerError as e:
        return ledger_error_response(e)


@accounts_bp.get("/<address>/roles")
def roles_route(address: str):
    return jsonify({
        "address": address.strip().lower(),
        "is_admin": account_service.is_admin(address),
        "is_delivery": account_service.is_delivery(address),
    })


@accounts_bp.post("/admins")
@require_account
def add_admin_route():
    """Owner only."""
    try:
        data = validate_payload(request.get_json(silent=True), ADDRESS_POLICY)
        account = account_service.add_admin(g.caller, data["address"])
        return jsonify({"account": account.to_dict()})
    except LedgerError as e:
        return ledger_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to add admin")
        return jsonify({"error": "Internal server error"}), 500


@accounts_bp.post("/delivery-men")
@require_account
def add_delivery_man_route():
    try:
        data = validate_payload(request.get_json(silent=True), ADDRESS_POLICY)
        account = account_service.add_delivery_man(g.caller, data["address"])
        return jsonify({"account": account.to_dict()})
    except LedgerError as e:
        return ledger_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to add delivery man")
        return jsonify({"error": "Internal server error"}), 500


@accounts_bp.put("/<address>/role")
@require_account
def assign_role_route(address: str):
    try:
        data = validate_payload(request.get_json(silent=True), ROLE_POLICY)
        account = account_service.assign_role(g.caller, address, data["role"])
        return jsonify({"account": account.to_dict()})
    except LedgerError as e:
        return ledger_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to assign role")
        return jsonify({"error": "Internal server error"}), 500


@accounts_bp.patch("/<address>")
@require_account
def update_account_route(address: str):
    """Admin edit of another account's profile."""
    try:
        data = validate_payload(request.get_json(silent=True), PROFILE_POLICY)
        account = account_service.update_account(
            g.caller,
            address,
            name=data.get("name"),
            contact=data.get("contact"),
            postal_address=data.get("postal_address"),
        )
        return jsonify({"account": account.to_dict()})
    except LedgerError as e:
        return ledger_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to update account")
        return jsonify({"error": "Internal server error"}), 500


@accounts_bp.post("/<address>/deactivate")
@require_account
def deactivate_route(address: str):
    try:
        account = account_service.deactivate_account(g.caller, address)
        return jsonify({"account": account.to_dict()})
    except LedgerError as e:
        return ledger_error_response(e)


@accounts_bp.post("/<address>/reactivate")
@require_account
def reactivate_route(address: str):
    try:
        account = account_service.reactivate_account(g.caller, address)
        return jsonify({"account": account.to_dict()})
    except LedgerError as e:
        return ledger_error_response(e)
