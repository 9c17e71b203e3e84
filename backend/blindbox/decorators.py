# Overview: Request decorators for API routes; establishes the calling account.

from functools import wraps
from flask import request, jsonify, g

from .errors import LedgerError
from .services import account_service

ACCOUNT_HEADER = "X-Account-Address"


def ledger_error_response(e: LedgerError):
    """Map a ledger error onto its JSON body and HTTP status."""
    return jsonify(e.to_dict()), e.http_status


def require_account(f):
    """
    Require a registered, active calling account.

    Sets the following Flask g attributes:
    - g.caller: the normalized address of the caller
    - g.current_account: the Account row

    Returns 401 if the header is missing or the address is unknown,
    403 if the account is deactivated.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        raw = request.headers.get(ACCOUNT_HEADER, "")
        if not raw.strip():
            return jsonify({"error": "Authentication required"}), 401

        account = account_service.find_account(raw)
        if not account:
            return jsonify({"error": "Unknown account"}), 401
        if not account.is_active:
            return jsonify({"error": "Account deactivated"}), 403

        g.caller = account.address
        g.current_account = account

        return f(*args, **kwargs)

    return decorated_function


def require_admin_account(f):
    """Require the caller (set by @require_account) to hold the admin role."""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        if not hasattr(g, "current_account"):
            return jsonify({"error": "Authentication required"}), 401
        if not g.current_account.is_admin:
            return jsonify({"error": "Admin role required"}), 403
        return f(*args, **kwargs)
    return decorated_function
