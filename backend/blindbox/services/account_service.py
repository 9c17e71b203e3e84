# Overview: Service-layer operations for the role registry; accounts, roles, and the ledger owner.

"""
Role Registry Service

WHY: Every privileged ledger operation is gated on the caller's role.
Admins manage the catalog and drive orders through delivery; delivery men
submit proof; the owner (set once at ledger init) is the only identity
allowed to appoint admins.

INVARIANT: after any role assignment an account is never both admin and
delivery man. Flags are derived from the role in one place
(`_apply_role`) so the two cannot drift.
"""

from __future__ import annotations

import logging

from ..extensions import db
from ..errors import (
    AccountNotFoundError,
    InvalidStateError,
    NotFoundError,
    UnauthorizedError,
    ValidationError,
)
from ..models import Account, Marketplace, Role
from .concurrency import ledger_transaction, run_with_retry

logger = logging.getLogger(__name__)

# Roles an account may pick for itself at registration
SELF_SERVICE_ROLES = {Role.NONE, Role.BUYER, Role.SELLER}


# =============================================================================
# ADDRESS HELPERS
# =============================================================================

def normalize_address(address: str | None) -> str:
    """Trim and lower-case a wallet address; empty input is rejected."""
    if address is None or not str(address).strip():
        raise ValidationError("Account address is required")
    return str(address).strip().lower()


def is_zero_address(address: str) -> bool:
    """True for the all-zero address and for a bare "0x" with no digits."""
    value = address[2:] if address.startswith("0x") else address
    return set(value) <= {"0"}


def parse_role(value) -> Role:
    if isinstance(value, Role):
        return value
    try:
        return Role(str(value).strip().upper())
    except ValueError:
        raise ValidationError(f"Invalid role: {value}. Must be one of {[r.value for r in Role]}") from None


# =============================================================================
# LOOKUPS
# =============================================================================

def find_account(address: str) -> Account | None:
    return db.session.query(Account).filter_by(address=normalize_address(address)).first()


def get_account(address: str) -> Account:
    account = find_account(address)
    if not account:
        raise AccountNotFoundError(f"Account {address} not found")
    return account


def is_address_registered(address: str) -> bool:
    return find_account(address) is not None


def list_accounts(role: str | None = None) -> list[Account]:
    query = db.session.query(Account)
    if role:
        query = query.filter_by(role=parse_role(role).value)
    return query.order_by(Account.id.asc()).all()


def is_admin(address: str) -> bool:
    account = find_account(address)
    return bool(account and account.is_admin)


def is_delivery(address: str) -> bool:
    account = find_account(address)
    return bool(account and account.is_delivery_man)


# =============================================================================
# CALLER GATES
# =============================================================================

def require_active_account(caller: str) -> Account:
    """Caller must be a registered, active account."""
    account = find_account(caller)
    if not account:
        raise UnauthorizedError(f"Unknown caller {caller}")
    if not account.is_active:
        raise UnauthorizedError(f"Account {account.address} is deactivated")
    return account


def require_admin(caller: str) -> Account:
    account = require_active_account(caller)
    if not account.is_admin:
        raise UnauthorizedError("Admin role required")
    return account


def require_delivery_or_admin(caller: str) -> Account:
    account = require_active_account(caller)
    if not (account.is_admin or account.is_delivery_man):
        raise UnauthorizedError("Delivery or admin role required")
    return account


def require_owner(caller: str) -> Account:
    owner = get_owner()
    account = find_account(caller)
    if account is None or account.id != owner.id:
        raise UnauthorizedError("Only the ledger owner may do this")
    return owner


# =============================================================================
# LEDGER OWNER
# =============================================================================

def get_marketplace() -> Marketplace | None:
    return db.session.query(Marketplace).first()


def get_owner() -> Account:
    marketplace = get_marketplace()
    if not marketplace:
        raise NotFoundError("Ledger has not been initialized")
    return marketplace.owner


def init_ledger(owner_address: str, name: str = "Blind Box Marketplace") -> Marketplace:
    """
    Create the singleton ledger header and its owner (an admin).

    Raises:
        InvalidStateError: If the ledger already has an owner
    """
    address = normalize_address(owner_address)
    if is_zero_address(address):
        raise ValidationError("Owner cannot be the zero address")

    def _op():
        with ledger_transaction():
            if get_marketplace():
                raise InvalidStateError("Ledger already initialized")
            owner = _get_or_create(address)
            _apply_role(owner, Role.ADMIN)
            marketplace = Marketplace(name=name, owner=owner)
            db.session.add(marketplace)
            db.session.flush()
        logger.info("Ledger %r initialized, owner %s", name, address)
        return marketplace

    return run_with_retry(_op)


# =============================================================================
# ROLE ASSIGNMENT
# =============================================================================

def _get_or_create(address: str) -> Account:
    account = db.session.query(Account).filter_by(address=address).first()
    if account:
        return account
    account = Account(address=address, role=Role.NONE.value, is_admin=False, is_delivery_man=False)
    db.session.add(account)
    db.session.flush()
    return account


def _apply_role(account: Account, role: Role) -> None:
    account.role = role.value
    account.is_admin = role is Role.ADMIN
    account.is_delivery_man = role is Role.DELIVERY


def _assign(caller: str, address: str, role: Role, gate) -> Account:
    target = normalize_address(address)
    if is_zero_address(target):
        raise ValidationError("Cannot assign a role to the zero address")

    def _op():
        with ledger_transaction():
            actor = gate(caller)
            account = _get_or_create(target)
            previous = account.role
            _apply_role(account, role)
        logger.info("Role of %s changed %s -> %s by %s", target, previous, role.value, actor.address)
        return account

    return run_with_retry(_op)


def add_admin(caller: str, address: str) -> Account:
    """Owner-only. Idempotent."""
    return _assign(caller, address, Role.ADMIN, require_owner)


def add_delivery_man(caller: str, address: str) -> Account:
    return _assign(caller, address, Role.DELIVERY, require_admin)


def assign_role(caller: str, address: str, role) -> Account:
    """
    Admin-only role change; flags follow the target role.

    Appointing another admin this way is still owner-only.
    """
    role = parse_role(role)
    gate = require_owner if role is Role.ADMIN else require_admin
    return _assign(caller, address, role, gate)


change_role = assign_role


# =============================================================================
# REGISTRATION AND PROFILE
# =============================================================================

def register_account(address: str, name: str | None = None, role=Role.BUYER) -> Account:
    """
    Self-registration from the web front end.

    Raises:
        InvalidStateError: If the address is already registered
        UnauthorizedError: If a privileged role is requested
    """
    target = normalize_address(address)
    role = parse_role(role)
    if role not in SELF_SERVICE_ROLES:
        raise UnauthorizedError(f"Role {role.value} cannot be self-assigned")
    if is_zero_address(target):
        raise ValidationError("Cannot register the zero address")

    def _op():
        with ledger_transaction():
            if db.session.query(Account).filter_by(address=target).first():
                raise InvalidStateError("This wallet is already registered.")
            account = Account(address=target, name=(name or "User").strip())
            _apply_role(account, role)
            db.session.add(account)
            db.session.flush()
        logger.info("Registered account %s as %s", target, role.value)
        return account

    return run_with_retry(_op)


def update_profile(
    caller: str,
    name: str | None = None,
    contact: str | None = None,
    postal_address: str | None = None,
) -> Account:
    """Blank fields keep their current value."""
    def _op():
        with ledger_transaction():
            account = require_active_account(caller)
            _apply_profile(account, name, contact, postal_address)
        return account

    return run_with_retry(_op)


def update_account(
    caller: str,
    address: str,
    name: str | None = None,
    contact: str | None = None,
    postal_address: str | None = None,
) -> Account:
    """
    Admin-only profile edit of another account.

    Same blank-keeps-current rule as `update_profile`; roles and the active
    flag are not touched here.
    """
    def _op():
        with ledger_transaction():
            actor = require_admin(caller)
            account = get_account(address)
            _apply_profile(account, name, contact, postal_address)
        logger.info("Profile of %s edited by %s", account.address, actor.address)
        return account

    return run_with_retry(_op)


def _apply_profile(account: Account, name, contact, postal_address) -> None:
    account.name = name or account.name
    account.contact = contact or account.contact
    account.postal_address = postal_address or account.postal_address


def _set_active(caller: str, address: str, active: bool) -> Account:
    def _op():
        with ledger_transaction():
            actor = require_admin(caller)
            account = get_account(address)
            marketplace = get_marketplace()
            if not active and marketplace and account.id == marketplace.owner_account_id:
                raise InvalidStateError("The ledger owner cannot be deactivated")
            account.is_active = active
        logger.info("Account %s %s by %s", account.address, "reactivated" if active else "deactivated", actor.address)
        return account

    return run_with_retry(_op)


def deactivate_account(caller: str, address: str) -> Account:
    return _set_active(caller, address, False)


def reactivate_account(caller: str, address: str) -> Account:
    return _set_active(caller, address, True)
