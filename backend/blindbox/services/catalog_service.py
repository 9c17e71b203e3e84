# Overview: Service-layer operations for the product catalog; encapsulates validation, audit, and database work.

"""
Product Catalog Service

WHY: Admins list blind boxes in two independent sale modes, individual box
and boxed set, each with its own price and stock. Everything downstream
(cart, orders, refunds) reads prices and stock from here.

DESIGN PRINCIPLES:
- At least one mode enabled; an enabled mode has a positive price
- A disabled mode carries exactly zero price and zero stock
- Products are soft-deleted (status flip), never removed
- Every mutation appends an immutable audit entry with a hash of the
  resulting product data
"""

from __future__ import annotations

import hashlib
import json
import logging

from ..extensions import db
from ..errors import InvalidConfigError, ProductNotFoundError, NotFoundError
from ..models import Product, ProductAuditEntry
from ..models.catalog import PRODUCT_STATUS_ACTIVE, PRODUCT_STATUS_INACTIVE
from ..time_utils import utcnow
from .account_service import require_admin
from .concurrency import ledger_transaction, lock_for_update, run_with_retry

logger = logging.getLogger(__name__)

AUDIT_ACTION_ADD = "ADD"
AUDIT_ACTION_UPDATE = "UPDATE"
AUDIT_ACTION_DEACTIVATE = "DEACTIVATE"
AUDIT_ACTION_REACTIVATE = "REACTIVATE"
AUDIT_ACTION_STOCK_DEBIT = "STOCK_DEBIT"
AUDIT_ACTION_STOCK_RESTORE = "STOCK_RESTORE"

PRODUCT_CONFIG_FIELDS = (
    "name",
    "description",
    "enable_individual",
    "individual_price_wei",
    "individual_stock",
    "enable_set",
    "set_price_wei",
    "set_stock",
    "set_boxes",
    "price_wei",
)


# =============================================================================
# VALIDATION
# =============================================================================

def _require_amount(field: str, value) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidConfigError(f"{field} must be an integer", details={"field": field})
    if value < 0:
        raise InvalidConfigError(f"{field} cannot be negative", details={"field": field})
    return value


def validate_product_config(
    *,
    name: str,
    description: str | None = None,
    enable_individual: bool = False,
    individual_price_wei: int = 0,
    individual_stock: int = 0,
    enable_set: bool = False,
    set_price_wei: int = 0,
    set_stock: int = 0,
    set_boxes: int = 0,
    price_wei: int = 0,
) -> dict:
    """
    Validate a full product configuration and return it as a normalized dict.

    Raises:
        InvalidConfigError: On any violated catalog rule
    """
    if not name or not str(name).strip():
        raise InvalidConfigError("Product name is required")

    config = {
        "name": str(name).strip(),
        "description": description or "",
        "enable_individual": bool(enable_individual),
        "enable_set": bool(enable_set),
    }
    for field, value in (
        ("individual_price_wei", individual_price_wei),
        ("individual_stock", individual_stock),
        ("set_price_wei", set_price_wei),
        ("set_stock", set_stock),
        ("set_boxes", set_boxes),
        ("price_wei", price_wei),
    ):
        config[field] = _require_amount(field, value)

    if not config["enable_individual"] and not config["enable_set"]:
        raise InvalidConfigError("Enable individual, set, or both")

    if config["enable_individual"]:
        if not (config["individual_price_wei"] or config["price_wei"]):
            raise InvalidConfigError("Individual price must be greater than zero")
    elif config["individual_price_wei"] or config["individual_stock"]:
        raise InvalidConfigError("Individual mode disabled: price and stock must be zero")

    # The legacy flat price stands in for a single box only, never a set
    if config["enable_set"]:
        if not config["set_price_wei"]:
            raise InvalidConfigError("Set price must be greater than zero")
    elif config["set_price_wei"] or config["set_stock"]:
        raise InvalidConfigError("Set mode disabled: price and stock must be zero")

    return config


def product_data_hash(product: Product) -> str:
    payload = {field: getattr(product, field) for field in PRODUCT_CONFIG_FIELDS}
    payload["id"] = product.id
    payload["status"] = product.status
    encoded = json.dumps(payload, sort_keys=True, separators=(",", ":")).encode("utf-8")
    return hashlib.sha256(encoded).hexdigest()


def refresh_stock_flag(product: Product) -> None:
    """Recompute the cached aggregate in-stock flag from the per-mode counters."""
    product.in_stock = compute_in_stock(product)


def compute_in_stock(product: Product) -> bool:
    return bool(
        (product.enable_individual and product.individual_stock > 0)
        or (product.enable_set and product.set_stock > 0)
    )


def append_audit_entry(product: Product, actor_account_id: int, action: str) -> ProductAuditEntry:
    """Append-only. Called inside the same transaction as the mutation it records."""
    count = db.session.query(ProductAuditEntry).filter_by(product_id=product.id).count()
    entry = ProductAuditEntry(
        product_id=product.id,
        entry_index=count,
        actor_account_id=actor_account_id,
        action=action,
        data_hash=product_data_hash(product),
        occurred_at=utcnow(),
    )
    db.session.add(entry)
    db.session.flush()
    return entry


# =============================================================================
# LOOKUPS
# =============================================================================

def get_product(product_id: int) -> Product:
    product = db.session.get(Product, product_id) if product_id else None
    if not product:
        raise ProductNotFoundError(f"Product {product_id} not found")
    return product


def lock_product(product_id: int) -> Product:
    product = None
    if product_id:
        product = lock_for_update(db.session.query(Product).filter_by(id=product_id)).first()
    if not product:
        raise ProductNotFoundError(f"Product {product_id} not found")
    return product


def list_products(include_inactive: bool = False) -> list[Product]:
    query = db.session.query(Product)
    if not include_inactive:
        query = query.filter_by(status=PRODUCT_STATUS_ACTIVE)
    return query.order_by(Product.id.asc()).all()


def is_in_stock(product_id: int) -> bool:
    """Any enabled mode has stock, computed from the authoritative counters."""
    return compute_in_stock(get_product(product_id))


# =============================================================================
# MUTATIONS
# =============================================================================

def add_product(caller: str, **fields) -> Product:
    """
    Admin-only. Creates an ACTIVE product with the next sequential id.

    Accepts the keyword fields of `validate_product_config`.
    """
    def _op():
        with ledger_transaction():
            actor = require_admin(caller)
            config = validate_product_config(**fields)
            product = Product(status=PRODUCT_STATUS_ACTIVE, **config)
            refresh_stock_flag(product)
            db.session.add(product)
            db.session.flush()
            append_audit_entry(product, actor.id, AUDIT_ACTION_ADD)
        logger.info("Product %s %r added by %s", product.id, product.name, actor.address)
        return product

    return run_with_retry(_op)


def update_product(caller: str, product_id: int, **fields) -> Product:
    """Admin-only. Overwrites every mutable field of an existing product."""
    def _op():
        with ledger_transaction():
            actor = require_admin(caller)
            product = lock_product(product_id)
            config = validate_product_config(**fields)
            for field, value in config.items():
                setattr(product, field, value)
            refresh_stock_flag(product)
            db.session.flush()
            append_audit_entry(product, actor.id, AUDIT_ACTION_UPDATE)
        logger.info("Product %s updated by %s", product.id, actor.address)
        return product

    return run_with_retry(_op)


def _set_status(caller: str, product_id: int, status: str, action: str) -> Product:
    def _op():
        with ledger_transaction():
            actor = require_admin(caller)
            product = lock_product(product_id)
            product.status = status
            db.session.flush()
            append_audit_entry(product, actor.id, action)
        logger.info("Product %s set %s by %s", product.id, status, actor.address)
        return product

    return run_with_retry(_op)


def deactivate_product(caller: str, product_id: int) -> Product:
    return _set_status(caller, product_id, PRODUCT_STATUS_INACTIVE, AUDIT_ACTION_DEACTIVATE)


def reactivate_product(caller: str, product_id: int) -> Product:
    return _set_status(caller, product_id, PRODUCT_STATUS_ACTIVE, AUDIT_ACTION_REACTIVATE)


# =============================================================================
# AUDIT TRAIL
# =============================================================================

def get_audit_count(product_id: int) -> int:
    get_product(product_id)
    return db.session.query(ProductAuditEntry).filter_by(product_id=product_id).count()


def get_audit_entry(product_id: int, index: int) -> ProductAuditEntry:
    get_product(product_id)
    entry = db.session.query(ProductAuditEntry).filter_by(product_id=product_id, entry_index=index).first()
    if not entry:
        raise NotFoundError(f"Audit entry {index} not found for product {product_id}")
    return entry


def get_audit_trail(product_id: int) -> list[ProductAuditEntry]:
    get_product(product_id)
    return (
        db.session.query(ProductAuditEntry)
        .filter_by(product_id=product_id)
        .order_by(ProductAuditEntry.entry_index.asc())
        .all()
    )
