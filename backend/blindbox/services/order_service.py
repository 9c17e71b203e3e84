# Overview: Service-layer operations for orders and payment; the single point where money comes in.

"""
Order & Payment Engine

WHY: A purchase has to check price, stock, and payment, debit stock, and
open an order as one indivisible step, or overselling and short payment
become possible.

DESIGN:
- `settle_order` is the only routine that debits stock and creates orders.
  `buy`, the legacy direct-payment entry point, and cart checkout are thin
  adapters over it, so their invariants cannot diverge.
- Every precondition is checked before the first write; the enclosing
  ledger transaction rolls back anything on failure.
- Payment must equal unit price x qty exactly. No change is given and
  nothing is refunded automatically.
- Order ids come from the database sequence and only advance on commit.
"""

from __future__ import annotations

import logging

from ..extensions import db
from ..errors import (
    InactiveProductError,
    InsufficientStockError,
    ModeDisabledError,
    OrderIdCollisionError,
    OrderNotFoundError,
    PaymentMismatchError,
    PriceMissingError,
    ValidationError,
)
from ..models import Account, DeliveryLogEntry, Order, OrderStatus, Payment, Product
from ..time_utils import utcnow
from .account_service import normalize_address, require_active_account
from .catalog_service import (
    AUDIT_ACTION_STOCK_DEBIT,
    append_audit_entry,
    get_product,
    lock_product,
    refresh_stock_flag,
)
from .concurrency import ledger_transaction, lock_for_update, run_with_retry

logger = logging.getLogger(__name__)


def _mode_name(is_set: bool) -> str:
    return "set" if is_set else "individual"


def _require_qty(qty) -> int:
    if isinstance(qty, bool) or not isinstance(qty, int) or qty <= 0:
        raise ValidationError("Quantity must be a positive integer", details={"qty": qty})
    return qty


# =============================================================================
# PRICING
# =============================================================================

def resolve_unit_price(product: Product, is_set: bool) -> int:
    unit = product.unit_price_wei(is_set)
    if unit <= 0:
        raise PriceMissingError(
            f"Product {product.id} has no {_mode_name(is_set)} price",
            details={"product_id": product.id, "is_set": is_set},
        )
    return unit


def product_price(product_id: int, is_set: bool, qty: int) -> int:
    """Price of `qty` units in the given mode (unit price, legacy flat price fallback)."""
    qty = _require_qty(qty)
    return resolve_unit_price(get_product(product_id), is_set) * qty


# =============================================================================
# ORDER LOOKUPS AND DELIVERY LOG
# =============================================================================

def get_order(order_id: int) -> Order:
    order = db.session.get(Order, order_id) if order_id else None
    if not order:
        raise OrderNotFoundError(f"Order {order_id} not found")
    return order


def lock_order(order_id: int) -> Order:
    order = None
    if order_id:
        order = lock_for_update(db.session.query(Order).filter_by(id=order_id)).first()
    if not order:
        raise OrderNotFoundError(f"Order {order_id} not found")
    return order


def append_delivery_log(
    order: Order,
    actor_account_id: int,
    status: str,
    note: str | None = None,
    proof_image: str | None = None,
) -> DeliveryLogEntry:
    """Append-only. Written inside the same transaction as the change it records."""
    seq = db.session.query(DeliveryLogEntry).filter_by(order_id=order.id).count() + 1
    entry = DeliveryLogEntry(
        order_id=order.id,
        seq=seq,
        status=status,
        note=note,
        proof_image=proof_image,
        actor_account_id=actor_account_id,
        occurred_at=utcnow(),
    )
    db.session.add(entry)
    db.session.flush()
    return entry


def list_orders(buyer: str | None = None, status: str | None = None) -> list[Order]:
    query = db.session.query(Order)
    if buyer:
        query = query.join(Account, Order.buyer_account_id == Account.id).filter(
            Account.address == normalize_address(buyer)
        )
    if status:
        query = query.filter(Order.status == status)
    return query.order_by(Order.id.asc()).all()


def get_order_detail(order_id: int) -> dict:
    """Order with product, payment record, delivery history, and refund tickets."""
    order = get_order(order_id)
    return {
        "order": order.to_dict(),
        "product": order.product.to_dict() if order.product else None,
        "payment": order.payment.to_dict() if order.payment else None,
        "delivery_history": [entry.to_dict() for entry in order.delivery_log],
        "refund_tickets": [ticket.to_dict() for ticket in order.refund_tickets],
    }


# =============================================================================
# SETTLEMENT
# =============================================================================

def settle_order(
    buyer: Account,
    product_id: int,
    is_set: bool,
    qty: int,
    payment_wei: int,
    delivery_id: str | None = None,
    order_ref: str | None = None,
) -> Order:
    """
    Debit stock and open a PAID order. Must run inside `ledger_transaction()`.

    Raises:
        ValidationError: qty not a positive integer
        OrderIdCollisionError: legacy reference already used
        ProductNotFoundError / InactiveProductError / ModeDisabledError
        InsufficientStockError: stock in the requested mode below qty
        PriceMissingError: resolved unit price is zero
        PaymentMismatchError: payment differs from unit x qty
    """
    qty = _require_qty(qty)
    is_set = bool(is_set)

    if order_ref is not None:
        if db.session.query(Order.id).filter_by(legacy_order_ref=order_ref).first():
            raise OrderIdCollisionError(f"Order reference {order_ref} already used")

    product = lock_product(product_id)
    if not product.is_active:
        raise InactiveProductError(f"Product {product.id} is inactive")
    if not product.mode_enabled(is_set):
        raise ModeDisabledError(f"{_mode_name(is_set).capitalize()} sale is disabled for product {product.id}")

    stock = product.stock_for(is_set)
    if stock < qty:
        raise InsufficientStockError(
            f"Insufficient {_mode_name(is_set)} stock for product {product.id}",
            details={"product_id": product.id, "requested_quantity": qty, "on_hand": stock},
        )

    unit = resolve_unit_price(product, is_set)
    required = unit * qty
    if isinstance(payment_wei, bool) or not isinstance(payment_wei, int) or payment_wei != required:
        raise PaymentMismatchError(
            "Payment must equal unit price x quantity",
            details={"required_wei": required, "received_wei": payment_wei},
        )

    if is_set:
        product.set_stock -= qty
    else:
        product.individual_stock -= qty
    refresh_stock_flag(product)

    order = Order(
        buyer_account_id=buyer.id,
        product_id=product.id,
        is_set=is_set,
        qty=qty,
        unit_price_wei=unit,
        paid_wei=required,
        status=OrderStatus.PAID.value,
        delivery_id=delivery_id,
        legacy_order_ref=order_ref,
    )
    db.session.add(order)
    db.session.flush()

    db.session.add(Payment(order_id=order.id, buyer_account_id=buyer.id, amount_wei=required))
    append_delivery_log(order, buyer.id, OrderStatus.PAID.log_code, note=f"Paid {required} wei")
    append_audit_entry(product, buyer.id, AUDIT_ACTION_STOCK_DEBIT)
    return order


def buy(
    caller: str,
    product_id: int,
    is_set: bool,
    qty: int,
    delivery_id: str | None,
    payment_wei: int,
) -> Order:
    """Pay for `qty` units of one product in one mode; returns the new PAID order."""
    def _op():
        with ledger_transaction():
            buyer = require_active_account(caller)
            order = settle_order(buyer, product_id, is_set, qty, payment_wei, delivery_id=delivery_id)
        logger.info(
            "Order %s paid by %s: product %s x%s (%s) for %s wei",
            order.id, buyer.address, product_id, qty, _mode_name(is_set), order.paid_wei,
        )
        return order

    return run_with_retry(_op)


def pay_with_metamask(
    caller: str,
    order_ref: str,
    product_id: int,
    payment_wei: int,
    delivery_id: str | None = None,
) -> Order:
    """
    Legacy direct-payment entry point: one individual unit, keyed by a
    caller-supplied order reference that must not have been used before.
    """
    if order_ref is None or not str(order_ref).strip():
        raise ValidationError("Order reference is required")
    order_ref = str(order_ref).strip()

    def _op():
        with ledger_transaction():
            buyer = require_active_account(caller)
            order = settle_order(
                buyer, product_id, False, 1, payment_wei,
                delivery_id=delivery_id, order_ref=order_ref,
            )
        logger.info("Order %s (ref %s) paid directly by %s", order.id, order_ref, buyer.address)
        return order

    return run_with_retry(_op)
