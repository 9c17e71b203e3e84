# Overview: Service-layer operations for buyer carts; no money moves here except at checkout.

"""
Cart Service

WHY: Buyers collect (product, quantity, mode) lines before paying. The cart
is a convenience layer over the catalog: adding a line reserves nothing,
and only checkout (through the order engine) debits stock.

DESIGN:
- Repeated adds append separate lines (no aggregation)
- Removal is swap-and-pop by positional index
- Totals use the mode price, falling back to the legacy flat price
"""

from __future__ import annotations

import logging

from flask import current_app

from ..extensions import db
from ..errors import (
    CartIndexError,
    InactiveProductError,
    InvalidStateError,
    ModeDisabledError,
    PaymentMismatchError,
    ValidationError,
)
from ..models import Account, CartItem
from .account_service import get_account, require_active_account
from .catalog_service import get_product
from .concurrency import ledger_transaction, run_with_retry
from .order_service import settle_order

logger = logging.getLogger(__name__)


def _items_for(account: Account) -> list[CartItem]:
    return (
        db.session.query(CartItem)
        .filter_by(buyer_account_id=account.id)
        .order_by(CartItem.position.asc())
        .all()
    )


def get_cart(buyer: str) -> list[CartItem]:
    return _items_for(get_account(buyer))


def add_to_cart(caller: str, product_id: int, quantity: int, is_set: bool = False) -> CartItem:
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
        raise ValidationError("Quantity must be a positive integer", details={"quantity": quantity})

    def _op():
        with ledger_transaction():
            buyer = require_active_account(caller)
            product = get_product(product_id)
            if not product.is_active:
                raise InactiveProductError(f"Product {product.id} is inactive")
            if not product.mode_enabled(bool(is_set)):
                raise ModeDisabledError(f"Requested mode is disabled for product {product.id}")

            position = db.session.query(CartItem).filter_by(buyer_account_id=buyer.id).count()
            item = CartItem(
                buyer_account_id=buyer.id,
                position=position,
                product_id=product.id,
                quantity=quantity,
                is_set=bool(is_set),
            )
            db.session.add(item)
            db.session.flush()
        return item

    return run_with_retry(_op)


def _line_at(items: list[CartItem], index) -> CartItem:
    if isinstance(index, bool) or not isinstance(index, int) or not 0 <= index < len(items):
        raise CartIndexError(f"Cart index {index} out of range", details={"size": len(items)})
    return items[index]


def _swap_and_pop(items: list[CartItem], index: int) -> None:
    last = items[-1]
    db.session.delete(items[index])
    # Delete must hit the table before the last line takes the freed position
    db.session.flush()
    if last is not items[index]:
        last.position = index
        db.session.flush()


def remove_from_cart(caller: str, index: int) -> None:
    """Remove the line at `index`; the last line moves into its slot."""
    def _op():
        with ledger_transaction():
            buyer = require_active_account(caller)
            items = _items_for(buyer)
            _line_at(items, index)
            _swap_and_pop(items, index)

    return run_with_retry(_op)


def update_cart_item(caller: str, index: int, quantity: int) -> CartItem | None:
    """
    Set the quantity of the line at `index`.

    Quantity 0 removes the line (same swap-and-pop as `remove_from_cart`)
    and returns None. Stock is not checked until checkout.
    """
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 0:
        raise ValidationError("Quantity must be a non-negative integer", details={"quantity": quantity})

    def _op():
        with ledger_transaction():
            buyer = require_active_account(caller)
            items = _items_for(buyer)
            item = _line_at(items, index)
            if quantity == 0:
                _swap_and_pop(items, index)
                return None
            item.quantity = quantity
            db.session.flush()
        return item

    return run_with_retry(_op)


def clear_cart(caller: str) -> int:
    def _op():
        with ledger_transaction():
            buyer = require_active_account(caller)
            removed = db.session.query(CartItem).filter_by(buyer_account_id=buyer.id).delete()
        return removed

    return run_with_retry(_op)


def _line_total(item: CartItem) -> int:
    return item.product.unit_price_wei(item.is_set) * item.quantity


def get_cart_total(buyer: str) -> int:
    """Sum of unit price (by mode, legacy fallback) x quantity over the cart."""
    return sum(_line_total(item) for item in get_cart(buyer))


def get_cart_summary(buyer: str) -> dict:
    """
    Cart lines plus totals for display.

    The shipping fee is informational; checkout charges only the subtotal.
    """
    items = get_cart(buyer)
    subtotal = sum(_line_total(item) for item in items)
    shipping = current_app.config.get("CART_SHIPPING_FEE_WEI", 0) if items else 0
    return {
        "items": [dict(item.to_dict(), line_total_wei=_line_total(item)) for item in items],
        "item_count": sum(item.quantity for item in items),
        "subtotal_wei": subtotal,
        "shipping_wei": shipping,
        "total_wei": subtotal + shipping,
    }


def checkout_cart(caller: str, payment_wei: int, delivery_id: str | None = None) -> list:
    """
    Settle every cart line as its own PAID order and clear the cart.

    The payment must equal the cart total. One failing line aborts the
    whole checkout; no order is created and no stock is debited.
    """
    def _op():
        with ledger_transaction():
            buyer = require_active_account(caller)
            items = _items_for(buyer)
            if not items:
                raise InvalidStateError("Cart is empty")

            total = sum(_line_total(item) for item in items)
            if payment_wei != total:
                raise PaymentMismatchError(
                    "Payment must equal the cart total",
                    details={"required_wei": total, "received_wei": payment_wei},
                )

            orders = []
            for item in items:
                line_payment = _line_total(item)
                orders.append(settle_order(
                    buyer, item.product_id, item.is_set, item.quantity, line_payment,
                    delivery_id=delivery_id,
                ))
            db.session.query(CartItem).filter_by(buyer_account_id=buyer.id).delete()
        logger.info("Cart checkout by %s: %s orders for %s wei", buyer.address, len(orders), total)
        return orders

    return run_with_retry(_op)
