# Overview: Service-layer operations for the delivery state machine; every transition is logged.

"""
Delivery State Machine

LIFECYCLE:
1. PAID                  (order settled)
2. OUT_FOR_DELIVERY      admin hands the parcel to a carrier
3. PENDING_CONFIRMATION  delivery man (or admin) attaches proof of delivery
4. COMPLETED             admin confirms

REFUNDED and CANCELLED are reached only through the refund ledger.

The generic status entry points (`delivery_add_status`,
`delivery_update_status`) go through the same transition table as the
named events, so they can never skip a stage. Non-admin callers may only
target OUT_FOR_DELIVERY or PENDING_CONFIRMATION.
"""

from __future__ import annotations

import logging

from ..errors import (
    InvalidStateError,
    InvalidTransitionError,
    UnauthorizedError,
    ValidationError,
)
from ..models import Account, DeliveryLogEntry, Order, OrderStatus
from ..models.orders import parse_status
from .account_service import get_account, require_admin, require_delivery_or_admin
from .concurrency import ledger_transaction, run_with_retry
from .order_service import append_delivery_log, get_order, lock_order

logger = logging.getLogger(__name__)

DELIVERY_MAN_ASSIGNED = "DELIVERY_MAN_ASSIGNED"

# from status -> statuses reachable through the delivery state machine
DELIVERY_TRANSITIONS = {
    OrderStatus.PAID: {OrderStatus.OUT_FOR_DELIVERY},
    OrderStatus.OUT_FOR_DELIVERY: {OrderStatus.PENDING_CONFIRMATION},
    OrderStatus.PENDING_CONFIRMATION: {OrderStatus.COMPLETED},
}

NON_ADMIN_TARGETS = {OrderStatus.OUT_FOR_DELIVERY, OrderStatus.PENDING_CONFIRMATION}


def can_transition(current: OrderStatus, target: OrderStatus) -> bool:
    return target in DELIVERY_TRANSITIONS.get(current, set())


def _check_assignment(order: Order, actor: Account) -> None:
    if actor.is_admin:
        return
    if order.assigned_delivery_account_id and order.assigned_delivery_account_id != actor.id:
        raise UnauthorizedError(f"Order {order.id} is assigned to another delivery man")


def _transition(
    order: Order,
    actor: Account,
    target: OrderStatus,
    note: str | None = None,
    proof_image: str | None = None,
) -> DeliveryLogEntry:
    current = order.order_status
    if not can_transition(current, target):
        raise InvalidTransitionError(
            f"Cannot move order {order.id} from {current.value} to {target.value}",
            details={"order_id": order.id, "from": current.value, "to": target.value},
        )

    if target is OrderStatus.PENDING_CONFIRMATION:
        proof_image = (proof_image or "").strip() or None
        if not proof_image:
            raise ValidationError("Proof of delivery is required")
        order.proof_image = proof_image

    order.status = target.value
    entry = append_delivery_log(order, actor.id, target.log_code, note=note, proof_image=proof_image)
    logger.info("Order %s %s -> %s by %s", order.id, current.value, target.value, actor.address)
    return entry


# =============================================================================
# NAMED EVENTS
# =============================================================================

def mark_out_for_delivery(caller: str, order_id: int, delivery_id: str | None = None, note: str | None = None) -> Order:
    """Admin-only. PAID -> OUT_FOR_DELIVERY, optionally recording the carrier id."""
    def _op():
        with ledger_transaction():
            actor = require_admin(caller)
            order = lock_order(order_id)
            if delivery_id:
                order.delivery_id = delivery_id
            _transition(order, actor, OrderStatus.OUT_FOR_DELIVERY,
                        note=note or (f"Carrier {delivery_id}" if delivery_id else None))
        return order

    return run_with_retry(_op)


def submit_proof(caller: str, order_id: int, proof_image: str, note: str | None = None) -> Order:
    """Delivery man or admin. OUT_FOR_DELIVERY -> PENDING_CONFIRMATION with proof attached."""
    def _op():
        with ledger_transaction():
            actor = require_delivery_or_admin(caller)
            order = lock_order(order_id)
            _check_assignment(order, actor)
            _transition(order, actor, OrderStatus.PENDING_CONFIRMATION, note=note, proof_image=proof_image)
        return order

    return run_with_retry(_op)


def confirm_delivery(caller: str, order_id: int, note: str | None = None) -> Order:
    """Admin-only. PENDING_CONFIRMATION -> COMPLETED."""
    def _op():
        with ledger_transaction():
            actor = require_admin(caller)
            order = lock_order(order_id)
            _transition(order, actor, OrderStatus.COMPLETED, note=note)
        return order

    return run_with_retry(_op)


# =============================================================================
# GENERIC STATUS ENTRY POINTS
# =============================================================================

def delivery_add_status(
    caller: str,
    order_id: int,
    status,
    note: str | None = None,
    proof_image: str | None = None,
) -> DeliveryLogEntry:
    """
    Move an order to `status` through the transition table.

    Raises:
        ValidationError: Unknown status string
        UnauthorizedError: Non-admin targeting anything but the two delivery stages
        InvalidTransitionError: Target not reachable from the current status
    """
    try:
        target = parse_status(status)
    except ValueError as exc:
        raise ValidationError(str(exc)) from None

    def _op():
        with ledger_transaction():
            actor = require_delivery_or_admin(caller)
            if not actor.is_admin and target not in NON_ADMIN_TARGETS:
                raise UnauthorizedError(f"Delivery men cannot set status {target.value}")
            order = lock_order(order_id)
            _check_assignment(order, actor)
            entry = _transition(order, actor, target, note=note, proof_image=proof_image)
        return entry

    return run_with_retry(_op)


def delivery_update_status(
    caller: str,
    order_id: int,
    status,
    note: str | None = None,
    proof_image: str | None = None,
    delivery_id: str | None = None,
) -> DeliveryLogEntry:
    """Same as `delivery_add_status`, also updating the carrier id when given."""
    with ledger_transaction():
        entry = delivery_add_status(caller, order_id, status, note=note, proof_image=proof_image)
        if delivery_id:
            entry.order.delivery_id = delivery_id
    return entry


# =============================================================================
# ASSIGNMENT AND HISTORY
# =============================================================================

def assign_delivery_man_to_order(caller: str, order_id: int, delivery_address: str) -> Order:
    """
    Admin-only. Record which delivery man is responsible for an order.

    Status is unchanged; the assignment is logged in the delivery history.
    """
    def _op():
        with ledger_transaction():
            actor = require_admin(caller)
            order = lock_order(order_id)
            courier = get_account(delivery_address)
            if not courier.is_delivery_man:
                raise InvalidStateError(f"Account {courier.address} is not a delivery man")
            if not courier.is_active:
                raise InvalidStateError(f"Delivery man {courier.address} is deactivated")
            order.assigned_delivery_account_id = courier.id
            append_delivery_log(order, actor.id, DELIVERY_MAN_ASSIGNED, note=f"Assigned to {courier.address}")
        logger.info("Order %s assigned to delivery man %s by %s", order.id, courier.address, actor.address)
        return order

    return run_with_retry(_op)


def get_delivery_history(order_id: int) -> list[DeliveryLogEntry]:
    return list(get_order(order_id).delivery_log)
