# Overview: Service-layer operations for refunds; tickets, the direct claim path, and cancellations.

"""
Refund Ledger Service

WHY: Buyers can ask for some or all of their money back once an order has
been delivered (or is awaiting confirmation). Admins decide, and funds go
back to the buyer exactly once.

DESIGN PRINCIPLES:
- Two front ends share one primitive (`_disburse_once`):
  1. Tickets: buyer opens -> admin approves -> admin pays
  2. Direct claim: admin approves an amount on the order's payment record
     (settable once) -> buyer claims
- `Payment.refund_claimed` is the single "already paid out" flag, so an
  order cannot be refunded twice across both paths
- State is written before the external transfer; a failed transfer raises
  PayoutFailedError and the enclosing ledger transaction rolls the state
  back, so nothing is left half-applied

LIFECYCLE (tickets):
OPEN -> APPROVED -> PAID
OPEN -> REJECTED
"""

from __future__ import annotations

import logging

from ..extensions import db
from ..errors import (
    InvalidAmountError,
    InvalidStateError,
    InvalidTransitionError,
    PaymentRecordNotFoundError,
    PayoutFailedError,
    RefundAlreadyClaimedError,
    TicketNotFoundError,
    UnauthorizedError,
    ValidationError,
)
from ..models import Account, Disbursement, Order, OrderStatus, Payment, RefundTicket
from ..models.refunds import (
    DISBURSEMENT_SOURCE_CANCEL,
    DISBURSEMENT_SOURCE_CLAIM,
    DISBURSEMENT_SOURCE_TICKET,
    REFUND_TYPE_FULL,
    TICKET_STATUS_APPROVED,
    TICKET_STATUS_OPEN,
    TICKET_STATUS_PAID,
    TICKET_STATUS_REJECTED,
    VALID_REFUND_TYPES,
)
from ..time_utils import utcnow
from .account_service import require_active_account, require_admin
from .catalog_service import AUDIT_ACTION_STOCK_RESTORE, append_audit_entry, lock_product, refresh_stock_flag
from .concurrency import ledger_transaction, lock_for_update, run_with_retry
from .order_service import append_delivery_log, lock_order
from .payout_service import PayoutError, get_payout_gateway

logger = logging.getLogger(__name__)

REFUNDABLE_STATUSES = {OrderStatus.COMPLETED, OrderStatus.PENDING_CONFIRMATION}
UNRESOLVED_TICKET_STATUSES = [TICKET_STATUS_OPEN, TICKET_STATUS_APPROVED]


# =============================================================================
# INTERNAL HELPERS
# =============================================================================

def _require_amount(amount_wei, paid_wei: int) -> int:
    if isinstance(amount_wei, bool) or not isinstance(amount_wei, int):
        raise InvalidAmountError("Refund amount must be an integer")
    if amount_wei <= 0 or amount_wei > paid_wei:
        raise InvalidAmountError(
            "Refund amount must be greater than zero and at most the amount paid",
            details={"amount_wei": amount_wei, "paid_wei": paid_wei},
        )
    return amount_wei


def _lock_payment(order: Order) -> Payment:
    payment = lock_for_update(db.session.query(Payment).filter_by(order_id=order.id)).first()
    if not payment:
        raise PaymentRecordNotFoundError(f"No payment recorded for order {order.id}")
    return payment


def _require_refundable(order: Order) -> None:
    if order.order_status not in REFUNDABLE_STATUSES:
        raise InvalidStateError(
            f"Order {order.id} is {order.status}; refunds need COMPLETED or PENDING_CONFIRMATION",
            details={"order_id": order.id, "status": order.status},
        )


def _lock_ticket(ticket_id: int) -> RefundTicket:
    ticket = None
    if ticket_id:
        ticket = lock_for_update(db.session.query(RefundTicket).filter_by(id=ticket_id)).first()
    if not ticket:
        raise TicketNotFoundError(f"Refund ticket {ticket_id} not found")
    return ticket


def _disburse_once(
    order: Order,
    payment: Payment,
    amount_wei: int,
    actor: Account,
    source: str,
    ticket: RefundTicket | None = None,
    final_status: OrderStatus = OrderStatus.REFUNDED,
    note: str | None = None,
) -> Disbursement:
    """
    Mark the payment claimed, move the order to its terminal status, record
    the disbursement, then transfer. Must run inside `ledger_transaction()`.

    Raises:
        RefundAlreadyClaimedError: The order was already refunded or cancelled
        InvalidAmountError: Amount outside (0, paid]
        PayoutFailedError: Gateway refused the transfer (caller rolls back)
    """
    if payment.refund_claimed or order.order_status in (OrderStatus.REFUNDED, OrderStatus.CANCELLED):
        raise RefundAlreadyClaimedError(f"Order {order.id} has already been refunded")
    _require_amount(amount_wei, payment.amount_wei)

    # Effects first
    payment.refund_claimed = True
    payment.refunded_at = utcnow()
    order.status = final_status.value
    disbursement = Disbursement(
        order_id=order.id,
        ticket_id=ticket.id if ticket else None,
        recipient_account_id=payment.buyer_account_id,
        amount_wei=amount_wei,
        source=source,
        actor_account_id=actor.id,
        occurred_at=payment.refunded_at,
    )
    db.session.add(disbursement)
    append_delivery_log(order, actor.id, final_status.log_code, note=note or f"Refunded {amount_wei} wei")
    db.session.flush()

    # Then the interaction
    recipient = db.session.get(Account, payment.buyer_account_id)
    reference = f"order-{order.id}-disbursement-{disbursement.id}"
    try:
        disbursement.gateway_reference = get_payout_gateway().transfer(recipient.address, amount_wei, reference)
    except PayoutError as exc:
        logger.warning("Payout %s to %s failed: %s", reference, recipient.address, exc)
        raise PayoutFailedError(
            f"Payout for order {order.id} failed",
            details={"order_id": order.id, "amount_wei": amount_wei, "reason": str(exc)},
        ) from exc

    logger.info("Disbursed %s wei to %s for order %s (%s)", amount_wei, recipient.address, order.id, source)
    return disbursement


# =============================================================================
# REFUND TICKETS
# =============================================================================

def open_refund(
    caller: str,
    order_id: int,
    refund_type: str,
    amount_wei: int,
    reason: str | None = None,
) -> RefundTicket:
    """
    Buyer opens a refund ticket on their own order.

    Raises:
        UnauthorizedError: Caller is not the order's buyer
        InvalidStateError: Order not refundable, or an unresolved ticket exists
        ValidationError: Unknown refund type
        InvalidAmountError: Amount outside (0, paid], or FULL not equal to paid
    """
    kind = str(refund_type or "").strip().upper()
    if kind not in VALID_REFUND_TYPES:
        raise ValidationError(f"Invalid refund type: {refund_type}. Must be one of {VALID_REFUND_TYPES}")

    def _op():
        with ledger_transaction():
            requester = require_active_account(caller)
            order = lock_order(order_id)
            if order.buyer_account_id != requester.id:
                raise UnauthorizedError(f"Order {order.id} belongs to another buyer")
            _require_refundable(order)
            _require_amount(amount_wei, order.paid_wei)
            if kind == REFUND_TYPE_FULL and amount_wei != order.paid_wei:
                raise InvalidAmountError(
                    "A full refund must request the full amount paid",
                    details={"amount_wei": amount_wei, "paid_wei": order.paid_wei},
                )

            payment = _lock_payment(order)
            if payment.refund_claimed:
                raise RefundAlreadyClaimedError(f"Order {order.id} has already been refunded")

            unresolved = db.session.query(RefundTicket).filter(
                RefundTicket.order_id == order.id,
                RefundTicket.status.in_(UNRESOLVED_TICKET_STATUSES),
            ).first()
            if unresolved:
                raise InvalidStateError(
                    f"Order {order.id} already has refund ticket {unresolved.id} in progress"
                )

            ticket = RefundTicket(
                order_id=order.id,
                requester_account_id=requester.id,
                refund_type=kind,
                amount_wei=amount_wei,
                reason=reason,
                status=TICKET_STATUS_OPEN,
            )
            db.session.add(ticket)
            db.session.flush()
        logger.info("Refund ticket %s opened on order %s for %s wei", ticket.id, order.id, amount_wei)
        return ticket

    return run_with_retry(_op)


def approve_refund(caller: str, ticket_id: int) -> RefundTicket:
    """Admin-only. OPEN -> APPROVED."""
    def _op():
        with ledger_transaction():
            actor = require_admin(caller)
            ticket = _lock_ticket(ticket_id)
            if ticket.status != TICKET_STATUS_OPEN:
                raise InvalidStateError(f"Can only approve OPEN tickets. Ticket {ticket.id} is {ticket.status}")
            ticket.status = TICKET_STATUS_APPROVED
            ticket.decided_by_account_id = actor.id
            ticket.decided_at = utcnow()
        logger.info("Refund ticket %s approved by %s", ticket.id, actor.address)
        return ticket

    return run_with_retry(_op)


def reject_refund(caller: str, ticket_id: int, rejection_reason: str | None = None) -> RefundTicket:
    """Admin-only. OPEN -> REJECTED."""
    def _op():
        with ledger_transaction():
            actor = require_admin(caller)
            ticket = _lock_ticket(ticket_id)
            if ticket.status != TICKET_STATUS_OPEN:
                raise InvalidStateError(f"Can only reject OPEN tickets. Ticket {ticket.id} is {ticket.status}")
            ticket.status = TICKET_STATUS_REJECTED
            ticket.decided_by_account_id = actor.id
            ticket.decided_at = utcnow()
            ticket.rejection_reason = rejection_reason
        logger.info("Refund ticket %s rejected by %s", ticket.id, actor.address)
        return ticket

    return run_with_retry(_op)


def pay_refund(caller: str, ticket_id: int) -> RefundTicket:
    """
    Admin-only. APPROVED -> PAID; the order becomes REFUNDED and the ticket
    amount goes to the requester.

    Raises:
        RefundAlreadyClaimedError: Ticket already paid, or order already refunded
        InvalidStateError: Ticket not APPROVED
        PayoutFailedError: Transfer failed; nothing was changed
    """
    def _op():
        with ledger_transaction():
            actor = require_admin(caller)
            ticket = _lock_ticket(ticket_id)
            if ticket.status == TICKET_STATUS_PAID:
                raise RefundAlreadyClaimedError(f"Refund ticket {ticket.id} has already been paid")
            if ticket.status != TICKET_STATUS_APPROVED:
                raise InvalidStateError(f"Can only pay APPROVED tickets. Ticket {ticket.id} is {ticket.status}")

            order = lock_order(ticket.order_id)
            payment = _lock_payment(order)
            ticket.status = TICKET_STATUS_PAID
            ticket.paid_by_account_id = actor.id
            ticket.paid_at = utcnow()
            _disburse_once(
                order, payment, ticket.amount_wei, actor, DISBURSEMENT_SOURCE_TICKET,
                ticket=ticket, note=f"Refund ticket {ticket.id} paid",
            )
        return ticket

    return run_with_retry(_op)


# =============================================================================
# DIRECT CLAIM PATH
# =============================================================================

def _approve_amount(caller: str, order_id: int, amount_wei: int | None) -> Payment:
    def _op():
        with ledger_transaction():
            actor = require_admin(caller)
            order = lock_order(order_id)
            _require_refundable(order)
            payment = _lock_payment(order)
            if payment.refund_claimed:
                raise RefundAlreadyClaimedError(f"Order {order.id} has already been refunded")
            if payment.refund_approved_wei:
                raise InvalidStateError(f"A refund is already approved for order {order.id}")
            amount = payment.amount_wei if amount_wei is None else amount_wei
            payment.refund_approved_wei = _require_amount(amount, payment.amount_wei)
        logger.info("Refund of %s wei approved on order %s by %s", amount, order.id, actor.address)
        return payment

    return run_with_retry(_op)


def approve_partial_refund(caller: str, order_id: int, amount_wei: int) -> Payment:
    """Admin-only. Approve `amount_wei` for the buyer to claim; settable once."""
    return _approve_amount(caller, order_id, amount_wei)


def approve_full_refund(caller: str, order_id: int) -> Payment:
    """Admin-only. Approve the full amount paid for the buyer to claim; settable once."""
    return _approve_amount(caller, order_id, None)


def claim_refund(caller: str, order_id: int) -> Disbursement:
    """Buyer claims the approved amount; the order becomes REFUNDED."""
    def _op():
        with ledger_transaction():
            buyer = require_active_account(caller)
            order = lock_order(order_id)
            if order.buyer_account_id != buyer.id:
                raise UnauthorizedError(f"Order {order.id} belongs to another buyer")
            payment = _lock_payment(order)
            if payment.refund_claimed:
                raise RefundAlreadyClaimedError(f"Order {order.id} has already been refunded")
            if not payment.refund_approved_wei:
                raise InvalidStateError(f"No refund approved for order {order.id}")
            disbursement = _disburse_once(
                order, payment, payment.refund_approved_wei, buyer, DISBURSEMENT_SOURCE_CLAIM,
                note="Refund claimed by buyer",
            )
        return disbursement

    return run_with_retry(_op)


# =============================================================================
# CANCELLATION
# =============================================================================

def cancel_order(caller: str, order_id: int, reason: str | None = None) -> Order:
    """
    Admin-only. Cancel a PAID order before it ships: stock goes back to the
    product and the full payment goes back to the buyer.
    """
    def _op():
        with ledger_transaction():
            actor = require_admin(caller)
            order = lock_order(order_id)
            if order.order_status is not OrderStatus.PAID:
                raise InvalidTransitionError(
                    f"Only PAID orders can be cancelled. Order {order.id} is {order.status}",
                    details={"order_id": order.id, "from": order.status, "to": OrderStatus.CANCELLED.value},
                )
            payment = _lock_payment(order)

            product = lock_product(order.product_id)
            if order.is_set:
                product.set_stock += order.qty
            else:
                product.individual_stock += order.qty
            refresh_stock_flag(product)
            db.session.flush()
            append_audit_entry(product, actor.id, AUDIT_ACTION_STOCK_RESTORE)

            _disburse_once(
                order, payment, payment.amount_wei, actor, DISBURSEMENT_SOURCE_CANCEL,
                final_status=OrderStatus.CANCELLED, note=reason or "Order cancelled",
            )
        logger.info("Order %s cancelled by %s", order.id, actor.address)
        return order

    return run_with_retry(_op)


# =============================================================================
# QUERIES
# =============================================================================

def get_refund_ticket(ticket_id: int) -> RefundTicket:
    ticket = db.session.get(RefundTicket, ticket_id) if ticket_id else None
    if not ticket:
        raise TicketNotFoundError(f"Refund ticket {ticket_id} not found")
    return ticket


def list_refund_tickets(status: str | None = None, order_id: int | None = None) -> list[RefundTicket]:
    query = db.session.query(RefundTicket)
    if status:
        query = query.filter_by(status=status.upper())
    if order_id:
        query = query.filter_by(order_id=order_id)
    return query.order_by(RefundTicket.id.asc()).all()


def list_disbursements(order_id: int | None = None) -> list[Disbursement]:
    query = db.session.query(Disbursement)
    if order_id:
        query = query.filter_by(order_id=order_id)
    return query.order_by(Disbursement.id.asc()).all()
