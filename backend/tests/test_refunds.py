"""
Refund ledger tests.

Verifies:
- Ticket lifecycle OPEN -> APPROVED -> PAID and OPEN -> REJECTED
- Direct path: approve once, claim once
- An order is refunded at most once across both paths
- A failed payout leaves every record as it was
- Cancellation restores stock and refunds in full
"""

import pytest

from blindbox.errors import (
    InvalidAmountError,
    InvalidStateError,
    InvalidTransitionError,
    PayoutFailedError,
    RefundAlreadyClaimedError,
    TicketNotFoundError,
    UnauthorizedError,
    ValidationError,
)
from blindbox.extensions import db
from blindbox.models import OrderStatus, Payment
from blindbox.models.refunds import (
    DISBURSEMENT_SOURCE_CANCEL,
    DISBURSEMENT_SOURCE_CLAIM,
    DISBURSEMENT_SOURCE_TICKET,
    TICKET_STATUS_APPROVED,
    TICKET_STATUS_OPEN,
    TICKET_STATUS_PAID,
    TICKET_STATUS_REJECTED,
)
from blindbox.services import catalog_service, delivery_service, order_service, refund_service


def _payment(order_id):
    return db.session.query(Payment).filter_by(order_id=order_id).one()


def _status(order_id):
    return order_service.get_order(order_id).order_status


# =============================================================================
# TICKETS
# =============================================================================


class TestRefundTickets:

    def test_partial_ticket_paid(self, admin, buyer, completed_order, recording_gateway):
        ticket = refund_service.open_refund(buyer.address, completed_order.id, "partial", 50, reason="Dented box")
        assert ticket.status == TICKET_STATUS_OPEN
        assert ticket.refund_type == "PARTIAL"

        refund_service.approve_refund(admin.address, ticket.id)
        paid = refund_service.pay_refund(admin.address, ticket.id)

        assert paid.status == TICKET_STATUS_PAID
        assert paid.paid_by_account_id == admin.id
        assert _status(completed_order.id) is OrderStatus.REFUNDED
        assert _payment(completed_order.id).refund_claimed
        assert recording_gateway.total_to(buyer.address) == 50

        disbursements = refund_service.list_disbursements(order_id=completed_order.id)
        assert [(d.amount_wei, d.source, d.ticket_id) for d in disbursements] == [
            (50, DISBURSEMENT_SOURCE_TICKET, ticket.id),
        ]
        assert disbursements[0].gateway_reference == recording_gateway.transfers[0].gateway_reference
        assert delivery_service.get_delivery_history(completed_order.id)[-1].status == "REFUNDED"

    def test_full_ticket_must_match_paid_amount(self, buyer, completed_order):
        with pytest.raises(InvalidAmountError):
            refund_service.open_refund(buyer.address, completed_order.id, "FULL", 150)
        ticket = refund_service.open_refund(buyer.address, completed_order.id, "FULL", 200)
        assert ticket.amount_wei == 200

    def test_ticket_allowed_while_pending_confirmation(self, admin, buyer, courier, paid_order):
        delivery_service.mark_out_for_delivery(admin.address, paid_order.id)
        delivery_service.submit_proof(courier.address, paid_order.id, "ipfs://photo")
        ticket = refund_service.open_refund(buyer.address, paid_order.id, "PARTIAL", 10)
        assert ticket.status == TICKET_STATUS_OPEN

    def test_ticket_not_allowed_before_delivery(self, buyer, paid_order):
        with pytest.raises(InvalidStateError):
            refund_service.open_refund(buyer.address, paid_order.id, "FULL", 200)

    @pytest.mark.parametrize("amount", [0, -5, 201])
    def test_amount_bounds(self, buyer, completed_order, amount):
        with pytest.raises(InvalidAmountError):
            refund_service.open_refund(buyer.address, completed_order.id, "PARTIAL", amount)

    def test_unknown_type(self, buyer, completed_order):
        with pytest.raises(ValidationError):
            refund_service.open_refund(buyer.address, completed_order.id, "STORE_CREDIT", 50)

    def test_only_buyer_may_open(self, other_buyer, completed_order):
        with pytest.raises(UnauthorizedError):
            refund_service.open_refund(other_buyer.address, completed_order.id, "PARTIAL", 50)

    def test_one_unresolved_ticket_per_order(self, admin, buyer, completed_order):
        first = refund_service.open_refund(buyer.address, completed_order.id, "PARTIAL", 50)
        with pytest.raises(InvalidStateError):
            refund_service.open_refund(buyer.address, completed_order.id, "PARTIAL", 20)

        refund_service.reject_refund(admin.address, first.id, "Looks fine in the photo")
        second = refund_service.open_refund(buyer.address, completed_order.id, "PARTIAL", 20)
        assert second.id == first.id + 1

    def test_reject(self, admin, buyer, completed_order, recording_gateway):
        ticket = refund_service.open_refund(buyer.address, completed_order.id, "PARTIAL", 50)
        rejected = refund_service.reject_refund(admin.address, ticket.id, "No damage visible")

        assert rejected.status == TICKET_STATUS_REJECTED
        assert rejected.rejection_reason == "No damage visible"
        assert rejected.decided_by_account_id == admin.id
        assert _status(completed_order.id) is OrderStatus.COMPLETED
        assert recording_gateway.transfers == []

        with pytest.raises(InvalidStateError):
            refund_service.approve_refund(admin.address, ticket.id)

    def test_cannot_pay_unapproved(self, admin, buyer, completed_order):
        ticket = refund_service.open_refund(buyer.address, completed_order.id, "PARTIAL", 50)
        with pytest.raises(InvalidStateError):
            refund_service.pay_refund(admin.address, ticket.id)

    def test_pay_twice(self, admin, buyer, completed_order, recording_gateway):
        ticket = refund_service.open_refund(buyer.address, completed_order.id, "FULL", 200)
        refund_service.approve_refund(admin.address, ticket.id)
        refund_service.pay_refund(admin.address, ticket.id)

        with pytest.raises(RefundAlreadyClaimedError):
            refund_service.pay_refund(admin.address, ticket.id)
        assert len(recording_gateway.transfers) == 1

    def test_buyer_cannot_approve_or_pay(self, admin, buyer, completed_order):
        ticket = refund_service.open_refund(buyer.address, completed_order.id, "PARTIAL", 50)
        with pytest.raises(UnauthorizedError):
            refund_service.approve_refund(buyer.address, ticket.id)
        refund_service.approve_refund(admin.address, ticket.id)
        with pytest.raises(UnauthorizedError):
            refund_service.pay_refund(buyer.address, ticket.id)

    def test_unknown_ticket(self, admin):
        with pytest.raises(TicketNotFoundError):
            refund_service.approve_refund(admin.address, 424242)

    def test_list_tickets(self, admin, buyer, completed_order):
        ticket = refund_service.open_refund(buyer.address, completed_order.id, "PARTIAL", 50)
        assert [t.id for t in refund_service.list_refund_tickets(status="open")] == [ticket.id]
        assert refund_service.list_refund_tickets(status=TICKET_STATUS_APPROVED) == []
        assert [t.id for t in refund_service.list_refund_tickets(order_id=completed_order.id)] == [ticket.id]


# =============================================================================
# DIRECT CLAIM PATH
# =============================================================================


class TestDirectClaim:

    def test_partial_approve_then_claim(self, admin, buyer, completed_order, recording_gateway):
        payment = refund_service.approve_partial_refund(admin.address, completed_order.id, 80)
        assert payment.refund_approved_wei == 80

        disbursement = refund_service.claim_refund(buyer.address, completed_order.id)

        assert disbursement.amount_wei == 80
        assert disbursement.source == DISBURSEMENT_SOURCE_CLAIM
        assert _status(completed_order.id) is OrderStatus.REFUNDED
        assert recording_gateway.total_to(buyer.address) == 80

    def test_full_approve_uses_paid_amount(self, admin, buyer, completed_order, recording_gateway):
        refund_service.approve_full_refund(admin.address, completed_order.id)
        refund_service.claim_refund(buyer.address, completed_order.id)
        assert recording_gateway.total_to(buyer.address) == 200

    def test_approval_is_settable_once(self, admin, completed_order):
        refund_service.approve_partial_refund(admin.address, completed_order.id, 80)
        with pytest.raises(InvalidStateError):
            refund_service.approve_full_refund(admin.address, completed_order.id)
        assert _payment(completed_order.id).refund_approved_wei == 80

    def test_claim_without_approval(self, buyer, completed_order):
        with pytest.raises(InvalidStateError):
            refund_service.claim_refund(buyer.address, completed_order.id)

    def test_claim_twice(self, admin, buyer, completed_order, recording_gateway):
        refund_service.approve_partial_refund(admin.address, completed_order.id, 80)
        refund_service.claim_refund(buyer.address, completed_order.id)
        with pytest.raises(RefundAlreadyClaimedError):
            refund_service.claim_refund(buyer.address, completed_order.id)
        assert len(recording_gateway.transfers) == 1

    def test_only_buyer_may_claim(self, admin, other_buyer, completed_order):
        refund_service.approve_partial_refund(admin.address, completed_order.id, 80)
        with pytest.raises(UnauthorizedError):
            refund_service.claim_refund(other_buyer.address, completed_order.id)

    def test_approval_needs_refundable_status(self, admin, paid_order):
        with pytest.raises(InvalidStateError):
            refund_service.approve_partial_refund(admin.address, paid_order.id, 10)

    def test_approval_amount_bounds(self, admin, completed_order):
        with pytest.raises(InvalidAmountError):
            refund_service.approve_partial_refund(admin.address, completed_order.id, 201)


# =============================================================================
# AT MOST ONCE ACROSS BOTH PATHS
# =============================================================================


class TestSingleRefund:

    def test_claim_blocks_ticket_payment(self, admin, buyer, completed_order, recording_gateway):
        ticket = refund_service.open_refund(buyer.address, completed_order.id, "PARTIAL", 50)
        refund_service.approve_refund(admin.address, ticket.id)

        refund_service.approve_partial_refund(admin.address, completed_order.id, 80)
        refund_service.claim_refund(buyer.address, completed_order.id)

        with pytest.raises(RefundAlreadyClaimedError):
            refund_service.pay_refund(admin.address, ticket.id)
        assert recording_gateway.total_to(buyer.address) == 80
        assert refund_service.get_refund_ticket(ticket.id).status == TICKET_STATUS_APPROVED

    def test_ticket_payment_blocks_claim(self, admin, buyer, completed_order, recording_gateway):
        refund_service.approve_partial_refund(admin.address, completed_order.id, 80)
        ticket = refund_service.open_refund(buyer.address, completed_order.id, "FULL", 200)
        refund_service.approve_refund(admin.address, ticket.id)
        refund_service.pay_refund(admin.address, ticket.id)

        with pytest.raises(RefundAlreadyClaimedError):
            refund_service.claim_refund(buyer.address, completed_order.id)
        assert recording_gateway.total_to(buyer.address) == 200

    def test_no_new_ticket_after_refund(self, admin, buyer, completed_order):
        refund_service.approve_full_refund(admin.address, completed_order.id)
        refund_service.claim_refund(buyer.address, completed_order.id)
        with pytest.raises(InvalidStateError):
            refund_service.open_refund(buyer.address, completed_order.id, "PARTIAL", 10)


# =============================================================================
# PAYOUT FAILURE
# =============================================================================


class TestPayoutFailure:

    def test_failed_ticket_payout_rolls_back(self, admin, buyer, completed_order, recording_gateway):
        ticket = refund_service.open_refund(buyer.address, completed_order.id, "PARTIAL", 50)
        refund_service.approve_refund(admin.address, ticket.id)

        recording_gateway.fail_next = True
        with pytest.raises(PayoutFailedError):
            refund_service.pay_refund(admin.address, ticket.id)

        assert refund_service.get_refund_ticket(ticket.id).status == TICKET_STATUS_APPROVED
        assert _status(completed_order.id) is OrderStatus.COMPLETED
        assert not _payment(completed_order.id).refund_claimed
        assert refund_service.list_disbursements() == []
        assert recording_gateway.transfers == []

        refund_service.pay_refund(admin.address, ticket.id)
        assert recording_gateway.total_to(buyer.address) == 50

    def test_failed_claim_rolls_back(self, admin, buyer, completed_order, recording_gateway):
        refund_service.approve_partial_refund(admin.address, completed_order.id, 80)

        recording_gateway.fail_next = True
        with pytest.raises(PayoutFailedError):
            refund_service.claim_refund(buyer.address, completed_order.id)

        payment = _payment(completed_order.id)
        assert not payment.refund_claimed
        assert payment.refund_approved_wei == 80
        assert len(delivery_service.get_delivery_history(completed_order.id)) == 4

        refund_service.claim_refund(buyer.address, completed_order.id)
        assert _status(completed_order.id) is OrderStatus.REFUNDED


# =============================================================================
# CANCELLATION
# =============================================================================


class TestCancelOrder:

    def test_cancel_restores_stock_and_refunds(self, admin, buyer, paid_order, recording_gateway):
        order = refund_service.cancel_order(admin.address, paid_order.id, reason="Buyer changed mind")

        assert order.order_status is OrderStatus.CANCELLED
        assert catalog_service.get_product(paid_order.product_id).individual_stock == 10
        assert recording_gateway.total_to(buyer.address) == 200
        assert refund_service.list_disbursements(order_id=paid_order.id)[0].source == DISBURSEMENT_SOURCE_CANCEL

        actions = [e.action for e in catalog_service.get_audit_trail(paid_order.product_id)]
        assert actions[-1] == catalog_service.AUDIT_ACTION_STOCK_RESTORE

    def test_cannot_cancel_shipped_order(self, admin, paid_order):
        delivery_service.mark_out_for_delivery(admin.address, paid_order.id)
        with pytest.raises(InvalidTransitionError):
            refund_service.cancel_order(admin.address, paid_order.id)

    def test_buyer_cannot_cancel(self, buyer, paid_order):
        with pytest.raises(UnauthorizedError):
            refund_service.cancel_order(buyer.address, paid_order.id)

    def test_cancelled_order_cannot_ship(self, admin, paid_order):
        refund_service.cancel_order(admin.address, paid_order.id)
        with pytest.raises(InvalidTransitionError):
            delivery_service.mark_out_for_delivery(admin.address, paid_order.id)

    def test_failed_cancel_payout_keeps_stock_debited(self, admin, paid_order, recording_gateway):
        recording_gateway.fail_next = True
        with pytest.raises(PayoutFailedError):
            refund_service.cancel_order(admin.address, paid_order.id)

        assert _status(paid_order.id) is OrderStatus.PAID
        assert catalog_service.get_product(paid_order.product_id).individual_stock == 8
