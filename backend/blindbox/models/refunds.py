from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z
from .types import WeiAmount

REFUND_TYPE_FULL = "FULL"
REFUND_TYPE_PARTIAL = "PARTIAL"
VALID_REFUND_TYPES = [REFUND_TYPE_FULL, REFUND_TYPE_PARTIAL]

TICKET_STATUS_OPEN = "OPEN"
TICKET_STATUS_APPROVED = "APPROVED"
TICKET_STATUS_REJECTED = "REJECTED"
TICKET_STATUS_PAID = "PAID"

DISBURSEMENT_SOURCE_TICKET = "TICKET"
DISBURSEMENT_SOURCE_CLAIM = "CLAIM"
DISBURSEMENT_SOURCE_CANCEL = "CANCEL"


class Payment(db.Model):
    """
    Per-order payment record.

    WHY: The direct refund path approves an amount against this record and
    lets the buyer claim it. `refund_claimed` is the single "already paid
    out" flag consulted by every refund path, so an order can be refunded
    at most once whichever path is used.
    """
    __tablename__ = "payments"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, unique=True)
    buyer_account_id = db.Column(db.Integer, db.ForeignKey("accounts.id"), nullable=False, index=True)
    amount_wei = db.Column(WeiAmount, nullable=False)

    refund_approved_wei = db.Column(WeiAmount, nullable=False, default=0)
    refund_claimed = db.Column(db.Boolean, nullable=False, default=False)
    refunded_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    order = db.relationship("Order", backref=db.backref("payment", uselist=False))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "buyer_account_id": self.buyer_account_id,
            "amount_wei": self.amount_wei,
            "refund_approved_wei": self.refund_approved_wei,
            "refund_claimed": self.refund_claimed,
            "refunded_at": to_utc_z(self.refunded_at),
            "created_at": to_utc_z(self.created_at),
        }


class RefundTicket(db.Model):
    """Buyer-initiated refund request: OPEN -> APPROVED -> PAID, or OPEN -> REJECTED."""
    __tablename__ = "refund_tickets"
    __table_args__ = (
        db.CheckConstraint("amount_wei > 0", name="ck_refund_tickets_amount"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    requester_account_id = db.Column(db.Integer, db.ForeignKey("accounts.id"), nullable=False, index=True)

    refund_type = db.Column(db.String(16), nullable=False)
    amount_wei = db.Column(WeiAmount, nullable=False)
    reason = db.Column(db.Text, nullable=True)

    status = db.Column(db.String(16), nullable=False, default=TICKET_STATUS_OPEN, index=True)

    decided_by_account_id = db.Column(db.Integer, db.ForeignKey("accounts.id"), nullable=True)
    decided_at = db.Column(db.DateTime(timezone=True), nullable=True)
    rejection_reason = db.Column(db.String(255), nullable=True)

    paid_by_account_id = db.Column(db.Integer, db.ForeignKey("accounts.id"), nullable=True)
    paid_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    order = db.relationship("Order", backref=db.backref("refund_tickets", lazy=True))
    requester = db.relationship("Account", foreign_keys=[requester_account_id])

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "requester_account_id": self.requester_account_id,
            "requester_address": self.requester.address if self.requester else None,
            "type": self.refund_type,
            "amount_wei": self.amount_wei,
            "reason": self.reason,
            "status": self.status,
            "decided_by_account_id": self.decided_by_account_id,
            "decided_at": to_utc_z(self.decided_at),
            "rejection_reason": self.rejection_reason,
            "paid_by_account_id": self.paid_by_account_id,
            "paid_at": to_utc_z(self.paid_at),
            "created_at": to_utc_z(self.created_at),
        }


class Disbursement(db.Model):
    """Append-only record of funds sent back to a buyer."""
    __tablename__ = "disbursements"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    ticket_id = db.Column(db.Integer, db.ForeignKey("refund_tickets.id"), nullable=True, index=True)
    recipient_account_id = db.Column(db.Integer, db.ForeignKey("accounts.id"), nullable=False)
    amount_wei = db.Column(WeiAmount, nullable=False)
    source = db.Column(db.String(16), nullable=False)
    gateway_reference = db.Column(db.String(128), nullable=True)
    actor_account_id = db.Column(db.Integer, db.ForeignKey("accounts.id"), nullable=False)
    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False)

    recipient = db.relationship("Account", foreign_keys=[recipient_account_id])

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "ticket_id": self.ticket_id,
            "recipient_account_id": self.recipient_account_id,
            "recipient_address": self.recipient.address if self.recipient else None,
            "amount_wei": self.amount_wei,
            "source": self.source,
            "gateway_reference": self.gateway_reference,
            "actor_account_id": self.actor_account_id,
            "occurred_at": to_utc_z(self.occurred_at),
        }
