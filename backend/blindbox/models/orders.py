from __future__ import annotations

import enum

from ..extensions import db
from ..time_utils import to_utc_z
from .types import WeiAmount


class OrderStatus(str, enum.Enum):
    """
    Order lifecycle shared by the core and any front end.

    PAID -> OUT_FOR_DELIVERY -> PENDING_CONFIRMATION -> COMPLETED, with
    REFUNDED and CANCELLED as alternate terminal states.
    """
    PENDING = "PENDING"
    PAID = "PAID"
    OUT_FOR_DELIVERY = "OUT_FOR_DELIVERY"
    PENDING_CONFIRMATION = "PENDING_CONFIRMATION"
    COMPLETED = "COMPLETED"
    REFUNDED = "REFUNDED"
    CANCELLED = "CANCELLED"

    @property
    def display(self) -> str:
        return _DISPLAY_STATUS[self]

    @property
    def log_code(self) -> str:
        """Delivery log code written when an order enters this status."""
        if self is OrderStatus.PAID:
            return "ORDER_PAID"
        return self.value


_DISPLAY_STATUS = {
    OrderStatus.PENDING: "Pending",
    OrderStatus.PAID: "Paid",
    OrderStatus.OUT_FOR_DELIVERY: "Out for delivery",
    OrderStatus.PENDING_CONFIRMATION: "Pending confirmation",
    OrderStatus.COMPLETED: "Completed",
    OrderStatus.REFUNDED: "Refunded",
    OrderStatus.CANCELLED: "Cancelled",
}


def parse_status(value) -> OrderStatus:
    """
    Accept an OrderStatus, its value, or any display/legacy spelling
    ("out_for_delivery", "Pending confirmation", "order_paid").

    Raises ValueError for unknown strings.
    """
    if isinstance(value, OrderStatus):
        return value
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"Unknown order status: {value!r}")
    key = value.strip().upper().replace(" ", "_").replace("-", "_")
    if key == "ORDER_PAID":
        key = "PAID"
    try:
        return OrderStatus(key)
    except ValueError:
        raise ValueError(f"Unknown order status: {value!r}") from None


class Order(db.Model):
    """
    Paid purchase of one product in one sale mode.

    `paid_wei` equals unit price x qty at creation. After creation the order
    is only mutated by the delivery state machine and the refund ledger.
    """
    __tablename__ = "orders"
    __table_args__ = (
        db.Index("ix_orders_buyer_status", "buyer_account_id", "status"),
        db.CheckConstraint("qty > 0", name="ck_orders_qty"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    buyer_account_id = db.Column(db.Integer, db.ForeignKey("accounts.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    is_set = db.Column(db.Boolean, nullable=False, default=False)
    qty = db.Column(db.Integer, nullable=False)
    unit_price_wei = db.Column(WeiAmount, nullable=False)
    paid_wei = db.Column(WeiAmount, nullable=False)

    status = db.Column(db.String(32), nullable=False, default=OrderStatus.PAID.value, index=True)

    # Carrier reference, caller supplied
    delivery_id = db.Column(db.String(128), nullable=True)
    proof_image = db.Column(db.String(512), nullable=True)

    assigned_delivery_account_id = db.Column(db.Integer, db.ForeignKey("accounts.id"), nullable=True, index=True)

    # Caller-supplied reference from the legacy direct-payment entry point
    legacy_order_ref = db.Column(db.String(128), nullable=True, unique=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    buyer = db.relationship("Account", foreign_keys=[buyer_account_id])
    assigned_delivery_man = db.relationship("Account", foreign_keys=[assigned_delivery_account_id])
    product = db.relationship("Product")
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def order_status(self) -> OrderStatus:
        return OrderStatus(self.status)

    def __repr__(self) -> str:
        return f"<Order id={self.id} product_id={self.product_id} status={self.status}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "buyer_account_id": self.buyer_account_id,
            "buyer_address": self.buyer.address if self.buyer else None,
            "product_id": self.product_id,
            "is_set": self.is_set,
            "qty": self.qty,
            "unit_price_wei": self.unit_price_wei,
            "paid_wei": self.paid_wei,
            "status": self.status,
            "status_display": self.order_status.display,
            "delivery_id": self.delivery_id,
            "proof_image": self.proof_image,
            "assigned_delivery_account_id": self.assigned_delivery_account_id,
            "legacy_order_ref": self.legacy_order_ref,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class DeliveryLogEntry(db.Model):
    """Append-only audit trail of every status change on an order."""
    __tablename__ = "delivery_log_entries"
    __table_args__ = (
        db.UniqueConstraint("order_id", "seq", name="uq_delivery_log_order_seq"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    seq = db.Column(db.Integer, nullable=False)

    # Log code, e.g. ORDER_PAID, OUT_FOR_DELIVERY, DELIVERY_MAN_ASSIGNED
    status = db.Column(db.String(32), nullable=False)
    note = db.Column(db.Text, nullable=True)
    proof_image = db.Column(db.String(512), nullable=True)
    actor_account_id = db.Column(db.Integer, db.ForeignKey("accounts.id"), nullable=False)
    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False)

    order = db.relationship("Order", backref=db.backref("delivery_log", lazy=True, order_by="DeliveryLogEntry.seq"))
    actor = db.relationship("Account")

    def to_dict(self) -> dict:
        return {
            "order_id": self.order_id,
            "seq": self.seq,
            "status": self.status,
            "note": self.note,
            "proof_image": self.proof_image,
            "actor_account_id": self.actor_account_id,
            "actor_address": self.actor.address if self.actor else None,
            "occurred_at": to_utc_z(self.occurred_at),
        }
