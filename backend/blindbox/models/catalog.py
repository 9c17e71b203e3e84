from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z
from .types import WeiAmount

PRODUCT_STATUS_ACTIVE = "ACTIVE"
PRODUCT_STATUS_INACTIVE = "INACTIVE"


class Product(db.Model):
    """
    Blind-box product with two independent sale modes.

    Per-mode stock counters (`individual_stock`, `set_stock`) are the source
    of truth. `in_stock` is a cached view recomputed on every mutation and is
    never consulted when admitting a purchase.

    `price_wei` is the legacy flat unit price, used only when the individual
    price is zero. Sets are always priced by `set_price_wei`.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.Index("ix_products_status_name", "status", "name"),
        db.CheckConstraint("individual_stock >= 0", name="ck_products_individual_stock"),
        db.CheckConstraint("set_stock >= 0", name="ck_products_set_stock"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)

    status = db.Column(db.String(16), nullable=False, default=PRODUCT_STATUS_ACTIVE, index=True)

    enable_individual = db.Column(db.Boolean, nullable=False, default=False)
    individual_price_wei = db.Column(WeiAmount, nullable=False, default=0)
    individual_stock = db.Column(db.Integer, nullable=False, default=0)

    enable_set = db.Column(db.Boolean, nullable=False, default=False)
    set_price_wei = db.Column(WeiAmount, nullable=False, default=0)
    set_stock = db.Column(db.Integer, nullable=False, default=0)
    # Boxes per set (informational)
    set_boxes = db.Column(db.Integer, nullable=False, default=0)

    price_wei = db.Column(WeiAmount, nullable=False, default=0)

    in_stock = db.Column(db.Boolean, nullable=False, default=False)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    __mapper_args__ = {"version_id_col": version_id}

    @property
    def is_active(self) -> bool:
        return self.status == PRODUCT_STATUS_ACTIVE

    def mode_enabled(self, is_set: bool) -> bool:
        return self.enable_set if is_set else self.enable_individual

    def stock_for(self, is_set: bool) -> int:
        return self.set_stock if is_set else self.individual_stock

    def unit_price_wei(self, is_set: bool) -> int:
        """Mode price; a zero individual price falls back to the legacy flat price."""
        if is_set:
            return self.set_price_wei or 0
        return self.individual_price_wei or self.price_wei or 0

    def __repr__(self) -> str:
        return f"<Product id={self.id} name={self.name!r} status={self.status}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "status": self.status,
            "enable_individual": self.enable_individual,
            "individual_price_wei": self.individual_price_wei,
            "individual_stock": self.individual_stock,
            "enable_set": self.enable_set,
            "set_price_wei": self.set_price_wei,
            "set_stock": self.set_stock,
            "set_boxes": self.set_boxes,
            "price_wei": self.price_wei,
            "in_stock": self.in_stock,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class ProductAuditEntry(db.Model):
    """Immutable catalog audit record: (timestamp, actor, action, data hash)."""
    __tablename__ = "product_audit_entries"
    __table_args__ = (
        db.UniqueConstraint("product_id", "entry_index", name="uq_product_audit_index"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    # 0-based position within the product's trail
    entry_index = db.Column(db.Integer, nullable=False)

    actor_account_id = db.Column(db.Integer, db.ForeignKey("accounts.id"), nullable=False)
    action = db.Column(db.String(32), nullable=False)
    data_hash = db.Column(db.String(64), nullable=False)
    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False)

    product = db.relationship("Product", backref=db.backref("audit_entries", lazy=True, order_by="ProductAuditEntry.entry_index"))
    actor = db.relationship("Account")

    def to_dict(self) -> dict:
        return {
            "product_id": self.product_id,
            "index": self.entry_index,
            "actor_account_id": self.actor_account_id,
            "actor_address": self.actor.address if self.actor else None,
            "action": self.action,
            "data_hash": self.data_hash,
            "occurred_at": to_utc_z(self.occurred_at),
        }
