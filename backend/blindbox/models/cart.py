from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class CartItem(db.Model):
    """
    One pending purchase line in a buyer's cart.

    `position` is the 0-based index the buyer sees; removal swaps the last
    line into the freed slot so positions stay dense.
    """
    __tablename__ = "cart_items"
    __table_args__ = (
        db.UniqueConstraint("buyer_account_id", "position", name="uq_cart_items_buyer_position"),
        db.CheckConstraint("quantity > 0", name="ck_cart_items_quantity"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    buyer_account_id = db.Column(db.Integer, db.ForeignKey("accounts.id"), nullable=False, index=True)
    position = db.Column(db.Integer, nullable=False)

    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)
    quantity = db.Column(db.Integer, nullable=False)
    is_set = db.Column(db.Boolean, nullable=False, default=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    product = db.relationship("Product")

    def to_dict(self) -> dict:
        return {
            "index": self.position,
            "product_id": self.product_id,
            "product_name": self.product.name if self.product else None,
            "quantity": self.quantity,
            "is_set": self.is_set,
            "created_at": to_utc_z(self.created_at),
        }
