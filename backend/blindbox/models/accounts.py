from __future__ import annotations

import enum

from ..extensions import db
from ..time_utils import to_utc_z


class Role(str, enum.Enum):
    NONE = "NONE"
    BUYER = "BUYER"
    DELIVERY = "DELIVERY"
    ADMIN = "ADMIN"
    SELLER = "SELLER"


class Account(db.Model):
    """
    Ledger identity keyed by wallet address.

    Role flags are kept in step with `role`: an account is never both
    admin and delivery man. Accounts are never deleted, only reassigned
    or deactivated.
    """
    __tablename__ = "accounts"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)

    # Normalized (trimmed, lower-case) wallet address
    address = db.Column(db.String(128), nullable=False, unique=True, index=True)

    role = db.Column(db.String(16), nullable=False, default=Role.NONE.value, index=True)
    is_admin = db.Column(db.Boolean, nullable=False, default=False)
    is_delivery_man = db.Column(db.Boolean, nullable=False, default=False)

    # Profile (web layer)
    name = db.Column(db.String(255), nullable=True)
    contact = db.Column(db.String(128), nullable=True)
    postal_address = db.Column(db.Text, nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    def __repr__(self) -> str:
        return f"<Account id={self.id} address={self.address!r} role={self.role}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "address": self.address,
            "role": self.role,
            "is_admin": self.is_admin,
            "is_delivery_man": self.is_delivery_man,
            "name": self.name,
            "contact": self.contact,
            "postal_address": self.postal_address,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class Marketplace(db.Model):
    """
    Singleton ledger header.

    WHY: The owner is the one identity allowed to appoint admins. It is set
    once by `init_ledger` and never updated afterwards.
    """
    __tablename__ = "marketplace"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    owner_account_id = db.Column(db.Integer, db.ForeignKey("accounts.id"), nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    owner = db.relationship("Account")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "owner_account_id": self.owner_account_id,
            "owner_address": self.owner.address if self.owner else None,
            "created_at": to_utc_z(self.created_at),
        }
