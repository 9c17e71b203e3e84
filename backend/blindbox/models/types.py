from __future__ import annotations

from decimal import Decimal

from sqlalchemy.types import Numeric, String, TypeDecorator

# Enough digits for any uint256 amount
WEI_DIGITS = 78


class WeiAmount(TypeDecorator):
    """
    Unbounded integer amount in the smallest currency unit.

    Stored as NUMERIC(78, 0) where the backend has it. SQLite INTEGER tops
    out at 2^63 - 1 and its NUMERIC affinity degrades large values to REAL,
    so there the column holds the exact decimal text instead. Values always
    load back as `int`.
    """
    impl = Numeric
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == "sqlite":
            return dialect.type_descriptor(String(WEI_DIGITS + 1))
        return dialect.type_descriptor(Numeric(WEI_DIGITS, 0))

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if dialect.name == "sqlite":
            return str(int(value))
        return Decimal(int(value))

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return int(value)
