"""
Column types shared by the ledger models.

Quantities and prices are ``decimal.Decimal`` end to end. PostgreSQL keeps
them in ``NUMERIC``; SQLite has no exact decimal storage, so there the value
is persisted as its canonical string and parsed back on load.
"""

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

import sqlalchemy as sa
from sqlalchemy.types import TypeDecorator

QUANTITY_SCALE = 4
QUANTUM = Decimal(1).scaleb(-QUANTITY_SCALE)   # 0.0001
ZERO = Decimal("0").quantize(QUANTUM)


def to_decimal(value, field: str = "quantity") -> Decimal:
    """Coerce user input to a quantized Decimal.

    Floats are converted through ``str`` so 0.1 stays 0.1. NaN and
    infinities are rejected with ValueError.
    """
    if isinstance(value, Decimal):
        dec = value
    elif isinstance(value, bool) or value is None:
        raise ValueError(f"{field} must be a number")
    elif isinstance(value, (int, float, str)):
        try:
            dec = Decimal(str(value).strip())
        except InvalidOperation:
            raise ValueError(f"{field} must be a number") from None
    else:
        raise ValueError(f"{field} must be a number")
    if not dec.is_finite():
        raise ValueError(f"{field} must be finite")
    return dec.quantize(QUANTUM, rounding=ROUND_HALF_UP)


class ExactDecimal(TypeDecorator):
    """NUMERIC(18, 4) that round-trips exactly on every backend."""

    impl = sa.Numeric(18, QUANTITY_SCALE, asdecimal=True)
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == "sqlite":
            return dialect.type_descriptor(sa.String(40))
        return dialect.type_descriptor(sa.Numeric(18, QUANTITY_SCALE, asdecimal=True))

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        dec = to_decimal(value)
        if dialect.name == "sqlite":
            return str(dec)
        return dec

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return Decimal(str(value)).quantize(QUANTUM)


def fmt(value: Decimal | None) -> str | None:
    """Serialize a Decimal for JSON without float conversion."""
    return None if value is None else str(value)
