from __future__ import annotations

from decimal import Decimal

from sqlalchemy.types import String, TypeDecorator

from ..extensions import db
from ..money import to_money


class Money(TypeDecorator):
    """
    Monetary column stored as a 2-decimal string ("1430.00").

    Reads come back as Decimal, so no value ever passes through a binary float.
    """
    impl = String(24)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        return str(to_money(value))

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return Decimal(value)


def enum_column(enum_cls, **kwargs):
    """String-backed column holding enum_cls values (no native DB enum)."""
    return db.Column(
        db.Enum(
            enum_cls,
            native_enum=False,
            length=32,
            values_callable=lambda members: [m.value for m in members],
            validate_strings=True,
        ),
        **kwargs,
    )
