"""
models/base.py — Column helpers shared by every model.

No business logic. No imports from services or routes.
"""

from __future__ import annotations

import enum
from datetime import datetime, timezone

from sqlalchemy import Enum, Numeric


def utcnow() -> datetime:
    """Timezone-aware UTC now. Used as the Python-side column default."""
    return datetime.now(timezone.utc)


def enum_values(enum_cls: type[enum.Enum]) -> list[str]:
    """Ensure SQLAlchemy stores enum values (e.g., 'active'), not names ('ACTIVE')."""
    return [member.value for member in enum_cls]


def value_enum(enum_cls: type[enum.Enum], name: str) -> Enum:
    """
    Enum column type stored as VARCHAR + CHECK rather than a native PG type,
    so the same models run on PostgreSQL and on the SQLite test database.
    """
    return Enum(
        enum_cls,
        name=name,
        native_enum=False,
        validate_strings=True,
        values_callable=enum_values,
        length=32,
    )


def money() -> Numeric:
    """NUMERIC(12, 2). Never Float."""
    return Numeric(12, 2, asdecimal=True)
