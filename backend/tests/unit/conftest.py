"""
tests/unit/conftest.py — Shared setup for unit tests.

Unit tests build ORM objects without an app or database. Relationships are
declared by class name, so every model module must be imported before the
first instance is created.
"""

from backend.app.models import (  # noqa: F401
    audit_entry,
    edge,
    expense,
    group,
    membership,
    payee_share,
    settlement,
)
