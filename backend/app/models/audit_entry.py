"""
models/audit_entry.py — Audit trail table definition.

No business logic. No imports from services or routes.

Append-only. Rows are inserted by services/audit_service.record() inside the
same transaction as the mutation they describe, so a rolled-back mutation
never leaves an entry behind. Rows are removed only when the purge sweep
removes the whole group.

`group_name` is copied in so the history screen still has something to show
once the group itself is gone from the caller's list.
"""

from __future__ import annotations

import enum
from datetime import datetime
from decimal import Decimal

from sqlalchemy import DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from backend.app.extensions import db
from backend.app.models.base import money, utcnow, value_enum


class AuditAction(str, enum.Enum):
    ADD_EXPENSE    = "add_expense"
    EDIT_EXPENSE   = "edit_expense"
    DELETE_EXPENSE = "delete_expense"
    DELETE_GROUP   = "delete_group"


class AuditEntry(db.Model):
    __tablename__ = "audit_entries"

    __table_args__ = (
        Index("idx_audit_group_created", "group_id", "created_at"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)

    group_id: Mapped[int] = mapped_column(
        ForeignKey("groups.id", ondelete="CASCADE"),
        nullable=False,
    )

    group_name: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
    )

    action: Mapped[AuditAction] = mapped_column(
        value_enum(AuditAction, "audit_action_enum"),
        nullable=False,
    )

    actor: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        index=True,
    )

    # Plain column, not a FK: expenses are soft-deleted and may be gone
    # from the active list while their history remains.
    expense_id: Mapped[int | None] = mapped_column(
        Integer,
        nullable=True,
    )

    expense_name: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
    )

    old_amount: Mapped[Decimal | None] = mapped_column(
        money(),
        nullable=True,
    )

    new_amount: Mapped[Decimal | None] = mapped_column(
        money(),
        nullable=True,
    )

    description: Mapped[str] = mapped_column(
        Text,
        nullable=False,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
    )

    def __repr__(self) -> str:  # pragma: no cover
        return (
            f"<AuditEntry id={self.id} "
            f"group_id={self.group_id} "
            f"action={self.action.value} "
            f"actor={self.actor!r}>"
        )
