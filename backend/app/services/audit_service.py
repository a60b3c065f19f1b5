"""
services/audit_service.py — Append-only audit trail.

record() is called synchronously by every mutating service (add/edit/delete
expense, delete group) inside the caller's transaction. It only flushes, so
an entry commits together with the mutation it describes or not at all.

Entries are never updated. They are removed only by the purge sweep, along
with the rest of the group.
"""

from __future__ import annotations

from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.orm import Session

from backend.app.models.audit_entry import AuditAction, AuditEntry
from backend.app.models.expense import Expense
from backend.app.models.group import Group


def record(
        group: Group,
        action: AuditAction,
        actor: str,
        description: str,
        session: Session,
        expense: Expense | None = None,
        old_amount: Decimal | None = None,
        new_amount: Decimal | None = None,
) -> AuditEntry:
    """Appends one entry for `group`. Flushes; never commits."""
    entry = AuditEntry(
        group_id=group.id,
        group_name=group.name,
        action=action,
        actor=actor,
        expense_id=expense.id if expense is not None else None,
        expense_name=expense.name if expense is not None else None,
        old_amount=old_amount,
        new_amount=new_amount,
        description=description,
    )
    session.add(entry)
    session.flush()
    return entry


def history(group_id: int, session: Session, limit: int = 50) -> list[AuditEntry]:
    """Newest first; entries written in the same instant are ordered by id."""
    stmt = (
        select(AuditEntry)
        .where(AuditEntry.group_id == group_id)
        .order_by(AuditEntry.created_at.desc(), AuditEntry.id.desc())
        .limit(limit)
    )
    return list(session.execute(stmt).scalars().all())
