"""
services/lifecycle_service.py — Group status transitions, locking and purge.

This file is the ONLY place that assigns `group.status`. Every other service
goes through transition().

Transition table:
  active    → active      (edits: touches the row, bumps version)
  active    → completed   (last pending edge resolved, or explicit complete)
  completed → active      (a new expense was added)
  active    → deleted
  completed → deleted
  anything else           INVALID_STATUS_TRANSITION (422)

Per-group serialisation:
  lock_group() takes SELECT ... FOR UPDATE on the group row (a no-op on
  SQLite). Every mutating service calls it first and then touches the row,
  so Group.version is bumped on commit and a writer that slipped past the
  lock fails with StaleDataError instead of overwriting silently.

Layer rules:
  - No Flask imports. Config values arrive as plain arguments.
  - Commits are the route's responsibility — only flush here. The one
    exception is purge_expired(), which runs outside any request and
    commits once per purged group.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from backend.app.errors import AppError, ErrorCode
from backend.app.models.audit_entry import AuditAction, AuditEntry
from backend.app.models.base import utcnow
from backend.app.models.edge import ConsolidatedEdge
from backend.app.models.expense import Expense
from backend.app.models.group import Group, GroupStatus
from backend.app.models.membership import Membership
from backend.app.models.payee_share import PayeeShare
from backend.app.models.settlement import Settlement
from backend.app.services import audit_service

logger = logging.getLogger(__name__)

_TRANSITIONS: dict[GroupStatus, frozenset[GroupStatus]] = {
    GroupStatus.ACTIVE: frozenset({
        GroupStatus.ACTIVE,
        GroupStatus.COMPLETED,
        GroupStatus.DELETED,
    }),
    GroupStatus.COMPLETED: frozenset({
        GroupStatus.ACTIVE,
        GroupStatus.DELETED,
    }),
    GroupStatus.DELETED: frozenset(),
}


# ── Transitions ────────────────────────────────────────────────────────────

def can_transition(current: GroupStatus, target: GroupStatus) -> bool:
    return target in _TRANSITIONS[current]


def touch(group: Group, now: datetime | None = None) -> None:
    """Stamps updated_at. Dirtying the row is what bumps Group.version."""
    group.updated_at = now or utcnow()


def transition(group: Group, target: GroupStatus, now: datetime | None = None) -> Group:
    """
    Moves `group` to `target` and touches it.

    Raises:
        AppError(INVALID_STATUS_TRANSITION, 422) — not in the table above.
    """
    target = GroupStatus(target)
    if not can_transition(group.status, target):
        raise AppError(
            ErrorCode.INVALID_STATUS_TRANSITION,
            f"Group {group.id} cannot move from "
            f"'{group.status.value}' to '{target.value}'.",
            422,
        )

    now = now or utcnow()
    group.status = target
    touch(group, now)

    if target == GroupStatus.DELETED:
        group.deleted_at = now

    return group


# ── Access helpers ─────────────────────────────────────────────────────────
# Shared by every service that reads or writes a group.

def lock_group(group_id: int, session: Session, read: bool = False) -> Group:
    """
    Loads the group under a row lock: FOR UPDATE, or FOR SHARE when `read`.

    Raises:
        AppError(GROUP_NOT_FOUND, 404)
    """
    stmt = (
        select(Group)
        .where(Group.id == group_id)
        .with_for_update(read=read)
        .execution_options(populate_existing=True)
    )
    group = session.execute(stmt).scalar_one_or_none()
    if group is None:
        raise AppError(
            ErrorCode.GROUP_NOT_FOUND,
            f"Group {group_id} does not exist.",
            404,
        )
    return group


def require_member(group: Group, member: str, session: Session) -> Membership:
    """
    Raises FORBIDDEN (403) if `member` is not in the group.
    Non-members receive 403, not 404.
    """
    membership = session.execute(
        select(Membership).where(
            Membership.group_id == group.id,
            Membership.member == member,
        )
    ).scalar_one_or_none()

    if membership is None:
        raise AppError(
            ErrorCode.FORBIDDEN,
            f"You are not a member of group {group.id}.",
            403,
        )
    return membership


def require_active(group: Group) -> None:
    """Raises GROUP_NOT_ACTIVE (422) unless the group is active."""
    if not group.is_active:
        raise AppError(
            ErrorCode.GROUP_NOT_ACTIVE,
            f"Group {group.id} is {group.status.value}; this action needs an active group.",
            422,
        )


def require_not_deleted(group: Group) -> None:
    """Deleted groups are read-only."""
    if group.is_deleted:
        raise AppError(
            ErrorCode.GROUP_NOT_ACTIVE,
            f"Group {group.id} has been deleted and is read-only.",
            422,
        )


def has_pending_edges(group_id: int, session: Session) -> bool:
    stmt = (
        select(ConsolidatedEdge.id)
        .where(
            ConsolidatedEdge.group_id == group_id,
            ConsolidatedEdge.resolved.is_(False),
        )
        .limit(1)
    )
    return session.execute(stmt).first() is not None


# ── Public service functions ───────────────────────────────────────────────

def delete_group(
        group_id: int,
        caller: str,
        session: Session,
        retention_days: int = 7,
        now: datetime | None = None,
) -> Group:
    """
    Marks the group deleted and schedules it for purge.

    The group stays readable (history views) until purge_after passes.

    Raises:
        AppError(GROUP_NOT_FOUND, 404)
        AppError(FORBIDDEN, 403)              — caller not a member
        AppError(GROUP_ALREADY_DELETED, 422)
    """
    now = now or utcnow()
    group = lock_group(group_id, session)
    require_member(group, caller, session)

    if group.is_deleted:
        raise AppError(
            ErrorCode.GROUP_ALREADY_DELETED,
            f"Group {group_id} is already deleted.",
            422,
        )

    transition(group, GroupStatus.DELETED, now)
    group.purge_after = now + timedelta(days=retention_days)
    session.flush()

    audit_service.record(
        group,
        AuditAction.DELETE_GROUP,
        caller,
        f"{caller} deleted group '{group.name}'.",
        session,
    )

    logger.info(
        "group %s deleted by %s, purge after %s",
        group.id, caller, group.purge_after.isoformat(),
    )
    return group


def complete_group(group_id: int, caller: str, session: Session) -> Group:
    """
    Explicitly completes an active group with nothing left to settle.

    Raises:
        AppError(GROUP_NOT_FOUND, 404)
        AppError(FORBIDDEN, 403)
        AppError(GROUP_NOT_ACTIVE, 422)
        AppError(PENDING_EDGES_REMAIN, 422)
    """
    group = lock_group(group_id, session)
    require_member(group, caller, session)
    require_active(group)

    if has_pending_edges(group.id, session):
        raise AppError(
            ErrorCode.PENDING_EDGES_REMAIN,
            f"Group {group_id} still has unsettled payments.",
            422,
        )

    transition(group, GroupStatus.COMPLETED)
    session.flush()

    logger.info("group %s completed by %s", group.id, caller)
    return group


# ── Purge ──────────────────────────────────────────────────────────────────

def purge_group(group_id: int, session: Session, now: datetime | None = None) -> bool:
    """
    Permanently removes one expired deleted group and everything beneath it.

    The group is locked and its expiry re-checked in SQL before anything is
    removed, so a concurrent sweep or a group that is not (or no longer)
    eligible is left alone.

    Returns:
        True if the group was removed, False if it was unknown or not yet
        eligible. Never raises for a missing id.
    """
    now = now or utcnow()

    eligible = session.execute(
        select(Group.id)
        .where(
            Group.id == group_id,
            Group.status == GroupStatus.DELETED,
            Group.purge_after.is_not(None),
            Group.purge_after <= now,
        )
        .with_for_update()
    ).scalar_one_or_none()

    if eligible is None:
        return False

    expense_ids = select(Expense.id).where(Expense.group_id == group_id)

    session.execute(delete(PayeeShare).where(PayeeShare.expense_id.in_(expense_ids)))
    session.execute(delete(Expense).where(Expense.group_id == group_id))
    session.execute(delete(ConsolidatedEdge).where(ConsolidatedEdge.group_id == group_id))
    session.execute(delete(Settlement).where(Settlement.group_id == group_id))
    session.execute(delete(AuditEntry).where(AuditEntry.group_id == group_id))
    session.execute(delete(Membership).where(Membership.group_id == group_id))
    session.execute(delete(Group).where(Group.id == group_id))
    session.flush()

    return True


def purge_expired(session: Session, now: datetime | None = None) -> list[int]:
    """
    Purges every deleted group whose retention window has passed.

    One short transaction per group: a failure on one group rolls back only
    that group. Safe to run repeatedly and from several workers.

    Returns:
        Ids of the groups actually removed by this call.
    """
    now = now or utcnow()

    candidates = session.execute(
        select(Group.id)
        .where(
            Group.status == GroupStatus.DELETED,
            Group.purge_after.is_not(None),
            Group.purge_after <= now,
        )
        .order_by(Group.id)
    ).scalars().all()
    session.commit()

    purged = []
    for group_id in candidates:
        try:
            removed = purge_group(group_id, session, now)
            session.commit()
        except Exception:
            session.rollback()
            raise
        if removed:
            purged.append(group_id)

    if purged:
        logger.info("purged %d expired group(s): %s", len(purged), purged)
    return purged
