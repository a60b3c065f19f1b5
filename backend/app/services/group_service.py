"""
services/group_service.py — Group and membership business logic.

Authorization rules:
  - Any member may read a group, add members, or delete / complete it.
  - Removing a member: the group creator may remove anyone; any member
    may remove themselves.
  - Anyone holding the invite code may join.

Membership rules:
  - A member referenced by an active expense (as payer or payee) or by a
    pending edge cannot be removed (MEMBER_IN_USE, 422).
  - Deleted groups are read-only: no joins, adds or removals.

Layer rules:
  - No Flask imports. Pure Python with a SQLAlchemy session parameter.
  - Commits are the route's responsibility — only flush here.
"""

from __future__ import annotations

import secrets
import string
from datetime import datetime

from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from backend.app.errors import AppError, ErrorCode
from backend.app.models.audit_entry import AuditEntry
from backend.app.models.base import utcnow
from backend.app.models.edge import ConsolidatedEdge
from backend.app.models.expense import Expense
from backend.app.models.group import Group, GroupStatus
from backend.app.models.membership import Membership
from backend.app.models.payee_share import PayeeShare
from backend.app.services import audit_service, lifecycle_service, settlement_service
from backend.app.services.split_calculator import normalize_member

INVITE_ALPHABET = string.ascii_uppercase + string.digits


# ── Private helpers ────────────────────────────────────────────────────────

def generate_invite_code(length: int = 8) -> str:
    """Random A-Z0-9 code from a CSPRNG."""
    return "".join(secrets.choice(INVITE_ALPHABET) for _ in range(length))


def _new_invite_code(session: Session, length: int) -> str:
    while True:
        code = generate_invite_code(length)
        taken = session.execute(
            select(Group.id).where(Group.invite_code == code)
        ).first()
        if taken is None:
            return code


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def _group_dict(group: Group) -> dict:
    return {
        "id": group.id,
        "name": group.name,
        "status": group.status.value,
        "invite_code": group.invite_code,
        "created_by": group.created_by,
        "created_at": _iso(group.created_at),
        "updated_at": _iso(group.updated_at),
        "deleted_at": _iso(group.deleted_at),
        "purge_after": _iso(group.purge_after),
        "version": group.version,
    }


def _member_dict(membership: Membership) -> dict:
    return {
        "member": membership.member,
        "name": membership.name,
        "joined_at": _iso(membership.joined_at),
    }


def _expense_summary(expense: Expense) -> dict:
    return {
        "id": expense.id,
        "name": expense.name,
        "total_amount": expense.total_amount,
        "payer": expense.payer,
        "split_policy": expense.split_policy.value,
        "created_at": _iso(expense.created_at),
    }


def _audit_dict(entry: AuditEntry) -> dict:
    return {
        "id": entry.id,
        "group_id": entry.group_id,
        "group_name": entry.group_name,
        "action": entry.action.value,
        "actor": entry.actor,
        "expense_id": entry.expense_id,
        "expense_name": entry.expense_name,
        "old_amount": entry.old_amount,
        "new_amount": entry.new_amount,
        "description": entry.description,
        "created_at": _iso(entry.created_at),
    }


def _memberships(group_id: int, session: Session) -> list[Membership]:
    stmt = (
        select(Membership)
        .where(Membership.group_id == group_id)
        .order_by(Membership.joined_at.asc(), Membership.id.asc())
    )
    return list(session.execute(stmt).scalars().all())


def _add_membership(
        group: Group,
        member: str,
        session: Session,
        display_name: str | None = None,
) -> Membership:
    existing = session.execute(
        select(Membership).where(
            Membership.group_id == group.id,
            Membership.member == member,
        )
    ).scalar_one_or_none()

    if existing is not None:
        raise AppError(
            ErrorCode.ALREADY_MEMBER,
            f"{member} is already a member of group {group.id}.",
            409,
        )

    membership = Membership(group_id=group.id, member=member, display_name=display_name)
    session.add(membership)
    return membership


def _member_in_use(group_id: int, member: str, session: Session) -> bool:
    as_payer = select(Expense.id).where(
        Expense.group_id == group_id,
        Expense.deleted_at.is_(None),
        Expense.payer == member,
    )
    as_payee = (
        select(PayeeShare.id)
        .join(Expense, PayeeShare.expense_id == Expense.id)
        .where(
            Expense.group_id == group_id,
            Expense.deleted_at.is_(None),
            PayeeShare.member == member,
            PayeeShare.amount > 0,
        )
    )
    in_edge = select(ConsolidatedEdge.id).where(
        ConsolidatedEdge.group_id == group_id,
        ConsolidatedEdge.resolved.is_(False),
        or_(
            ConsolidatedEdge.from_member == member,
            ConsolidatedEdge.to_member == member,
        ),
    )
    return any(
        session.execute(stmt.limit(1)).first() is not None
        for stmt in (as_payer, as_payee, in_edge)
    )


# ── Public service functions ───────────────────────────────────────────────

def create_group(
        name: str,
        creator: str,
        members: list[dict],
        session: Session,
        invite_code_length: int = 8,
) -> dict:
    """
    Creates a new active group. The creator is always the first member.

    Args:
        name:    Group name (validated by schema — non-empty, max 100 chars).
        creator: The authenticated member (flask.g.member).
        members: [{"member": str, "display_name": str | None}], may repeat
                 the creator; duplicates are collapsed.

    Returns: dict with group details and initial member list.
    """
    group = Group(
        name=name,
        status=GroupStatus.ACTIVE,
        invite_code=_new_invite_code(session, invite_code_length),
        created_by=creator,
    )
    session.add(group)
    session.flush()  # populate group.id before creating memberships

    names = {creator: None}
    for entry in members:
        member = normalize_member(entry["member"])
        if names.get(member) is None:
            names[member] = entry.get("display_name")

    for member, display_name in names.items():
        session.add(Membership(group_id=group.id, member=member, display_name=display_name))
    session.flush()

    result = _group_dict(group)
    result["members"] = [_member_dict(m) for m in _memberships(group.id, session)]
    return result


def list_groups(caller: str, session: Session) -> list[dict]:
    """
    Returns the caller's groups that are not deleted, oldest first.

    Lightweight dicts; the full member list is available via get_group().
    """
    stmt = (
        select(Group)
        .join(Membership, Group.id == Membership.group_id)
        .where(
            Membership.member == caller,
            Group.status != GroupStatus.DELETED,
        )
        .order_by(Group.created_at.asc(), Group.id.asc())
    )
    return [_group_dict(g) for g in session.execute(stmt).scalars().all()]


def get_group(group_id: int, caller: str, session: Session) -> dict:
    """
    Group + members + active expenses + edges, read as one consistent view.

    Deleted groups are still returned (read-only) until purged.
    """
    group = lifecycle_service.lock_group(group_id, session, read=True)
    lifecycle_service.require_member(group, caller, session)

    memberships = _memberships(group.id, session)
    names = {m.member: m.name for m in memberships}

    expenses = session.execute(
        select(Expense)
        .where(
            Expense.group_id == group.id,
            Expense.deleted_at.is_(None),
        )
        .order_by(Expense.created_at.desc(), Expense.id.desc())
    ).scalars().all()

    edges = [
        settlement_service.serialize_edge(e, names)
        for e in settlement_service.get_edges(group.id, session)
    ]

    result = _group_dict(group)
    result["members"] = [_member_dict(m) for m in memberships]
    result["expenses"] = [_expense_summary(e) for e in expenses]
    result["edges"] = edges
    result["all_resolved"] = all(e["resolved"] for e in edges)
    return result


def add_members(
        group_id: int,
        caller: str,
        members: list[dict],
        session: Session,
) -> dict:
    """
    Adds one or more members to a group.

    Raises:
      AppError(GROUP_NOT_FOUND, 404)
      AppError(FORBIDDEN, 403)        — caller is not a member
      AppError(GROUP_NOT_ACTIVE, 422) — group is deleted
      AppError(ALREADY_MEMBER, 409)   — one of them is already in the group
    """
    group = lifecycle_service.lock_group(group_id, session)
    lifecycle_service.require_member(group, caller, session)
    lifecycle_service.require_not_deleted(group)

    seen = set()
    for entry in members:
        member = normalize_member(entry["member"])
        if member in seen:
            continue
        seen.add(member)
        _add_membership(group, member, session, entry.get("display_name"))

    lifecycle_service.touch(group)
    session.flush()

    result = _group_dict(group)
    result["members"] = [_member_dict(m) for m in _memberships(group.id, session)]
    return result


def remove_member(
        group_id: int,
        caller: str,
        member: str,
        session: Session,
) -> None:
    """
    Removes a member from a group.

    Raises:
      AppError(GROUP_NOT_FOUND, 404)
      AppError(FORBIDDEN, 403)         — not the creator and not removing self
      AppError(GROUP_NOT_ACTIVE, 422)  — group is deleted
      AppError(MEMBER_NOT_FOUND, 404)  — target is not in the group
      AppError(MEMBER_IN_USE, 422)     — target still has debts or expenses
    """
    member = normalize_member(member)

    group = lifecycle_service.lock_group(group_id, session)
    lifecycle_service.require_member(group, caller, session)
    lifecycle_service.require_not_deleted(group)

    if caller != group.created_by and caller != member:
        raise AppError(
            ErrorCode.FORBIDDEN,
            "You may only remove yourself from a group unless you created it.",
            403,
        )

    membership = session.execute(
        select(Membership).where(
            Membership.group_id == group.id,
            Membership.member == member,
        )
    ).scalar_one_or_none()

    if membership is None:
        raise AppError(
            ErrorCode.MEMBER_NOT_FOUND,
            f"{member} is not a member of group {group_id}.",
            404,
        )

    if _member_in_use(group.id, member, session):
        raise AppError(
            ErrorCode.MEMBER_IN_USE,
            f"{member} still has expenses or unsettled payments in group {group_id}.",
            422,
        )

    session.delete(membership)
    lifecycle_service.touch(group)
    session.flush()


def join_group(
        invite_code: str,
        caller: str,
        session: Session,
        display_name: str | None = None,
) -> dict:
    """
    Adds the caller to the group holding `invite_code`.

    Raises:
      AppError(INVITE_NOT_FOUND, 404)  — no such code, or the group is deleted
      AppError(ALREADY_MEMBER, 409)
    """
    group_id = session.execute(
        select(Group.id).where(
            Group.invite_code == invite_code.strip().upper(),
            Group.status != GroupStatus.DELETED,
        )
    ).scalar_one_or_none()

    if group_id is None:
        raise AppError(
            ErrorCode.INVITE_NOT_FOUND,
            "That invite code does not match any open group.",
            404,
            field="invite_code",
        )

    group = lifecycle_service.lock_group(group_id, session)
    lifecycle_service.require_not_deleted(group)
    _add_membership(group, caller, session, display_name)
    lifecycle_service.touch(group)
    session.flush()

    result = _group_dict(group)
    result["members"] = [_member_dict(m) for m in _memberships(group.id, session)]
    return result


def group_history(caller: str, session: Session, now: datetime | None = None) -> list[dict]:
    """
    The caller's archived groups: completed ones, and deleted ones still
    inside their retention window. Each carries its settlement records.
    Most recently changed first.
    """
    now = now or utcnow()

    stmt = (
        select(Group)
        .join(Membership, Group.id == Membership.group_id)
        .where(
            Membership.member == caller,
            or_(
                Group.status == GroupStatus.COMPLETED,
                (Group.status == GroupStatus.DELETED) & (Group.purge_after > now),
            ),
        )
        .order_by(Group.updated_at.desc(), Group.id.desc())
    )

    result = []
    for group in session.execute(stmt).scalars().all():
        names = settlement_service.member_names(group.id, session)
        entry = _group_dict(group)
        entry["settlements"] = [
            {
                "from": s.from_member,
                "from_name": names.get(s.from_member, s.from_member.split("@")[0]),
                "to": s.to_member,
                "to_name": names.get(s.to_member, s.to_member.split("@")[0]),
                "amount": s.amount,
                "resolved_by": s.resolved_by,
                "created_at": _iso(s.created_at),
            }
            for s in settlement_service.list_settlements(group.id, session)
        ]
        result.append(entry)
    return result


def edit_history(
        group_id: int,
        caller: str,
        session: Session,
        limit: int = 50,
) -> list[dict]:
    """The group's audit trail, newest first. Readable while deleted."""
    group = lifecycle_service.lock_group(group_id, session, read=True)
    lifecycle_service.require_member(group, caller, session)
    return [_audit_dict(e) for e in audit_service.history(group.id, session, limit)]
