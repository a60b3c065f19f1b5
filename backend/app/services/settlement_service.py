"""
services/settlement_service.py — Edge settlement state machine.

Per-edge states: pending → resolved. `resolved` is terminal for that
(from, to) pair unless the edge set is re-derived.

Recomputation rule (reconcile_edges):
  For a pair that was resolved before and still exists after:
    new amount <= resolved_amount → stays resolved; amount follows the new
                                     figure, resolved_at/resolved_amount kept.
    new amount >  resolved_amount → back to pending at the full new amount
                                     (EDGE_REOPENED warning).
  A pair with no prior edge is pending. A pair that disappears is dropped.

Resolve (resolve_edge):
  - Group must be active (GROUP_NOT_ACTIVE, 422).
  - Caller must be a member and the debtor (`from`) of the edge (FORBIDDEN).
  - Edge must exist (EDGE_NOT_FOUND, 404) and be pending
    (EDGE_ALREADY_RESOLVED, 422).
  - Every resolve appends a Settlement row for the history screens.
  - Resolving the LAST pending edge with keep_active=False completes the
    group. Resolving any other edge never changes group status.

Layer rules:
  - No Flask imports. Pure Python with a SQLAlchemy session parameter.
  - Commits are the route's responsibility — only flush here.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Iterable

from sqlalchemy import select
from sqlalchemy.orm import Session

from backend.app.errors import AppError, ErrorCode
from backend.app.models.base import utcnow
from backend.app.models.edge import ConsolidatedEdge
from backend.app.models.group import Group, GroupStatus
from backend.app.models.membership import Membership
from backend.app.models.settlement import Settlement
from backend.app.services import lifecycle_service


@dataclass
class EdgeState:
    from_member: str
    to_member: str
    amount: Decimal
    resolved: bool = False
    resolved_at: datetime | None = None
    resolved_amount: Decimal | None = None

    @property
    def pair(self) -> tuple[str, str]:
        return (self.from_member, self.to_member)


# ── Recomputation ──────────────────────────────────────────────────────────

def reconcile_edges(previous: Iterable, derived: Iterable) -> tuple[list[EdgeState], list[tuple[str, str]]]:
    """
    Carries resolved state from `previous` edges onto freshly `derived` ones.

    Args:
        previous: Objects with from_member, to_member, amount, resolved,
                  resolved_at, resolved_amount (ORM rows or EdgeState).
        derived:  Objects with from_member, to_member, amount
                  (debt_service.EdgeData).

    Returns:
        (states, reopened) — states in `derived` order; reopened lists the
        pairs that were resolved before and are pending again.
    """
    before = {(e.from_member, e.to_member): e for e in previous}

    states: list[EdgeState] = []
    reopened: list[tuple[str, str]] = []

    for edge in derived:
        pair = (edge.from_member, edge.to_member)
        old = before.get(pair)

        if old is not None and old.resolved:
            covered = old.resolved_amount if old.resolved_amount is not None else old.amount
            if edge.amount <= covered:
                states.append(EdgeState(
                    from_member=edge.from_member,
                    to_member=edge.to_member,
                    amount=edge.amount,
                    resolved=True,
                    resolved_at=old.resolved_at,
                    resolved_amount=old.resolved_amount if old.resolved_amount is not None else old.amount,
                ))
                continue
            reopened.append(pair)

        states.append(EdgeState(edge.from_member, edge.to_member, edge.amount))

    return states, reopened


# ── Read helpers ───────────────────────────────────────────────────────────

def get_edges(group_id: int, session: Session) -> list[ConsolidatedEdge]:
    stmt = (
        select(ConsolidatedEdge)
        .where(ConsolidatedEdge.group_id == group_id)
        .order_by(ConsolidatedEdge.from_member, ConsolidatedEdge.to_member)
    )
    return list(session.execute(stmt).scalars().all())


def member_names(group_id: int, session: Session) -> dict[str, str]:
    """{member: display name} for the group."""
    rows = session.execute(
        select(Membership).where(Membership.group_id == group_id)
    ).scalars()
    return {m.member: m.name for m in rows}


def serialize_edge(edge: ConsolidatedEdge, names: dict[str, str]) -> dict:
    return {
        "from": edge.from_member,
        "from_name": names.get(edge.from_member, edge.from_member.split("@")[0]),
        "to": edge.to_member,
        "to_name": names.get(edge.to_member, edge.to_member.split("@")[0]),
        "amount": edge.amount,
        "resolved": edge.resolved,
        "resolved_at": edge.resolved_at.isoformat() if edge.resolved_at else None,
    }


def list_edges(group_id: int, caller: str, session: Session) -> dict:
    """
    The group's consolidated edges, read under a shared lock so status and
    edges come from the same version of the group.
    """
    group = lifecycle_service.lock_group(group_id, session, read=True)
    lifecycle_service.require_member(group, caller, session)

    names = member_names(group.id, session)
    edges = [serialize_edge(e, names) for e in get_edges(group.id, session)]

    return {
        "group_id": group.id,
        "group_status": group.status.value,
        "all_resolved": all(e["resolved"] for e in edges),
        "edges": edges,
    }


# ── Resolve ────────────────────────────────────────────────────────────────

def resolve_edge(
        group_id: int,
        caller: str,
        from_member: str,
        to_member: str,
        session: Session,
        keep_active: bool = False,
) -> dict:
    """
    Marks one pending edge as paid outside the system.

    Returns:
        {group_id, group_name, group_status, all_resolved, edge}

    Raises:
        AppError(GROUP_NOT_FOUND, 404), AppError(FORBIDDEN, 403),
        AppError(GROUP_NOT_ACTIVE, 422), AppError(EDGE_NOT_FOUND, 404),
        AppError(EDGE_ALREADY_RESOLVED, 422)
    """
    group = lifecycle_service.lock_group(group_id, session)
    lifecycle_service.require_member(group, caller, session)
    lifecycle_service.require_active(group)

    if caller != from_member:
        raise AppError(
            ErrorCode.FORBIDDEN,
            "Only the member who owes a payment can mark it as paid.",
            403,
        )

    edge = session.execute(
        select(ConsolidatedEdge).where(
            ConsolidatedEdge.group_id == group.id,
            ConsolidatedEdge.from_member == from_member,
            ConsolidatedEdge.to_member == to_member,
        )
    ).scalar_one_or_none()

    if edge is None:
        raise AppError(
            ErrorCode.EDGE_NOT_FOUND,
            f"{from_member} does not owe {to_member} anything in group {group_id}.",
            404,
        )

    if edge.resolved:
        raise AppError(
            ErrorCode.EDGE_ALREADY_RESOLVED,
            f"The payment from {from_member} to {to_member} is already settled.",
            422,
        )

    now = utcnow()
    edge.resolved = True
    edge.resolved_at = now
    edge.resolved_amount = edge.amount

    session.add(Settlement(
        group_id=group.id,
        from_member=from_member,
        to_member=to_member,
        amount=edge.amount,
        resolved_by=caller,
        created_at=now,
    ))
    session.flush()

    all_resolved = not lifecycle_service.has_pending_edges(group.id, session)

    if all_resolved and not keep_active:
        lifecycle_service.transition(group, GroupStatus.COMPLETED, now)
    else:
        lifecycle_service.touch(group, now)
    session.flush()

    return {
        "group_id": group.id,
        "group_name": group.name,
        "group_status": group.status.value,
        "all_resolved": all_resolved,
        "edge": serialize_edge(edge, member_names(group.id, session)),
    }


# ── Summaries ──────────────────────────────────────────────────────────────

def _summary(caller: str, session: Session, side) -> list[dict]:
    stmt = (
        select(Group, ConsolidatedEdge)
        .join(ConsolidatedEdge, ConsolidatedEdge.group_id == Group.id)
        .where(
            Group.status != GroupStatus.DELETED,
            ConsolidatedEdge.resolved.is_(False),
            side == caller,
        )
        .order_by(Group.id, ConsolidatedEdge.from_member, ConsolidatedEdge.to_member)
    )

    grouped: dict[int, dict] = {}
    names_by_group: dict[int, dict[str, str]] = {}

    for group, edge in session.execute(stmt).all():
        if group.id not in grouped:
            names_by_group[group.id] = member_names(group.id, session)
            grouped[group.id] = {
                "group_id": group.id,
                "group_name": group.name,
                "group_status": group.status.value,
                "total": Decimal("0.00"),
                "edges": [],
            }
        entry = grouped[group.id]
        entry["edges"].append(serialize_edge(edge, names_by_group[group.id]))
        entry["total"] += edge.amount

    return list(grouped.values())


def pending_summary(caller: str, session: Session) -> list[dict]:
    """Groups in which the caller still owes someone, with those edges."""
    return _summary(caller, session, ConsolidatedEdge.from_member)


def awaiting_summary(caller: str, session: Session) -> list[dict]:
    """Groups in which someone still owes the caller, with those edges."""
    return _summary(caller, session, ConsolidatedEdge.to_member)


def list_settlements(group_id: int, session: Session) -> list[Settlement]:
    stmt = (
        select(Settlement)
        .where(Settlement.group_id == group_id)
        .order_by(Settlement.created_at.desc(), Settlement.id.desc())
    )
    return list(session.execute(stmt).scalars().all())
