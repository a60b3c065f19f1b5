"""
services/debt_service.py — Debt consolidation across a group's expenses.

This file is the SINGLE SOURCE OF TRUTH for how obligations become edges.
The consolidation rule must not be reimplemented elsewhere in the codebase.

Vocabulary:
  Obligation  (payer, payee, amount) — the payee owes the payer.
              One per non-payer, non-zero share of every active expense.
  Edge        (from_member, to_member, amount) — from owes to, after netting.

Algorithm (pairwise netting, not global min-cash-flow):
  1. Sum obligations per ordered (debtor, creditor) pair.
  2. Net each unordered pair: whoever owes more owes the difference.
  3. Drop zero and self entries.
  4. Sort by (from_member, to_member).

Net-position guarantee:
  Every member's net (owed to them minus owed by them) over the returned
  edges equals their net over the input obligations. Netting a pair moves
  the same amount off both sides, so nobody gains or loses money.

Layer rules:
  - consolidate() / as_obligations() / net_positions() are pure.
  - The session-aware helpers below them take group_id and session.
  - No Flask imports.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from backend.app.errors import WarningCode
from backend.app.models.edge import ConsolidatedEdge
from backend.app.models.expense import Expense
from backend.app.models.group import Group
from backend.app.services import settlement_service

logger = logging.getLogger(__name__)

ZERO = Decimal("0.00")


@dataclass(frozen=True)
class Obligation:
    payer: str
    payee: str
    amount: Decimal


@dataclass(frozen=True)
class EdgeData:
    from_member: str
    to_member: str
    amount: Decimal

    @property
    def pair(self) -> tuple[str, str]:
        return (self.from_member, self.to_member)


# ── Core algorithm ─────────────────────────────────────────────────────────

def consolidate(obligations: Iterable[Obligation]) -> list[EdgeData]:
    """
    Nets a group's obligations into at most one edge per member pair.

    Deterministic: the output depends only on the multiset of obligations,
    never on their order.

    Args:
        obligations: Any iterable of Obligation. Self and zero entries are
                     ignored.

    Returns:
        List of EdgeData with amount > 0, sorted by (from, to).
    """
    owed: dict[tuple[str, str], Decimal] = defaultdict(Decimal)

    # Step 1: debtor → creditor totals.
    for ob in obligations:
        if ob.payer == ob.payee or ob.amount == 0:
            continue
        owed[(ob.payee, ob.payer)] += ob.amount

    # Step 2: net each unordered pair once.
    edges: list[EdgeData] = []
    seen: set[frozenset] = set()

    for debtor, creditor in owed:
        key = frozenset((debtor, creditor))
        if key in seen:
            continue
        seen.add(key)

        net = owed.get((debtor, creditor), ZERO) - owed.get((creditor, debtor), ZERO)
        if net > 0:
            edges.append(EdgeData(debtor, creditor, net))
        elif net < 0:
            edges.append(EdgeData(creditor, debtor, -net))

    edges.sort(key=lambda e: e.pair)
    return edges


def as_obligations(edges: Iterable[EdgeData]) -> list[Obligation]:
    """Turns edges back into obligations (from owes to ⇒ payer=to)."""
    return [Obligation(payer=e.to_member, payee=e.from_member, amount=e.amount) for e in edges]


def net_positions(obligations: Iterable[Obligation]) -> dict[str, Decimal]:
    """
    {member: amount owed to them minus amount they owe}.

    The sum over all members is always zero.
    """
    net: dict[str, Decimal] = defaultdict(Decimal)
    for ob in obligations:
        if ob.payer == ob.payee:
            continue
        net[ob.payer] += ob.amount
        net[ob.payee] -= ob.amount
    return dict(net)


# ── Data access helpers ────────────────────────────────────────────────────
# The ONLY sanctioned way to read expense data for debt purposes.
# Deleted expenses never contribute.

def get_active_expenses(group_id: int, session: Session) -> list[Expense]:
    """Returns expenses for a group WHERE deleted_at IS NULL, shares loaded."""
    stmt = (
        select(Expense)
        .options(selectinload(Expense.shares))
        .where(
            Expense.group_id == group_id,
            Expense.deleted_at.is_(None),
        )
        .order_by(Expense.id)
    )
    return list(session.execute(stmt).scalars().all())


def obligations_for_group(group_id: int, session: Session) -> list[Obligation]:
    """Every non-payer, non-zero share of every active expense."""
    obligations = []
    for expense in get_active_expenses(group_id, session):
        for share in expense.shares:
            if share.is_payer or share.member == expense.payer or share.amount == 0:
                continue
            obligations.append(
                Obligation(payer=expense.payer, payee=share.member, amount=share.amount)
            )
    return obligations


def recompute_edges(group: Group, session: Session) -> list[dict]:
    """
    Re-derives the group's edge set from scratch and persists it.

    Called after every expense create/edit/delete, inside the same
    transaction and with the group row already locked by the caller.

    Existing rows are updated in place, new pairs inserted, vanished pairs
    deleted. Resolved state is carried across by
    settlement_service.reconcile_edges().

    Returns:
        Warning dicts for edges that went back to pending.
    """
    previous = {
        e.pair: e
        for e in session.execute(
            select(ConsolidatedEdge).where(ConsolidatedEdge.group_id == group.id)
        ).scalars()
    }

    derived = consolidate(obligations_for_group(group.id, session))
    states, reopened = settlement_service.reconcile_edges(previous.values(), derived)

    keep = set()
    for state in states:
        keep.add(state.pair)
        row = previous.get(state.pair)
        if row is None:
            row = ConsolidatedEdge(
                group_id=group.id,
                from_member=state.from_member,
                to_member=state.to_member,
            )
            session.add(row)
        row.amount = state.amount
        row.resolved = state.resolved
        row.resolved_at = state.resolved_at
        row.resolved_amount = state.resolved_amount

    for pair, row in previous.items():
        if pair not in keep:
            session.delete(row)

    session.flush()

    logger.debug(
        "group %s: %d edges recomputed (%d reopened)",
        group.id, len(states), len(reopened),
    )

    return [
        {
            "code": WarningCode.EDGE_REOPENED,
            "message": (
                f"New debt from {f} to {t} reopened a payment "
                f"that was already marked as settled."
            ),
        }
        for f, t in reopened
    ]
