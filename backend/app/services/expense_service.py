"""
services/expense_service.py — Expense business logic (the Ledger Store's
write path).

Every mutation runs the same pipeline inside ONE transaction:

  lock group → validate → compute shares → persist expense
             → recompute edges → record audit entry

The route commits once at the end. Any AppError on the way rolls the whole
request back, so an expense never exists without its edges and audit entry.

Rules enforced here:
  PAYER_NOT_MEMBER (422)   — payer must be a group member
  PAYEE_NOT_MEMBER (422)   — every payee must be a group member
  GROUP_NOT_ACTIVE (422)   — deleted groups are read-only; edit/delete need
                             an active group
  EXPENSE_DELETED (422)    — a deleted expense cannot be edited
  FORBIDDEN (403)          — caller must be a group member

Any member may add, edit or delete an expense.

Adding an expense to a completed group moves it back to active.

Expense names are unique among a group's active expenses. A clashing name
is suffixed " (2)", " (3)", ... and an EXPENSE_RENAMED warning is returned.

Layer rules:
  - No Flask imports. No current_app, request, g, or HTTP knowledge.
  - Receives plain strings and dicts; returns ORM objects or raises AppError.
  - Commits are the route's responsibility — only flush here.
"""

from __future__ import annotations

from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.orm import Session

from backend.app.errors import AppError, ErrorCode, WarningCode
from backend.app.models.audit_entry import AuditAction
from backend.app.models.base import utcnow
from backend.app.models.expense import Expense, SplitPolicy
from backend.app.models.group import Group, GroupStatus
from backend.app.models.payee_share import PayeeShare
from backend.app.services import audit_service, debt_service, lifecycle_service
from backend.app.services.split_calculator import (
    ZERO,
    ZERO_SUBTOTAL_EXCLUDE,
    ShareData,
    compute_shares,
    normalize_member,
    to_money,
)


# ── Private helpers ────────────────────────────────────────────────────────

def _get_expense_or_404(expense_id: int, session: Session, reload: bool = False) -> Expense:
    """
    Returns the Expense (active or deleted) or raises EXPENSE_NOT_FOUND (404).

    `reload` re-reads the row over anything already in the session; call it
    again that way once the group lock is held.
    """
    expense = session.get(Expense, expense_id, populate_existing=reload)
    if expense is None:
        raise AppError(
            ErrorCode.EXPENSE_NOT_FOUND,
            f"Expense {expense_id} does not exist.",
            404,
        )
    return expense


def _validate_members(group: Group, payer: str, payees: list[str]) -> None:
    members = set(group.member_ids)

    if payer not in members:
        raise AppError(
            ErrorCode.PAYER_NOT_MEMBER,
            f"{payer} is not a member of group {group.id}.",
            422,
            field="payer",
        )

    for payee in payees:
        if payee not in members:
            raise AppError(
                ErrorCode.PAYEE_NOT_MEMBER,
                f"{payee} is not a member of group {group.id}.",
                422,
                field="payees",
            )


def _unique_name(
        group_id: int,
        name: str,
        session: Session,
        exclude_id: int | None = None,
) -> str:
    """Returns `name`, or `name (n)` for the smallest free n >= 2."""
    stmt = select(Expense.name).where(
        Expense.group_id == group_id,
        Expense.deleted_at.is_(None),
    )
    if exclude_id is not None:
        stmt = stmt.where(Expense.id != exclude_id)
    taken = set(session.execute(stmt).scalars().all())

    if name not in taken:
        return name

    n = 2
    while f"{name} ({n})" in taken:
        n += 1
    return f"{name} ({n})"


def _renamed_warning(requested: str, stored: str) -> dict:
    return {
        "code": WarningCode.EXPENSE_RENAMED,
        "message": f"An expense named '{requested}' already exists; saved as '{stored}'.",
    }


def _compute(data: dict, payer: str, total: Decimal | None, zero_subtotal_policy: str) -> tuple[Decimal, list[ShareData]]:
    """
    Runs the split calculator over a validated payee list.

    When `total` is None it is derived from the payee amounts: their sum for
    explicit, their sum plus tax and tip for proportional.
    """
    policy = SplitPolicy(data.get("split_policy", SplitPolicy.EXPLICIT))
    payees = data["payees"]
    participants = [p["member"] for p in payees]
    amounts = {p["member"]: p["amount"] for p in payees if p.get("amount") is not None}
    tax = data.get("tax") or ZERO
    tip = data.get("tip") or ZERO

    if policy != SplitPolicy.PROPORTIONAL and (tax or tip):
        raise AppError(
            ErrorCode.INVALID_FIELD,
            "tax and tip are only accepted with split_policy 'proportional'.",
            422,
            field="tax" if tax else "tip",
        )

    if total is None:
        if policy == SplitPolicy.EQUAL:
            raise AppError(
                ErrorCode.MISSING_FIELD,
                "total_amount is required for an equal split.",
                422,
                field="total_amount",
            )
        total = sum(amounts.values(), ZERO)
        if policy == SplitPolicy.PROPORTIONAL:
            total += tax + tip

    shares = compute_shares(
        total,
        payer,
        participants,
        policy,
        amounts=amounts,
        tax=tax,
        tip=tip,
        zero_subtotal_policy=zero_subtotal_policy,
    )
    return to_money(total), shares


def _replace_shares(expense: Expense, shares: list[ShareData], session: Session) -> None:
    # Flush the removals first: UNIQUE(expense_id, member) would reject the
    # re-inserted members if both landed in the same flush.
    expense.shares.clear()
    session.flush()
    for position, share in enumerate(shares):
        expense.shares.append(PayeeShare(
            member=share.member,
            amount=share.amount,
            is_payer=share.is_payer,
            position=position,
        ))


def _describe_edit(before: dict, expense: Expense) -> str:
    changes = []
    if before["name"] != expense.name:
        changes.append(f"renamed '{before['name']}' to '{expense.name}'")
    if before["total_amount"] != expense.total_amount:
        changes.append(f"amount {before['total_amount']} → {expense.total_amount}")
    if before["payer"] != expense.payer:
        changes.append(f"payer {before['payer']} → {expense.payer}")
    if before["payees"] != [s.member for s in expense.shares]:
        changes.append("payees changed")
    if not changes:
        changes.append("split recalculated")
    return f"Edited '{expense.name}': " + "; ".join(changes) + "."


# ── Public service functions ───────────────────────────────────────────────

def create_expense(
        group_id: int,
        caller: str,
        data: dict,
        session: Session,
        zero_subtotal_policy: str = ZERO_SUBTOTAL_EXCLUDE,
) -> tuple[Expense, list[dict]]:
    """
    Records a new expense and re-derives the group's debts.

    Args:
        group_id: The group this expense belongs to.
        caller:   The authenticated member (from flask.g).
        data:     Validated dict from CreateExpenseSchema.

    Returns:
        (Expense, warnings)
    """
    group = lifecycle_service.lock_group(group_id, session)
    lifecycle_service.require_member(group, caller, session)
    lifecycle_service.require_not_deleted(group)

    payer = normalize_member(data["payer"])
    payees = [normalize_member(p["member"]) for p in data["payees"]]
    _validate_members(group, payer, payees)

    total, shares = _compute(data, payer, data.get("total_amount"), zero_subtotal_policy)

    warnings: list[dict] = []
    name = _unique_name(group.id, data["name"], session)
    if name != data["name"]:
        warnings.append(_renamed_warning(data["name"], name))

    now = utcnow()
    # completed → active when new debt arrives; active → active otherwise.
    lifecycle_service.transition(group, GroupStatus.ACTIVE, now)

    expense = Expense(
        group_id=group.id,
        name=name,
        total_amount=total,
        payer=payer,
        split_policy=SplitPolicy(data.get("split_policy", SplitPolicy.EXPLICIT)),
        tax=data.get("tax") or ZERO,
        tip=data.get("tip") or ZERO,
        created_by=caller,
        created_at=now,
    )
    session.add(expense)
    _replace_shares(expense, shares, session)
    session.flush()

    warnings.extend(debt_service.recompute_edges(group, session))

    audit_service.record(
        group,
        AuditAction.ADD_EXPENSE,
        caller,
        f"Added '{expense.name}' ({expense.total_amount}) paid by {payer}.",
        session,
        expense=expense,
        new_amount=expense.total_amount,
    )

    return expense, warnings


def list_expenses(group_id: int, caller: str, session: Session) -> list[Expense]:
    """Returns all active expenses for a group, newest first."""
    group = lifecycle_service.lock_group(group_id, session, read=True)
    lifecycle_service.require_member(group, caller, session)

    stmt = (
        select(Expense)
        .where(
            Expense.group_id == group.id,
            Expense.deleted_at.is_(None),
        )
        .order_by(Expense.created_at.desc(), Expense.id.desc())
    )
    return list(session.execute(stmt).scalars().all())


def get_expense(expense_id: int, caller: str, session: Session) -> Expense:
    """
    Returns a single expense including its shares.

    Deleted expenses are returned too; `deleted_at` tells the client.
    """
    expense = _get_expense_or_404(expense_id, session)
    group = lifecycle_service.lock_group(expense.group_id, session, read=True)
    lifecycle_service.require_member(group, caller, session)
    return expense


def edit_expense(
        expense_id: int,
        caller: str,
        data: dict,
        session: Session,
        zero_subtotal_policy: str = ZERO_SUBTOTAL_EXCLUDE,
) -> tuple[Expense, list[dict]]:
    """
    Partially updates an expense.

    Rules:
      - The group must be active; the expense must not be deleted.
      - `name` alone renames (uniqueness rule applies).
      - `payer` alone re-flags the payer's share; amounts do not depend
        on who paid.
      - `payees` (required by the schema whenever split_policy,
        total_amount, tax or tip is sent) recomputes the split. Without
        total_amount the total is recomputed from the payee amounts.
      - A proportional expense that stays proportional keeps its stored
        tax and tip unless new ones are sent; any other policy clears them.

    Returns:
        (Expense, warnings)
    """
    expense = _get_expense_or_404(expense_id, session)
    group = lifecycle_service.lock_group(expense.group_id, session)
    expense = _get_expense_or_404(expense_id, session, reload=True)
    lifecycle_service.require_member(group, caller, session)
    lifecycle_service.require_active(group)

    if expense.is_deleted:
        raise AppError(
            ErrorCode.EXPENSE_DELETED,
            f"Expense {expense_id} has been deleted and cannot be edited.",
            422,
        )

    before = {
        "name": expense.name,
        "total_amount": expense.total_amount,
        "payer": expense.payer,
        "payees": [s.member for s in expense.shares],
    }
    warnings: list[dict] = []

    payer = normalize_member(data["payer"]) if "payer" in data else expense.payer

    if "payees" in data:
        payees = [normalize_member(p["member"]) for p in data["payees"]]
        _validate_members(group, payer, payees)

        split_data = dict(data)
        split_data.setdefault("split_policy", expense.split_policy)
        policy = SplitPolicy(split_data["split_policy"])
        if policy == SplitPolicy.PROPORTIONAL and expense.split_policy == SplitPolicy.PROPORTIONAL:
            split_data.setdefault("tax", expense.tax)
            split_data.setdefault("tip", expense.tip)

        total = data.get("total_amount")
        if total is None and policy == SplitPolicy.EQUAL:
            total = expense.total_amount
        total, shares = _compute(split_data, payer, total, zero_subtotal_policy)

        expense.split_policy = policy
        expense.total_amount = total
        expense.tax = split_data.get("tax") or ZERO
        expense.tip = split_data.get("tip") or ZERO
        expense.payer = payer
        _replace_shares(expense, shares, session)

    elif "payer" in data:
        _validate_members(group, payer, [])
        expense.payer = payer
        for share in expense.shares:
            share.is_payer = share.member == payer

    if "name" in data and data["name"] != expense.name:
        name = _unique_name(group.id, data["name"], session, exclude_id=expense.id)
        if name != data["name"]:
            warnings.append(_renamed_warning(data["name"], name))
        expense.name = name

    now = utcnow()
    expense.updated_at = now
    lifecycle_service.transition(group, GroupStatus.ACTIVE, now)
    session.flush()

    warnings.extend(debt_service.recompute_edges(group, session))

    audit_service.record(
        group,
        AuditAction.EDIT_EXPENSE,
        caller,
        _describe_edit(before, expense),
        session,
        expense=expense,
        old_amount=before["total_amount"],
        new_amount=expense.total_amount,
    )

    return expense, warnings


def delete_expense(
        expense_id: int,
        caller: str,
        session: Session,
) -> tuple[Expense, list[dict]]:
    """
    Soft-deletes an expense by setting deleted_at and re-derives the debts.

    The row and its shares stay in the database for the audit trail.
    Deleting an already-deleted expense is a no-op (no new audit entry).

    Raises:
        AppError(EXPENSE_NOT_FOUND, 404)
        AppError(FORBIDDEN, 403)
        AppError(GROUP_NOT_ACTIVE, 422)
    """
    expense = _get_expense_or_404(expense_id, session)
    group = lifecycle_service.lock_group(expense.group_id, session)
    expense = _get_expense_or_404(expense_id, session, reload=True)
    lifecycle_service.require_member(group, caller, session)
    lifecycle_service.require_active(group)

    if expense.is_deleted:
        return expense, []

    now = utcnow()
    expense.deleted_at = now
    lifecycle_service.transition(group, GroupStatus.ACTIVE, now)
    session.flush()

    warnings = debt_service.recompute_edges(group, session)

    audit_service.record(
        group,
        AuditAction.DELETE_EXPENSE,
        caller,
        f"Deleted '{expense.name}' ({expense.total_amount}).",
        session,
        expense=expense,
        old_amount=expense.total_amount,
    )

    return expense, warnings
