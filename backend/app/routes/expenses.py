"""
routes/expenses.py — HTTP surface for the expenses of a group.

  POST   /groups/:id/expenses   → 201  add an expense, split by policy
  GET    /groups/:id/expenses   → 200  live expenses, newest first
  GET    /expenses/:id          → 200  one expense with its shares
  PATCH  /expenses/:id          → 200  rename, re-pay or re-split
  DELETE /expenses/:id          → 200  soft-delete

The blueprint is mounted at /api/v1 because its paths start with either
/groups or /expenses.

Handlers load the body through a schema, make one expense_service call,
commit, and reply with {"data", "warnings"}. EXPENSE_RENAMED and
EDGE_REOPENED arrive as warnings on an otherwise normal 2xx.
"""

from __future__ import annotations

from flask import Blueprint, current_app, g, jsonify, request

from backend.app.extensions import db
from backend.app.middleware.auth_middleware import require_auth
from backend.app.models.expense import Expense
from backend.app.schemas.expense_schema import CreateExpenseSchema, PatchExpenseSchema
from backend.app.services import expense_service

expenses_bp = Blueprint("expenses", __name__)


# ── Serialization helper ───────────────────────────────────────────────────
# Pure data-shaping — no DB access, no logic. Amounts as strings.

def _serialize_expense(expense: Expense) -> dict:
    """Converts an Expense ORM object to a plain dict for JSON output."""
    return {
        "id": expense.id,
        "group_id": expense.group_id,
        "name": expense.name,
        "total_amount": expense.total_amount,
        "payer": expense.payer,
        "split_policy": expense.split_policy.value,
        "tax": expense.tax,
        "tip": expense.tip,
        "created_by": expense.created_by,
        "created_at": expense.created_at.isoformat(),
        "updated_at": expense.updated_at.isoformat() if expense.updated_at else None,
        "deleted_at": expense.deleted_at.isoformat() if expense.deleted_at else None,
        "payees": [
            {
                "member": s.member,
                "amount": s.amount,
                "is_payer": s.is_payer,
            }
            for s in expense.shares
        ],
    }


# ── Group-scoped expense routes ────────────────────────────────────────────

@expenses_bp.route("/groups/<int:group_id>/expenses", methods=["POST"])
@require_auth
def create_expense(group_id: int):
    """
    POST /groups/:id/expenses — Record a new expense.
    Re-derives the group's edges; reactivates a completed group.
    """
    data = CreateExpenseSchema().load(request.get_json(force=True) or {})
    expense, warnings = expense_service.create_expense(
        group_id=group_id,
        caller=g.member,
        data=data,
        session=db.session,
        zero_subtotal_policy=current_app.config["TAX_TIP_ZERO_SUBTOTAL_POLICY"],
    )
    db.session.commit()
    return jsonify({"data": _serialize_expense(expense), "warnings": warnings}), 201


@expenses_bp.route("/groups/<int:group_id>/expenses", methods=["GET"])
@require_auth
def list_expenses(group_id: int):
    """GET /groups/:id/expenses — List active (non-deleted) expenses for a group."""
    expenses = expense_service.list_expenses(
        group_id=group_id,
        caller=g.member,
        session=db.session,
    )
    return jsonify({
        "data": [_serialize_expense(e) for e in expenses],
        "warnings": [],
    }), 200


# ── Expense-ID routes ──────────────────────────────────────────────────────

@expenses_bp.route("/expenses/<int:expense_id>", methods=["GET"])
@require_auth
def get_expense(expense_id: int):
    """GET /expenses/:id — Get expense detail including payee shares."""
    expense = expense_service.get_expense(
        expense_id=expense_id,
        caller=g.member,
        session=db.session,
    )
    return jsonify({"data": _serialize_expense(expense), "warnings": []}), 200


@expenses_bp.route("/expenses/<int:expense_id>", methods=["PATCH"])
@require_auth
def edit_expense(expense_id: int):
    """
    PATCH /expenses/:id — Partial update.
    A new payee list recomputes the split and, unless given, the total.
    """
    data = PatchExpenseSchema().load(request.get_json(force=True) or {})
    expense, warnings = expense_service.edit_expense(
        expense_id=expense_id,
        caller=g.member,
        data=data,
        session=db.session,
        zero_subtotal_policy=current_app.config["TAX_TIP_ZERO_SUBTOTAL_POLICY"],
    )
    db.session.commit()
    return jsonify({"data": _serialize_expense(expense), "warnings": warnings}), 200


@expenses_bp.route("/expenses/<int:expense_id>", methods=["DELETE"])
@require_auth
def delete_expense(expense_id: int):
    """
    DELETE /expenses/:id — Soft-delete (sets deleted_at).
    Row and shares stay for the audit trail; debts are re-derived without it.
    """
    _, warnings = expense_service.delete_expense(
        expense_id=expense_id,
        caller=g.member,
        session=db.session,
    )
    db.session.commit()
    return jsonify({
        "data": {
            "deleted": True,
            "expense_id": expense_id,
        },
        "warnings": warnings,
    }), 200
