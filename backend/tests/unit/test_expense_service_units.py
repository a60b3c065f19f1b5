"""
Unit tests for expense_service helper and service paths.

These tests focus on branches the integration suite reaches only indirectly,
staying DB-free via mocked session/query behavior.
"""

from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest

from backend.app.errors import AppError, ErrorCode
from backend.app.models.expense import Expense, SplitPolicy
from backend.app.models.group import Group, GroupStatus
from backend.app.services import expense_service

A = "alice@example.com"
B = "bob@example.com"


def _mock_scalars_all(session: MagicMock, rows: list) -> None:
    session.execute.return_value.scalars.return_value.all.return_value = rows


def _active_group() -> Group:
    return Group(id=1, name="Flat", status=GroupStatus.ACTIVE, invite_code="FLAT0001", created_by=A)


def _bypass_guards(monkeypatch, group: Group) -> MagicMock:
    recompute = MagicMock(return_value=[])
    monkeypatch.setattr(expense_service.lifecycle_service, "lock_group", lambda *a, **kw: group)
    monkeypatch.setattr(expense_service.lifecycle_service, "require_member", lambda *a, **kw: None)
    monkeypatch.setattr(expense_service.debt_service, "recompute_edges", recompute)
    return recompute


# ── _get_expense_or_404 ────────────────────────────────────────────────────

def test_get_expense_or_404_returns_expense_when_present():
    session = MagicMock()
    expense = SimpleNamespace(id=10, group_id=1)
    session.get.return_value = expense

    assert expense_service._get_expense_or_404(expense_id=10, session=session) is expense


def test_get_expense_or_404_raises_when_missing():
    session = MagicMock()
    session.get.return_value = None

    with pytest.raises(AppError) as exc_info:
        expense_service._get_expense_or_404(expense_id=404, session=session)

    err = exc_info.value
    assert err.code == ErrorCode.EXPENSE_NOT_FOUND
    assert err.http_status == 404


# ── _validate_members ──────────────────────────────────────────────────────

def test_validate_members_rejects_outside_payer():
    group = SimpleNamespace(id=1, member_ids=[A, B])

    with pytest.raises(AppError) as exc_info:
        expense_service._validate_members(group, "mallory@example.com", [A])
    assert exc_info.value.code == ErrorCode.PAYER_NOT_MEMBER


def test_validate_members_rejects_outside_payee():
    group = SimpleNamespace(id=1, member_ids=[A, B])

    with pytest.raises(AppError) as exc_info:
        expense_service._validate_members(group, A, [B, "mallory@example.com"])

    err = exc_info.value
    assert err.code == ErrorCode.PAYEE_NOT_MEMBER
    assert err.field == "payees"


# ── _unique_name ───────────────────────────────────────────────────────────

def test_unique_name_free_name_unchanged():
    session = MagicMock()
    _mock_scalars_all(session, ["Groceries"])
    assert expense_service._unique_name(1, "Dinner", session) == "Dinner"


def test_unique_name_picks_smallest_free_suffix():
    session = MagicMock()
    _mock_scalars_all(session, ["Dinner", "Dinner (2)", "Dinner (4)"])
    assert expense_service._unique_name(1, "Dinner", session) == "Dinner (3)"


# ── _compute ───────────────────────────────────────────────────────────────

def test_compute_derives_explicit_total_from_amounts():
    data = {
        "split_policy": SplitPolicy.EXPLICIT,
        "payees": [
            {"member": A, "amount": Decimal("12.00")},
            {"member": B, "amount": Decimal("8.50")},
        ],
    }
    total, shares = expense_service._compute(data, A, None, "exclude")

    assert total == Decimal("20.50")
    assert [s.amount for s in shares] == [Decimal("12.00"), Decimal("8.50")]


def test_compute_derives_proportional_total_with_tax_and_tip():
    data = {
        "split_policy": SplitPolicy.PROPORTIONAL,
        "payees": [
            {"member": A, "amount": Decimal("30.00")},
            {"member": B, "amount": Decimal("10.00")},
        ],
        "tax": Decimal("4.00"),
        "tip": Decimal("2.00"),
    }
    total, _ = expense_service._compute(data, A, None, "exclude")
    assert total == Decimal("46.00")


def test_compute_equal_needs_a_total():
    data = {"split_policy": SplitPolicy.EQUAL, "payees": [{"member": A}, {"member": B}]}

    with pytest.raises(AppError) as exc_info:
        expense_service._compute(data, A, None, "exclude")
    assert exc_info.value.code == ErrorCode.MISSING_FIELD


def test_compute_rejects_tax_outside_proportional():
    data = {
        "split_policy": SplitPolicy.EXPLICIT,
        "payees": [{"member": A, "amount": Decimal("10.00")}],
        "tax": Decimal("1.00"),
    }

    with pytest.raises(AppError) as exc_info:
        expense_service._compute(data, A, None, "exclude")

    err = exc_info.value
    assert err.code == ErrorCode.INVALID_FIELD
    assert err.field == "tax"


# ── edit / delete branches ─────────────────────────────────────────────────

def test_edit_deleted_expense_raises(monkeypatch):
    group = _active_group()
    _bypass_guards(monkeypatch, group)

    session = MagicMock()
    session.get.return_value = Expense(
        id=5,
        group_id=group.id,
        name="Taxi",
        total_amount=Decimal("20.00"),
        payer=A,
        deleted_at=datetime(2026, 10, 1, tzinfo=timezone.utc),
    )

    with pytest.raises(AppError) as exc_info:
        expense_service.edit_expense(5, A, {"name": "Cab"}, session)
    assert exc_info.value.code == ErrorCode.EXPENSE_DELETED


def test_edit_in_completed_group_raises(monkeypatch):
    group = _active_group()
    group.status = GroupStatus.COMPLETED
    _bypass_guards(monkeypatch, group)

    session = MagicMock()
    session.get.return_value = Expense(id=5, group_id=group.id, name="Taxi", payer=A)

    with pytest.raises(AppError) as exc_info:
        expense_service.edit_expense(5, A, {"name": "Cab"}, session)
    assert exc_info.value.code == ErrorCode.GROUP_NOT_ACTIVE


def test_delete_already_deleted_expense_is_noop(monkeypatch):
    group = _active_group()
    recompute = _bypass_guards(monkeypatch, group)
    record = MagicMock()
    monkeypatch.setattr(expense_service.audit_service, "record", record)

    deleted_at = datetime(2026, 10, 1, tzinfo=timezone.utc)
    expense = Expense(id=5, group_id=group.id, name="Taxi", payer=A, deleted_at=deleted_at)
    session = MagicMock()
    session.get.return_value = expense

    result, warnings = expense_service.delete_expense(5, A, session)

    assert result is expense
    assert warnings == []
    assert expense.deleted_at == deleted_at
    recompute.assert_not_called()
    record.assert_not_called()


def _stale_then_deleted(group: Group, calls: list) -> MagicMock:
    """Session whose first read predates a concurrent delete."""
    live = Expense(id=5, group_id=group.id, name="Taxi", total_amount=Decimal("20.00"), payer=A)
    deleted = Expense(
        id=5,
        group_id=group.id,
        name="Taxi",
        total_amount=Decimal("20.00"),
        payer=A,
        deleted_at=datetime(2026, 10, 1, tzinfo=timezone.utc),
    )

    def _get(model, expense_id, populate_existing=False):
        calls.append(("get", populate_existing))
        return deleted if populate_existing else live

    session = MagicMock()
    session.get.side_effect = _get
    return session


def test_edit_rereads_expense_after_locking_group(monkeypatch):
    group = _active_group()
    _bypass_guards(monkeypatch, group)
    calls: list = []
    monkeypatch.setattr(
        expense_service.lifecycle_service,
        "lock_group",
        lambda *a, **kw: calls.append("lock") or group,
    )
    session = _stale_then_deleted(group, calls)

    with pytest.raises(AppError) as exc_info:
        expense_service.edit_expense(5, A, {"name": "Cab"}, session)

    assert exc_info.value.code == ErrorCode.EXPENSE_DELETED
    assert calls == [("get", False), "lock", ("get", True)]


def test_delete_rereads_expense_after_locking_group(monkeypatch):
    group = _active_group()
    recompute = _bypass_guards(monkeypatch, group)
    record = MagicMock()
    monkeypatch.setattr(expense_service.audit_service, "record", record)
    calls: list = []
    monkeypatch.setattr(
        expense_service.lifecycle_service,
        "lock_group",
        lambda *a, **kw: calls.append("lock") or group,
    )
    session = _stale_then_deleted(group, calls)

    result, warnings = expense_service.delete_expense(5, A, session)

    assert result.deleted_at is not None
    assert warnings == []
    assert calls == [("get", False), "lock", ("get", True)]
    recompute.assert_not_called()
    record.assert_not_called()
