"""
tests/unit/test_lifecycle_transitions.py — Unit tests for lifecycle_service.

Covers the status transition table, the access guards, and the purge
branches that do not need a real database.
"""

from __future__ import annotations

from datetime import datetime, timezone
from unittest.mock import MagicMock

import pytest

from backend.app.errors import AppError, ErrorCode
from backend.app.models.group import Group, GroupStatus
from backend.app.services import lifecycle_service

NOW = datetime(2026, 10, 19, 9, 30, tzinfo=timezone.utc)


def _group(status: GroupStatus) -> Group:
    return Group(id=7, name="Lisbon trip", status=status, invite_code="ABCD2345", created_by="a@x.com")


# ── Transition table ───────────────────────────────────────────────────────

@pytest.mark.parametrize("current,target", [
    (GroupStatus.ACTIVE, GroupStatus.ACTIVE),
    (GroupStatus.ACTIVE, GroupStatus.COMPLETED),
    (GroupStatus.ACTIVE, GroupStatus.DELETED),
    (GroupStatus.COMPLETED, GroupStatus.ACTIVE),
    (GroupStatus.COMPLETED, GroupStatus.DELETED),
])
def test_allowed_transitions(current, target):
    group = _group(current)

    lifecycle_service.transition(group, target, NOW)

    assert group.status == target
    assert group.updated_at == NOW


@pytest.mark.parametrize("current,target", [
    (GroupStatus.COMPLETED, GroupStatus.COMPLETED),
    (GroupStatus.DELETED, GroupStatus.ACTIVE),
    (GroupStatus.DELETED, GroupStatus.COMPLETED),
    (GroupStatus.DELETED, GroupStatus.DELETED),
])
def test_rejected_transitions(current, target):
    group = _group(current)

    with pytest.raises(AppError) as exc_info:
        lifecycle_service.transition(group, target, NOW)

    err = exc_info.value
    assert err.code == ErrorCode.INVALID_STATUS_TRANSITION
    assert err.http_status == 422
    assert group.status == current


def test_transition_to_deleted_stamps_deleted_at():
    group = _group(GroupStatus.COMPLETED)
    lifecycle_service.transition(group, GroupStatus.DELETED, NOW)
    assert group.deleted_at == NOW


def test_transition_accepts_string_target():
    group = _group(GroupStatus.ACTIVE)
    lifecycle_service.transition(group, "completed", NOW)
    assert group.status == GroupStatus.COMPLETED


# ── Guards ─────────────────────────────────────────────────────────────────

def test_require_active_rejects_completed_group():
    with pytest.raises(AppError) as exc_info:
        lifecycle_service.require_active(_group(GroupStatus.COMPLETED))
    assert exc_info.value.code == ErrorCode.GROUP_NOT_ACTIVE


def test_require_not_deleted_allows_completed_group():
    lifecycle_service.require_not_deleted(_group(GroupStatus.COMPLETED))


def test_require_not_deleted_rejects_deleted_group():
    with pytest.raises(AppError) as exc_info:
        lifecycle_service.require_not_deleted(_group(GroupStatus.DELETED))
    assert exc_info.value.code == ErrorCode.GROUP_NOT_ACTIVE


def test_lock_group_raises_group_not_found():
    session = MagicMock()
    session.execute.return_value.scalar_one_or_none.return_value = None

    with pytest.raises(AppError) as exc_info:
        lifecycle_service.lock_group(99999, session)

    err = exc_info.value
    assert err.code == ErrorCode.GROUP_NOT_FOUND
    assert err.http_status == 404


def test_require_member_raises_forbidden_for_non_member():
    session = MagicMock()
    session.execute.return_value.scalar_one_or_none.return_value = None

    with pytest.raises(AppError) as exc_info:
        lifecycle_service.require_member(_group(GroupStatus.ACTIVE), "mallory@x.com", session)

    err = exc_info.value
    assert err.code == ErrorCode.FORBIDDEN
    assert err.http_status == 403


# ── Delete / complete ──────────────────────────────────────────────────────

def test_delete_group_twice_raises_already_deleted(monkeypatch):
    group = _group(GroupStatus.DELETED)
    monkeypatch.setattr(lifecycle_service, "lock_group", lambda *a, **kw: group)
    monkeypatch.setattr(lifecycle_service, "require_member", lambda *a, **kw: None)

    with pytest.raises(AppError) as exc_info:
        lifecycle_service.delete_group(group.id, "a@x.com", MagicMock())
    assert exc_info.value.code == ErrorCode.GROUP_ALREADY_DELETED


def test_complete_group_with_pending_edges(monkeypatch):
    group = _group(GroupStatus.ACTIVE)
    monkeypatch.setattr(lifecycle_service, "lock_group", lambda *a, **kw: group)
    monkeypatch.setattr(lifecycle_service, "require_member", lambda *a, **kw: None)
    monkeypatch.setattr(lifecycle_service, "has_pending_edges", lambda *a, **kw: True)

    with pytest.raises(AppError) as exc_info:
        lifecycle_service.complete_group(group.id, "a@x.com", MagicMock())

    assert exc_info.value.code == ErrorCode.PENDING_EDGES_REMAIN
    assert group.status == GroupStatus.ACTIVE


# ── Purge ──────────────────────────────────────────────────────────────────

def test_purge_group_unknown_or_not_expired_is_noop():
    session = MagicMock()
    session.execute.return_value.scalar_one_or_none.return_value = None

    assert lifecycle_service.purge_group(12345, session, NOW) is False
    # Only the eligibility check ran; nothing was deleted.
    assert session.execute.call_count == 1


def test_purge_expired_rolls_back_and_reraises(monkeypatch):
    session = MagicMock()
    session.execute.return_value.scalars.return_value.all.return_value = [1]

    def _boom(*args, **kwargs):
        raise RuntimeError("disk full")

    monkeypatch.setattr(lifecycle_service, "purge_group", _boom)

    with pytest.raises(RuntimeError):
        lifecycle_service.purge_expired(session, NOW)
    session.rollback.assert_called_once()
