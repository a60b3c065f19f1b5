"""
models/group.py — Group table definition.

No business logic. No imports from services or routes.

Key design points:
  - `status` is a tagged enumeration. Transitions between statuses live in
    services/lifecycle_service.py — never assign `group.status` elsewhere.
  - `version` is SQLAlchemy's version_id_col: every UPDATE of a group row
    carries `WHERE version = :old` and bumps it. Every mutation of a group's
    ledger touches the group row, so two writers racing on the same group
    cannot both commit; the loser gets StaleDataError (surfaced as a
    retryable 409).
  - `purge_after` is set when the group is deleted; the purge sweep removes
    the group and everything beneath it once that moment has passed.
"""

from __future__ import annotations

import enum
from datetime import datetime

from sqlalchemy import CheckConstraint, DateTime, Integer, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from backend.app.extensions import db
from backend.app.models.base import utcnow, value_enum


class GroupStatus(str, enum.Enum):
    ACTIVE    = "active"
    COMPLETED = "completed"
    DELETED   = "deleted"


class Group(db.Model):
    __tablename__ = "groups"

    __table_args__ = (
        CheckConstraint(
            "LENGTH(TRIM(name)) > 0",
            name="ck_groups_name_nonempty",
        ),
    )

    id: Mapped[int] = mapped_column(primary_key=True)

    name: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
    )

    status: Mapped[GroupStatus] = mapped_column(
        value_enum(GroupStatus, "group_status_enum"),
        nullable=False,
        default=GroupStatus.ACTIVE,
        index=True,
    )

    # Shared with people who should be able to join without an explicit add.
    invite_code: Mapped[str] = mapped_column(
        String(32),
        nullable=False,
        unique=True,
    )

    created_by: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
    )

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
    )

    # NULL unless status == deleted.
    deleted_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    purge_after: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
        index=True,
    )

    version: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
    )

    __mapper_args__ = {"version_id_col": version}

    # ── Relationships ──────────────────────────────────────────────────────

    memberships: Mapped[list["Membership"]] = relationship(  # noqa: F821
        "Membership",
        back_populates="group",
        order_by="Membership.id",
    )

    expenses: Mapped[list["Expense"]] = relationship(  # noqa: F821
        "Expense",
        back_populates="group",
        order_by="Expense.id",
    )

    edges: Mapped[list["ConsolidatedEdge"]] = relationship(  # noqa: F821
        "ConsolidatedEdge",
        back_populates="group",
        order_by="(ConsolidatedEdge.from_member, ConsolidatedEdge.to_member)",
    )

    settlements: Mapped[list["Settlement"]] = relationship(  # noqa: F821
        "Settlement",
        back_populates="group",
        order_by="Settlement.id",
    )

    @property
    def is_active(self) -> bool:
        return self.status == GroupStatus.ACTIVE

    @property
    def is_deleted(self) -> bool:
        return self.status == GroupStatus.DELETED

    @property
    def member_ids(self) -> list[str]:
        return [m.member for m in self.memberships]

    def __repr__(self) -> str:  # pragma: no cover
        return f"<Group id={self.id} name={self.name!r} status={self.status.value}>"
