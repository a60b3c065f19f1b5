"""
models/settlement.py — Settlement (resolution record) table definition.

No business logic. No imports from services or routes.

A Settlement row is written every time a debtor attests that an edge was
paid outside the system. Edges are rebuilt on every expense mutation; these
rows are not, so they are what the history screen shows.

Key design points:
  - `amount` uses Numeric(12, 2) — never Float.
  - CHECK(from_member <> to_member) mirrors the edge constraint.
  - Append-only; removed only when the purge sweep removes the group.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from sqlalchemy import CheckConstraint, DateTime, ForeignKey, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from backend.app.extensions import db
from backend.app.models.base import money, utcnow


class Settlement(db.Model):
    __tablename__ = "settlements"

    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_settlements_amount_positive"),
        CheckConstraint(
            "from_member <> to_member",
            name="ck_settlements_no_self_settlement",
        ),
    )

    id: Mapped[int] = mapped_column(primary_key=True)

    group_id: Mapped[int] = mapped_column(
        ForeignKey("groups.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    from_member: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
    )

    to_member: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
    )

    amount: Mapped[Decimal] = mapped_column(
        money(),
        nullable=False,
    )

    resolved_by: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
    )

    # ── Relationships ──────────────────────────────────────────────────────

    group: Mapped["Group"] = relationship(  # noqa: F821
        "Group",
        back_populates="settlements",
    )

    def __repr__(self) -> str:  # pragma: no cover
        return (
            f"<Settlement id={self.id} "
            f"group_id={self.group_id} "
            f"from={self.from_member} "
            f"to={self.to_member} "
            f"amount={self.amount}>"
        )
