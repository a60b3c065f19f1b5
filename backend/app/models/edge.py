"""
models/edge.py — ConsolidatedEdge table definition.

No business logic. No imports from services or routes.

Edges are derived: services/debt_service.py rebuilds the full edge set
of a group after every expense mutation, and settlement_service.reconcile_edges
carries resolved state across the rebuild.

Key design points:
  - UNIQUE(group_id, from_member, to_member): one edge per ordered pair.
  - CHECK(from_member <> to_member): nobody owes themselves.
  - `resolved_amount` is the amount the debtor attested to when resolving.
    Recomputation compares against it, not against the current `amount`.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from sqlalchemy import Boolean, CheckConstraint, DateTime, ForeignKey, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from backend.app.extensions import db
from backend.app.models.base import money


class ConsolidatedEdge(db.Model):
    __tablename__ = "consolidated_edges"

    __table_args__ = (
        UniqueConstraint(
            "group_id", "from_member", "to_member",
            name="uq_edges_group_pair",
        ),
        CheckConstraint("amount > 0", name="ck_edges_amount_positive"),
        CheckConstraint(
            "from_member <> to_member",
            name="ck_edges_no_self_edge",
        ),
    )

    id: Mapped[int] = mapped_column(primary_key=True)

    group_id: Mapped[int] = mapped_column(
        ForeignKey("groups.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    # Debtor.
    from_member: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
    )

    # Creditor.
    to_member: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
    )

    amount: Mapped[Decimal] = mapped_column(
        money(),
        nullable=False,
    )

    resolved: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
    )

    resolved_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    resolved_amount: Mapped[Decimal | None] = mapped_column(
        money(),
        nullable=True,
    )

    # ── Relationships ──────────────────────────────────────────────────────

    group: Mapped["Group"] = relationship(  # noqa: F821
        "Group",
        back_populates="edges",
    )

    @property
    def pair(self) -> tuple[str, str]:
        return (self.from_member, self.to_member)

    def __repr__(self) -> str:  # pragma: no cover
        return (
            f"<ConsolidatedEdge group_id={self.group_id} "
            f"{self.from_member}->{self.to_member} "
            f"amount={self.amount} resolved={self.resolved}>"
        )
