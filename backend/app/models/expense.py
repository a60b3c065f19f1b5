"""
models/expense.py — Expense table definition.

No business logic. No imports from services or routes.

Key design points:
  - `deleted_at` is NULL for active expenses, non-null for deleted ones.
    Deleted expenses are kept (the audit trail refers to them) but never
    contribute obligations to the debt graph.
  - `total_amount`, `tax` and `tip` use Numeric(12, 2) — never Float.
  - `tax`/`tip` are only meaningful for the proportional split policy; they
    are part of `total_amount`, not added on top of it.
  - SplitPolicy is a Python enum so it can be imported and used throughout
    the service layer without repeating string literals.
"""

from __future__ import annotations

import enum
from datetime import datetime
from decimal import Decimal

from sqlalchemy import CheckConstraint, DateTime, ForeignKey, Index, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from backend.app.extensions import db
from backend.app.models.base import money, utcnow, value_enum


class SplitPolicy(str, enum.Enum):
    EQUAL        = "equal"
    EXPLICIT     = "explicit"
    PROPORTIONAL = "proportional"


class Expense(db.Model):
    __tablename__ = "expenses"

    __table_args__ = (
        CheckConstraint("total_amount > 0", name="ck_expenses_amount_positive"),
        CheckConstraint("tax >= 0", name="ck_expenses_tax_non_negative"),
        CheckConstraint("tip >= 0", name="ck_expenses_tip_non_negative"),
        CheckConstraint(
            "LENGTH(TRIM(name)) > 0",
            name="ck_expenses_name_nonempty",
        ),
        # Debt derivation always reads the active expenses of one group.
        Index(
            "idx_expenses_active",
            "group_id",
            postgresql_where="deleted_at IS NULL",
        ),
    )

    id: Mapped[int] = mapped_column(primary_key=True)

    group_id: Mapped[int] = mapped_column(
        ForeignKey("groups.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    name: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
    )

    total_amount: Mapped[Decimal] = mapped_column(
        money(),
        nullable=False,
    )

    payer: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
    )

    split_policy: Mapped[SplitPolicy] = mapped_column(
        value_enum(SplitPolicy, "split_policy_enum"),
        nullable=False,
        default=SplitPolicy.EXPLICIT,
    )

    tax: Mapped[Decimal] = mapped_column(
        money(),
        nullable=False,
        default=Decimal("0.00"),
    )

    tip: Mapped[Decimal] = mapped_column(
        money(),
        nullable=False,
        default=Decimal("0.00"),
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

    # Set on every successful edit.
    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    deleted_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    # ── Relationships ──────────────────────────────────────────────────────

    group: Mapped["Group"] = relationship(  # noqa: F821
        "Group",
        back_populates="expenses",
    )

    # Ordered: the payee list is returned in the order it was submitted.
    shares: Mapped[list["PayeeShare"]] = relationship(  # noqa: F821
        "PayeeShare",
        back_populates="expense",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="PayeeShare.position",
    )

    @property
    def is_deleted(self) -> bool:
        """True if this expense has been deleted."""
        return self.deleted_at is not None

    def __repr__(self) -> str:  # pragma: no cover
        return (
            f"<Expense id={self.id} "
            f"group_id={self.group_id} "
            f"total_amount={self.total_amount} "
            f"deleted={self.is_deleted}>"
        )
