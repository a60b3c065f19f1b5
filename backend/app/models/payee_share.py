"""
models/payee_share.py — Per-expense payee share table definition.

No business logic. No imports from services or routes.

Key design points:
  - `amount` uses Numeric(12, 2) and may be 0 (an equal split of 0.02
    across three people leaves someone with 0.00). A zero share is kept for
    display but is never turned into an obligation.
  - `is_payer` marks the payer's own share. It is never a debt.
  - UNIQUE(expense_id, member): a member appears at most once per expense.

Σ(shares.amount) == expense.total_amount is enforced by the split
calculator before anything is written.
"""

from __future__ import annotations

from decimal import Decimal

from sqlalchemy import Boolean, CheckConstraint, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from backend.app.extensions import db
from backend.app.models.base import money


class PayeeShare(db.Model):
    __tablename__ = "payee_shares"

    __table_args__ = (
        UniqueConstraint("expense_id", "member", name="uq_payee_shares_expense_member"),
        CheckConstraint("amount >= 0", name="ck_payee_shares_amount_non_negative"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)

    expense_id: Mapped[int] = mapped_column(
        ForeignKey("expenses.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    member: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
    )

    amount: Mapped[Decimal] = mapped_column(
        money(),
        nullable=False,
    )

    is_payer: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
    )

    position: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
    )

    # ── Relationships ──────────────────────────────────────────────────────

    expense: Mapped["Expense"] = relationship(  # noqa: F821
        "Expense",
        back_populates="shares",
    )

    def __repr__(self) -> str:  # pragma: no cover
        return (
            f"<PayeeShare id={self.id} "
            f"expense_id={self.expense_id} "
            f"member={self.member!r} "
            f"amount={self.amount}>"
        )
