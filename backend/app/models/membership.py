"""
models/membership.py — Group membership table definition.

No business logic. No imports from services or routes.

Members are identified by an email-like string owned by the identity
service. It is stored lower-cased and trimmed; services normalise before
every lookup.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from backend.app.extensions import db
from backend.app.models.base import utcnow


class Membership(db.Model):
    __tablename__ = "memberships"

    __table_args__ = (
        UniqueConstraint("group_id", "member", name="uq_memberships_group_member"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)

    group_id: Mapped[int] = mapped_column(
        ForeignKey("groups.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    member: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        index=True,
    )

    # Optional friendly name. Falls back to the local part of `member`.
    display_name: Mapped[str | None] = mapped_column(
        String(100),
        nullable=True,
    )

    joined_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
    )

    # ── Relationships ──────────────────────────────────────────────────────

    group: Mapped["Group"] = relationship(  # noqa: F821
        "Group",
        back_populates="memberships",
    )

    @property
    def name(self) -> str:
        return self.display_name or self.member.split("@")[0]

    def __repr__(self) -> str:  # pragma: no cover
        return (
            f"<Membership id={self.id} "
            f"group_id={self.group_id} "
            f"member={self.member!r}>"
        )
