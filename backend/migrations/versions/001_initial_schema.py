"""Initial schema — all tables, constraints, and indexes.

Revision: 001_initial_schema
Created:  2026-10-19

Creates the SplitBill ledger schema: groups and their members, expenses with
per-payee shares, the derived consolidated edges, settlement records, and the
audit trail.

Append-only:
  This file must NEVER be edited after it has been applied to any database.
  If a schema change is required, create a NEW migration file.

Creation order:
  1. Tables in FK dependency order (groups → memberships → expenses
     → payee_shares → consolidated_edges, settlements, audit_entries)
  2. Indexes (including the partial index idx_expenses_active)

Status / policy / action columns are VARCHAR + CHECK rather than PostgreSQL
enum types, matching the models (native_enum=False). Adding a value is then
a constraint swap instead of an ALTER TYPE.

ON DELETE policies:
  Everything hangs off groups.id with CASCADE: the purge sweep removes a
  group and all of its rows. payee_shares.expense_id CASCADEs as well.
  Members are plain strings (identity lives elsewhere), so there is no
  users table to reference.
"""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op

# ── Alembic revision identifiers ──────────────────────────────────────────
revision: str = "001_initial_schema"
down_revision: str | None = None      # first migration — no parent
branch_labels: tuple | None = None
depends_on: tuple | None = None


def upgrade() -> None:
    """Apply the full initial schema."""

    # ── Step 1: groups ─────────────────────────────────────────────────────
    # version backs the ORM's optimistic version check.

    op.create_table(
        "groups",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column(
            "status",
            sa.String(32),
            nullable=False,
            server_default="active",
        ),
        sa.Column("invite_code", sa.String(32), nullable=False),
        sa.Column("created_by", sa.String(255), nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("NOW()"),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("NOW()"),
        ),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("purge_after", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "version",
            sa.Integer(),
            nullable=False,
            server_default=sa.text("1"),
        ),
        sa.PrimaryKeyConstraint("id", name="pk_groups"),
        sa.UniqueConstraint("invite_code", name="uq_groups_invite_code"),
        sa.CheckConstraint(
            "LENGTH(TRIM(name)) > 0",
            name="ck_groups_name_nonempty",
        ),
        sa.CheckConstraint(
            "status IN ('active', 'completed', 'deleted')",
            name="ck_groups_status",
        ),
        # A deleted group always carries its retention deadline.
        sa.CheckConstraint(
            "status <> 'deleted' OR (deleted_at IS NOT NULL AND purge_after IS NOT NULL)",
            name="ck_groups_deleted_has_purge_after",
        ),
    )

    # ── Step 2: memberships ────────────────────────────────────────────────
    # UNIQUE(group_id, member). Members stored trimmed and lower-cased.

    op.create_table(
        "memberships",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column(
            "group_id",
            sa.Integer(),
            sa.ForeignKey("groups.id", ondelete="CASCADE", name="fk_memberships_group"),
            nullable=False,
        ),
        sa.Column("member", sa.String(255), nullable=False),
        sa.Column("display_name", sa.String(100), nullable=True),
        sa.Column(
            "joined_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("NOW()"),
        ),
        sa.PrimaryKeyConstraint("id", name="pk_memberships"),
        sa.UniqueConstraint("group_id", "member", name="uq_memberships_group_member"),
    )

    # ── Step 3: expenses ───────────────────────────────────────────────────
    # deleted_at IS NULL = active; non-null = deleted but kept for history.

    op.create_table(
        "expenses",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column(
            "group_id",
            sa.Integer(),
            sa.ForeignKey("groups.id", ondelete="CASCADE", name="fk_expenses_group"),
            nullable=False,
        ),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("total_amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("payer", sa.String(255), nullable=False),
        sa.Column(
            "split_policy",
            sa.String(32),
            nullable=False,
            server_default="explicit",
        ),
        sa.Column(
            "tax",
            sa.Numeric(12, 2),
            nullable=False,
            server_default=sa.text("0"),
        ),
        sa.Column(
            "tip",
            sa.Numeric(12, 2),
            nullable=False,
            server_default=sa.text("0"),
        ),
        sa.Column("created_by", sa.String(255), nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("NOW()"),
        ),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id", name="pk_expenses"),
        sa.CheckConstraint("total_amount > 0", name="ck_expenses_amount_positive"),
        sa.CheckConstraint("tax >= 0", name="ck_expenses_tax_non_negative"),
        sa.CheckConstraint("tip >= 0", name="ck_expenses_tip_non_negative"),
        sa.CheckConstraint(
            "LENGTH(TRIM(name)) > 0",
            name="ck_expenses_name_nonempty",
        ),
        sa.CheckConstraint(
            "split_policy IN ('equal', 'explicit', 'proportional')",
            name="ck_expenses_split_policy",
        ),
    )

    # ── Step 4: payee_shares ───────────────────────────────────────────────
    # expense_id ON DELETE CASCADE — shares are owned by their expense.
    # A zero share is allowed (an equal split of 0.02 across three people).

    op.create_table(
        "payee_shares",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column(
            "expense_id",
            sa.Integer(),
            sa.ForeignKey("expenses.id", ondelete="CASCADE", name="fk_payee_shares_expense"),
            nullable=False,
        ),
        sa.Column("member", sa.String(255), nullable=False),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column(
            "is_payer",
            sa.Boolean(),
            nullable=False,
            server_default=sa.text("FALSE"),
        ),
        sa.Column(
            "position",
            sa.Integer(),
            nullable=False,
            server_default=sa.text("0"),
        ),
        sa.PrimaryKeyConstraint("id", name="pk_payee_shares"),
        sa.UniqueConstraint("expense_id", "member", name="uq_payee_shares_expense_member"),
        sa.CheckConstraint("amount >= 0", name="ck_payee_shares_amount_non_negative"),
    )

    # ── Step 5: consolidated_edges ─────────────────────────────────────────
    # One row per ordered (from, to) pair. Rebuilt on every expense mutation.

    op.create_table(
        "consolidated_edges",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column(
            "group_id",
            sa.Integer(),
            sa.ForeignKey("groups.id", ondelete="CASCADE", name="fk_edges_group"),
            nullable=False,
        ),
        sa.Column("from_member", sa.String(255), nullable=False),
        sa.Column("to_member", sa.String(255), nullable=False),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column(
            "resolved",
            sa.Boolean(),
            nullable=False,
            server_default=sa.text("FALSE"),
        ),
        sa.Column("resolved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("resolved_amount", sa.Numeric(12, 2), nullable=True),
        sa.PrimaryKeyConstraint("id", name="pk_consolidated_edges"),
        sa.UniqueConstraint(
            "group_id", "from_member", "to_member",
            name="uq_edges_group_pair",
        ),
        sa.CheckConstraint("amount > 0", name="ck_edges_amount_positive"),
        sa.CheckConstraint(
            "from_member <> to_member",
            name="ck_edges_no_self_edge",
        ),
    )

    # ── Step 6: settlements ────────────────────────────────────────────────

    op.create_table(
        "settlements",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column(
            "group_id",
            sa.Integer(),
            sa.ForeignKey("groups.id", ondelete="CASCADE", name="fk_settlements_group"),
            nullable=False,
        ),
        sa.Column("from_member", sa.String(255), nullable=False),
        sa.Column("to_member", sa.String(255), nullable=False),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("resolved_by", sa.String(255), nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("NOW()"),
        ),
        sa.PrimaryKeyConstraint("id", name="pk_settlements"),
        sa.CheckConstraint("amount > 0", name="ck_settlements_amount_positive"),
        sa.CheckConstraint(
            "from_member <> to_member",
            name="ck_settlements_no_self_settlement",
        ),
    )

    # ── Step 7: audit_entries ──────────────────────────────────────────────
    # expense_id is deliberately not a FK: history outlives the expense row.

    op.create_table(
        "audit_entries",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column(
            "group_id",
            sa.Integer(),
            sa.ForeignKey("groups.id", ondelete="CASCADE", name="fk_audit_entries_group"),
            nullable=False,
        ),
        sa.Column("group_name", sa.String(100), nullable=False),
        sa.Column("action", sa.String(32), nullable=False),
        sa.Column("actor", sa.String(255), nullable=False),
        sa.Column("expense_id", sa.Integer(), nullable=True),
        sa.Column("expense_name", sa.String(255), nullable=True),
        sa.Column("old_amount", sa.Numeric(12, 2), nullable=True),
        sa.Column("new_amount", sa.Numeric(12, 2), nullable=True),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("NOW()"),
        ),
        sa.PrimaryKeyConstraint("id", name="pk_audit_entries"),
        sa.CheckConstraint(
            "action IN ('add_expense', 'edit_expense', 'delete_expense', 'delete_group')",
            name="ck_audit_entries_action",
        ),
    )

    # ── Step 8: Indexes ────────────────────────────────────────────────────
    # Names match what the models generate so autogenerate stays quiet.

    op.create_index("ix_groups_status", "groups", ["status"])
    op.create_index("ix_groups_purge_after", "groups", ["purge_after"])

    op.create_index("ix_memberships_group_id", "memberships", ["group_id"])
    op.create_index("ix_memberships_member", "memberships", ["member"])

    op.create_index("ix_expenses_group_id", "expenses", ["group_id"])
    # Partial index: debt derivation only ever reads active expenses.
    op.create_index(
        "idx_expenses_active",
        "expenses",
        ["group_id"],
        postgresql_where=sa.text("deleted_at IS NULL"),
    )

    op.create_index("ix_payee_shares_expense_id", "payee_shares", ["expense_id"])

    op.create_index("ix_consolidated_edges_group_id", "consolidated_edges", ["group_id"])

    op.create_index("ix_settlements_group_id", "settlements", ["group_id"])

    op.create_index("idx_audit_group_created", "audit_entries", ["group_id", "created_at"])
    op.create_index("ix_audit_entries_actor", "audit_entries", ["actor"])


def downgrade() -> None:
    """
    Drop all objects created in upgrade(), in reverse dependency order.

    Provided for local development resets. In production prefer a
    corrective migration over a rollback.
    """

    op.drop_index("ix_audit_entries_actor",         table_name="audit_entries")
    op.drop_index("idx_audit_group_created",        table_name="audit_entries")
    op.drop_index("ix_settlements_group_id",        table_name="settlements")
    op.drop_index("ix_consolidated_edges_group_id", table_name="consolidated_edges")
    op.drop_index("ix_payee_shares_expense_id",     table_name="payee_shares")
    op.drop_index("idx_expenses_active",            table_name="expenses")
    op.drop_index("ix_expenses_group_id",           table_name="expenses")
    op.drop_index("ix_memberships_member",          table_name="memberships")
    op.drop_index("ix_memberships_group_id",        table_name="memberships")
    op.drop_index("ix_groups_purge_after",          table_name="groups")
    op.drop_index("ix_groups_status",               table_name="groups")

    op.drop_table("audit_entries")
    op.drop_table("settlements")
    op.drop_table("consolidated_edges")
    op.drop_table("payee_shares")
    op.drop_table("expenses")
    op.drop_table("memberships")
    op.drop_table("groups")
