"""Share-sum integrity trigger on payee_shares.

Revision: 002_add_split_sum_trigger
Created:  2026-10-19

Enforces at the database level that the payee shares of an expense add up
to exactly its total_amount:

    SUM(payee_shares.amount WHERE expense_id = X) = expenses.total_amount WHERE id = X

The split calculator already guarantees this before anything is written.
The trigger catches writes that bypass the service layer (manual SQL,
scripts, a future code path that forgets the calculator).

Why DEFERRABLE INITIALLY DEFERRED:
  Editing an expense's payees clears the old share rows, flushes, and then
  inserts the new ones. Between those statements the sum is 0 or partial.
  Deferring the check to COMMIT means only the final state is checked.

Purge:
  The purge sweep deletes shares and then their expense in one transaction.
  At COMMIT the expense row is gone, total_amount reads as NULL, and the
  comparison is NULL (not TRUE), so nothing is raised.

Append-only:
  This file must NEVER be edited after it has been applied to any database.
  If a change is needed, create a new corrective migration.
"""

from __future__ import annotations

from alembic import op

# ── Alembic revision identifiers ──────────────────────────────────────────
revision: str = "002_add_split_sum_trigger"
down_revision: str | None = "001_initial_schema"
branch_labels: tuple | None = None
depends_on: tuple | None = None


# ── SQL definitions ────────────────────────────────────────────────────────
#
# Module-level constants so upgrade() and downgrade() reference the same
# names, and so the SQL is easy to review in isolation.

_CREATE_FUNCTION = """
CREATE OR REPLACE FUNCTION fn_check_share_sum()
RETURNS TRIGGER
LANGUAGE plpgsql
AS $$
DECLARE
    v_expense_id  INTEGER;
    v_share_sum   NUMERIC(12, 2);
    v_expense_amt NUMERIC(12, 2);
BEGIN
    -- DELETE provides OLD; INSERT and UPDATE provide NEW.
    IF TG_OP = 'DELETE' THEN
        v_expense_id := OLD.expense_id;
    ELSE
        v_expense_id := NEW.expense_id;
    END IF;

    SELECT COALESCE(SUM(amount), 0)
    INTO v_share_sum
    FROM payee_shares
    WHERE expense_id = v_expense_id;

    SELECT total_amount
    INTO v_expense_amt
    FROM expenses
    WHERE id = v_expense_id;

    -- NUMERIC(12,2) equality is exact.
    IF v_share_sum <> v_expense_amt THEN
        RAISE EXCEPTION
            'share sum (%) does not equal expense total (%) for expense id=%',
            v_share_sum, v_expense_amt, v_expense_id
            USING ERRCODE = '23514';  -- check_violation
    END IF;

    IF TG_OP = 'DELETE' THEN
        RETURN OLD;
    ELSE
        RETURN NEW;
    END IF;
END;
$$;
"""

_CREATE_TRIGGER = """
CREATE CONSTRAINT TRIGGER trg_payee_shares_sum_check
    AFTER INSERT OR UPDATE OR DELETE
    ON payee_shares
    DEFERRABLE INITIALLY DEFERRED
    FOR EACH ROW
    EXECUTE FUNCTION fn_check_share_sum();
"""

_DROP_TRIGGER = "DROP TRIGGER IF EXISTS trg_payee_shares_sum_check ON payee_shares;"
_DROP_FUNCTION = "DROP FUNCTION IF EXISTS fn_check_share_sum();"


def upgrade() -> None:
    """
    Creates the share-sum trigger and its backing function.

    The function must exist before the trigger references it. Once applied,
    a transaction that leaves an expense's shares out of balance fails at
    commit with SQLSTATE 23514 (check_violation).
    """
    op.execute(_CREATE_FUNCTION)
    op.execute(_CREATE_TRIGGER)


def downgrade() -> None:
    """Removes the trigger first (it references the function), then the function."""
    op.execute(_DROP_TRIGGER)
    op.execute(_DROP_FUNCTION)
