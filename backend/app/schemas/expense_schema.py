"""
schemas/expense_schema.py — Marshmallow schemas for expense endpoints.

Validation responsibility:
  - This file:
      - Field types, lengths, enum values, decimal precision
      - AMOUNTS_SENT_FOR_EQUAL_POLICY (400) — request shape rule
      - DUPLICATE_PAYEE               (400) — request shape rule
      - Every payee needs an amount unless split_policy='equal'
      - PATCH: split-affecting fields require the payee list
      - Non-empty-after-trim enforcement for name
  - services/split_calculator.py:
      - SPLIT_SUM_MISMATCH (422) — requires Decimal arithmetic on the total
  - services/expense_service.py:
      - PAYER_NOT_MEMBER / PAYEE_NOT_MEMBER (422) — require DB lookups
      - EXPENSE_DELETED, GROUP_NOT_ACTIVE (422)   — require DB record state

IMPORTANT: Inherits from marshmallow.Schema directly — never ma.Schema.
           See extensions.py for the full explanation.
"""

from __future__ import annotations

from decimal import Decimal

from marshmallow import (
    Schema,
    ValidationError,
    fields,
    post_load,
    validate,
    validates_schema,
)

from backend.app.errors import ErrorCode
from backend.app.models.expense import SplitPolicy


# ── Shared monetary validators ─────────────────────────────────────────────
#
# Input with more than 2 decimal places is REJECTED with
# INVALID_AMOUNT_PRECISION — never rounded or truncated.
# ──────────────────────────────────────────────────────────────────────────

def _validate_precision(value: Decimal) -> None:
    # Decimal("10.123").as_tuple().exponent == -3 → 3 dp → REJECT
    if value.as_tuple().exponent < -2:
        raise ValidationError(ErrorCode.INVALID_AMOUNT_PRECISION)


def _validate_positive_amount(value: Decimal) -> None:
    if value <= Decimal("0"):
        raise ValidationError("Amount must be greater than zero.")
    _validate_precision(value)


def _validate_non_negative_amount(value: Decimal) -> None:
    if value < Decimal("0"):
        raise ValidationError("Amount must not be negative.")
    _validate_precision(value)


def _validate_non_empty_after_trim(value: str) -> None:
    """Mirrors the DB CHECK(LENGTH(TRIM(...)) > 0) constraint at the API layer."""
    if not value.strip():
        raise ValidationError("This field must not be blank or contain only whitespace.")


def _check_payees(payees: list[dict] | None, policy: SplitPolicy | None) -> None:
    """Shape rules shared by create and patch."""
    if payees is None:
        return

    if not payees:
        raise ValidationError({"payees": [ErrorCode.EMPTY_PAYEES]})

    members = [p["member"].strip().lower() for p in payees]
    if len(members) != len(set(members)):
        raise ValidationError({"payees": [ErrorCode.DUPLICATE_PAYEE]})

    has_amounts = [p.get("amount") is not None for p in payees]

    if policy == SplitPolicy.EQUAL:
        if any(has_amounts):
            raise ValidationError({"payees": [ErrorCode.AMOUNTS_SENT_FOR_EQUAL_POLICY]})
    elif policy == SplitPolicy.EXPLICIT and not all(has_amounts):
        raise ValidationError(
            {"payees": ["Every payee needs an amount when split_policy is 'explicit'."]}
        )


# ── Sub-schema: one entry in the `payees` array ────────────────────────────

class PayeeInputSchema(Schema):
    """
    One payee. `amount` is the owed amount for 'explicit', the pre-tax
    subtotal for 'proportional', and must be absent for 'equal'.
    A zero amount is allowed (e.g. someone only sharing tax and tip).
    """

    member = fields.Email(required=True)

    amount = fields.Decimal(
        required=False,
        allow_none=True,
        load_default=None,
        validate=_validate_non_negative_amount,
    )


# ── Create expense ─────────────────────────────────────────────────────────

class CreateExpenseSchema(Schema):
    """
    POST /groups/:id/expenses

    Split policy behaviour:
      - 'equal'        → total_amount required; payees carry no amounts.
      - 'explicit'     → every payee has an amount; total_amount optional
                         (derived from the payee amounts when absent).
      - 'proportional' → payee amounts are pre-tax subtotals; tax and tip
                         optional; total_amount optional (derived).
    """

    name = fields.Str(
        required=True,
        validate=[
            validate.Length(
                min=1,
                max=255,
                error="Name must be between 1 and 255 characters.",
            ),
            _validate_non_empty_after_trim,
        ],
    )

    total_amount = fields.Decimal(
        required=False,
        load_default=None,
        validate=_validate_positive_amount,
    )

    payer = fields.Email(required=True)

    payees = fields.List(
        fields.Nested(PayeeInputSchema),
        required=True,
    )

    split_policy = fields.Enum(
        SplitPolicy,
        load_default=SplitPolicy.EXPLICIT,
        by_value=True,
        error_messages={"unknown": ErrorCode.INVALID_SPLIT_POLICY},
    )

    tax = fields.Decimal(
        load_default=Decimal("0.00"),
        validate=_validate_non_negative_amount,
    )

    tip = fields.Decimal(
        load_default=Decimal("0.00"),
        validate=_validate_non_negative_amount,
    )

    @validates_schema
    def validate_split_coherence(self, data: dict, **kwargs) -> None:
        policy = data.get("split_policy", SplitPolicy.EXPLICIT)
        _check_payees(data.get("payees"), policy)

        if policy == SplitPolicy.EQUAL and data.get("total_amount") is None:
            raise ValidationError(
                {"total_amount": ["total_amount is required when split_policy is 'equal'."]}
            )

        if policy != SplitPolicy.PROPORTIONAL:
            for key in ("tax", "tip"):
                if data.get(key):
                    raise ValidationError(
                        {key: [f"{key} is only accepted when split_policy is 'proportional'."]}
                    )

    @post_load
    def strip_name(self, data: dict, **kwargs) -> dict:
        data["name"] = data["name"].strip()
        return data


# ── Patch expense ──────────────────────────────────────────────────────────

class PatchExpenseSchema(Schema):
    """
    PATCH /expenses/:id

    All fields are optional; at least one must be sent.

    Rules:
      1. name alone renames; payer alone re-assigns who paid.
      2. payees recomputes the split. Without total_amount, the total is
         recomputed from the payee amounts (equal keeps the old total).
      3. split_policy, total_amount, tax and tip only make sense with a new
         payee list, so they require payees.
    """

    name = fields.Str(
        required=False,
        validate=[
            validate.Length(
                min=1,
                max=255,
                error="Name must be between 1 and 255 characters.",
            ),
            _validate_non_empty_after_trim,
        ],
    )

    payer = fields.Email(required=False)

    payees = fields.List(
        fields.Nested(PayeeInputSchema),
        required=False,
    )

    split_policy = fields.Enum(
        SplitPolicy,
        required=False,
        by_value=True,
        error_messages={"unknown": ErrorCode.INVALID_SPLIT_POLICY},
    )

    total_amount = fields.Decimal(
        required=False,
        validate=_validate_positive_amount,
    )

    tax = fields.Decimal(
        required=False,
        validate=_validate_non_negative_amount,
    )

    tip = fields.Decimal(
        required=False,
        validate=_validate_non_negative_amount,
    )

    @validates_schema
    def validate_patch_coherence(self, data: dict, **kwargs) -> None:
        if not data:
            raise ValidationError("Nothing to update.")

        if "payees" not in data:
            for key in ("split_policy", "total_amount", "tax", "tip"):
                if key in data:
                    raise ValidationError(
                        {"payees": [f"payees must be provided when {key} is being updated."]}
                    )
            return

        # Without split_policy the service keeps the stored policy; the
        # calculator then enforces the amount rules for it.
        _check_payees(data["payees"], data.get("split_policy"))

    @post_load
    def strip_name(self, data: dict, **kwargs) -> dict:
        if "name" in data:
            data["name"] = data["name"].strip()
        return data
