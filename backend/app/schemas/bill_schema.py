"""
schemas/bill_schema.py — Marshmallow schemas for the bill split preview.

IMPORTANT: Inherits from marshmallow.Schema directly — never ma.Schema.
"""

from __future__ import annotations

from decimal import Decimal

from marshmallow import Schema, ValidationError, fields, validate

from backend.app.errors import ErrorCode


def _validate_non_negative_amount(value: Decimal) -> None:
    if value < Decimal("0"):
        raise ValidationError("Amount must not be negative.")
    if value.as_tuple().exponent < -2:
        raise ValidationError(ErrorCode.INVALID_AMOUNT_PRECISION)


class BillItemSchema(Schema):
    name = fields.Str(required=True, validate=validate.Length(min=1, max=255))
    price = fields.Decimal(required=True, validate=_validate_non_negative_amount)
    assigned_to = fields.List(fields.Email(), load_default=list)


class BillSplitSchema(Schema):
    """
    POST /bills/split

    `price` is the line total (already multiplied by quantity).
    """

    items = fields.List(
        fields.Nested(BillItemSchema),
        required=True,
        validate=validate.Length(min=1, error="A bill needs at least one item."),
    )
    tax = fields.Decimal(load_default=Decimal("0.00"), validate=_validate_non_negative_amount)
    tip = fields.Decimal(load_default=Decimal("0.00"), validate=_validate_non_negative_amount)
    split_tax_tip = fields.Str(
        load_default="proportional",
        validate=validate.OneOf(
            ["proportional", "equal"],
            error=ErrorCode.INVALID_TAX_TIP_MODE,
        ),
    )
