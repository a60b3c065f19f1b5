"""
schemas/group_schema.py — Marshmallow schemas for group and membership endpoints.

Validation responsibility:
  - This file: field types, string lengths, non-empty checks (including trim).
  - services/group_service.py:
      - FORBIDDEN (caller must be a member to read/write group data)
      - ALREADY_MEMBER / MEMBER_NOT_FOUND (require DB lookups)
      - INVITE_NOT_FOUND / GROUP_NOT_FOUND (require DB lookups)

IMPORTANT: Inherits from marshmallow.Schema directly — never ma.Schema.
           See extensions.py for the full explanation.
"""

from __future__ import annotations

from marshmallow import Schema, ValidationError, fields, pre_load, validate


def _validate_non_empty_after_trim(value: str) -> None:
    """Mirrors the DB CHECK(LENGTH(TRIM(...)) > 0) constraint at the API layer."""
    if not value.strip():
        raise ValidationError("This field must not be blank or contain only whitespace.")


class MemberInputSchema(Schema):
    """One member: an email-like id plus an optional display name."""

    member = fields.Email(required=True)

    display_name = fields.Str(
        required=False,
        allow_none=True,
        load_default=None,
        validate=validate.Length(max=100),
    )

    @pre_load
    def accept_plain_string(self, data, **kwargs):
        # "members": ["a@x.com"] is shorthand for [{"member": "a@x.com"}].
        if isinstance(data, str):
            return {"member": data}
        return data


class CreateGroupSchema(Schema):
    """
    POST /groups

    name — non-empty after trim, max 100 chars.
    members — optional; the creator is always added by the service.
    """

    name = fields.Str(
        required=True,
        validate=[
            validate.Length(
                min=1,
                max=100,
                error="Group name must be between 1 and 100 characters.",
            ),
            _validate_non_empty_after_trim,
        ],
    )

    members = fields.List(
        fields.Nested(MemberInputSchema),
        load_default=list,
    )


class AddMembersSchema(Schema):
    """POST /groups/:id/members"""

    members = fields.List(
        fields.Nested(MemberInputSchema),
        required=True,
        validate=validate.Length(min=1, error="At least one member is required."),
    )


class JoinGroupSchema(Schema):
    """POST /groups/join"""

    invite_code = fields.Str(
        required=True,
        validate=[
            validate.Length(min=1, max=32),
            _validate_non_empty_after_trim,
        ],
    )

    display_name = fields.Str(
        required=False,
        allow_none=True,
        load_default=None,
        validate=validate.Length(max=100),
    )
