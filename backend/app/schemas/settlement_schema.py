"""
schemas/settlement_schema.py — Marshmallow schema for the resolve endpoint.

Validation responsibility:
  - This file: field presence and types.
  - services/settlement_service.py:
      - FORBIDDEN (403)              — caller must be the debtor (`from`);
                                       needs flask.g, passed in by the route.
      - EDGE_NOT_FOUND (404)         — requires DB lookup.
      - EDGE_ALREADY_RESOLVED (422)  — requires DB record state.
      - GROUP_NOT_ACTIVE (422)       — requires DB record state.

IMPORTANT: Inherits from marshmallow.Schema directly — never ma.Schema.
           See extensions.py for the full explanation.
"""

from __future__ import annotations

from marshmallow import Schema, ValidationError, fields, post_load, validates_schema


class ResolveEdgeSchema(Schema):
    """
    POST /groups/:id/resolve

    `from` and `to` are Python keywords, so they load into from_member /
    to_member via data_key.
    """

    from_member = fields.Email(required=True, data_key="from")
    to_member = fields.Email(required=True, data_key="to")

    # Only matters when this resolves the group's last pending edge.
    keep_active = fields.Bool(load_default=False)

    @validates_schema
    def validate_not_self(self, data: dict, **kwargs) -> None:
        if data["from_member"].strip().lower() == data["to_member"].strip().lower():
            raise ValidationError({"to": ["A member cannot owe themselves."]})

    @post_load
    def normalise(self, data: dict, **kwargs) -> dict:
        data["from_member"] = data["from_member"].strip().lower()
        data["to_member"] = data["to_member"].strip().lower()
        return data
