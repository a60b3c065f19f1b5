"""
routes/settlements.py — Consolidated edge and resolve route handlers.

Layer rules:
  - Parse, validate, call ONE service, commit, return envelope.
  - No business logic. No DB queries. No bare SQL.

Endpoints (base url_prefix=/api/v1/groups):
  GET    /groups/:id/edges    → 200  consolidated edges with resolved state
  POST   /groups/:id/resolve  → 200  mark one edge as paid
"""

from __future__ import annotations

from flask import Blueprint, g, jsonify, request

from backend.app.extensions import db
from backend.app.middleware.auth_middleware import require_auth
from backend.app.schemas.settlement_schema import ResolveEdgeSchema
from backend.app.services import settlement_service

settlements_bp = Blueprint("settlements", __name__)


@settlements_bp.route("/<int:group_id>/edges", methods=["GET"])
@require_auth
def list_edges(group_id: int):
    """GET /groups/:id/edges — Who owes whom, after netting."""
    result = settlement_service.list_edges(
        group_id=group_id,
        caller=g.member,
        session=db.session,
    )
    return jsonify({"data": result, "warnings": []}), 200


@settlements_bp.route("/<int:group_id>/resolve", methods=["POST"])
@require_auth
def resolve_edge(group_id: int):
    """
    POST /groups/:id/resolve — The debtor attests a payment was made.
    Resolving the last pending edge completes the group unless keep_active.
    """
    data = ResolveEdgeSchema().load(request.get_json(force=True) or {})
    result = settlement_service.resolve_edge(
        group_id=group_id,
        caller=g.member,
        from_member=data["from_member"],
        to_member=data["to_member"],
        session=db.session,
        keep_active=data["keep_active"],
    )
    db.session.commit()
    return jsonify({"data": result, "warnings": []}), 200
