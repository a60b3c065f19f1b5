"""
routes/groups.py — Group, membership and lifecycle route handlers.

Layer rules:
  - Parse, validate, call ONE service, commit, return envelope.
  - No business logic. No DB queries. No bare SQL.

Endpoints (base url_prefix=/api/v1/groups):
  POST   /groups                         → 201  create group
  GET    /groups                         → 200  list caller's groups
  GET    /groups/pending                 → 200  groups where the caller owes
  GET    /groups/awaiting                → 200  groups where the caller is owed
  GET    /groups/history                 → 200  completed / recently deleted
  POST   /groups/join                    → 201  join by invite code
  GET    /groups/:id                     → 200  group + members + expenses + edges
  POST   /groups/:id/members             → 201  add members
  DELETE /groups/:id/members/:member     → 200  remove member (creator or self)
  DELETE /groups/:id                     → 200  delete group (starts retention)
  POST   /groups/:id/complete            → 200  complete group
  GET    /groups/:id/edit-history        → 200  audit trail, newest first
"""

from __future__ import annotations

from flask import Blueprint, current_app, g, jsonify, request

from backend.app.extensions import db
from backend.app.middleware.auth_middleware import require_auth
from backend.app.schemas.group_schema import AddMembersSchema, CreateGroupSchema, JoinGroupSchema
from backend.app.services import group_service, lifecycle_service, settlement_service

groups_bp = Blueprint("groups", __name__)


@groups_bp.route("/", methods=["POST"])
@require_auth
def create_group():
    """POST /groups — Create a new group. Caller becomes the first member."""
    data = CreateGroupSchema().load(request.get_json(force=True) or {})
    result = group_service.create_group(
        name=data["name"].strip(),
        creator=g.member,
        members=data["members"],
        session=db.session,
        invite_code_length=current_app.config["INVITE_CODE_LENGTH"],
    )
    db.session.commit()
    return jsonify({"data": result, "warnings": []}), 201


@groups_bp.route("/", methods=["GET"])
@require_auth
def list_groups():
    """GET /groups — List the caller's groups that are not deleted."""
    result = group_service.list_groups(
        caller=g.member,
        session=db.session,
    )
    return jsonify({"data": result, "warnings": []}), 200


@groups_bp.route("/pending", methods=["GET"])
@require_auth
def pending():
    """GET /groups/pending — Unsettled edges the caller owes, grouped by group."""
    result = settlement_service.pending_summary(
        caller=g.member,
        session=db.session,
    )
    return jsonify({"data": result, "warnings": []}), 200


@groups_bp.route("/awaiting", methods=["GET"])
@require_auth
def awaiting():
    """GET /groups/awaiting — Unsettled edges owed to the caller, grouped by group."""
    result = settlement_service.awaiting_summary(
        caller=g.member,
        session=db.session,
    )
    return jsonify({"data": result, "warnings": []}), 200


@groups_bp.route("/history", methods=["GET"])
@require_auth
def history():
    """GET /groups/history — Completed groups and deleted ones not yet purged."""
    result = group_service.group_history(
        caller=g.member,
        session=db.session,
    )
    return jsonify({"data": result, "warnings": []}), 200


@groups_bp.route("/join", methods=["POST"])
@require_auth
def join_group():
    """POST /groups/join — Join the group that holds the given invite code."""
    data = JoinGroupSchema().load(request.get_json(force=True) or {})
    result = group_service.join_group(
        invite_code=data["invite_code"],
        caller=g.member,
        session=db.session,
        display_name=data["display_name"],
    )
    db.session.commit()
    return jsonify({"data": result, "warnings": []}), 201


@groups_bp.route("/<int:group_id>", methods=["GET"])
@require_auth
def get_group(group_id: int):
    """GET /groups/:id — Group details. Caller must be a member."""
    result = group_service.get_group(
        group_id=group_id,
        caller=g.member,
        session=db.session,
    )
    return jsonify({"data": result, "warnings": []}), 200


@groups_bp.route("/<int:group_id>/members", methods=["POST"])
@require_auth
def add_members(group_id: int):
    """POST /groups/:id/members — Add one or more members."""
    data = AddMembersSchema().load(request.get_json(force=True) or {})
    result = group_service.add_members(
        group_id=group_id,
        caller=g.member,
        members=data["members"],
        session=db.session,
    )
    db.session.commit()
    return jsonify({"data": result, "warnings": []}), 201


@groups_bp.route("/<int:group_id>/members/<string:member>", methods=["DELETE"])
@require_auth
def remove_member(group_id: int, member: str):
    """DELETE /groups/:id/members/:member — Creator removes anyone; members remove self."""
    group_service.remove_member(
        group_id=group_id,
        caller=g.member,
        member=member,
        session=db.session,
    )
    db.session.commit()
    return jsonify({
        "data": {
            "removed": True,
            "group_id": group_id,
            "member": member.strip().lower(),
        },
        "warnings": [],
    }), 200


@groups_bp.route("/<int:group_id>", methods=["DELETE"])
@require_auth
def delete_group(group_id: int):
    """
    DELETE /groups/:id — Mark the group deleted.
    It stays readable in history until the retention window passes.
    """
    group = lifecycle_service.delete_group(
        group_id=group_id,
        caller=g.member,
        session=db.session,
        retention_days=current_app.config["RETENTION_DAYS"],
    )
    db.session.commit()
    return jsonify({
        "data": {
            "deleted": True,
            "group_id": group.id,
            "status": group.status.value,
            "deleted_at": group.deleted_at.isoformat(),
            "purge_after": group.purge_after.isoformat(),
        },
        "warnings": [],
    }), 200


@groups_bp.route("/<int:group_id>/complete", methods=["POST"])
@require_auth
def complete_group(group_id: int):
    """POST /groups/:id/complete — Complete a group with nothing left to settle."""
    group = lifecycle_service.complete_group(
        group_id=group_id,
        caller=g.member,
        session=db.session,
    )
    db.session.commit()
    return jsonify({
        "data": {
            "group_id": group.id,
            "group_name": group.name,
            "group_status": group.status.value,
        },
        "warnings": [],
    }), 200


@groups_bp.route("/<int:group_id>/edit-history", methods=["GET"])
@require_auth
def edit_history(group_id: int):
    """GET /groups/:id/edit-history — Audit trail, newest first."""
    result = group_service.edit_history(
        group_id=group_id,
        caller=g.member,
        session=db.session,
        limit=current_app.config["AUDIT_HISTORY_LIMIT"],
    )
    return jsonify({"data": result, "warnings": []}), 200
