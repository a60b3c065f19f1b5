"""
routes/bills.py — Itemised bill split preview.

Nothing is persisted: the client previews who owes what for a scanned or
typed bill, then submits it as a normal expense.

Endpoints (base url_prefix=/api/v1/bills):
  POST   /bills/split  → 200  per-person items / tax / tip / total
"""

from __future__ import annotations

from flask import Blueprint, jsonify, request

from backend.app.middleware.auth_middleware import require_auth
from backend.app.schemas.bill_schema import BillSplitSchema
from backend.app.services import split_calculator

bills_bp = Blueprint("bills", __name__)


@bills_bp.route("/split", methods=["POST"])
@require_auth
def split_bill():
    """POST /bills/split — Preview a bill split with the chosen tax/tip mode."""
    data = BillSplitSchema().load(request.get_json(force=True) or {})
    result = split_calculator.split_bill(
        items=data["items"],
        tax=data["tax"],
        tip=data["tip"],
        mode=data["split_tax_tip"],
    )
    return jsonify({"data": result, "warnings": []}), 200
