# Overview: Read-only stock movement history for audit and reporting screens.

from flask import Blueprint, jsonify, request

from ..services.ledger_service import list_stock_movements
from ..services.stock_types import STOCK_CAUSES
from bakery.time_utils import parse_iso_datetime

"""
Time semantics:
- start/end accept ISO-8601 datetimes with Z/offsets and are inclusive.
- Items are newest first.
"""

movements_bp = Blueprint("movements", __name__, url_prefix="/api/movements")


@movements_bp.get("")
def list_movements_route():
    limit = request.args.get("limit", default=100, type=int)
    limit = max(1, min(limit, 500))

    try:
        start_dt = parse_iso_datetime(request.args.get("start"))
        end_dt = parse_iso_datetime(request.args.get("end"))
    except ValueError:
        return jsonify({"error": "start and end must be ISO-8601 datetimes"}), 400

    cause = request.args.get("cause") or None
    if cause is not None and cause not in STOCK_CAUSES:
        return jsonify({"error": f"Unknown cause: {cause}"}), 400

    movements = list_stock_movements(
        product_id=request.args.get("product_id", type=int),
        branch_id=request.args.get("branch_id", type=int),
        cause=cause,
        reference_id=request.args.get("reference_id") or None,
        start=start_dt,
        end=end_dt,
        limit=limit,
    )
    return jsonify({"items": [m.to_dict() for m in movements], "limit": limit}), 200
