# backend/bakery/routes/reconciliation.py
"""
Stock drift detection and correction.

scan is read-only; fix writes a reconciliation_fix movement per corrected row.
"""
from flask import Blueprint, current_app, jsonify, request

from ..services import reconciliation_service
from ..validation import ValidationError, require_int, require_text
from .errors import SERVICE_ERRORS, error_response


reconciliation_bp = Blueprint("reconciliation", __name__, url_prefix="/api/reconciliation")


@reconciliation_bp.get("/scan")
def scan_route():
    branch_id = request.args.get("branch_id", type=int)
    discrepancies = reconciliation_service.reconcile(branch_id=branch_id)
    return jsonify({
        "branch_id": branch_id,
        "discrepancies": [d.to_dict() for d in discrepancies],
        "count": len(discrepancies),
    }), 200


@reconciliation_bp.post("/fix")
def fix_route():
    """
    Request body:
    {
        "performed_by": "admin1",
        "discrepancies": [{"product_id": 1, "branch_id": 1}, ...]   (optional)
        "branch_id": 1                                               (optional)
    }

    Without "discrepancies" a fresh scan (optionally per branch) is fixed.
    """
    payload = request.get_json(silent=True) or {}
    try:
        performed_by = require_text(payload, "performed_by", allow_missing=True, max_length=64)
        targets = payload.get("discrepancies")
        if targets is None:
            targets = reconciliation_service.reconcile(
                branch_id=require_int(payload, "branch_id", allow_missing=True)
            )
        elif not isinstance(targets, list):
            raise ValidationError("discrepancies must be a list")
        else:
            targets = [
                {"product_id": require_int(t, "product_id"), "branch_id": require_int(t, "branch_id")}
                for t in targets
            ]

        success = reconciliation_service.fix(targets, performed_by=performed_by)
        return jsonify({"success": success, "fixed_candidates": len(targets)}), 200
    except SERVICE_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to fix stock drift")
        return jsonify({"error": "Internal server error"}), 500


@reconciliation_bp.post("/baseline")
def baseline_route():
    payload = request.get_json(silent=True) or {}
    try:
        level = reconciliation_service.set_baseline(
            require_int(payload, "product_id"),
            require_int(payload, "branch_id"),
        )
        return jsonify({"stock_level": level.to_dict()}), 200
    except SERVICE_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to set stock baseline")
        return jsonify({"error": "Internal server error"}), 500
