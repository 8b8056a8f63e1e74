# backend/bakery/routes/inventory.py
"""
Stock read, validation and mutation routes for one (product, branch) pair or many.

performed_by is taken from the payload; authentication is handled upstream.
Validation endpoints never fail on shortages: they answer 200 with
is_valid=false and the deficit detail.
"""
from flask import Blueprint, current_app, jsonify, request

from ..services import stock_mutator, stock_reader, stock_validator
from ..validation import ValidationError, require_int, require_list, require_text
from .errors import SERVICE_ERRORS, error_response


inventory_bp = Blueprint("inventory", __name__, url_prefix="/api/inventory")


def _required_arg(name: str) -> int:
    value = request.args.get(name, type=int)
    if value is None:
        raise ValidationError(f"{name} query parameter is required (integer)")
    return value


def _level_payload(level) -> dict:
    data = level.to_dict()
    product = level.product
    data["product_name"] = product.name if product else None
    data["status"] = stock_reader.get_stock_status(
        level.quantity or 0,
        product.reorder_point if product else None,
    )
    return data


# =============================================================================
# READS
# =============================================================================

@inventory_bp.get("/stock")
def get_stock_route():
    """
    Current on-hand quantity for a pair plus its active batches in FEFO order.

    Query: product_id, branch_id (both required)
    """
    try:
        product_id = _required_arg("product_id")
        branch_id = _required_arg("branch_id")
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400

    batches = stock_reader.get_batches(product_id, branch_id)
    return jsonify({
        "product_id": product_id,
        "branch_id": branch_id,
        "quantity": stock_reader.get_stock(product_id, branch_id),
        "batches": [b.to_dict() for b in batches],
    }), 200


@inventory_bp.get("/levels")
def list_levels_route():
    branch_id = request.args.get("branch_id", type=int)
    levels = stock_reader.list_stock_levels(branch_id=branch_id)
    return jsonify({"items": [_level_payload(level) for level in levels], "count": len(levels)}), 200


@inventory_bp.get("/kpis")
def kpis_route():
    branch_id = request.args.get("branch_id", type=int)
    return jsonify(stock_reader.get_inventory_kpis(branch_id=branch_id)), 200


# =============================================================================
# VALIDATION
# =============================================================================

@inventory_bp.post("/validate")
def validate_route():
    """
    Request body: {"product_id": 1, "branch_id": 1, "quantity": 15}
    """
    payload = request.get_json(silent=True) or {}
    try:
        product_id = require_int(payload, "product_id")
        branch_id = require_int(payload, "branch_id")
        quantity = require_int(payload, "quantity", minimum=0)
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400

    result = stock_validator.validate(product_id, branch_id, quantity)
    return jsonify(result.to_dict()), 200


@inventory_bp.post("/validate-bulk")
def validate_bulk_route():
    """
    Request body: {"branch_id": 1, "items": [{"product_id": 1, "quantity": 2}, ...]}
    """
    payload = request.get_json(silent=True) or {}
    try:
        branch_id = require_int(payload, "branch_id")
        items = [
            {
                "product_id": require_int(item, "product_id"),
                "quantity": require_int(item, "quantity", minimum=0),
            }
            for item in require_list(payload, "items")
        ]
    except (ValidationError, TypeError) as e:
        return jsonify({"error": str(e) or "Invalid items"}), 400

    result = stock_validator.validate_bulk(items, branch_id)
    return jsonify(result.to_dict()), 200


@inventory_bp.post("/validate-package")
def validate_package_route():
    payload = request.get_json(silent=True) or {}
    try:
        product_id = require_int(payload, "product_id")
        branch_id = require_int(payload, "branch_id")
        quantity = require_int(payload, "quantity", minimum=1)
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400

    result = stock_validator.validate_package_stock(product_id, branch_id, quantity)
    return jsonify(result.to_dict()), 200


@inventory_bp.post("/override-check")
def override_check_route():
    """
    Ask whether a supervisor override with this reason would be accepted.

    Always 200; the answer is in "authorized".
    """
    payload = request.get_json(silent=True) or {}
    reason = payload.get("reason")
    authorized = stock_validator.apply_override(reason if isinstance(reason, str) else None)
    return jsonify({"authorized": authorized}), 200


# =============================================================================
# MUTATIONS
# =============================================================================

@inventory_bp.post("/initial")
def initial_stock_route():
    payload = request.get_json(silent=True) or {}
    try:
        new_quantity = stock_mutator.record_initial_stock(
            require_int(payload, "product_id"),
            require_int(payload, "branch_id"),
            require_int(payload, "quantity", minimum=0),
            performed_by=require_text(payload, "performed_by", allow_missing=True),
        )
        return jsonify({"quantity": new_quantity}), 201
    except SERVICE_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to record initial stock")
        return jsonify({"error": "Internal server error"}), 500


@inventory_bp.post("/adjust")
def adjust_route():
    """
    Manual adjustment.

    Request body:
    {
        "product_id": 1, "branch_id": 1,
        "delta": -3,
        "reason": "Dropped tray",
        "performed_by": "staff-7",
        "override_reason": "..."   (optional, needs override policy)
    }
    """
    payload = request.get_json(silent=True) or {}
    try:
        product_id = require_int(payload, "product_id")
        branch_id = require_int(payload, "branch_id")
        new_quantity = stock_mutator.adjust_stock(
            product_id,
            branch_id,
            require_int(payload, "delta"),
            require_text(payload, "reason"),
            performed_by=require_text(payload, "performed_by", allow_missing=True),
            override_reason=payload.get("override_reason"),
        )
        return jsonify({"product_id": product_id, "branch_id": branch_id, "quantity": new_quantity}), 200
    except SERVICE_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to adjust stock")
        return jsonify({"error": "Internal server error"}), 500


@inventory_bp.post("/correct")
def correct_route():
    payload = request.get_json(silent=True) or {}
    try:
        result = stock_mutator.correct_stock(
            require_int(payload, "product_id"),
            require_int(payload, "branch_id"),
            require_int(payload, "quantity", minimum=0),
            require_text(payload, "reason"),
            performed_by=require_text(payload, "performed_by", allow_missing=True),
        )
        return jsonify(result), 200
    except SERVICE_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to correct stock")
        return jsonify({"error": "Internal server error"}), 500


@inventory_bp.post("/bulk-edit")
def bulk_edit_route():
    """
    Request body:
    {
        "operations": [{"inventory_id": 1, "operation": "add", "value": 20}, ...],
        "performed_by": "admin1",
        "reason": "restock"
    }

    Returns 200 with {"updated": [...], "failed": [...]} even when some items
    failed; each operation stands alone.
    """
    payload = request.get_json(silent=True) or {}
    try:
        operations = require_list(payload, "operations")
        reason = require_text(payload, "reason")
        performed_by = require_text(payload, "performed_by", allow_missing=True)
        if not all(isinstance(op, dict) for op in operations):
            raise ValidationError("operations must be objects")

        result = stock_mutator.bulk_apply(operations, performed_by, reason)
        return jsonify(result.to_dict()), 200
    except SERVICE_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to bulk edit stock")
        return jsonify({"error": "Internal server error"}), 500


@inventory_bp.post("/batch-add")
def batch_add_route():
    payload = request.get_json(silent=True) or {}
    try:
        items = require_list(payload, "items")
        for item in items:
            if not isinstance(item, dict):
                raise ValidationError("items must be objects")
            require_int(item, "product_id")
            require_int(item, "branch_id")
        result = stock_mutator.batch_add_stock(
            items,
            performed_by=require_text(payload, "performed_by", allow_missing=True),
            reason=require_text(payload, "reason", allow_missing=True),
        )
        return jsonify(result), 200
    except SERVICE_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to batch add stock")
        return jsonify({"error": "Internal server error"}), 500


@inventory_bp.post("/transfer")
def transfer_route():
    payload = request.get_json(silent=True) or {}
    try:
        result = stock_mutator.transfer_stock(
            require_int(payload, "product_id"),
            require_int(payload, "from_branch_id"),
            require_int(payload, "to_branch_id"),
            require_int(payload, "quantity", minimum=1),
            performed_by=require_text(payload, "performed_by", allow_missing=True),
            reason=require_text(payload, "reason", allow_missing=True),
        )
        return jsonify(result), 200
    except SERVICE_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to transfer stock")
        return jsonify({"error": "Internal server error"}), 500
