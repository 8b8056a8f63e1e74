# backend/bakery/routes/batches.py
"""
Product batch routes: registration, FEFO listings, expiry.
"""
from flask import Blueprint, current_app, jsonify, request

from ..models import ProductBatch
from ..services import batch_service
from ..time_utils import parse_iso_date
from ..validation import (
    ModelValidationPolicy,
    ValidationError,
    enforce_rules_batch,
    require_int,
    require_text,
    validate_payload,
)
from .errors import SERVICE_ERRORS, error_response


batches_bp = Blueprint("batches", __name__, url_prefix="/api/batches")

BATCH_CREATE_POLICY = ModelValidationPolicy(
    writable_fields={"product_id", "branch_id", "batch_number", "quantity", "production_date", "expiry_date"},
    required_on_create={"product_id", "branch_id", "batch_number", "quantity"},
)


@batches_bp.post("")
def create_batch_route():
    """
    Register a batch.

    Request body:
    {
        "product_id": 1, "branch_id": 1,
        "batch_number": "B-2024-001",
        "quantity": 24,
        "production_date": "2024-01-01",   (optional, default today)
        "expiry_date": "2024-01-04",       (optional, default from shelf life)
        "receive_stock": true,             (optional; false labels existing stock)
        "performed_by": "baker-2"          (optional)
    }
    """
    payload = dict(request.get_json(silent=True) or {})
    receive_stock = bool(payload.pop("receive_stock", True))
    performed_by = payload.pop("performed_by", None)

    try:
        patch = validate_payload(
            model=ProductBatch,
            payload=payload,
            policy=BATCH_CREATE_POLICY,
            partial=False,
        )
        enforce_rules_batch(patch)
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400

    try:
        batch = batch_service.create_batch(
            patch["product_id"],
            patch["branch_id"],
            patch["batch_number"],
            patch["quantity"],
            production_date=patch.get("production_date"),
            expiry_date=patch.get("expiry_date"),
            receive_stock=receive_stock,
            performed_by=performed_by,
        )
        return jsonify({"batch": batch.to_dict()}), 201
    except SERVICE_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create batch")
        return jsonify({"error": "Internal server error"}), 500


@batches_bp.get("")
def list_batches_route():
    batches = batch_service.list_batches(
        branch_id=request.args.get("branch_id", type=int),
        product_id=request.args.get("product_id", type=int),
        status=request.args.get("status") or None,
    )
    return jsonify({"items": [b.to_dict() for b in batches], "count": len(batches)}), 200


@batches_bp.get("/expiring")
def expiring_batches_route():
    batches = batch_service.get_expiring_batches(
        days_ahead=request.args.get("days", type=int),
        branch_id=request.args.get("branch_id", type=int),
    )
    return jsonify({"items": [b.to_dict() for b in batches], "count": len(batches)}), 200


@batches_bp.post("/<int:batch_id>/status")
def update_status_route(batch_id: int):
    payload = request.get_json(silent=True) or {}
    try:
        batch = batch_service.update_batch_status(
            batch_id,
            require_text(payload, "status"),
            performed_by=require_text(payload, "performed_by", allow_missing=True),
        )
        return jsonify({"batch": batch.to_dict()}), 200
    except SERVICE_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to update batch status")
        return jsonify({"error": "Internal server error"}), 500


@batches_bp.post("/<int:batch_id>/quantity")
def adjust_quantity_route(batch_id: int):
    payload = request.get_json(silent=True) or {}
    try:
        batch = batch_service.adjust_batch_quantity(batch_id, require_int(payload, "quantity", minimum=0))
        return jsonify({"batch": batch.to_dict()}), 200
    except SERVICE_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to adjust batch quantity")
        return jsonify({"error": "Internal server error"}), 500


@batches_bp.post("/expire")
def expire_batches_route():
    """
    Expire active batches past their expiry date.

    Request body: {"as_of": "2024-01-05", "branch_id": 1, "performed_by": "system"} (all optional)
    """
    payload = request.get_json(silent=True) or {}
    try:
        try:
            as_of = parse_iso_date(payload.get("as_of"))
        except ValueError:
            raise ValidationError("as_of must be a YYYY-MM-DD date")
        result = batch_service.expire_batches(
            as_of=as_of,
            performed_by=require_text(payload, "performed_by", allow_missing=True),
            branch_id=require_int(payload, "branch_id", allow_missing=True),
        )
        return jsonify(result), 200
    except SERVICE_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to expire batches")
        return jsonify({"error": "Internal server error"}), 500
