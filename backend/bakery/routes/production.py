# backend/bakery/routes/production.py
"""
Production request routes. Completing a request receives stock.
"""
from flask import Blueprint, current_app, jsonify, request

from ..models import ProductionRequest
from ..services import production_service
from ..validation import (
    ModelValidationPolicy,
    ValidationError,
    enforce_rules_production,
    require_int,
    require_text,
    validate_payload,
)
from .errors import SERVICE_ERRORS, error_response


production_bp = Blueprint("production", __name__, url_prefix="/api/production")

PRODUCTION_CREATE_POLICY = ModelValidationPolicy(
    writable_fields={"product_id", "branch_id", "quantity_requested", "production_date", "requested_by", "notes"},
    required_on_create={"product_id", "branch_id", "quantity_requested"},
)


@production_bp.post("")
def create_production_route():
    payload = request.get_json(silent=True) or {}
    try:
        patch = validate_payload(
            model=ProductionRequest,
            payload=payload,
            policy=PRODUCTION_CREATE_POLICY,
            partial=False,
        )
        enforce_rules_production(patch)
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400

    try:
        req = production_service.create_production_request(
            patch["product_id"],
            patch["branch_id"],
            patch["quantity_requested"],
            production_date=patch.get("production_date"),
            requested_by=patch.get("requested_by"),
            notes=patch.get("notes"),
        )
        return jsonify({"production_request": req.to_dict()}), 201
    except SERVICE_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create production request")
        return jsonify({"error": "Internal server error"}), 500


@production_bp.get("")
def list_production_route():
    requests_ = production_service.list_production_requests(
        branch_id=request.args.get("branch_id", type=int),
        status=request.args.get("status") or None,
    )
    return jsonify({"items": [r.to_dict() for r in requests_], "count": len(requests_)}), 200


@production_bp.post("/<int:request_id>/status")
def update_status_route(request_id: int):
    payload = request.get_json(silent=True) or {}
    try:
        req = production_service.update_production_status(request_id, require_text(payload, "status"))
        return jsonify({"production_request": req.to_dict()}), 200
    except SERVICE_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to update production status")
        return jsonify({"error": "Internal server error"}), 500


@production_bp.post("/<int:request_id>/complete")
def complete_production_route(request_id: int):
    """
    Request body:
    {
        "quantity_produced": 48,      (optional, default quantity_requested)
        "produced_by": "baker-2",     (optional)
        "create_batch": true,         (optional)
        "batch_number": "PRD-..."     (optional)
    }
    """
    payload = request.get_json(silent=True) or {}
    try:
        req = production_service.complete_production(
            request_id,
            quantity_produced=require_int(payload, "quantity_produced", minimum=1, allow_missing=True),
            produced_by=require_text(payload, "produced_by", allow_missing=True, max_length=64),
            create_batch=bool(payload.get("create_batch", True)),
            batch_number=require_text(payload, "batch_number", allow_missing=True, max_length=64),
        )
        return jsonify({"production_request": req.to_dict()}), 200
    except SERVICE_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to complete production")
        return jsonify({"error": "Internal server error"}), 500
