# backend/bakery/routes/returns.py
"""
Return processing routes with an approval step.

Approval puts resaleable items back into stock; rejection has no stock effect.
"""
from flask import Blueprint, current_app, jsonify, request

from ..services import return_service
from ..validation import ValidationError, require_int, require_list, require_text
from .errors import SERVICE_ERRORS, error_response


returns_bp = Blueprint("returns", __name__, url_prefix="/api/returns")


@returns_bp.post("")
def create_return_route():
    """
    Request body:
    {
        "branch_id": 1,
        "transaction_id": 12,          (optional)
        "reason": "Customer complaint",
        "processed_by": "cashier1",    (optional)
        "items": [{"product_id": 1, "quantity": 1, "condition": "resaleable"}]
    }
    """
    payload = request.get_json(silent=True) or {}
    try:
        items = require_list(payload, "items")
        if not all(isinstance(item, dict) for item in items):
            raise ValidationError("items must be objects")
        items = [
            {
                "product_id": require_int(item, "product_id"),
                "quantity": require_int(item, "quantity", minimum=1),
                "condition": item.get("condition") or "resaleable",
                "batch_id": require_int(item, "batch_id", allow_missing=True),
                "reason": require_text(item, "reason", allow_missing=True, max_length=255),
            }
            for item in items
        ]

        doc = return_service.create_return(
            require_int(payload, "branch_id"),
            items,
            require_text(payload, "reason", max_length=255),
            processed_by=require_text(payload, "processed_by", allow_missing=True, max_length=64),
            transaction_id=require_int(payload, "transaction_id", allow_missing=True),
            notes=require_text(payload, "notes", allow_missing=True),
        )
        return jsonify({"return": doc.to_dict(include_items=True)}), 201
    except SERVICE_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create return")
        return jsonify({"error": "Internal server error"}), 500


@returns_bp.get("/<int:return_id>")
def get_return_route(return_id: int):
    try:
        doc = return_service.get_return(return_id)
    except SERVICE_ERRORS as e:
        return error_response(e)
    return jsonify({"return": doc.to_dict(include_items=True)}), 200


@returns_bp.post("/<int:return_id>/process")
def process_return_route(return_id: int):
    """
    Request body: {"action": "approve" | "reject", "processed_by": "supervisor1", "notes": "..."}
    """
    payload = request.get_json(silent=True) or {}
    try:
        doc = return_service.process_return(
            return_id,
            require_text(payload, "action"),
            processed_by=require_text(payload, "processed_by", allow_missing=True, max_length=64),
            notes=require_text(payload, "notes", allow_missing=True),
        )
        return jsonify({"return": doc.to_dict(include_items=True)}), 200
    except SERVICE_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to process return")
        return jsonify({"error": "Internal server error"}), 500
