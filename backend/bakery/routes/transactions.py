# backend/bakery/routes/transactions.py
"""
Cashier transaction routes: checkout, void, bulk void.

A checkout that fails stock validation answers 400 with the full deficit
list in details.invalid_items; the cashier may retry with override_reason
when the override policy is enabled.
"""
from flask import Blueprint, current_app, jsonify, request

from ..services import transaction_service
from ..validation import ValidationError, require_int, require_list, require_text
from .errors import SERVICE_ERRORS, error_response


transactions_bp = Blueprint("transactions", __name__, url_prefix="/api/transactions")


@transactions_bp.post("/checkout")
def checkout_route():
    """
    Request body:
    {
        "branch_id": 1,
        "cashier_id": "cashier1",
        "items": [{"product_id": 1, "quantity": 2}],
        "override_reason": "...",   (optional)
        "notes": "..."              (optional)
    }
    """
    payload = request.get_json(silent=True) or {}
    try:
        branch_id = require_int(payload, "branch_id")
        items = require_list(payload, "items")
        if not all(isinstance(item, dict) for item in items):
            raise ValidationError("items must be objects")
        items = [
            {"product_id": require_int(item, "product_id"), "quantity": require_int(item, "quantity", minimum=1)}
            for item in items
        ]

        tx = transaction_service.checkout(
            branch_id,
            require_text(payload, "cashier_id", allow_missing=True, max_length=64),
            items,
            override_reason=payload.get("override_reason"),
            notes=require_text(payload, "notes", allow_missing=True),
        )
        return jsonify({"transaction": tx.to_dict(include_items=True)}), 201
    except SERVICE_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to checkout")
        return jsonify({"error": "Internal server error"}), 500


@transactions_bp.get("/<int:transaction_id>")
def get_transaction_route(transaction_id: int):
    try:
        tx = transaction_service.get_transaction(transaction_id)
    except SERVICE_ERRORS as e:
        return error_response(e)
    return jsonify({"transaction": tx.to_dict(include_items=True)}), 200


@transactions_bp.post("/<int:transaction_id>/void")
def void_transaction_route(transaction_id: int):
    """
    Request body: {"performed_by": "supervisor1", "reason": "Wrong item rung up"}

    Returns:
        200: voided with every line's stock returned
        400: a line's stock could not be returned; nothing was changed
        404: unknown transaction
        409: already cancelled, or the sale has a pending or approved return
    """
    payload = request.get_json(silent=True) or {}
    try:
        tx, stock = transaction_service.void_transaction(
            transaction_id,
            require_text(payload, "performed_by", allow_missing=True, max_length=64),
            require_text(payload, "reason", max_length=255),
        )
        return jsonify({"transaction": tx.to_dict(), "stock": stock.to_dict()}), 200
    except SERVICE_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to void transaction")
        return jsonify({"error": "Internal server error"}), 500


@transactions_bp.post("/bulk-void")
def bulk_void_route():
    payload = request.get_json(silent=True) or {}
    try:
        result = transaction_service.bulk_void_transactions(
            require_list(payload, "transaction_ids"),
            require_text(payload, "performed_by", allow_missing=True, max_length=64),
            require_text(payload, "reason", max_length=255),
        )
        return jsonify(result), 200
    except SERVICE_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to bulk void transactions")
        return jsonify({"error": "Internal server error"}), 500
