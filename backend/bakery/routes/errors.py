# Overview: Maps service exceptions to JSON error responses for all blueprints.

from flask import jsonify

from ..services.batch_service import BatchError, BatchNotFoundError, BatchStateError
from ..services.production_service import ProductionError, ProductionNotFoundError, ProductionStateError
from ..services.return_service import ReturnError, ReturnNotFoundError, ReturnStateError
from ..services.stock_types import StockError, StockNotFoundError
from ..services.transaction_service import TransactionError, TransactionNotFoundError, TransactionStateError
from ..validation import ConflictError, ValidationError


NOT_FOUND_ERRORS = (
    StockNotFoundError,
    BatchNotFoundError,
    TransactionNotFoundError,
    ProductionNotFoundError,
    ReturnNotFoundError,
)

CONFLICT_ERRORS = (
    ConflictError,
    BatchStateError,
    TransactionStateError,
    ProductionStateError,
    ReturnStateError,
)

# Everything a route turns into a 4xx; anything else is a logged 500.
SERVICE_ERRORS = (
    ValidationError,
    StockError,
    BatchError,
    TransactionError,
    ProductionError,
    ReturnError,
    ValueError,
)


def error_response(exc: Exception):
    body = {"error": getattr(exc, "message", None) or str(exc)}
    details = getattr(exc, "details", None)
    if details:
        body["details"] = details

    if isinstance(exc, NOT_FOUND_ERRORS):
        return jsonify(body), 404
    if isinstance(exc, CONFLICT_ERRORS):
        return jsonify(body), 409
    return jsonify(body), 400
