"""
Production requests: the kitchen's work orders for a branch.

LIFECYCLE:
pending -> in_progress -> completed
pending / in_progress -> cancelled

Completing a request receives the produced quantity into stock
(production_receipt) and, by default, registers a batch whose expiry follows
the product's shelf life. Receipt, batch and status commit together.
"""

from __future__ import annotations

import logging

from ..extensions import db
from ..models import Branch, Product, ProductionRequest
from ..models.documents import PRODUCTION_STATUSES
from ..time_utils import parse_iso_date, today, utcnow
from .batch_service import BatchError, _create_batch_inner
from .concurrency import lock_for_update, run_with_retry
from .stock_mutator import _apply_delta_inner, _notify
from .stock_types import CAUSE_PRODUCTION_RECEIPT, StockError

logger = logging.getLogger(__name__)


class ProductionError(Exception):
    """Raised for production request errors."""
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ProductionNotFoundError(ProductionError):
    pass


class ProductionStateError(ProductionError):
    pass


# Allowed manual transitions; "completed" is reached only through complete_production().
_TRANSITIONS = {
    "pending": {"in_progress", "cancelled"},
    "in_progress": {"cancelled"},
    "completed": set(),
    "cancelled": set(),
}


def create_production_request(
    product_id: int,
    branch_id: int,
    quantity_requested: int,
    production_date=None,
    requested_by: str | None = None,
    notes: str | None = None,
) -> ProductionRequest:
    if isinstance(quantity_requested, bool) or not isinstance(quantity_requested, int) or quantity_requested <= 0:
        raise ProductionError("quantity_requested must be a positive integer")
    if db.session.get(Product, product_id) is None:
        raise ProductionNotFoundError(f"Product {product_id} not found", {"product_id": product_id})
    if db.session.get(Branch, branch_id) is None:
        raise ProductionNotFoundError(f"Branch {branch_id} not found", {"branch_id": branch_id})

    request = ProductionRequest(
        product_id=product_id,
        branch_id=branch_id,
        quantity_requested=quantity_requested,
        production_date=parse_iso_date(production_date) or today(),
        status="pending",
        requested_by=requested_by,
        notes=notes,
    )
    db.session.add(request)
    db.session.commit()

    logger.info("Production request %s: product=%s branch=%s qty=%s", request.id, product_id, branch_id, quantity_requested)
    return request


def _get_request_for_update(request_id: int) -> ProductionRequest:
    request = lock_for_update(
        db.session.query(ProductionRequest).filter_by(id=request_id)
    ).populate_existing().first()
    if request is None:
        raise ProductionNotFoundError(f"Production request {request_id} not found", {"request_id": request_id})
    return request


def update_production_status(request_id: int, status: str) -> ProductionRequest:
    if status not in PRODUCTION_STATUSES:
        raise ProductionError(f"Invalid production status: {status}", {"allowed": list(PRODUCTION_STATUSES)})
    if status == "completed":
        raise ProductionError("Use complete_production to complete a request")

    def _op():
        request = _get_request_for_update(request_id)
        if status not in _TRANSITIONS.get(request.status, set()):
            raise ProductionStateError(
                f"Cannot move production request from {request.status} to {status}",
                {"request_id": request_id, "status": request.status},
            )
        request.status = status
        request.updated_at = utcnow()
        db.session.commit()
        return request

    try:
        request = run_with_retry(_op)
    except ProductionError:
        db.session.rollback()
        raise

    logger.info("Production request %s -> %s", request_id, status)
    return request


def complete_production(
    request_id: int,
    quantity_produced: int | None = None,
    produced_by: str | None = None,
    *,
    create_batch: bool = True,
    batch_number: str | None = None,
) -> ProductionRequest:
    """
    Receive produced goods into stock and close the request.

    Raises:
        ProductionNotFoundError: unknown request
        ProductionStateError: request already completed or cancelled
        ProductionError: non-positive quantity
    """
    if quantity_produced is not None and (
        isinstance(quantity_produced, bool) or not isinstance(quantity_produced, int) or quantity_produced <= 0
    ):
        raise ProductionError("quantity_produced must be a positive integer")

    def _op():
        request = _get_request_for_update(request_id)
        if request.status not in ("pending", "in_progress"):
            raise ProductionStateError(
                f"Cannot complete a {request.status} production request",
                {"request_id": request_id, "status": request.status},
            )

        quantity = quantity_produced or request.quantity_requested
        reference_id = f"production:{request.id}"

        try:
            if create_batch:
                number = batch_number or f"PRD-{request.id}-{request.production_date:%Y%m%d}"
                batch, new_quantity = _create_batch_inner(
                    product_id=request.product_id,
                    branch_id=request.branch_id,
                    batch_number=number,
                    quantity=quantity,
                    production_date=request.production_date,
                    expiry_date=None,
                    receive_stock=True,
                    performed_by=produced_by,
                    reference_id=reference_id,
                )
                request.batch_id = batch.id
            else:
                new_quantity = _apply_delta_inner(
                    product_id=request.product_id,
                    branch_id=request.branch_id,
                    delta=quantity,
                    cause=CAUSE_PRODUCTION_RECEIPT,
                    reason=f"Production request #{request.id}",
                    performed_by=produced_by,
                    reference_id=reference_id,
                )
        except (StockError, BatchError):
            db.session.rollback()
            raise

        request.status = "completed"
        request.quantity_produced = quantity
        request.produced_by = produced_by
        request.updated_at = utcnow()
        db.session.commit()
        return request, new_quantity

    try:
        request, new_quantity = run_with_retry(_op)
    except ProductionError:
        db.session.rollback()
        raise

    logger.info(
        "Production request %s completed: %s units into branch %s (batch=%s)",
        request.id, request.quantity_produced, request.branch_id, request.batch_id,
    )
    _notify(request.product_id, request.branch_id, new_quantity, CAUSE_PRODUCTION_RECEIPT)
    return request


def list_production_requests(branch_id: int | None = None, status: str | None = None) -> list[ProductionRequest]:
    q = db.session.query(ProductionRequest)
    if branch_id is not None:
        q = q.filter(ProductionRequest.branch_id == branch_id)
    if status:
        q = q.filter(ProductionRequest.status == status)
    return q.order_by(ProductionRequest.production_date.desc(), ProductionRequest.id.desc()).all()
