"""
Product batch management (expiry-aware subdivision of on-hand stock).

DESIGN PRINCIPLES:
- Batches decompose a StockLevel; the active batch total never exceeds it
- Receiving a batch is a production_receipt movement through the mutator core
- Expiry takes the remaining batch units out of stock with cause batch_expiry
- Sales consume batches FEFO inside the mutator (see stock_mutator)

LIFECYCLE:
active -> sold_out   quantity reaches 0
active -> expired    expiry_date passed (expire_batches) or set explicitly
"""

from __future__ import annotations

import logging
from datetime import date, timedelta

from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import Branch, Product, ProductBatch
from ..models.inventory import (
    BATCH_STATUS_ACTIVE,
    BATCH_STATUS_EXPIRED,
    BATCH_STATUS_SOLD_OUT,
    BATCH_STATUSES,
)
from ..time_utils import parse_iso_date, today, utcnow
from .concurrency import lock_for_update, run_with_retry
from .stock_mutator import _apply_delta_inner, _notify
from .stock_reader import get_batched_quantity, get_stock
from .stock_types import CAUSE_BATCH_EXPIRY, CAUSE_PRODUCTION_RECEIPT, StockError

logger = logging.getLogger(__name__)


class BatchError(Exception):
    """Raised for batch operation errors."""

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class BatchNotFoundError(BatchError):
    """Raised when a batch, product or branch is not found."""


class BatchStateError(BatchError):
    """Raised when an operation is invalid for the batch's current state."""


def _get_batch(batch_id: int, *, for_update: bool = False) -> ProductBatch:
    q = db.session.query(ProductBatch).filter_by(id=batch_id)
    if for_update:
        q = lock_for_update(q).populate_existing()
    batch = q.first()
    if batch is None:
        raise BatchNotFoundError(f"Batch {batch_id} not found", {"batch_id": batch_id})
    return batch


def default_expiry_date(product: Product, production_date: date) -> date:
    shelf_life = product.shelf_life_days
    if shelf_life is None:
        shelf_life = current_app.config.get("DEFAULT_SHELF_LIFE_DAYS", 3)
    return production_date + timedelta(days=shelf_life)


# =============================================================================
# CREATION
# =============================================================================

def _create_batch_inner(
    *,
    product_id: int,
    branch_id: int,
    batch_number: str,
    quantity: int,
    production_date: date,
    expiry_date: date | None,
    receive_stock: bool,
    performed_by: str | None,
    reference_id: str | None = None,
):
    """Batch creation without retry, commit or notification. Returns (batch, new_quantity)."""
    product = db.session.get(Product, product_id)
    if product is None:
        raise BatchNotFoundError(f"Product {product_id} not found", {"product_id": product_id})
    if db.session.get(Branch, branch_id) is None:
        raise BatchNotFoundError(f"Branch {branch_id} not found", {"branch_id": branch_id})

    expiry = expiry_date or default_expiry_date(product, production_date)
    if expiry < production_date:
        raise BatchError("expiry_date cannot be before production_date")

    if not receive_stock:
        on_hand = get_stock(product_id, branch_id)
        batched = get_batched_quantity(product_id, branch_id)
        if batched + quantity > on_hand:
            raise BatchError(
                "Active batch total would exceed on-hand stock",
                {"on_hand": on_hand, "batched": batched, "requested": quantity},
            )

    batch = ProductBatch(
        product_id=product_id,
        branch_id=branch_id,
        batch_number=batch_number,
        quantity=quantity,
        production_date=production_date,
        expiry_date=expiry,
        status=BATCH_STATUS_ACTIVE if quantity > 0 else BATCH_STATUS_SOLD_OUT,
    )
    db.session.add(batch)
    try:
        db.session.flush()
    except IntegrityError:
        db.session.rollback()
        raise BatchStateError(
            f"Batch number {batch_number} already exists for this product and branch",
            {"batch_number": batch_number},
        )

    new_quantity = None
    if receive_stock:
        new_quantity = _apply_delta_inner(
            product_id=product_id,
            branch_id=branch_id,
            delta=quantity,
            cause=CAUSE_PRODUCTION_RECEIPT,
            reason=f"Batch {batch_number} received",
            performed_by=performed_by,
            reference_id=reference_id or f"batch:{batch.id}",
            batch_id=batch.id,
        )
    return batch, new_quantity


def create_batch(
    product_id: int,
    branch_id: int,
    batch_number: str,
    quantity: int,
    production_date=None,
    expiry_date=None,
    *,
    receive_stock: bool = True,
    performed_by: str | None = None,
) -> ProductBatch:
    """
    Register a batch for (product, branch).

    receive_stock=True: the batch quantity is new stock and is received with a
    production_receipt movement referencing the batch.
    receive_stock=False: the batch labels stock already on hand; rejected if
    the active batch total would exceed the StockLevel quantity.

    Raises:
        BatchError: invalid quantity/dates or batch total above on-hand stock
        BatchNotFoundError: unknown product or branch
        BatchStateError: duplicate batch_number for the pair
    """
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 0:
        raise BatchError("quantity must be a non-negative integer")
    if receive_stock and quantity == 0:
        raise BatchError("quantity must be > 0 when receiving stock")
    batch_number = (batch_number or "").strip()
    if not batch_number:
        raise BatchError("batch_number is required")

    production_date = parse_iso_date(production_date) or today()
    expiry_date = parse_iso_date(expiry_date)

    def _op():
        try:
            batch, new_quantity = _create_batch_inner(
                product_id=product_id,
                branch_id=branch_id,
                batch_number=batch_number,
                quantity=quantity,
                production_date=production_date,
                expiry_date=expiry_date,
                receive_stock=receive_stock,
                performed_by=performed_by,
            )
        except StockError:
            db.session.rollback()
            raise
        db.session.commit()
        return batch, new_quantity

    try:
        batch, new_quantity = run_with_retry(_op)
    except BatchError:
        db.session.rollback()
        raise

    logger.info(
        "Batch %s created: product=%s branch=%s qty=%s expiry=%s received=%s",
        batch.batch_number, product_id, branch_id, quantity, batch.expiry_date, receive_stock,
    )
    if new_quantity is not None:
        _notify(product_id, branch_id, new_quantity, CAUSE_PRODUCTION_RECEIPT)
    return batch


# =============================================================================
# QUERIES
# =============================================================================

def list_batches(branch_id: int | None = None, product_id: int | None = None, status: str | None = None) -> list[ProductBatch]:
    q = db.session.query(ProductBatch)
    if branch_id is not None:
        q = q.filter(ProductBatch.branch_id == branch_id)
    if product_id is not None:
        q = q.filter(ProductBatch.product_id == product_id)
    if status is not None:
        q = q.filter(ProductBatch.status == status)
    return q.order_by(ProductBatch.expiry_date.asc(), ProductBatch.id.asc()).all()


def get_expiring_batches(days_ahead: int | None = None, branch_id: int | None = None, as_of: date | None = None) -> list[ProductBatch]:
    """Active batches with stock whose expiry falls on or before as_of + days_ahead."""
    if days_ahead is None:
        days_ahead = current_app.config.get("EXPIRY_WARNING_DAYS", 3)
    cutoff = (as_of or today()) + timedelta(days=days_ahead)

    q = db.session.query(ProductBatch).filter(
        ProductBatch.status == BATCH_STATUS_ACTIVE,
        ProductBatch.quantity > 0,
        ProductBatch.expiry_date <= cutoff,
    )
    if branch_id is not None:
        q = q.filter(ProductBatch.branch_id == branch_id)
    return q.order_by(ProductBatch.expiry_date.asc(), ProductBatch.id.asc()).all()


# =============================================================================
# STATE CHANGES
# =============================================================================

def _expire_one(batch: ProductBatch, performed_by: str | None) -> int:
    """Mark an active batch expired and take its remaining units out of stock."""
    batch.status = BATCH_STATUS_EXPIRED
    batch.updated_at = utcnow()

    on_hand = get_stock(batch.product_id, batch.branch_id)
    removed = min(batch.quantity, max(on_hand, 0))
    if removed > 0:
        _apply_delta_inner(
            product_id=batch.product_id,
            branch_id=batch.branch_id,
            delta=-removed,
            cause=CAUSE_BATCH_EXPIRY,
            reason=f"Batch {batch.batch_number} expired ({batch.expiry_date.isoformat()})",
            performed_by=performed_by,
            reference_id=f"batch:{batch.id}",
            batch_id=batch.id,
        )
    db.session.flush()
    return removed


def update_batch_status(batch_id: int, status: str, performed_by: str | None = None) -> ProductBatch:
    """
    Explicit status change.

    Only active batches move: to expired (stock removed as in expire_batches)
    or to sold_out (quantity must already be 0).
    """
    if status not in BATCH_STATUSES:
        raise BatchError(f"Invalid batch status: {status}", {"allowed": list(BATCH_STATUSES)})

    def _op():
        batch = _get_batch(batch_id, for_update=True)
        if batch.status == status:
            return batch, None
        if batch.status != BATCH_STATUS_ACTIVE:
            raise BatchStateError(
                f"Cannot change batch from {batch.status} to {status}",
                {"batch_id": batch_id, "status": batch.status},
            )

        removed = None
        if status == BATCH_STATUS_EXPIRED:
            try:
                removed = _expire_one(batch, performed_by)
            except StockError:
                db.session.rollback()
                raise
        elif status == BATCH_STATUS_SOLD_OUT:
            if batch.quantity != 0:
                raise BatchStateError(
                    "Batch still holds stock; adjust its quantity to 0 first",
                    {"batch_id": batch_id, "quantity": batch.quantity},
                )
            batch.status = BATCH_STATUS_SOLD_OUT
            batch.updated_at = utcnow()
        else:
            raise BatchStateError("Batches cannot be reactivated", {"batch_id": batch_id})

        db.session.commit()
        return batch, removed

    try:
        batch, removed = run_with_retry(_op)
    except BatchError:
        db.session.rollback()
        raise

    logger.info("Batch %s status -> %s (removed=%s)", batch_id, status, removed)
    if removed:
        _notify(batch.product_id, batch.branch_id, get_stock(batch.product_id, batch.branch_id), CAUSE_BATCH_EXPIRY)
    return batch


def adjust_batch_quantity(batch_id: int, quantity: int) -> ProductBatch:
    """
    Re-label how much of the on-hand stock belongs to a batch.

    Does not change StockLevel and writes no movement. Quantity 0 marks the
    batch sold_out; a positive quantity re-opens a sold_out batch.
    """
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 0:
        raise BatchError("quantity must be a non-negative integer")

    def _op():
        batch = _get_batch(batch_id, for_update=True)
        if batch.status == BATCH_STATUS_EXPIRED:
            raise BatchStateError("Expired batches cannot be adjusted", {"batch_id": batch_id})

        on_hand = get_stock(batch.product_id, batch.branch_id)
        others = get_batched_quantity(batch.product_id, batch.branch_id)
        if batch.status == BATCH_STATUS_ACTIVE:
            others -= batch.quantity
        if others + quantity > on_hand:
            raise BatchError(
                "Active batch total would exceed on-hand stock",
                {"on_hand": on_hand, "batched": others, "requested": quantity},
            )

        batch.quantity = quantity
        batch.status = BATCH_STATUS_SOLD_OUT if quantity == 0 else BATCH_STATUS_ACTIVE
        batch.updated_at = utcnow()
        db.session.commit()
        return batch

    try:
        batch = run_with_retry(_op)
    except BatchError:
        db.session.rollback()
        raise

    logger.info("Batch %s quantity set to %s", batch_id, quantity)
    return batch


def expire_batches(as_of: date | None = None, performed_by: str | None = None, branch_id: int | None = None) -> dict:
    """
    Expire every active batch whose expiry_date is before as_of (default today).

    Each batch is its own unit of work; removal is clamped to on-hand stock so
    an already-depleted StockLevel never goes negative.
    """
    as_of = as_of or today()
    q = db.session.query(ProductBatch.id).filter(
        ProductBatch.status == BATCH_STATUS_ACTIVE,
        ProductBatch.expiry_date < as_of,
    )
    if branch_id is not None:
        q = q.filter(ProductBatch.branch_id == branch_id)
    batch_ids = [row.id for row in q.order_by(ProductBatch.expiry_date.asc(), ProductBatch.id.asc()).all()]

    result = {"as_of": as_of.isoformat(), "expired_batches": 0, "units_removed": 0, "batches": []}

    for batch_id in batch_ids:
        def _op():
            batch = _get_batch(batch_id, for_update=True)
            if batch.status != BATCH_STATUS_ACTIVE:
                return None, 0
            try:
                removed = _expire_one(batch, performed_by)
            except StockError:
                db.session.rollback()
                raise
            db.session.commit()
            return batch, removed

        batch, removed = run_with_retry(_op)
        if batch is None:
            continue

        result["expired_batches"] += 1
        result["units_removed"] += removed
        result["batches"].append({"id": batch.id, "batch_number": batch.batch_number, "units_removed": removed})
        if removed:
            _notify(batch.product_id, batch.branch_id, get_stock(batch.product_id, batch.branch_id), CAUSE_BATCH_EXPIRY)

    logger.info("Expired %s batches as of %s (%s units removed)", result["expired_batches"], as_of, result["units_removed"])
    return result
