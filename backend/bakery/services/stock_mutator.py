# Overview: The only writer of StockLevel rows; every change lands with its StockMovement.

from __future__ import annotations

import logging
import uuid

from flask import current_app
from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError

from ..config import StockPolicy
from ..extensions import db, stock_changed
from ..models import Branch, Product, ProductBatch, StockLevel
from ..models.inventory import BATCH_STATUS_ACTIVE, BATCH_STATUS_SOLD_OUT
from ..time_utils import utcnow
from .concurrency import get_or_create, lock_for_update, run_with_retry
from .ledger_service import append_stock_movement
from .stock_reader import get_stock, get_stock_level
from .stock_validator import apply_override
from .stock_types import (
    BATCH_SPECIFIC_CAUSES,
    BULK_OPERATIONS,
    CAUSE_BULK_EDIT,
    CAUSE_INITIAL_STOCK,
    CAUSE_MANUAL_ADJUST_IN,
    CAUSE_MANUAL_ADJUST_OUT,
    CAUSE_TRANSFER,
    CAUSE_VOID_RETURN,
    STOCK_CAUSES,
    AuditWriteFailure,
    BulkEditOperation,
    BulkEditResult,
    InsufficientStockError,
    OverridePolicyViolation,
    StockError,
    StockNotFoundError,
    VoidStockResult,
)
"""
Stock Mutator Invariants (authoritative)

Atomicity:
- The quantity change and its StockMovement are written in ONE DB transaction.
  If the movement cannot be written the whole unit of work is rolled back and
  AuditWriteFailure is raised (logged CRITICAL). Ledger and quantity never
  diverge silently.
- Deltas are applied with a single UPDATE ... SET quantity = quantity + :delta
  statement. The non-negativity guard is part of the same statement's WHERE
  clause, so concurrent cashiers cannot lose each other's updates.

Non-negativity:
- A decrease that would take quantity below zero is rejected (state
  unchanged) unless a supervisor override reason was authorized by the
  validator. The override reason is stored on the movement.
- Bulk edit never goes below zero, even for admins: subtract clamps at 0.

Batches:
- Any decrease not tied to one specific batch consumes active batches
  earliest-expiry first (FEFO) in the same transaction, keeping the active
  batch total <= quantity.

Lazy rows:
- A missing StockLevel is created at quantity 0 on first write.
"""

logger = logging.getLogger(__name__)


def _check_int(value, name: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"{name} must be an integer")
    return value


def _require_product_and_branch(product_id: int, branch_id: int) -> None:
    if db.session.get(Product, product_id) is None:
        raise StockNotFoundError("Product not found", {"product_id": product_id})
    if db.session.get(Branch, branch_id) is None:
        raise StockNotFoundError("Branch not found", {"branch_id": branch_id})


def _with_override_note(override_reason: str, reason: str | None) -> str:
    note = f"override: {override_reason.strip()}"
    return f"{note} | {reason}" if reason else note


def _notify(product_id: int, branch_id: int, quantity: int, cause: str) -> None:
    stock_changed.send(
        current_app._get_current_object(),
        product_id=product_id,
        branch_id=branch_id,
        quantity=quantity,
        cause=cause,
    )


def _consume_batches_fefo(product_id: int, branch_id: int, quantity: int) -> list[tuple[int, int]]:
    """
    Take `quantity` units out of active batches, earliest expiry first.

    Units beyond the batched total come from unbatched stock and are not
    tracked. Emptied batches become sold_out. No flush of the StockLevel.
    """
    taken: list[tuple[int, int]] = []
    remaining = quantity
    batches = lock_for_update(
        db.session.query(ProductBatch).filter(
            ProductBatch.product_id == product_id,
            ProductBatch.branch_id == branch_id,
            ProductBatch.status == BATCH_STATUS_ACTIVE,
            ProductBatch.quantity > 0,
        ).order_by(ProductBatch.expiry_date.asc(), ProductBatch.id.asc())
    ).all()

    for batch in batches:
        if remaining <= 0:
            break
        take = min(batch.quantity, remaining)
        batch.quantity -= take
        remaining -= take
        if batch.quantity == 0:
            batch.status = BATCH_STATUS_SOLD_OUT
        taken.append((batch.id, take))

    if taken:
        db.session.flush()
    return taken


def _append_or_fail(**movement_kwargs):
    try:
        return append_stock_movement(**movement_kwargs)
    except SQLAlchemyError as exc:
        logger.critical(
            "AUDIT WRITE FAILED for product %s at branch %s (change %s, cause %s); rolling back",
            movement_kwargs.get("product_id"),
            movement_kwargs.get("branch_id"),
            movement_kwargs.get("quantity_change"),
            movement_kwargs.get("cause"),
        )
        raise AuditWriteFailure(
            "Stock movement could not be recorded",
            details={
                "product_id": movement_kwargs.get("product_id"),
                "branch_id": movement_kwargs.get("branch_id"),
                "quantity_change": movement_kwargs.get("quantity_change"),
            },
        ) from exc


def _apply_delta_inner(
    *,
    product_id: int,
    branch_id: int,
    delta: int,
    cause: str,
    reason: str | None = None,
    performed_by: str | None = None,
    reference_id: str | None = None,
    allow_negative: bool = False,
    batch_id: int | None = None,
) -> int:
    """Core delta logic without retry, rollback, commit or notification.

    Called by apply_delta() and by services that compose several stock
    changes into one unit of work (checkout, transfers, batch expiry).
    """
    level, _ = get_or_create(StockLevel, product_id=product_id, branch_id=branch_id)

    stmt = update(StockLevel).where(StockLevel.id == level.id)
    if delta < 0 and not allow_negative:
        stmt = stmt.where(StockLevel.quantity + delta >= 0)
    result = db.session.execute(
        stmt.values(
            quantity=StockLevel.quantity + delta,
            last_updated=utcnow(),
        ).execution_options(synchronize_session=False)
    )

    if result.rowcount == 0:
        available = get_stock(product_id, branch_id)
        raise InsufficientStockError(
            "Insufficient stock",
            details={
                "product_id": product_id,
                "branch_id": branch_id,
                "available": available,
                "requested": -delta,
                "deficit": -delta - available,
            },
        )

    db.session.refresh(level)

    if delta < 0 and cause not in BATCH_SPECIFIC_CAUSES:
        _consume_batches_fefo(product_id, branch_id, -delta)

    _append_or_fail(
        product_id=product_id,
        branch_id=branch_id,
        quantity_change=delta,
        cause=cause,
        reason=reason,
        performed_by=performed_by,
        reference_id=reference_id,
        batch_id=batch_id,
    )
    return level.quantity


def apply_delta(
    product_id: int,
    branch_id: int,
    delta: int,
    cause: str,
    reason: str | None = None,
    performed_by: str | None = None,
    reference_id: str | None = None,
    *,
    override_reason: str | None = None,
    policy: StockPolicy | None = None,
    batch_id: int | None = None,
) -> int:
    """
    Apply a signed delta to (product, branch) and record it. Returns the new quantity.

    override_reason: supervisor reason allowing the result to go negative.
    It is checked through apply_override(); a refused override raises
    OverridePolicyViolation before anything is written.
    """
    _check_int(delta, "delta")
    if cause not in STOCK_CAUSES:
        raise ValueError(f"unknown stock movement cause: {cause}")

    allow_negative = False
    if override_reason is not None:
        if not apply_override(override_reason, policy=policy):
            raise OverridePolicyViolation(
                "Stock override requires an enabled policy and a reason",
                details={"product_id": product_id, "branch_id": branch_id},
            )
        allow_negative = True
        reason = _with_override_note(override_reason, reason)

    def _op():
        try:
            _require_product_and_branch(product_id, branch_id)
            new_quantity = _apply_delta_inner(
                product_id=product_id,
                branch_id=branch_id,
                delta=delta,
                cause=cause,
                reason=reason,
                performed_by=performed_by,
                reference_id=reference_id,
                allow_negative=allow_negative,
                batch_id=batch_id,
            )
        except StockError:
            db.session.rollback()
            raise
        db.session.commit()
        return new_quantity

    new_quantity = run_with_retry(_op)
    logger.info(
        "Stock %s: product=%s branch=%s delta=%+d new=%s ref=%s",
        cause, product_id, branch_id, delta, new_quantity, reference_id,
    )
    _notify(product_id, branch_id, new_quantity, cause)
    return new_quantity


# =============================================================================
# MANUAL ADJUSTMENTS
# =============================================================================

def record_initial_stock(product_id: int, branch_id: int, quantity: int, performed_by: str | None = None) -> int | None:
    """Opening balance for a newly stocked product. No-op for quantity <= 0."""
    _check_int(quantity, "quantity")
    if quantity <= 0:
        return None
    return apply_delta(
        product_id,
        branch_id,
        quantity,
        CAUSE_INITIAL_STOCK,
        reason="Initial stock",
        performed_by=performed_by,
    )


def adjust_stock(
    product_id: int,
    branch_id: int,
    delta: int,
    reason: str,
    performed_by: str | None = None,
    *,
    override_reason: str | None = None,
    policy: StockPolicy | None = None,
) -> int:
    """Manual stock adjustment; the cause follows the sign of delta."""
    _check_int(delta, "delta")
    if delta == 0:
        raise ValueError("delta must be non-zero")
    if not reason or not reason.strip():
        raise ValueError("reason is required for a manual adjustment")

    cause = CAUSE_MANUAL_ADJUST_IN if delta > 0 else CAUSE_MANUAL_ADJUST_OUT
    return apply_delta(
        product_id,
        branch_id,
        delta,
        cause,
        reason=reason.strip(),
        performed_by=performed_by,
        override_reason=override_reason,
        policy=policy,
    )


def correct_stock(product_id: int, branch_id: int, correct_quantity: int, reason: str, performed_by: str | None = None) -> dict:
    """
    Set on-hand to a counted value, recording the net change as one adjustment.
    """
    _check_int(correct_quantity, "correct_quantity")
    if correct_quantity < 0:
        raise ValueError("correct_quantity cannot be negative")
    if not reason or not reason.strip():
        raise ValueError("reason is required for a stock correction")

    def _op():
        try:
            _require_product_and_branch(product_id, branch_id)
            level, _ = get_or_create(StockLevel, product_id=product_id, branch_id=branch_id)
            level = lock_for_update(db.session.query(StockLevel).filter_by(id=level.id)).populate_existing().one()

            old_quantity = level.quantity
            change = correct_quantity - old_quantity
            level.quantity = correct_quantity
            level.last_updated = utcnow()
            db.session.flush()

            if change < 0:
                _consume_batches_fefo(product_id, branch_id, -change)

            _append_or_fail(
                product_id=product_id,
                branch_id=branch_id,
                quantity_change=change,
                cause=CAUSE_MANUAL_ADJUST_IN if change >= 0 else CAUSE_MANUAL_ADJUST_OUT,
                reason=f"Manual correction: {reason.strip()} ({old_quantity} -> {correct_quantity})",
                performed_by=performed_by,
            )
        except StockError:
            db.session.rollback()
            raise
        db.session.commit()
        return {"old_quantity": old_quantity, "new_quantity": correct_quantity, "change": change}

    result = run_with_retry(_op)
    logger.info("Stock corrected: product=%s branch=%s %s", product_id, branch_id, result)
    _notify(product_id, branch_id, result["new_quantity"], CAUSE_MANUAL_ADJUST_IN)
    return result


def batch_add_stock(items, performed_by: str | None = None, reason: str | None = None) -> dict:
    """
    Restock several (product, branch) pairs in one go.

    Items with quantity <= 0 are skipped. Each item commits on its own; a
    failing item is reported and does not stop the rest.
    """
    result = {"total_updated": 0, "total_inserted": 0, "skipped": 0, "errors": []}

    for item in items:
        product_id = int(item["product_id"])
        branch_id = int(item["branch_id"])
        quantity = item.get("quantity") or 0

        if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
            result["skipped"] += 1
            continue

        existed = get_stock_level(product_id, branch_id) is not None
        try:
            apply_delta(
                product_id,
                branch_id,
                quantity,
                CAUSE_MANUAL_ADJUST_IN,
                reason=reason or "Batch stock add",
                performed_by=performed_by,
            )
        except (StockError, SQLAlchemyError) as exc:
            db.session.rollback()
            logger.warning("Batch add failed for product %s at branch %s: %s", product_id, branch_id, exc)
            result["errors"].append({
                "product_id": product_id,
                "branch_id": branch_id,
                "error": getattr(exc, "message", None) or "Database error",
            })
            continue

        if existed:
            result["total_updated"] += 1
        else:
            result["total_inserted"] += 1

    result["success"] = not result["errors"] and (result["total_updated"] + result["total_inserted"]) > 0
    return result


def transfer_stock(
    product_id: int,
    from_branch_id: int,
    to_branch_id: int,
    quantity: int,
    performed_by: str | None = None,
    reason: str | None = None,
) -> dict:
    """Move stock between branches; both legs share one reference and one commit."""
    _check_int(quantity, "quantity")
    if quantity <= 0:
        raise ValueError("quantity must be > 0 for a transfer")
    if from_branch_id == to_branch_id:
        raise ValueError("source and destination branch must differ")

    reference_id = f"transfer-{uuid.uuid4().hex[:12]}"
    note = reason or f"Transfer {from_branch_id} -> {to_branch_id}"

    def _op():
        try:
            _require_product_and_branch(product_id, from_branch_id)
            _require_product_and_branch(product_id, to_branch_id)
            from_qty = _apply_delta_inner(
                product_id=product_id,
                branch_id=from_branch_id,
                delta=-quantity,
                cause=CAUSE_TRANSFER,
                reason=note,
                performed_by=performed_by,
                reference_id=reference_id,
            )
            to_qty = _apply_delta_inner(
                product_id=product_id,
                branch_id=to_branch_id,
                delta=quantity,
                cause=CAUSE_TRANSFER,
                reason=note,
                performed_by=performed_by,
                reference_id=reference_id,
            )
        except StockError:
            db.session.rollback()
            raise
        db.session.commit()
        return from_qty, to_qty

    from_qty, to_qty = run_with_retry(_op)
    logger.info("Transfer %s: product=%s %s->%s qty=%s", reference_id, product_id, from_branch_id, to_branch_id, quantity)
    _notify(product_id, from_branch_id, from_qty, CAUSE_TRANSFER)
    _notify(product_id, to_branch_id, to_qty, CAUSE_TRANSFER)
    return {
        "reference_id": reference_id,
        "from_quantity": from_qty,
        "to_quantity": to_qty,
    }


# =============================================================================
# BULK EDIT
# =============================================================================

def _coerce_operation(raw) -> BulkEditOperation:
    if isinstance(raw, BulkEditOperation):
        return raw
    inventory_id = raw.get("inventory_id", raw.get("id"))
    return BulkEditOperation(
        inventory_id=inventory_id,
        operation=raw.get("operation"),
        value=raw.get("value", 0),
    )


def _bulk_edit_one(op: BulkEditOperation, performed_by: str | None, reason: str) -> dict:
    if op.operation not in BULK_OPERATIONS:
        raise ValueError(f"Unsupported operation: {op.operation}")
    value = op.value if op.operation != "reset" else 0
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise ValueError("value must be a non-negative integer")

    try:
        inventory_id = int(op.inventory_id)
    except (TypeError, ValueError):
        raise StockNotFoundError("Inventory item not found", {"inventory_id": op.inventory_id})

    def _op():
        try:
            level = lock_for_update(
                db.session.query(StockLevel).filter_by(id=inventory_id)
            ).populate_existing().first()
            if level is None:
                raise StockNotFoundError("Inventory item not found", {"inventory_id": op.inventory_id})

            old_quantity = level.quantity
            if op.operation == "set":
                new_quantity = value
            elif op.operation == "add":
                new_quantity = old_quantity + value
            elif op.operation == "subtract":
                new_quantity = max(0, old_quantity - value)
            else:
                new_quantity = 0

            change = new_quantity - old_quantity
            level.quantity = new_quantity
            level.last_updated = utcnow()
            db.session.flush()

            if change < 0:
                _consume_batches_fefo(level.product_id, level.branch_id, -change)

            _append_or_fail(
                product_id=level.product_id,
                branch_id=level.branch_id,
                quantity_change=change,
                cause=CAUSE_BULK_EDIT,
                reason=f"Bulk edit ({op.operation}): {reason}",
                performed_by=performed_by,
                reference_id=f"inventory:{level.id}",
            )
        except StockError:
            db.session.rollback()
            raise
        db.session.commit()
        return {
            "id": op.inventory_id,
            "product_id": level.product_id,
            "branch_id": level.branch_id,
            "old_quantity": old_quantity,
            "new_quantity": new_quantity,
        }

    return run_with_retry(_op)


def bulk_apply(operations, performed_by: str | None, reason: str) -> BulkEditResult:
    """
    Administrative multi-row correction.

    Every operation commits independently; a failing one lands in `failed`
    with its error and never aborts its siblings.
    """
    result = BulkEditResult()

    for raw in operations:
        try:
            op = _coerce_operation(raw)
        except (AttributeError, TypeError):
            logger.warning("Bulk edit entry is not an operation: %r", raw)
            result.failed.append({"id": raw, "error": "Invalid operation entry"})
            continue

        try:
            entry = _bulk_edit_one(op, performed_by, reason)
        except (StockError, ValueError) as exc:
            db.session.rollback()
            message = exc.message if isinstance(exc, StockError) else str(exc)
            logger.warning("Bulk edit failed for inventory %s: %s", op.inventory_id, message)
            result.failed.append({"id": op.inventory_id, "error": message})
            continue
        except SQLAlchemyError:
            db.session.rollback()
            logger.exception("Bulk edit database error for inventory %s", op.inventory_id)
            result.failed.append({"id": op.inventory_id, "error": "Database error"})
            continue

        result.updated.append(entry)
        _notify(entry["product_id"], entry["branch_id"], entry["new_quantity"], CAUSE_BULK_EDIT)

    logger.info("Bulk edit by %s: %s updated, %s failed", performed_by, len(result.updated), len(result.failed))
    return result


# =============================================================================
# VOIDS
# =============================================================================

def _void_reason(transaction_id, reason: str) -> str:
    return f"Void transaction {transaction_id}: {reason}"


def _return_sale_stock_inner(transaction_id, line_items, branch_id: int, performed_by: str | None, reason: str) -> dict[int, int]:
    """All-or-nothing stock return for one voided sale; the caller commits or rolls back.

    Returns the new quantity per product. Any StockError aborts the whole return.
    """
    new_quantities: dict[int, int] = {}
    for item in line_items:
        new_quantities[item["product_id"]] = _apply_delta_inner(
            product_id=item["product_id"],
            branch_id=branch_id,
            delta=item["quantity"],
            cause=CAUSE_VOID_RETURN,
            reason=_void_reason(transaction_id, reason),
            performed_by=performed_by,
            reference_id=str(transaction_id),
        )
    return new_quantities


def void_transaction_stock(transaction_id, line_items, branch_id: int, performed_by: str | None, reason: str) -> VoidStockResult:
    """
    Put the stock of a cancelled sale back, one void_return movement per line.

    The caller guarantees the transaction was not already voided; this
    function does not deduplicate by transaction id. A missing StockLevel is
    re-created. Lines commit independently and failed ones are reported.
    """
    result = VoidStockResult()

    for item in line_items:
        if isinstance(item, dict):
            product_id, quantity = item["product_id"], item["quantity"]
        else:
            product_id, quantity = item.product_id, item.quantity

        if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
            result.failures.append({"product_id": product_id, "quantity": quantity, "error": "quantity must be > 0"})
            continue

        try:
            apply_delta(
                product_id,
                branch_id,
                quantity,
                CAUSE_VOID_RETURN,
                reason=_void_reason(transaction_id, reason),
                performed_by=performed_by,
                reference_id=str(transaction_id),
            )
        except (StockError, SQLAlchemyError) as exc:
            db.session.rollback()
            message = exc.message if isinstance(exc, StockError) else "Database error"
            logger.error("Stock return failed for transaction %s product %s: %s", transaction_id, product_id, message)
            result.failures.append({"product_id": product_id, "quantity": quantity, "error": message})
            continue

        result.stock_returned += quantity

    return result
