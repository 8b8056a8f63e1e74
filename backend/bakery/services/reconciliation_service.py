# Overview: Detects and corrects drift between StockLevel.quantity and the movement ledger.

from __future__ import annotations

import logging

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..models import Branch, Product, StockLevel, StockMovement
from ..time_utils import utcnow
from .concurrency import lock_for_update, run_with_retry
from .ledger_service import sum_movements_since
from .stock_mutator import _append_or_fail, _notify
from .stock_types import CAUSE_RECONCILIATION_FIX, Discrepancy, StockError, StockNotFoundError
"""
Reconciliation semantics:
- calculated = baseline_quantity + SUM(quantity_change of movements with id > baseline_movement_id)
  (all movements of the pair when baseline_movement_id is NULL).
- difference = current - calculated; rows with difference 0 are not reported.
- reconcile() is read-only and skips (logs) rows whose calculation fails.
- fix() overwrites quantity with a freshly recomputed calculated value, writes
  one reconciliation_fix movement, and rebases the row on that movement so
  the next scan starts from the corrected value.
"""

logger = logging.getLogger(__name__)


def calculate_expected(level: StockLevel) -> int:
    return (level.baseline_quantity or 0) + sum_movements_since(
        level.product_id, level.branch_id, level.baseline_movement_id
    )


def reconcile(branch_id: int | None = None) -> list[Discrepancy]:
    q = db.session.query(StockLevel, Product.name, Branch.name).join(
        Product, Product.id == StockLevel.product_id
    ).join(
        Branch, Branch.id == StockLevel.branch_id
    )
    if branch_id is not None:
        q = q.filter(StockLevel.branch_id == branch_id)
    rows = q.order_by(StockLevel.branch_id.asc(), StockLevel.product_id.asc()).all()

    discrepancies: list[Discrepancy] = []
    failed = 0
    for level, product_name, branch_name in rows:
        try:
            calculated = calculate_expected(level)
        except SQLAlchemyError:
            logger.exception(
                "Reconciliation skipped product %s at branch %s",
                level.product_id, level.branch_id,
            )
            db.session.rollback()
            failed += 1
            continue

        current = level.quantity or 0
        if current != calculated:
            discrepancies.append(Discrepancy(
                product_id=level.product_id,
                branch_id=level.branch_id,
                current_stock=current,
                calculated_stock=calculated,
                product_name=product_name,
                branch_name=branch_name,
            ))

    logger.info(
        "Reconciliation scan (branch=%s): %s rows, %s discrepancies, %s skipped",
        branch_id if branch_id is not None else "all", len(rows), len(discrepancies), failed,
    )
    return discrepancies


def _fix_one(product_id: int, branch_id: int, performed_by: str | None):
    def _op():
        level = lock_for_update(
            db.session.query(StockLevel).filter_by(product_id=product_id, branch_id=branch_id)
        ).populate_existing().first()
        if level is None:
            raise StockNotFoundError(
                "Inventory item not found",
                {"product_id": product_id, "branch_id": branch_id},
            )

        calculated = calculate_expected(level)
        old_quantity = level.quantity or 0
        change = calculated - old_quantity
        if change == 0:
            return None

        level.quantity = calculated
        level.last_updated = utcnow()
        db.session.flush()

        try:
            movement = _append_or_fail(
                product_id=product_id,
                branch_id=branch_id,
                quantity_change=change,
                cause=CAUSE_RECONCILIATION_FIX,
                reason=f"Reconciliation fix: {old_quantity} -> {calculated}",
                performed_by=performed_by,
                reference_id=f"inventory:{level.id}",
            )
        except StockError:
            db.session.rollback()
            raise

        level.baseline_quantity = calculated
        level.baseline_movement_id = movement.id
        db.session.commit()
        return calculated

    return run_with_retry(_op)


def fix(discrepancies, performed_by: str | None = None) -> bool:
    """
    Overwrite drifted quantities with their ledger-derived value.

    Accepts Discrepancy objects or dicts with product_id/branch_id. Returns
    True when every row was fixed (or had already converged).
    """
    ok = True
    fixed = 0
    for item in discrepancies:
        if isinstance(item, Discrepancy):
            product_id, branch_id = item.product_id, item.branch_id
        else:
            product_id, branch_id = int(item["product_id"]), int(item["branch_id"])

        try:
            new_quantity = _fix_one(product_id, branch_id, performed_by)
        except (StockError, SQLAlchemyError):
            db.session.rollback()
            logger.exception("Reconciliation fix failed for product %s at branch %s", product_id, branch_id)
            ok = False
            continue

        if new_quantity is not None:
            fixed += 1
            _notify(product_id, branch_id, new_quantity, CAUSE_RECONCILIATION_FIX)

    logger.info("Reconciliation fix by %s: %s rows corrected, success=%s", performed_by, fixed, ok)
    return ok


def set_baseline(product_id: int, branch_id: int) -> StockLevel:
    """Accept the current quantity as the known-good baseline for the pair."""

    def _op():
        level = lock_for_update(
            db.session.query(StockLevel).filter_by(product_id=product_id, branch_id=branch_id)
        ).populate_existing().first()
        if level is None:
            raise StockNotFoundError(
                "Inventory item not found",
                {"product_id": product_id, "branch_id": branch_id},
            )

        last_id = db.session.query(func.max(StockMovement.id)).filter(
            StockMovement.product_id == product_id,
            StockMovement.branch_id == branch_id,
        ).scalar()

        level.baseline_quantity = level.quantity or 0
        level.baseline_movement_id = last_id
        db.session.commit()
        return level

    try:
        level = run_with_retry(_op)
    except StockError:
        db.session.rollback()
        raise

    logger.info(
        "Baseline set: product=%s branch=%s quantity=%s after_movement=%s",
        product_id, branch_id, level.baseline_quantity, level.baseline_movement_id,
    )
    return level
