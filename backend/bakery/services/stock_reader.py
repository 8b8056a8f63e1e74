# Overview: Read-only stock queries: on-hand quantity, FEFO batch order, dashboard figures.

from __future__ import annotations

from datetime import date, timedelta

from flask import current_app
from sqlalchemy import func

from ..extensions import db
from ..models import Product, ProductBatch, StockLevel
from ..models.inventory import BATCH_STATUS_ACTIVE
from ..time_utils import today
"""
Stock Reader semantics:
- Absence of a StockLevel row means zero stock, never an error.
- Every call queries fresh; nothing is cached between calls.
- Nothing in this module writes.
"""


def get_stock_level(product_id: int, branch_id: int) -> StockLevel | None:
    return db.session.query(StockLevel).filter_by(
        product_id=product_id,
        branch_id=branch_id,
    ).first()


def get_stock(product_id: int, branch_id: int) -> int:
    """Current on-hand quantity; 0 when the pair has never been stocked."""
    qty = db.session.query(StockLevel.quantity).filter_by(
        product_id=product_id,
        branch_id=branch_id,
    ).scalar()
    return int(qty or 0)


def get_stock_map(product_ids, branch_id: int) -> dict[int, int]:
    """On-hand quantities for several products at one branch in a single query."""
    ids = list({int(pid) for pid in product_ids})
    if not ids:
        return {}
    rows = db.session.query(StockLevel.product_id, StockLevel.quantity).filter(
        StockLevel.branch_id == branch_id,
        StockLevel.product_id.in_(ids),
    ).all()
    found = {row.product_id: int(row.quantity or 0) for row in rows}
    return {pid: found.get(pid, 0) for pid in ids}


def get_batches(product_id: int, branch_id: int) -> list[ProductBatch]:
    """
    Active, non-empty batches in FEFO order (earliest expiry first).

    Ties on expiry_date are broken by id so the order is stable.
    """
    return db.session.query(ProductBatch).filter(
        ProductBatch.product_id == product_id,
        ProductBatch.branch_id == branch_id,
        ProductBatch.status == BATCH_STATUS_ACTIVE,
        ProductBatch.quantity > 0,
    ).order_by(
        ProductBatch.expiry_date.asc(),
        ProductBatch.id.asc(),
    ).all()


def get_batched_quantity(product_id: int, branch_id: int) -> int:
    """Total quantity held in active batches for the pair."""
    total = db.session.query(
        func.coalesce(func.sum(ProductBatch.quantity), 0)
    ).filter(
        ProductBatch.product_id == product_id,
        ProductBatch.branch_id == branch_id,
        ProductBatch.status == BATCH_STATUS_ACTIVE,
    ).scalar()
    return int(total or 0)


def list_stock_levels(branch_id: int | None = None) -> list[StockLevel]:
    q = db.session.query(StockLevel)
    if branch_id is not None:
        q = q.filter(StockLevel.branch_id == branch_id)
    return q.order_by(StockLevel.branch_id.asc(), StockLevel.product_id.asc()).all()


def get_stock_status(quantity: int, reorder_point: int | None, default_reorder_point: int | None = None) -> str:
    """
    high: above reorder point, medium: exactly at it, low: below it.
    """
    if reorder_point is None:
        reorder_point = default_reorder_point
    if reorder_point is None:
        reorder_point = current_app.config.get("DEFAULT_REORDER_POINT", 30)

    if quantity > reorder_point:
        return "high"
    if quantity == reorder_point:
        return "medium"
    return "low"


def get_inventory_kpis(branch_id: int | None = None, as_of: date | None = None) -> dict:
    """
    Dashboard counters for active products.

    lowStock counts a level at or under its reorder point. Expiring units are
    active batch units whose expiry falls within EXPIRY_WARNING_DAYS.
    """
    default_rop = current_app.config.get("DEFAULT_REORDER_POINT", 30)
    warning_days = current_app.config.get("EXPIRY_WARNING_DAYS", 3)
    as_of = as_of or today()

    q = db.session.query(StockLevel, Product).join(
        Product, Product.id == StockLevel.product_id
    ).filter(Product.is_active.is_(True))
    if branch_id is not None:
        q = q.filter(StockLevel.branch_id == branch_id)
    rows = q.all()

    active_skus = len({level.product_id for level, _ in rows})
    total_units = sum(level.quantity or 0 for level, _ in rows)
    low_stock = sum(
        1 for level, product in rows
        if (level.quantity or 0) <= (product.reorder_point if product.reorder_point is not None else default_rop)
    )

    expiring_q = db.session.query(
        func.coalesce(func.sum(ProductBatch.quantity), 0)
    ).filter(
        ProductBatch.status == BATCH_STATUS_ACTIVE,
        ProductBatch.quantity > 0,
        ProductBatch.expiry_date <= as_of + timedelta(days=warning_days),
    )
    if branch_id is not None:
        expiring_q = expiring_q.filter(ProductBatch.branch_id == branch_id)

    return {
        "branch_id": branch_id,
        "active_skus": active_skus,
        "total_units": total_units,
        "low_stock_skus": low_stock,
        "expiring_units": int(expiring_q.scalar() or 0),
    }
