# Overview: Append-only stock movement ledger plus its reporting read API.

from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import func

from ..extensions import db
from ..models import StockMovement
from .stock_types import STOCK_CAUSES
"""
Stock Movement Ledger Invariants (authoritative)

- Append-only: rows are inserted, never updated or deleted.
- Exactly one movement per applied quantity change, written inside the same
  DB transaction as the StockLevel update it records.
- quantity_change is the delta actually applied (after any clamping).
- created_at is system time (DB default).
"""


def append_stock_movement(
    *,
    product_id: int,
    branch_id: int,
    quantity_change: int,
    cause: str,
    reason: Optional[str] = None,
    performed_by: Optional[str] = None,
    reference_id: Optional[str] = None,
    batch_id: Optional[int] = None,
) -> StockMovement:
    """
    Append one movement row and flush it (no commit).

    The flush surfaces constraint/connection failures to the caller while
    the quantity update is still uncommitted.
    """
    if cause not in STOCK_CAUSES:
        raise ValueError(f"unknown stock movement cause: {cause}")

    movement = StockMovement(
        product_id=product_id,
        branch_id=branch_id,
        quantity_change=quantity_change,
        cause=cause,
        reason=reason[:500] if reason else None,
        performed_by=performed_by,
        reference_id=None if reference_id is None else str(reference_id),
        batch_id=batch_id,
    )
    db.session.add(movement)
    db.session.flush()
    return movement


def list_stock_movements(
    *,
    product_id: int | None = None,
    branch_id: int | None = None,
    cause: str | None = None,
    reference_id: str | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
    limit: int = 200,
) -> list[StockMovement]:
    """Newest-first movement history for audit screens. Read-only."""
    q = StockMovement.query
    if product_id is not None:
        q = q.filter(StockMovement.product_id == product_id)
    if branch_id is not None:
        q = q.filter(StockMovement.branch_id == branch_id)
    if cause:
        q = q.filter(StockMovement.cause == cause)
    if reference_id:
        q = q.filter(StockMovement.reference_id == str(reference_id))
    if start is not None:
        q = q.filter(StockMovement.created_at >= start)
    if end is not None:
        q = q.filter(StockMovement.created_at <= end)

    q = q.order_by(StockMovement.id.desc())
    return q.limit(limit).all()


def sum_movements_since(product_id: int, branch_id: int, after_movement_id: int | None) -> int:
    """Net signed change over movements strictly after `after_movement_id` (all when None)."""
    q = db.session.query(
        func.coalesce(func.sum(StockMovement.quantity_change), 0)
    ).filter(
        StockMovement.product_id == product_id,
        StockMovement.branch_id == branch_id,
    )
    if after_movement_id is not None:
        q = q.filter(StockMovement.id > after_movement_id)
    return int(q.scalar() or 0)
