"""
Customer returns.

DESIGN PRINCIPLES:
- A return may reference the original transaction; returned quantity per
  product cannot exceed what that transaction sold
- A cancelled transaction takes no returns: the void already put its stock back
- Supervisor approval required before any stock moves
- Only resaleable items go back on the shelf (cause void_return); damaged
  and expired items are recorded on the document and write no movement
- A resaleable item naming a non-expired batch is put back into that batch

LIFECYCLE:
1. Create return (pending)
2. Approve (stock restored) or reject (no stock effect); both are terminal
"""

from __future__ import annotations

import logging

from sqlalchemy import func

from ..extensions import db
from ..models import Branch, Product, ProductBatch, Return, ReturnItem, Transaction, TransactionItem
from ..models.documents import (
    RETURN_CONDITIONS,
    RETURN_STATUS_APPROVED,
    RETURN_STATUS_PENDING,
    RETURN_STATUS_REJECTED,
)
from ..models.inventory import BATCH_STATUS_ACTIVE, BATCH_STATUS_EXPIRED
from ..models.sales import TRANSACTION_STATUS_CANCELLED
from ..time_utils import utcnow
from .concurrency import lock_for_update, run_with_retry
from .stock_mutator import _apply_delta_inner, _notify
from .stock_types import CAUSE_VOID_RETURN, StockError

logger = logging.getLogger(__name__)


class ReturnError(Exception):
    """Raised for return operation errors."""
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ReturnNotFoundError(ReturnError):
    pass


class ReturnStateError(ReturnError):
    pass


def _returned_so_far(transaction_id: int) -> dict[int, int]:
    rows = db.session.query(
        ReturnItem.product_id,
        func.coalesce(func.sum(ReturnItem.quantity), 0),
    ).join(
        Return, Return.id == ReturnItem.return_id
    ).filter(
        Return.transaction_id == transaction_id,
        Return.status != RETURN_STATUS_REJECTED,
    ).group_by(ReturnItem.product_id).all()
    return {product_id: int(qty) for product_id, qty in rows}


def create_return(
    branch_id: int,
    items,
    reason: str,
    processed_by: str | None = None,
    transaction_id: int | None = None,
    notes: str | None = None,
) -> Return:
    """
    Create a pending return document. No stock moves until approval.

    Raises:
        ReturnError: missing reason, bad lines, or quantity above what was sold
        ReturnNotFoundError: unknown branch/transaction/product
    """
    if not reason or not reason.strip():
        raise ReturnError("Return reason is required")
    if not items:
        raise ReturnError("Return must have at least one item")
    if db.session.get(Branch, branch_id) is None:
        raise ReturnNotFoundError(f"Branch {branch_id} not found", {"branch_id": branch_id})

    sold: dict[int, int] | None = None
    if transaction_id is not None:
        tx = db.session.get(Transaction, transaction_id)
        if tx is None:
            raise ReturnNotFoundError(f"Transaction {transaction_id} not found", {"transaction_id": transaction_id})
        if tx.branch_id != branch_id:
            raise ReturnError("Transaction belongs to another branch", {"transaction_id": transaction_id})
        if tx.status == TRANSACTION_STATUS_CANCELLED:
            raise ReturnStateError("Transaction is cancelled; its stock was already returned", {"transaction_id": transaction_id})
        sold = {}
        for line in db.session.query(TransactionItem).filter_by(transaction_id=transaction_id).all():
            sold[line.product_id] = sold.get(line.product_id, 0) + line.quantity

    lines = []
    requested: dict[int, int] = {}
    for item in items:
        product_id = int(item["product_id"])
        quantity = item.get("quantity")
        condition = item.get("condition") or "resaleable"
        if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
            raise ReturnError("quantity must be a positive integer", {"product_id": product_id})
        if condition not in RETURN_CONDITIONS:
            raise ReturnError(f"Invalid condition: {condition}", {"allowed": list(RETURN_CONDITIONS)})
        if db.session.get(Product, product_id) is None:
            raise ReturnNotFoundError(f"Product {product_id} not found", {"product_id": product_id})
        batch_id = item.get("batch_id")
        if batch_id is not None:
            batch = db.session.get(ProductBatch, batch_id)
            if batch is None or batch.product_id != product_id or batch.branch_id != branch_id:
                raise ReturnError("Batch does not match product and branch", {"batch_id": batch_id})
        requested[product_id] = requested.get(product_id, 0) + quantity
        lines.append((product_id, quantity, condition, batch_id, item.get("reason")))

    if sold is not None:
        already = _returned_so_far(transaction_id)
        for product_id, quantity in requested.items():
            remaining = sold.get(product_id, 0) - already.get(product_id, 0)
            if quantity > remaining:
                raise ReturnError(
                    "Return quantity exceeds quantity sold",
                    {"product_id": product_id, "requested": quantity, "returnable": max(remaining, 0)},
                )

    doc = Return(
        transaction_id=transaction_id,
        branch_id=branch_id,
        processed_by=processed_by,
        reason=reason.strip(),
        status=RETURN_STATUS_PENDING,
        notes=notes,
        return_date=utcnow(),
    )
    db.session.add(doc)
    db.session.flush()

    for product_id, quantity, condition, batch_id, line_reason in lines:
        db.session.add(ReturnItem(
            return_id=doc.id,
            product_id=product_id,
            batch_id=batch_id,
            quantity=quantity,
            condition=condition,
            reason=line_reason,
        ))
    db.session.commit()

    logger.info("Return %s created at branch %s (%s lines)", doc.id, branch_id, len(lines))
    return doc


def process_return(return_id: int, action: str, processed_by: str | None = None, notes: str | None = None) -> Return:
    """
    Approve or reject a pending return.

    approve: every resaleable line is added back to stock in one unit of work.
    """
    if action not in ("approve", "reject"):
        raise ReturnError("action must be 'approve' or 'reject'")

    def _op():
        doc = lock_for_update(db.session.query(Return).filter_by(id=return_id)).populate_existing().first()
        if doc is None:
            raise ReturnNotFoundError(f"Return {return_id} not found", {"return_id": return_id})
        if doc.status != RETURN_STATUS_PENDING:
            raise ReturnStateError(f"Return already {doc.status}", {"return_id": return_id, "status": doc.status})

        restocked: dict[int, int] = {}
        if action == "approve" and doc.transaction_id is not None:
            tx = lock_for_update(
                db.session.query(Transaction).filter_by(id=doc.transaction_id)
            ).populate_existing().first()
            if tx is not None and tx.status == TRANSACTION_STATUS_CANCELLED:
                raise ReturnStateError(
                    "Transaction is cancelled; its stock was already returned",
                    {"return_id": return_id, "transaction_id": doc.transaction_id},
                )
        if action == "approve":
            try:
                for item in doc.items:
                    if item.condition != "resaleable":
                        continue
                    restocked[item.product_id] = _apply_delta_inner(
                        product_id=item.product_id,
                        branch_id=doc.branch_id,
                        delta=item.quantity,
                        cause=CAUSE_VOID_RETURN,
                        reason=f"Return #{doc.id}: {doc.reason}",
                        performed_by=processed_by,
                        reference_id=f"return:{doc.id}",
                        batch_id=item.batch_id,
                    )
                    if item.batch_id is not None:
                        batch = db.session.get(ProductBatch, item.batch_id)
                        if batch is not None and batch.status != BATCH_STATUS_EXPIRED:
                            batch.quantity += item.quantity
                            batch.status = BATCH_STATUS_ACTIVE
            except StockError:
                db.session.rollback()
                raise
            doc.status = RETURN_STATUS_APPROVED
        else:
            doc.status = RETURN_STATUS_REJECTED

        doc.processed_by = processed_by or doc.processed_by
        if notes:
            doc.notes = notes
        db.session.commit()
        return doc, restocked

    try:
        doc, restocked = run_with_retry(_op)
    except ReturnError:
        db.session.rollback()
        raise

    logger.info("Return %s %s by %s (%s products restocked)", doc.id, doc.status, processed_by, len(restocked))
    for product_id, quantity in restocked.items():
        _notify(product_id, doc.branch_id, quantity, CAUSE_VOID_RETURN)
    return doc


def get_return(return_id: int) -> Return:
    doc = db.session.get(Return, return_id)
    if doc is None:
        raise ReturnNotFoundError(f"Return {return_id} not found", {"return_id": return_id})
    return doc
