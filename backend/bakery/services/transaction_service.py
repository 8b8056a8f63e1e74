"""
Cashier transactions: checkout and void.

WHY: A sale document and the stock it removes must commit together; a void
must return exactly the stock the sale removed, once.

DESIGN PRINCIPLES:
- Cart lines are aggregated per product before validation
- Package/bundle lines deduct their components, not the parent
- Validation reports every deficit at once; an authorized override lets the
  whole cart through and the override reason lands on every sale movement
- Void is guarded by transaction status (cancelled is terminal); the stock
  returned is read back from the sale movements referencing the transaction
  and commits together with the status change
- A sale with a pending or approved return cannot be voided, and a cancelled
  sale cannot take a return
"""

from __future__ import annotations

import logging
from collections import OrderedDict

from sqlalchemy.exc import SQLAlchemyError

from ..config import StockPolicy
from ..extensions import db
from ..models import Branch, Product, ProductPackage, Return, StockMovement, Transaction, TransactionItem
from ..models.documents import RETURN_STATUS_REJECTED
from ..models.sales import TRANSACTION_STATUS_CANCELLED, TRANSACTION_STATUS_COMPLETED
from ..time_utils import utcnow
from .concurrency import lock_for_update, run_with_retry
from .stock_mutator import _apply_delta_inner, _notify, _return_sale_stock_inner, _with_override_note
from .stock_types import CAUSE_SALE, CAUSE_VOID_RETURN, OverridePolicyViolation, StockError, VoidStockResult
from .stock_validator import apply_override, get_stock_policy, validate_bulk

logger = logging.getLogger(__name__)


class TransactionError(Exception):
    """Raised for transaction operation errors."""
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class TransactionNotFoundError(TransactionError):
    """Raised when a transaction is not found."""


class TransactionStateError(TransactionError):
    """Raised when an operation is invalid for the transaction's status."""


def _aggregate_lines(items) -> "OrderedDict[int, int]":
    if not items:
        raise TransactionError("Cart is empty")

    totals: OrderedDict[int, int] = OrderedDict()
    for item in items:
        try:
            product_id = int(item["product_id"])
        except (KeyError, TypeError, ValueError):
            raise TransactionError("Each line needs a product_id", {"line": item})
        quantity = item.get("quantity")
        if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
            raise TransactionError("quantity must be a positive integer", {"product_id": product_id})
        totals[product_id] = totals.get(product_id, 0) + quantity
    return totals


def _expand_components(product_id: int, quantity: int, out: dict, path: tuple = ()) -> None:
    """Accumulate the stock each unit of product_id actually consumes."""
    if product_id in path:
        raise TransactionError("Package definition is circular", {"product_id": product_id})

    components = db.session.query(ProductPackage).filter_by(parent_product_id=product_id).all()
    if not components:
        out[product_id] = out.get(product_id, 0) + quantity
        return
    for component in components:
        _expand_components(
            component.component_product_id,
            component.quantity * quantity,
            out,
            path + (product_id,),
        )


def checkout(
    branch_id: int,
    cashier_id: str | None,
    items,
    override_reason: str | None = None,
    notes: str | None = None,
    *,
    policy: StockPolicy | None = None,
) -> Transaction:
    """
    Record a completed sale and take its stock out of the branch.

    Raises:
        TransactionError: empty cart, unknown/inactive product, or insufficient
            stock without an override (details.invalid_items lists every deficit)
        OverridePolicyViolation: override refused by policy or blank reason
        InsufficientStockError: stock moved between validation and commit
    """
    policy = policy or get_stock_policy()
    lines = _aggregate_lines(items)

    if db.session.get(Branch, branch_id) is None:
        raise TransactionNotFoundError(f"Branch {branch_id} not found", {"branch_id": branch_id})

    products = {
        p.id: p for p in db.session.query(Product).filter(Product.id.in_(list(lines))).all()
    }
    unknown = [pid for pid in lines if pid not in products or not products[pid].is_active]
    if unknown:
        raise TransactionError("Unknown or inactive products in cart", {"product_ids": unknown})

    requirements: dict[int, int] = {}
    for product_id, quantity in lines.items():
        _expand_components(product_id, quantity, requirements)

    check = validate_bulk(list(requirements.items()), branch_id, policy=policy)
    allow_negative = False
    if not check.is_valid:
        if override_reason is None:
            raise TransactionError(check.message, {"invalid_items": check.invalid_items})
        if not apply_override(override_reason, policy=policy):
            raise OverridePolicyViolation(
                "Stock override requires an enabled policy and a reason",
                details={"invalid_items": check.invalid_items},
            )
        allow_negative = True
        logger.warning(
            "Checkout at branch %s by %s proceeds under stock override: %s",
            branch_id, cashier_id, override_reason,
        )

    def _op():
        tx = Transaction(
            branch_id=branch_id,
            cashier_id=cashier_id,
            status=TRANSACTION_STATUS_COMPLETED,
            notes=notes,
            stock_override_reason=override_reason.strip() if allow_negative else None,
            transaction_date=utcnow(),
        )
        db.session.add(tx)
        db.session.flush()

        total = 0
        for product_id, quantity in lines.items():
            unit_price = products[product_id].price or 0
            db.session.add(TransactionItem(
                transaction_id=tx.id,
                product_id=product_id,
                quantity=quantity,
                unit_price=unit_price,
                subtotal=unit_price * quantity,
            ))
            total += unit_price * quantity
        tx.total_amount = total
        db.session.flush()

        reason = f"Sale #{tx.id}"
        if allow_negative:
            reason = _with_override_note(override_reason, reason)

        new_quantities = {}
        try:
            for product_id, quantity in requirements.items():
                new_quantities[product_id] = _apply_delta_inner(
                    product_id=product_id,
                    branch_id=branch_id,
                    delta=-quantity,
                    cause=CAUSE_SALE,
                    reason=reason,
                    performed_by=cashier_id,
                    reference_id=str(tx.id),
                    allow_negative=allow_negative,
                )
        except StockError:
            db.session.rollback()
            raise

        db.session.commit()
        return tx, new_quantities

    tx, new_quantities = run_with_retry(_op)
    logger.info("Checkout #%s at branch %s: %s lines, total %s", tx.id, branch_id, len(lines), tx.total_amount)
    for product_id, quantity in new_quantities.items():
        _notify(product_id, branch_id, quantity, CAUSE_SALE)
    return tx


def get_transaction(transaction_id: int) -> Transaction:
    tx = db.session.get(Transaction, transaction_id)
    if tx is None:
        raise TransactionNotFoundError(f"Transaction {transaction_id} not found", {"transaction_id": transaction_id})
    return tx


def _sold_lines(transaction_id: int) -> list[dict]:
    """Net quantity per product that the sale removed, read from its movements."""
    rows = db.session.query(StockMovement).filter(
        StockMovement.reference_id == str(transaction_id),
        StockMovement.cause == CAUSE_SALE,
    ).order_by(StockMovement.id.asc()).all()

    totals: OrderedDict[int, int] = OrderedDict()
    for row in rows:
        totals[row.product_id] = totals.get(row.product_id, 0) - row.quantity_change
    return [{"product_id": pid, "quantity": qty} for pid, qty in totals.items() if qty > 0]


def void_transaction(transaction_id: int, performed_by: str | None, reason: str):
    """
    Cancel a completed transaction and return its stock.

    Returns (transaction, VoidStockResult). The status change and every
    void_return movement commit together: if any line cannot be returned,
    nothing is written and the transaction stays completed. A transaction
    with a pending or approved return cannot be voided; its stock is settled
    through the return instead.
    """
    if not reason or not reason.strip():
        raise TransactionError("Void reason is required")
    reason = reason.strip()

    def _op():
        tx = lock_for_update(
            db.session.query(Transaction).filter_by(id=transaction_id)
        ).populate_existing().first()
        if tx is None:
            raise TransactionNotFoundError(f"Transaction {transaction_id} not found", {"transaction_id": transaction_id})
        if tx.status == TRANSACTION_STATUS_CANCELLED:
            raise TransactionStateError("Transaction already cancelled", {"transaction_id": transaction_id})

        return_ids = [
            row.id for row in db.session.query(Return.id).filter(
                Return.transaction_id == transaction_id,
                Return.status != RETURN_STATUS_REJECTED,
            ).order_by(Return.id).all()
        ]
        if return_ids:
            raise TransactionStateError(
                "Transaction has returns and cannot be voided",
                {"transaction_id": transaction_id, "return_ids": return_ids},
            )

        lines = _sold_lines(tx.id)
        try:
            new_quantities = _return_sale_stock_inner(tx.id, lines, tx.branch_id, performed_by, reason)
        except StockError:
            db.session.rollback()
            raise

        tx.status = TRANSACTION_STATUS_CANCELLED
        tx.voided_by = performed_by
        tx.voided_at = utcnow()
        tx.void_reason = reason
        db.session.commit()
        return tx, VoidStockResult(stock_returned=sum(line["quantity"] for line in lines)), new_quantities

    try:
        tx, stock, new_quantities = run_with_retry(_op)
    except TransactionError:
        db.session.rollback()
        raise

    logger.info("Transaction %s voided by %s; %s units returned", tx.id, performed_by, stock.stock_returned)
    for product_id, quantity in new_quantities.items():
        _notify(product_id, tx.branch_id, quantity, CAUSE_VOID_RETURN)
    return tx, stock


def bulk_void_transactions(transaction_ids, performed_by: str | None, reason: str) -> dict:
    """Void several transactions; each one succeeds or fails on its own."""
    result = {"voided": [], "failed": [], "stock_returned": 0}

    for raw_id in transaction_ids:
        try:
            transaction_id = int(raw_id)
        except (TypeError, ValueError):
            result["failed"].append({"id": raw_id, "error": "Invalid transaction id"})
            continue

        try:
            tx, stock = void_transaction(transaction_id, performed_by, reason)
        except (TransactionError, StockError) as exc:
            result["failed"].append({"id": transaction_id, "error": exc.message})
            continue
        except SQLAlchemyError:
            db.session.rollback()
            logger.exception("Bulk void failed for transaction %s", transaction_id)
            result["failed"].append({"id": transaction_id, "error": "Database error"})
            continue

        result["voided"].append({"id": tx.id, **stock.to_dict()})
        result["stock_returned"] += stock.stock_returned

    logger.info("Bulk void by %s: %s voided, %s failed", performed_by, len(result["voided"]), len(result["failed"]))
    return result
