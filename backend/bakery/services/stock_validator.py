# Overview: Read-only stock availability checks and the supervisor override gate.

from __future__ import annotations

import logging

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from ..config import StockPolicy
from ..extensions import db
from ..models import Product, ProductPackage
from .stock_reader import get_stock, get_stock_map
from .stock_types import (
    BulkValidationResult,
    InvalidStock,
    PackageValidationResult,
    StockValidationResult,
    ValidStock,
)
"""
Stock Validator semantics:
- isValid = available >= required. Nothing here writes stock.
- Data-access failures come back as an invalid result (available 0) so the
  caller blocks the sale instead of crashing.
- canOverride mirrors StockPolicy.allow_negative_stock_override; the override
  itself is granted only by apply_override() with a non-blank reason.
"""

logger = logging.getLogger(__name__)


def get_stock_policy() -> StockPolicy:
    """Policy of the running app; callers may pass an explicit StockPolicy instead."""
    return StockPolicy.from_mapping(current_app.config)


def validate_input_quantity(quantity, field_name: str = "quantity", max_quantity: int | None = None) -> str | None:
    """Return an error message for an unusable quantity input, else None."""
    if isinstance(quantity, bool) or not isinstance(quantity, int):
        return f"{field_name} must be a whole number"
    if quantity < 0:
        return f"{field_name} cannot be negative"
    if max_quantity is None:
        max_quantity = current_app.config.get("MAX_STOCK_QUANTITY", 999_999)
    if quantity > max_quantity:
        return f"{field_name} is too large (max {max_quantity:,})"
    return None


def validate(
    product_id: int,
    branch_id: int,
    required_qty: int,
    *,
    policy: StockPolicy | None = None,
) -> StockValidationResult:
    policy = policy or get_stock_policy()

    try:
        available = get_stock(product_id, branch_id)
    except SQLAlchemyError as exc:
        logger.exception("Stock lookup failed for product %s at branch %s", product_id, branch_id)
        db.session.rollback()
        if not policy.inventory_module_enabled:
            return ValidStock(available_stock=0, message="Inventory checks disabled")
        return InvalidStock(
            available_stock=0,
            deficit=max(required_qty, 0),
            can_override=False,
            message=f"Stock validation error: {exc.__class__.__name__}",
        )

    if not policy.inventory_module_enabled:
        return ValidStock(available_stock=available, message="Inventory checks disabled")

    if available >= required_qty:
        return ValidStock(available_stock=available, message=f"Sufficient stock. Available: {available}")

    deficit = required_qty - available
    logger.warning(
        "Insufficient stock for product %s at branch %s: available=%s required=%s",
        product_id, branch_id, available, required_qty,
    )
    return InvalidStock(
        available_stock=available,
        deficit=deficit,
        can_override=policy.allow_negative_stock_override,
        message=(
            f"Insufficient stock. Available: {available}, "
            f"required: {required_qty}, short by: {deficit}"
        ),
    )


def _normalize_items(items) -> list[tuple[int, int]]:
    """(product_id, quantity) pairs with repeated products summed, first-seen order."""
    totals: dict[int, int] = {}
    for item in items:
        if isinstance(item, dict):
            product_id, quantity = item["product_id"], item["quantity"]
        else:
            product_id, quantity = item
        product_id = int(product_id)
        totals[product_id] = totals.get(product_id, 0) + int(quantity)
    return list(totals.items())


def validate_bulk(items, branch_id: int, *, policy: StockPolicy | None = None) -> BulkValidationResult:
    """
    Validate each product against the summed quantity of its lines.

    Never stops at the first shortage: every failing item is listed so the
    cashier can fix the whole cart at once.
    """
    policy = policy or get_stock_policy()
    items = _normalize_items(items)

    if not policy.inventory_module_enabled:
        return BulkValidationResult(is_valid=True, message="Inventory checks disabled")

    try:
        stock = get_stock_map([product_id for product_id, _ in items], branch_id)
    except SQLAlchemyError as exc:
        logger.exception("Bulk stock lookup failed for branch %s", branch_id)
        db.session.rollback()
        return BulkValidationResult(
            is_valid=False,
            message=f"Stock validation error: {exc.__class__.__name__}",
        )

    invalid_items = []
    for product_id, quantity in items:
        available = stock.get(product_id, 0)
        if available < quantity:
            invalid_items.append({
                "product_id": product_id,
                "available_stock": available,
                "required_stock": quantity,
                "deficit": quantity - available,
            })

    if invalid_items:
        logger.warning("Bulk validation at branch %s: %s item(s) short", branch_id, len(invalid_items))
        return BulkValidationResult(
            is_valid=False,
            invalid_items=invalid_items,
            message=f"{len(invalid_items)} product(s) have insufficient stock",
        )
    return BulkValidationResult(is_valid=True, message="All items have sufficient stock")


def _components_of(product_id: int) -> list[ProductPackage]:
    return db.session.query(ProductPackage).filter_by(parent_product_id=product_id).order_by(ProductPackage.id).all()


def _collect_missing(product_id: int, branch_id: int, quantity: int, path: tuple, missing: list) -> None:
    for component in _components_of(product_id):
        component_id = component.component_product_id
        required = component.quantity * quantity

        if component_id in path:
            logger.warning("Package cycle detected at product %s -> %s; skipped", product_id, component_id)
            continue

        if _components_of(component_id):
            _collect_missing(component_id, branch_id, required, path + (component_id,), missing)
            continue

        available = get_stock(component_id, branch_id)
        if available < required:
            product = db.session.get(Product, component_id)
            missing.append({
                "product_id": component_id,
                "product_name": product.name if product else None,
                "required": required,
                "available": available,
                "deficit": required - available,
            })


def validate_package_stock(
    package_product_id: int,
    branch_id: int,
    requested_qty: int,
    *,
    policy: StockPolicy | None = None,
) -> PackageValidationResult:
    """
    Check every component of a package for `requested_qty` packages.

    Nested packages are expanded recursively; all short components are
    reported, not only the first one. A product without components is valid.
    """
    policy = policy or get_stock_policy()
    if not policy.inventory_module_enabled:
        return PackageValidationResult(is_valid=True, message="Inventory checks disabled")

    missing: list[dict] = []
    try:
        _collect_missing(package_product_id, branch_id, requested_qty, (package_product_id,), missing)
    except SQLAlchemyError as exc:
        logger.exception("Package stock lookup failed for product %s at branch %s", package_product_id, branch_id)
        db.session.rollback()
        return PackageValidationResult(
            is_valid=False,
            message=f"Stock validation error: {exc.__class__.__name__}",
        )

    if missing:
        return PackageValidationResult(
            is_valid=False,
            missing_components=missing,
            message=f"{len(missing)} component(s) have insufficient stock",
        )
    return PackageValidationResult(is_valid=True)


def apply_override(reason: str | None, *, policy: StockPolicy | None = None) -> bool:
    """
    Authorize a stock check bypass.

    Returns False (and changes nothing) when the policy forbids overrides or
    the reason is blank. A True result only authorizes the caller; the reason
    must travel into the movement written by the mutator.
    """
    policy = policy or get_stock_policy()
    if not policy.allow_negative_stock_override:
        logger.warning("Stock override refused: policy disabled")
        return False
    if reason is None or not str(reason).strip():
        logger.warning("Stock override refused: no reason given")
        return False
    logger.info("Stock override authorized: %s", str(reason).strip())
    return True
