# Overview: Shared stock ledger vocabulary: movement causes, errors, and result shapes.

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Union


# =============================================================================
# MOVEMENT CAUSES
# =============================================================================

CAUSE_SALE = "sale"
CAUSE_VOID_RETURN = "void_return"
CAUSE_MANUAL_ADJUST_IN = "manual_adjust_in"
CAUSE_MANUAL_ADJUST_OUT = "manual_adjust_out"
CAUSE_PRODUCTION_RECEIPT = "production_receipt"
CAUSE_BULK_EDIT = "bulk_edit"
CAUSE_BATCH_EXPIRY = "batch_expiry"
CAUSE_TRANSFER = "transfer"
CAUSE_INITIAL_STOCK = "initial_stock"
CAUSE_RECONCILIATION_FIX = "reconciliation_fix"

STOCK_CAUSES = frozenset({
    CAUSE_SALE,
    CAUSE_VOID_RETURN,
    CAUSE_MANUAL_ADJUST_IN,
    CAUSE_MANUAL_ADJUST_OUT,
    CAUSE_PRODUCTION_RECEIPT,
    CAUSE_BULK_EDIT,
    CAUSE_BATCH_EXPIRY,
    CAUSE_TRANSFER,
    CAUSE_INITIAL_STOCK,
    CAUSE_RECONCILIATION_FIX,
})

# Decreases with these causes are tied to one specific batch, so FEFO
# allocation is skipped for them.
BATCH_SPECIFIC_CAUSES = frozenset({CAUSE_BATCH_EXPIRY})

BULK_OPERATIONS = ("set", "add", "subtract", "reset")


# =============================================================================
# ERRORS
# =============================================================================

class StockError(Exception):
    """Base class for stock ledger failures."""
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class InsufficientStockError(StockError):
    """Requested decrease would take on-hand below zero without an override."""


class OverridePolicyViolation(StockError):
    """Override attempted without a reason or while the policy forbids it."""


class StockNotFoundError(StockError):
    """A row addressed by id (or a product/branch being written) does not exist."""


class AuditWriteFailure(StockError):
    """The movement row could not be written; the quantity change was rolled back."""


# =============================================================================
# VALIDATION RESULTS
# =============================================================================

@dataclass(frozen=True)
class ValidStock:
    available_stock: int
    message: str = ""

    is_valid = True

    def to_dict(self) -> dict:
        return {
            "is_valid": True,
            "available_stock": self.available_stock,
            "message": self.message,
        }


@dataclass(frozen=True)
class InvalidStock:
    available_stock: int
    deficit: int
    can_override: bool
    message: str

    is_valid = False

    def to_dict(self) -> dict:
        return {
            "is_valid": False,
            "available_stock": self.available_stock,
            "deficit": self.deficit,
            "can_override": self.can_override,
            "message": self.message,
        }


StockValidationResult = Union[ValidStock, InvalidStock]


@dataclass
class BulkValidationResult:
    is_valid: bool
    invalid_items: list[dict] = field(default_factory=list)
    message: str = ""

    def to_dict(self) -> dict:
        return {
            "is_valid": self.is_valid,
            "invalid_items": list(self.invalid_items),
            "message": self.message,
        }


@dataclass
class PackageValidationResult:
    is_valid: bool
    missing_components: list[dict] = field(default_factory=list)
    message: str = ""

    def to_dict(self) -> dict:
        return {
            "is_valid": self.is_valid,
            "missing_components": list(self.missing_components),
            "message": self.message,
        }


# =============================================================================
# MUTATION RESULTS
# =============================================================================

@dataclass(frozen=True)
class BulkEditOperation:
    inventory_id: object
    operation: str
    value: int = 0


@dataclass
class BulkEditResult:
    updated: list[dict] = field(default_factory=list)
    failed: list[dict] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {"updated": list(self.updated), "failed": list(self.failed)}


@dataclass
class VoidStockResult:
    stock_returned: int = 0
    failures: list[dict] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {"stock_returned": self.stock_returned, "failures": list(self.failures)}


@dataclass(frozen=True)
class Discrepancy:
    product_id: int
    branch_id: int
    current_stock: int
    calculated_stock: int
    product_name: str | None = None
    branch_name: str | None = None

    @property
    def difference(self) -> int:
        return self.current_stock - self.calculated_stock

    def to_dict(self) -> dict:
        return {
            "product_id": self.product_id,
            "branch_id": self.branch_id,
            "product_name": self.product_name,
            "branch_name": self.branch_name,
            "current_stock": self.current_stock,
            "calculated_stock": self.calculated_stock,
            "difference": self.difference,
        }
