from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z, to_iso_date


PRODUCT_TYPES = ("regular", "package", "bundle")

BATCH_STATUS_ACTIVE = "active"
BATCH_STATUS_EXPIRED = "expired"
BATCH_STATUS_SOLD_OUT = "sold_out"
BATCH_STATUSES = (BATCH_STATUS_ACTIVE, BATCH_STATUS_EXPIRED, BATCH_STATUS_SOLD_OUT)


class Product(db.Model):
    """
    Product master data, shared by all branches.

    Packages and bundles are sold as one line but consume their components;
    see ProductPackage.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.Index("ix_products_active_name", "is_active", "name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sku = db.Column(db.String(64), nullable=False, unique=True)
    name = db.Column(db.String(255), nullable=False)
    category = db.Column(db.String(64), nullable=True)

    # Whole rupiah; the frontend only formats
    price = db.Column(db.Integer, nullable=False, default=0)

    product_type = db.Column(db.String(16), nullable=False, default="regular")
    reorder_point = db.Column(db.Integer, nullable=True)
    shelf_life_days = db.Column(db.Integer, nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    def __repr__(self) -> str:
        return f"<Product id={self.id} sku={self.sku!r} name={self.name!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sku": self.sku,
            "name": self.name,
            "category": self.category,
            "price": self.price,
            "product_type": self.product_type,
            "reorder_point": self.reorder_point,
            "shelf_life_days": self.shelf_life_days,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class ProductPackage(db.Model):
    """One component line of a package/bundle: `quantity` units per parent unit."""
    __tablename__ = "product_packages"
    __table_args__ = (
        db.UniqueConstraint("parent_product_id", "component_product_id", name="uq_product_packages_pair"),
        db.CheckConstraint("quantity > 0", name="ck_product_packages_quantity_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    parent_product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    component_product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    quantity = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    component_product = db.relationship("Product", foreign_keys=[component_product_id])

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "parent_product_id": self.parent_product_id,
            "component_product_id": self.component_product_id,
            "quantity": self.quantity,
        }


class StockLevel(db.Model):
    """
    Authoritative on-hand quantity for one (product, branch).

    INVARIANTS:
    - At most one row per (product_id, branch_id).
    - Only the stock mutator writes `quantity`, and only together with a
      StockMovement in the same unit of work.
    - quantity >= 0 unless a supervisor override was recorded on the movement.

    RECONCILIATION BASELINE:
    baseline_quantity is the known-good quantity as of movement
    baseline_movement_id (NULL means "before the first movement"). The
    quantity implied by the ledger is baseline_quantity plus the sum of all
    later movements.
    """
    __tablename__ = "stock_levels"
    __table_args__ = (
        db.UniqueConstraint("product_id", "branch_id", name="uq_stock_levels_product_branch"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=False, index=True)
    quantity = db.Column(db.Integer, nullable=False, default=0)
    last_updated = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    baseline_quantity = db.Column(db.Integer, nullable=False, default=0)
    baseline_movement_id = db.Column(db.Integer, nullable=True)

    product = db.relationship("Product", backref=db.backref("stock_levels", lazy=True))
    branch = db.relationship("Branch", backref=db.backref("stock_levels", lazy=True))

    def __repr__(self) -> str:
        return f"<StockLevel product_id={self.product_id} branch_id={self.branch_id} quantity={self.quantity}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "branch_id": self.branch_id,
            "quantity": self.quantity,
            "last_updated": to_utc_z(self.last_updated),
            "baseline_quantity": self.baseline_quantity,
            "baseline_movement_id": self.baseline_movement_id,
        }


class StockMovement(db.Model):
    """
    Append-only audit record of one quantity change.

    Rows are never updated or deleted. quantity_change is the signed delta
    actually applied to the StockLevel in the same unit of work.
    """
    __tablename__ = "stock_movements"
    __table_args__ = (
        db.Index("ix_stock_movements_product_branch_id", "product_id", "branch_id", "id"),
        db.Index("ix_stock_movements_reference", "reference_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=False, index=True)
    quantity_change = db.Column(db.Integer, nullable=False)
    cause = db.Column(db.String(32), nullable=False, index=True)
    reason = db.Column(db.String(500), nullable=True)
    performed_by = db.Column(db.String(64), nullable=True)
    reference_id = db.Column(db.String(64), nullable=True)
    batch_id = db.Column(db.Integer, db.ForeignKey("product_batches.id"), nullable=True)
    created_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        index=True,
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "branch_id": self.branch_id,
            "quantity_change": self.quantity_change,
            "cause": self.cause,
            "reason": self.reason,
            "performed_by": self.performed_by,
            "reference_id": self.reference_id,
            "batch_id": self.batch_id,
            "created_at": to_utc_z(self.created_at),
        }


class ProductBatch(db.Model):
    """
    Expiry-aware subdivision of a StockLevel.

    Active batch quantities for a (product, branch) never add up to more than
    the StockLevel quantity. Batches are consumed earliest-expiry first.
    """
    __tablename__ = "product_batches"
    __table_args__ = (
        db.UniqueConstraint("product_id", "branch_id", "batch_number", name="uq_product_batches_number"),
        db.Index("ix_product_batches_fefo", "product_id", "branch_id", "status", "expiry_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=False, index=True)
    batch_number = db.Column(db.String(64), nullable=False)
    quantity = db.Column(db.Integer, nullable=False, default=0)
    production_date = db.Column(db.Date, nullable=False)
    expiry_date = db.Column(db.Date, nullable=False, index=True)
    status = db.Column(db.String(16), nullable=False, default=BATCH_STATUS_ACTIVE, index=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    product = db.relationship("Product")

    def __repr__(self) -> str:
        return f"<ProductBatch id={self.id} batch_number={self.batch_number!r} quantity={self.quantity} status={self.status}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "branch_id": self.branch_id,
            "batch_number": self.batch_number,
            "quantity": self.quantity,
            "production_date": to_iso_date(self.production_date),
            "expiry_date": to_iso_date(self.expiry_date),
            "status": self.status,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
