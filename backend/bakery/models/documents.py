from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z, to_iso_date


PRODUCTION_STATUSES = ("pending", "in_progress", "completed", "cancelled")

RETURN_STATUS_PENDING = "pending"
RETURN_STATUS_APPROVED = "approved"
RETURN_STATUS_REJECTED = "rejected"

RETURN_CONDITIONS = ("resaleable", "damaged", "expired")


class ProductionRequest(db.Model):
    """
    Kitchen production order for one product at one branch.

    Completion is the only point where produced goods enter stock.
    """
    __tablename__ = "production_requests"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=False, index=True)
    quantity_requested = db.Column(db.Integer, nullable=False)
    quantity_produced = db.Column(db.Integer, nullable=True)
    production_date = db.Column(db.Date, nullable=False)
    status = db.Column(db.String(16), nullable=False, default="pending", index=True)
    requested_by = db.Column(db.String(64), nullable=True)
    produced_by = db.Column(db.String(64), nullable=True)
    batch_id = db.Column(db.Integer, db.ForeignKey("product_batches.id"), nullable=True)
    notes = db.Column(db.String(500), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "branch_id": self.branch_id,
            "quantity_requested": self.quantity_requested,
            "quantity_produced": self.quantity_produced,
            "production_date": to_iso_date(self.production_date),
            "status": self.status,
            "requested_by": self.requested_by,
            "produced_by": self.produced_by,
            "batch_id": self.batch_id,
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class Return(db.Model):
    """Customer return document (pending until a supervisor approves or rejects it)."""
    __tablename__ = "returns"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    transaction_id = db.Column(db.Integer, db.ForeignKey("transactions.id"), nullable=True, index=True)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=False, index=True)
    processed_by = db.Column(db.String(64), nullable=True)
    reason = db.Column(db.String(255), nullable=False)
    status = db.Column(db.String(16), nullable=False, default=RETURN_STATUS_PENDING, index=True)
    notes = db.Column(db.String(500), nullable=True)
    return_date = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    items = db.relationship("ReturnItem", backref="return_doc", lazy=True, order_by="ReturnItem.id")

    def to_dict(self, include_items: bool = False) -> dict:
        data = {
            "id": self.id,
            "transaction_id": self.transaction_id,
            "branch_id": self.branch_id,
            "processed_by": self.processed_by,
            "reason": self.reason,
            "status": self.status,
            "notes": self.notes,
            "return_date": to_utc_z(self.return_date),
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        return data


class ReturnItem(db.Model):
    __tablename__ = "return_items"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    return_id = db.Column(db.Integer, db.ForeignKey("returns.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    batch_id = db.Column(db.Integer, db.ForeignKey("product_batches.id"), nullable=True)
    quantity = db.Column(db.Integer, nullable=False)
    reason = db.Column(db.String(255), nullable=True)
    condition = db.Column(db.String(16), nullable=False, default="resaleable")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "return_id": self.return_id,
            "product_id": self.product_id,
            "batch_id": self.batch_id,
            "quantity": self.quantity,
            "reason": self.reason,
            "condition": self.condition,
        }
