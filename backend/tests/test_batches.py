# Overview: Pytest coverage for product batches: creation, expiry, status and quantity changes.

from datetime import date, timedelta

import pytest

from bakery.models import StockLevel, StockMovement
from bakery.services import batch_service
from bakery.services.batch_service import BatchError, BatchNotFoundError, BatchStateError
from bakery.services.stock_reader import get_batches, get_stock


class TestCreateBatch:
    def test_receive_stock_writes_production_receipt(self, db_session, branch, product):
        batch = batch_service.create_batch(
            product.id, branch.id, "PRD-1", 12,
            production_date="2024-01-01", performed_by="baker",
        )

        assert batch.status == "active"
        assert batch.expiry_date == date(2024, 1, 4)
        assert get_stock(product.id, branch.id) == 12
        movement = db_session.query(StockMovement).one()
        assert movement.cause == "production_receipt"
        assert movement.batch_id == batch.id
        assert movement.reference_id == f"batch:{batch.id}"

    def test_label_existing_stock_within_on_hand(self, db_session, branch, product, stock):
        stock(product, branch, 10)
        batch_service.create_batch(product.id, branch.id, "OLD-1", 6, production_date=date(2024, 1, 1), receive_stock=False)

        with pytest.raises(BatchError):
            batch_service.create_batch(product.id, branch.id, "OLD-2", 5, production_date=date(2024, 1, 1), receive_stock=False)

        assert get_stock(product.id, branch.id) == 10
        assert db_session.query(StockMovement).count() == 1

    def test_duplicate_batch_number(self, db_session, branch, product):
        batch_service.create_batch(product.id, branch.id, "DUP", 1)
        with pytest.raises(BatchStateError):
            batch_service.create_batch(product.id, branch.id, "DUP", 2)
        assert get_stock(product.id, branch.id) == 1

    def test_rejects_bad_input(self, db_session, branch, product):
        with pytest.raises(BatchError):
            batch_service.create_batch(product.id, branch.id, "X", 0)
        with pytest.raises(BatchError):
            batch_service.create_batch(product.id, branch.id, "  ", 1)
        with pytest.raises(BatchError):
            batch_service.create_batch(product.id, branch.id, "X", 1, production_date="2024-01-05", expiry_date="2024-01-01")
        with pytest.raises(BatchNotFoundError):
            batch_service.create_batch(9999, branch.id, "X", 1)


class TestExpiry:
    def test_expire_removes_remaining_units(self, db_session, branch, product):
        old = batch_service.create_batch(product.id, branch.id, "OLD", 5, production_date="2024-01-01", expiry_date="2024-01-02")
        batch_service.create_batch(product.id, branch.id, "NEW", 4, production_date="2024-01-03", expiry_date="2024-01-09")

        result = batch_service.expire_batches(as_of=date(2024, 1, 5), performed_by="system")

        assert result["expired_batches"] == 1
        assert result["units_removed"] == 5
        assert get_stock(product.id, branch.id) == 4
        assert [b.batch_number for b in get_batches(product.id, branch.id)] == ["NEW"]
        expiry = db_session.query(StockMovement).filter_by(cause="batch_expiry").one()
        assert expiry.quantity_change == -5
        assert expiry.batch_id == old.id

    def test_expire_clamps_to_on_hand(self, db_session, branch, product):
        batch = batch_service.create_batch(product.id, branch.id, "OLD", 5, production_date="2024-01-01", expiry_date="2024-01-02")
        # on-hand fell below the batch without touching it
        db_session.query(StockLevel).update({"quantity": 2})
        db_session.commit()

        result = batch_service.expire_batches(as_of=date(2024, 1, 5))

        assert result["batches"] == [{"id": batch.id, "batch_number": "OLD", "units_removed": 2}]
        assert get_stock(product.id, branch.id) == 0

    def test_expiring_window(self, db_session, branch, product):
        batch_service.create_batch(product.id, branch.id, "SOON", 1, production_date="2024-01-01", expiry_date="2024-01-03")
        batch_service.create_batch(product.id, branch.id, "LATER", 1, production_date="2024-01-01", expiry_date="2024-01-10")

        soon = batch_service.get_expiring_batches(days_ahead=3, as_of=date(2024, 1, 1))
        assert [b.batch_number for b in soon] == ["SOON"]


class TestStatusAndQuantity:
    def test_mark_expired_removes_stock(self, db_session, branch, product):
        batch = batch_service.create_batch(product.id, branch.id, "B1", 3)
        batch_service.update_batch_status(batch.id, "expired", performed_by="baker")

        assert get_stock(product.id, branch.id) == 0
        assert batch_service.list_batches(branch_id=branch.id, status="expired")[0].id == batch.id

    def test_expired_is_terminal(self, db_session, branch, product):
        batch = batch_service.create_batch(product.id, branch.id, "B1", 3)
        batch_service.update_batch_status(batch.id, "expired")
        with pytest.raises(BatchStateError):
            batch_service.update_batch_status(batch.id, "active")
        with pytest.raises(BatchStateError):
            batch_service.adjust_batch_quantity(batch.id, 1)

    def test_sold_out_requires_zero_quantity(self, db_session, branch, product):
        batch = batch_service.create_batch(product.id, branch.id, "B1", 3)
        with pytest.raises(BatchStateError):
            batch_service.update_batch_status(batch.id, "sold_out")

        batch_service.adjust_batch_quantity(batch.id, 0)
        assert batch_service.update_batch_status(batch.id, "sold_out").status == "sold_out"

    def test_adjust_quantity_writes_no_movement(self, db_session, branch, product):
        batch = batch_service.create_batch(product.id, branch.id, "B1", 5)
        updated = batch_service.adjust_batch_quantity(batch.id, 2)

        assert updated.quantity == 2
        assert updated.status == "active"
        assert get_stock(product.id, branch.id) == 5
        assert db_session.query(StockMovement).count() == 1

    def test_adjust_quantity_cannot_exceed_on_hand(self, db_session, branch, product):
        batch = batch_service.create_batch(product.id, branch.id, "B1", 5)
        with pytest.raises(BatchError):
            batch_service.adjust_batch_quantity(batch.id, 6)

    def test_unknown_batch(self, db_session):
        with pytest.raises(BatchNotFoundError):
            batch_service.adjust_batch_quantity(9999, 1)

    def test_invalid_status(self, db_session, branch, product):
        batch = batch_service.create_batch(product.id, branch.id, "B1", 1)
        with pytest.raises(BatchError):
            batch_service.update_batch_status(batch.id, "eaten")

    def test_default_expiry_uses_shelf_life(self, db_session, make_product):
        product = make_product("KUE", shelf_life_days=None)
        start = date(2024, 3, 1)
        assert batch_service.default_expiry_date(product, start) == start + timedelta(days=3)
