# Overview: Pytest coverage for the stock mutator: deltas, overrides, audit atomicity, FEFO.

from datetime import date

import pytest
from sqlalchemy.exc import OperationalError

from bakery.config import StockPolicy
from bakery.extensions import db, stock_changed
from bakery.models import Branch, Product, ProductBatch, StockLevel, StockMovement
from bakery.services import stock_mutator
from bakery.services.ledger_service import sum_movements_since
from bakery.services.stock_reader import get_stock
from bakery.services.stock_types import (
    AuditWriteFailure,
    InsufficientStockError,
    OverridePolicyViolation,
    StockNotFoundError,
)
from bakery.services.stock_validator import validate


def _movements(db_session, product, branch):
    return db_session.query(StockMovement).filter_by(
        product_id=product.id, branch_id=branch.id,
    ).order_by(StockMovement.id).all()


class TestApplyDelta:
    def test_decrease_within_stock(self, db_session, branch, product, stock):
        stock(product, branch, 10)
        new_qty = stock_mutator.apply_delta(product.id, branch.id, -4, "sale", reference_id="T1")

        assert new_qty == 6
        assert get_stock(product.id, branch.id) == 6
        last = _movements(db_session, product, branch)[-1]
        assert last.quantity_change == -4
        assert last.cause == "sale"
        assert last.reference_id == "T1"

    def test_rejected_decrease_leaves_state_unchanged(self, db_session, branch, product, stock):
        """Going below zero without an override is refused and writes nothing."""
        stock(product, branch, 3)
        before = len(_movements(db_session, product, branch))

        with pytest.raises(InsufficientStockError) as exc:
            stock_mutator.apply_delta(product.id, branch.id, -5, "sale")

        assert exc.value.details["available"] == 3
        assert exc.value.details["deficit"] == 2
        assert get_stock(product.id, branch.id) == 3
        assert len(_movements(db_session, product, branch)) == before

    def test_every_change_has_exactly_one_movement(self, db_session, branch, product, stock):
        stock(product, branch, 10)
        stock_mutator.apply_delta(product.id, branch.id, -3, "sale")
        stock_mutator.apply_delta(product.id, branch.id, 7, "production_receipt")
        stock_mutator.apply_delta(product.id, branch.id, -1, "manual_adjust_out", reason="dropped")

        movements = _movements(db_session, product, branch)
        assert [m.quantity_change for m in movements] == [10, -3, 7, -1]
        assert sum_movements_since(product.id, branch.id, None) == get_stock(product.id, branch.id) == 13

    def test_first_write_creates_row(self, db_session, branch, product):
        assert db_session.query(StockLevel).count() == 0
        assert stock_mutator.apply_delta(product.id, branch.id, 5, "production_receipt") == 5
        assert db_session.query(StockLevel).count() == 1

    def test_unknown_product_or_branch(self, db_session, branch, product):
        with pytest.raises(StockNotFoundError):
            stock_mutator.apply_delta(9999, branch.id, 1, "production_receipt")
        with pytest.raises(StockNotFoundError):
            stock_mutator.apply_delta(product.id, 9999, 1, "production_receipt")

    def test_unknown_cause_rejected(self, db_session, branch, product):
        with pytest.raises(ValueError):
            stock_mutator.apply_delta(product.id, branch.id, 1, "gift")

    def test_notifies_stock_changed(self, app, db_session, branch, product):
        seen = []

        def receiver(sender, **kw):
            seen.append(kw)

        with stock_changed.connected_to(receiver, app):
            stock_mutator.apply_delta(product.id, branch.id, 2, "production_receipt")

        assert seen == [{"product_id": product.id, "branch_id": branch.id, "quantity": 2, "cause": "production_receipt"}]


class TestOverride:
    def test_override_allows_negative_and_records_reason(self, db_session, branch, product, stock, override_policy):
        """10 on hand, sell 15 with a supervisor reason: quantity -5, movement -15."""
        stock(product, branch, 10)
        new_qty = stock_mutator.apply_delta(
            product.id, branch.id, -15, "sale",
            reference_id="T-OVR",
            override_reason="stok fisik ada, belum input sistem",
            policy=override_policy,
        )

        assert new_qty == -5
        assert get_stock(product.id, branch.id) == -5
        last = _movements(db_session, product, branch)[-1]
        assert last.quantity_change == -15
        assert "stok fisik ada, belum input sistem" in last.reason

    def test_override_refused_by_policy(self, db_session, branch, product, stock):
        stock(product, branch, 10)
        before = len(_movements(db_session, product, branch))

        with pytest.raises(OverridePolicyViolation):
            stock_mutator.apply_delta(
                product.id, branch.id, -15, "sale",
                override_reason="trust me", policy=StockPolicy(),
            )

        assert get_stock(product.id, branch.id) == 10
        assert len(_movements(db_session, product, branch)) == before

    def test_override_blank_reason_refused(self, db_session, branch, product, stock, override_policy):
        stock(product, branch, 1)
        with pytest.raises(OverridePolicyViolation):
            stock_mutator.apply_delta(product.id, branch.id, -2, "sale", override_reason="  ", policy=override_policy)

    def test_validate_then_apply_matches(self, db_session, branch, product, stock):
        """A quantity that validates succeeds when applied with nothing in between."""
        stock(product, branch, 8)
        assert validate(product.id, branch.id, 8).is_valid is True
        assert stock_mutator.apply_delta(product.id, branch.id, -8, "sale") == 0


class TestAuditAtomicity:
    def test_movement_failure_rolls_back_quantity(self, db_session, branch, product, stock, monkeypatch):
        stock(product, branch, 10)
        before = len(_movements(db_session, product, branch))

        def boom(**kwargs):
            raise OperationalError("INSERT", {}, Exception("disk I/O error"))

        monkeypatch.setattr(stock_mutator, "append_stock_movement", boom)

        with pytest.raises(AuditWriteFailure) as exc:
            stock_mutator.apply_delta(product.id, branch.id, -4, "sale")

        assert exc.value.details["quantity_change"] == -4
        monkeypatch.undo()
        db_session.expire_all()
        assert get_stock(product.id, branch.id) == 10
        assert len(_movements(db_session, product, branch)) == before


class TestFefoConsumption:
    def test_sale_consumes_earliest_expiry_first(self, db_session, branch, product, stock):
        stock(product, branch, 15)
        late = ProductBatch(product_id=product.id, branch_id=branch.id, batch_number="LATE", quantity=10,
                            production_date=date(2024, 1, 1), expiry_date=date(2024, 1, 3))
        early = ProductBatch(product_id=product.id, branch_id=branch.id, batch_number="EARLY", quantity=5,
                             production_date=date(2024, 1, 1), expiry_date=date(2024, 1, 1))
        db_session.add_all([late, early])
        db_session.commit()

        stock_mutator.apply_delta(product.id, branch.id, -7, "sale")
        db_session.expire_all()

        assert early.quantity == 0
        assert early.status == "sold_out"
        assert late.quantity == 8
        assert late.status == "active"


class TestManualOperations:
    def test_initial_stock_skips_non_positive(self, db_session, branch, product):
        assert stock_mutator.record_initial_stock(product.id, branch.id, 0) is None
        assert db_session.query(StockMovement).count() == 0

    def test_initial_stock_cause(self, db_session, branch, product):
        stock_mutator.record_initial_stock(product.id, branch.id, 12, performed_by="admin")
        movement = _movements(db_session, product, branch)[0]
        assert movement.cause == "initial_stock"
        assert movement.quantity_change == 12

    def test_adjust_cause_follows_sign(self, db_session, branch, product, stock):
        stock(product, branch, 5)
        stock_mutator.adjust_stock(product.id, branch.id, 3, "found in storage")
        stock_mutator.adjust_stock(product.id, branch.id, -2, "dropped tray")

        causes = [m.cause for m in _movements(db_session, product, branch)[1:]]
        assert causes == ["manual_adjust_in", "manual_adjust_out"]
        assert get_stock(product.id, branch.id) == 6

    @pytest.mark.parametrize("delta,reason", [(0, "x"), (1, ""), (1, "   ")])
    def test_adjust_rejects_bad_input(self, db_session, branch, product, delta, reason):
        with pytest.raises(ValueError):
            stock_mutator.adjust_stock(product.id, branch.id, delta, reason)

    def test_correct_stock(self, db_session, branch, product, stock):
        stock(product, branch, 10)
        result = stock_mutator.correct_stock(product.id, branch.id, 7, "stock opname")

        assert result == {"old_quantity": 10, "new_quantity": 7, "change": -3}
        last = _movements(db_session, product, branch)[-1]
        assert last.quantity_change == -3
        assert last.cause == "manual_adjust_out"
        assert "(10 -> 7)" in last.reason

    def test_correct_stock_rejects_negative(self, db_session, branch, product):
        with pytest.raises(ValueError):
            stock_mutator.correct_stock(product.id, branch.id, -1, "count")

    def test_batch_add(self, db_session, branch, branch_b, product, stock):
        stock(product, branch, 2)
        result = stock_mutator.batch_add_stock([
            {"product_id": product.id, "branch_id": branch.id, "quantity": 3},
            {"product_id": product.id, "branch_id": branch_b.id, "quantity": 4},
            {"product_id": product.id, "branch_id": branch.id, "quantity": 0},
            {"product_id": 9999, "branch_id": branch.id, "quantity": 1},
        ], performed_by="admin")

        assert result["total_updated"] == 1
        assert result["total_inserted"] == 1
        assert result["skipped"] == 1
        assert len(result["errors"]) == 1
        assert result["success"] is False
        assert get_stock(product.id, branch.id) == 5
        assert get_stock(product.id, branch_b.id) == 4


class TestTransfer:
    def test_transfer_moves_stock_with_shared_reference(self, db_session, branch, branch_b, product, stock):
        stock(product, branch, 10)
        result = stock_mutator.transfer_stock(product.id, branch.id, branch_b.id, 4, performed_by="admin")

        assert result["from_quantity"] == 6
        assert result["to_quantity"] == 4
        legs = db_session.query(StockMovement).filter_by(reference_id=result["reference_id"]).all()
        assert sorted(m.quantity_change for m in legs) == [-4, 4]
        assert {m.cause for m in legs} == {"transfer"}

    def test_transfer_insufficient_changes_nothing(self, db_session, branch, branch_b, product, stock):
        stock(product, branch, 2)
        with pytest.raises(InsufficientStockError):
            stock_mutator.transfer_stock(product.id, branch.id, branch_b.id, 5)

        assert get_stock(product.id, branch.id) == 2
        assert get_stock(product.id, branch_b.id) == 0

    def test_transfer_same_branch_rejected(self, db_session, branch, product):
        with pytest.raises(ValueError):
            stock_mutator.transfer_stock(product.id, branch.id, branch.id, 1)


class TestConcurrentWriters:
    """Two sessions on one file database: each app context is a separate cashier."""

    def _seed(self):
        branch = Branch(name="Toko Pusat", code="B1")
        product = Product(sku="ROTI-TAWAR", name="Roti Tawar")
        db.session.add_all([branch, product])
        db.session.commit()
        stock_mutator.record_initial_stock(product.id, branch.id, 10, performed_by="test")
        return branch.id, product.id

    def test_stale_reader_does_not_lose_other_update(self, file_app):
        branch_id, product_id = self._seed()
        level = db.session.query(StockLevel).filter_by(product_id=product_id, branch_id=branch_id).one()
        assert level.quantity == 10

        with file_app.app_context():
            assert stock_mutator.apply_delta(product_id, branch_id, -4, "sale", reference_id="A") == 6

        # this session still holds the quantity it read before the other sale
        assert level.quantity == 10
        assert stock_mutator.apply_delta(product_id, branch_id, -3, "sale", reference_id="B") == 3

        with file_app.app_context():
            assert get_stock(product_id, branch_id) == 3
            assert sum_movements_since(product_id, branch_id, None) == 3

    def test_guard_rejects_overdraw_after_other_sale(self, file_app):
        branch_id, product_id = self._seed()
        level = db.session.query(StockLevel).filter_by(product_id=product_id, branch_id=branch_id).one()
        assert level.quantity == 10

        with file_app.app_context():
            assert stock_mutator.apply_delta(product_id, branch_id, -8, "sale", reference_id="A") == 2

        assert level.quantity == 10
        with pytest.raises(InsufficientStockError) as exc:
            stock_mutator.apply_delta(product_id, branch_id, -5, "sale", reference_id="B")

        assert exc.value.details["available"] == 2
        assert get_stock(product_id, branch_id) == 2
        assert db.session.query(StockMovement).filter_by(reference_id="B").count() == 0
