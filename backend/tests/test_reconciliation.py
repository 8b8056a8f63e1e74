# Overview: Pytest coverage for ledger reconciliation: scan, fix and baseline.

import pytest
from sqlalchemy.exc import OperationalError

from bakery.models import StockLevel, StockMovement
from bakery.services import reconciliation_service, stock_mutator
from bakery.services.stock_reader import get_stock, get_stock_level
from bakery.services.stock_types import Discrepancy, StockNotFoundError


def _drift(db_session, product, branch, quantity):
    """Change quantity behind the mutator's back, as a buggy writer would."""
    db_session.query(StockLevel).filter_by(product_id=product.id, branch_id=branch.id).update({"quantity": quantity})
    db_session.commit()


class TestReconcile:
    def test_clean_ledger_reports_nothing(self, db_session, branch, product, stock):
        stock(product, branch, 10)
        stock_mutator.apply_delta(product.id, branch.id, -3, "sale")
        stock_mutator.adjust_stock(product.id, branch.id, 2, "found")

        assert reconciliation_service.reconcile() == []

    def test_drift_is_reported(self, db_session, branch, product, stock):
        stock(product, branch, 10)
        stock_mutator.apply_delta(product.id, branch.id, -4, "sale")
        _drift(db_session, product, branch, 9)

        [d] = reconciliation_service.reconcile()

        assert d.current_stock == 9
        assert d.calculated_stock == 6
        assert d.difference == 3
        assert d.product_name == "Roti Tawar"
        assert d.branch_name == "Toko Pusat"

    def test_branch_filter(self, db_session, branch, branch_b, product, stock):
        stock(product, branch, 5)
        stock(product, branch_b, 5)
        _drift(db_session, product, branch, 1)
        _drift(db_session, product, branch_b, 2)

        found = reconciliation_service.reconcile(branch_id=branch_b.id)
        assert [(d.branch_id, d.current_stock) for d in found] == [(branch_b.id, 2)]

    def test_failing_row_is_skipped(self, db_session, branch, product, make_product, stock, monkeypatch):
        donut = make_product("DONAT")
        stock(product, branch, 5)
        stock(donut, branch, 5)
        _drift(db_session, product, branch, 1)
        _drift(db_session, donut, branch, 2)

        real = reconciliation_service.sum_movements_since

        def flaky(product_id, branch_id, after_movement_id):
            if product_id == product.id:
                raise OperationalError("SELECT", {}, Exception("database is locked"))
            return real(product_id, branch_id, after_movement_id)

        monkeypatch.setattr(reconciliation_service, "sum_movements_since", flaky)

        found = reconciliation_service.reconcile()
        assert [d.product_id for d in found] == [donut.id]

    def test_scan_is_read_only(self, db_session, branch, product, stock):
        stock(product, branch, 5)
        _drift(db_session, product, branch, 1)
        before = db_session.query(StockMovement).count()

        reconciliation_service.reconcile()

        assert db_session.query(StockMovement).count() == before
        assert get_stock(product.id, branch.id) == 1


class TestFix:
    def test_fix_restores_ledger_value_with_movement(self, db_session, branch, product, stock):
        stock(product, branch, 10)
        _drift(db_session, product, branch, 13)

        assert reconciliation_service.fix(reconciliation_service.reconcile(), performed_by="auditor") is True

        assert get_stock(product.id, branch.id) == 10
        fix = db_session.query(StockMovement).filter_by(cause="reconciliation_fix").one()
        assert fix.quantity_change == -3
        assert fix.performed_by == "auditor"

        level = get_stock_level(product.id, branch.id)
        assert level.baseline_quantity == 10
        assert level.baseline_movement_id == fix.id
        assert reconciliation_service.reconcile() == []

    def test_fix_accepts_dicts_and_skips_converged_rows(self, db_session, branch, product, stock):
        stock(product, branch, 4)

        assert reconciliation_service.fix([{"product_id": product.id, "branch_id": branch.id}]) is True
        assert db_session.query(StockMovement).filter_by(cause="reconciliation_fix").count() == 0

    def test_fix_reports_missing_row(self, db_session, branch, product):
        stale = Discrepancy(product_id=product.id, branch_id=branch.id, current_stock=1, calculated_stock=0)
        assert reconciliation_service.fix([stale]) is False

    def test_subsequent_changes_reconcile_after_fix(self, db_session, branch, product, stock):
        stock(product, branch, 10)
        _drift(db_session, product, branch, 7)
        reconciliation_service.fix(reconciliation_service.reconcile())

        stock_mutator.apply_delta(product.id, branch.id, -2, "sale")

        assert get_stock(product.id, branch.id) == 8
        assert reconciliation_service.reconcile() == []


class TestBaseline:
    def test_set_baseline_accepts_current_quantity(self, db_session, branch, product, stock):
        stock(product, branch, 10)
        _drift(db_session, product, branch, 25)

        level = reconciliation_service.set_baseline(product.id, branch.id)
        last = db_session.query(StockMovement).order_by(StockMovement.id.desc()).first()

        assert level.baseline_quantity == 25
        assert level.baseline_movement_id == last.id
        assert reconciliation_service.reconcile() == []

        stock_mutator.apply_delta(product.id, branch.id, -5, "sale")
        assert reconciliation_service.reconcile() == []

    def test_set_baseline_unknown_pair(self, db_session, branch, product):
        with pytest.raises(StockNotFoundError):
            reconciliation_service.set_baseline(product.id, branch.id)
