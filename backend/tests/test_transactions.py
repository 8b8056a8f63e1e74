# Overview: Pytest coverage for checkout and void of cashier transactions.

import pytest
from sqlalchemy.exc import OperationalError

from bakery.models import StockLevel, StockMovement, Transaction
from bakery.services import return_service, stock_mutator
from bakery.services.return_service import ReturnStateError
from bakery.services.stock_reader import get_stock
from bakery.services.stock_types import AuditWriteFailure, OverridePolicyViolation
from bakery.services.transaction_service import (
    TransactionError,
    TransactionNotFoundError,
    TransactionStateError,
    bulk_void_transactions,
    checkout,
    get_transaction,
    void_transaction,
)


class TestCheckout:
    def test_checkout_deducts_and_records(self, db_session, branch, product, stock):
        stock(product, branch, 10)
        tx = checkout(branch.id, "kasir-1", [{"product_id": product.id, "quantity": 3}])

        assert tx.status == "completed"
        assert tx.total_amount == 3 * 18000
        assert get_stock(product.id, branch.id) == 7
        sale = db_session.query(StockMovement).filter_by(cause="sale", reference_id=str(tx.id)).one()
        assert sale.quantity_change == -3

    def test_duplicate_lines_are_aggregated(self, db_session, branch, product, stock):
        stock(product, branch, 5)
        with pytest.raises(TransactionError) as exc:
            checkout(branch.id, "kasir-1", [
                {"product_id": product.id, "quantity": 3},
                {"product_id": product.id, "quantity": 3},
            ])
        assert exc.value.details["invalid_items"][0]["required_stock"] == 6
        assert get_stock(product.id, branch.id) == 5

    def test_reports_every_short_line(self, db_session, branch, product, make_product, stock):
        donut = make_product("DONAT", price=6000)
        stock(product, branch, 1)

        with pytest.raises(TransactionError) as exc:
            checkout(branch.id, "kasir-1", [
                {"product_id": product.id, "quantity": 2},
                {"product_id": donut.id, "quantity": 1},
            ])

        short = {i["product_id"] for i in exc.value.details["invalid_items"]}
        assert short == {product.id, donut.id}
        assert db_session.query(StockMovement).filter_by(cause="sale").count() == 0

    def test_package_consumes_components(self, db_session, branch, package, stock):
        pkg, bread, donut = package
        stock(bread, branch, 10)
        stock(donut, branch, 10)

        tx = checkout(branch.id, "kasir-1", [{"product_id": pkg.id, "quantity": 2}])

        assert tx.total_amount == 40000
        assert get_stock(bread.id, branch.id) == 6
        assert get_stock(donut.id, branch.id) == 8
        assert get_stock(pkg.id, branch.id) == 0

    def test_override_lets_cart_through(self, db_session, branch, product, stock, override_policy):
        stock(product, branch, 10)
        tx = checkout(
            branch.id, "kasir-1", [{"product_id": product.id, "quantity": 15}],
            override_reason="stok fisik ada, belum input sistem",
            policy=override_policy,
        )

        assert get_stock(product.id, branch.id) == -5
        assert tx.stock_override_reason == "stok fisik ada, belum input sistem"
        sale = db_session.query(StockMovement).filter_by(cause="sale").one()
        assert sale.quantity_change == -15
        assert "override: stok fisik ada" in sale.reason

    def test_override_refused(self, db_session, branch, product, stock):
        stock(product, branch, 1)
        with pytest.raises(OverridePolicyViolation):
            checkout(branch.id, "kasir-1", [{"product_id": product.id, "quantity": 2}], override_reason="please")
        assert get_stock(product.id, branch.id) == 1

    @pytest.mark.parametrize("items", [[], [{"product_id": 1, "quantity": 0}], [{"quantity": 1}]])
    def test_bad_cart(self, db_session, branch, items):
        with pytest.raises(TransactionError):
            checkout(branch.id, "kasir-1", items)

    def test_unknown_branch(self, db_session, product):
        with pytest.raises(TransactionNotFoundError):
            checkout(9999, "kasir-1", [{"product_id": product.id, "quantity": 1}])


class TestVoid:
    def test_void_returns_sold_quantity(self, db_session, branch, product, stock):
        """Sale of 3 from 7, voided: back to 7 with one void_return +3 movement."""
        stock(product, branch, 7)
        tx = checkout(branch.id, "kasir-1", [{"product_id": product.id, "quantity": 3}])
        assert get_stock(product.id, branch.id) == 4

        voided, result = void_transaction(tx.id, "supervisor", "customer changed mind")

        assert voided.status == "cancelled"
        assert result.stock_returned == 3
        assert result.failures == []
        assert get_stock(product.id, branch.id) == 7
        returns = db_session.query(StockMovement).filter_by(cause="void_return").all()
        assert [(m.quantity_change, m.reference_id) for m in returns] == [(3, str(tx.id))]

    def test_second_void_rejected(self, db_session, branch, product, stock):
        stock(product, branch, 7)
        tx = checkout(branch.id, "kasir-1", [{"product_id": product.id, "quantity": 3}])
        void_transaction(tx.id, "supervisor", "mistake")

        with pytest.raises(TransactionStateError):
            void_transaction(tx.id, "supervisor", "mistake again")

        assert get_stock(product.id, branch.id) == 7
        assert db_session.query(StockMovement).filter_by(cause="void_return").count() == 1

    def test_void_package_returns_components(self, db_session, branch, package, stock):
        pkg, bread, donut = package
        stock(bread, branch, 4)
        stock(donut, branch, 2)
        tx = checkout(branch.id, "kasir-1", [{"product_id": pkg.id, "quantity": 2}])

        _, result = void_transaction(tx.id, "supervisor", "wrong package")

        assert result.stock_returned == 6
        assert get_stock(bread.id, branch.id) == 4
        assert get_stock(donut.id, branch.id) == 2

    def test_void_requires_reason(self, db_session, branch, product, stock):
        stock(product, branch, 2)
        tx = checkout(branch.id, "kasir-1", [{"product_id": product.id, "quantity": 1}])
        with pytest.raises(TransactionError):
            void_transaction(tx.id, "supervisor", "  ")
        assert get_transaction(tx.id).status == "completed"

    def test_void_stock_recreates_missing_level(self, db_session, branch, product):
        stock_mutator.void_transaction_stock(42, [{"product_id": product.id, "quantity": 2}], branch.id, "sup", "cleanup")
        assert db_session.query(StockLevel).filter_by(product_id=product.id, branch_id=branch.id).one().quantity == 2

    def test_void_stock_reports_bad_lines(self, db_session, branch, product):
        result = stock_mutator.void_transaction_stock(
            43,
            [{"product_id": product.id, "quantity": 0}, {"product_id": 9999, "quantity": 1}],
            branch.id, "sup", "cleanup",
        )
        assert result.stock_returned == 0
        assert [f["product_id"] for f in result.failures] == [product.id, 9999]

    def test_bulk_void(self, db_session, branch, product, stock):
        stock(product, branch, 10)
        t1 = checkout(branch.id, "kasir-1", [{"product_id": product.id, "quantity": 2}])
        t2 = checkout(branch.id, "kasir-1", [{"product_id": product.id, "quantity": 3}])
        void_transaction(t2.id, "supervisor", "dup")

        result = bulk_void_transactions([t1.id, t2.id, 9999, "x"], "supervisor", "end of day")

        assert [v["id"] for v in result["voided"]] == [t1.id]
        assert result["stock_returned"] == 2
        assert [f["id"] for f in result["failed"]] == [t2.id, 9999, "x"]
        assert get_stock(product.id, branch.id) == 10

    def test_failed_stock_return_keeps_transaction_completed(self, db_session, branch, package, stock, monkeypatch):
        """A movement that cannot be written undoes the whole void; a retry still works."""
        pkg, bread, donut = package
        stock(bread, branch, 4)
        stock(donut, branch, 2)
        tx = checkout(branch.id, "kasir-1", [{"product_id": pkg.id, "quantity": 1}])
        writes = []
        real_append = stock_mutator.append_stock_movement

        def fail_second(**kwargs):
            writes.append(kwargs["product_id"])
            if len(writes) == 2:
                raise OperationalError("INSERT", {}, Exception("disk I/O error"))
            return real_append(**kwargs)

        monkeypatch.setattr(stock_mutator, "append_stock_movement", fail_second)
        with pytest.raises(AuditWriteFailure):
            void_transaction(tx.id, "supervisor", "wrong package")
        monkeypatch.undo()
        db_session.expire_all()

        assert get_transaction(tx.id).status == "completed"
        assert get_stock(bread.id, branch.id) == 2
        assert get_stock(donut.id, branch.id) == 1
        assert db_session.query(StockMovement).filter_by(cause="void_return").count() == 0

        voided, result = void_transaction(tx.id, "supervisor", "wrong package")
        assert voided.status == "cancelled"
        assert result.stock_returned == 3
        assert get_stock(bread.id, branch.id) == 4
        assert get_stock(donut.id, branch.id) == 2


class TestVoidAndReturns:
    """A sale goes back on the shelf once, through either a void or a return."""

    def _sale(self, branch, product, stock):
        stock(product, branch, 8)
        return checkout(branch.id, "kasir-1", [{"product_id": product.id, "quantity": 3}])

    def _return(self, branch, product, tx):
        return return_service.create_return(
            branch.id, [{"product_id": product.id, "quantity": 3}], "customer returned all", transaction_id=tx.id,
        )

    def test_void_refused_after_approved_return(self, db_session, branch, product, stock):
        tx = self._sale(branch, product, stock)
        doc = self._return(branch, product, tx)
        return_service.process_return(doc.id, "approve", processed_by="supervisor")
        assert get_stock(product.id, branch.id) == 8

        with pytest.raises(TransactionStateError) as exc:
            void_transaction(tx.id, "supervisor", "mistake")

        assert exc.value.details["return_ids"] == [doc.id]
        assert get_transaction(tx.id).status == "completed"
        assert get_stock(product.id, branch.id) == 8

    def test_void_refused_while_return_pending(self, db_session, branch, product, stock):
        tx = self._sale(branch, product, stock)
        self._return(branch, product, tx)

        with pytest.raises(TransactionStateError):
            void_transaction(tx.id, "supervisor", "mistake")
        assert get_stock(product.id, branch.id) == 5

    def test_void_allowed_after_rejected_return(self, db_session, branch, product, stock):
        tx = self._sale(branch, product, stock)
        doc = self._return(branch, product, tx)
        return_service.process_return(doc.id, "reject")

        _, result = void_transaction(tx.id, "supervisor", "mistake")
        assert result.stock_returned == 3
        assert get_stock(product.id, branch.id) == 8

    def test_return_refused_after_void(self, db_session, branch, product, stock):
        tx = self._sale(branch, product, stock)
        void_transaction(tx.id, "supervisor", "mistake")
        assert get_stock(product.id, branch.id) == 8

        with pytest.raises(ReturnStateError):
            self._return(branch, product, tx)
        assert get_stock(product.id, branch.id) == 8

    def test_approve_refused_when_sale_was_cancelled(self, db_session, branch, product, stock):
        tx = self._sale(branch, product, stock)
        doc = self._return(branch, product, tx)
        db_session.query(Transaction).filter_by(id=tx.id).update({"status": "cancelled"})
        db_session.commit()

        with pytest.raises(ReturnStateError):
            return_service.process_return(doc.id, "approve", processed_by="supervisor")
        assert return_service.get_return(doc.id).status == "pending"
        assert get_stock(product.id, branch.id) == 5
