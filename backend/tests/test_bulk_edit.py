# Overview: Pytest coverage for administrative bulk edit of stock levels.

from bakery.models import StockMovement
from bakery.services import stock_mutator
from bakery.services.stock_reader import get_stock, get_stock_level


class TestBulkEdit:
    def test_partial_failure_keeps_siblings(self, db_session, branch, product, stock):
        """A bad id fails alone; the other operation still commits."""
        stock(product, branch, 20)
        level = get_stock_level(product.id, branch.id)

        result = stock_mutator.bulk_apply(
            [
                {"id": "bad-id", "operation": "set", "value": 5},
                {"id": level.id, "operation": "add", "value": 10},
            ],
            performed_by="admin",
            reason="stock opname",
        )

        assert result.failed == [{"id": "bad-id", "error": "Inventory item not found"}]
        assert len(result.updated) == 1
        assert result.updated[0]["old_quantity"] == 20
        assert result.updated[0]["new_quantity"] == 30
        assert get_stock(product.id, branch.id) == 30

        movement = db_session.query(StockMovement).filter_by(cause="bulk_edit").one()
        assert movement.quantity_change == 10
        assert movement.reference_id == f"inventory:{level.id}"
        assert "stock opname" in movement.reason

    def test_subtract_clamps_at_zero(self, db_session, branch, product, stock):
        stock(product, branch, 4)
        level = get_stock_level(product.id, branch.id)

        result = stock_mutator.bulk_apply(
            [{"inventory_id": level.id, "operation": "subtract", "value": 10}],
            performed_by="admin",
            reason="spoiled",
        )

        assert result.updated[0]["new_quantity"] == 0
        assert get_stock(product.id, branch.id) == 0
        movement = db_session.query(StockMovement).filter_by(cause="bulk_edit").one()
        assert movement.quantity_change == -4

    def test_set_and_reset(self, db_session, branch, branch_b, product, stock):
        stock(product, branch, 4)
        stock(product, branch_b, 9)
        a = get_stock_level(product.id, branch.id)
        b = get_stock_level(product.id, branch_b.id)

        result = stock_mutator.bulk_apply(
            [
                {"id": a.id, "operation": "set", "value": 11},
                {"id": b.id, "operation": "reset"},
            ],
            performed_by="admin",
            reason="count",
        )

        assert result.failed == []
        assert get_stock(product.id, branch.id) == 11
        assert get_stock(product.id, branch_b.id) == 0

    def test_unchanged_quantity_still_recorded(self, db_session, branch, product, stock):
        stock(product, branch, 6)
        level = get_stock_level(product.id, branch.id)

        stock_mutator.bulk_apply([{"id": level.id, "operation": "set", "value": 6}], "admin", "recount")

        movement = db_session.query(StockMovement).filter_by(cause="bulk_edit").one()
        assert movement.quantity_change == 0

    def test_invalid_operation_and_value(self, db_session, branch, product, stock):
        stock(product, branch, 6)
        level = get_stock_level(product.id, branch.id)

        result = stock_mutator.bulk_apply(
            [
                {"id": level.id, "operation": "multiply", "value": 2},
                {"id": level.id, "operation": "add", "value": -3},
                {"id": 9999, "operation": "add", "value": 1},
            ],
            "admin",
            "oops",
        )

        assert result.updated == []
        errors = [f["error"] for f in result.failed]
        assert errors == [
            "Unsupported operation: multiply",
            "value must be a non-negative integer",
            "Inventory item not found",
        ]
        assert get_stock(product.id, branch.id) == 6

    def test_malformed_entries_fail_alone(self, db_session, branch, product, stock):
        stock(product, branch, 6)
        level = get_stock_level(product.id, branch.id)

        result = stock_mutator.bulk_apply(
            [None, ["id", level.id], "set-to-zero", {"id": level.id, "operation": "add", "value": 4}],
            "admin",
            "stock opname",
        )

        assert [f["id"] for f in result.failed] == [None, ["id", level.id], "set-to-zero"]
        assert {f["error"] for f in result.failed} == {"Invalid operation entry"}
        assert [u["new_quantity"] for u in result.updated] == [10]
        assert get_stock(product.id, branch.id) == 10
