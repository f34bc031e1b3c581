import pytest

from servicebook.models import StockTransaction
from servicebook.services import inventory_service
from servicebook.services.ledger_service import InsufficientStockError, InvalidQuantityError, ProductNotFoundError
from servicebook.validation import ConflictError, ValidationError


class TestStockItems:
    def test_opening_balance(self, db_session, make_item):
        item = make_item(quantity=25)
        assert item.initial_quantity == 25
        assert item.quantity_on_hand == 25
        assert db_session.query(StockTransaction).count() == 0

    def test_duplicate_sku(self, db_session, make_item):
        make_item(sku="RO-100")
        with pytest.raises(ConflictError):
            make_item(sku="RO-100")

    def test_update_metadata(self, db_session, item_a):
        item = inventory_service.update_stock_item(item_a.id, {"name": "Sediment filter", "reorder_threshold": 4})
        assert item.name == "Sediment filter"
        assert item.reorder_threshold == 4

    @pytest.mark.parametrize("field", ["quantity_on_hand", "initial_quantity"])
    def test_update_rejects_quantities(self, db_session, item_a, field):
        with pytest.raises(ValidationError):
            inventory_service.update_stock_item(item_a.id, {field: 99})

    def test_update_missing_item(self, db_session):
        with pytest.raises(ProductNotFoundError):
            inventory_service.update_stock_item(999999, {"name": "x"})


class TestAdjustStock:
    def test_manual_adjustment(self, db_session, item_a, qoh):
        tx = inventory_service.adjust_stock(product_id=item_a.id, quantity_delta=-4, note="Damaged in transit", created_by=3)

        assert qoh(item_a.id) == 6
        assert tx.transaction_type == "adjustment"
        assert tx.reference_type == "manual"
        assert tx.reference_id is None
        assert tx.created_by == 3

    def test_adjustment_cannot_go_negative(self, db_session, item_a, qoh):
        with pytest.raises(InsufficientStockError):
            inventory_service.adjust_stock(product_id=item_a.id, quantity_delta=-11)
        assert qoh(item_a.id) == 10

    def test_zero_adjustment(self, db_session, item_a):
        with pytest.raises(InvalidQuantityError):
            inventory_service.adjust_stock(product_id=item_a.id, quantity_delta=0)


class TestLowStock:
    def test_at_or_below_threshold(self, db_session, make_item):
        low = make_item(name="Low", quantity=2, reorder_threshold=3)
        edge = make_item(name="Edge", quantity=3, reorder_threshold=3)
        make_item(name="Fine", quantity=9, reorder_threshold=3)
        make_item(name="Untracked", quantity=0, reorder_threshold=0)

        items = inventory_service.list_low_stock()
        assert [i.id for i in items] == [low.id, edge.id]
        assert low.is_low_stock

    def test_summary(self, db_session, item_a):
        inventory_service.adjust_stock(product_id=item_a.id, quantity_delta=5)
        summary = inventory_service.get_stock_summary(item_a.id)
        assert summary["quantity_on_hand"] == 15
        assert len(summary["recent_transactions"]) == 1
