# Overview: Pytest coverage for the stock ledger writer, availability checks and consistency.

"""
Stock Ledger Tests

Covers:
1. Applying deltas moves the counter and writes one row per product
2. Insufficient stock / unknown product are rejected before any write
3. Ledger rows are append-only
4. initial_quantity + SUM(quantity_delta) == quantity_on_hand after any
   sequence of writes, and quantity_on_hand never goes negative
5. Tagged results, including partial application in per-product commit mode
"""

import random

import pytest
from sqlalchemy import update

from servicebook.extensions import db
from servicebook.models import StockItem, StockTransaction, LedgerImmutableError
from servicebook.services import ledger_service
from servicebook.services.ledger_service import (
    Applied,
    InsufficientStockError,
    InvalidQuantityError,
    PartialApplicationError,
    PartiallyApplied,
    ProductNotFoundError,
    Rejected,
    apply_stock_transaction,
    post_stock_deltas,
    validate_availability,
    verify_ledger_consistency,
)
from servicebook.services.stock_math import StockDelta


class TestApplyStockTransaction:
    def test_sale_moves_counter_and_snapshots(self, db_session, item_a, qoh):
        tx = apply_stock_transaction(
            product_id=item_a.id,
            transaction_type="sale",
            quantity_delta=-3,
            reference_type="invoice",
            reference_id=42,
            note="Invoice INV-0042 created",
            created_by=7,
        )
        db_session.commit()

        assert qoh(item_a.id) == 7
        assert tx.previous_quantity == 10
        assert tx.new_quantity == 7
        assert tx.created_by == 7
        assert tx.reference_id == 42

    def test_refreshes_loaded_item(self, db_session, item_a):
        apply_stock_transaction(
            product_id=item_a.id, transaction_type="return", quantity_delta=2, reference_type="invoice", reference_id=1
        )
        assert item_a.quantity_on_hand == 12

    def test_cannot_go_negative(self, db_session, item_a, qoh):
        with pytest.raises(InsufficientStockError) as exc_info:
            apply_stock_transaction(
                product_id=item_a.id, transaction_type="sale", quantity_delta=-11, reference_type="invoice", reference_id=1
            )
        db_session.rollback()

        assert exc_info.value.available == 10
        assert exc_info.value.requested == 11
        assert qoh(item_a.id) == 10
        assert db_session.query(StockTransaction).count() == 0

    def test_unknown_product(self, db_session):
        with pytest.raises(ProductNotFoundError):
            apply_stock_transaction(
                product_id=999999, transaction_type="return", quantity_delta=1, reference_type="invoice", reference_id=1
            )

    @pytest.mark.parametrize(
        "transaction_type, quantity_delta, reference_type",
        [
            ("sale", 3, "invoice"),
            ("return", -3, "invoice"),
            ("adjustment", 0, "manual"),
            ("transfer", 1, "manual"),
            ("sale", -1, "purchase_order"),
        ],
    )
    def test_rejects_bad_shape(self, db_session, item_a, transaction_type, quantity_delta, reference_type):
        with pytest.raises(InvalidQuantityError):
            apply_stock_transaction(
                product_id=item_a.id,
                transaction_type=transaction_type,
                quantity_delta=quantity_delta,
                reference_type=reference_type,
            )


class TestReads:
    def test_quantity_on_hand(self, db_session, item_a):
        assert ledger_service.get_quantity_on_hand(item_a.id) == 10
        with pytest.raises(ProductNotFoundError):
            ledger_service.get_quantity_on_hand(999999)


class TestValidateAvailability:
    def test_reports_first_shortfall(self, db_session, item_a):
        with pytest.raises(InsufficientStockError) as exc_info:
            validate_availability([StockDelta(item_a.id, 20)])
        assert exc_info.value.details == {"product_id": item_a.id, "available": 10, "requested": 20}

    def test_returns_never_blocked(self, db_session, item_a):
        validate_availability([StockDelta(item_a.id, -500)])

    def test_unknown_product_rejected_even_for_returns(self, db_session):
        with pytest.raises(ProductNotFoundError):
            validate_availability([StockDelta(999999, -1)])


class TestPostStockDeltas:
    def test_applied(self, db_session, item_a, item_b, qoh):
        result = post_stock_deltas(
            [StockDelta(item_a.id, 3), StockDelta(item_b.id, -2)],
            reference_type="invoice",
            reference_id=1,
        )

        assert isinstance(result, Applied)
        assert result.ok
        assert [tx.transaction_type for tx in result.transactions] == ["sale", "return"]
        assert qoh(item_a.id) == 7
        assert qoh(item_b.id) == 12

    def test_rejected_writes_nothing(self, db_session, item_a, item_b, qoh):
        """One short product rejects the whole set."""
        result = post_stock_deltas(
            [StockDelta(item_a.id, 3), StockDelta(item_b.id, 20)],
            reference_type="invoice",
            reference_id=1,
        )

        assert isinstance(result, Rejected)
        assert not result.ok
        assert isinstance(result.error, InsufficientStockError)
        assert qoh(item_a.id) == 10
        assert qoh(item_b.id) == 10
        assert db_session.query(StockTransaction).count() == 0
        with pytest.raises(InsufficientStockError):
            result.raise_for_outcome()

    def test_atomic_mode_rolls_back_a_late_failure(self, db_session, item_a, item_b, qoh, monkeypatch):
        """A write failing after validation leaves no earlier write behind."""
        real_apply = ledger_service.apply_stock_transaction

        def failing_apply(**kwargs):
            if kwargs["product_id"] == item_b.id:
                raise InsufficientStockError(item_b.id, available=0, requested=4)
            return real_apply(**kwargs)

        monkeypatch.setattr(ledger_service, "apply_stock_transaction", failing_apply)

        result = post_stock_deltas(
            [StockDelta(item_a.id, 3), StockDelta(item_b.id, 4)],
            reference_type="invoice",
            reference_id=1,
        )

        assert isinstance(result, Rejected)
        assert qoh(item_a.id) == 10
        assert db_session.query(StockTransaction).count() == 0

    def test_per_product_mode_reports_partial_application(self, db_session, item_a, item_b, qoh, monkeypatch):
        real_apply = ledger_service.apply_stock_transaction

        def failing_apply(**kwargs):
            if kwargs["product_id"] == item_b.id:
                raise InsufficientStockError(item_b.id, available=0, requested=4)
            return real_apply(**kwargs)

        monkeypatch.setattr(ledger_service, "apply_stock_transaction", failing_apply)

        result = post_stock_deltas(
            [StockDelta(item_a.id, 3), StockDelta(item_b.id, 4)],
            reference_type="invoice",
            reference_id=1,
            atomic=False,
        )

        assert isinstance(result, PartiallyApplied)
        assert result.failed_product_id == item_b.id
        assert len(result.applied) == 1
        # The first product's write is committed and stays
        assert qoh(item_a.id) == 7
        assert qoh(item_b.id) == 10
        assert result.to_dict()["outcome"] == "partially_applied"

        with pytest.raises(PartialApplicationError) as exc_info:
            result.raise_for_outcome()
        assert exc_info.value.details["failed_product_id"] == item_b.id

    def test_per_product_mode_validates_first(self, db_session, item_a, item_b, qoh):
        result = post_stock_deltas(
            [StockDelta(item_a.id, 3), StockDelta(item_b.id, 20)],
            reference_type="invoice",
            reference_id=1,
            atomic=False,
        )
        assert isinstance(result, Rejected)
        assert qoh(item_a.id) == 10


class TestLedgerImmutability:
    def _post_one(self, item):
        result = post_stock_deltas([StockDelta(item.id, 1)], reference_type="invoice", reference_id=1)
        return result.transactions[0]

    def test_update_rejected(self, db_session, item_a):
        tx = self._post_one(item_a)
        tx.note = "rewritten"
        with pytest.raises(LedgerImmutableError):
            db_session.flush()
        db_session.rollback()

    def test_delete_rejected(self, db_session, item_a):
        tx = self._post_one(item_a)
        db_session.delete(tx)
        with pytest.raises(LedgerImmutableError):
            db_session.flush()
        db_session.rollback()
        assert db_session.query(StockTransaction).count() == 1


class TestLedgerConsistency:
    def test_random_sequence_keeps_counter_and_ledger_in_step(self, db_session, make_item, qoh):
        """Seeded random mix of sales, returns and adjustments, some of them rejected."""
        rng = random.Random(20240110)
        items = [make_item(quantity=rng.randint(0, 15)) for _ in range(4)]

        for step in range(150):
            item = rng.choice(items)
            delta = rng.randint(-12, 12)
            if delta == 0:
                continue
            if rng.random() < 0.5:
                post_stock_deltas([StockDelta(item.id, delta)], reference_type="invoice", reference_id=step)
            else:
                try:
                    apply_stock_transaction(
                        product_id=item.id,
                        transaction_type="adjustment",
                        quantity_delta=delta,
                        reference_type="manual",
                    )
                    db_session.commit()
                except InsufficientStockError:
                    db_session.rollback()

            for each in items:
                assert qoh(each.id) >= 0

        assert verify_ledger_consistency() == []

    def test_detects_counter_drift(self, db_session, item_a, item_b):
        post_stock_deltas([StockDelta(item_a.id, 4)], reference_type="invoice", reference_id=1)

        # Counter moved without a ledger row
        db_session.execute(
            update(StockItem)
            .where(StockItem.id == item_b.id)
            .values(quantity_on_hand=3)
            .execution_options(synchronize_session=False)
        )
        db_session.commit()

        discrepancies = verify_ledger_consistency()
        assert [d.product_id for d in discrepancies] == [item_b.id]
        assert discrepancies[0].expected_quantity == 10
        assert discrepancies[0].quantity_on_hand == 3
        assert verify_ledger_consistency(item_a.id) == []

    def test_list_transactions_newest_first(self, db_session, item_a):
        post_stock_deltas([StockDelta(item_a.id, 1)], reference_type="invoice", reference_id=1)
        post_stock_deltas([StockDelta(item_a.id, 2)], reference_type="invoice", reference_id=2)

        rows = ledger_service.list_stock_transactions(item_a.id)
        assert [row.reference_id for row in rows] == [2, 1]
        assert [row.reference_id for row in ledger_service.list_stock_transactions(item_a.id, reference_id=1)] == [1]
        assert db.session.query(StockTransaction).count() == 2
