from __future__ import annotations

from sqlalchemy import event

from ..extensions import db
from servicebook.time_utils import to_utc_z


TRANSACTION_TYPES = ("sale", "return", "adjustment")
REFERENCE_TYPES = ("invoice", "service", "manual")


class LedgerImmutableError(RuntimeError):
    """Raised when code tries to update or delete a posted stock transaction."""


class StockItem(db.Model):
    """
    Catalog entry with a running stock counter.

    quantity_on_hand is a derived counter kept in step with the
    stock_transactions ledger:

        initial_quantity + SUM(stock_transactions.quantity_delta) == quantity_on_hand

    It is only ever changed by ledger_service.apply_stock_transaction(), which
    writes the ledger row and moves the counter in the same DB transaction.
    The CHECK constraint is the last line against a negative counter; the
    conditional decrement in the ledger writer is the first.
    """
    __tablename__ = "stock_items"
    __table_args__ = (
        db.CheckConstraint("quantity_on_hand >= 0", name="ck_stock_items_qoh_non_negative"),
        db.CheckConstraint("initial_quantity >= 0", name="ck_stock_items_initial_non_negative"),
        db.CheckConstraint("reorder_threshold >= 0", name="ck_stock_items_reorder_non_negative"),
        db.Index("ix_stock_items_active_name", "is_active", "name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    sku = db.Column(db.String(64), nullable=True, unique=True)
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)

    # Authoritative storage in cents
    unit_price_cents = db.Column(db.Integer, nullable=True)

    # Opening balance; never changes after creation
    initial_quantity = db.Column(db.Integer, nullable=False, default=0)
    quantity_on_hand = db.Column(db.Integer, nullable=False, default=0)
    reorder_threshold = db.Column(db.Integer, nullable=False, default=0)

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    @property
    def is_low_stock(self) -> bool:
        return self.reorder_threshold > 0 and self.quantity_on_hand <= self.reorder_threshold

    def __repr__(self) -> str:
        return f"<StockItem id={self.id} sku={self.sku!r} name={self.name!r} qoh={self.quantity_on_hand}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sku": self.sku,
            "name": self.name,
            "description": self.description,
            "unit_price_cents": self.unit_price_cents,
            "initial_quantity": self.initial_quantity,
            "quantity_on_hand": self.quantity_on_hand,
            "reorder_threshold": self.reorder_threshold,
            "is_low_stock": self.is_low_stock,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class StockTransaction(db.Model):
    """
    Append-only stock ledger row.

    quantity_delta is signed: sales are negative, returns positive,
    adjustments either way. previous_quantity/new_quantity snapshot the
    counter around this row so a product's history can be read without
    replaying the ledger.
    """
    __tablename__ = "stock_transactions"
    __table_args__ = (
        db.CheckConstraint(
            "transaction_type IN ('sale', 'return', 'adjustment')",
            name="ck_stock_tx_type",
        ),
        db.CheckConstraint(
            "reference_type IN ('invoice', 'service', 'manual')",
            name="ck_stock_tx_reference_type",
        ),
        db.CheckConstraint("quantity_delta <> 0", name="ck_stock_tx_delta_non_zero"),
        db.Index("ix_stock_tx_product_created", "product_id", "created_at"),
        db.Index("ix_stock_tx_reference", "reference_type", "reference_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("stock_items.id"), nullable=False, index=True)

    transaction_type = db.Column(db.String(16), nullable=False, index=True)
    quantity_delta = db.Column(db.Integer, nullable=False)

    previous_quantity = db.Column(db.Integer, nullable=False)
    new_quantity = db.Column(db.Integer, nullable=False)

    reference_type = db.Column(db.String(16), nullable=False)
    reference_id = db.Column(db.Integer, nullable=True)

    note = db.Column(db.String(255), nullable=True)

    # Staff member who caused the movement; passed in explicitly by callers
    created_by = db.Column(db.Integer, nullable=True, index=True)

    created_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        index=True,
    )

    product = db.relationship("StockItem", backref=db.backref("transactions", lazy="dynamic"))

    def __repr__(self) -> str:
        return (
            f"<StockTransaction id={self.id} product_id={self.product_id} "
            f"type={self.transaction_type} delta={self.quantity_delta}>"
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "transaction_type": self.transaction_type,
            "quantity_delta": self.quantity_delta,
            "previous_quantity": self.previous_quantity,
            "new_quantity": self.new_quantity,
            "reference_type": self.reference_type,
            "reference_id": self.reference_id,
            "note": self.note,
            "created_by": self.created_by,
            "created_at": to_utc_z(self.created_at),
        }


@event.listens_for(StockTransaction, "before_update")
def prevent_stock_transaction_update(mapper, connection, target):
    raise LedgerImmutableError(
        f"Stock transaction {target.id} is immutable; post a correcting transaction instead"
    )


@event.listens_for(StockTransaction, "before_delete")
def prevent_stock_transaction_delete(mapper, connection, target):
    raise LedgerImmutableError(
        f"Stock transaction {target.id} is immutable and cannot be deleted"
    )
