# Overview: Service-layer operations for stock items; catalog metadata and manual adjustments.

from __future__ import annotations

from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import StockItem, StockTransaction
from ..validation import ConflictError, ValidationError
from .concurrency import run_with_retry
from .ledger_service import (
    InvalidQuantityError,
    apply_stock_transaction,
    get_stock_item,
    list_stock_transactions,
)

STOCK_ITEM_MUTABLE_FIELDS = {"sku", "name", "description", "unit_price_cents", "reorder_threshold", "is_active"}

# Only the ledger writer may move these
STOCK_ITEM_PROTECTED_FIELDS = {"quantity_on_hand", "initial_quantity"}


def _sku_taken(sku: str | None, *, exclude_id: int | None = None) -> bool:
    if not sku:
        return False
    q = db.session.query(StockItem.id).filter(StockItem.sku == sku)
    if exclude_id is not None:
        q = q.filter(StockItem.id != exclude_id)
    return q.first() is not None


def create_stock_item(
    *,
    name: str,
    sku: str | None = None,
    description: str | None = None,
    unit_price_cents: int | None = None,
    initial_quantity: int = 0,
    reorder_threshold: int = 0,
) -> StockItem:
    """
    Create a catalog entry with its opening balance.

    The opening balance is recorded as initial_quantity rather than as a
    ledger row, so quantity_on_hand starts equal to it and the ledger
    starts empty.

    Raises:
        ConflictError: If the SKU is already in use
        ValidationError: If a quantity is negative
    """
    if initial_quantity < 0 or reorder_threshold < 0:
        raise ValidationError("initial_quantity and reorder_threshold must be >= 0")

    if _sku_taken(sku):
        raise ConflictError("SKU already exists.")

    item = StockItem(
        sku=sku or None,
        name=name,
        description=description,
        unit_price_cents=unit_price_cents,
        initial_quantity=initial_quantity,
        quantity_on_hand=initial_quantity,
        reorder_threshold=reorder_threshold,
        is_active=True,
    )
    db.session.add(item)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise ConflictError("SKU already exists.")
    return item


def update_stock_item(product_id: int, patch: dict) -> StockItem:
    """
    Apply a metadata patch. Quantities are ledger-owned and rejected here.

    Raises:
        ProductNotFoundError: If the item does not exist
        ValidationError: If the patch touches a quantity field
        ConflictError: If the new SKU is already in use
    """
    protected = STOCK_ITEM_PROTECTED_FIELDS.intersection(patch)
    if protected:
        raise ValidationError(
            f"{sorted(protected)[0]} cannot be edited directly; post an adjustment instead"
        )

    item = get_stock_item(product_id)

    if "sku" in patch and _sku_taken(patch["sku"], exclude_id=item.id):
        raise ConflictError("SKU already exists.")

    for k, v in patch.items():
        if k not in STOCK_ITEM_MUTABLE_FIELDS:
            continue
        setattr(item, k, v)

    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise ConflictError("SKU already exists.")
    return item


def adjust_stock(
    *,
    product_id: int,
    quantity_delta: int,
    note: str | None = None,
    created_by: int | None = None,
) -> StockTransaction:
    """
    Post a manual stock correction (count discrepancy, damage, opening fix).

    Recorded as an `adjustment` with reference_type `manual`. Cannot take
    stock below zero.
    """
    if quantity_delta == 0:
        raise InvalidQuantityError("quantity_delta must be non-zero")

    def _op():
        tx = apply_stock_transaction(
            product_id=product_id,
            transaction_type="adjustment",
            quantity_delta=quantity_delta,
            reference_type="manual",
            reference_id=None,
            note=note,
            created_by=created_by,
        )
        db.session.commit()
        return tx

    return run_with_retry(_op)


def get_stock_summary(product_id: int, *, recent_limit: int = 10) -> dict:
    item = get_stock_item(product_id)
    recent = list_stock_transactions(product_id, limit=recent_limit)
    return {
        "item": item.to_dict(),
        "quantity_on_hand": item.quantity_on_hand,
        "is_low_stock": item.is_low_stock,
        "recent_transactions": [tx.to_dict() for tx in recent],
    }


def list_low_stock(limit: int = 100) -> list[StockItem]:
    """Active items at or below their reorder threshold, emptiest first."""
    return (
        db.session.query(StockItem)
        .filter(
            StockItem.is_active.is_(True),
            StockItem.reorder_threshold > 0,
            StockItem.quantity_on_hand <= StockItem.reorder_threshold,
        )
        .order_by(StockItem.quantity_on_hand.asc(), StockItem.id.asc())
        .limit(limit)
        .all()
    )
