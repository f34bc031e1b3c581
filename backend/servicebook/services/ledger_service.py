# Overview: Service-layer operations for the stock ledger; validation and append-only writes.

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import ClassVar, Iterable, Union

from sqlalchemy import func, update
from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..models import StockItem, StockTransaction
from ..models.inventory import TRANSACTION_TYPES, REFERENCE_TYPES
from .concurrency import lock_for_update, run_with_retry
from .stock_math import StockDelta
"""
Servicebook Stock Ledger Invariants (authoritative)

- stock_transactions is append-only; rows are never updated or deleted.
- For every product:
      initial_quantity + SUM(quantity_delta) == stock_items.quantity_on_hand
- Writing a ledger row and moving the counter happen in ONE statement pair
  inside ONE DB transaction (apply_stock_transaction).
- The counter is moved with a conditional UPDATE
      SET quantity_on_hand = quantity_on_hand + :delta
      WHERE id = :id AND quantity_on_hand + :delta >= 0
  so a validated deduction cannot be invalidated by a concurrent writer
  between check and use: the check IS the write.
- validate_availability() is a read-only fast path that gives a complete
  error before any write; the conditional UPDATE is the authority.
- All deltas of one document edit are applied in the caller's transaction:
  either all of them land or none do.
"""


logger = logging.getLogger(__name__)


class StockLedgerError(Exception):
    """Raised for stock ledger errors."""
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


class InsufficientStockError(StockLedgerError):
    def __init__(self, product_id: int, available: int, requested: int, name: str | None = None):
        label = name or f"product {product_id}"
        super().__init__(
            f"Insufficient stock for {label}. Available: {available}, Requested: {requested}.",
            details={"product_id": product_id, "available": available, "requested": requested},
        )
        self.product_id = product_id
        self.available = available
        self.requested = requested


class ProductNotFoundError(StockLedgerError):
    def __init__(self, product_id: int):
        super().__init__(f"Stock item {product_id} not found", details={"product_id": product_id})
        self.product_id = product_id


class InvalidQuantityError(StockLedgerError):
    """Quantity or transaction shape rejected before any write."""


class PartialApplicationError(StockLedgerError):
    """
    Some per-product writes committed before another failed.

    The document and the ledger now disagree and need manual reconciliation.
    Callers must not treat this like InsufficientStockError: nothing was
    rolled back.
    """
    def __init__(self, applied: list, failed_product_id: int, cause: Exception):
        super().__init__(
            f"Stock adjustment partially applied: failed at product {failed_product_id} "
            f"after {len(applied)} committed transaction(s): {cause}",
            details={
                "applied_transaction_ids": [tx.id for tx in applied],
                "failed_product_id": failed_product_id,
                "cause": str(cause),
            },
        )
        self.applied = applied
        self.failed_product_id = failed_product_id
        self.cause = cause


# =============================================================================
# Tagged results for post_stock_deltas()
# =============================================================================

@dataclass(frozen=True)
class Applied:
    transactions: list = field(default_factory=list)
    outcome: ClassVar[str] = "applied"

    @property
    def ok(self) -> bool:
        return True

    def raise_for_outcome(self) -> "Applied":
        return self

    def to_dict(self) -> dict:
        return {"outcome": self.outcome, "transactions": [tx.to_dict() for tx in self.transactions]}


@dataclass(frozen=True)
class PartiallyApplied:
    applied: list
    failed_product_id: int
    error: Exception
    outcome: ClassVar[str] = "partially_applied"

    @property
    def ok(self) -> bool:
        return False

    def raise_for_outcome(self):
        raise PartialApplicationError(self.applied, self.failed_product_id, self.error) from self.error

    def to_dict(self) -> dict:
        return {
            "outcome": self.outcome,
            "applied": [tx.to_dict() for tx in self.applied],
            "failed_product_id": self.failed_product_id,
            "error": str(self.error),
        }


@dataclass(frozen=True)
class Rejected:
    error: StockLedgerError
    outcome: ClassVar[str] = "rejected"

    @property
    def ok(self) -> bool:
        return False

    def raise_for_outcome(self):
        raise self.error

    def to_dict(self) -> dict:
        return {"outcome": self.outcome, "error": str(self.error), "details": self.error.details}


LedgerResult = Union[Applied, PartiallyApplied, Rejected]


# =============================================================================
# Reads
# =============================================================================

def get_stock_item(product_id: int, *, lock: bool = False) -> StockItem:
    query = db.session.query(StockItem).filter_by(id=product_id)
    if lock:
        query = lock_for_update(query)
    item = query.first()
    if item is None:
        raise ProductNotFoundError(product_id)
    return item


def get_quantity_on_hand(product_id: int) -> int:
    qoh = db.session.query(StockItem.quantity_on_hand).filter_by(id=product_id).scalar()
    if qoh is None:
        raise ProductNotFoundError(product_id)
    return int(qoh)


def list_stock_transactions(
    product_id: int,
    *,
    limit: int = 200,
    reference_type: str | None = None,
    reference_id: int | None = None,
) -> list[StockTransaction]:
    get_stock_item(product_id)

    q = StockTransaction.query.filter_by(product_id=product_id)
    if reference_type is not None:
        q = q.filter_by(reference_type=reference_type)
    if reference_id is not None:
        q = q.filter_by(reference_id=reference_id)

    return q.order_by(
        StockTransaction.created_at.desc(),
        StockTransaction.id.desc(),
    ).limit(limit).all()


@dataclass(frozen=True)
class LedgerDiscrepancy:
    product_id: int
    initial_quantity: int
    ledger_total: int
    quantity_on_hand: int

    @property
    def expected_quantity(self) -> int:
        return self.initial_quantity + self.ledger_total

    def to_dict(self) -> dict:
        return {
            "product_id": self.product_id,
            "initial_quantity": self.initial_quantity,
            "ledger_total": self.ledger_total,
            "expected_quantity": self.expected_quantity,
            "quantity_on_hand": self.quantity_on_hand,
        }


def verify_ledger_consistency(product_id: int | None = None) -> list[LedgerDiscrepancy]:
    """
    Compare each counter with its ledger.

    Returns one LedgerDiscrepancy per product whose
    initial_quantity + SUM(quantity_delta) differs from quantity_on_hand.
    An empty list means the ledger and counters agree.
    """
    totals = (
        db.session.query(
            StockTransaction.product_id.label("product_id"),
            func.coalesce(func.sum(StockTransaction.quantity_delta), 0).label("ledger_total"),
        )
        .group_by(StockTransaction.product_id)
        .subquery()
    )
    q = db.session.query(
        StockItem.id,
        StockItem.initial_quantity,
        StockItem.quantity_on_hand,
        func.coalesce(totals.c.ledger_total, 0),
    ).outerjoin(totals, totals.c.product_id == StockItem.id)
    if product_id is not None:
        q = q.filter(StockItem.id == product_id)

    discrepancies = []
    for item_id, initial_quantity, qoh, ledger_total in q.order_by(StockItem.id).all():
        if int(initial_quantity) + int(ledger_total) != int(qoh):
            discrepancies.append(
                LedgerDiscrepancy(
                    product_id=item_id,
                    initial_quantity=int(initial_quantity),
                    ledger_total=int(ledger_total),
                    quantity_on_hand=int(qoh),
                )
            )
    return discrepancies


# =============================================================================
# Validation
# =============================================================================

def validate_availability(deltas: Iterable[StockDelta]) -> None:
    """
    Check deductions against stock before anything is written.

    Every referenced product must exist. Only positive deltas (net
    deductions) are compared with quantity_on_hand; returns are never
    blocked. Read-only.
    """
    deltas = list(deltas)
    if not deltas:
        return

    product_ids = sorted({entry.product_id for entry in deltas})
    rows = lock_for_update(
        db.session.query(StockItem)
        .filter(StockItem.id.in_(product_ids))
        .order_by(StockItem.id)
        .execution_options(populate_existing=True)
    ).all()
    by_id = {row.id: row for row in rows}

    for entry in deltas:
        item = by_id.get(entry.product_id)
        if item is None:
            raise ProductNotFoundError(entry.product_id)
        if entry.is_deduction and entry.delta > item.quantity_on_hand:
            raise InsufficientStockError(
                entry.product_id,
                available=item.quantity_on_hand,
                requested=entry.delta,
                name=item.name,
            )


def _validate_transaction_shape(transaction_type: str, quantity_delta, reference_type: str) -> None:
    if transaction_type not in TRANSACTION_TYPES:
        raise InvalidQuantityError(
            f"Invalid transaction_type '{transaction_type}'. Must be one of: {', '.join(TRANSACTION_TYPES)}"
        )
    if reference_type not in REFERENCE_TYPES:
        raise InvalidQuantityError(
            f"Invalid reference_type '{reference_type}'. Must be one of: {', '.join(REFERENCE_TYPES)}"
        )
    if not isinstance(quantity_delta, int) or isinstance(quantity_delta, bool):
        raise InvalidQuantityError("quantity_delta must be an integer")
    if quantity_delta == 0:
        raise InvalidQuantityError("quantity_delta must be non-zero")
    if transaction_type == "sale" and quantity_delta > 0:
        raise InvalidQuantityError("sale transactions must have a negative quantity_delta")
    if transaction_type == "return" and quantity_delta < 0:
        raise InvalidQuantityError("return transactions must have a positive quantity_delta")


# =============================================================================
# Writes
# =============================================================================

def apply_stock_transaction(
    *,
    product_id: int,
    transaction_type: str,
    quantity_delta: int,
    reference_type: str,
    reference_id: int | None = None,
    note: str | None = None,
    created_by: int | None = None,
) -> StockTransaction:
    """
    Write one ledger row and move the product's counter by the same amount.

    Runs in the caller's transaction and does not commit. Fails without
    writing anything if the product does not exist or if the movement
    would take quantity_on_hand below zero.
    """
    _validate_transaction_shape(transaction_type, quantity_delta, reference_type)

    stmt = (
        update(StockItem)
        .where(
            StockItem.id == product_id,
            StockItem.quantity_on_hand + quantity_delta >= 0,
        )
        .values(quantity_on_hand=StockItem.quantity_on_hand + quantity_delta)
        .execution_options(synchronize_session=False)
    )
    result = db.session.execute(stmt)
    if result.rowcount != 1:
        available = db.session.query(StockItem.quantity_on_hand).filter_by(id=product_id).scalar()
        if available is None:
            raise ProductNotFoundError(product_id)
        raise InsufficientStockError(product_id, available=int(available), requested=-quantity_delta)

    # Refresh any loaded copy of the row so callers see the moved counter
    item = db.session.get(StockItem, product_id, populate_existing=True)
    new_quantity = int(item.quantity_on_hand)

    tx = StockTransaction(
        product_id=product_id,
        transaction_type=transaction_type,
        quantity_delta=quantity_delta,
        previous_quantity=new_quantity - quantity_delta,
        new_quantity=new_quantity,
        reference_type=reference_type,
        reference_id=reference_id,
        note=note[:255] if note else note,
        created_by=created_by,
    )
    db.session.add(tx)
    db.session.flush()
    return tx


def apply_stock_deltas(
    deltas: Iterable[StockDelta],
    *,
    reference_type: str,
    reference_id: int | None,
    note: str | None = None,
    created_by: int | None = None,
) -> list[StockTransaction]:
    """
    Validate and apply every delta of one document edit in the current transaction.

    Does not commit: the caller commits together with its own document rows,
    so the edit and its stock movements land (or roll back) as one unit.
    """
    deltas = list(deltas)
    validate_availability(deltas)

    transactions = []
    for entry in deltas:
        transactions.append(
            apply_stock_transaction(
                product_id=entry.product_id,
                transaction_type=entry.transaction_type,
                quantity_delta=entry.quantity_delta,
                reference_type=reference_type,
                reference_id=reference_id,
                note=note,
                created_by=created_by,
            )
        )
    return transactions


def post_stock_deltas(
    deltas: Iterable[StockDelta],
    *,
    reference_type: str,
    reference_id: int | None,
    note: str | None = None,
    created_by: int | None = None,
    atomic: bool = True,
) -> LedgerResult:
    """
    Apply deltas as a standalone unit of work and report the outcome.

    atomic=True (default): one DB transaction for the whole set; the result
    is Applied or Rejected, never partial.

    atomic=False: one committed transaction per product, mirroring a
    persistence layer that only offers a per-product stored procedure.
    Availability is still checked for the whole set first. A failure after
    at least one commit is reported as PartiallyApplied.
    """
    deltas = list(deltas)

    if atomic:
        def _op():
            transactions = apply_stock_deltas(
                deltas,
                reference_type=reference_type,
                reference_id=reference_id,
                note=note,
                created_by=created_by,
            )
            db.session.commit()
            return transactions

        try:
            return Applied(run_with_retry(_op))
        except StockLedgerError as exc:
            return Rejected(exc)

    try:
        validate_availability(deltas)
    except StockLedgerError as exc:
        db.session.rollback()
        return Rejected(exc)

    applied: list[StockTransaction] = []
    for entry in deltas:
        def _leaf(entry=entry):
            tx = apply_stock_transaction(
                product_id=entry.product_id,
                transaction_type=entry.transaction_type,
                quantity_delta=entry.quantity_delta,
                reference_type=reference_type,
                reference_id=reference_id,
                note=note,
                created_by=created_by,
            )
            db.session.commit()
            return tx

        try:
            applied.append(run_with_retry(_leaf))
        except (StockLedgerError, SQLAlchemyError) as exc:
            if not applied:
                if isinstance(exc, StockLedgerError):
                    return Rejected(exc)
                raise
            logger.error(
                "Stock adjustment for %s %s partially applied: %d committed, failed at product %s",
                reference_type,
                reference_id,
                len(applied),
                entry.product_id,
            )
            return PartiallyApplied(applied=applied, failed_product_id=entry.product_id, error=exc)

    return Applied(applied)
