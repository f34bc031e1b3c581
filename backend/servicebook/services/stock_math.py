# Overview: Pure stock arithmetic; quantity normalization, line aggregation and edit deltas.

"""
Servicebook stock arithmetic (no database access)

Pipeline for a document save:

    raw lines -> normalize_stock_lines -> aggregate_stock_lines
              -> build_stock_deltas(previous, updated) -> ledger_service

Delta sign convention:
- delta > 0: the document now sells MORE of the product; stock must be removed.
- delta < 0: the document now sells LESS; stock goes back on the shelf.

Applying the deltas of an edit leaves stock exactly where deleting the old
document and recreating it in its new form would have left it.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any, Iterable, Mapping


def normalize_quantity(value: Any) -> int:
    """
    Coerce user input into a non-negative whole quantity.

    max(0, trunc(value)). None, booleans, non-numeric strings, NaN and
    infinities all normalize to 0. Never raises.
    """
    if value is None or isinstance(value, bool):
        return 0
    if isinstance(value, int):
        return max(0, value)
    if isinstance(value, str):
        value = value.strip()
        if not value:
            return 0
        try:
            value = Decimal(value)
        except InvalidOperation:
            return 0
    if isinstance(value, Decimal):
        if not value.is_finite():
            return 0
        return max(0, int(value))
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0
    if not math.isfinite(number):
        return 0
    return max(0, math.trunc(number))


@dataclass(frozen=True)
class StockLine:
    product_id: int
    quantity: int
    label: str | None = None


@dataclass(frozen=True)
class StockDelta:
    product_id: int
    delta: int

    @property
    def is_deduction(self) -> bool:
        return self.delta > 0

    @property
    def transaction_type(self) -> str:
        return "sale" if self.is_deduction else "return"

    @property
    def quantity_delta(self) -> int:
        """Signed movement of quantity_on_hand (negative for a sale)."""
        return -self.delta

    def to_dict(self) -> dict:
        return {"product_id": self.product_id, "delta": self.delta}


def _field(item: Any, name: str):
    if isinstance(item, Mapping):
        return item.get(name)
    return getattr(item, name, None)


def normalize_stock_lines(items: Iterable[Any]) -> list[StockLine]:
    """
    Keep only lines that move stock.

    Accepts mappings or objects with product_id / quantity (and optionally
    label or description). Manual lines (no product) and lines that
    normalize to zero quantity are dropped.
    """
    lines: list[StockLine] = []
    for item in items:
        product_id = _field(item, "product_id")
        if product_id is None:
            continue
        quantity = normalize_quantity(_field(item, "quantity"))
        if quantity <= 0:
            continue
        label = _field(item, "label") or _field(item, "description")
        lines.append(StockLine(product_id=product_id, quantity=quantity, label=label))
    return lines


def aggregate_stock_lines(lines: Iterable[StockLine]) -> dict:
    """Net quantity per product; line order never matters."""
    totals: dict = {}
    for line in lines:
        totals[line.product_id] = totals.get(line.product_id, 0) + line.quantity
    return totals


def build_stock_deltas(previous: Mapping, updated: Mapping) -> list[StockDelta]:
    """
    Signed per-product change needed to move stock from `previous` to `updated`.

    Covers every product in either mapping; zero deltas are omitted. Output
    is sorted by product id so writers always lock rows in the same order.
    """
    deltas = []
    for product_id in sorted(set(previous) | set(updated)):
        delta = updated.get(product_id, 0) - previous.get(product_id, 0)
        if delta != 0:
            deltas.append(StockDelta(product_id=product_id, delta=delta))
    return deltas


def diff_stock_lines(previous_items: Iterable[Any], next_items: Iterable[Any]) -> list[StockDelta]:
    previous = aggregate_stock_lines(normalize_stock_lines(previous_items))
    updated = aggregate_stock_lines(normalize_stock_lines(next_items))
    return build_stock_deltas(previous, updated)


def apply_deltas_to_stock(stock: Mapping, deltas: Iterable[StockDelta]) -> dict:
    """Return a copy of a product -> on-hand mapping with deltas applied."""
    result = dict(stock)
    for entry in deltas:
        result[entry.product_id] = result.get(entry.product_id, 0) + entry.quantity_delta
    return result
