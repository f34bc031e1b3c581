# backend/servicebook/routes/inventory.py
"""
Stock item and ledger routes.

quantity_on_hand is read-only here: it moves only through documents and
POST /items/<id>/adjust, both of which write ledger rows.
"""
from flask import Blueprint, request, jsonify, g, current_app

from ..models import StockItem
from ..validation import (
    ModelValidationPolicy,
    validate_payload,
    ValidationError,
    enforce_rules_stock_item,
    parse_int_field,
)
from ..decorators import with_actor
from ..services import inventory_service, ledger_service
from .errors import DOMAIN_ERRORS, error_response


inventory_bp = Blueprint("inventory", __name__, url_prefix="/api/inventory")

STOCK_ITEM_CREATE_POLICY = ModelValidationPolicy(
    writable_fields={"sku", "name", "description", "unit_price_cents", "initial_quantity", "reorder_threshold"},
    required_on_create={"name"},
)

STOCK_ITEM_PATCH_POLICY = ModelValidationPolicy(
    writable_fields={"sku", "name", "description", "unit_price_cents", "reorder_threshold", "is_active"},
)


def _limit_arg(default: int, maximum: int = 1000) -> int:
    raw = request.args.get("limit")
    if raw is None:
        return default
    limit = parse_int_field({"limit": raw}, "limit", minimum=1)
    return min(limit, maximum)


@inventory_bp.post("/items")
def create_item_route():
    payload = request.get_json(silent=True) or {}

    try:
        patch = validate_payload(
            model=StockItem,
            payload=payload,
            policy=STOCK_ITEM_CREATE_POLICY,
            partial=False,
        )
        enforce_rules_stock_item(patch)
        item = inventory_service.create_stock_item(**patch)
    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create stock item")
        return jsonify({"error": "Internal server error"}), 500

    return jsonify({"item": item.to_dict()}), 201


@inventory_bp.get("/items/<int:product_id>")
def get_item_route(product_id: int):
    try:
        summary = inventory_service.get_stock_summary(product_id)
    except DOMAIN_ERRORS as e:
        return error_response(e)
    return jsonify(summary), 200


@inventory_bp.patch("/items/<int:product_id>")
def update_item_route(product_id: int):
    payload = request.get_json(silent=True) or {}

    try:
        patch = validate_payload(
            model=StockItem,
            payload=payload,
            policy=STOCK_ITEM_PATCH_POLICY,
            partial=True,
        )
        enforce_rules_stock_item(patch)
        item = inventory_service.update_stock_item(product_id, patch)
    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to update stock item")
        return jsonify({"error": "Internal server error"}), 500

    return jsonify({"item": item.to_dict()}), 200


@inventory_bp.post("/items/<int:product_id>/adjust")
@with_actor
def adjust_item_route(product_id: int):
    """
    Post a manual stock adjustment.

    Body: {"quantity_delta": int (non-zero, signed), "note": str?}
    Returns 400 when the adjustment would take stock below zero.
    """
    payload = request.get_json(silent=True) or {}

    try:
        quantity_delta = parse_int_field(payload, "quantity_delta")
        if quantity_delta == 0:
            raise ValidationError("quantity_delta must be non-zero")
        note = payload.get("note")
        tx = inventory_service.adjust_stock(
            product_id=product_id,
            quantity_delta=quantity_delta,
            note=str(note).strip() if note else None,
            created_by=g.actor_id,
        )
    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to adjust stock")
        return jsonify({"error": "Internal server error"}), 500

    item = ledger_service.get_stock_item(product_id)
    return jsonify({"transaction": tx.to_dict(), "item": item.to_dict()}), 201


@inventory_bp.get("/items/<int:product_id>/transactions")
def list_item_transactions_route(product_id: int):
    try:
        limit = _limit_arg(200)
        transactions = ledger_service.list_stock_transactions(product_id, limit=limit)
    except DOMAIN_ERRORS as e:
        return error_response(e)
    return jsonify({"transactions": [tx.to_dict() for tx in transactions]}), 200


@inventory_bp.get("/low-stock")
def low_stock_route():
    try:
        limit = _limit_arg(current_app.config.get("LOW_STOCK_DEFAULT_LIMIT", 100))
    except ValidationError as e:
        return error_response(e)
    items = inventory_service.list_low_stock(limit=limit)
    return jsonify({"items": [item.to_dict() for item in items], "count": len(items)}), 200


@inventory_bp.get("/consistency")
def consistency_route():
    """Ledger vs counter check; 200 with an empty list when everything agrees."""
    try:
        product_id = parse_int_field(request.args.to_dict(), "product_id", required=False, minimum=1)
    except ValidationError as e:
        return error_response(e)
    discrepancies = ledger_service.verify_ledger_consistency(product_id)
    return jsonify({
        "consistent": not discrepancies,
        "discrepancies": [d.to_dict() for d in discrepancies],
    }), 200
