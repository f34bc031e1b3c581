# backend/servicebook/routes/contracts.py
"""
Recurring service contract (AMC) routes.
"""
from flask import Blueprint, request, jsonify, g, current_app

from ..validation import ValidationError, parse_date_field, parse_int_field
from ..decorators import with_actor
from ..services import contract_service, scheduler_service
from .errors import DOMAIN_ERRORS, error_response


contracts_bp = Blueprint("contracts", __name__, url_prefix="/api/contracts")


@contracts_bp.post("")
@with_actor
def create_contract_route():
    """
    Create a contract and book its first visit.

    Body: {customer_id?, start_date?, interval_months?, total_occurrences_included?}
    interval_months defaults to DEFAULT_SERVICE_INTERVAL_MONTHS.
    """
    payload = request.get_json(silent=True) or {}

    try:
        total = parse_int_field(payload, "total_occurrences_included", required=False, minimum=1)
        contract = contract_service.create_contract(
            customer_id=parse_int_field(payload, "customer_id", required=False, minimum=1),
            start_date=parse_date_field(payload, "start_date"),
            interval_months=parse_int_field(payload, "interval_months", required=False, minimum=1),
            total_occurrences_included=total or 1,
            created_by=g.actor_id,
        )
    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create contract")
        return jsonify({"error": "Internal server error"}), 500

    pending = contract_service.get_pending_occurrence(contract.id)
    return jsonify({
        "contract": contract.to_dict(),
        "next_occurrence": pending.to_dict() if pending else None,
    }), 201


@contracts_bp.get("/<int:contract_id>")
def get_contract_route(contract_id: int):
    try:
        contract = contract_service.get_contract(contract_id)
        occurrences = scheduler_service.list_occurrences(contract_id)
    except DOMAIN_ERRORS as e:
        return error_response(e)
    return jsonify({
        "contract": contract.to_dict(),
        "occurrences": [o.to_dict() for o in occurrences],
    }), 200


@contracts_bp.post("/<int:contract_id>/end")
@with_actor
def end_contract_route(contract_id: int):
    """Body: {status: "completed" | "cancelled" (default cancelled), reason?}"""
    payload = request.get_json(silent=True) or {}

    try:
        contract = contract_service.end_contract(
            contract_id,
            status=payload.get("status") or "cancelled",
            reason=payload.get("reason"),
            ended_by=g.actor_id,
        )
    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to end contract")
        return jsonify({"error": "Internal server error"}), 500

    return jsonify({"contract": contract.to_dict()}), 200


@contracts_bp.post("/<int:contract_id>/renew")
@with_actor
def renew_contract_route(contract_id: int):
    """Body: {as_of?: "YYYY-MM-DD"} (defaults to today)"""
    payload = request.get_json(silent=True) or {}

    try:
        renewed = contract_service.renew_contract(
            contract_id,
            as_of=parse_date_field(payload, "as_of"),
            created_by=g.actor_id,
        )
    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to renew contract")
        return jsonify({"error": "Internal server error"}), 500

    return jsonify({"contract": renewed.to_dict()}), 201


@contracts_bp.get("/due-for-renewal")
def due_for_renewal_route():
    try:
        as_of = parse_date_field(request.args.to_dict(), "as_of")
    except ValidationError as e:
        return error_response(e)
    contracts = contract_service.list_contracts_due_for_renewal(as_of)
    return jsonify({"contracts": [c.to_dict() for c in contracts], "count": len(contracts)}), 200
