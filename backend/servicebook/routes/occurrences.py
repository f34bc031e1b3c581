# backend/servicebook/routes/occurrences.py
"""
Service occurrence routes.

Completing an occurrence of an active contract books the next visit; the
response's "outcome" says whether it did (next_scheduled) or why not
(pending_exists, already_completed, contract_inactive, not_recurring).
"""
from flask import Blueprint, request, jsonify, g, current_app

from ..validation import ValidationError, parse_date_field, parse_int_field
from ..decorators import with_actor
from ..services import scheduler_service
from .errors import DOMAIN_ERRORS, error_response


occurrences_bp = Blueprint("occurrences", __name__, url_prefix="/api/occurrences")

OCCURRENCE_VIEWS = ("upcoming", "overdue")


@occurrences_bp.get("")
def list_occurrences_route():
    """
    Query params:
        view: upcoming (default) | overdue
        as_of: YYYY-MM-DD (default today)
        days: window for upcoming (default 30)
        limit: default 100
    """
    args = request.args.to_dict()
    view = args.get("view", "upcoming")
    if view not in OCCURRENCE_VIEWS:
        return jsonify({"error": f"view must be one of: {', '.join(OCCURRENCE_VIEWS)}"}), 400

    try:
        as_of = parse_date_field(args, "as_of")
        limit = parse_int_field(args, "limit", required=False, minimum=1) or 100
        if view == "overdue":
            occurrences = scheduler_service.list_overdue_occurrences(as_of, limit=limit)
        else:
            days = parse_int_field(args, "days", required=False, minimum=0)
            occurrences = scheduler_service.list_upcoming_occurrences(
                as_of, days=30 if days is None else days, limit=limit
            )
    except ValidationError as e:
        return error_response(e)

    return jsonify({"view": view, "occurrences": [o.to_dict() for o in occurrences]}), 200


@occurrences_bp.post("")
def create_occurrence_route():
    """One-off visit outside any contract. Body: {scheduled_date, customer_id?, description?}"""
    payload = request.get_json(silent=True) or {}

    try:
        description = payload.get("description")
        occurrence = scheduler_service.create_one_off_occurrence(
            scheduled_date=parse_date_field(payload, "scheduled_date", required=True),
            customer_id=parse_int_field(payload, "customer_id", required=False, minimum=1),
            description=str(description).strip()[:255] if description else None,
        )
    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create occurrence")
        return jsonify({"error": "Internal server error"}), 500

    return jsonify({"occurrence": occurrence.to_dict()}), 201


@occurrences_bp.get("/<int:occurrence_id>")
def get_occurrence_route(occurrence_id: int):
    try:
        occurrence = scheduler_service.get_occurrence(occurrence_id)
    except DOMAIN_ERRORS as e:
        return error_response(e)
    return jsonify({"occurrence": occurrence.to_dict()}), 200


@occurrences_bp.post("/<int:occurrence_id>/start")
@with_actor
def start_occurrence_route(occurrence_id: int):
    try:
        occurrence = scheduler_service.start_occurrence(occurrence_id, started_by=g.actor_id)
    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to start occurrence")
        return jsonify({"error": "Internal server error"}), 500

    return jsonify({"occurrence": occurrence.to_dict()}), 200


@occurrences_bp.post("/<int:occurrence_id>/complete")
@with_actor
def complete_occurrence_route(occurrence_id: int):
    """Body: {completed_date?: "YYYY-MM-DD"} (defaults to today)"""
    payload = request.get_json(silent=True) or {}

    try:
        result = scheduler_service.complete_occurrence(
            occurrence_id,
            completed_date=parse_date_field(payload, "completed_date"),
            completed_by=g.actor_id,
        )
    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to complete occurrence")
        return jsonify({"error": "Internal server error"}), 500

    return jsonify(result.to_dict()), 200


@occurrences_bp.post("/<int:occurrence_id>/cancel")
def cancel_occurrence_route(occurrence_id: int):
    try:
        occurrence = scheduler_service.cancel_occurrence(occurrence_id)
    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to cancel occurrence")
        return jsonify({"error": "Internal server error"}), 500

    return jsonify({"occurrence": occurrence.to_dict()}), 200
