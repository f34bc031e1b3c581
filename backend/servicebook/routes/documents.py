# backend/servicebook/routes/documents.py
"""
Invoice and service job routes.

Every write here moves stock: the response is only 2xx once the document
and its ledger rows are committed together. Insufficient stock is a 400
with the product, available and requested quantities in "details".
"""
from flask import Blueprint, request, jsonify, g, current_app

from ..validation import (
    ValidationError,
    parse_date_field,
    parse_document_lines,
    parse_int_field,
)
from ..decorators import with_actor
from ..services import document_service
from ..services.contract_service import find_contract_for_document
from .errors import DOMAIN_ERRORS, error_response


documents_bp = Blueprint("documents", __name__, url_prefix="/api/documents")


@documents_bp.post("")
@with_actor
def create_document_route():
    """
    Create an invoice or service job.

    Body:
        document_type: "invoice" | "service"
        lines: [{product_id?, description?, quantity, unit_price_cents?}]
        customer_id, document_date, service_occurrence_id: optional
        contract_interval_months: optional; invoice also sells a recurring contract
    """
    payload = request.get_json(silent=True) or {}

    try:
        document_type = payload.get("document_type")
        if not document_type or not isinstance(document_type, str):
            raise ValidationError("document_type is required")

        doc = document_service.create_document(
            document_type=document_type.strip().lower(),
            lines=parse_document_lines(payload.get("lines")),
            customer_id=parse_int_field(payload, "customer_id", required=False, minimum=1),
            created_by=g.actor_id,
            document_date=parse_date_field(payload, "document_date"),
            service_occurrence_id=parse_int_field(payload, "service_occurrence_id", required=False, minimum=1),
            contract_interval_months=parse_int_field(payload, "contract_interval_months", required=False, minimum=1),
        )
    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create document")
        return jsonify({"error": "Internal server error"}), 500

    contract = find_contract_for_document(doc.id)
    return jsonify({
        "document": doc.to_dict(),
        "contract": contract.to_dict() if contract else None,
    }), 201


@documents_bp.get("/<int:document_id>")
def get_document_route(document_id: int):
    try:
        doc = document_service.get_document(document_id)
    except DOMAIN_ERRORS as e:
        return error_response(e)
    return jsonify({"document": doc.to_dict()}), 200


@documents_bp.put("/<int:document_id>/lines")
@with_actor
def update_document_lines_route(document_id: int):
    """Replace all lines; only the net stock change is posted."""
    payload = request.get_json(silent=True) or {}

    try:
        doc = document_service.update_document_lines(
            document_id,
            parse_document_lines(payload.get("lines")),
            updated_by=g.actor_id,
        )
    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to update document lines")
        return jsonify({"error": "Internal server error"}), 500

    return jsonify({"document": doc.to_dict()}), 200


@documents_bp.delete("/<int:document_id>")
@with_actor
def delete_document_route(document_id: int):
    try:
        doc = document_service.delete_document(document_id, deleted_by=g.actor_id)
    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to delete document")
        return jsonify({"error": "Internal server error"}), 500

    return jsonify({"document": doc.to_dict()}), 200
