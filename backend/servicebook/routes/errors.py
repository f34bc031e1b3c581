# Overview: Maps typed service errors to JSON error responses.

from flask import jsonify

from ..validation import ValidationError, ConflictError
from ..services.ledger_service import (
    StockLedgerError,
    ProductNotFoundError,
    PartialApplicationError,
)
from ..services.document_service import DocumentError, DocumentNotFoundError
from ..services.contract_service import ContractError, ContractNotFoundError, ContractStateError
from ..services.scheduler_service import SchedulerError, OccurrenceNotFoundError, OccurrenceStateError


# Most specific first; the first isinstance match wins
_STATUS_BY_ERROR = (
    (PartialApplicationError, 500),
    (ProductNotFoundError, 404),
    (DocumentNotFoundError, 404),
    (ContractNotFoundError, 404),
    (OccurrenceNotFoundError, 404),
    (ContractStateError, 409),
    (OccurrenceStateError, 409),
    (ConflictError, 409),
    (ValidationError, 400),
    (StockLedgerError, 400),
    (DocumentError, 400),
    (ContractError, 400),
    (SchedulerError, 400),
)

DOMAIN_ERRORS = tuple(cls for cls, _ in _STATUS_BY_ERROR)


def error_response(exc: Exception):
    """JSON body and status for a domain error raised by a service."""
    status = 400
    for cls, code in _STATUS_BY_ERROR:
        if isinstance(exc, cls):
            status = code
            break
    body = {"error": str(exc)}
    details = getattr(exc, "details", None)
    if details:
        body["details"] = details
    if isinstance(exc, PartialApplicationError):
        body["reconciliation_required"] = True
    return jsonify(body), status
