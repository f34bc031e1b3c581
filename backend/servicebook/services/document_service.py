# Overview: Service-layer operations for invoices and service jobs; line edits post net stock deltas.

from __future__ import annotations

from datetime import date

from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import SalesDocument, SalesDocumentLine, ServiceOccurrence
from ..models.documents import DOCUMENT_TYPES
from ..time_utils import today, utcnow
from .concurrency import DEFAULT_RETRY_ON, lock_for_update, run_with_retry
from .contract_service import _create_contract_inner
from .ledger_service import apply_stock_deltas
from .sequence_service import next_document_number
from .stock_math import diff_stock_lines, normalize_quantity
"""
Servicebook Document/Stock Invariants (authoritative)

- A document's open stock lines are exactly what it has taken out of stock.
- Every save posts build_stock_deltas(previous lines, new lines) to the
  ledger, referenced back to the document. previous lines are read from the
  database BEFORE the new lines replace them.
- The line rewrite, the ledger rows and the counter moves commit together
  in one transaction: a rejected delta leaves the document untouched.
- Deleting a document is an edit to "no lines": everything it took is
  returned.
"""


DOCUMENT_RETRY_ON = DEFAULT_RETRY_ON + (IntegrityError,)


class DocumentError(Exception):
    """Raised for sales document errors."""
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


class DocumentNotFoundError(DocumentError):
    def __init__(self, document_id: int):
        super().__init__(f"Document {document_id} not found", details={"document_id": document_id})
        self.document_id = document_id


def get_document(document_id: int, *, lock: bool = False, include_deleted: bool = True) -> SalesDocument:
    query = db.session.query(SalesDocument).filter_by(id=document_id)
    if not include_deleted:
        query = query.filter(SalesDocument.status != "deleted")
    if lock:
        query = lock_for_update(query)
    doc = query.first()
    if doc is None:
        raise DocumentNotFoundError(document_id)
    return doc


def _snapshot_lines(doc: SalesDocument) -> list[dict]:
    return [{"product_id": line.product_id, "quantity": line.quantity} for line in doc.lines]


def _replace_lines(doc: SalesDocument, lines: list[dict]) -> None:
    doc.lines.clear()
    db.session.flush()
    for index, raw in enumerate(lines):
        doc.lines.append(
            SalesDocumentLine(
                product_id=raw.get("product_id"),
                description=raw.get("description"),
                quantity=normalize_quantity(raw.get("quantity")),
                unit_price_cents=raw.get("unit_price_cents") or 0,
                sort_order=index,
            )
        )


def _stock_note(doc: SalesDocument, action: str) -> str:
    return f"{doc.document_type.capitalize()} {doc.document_number} {action}"


def create_document(
    *,
    document_type: str,
    lines: list[dict],
    customer_id: int | None = None,
    created_by: int | None = None,
    document_date: date | None = None,
    service_occurrence_id: int | None = None,
    contract_interval_months: int | None = None,
) -> SalesDocument:
    """
    Create an invoice or service job and take its stock lines out of stock.

    When contract_interval_months is given on an invoice, the invoice also
    sells a recurring contract starting on the document date; contract and
    first occurrence are created in the same transaction.

    Raises:
        DocumentError: Unknown type, or a service link on an invoice
        InsufficientStockError / ProductNotFoundError: Nothing is saved
    """
    if document_type not in DOCUMENT_TYPES:
        raise DocumentError(
            f"Invalid document_type '{document_type}'. Must be one of: {', '.join(DOCUMENT_TYPES)}"
        )
    if contract_interval_months is not None and document_type != "invoice":
        raise DocumentError("Only invoices can start a recurring contract")
    if service_occurrence_id is not None and document_type != "service":
        raise DocumentError("Only service jobs can reference a service occurrence")

    doc_date = document_date or today()

    def _op():
        if service_occurrence_id is not None:
            if db.session.get(ServiceOccurrence, service_occurrence_id) is None:
                raise DocumentError(
                    f"Service occurrence {service_occurrence_id} not found",
                    details={"service_occurrence_id": service_occurrence_id},
                )

        doc = SalesDocument(
            document_type=document_type,
            document_number=next_document_number(document_type),
            customer_id=customer_id,
            document_date=doc_date,
            service_occurrence_id=service_occurrence_id,
            status="open",
            created_by=created_by,
        )
        db.session.add(doc)
        db.session.flush()

        # Stock first: unknown products fail here, not as a line FK violation
        apply_stock_deltas(
            diff_stock_lines([], lines),
            reference_type=document_type,
            reference_id=doc.id,
            note=_stock_note(doc, "created"),
            created_by=created_by,
        )
        _replace_lines(doc, lines)

        if contract_interval_months is not None:
            _create_contract_inner(
                customer_id=customer_id,
                start_date=doc_date,
                interval_months=contract_interval_months,
                source_document_id=doc.id,
                created_by=created_by,
            )

        db.session.commit()
        return doc

    return run_with_retry(_op, retry_on=DOCUMENT_RETRY_ON)


def update_document_lines(
    document_id: int,
    lines: list[dict],
    *,
    updated_by: int | None = None,
) -> SalesDocument:
    """
    Replace a document's lines, posting only the net stock change.

    Raises:
        DocumentNotFoundError: If the document does not exist or was deleted
        InsufficientStockError / ProductNotFoundError: Nothing is saved
    """
    def _op():
        doc = get_document(document_id, lock=True, include_deleted=False)
        previous = _snapshot_lines(doc)

        deltas = diff_stock_lines(previous, lines)
        apply_stock_deltas(
            deltas,
            reference_type=doc.document_type,
            reference_id=doc.id,
            note=_stock_note(doc, "edited"),
            created_by=updated_by,
        )
        _replace_lines(doc, lines)
        # Bump version_id even when only child rows changed
        doc.updated_at = utcnow()
        db.session.commit()
        return doc

    return run_with_retry(_op, retry_on=DOCUMENT_RETRY_ON)


def delete_document(document_id: int, *, deleted_by: int | None = None) -> SalesDocument:
    """
    Soft-delete a document and put everything it took back in stock.

    The row stays (status 'deleted') so ledger references still resolve;
    its lines are removed.
    """
    def _op():
        doc = get_document(document_id, lock=True, include_deleted=False)
        previous = _snapshot_lines(doc)

        apply_stock_deltas(
            diff_stock_lines(previous, []),
            reference_type=doc.document_type,
            reference_id=doc.id,
            note=_stock_note(doc, "deleted"),
            created_by=deleted_by,
        )
        _replace_lines(doc, [])
        doc.status = "deleted"
        doc.deleted_at = utcnow()
        doc.deleted_by = deleted_by
        db.session.commit()
        return doc

    return run_with_retry(_op, retry_on=DOCUMENT_RETRY_ON)
