# Overview: Service-layer allocation of human-readable document numbers.

from __future__ import annotations

from sqlalchemy import update

from ..extensions import db
from ..models import DocumentSequence


# document_type -> printed prefix
DOCUMENT_PREFIXES = {
    "invoice": "INV",
    "service": "SRV",
    "contract": "AMC",
}


class DocumentSequenceError(Exception):
    """Raised when document sequence operations fail."""
    pass


def next_document_number(document_type: str, *, prefix: str | None = None, pad: int = 4) -> str:
    """
    Allocate the next number for a document type inside the caller's transaction.

    The counter row is bumped with an UPDATE so two writers serialize on it.
    When the row does not exist yet it is inserted; a concurrent first insert
    surfaces as IntegrityError on the unique document_type, and the caller's
    run_with_retry (with IntegrityError in retry_on) replays the whole unit
    of work, which then finds the row.
    """
    if not document_type:
        raise DocumentSequenceError("document_type is required")
    if prefix is None:
        prefix = DOCUMENT_PREFIXES.get(document_type)
        if prefix is None:
            raise DocumentSequenceError(f"No prefix configured for document type '{document_type}'")

    stmt = (
        update(DocumentSequence)
        .where(DocumentSequence.document_type == document_type)
        .values(next_number=DocumentSequence.next_number + 1)
        .execution_options(synchronize_session=False)
    )
    result = db.session.execute(stmt)
    if result.rowcount:
        current = (
            db.session.query(DocumentSequence.next_number)
            .filter_by(document_type=document_type)
            .scalar()
        )
        next_num = current - 1
    else:
        db.session.add(DocumentSequence(document_type=document_type, next_number=2))
        db.session.flush()
        next_num = 1

    return f"{prefix}-{next_num:0{pad}d}"
