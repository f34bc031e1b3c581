from __future__ import annotations

from ..extensions import db
from servicebook.time_utils import to_utc_z, to_iso_date


DOCUMENT_TYPES = ("invoice", "service")
DOCUMENT_STATUSES = ("open", "deleted")


def _one_of(column: str, values) -> str:
    return f"{column} IN (" + ", ".join(f"'{v}'" for v in values) + ")"


class SalesDocument(db.Model):
    """
    Invoice or service job whose stock lines move the stock ledger.

    The document owns its line items; the ledger owns stock. Every save of
    the lines posts only the net difference against what the document had
    already taken out of stock, referenced back to this document.
    """
    __tablename__ = "sales_documents"
    __table_args__ = (
        db.UniqueConstraint("document_type", "document_number", name="uq_sales_docs_type_number"),
        db.CheckConstraint(_one_of("document_type", DOCUMENT_TYPES), name="ck_sales_docs_type"),
        db.CheckConstraint(_one_of("status", DOCUMENT_STATUSES), name="ck_sales_docs_status"),
        db.Index("ix_sales_docs_customer", "customer_id"),
        db.Index("ix_sales_docs_type_status", "document_type", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # invoice | service
    document_type = db.Column(db.String(16), nullable=False)

    # Human-readable number (e.g., "INV-0042")
    document_number = db.Column(db.String(64), nullable=False)

    customer_id = db.Column(db.Integer, nullable=True)
    document_date = db.Column(db.Date, nullable=False)

    # Service jobs may record the parts used against an occurrence
    service_occurrence_id = db.Column(
        db.Integer, db.ForeignKey("service_occurrences.id"), nullable=True, index=True
    )

    status = db.Column(db.String(16), nullable=False, default="open", index=True)

    created_by = db.Column(db.Integer, nullable=True)
    deleted_by = db.Column(db.Integer, nullable=True)
    deleted_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )
    version_id = db.Column(db.Integer, nullable=False, default=1)

    lines = db.relationship(
        "SalesDocumentLine",
        backref="document",
        lazy=True,
        order_by="SalesDocumentLine.sort_order",
        cascade="all, delete-orphan",
    )
    service_occurrence = db.relationship("ServiceOccurrence", foreign_keys=[service_occurrence_id])

    __mapper_args__ = {"version_id_col": version_id}

    @property
    def total_cents(self) -> int:
        return sum(line.line_total_cents for line in self.lines)

    def __repr__(self) -> str:
        return f"<SalesDocument id={self.id} number={self.document_number!r} status={self.status}>"

    def to_dict(self, *, include_lines: bool = True) -> dict:
        data = {
            "id": self.id,
            "document_type": self.document_type,
            "document_number": self.document_number,
            "customer_id": self.customer_id,
            "document_date": to_iso_date(self.document_date),
            "service_occurrence_id": self.service_occurrence_id,
            "status": self.status,
            "total_cents": self.total_cents,
            "created_by": self.created_by,
            "deleted_by": self.deleted_by,
            "deleted_at": to_utc_z(self.deleted_at) if self.deleted_at else None,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "version_id": self.version_id,
        }
        if include_lines:
            data["lines"] = [line.to_dict() for line in self.lines]
        return data


class SalesDocumentLine(db.Model):
    """
    Line item on a sales document.

    product_id is NULL for manual (non-stock) lines; those never touch the
    ledger.
    """
    __tablename__ = "sales_document_lines"
    __table_args__ = (
        db.CheckConstraint("quantity >= 0", name="ck_sales_doc_lines_qty_non_negative"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    document_id = db.Column(db.Integer, db.ForeignKey("sales_documents.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("stock_items.id"), nullable=True, index=True)

    description = db.Column(db.String(255), nullable=True)
    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False, default=0)
    sort_order = db.Column(db.Integer, nullable=False, default=0)

    product = db.relationship("StockItem")

    @property
    def line_total_cents(self) -> int:
        return (self.quantity or 0) * (self.unit_price_cents or 0)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "document_id": self.document_id,
            "product_id": self.product_id,
            "description": self.description,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "line_total_cents": self.line_total_cents,
            "sort_order": self.sort_order,
        }


class DocumentSequence(db.Model):
    """
    Atomic per-type document sequences.

    WHY: Prevent race conditions when generating document numbers
    (invoices, service jobs, contracts).
    """
    __tablename__ = "document_sequences"
    __table_args__ = (
        db.UniqueConstraint("document_type", name="uq_doc_sequences_type"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    document_type = db.Column(db.String(32), nullable=False, index=True)
    next_number = db.Column(db.Integer, nullable=False, default=1)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "document_type": self.document_type,
            "next_number": self.next_number,
            "updated_at": to_utc_z(self.updated_at),
        }
