from __future__ import annotations

from ..extensions import db
from servicebook.time_utils import to_utc_z, to_iso_date


CONTRACT_STATUSES = ("active", "completed", "cancelled")
OCCURRENCE_STATUSES = ("scheduled", "in_progress", "completed", "cancelled")
PENDING_OCCURRENCE_STATUSES = ("scheduled", "in_progress")


def _status_in(statuses) -> str:
    return "status IN (" + ", ".join(f"'{s}'" for s in statuses) + ")"


_PENDING_WHERE = db.text(_status_in(PENDING_OCCURRENCE_STATUSES))


class RecurringContract(db.Model):
    """
    Recurring service (AMC) contract.

    CADENCE:
    - next_occurrence_date is the single authoritative "next service / period
      end" date. Only the scheduler moves it; nothing recomputes it from
      interval_months * occurrences at read time.
    - end_date rolls forward with next_occurrence_date on every completion,
      so an active contract behaves like a rolling subscription.

    RENEWAL:
    - A renewal is a new row pointing back through renewed_from_id. The
      unique constraint on renewed_from_id means a period can be renewed
      once, so retries of a renewal cannot fork the contract history.
    """
    __tablename__ = "recurring_contracts"
    __table_args__ = (
        db.UniqueConstraint("contract_number", name="uq_contracts_number"),
        db.UniqueConstraint("renewed_from_id", name="uq_contracts_renewed_from"),
        db.CheckConstraint("interval_months >= 1", name="ck_contracts_interval_positive"),
        db.CheckConstraint("occurrences_completed >= 0", name="ck_contracts_completed_non_negative"),
        db.CheckConstraint(_status_in(CONTRACT_STATUSES), name="ck_contracts_status"),
        db.Index("ix_contracts_status_end_date", "status", "end_date"),
        db.Index("ix_contracts_customer", "customer_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    contract_number = db.Column(db.String(64), nullable=False)

    customer_id = db.Column(db.Integer, nullable=True)
    # Invoice that sold the contract; plain reference keeps the FK graph acyclic
    source_document_id = db.Column(db.Integer, nullable=True, index=True)
    renewed_from_id = db.Column(db.Integer, db.ForeignKey("recurring_contracts.id"), nullable=True)

    start_date = db.Column(db.Date, nullable=False)
    end_date = db.Column(db.Date, nullable=False)
    interval_months = db.Column(db.Integer, nullable=False)

    total_occurrences_included = db.Column(db.Integer, nullable=False, default=1)
    occurrences_completed = db.Column(db.Integer, nullable=False, default=0)

    # active | completed | cancelled
    status = db.Column(db.String(16), nullable=False, default="active", index=True)
    next_occurrence_date = db.Column(db.Date, nullable=True, index=True)

    ended_at = db.Column(db.DateTime(timezone=True), nullable=True)
    ended_by = db.Column(db.Integer, nullable=True)
    end_reason = db.Column(db.String(255), nullable=True)

    created_by = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )
    version_id = db.Column(db.Integer, nullable=False, default=1)

    renewed_from = db.relationship("RecurringContract", remote_side=[id], uselist=False)

    __mapper_args__ = {"version_id_col": version_id}

    @property
    def is_active(self) -> bool:
        return self.status == "active"

    @property
    def occurrences_remaining(self) -> int:
        return max(0, (self.total_occurrences_included or 0) - (self.occurrences_completed or 0))

    def __repr__(self) -> str:
        return f"<RecurringContract id={self.id} number={self.contract_number!r} status={self.status}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "contract_number": self.contract_number,
            "customer_id": self.customer_id,
            "source_document_id": self.source_document_id,
            "renewed_from_id": self.renewed_from_id,
            "start_date": to_iso_date(self.start_date),
            "end_date": to_iso_date(self.end_date),
            "interval_months": self.interval_months,
            "total_occurrences_included": self.total_occurrences_included,
            "occurrences_completed": self.occurrences_completed,
            "occurrences_remaining": self.occurrences_remaining,
            "status": self.status,
            "next_occurrence_date": to_iso_date(self.next_occurrence_date),
            "ended_at": to_utc_z(self.ended_at) if self.ended_at else None,
            "ended_by": self.ended_by,
            "end_reason": self.end_reason,
            "created_by": self.created_by,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "version_id": self.version_id,
        }


class ServiceOccurrence(db.Model):
    """
    One scheduled visit, either of a recurring contract or a one-off job.

    LIFECYCLE:
        scheduled -> in_progress -> completed
        scheduled -> completed            (completed without a start)
        scheduled | in_progress -> cancelled

    At most one scheduled/in_progress row may exist per contract. The partial
    unique index enforces it in the database; the scheduler's read-before-
    insert check is only the fast path.
    """
    __tablename__ = "service_occurrences"
    __table_args__ = (
        db.Index(
            "uq_service_occurrences_one_pending",
            "contract_id",
            unique=True,
            sqlite_where=_PENDING_WHERE,
            postgresql_where=_PENDING_WHERE,
        ),
        db.CheckConstraint(_status_in(OCCURRENCE_STATUSES), name="ck_service_occurrences_status"),
        db.Index("ix_service_occurrences_status_date", "status", "scheduled_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    contract_id = db.Column(db.Integer, db.ForeignKey("recurring_contracts.id"), nullable=True, index=True)
    customer_id = db.Column(db.Integer, nullable=True)

    # scheduled | in_progress | completed | cancelled
    status = db.Column(db.String(16), nullable=False, default="scheduled")

    scheduled_date = db.Column(db.Date, nullable=False)
    started_at = db.Column(db.DateTime(timezone=True), nullable=True)
    started_by = db.Column(db.Integer, nullable=True)
    completed_date = db.Column(db.Date, nullable=True)
    completed_by = db.Column(db.Integer, nullable=True)
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)

    description = db.Column(db.String(255), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )
    version_id = db.Column(db.Integer, nullable=False, default=1)

    contract = db.relationship("RecurringContract", backref=db.backref("occurrences", lazy="dynamic"))

    __mapper_args__ = {"version_id_col": version_id}

    @property
    def is_pending(self) -> bool:
        return self.status in PENDING_OCCURRENCE_STATUSES

    def __repr__(self) -> str:
        return (
            f"<ServiceOccurrence id={self.id} contract_id={self.contract_id} "
            f"status={self.status} scheduled={self.scheduled_date}>"
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "contract_id": self.contract_id,
            "customer_id": self.customer_id,
            "status": self.status,
            "scheduled_date": to_iso_date(self.scheduled_date),
            "started_at": to_utc_z(self.started_at) if self.started_at else None,
            "started_by": self.started_by,
            "completed_date": to_iso_date(self.completed_date),
            "completed_by": self.completed_by,
            "cancelled_at": to_utc_z(self.cancelled_at) if self.cancelled_at else None,
            "description": self.description,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "version_id": self.version_id,
        }
