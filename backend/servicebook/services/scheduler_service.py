# Overview: Service-layer operations for service occurrences; completion drives the contract cadence.

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, timedelta

from ..extensions import db
from ..models import RecurringContract, ServiceOccurrence
from ..models.contracts import PENDING_OCCURRENCE_STATUSES
from ..time_utils import add_months, today, utcnow
from .concurrency import lock_for_update, run_with_retry
from .contract_service import (
    CONTRACT_RETRY_ON,
    get_contract,
    get_pending_occurrence,
    schedule_contract_occurrence,
)
"""
Servicebook Scheduler Invariants (authoritative)

Completing an occurrence of an ACTIVE contract:
    next_date = completed_date + interval_months
    if the contract has no other scheduled/in_progress occurrence:
        insert an occurrence at next_date
        occurrences_completed += 1
        next_occurrence_date = end_date = next_date
    else:
        occurrences_completed += 1        (no second pending occurrence)

- The check above is a fast path. Two concurrent completions can both pass
  it; the partial unique index then rejects the second insert, the unit of
  work is rolled back and replayed, and the replay sees the winner's
  occurrence and takes the "pending exists" branch.
- Completing an occurrence that is already completed (duplicate delivery)
  never books a visit and never moves next_occurrence_date or end_date. If
  the contract has a pending occurrence the counter is still bumped;
  otherwise nothing changes and the outcome is "already_completed".
- Inactive contracts get no new occurrences.
"""


logger = logging.getLogger(__name__)

OUTCOME_NEXT_SCHEDULED = "next_scheduled"
OUTCOME_PENDING_EXISTS = "pending_exists"
OUTCOME_CONTRACT_INACTIVE = "contract_inactive"
OUTCOME_NOT_RECURRING = "not_recurring"
OUTCOME_ALREADY_COMPLETED = "already_completed"


class SchedulerError(Exception):
    """Raised for service occurrence errors."""
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


class OccurrenceNotFoundError(SchedulerError):
    def __init__(self, occurrence_id: int):
        super().__init__(f"Service occurrence {occurrence_id} not found", details={"occurrence_id": occurrence_id})
        self.occurrence_id = occurrence_id


class OccurrenceStateError(SchedulerError):
    """The occurrence's status does not allow the requested transition."""


@dataclass(frozen=True)
class CompletionResult:
    outcome: str
    occurrence: ServiceOccurrence
    contract: RecurringContract | None = None
    next_occurrence: ServiceOccurrence | None = None

    @property
    def next_scheduled(self) -> bool:
        return self.outcome == OUTCOME_NEXT_SCHEDULED

    def to_dict(self) -> dict:
        return {
            "outcome": self.outcome,
            "occurrence": self.occurrence.to_dict(),
            "contract": self.contract.to_dict() if self.contract is not None else None,
            "next_occurrence": self.next_occurrence.to_dict() if self.next_occurrence is not None else None,
        }


def get_occurrence(occurrence_id: int, *, lock: bool = False) -> ServiceOccurrence:
    query = db.session.query(ServiceOccurrence).filter_by(id=occurrence_id)
    if lock:
        query = lock_for_update(query)
    occurrence = query.first()
    if occurrence is None:
        raise OccurrenceNotFoundError(occurrence_id)
    return occurrence


def create_one_off_occurrence(
    *,
    scheduled_date: date,
    customer_id: int | None = None,
    description: str | None = None,
) -> ServiceOccurrence:
    """Book a visit that belongs to no contract (warranty call, paid repair)."""
    occurrence = ServiceOccurrence(
        contract_id=None,
        customer_id=customer_id,
        status="scheduled",
        scheduled_date=scheduled_date,
        description=description,
    )
    db.session.add(occurrence)
    db.session.commit()
    return occurrence


def start_occurrence(occurrence_id: int, *, started_by: int | None = None) -> ServiceOccurrence:
    def _op():
        occurrence = get_occurrence(occurrence_id, lock=True)
        if occurrence.status != "scheduled":
            raise OccurrenceStateError(
                f"Cannot start an occurrence that is {occurrence.status}",
                details={"occurrence_id": occurrence.id, "status": occurrence.status},
            )
        occurrence.status = "in_progress"
        occurrence.started_at = utcnow()
        occurrence.started_by = started_by
        db.session.commit()
        return occurrence

    return run_with_retry(_op)


def complete_occurrence(
    occurrence_id: int,
    *,
    completed_date: date | None = None,
    completed_by: int | None = None,
) -> CompletionResult:
    """
    Mark an occurrence completed and book the contract's next visit.

    Returns a CompletionResult whose outcome says what happened to the
    cadence: next_scheduled, pending_exists, already_completed,
    contract_inactive or not_recurring.

    Raises:
        OccurrenceNotFoundError: If the occurrence does not exist
        OccurrenceStateError: If the occurrence was cancelled
    """
    def _op():
        occurrence = get_occurrence(occurrence_id, lock=True)
        if occurrence.status == "cancelled":
            raise OccurrenceStateError(
                "Cannot complete a cancelled occurrence",
                details={"occurrence_id": occurrence.id, "status": occurrence.status},
            )

        already_completed = occurrence.status == "completed"
        if not already_completed:
            occurrence.status = "completed"
            occurrence.completed_date = completed_date or today()
            occurrence.completed_by = completed_by

        if occurrence.contract_id is None:
            db.session.commit()
            return CompletionResult(OUTCOME_NOT_RECURRING, occurrence)

        contract = get_contract(occurrence.contract_id, lock=True)
        if not contract.is_active:
            db.session.commit()
            return CompletionResult(OUTCOME_CONTRACT_INACTIVE, occurrence, contract)

        if already_completed:
            # Duplicate delivery: the cadence already moved on this occurrence
            pending = get_pending_occurrence(contract.id)
            if pending is None:
                logger.info("Occurrence %s already completed; nothing to book", occurrence.id)
                db.session.commit()
                return CompletionResult(OUTCOME_ALREADY_COMPLETED, occurrence, contract)
            contract.occurrences_completed = (contract.occurrences_completed or 0) + 1
            db.session.commit()
            return CompletionResult(OUTCOME_PENDING_EXISTS, occurrence, contract, pending)

        contract.occurrences_completed = (contract.occurrences_completed or 0) + 1
        db.session.flush()

        pending = get_pending_occurrence(contract.id)
        if pending is not None:
            logger.info(
                "Contract %s already has pending occurrence %s; none added",
                contract.contract_number,
                pending.id,
            )
            db.session.commit()
            return CompletionResult(OUTCOME_PENDING_EXISTS, occurrence, contract, pending)

        next_date = add_months(occurrence.completed_date, contract.interval_months)
        next_occurrence = schedule_contract_occurrence(contract, next_date)
        contract.next_occurrence_date = next_date
        contract.end_date = next_date
        db.session.commit()
        return CompletionResult(OUTCOME_NEXT_SCHEDULED, occurrence, contract, next_occurrence)

    return run_with_retry(_op, retry_on=CONTRACT_RETRY_ON)


def cancel_occurrence(occurrence_id: int) -> ServiceOccurrence:
    """
    Cancel a pending occurrence.

    The contract keeps its next_occurrence_date; ensure_pending_occurrences()
    books a replacement on that date.
    """
    def _op():
        occurrence = get_occurrence(occurrence_id, lock=True)
        if not occurrence.is_pending:
            raise OccurrenceStateError(
                f"Cannot cancel an occurrence that is {occurrence.status}",
                details={"occurrence_id": occurrence.id, "status": occurrence.status},
            )
        occurrence.status = "cancelled"
        occurrence.cancelled_at = utcnow()
        db.session.commit()
        return occurrence

    return run_with_retry(_op)


def list_occurrences(contract_id: int) -> list[ServiceOccurrence]:
    get_contract(contract_id)
    return (
        db.session.query(ServiceOccurrence)
        .filter_by(contract_id=contract_id)
        .order_by(ServiceOccurrence.scheduled_date.asc(), ServiceOccurrence.id.asc())
        .all()
    )


def list_upcoming_occurrences(as_of: date | None = None, *, days: int = 30, limit: int = 100) -> list[ServiceOccurrence]:
    """Pending occurrences due from as_of through as_of + days (inclusive)."""
    if as_of is None:
        as_of = today()
    return (
        db.session.query(ServiceOccurrence)
        .filter(
            ServiceOccurrence.status.in_(PENDING_OCCURRENCE_STATUSES),
            ServiceOccurrence.scheduled_date >= as_of,
            ServiceOccurrence.scheduled_date <= as_of + timedelta(days=days),
        )
        .order_by(ServiceOccurrence.scheduled_date.asc(), ServiceOccurrence.id.asc())
        .limit(limit)
        .all()
    )


def list_overdue_occurrences(as_of: date | None = None, *, limit: int = 100) -> list[ServiceOccurrence]:
    """Pending occurrences whose date is before as_of."""
    if as_of is None:
        as_of = today()
    return (
        db.session.query(ServiceOccurrence)
        .filter(
            ServiceOccurrence.status.in_(PENDING_OCCURRENCE_STATUSES),
            ServiceOccurrence.scheduled_date < as_of,
        )
        .order_by(ServiceOccurrence.scheduled_date.asc(), ServiceOccurrence.id.asc())
        .limit(limit)
        .all()
    )
