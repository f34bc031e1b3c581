# Overview: Service-layer operations for recurring service contracts; creation, ending and renewal.

from __future__ import annotations

import logging
from datetime import date, timedelta

from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import RecurringContract, ServiceOccurrence
from ..models.contracts import PENDING_OCCURRENCE_STATUSES
from ..time_utils import add_months, today, utcnow
from .concurrency import DEFAULT_RETRY_ON, lock_for_update, run_with_retry
from .sequence_service import next_document_number
"""
Servicebook Contract Invariants (authoritative)

- next_occurrence_date is the only stored answer to "when is the next
  service / when does this period end". It is written at creation and by
  the scheduler on each completion; nothing recomputes it from
  interval_months * occurrences.
- A contract has at most one scheduled/in_progress occurrence. The partial
  unique index uq_service_occurrences_one_pending is the authority; code
  checks first only to avoid the round trip to a constraint violation.
- Ended contracts (completed/cancelled) never get new occurrences.
- Renewal creates a NEW contract row linked by renewed_from_id; the old row
  is closed, not mutated into the new period.
"""


logger = logging.getLogger(__name__)

CONTRACT_END_STATUSES = ("completed", "cancelled")

# Sequence and pending-occurrence races both surface as IntegrityError
CONTRACT_RETRY_ON = DEFAULT_RETRY_ON + (IntegrityError,)


class ContractError(Exception):
    """Raised for recurring contract errors."""
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


class ContractNotFoundError(ContractError):
    def __init__(self, contract_id: int):
        super().__init__(f"Contract {contract_id} not found", details={"contract_id": contract_id})
        self.contract_id = contract_id


class ContractStateError(ContractError):
    """The contract's status does not allow the requested action."""


def get_contract(contract_id: int, *, lock: bool = False) -> RecurringContract:
    query = db.session.query(RecurringContract).filter_by(id=contract_id)
    if lock:
        query = lock_for_update(query)
    contract = query.first()
    if contract is None:
        raise ContractNotFoundError(contract_id)
    return contract


def get_pending_occurrence(contract_id: int) -> ServiceOccurrence | None:
    return (
        db.session.query(ServiceOccurrence)
        .filter(
            ServiceOccurrence.contract_id == contract_id,
            ServiceOccurrence.status.in_(PENDING_OCCURRENCE_STATUSES),
        )
        .order_by(ServiceOccurrence.id.asc())
        .first()
    )


def schedule_contract_occurrence(contract: RecurringContract, scheduled_date: date) -> ServiceOccurrence:
    """Insert the contract's next pending occurrence. Flushes; no commit."""
    occurrence = ServiceOccurrence(
        contract_id=contract.id,
        customer_id=contract.customer_id,
        status="scheduled",
        scheduled_date=scheduled_date,
        description=f"Scheduled service for {contract.contract_number}",
    )
    db.session.add(occurrence)
    db.session.flush()
    return occurrence


def _default_interval() -> int:
    return int(current_app.config.get("DEFAULT_SERVICE_INTERVAL_MONTHS", 3))


def _create_contract_inner(
    *,
    customer_id: int | None,
    start_date: date,
    interval_months: int,
    total_occurrences_included: int = 1,
    source_document_id: int | None = None,
    renewed_from_id: int | None = None,
    created_by: int | None = None,
) -> RecurringContract:
    """Core creation logic without retry or commit.

    Called by create_contract(), renew_contract() and the invoice flow in
    document_service.
    """
    if interval_months is None or interval_months < 1:
        raise ContractError("interval_months must be >= 1", details={"interval_months": interval_months})
    if total_occurrences_included is None or total_occurrences_included < 1:
        raise ContractError(
            "total_occurrences_included must be >= 1",
            details={"total_occurrences_included": total_occurrences_included},
        )

    first_date = add_months(start_date, interval_months)
    contract = RecurringContract(
        contract_number=next_document_number("contract"),
        customer_id=customer_id,
        source_document_id=source_document_id,
        renewed_from_id=renewed_from_id,
        start_date=start_date,
        end_date=first_date,
        interval_months=interval_months,
        total_occurrences_included=total_occurrences_included,
        occurrences_completed=0,
        status="active",
        next_occurrence_date=first_date,
        created_by=created_by,
    )
    db.session.add(contract)
    db.session.flush()

    schedule_contract_occurrence(contract, first_date)
    return contract


def create_contract(
    *,
    customer_id: int | None,
    start_date: date | None = None,
    interval_months: int | None = None,
    total_occurrences_included: int = 1,
    source_document_id: int | None = None,
    created_by: int | None = None,
    commit: bool = True,
) -> RecurringContract:
    """
    Create an active contract and its first scheduled occurrence.

    The first occurrence (and the initial end_date / next_occurrence_date)
    is start_date + interval_months.

    commit=False runs inside the caller's transaction (the invoice flow);
    the caller owns retry and commit.
    """
    if start_date is None:
        start_date = today()
    if interval_months is None:
        interval_months = _default_interval()

    def _inner():
        return _create_contract_inner(
            customer_id=customer_id,
            start_date=start_date,
            interval_months=interval_months,
            total_occurrences_included=total_occurrences_included,
            source_document_id=source_document_id,
            created_by=created_by,
        )

    if not commit:
        return _inner()

    def _op():
        contract = _inner()
        db.session.commit()
        return contract

    return run_with_retry(_op, retry_on=CONTRACT_RETRY_ON)


def _close_contract(contract: RecurringContract, *, status: str, reason: str | None, ended_by: int | None) -> list[ServiceOccurrence]:
    """Move a contract to a terminal status and cancel its not-yet-started occurrences."""
    now = utcnow()
    contract.status = status
    contract.ended_at = now
    contract.ended_by = ended_by
    contract.end_reason = reason
    contract.next_occurrence_date = None

    cancelled = (
        db.session.query(ServiceOccurrence)
        .filter(
            ServiceOccurrence.contract_id == contract.id,
            ServiceOccurrence.status == "scheduled",
        )
        .all()
    )
    for occurrence in cancelled:
        occurrence.status = "cancelled"
        occurrence.cancelled_at = now
    return cancelled


def end_contract(
    contract_id: int,
    *,
    status: str = "cancelled",
    reason: str | None = None,
    ended_by: int | None = None,
) -> RecurringContract:
    """
    End an active contract early (customer cancelled, service finished).

    Scheduled occurrences are cancelled. An occurrence already in progress
    may still be completed, but the scheduler books nothing after it.
    """
    if status not in CONTRACT_END_STATUSES:
        raise ContractError(
            f"Invalid end status '{status}'. Must be one of: {', '.join(CONTRACT_END_STATUSES)}"
        )

    def _op():
        contract = get_contract(contract_id, lock=True)
        if not contract.is_active:
            raise ContractStateError(
                f"Contract {contract.contract_number} is already {contract.status}",
                details={"contract_id": contract.id, "status": contract.status},
            )
        _close_contract(contract, status=status, reason=reason, ended_by=ended_by)
        db.session.commit()
        return contract

    return run_with_retry(_op)


def renew_contract(
    contract_id: int,
    *,
    as_of: date | None = None,
    created_by: int | None = None,
) -> RecurringContract:
    """
    Start the next contract period for a lapsed active contract.

    The new contract begins the day after the old end_date and inherits
    interval_months and total_occurrences_included. The old contract is
    closed as completed with its pending occurrence cancelled.

    Raises:
        ContractNotFoundError: If the contract does not exist
        ContractStateError: If it is not active, has not lapsed yet, or was
            already renewed
    """
    if as_of is None:
        as_of = today()

    def _op():
        old = get_contract(contract_id, lock=True)
        if not old.is_active:
            raise ContractStateError(
                f"Contract {old.contract_number} is {old.status} and cannot be renewed",
                details={"contract_id": old.id, "status": old.status},
            )
        if old.end_date >= as_of:
            raise ContractStateError(
                f"Contract {old.contract_number} runs until {old.end_date.isoformat()}",
                details={"contract_id": old.id, "end_date": old.end_date.isoformat()},
            )
        already = db.session.query(RecurringContract.id).filter_by(renewed_from_id=old.id).first()
        if already is not None:
            raise ContractStateError(
                f"Contract {old.contract_number} was already renewed",
                details={"contract_id": old.id, "renewal_id": already[0]},
            )

        _close_contract(old, status="completed", reason="renewed", ended_by=created_by)
        pending = get_pending_occurrence(old.id)
        if pending is not None:
            # Lapsed period: an in-progress visit belongs to the old contract
            pending.status = "cancelled"
            pending.cancelled_at = utcnow()
        db.session.flush()

        renewed = _create_contract_inner(
            customer_id=old.customer_id,
            start_date=old.end_date + timedelta(days=1),
            interval_months=old.interval_months,
            total_occurrences_included=old.total_occurrences_included,
            source_document_id=old.source_document_id,
            renewed_from_id=old.id,
            created_by=created_by,
        )
        db.session.commit()
        logger.info("Renewed contract %s as %s", old.contract_number, renewed.contract_number)
        return renewed

    return run_with_retry(_op, retry_on=CONTRACT_RETRY_ON)


def list_contracts_due_for_renewal(as_of: date | None = None, *, limit: int = 200) -> list[RecurringContract]:
    """Active contracts whose end_date has passed, oldest first."""
    if as_of is None:
        as_of = today()
    return (
        db.session.query(RecurringContract)
        .filter(
            RecurringContract.status == "active",
            RecurringContract.end_date < as_of,
        )
        .order_by(RecurringContract.end_date.asc(), RecurringContract.id.asc())
        .limit(limit)
        .all()
    )


def ensure_pending_occurrences() -> list[ServiceOccurrence]:
    """
    Book the next visit for every active contract that has none pending.

    Repairs contracts whose pending occurrence was cancelled by hand. The
    visit goes on next_occurrence_date.
    """
    def _op():
        has_pending = (
            db.session.query(ServiceOccurrence.id)
            .filter(
                ServiceOccurrence.contract_id == RecurringContract.id,
                ServiceOccurrence.status.in_(PENDING_OCCURRENCE_STATUSES),
            )
            .exists()
        )
        contracts = (
            db.session.query(RecurringContract)
            .filter(
                RecurringContract.status == "active",
                RecurringContract.next_occurrence_date.isnot(None),
                ~has_pending,
            )
            .order_by(RecurringContract.id.asc())
            .all()
        )
        created = [schedule_contract_occurrence(c, c.next_occurrence_date) for c in contracts]
        db.session.commit()
        return created

    created = run_with_retry(_op, retry_on=CONTRACT_RETRY_ON)
    if created:
        logger.info("Scheduled %d missing occurrence(s)", len(created))
    return created


def find_contract_for_document(document_id: int) -> RecurringContract | None:
    """Contract sold on an invoice, if any."""
    return (
        db.session.query(RecurringContract)
        .filter_by(source_document_id=document_id, renewed_from_id=None)
        .first()
    )
