# Overview: Pytest coverage for recurring contract creation, ending, renewal and repair.

from datetime import date

import pytest
from sqlalchemy.exc import IntegrityError

from servicebook.models import RecurringContract, ServiceOccurrence
from servicebook.services import contract_service, scheduler_service
from servicebook.services.contract_service import ContractError, ContractNotFoundError, ContractStateError


def _occurrences(db_session, contract_id):
    return (
        db_session.query(ServiceOccurrence)
        .filter_by(contract_id=contract_id)
        .order_by(ServiceOccurrence.id)
        .all()
    )


class TestCreateContract:
    def test_first_occurrence_one_interval_out(self, db_session, make_contract):
        contract = make_contract(start_date=date(2023, 10, 10), interval_months=3)

        assert contract.contract_number == "AMC-0001"
        assert contract.status == "active"
        assert contract.end_date == date(2024, 1, 10)
        assert contract.next_occurrence_date == date(2024, 1, 10)
        assert contract.occurrences_completed == 0

        occurrences = _occurrences(db_session, contract.id)
        assert [(o.status, o.scheduled_date) for o in occurrences] == [("scheduled", date(2024, 1, 10))]

    def test_default_interval_from_config(self, db_session, app):
        contract = contract_service.create_contract(customer_id=1, start_date=date(2024, 1, 1))
        assert contract.interval_months == app.config["DEFAULT_SERVICE_INTERVAL_MONTHS"]

    def test_invalid_interval(self, db_session, make_contract):
        with pytest.raises(ContractError):
            make_contract(interval_months=0)
        assert db_session.query(RecurringContract).count() == 0

    def test_database_allows_one_pending_occurrence(self, db_session, make_contract):
        """The partial unique index backs the scheduler's check."""
        contract = make_contract()
        db_session.add(
            ServiceOccurrence(contract_id=contract.id, status="scheduled", scheduled_date=date(2024, 2, 1))
        )
        with pytest.raises(IntegrityError):
            db_session.flush()
        db_session.rollback()

    def test_database_rejects_unknown_statuses(self, db_session, make_contract):
        contract = make_contract()
        contract.status = "paused"
        with pytest.raises(IntegrityError):
            db_session.flush()
        db_session.rollback()

        db_session.add(ServiceOccurrence(contract_id=None, status="done", scheduled_date=date(2024, 2, 1)))
        with pytest.raises(IntegrityError):
            db_session.flush()
        db_session.rollback()

    def test_terminal_occurrences_are_not_limited(self, db_session, make_contract):
        contract = make_contract()
        for day in (1, 2):
            db_session.add(
                ServiceOccurrence(contract_id=contract.id, status="cancelled", scheduled_date=date(2024, 2, day))
            )
        db_session.commit()
        assert len(_occurrences(db_session, contract.id)) == 3


class TestEndContract:
    def test_cancels_scheduled_occurrences(self, db_session, make_contract):
        contract = make_contract()

        ended = contract_service.end_contract(contract.id, status="cancelled", reason="Customer moved", ended_by=4)

        assert ended.status == "cancelled"
        assert ended.end_reason == "Customer moved"
        assert ended.ended_by == 4
        assert ended.next_occurrence_date is None
        assert [o.status for o in _occurrences(db_session, contract.id)] == ["cancelled"]

    def test_in_progress_visit_survives(self, db_session, make_contract):
        contract = make_contract()
        occurrence = _occurrences(db_session, contract.id)[0]
        scheduler_service.start_occurrence(occurrence.id)

        contract_service.end_contract(contract.id, status="completed")

        assert _occurrences(db_session, contract.id)[0].status == "in_progress"

    def test_end_twice(self, db_session, make_contract):
        contract = make_contract()
        contract_service.end_contract(contract.id)
        with pytest.raises(ContractStateError):
            contract_service.end_contract(contract.id)

    def test_invalid_end_status(self, db_session, make_contract):
        contract = make_contract()
        with pytest.raises(ContractError):
            contract_service.end_contract(contract.id, status="active")

    def test_missing_contract(self, db_session):
        with pytest.raises(ContractNotFoundError):
            contract_service.end_contract(999999)


class TestRenewContract:
    def test_renewal_is_a_new_contract(self, db_session, make_contract):
        old = make_contract(start_date=date(2023, 10, 10), interval_months=3, total_occurrences_included=4)
        old_id = old.id

        renewed = contract_service.renew_contract(old_id, as_of=date(2024, 2, 1), created_by=6)

        assert renewed.id != old_id
        assert renewed.renewed_from_id == old_id
        assert renewed.start_date == date(2024, 1, 11)
        assert renewed.interval_months == 3
        assert renewed.total_occurrences_included == 4
        assert renewed.next_occurrence_date == date(2024, 4, 11)
        assert renewed.status == "active"

        old = contract_service.get_contract(old_id)
        assert old.status == "completed"
        assert old.end_reason == "renewed"
        assert [o.status for o in _occurrences(db_session, old_id)] == ["cancelled"]
        assert [o.status for o in _occurrences(db_session, renewed.id)] == ["scheduled"]

    def test_not_lapsed_yet(self, db_session, make_contract):
        contract = make_contract(start_date=date(2023, 10, 10))
        with pytest.raises(ContractStateError):
            contract_service.renew_contract(contract.id, as_of=date(2024, 1, 10))

    def test_renewed_only_once(self, db_session, make_contract):
        contract = make_contract(start_date=date(2023, 10, 10))
        contract_service.renew_contract(contract.id, as_of=date(2024, 2, 1))
        with pytest.raises(ContractStateError):
            contract_service.renew_contract(contract.id, as_of=date(2024, 2, 1))
        assert db_session.query(RecurringContract).count() == 2

    def test_in_progress_visit_is_cancelled_with_the_period(self, db_session, make_contract):
        contract = make_contract(start_date=date(2023, 10, 10))
        scheduler_service.start_occurrence(_occurrences(db_session, contract.id)[0].id)

        contract_service.renew_contract(contract.id, as_of=date(2024, 2, 1))

        assert [o.status for o in _occurrences(db_session, contract.id)] == ["cancelled"]

    def test_due_for_renewal(self, db_session, make_contract):
        lapsed = make_contract(start_date=date(2023, 10, 10))
        make_contract(start_date=date(2024, 1, 15))
        ended = make_contract(start_date=date(2023, 9, 1))
        contract_service.end_contract(ended.id)

        due = contract_service.list_contracts_due_for_renewal(date(2024, 2, 1))
        assert [c.id for c in due] == [lapsed.id]


class TestEnsurePendingOccurrences:
    def test_rebooks_cancelled_visit(self, db_session, make_contract):
        contract = make_contract(start_date=date(2023, 10, 10))
        first = _occurrences(db_session, contract.id)[0]
        scheduler_service.cancel_occurrence(first.id)

        created = contract_service.ensure_pending_occurrences()

        assert len(created) == 1
        assert created[0].contract_id == contract.id
        assert created[0].scheduled_date == date(2024, 1, 10)

    def test_idempotent(self, db_session, make_contract):
        make_contract()
        assert contract_service.ensure_pending_occurrences() == []
        assert contract_service.ensure_pending_occurrences() == []

    def test_skips_ended_contracts(self, db_session, make_contract):
        contract = make_contract()
        contract_service.end_contract(contract.id)
        assert contract_service.ensure_pending_occurrences() == []
