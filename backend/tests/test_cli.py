# Overview: Pytest coverage for the maintenance CLI commands.

from datetime import date

from sqlalchemy import update

from servicebook.models import RecurringContract, StockItem
from servicebook.services import contract_service, document_service, scheduler_service


class TestInventoryCommands:
    def test_verify_ledger_pass(self, cli_runner, db_session, item_a):
        document_service.create_document(document_type="invoice", lines=[{"product_id": item_a.id, "quantity": 2}])

        result = cli_runner.invoke(args=["inventory", "verify-ledger"])

        assert result.exit_code == 0
        assert "PASS" in result.output

    def test_verify_ledger_detects_tampering(self, cli_runner, db_session, item_a):
        db_session.execute(
            update(StockItem)
            .where(StockItem.id == item_a.id)
            .values(quantity_on_hand=99)
            .execution_options(synchronize_session=False)
        )
        db_session.commit()

        result = cli_runner.invoke(args=["inventory", "verify-ledger"])

        assert result.exit_code == 1
        assert "FAIL 1 product(s)" in result.output

        single = cli_runner.invoke(args=["inventory", "verify-ledger", "--product-id", str(item_a.id + 1000)])
        assert single.exit_code == 0

    def test_low_stock(self, cli_runner, db_session, make_item):
        make_item(name="Membrane", quantity=1, reorder_threshold=5)

        result = cli_runner.invoke(args=["inventory", "low-stock"])

        assert result.exit_code == 0
        assert "Membrane" in result.output

    def test_low_stock_empty(self, cli_runner, db_session):
        result = cli_runner.invoke(args=["inventory", "low-stock"])
        assert "No low-stock items." in result.output


class TestContractCommands:
    def test_due_for_renewal(self, cli_runner, db_session, make_contract):
        contract = make_contract(start_date=date(2023, 10, 10))

        result = cli_runner.invoke(args=["contracts", "due-for-renewal", "--as-of", "2024-02-01"])
        assert contract.contract_number in result.output

        none_due = cli_runner.invoke(args=["contracts", "due-for-renewal", "--as-of", "2024-01-10"])
        assert "No contracts due for renewal." in none_due.output

    def test_bad_as_of(self, cli_runner, db_session):
        result = cli_runner.invoke(args=["contracts", "due-for-renewal", "--as-of", "next week"])
        assert result.exit_code != 0

    def test_renew_expired(self, cli_runner, db_session, make_contract):
        make_contract(start_date=date(2023, 10, 10))
        make_contract(start_date=date(2023, 9, 1))

        result = cli_runner.invoke(args=["contracts", "renew-expired", "--as-of", "2024-02-01", "--yes"])

        assert result.exit_code == 0
        assert "Renewed 2, skipped 0." in result.output
        assert db_session.query(RecurringContract).filter_by(status="active").count() == 2
        assert db_session.query(RecurringContract).filter(RecurringContract.renewed_from_id.isnot(None)).count() == 2

    def test_renew_expired_needs_confirmation(self, cli_runner, db_session, make_contract):
        make_contract(start_date=date(2023, 10, 10))

        result = cli_runner.invoke(args=["contracts", "renew-expired", "--as-of", "2024-02-01"], input="n\n")

        assert result.exit_code != 0
        assert db_session.query(RecurringContract).count() == 1

    def test_ensure_pending(self, cli_runner, db_session, make_contract):
        contract = make_contract()
        scheduler_service.cancel_occurrence(contract_service.get_pending_occurrence(contract.id).id)

        result = cli_runner.invoke(args=["contracts", "ensure-pending"])

        assert "Scheduled 1 occurrence(s)." in result.output
        assert contract_service.get_pending_occurrence(contract.id) is not None


class TestOccurrenceCommands:
    def test_overdue(self, cli_runner, db_session, make_contract):
        contract = make_contract(start_date=date(2023, 10, 10))

        result = cli_runner.invoke(args=["occurrences", "overdue", "--as-of", "2024-02-01"])

        assert f"contract={contract.id}" in result.output
        assert "scheduled=2024-01-10" in result.output

    def test_nothing_overdue(self, cli_runner, db_session, make_contract):
        make_contract(start_date=date(2023, 10, 10))
        result = cli_runner.invoke(args=["occurrences", "overdue", "--as-of", "2024-01-10"])
        assert "No overdue occurrences." in result.output
