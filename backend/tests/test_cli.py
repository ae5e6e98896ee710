# Overview: Pytest coverage for the flask CLI command groups.

from datetime import timedelta

from posledger.models import Branch, Company, CustomerLedgerEntry, Invoice
from posledger.services import ledger_service, order_service
from posledger.time_utils import utcnow

from conftest import CUSTOMER_PAYLOAD, order_items


class TestSystemCommands:

    def test_init_is_idempotent(self, app, db_session):
        runner = app.test_cli_runner()

        first = runner.invoke(args=["system", "init", "--company", "Acme", "--company-code", "ACME"])
        second = runner.invoke(args=["system", "init", "--company", "Acme", "--company-code", "ACME"])

        assert first.exit_code == 0, first.output
        assert "Created company: Acme" in first.output
        assert second.exit_code == 0
        assert "Using existing company: Acme" in second.output
        assert db_session.query(Company).filter_by(code="ACME").count() == 1
        assert db_session.query(Branch).filter_by(name="Main Branch").count() == 1


class TestLedgerVerifyCommand:

    def test_verify_passes_for_consistent_ledgers(self, app, db_session, customer_a):
        ledger_service.create_ledger_entry(
            customer_a.id, transaction_type="Debit", description="Opening", debit_cents=500
        )

        result = app.test_cli_runner().invoke(args=["ledger", "verify"])

        assert result.exit_code == 0, result.output
        assert "PASS 1 customer ledgers verified" in result.output

    def test_verify_fails_on_tampered_balance(self, app, db_session, customer_a):
        entry = ledger_service.create_ledger_entry(
            customer_a.id, transaction_type="Debit", description="Opening", debit_cents=500
        )
        db_session.get(CustomerLedgerEntry, entry.id).balance_cents = 400
        db_session.commit()

        result = app.test_cli_runner().invoke(args=["ledger", "verify", "--customer-id", str(customer_a.id)])

        assert result.exit_code == 1
        assert f"FAIL Customer {customer_a.id}: 1 mismatched entries" in result.output

    def test_verify_unknown_customer(self, app, db_session):
        result = app.test_cli_runner().invoke(args=["ledger", "verify", "--customer-id", "99999"])
        assert result.exit_code == 1
        assert "not found" in result.output


class TestInvoiceCommands:

    def test_mark_overdue(self, app, db_session, tenant_a, widget):
        _, invoice = order_service.create_order(
            tenant_a, customer=CUSTOMER_PAYLOAD, payment_method="Cash", items=order_items((widget, 1))
        )
        invoice.due_date = utcnow() - timedelta(days=3)
        db_session.commit()

        result = app.test_cli_runner().invoke(args=["invoices", "mark-overdue"])

        assert result.exit_code == 0, result.output
        assert "Marked 1 invoices overdue" in result.output
        db_session.expire_all()
        assert db_session.get(Invoice, invoice.id).status == "Overdue"
