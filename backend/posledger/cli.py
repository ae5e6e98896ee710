# Overview: Flask CLI command groups for bootstrap, ledger audit and invoice maintenance.

# backend/posledger/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init [--company "Acme"] [--company-code ACME] [--branch "Main Branch"]
#   Idempotent bootstrap: creates the default company and branch.
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Ledger audit:
# - python -m flask ledger verify [--customer-id 5]
#   Replay running balances; exits 1 if any stored balance is wrong.
#
# Invoice maintenance:
# - python -m flask invoices mark-overdue [--branch-id 1]
#   Move unpaid invoices past their due date to Overdue.

import sys

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import Branch, Company, Customer, CustomerLedgerEntry
from .services.invoice_service import mark_overdue_invoices
from .services.ledger_service import verify_customer_ledger


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init')
@click.option('--company', 'company_name', default='Default Company', help='Company name')
@click.option('--company-code', default='DEFAULT', help='Company code')
@click.option('--branch', 'branch_name', default='Main Branch', help='Branch name')
@with_appcontext
def init_system(company_name, company_code, branch_name):
    """
    Initialize the default company and its first branch.

    Safe to run repeatedly: existing rows are reused.
    """
    click.echo("START Initializing posledger...")

    company = db.session.query(Company).filter_by(code=company_code).first()
    if not company:
        company = Company(name=company_name, code=company_code, is_active=True)
        db.session.add(company)
        db.session.commit()
        click.echo(f"PASS Created company: {company.name} (ID: {company.id}, Code: {company.code})")
    else:
        click.echo(f"PASS Using existing company: {company.name} (ID: {company.id})")

    branch = db.session.query(Branch).filter_by(company_id=company.id, name=branch_name).first()
    if not branch:
        branch = Branch(company_id=company.id, name=branch_name, is_active=True)
        db.session.add(branch)
        db.session.commit()
        click.echo(f"PASS Created branch: {branch.name} (ID: {branch.id}, Company: {company.name})")
    else:
        click.echo(f"PASS Using existing branch: {branch.name} (ID: {branch.id})")

    click.echo(f"\nSend X-Company-Id: {company.id} and X-Branch-Id: {branch.id} with API requests.")


@system_group.command('reset-db')
@click.option('--yes', is_flag=True, help='Skip confirmation')
@with_appcontext
def reset_db(yes):
    """
    DANGER: Drop all tables and recreate schema.

    This will DELETE ALL DATA!
    """
    if not yes:
        click.confirm("WARN This will DELETE ALL DATA. Are you sure?", abort=True)

    click.echo("DELETE  Dropping all tables...")
    db.drop_all()

    click.echo("BUILD  Creating all tables...")
    db.create_all()

    click.echo("PASS Database reset complete. Run 'python -m flask system init' to initialize.")


@click.group('ledger')
def ledger_group():
    """Customer ledger audit commands."""


@ledger_group.command('verify')
@click.option('--customer-id', type=int, default=None, help='Verify a single customer')
@with_appcontext
def verify_ledger(customer_id):
    """Replay every customer's entries and report balance mismatches."""
    if customer_id is not None:
        if db.session.get(Customer, customer_id) is None:
            click.echo(f"FAIL Customer {customer_id} not found")
            sys.exit(1)
        customer_ids = [customer_id]
    else:
        customer_ids = [
            row[0]
            for row in db.session.query(CustomerLedgerEntry.customer_id)
            .distinct()
            .order_by(CustomerLedgerEntry.customer_id)
            .all()
        ]

    failures = 0
    for cid in customer_ids:
        mismatches = verify_customer_ledger(cid)
        if not mismatches:
            continue
        failures += 1
        click.echo(f"FAIL Customer {cid}: {len(mismatches)} mismatched entries")
        for mismatch in mismatches:
            click.echo(
                f"  entry {mismatch['entry_id']}: stored {mismatch['stored_balance_cents']}, "
                f"expected {mismatch['expected_balance_cents']}"
            )

    if failures:
        sys.exit(1)
    click.echo(f"PASS {len(customer_ids)} customer ledgers verified")


@click.group('invoices')
def invoices_group():
    """Invoice maintenance commands."""


@invoices_group.command('mark-overdue')
@click.option('--branch-id', type=int, default=None, help='Limit to one branch')
@with_appcontext
def mark_overdue(branch_id):
    """Mark unpaid standard invoices past their due date as Overdue."""
    count = mark_overdue_invoices(branch_id=branch_id)
    click.echo(f"PASS Marked {count} invoices overdue")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(ledger_group)
    app.cli.add_command(invoices_group)
