# Overview: Threaded tests for stock, ledger and invoice numbering under concurrent writers.

"""
Concurrency tests

Each test runs its workers on separate threads, each with its own app
context and session, against a file-backed SQLite database (an in-memory
database cannot be shared between connections). A barrier releases the
workers together.

Covers:
- the last unit of a product is sold exactly once
- concurrent ledger postings for one customer keep a gap-free running balance
- invoice numbers stay unique when orders are invoiced in parallel
- invoicing the same order in parallel yields a single invoice
"""

import threading

import pytest

from posledger import create_app
from posledger.extensions import db
from posledger.models import Branch, Company, Customer, CustomerLedgerEntry, Invoice, Order, Product
from posledger.services import invoice_service, inventory_service, ledger_service
from posledger.services.tenant_service import TenantContext
from posledger.time_utils import utcnow
from posledger.validation import InsufficientStockError


@pytest.fixture
def file_app(tmp_path):
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': f"sqlite:///{tmp_path / 'concurrency.sqlite3'}",
        'SQLALCHEMY_ENGINE_OPTIONS': {"connect_args": {"timeout": 30}},
        'LOW_STOCK_ALERTS_ENABLED': False,
    })
    with app.app_context():
        db.create_all()

    yield app

    with app.app_context():
        db.session.remove()
        db.drop_all()
        db.session.remove()
        db.engine.dispose()


@pytest.fixture
def seeded(file_app):
    """One company, branch, customer and a product with a single unit left."""
    with file_app.app_context():
        company = Company(name="Concurrency Co", code="CONC", is_active=True)
        db.session.add(company)
        db.session.commit()

        branch = Branch(company_id=company.id, name="Main", code="M1")
        db.session.add(branch)
        db.session.commit()

        customer = Customer(company_id=company.id, full_name="Race Tester", phone="555-0300")
        product = Product(
            company_id=company.id,
            branch_id=branch.id,
            sku="LAST-1",
            name="Last Unit",
            price_cents=1000,
            unit_stock=1,
            stock_threshold=0,
            status="YES",
        )
        db.session.add_all([customer, product])
        db.session.commit()

        ids = {
            "company_id": company.id,
            "branch_id": branch.id,
            "customer_id": customer.id,
            "product_id": product.id,
        }
        db.session.remove()
    return ids


def run_in_threads(app, target, args_list):
    """Run target(*args) once per args tuple, all threads released together."""
    results = []
    lock = threading.Lock()
    barrier = threading.Barrier(len(args_list))

    def worker(args):
        with app.app_context():
            try:
                barrier.wait()
                outcome = target(*args)
            except Exception as exc:
                outcome = exc
            finally:
                db.session.remove()
        with lock:
            results.append(outcome)

    threads = [threading.Thread(target=worker, args=(args,)) for args in args_list]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    return results


def make_orders(app, ids, count):
    with app.app_context():
        orders = [
            Order(
                company_id=ids["company_id"],
                branch_id=ids["branch_id"],
                customer_id=ids["customer_id"],
                date=utcnow(),
                total_amount_cents=1000,
                status="Pending",
                order_status="Pending",
                payment_method="Cash",
            )
            for _ in range(count)
        ]
        db.session.add_all(orders)
        db.session.commit()
        order_ids = [order.id for order in orders]
        db.session.remove()
    return order_ids


def test_last_unit_sold_once(file_app, seeded):
    def sell_one(product_id):
        try:
            inventory_service.deduct_inventory(product_id, 1)
            db.session.commit()
            return "sold"
        except InsufficientStockError:
            db.session.rollback()
            return "out of stock"

    results = run_in_threads(file_app, sell_one, [(seeded["product_id"],)] * 8)

    assert [r for r in results if isinstance(r, Exception)] == []
    assert results.count("sold") == 1
    assert results.count("out of stock") == 7

    with file_app.app_context():
        product = db.session.get(Product, seeded["product_id"])
        assert product.unit_stock == 0
        assert product.status == "NO"


def test_ledger_running_balance_serialized(file_app, seeded):
    customer_id = seeded["customer_id"]

    def post_charges(worker_no):
        for n in range(10):
            ledger_service.create_ledger_entry(
                customer_id,
                transaction_type="Debit",
                description=f"Worker {worker_no} charge {n}",
                debit_cents=100,
            )
        return "posted"

    results = run_in_threads(file_app, post_charges, [(n,) for n in range(6)])

    assert results == ["posted"] * 6

    with file_app.app_context():
        balances = [
            entry.balance_cents
            for entry in db.session.query(CustomerLedgerEntry)
            .filter_by(customer_id=customer_id)
            .order_by(CustomerLedgerEntry.id)
        ]
        assert balances == list(range(100, 6001, 100))
        assert ledger_service.get_customer_balance(customer_id) == 6000
        assert ledger_service.verify_customer_ledger(customer_id) == []


def test_invoice_numbers_unique_under_parallel_creation(file_app, seeded):
    tenant = TenantContext(company_id=seeded["company_id"], branch_id=seeded["branch_id"], user_id=1)
    order_ids = make_orders(file_app, seeded, 8)

    def invoice(order_id):
        return invoice_service.create_invoice(tenant, order_id).invoice_number

    numbers = run_in_threads(file_app, invoice, [(order_id,) for order_id in order_ids])

    assert [n for n in numbers if isinstance(n, Exception)] == []
    assert len(set(numbers)) == 8
    assert all(n.startswith("INV-") for n in numbers)

    with file_app.app_context():
        assert db.session.query(Invoice).count() == 8


def test_parallel_invoicing_of_one_order_yields_one_invoice(file_app, seeded):
    tenant = TenantContext(company_id=seeded["company_id"], branch_id=seeded["branch_id"], user_id=1)
    (order_id,) = make_orders(file_app, seeded, 1)

    def invoice():
        return invoice_service.create_invoice(tenant, order_id).id

    invoice_ids = run_in_threads(file_app, invoice, [()] * 4)

    assert [i for i in invoice_ids if isinstance(i, Exception)] == []
    assert len(set(invoice_ids)) == 1

    with file_app.app_context():
        assert db.session.query(Invoice).filter_by(order_id=order_id).count() == 1
