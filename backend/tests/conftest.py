"""
Pytest fixtures for posledger backend tests.

Provides test database setup, two-tenant fixtures, and a test client.
"""

from datetime import timedelta

import pytest

from posledger import create_app
from posledger.extensions import db
from posledger.models import Branch, Company, Customer, Invoice, Product
from posledger.services.tenant_service import TenantContext
from posledger.time_utils import utcnow


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'LOW_STOCK_ALERTS_ENABLED': False,
        'MAIL_SERVER': None,
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def company_a(db_session):
    """Create Company A (first tenant)."""
    company = Company(name="Company A - Acme Corp", code="ACME", is_active=True)
    db_session.add(company)
    db_session.commit()
    return company


@pytest.fixture(scope='function')
def company_b(db_session):
    """Create Company B (second tenant)."""
    company = Company(name="Company B - Beta Inc", code="BETA", is_active=True)
    db_session.add(company)
    db_session.commit()
    return company


@pytest.fixture(scope='function')
def branch_a(db_session, company_a):
    branch = Branch(company_id=company_a.id, name="Branch A1", code="A1")
    db_session.add(branch)
    db_session.commit()
    return branch


@pytest.fixture(scope='function')
def branch_a2(db_session, company_a):
    """Second branch of Company A."""
    branch = Branch(company_id=company_a.id, name="Branch A2", code="A2")
    db_session.add(branch)
    db_session.commit()
    return branch


@pytest.fixture(scope='function')
def branch_b(db_session, company_b):
    branch = Branch(company_id=company_b.id, name="Branch B1", code="B1")
    db_session.add(branch)
    db_session.commit()
    return branch


@pytest.fixture(scope='function')
def tenant_a(company_a, branch_a):
    """Cashier of Branch A1."""
    return TenantContext(company_id=company_a.id, branch_id=branch_a.id, user_id=11, role="cashier")


@pytest.fixture(scope='function')
def tenant_a2(company_a, branch_a2):
    return TenantContext(company_id=company_a.id, branch_id=branch_a2.id, user_id=12, role="cashier")


@pytest.fixture(scope='function')
def tenant_b(company_b, branch_b):
    return TenantContext(company_id=company_b.id, branch_id=branch_b.id, user_id=21, role="cashier")


@pytest.fixture(scope='function')
def tenant_no_branch(company_a):
    """Company-level user without a branch assignment."""
    return TenantContext(company_id=company_a.id, branch_id=None, user_id=13, role="manager")


def make_product(db_session, branch, *, name, sku, price_cents, unit_stock, stock_threshold=2):
    product = Product(
        company_id=branch.company_id,
        branch_id=branch.id,
        sku=sku,
        name=name,
        price_cents=price_cents,
        unit_stock=unit_stock,
        stock_threshold=stock_threshold,
        status="YES" if unit_stock > 0 else "NO",
    )
    db_session.add(product)
    db_session.commit()
    return product


@pytest.fixture(scope='function')
def widget(db_session, branch_a):
    """Product in Branch A1: 10.00 each, 20 in stock."""
    return make_product(db_session, branch_a, name="Widget", sku="W-001", price_cents=1000, unit_stock=20)


@pytest.fixture(scope='function')
def gadget(db_session, branch_a):
    """Product in Branch A1: 25.00 each, 5 in stock."""
    return make_product(db_session, branch_a, name="Gadget", sku="G-001", price_cents=2500, unit_stock=5)


@pytest.fixture(scope='function')
def product_b(db_session, branch_b):
    return make_product(db_session, branch_b, name="Beta Thing", sku="B-001", price_cents=500, unit_stock=10)


@pytest.fixture(scope='function')
def customer_a(db_session, company_a):
    customer = Customer(company_id=company_a.id, full_name="Jane Doe", phone="555-0100", email="jane@example.com")
    db_session.add(customer)
    db_session.commit()
    return customer


CUSTOMER_PAYLOAD = {"full_name": "Jane Doe", "phone": "555-0100", "email": "jane@example.com"}


def order_items(*pairs):
    """[(product, quantity), ...] -> order item payload at list price."""
    return [
        {"product_id": product.id, "quantity": quantity, "unit_price_cents": product.price_cents}
        for product, quantity in pairs
    ]


def backdate_invoice(db_session, invoice_id, days, **extra):
    """Move an invoice's date back by `days` (plus optional hours/minutes) for return window tests."""
    invoice = db_session.get(Invoice, invoice_id)
    invoice.invoice_date = utcnow() - timedelta(days=days, **extra)
    db_session.commit()
    return invoice


def tenant_headers(tenant: TenantContext) -> dict:
    """Identity headers as forwarded by the gateway."""
    headers = {"X-User-Id": str(tenant.user_id)}
    if tenant.company_id is not None:
        headers["X-Company-Id"] = str(tenant.company_id)
    if tenant.branch_id is not None:
        headers["X-Branch-Id"] = str(tenant.branch_id)
    if tenant.role:
        headers["X-User-Role"] = tenant.role
    return headers
