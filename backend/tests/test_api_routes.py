# Overview: Pytest coverage for the JSON API: status codes and response shapes across the transaction chain.

from datetime import timedelta

import pytest

from posledger.models import Product
from posledger.time_utils import to_utc_z, utcnow

from conftest import CUSTOMER_PAYLOAD, order_items, tenant_headers


@pytest.fixture
def headers(tenant_a):
    return tenant_headers(tenant_a)


def place_order(client, headers, *pairs):
    response = client.post(
        "/api/orders/",
        json={"customer": CUSTOMER_PAYLOAD, "payment_method": "Cash", "items": order_items(*pairs)},
        headers=headers,
    )
    assert response.status_code == 201, response.get_json()
    return response.get_json()


class TestSystemEndpoints:

    def test_health(self, client, db_session):
        response = client.get("/api/health")
        assert response.status_code == 200
        data = response.get_json()
        assert data["status"] == "healthy"
        assert data["checks"]["database"]["status"] == "healthy"

    def test_health_degraded_without_mail_settings(self, app, client, db_session, monkeypatch):
        monkeypatch.setitem(app.config, "LOW_STOCK_ALERTS_ENABLED", True)
        response = client.get("/api/health")
        assert response.status_code == 200
        assert response.get_json()["status"] == "degraded"

    def test_version(self, client):
        response = client.get("/api/version")
        assert response.status_code == 200
        assert response.get_json()["api_version"] == "0.1.0"

    def test_low_stock(self, client, db_session, headers, gadget):
        place_order(client, headers, (gadget, 4))
        response = client.get("/api/products/low-stock", headers=headers)
        assert response.status_code == 200
        assert [p["id"] for p in response.get_json()["products"]] == [gadget.id]


class TestOrderEndpoints:

    def test_create_order(self, client, db_session, headers, widget):
        data = place_order(client, headers, (widget, 2))

        assert data["order"]["total_amount_cents"] == 2000
        assert data["order"]["status"] == "Pending"
        assert data["order"]["lines"][0]["product_name"] == "Widget"
        assert data["invoice_number"].startswith("INV-")
        assert db_session.get(Product, widget.id).unit_stock == 18

    def test_insufficient_stock_is_409(self, client, db_session, headers, gadget):
        response = client.post(
            "/api/orders/",
            json={"customer": CUSTOMER_PAYLOAD, "payment_method": "Cash", "items": order_items((gadget, 6))},
            headers=headers,
        )
        assert response.status_code == 409
        body = response.get_json()
        assert body["details"] == {"product_id": gadget.id, "requested": 6, "available": 5}

    def test_decimal_quantity_is_400(self, client, db_session, headers, widget):
        items = order_items((widget, 1))
        items[0]["quantity"] = 1.5
        response = client.post(
            "/api/orders/",
            json={"customer": CUSTOMER_PAYLOAD, "payment_method": "Cash", "items": items},
            headers=headers,
        )
        assert response.status_code == 400

    def test_unknown_product_is_404(self, client, db_session, headers, product_b):
        response = client.post(
            "/api/orders/",
            json={"customer": CUSTOMER_PAYLOAD, "payment_method": "Cash", "items": order_items((product_b, 1))},
            headers=headers,
        )
        assert response.status_code == 404

    def test_status_update_and_history(self, client, db_session, headers, widget):
        order_id = place_order(client, headers, (widget, 1))["order"]["id"]

        response = client.put(f"/api/orders/{order_id}/status", json={"status": "Paid"}, headers=headers)
        assert response.status_code == 200
        assert response.get_json()["order"]["order_status"] == "Paid"

        response = client.put(
            f"/api/orders/{order_id}/status", json={"status": "Paid", "order_status": "Cancelled"}, headers=headers
        )
        assert response.status_code == 400

        history = client.get(f"/api/orders/{order_id}/history", headers=headers).get_json()["history"]
        assert [h["action"] for h in history] == ["Created", "Paid"]

    def test_bulk_status(self, client, db_session, headers, widget):
        ids = [place_order(client, headers, (widget, 1))["order"]["id"] for _ in range(2)]

        response = client.put(
            "/api/orders/bulk-status", json={"order_ids": ids + [99999], "status": "Cancelled"}, headers=headers
        )
        assert response.status_code == 200
        assert response.get_json() == {"updated": 2}

    def test_list_orders_filter(self, client, db_session, headers, widget):
        place_order(client, headers, (widget, 1))
        response = client.get("/api/orders/", query_string={"status": "Paid"}, headers=headers)
        assert response.get_json()["count"] == 0


class TestInvoiceEndpoints:

    def test_payment_flow(self, client, db_session, headers, widget):
        created = place_order(client, headers, (widget, 3))
        invoice_id = created["invoice_id"]

        response = client.post(
            f"/api/invoices/{invoice_id}/payments",
            json={"amount_cents": 1000, "payment_method": "Card"},
            headers=headers,
        )
        assert response.status_code == 200
        assert response.get_json()["balance_cents"] == 2000
        assert response.get_json()["invoice"]["status"] == "PartiallyPaid"

        response = client.post(
            f"/api/invoices/{invoice_id}/payments",
            json={"amount_cents": 5000, "payment_method": "Card"},
            headers=headers,
        )
        assert response.status_code == 400
        assert "exceeds invoice balance" in response.get_json()["error"]

        payments = client.get(f"/api/invoices/{invoice_id}/payments", headers=headers).get_json()
        assert len(payments["payments"]) == 1

    def test_decimal_amount_rejected(self, client, db_session, headers, widget):
        invoice_id = place_order(client, headers, (widget, 1))["invoice_id"]
        response = client.post(
            f"/api/invoices/{invoice_id}/payments",
            json={"amount_cents": "10.50", "payment_method": "Cash"},
            headers=headers,
        )
        assert response.status_code == 400

    def test_invoice_by_order(self, client, db_session, headers, widget):
        created = place_order(client, headers, (widget, 1))
        response = client.get(f"/api/invoices/order/{created['order']['id']}", headers=headers)
        assert response.status_code == 200
        assert response.get_json()["invoice"]["id"] == created["invoice_id"]
        assert response.get_json()["invoice"]["payments"] == []

    def test_create_invoice_is_idempotent(self, client, db_session, headers, widget):
        created = place_order(client, headers, (widget, 1))
        response = client.post("/api/invoices/", json={"order_id": created["order"]["id"]}, headers=headers)
        assert response.status_code == 201
        assert response.get_json()["invoice"]["id"] == created["invoice_id"]


class TestReturnEndpoints:

    def test_whole_return_and_credit_note(self, client, db_session, headers, widget):
        created = place_order(client, headers, (widget, 2))

        response = client.post("/api/returns/whole", json={
            "invoice_id": created["invoice_id"],
            "order_id": created["order"]["id"],
            "reason": "Damaged in transit",
            "refund_method": "Card",
            "total_return_amount_cents": 2000,
        }, headers=headers)
        assert response.status_code == 201
        return_id = response.get_json()["return"]["id"]

        response = client.get(f"/api/invoices/credit-notes/return/{return_id}", headers=headers)
        assert response.status_code == 200
        assert response.get_json()["invoice"]["total_amount_cents"] == -2000

        response = client.put(f"/api/returns/{return_id}/status", json={"status": "Completed"}, headers=headers)
        assert response.status_code == 200
        assert client.get("/api/returns/summary", headers=headers).get_json()["completed_returns"] == 1

    def test_missing_fields_is_400(self, client, db_session, headers):
        response = client.post("/api/returns/partial", json={"invoice_id": 1}, headers=headers)
        assert response.status_code == 400

    def test_partial_return_over_quantity(self, client, db_session, headers, widget):
        created = place_order(client, headers, (widget, 2))
        response = client.post("/api/returns/partial", json={
            "invoice_id": created["invoice_id"],
            "order_id": created["order"]["id"],
            "reason": "Too many ordered",
            "refund_method": "Cash",
            "items": [{"product_id": widget.id, "return_quantity": 3, "return_amount_cents": 3000}],
            "total_return_amount_cents": 3000,
        }, headers=headers)
        assert response.status_code == 400
        assert response.get_json()["details"]["ordered"] == 2


class TestLedgerAndAccountingEndpoints:

    def test_ledger_views(self, client, db_session, headers, widget):
        created = place_order(client, headers, (widget, 4))
        customer_id = created["order"]["customer_id"]

        balance = client.get(f"/api/ledger/customers/{customer_id}/balance", headers=headers).get_json()
        assert balance["balance_cents"] == 4000

        response = client.post("/api/ledger/payments", json={
            "customer_id": customer_id, "amount_cents": 1500, "payment_method": "Cash",
        }, headers=headers)
        assert response.status_code == 201
        assert response.get_json()["balance_cents"] == 2500

        statement = client.get(
            f"/api/ledger/customers/{customer_id}/statement",
            query_string={
                "start_date": to_utc_z(utcnow() - timedelta(days=1)),
                "end_date": to_utc_z(utcnow() + timedelta(days=1)),
            },
            headers=headers,
        ).get_json()
        assert statement["closing_balance_cents"] == 2500
        assert len(statement["entries"]) == 2

        verify = client.get(f"/api/ledger/customers/{customer_id}/verify", headers=headers).get_json()
        assert verify["consistent"] is True

        outstanding = client.get("/api/ledger/outstanding", headers=headers).get_json()
        assert outstanding["count"] == 1

    def test_statement_requires_dates(self, client, db_session, headers, customer_a):
        response = client.get(f"/api/ledger/customers/{customer_a.id}/statement", headers=headers)
        assert response.status_code == 400

    def test_manual_ledger_entry_both_sides_rejected(self, client, db_session, headers, customer_a):
        response = client.post("/api/ledger/entries", json={
            "customer_id": customer_a.id,
            "transaction_type": "Adjustment",
            "description": "Correction",
            "debit_cents": 100,
            "credit_cents": 100,
        }, headers=headers)
        assert response.status_code == 400

    def test_accounting_entries(self, client, db_session, headers):
        response = client.post("/api/accounting/entries", json={
            "entry_type": "Expense", "amount_cents": 4200, "description": "Cleaning supplies",
        }, headers=headers)
        assert response.status_code == 201

        listing = client.get("/api/accounting/entries", query_string={"limit": 10}, headers=headers).get_json()
        assert listing["pagination"]["total"] == 1

        summary = client.get("/api/accounting/summary", headers=headers).get_json()
        assert summary["total_expenses_cents"] == 4200
        assert summary["net_profit_cents"] == -4200
