# Overview: Flask API routes for the customer ledger, statements and aging; parses input and returns JSON responses.

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_tenant
from ..services import customer_service, ledger_service
from ..services.tenant_service import require_branch
from ..validation import (
    SERVICE_ERRORS,
    coerce_cents,
    coerce_datetime,
    coerce_int,
    coerce_text,
    error_body,
    error_status,
    require_fields,
)


ledger_bp = Blueprint("ledger", __name__, url_prefix="/api/ledger")


# =============================================================================
# CUSTOMER LEDGER
# =============================================================================

@ledger_bp.get("/customers/<int:customer_id>")
@require_tenant
def get_customer_ledger_route(customer_id: int):
    """Ledger entries in posting order. Query params: start_date, end_date"""
    try:
        entries = ledger_service.get_customer_ledger(
            g.tenant,
            customer_id,
            coerce_datetime(request.args.get("start_date"), "start_date"),
            coerce_datetime(request.args.get("end_date"), "end_date"),
        )
        return jsonify({"customer_id": customer_id, "entries": [e.to_dict() for e in entries]}), 200

    except SERVICE_ERRORS as e:
        return jsonify(error_body(e)), error_status(e)
    except Exception:
        current_app.logger.exception("Failed to get customer ledger")
        return jsonify({"error": "Internal server error"}), 500


@ledger_bp.get("/customers/<int:customer_id>/balance")
@require_tenant
def get_customer_balance_route(customer_id: int):
    try:
        customer_service.get_customer(g.tenant, customer_id)
        balance = ledger_service.get_customer_balance(customer_id)
        return jsonify({"customer_id": customer_id, "balance_cents": balance}), 200

    except SERVICE_ERRORS as e:
        return jsonify(error_body(e)), error_status(e)
    except Exception:
        current_app.logger.exception("Failed to get customer balance")
        return jsonify({"error": "Internal server error"}), 500


@ledger_bp.get("/customers/<int:customer_id>/statement")
@require_tenant
def get_customer_statement_route(customer_id: int):
    """
    Statement for a date range.

    Query params: start_date, end_date (both required, ISO-8601)
    """
    try:
        require_fields(dict(request.args), "start_date", "end_date")
        statement = ledger_service.get_customer_statement(
            g.tenant,
            customer_id,
            coerce_datetime(request.args.get("start_date"), "start_date"),
            coerce_datetime(request.args.get("end_date"), "end_date"),
        )
        return jsonify(statement), 200

    except SERVICE_ERRORS as e:
        return jsonify(error_body(e)), error_status(e)
    except Exception:
        current_app.logger.exception("Failed to build customer statement")
        return jsonify({"error": "Internal server error"}), 500


@ledger_bp.get("/customers/<int:customer_id>/summary")
@require_tenant
def get_ledger_summary_route(customer_id: int):
    try:
        return jsonify(ledger_service.get_ledger_summary(g.tenant, customer_id)), 200

    except SERVICE_ERRORS as e:
        return jsonify(error_body(e)), error_status(e)
    except Exception:
        current_app.logger.exception("Failed to build ledger summary")
        return jsonify({"error": "Internal server error"}), 500


@ledger_bp.get("/customers/<int:customer_id>/aging")
@require_tenant
def get_customer_aging_route(customer_id: int):
    try:
        aging = ledger_service.get_customer_aging(
            g.tenant, customer_id, coerce_datetime(request.args.get("as_of"), "as_of")
        )
        return jsonify(aging), 200

    except SERVICE_ERRORS as e:
        return jsonify(error_body(e)), error_status(e)
    except Exception:
        current_app.logger.exception("Failed to build customer aging")
        return jsonify({"error": "Internal server error"}), 500


@ledger_bp.get("/customers/<int:customer_id>/verify")
@require_tenant
def verify_customer_ledger_route(customer_id: int):
    try:
        customer_service.get_customer(g.tenant, customer_id)
        mismatches = ledger_service.verify_customer_ledger(customer_id)
        return jsonify({"customer_id": customer_id, "consistent": not mismatches, "mismatches": mismatches}), 200

    except SERVICE_ERRORS as e:
        return jsonify(error_body(e)), error_status(e)
    except Exception:
        current_app.logger.exception("Failed to verify customer ledger")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# REPORTS
# =============================================================================

@ledger_bp.get("/aging-report")
@require_tenant
def aging_report_route():
    try:
        report = ledger_service.get_aging_report(
            g.tenant, coerce_datetime(request.args.get("as_of"), "as_of")
        )
        return jsonify({"customers": report, "count": len(report)}), 200

    except SERVICE_ERRORS as e:
        return jsonify(error_body(e)), error_status(e)
    except Exception:
        current_app.logger.exception("Failed to build aging report")
        return jsonify({"error": "Internal server error"}), 500


@ledger_bp.get("/outstanding")
@require_tenant
def outstanding_balances_route():
    try:
        customers = ledger_service.get_customers_with_outstanding_balance(g.tenant)
        return jsonify({"customers": customers, "count": len(customers)}), 200
    except Exception:
        current_app.logger.exception("Failed to list outstanding balances")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# MANUAL POSTINGS
# =============================================================================

@ledger_bp.post("/entries")
@require_tenant
def create_ledger_entry_route():
    """
    Post a manual ledger entry (adjustments, opening balances).

    Request body:
    {
        "customer_id": 5,
        "transaction_type": "Adjustment",
        "description": "Opening balance",
        "debit_cents": 2500,    (exactly one of debit / credit)
        "credit_cents": 0,
        "notes": "..."  (optional)
    }
    """
    try:
        data = require_fields(request.get_json(silent=True), "customer_id", "transaction_type", "description")

        entry = ledger_service.post_manual_entry(
            g.tenant,
            coerce_int(data.get("customer_id"), "customer_id"),
            transaction_type=data.get("transaction_type"),
            description=coerce_text(data.get("description"), "description", max_length=500, required=True),
            debit_cents=coerce_cents(data.get("debit_cents", 0), "debit_cents", allow_zero=True),
            credit_cents=coerce_cents(data.get("credit_cents", 0), "credit_cents", allow_zero=True),
            transaction_date=coerce_datetime(data.get("transaction_date"), "transaction_date"),
            payment_method=data.get("payment_method"),
            reference_number=data.get("reference_number"),
            notes=data.get("notes"),
        )
        return jsonify({"entry": entry.to_dict()}), 201

    except SERVICE_ERRORS as e:
        return jsonify(error_body(e)), error_status(e)
    except Exception:
        current_app.logger.exception("Failed to create ledger entry")
        return jsonify({"error": "Internal server error"}), 500


@ledger_bp.post("/payments")
@require_tenant
def record_payment_route():
    """
    Credit a payment received outside an invoice.

    Request body:
    {
        "customer_id": 5,
        "amount_cents": 1500,
        "payment_method": "Cash",
        "reference_number": "..."  (optional)
    }
    """
    try:
        data = require_fields(request.get_json(silent=True), "customer_id", "amount_cents", "payment_method")

        branch_id = require_branch(g.tenant, "record payment")
        customer_id = coerce_int(data.get("customer_id"), "customer_id")
        customer_service.get_customer(g.tenant, customer_id)

        entry = ledger_service.create_payment_ledger_entry(
            customer_id,
            coerce_cents(data.get("amount_cents"), "amount_cents"),
            data.get("payment_method"),
            reference_number=data.get("reference_number"),
            created_by=g.tenant.actor,
            branch_id=branch_id,
        )
        return jsonify({"entry": entry.to_dict(), "balance_cents": entry.balance_cents}), 201

    except SERVICE_ERRORS as e:
        return jsonify(error_body(e)), error_status(e)
    except Exception:
        current_app.logger.exception("Failed to record payment")
        return jsonify({"error": "Internal server error"}), 500
