# Overview: Flask API routes for invoices, payments and credit notes; parses input and returns JSON responses.

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_tenant
from ..services import invoice_service
from ..validation import (
    SERVICE_ERRORS,
    coerce_datetime,
    coerce_int,
    error_body,
    error_status,
    require_fields,
)


invoices_bp = Blueprint("invoices", __name__, url_prefix="/api/invoices")


# =============================================================================
# INVOICE QUERIES
# =============================================================================

@invoices_bp.get("/")
@require_tenant
def list_invoices_route():
    """
    List invoices of the caller's branch.

    Query params: status, invoice_type, customer_id, min_amount_cents,
    max_amount_cents, start_date, end_date
    """
    try:
        args = request.args
        invoices = invoice_service.list_invoices(
            g.tenant,
            status=args.get("status"),
            invoice_type=args.get("invoice_type"),
            customer_id=coerce_int(args.get("customer_id"), "customer_id", required=False),
            min_amount_cents=coerce_int(args.get("min_amount_cents"), "min_amount_cents", required=False),
            max_amount_cents=coerce_int(args.get("max_amount_cents"), "max_amount_cents", required=False),
            start_date=coerce_datetime(args.get("start_date"), "start_date"),
            end_date=coerce_datetime(args.get("end_date"), "end_date"),
        )
        return jsonify({"invoices": [i.to_dict() for i in invoices], "count": len(invoices)}), 200

    except SERVICE_ERRORS as e:
        return jsonify(error_body(e)), error_status(e)
    except Exception:
        current_app.logger.exception("Failed to list invoices")
        return jsonify({"error": "Internal server error"}), 500


@invoices_bp.get("/<int:invoice_id>")
@require_tenant
def get_invoice_route(invoice_id: int):
    try:
        invoice = invoice_service.get_invoice(g.tenant, invoice_id)
        return jsonify({"invoice": invoice.to_dict(include_payments=True)}), 200

    except SERVICE_ERRORS as e:
        return jsonify(error_body(e)), error_status(e)
    except Exception:
        current_app.logger.exception("Failed to get invoice")
        return jsonify({"error": "Internal server error"}), 500


@invoices_bp.get("/order/<int:order_id>")
@require_tenant
def get_invoice_by_order_route(order_id: int):
    try:
        invoice = invoice_service.get_invoice_by_order_id(g.tenant, order_id)
        return jsonify({"invoice": invoice.to_dict(include_payments=True)}), 200

    except SERVICE_ERRORS as e:
        return jsonify(error_body(e)), error_status(e)
    except Exception:
        current_app.logger.exception("Failed to get invoice for order")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# INVOICE CREATION / UPDATES
# =============================================================================

@invoices_bp.post("/")
@require_tenant
def create_invoice_route():
    """
    Invoice an order (idempotent).

    Request body:
    {
        "order_id": 12,
        "due_date": "2026-11-30T00:00:00Z"  (optional)
    }
    """
    try:
        data = require_fields(request.get_json(silent=True), "order_id")

        invoice = invoice_service.create_invoice(
            g.tenant,
            coerce_int(data.get("order_id"), "order_id"),
            due_date=coerce_datetime(data.get("due_date"), "due_date"),
            notes=data.get("notes"),
        )
        return jsonify({"invoice": invoice.to_dict()}), 201

    except SERVICE_ERRORS as e:
        return jsonify(error_body(e)), error_status(e)
    except Exception:
        current_app.logger.exception("Failed to create invoice")
        return jsonify({"error": "Internal server error"}), 500


@invoices_bp.put("/<int:invoice_id>/due-date")
@require_tenant
def update_due_date_route(invoice_id: int):
    try:
        data = require_fields(request.get_json(silent=True), "due_date")

        invoice = invoice_service.update_due_date(
            g.tenant, invoice_id, coerce_datetime(data.get("due_date"), "due_date")
        )
        return jsonify({"invoice": invoice.to_dict()}), 200

    except SERVICE_ERRORS as e:
        return jsonify(error_body(e)), error_status(e)
    except Exception:
        current_app.logger.exception("Failed to update invoice due date")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# PAYMENTS
# =============================================================================

@invoices_bp.post("/<int:invoice_id>/payments")
@require_tenant
def add_payment_route(invoice_id: int):
    """
    Record a payment against an invoice.

    Request body:
    {
        "amount_cents": 5000,
        "payment_method": "Card",
        "transaction_reference": "AUTH-123",  (optional)
        "received_by": "front desk",  (optional, defaults to caller)
        "notes": "..."  (optional)
    }

    Returns:
        200: {"invoice": {...}, "payment": {...}, "balance_cents": 0}
        400: Amount invalid or exceeds balance, invoice not payable
        404: Invoice not found in branch
    """
    try:
        data = require_fields(request.get_json(silent=True), "amount_cents", "payment_method")

        amount_cents = coerce_int(data.get("amount_cents"), "amount_cents")
        invoice, payment = invoice_service.add_payment(
            g.tenant,
            invoice_id,
            amount_cents,
            data.get("payment_method"),
            received_by=data.get("received_by"),
            transaction_reference=data.get("transaction_reference"),
            notes=data.get("notes"),
            payment_date=coerce_datetime(data.get("payment_date"), "payment_date"),
        )
        return jsonify({
            "invoice": invoice.to_dict(),
            "payment": payment.to_dict(),
            "balance_cents": invoice.balance_cents,
        }), 200

    except SERVICE_ERRORS as e:
        return jsonify(error_body(e)), error_status(e)
    except Exception:
        current_app.logger.exception("Failed to add payment")
        return jsonify({"error": "Internal server error"}), 500


@invoices_bp.get("/<int:invoice_id>/payments")
@require_tenant
def get_invoice_payments_route(invoice_id: int):
    try:
        return jsonify(invoice_service.get_invoice_payments(g.tenant, invoice_id)), 200

    except SERVICE_ERRORS as e:
        return jsonify(error_body(e)), error_status(e)
    except Exception:
        current_app.logger.exception("Failed to get invoice payments")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# CREDIT NOTES
# =============================================================================

@invoices_bp.post("/credit-notes")
@require_tenant
def create_credit_note_route():
    """
    Issue the credit note for a return.

    Request body: {"return_id": 4}
    """
    try:
        data = require_fields(request.get_json(silent=True), "return_id")

        credit_note = invoice_service.create_credit_note_invoice(
            g.tenant, coerce_int(data.get("return_id"), "return_id")
        )
        return jsonify({"invoice": credit_note.to_dict()}), 201

    except SERVICE_ERRORS as e:
        return jsonify(error_body(e)), error_status(e)
    except Exception:
        current_app.logger.exception("Failed to create credit note")
        return jsonify({"error": "Internal server error"}), 500


@invoices_bp.get("/credit-notes/return/<int:return_id>")
@require_tenant
def get_credit_note_route(return_id: int):
    try:
        credit_note = invoice_service.get_credit_note_by_return_id(g.tenant, return_id)
        return jsonify({"invoice": credit_note.to_dict()}), 200

    except SERVICE_ERRORS as e:
        return jsonify(error_body(e)), error_status(e)
    except Exception:
        current_app.logger.exception("Failed to get credit note")
        return jsonify({"error": "Internal server error"}), 500
