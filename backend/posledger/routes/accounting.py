# Overview: Flask API routes for the accounting journal; parses input and returns JSON responses.

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_tenant
from ..services import accounting_service
from ..validation import (
    SERVICE_ERRORS,
    coerce_cents,
    coerce_datetime,
    coerce_int,
    error_body,
    error_status,
    require_fields,
)


accounting_bp = Blueprint("accounting", __name__, url_prefix="/api/accounting")


@accounting_bp.get("/entries")
@require_tenant
def list_entries_route():
    """
    Paginated journal entries, newest first.

    Query params: start_date, end_date, entry_type, payment_method,
    category, page (default 1), limit (default 50, max 200)
    """
    try:
        args = request.args
        entries, pagination = accounting_service.list_accounting_entries(
            g.tenant,
            start_date=coerce_datetime(args.get("start_date"), "start_date"),
            end_date=coerce_datetime(args.get("end_date"), "end_date"),
            entry_type=args.get("entry_type"),
            payment_method=args.get("payment_method"),
            category=args.get("category"),
            page=coerce_int(args.get("page"), "page", required=False) or 1,
            limit=coerce_int(args.get("limit"), "limit", required=False) or 50,
        )
        return jsonify({"entries": [e.to_dict() for e in entries], "pagination": pagination}), 200

    except SERVICE_ERRORS as e:
        return jsonify(error_body(e)), error_status(e)
    except Exception:
        current_app.logger.exception("Failed to list accounting entries")
        return jsonify({"error": "Internal server error"}), 500


@accounting_bp.post("/entries")
@require_tenant
def create_entry_route():
    """
    Record a manual journal entry.

    Request body:
    {
        "entry_type": "Expense",
        "amount_cents": 12000,
        "description": "Shop rent",
        "payment_method": "Bank",  (optional)
        "category": "Rent",  (optional)
        "entry_date": "2026-10-01T00:00:00Z"  (optional, not in the future)
    }
    """
    try:
        data = require_fields(request.get_json(silent=True), "entry_type", "amount_cents", "description")

        entry = accounting_service.create_accounting_entry(
            g.tenant,
            entry_type=data.get("entry_type"),
            amount_cents=coerce_cents(data.get("amount_cents"), "amount_cents"),
            description=data.get("description"),
            payment_method=data.get("payment_method"),
            category=data.get("category"),
            entry_date=coerce_datetime(data.get("entry_date"), "entry_date"),
        )
        return jsonify({"entry": entry.to_dict()}), 201

    except SERVICE_ERRORS as e:
        return jsonify(error_body(e)), error_status(e)
    except Exception:
        current_app.logger.exception("Failed to create accounting entry")
        return jsonify({"error": "Internal server error"}), 500


@accounting_bp.get("/summary")
@require_tenant
def financial_summary_route():
    """Totals per entry type. Query params: start_date, end_date"""
    try:
        summary = accounting_service.get_financial_summary(
            g.tenant,
            start_date=coerce_datetime(request.args.get("start_date"), "start_date"),
            end_date=coerce_datetime(request.args.get("end_date"), "end_date"),
        )
        return jsonify(summary), 200

    except SERVICE_ERRORS as e:
        return jsonify(error_body(e)), error_status(e)
    except Exception:
        current_app.logger.exception("Failed to build financial summary")
        return jsonify({"error": "Internal server error"}), 500
