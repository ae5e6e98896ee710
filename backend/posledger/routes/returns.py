# Overview: Flask API routes for whole and partial returns; parses input and returns JSON responses.

# backend/posledger/routes/returns.py
"""
Returns API Routes

DESIGN:
- Whole returns refund the full invoice and restock every line
- Partial returns name products, quantities and amounts per item
- Both are limited to invoices inside the return window and the caller's branch
- The credit note and customer ledger refund follow the return (best-effort)
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_tenant
from ..services import return_service
from ..validation import SERVICE_ERRORS, coerce_int, error_body, error_status, require_fields


returns_bp = Blueprint("returns", __name__, url_prefix="/api/returns")


@returns_bp.post("/whole")
@require_tenant
def create_whole_return_route():
    """
    Return an entire invoice.

    Request body:
    {
        "invoice_id": 3,
        "order_id": 12,
        "reason": "Wrong size",
        "refund_method": "Cash" | "Card" | "Store Credit",
        "total_return_amount_cents": 4500,
        "notes": "..."  (optional)
    }

    Returns:
        201: {"return": {...}}
        400: Window expired, already returned, amount mismatch, bad input
        404: Invoice not found
    """
    try:
        data = require_fields(
            request.get_json(silent=True),
            "invoice_id", "order_id", "reason", "refund_method", "total_return_amount_cents",
        )

        return_doc = return_service.create_whole_return(
            g.tenant,
            invoice_id=coerce_int(data.get("invoice_id"), "invoice_id"),
            order_id=coerce_int(data.get("order_id"), "order_id"),
            reason=data.get("reason"),
            refund_method=data.get("refund_method"),
            total_return_amount_cents=data.get("total_return_amount_cents"),
            notes=data.get("notes"),
        )
        return jsonify({"return": return_doc.to_dict()}), 201

    except SERVICE_ERRORS as e:
        return jsonify(error_body(e)), error_status(e)
    except Exception:
        current_app.logger.exception("Failed to create whole return")
        return jsonify({"error": "Internal server error"}), 500


@returns_bp.post("/partial")
@require_tenant
def create_partial_return_route():
    """
    Return some products of an invoice.

    Request body:
    {
        "invoice_id": 3,
        "order_id": 12,
        "reason": "Damaged in transit",
        "refund_method": "Card",
        "items": [{"product_id": 1, "return_quantity": 1, "return_amount_cents": 1000}],
        "total_return_amount_cents": 1000,
        "notes": "..."  (optional)
    }

    Returns:
        201: {"return": {...}}
        400: Quantity exceeded, amount mismatch, window expired, bad input
        404: Invoice not found
    """
    try:
        data = require_fields(
            request.get_json(silent=True),
            "invoice_id", "order_id", "reason", "refund_method", "total_return_amount_cents",
        )

        return_doc = return_service.create_partial_return(
            g.tenant,
            invoice_id=coerce_int(data.get("invoice_id"), "invoice_id"),
            order_id=coerce_int(data.get("order_id"), "order_id"),
            reason=data.get("reason"),
            refund_method=data.get("refund_method"),
            items=data.get("items"),
            total_return_amount_cents=data.get("total_return_amount_cents"),
            notes=data.get("notes"),
        )
        return jsonify({"return": return_doc.to_dict()}), 201

    except SERVICE_ERRORS as e:
        return jsonify(error_body(e)), error_status(e)
    except Exception:
        current_app.logger.exception("Failed to create partial return")
        return jsonify({"error": "Internal server error"}), 500


@returns_bp.put("/<int:return_id>/status")
@require_tenant
def update_return_status_route(return_id: int):
    """
    Request body: {"status": "Approved" | "Completed" | "Rejected" | "Pending"}
    """
    try:
        data = require_fields(request.get_json(silent=True), "status")

        return_doc = return_service.update_return_status(g.tenant, return_id, data.get("status"))
        return jsonify({"return": return_doc.to_dict()}), 200

    except SERVICE_ERRORS as e:
        return jsonify(error_body(e)), error_status(e)
    except Exception:
        current_app.logger.exception("Failed to update return status")
        return jsonify({"error": "Internal server error"}), 500


@returns_bp.get("/")
@require_tenant
def list_returns_route():
    try:
        returns = return_service.list_returns(
            g.tenant,
            status=request.args.get("status"),
            return_type=request.args.get("return_type"),
            invoice_id=coerce_int(request.args.get("invoice_id"), "invoice_id", required=False),
        )
        return jsonify({"returns": [r.to_dict(include_items=False) for r in returns], "count": len(returns)}), 200

    except SERVICE_ERRORS as e:
        return jsonify(error_body(e)), error_status(e)
    except Exception:
        current_app.logger.exception("Failed to list returns")
        return jsonify({"error": "Internal server error"}), 500


@returns_bp.get("/summary")
@require_tenant
def return_summary_route():
    try:
        return jsonify(return_service.get_return_summary(g.tenant)), 200
    except Exception:
        current_app.logger.exception("Failed to build return summary")
        return jsonify({"error": "Internal server error"}), 500


@returns_bp.get("/<int:return_id>")
@require_tenant
def get_return_route(return_id: int):
    try:
        return_doc = return_service.get_return(g.tenant, return_id)
        return jsonify({"return": return_doc.to_dict()}), 200

    except SERVICE_ERRORS as e:
        return jsonify(error_body(e)), error_status(e)
    except Exception:
        current_app.logger.exception("Failed to get return")
        return jsonify({"error": "Internal server error"}), 500
