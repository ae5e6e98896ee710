# Overview: Flask API routes for orders; parses input and returns JSON responses.

# backend/posledger/routes/orders.py
"""
Order API Routes

DESIGN:
- Creating an order deducts stock, invoices it and debits the customer
  ledger; the response carries the invoice id (null if invoicing failed)
- Status updates accept the twin fields status / order_status; when both
  are given they must agree
- All routes are scoped to the caller's branch (X-Branch-Id)
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_tenant
from ..services import customer_service, order_service
from ..validation import SERVICE_ERRORS, coerce_datetime, coerce_int, error_body, error_status


orders_bp = Blueprint("orders", __name__, url_prefix="/api/orders")


# =============================================================================
# ORDER CREATION
# =============================================================================

@orders_bp.post("/")
@require_tenant
def create_order_route():
    """
    Place an order.

    Request body:
    {
        "customer": {"full_name": "Jane Doe", "phone": "555-0100", "email": "...", "address": "..."},
        "payment_method": "Cash",
        "items": [{"product_id": 1, "quantity": 2, "unit_price_cents": 1000}],
        "due_date": "2026-11-30T00:00:00Z",  (optional)
        "notes": "..."  (optional)
    }

    Returns:
        201: {"order": {...}, "invoice_id": 7, "invoice_number": "INV-202610-0001"}
        400: Invalid input (empty items, missing customer name, no branch)
        404: Product not found in branch
        409: Insufficient stock
    """
    try:
        data = request.get_json(silent=True) or {}

        order, invoice = order_service.create_order(
            g.tenant,
            customer=data.get("customer") or {},
            payment_method=data.get("payment_method"),
            items=data.get("items"),
            due_date=coerce_datetime(data.get("due_date"), "due_date"),
            notes=data.get("notes"),
        )

        return jsonify({
            "order": order.to_dict(),
            "invoice_id": invoice.id if invoice else None,
            "invoice_number": invoice.invoice_number if invoice else None,
        }), 201

    except SERVICE_ERRORS as e:
        return jsonify(error_body(e)), error_status(e)
    except Exception:
        current_app.logger.exception("Failed to create order")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# ORDER QUERIES
# =============================================================================

@orders_bp.get("/")
@require_tenant
def list_orders_route():
    """
    List orders of the caller's branch.

    Query params: status, customer_id, start_date, end_date
    """
    try:
        orders = order_service.list_orders(
            g.tenant,
            status=request.args.get("status"),
            customer_id=coerce_int(request.args.get("customer_id"), "customer_id", required=False),
            start_date=coerce_datetime(request.args.get("start_date"), "start_date"),
            end_date=coerce_datetime(request.args.get("end_date"), "end_date"),
        )
        return jsonify({"orders": [o.to_dict(include_lines=False) for o in orders], "count": len(orders)}), 200

    except SERVICE_ERRORS as e:
        return jsonify(error_body(e)), error_status(e)
    except Exception:
        current_app.logger.exception("Failed to list orders")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.get("/<int:order_id>")
@require_tenant
def get_order_route(order_id: int):
    try:
        order = order_service.get_order(g.tenant, order_id)
        return jsonify({"order": order.to_dict()}), 200

    except SERVICE_ERRORS as e:
        return jsonify(error_body(e)), error_status(e)
    except Exception:
        current_app.logger.exception("Failed to get order")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.get("/<int:order_id>/history")
@require_tenant
def get_order_history_route(order_id: int):
    try:
        history = order_service.get_order_history(g.tenant, order_id)
        return jsonify({"order_id": order_id, "history": [h.to_dict() for h in history]}), 200

    except SERVICE_ERRORS as e:
        return jsonify(error_body(e)), error_status(e)
    except Exception:
        current_app.logger.exception("Failed to get order history")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.get("/customers/search")
@require_tenant
def search_customers_route():
    """Search customers of the caller's company by name, phone or email (?term=)."""
    try:
        customers = customer_service.search_customers(g.tenant, request.args.get("term"))
        return jsonify({"customers": [c.to_dict() for c in customers]}), 200

    except Exception:
        current_app.logger.exception("Failed to search customers")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# STATUS UPDATES
# =============================================================================

@orders_bp.put("/<int:order_id>/status")
@require_tenant
def update_order_status_route(order_id: int):
    """
    Change an order's status.

    Request body:
    {
        "status": "Paid",
        "order_status": "Paid",  (optional, defaults to status)
        "notes": "..."  (optional)
    }

    Returns:
        200: {"order": {...}, "updated": 1}
        400: Invalid or inconsistent status, cancelled order reopened
        404: Order not found in branch
    """
    try:
        data = request.get_json(silent=True) or {}

        order = order_service.update_order_status(
            g.tenant,
            order_id,
            data.get("status"),
            data.get("order_status"),
            notes=data.get("notes"),
        )
        return jsonify({"order": order.to_dict(), "updated": 1}), 200

    except SERVICE_ERRORS as e:
        return jsonify(error_body(e)), error_status(e)
    except Exception:
        current_app.logger.exception("Failed to update order status")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.put("/bulk-status")
@require_tenant
def bulk_update_order_status_route():
    """
    Apply one status to many orders.

    Request body:
    {
        "order_ids": [1, 2, 3],
        "status": "Cancelled",
        "order_status": "Cancelled"  (optional)
    }

    Returns:
        200: {"updated": 2}  (orders outside the branch are skipped)
    """
    try:
        data = request.get_json(silent=True) or {}

        updated = order_service.bulk_update_order_status(
            g.tenant,
            data.get("order_ids"),
            data.get("status"),
            data.get("order_status"),
        )
        return jsonify({"updated": updated}), 200

    except SERVICE_ERRORS as e:
        return jsonify(error_body(e)), error_status(e)
    except Exception:
        current_app.logger.exception("Failed to bulk update order status")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.delete("/<int:order_id>")
@require_tenant
def delete_order_route(order_id: int):
    try:
        order_service.delete_order(g.tenant, order_id)
        return jsonify({"deleted": order_id}), 200

    except SERVICE_ERRORS as e:
        return jsonify(error_body(e)), error_status(e)
    except Exception:
        current_app.logger.exception("Failed to delete order")
        return jsonify({"error": "Internal server error"}), 500
