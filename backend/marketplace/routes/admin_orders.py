# Overview: Admin API routes for orders; listing, conversion flag, deletion, email retries and CSV export.

from flask import Blueprint, request, jsonify, current_app, Response

from ..decorators import require_admin
from ..services import order_service, retry_service
from ..validation import ValidationError, NotFoundError

admin_orders_bp = Blueprint("admin_orders", __name__, url_prefix="/api/admin/orders")


def _max_orders_arg(data: dict):
    """maxOrders from the body: None when absent, else a non-negative int."""
    raw = data.get("maxOrders")
    if raw is None:
        return None
    if isinstance(raw, bool) or not isinstance(raw, int) or raw < 0:
        raise ValidationError("maxOrders must be a non-negative integer")
    return raw


@admin_orders_bp.get("")
@require_admin
def list_orders_route():
    """
    Query params:
    - conversion: "converted" | "not_converted" (optional)
    """
    try:
        orders = order_service.list_orders(request.args.get("conversion"))
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except Exception as e:
        current_app.logger.exception("Failed to list orders")
        return jsonify({"error": f"Failed to fetch orders: {e}"}), 500

    return jsonify({"orders": orders, "count": len(orders)})


@admin_orders_bp.delete("/<order_id>")
@require_admin
def delete_order_route(order_id: str):
    try:
        deleted = order_service.delete_order(order_id)
    except Exception as e:
        current_app.logger.exception("Failed to delete order")
        return jsonify({"error": f"Failed to delete order: {e}"}), 500

    if not deleted:
        return jsonify({"error": "Order not found"}), 404
    return jsonify({"success": True})


@admin_orders_bp.post("/<order_id>/mark-converted")
@require_admin
def mark_converted_route(order_id: str):
    try:
        order = order_service.mark_converted(order_id)
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except Exception as e:
        current_app.logger.exception("Failed to mark order converted")
        return jsonify({"error": f"Failed to update order: {e}"}), 500

    return jsonify({"success": True, "order": order.to_dict()})


@admin_orders_bp.post("/<order_id>/retry-email")
@require_admin
def retry_email_route(order_id: str):
    """Resend one order's email now. 404 unknown, 400 already sent or out of attempts."""
    try:
        result = retry_service.retry_single_order(order_id)
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except Exception as e:
        current_app.logger.exception("Failed to retry order email")
        return jsonify({"error": f"Failed to retry email: {e}"}), 500

    if not result.success:
        return jsonify({"success": False, "error": result.error, "orderId": order_id}), 500
    return jsonify({"success": True, "message": "Email sent successfully", "orderId": order_id})


@admin_orders_bp.post("/retry-emails")
@require_admin
def retry_emails_route():
    """Body: {"maxOrders": int} (optional, default RETRY_SWEEP_LIMIT)."""
    data = request.get_json(silent=True) or {}

    try:
        report = retry_service.run_retry_sweep(_max_orders_arg(data))
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except Exception as e:
        current_app.logger.exception("Failed to retry emails")
        return jsonify({"error": "Failed to retry emails", "details": str(e)}), 500

    return jsonify(report.to_dict())


@admin_orders_bp.get("/retry-emails")
@require_admin
def retry_stats_route():
    try:
        stats = retry_service.retry_stats()
    except Exception:
        current_app.logger.exception("Failed to get retry stats")
        return jsonify({"error": "Failed to get retry stats"}), 500
    return jsonify(stats)


@admin_orders_bp.get("/export")
@require_admin
def export_orders_route():
    conversion = request.args.get("conversion")

    try:
        csv_text = order_service.export_orders_csv(conversion)
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to export orders")
        return Response("Failed to fetch orders", status=500, mimetype="text/plain")

    return Response(
        csv_text,
        mimetype="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{order_service.export_filename(conversion)}"'},
    )
