# Overview: Storefront visit notification endpoint.

from flask import Blueprint, request, jsonify

from ..services import notify_service
from ..validation import ValidationError

notify_bp = Blueprint("notify", __name__, url_prefix="/api")


def client_ip() -> str:
    """First X-Forwarded-For hop, else the socket peer; blank for loopback."""
    forwarded = request.headers.get("X-Forwarded-For", "")
    ip = forwarded.split(",")[0].strip() or (request.remote_addr or "")
    return "" if ip in notify_service.LOOPBACK_ADDRESSES else ip


@notify_bp.post("/notify-visit")
def notify_visit_route():
    """
    Body: {"url", "device", "deviceType", "fingerprint", "action"?,
           "productTitle"?, "productSlug"?, "productPrice"?}
    """
    try:
        result = notify_service.notify_visit(request.get_json(silent=True), client_ip())
    except ValidationError as e:
        return jsonify({"ok": False, "error": str(e)}), 400
    return jsonify(result)


@notify_bp.get("/notify-visit")
def notify_visit_get():
    return jsonify({"ok": False, "error": "Use POST"}), 405
