# Overview: Storefront form routes; checkout (order + shipping email) and the contact form.

from flask import Blueprint, request, jsonify, current_app

from ..services import checkout_service, email_service
from ..services.email_service import MailDeliveryError
from ..validation import ValidationError

checkout_bp = Blueprint("checkout", __name__, url_prefix="/api")


@checkout_bp.post("/send-shipping-email")
def send_shipping_email_route():
    """
    Checkout.

    Body: {"shippingData": {...}, "product": {"slug", "title", "price"}, "siteUrl"?}

    The storefront URL used in the email comes from siteUrl, then
    shippingData.siteUrl, then the Origin and Referer headers, then
    APP_BASE_URL.

    The order is saved before the email is attempted. Once saved, the
    response is 200 whatever happens to the email; emailSent tells the
    storefront whether it went out inline.
    """
    data = request.get_json(silent=True) or {}
    shipping = data.get("shippingData")
    site_url = email_service.resolve_base_url([
        data.get("siteUrl"),
        shipping.get("siteUrl") if isinstance(shipping, dict) else None,
        request.headers.get("Origin"),
        request.headers.get("Referer"),
    ]) or None

    try:
        result = checkout_service.place_order(shipping, data.get("product"), site_url)
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to save order")
        return jsonify({"error": "Failed to save order. Please try again."}), 500

    return jsonify(result.to_dict()), 200


@checkout_bp.post("/send-contact-email")
def send_contact_email_route():
    data = request.get_json(silent=True) or {}

    try:
        message_id = email_service.send_contact_email(data, origin=request.headers.get("Origin"))
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except MailDeliveryError:
        current_app.logger.exception("Failed to send contact email")
        return jsonify({"error": "Failed to send message. Please try again later."}), 500

    return jsonify({"success": True, "messageId": message_id}), 200
