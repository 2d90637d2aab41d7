# Overview: Checkout orchestration; persists the order first, then races the notification email against a deadline.

# backend/marketplace/services/checkout_service.py
"""
Checkout

FLOW:
  received -> order_saved -> (email_sent | email_deferred)

The save is mandatory and blocking: it is the only step whose failure the
customer sees. The email send runs on the app's executor and the request
waits at most CHECKOUT_EMAIL_TIMEOUT seconds for it. A send that finishes
after the deadline still records its outcome from the worker thread, inside
a fresh app context. An order whose send never reports back is picked up by
the retry sweep once its claim lease expires.
"""
from __future__ import annotations

import time
from concurrent.futures import TimeoutError as FutureTimeout
from dataclasses import dataclass

from flask import current_app

from ..validation import ValidationError
from . import order_service
from .email_service import deliver_order_email, get_mailer, order_email_settings

SHIPPING_REQUIRED_FIELDS = ("email", "streetAddress", "city", "state", "zipCode")
PRODUCT_REQUIRED_FIELDS = ("slug", "title", "price")


@dataclass
class CheckoutResult:
    order_id: str
    email_sent: bool
    duration_ms: int
    email_error: str | None = None

    def to_dict(self) -> dict:
        if self.email_sent:
            note = "Order saved and email sent"
        else:
            note = "Order saved. Email will be retried automatically"
        out = {
            "success": True,
            "orderId": self.order_id,
            "emailSent": self.email_sent,
            "duration": f"{self.duration_ms}ms",
            "note": note,
        }
        return out


def _missing(payload: dict, fields, prefix: str) -> list[str]:
    missing = []
    for f in fields:
        value = payload.get(f)
        if value is None or (isinstance(value, str) and not value.strip()):
            missing.append(f"{prefix}.{f}")
    return missing


def validate_checkout(shipping, product) -> None:
    if not isinstance(shipping, dict) or not isinstance(product, dict):
        raise ValidationError("Missing required fields: shippingData and product are required")
    missing = _missing(shipping, SHIPPING_REQUIRED_FIELDS, "shippingData")
    missing += _missing(product, PRODUCT_REQUIRED_FIELDS, "product")
    if missing:
        raise ValidationError(f"Missing required fields: {', '.join(missing)}")


def _order_fields(shipping: dict, product: dict, site_url: str | None) -> dict:
    email = str(shipping["email"]).strip()
    return {
        "product_slug": product["slug"],
        "product_title": product["title"],
        "product_price": product["price"],
        "customer_name": str(shipping.get("fullName") or "").strip() or email,
        "customer_email": email,
        "customer_phone": shipping.get("phone"),
        "shipping_address": shipping["streetAddress"],
        "shipping_city": shipping["city"],
        "shipping_state": shipping["state"],
        "shipping_zip": shipping["zipCode"],
        "full_order_data": {
            "shipping": shipping,
            "product": product,
            "site_url": site_url,
        },
    }


def _record_late_result(app, order_id: str):
    """Done-callback recording a send that outlived the checkout deadline."""
    def _done(future):
        with app.app_context():
            exc = future.exception()
            try:
                if exc is None:
                    order_service.record_email_result(order_id, success=True)
                    app.logger.info("Late email delivered for order %s", order_id)
                else:
                    order_service.record_email_result(order_id, success=False, error=str(exc))
                    app.logger.warning("Late email failed for order %s: %s", order_id, exc)
            except Exception:
                app.logger.exception("Failed to record late email result for order %s", order_id)
    return _done


def place_order(shipping, product, site_url: str | None = None) -> CheckoutResult:
    """
    Persist the order, then try to send its notification within the deadline.

    Raises ValidationError for an incomplete payload. Anything that goes
    wrong after the save is logged and reported as emailSent=false.
    """
    started = time.monotonic()
    validate_checkout(shipping, product)

    order = order_service.save_order(_order_fields(shipping, product, site_url))
    order_id = order.id

    email_sent = False
    email_error = None
    try:
        app = current_app._get_current_object()
        executor = app.extensions["email_executor"]
        future = executor.submit(
            deliver_order_email, order.to_dict(), get_mailer(), order_email_settings()
        )
        try:
            future.result(timeout=app.config["CHECKOUT_EMAIL_TIMEOUT"])
        except FutureTimeout:
            app.logger.warning("Email for order %s still pending after checkout deadline", order_id)
            future.add_done_callback(_record_late_result(app, order_id))
        except Exception as exc:
            email_error = str(exc) or exc.__class__.__name__
            order_service.record_email_result(order_id, success=False, error=email_error)
            app.logger.warning("Email failed for order %s: %s", order_id, exc)
        else:
            email_sent = True
            order_service.record_email_result(order_id, success=True)
            app.logger.info("Email sent for order %s", order_id)
    except Exception as exc:
        current_app.logger.exception("Email dispatch failed for order %s", order_id)
        email_error = str(exc) or exc.__class__.__name__

    duration_ms = int((time.monotonic() - started) * 1000)
    return CheckoutResult(
        order_id=order_id,
        email_sent=email_sent,
        duration_ms=duration_ms,
        email_error=email_error,
    )
