# Overview: Outbound mail transport and transactional message rendering for orders and contact forms.

from __future__ import annotations

import html
import re
import smtplib
import ssl
from dataclasses import dataclass
from email.message import EmailMessage
from email.utils import formatdate, make_msgid
from urllib.parse import urlparse

from flask import current_app

from marketplace.time_utils import parse_iso_datetime, utcnow
from ..validation import ValidationError
from . import order_service


class MailDeliveryError(RuntimeError):
    """Raised when the mail transport rejects or cannot deliver a message."""


CONTACT_REASONS = {
    "selling": "Selling on Revibee",
    "order-inquiry": "Inquiring about an order",
    "track-order": "Track my order",
    "return-refund": "Return or refund request",
    "product-question": "Product question",
    "partnership": "Partnership or business inquiry",
    "general": "General inquiry",
    "other": "Other",
}


class Mailer:
    """
    Thin SMTP transport.

    One connection per message: checkout and retry sweeps send at most a few
    dozen messages per request, and a fresh connection keeps failures
    isolated to the message that caused them.
    """

    def __init__(
        self,
        *,
        host: str,
        port: int,
        username: str,
        password: str,
        use_tls: bool = True,
        timeout: float = 10.0,
    ):
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.use_tls = use_tls
        self.timeout = timeout

    @classmethod
    def from_config(cls, config) -> "Mailer":
        return cls(
            host=config["SMTP_HOST"],
            port=config["SMTP_PORT"],
            username=config["SMTP_USERNAME"],
            password=config["SMTP_PASSWORD"],
            use_tls=config["SMTP_USE_TLS"],
            timeout=config["SMTP_TIMEOUT"],
        )

    @property
    def configured(self) -> bool:
        return bool(self.username and self.password)

    @property
    def sender(self) -> str:
        return self.username

    def send(self, message: EmailMessage) -> str:
        if not self.configured:
            raise MailDeliveryError(
                "Missing email configuration. Please set SMTP_USERNAME and SMTP_PASSWORD"
            )
        if not message["From"]:
            message["From"] = self.sender
        try:
            with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as smtp:
                if self.use_tls:
                    smtp.starttls(context=ssl.create_default_context())
                smtp.login(self.username, self.password)
                smtp.send_message(message)
        except (smtplib.SMTPException, OSError) as exc:
            raise MailDeliveryError(str(exc) or exc.__class__.__name__) from exc
        return message["Message-ID"]


def get_mailer() -> Mailer:
    return current_app.extensions["mailer"]


# =============================================================================
# BASE URL RESOLUTION
# =============================================================================

def normalize_base_url(value: str | None) -> str | None:
    """Normalize to scheme://host[:port] with no trailing slash."""
    if not value or not isinstance(value, str):
        return None
    trimmed = value.strip()
    if not trimmed or trimmed == "/":
        return None
    if not re.match(r"^https?://", trimmed, re.IGNORECASE):
        trimmed = f"https://{trimmed}"
    parsed = urlparse(trimmed)
    if not parsed.netloc:
        return None
    return f"{parsed.scheme}://{parsed.netloc}"


def resolve_base_url(candidates=(), fallback: str | None = None) -> str:
    for candidate in candidates:
        normalized = normalize_base_url(candidate)
        if normalized:
            return normalized
    configured = normalize_base_url(current_app.config.get("APP_BASE_URL"))
    return configured or fallback or ""


# =============================================================================
# ORDER EMAIL
# =============================================================================

@dataclass(frozen=True)
class OrderEmailSettings:
    """Everything a worker thread needs to render and send an order email."""
    sender: str
    recipient: str
    default_base_url: str


def order_email_settings() -> OrderEmailSettings:
    mailer = get_mailer()
    recipient = current_app.config.get("ORDER_NOTIFICATION_EMAIL") or mailer.sender
    return OrderEmailSettings(
        sender=mailer.sender,
        recipient=recipient,
        default_base_url=resolve_base_url(),
    )


def _order_product_url(order: dict, default_base_url: str) -> str:
    payload = order.get("full_order_data") or {}
    base_url = default_base_url
    for candidate in (payload.get("site_url"), payload.get("siteUrl")):
        normalized = normalize_base_url(candidate)
        if normalized:
            base_url = normalized
            break
    slug = (order.get("product_slug") or "").lstrip("/")
    return f"{base_url}/products/{slug}" if slug else base_url


def _format_order_date(value: str | None) -> str:
    dt = parse_iso_datetime(value) if value else None
    dt = dt or utcnow()
    return dt.strftime("%Y-%m-%d %H:%M UTC")


def _escape(value) -> str:
    if value in (None, ""):
        return ""
    return html.escape(str(value))


def build_order_message(order: dict, settings: OrderEmailSettings) -> EmailMessage:
    """
    Render the shipping notification for one order.

    `order` is the serialized order (Order.to_dict()), so this can run on a
    worker thread without a database session.
    """
    e = _escape
    product_url = _order_product_url(order, settings.default_base_url)

    body = f"""
      <h2>New Order Shipping Information</h2>

      <h3>Product Details:</h3>
      <ul>
        <li><strong>Product:</strong> {e(order.get("product_title"))}</li>
        <li><strong>Price:</strong> ${float(order.get("product_price") or 0):.2f}</li>
        <li><strong>Product URL:</strong> {e(product_url)}</li>
      </ul>

      <h3>Shipping Address:</h3>
      <ul>
        <li><strong>Street Address:</strong> {e(order.get("shipping_address"))}</li>
        <li><strong>City:</strong> {e(order.get("shipping_city"))}</li>
        <li><strong>State/Province:</strong> {e(order.get("shipping_state"))}</li>
        <li><strong>Zip Code:</strong> {e(order.get("shipping_zip"))}</li>
        <li><strong>Email:</strong> {e(order.get("customer_email"))}</li>
        <li><strong>Phone Number:</strong> {e(order.get("customer_phone")) or "Not provided"}</li>
      </ul>

      <p><strong>Order ID:</strong> {e(order.get("id"))}</p>
      <p><strong>Order Date:</strong> {_format_order_date(order.get("created_at"))}</p>
    """

    message = EmailMessage()
    message["Subject"] = f"New Order - {order.get('product_title')}"
    message["From"] = settings.sender
    message["To"] = settings.recipient
    message["Date"] = formatdate(localtime=False, usegmt=True)
    # Stable per order so a resend after a lost status update threads with the original
    message["Message-ID"] = f"<order-{order.get('id')}@marketplace>"
    message["Reply-To"] = order.get("customer_email") or settings.sender
    message.set_content(f"New order {order.get('id')}: {order.get('product_title')}")
    message.add_alternative(body, subtype="html")
    return message


def deliver_order_email(order: dict, mailer: Mailer, settings: OrderEmailSettings) -> str:
    """Send one order email. No database access; raises MailDeliveryError."""
    return mailer.send(build_order_message(order, settings))


@dataclass
class DeliveryResult:
    order_id: str
    success: bool
    error: str | None = None

    def to_dict(self) -> dict:
        out = {"orderId": self.order_id, "success": self.success}
        if self.error:
            out["error"] = self.error
        return out


def send_order_email(order) -> DeliveryResult:
    """
    Send the order email synchronously and record the outcome on the row.

    Exactly one transport attempt per call.
    """
    snapshot = order.to_dict()
    try:
        deliver_order_email(snapshot, get_mailer(), order_email_settings())
    except MailDeliveryError as exc:
        current_app.logger.warning("Email failed for order %s: %s", order.id, exc)
        order_service.record_email_result(order.id, success=False, error=str(exc))
        return DeliveryResult(order_id=order.id, success=False, error=str(exc))

    current_app.logger.info("Email sent for order %s", order.id)
    order_service.record_email_result(order.id, success=True)
    return DeliveryResult(order_id=order.id, success=True)


# =============================================================================
# CONTACT FORM
# =============================================================================

def send_contact_email(form: dict, *, origin: str | None = None) -> str:
    """
    Forward a storefront contact form submission to the shop inbox.

    Raises ValidationError for missing fields, MailDeliveryError on transport failure.
    """
    name = (form.get("name") or "").strip()
    email = (form.get("email") or "").strip()
    subject = (form.get("subject") or "").strip()
    body_text = (form.get("message") or "").strip()
    if not name or not email or not body_text:
        raise ValidationError("name, email and message are required")

    reason = (form.get("contactReason") or form.get("contact_reason") or "").strip()
    reason_text = CONTACT_REASONS.get(reason, reason) if reason else "Not specified"
    domain = normalize_base_url(origin) or resolve_base_url()

    mailer = get_mailer()
    e = html.escape
    message = EmailMessage()
    message["Subject"] = f"Contact Form [{reason_text}]: {subject}"
    message["From"] = mailer.sender
    message["To"] = current_app.config.get("ORDER_NOTIFICATION_EMAIL") or mailer.sender
    message["Reply-To"] = email
    message["Date"] = formatdate(localtime=False, usegmt=True)
    message["Message-ID"] = make_msgid(domain="marketplace")
    message.set_content(body_text)
    message.add_alternative(
        f"""
      <h2>New Contact Form Submission</h2>
      <ul>
        <li><strong>Name:</strong> {e(name)}</li>
        <li><strong>Email:</strong> {e(email)}</li>
        <li><strong>Contact Reason:</strong> {e(reason_text)}</li>
        <li><strong>Subject:</strong> {e(subject)}</li>
        <li><strong>Message:</strong> {e(body_text)}</li>
        <li><strong>Domain:</strong> {e(domain)}</li>
      </ul>
    """,
        subtype="html",
    )
    return mailer.send(message)
