# Overview: Storefront visit and purchase-intent notifications pushed to a Telegram chat.

# backend/marketplace/services/notify_service.py
"""
Visit Notifications

The storefront reports page visits (and add-to-cart clicks) here; each one
becomes a single Telegram message in the shop owner's chat.

RULES:
- Unconfigured (no bot token or chat id): nothing is sent, the caller gets
  {"ok": true, "skipped": true}.
- The visitor's country comes from a geo lookup on the client IP. Lookup
  failures and loopback addresses degrade to "Unknown".
- A Telegram failure is logged and never surfaced to the visitor.
"""
from __future__ import annotations

import html
from dataclasses import dataclass
from datetime import datetime

import httpx
from flask import current_app

from marketplace.time_utils import utcnow
from ..validation import ValidationError

LOOPBACK_ADDRESSES = {"", "::1", "127.0.0.1"}

KIND_ADD_TO_CART = "add_to_cart"
KIND_CHECKOUT = "checkout_visit"
KIND_ABOUT = "about_visit"
KIND_VISIT = "visit"


class NotifierError(RuntimeError):
    """Telegram rejected the message or could not be reached."""


@dataclass(frozen=True)
class VisitorLocation:
    country: str = "Unknown"
    country_code: str = ""

    @property
    def flag(self) -> str:
        """Regional-indicator flag for a two-letter country code."""
        code = self.country_code.upper()
        if len(code) != 2 or not code.isalpha():
            return ""
        return "".join(chr(0x1F1E6 + ord(c) - ord("A")) for c in code)


class VisitNotifier:
    """httpx client for the Telegram Bot API plus the IP geo lookup."""

    def __init__(
        self,
        *,
        bot_token: str,
        chat_id: str,
        api_url: str = "https://api.telegram.org",
        geo_url: str = "https://ipwho.is",
        timeout: float = 5.0,
        transport: httpx.BaseTransport | None = None,
    ):
        self.bot_token = bot_token
        self.chat_id = chat_id
        self.api_url = (api_url or "").rstrip("/")
        self.geo_url = (geo_url or "").rstrip("/")
        self.timeout = timeout
        self.transport = transport

    @classmethod
    def from_config(cls, config, transport: httpx.BaseTransport | None = None) -> "VisitNotifier":
        return cls(
            bot_token=config["TELEGRAM_BOT_TOKEN"],
            chat_id=config["TELEGRAM_CHAT_ID"],
            api_url=config["TELEGRAM_API_URL"],
            geo_url=config["GEO_LOOKUP_URL"],
            timeout=config["NOTIFY_TIMEOUT"],
            transport=transport,
        )

    @property
    def configured(self) -> bool:
        return bool(self.bot_token and self.chat_id)

    def _client(self) -> httpx.Client:
        return httpx.Client(timeout=self.timeout, transport=self.transport)

    def locate(self, ip: str) -> VisitorLocation:
        if ip in LOOPBACK_ADDRESSES or not self.geo_url:
            return VisitorLocation()
        try:
            with self._client() as client:
                resp = client.get(f"{self.geo_url}/{ip}")
            resp.raise_for_status()
            geo = resp.json()
        except (httpx.HTTPError, ValueError) as exc:
            current_app.logger.debug("Geo lookup for %s failed: %s", ip, exc)
            return VisitorLocation()
        if not isinstance(geo, dict) or not geo.get("success"):
            return VisitorLocation()
        return VisitorLocation(
            country=geo.get("country") or "Unknown",
            country_code=geo.get("country_code") or "",
        )

    def send(self, text: str, *, priority: bool = False) -> None:
        if not self.configured:
            raise NotifierError("Telegram is not configured. Set TELEGRAM_BOT_TOKEN and TELEGRAM_CHAT_ID")
        payload = {
            "chat_id": self.chat_id,
            "text": text,
            "parse_mode": "HTML",
            "disable_web_page_preview": True,
        }
        if priority:
            payload["disable_notification"] = False
        try:
            with self._client() as client:
                resp = client.post(f"{self.api_url}/bot{self.bot_token}/sendMessage", json=payload)
        except httpx.HTTPError as exc:
            raise NotifierError(f"Telegram request failed: {exc}") from exc
        if resp.status_code >= 400:
            raise NotifierError(f"Telegram request failed: {resp.status_code} {resp.text}")


def get_notifier() -> VisitNotifier:
    return current_app.extensions["visit_notifier"]


# =============================================================================
# MESSAGE
# =============================================================================

def visit_kind(visit: dict) -> str:
    url = visit["url"]
    action = visit.get("action")
    if action == "add_to_cart" and visit.get("productTitle"):
        return KIND_ADD_TO_CART
    if "/checkout" in url or action == "checkout_visit":
        return KIND_CHECKOUT
    if "/about" in url:
        return KIND_ABOUT
    return KIND_VISIT


def _device_emoji(device_type) -> str:
    if device_type == "Mobile":
        return "📱"
    if device_type == "Tablet":
        return "💻"
    return "🖥️"


def _escape(value) -> str:
    return html.escape(str(value if value is not None else ""))


def _format_price(value) -> str:
    try:
        return f"${float(value):,.2f}"
    except (TypeError, ValueError):
        return ""


def build_visit_message(visit: dict, ip: str, location: VisitorLocation, now: datetime) -> str:
    e = _escape
    url = visit["url"]
    kind = visit_kind(visit)
    country = f"{location.flag} {location.country}" if location.flag else location.country

    details = [
        f"🔎 <b>IP:</b> <code>{e(ip or 'Unknown')}</code>",
        f"🏳️ <b>Country:</b> {e(country)}",
        f"{_device_emoji(visit.get('deviceType'))} <b>Device:</b> "
        f"{e(visit.get('deviceType'))} <code>{e(visit.get('device'))}</code>",
        f"🆔 <b>Fingerprint:</b> <code>{e(visit.get('fingerprint'))}</code>",
        f"📅 <b>Date:</b> <code>{now.strftime('%Y-%m-%d')}</code>",
        f"⏰ <b>Time:</b> <code>{now.strftime('%H:%M:%S')} UTC</code>",
    ]
    link = f'🔗 <b>URL:</b> <a href="{e(url)}">{e(url)}</a>'

    if kind == KIND_ADD_TO_CART:
        lines = [
            "🛒 <b>ADD TO CART</b> 🛒",
            "",
            f"📦 <b>Product:</b> {e(visit['productTitle'])}",
        ]
        price = _format_price(visit.get("productPrice"))
        if price:
            lines.append(f"💵 <b>Price:</b> {price}")
        slug = visit.get("productSlug")
        if slug:
            product_url = url.replace("/checkout", f"/products/{slug}")
            lines.append(f'🔗 <b>Product URL:</b> <a href="{e(product_url)}">View Product</a>')
        lines += ["", link, *details, "", "⚠️ <b>User is showing purchase intent</b>"]
    elif kind == KIND_CHECKOUT:
        lines = ["🛒 <b>CHECKOUT PAGE VISIT</b> 🛒", "", link, *details, "",
                 "⚠️ <b>A user is on the checkout page</b>"]
    elif kind == KIND_ABOUT:
        lines = ["📖 <b>ABOUT PAGE VISIT</b> 📖", "", link, *details]
    else:
        lines = ["👀 <b>New Website Visit</b>", link, *details]
    return "\n".join(lines)


def notify_visit(visit, ip: str, notifier: VisitNotifier | None = None, now: datetime | None = None) -> dict:
    """
    Send one visit notification.

    Raises ValidationError when the body is not an object with a url.
    Returns the JSON body for the route.
    """
    notifier = notifier or get_notifier()
    if not notifier.configured:
        current_app.logger.warning("Telegram credentials not configured. Skipping visit notification")
        return {"ok": True, "skipped": True, "reason": "Telegram not configured"}

    if not isinstance(visit, dict):
        raise ValidationError("Request body must be a JSON object")
    if not isinstance(visit.get("url"), str) or not visit["url"].strip():
        raise ValidationError("url is required")

    location = notifier.locate(ip)
    text = build_visit_message(visit, ip, location, now or utcnow())
    priority = visit_kind(visit) != KIND_VISIT
    try:
        notifier.send(text, priority=priority)
    except NotifierError as exc:
        current_app.logger.warning("Visit notification failed: %s", exc)
        return {"ok": True, "delivered": False}
    return {"ok": True, "delivered": True}
