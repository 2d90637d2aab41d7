# Overview: Service-layer operations for orders; encapsulates persistence and email retry bookkeeping.

# backend/marketplace/services/order_service.py
"""
Order Store

Orders are written exactly once at checkout, before any email attempt, so a
checkout is never lost to a mail outage. Afterwards only the delivery fields
and the admin conversion flag change.

RETRY BOOKKEEPING:
- email_retry_count counts failed sends and never exceeds MAX_EMAIL_RETRIES
- next_retry_at is the earliest time the sweep may pick the order up; it is
  set to a short lease on creation and on claim, and to a backoff slot after
  a failure
- once email_sent is true the order leaves the retry queue for good
"""
from __future__ import annotations

import csv
import io
import json
from datetime import datetime, timedelta

from flask import current_app
from sqlalchemy import or_, update

from ..extensions import db
from ..models import Order, Product
from ..validation import ValidationError, NotFoundError, parse_price_cents
from .concurrency import execute_conditional_update, run_with_retry
from marketplace.time_utils import utcnow

ORDER_REQUIRED_FIELDS = (
    "product_slug",
    "product_title",
    "customer_name",
    "customer_email",
    "shipping_address",
    "shipping_city",
    "shipping_state",
    "shipping_zip",
)

CONVERSION_FILTERS = {"converted", "not_converted"}


def _max_retries() -> int:
    return current_app.config["MAX_EMAIL_RETRIES"]


def _claim_lease() -> timedelta:
    return timedelta(minutes=current_app.config["RETRY_CLAIM_MINUTES"])


def backoff_delay(retry_count: int) -> timedelta:
    """Delay before the next sweep may retry, given the failures so far (1-based)."""
    delays = current_app.config["RETRY_BACKOFF_MINUTES"]
    index = min(max(retry_count, 1), len(delays)) - 1
    return timedelta(minutes=delays[index])


def save_order(data: dict) -> Order:
    """
    Insert one order row and commit.

    `data` uses the order column names; product_price is a decimal amount.
    The inline checkout send owns the order for one claim lease, so a sweep
    running at the same moment leaves it alone.
    """
    missing = [f for f in ORDER_REQUIRED_FIELDS if not str(data.get(f) or "").strip()]
    if data.get("product_price") is None:
        missing.append("product_price")
    if missing:
        raise ValidationError(f"Missing required fields: {', '.join(missing)}")

    price_cents = parse_price_cents(data["product_price"], field="product_price")
    if price_cents < 0:
        raise ValidationError("product_price must be >= 0")

    now = utcnow()
    order = Order(
        product_slug=str(data["product_slug"]).strip(),
        product_title=str(data["product_title"]).strip(),
        product_price_cents=price_cents,
        customer_name=str(data["customer_name"]).strip(),
        customer_email=str(data["customer_email"]).strip(),
        customer_phone=(str(data.get("customer_phone")).strip() or None) if data.get("customer_phone") else None,
        shipping_address=str(data["shipping_address"]).strip(),
        shipping_city=str(data["shipping_city"]).strip(),
        shipping_state=str(data["shipping_state"]).strip(),
        shipping_zip=str(data["shipping_zip"]).strip(),
        full_order_data=data.get("full_order_data") or {},
        email_sent=False,
        email_error=None,
        email_retry_count=0,
        next_retry_at=now + _claim_lease(),
        created_at=now,
        updated_at=now,
    )
    db.session.add(order)
    db.session.commit()
    current_app.logger.info("Order %s saved for product %s", order.id, order.product_slug)
    return order


def get_order(order_id: str) -> Order | None:
    if not order_id:
        return None
    return db.session.get(Order, order_id)


def require_order(order_id: str) -> Order:
    order = get_order(order_id)
    if order is None:
        raise NotFoundError(f"Order not found with ID: {order_id}")
    return order


def list_orders(conversion: str | None = None) -> list[dict]:
    """
    All orders, newest first, each enriched with the listing owner
    (product_listed_by) of the product it was placed for.
    """
    query = _conversion_query(conversion).order_by(Order.created_at.desc(), Order.id.desc())
    orders = query.all()
    if not orders:
        return []

    slugs = {o.product_slug for o in orders if o.product_slug}
    listed_by = dict(
        db.session.query(Product.slug, Product.listed_by)
        .filter(Product.slug.in_(slugs))
        .all()
    )

    items = []
    for order in orders:
        item = order.to_dict()
        item["product_listed_by"] = listed_by.get(order.product_slug)
        items.append(item)
    return items


def list_orders_needing_retry(
    max_retries: int | None = None,
    *,
    limit: int | None = None,
    now: datetime | None = None,
    due_only: bool = True,
) -> list[Order]:
    """
    Orders whose email has not been delivered and that are below the retry cap.

    With due_only (the default) only orders whose next_retry_at is empty or
    in the past are returned. Oldest first; ties broken by id so the order is stable.
    """
    max_retries = _max_retries() if max_retries is None else max_retries
    now = now or utcnow()

    query = (
        db.session.query(Order)
        .filter(or_(Order.email_sent.is_(False), Order.email_sent.is_(None)))
        .filter(Order.email_retry_count < max_retries)
        .order_by(Order.created_at.asc(), Order.id.asc())
    )
    if due_only:
        query = query.filter(or_(Order.next_retry_at.is_(None), Order.next_retry_at <= now))
    if limit is not None:
        query = query.limit(limit)
    return query.all()


def claim_for_retry(order_id: str, *, now: datetime | None = None) -> bool:
    """
    Take a short lease on an order before a sweep sends its email.

    The precondition (still unsent, below the cap, due) and the lease are
    one UPDATE, so overlapping sweeps cannot both claim the same order.
    """
    now = now or utcnow()
    stmt = (
        update(Order)
        .where(
            Order.id == order_id,
            Order.email_sent.is_(False),
            Order.email_retry_count < _max_retries(),
            or_(Order.next_retry_at.is_(None), Order.next_retry_at <= now),
        )
        .values(next_retry_at=now + _claim_lease())
    )
    claimed = execute_conditional_update(stmt)
    db.session.commit()
    return claimed


def record_email_result(
    order_id: str,
    *,
    success: bool,
    error: str | None = None,
    now: datetime | None = None,
) -> Order | None:
    """
    Persist the outcome of one send attempt.

    Success marks the order delivered and clears the error. Failure bumps
    the retry counter (capped), stores the error and schedules the next
    attempt. A failure reported after the order was already delivered is
    ignored.
    """
    now = now or utcnow()

    def _apply():
        order = db.session.get(Order, order_id, populate_existing=True)
        if order is None:
            return None
        if success:
            order.email_sent = True
            order.email_error = None
            order.next_retry_at = None
        elif not order.email_sent:
            count = min((order.email_retry_count or 0) + 1, _max_retries())
            order.email_retry_count = count
            order.email_error = error or "Unknown error"
            order.next_retry_at = now + backoff_delay(count)
        order.updated_at = now
        db.session.commit()
        return order

    return run_with_retry(_apply)


def mark_converted(order_id: str) -> Order:
    order = require_order(order_id)
    order.is_converted = True
    order.updated_at = utcnow()
    db.session.commit()
    current_app.logger.info("Order %s marked as converted", order_id)
    return order


def delete_order(order_id: str) -> bool:
    order = get_order(order_id)
    if order is None:
        return False
    db.session.delete(order)
    db.session.commit()
    current_app.logger.info("Order %s deleted", order_id)
    return True


def _conversion_query(conversion: str | None):
    query = db.session.query(Order)
    if conversion is None or conversion == "":
        return query
    if conversion not in CONVERSION_FILTERS:
        raise ValidationError("conversion must be 'converted' or 'not_converted'")
    if conversion == "converted":
        return query.filter(Order.is_converted.is_(True))
    return query.filter(or_(Order.is_converted.is_(False), Order.is_converted.is_(None)))


def export_filename(conversion: str | None) -> str:
    if conversion == "converted":
        return "orders-converted.csv"
    if conversion == "not_converted":
        return "orders-not-converted.csv"
    return "orders.csv"


def export_orders_csv(conversion: str | None = None) -> str:
    """Flattened dump of every order column, optionally filtered by conversion status."""
    orders = _conversion_query(conversion).order_by(Order.created_at.asc(), Order.id.asc()).all()
    if not orders:
        return ""

    rows = [o.to_dict() for o in orders]
    headers = list(rows[0].keys())

    buf = io.StringIO()
    writer = csv.DictWriter(buf, fieldnames=headers, lineterminator="\r\n")
    writer.writeheader()
    for row in rows:
        row["full_order_data"] = json.dumps(row["full_order_data"], separators=(",", ":"), ensure_ascii=False)
        writer.writerow({k: ("" if v is None else v) for k, v in row.items()})
    return buf.getvalue()
