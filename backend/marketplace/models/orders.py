from __future__ import annotations

import uuid

from ..extensions import db
from marketplace.time_utils import to_utc_z, utcnow


def _new_order_id() -> str:
    return str(uuid.uuid4())


class Order(db.Model):
    """
    One row per checkout attempt.

    DURABILITY:
    The row is written before any email attempt. After creation only the
    email delivery fields (email_sent, email_error, email_retry_count,
    next_retry_at) and is_converted change. Deletion is physical.

    RETRY STATE:
    There is no separate "deferred" status. An order is awaiting delivery
    when email_sent is false and email_retry_count is below the cap;
    next_retry_at holds the earliest time the retry sweep may pick it up.
    """
    __tablename__ = "orders"
    __table_args__ = (
        db.Index("ix_orders_email_pending", "email_sent", "email_retry_count"),
        db.Index("ix_orders_created_at", "created_at"),
    )

    id = db.Column(db.String(36), primary_key=True, default=_new_order_id)

    # Product snapshot at checkout time
    product_slug = db.Column(db.String(255), nullable=False, index=True)
    product_title = db.Column(db.String(255), nullable=False)
    product_price_cents = db.Column(db.Integer, nullable=False)

    customer_name = db.Column(db.String(255), nullable=False)
    customer_email = db.Column(db.String(255), nullable=False)
    customer_phone = db.Column(db.String(64), nullable=True)

    shipping_address = db.Column(db.String(500), nullable=False)
    shipping_city = db.Column(db.String(120), nullable=False)
    shipping_state = db.Column(db.String(120), nullable=False)
    shipping_zip = db.Column(db.String(32), nullable=False)

    # Full checkout request payload, kept for reference
    full_order_data = db.Column(db.JSON, nullable=False, default=dict)

    email_sent = db.Column(db.Boolean, nullable=False, default=False)
    email_error = db.Column(db.Text, nullable=True)
    email_retry_count = db.Column(db.Integer, nullable=False, default=0)
    next_retry_at = db.Column(db.DateTime(timezone=True), nullable=True)

    is_converted = db.Column(db.Boolean, nullable=False, default=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        server_default=db.func.now(),
        onupdate=utcnow,
    )

    @property
    def product_price(self) -> float:
        return round((self.product_price_cents or 0) / 100, 2)

    def __repr__(self) -> str:
        return f"<Order id={self.id} slug={self.product_slug!r} email_sent={self.email_sent}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_slug": self.product_slug,
            "product_title": self.product_title,
            "product_price": self.product_price,
            "customer_name": self.customer_name,
            "customer_email": self.customer_email,
            "customer_phone": self.customer_phone,
            "shipping_address": self.shipping_address,
            "shipping_city": self.shipping_city,
            "shipping_state": self.shipping_state,
            "shipping_zip": self.shipping_zip,
            "full_order_data": dict(self.full_order_data or {}),
            "email_sent": bool(self.email_sent),
            "email_error": self.email_error,
            "email_retry_count": self.email_retry_count or 0,
            "next_retry_at": to_utc_z(self.next_retry_at),
            "is_converted": bool(self.is_converted),
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
