# Overview: Email retry operations; single-order resend and the batched sweep used by admins and cron.

# backend/marketplace/services/retry_service.py
"""
Email Retry

SWEEP:
1. Select due, undelivered orders below the retry cap (oldest first).
2. Split into batches of RETRY_BATCH_SIZE.
3. Per batch: claim each order (conditional UPDATE), send the claimed ones
   concurrently on the app executor, wait for all of them, then record
   every outcome. One failed send never aborts the batch.
4. Sleep RETRY_BATCH_DELAY between batches.

Worker threads only talk to the mail transport; every database read and
write happens on the calling thread.
"""
from __future__ import annotations

import time
from concurrent.futures import wait
from dataclasses import dataclass, field

from flask import current_app

from ..validation import ValidationError, NotFoundError
from . import order_service
from .email_service import (
    DeliveryResult,
    deliver_order_email,
    get_mailer,
    order_email_settings,
    send_order_email,
)
from marketplace.time_utils import to_utc_z, utcnow


@dataclass
class SweepReport:
    processed: int = 0
    sent: int = 0
    failed: int = 0
    skipped: int = 0
    details: list[DeliveryResult] = field(default_factory=list)

    def to_dict(self) -> dict:
        out = {
            "success": True,
            "processed": self.processed,
            "sent": self.sent,
            "failed": self.failed,
            "skipped": self.skipped,
            "details": [r.to_dict() for r in self.details],
        }
        if not self.processed:
            out["message"] = "No orders need email retry"
        return out


def retry_single_order(order_id: str) -> DeliveryResult:
    """
    Resend one order's email right now, ignoring its retry schedule.

    Raises NotFoundError for an unknown id and ValidationError when the
    order was already delivered or has used up its attempts.
    """
    order = order_service.get_order(order_id)
    if order is None:
        raise NotFoundError(f"Order not found with ID: {order_id}")
    if order.email_sent:
        raise ValidationError("Email already sent for this order")
    max_retries = current_app.config["MAX_EMAIL_RETRIES"]
    if (order.email_retry_count or 0) >= max_retries:
        raise ValidationError(f"Maximum retry attempts ({max_retries}) reached for this order")

    return send_order_email(order)


def _chunks(items: list, size: int):
    for start in range(0, len(items), size):
        yield items[start:start + size]


def _send_batch(order_ids: list[str], report: SweepReport) -> None:
    app = current_app._get_current_object()
    executor = app.extensions["email_executor"]
    mailer = get_mailer()
    settings = order_email_settings()

    futures = {}
    for order_id in order_ids:
        if not order_service.claim_for_retry(order_id):
            # Another sweep or the checkout request owns it right now
            report.skipped += 1
            continue
        snapshot = order_service.require_order(order_id).to_dict()
        futures[executor.submit(deliver_order_email, snapshot, mailer, settings)] = order_id

    if not futures:
        return

    wait(futures)

    for future, order_id in futures.items():
        exc = future.exception()
        report.processed += 1
        if exc is None:
            order_service.record_email_result(order_id, success=True)
            report.sent += 1
            report.details.append(DeliveryResult(order_id=order_id, success=True))
        else:
            error = str(exc) or exc.__class__.__name__
            order_service.record_email_result(order_id, success=False, error=error)
            report.failed += 1
            report.details.append(DeliveryResult(order_id=order_id, success=False, error=error))
            app.logger.warning("Retry failed for order %s: %s", order_id, error)


def run_retry_sweep(
    max_orders: int | None = None,
    *,
    batch_size: int | None = None,
    batch_delay: float | None = None,
) -> SweepReport:
    """Retry undelivered order emails in concurrent batches; see module docstring."""
    config = current_app.config
    if max_orders is None:
        max_orders = config["RETRY_SWEEP_LIMIT"]
    batch_size = batch_size or config["RETRY_BATCH_SIZE"]
    batch_delay = config["RETRY_BATCH_DELAY"] if batch_delay is None else batch_delay

    report = SweepReport()
    if max_orders <= 0:
        return report

    candidates = order_service.list_orders_needing_retry(limit=max_orders)
    order_ids = [o.id for o in candidates]
    current_app.logger.info("Retry sweep: %d order(s) due", len(order_ids))

    batches = list(_chunks(order_ids, batch_size))
    for index, batch in enumerate(batches):
        _send_batch(batch, report)
        if batch_delay > 0 and index < len(batches) - 1:
            time.sleep(batch_delay)

    current_app.logger.info(
        "Retry sweep finished: processed=%d sent=%d failed=%d skipped=%d",
        report.processed, report.sent, report.failed, report.skipped,
    )
    return report


def retry_stats() -> dict:
    """Orders still waiting for a successful email, due or not."""
    max_retries = current_app.config["MAX_EMAIL_RETRIES"]
    pending = order_service.list_orders_needing_retry(due_only=False)
    now = utcnow()
    return {
        "success": True,
        "maxRetries": max_retries,
        "pending": len(pending),
        "due": sum(1 for o in pending if o.next_retry_at is None or o.next_retry_at <= now),
        "orders": [
            {
                "id": o.id,
                "product_title": o.product_title,
                "customer_email": o.customer_email,
                "email_retry_count": o.email_retry_count or 0,
                "email_error": o.email_error,
                "next_retry_at": to_utc_z(o.next_retry_at),
                "created_at": to_utc_z(o.created_at),
            }
            for o in pending
        ],
    }
