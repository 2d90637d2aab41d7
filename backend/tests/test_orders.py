"""
Order store and admin order route tests.

Verifies:
- Listing is newest first and carries the product's listed_by
- Conversion flag, deletion and CSV export (with conversion filter)
- Email bookkeeping: counter cap, backoff schedule, success clears state
"""

import csv
import io
import json
from datetime import timedelta

import pytest

from conftest import reload
from marketplace.models import Order
from marketplace.services import order_service
from marketplace.validation import ValidationError, NotFoundError
from marketplace.time_utils import utcnow


# ============================================================================
# SAVE
# ============================================================================

class TestSaveOrder:
    def test_save_order_converts_price_and_leases(self, app, db_session):
        order = order_service.save_order({
            "product_slug": "vintage-lamp",
            "product_title": "Vintage Lamp",
            "product_price": "19.99",
            "customer_name": "Jane Doe",
            "customer_email": "jane@example.com",
            "shipping_address": "1 Main St",
            "shipping_city": "Springfield",
            "shipping_state": "IL",
            "shipping_zip": "62701",
        })

        assert order.product_price_cents == 1999
        assert order.email_sent is False
        assert order.email_retry_count == 0
        assert order.next_retry_at > utcnow()
        assert order_service.list_orders_needing_retry() == []

    def test_save_order_requires_fields(self, app, db_session):
        with pytest.raises(ValidationError) as exc:
            order_service.save_order({"product_slug": "x", "product_price": 1})

        assert "customer_email" in str(exc.value)
        assert db_session.query(Order).count() == 0


# ============================================================================
# LIST / CONVERT / DELETE
# ============================================================================

class TestAdminOrders:
    def test_list_newest_first_with_listed_by(self, client, admin_headers, make_product, make_order):
        make_product("vintage-lamp", listed_by="amine")
        now = utcnow()
        older = make_order(created_at=now - timedelta(hours=2))
        newer = make_order(created_at=now - timedelta(hours=1))
        orphan = make_order(product_slug="gone", created_at=now)

        response = client.get('/api/admin/orders', headers=admin_headers)

        assert response.status_code == 200
        ids = [o["id"] for o in response.json["orders"]]
        assert ids == [orphan.id, newer.id, older.id]
        by_id = {o["id"]: o for o in response.json["orders"]}
        assert by_id[older.id]["product_listed_by"] == "amine"
        assert by_id[orphan.id]["product_listed_by"] is None
        assert response.json["count"] == 3

    def test_mark_converted(self, client, admin_headers, make_order):
        order = make_order()

        response = client.post(f'/api/admin/orders/{order.id}/mark-converted', headers=admin_headers)

        assert response.status_code == 200
        assert response.json["order"]["is_converted"] is True
        converted = client.get('/api/admin/orders?conversion=converted', headers=admin_headers)
        assert [o["id"] for o in converted.json["orders"]] == [order.id]
        pending = client.get('/api/admin/orders?conversion=not_converted', headers=admin_headers)
        assert pending.json["orders"] == []

    def test_mark_converted_unknown(self, client, admin_headers):
        response = client.post('/api/admin/orders/nope/mark-converted', headers=admin_headers)
        assert response.status_code == 404

    def test_invalid_conversion_filter(self, client, admin_headers):
        response = client.get('/api/admin/orders?conversion=maybe', headers=admin_headers)
        assert response.status_code == 400

    def test_delete_order(self, client, admin_headers, make_order):
        order = make_order()
        order_id = order.id

        response = client.delete(f'/api/admin/orders/{order_id}', headers=admin_headers)

        assert response.status_code == 200
        assert reload(Order, order_id) is None
        again = client.delete(f'/api/admin/orders/{order_id}', headers=admin_headers)
        assert again.status_code == 404

    def test_orders_require_admin(self, client, make_order):
        make_order()
        assert client.get('/api/admin/orders').status_code == 401


# ============================================================================
# CSV EXPORT
# ============================================================================

class TestOrderExport:
    def test_export_all(self, client, admin_headers, make_order):
        now = utcnow()
        make_order(full_order_data={"shipping": {"city": "Springfield"}}, created_at=now - timedelta(minutes=1))
        make_order(customer_email="sam@example.com", is_converted=True, created_at=now)

        response = client.get('/api/admin/orders/export', headers=admin_headers)

        assert response.status_code == 200
        assert response.mimetype == "text/csv"
        assert 'filename="orders.csv"' in response.headers["Content-Disposition"]
        rows = list(csv.DictReader(io.StringIO(response.get_data(as_text=True))))
        assert len(rows) == 2
        assert "email_retry_count" in rows[0]
        assert json.loads(rows[0]["full_order_data"]) == {"shipping": {"city": "Springfield"}}
        assert rows[0]["customer_phone"] == ""

    def test_export_converted_only(self, client, admin_headers, make_order):
        make_order(customer_email="a@example.com")
        make_order(customer_email="b@example.com", is_converted=True)

        response = client.get('/api/admin/orders/export?conversion=converted', headers=admin_headers)

        assert 'filename="orders-converted.csv"' in response.headers["Content-Disposition"]
        rows = list(csv.DictReader(io.StringIO(response.get_data(as_text=True))))
        assert [r["customer_email"] for r in rows] == ["b@example.com"]

    def test_export_empty(self, app, db_session):
        assert order_service.export_orders_csv() == ""


# ============================================================================
# EMAIL BOOKKEEPING
# ============================================================================

class TestRecordEmailResult:
    def test_failure_schedules_backoff(self, app, make_order):
        order = make_order()
        now = utcnow()

        order_service.record_email_result(order.id, success=False, error="timeout", now=now)
        order = reload(Order, order.id)
        assert order.email_retry_count == 1
        assert order.email_error == "timeout"
        assert order.next_retry_at == now + timedelta(minutes=5)

        order_service.record_email_result(order.id, success=False, error="timeout", now=now)
        assert reload(Order, order.id).next_retry_at == now + timedelta(minutes=15)

    def test_retry_count_never_exceeds_cap(self, app, make_order):
        order = make_order()
        for _ in range(8):
            order_service.record_email_result(order.id, success=False, error="down")

        order = reload(Order, order.id)
        assert order.email_retry_count == app.config["MAX_EMAIL_RETRIES"]

        later = utcnow() + timedelta(days=1)
        assert order_service.list_orders_needing_retry(now=later) == []

    def test_success_clears_error(self, app, make_order):
        order = make_order(email_retry_count=2, email_error="down", next_retry_at=utcnow())

        order_service.record_email_result(order.id, success=True)

        order = reload(Order, order.id)
        assert order.email_sent is True
        assert order.email_error is None
        assert order.next_retry_at is None
        assert order.email_retry_count == 2

    def test_failure_after_success_is_ignored(self, app, make_order):
        order = make_order(email_sent=True)

        order_service.record_email_result(order.id, success=False, error="late failure")

        order = reload(Order, order.id)
        assert order.email_sent is True
        assert order.email_error is None
        assert order.email_retry_count == 0

    def test_unknown_order(self, app, db_session):
        assert order_service.record_email_result("missing", success=True) is None
        with pytest.raises(NotFoundError):
            order_service.require_order("missing")
