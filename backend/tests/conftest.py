"""
Pytest fixtures for marketplace backend tests.

Provides an in-memory database per test, a test client, and in-process
stand-ins for the outbound collaborators (mail transport, object storage,
auth service) registered on app.extensions.
"""

import threading

import pytest

from marketplace import create_app
from marketplace.extensions import db
from marketplace.models import Order, Product
from marketplace.services.auth_service import (
    AuthServiceError,
    AuthSession,
    AuthUser,
    InvalidCredentialsError,
)
from marketplace.services.email_service import MailDeliveryError
from marketplace.services.storage_service import StorageError

ADMIN_EMAIL = "admin@example.com"
ADMIN_TOKEN = "admin-token"
CUSTOMER_TOKEN = "customer-token"
CRON_SECRET = "cron-secret"


class FakeMailer:
    """Records sent messages; can fail every send, or only for some customers."""

    configured = True
    sender = "shop@example.com"

    def __init__(self):
        self.sent = []
        self.fail_all = None
        self.fail_for = set()
        self.gate = None
        self.calls = 0
        self._lock = threading.Lock()

    def send(self, message):
        with self._lock:
            self.calls += 1
        if self.gate is not None:
            self.gate.wait(timeout=5)
        if self.fail_all:
            raise MailDeliveryError(self.fail_all)
        if message["Reply-To"] in self.fail_for:
            raise MailDeliveryError(f"Mailbox unavailable: {message['Reply-To']}")
        with self._lock:
            self.sent.append(message)
        return message["Message-ID"]


class FakeStorage:
    """Keeps uploaded objects in a dict keyed by "<folder>/<name>"."""

    configured = True
    base_url = "https://cdn.test"

    def __init__(self):
        self.objects = {}
        self.fail = None

    def upload(self, path, data, content_type, *, upsert=True):
        if self.fail is not None:
            raise self.fail
        if not upsert and path in self.objects:
            raise StorageError(f"{path} already exists")
        self.objects[path] = (data, content_type)
        return self.public_url(path)

    def public_url(self, path):
        return f"{self.base_url}/{path}"

    def list(self, folder):
        prefix = folder.strip("/") + "/"
        names = []
        for path in sorted(self.objects):
            rest = path[len(prefix):]
            if path.startswith(prefix) and "/" not in rest:
                names.append({"name": rest})
        return names


class FakeAuthClient:
    base_url = "https://auth.test"

    def __init__(self):
        self.down = False
        self.users = {
            ADMIN_TOKEN: AuthUser(id="u-admin", email=ADMIN_EMAIL),
            CUSTOMER_TOKEN: AuthUser(id="u-customer", email="customer@example.com"),
        }
        self.passwords = {ADMIN_EMAIL: "Password123!", "customer@example.com": "Password123!"}

    def get_user(self, token):
        if self.down:
            raise AuthServiceError("Auth service request failed: connection refused")
        return self.users.get(token)

    def sign_in(self, email, password):
        if self.down:
            raise AuthServiceError("Auth service request failed: connection refused")
        if self.passwords.get(email) != password:
            raise InvalidCredentialsError("Invalid email or password")
        token = next(t for t, u in self.users.items() if u.email == email)
        return AuthSession(access_token=token, expires_in=3600, user=self.users[token])


@pytest.fixture(scope='function')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'APP_ENV': 'testing',
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'ADMIN_EMAILS': ADMIN_EMAIL,
        'DISABLE_AUTH_IN_DEV': False,
        'CRON_SECRET': CRON_SECRET,
        'ORDER_NOTIFICATION_EMAIL': 'orders@example.com',
        'APP_BASE_URL': 'https://shop.example.com',
        'CHECKOUT_EMAIL_TIMEOUT': 2.0,
        'RETRY_BATCH_DELAY': 0,
    })
    app.extensions["mailer"] = FakeMailer()
    app.extensions["storage"] = FakeStorage()
    app.extensions["auth_client"] = FakeAuthClient()

    with app.app_context():
        db.create_all()
        yield app
        app.extensions["email_executor"].shutdown(wait=True)
        db.session.remove()
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    yield db.session
    db.session.rollback()


@pytest.fixture(scope='function')
def mailer(app):
    return app.extensions["mailer"]


@pytest.fixture(scope='function')
def storage(app):
    return app.extensions["storage"]


@pytest.fixture(scope='function')
def auth_client(app):
    return app.extensions["auth_client"]


@pytest.fixture(scope='function')
def admin_headers():
    return auth_headers(ADMIN_TOKEN)


@pytest.fixture(scope='function')
def make_product(db_session):
    """Factory inserting a published product; keyword arguments override columns."""
    def _make(slug="vintage-lamp", **overrides):
        fields = {
            "slug": slug,
            "title": slug.replace("-", " ").title(),
            "description": "A well kept item.",
            "price_cents": 4500,
            "currency": "USD",
            "condition": "Good",
            "category": "Home",
            "brand": "Acme",
            "images": [f"https://cdn.test/{slug}/img1.jpg"],
            "payee_email": "",
            "checkout_link": f"https://pay.example.com/{slug}",
            "rating": 0,
            "review_count": 0,
            "reviews": [],
            "meta": {},
            "in_stock": True,
            "is_featured": False,
            "listed_by": "walid",
            "collections": ["home"],
        }
        fields.update(overrides)
        product = Product(**fields)
        db_session.add(product)
        db_session.commit()
        return product
    return _make


@pytest.fixture(scope='function')
def make_order(db_session):
    """Factory inserting an order that is immediately due for an email retry."""
    def _make(**overrides):
        fields = {
            "product_slug": "vintage-lamp",
            "product_title": "Vintage Lamp",
            "product_price_cents": 4500,
            "customer_name": "Jane Doe",
            "customer_email": "jane@example.com",
            "shipping_address": "1 Main St",
            "shipping_city": "Springfield",
            "shipping_state": "IL",
            "shipping_zip": "62701",
            "full_order_data": {},
            "email_sent": False,
            "email_retry_count": 0,
            "next_retry_at": None,
        }
        fields.update(overrides)
        order = Order(**fields)
        db_session.add(order)
        db_session.commit()
        return order
    return _make


def reload(model, key):
    """Fresh copy of a row, bypassing the session's identity map."""
    db.session.expire_all()
    return db.session.get(model, key)


def auth_headers(token: str) -> dict:
    """Helper to create Authorization headers."""
    return {'Authorization': f'Bearer {token}'}
