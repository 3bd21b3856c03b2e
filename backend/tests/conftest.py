"""
Pytest fixtures for Hive backend tests.

Provides the app on an in-memory database, a fake payment gateway served
through httpx.MockTransport, a notifier that records instead of sending,
and factories for users, products, checkouts and orders.
"""

import hashlib
import hmac
import json

import httpx
import pytest

from hive import create_app
from hive.extensions import db
from hive.models import Product, User
from hive.services import session_service
from hive.services.gateway_service import EXTENSION_KEY as GATEWAY_KEY, GatewayConfig, PaystackClient
from hive.services.notification_service import EXTENSION_KEY as NOTIFIER_KEY, EmailNotifier
from hive.services.auth_service import hash_password
from hive.services.order_service import build_order
from hive.statuses import OrderStatus, PaymentStatus
from hive.validation import validate_customer_info, validate_order_intent


WEBHOOK_SECRET = "sk_test_webhook_secret"
DEFAULT_PASSWORD = "Password123"


class FakeGateway:
    """In-process stand-in for the processor's HTTP API."""

    def __init__(self):
        self.statuses = {}
        self.initialized = []
        self.verified = []
        self.fail_initialize = False
        self.reject_initialize = False
        self.fail_verify = False

    def handler(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        if path == "/transaction/initialize":
            if self.fail_initialize:
                raise httpx.ConnectTimeout("timed out", request=request)
            if self.reject_initialize:
                return httpx.Response(400, json={"status": False, "message": "Invalid key"})
            body = json.loads(request.content)
            self.initialized.append(body)
            reference = body["reference"]
            return httpx.Response(200, json={
                "status": True,
                "message": "Authorization URL created",
                "data": {
                    "authorization_url": f"https://checkout.paystack.test/{reference}",
                    "access_code": f"AC_{reference}",
                    "reference": reference,
                },
            })

        if path.startswith("/transaction/verify/"):
            if self.fail_verify:
                raise httpx.ConnectError("unreachable", request=request)
            reference = path.rsplit("/", 1)[-1]
            self.verified.append(reference)
            return httpx.Response(200, json={
                "status": True,
                "message": "Verification successful",
                "data": {
                    "reference": reference,
                    "status": self.statuses.get(reference, "success"),
                    "gateway_response": "Approved",
                },
            })

        return httpx.Response(404, json={"status": False, "message": "Not found"})


class RecordingNotifier(EmailNotifier):
    def __init__(self):
        super().__init__(api_key="test", sender="noreply@hive.test", frontend_url="https://shop.test")
        self.sent = []

    def send_mail(self, *, to, subject, html):
        self.sent.append({"to": to, "subject": subject, "html": html})
        return True

    def subjects(self):
        return [message["subject"] for message in self.sent]


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'PAYSTACK_SECRET_KEY': 'sk_test_secret',
        'PAYSTACK_WEBHOOK_SECRET': WEBHOOK_SECRET,
        'PAYSTACK_BASE_URL': 'https://paystack.test',
        'FRONTEND_URL': 'https://shop.test',
        'SENDGRID_API_KEY': '',
    })

    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function', autouse=True)
def db_session(app):
    """Clear all data but keep schema."""
    meta = db.metadata
    for table in reversed(meta.sorted_tables):
        db.session.execute(table.delete())
    db.session.commit()

    yield db.session

    db.session.rollback()


@pytest.fixture(scope='function', autouse=True)
def gateway(app):
    fake = FakeGateway()
    app.extensions[GATEWAY_KEY] = PaystackClient(
        GatewayConfig.from_mapping(app.config),
        transport=httpx.MockTransport(fake.handler),
    )
    return fake


@pytest.fixture(scope='function', autouse=True)
def notifier(app):
    recorder = RecordingNotifier()
    app.extensions[NOTIFIER_KEY] = recorder
    return recorder


def sign(raw_body: bytes, secret: str = WEBHOOK_SECRET) -> str:
    return hmac.new(secret.encode("utf-8"), raw_body, hashlib.sha512).hexdigest()


def charge_success_event(reference: str, event: str = "charge.success") -> bytes:
    return json.dumps({
        "event": event,
        "data": {"reference": reference, "status": "success", "amount": 500000},
    }).encode("utf-8")


@pytest.fixture
def make_user(db_session):
    def _make(email="ada@example.com", password=None, role="user", **fields):
        user = User(
            email=email.lower(),
            password_hash=hash_password(password) if password else "not-a-bcrypt-hash",
            first_name=fields.pop("first_name", "Ada"),
            last_name=fields.pop("last_name", "Obi"),
            role=role,
            **fields,
        )
        db_session.add(user)
        db_session.commit()
        return user
    return _make


@pytest.fixture
def auth_headers():
    def _headers(user):
        _, token = session_service.create_session(user.id)
        return {"Authorization": f"Bearer {token}"}
    return _headers


@pytest.fixture
def make_product(db_session):
    counter = {"n": 0}

    def _make(price_minor=250000, stock_count=10, name=None):
        counter["n"] += 1
        n = counter["n"]
        product = Product(
            sku=f"SKU-{n:03d}",
            name=name or f"Product {n}",
            slug=f"product-{n}",
            price_minor=price_minor,
            stock_count=stock_count,
            in_stock=stock_count > 0,
        )
        db_session.add(product)
        db_session.commit()
        return product
    return _make


def customer_info(email="ada@example.com", **overrides):
    info = {
        "firstName": "Ada",
        "lastName": "Obi",
        "email": email,
        "phone": "08012345678",
        "shippingAddress": {
            "street": "12 Marina Road",
            "city": "Lagos",
            "state": "Lagos",
            "zipCode": "100001",
        },
    }
    info.update(overrides)
    return info


def order_details(product, quantity=2, **overrides):
    price = product.price_minor / 100
    subtotal = price * quantity
    details = {
        "items": [{
            "product": product.id,
            "name": product.name,
            "price": price,
            "quantity": quantity,
            "size": "M",
            "color": "Black",
        }],
        "subtotal": subtotal,
        "shippingCost": 0,
        "tax": 0,
        "total": subtotal,
        "deliveryMethod": "standard",
        "qualifiesForFreeShipping": True,
    }
    details.update(overrides)
    return details


@pytest.fixture
def start_checkout(client):
    """POST /api/v1/checkout/initialize and return the transaction reference."""
    def _start(product, quantity=2, email="ada@example.com", headers=None, **body):
        payload = {
            "customerInfo": customer_info(email),
            "orderDetails": order_details(product, quantity),
            **body,
        }
        response = client.post("/api/v1/checkout/initialize", json=payload, headers=headers or {})
        assert response.status_code == 200, response.get_json()
        return response.get_json()["reference"]
    return _start


@pytest.fixture
def make_order(db_session, make_product):
    """Persist a confirmed order directly (no payment flow)."""
    def _make(email="ada@example.com", customer=None, product=None, status=OrderStatus.CONFIRMED):
        product = product or make_product()
        order = build_order(
            validate_customer_info(customer_info(email)),
            validate_order_intent(order_details(product, quantity=1)),
            customer=customer,
            payment_status=PaymentStatus.PAID,
            status=status,
        )
        db_session.commit()
        return order
    return _make
