"""Shared fixtures: an in-memory MongoDB, a fake Razorpay API and a recording mailer."""

import itertools
import json

import httpx
import mongomock
import pytest
from fastapi.testclient import TestClient

import addresses
import cart
import checkout
import inventory
from auth import create_token, hash_password
from context import StoreContext
from database import create_document, ensure_indexes, find_by_id
from mailer import Mailer
from main import create_app
from payments import RazorpayGateway
from schemas import AddressIn, Category, Product, User

KEY_ID = "rzp_test_key"
KEY_SECRET = "s3cr3t"
PASSWORD = "Passw0rd!"
ADDRESS = {
    "full_name": "Asha Rao",
    "mobile": "9876543210",
    "address_line1": "12 MG Road",
    "city": "Bengaluru",
    "state": "Karnataka",
    "pincode": "560001",
}


class RecordingMailer(Mailer):
    """Keeps messages in memory instead of talking to SMTP."""

    def __init__(self):
        super().__init__(host="smtp.test")
        self.sent = []

    def send(self, to, subject, body):
        self.sent.append({"to": to, "subject": subject, "body": body})
        return True


class FakeRazorpay:
    """Stands in for POST /v1/orders on the Razorpay API."""

    def __init__(self):
        self.requests = []
        self.fail = False
        self._ids = itertools.count(1)

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.fail:
            return httpx.Response(500, json={"error": {"description": "boom"}})
        body = json.loads(request.content)
        return httpx.Response(200, json={
            "id": f"order_test{next(self._ids)}",
            "entity": "order",
            "amount": body["amount"],
            "currency": body["currency"],
            "receipt": body["receipt"],
            "status": "created",
        })


@pytest.fixture
def db():
    database = mongomock.MongoClient()["hvac_store_test"]
    ensure_indexes(database)
    return database


@pytest.fixture
def razorpay():
    return FakeRazorpay()


@pytest.fixture
def gateway(razorpay):
    gw = RazorpayGateway(KEY_ID, KEY_SECRET, base_url="https://api.razorpay.test/v1",
                         transport=httpx.MockTransport(razorpay))
    yield gw
    gw.close()


@pytest.fixture
def mailer():
    return RecordingMailer()


@pytest.fixture
def ctx(db, gateway, mailer):
    return StoreContext(db=db, gateway=gateway, mailer=mailer)


@pytest.fixture
def client(ctx):
    with TestClient(create_app(ctx)) as c:
        yield c


@pytest.fixture
def make_user(db):
    counter = itertools.count(1)

    def _make(email=None, role="user", phone=None, is_active=True, name="Test User", is_email_verified=True):
        n = next(counter)
        user = User(
            name=name,
            email=email or f"user{n}@example.com",
            phone=phone,
            hashed_password=hash_password(PASSWORD),
            role=role,
            is_active=is_active,
            is_email_verified=is_email_verified,
        )
        return find_by_id(db, "user", create_document(db, "user", user))

    return _make


@pytest.fixture
def auth_headers():
    def _headers(user):
        return {"Authorization": f"Bearer {create_token(user)}"}

    return _headers


@pytest.fixture
def category_id(db):
    return create_document(db, "category", Category(name="Air Conditioners", slug="air-conditioners"))


@pytest.fixture
def make_product(db, category_id):
    counter = itertools.count(1)

    def _make(price=100.0, mrp=None, stock=10, reserved=0, is_active=True, name=None):
        n = next(counter)
        product = Product(
            name=name or f"Split AC {n}",
            slug=f"split-ac-{n}",
            sku=f"AIR-GEN-{n:06d}",
            brand="Coolwave",
            price=price,
            mrp=mrp,
            category_id=category_id,
            is_active=is_active,
        )
        product_id = create_document(db, "product", product)
        inventory.set_stock(db, product_id, stock)
        if reserved:
            db["inventory"].update_one({"product_id": product_id}, {"$set": {"reserved_quantity": reserved}})
        return product_id

    return _make


@pytest.fixture
def make_address(db):
    def _make(user, **overrides):
        payload = AddressIn(**{**ADDRESS, **overrides})
        return addresses.create_address(db, str(user["_id"]), payload)["id"]

    return _make


@pytest.fixture
def place_order(db, make_address):
    """Fill the user's cart with (product_id, quantity) pairs and check it out."""

    def _place(user, lines, coupon_code=None):
        uid = str(user["_id"])
        for product_id, quantity in lines:
            cart.add_item(db, uid, product_id, quantity)
        return checkout.create_order(db, uid, make_address(user), coupon_code=coupon_code)

    return _place
