from datetime import datetime, timedelta, timezone

import httpx
import mongomock
import pytest
from fastapi.testclient import TestClient

from database import get_db
from main import app
from notifier import AdminClient, get_admin_client
from schemas import Inventory, Product

NOW = datetime(2026, 10, 19, 12, 0, 0, tzinfo=timezone.utc)


class AdminStub:
    """Records calls to the admin service and answers with a fixed status."""

    def __init__(self):
        self.calls = []
        self.status = 200
        self.fail_with = None

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.calls.append(request)
        if self.fail_with is not None:
            raise self.fail_with
        return httpx.Response(self.status, json={"ok": self.status < 400})

    def client(self) -> AdminClient:
        return AdminClient(base_url="https://admin.example.com", api_key="", timeout=1.0,
                           transport=httpx.MockTransport(self.handler))


@pytest.fixture
def db():
    return mongomock.MongoClient().storefront


@pytest.fixture
def admin_stub():
    return AdminStub()


@pytest.fixture
def admin(admin_stub):
    return admin_stub.client()


@pytest.fixture
def client(db, admin):
    app.dependency_overrides[get_db] = lambda: db
    app.dependency_overrides[get_admin_client] = lambda: admin
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture
def product(db):
    """A product with two variants: M/Black (4) and L/Default (10)."""
    doc = Product(
        title="Logo Hoodie",
        price=100.0,
        inventory=Inventory(variants=[
            {"size": "M", "color": "Black", "quantity": 4},
            {"size": "L", "color": "Default", "quantity": 10},
        ]),
    )
    result = db["product"].insert_one(doc.model_dump(by_alias=True))
    return str(result.inserted_id)


@pytest.fixture
def approved_ambassador(db):
    result = db["ambassador"].insert_one({
        "name": "Nour",
        "email": "nour@example.com",
        "status": "approved",
        "referralCode": "nour1a2b",
        "referralLink": "https://elevee.netlify.app?ref=nour1a2b",
        "couponCode": "NOUR15",
        "discountPercentage": 15,
        "commissionRate": 50,
        "orders": 0, "sales": 0, "earnings": 0, "paymentsPending": 0, "paymentsPaid": 0,
    })
    return str(result.inserted_id)


def make_order(db, products, created_at=None, **fields):
    doc = {
        "customer": {"name": "Jane", "email": "jane@example.com", "phone": "0100", "address": "Cairo"},
        "products": products,
        "totalAmount": 100,
        "status": "pending",
        "inventoryProcessed": False,
        "createdAt": created_at or NOW,
        **fields,
    }
    return str(db["order"].insert_one(doc).inserted_id)


def line(product_id, size="M", quantity=1, color=None, **extra):
    item = {"productId": product_id, "name": "Logo Hoodie", "price": 100.0, "quantity": quantity, "size": size}
    if color is not None:
        item["color"] = color
    item.update(extra)
    return item


def days(n):
    return timedelta(days=n)
