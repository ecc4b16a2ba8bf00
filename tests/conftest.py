import mongomock
import pytest
from fastapi.testclient import TestClient

import main
from database import create_document, ensure_indexes, get_db
from payments import get_payment_provider


@pytest.fixture
def db():
    database = mongomock.MongoClient()["storefront_test"]
    ensure_indexes(database)
    return database


class FakePaymentProvider:
    """Records calls instead of talking to Plaid."""

    def __init__(self):
        self.calls = []

    def create_link_token(self, user_id):
        self.calls.append(("create_link_token", user_id))
        return {"link_token": "link-sandbox-123", "expiration": "2030-01-01T00:00:00Z"}

    def exchange_public_token(self, public_token):
        self.calls.append(("exchange_public_token", public_token))
        return {"access_token": "access-sandbox-abc", "item_id": "item-1"}

    def create_payment(self, access_token, amount, account_id, name, reference):
        self.calls.append(("create_payment", access_token, amount, account_id, name, reference))
        return {"payment_id": "payment-1", "status": "PAYMENT_STATUS_INPUT_NEEDED"}

    def get_payment_status(self, payment_id):
        self.calls.append(("get_payment_status", payment_id))
        return {"payment_id": payment_id, "status": "PAYMENT_STATUS_EXECUTED"}


@pytest.fixture
def provider():
    return FakePaymentProvider()


@pytest.fixture
def app(db, provider):
    main.app.dependency_overrides[get_db] = lambda: db
    main.app.dependency_overrides[get_payment_provider] = lambda: provider
    yield main.app
    main.app.dependency_overrides.clear()


@pytest.fixture
def client(app):
    return TestClient(app)


@pytest.fixture
def new_client(app):
    """Factory for extra clients, each with its own cookie jar."""
    return lambda: TestClient(app)


def _register(client, email="ann@example.com", password="secret123", name="Ann"):
    response = client.post("/auth/register", json={"email": email, "password": password, "name": name})
    assert response.status_code == 201, response.text
    return response.json()


@pytest.fixture
def signup():
    return _register


@pytest.fixture
def make_admin(db):
    def promote(user):
        db["user"].update_one({"email": user["email"]}, {"$set": {"is_admin": True}})
        return user
    return promote


@pytest.fixture
def catalog(db):
    """A small catalog: audio, wearables and accessories."""
    audio = create_document(db, "category", {"name": "Audio", "slug": "audio"})
    wearables = create_document(db, "category", {"name": "Wearables", "slug": "wearables"})
    accessories = create_document(db, "category", {"name": "Accessories", "slug": "accessories"})

    def product(name, price, category, description="", **flags):
        data = {
            "name": name,
            "description": description or f"{name} description",
            "price": price,
            "image_url": f"/img/{name.lower().replace(' ', '-')}.jpg",
            "category_id": category,
            "in_stock": flags.get("in_stock", True),
            "is_new": flags.get("is_new", False),
            "is_featured": flags.get("is_featured", False),
            "specifications": [],
        }
        return create_document(db, "product", data)

    ids = {
        "headphones": product("Wireless Headphones", 199.99, audio, "Noise cancelling over-ear", is_featured=True),
        "earbuds": product("Earbuds", 89.99, audio, "Tiny and light", is_new=True),
        "speaker": product("Speaker", 59.0, audio, "Waterproof BASS speaker", in_stock=False),
        "watch": product("Smartwatch", 249.0, wearables, "GPS watch", is_new=True, is_featured=True),
        "charger": product("USB-C Charger", 39.99, accessories, "65 W (GaN) charger"),
        "cable": product("Cable", 9.99, accessories, "Braided cable"),
    }
    create_document(db, "product_variant", {"product_id": ids["headphones"], "name": "Black", "in_stock": True})
    create_document(db, "product_variant", {"product_id": ids["headphones"], "name": "Silver", "in_stock": False})
    return {"categories": {"audio": audio, "wearables": wearables, "accessories": accessories}, **ids}
