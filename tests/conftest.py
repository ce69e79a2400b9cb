from datetime import datetime, timedelta, timezone

import pytest

from marketpulse import create_app

from .fakes import FakeGateway, FakeMailer, MemoryStore

TEST_CONFIG = {
    "TESTING": True,
    "JWT_SECRET_KEY": "test-secret-key-with-enough-length-for-hs256",
    "DEFAULT_ADMIN_EMAIL": "",
    "CONTACT_RECIPIENT": "team@marketpulse.test",
    "PAYMENT_CURRENCY": "usd",
    "MIN_CHARGE_CENTS": 50,
    "VERIFY_PAYMENT_INTENTS": True,
}


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def mailer():
    return FakeMailer()


@pytest.fixture
def app(store, gateway, mailer):
    return create_app(TEST_CONFIG, store=store, payment_gateway=gateway, mailer=mailer)


@pytest.fixture
def client(app):
    return app.test_client()


def auth_headers(client, email):
    response = client.post("/jwt", json={"email": email})
    assert response.status_code == 200
    return {"Authorization": f"Bearer {response.get_json()['token']}"}


@pytest.fixture
def make_user(store, client):
    """Insert a user with the given role and return bearer headers for it."""

    def factory(email, role="user", name=None):
        store.users.insert(
            {
                "email": email,
                "name": name or email.split("@")[0].title(),
                "photo": "",
                "role": role,
                "createdAt": datetime.now(timezone.utc),
                "lastSignedIn": datetime.now(timezone.utc),
            }
        )
        return auth_headers(client, email)

    return factory


@pytest.fixture
def make_product(store):
    counter = {"value": 0}

    def factory(vendor_email="vendor@market.test", price=10.0, status="approved", **fields):
        counter["value"] += 1
        now = datetime.now(timezone.utc) + timedelta(seconds=counter["value"])
        document = {
            "vendorEmail": vendor_email,
            "vendorName": vendor_email.split("@")[0].title(),
            "marketName": fields.pop("marketName", "Karwan Bazar"),
            "date": fields.pop("date", "2024-05-01"),
            "itemName": fields.pop("itemName", f"Item {counter['value']}"),
            "image": fields.pop("image", ""),
            "pricePerUnit": price,
            "prices": [{"date": "2024-05-01", "price": price}],
            "status": status,
            "createdAt": now,
            "updatedAt": now,
        }
        document.update(fields)
        return str(store.products.insert(document))

    return factory
