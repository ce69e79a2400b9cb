from datetime import timedelta

import pytest
from flask_jwt_extended import create_access_token

from marketpulse.access import AccessControl


def test_missing_credential_is_unauthorized(client):
    response = client.get("/users")
    assert response.status_code == 401
    assert response.get_json()["message"]


def test_invalid_credential_is_forbidden(client, make_user):
    make_user("admin@market.test", role="admin")
    response = client.get("/users", headers={"Authorization": "Bearer not-a-real-token"})
    assert response.status_code == 403


def test_non_bearer_credential_is_forbidden(client):
    response = client.get("/users", headers={"Authorization": "Token abc"})
    assert response.status_code == 403


def test_expired_credential_is_forbidden(app, client, make_user):
    make_user("admin@market.test", role="admin")
    with app.app_context():
        token = create_access_token(
            identity="admin@market.test", expires_delta=timedelta(seconds=-10)
        )
    response = client.get("/users", headers={"Authorization": f"Bearer {token}"})
    assert response.status_code == 403


def test_token_signed_with_other_secret_is_forbidden(client, make_user):
    from marketpulse import create_app
    from tests.conftest import TEST_CONFIG
    from tests.fakes import FakeGateway, FakeMailer, MemoryStore

    make_user("admin@market.test", role="admin")
    other_app = create_app(
        {**TEST_CONFIG, "JWT_SECRET_KEY": "a-completely-different-secret-key-value"},
        store=MemoryStore(),
        payment_gateway=FakeGateway(),
        mailer=FakeMailer(),
    )
    with other_app.app_context():
        token = create_access_token(identity="admin@market.test")

    response = client.get("/users", headers={"Authorization": f"Bearer {token}"})
    assert response.status_code == 403


def test_email_param_mismatch_is_forbidden_even_for_valid_role(client, make_user):
    headers = make_user("buyer@market.test")
    response = client.get("/orders?email=someone-else@market.test", headers=headers)
    assert response.status_code == 403


def test_email_param_missing_is_forbidden(client, make_user):
    headers = make_user("buyer@market.test")
    response = client.get("/get-cart", headers=headers)
    assert response.status_code == 403


def test_email_param_match_passes(client, make_user):
    headers = make_user("buyer@market.test")
    response = client.get("/get-cart?email=Buyer@Market.test", headers=headers)
    assert response.status_code == 200


def test_user_role_cannot_reach_admin_operation(client, make_user):
    headers = make_user("buyer@market.test", role="user")
    response = client.get("/users", headers=headers)
    assert response.status_code == 403


def test_admin_role_reaches_admin_operation(client, make_user):
    headers = make_user("admin@market.test", role="admin")
    response = client.get("/users", headers=headers)
    assert response.status_code == 200


def test_unknown_identity_is_unauthorized_at_role_check(client):
    response = client.post("/jwt", json={"email": "ghost@market.test"})
    token = response.get_json()["token"]
    response = client.get("/users", headers={"Authorization": f"Bearer {token}"})
    assert response.status_code == 401


def test_multi_role_check_is_set_membership(client, make_user, make_product):
    vendor_headers = make_user("vendor@market.test", role="vendor")
    admin_headers = make_user("admin@market.test", role="admin")
    buyer_headers = make_user("buyer@market.test", role="user")
    payload = {"itemName": "Onion", "marketName": "Karwan Bazar", "pricePerUnit": 60}

    assert client.post("/add-products", json=payload, headers=vendor_headers).status_code == 201
    assert client.post("/add-products", json=payload, headers=admin_headers).status_code == 201
    assert client.post("/add-products", json=payload, headers=buyer_headers).status_code == 403


def test_role_lookup_happens_once_per_request(app, store, client, make_user):
    headers = make_user("admin@market.test", role="admin")
    lookups = []
    original_find_one = store.users.find_one

    def counting_find_one(query, projection=None):
        lookups.append((query, projection))
        return original_find_one(query, projection)

    store.users.find_one = counting_find_one
    response = client.get("/users", headers=headers)

    assert response.status_code == 200
    assert lookups == [({"email": "admin@market.test"}, {"role": 1})]


def test_failed_check_short_circuits_handler(store, client, make_user):
    headers = make_user("buyer@market.test", role="user")
    response = client.patch(
        "/users/updateRole/000000000000000000000000", json={"role": "admin"}, headers=headers
    )
    assert response.status_code == 403
    assert store.users.find_one({"email": "buyer@market.test"})["role"] == "user"


def test_unknown_role_names_are_rejected_at_setup(store):
    access = AccessControl(store.users, tokens=None)
    with pytest.raises(ValueError):
        access.verify_role("superuser")
