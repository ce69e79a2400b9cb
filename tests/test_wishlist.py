from pymongo.errors import DuplicateKeyError


def test_add_to_wishlist_once(client, store, make_user, make_product):
    headers = make_user("buyer@market.test")
    product_id = make_product()

    first = client.post("/wishlist", json={"productId": product_id}, headers=headers)
    assert first.status_code == 201

    second = client.post("/wishlist", json={"productId": product_id}, headers=headers)
    assert second.status_code == 409
    assert store.wishlist.count({"email": "buyer@market.test", "productId": product_id}) == 1


def test_wishlist_rejects_missing_product(client, make_user):
    headers = make_user("buyer@market.test")
    assert client.post("/wishlist", json={}, headers=headers).status_code == 400
    missing = client.post(
        "/wishlist", json={"productId": "000000000000000000000000"}, headers=headers
    )
    assert missing.status_code == 404


def test_wishlist_joins_products(client, store, make_user, make_product):
    headers = make_user("buyer@market.test")
    kept = make_product(itemName="Onion")
    removed = make_product(itemName="Garlic")
    client.post("/wishlist", json={"productId": kept}, headers=headers)
    client.post("/wishlist", json={"productId": removed}, headers=headers)
    store.products.delete_many({"itemName": "Garlic"})

    response = client.get("/get-wishlist?email=buyer@market.test", headers=headers)
    assert response.status_code == 200
    entries = {entry["productId"]: entry for entry in response.get_json()["wishlist"]}
    assert entries[kept]["product"]["itemName"] == "Onion"
    assert entries[removed]["product"] is None


def test_remove_wishlist_entry_is_owner_scoped(client, store, make_user, make_product):
    owner_headers = make_user("buyer@market.test")
    other_headers = make_user("other@market.test")
    product_id = make_product()
    entry_id = client.post(
        "/wishlist", json={"productId": product_id}, headers=owner_headers
    ).get_json()["insertedId"]

    assert client.delete(f"/delete-wishlist/{entry_id}", headers=other_headers).status_code == 404
    assert client.delete(f"/delete-wishlist/{entry_id}", headers=owner_headers).status_code == 200
    assert store.wishlist.count({}) == 0


def test_vendors_cannot_use_wishlist(client, make_user, make_product):
    headers = make_user("vendor@market.test", role="vendor")
    product_id = make_product()
    assert client.post("/wishlist", json={"productId": product_id}, headers=headers).status_code == 403


def test_concurrent_duplicate_add_is_conflict(client, store, make_user, make_product, monkeypatch):
    headers = make_user("buyer@market.test")
    product_id = make_product()

    def lose_race(query, update):
        store.wishlist.insert({**query})
        raise DuplicateKeyError("E11000 duplicate key error")

    monkeypatch.setattr(store.wishlist, "upsert", lose_race)
    response = client.post("/wishlist", json={"productId": product_id}, headers=headers)
    assert response.status_code == 409
    assert store.wishlist.count({"email": "buyer@market.test"}) == 1
