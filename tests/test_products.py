PRODUCT = {
    "itemName": "Onion",
    "marketName": "Karwan Bazar",
    "date": "2024-05-02",
    "pricePerUnit": 60,
    "itemDescription": "Local red onion",
}


def add_product(client, headers, **overrides):
    return client.post("/add-products", json={**PRODUCT, **overrides}, headers=headers)


def approved_ids(client, query=""):
    response = client.get(f"/approved-products{query}")
    assert response.status_code == 200
    return [product["id"] for product in response.get_json()["products"]]


def test_vendor_creates_pending_product(client, store, make_user):
    headers = make_user("vendor@market.test", role="vendor", name="Rahim")

    response = add_product(client, headers)
    assert response.status_code == 201
    product = response.get_json()["product"]
    assert product["status"] == "pending"
    assert product["vendorEmail"] == "vendor@market.test"
    assert product["vendorName"] == "Rahim"
    assert product["prices"] == [{"date": "2024-05-02", "price": 60.0}]
    assert store.products.count({}) == 1


def test_product_validation(client, make_user):
    headers = make_user("vendor@market.test", role="vendor")

    assert add_product(client, headers, itemName="").status_code == 400
    assert add_product(client, headers, pricePerUnit="cheap").status_code == 400
    assert add_product(client, headers, pricePerUnit=0).status_code == 400
    assert add_product(client, headers, date="02/05/2024").status_code == 400


def test_pending_product_hidden_until_approved(client, make_user):
    vendor_headers = make_user("vendor@market.test", role="vendor")
    admin_headers = make_user("admin@market.test", role="admin")
    product_id = add_product(client, vendor_headers).get_json()["insertedId"]

    assert product_id not in approved_ids(client)

    response = client.patch(f"/approve-product/{product_id}", headers=admin_headers)
    assert response.status_code == 200
    assert product_id in approved_ids(client)


def test_approval_clears_rejection_fields(client, store, make_user, make_product):
    admin_headers = make_user("admin@market.test", role="admin")
    product_id = make_product(status="pending")

    rejected = client.patch(
        f"/reject-product/{product_id}",
        json={"reason": "Blurry photo", "feedback": "Upload a clearer image"},
        headers=admin_headers,
    )
    assert rejected.status_code == 200
    assert rejected.get_json()["product"]["rejectionReason"] == "Blurry photo"

    approved = client.patch(f"/approve-product/{product_id}", headers=admin_headers)
    assert approved.status_code == 200
    body = approved.get_json()["product"]
    assert body["status"] == "approved"
    assert "rejectionReason" not in body

    stored = store.products.documents[0]
    assert "rejectionReason" not in stored
    assert "rejectionFeedback" not in stored


def test_reject_requires_reason(client, make_user, make_product):
    admin_headers = make_user("admin@market.test", role="admin")
    product_id = make_product(status="pending")
    response = client.patch(f"/reject-product/{product_id}", json={}, headers=admin_headers)
    assert response.status_code == 400


def test_approving_twice_conflicts(client, make_user, make_product):
    admin_headers = make_user("admin@market.test", role="admin")
    product_id = make_product(status="pending")

    assert client.patch(f"/approve-product/{product_id}", headers=admin_headers).status_code == 200
    assert client.patch(f"/approve-product/{product_id}", headers=admin_headers).status_code == 409
    missing = client.patch("/approve-product/000000000000000000000000", headers=admin_headers)
    assert missing.status_code == 404


def test_price_change_appends_history(client, store, make_user, make_product):
    headers = make_user("vendor@market.test", role="vendor")
    product_id = make_product(price=60.0)

    response = client.patch(
        f"/modify-product/{product_id}",
        json={"pricePerUnit": 65, "date": "2024-05-03"},
        headers=headers,
    )
    assert response.status_code == 200
    product = response.get_json()["product"]
    assert product["pricePerUnit"] == 65.0
    assert product["prices"][-1] == {"date": "2024-05-03", "price": 65.0}
    assert len(store.products.documents[0]["prices"]) == 2

    unchanged = client.patch(
        f"/modify-product/{product_id}", json={"pricePerUnit": 65}, headers=headers
    )
    assert unchanged.status_code == 200
    assert len(store.products.documents[0]["prices"]) == 2


def test_only_owner_or_admin_may_modify(client, make_user, make_product):
    product_id = make_product(vendor_email="vendor@market.test")
    other_headers = make_user("other@market.test", role="vendor")
    admin_headers = make_user("admin@market.test", role="admin")

    denied = client.patch(
        f"/modify-product/{product_id}", json={"itemName": "Garlic"}, headers=other_headers
    )
    assert denied.status_code == 403

    allowed = client.patch(
        f"/modify-product/{product_id}", json={"itemName": "Garlic"}, headers=admin_headers
    )
    assert allowed.status_code == 200
    assert allowed.get_json()["product"]["itemName"] == "Garlic"

    empty = client.patch(f"/modify-product/{product_id}", json={}, headers=admin_headers)
    assert empty.status_code == 400


def test_delete_product(client, store, make_user, make_product):
    product_id = make_product(vendor_email="vendor@market.test")
    other_headers = make_user("other@market.test", role="vendor")
    owner_headers = make_user("vendor@market.test", role="vendor")

    assert client.delete(f"/delete-products/{product_id}", headers=other_headers).status_code == 403
    assert client.delete(f"/delete-products/{product_id}", headers=owner_headers).status_code == 200
    assert store.products.count({}) == 0
    assert client.delete(f"/delete-products/{product_id}", headers=owner_headers).status_code == 404


def test_my_products_lists_only_own(client, make_user, make_product):
    headers = make_user("vendor@market.test", role="vendor")
    mine = make_product(vendor_email="vendor@market.test", status="pending")
    make_product(vendor_email="other@market.test")

    response = client.get("/my-products?email=vendor@market.test", headers=headers)
    assert response.status_code == 200
    assert [product["id"] for product in response.get_json()["products"]] == [mine]

    filtered = client.get("/my-products?email=vendor@market.test&status=approved", headers=headers)
    assert filtered.get_json()["products"] == []


def test_all_products_for_admin_with_status_filter(client, make_user, make_product):
    headers = make_user("admin@market.test", role="admin")
    make_product(status="pending")
    make_product(status="approved")
    make_product(status="rejected")

    response = client.get("/all-products", headers=headers)
    assert response.get_json()["pagination"]["total"] == 3

    pending = client.get("/all-products?status=pending", headers=headers)
    assert [product["status"] for product in pending.get_json()["products"]] == ["pending"]

    assert client.get("/all-products?status=bogus", headers=headers).status_code == 400


def test_approved_products_filters_and_sorting(client, make_product):
    cheap = make_product(price=40.0, marketName="Karwan Bazar", date="2024-05-01", itemName="Potato")
    pricey = make_product(price=90.0, marketName="New Market", date="2024-05-10", itemName="Beef")
    make_product(price=10.0, status="pending")

    assert approved_ids(client, "?sort=price_asc") == [cheap, pricey]
    assert approved_ids(client, "?sort=price_desc") == [pricey, cheap]
    assert approved_ids(client, "?market=new") == [pricey]
    assert approved_ids(client, "?search=pot") == [cheap]
    assert approved_ids(client, "?from=2024-05-05&to=2024-05-31") == [pricey]
    assert client.get("/approved-products?sort=random").status_code == 400


def test_approved_products_pagination(client, make_product):
    for _ in range(11):
        make_product()

    first = client.get("/approved-products").get_json()
    assert len(first["products"]) == 9
    assert first["pagination"] == {"page": 1, "limit": 9, "total": 11, "pages": 2}

    second = client.get("/approved-products?page=2").get_json()
    assert len(second["products"]) == 2


def test_single_product_visibility(client, make_user, make_product):
    buyer_headers = make_user("buyer@market.test")
    owner_headers = make_user("vendor@market.test", role="vendor")
    approved = make_product()
    pending = make_product(status="pending")

    assert client.get(f"/single-product/{approved}", headers=buyer_headers).status_code == 200
    assert client.get(f"/single-product/{pending}", headers=buyer_headers).status_code == 404
    assert client.get(f"/single-product/{pending}", headers=owner_headers).status_code == 200
    assert client.get("/single-product/not-an-id", headers=buyer_headers).status_code == 400
    assert client.get(f"/single-product/{approved}").status_code == 401


def test_price_trends_sorted_by_date(client, make_product):
    product_id = make_product(
        prices=[
            {"date": "2024-05-03", "price": 70.0},
            {"date": "2024-05-01", "price": 60.0},
            {"date": "2024-05-02", "price": 65.0},
        ]
    )

    response = client.get(f"/price-trends/{product_id}")
    assert response.status_code == 200
    assert [entry["date"] for entry in response.get_json()["prices"]] == [
        "2024-05-01",
        "2024-05-02",
        "2024-05-03",
    ]

    pending = make_product(status="pending")
    assert client.get(f"/price-trends/{pending}").status_code == 404
