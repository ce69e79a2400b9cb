def test_comment_roundtrip_newest_first(client, make_user, make_product):
    headers = make_user("buyer@market.test", name="Buyer One")
    product_id = make_product()

    first = client.post(
        "/comments", json={"productId": product_id, "rating": 4, "text": "Fair price"}, headers=headers
    )
    assert first.status_code == 201
    assert first.get_json()["comment"]["userName"] == "Buyer One"
    client.post(
        "/comments", json={"productId": product_id, "rating": 2, "text": "Went up"}, headers=headers
    )

    response = client.get(f"/comments?productId={product_id}", headers=headers)
    assert response.status_code == 200
    assert [comment["text"] for comment in response.get_json()["comments"]] == [
        "Went up",
        "Fair price",
    ]


def test_comment_validation(client, make_user, make_product):
    headers = make_user("buyer@market.test")
    product_id = make_product()

    for rating in (0, 6, "great"):
        response = client.post(
            "/comments", json={"productId": product_id, "rating": rating, "text": "ok"}, headers=headers
        )
        assert response.status_code == 400
    assert client.post(
        "/comments", json={"productId": product_id, "rating": 3}, headers=headers
    ).status_code == 400
    assert client.post(
        "/comments",
        json={"productId": "000000000000000000000000", "rating": 3, "text": "ok"},
        headers=headers,
    ).status_code == 404
    assert client.get("/comments", headers=headers).status_code == 400


def test_comments_require_token(client, make_product):
    assert client.get(f"/comments?productId={make_product()}").status_code == 401
