MESSAGE = {"name": "Nadia", "email": "nadia@example.com", "message": "Do you list fish prices?"}


def test_contact_sends_to_team(client, mailer):
    response = client.post("/contact", json=MESSAGE)
    assert response.status_code == 200
    sent = mailer.sent[0]
    assert sent["to"] == ["team@marketpulse.test"]
    assert sent["reply_to"] == "nadia@example.com"
    assert "Do you list fish prices?" in sent["text"]


def test_contact_validation(client, mailer):
    assert client.post("/contact", json={**MESSAGE, "email": "nope"}).status_code == 400
    assert client.post("/contact", json={**MESSAGE, "message": " "}).status_code == 400
    assert mailer.sent == []


def test_contact_delivery_failure_is_bad_gateway(client, mailer):
    mailer.fail = True
    response = client.post("/contact", json=MESSAGE)
    assert response.status_code == 502
    assert response.get_json()["message"]
