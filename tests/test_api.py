import time

import pytest
from fastapi.testclient import TestClient
from jose import jwt

from conftest import ADDRESS, sign_payload, stock_of, webhook_body


def token(claims, secret="test-jwt-secret"):
    return jwt.encode(claims, secret, algorithm="HS256")


@pytest.fixture
def raw_client(fastapi_app):
    # No dependency overrides: exercises real token verification
    with TestClient(fastapi_app) as c:
        yield c


def test_health(raw_client):
    response = raw_client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "OK"


def test_missing_token_is_unauthorized(raw_client):
    response = raw_client.get("/cart")

    assert response.status_code == 401
    assert response.json()["kind"] == "unauthorized"


@pytest.mark.parametrize(
    "header",
    [
        "Basic abc",
        "Bearer not-a-jwt",
        "Bearer " + token({"sub": "user-1"}, secret="other-secret"),
        "Bearer " + token({"role": "customer"}),
    ],
)
def test_bad_tokens_are_unauthorized(raw_client, header):
    response = raw_client.get("/cart", headers={"Authorization": header})

    assert response.status_code == 401


def test_expired_token(raw_client):
    expired = token({"sub": "user-1", "exp": int(time.time()) - 60})

    response = raw_client.get("/cart", headers={"Authorization": f"Bearer {expired}"})

    assert response.status_code == 401
    assert response.json()["code"] == "TOKEN_EXPIRED"


def test_valid_token_reaches_cart(raw_client):
    headers = {"Authorization": "Bearer " + token({"sub": "user-1", "email": "buyer@example.com"})}

    response = raw_client.get("/cart", headers=headers)

    assert response.status_code == 200
    assert response.json()["itemCount"] == 0


def test_admin_routes_check_role(raw_client):
    customer = {"Authorization": "Bearer " + token({"sub": "user-1"})}
    admin = {"Authorization": "Bearer " + token({"sub": "admin-1", "role": "admin"})}

    assert raw_client.get("/orders", headers=customer).status_code == 403
    assert raw_client.get("/orders", headers=admin).status_code == 200


def test_validation_errors_use_error_envelope(client):
    response = client.post("/cart/items", json={"quantity": 1})

    assert response.status_code == 400
    body = response.json()
    assert body["kind"] == "invalid_input"
    assert body["errors"][0]["field"].endswith("productId")


def test_checkout_pay_then_cancel_scenario(client, make_product):
    product_id = make_product(price="10.00", stock=5)
    client.post("/cart/items", json={"productId": product_id, "quantity": 2})

    created = client.post("/orders", json={"shippingAddress": ADDRESS})
    assert created.status_code == 201
    order = created.json()["order"]
    assert order["status"] == "pending"
    assert order["total"] == "20.00"
    assert stock_of(product_id) == 3

    session = {
        "id": "cs_e2e",
        "payment_intent": "pi_e2e",
        "metadata": {"orderId": order["id"], "orderNumber": order["orderNumber"]},
    }
    body = webhook_body("checkout.session.completed", session)
    delivered = client.post("/payments/webhook", content=body, headers={"stripe-signature": sign_payload(body)})
    assert delivered.json() == {"received": True}

    status = client.get(f"/payments/status/{order['id']}").json()
    assert status["status"] == "paid"
    assert status["paymentStatus"] == "completed"
    assert status["paidAt"]

    cancelled = client.put(f"/orders/{order['orderNumber']}/cancel")
    assert cancelled.status_code == 400
    assert cancelled.json()["kind"] == "invalid_state_transition"
    assert stock_of(product_id) == 3
