"""Payment proxy tests with a fake gateway in place of Stripe."""

from types import SimpleNamespace

import pytest

from payments import PaymentGateway, get_payment_gateway


class FakeGateway:
    def __init__(self):
        self.calls = []
        self.intents = {}

    def create_payment_intent(self, amount_cents, currency, metadata):
        intent_id = f"pi_{len(self.intents) + 1}"
        self.calls.append({"amount": amount_cents, "currency": currency, "metadata": metadata})
        self.intents[intent_id] = SimpleNamespace(id=intent_id, client_secret=f"{intent_id}_secret",
                                                  status="requires_payment_method", amount=amount_cents,
                                                  metadata=metadata)
        return self.intents[intent_id]

    def retrieve_payment_intent(self, intent_id):
        return self.intents[intent_id]


@pytest.fixture()
def gateway(client):
    fake = FakeGateway()
    client.app.dependency_overrides[get_payment_gateway] = lambda: fake
    yield fake
    client.app.dependency_overrides.clear()


class TestPaymentIntents:
    def test_create_and_read_back(self, client, auth, make_user, gateway):
        user = make_user()
        response = client.post("/payment/create-payment-intent", json={"amount": 19.99}, headers=auth(user))

        assert response.status_code == 200
        assert response.json() == {"clientSecret": "pi_1_secret"}
        assert gateway.calls[0] == {"amount": 1999, "currency": "usd", "metadata": {"userId": str(user["_id"])}}

        response = client.get("/payment/payment-intent/pi_1", headers=auth(user))
        assert response.json() == {"status": "requires_payment_method", "amount": 19.99}

    def test_other_users_cannot_read_intent(self, client, auth, make_user, gateway):
        owner = make_user()
        client.post("/payment/create-payment-intent", json={"amount": 5}, headers=auth(owner))
        assert client.get("/payment/payment-intent/pi_1", headers=auth(make_user())).status_code == 403

    def test_amount_must_be_positive(self, client, auth, make_user, gateway):
        response = client.post("/payment/create-payment-intent", json={"amount": 0}, headers=auth(make_user()))
        assert response.status_code == 400
        assert gateway.calls == []


class TestUnconfiguredGateway:
    def test_missing_key_reports_unavailable(self, client, auth, make_user):
        client.app.dependency_overrides[get_payment_gateway] = lambda: PaymentGateway(None)
        response = client.post("/payment/create-payment-intent", json={"amount": 5}, headers=auth(make_user()))
        client.app.dependency_overrides.clear()

        assert response.status_code == 503
        assert response.json()["code"] == "payment_unavailable"
