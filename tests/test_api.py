import httpx
import pytest
import pytest_asyncio

from api.dependencies import get_checkout_service, get_reconciliation_service
from application.services.checkout_service import CheckoutService
from application.services.fulfillment_service import FulfillmentService
from application.services.ledger_service import LedgerService
from application.services.reconciliation_service import ReconciliationService
from core.config import StorefrontSettings
from infrastructure.external.payments.midtrans_client import MidtransClient
from main import app

from fakes import SERVER_KEY, FakeGateway, FakeInspector, FakeNotifier, FakePurchaser, midtrans_notification


CART = {
    "items": [
        {
            "service_type": "robux",
            "service_category": "instant",
            "service_id": "rbx-1000",
            "service_name": "1000 Robux",
            "quantity": 1,
            "unit_price": "50000",
            "account_username": "player1",
        }
    ],
    "customer": {"name": "Budi", "email": "budi@example.com"},
    "payment_fee": "2500",
}


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest_asyncio.fixture
async def client(uow_factory, payment_settings, gateway):
    def checkout_service():
        return CheckoutService(uow_factory, gateway, FakeNotifier(), StorefrontSettings())

    def reconciliation_service():
        return ReconciliationService(
            uow_factory=uow_factory,
            gateway_factory=lambda provider: MidtransClient(payment_settings),
            fulfillment=FulfillmentService(uow_factory, FakePurchaser(), FakeInspector()),
            ledger=LedgerService(uow_factory),
            notifier=FakeNotifier(),
        )

    app.dependency_overrides[get_checkout_service] = checkout_service
    app.dependency_overrides[get_reconciliation_service] = reconciliation_service
    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


@pytest.mark.asyncio
async def test_health(client):
    resp = await client.get("/health")
    assert resp.status_code == 200
    assert resp.json()["data"] == {"status": "healthy"}


@pytest.mark.asyncio
async def test_checkout_returns_session(client, gateway):
    resp = await client.post("/api/v1/checkout", json=CART)
    assert resp.status_code == 200
    body = resp.json()
    assert body["code"] == 0
    data = body["data"]
    assert data["session_ref"] == "snap-token-1"
    assert data["correlation_id"] == gateway.requests[0].correlation_id
    assert len(data["orders"]) == 1
    assert "account_password" not in data["orders"][0]
    assert resp.headers.get("X-Request-ID")


@pytest.mark.asyncio
async def test_checkout_validation_lists_items(client):
    cart = dict(CART, items=[dict(CART["items"][0], account_username="")])
    resp = await client.post("/api/v1/checkout", json=cart)
    assert resp.status_code == 422
    error = resp.json()["error"]
    assert error["type"] == "ValidationError"
    assert error["details"]["errors"][0]["index"] == 0


@pytest.mark.asyncio
async def test_checkout_gateway_down_is_503(client, gateway):
    gateway.fail = True
    resp = await client.post("/api/v1/checkout", json=CART)
    assert resp.status_code == 503
    assert resp.json()["error"]["type"] == "PaymentRecoverableError"


@pytest.mark.asyncio
async def test_webhook_roundtrip(client):
    created = (await client.post("/api/v1/checkout", json=CART)).json()["data"]
    cid = created["correlation_id"]

    resp = await client.post(
        "/api/v1/payments/webhooks/midtrans",
        content=midtrans_notification(SERVER_KEY, cid),
        headers={"content-type": "application/json"},
    )

    assert resp.status_code == 200
    body = resp.json()
    assert body["message"] == "Notification processed"
    assert body["data"]["payment_status"] == "settlement"


@pytest.mark.asyncio
async def test_webhook_bad_signature_is_401(client):
    created = (await client.post("/api/v1/checkout", json=CART)).json()["data"]
    resp = await client.post(
        "/api/v1/payments/webhooks/midtrans",
        content=midtrans_notification(SERVER_KEY, created["correlation_id"], signature="ff" * 64),
        headers={"content-type": "application/json"},
    )
    assert resp.status_code == 401


@pytest.mark.asyncio
async def test_webhook_unknown_order_is_404(client):
    resp = await client.post(
        "/api/v1/payments/webhooks/midtrans",
        content=midtrans_notification(SERVER_KEY, "MULTI-0-NOPE00"),
        headers={"content-type": "application/json"},
    )
    assert resp.status_code == 404
    assert resp.json()["error"]["type"] == "UnknownCorrelationId"


@pytest.mark.asyncio
async def test_webhook_unknown_provider_is_404(client):
    resp = await client.post("/api/v1/payments/webhooks/paypal", content=b"{}")
    assert resp.status_code == 404
    resp = await client.get("/api/v1/payments/webhooks/paypal")
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_webhook_probe(client):
    resp = await client.get("/api/v1/payments/webhooks/duitku")
    assert resp.status_code == 200
    assert resp.json()["data"] == {"provider": "duitku", "status": "ok"}


@pytest.mark.asyncio
async def test_status_requires_order_id(client):
    resp = await client.get("/api/v1/payments/status")
    assert resp.status_code == 422


@pytest.mark.asyncio
async def test_webhook_ip_allowlist(client, monkeypatch):
    from core.settings import payment_settings

    monkeypatch.setattr(payment_settings.webhook, "ip_allowlist", ["103.208.23.0/24"])
    resp = await client.post("/api/v1/payments/webhooks/midtrans", content=b"{}")
    assert resp.status_code == 403


def test_ip_permitted_matches_networks_and_addresses():
    from api.routes.payments import _ip_permitted

    assert _ip_permitted("103.208.23.6", ["103.208.23.0/24"])
    assert _ip_permitted("10.1.1.1", ["10.1.1.1"])
    assert not _ip_permitted("10.1.1.2", ["10.1.1.1", "not-an-ip/33"])
    assert not _ip_permitted("unknown", ["10.0.0.0/8"])
