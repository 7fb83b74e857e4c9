from fastapi.testclient import TestClient

from luixa.core.database import get_db
from luixa.fsm import states
from luixa.main import app
from luixa.models.blacklisted_number import BlacklistedNumber
from luixa.models.conversation import Conversation
from luixa.models.whatsapp_message_log import WhatsAppMessageLog
from luixa.routers import admin_messages, webhook
from luixa.whatsapp.base import WhatsAppSendError
from luixa.whatsapp.service import WhatsAppService
from tests.fixtures_data import WEBHOOK_TEXT_PAYLOAD, place_order, webhook_payload

ORDER_TEXT = "2 camisetas talla M\n1 calcetines talla unitalla"


class FailingWhatsAppService(WhatsAppService):
    def send_text(self, db, *, to_phone, text, media_url=None, context=None):
        raise WhatsAppSendError("Error WhatsApp 500: upstream")


def _build_client(db, service=None):
    app.dependency_overrides.clear()
    app.dependency_overrides[get_db] = lambda: db
    if service is not None:
        app.dependency_overrides[webhook.get_whatsapp_service] = lambda: service
    return TestClient(app)


def _outbound(db):
    return db.query(WhatsAppMessageLog).filter(WhatsAppMessageLog.direction == "out").all()


def teardown_function():
    app.dependency_overrides.clear()


def test_webhook_verification_accepts_matching_token(db, monkeypatch):
    monkeypatch.setattr(webhook, "META_WA_VERIFY_TOKEN", "verify-me")
    client = _build_client(db)

    ok = client.get(
        "/webhook",
        params={"hub.mode": "subscribe", "hub.verify_token": "verify-me", "hub.challenge": "12345"},
    )
    denied = client.get(
        "/webhook",
        params={"hub.mode": "subscribe", "hub.verify_token": "wrong", "hub.challenge": "12345"},
    )

    assert ok.status_code == 200
    assert ok.text == "12345"
    assert denied.status_code == 403


def test_webhook_runs_the_conversation_and_logs_replies(db, catalog):
    client = _build_client(db)

    response = client.post("/webhook", json=WEBHOOK_TEXT_PAYLOAD)

    assert response.status_code == 200
    assert response.json() == {"status": "ok", "state": states.IDLE, "replies": 2}
    assert len(_outbound(db)) == 2
    inbound = db.query(WhatsAppMessageLog).filter(WhatsAppMessageLog.direction == "in").one()
    assert inbound.provider_message_id == "wamid.TEST1"
    assert db.query(Conversation).filter(Conversation.phone == "5212461234567").one().state == states.IDLE


def test_webhook_drops_duplicate_message_ids(db, catalog):
    client = _build_client(db)

    client.post("/webhook", json=WEBHOOK_TEXT_PAYLOAD)
    second = client.post("/webhook", json=WEBHOOK_TEXT_PAYLOAD)

    assert second.json() == {"status": "duplicate"}
    assert len(_outbound(db)) == 2


def test_webhook_ignores_non_text_and_empty_payloads(db, catalog):
    client = _build_client(db)

    image = client.post("/webhook", json=webhook_payload("wamid.IMG", "", msg_type="image"))
    empty = client.post("/webhook", json={"entry": []})

    assert image.json() == {"status": "ignored", "reason": "unsupported_type"}
    assert empty.json() == {"status": "ignored"}
    assert _outbound(db) == []


def test_blacklisted_sender_is_ignored_until_removed(db, catalog):
    client = _build_client(db)

    added = client.post("/v1/blacklist", json={"number": "5212461234567", "intent": "add"})
    ignored = client.post("/webhook", json=webhook_payload("wamid.B1", "Hola"))
    client.post("/v1/blacklist", json={"number": "5212461234567", "intent": "remove"})
    allowed = client.post("/webhook", json=webhook_payload("wamid.B2", "Hola"))

    assert added.json() == {"status": "ok", "number": "5212461234567", "intent": "add"}
    assert ignored.json() == {"status": "ignored", "reason": "blacklisted"}
    assert allowed.json()["status"] == "ok"
    assert db.query(BlacklistedNumber).count() == 0


def test_blacklist_rejects_unknown_intent(db):
    client = _build_client(db)

    response = client.post("/v1/blacklist", json={"number": "5212461234567", "intent": "toggle"})

    assert response.status_code == 422


def test_webhook_reports_send_failure(db, catalog):
    client = _build_client(db, service=FailingWhatsAppService())

    response = client.post("/webhook", json=webhook_payload("wamid.F1", "pedido"))

    assert response.json() == {"status": "send_failed", "state": states.AWAITING_CLIENT_PHONE}


def test_send_message_endpoint(db):
    client = _build_client(db)

    response = client.post(
        "/v1/messages",
        json={"number": "5212461234567", "message": "Tu pedido va en camino", "urlMedia": "https://x.test/a.png"},
    )

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "sended"
    assert body["provider_message_id"].startswith("mock-")
    assert _outbound(db)[0].message_type == "media"


def test_send_message_endpoint_maps_provider_failure(db):
    client = _build_client(db, service=FailingWhatsAppService())

    response = client.post("/v1/messages", json={"number": "5212461234567", "message": "hola"})

    assert response.status_code == 502


def test_register_and_samples_trigger_flows(db, catalog):
    client = _build_client(db)

    register = client.post("/v1/register", json={"number": "5212461234567", "name": "Ana"})
    samples = client.post("/v1/samples", json={"number": "5215550000000", "name": "Luis"})

    assert register.json() == {"status": "trigger", "flow": "REGISTER_FLOW", "state": states.AWAITING_CLIENT_PHONE}
    assert samples.json() == {"status": "trigger", "flow": "SAMPLES", "state": states.IDLE}
    assert len(_outbound(db)) == 3 + 2


def test_admin_routes_require_configured_token(db, monkeypatch):
    monkeypatch.setattr(admin_messages, "ADMIN_API_TOKEN", "s3cret")
    client = _build_client(db)
    body = {"number": "5212461234567", "message": "hola"}

    missing = client.post("/v1/messages", json=body)
    wrong = client.post("/v1/messages", json=body, headers={"X-Admin-Token": "nope"})
    ok = client.post("/v1/messages", json=body, headers={"X-Admin-Token": "s3cret"})

    assert missing.status_code == 401
    assert wrong.status_code == 401
    assert ok.status_code == 200


def test_admin_routes_refuse_when_production_has_no_token(db, monkeypatch):
    monkeypatch.setattr(admin_messages, "ADMIN_API_TOKEN", "")
    monkeypatch.setattr(admin_messages, "IS_PROD", True)
    client = _build_client(db)

    response = client.post("/v1/messages", json={"number": "5212461234567", "message": "hola"})

    assert response.status_code == 503


def test_simulator_drives_the_same_engine(db, catalog):
    client = _build_client(db)

    first = client.post("/simulator/message", json={"phone": "5210001112222", "text": "pedido"})
    second = client.post("/simulator/message", json={"phone": "5210001112222", "text": "+52 246 123 4567"})

    assert first.json()["state"] == states.AWAITING_CLIENT_PHONE
    assert second.json()["state"] == states.AWAITING_SUPPLIER_PHONE
    assert second.json()["replies"][0] == "✅ Cliente encontrado: Ana López"
    assert _outbound(db) == []


def test_order_endpoints(db, catalog):
    order = place_order(db, catalog, ORDER_TEXT)
    code = order.tracking_code
    client = _build_client(db)

    detail = client.get(f"/api/orders/{code.lower()}")
    assert detail.status_code == 200
    assert detail.json()["total_cents"] == 2500
    assert [item["product_name"] for item in detail.json()["items"]] == ["camisetas", "calcetines"]
    assert client.get("/api/orders/NOPE").status_code == 404

    invalid = client.patch(f"/api/orders/{code}/status", json={"status": "completed"})
    assert invalid.status_code == 422
    moved = client.patch(f"/api/orders/{code}/status", json={"status": "in_process"})
    assert moved.json()["order"]["status"] == "in_process"

    cancelled = client.post(f"/api/orders/{code}/cancel")
    assert cancelled.status_code == 200
    assert cancelled.json()["status"] == "cancelled"
    assert cancelled.json()["stock_failures"] == []
    assert client.post("/api/orders/NOPE/cancel").status_code == 404


def test_cancel_endpoint_conflicts_on_completed_order(db, catalog):
    order = place_order(db, catalog, ORDER_TEXT)
    client = _build_client(db)
    client.patch(f"/api/orders/{order.tracking_code}/status", json={"status": "in_process"})
    client.patch(f"/api/orders/{order.tracking_code}/status", json={"status": "completed"})

    response = client.post(f"/api/orders/{order.tracking_code}/cancel")

    assert response.status_code == 409
    assert "no se puede cancelar" in response.json()["detail"]


def test_stats_and_catalog_endpoints(db, catalog):
    place_order(db, catalog, ORDER_TEXT)
    client = _build_client(db)

    stats = client.get(f"/api/clients/{catalog.client.id}/stats")
    products = client.get(f"/api/suppliers/{catalog.supplier.id}/catalog")

    assert stats.json()["total_orders"] == 1
    assert stats.json()["total_spent_cents"] == 2500
    assert stats.json()["top_supplier_name"] == "Textiles Norte"
    assert products.json()["supplier_name"] == "Textiles Norte"
    assert len(products.json()["products"]) == 6
    assert client.get("/api/clients/9999/stats").status_code == 404
    assert client.get("/api/suppliers/9999/catalog").status_code == 404
