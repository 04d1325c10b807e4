"""Тесты триггера обработки запланированных уведомлений."""
from tests.conftest import create_notification

TRIGGER_HEADERS = {"Authorization": "Bearer test-trigger-token"}


def test_requires_bearer_token(client_no_auth):
    resp = client_no_auth.post("/api/v1/dispatch/process")
    assert resp.status_code == 401
    assert resp.headers["WWW-Authenticate"] == "Bearer"


def test_wrong_token_rejected(client_no_auth):
    resp = client_no_auth.post(
        "/api/v1/dispatch/process",
        headers={"Authorization": "Bearer wrong-token"},
    )
    assert resp.status_code == 401


def test_api_key_is_not_enough(client):
    resp = client.post("/api/v1/dispatch/process")
    assert resp.status_code == 401


def test_process_due_notifications(client, gateway, clock):
    create_notification(client, delay_minutes=5)
    create_notification(client, delay_minutes=120)
    clock.advance(minutes=10)

    resp = client.post("/api/v1/dispatch/process", headers=TRIGGER_HEADERS)
    assert resp.status_code == 200
    data = resp.json()
    assert data["success"] is True
    assert data["processed"] == 1
    assert data["total"] == 1
    assert len(gateway.sent) == 1


def test_repeated_trigger_is_idempotent(client, gateway, clock):
    create_notification(client, delay_minutes=5)
    clock.advance(minutes=10)
    client.post("/api/v1/dispatch/process", headers=TRIGGER_HEADERS)
    resp = client.post("/api/v1/dispatch/process", headers=TRIGGER_HEADERS)
    assert resp.json()["total"] == 0
    assert len(gateway.sent) == 1


def test_disconnected_gateway(client, gateway, clock):
    gateway.connected = False
    create_notification(client, delay_minutes=5)
    clock.advance(minutes=10)

    resp = client.post("/api/v1/dispatch/process", headers=TRIGGER_HEADERS)
    data = resp.json()
    assert data["success"] is False
    assert data["gateway_connected"] is False
    assert data["processed"] == 0
    assert "Gateway not connected" in data["message"]
