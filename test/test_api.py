import pytest
from fastapi.testclient import TestClient

from _helper import delivery_payload

from delivery_engine.config import settings
from delivery_engine import main
from delivery_engine.main import app

SELLER = {"X-User-Id": "seller-1", "X-User-Role": "seller"}
DRIVER_A = {"X-User-Id": "driver-a", "X-User-Role": "driver"}
DRIVER_B = {"X-User-Id": "driver-b", "X-User-Role": "driver"}


@pytest.fixture
def client(monkeypatch):
    monkeypatch.setattr(settings, "storage_backend", "memory")
    with TestClient(app) as c:
        yield c


def _create(client) -> str:
    resp = client.post("/deliveries", json=delivery_payload(), headers=SELLER)
    assert resp.status_code == 201
    return resp.json()["delivery"]["id"]


def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}


def test_lifecycle_over_http(client):
    delivery_id = _create(client)

    assert client.post(f"/deliveries/{delivery_id}/bids", headers=DRIVER_A).status_code == 201
    assert client.post(f"/deliveries/{delivery_id}/bids", headers=DRIVER_B).status_code == 201
    dup = client.post(f"/deliveries/{delivery_id}/bids", headers=DRIVER_A)
    assert dup.status_code == 409
    assert dup.json()["code"] == "duplicate_bid"

    listed = client.get(f"/deliveries/{delivery_id}/bids", headers=SELLER).json()["bids"]
    assert {b["driver_id"] for b in listed} == {"driver-a", "driver-b"}

    resp = client.post(f"/deliveries/{delivery_id}/assign", json={"driver_id": "driver-a"}, headers=SELLER)
    assert resp.status_code == 200
    assert resp.json()["delivery"]["status"] == "ASSIGNED"

    lost = client.post(f"/deliveries/{delivery_id}/assign", json={"driver_id": "driver-b"}, headers=SELLER)
    assert lost.status_code == 409
    assert lost.json()["code"] == "assignment_conflict"

    early = client.post(f"/deliveries/{delivery_id}/deliver", headers=DRIVER_A)
    assert early.status_code == 409
    assert early.json()["current_status"] == "ASSIGNED"

    picked = client.post(f"/deliveries/{delivery_id}/pickup", headers=DRIVER_A).json()["delivery"]
    assert picked["status"] == "ON_ROUTE"
    assert picked["to_address"] == "Zaisan street 7"

    for path, headers, status in (
        ("deliver", DRIVER_A, "DELIVERED"),
        ("paid", SELLER, "PAID"),
        ("close", SELLER, "CLOSED"),
    ):
        resp = client.post(f"/deliveries/{delivery_id}/{path}", headers=headers)
        assert resp.status_code == 200, resp.json()
        assert resp.json()["delivery"]["status"] == status


def test_unchosen_driver_gets_coarse_view(client):
    delivery_id = _create(client)
    client.post(f"/deliveries/{delivery_id}/assign", json={"driver_id": "driver-a"}, headers=SELLER)
    row = client.get(f"/deliveries/{delivery_id}", headers=DRIVER_B).json()["delivery"]
    assert "from_address" not in row
    assert row["pickup_district"] == "Sukhbaatar"


def test_error_mapping(client):
    delivery_id = _create(client)
    assert client.get("/deliveries/missing", headers=SELLER).status_code == 404
    assert client.get(f"/deliveries/{delivery_id}/bids", headers=DRIVER_A).status_code == 403
    bad = client.post("/deliveries", json=delivery_payload(to_address=""), headers=SELLER)
    assert bad.status_code == 422
    assert client.post(f"/deliveries/{delivery_id}/dispute", json={"reason": "x"}, headers=SELLER).status_code == 409


def test_acting_user_headers_required(client):
    assert client.get("/deliveries/dashboard").status_code == 422
    headers = {"X-User-Id": "seller-1", "X-User-Role": "admin"}
    assert client.get("/deliveries/dashboard", headers=headers).status_code == 422


def test_dashboard_for_each_role(client):
    delivery_id = _create(client)
    seller_tabs = client.get("/deliveries/dashboard", headers=SELLER).json()["tabs"]
    assert seller_tabs["OPEN"][0]["id"] == delivery_id
    driver_tabs = client.get("/deliveries/dashboard", headers=DRIVER_A).json()["tabs"]
    assert driver_tabs["OPEN"][0]["id"] == delivery_id
    assert "REQUESTS" in driver_tabs


def test_metrics_endpoint(client):
    _create(client)
    body = client.get("/metrics").text
    assert "deliveries_created_total" in body


def test_run_serves_app_on_configured_address(monkeypatch):
    calls = {}
    monkeypatch.setattr(main.uvicorn, "run", lambda served, **kwargs: calls.update(app=served, **kwargs))
    monkeypatch.setattr(settings, "port", 8081)
    main.run()
    assert calls["app"] is app
    assert calls["port"] == 8081
    assert calls["host"] == settings.host
