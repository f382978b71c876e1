import pytest
from fastapi.testclient import TestClient

from conftest import NOW, FakeProvider, make_flight, make_record
from freshness.aggregation.service import AggregationService
from freshness.api.app import create_app
from freshness.api.routes import limiter
from freshness.api.settings import get_api_settings
from freshness.core.repository import InMemoryReservationStore
from freshness.refresh.cooldown import OwnerCooldown
from models.reservation import Trip


@pytest.fixture(autouse=True)
def reset_limits(monkeypatch):
    monkeypatch.delenv("ADMIN_API_KEY", raising=False)
    get_api_settings.cache_clear()
    limiter.reset()
    yield
    get_api_settings.cache_clear()


def build_client(provider=None):
    store = InMemoryReservationStore([Trip(id="trip-1", owner_id="owner-a")], [make_flight("res-1")])
    provider = provider or FakeProvider({"AA182": make_record(dep_gate="C4")})
    service = AggregationService(
        store,
        provider,
        cooldown=OwnerCooldown(120, clock=lambda: 0.0),
        clock=lambda: NOW,
    )
    return TestClient(create_app(service))


def test_aggregate_trip_returns_records():
    client = build_client()

    response = client.post("/aggregate", json={"owner_id": "owner-a", "scope": "trip", "trip_id": "trip-1"})

    assert response.status_code == 200
    body = response.json()
    assert body["per_entity"]["res-1"]["dep_gate"] == "C4"
    assert body["has_more"] is False


def test_second_aggregate_is_rate_limited_with_retry_after():
    client = build_client()
    payload = {"owner_id": "owner-a", "scope": "trip", "trip_id": "trip-1"}

    assert client.post("/aggregate", json=payload).status_code == 200
    response = client.post("/aggregate", json=payload)

    assert response.status_code == 429
    assert response.headers["Retry-After"] == "120"
    body = response.json()
    assert body["error_type"] == "RateLimitedError"
    assert body["retry_after_seconds"] == 120


def test_unknown_trip_is_404():
    client = build_client()
    response = client.post("/aggregate", json={"owner_id": "owner-a", "scope": "trip", "trip_id": "nope"})
    assert response.status_code == 404
    assert response.json()["error_type"] == "NotFoundError"


def test_upstream_outage_is_503():
    client = build_client(FakeProvider(failing={"AA182"}))
    response = client.post("/aggregate", json={"owner_id": "owner-a", "scope": "trip", "trip_id": "trip-1"})
    assert response.status_code == 503
    assert response.json()["error_type"] == "UpstreamUnavailableError"


def test_trip_scope_without_trip_id_is_rejected():
    client = build_client()
    response = client.post("/aggregate", json={"owner_id": "owner-a", "scope": "trip"})
    assert response.status_code == 422


def test_admin_key_is_enforced_when_configured(monkeypatch):
    monkeypatch.setenv("ADMIN_API_KEY", "secret")
    get_api_settings.cache_clear()
    client = build_client()
    payload = {"owner_id": "owner-a", "scope": "trip", "trip_id": "trip-1"}

    assert client.post("/aggregate", json=payload).status_code == 401
    assert client.post("/aggregate", json=payload, headers={"x-api-key": "secret"}).status_code == 200


def test_health():
    client = build_client()
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"


def test_validate_known_flight_returns_live_record():
    client = build_client()

    response = client.post("/validate", json={"flight_iata": "aa 182"})

    assert response.status_code == 200
    body = response.json()
    assert body["valid"] is True
    assert body["flight_iata"] == "AA182"
    assert body["dep_gate"] == "C4"


def test_validate_unknown_flight_is_not_valid():
    client = build_client()

    response = client.post("/validate", json={"flight_iata": "ZZ 999"})

    assert response.status_code == 200
    body = response.json()
    assert body["valid"] is False
    assert body["error"].startswith("Flight not found")


def test_validate_rejects_text_without_flight_number():
    client = build_client()

    response = client.post("/validate", json={"flight_iata": "hello"})

    assert response.status_code == 400
    assert response.json()["valid"] is False
