import asyncio
import json

import httpx
import pytest

from conftest import NOW, make_record
from freshness.aggregation.providers import HttpFlightStatusProvider
from freshness.client.transport import AggregationClient, InboxScanClient
from freshness.core.errors import (
    AuthExpiredError,
    RateLimitedError,
    TransientUpstreamError,
    UpstreamUnavailableError,
)
from freshness.status.record import FlightPhase


def mock_client(handler):
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


def test_aggregate_trip_parses_records_and_drops_malformed():
    seen = {}

    def handler(request):
        seen["body"] = json.loads(request.content)
        return httpx.Response(
            200,
            json={
                "owner_id": "owner-a",
                "checked_at": NOW.isoformat(),
                "per_entity": {
                    "res-1": make_record(dep_gate="C4").to_dict(),
                    "res-2": {"status": "teleported"},
                },
                "has_more": True,
            },
        )

    client = AggregationClient("http://api.test", "owner-a", client=mock_client(handler))
    response = asyncio.run(client.aggregate_trip("trip-1"))

    assert seen["body"] == {"owner_id": "owner-a", "scope": "trip", "trip_id": "trip-1"}
    assert list(response.per_entity) == ["res-1"]
    assert response.per_entity["res-1"].dep_gate == "C4"
    assert response.has_more
    assert response.checked_at == NOW


@pytest.mark.parametrize(
    "status,body,headers,error_type",
    [
        (429, {"message": "slow down", "retry_after_seconds": 75}, {}, RateLimitedError),
        (401, {"detail": "expired"}, {}, AuthExpiredError),
        (503, {"message": "upstream down"}, {}, UpstreamUnavailableError),
        (400, {"detail": "bad"}, {}, TransientUpstreamError),
    ],
)
def test_aggregate_maps_http_errors(status, body, headers, error_type):
    def handler(request):
        return httpx.Response(status, json=body, headers=headers)

    client = AggregationClient("http://api.test", "owner-a", client=mock_client(handler))
    with pytest.raises(error_type):
        asyncio.run(client.aggregate_trip("trip-1"))


def test_rate_limit_falls_back_to_retry_after_header():
    def handler(request):
        return httpx.Response(429, json={}, headers={"Retry-After": "42"})

    client = AggregationClient("http://api.test", "owner-a", client=mock_client(handler))
    with pytest.raises(RateLimitedError) as exc:
        asyncio.run(client.aggregate_trip("trip-1"))
    assert exc.value.retry_after_seconds == 42


def test_connect_error_is_retried_once():
    attempts = []

    def handler(request):
        attempts.append(request)
        if len(attempts) == 1:
            raise httpx.ConnectError("refused", request=request)
        return httpx.Response(200, json={"per_entity": {}})

    client = AggregationClient("http://api.test", "owner-a", client=mock_client(handler))
    response = asyncio.run(client.aggregate_trip("trip-1"))

    assert len(attempts) == 2
    assert response.per_entity == {}


def test_inbox_scan_paginates_until_backlog_is_drained():
    pages = [
        {"summary": {"emails_processed": 10, "trips_created": 1, "reservations_created": 2, "has_more": True}},
        {"summary": {"emailsProcessed": 5, "tripsCreated": 0, "reservationsCreated": 1, "has_more": True}},
        {"summary": {"emails_processed": 2, "trips_created": 1, "reservations_created": 1, "has_more": False}},
    ]
    progress = []

    def handler(request):
        assert json.loads(request.content) == {"account_id": "acct-1"}
        return httpx.Response(200, json=pages.pop(0))

    client = InboxScanClient("http://api.test", max_rounds=4, client=mock_client(handler))
    summary = asyncio.run(client.scan("acct-1", on_progress=lambda s: progress.append(s.rounds)))

    assert summary.rounds == 3
    assert summary.emails_processed == 17
    assert summary.trips_created == 2
    assert summary.reservations_created == 4
    assert not summary.has_more
    assert progress == [1, 2, 3]


def test_inbox_scan_stops_at_max_rounds():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(200, json={"summary": {"emails_processed": 1, "has_more": True}})

    client = InboxScanClient("http://api.test", max_rounds=4, client=mock_client(handler))
    summary = asyncio.run(client.scan("acct-1"))

    assert len(calls) == 4
    assert summary.has_more
    assert summary.to_dict()["emails_processed"] == 4


def test_inbox_scan_auth_failure_needs_reconnect():
    def handler(request):
        return httpx.Response(401, json={"message": "Gmail token expired", "needs_reconnect": True})

    client = InboxScanClient("http://api.test", client=mock_client(handler))
    with pytest.raises(AuthExpiredError) as exc:
        asyncio.run(client.scan("acct-1"))
    assert exc.value.account_id == "acct-1"


def test_status_provider_builds_record_from_relay():
    def handler(request):
        assert request.url.params["flight_iata"] == "AA182"
        assert request.url.params["api_key"] == "key"
        return httpx.Response(200, json={"response": {"status": "active", "dep_gate": "B7", "dep_delay": 12}})

    provider = HttpFlightStatusProvider("http://relay.test", "key", client=mock_client(handler))
    record = asyncio.run(provider.lookup("AA182"))

    assert record.status is FlightPhase.ACTIVE
    assert record.dep_gate == "B7"
    assert record.dep_delay == 12
    assert record.flight_iata == "AA182"
    assert record.source == "airlabs"


@pytest.mark.parametrize(
    "status,body,expected",
    [
        (404, {}, None),
        (200, {"response": None}, None),
    ],
)
def test_status_provider_unknown_flight(status, body, expected):
    provider = HttpFlightStatusProvider(
        "http://relay.test", client=mock_client(lambda request: httpx.Response(status, json=body))
    )
    assert asyncio.run(provider.lookup("ZZ999")) is expected


def test_status_provider_error_classification():
    throttled = HttpFlightStatusProvider(
        "http://relay.test", client=mock_client(lambda request: httpx.Response(429, json={}))
    )
    with pytest.raises(TransientUpstreamError) as exc:
        asyncio.run(throttled.lookup("AA182"))
    assert not isinstance(exc.value, UpstreamUnavailableError)

    broken = HttpFlightStatusProvider(
        "http://relay.test", client=mock_client(lambda request: httpx.Response(502, json={}))
    )
    with pytest.raises(UpstreamUnavailableError):
        asyncio.run(broken.lookup("AA182"))
