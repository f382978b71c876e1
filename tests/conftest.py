import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from freshness.aggregation.providers import FlightStatusProvider
from freshness.client.transport import AggregationResponse
from freshness.core.errors import UpstreamUnavailableError
from freshness.status.codec import RESERVED_KEY
from freshness.status.record import FlightPhase, FreshnessRecord
from models.reservation import Trip, WatchedEntity

NOW = datetime(2026, 3, 14, 12, 0, tzinfo=timezone.utc)


def make_record(**overrides) -> FreshnessRecord:
    payload = {
        "status": FlightPhase.SCHEDULED,
        "last_checked": NOW,
        "source": "airlabs",
        "dep_gate": "B12",
        "dep_terminal": "1",
    }
    payload.update(overrides)
    return FreshnessRecord(**payload)


def make_flight(entity_id="res-1", *, trip_id="trip-1", start=None, record=None, **overrides) -> WatchedEntity:
    details = {"Flight Number": "AA 182", "Confirmation": "XYZ123"}
    if record is not None:
        details[RESERVED_KEY] = record.to_dict()
    payload = {
        "id": entity_id,
        "trip_id": trip_id,
        "type": "flight",
        "start_time": start or NOW + timedelta(hours=3),
        "details": details,
        "title": "AA 182 to JFK",
    }
    payload.update(overrides)
    return WatchedEntity(**payload)


class FakeProvider(FlightStatusProvider):
    """Returns a fixed record per flight number; flights in ``failing`` raise."""

    name = "fake"

    def __init__(self, records=None, failing=()):
        self.records = records or {}
        self.failing = set(failing)
        self.calls = []

    async def lookup(self, flight_iata, *, scheduled_start=None):
        self.calls.append(flight_iata)
        if flight_iata in self.failing:
            raise UpstreamUnavailableError("provider down", source=self.name, status_code=503)
        return self.records.get(flight_iata)


class FakeAggregationClient:
    """Stands in for ``AggregationClient`` on the client side."""

    def __init__(self, responses=None, *, delay=0.0, error=None):
        self.responses = list(responses or [])
        self.delay = delay
        self.error = error
        self.calls = []

    async def aggregate_trip(self, trip_id):
        self.calls.append(trip_id)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        if self.responses:
            per_entity = self.responses.pop(0)
        else:
            per_entity = {}
        return AggregationResponse(per_entity=per_entity)


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def trips():
    return [Trip(id="trip-1", owner_id="owner-a"), Trip(id="trip-2", owner_id="owner-b")]
