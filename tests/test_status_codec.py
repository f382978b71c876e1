from datetime import timedelta

import pytest

from conftest import NOW, make_flight, make_record
from freshness.core.errors import MalformedDataError
from freshness.status.codec import RESERVED_KEY, apply, decode, encode, has_record, storage_update
from freshness.status.flight_number import extract_flight_number, flight_number_for
from freshness.status.record import FlightPhase, FreshnessRecord


def test_decode_returns_none_without_reserved_key():
    entity = make_flight()
    assert decode(entity) is None
    assert not has_record(entity)


def test_encode_then_decode_preserves_record_and_other_keys():
    entity = make_flight()
    record = make_record(dep_delay=25, arr_baggage="7", flight_iata="AA182")
    original_details = dict(entity.details)

    details = encode(entity, record)
    updated = entity.with_details(details)

    assert decode(updated) == record
    assert {key: value for key, value in details.items() if key != RESERVED_KEY} == original_details
    # input entity untouched
    assert entity.details == original_details


def test_encode_replaces_existing_record_wholesale():
    old = make_record(dep_gate="A1", arr_gate="C3")
    entity = make_flight(record=old)
    new = make_record(dep_gate="B2", last_checked=NOW + timedelta(minutes=5))

    updated = apply(entity, new)

    stored = updated.details[RESERVED_KEY]
    assert stored["dep_gate"] == "B2"
    assert stored["arr_gate"] is None
    assert decode(entity) == old


@pytest.mark.parametrize(
    "raw",
    [
        "not-a-dict",
        {"status": "flying", "last_checked": NOW.isoformat(), "source": "airlabs"},
        {"status": "active", "last_checked": "yesterday", "source": "airlabs"},
        {"status": "active", "last_checked": NOW.isoformat()},
        {"status": "active", "last_checked": NOW.isoformat(), "source": "airlabs", "dep_gate": 12},
        {"status": "active", "last_checked": NOW.isoformat(), "source": "airlabs", "dep_delay": "late"},
    ],
)
def test_decode_malformed_returns_none(raw):
    entity = make_flight()
    entity.details[RESERVED_KEY] = raw
    assert decode(entity) is None


def test_from_dict_rejects_partial_record():
    with pytest.raises(MalformedDataError) as exc:
        FreshnessRecord.from_dict({"status": "active"})
    assert exc.value.field == "last_checked"


def test_from_dict_accepts_provider_aliases():
    record = FreshnessRecord.from_dict(
        {"flight_status": "LANDED", "last_checked": "2026-03-14T12:00:00Z", "provider": "airlabs"}
    )
    assert record.status is FlightPhase.LANDED
    assert record.last_checked == NOW
    assert record.source == "airlabs"


def test_naive_last_checked_is_treated_as_utc():
    record = make_record(last_checked=NOW.replace(tzinfo=None))
    assert record.last_checked == NOW


def test_is_newer_than_orders_by_last_checked():
    older = make_record(last_checked=NOW)
    newer = make_record(last_checked=NOW + timedelta(seconds=1))
    assert newer.is_newer_than(older)
    assert not older.is_newer_than(newer)
    assert older.is_newer_than(None)


def test_storage_update_targets_only_reserved_key():
    record = make_record()
    update = storage_update(record)
    assert list(update) == [f"details.{RESERVED_KEY}"]
    assert update[f"details.{RESERVED_KEY}"]["status"] == "scheduled"


@pytest.mark.parametrize(
    "text,expected",
    [
        ("AA 182", "AA182"),
        ("aa-182", "AA182"),
        ("AA182 to JFK", "AA182"),
        ("B6 1023", "B61023"),
        ("UAL 9", "UAL9"),
        ("Hotel booking", None),
        ("", None),
    ],
)
def test_extract_flight_number(text, expected):
    assert extract_flight_number(text) == expected


def test_flight_number_prefers_details_over_title():
    entity = make_flight(title="DL 55 to ATL")
    assert flight_number_for(entity) == "AA182"
    entity.details.pop("Flight Number")
    assert flight_number_for(entity) == "DL55"


def test_padded_source_survives_round_trip():
    entity = make_flight()
    record = make_record(source=" airlabs ")

    assert record.source == "airlabs"
    assert decode(entity.with_details(encode(entity, record))) == record


def test_flight_number_falls_back_to_subtitle():
    entity = make_flight(title="Flight to JFK", subtitle="UA 901 · Economy")
    entity.details.pop("Flight Number")
    assert flight_number_for(entity) == "UA901"
