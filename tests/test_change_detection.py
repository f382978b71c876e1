from datetime import timedelta

from conftest import NOW, make_record
from freshness.status.changes import CRITICAL, INFO, WARNING, detect_changes, infer_phase, most_severe
from freshness.status.record import FlightPhase


def test_first_snapshot_reports_nothing():
    assert detect_changes(None, make_record()) == []


def test_gate_change_is_warning():
    old = make_record(dep_gate="B12")
    new = make_record(dep_gate="C4")
    changes = detect_changes(old, new)
    assert [change.type for change in changes] == ["gate_change"]
    assert changes[0].severity == WARNING
    assert changes[0].message == "Gate changed from B12 to C4"


def test_gate_assigned_message():
    changes = detect_changes(make_record(dep_gate=None), make_record(dep_gate="A7"))
    assert changes[0].message == "Gate assigned: A7"


def test_delay_severity_scales_with_minutes():
    base = make_record(dep_delay=None)
    assert detect_changes(base, make_record(dep_delay=10))[0].severity == INFO
    assert detect_changes(base, make_record(dep_delay=20))[0].severity == WARNING
    critical = detect_changes(base, make_record(dep_delay=95))[0]
    assert critical.severity == CRITICAL
    assert critical.message == "Flight delayed 1h 35m"


def test_delay_recovery():
    changes = detect_changes(make_record(dep_delay=30), make_record(dep_delay=0))
    assert changes[0].message == "Flight back on schedule"


def test_cancellation_short_circuits_remaining_checks():
    old = make_record(arr_gate=None)
    new = make_record(status=FlightPhase.CANCELLED, arr_gate="D1", arr_baggage="4")
    changes = detect_changes(old, new)
    assert [change.type for change in changes] == ["cancellation"]
    assert most_severe(changes).severity == CRITICAL


def test_status_and_baggage_updates():
    old = make_record(status=FlightPhase.ACTIVE)
    new = make_record(status=FlightPhase.LANDED, arr_baggage="9")
    changes = detect_changes(old, new)
    assert {change.type for change in changes} == {"status_change", "baggage_update"}
    assert all(change.severity == INFO for change in changes)


def test_unchanged_record_reports_nothing():
    record = make_record()
    assert detect_changes(record, record.checked_at(NOW + timedelta(minutes=5))) == []


def test_infer_phase_upgrades_unknown_before_departure():
    record = make_record(status=FlightPhase.UNKNOWN)
    assert infer_phase(record, now=NOW, scheduled_start=NOW + timedelta(hours=1)) is FlightPhase.SCHEDULED
    assert infer_phase(record, now=NOW, scheduled_start=NOW - timedelta(hours=1)) is FlightPhase.UNKNOWN
    assert infer_phase(make_record(status=FlightPhase.LANDED), now=NOW) is FlightPhase.LANDED
