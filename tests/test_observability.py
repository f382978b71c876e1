import json
import logging

import pytest

from freshness.core.observability.logger import FreshnessJSONFormatter, PhaseTimer


class ListHandler(logging.Handler):
    def __init__(self):
        super().__init__()
        self.records = []

    def emit(self, record):
        self.records.append(record)


@pytest.fixture
def captured():
    logger = logging.getLogger("tests.observability")
    handler = ListHandler()
    logger.addHandler(handler)
    logger.setLevel(logging.INFO)
    yield logger, handler
    logger.removeHandler(handler)


def test_formatter_emits_json_with_extra_fields():
    record = logging.LogRecord("freshness.jobs", logging.INFO, __file__, 1, "fanout_completed", None, None)
    record.owner_id = "owner-a"
    record.duration = 1.23456

    payload = json.loads(FreshnessJSONFormatter().format(record))

    assert payload["message"] == "fanout_completed"
    assert payload["level"] == "INFO"
    assert payload["owner_id"] == "owner-a"
    assert payload["duration"] == 1.235
    assert "msg" not in payload


def test_phase_timer_logs_completion(captured):
    logger, handler = captured

    with PhaseTimer(logger, "fanout_owner", owner_id="owner-a", entities=3) as timer:
        pass

    record = handler.records[-1]
    assert record.getMessage() == "fanout_owner_completed"
    assert record.owner_id == "owner-a"
    assert record.entities == 3
    assert timer.duration is not None


def test_phase_timer_logs_failure_and_propagates(captured):
    logger, handler = captured

    with pytest.raises(RuntimeError):
        with PhaseTimer(logger, "fanout_owner", owner_id="owner-b"):
            raise RuntimeError("boom")

    record = handler.records[-1]
    assert record.getMessage() == "fanout_owner_failed"
    assert record.status == "failed"
    assert record.levelno == logging.ERROR
