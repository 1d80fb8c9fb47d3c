import io
import json

import pytest

from order_audit.common.json_logger import JsonLogger, log_event, timed_event


def _events(stream: io.StringIO) -> list[dict]:
    return [json.loads(line) for line in stream.getvalue().splitlines() if line.strip()]


def test_bound_logger_shares_sink_and_adds_context() -> None:
    stream = io.StringIO()
    logger = JsonLogger(run_id="run-1", stream=stream, log_file_path=None)
    child = logger.bind(month="2024-05")

    log_event(logger=child, phase="orders", message="Collected orders", orders=3)
    log_event(logger=logger, phase="run", status="warn", message="Done")

    first, second = _events(stream)
    assert first["run_id"] == "run-1"
    assert first["month"] == "2024-05"
    assert first["orders"] == 3
    assert "month" not in second
    assert logger.status_counts == {"ok": 1, "warn": 1}


def test_debug_events_are_dropped_unless_verbose() -> None:
    quiet_stream = io.StringIO()
    verbose_stream = io.StringIO()

    JsonLogger(stream=quiet_stream, log_file_path=None).debug(phase="orders", message="hidden")
    JsonLogger(stream=verbose_stream, log_file_path=None, verbose=True).debug(phase="orders", message="shown")

    assert _events(quiet_stream) == []
    assert _events(verbose_stream)[0]["status"] == "debug"


def test_closed_logger_is_silent_and_writes_file(tmp_path) -> None:
    stream = io.StringIO()
    log_path = tmp_path / "logs" / "run.ndjson"
    logger = JsonLogger(stream=stream, log_file_path=str(log_path))

    logger.info(phase="init", message="hello")
    logger.close()
    logger.info(phase="init", message="after close")

    assert [event["message"] for event in _events(stream)] == ["hello"]
    assert json.loads(log_path.read_text(encoding="utf-8").strip())["message"] == "hello"


def test_timed_event_logs_duration_and_failure() -> None:
    stream = io.StringIO()
    logger = JsonLogger(stream=stream, log_file_path=None)

    with timed_event(logger=logger, phase="report", message="Reports written"):
        pass
    with pytest.raises(ValueError):
        with timed_event(logger=logger, phase="report", message="Reports written"):
            raise ValueError("boom")

    ok_event, error_event = _events(stream)
    assert ok_event["status"] == "ok"
    assert "duration_ms" in ok_event
    assert error_event["status"] == "error"
    assert error_event["message"] == "Reports written failed: boom"
