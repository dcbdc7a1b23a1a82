import json
import logging

from media_ingest.observability import JsonLogFormatter, MetricsRegistry


def _record(**extra) -> logging.LogRecord:
    record = logging.makeLogRecord({"name": "media_ingest.pipeline", "levelname": "WARNING", "msg": "upload_attempt_failed"})
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_json_formatter_emits_every_extra_field() -> None:
    line = JsonLogFormatter().format(
        _record(owner_id="owner-1", storage_path="owner-1/listings/1-a.jpg", attempt=2, error_kind="transient")
    )

    payload = json.loads(line)
    assert payload["message"] == "upload_attempt_failed"
    assert payload["logger"] == "media_ingest.pipeline"
    assert payload["owner_id"] == "owner-1"
    assert payload["storage_path"] == "owner-1/listings/1-a.jpg"
    assert payload["attempt"] == 2
    assert payload["error_kind"] == "transient"


def test_json_formatter_skips_empty_and_builtin_fields() -> None:
    payload = json.loads(JsonLogFormatter().format(_record(bucket=None)))

    assert "bucket" not in payload
    assert "msg" not in payload
    assert "args" not in payload


def test_upload_bytes_are_counted_only_when_known() -> None:
    registry = MetricsRegistry()

    registry.record_request(200, 12.5, upload_bytes=2048)
    registry.record_request(200, 3.0)
    registry.set_inflight(-1)

    body = registry.render_prometheus()
    assert "media_upload_request_bytes_total 2048" in body
    assert "http_requests_total 2" in body
    assert "http_requests_inflight 0" in body
