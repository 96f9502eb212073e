"""Tests for structured logging and request_id propagation."""

import json
import logging

from learnstudio.core.logging import JsonFormatter, latency_bucket_ms, log_event, request_id_ctx_var


def test_request_id_in_response_and_logs(client, caplog):
    with caplog.at_level(logging.INFO, logger="learnstudio"):
        response = client.get("/healthz")
    rid = response.headers.get("x-request-id")
    assert rid
    records = [r for r in caplog.records if getattr(r, "request_id", None) == rid]
    assert records, "Expected logs to contain request_id from response"
    assert records[-1].getMessage() == "request.complete"
    assert records[-1].path == "/healthz"


def test_log_event_binds_context_request_id(caplog):
    token = request_id_ctx_var.set("rid-ctx")
    try:
        with caplog.at_level(logging.INFO, logger="learnstudio"):
            log_event("info", "invoice.sent", org_id="org_1", invoice_id="inv_1", extra={"note": "x" * 600})
    finally:
        request_id_ctx_var.reset(token)

    record = next(r for r in caplog.records if r.getMessage() == "invoice.sent")
    assert record.request_id == "rid-ctx"
    assert record.org_id == "org_1"
    assert record.note.endswith("...<truncated>")


def test_json_formatter_includes_structured_fields():
    record = logging.LogRecord("learnstudio.invoices", logging.INFO, __file__, 1, "invoice.created", None, None)
    record.request_id = "rid-1"
    record.org_id = "org_1"
    record.invoice_id = "inv_1"

    payload = json.loads(JsonFormatter().format(record))

    assert payload["message"] == "invoice.created"
    assert payload["level"] == "INFO"
    assert payload["org_id"] == "org_1"
    assert payload["invoice_id"] == "inv_1"
    assert payload["request_id"] == "rid-1"
    assert payload["timestamp"].endswith("Z")


def test_latency_buckets():
    assert latency_bucket_ms(None) == "unknown"
    assert latency_bucket_ms(5) == "<10ms"
    assert latency_bucket_ms(250) == "100-500ms"
    assert latency_bucket_ms(1500) == ">=1000ms"
