from __future__ import annotations

import httpx
import pytest
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter

from hookbridge.bitrix.client import BitrixClient
from hookbridge.bitrix.errors import UpstreamError
from hookbridge.context import reset_correlation_id, set_correlation_id
from hookbridge.otel import setup_inmemory_otel


@pytest.fixture()
def span_exporter() -> InMemorySpanExporter:
    exporter = setup_inmemory_otel()
    exporter.clear()
    return exporter


def _client(status_code: int, body: dict) -> BitrixClient:
    transport = httpx.MockTransport(lambda request: httpx.Response(status_code, json=body))
    return BitrixClient("https://portal.example.com/rest/1/key/", transport=transport)


def test_bitrix_call_span_carries_method_and_correlation(span_exporter: InMemorySpanExporter) -> None:
    token = set_correlation_id("otel-corr-1")
    try:
        with _client(200, {"result": 15}) as client:
            assert client.add_deal({"TITLE": "Order"}) == 15
    finally:
        reset_correlation_id(token)

    spans = [span for span in span_exporter.get_finished_spans() if span.name == "bitrix.crm.deal.add"]
    assert len(spans) == 1
    assert spans[0].attributes.get("bitrix.method") == "crm.deal.add"
    assert spans[0].attributes.get("correlation_id") == "otel-corr-1"
    assert spans[0].attributes.get("http.status_code") == 200


def test_failed_bitrix_call_still_ends_span(span_exporter: InMemorySpanExporter) -> None:
    with _client(400, {"error": "ACCESS_DENIED", "error_description": "denied"}) as client:
        with pytest.raises(UpstreamError):
            client.add_lead({"TITLE": "x"})

    spans = [span for span in span_exporter.get_finished_spans() if span.name == "bitrix.crm.lead.add"]
    assert len(spans) == 1
    assert spans[0].attributes.get("http.status_code") == 400
