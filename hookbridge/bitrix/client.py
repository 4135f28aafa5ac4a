from __future__ import annotations

import logging
import time
from typing import Any

import httpx
from opentelemetry import trace

from hookbridge.bitrix.errors import UpstreamError
from hookbridge.context import get_correlation_id
from hookbridge.core.config import get_settings
from hookbridge.metrics import observe_bitrix_call


logger = logging.getLogger("hookbridge.bitrix")
tracer = trace.get_tracer("hookbridge.bitrix.client")

DEAL_LOOKUP_SELECT = ["ID", "TITLE", "PHONE", "DATE_CREATE"]


class BitrixClient:
    """Thin client for the Bitrix24 inbound-webhook REST API.

    ``base_url`` is the portal webhook URL, e.g.
    ``https://portal.bitrix24.ru/rest/1/abc123/``. Every method is posted as
    JSON to ``<base_url>/<method>.json``.
    """

    def __init__(
        self,
        base_url: str,
        *,
        timeout: float | None = None,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        resolved_timeout = timeout if timeout is not None else get_settings().bitrix_timeout_seconds
        self._http = httpx.Client(timeout=resolved_timeout, transport=transport)

    def __enter__(self) -> BitrixClient:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def close(self) -> None:
        self._http.close()

    def method_url(self, method: str) -> str:
        return f"{self.base_url}/{method}.json"

    def call(self, method: str, params: dict[str, Any] | None = None) -> Any:
        url = self.method_url(method)
        started = time.perf_counter()
        with tracer.start_as_current_span(f"bitrix.{method}") as span:
            span.set_attribute("bitrix.method", method)
            span.set_attribute("correlation_id", get_correlation_id() or "")
            try:
                response = self._http.post(url, json=params or {})
            except httpx.HTTPError as exc:
                observe_bitrix_call(method, "transport_error", time.perf_counter() - started)
                logger.warning("bitrix.call_failed", extra={"bitrix_method": method, "error": str(exc)})
                raise UpstreamError(f"Bitrix API request failed: {exc}", method=method) from exc

            duration = time.perf_counter() - started
            span.set_attribute("http.status_code", response.status_code)
            try:
                data = response.json()
            except ValueError:
                data = None

            if not isinstance(data, dict):
                observe_bitrix_call(method, "invalid_response", duration)
                raise UpstreamError(
                    f"Bitrix API error: unexpected response (HTTP {response.status_code})",
                    method=method,
                    http_status=response.status_code,
                )

            error_code = data.get("error")
            if not response.is_success or error_code:
                observe_bitrix_call(method, "error", duration)
                description = data.get("error_description") or error_code or f"unexpected HTTP status {response.status_code}"
                logger.warning(
                    "bitrix.call_failed",
                    extra={"bitrix_method": method, "status_code": response.status_code, "error": str(description)},
                )
                raise UpstreamError(
                    f"Bitrix API error: {description}",
                    method=method,
                    error_code=str(error_code) if error_code else None,
                    http_status=response.status_code,
                )

            observe_bitrix_call(method, "ok", duration)
            logger.info("bitrix.call", extra={"bitrix_method": method, "status_code": response.status_code})
            return data.get("result")

    def add_deal(self, fields: dict[str, Any]) -> Any:
        return self.call("crm.deal.add", {"fields": fields})

    def add_lead(self, fields: dict[str, Any]) -> Any:
        return self.call("crm.lead.add", {"fields": fields})

    def update_deal(self, deal_id: Any, fields: dict[str, Any]) -> Any:
        return self.call("crm.deal.update", {"id": deal_id, "fields": fields})

    def list_deals_by_phone(self, phone: str) -> list[dict[str, Any]]:
        result = self.call(
            "crm.deal.list",
            {
                "filter": {"PHONE": phone},
                "order": {"ID": "DESC"},
                "select": DEAL_LOOKUP_SELECT,
            },
        )
        if not isinstance(result, list):
            return []
        return [item for item in result if isinstance(item, dict)]

    def entity_fields(self, entity_type: str) -> dict[str, Any]:
        result = self.call(f"crm.{entity_type}.fields")
        return result if isinstance(result, dict) else {}

    def status_list(self, entity_id: str | None = None) -> list[dict[str, Any]]:
        params = {"filter": {"ENTITY_ID": entity_id}} if entity_id else None
        result = self.call("crm.status.list", params)
        if not isinstance(result, list):
            return []
        return [item for item in result if isinstance(item, dict)]
