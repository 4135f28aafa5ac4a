from __future__ import annotations

import re

from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest
from starlette.requests import Request


http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "path", "status"],
)

http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "path"],
)

webhook_dispatch_total = Counter(
    "webhook_dispatch_total",
    "Total inbound webhook dispatches by connection category and outcome",
    ["category", "outcome"],
)

bitrix_calls_total = Counter(
    "bitrix_calls_total",
    "Total outbound Bitrix24 REST calls by method and status",
    ["method", "status"],
)

bitrix_call_duration_seconds = Histogram(
    "bitrix_call_duration_seconds",
    "Outbound Bitrix24 REST call duration in seconds",
    ["method"],
)

crm_metadata_cache_hit_total = Counter(
    "crm_metadata_cache_hit_total",
    "CRM metadata cache hits",
)

crm_metadata_cache_miss_total = Counter(
    "crm_metadata_cache_miss_total",
    "CRM metadata cache misses",
)


_UUID_RE = re.compile(
    r"\b[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[1-5][0-9a-fA-F]{3}-[89abAB][0-9a-fA-F]{3}-[0-9a-fA-F]{12}\b"
)
_HEX_TOKEN_RE = re.compile(r"/[0-9a-f]{32,}\b")
_INT_RE = re.compile(r"/\d+\b")
_PATH_PARAM_RE = re.compile(r"\{[^{}]+\}")


def _normalize_route_template(path: str) -> str:
    return _PATH_PARAM_RE.sub("{id}", path)


def _sanitize_path(path: str) -> str:
    without_uuids = _UUID_RE.sub("{id}", path)
    without_tokens = _HEX_TOKEN_RE.sub("/{id}", without_uuids)
    return _INT_RE.sub("/{id}", without_tokens)


def resolve_http_path_label(request: Request) -> str:
    route = request.scope.get("route")
    if route is not None:
        path_format = getattr(route, "path_format", None)
        if isinstance(path_format, str) and path_format:
            return _normalize_route_template(path_format)
        route_path = getattr(route, "path", None)
        if isinstance(route_path, str) and route_path:
            return _normalize_route_template(route_path)
    return _sanitize_path(request.url.path)


def observe_http_request(method: str, path: str, status: int, duration: float) -> None:
    http_requests_total.labels(method=method, path=path, status=str(status)).inc()
    http_request_duration_seconds.labels(method=method, path=path).observe(duration)


def observe_webhook_dispatch(category: str, outcome: str) -> None:
    webhook_dispatch_total.labels(category=category, outcome=outcome).inc()


def observe_bitrix_call(method: str, status: str, duration: float) -> None:
    bitrix_calls_total.labels(method=method, status=status).inc()
    bitrix_call_duration_seconds.labels(method=method).observe(duration)


def observe_crm_metadata_cache_hit() -> None:
    crm_metadata_cache_hit_total.inc()


def observe_crm_metadata_cache_miss() -> None:
    crm_metadata_cache_miss_total.inc()


def generate_metrics_payload() -> bytes:
    return generate_latest()


def metrics_content_type() -> str:
    return CONTENT_TYPE_LATEST
