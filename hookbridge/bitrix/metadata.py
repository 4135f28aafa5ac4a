"""Cached lookups of Bitrix24 CRM metadata: entity fields, funnels and stages.

Entries are keyed by the portal base URL and a metadata kind, expire after
``CRM_METADATA_CACHE_TTL_SECONDS`` and are dropped for a base URL whenever a
project changes its webhook URL.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from typing import Any

from hookbridge.bitrix.handlers import ClientFactory
from hookbridge.core.config import get_settings
from hookbridge.metrics import observe_crm_metadata_cache_hit, observe_crm_metadata_cache_miss


logger = logging.getLogger("hookbridge.bitrix")

ENTITY_TYPES = ("lead", "deal")
MAIN_FUNNEL_ID = "0"
CORE_FIELDS = frozenset(
    {
        "TITLE",
        "NAME",
        "LAST_NAME",
        "SECOND_NAME",
        "PHONE",
        "EMAIL",
        "COMPANY_TITLE",
        "OPPORTUNITY",
        "CURRENCY_ID",
        "SOURCE_ID",
        "STATUS_ID",
    }
)


def _normalize_base_url(base_url: str) -> str:
    return base_url.strip().rstrip("/")


class CrmMetadataCache:
    def __init__(self, ttl_seconds: float | None = None, clock: Callable[[], float] = time.monotonic) -> None:
        self._ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: dict[tuple[str, str], tuple[float, Any]] = {}
        self._lock = threading.Lock()

    @property
    def ttl_seconds(self) -> float:
        if self._ttl_seconds is not None:
            return self._ttl_seconds
        return float(get_settings().crm_metadata_cache_ttl_seconds)

    def get(self, base_url: str, kind: str) -> Any | None:
        key = (_normalize_base_url(base_url), kind)
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            expires_at, value = entry
            if expires_at <= self._clock():
                del self._entries[key]
                return None
            return value

    def set(self, base_url: str, kind: str, value: Any) -> None:
        key = (_normalize_base_url(base_url), kind)
        with self._lock:
            self._entries[key] = (self._clock() + self.ttl_seconds, value)

    def get_or_load(self, base_url: str, kind: str, loader: Callable[[], Any]) -> Any:
        cached = self.get(base_url, kind)
        if cached is not None:
            observe_crm_metadata_cache_hit()
            return cached
        observe_crm_metadata_cache_miss()
        value = loader()
        self.set(base_url, kind, value)
        return value

    def invalidate(self, base_url: str | None) -> int:
        if not base_url:
            return 0
        normalized = _normalize_base_url(base_url)
        with self._lock:
            stale = [key for key in self._entries if key[0] == normalized]
            for key in stale:
                del self._entries[key]
        if stale:
            logger.info("crm_metadata.invalidated", extra={"outcome": f"{len(stale)} entries"})
        return len(stale)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()


crm_metadata_cache = CrmMetadataCache()


def _format_field(field_id: str, spec: Any) -> dict[str, Any]:
    spec = spec if isinstance(spec, dict) else {}
    return {
        "id": field_id,
        "title": spec.get("title") or spec.get("formLabel") or field_id,
        "type": spec.get("type") or "string",
        "required": bool(spec.get("isRequired", False)),
        "multiple": bool(spec.get("isMultiple", False)),
        "list_items": spec.get("items") or None,
    }


def _sort_key(raw: Any) -> int:
    try:
        return int(raw)
    except (TypeError, ValueError):
        return 0


def _format_stage(status: dict[str, Any]) -> dict[str, Any]:
    return {
        "id": status.get("STATUS_ID"),
        "name": status.get("NAME"),
        "sort": _sort_key(status.get("SORT")),
    }


def _is_deal_stage(status: dict[str, Any]) -> bool:
    entity_id = status.get("ENTITY_ID")
    if entity_id is None:
        return True
    return entity_id == "DEAL_STAGE" or str(entity_id).startswith("DEAL_STAGE_")


def stage_entity_id(funnel_id: str) -> str:
    if str(funnel_id) == MAIN_FUNNEL_ID:
        return "DEAL_STAGE"
    return f"DEAL_STAGE_{funnel_id}"


def get_entity_fields(
    base_url: str,
    entity_type: str,
    client_factory: ClientFactory,
    cache: CrmMetadataCache = crm_metadata_cache,
) -> list[dict[str, Any]]:
    def load() -> list[dict[str, Any]]:
        with client_factory(base_url) as client:
            raw_fields = client.entity_fields(entity_type)
        fields = [_format_field(field_id, spec) for field_id, spec in raw_fields.items()]
        return [field for field in fields if field["id"].startswith("UF_") or field["id"] in CORE_FIELDS]

    return cache.get_or_load(base_url, f"fields:{entity_type}", load)


def get_funnels(
    base_url: str,
    client_factory: ClientFactory,
    cache: CrmMetadataCache = crm_metadata_cache,
) -> list[dict[str, Any]]:
    def load() -> list[dict[str, Any]]:
        with client_factory(base_url) as client:
            statuses = client.status_list()

        funnels: dict[str, dict[str, Any]] = {}
        for status in statuses:
            if not _is_deal_stage(status):
                continue
            funnel_id = str(status.get("CATEGORY_ID") or MAIN_FUNNEL_ID)
            funnel = funnels.setdefault(
                funnel_id,
                {
                    "id": funnel_id,
                    "name": "Main funnel" if funnel_id == MAIN_FUNNEL_ID else f"Funnel {funnel_id}",
                    "stages": [],
                },
            )
            funnel["stages"].append(_format_stage(status))

        for funnel in funnels.values():
            funnel["stages"].sort(key=lambda stage: stage["sort"])
        return list(funnels.values())

    return cache.get_or_load(base_url, "funnels", load)


def get_stages(
    base_url: str,
    funnel_id: str,
    client_factory: ClientFactory,
    cache: CrmMetadataCache = crm_metadata_cache,
) -> list[dict[str, Any]]:
    def load() -> list[dict[str, Any]]:
        with client_factory(base_url) as client:
            statuses = client.status_list(stage_entity_id(funnel_id))
        stages = [_format_stage(status) for status in statuses]
        stages.sort(key=lambda stage: stage["sort"])
        return stages

    return cache.get_or_load(base_url, f"stages:{funnel_id}", load)
