from __future__ import annotations

from typing import Any


class WebhookError(Exception):
    """Base error for webhook resolution, dispatch and CRM operations.

    Each subclass carries the error code and HTTP status it is surfaced with.
    """

    code = "webhook_error"
    status_code = 500

    def __init__(self, message: str, details: Any = None) -> None:
        self.message = message
        self.details = details
        super().__init__(message)


class NotFound(WebhookError):
    code = "not_found"
    status_code = 404


class Inactive(WebhookError):
    code = "inactive"
    status_code = 400


class InvalidPayload(WebhookError):
    code = "invalid_payload"
    status_code = 400


class UnsupportedCategory(WebhookError):
    code = "unsupported_category"
    status_code = 400


class MissingCrmConfig(WebhookError):
    code = "missing_crm_config"
    status_code = 400


class MalformedConfig(WebhookError):
    code = "malformed_config"
    status_code = 422


class MissingIdentifier(WebhookError):
    code = "missing_identifier"
    status_code = 422


class RecordNotFound(WebhookError):
    code = "record_not_found"
    status_code = 404


class UpstreamError(WebhookError):
    """Raised when a Bitrix24 call fails or reports an error payload."""

    code = "upstream_error"
    status_code = 502

    def __init__(
        self,
        message: str,
        *,
        method: str | None = None,
        error_code: str | None = None,
        http_status: int | None = None,
    ) -> None:
        self.method = method
        self.error_code = error_code
        self.http_status = http_status
        super().__init__(
            message,
            details={"method": method, "error": error_code, "http_status": http_status},
        )
