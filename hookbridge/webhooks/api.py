from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from hookbridge.api.errors import error_response
from hookbridge.bitrix.dispatch import get_bitrix_client_factory
from hookbridge.bitrix.errors import WebhookError
from hookbridge.bitrix.handlers import ClientFactory
from hookbridge.core.database import get_db
from hookbridge.webhooks.service import webhook_service


logger = logging.getLogger("hookbridge.webhooks")

router = APIRouter(prefix="/api/webhook", tags=["webhooks"])


def _webhook_error(request: Request, exc: WebhookError) -> JSONResponse:
    return error_response(
        request,
        status_code=exc.status_code,
        code=exc.code,
        message=exc.message,
        details=exc.details,
    )


@router.post("/bitrix/{token}", response_model=None)
async def receive_bitrix_webhook(
    request: Request,
    token: str,
    db: Session = Depends(get_db),
    client_factory: ClientFactory = Depends(get_bitrix_client_factory),
) -> dict[str, Any] | JSONResponse:
    body = await request.body()
    try:
        result = await run_in_threadpool(webhook_service.process, db, token, body, client_factory)
    except WebhookError as exc:
        return _webhook_error(request, exc)
    except Exception as exc:
        logger.exception("webhook.failed", extra={"error": str(exc)})
        return error_response(
            request,
            status_code=500,
            code="internal_error",
            message="internal server error",
        )

    return {
        "success": True,
        "message": "webhook processed",
        "result": result.model_dump(mode="json"),
    }


@router.get("/bitrix/{token}", response_model=None)
def describe_bitrix_webhook(
    request: Request,
    token: str,
    db: Session = Depends(get_db),
) -> dict[str, Any] | JSONResponse:
    try:
        connection = webhook_service.describe(db, token)
    except WebhookError as exc:
        return _webhook_error(request, exc)
    return {"message": "webhook is active", "connection": connection}
