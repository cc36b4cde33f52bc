"""Resend webhook route handler."""

import logging
from typing import Any

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse

from api.dependencies import get_runtime
from api.middleware.signature_validation import validate_resend_signature
from api.models.resend_webhook import ResendWebhookEvent
from notifications.email_tracker import TrackingResult
from notifications.runtime import NotificationRuntime

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/resend")
async def receive_resend_webhook(
    payload: dict[str, Any] = Depends(validate_resend_signature),
    runtime: NotificationRuntime = Depends(get_runtime),
) -> JSONResponse:
    """
    Receive Resend email events (email.opened, email.delivered, ...).

    Uncorrelated events are acknowledged with 200 so Resend does not retry
    them forever.

    Args:
        payload: Signature-checked JSON body
        runtime: Notification components

    Returns:
        JSONResponse with 200 OK and the tracking result

    Raises:
        HTTPException: 500 if the event could not be persisted (Resend retries)
    """
    event = ResendWebhookEvent.model_validate(payload)

    try:
        result = await runtime.tracker.handle(event.to_inbound_event())
    except Exception as e:
        logger.error(f"Failed to process Resend {event.type} event: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to process event") from e

    status = "ignored" if result == TrackingResult.UNCORRELATED else "received"
    return JSONResponse(status_code=200, content={"status": status, "result": result.value})
