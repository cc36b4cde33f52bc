"""Development-only helpers. Every route answers 404 in production."""

import logging

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse

from api.dependencies import get_runtime
from api.models.resend_webhook import SimulateEmailOpenedRequest
from notifications.dispatcher import CORRELATION_KEY
from notifications.email_tracker import EVENT_OPENED, InboundEmailEvent, TrackingResult
from notifications.runtime import NotificationRuntime
from shared.config import get_settings

logger = logging.getLogger(__name__)


def require_non_production() -> None:
    if get_settings().is_production:
        raise HTTPException(status_code=404, detail="Not Found")


router = APIRouter(dependencies=[Depends(require_non_production)])


@router.post("/simulate-email-opened")
async def simulate_email_opened(
    request: SimulateEmailOpenedRequest,
    runtime: NotificationRuntime = Depends(get_runtime),
) -> JSONResponse:
    """
    Mark an appointment's confirmation email as opened, as if Resend reported it.

    Raises:
        HTTPException: 404 if the appointment does not exist
    """
    event = InboundEmailEvent(
        type=EVENT_OPENED,
        tags={CORRELATION_KEY: str(request.appointment_id)},
        provider="dev",
    )
    result = await runtime.tracker.handle(event)
    if result == TrackingResult.UNCORRELATED:
        raise HTTPException(status_code=404, detail="Appointment not found")

    logger.info(
        f"Simulated email open for appointment {request.appointment_id}: {result.value}",
        extra={"appointment_id": str(request.appointment_id)},
    )
    return JSONResponse(status_code=200, content={"status": result.value})
