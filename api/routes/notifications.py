"""Creation-time confirmation trigger, called by the booking flow."""

import logging
from uuid import UUID

from fastapi import APIRouter, Body, Depends, HTTPException
from fastapi.responses import JSONResponse

from api.dependencies import get_runtime
from api.models.resend_webhook import DispatchConfirmationRequest
from notifications.runtime import NotificationRuntime

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/appointments/{appointment_id}/confirmation")
async def dispatch_confirmation(
    appointment_id: UUID,
    request: DispatchConfirmationRequest | None = Body(default=None),
    runtime: NotificationRuntime = Depends(get_runtime),
) -> JSONResponse:
    """
    Send the confirmation email (and immediate SMS when booked < 24h ahead).

    appointment_time/created_at default to the stored values.

    Raises:
        HTTPException: 404 if the appointment does not exist
    """
    appointment = await runtime.store.get_appointment(appointment_id)
    if appointment is None:
        raise HTTPException(status_code=404, detail="Appointment not found")

    appointment_time = (request and request.appointment_time) or appointment.appointment_time
    created_at = (request and request.created_at) or appointment.created_at

    outcome = await runtime.dispatcher.dispatch(appointment_id, appointment_time, created_at)

    return JSONResponse(
        status_code=200,
        content={
            "appointment_id": str(outcome.appointment_id),
            "lead_time_hours": round(outcome.lead_time_hours, 2),
            "immediate_sms": outcome.immediate_sms,
            "email_sent": outcome.email_sent,
            "email_error": outcome.email_error,
            "sms_status": outcome.sms_status.value if outcome.sms_status else None,
            "sms_error": outcome.sms_error,
            "skipped_reason": outcome.skipped_reason,
        },
    )
