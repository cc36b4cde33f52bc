"""Job trigger endpoints for external schedulers."""

import logging

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from api.dependencies import get_runtime
from api.middleware.signature_validation import require_cron_secret
from notifications.runtime import NotificationRuntime

logger = logging.getLogger(__name__)

router = APIRouter(dependencies=[Depends(require_cron_secret)])


@router.post("/deferred-confirmation-sms")
async def run_deferred_confirmation_sms(
    runtime: NotificationRuntime = Depends(get_runtime),
) -> JSONResponse:
    """Run one tick of the deferred confirmation SMS job."""
    report = await runtime.deferred_job.run()
    return JSONResponse(status_code=200, content=report.to_dict())


@router.post("/reminder-sms")
async def run_reminder_sms(
    runtime: NotificationRuntime = Depends(get_runtime),
) -> JSONResponse:
    """Run one tick of the reminder SMS job."""
    report = await runtime.reminder_job.run()
    return JSONResponse(status_code=200, content=report.to_dict())
