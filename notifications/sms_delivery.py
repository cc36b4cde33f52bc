"""
Claim-send-release sequence shared by every SMS path.

1. Claim the flag with a conditional update. Losing the claim means another
   actor owns (or already did) this SMS: do nothing.
2. Send.
3. On failure, release the claim so the appointment stays eligible.

If the release itself fails the flag stays set and the SMS is never
retried: a missed SMS is preferred over a duplicate.
"""

import logging
from collections.abc import Awaitable, Callable
from enum import Enum
from uuid import UUID

from notifications.types import SendResult, SmsSender

logger = logging.getLogger(__name__)


class SmsDeliveryStatus(str, Enum):
    SENT = "sent"
    NOT_CLAIMED = "not_claimed"
    FAILED = "failed"


async def deliver_guarded_sms(
    appointment_id: UUID,
    claim: Callable[[], Awaitable[bool]],
    release: Callable[[], Awaitable[bool]],
    sms_sender: SmsSender,
    phone: str,
    message: str,
    label: str,
) -> tuple[SmsDeliveryStatus, SendResult | None]:
    """
    Run claim, send and release-on-failure for one SMS.

    Args:
        appointment_id: Appointment being notified (for logs)
        claim: Conditional update; True when this caller owns the send
        release: Undo of `claim`
        sms_sender: Channel to send through
        phone: Recipient number
        message: Rendered SMS
        label: Short name of the SMS kind, used in logs

    Returns:
        (status, send_result); send_result is None when the claim was lost

    Raises:
        Whatever `claim` raises: nothing has been sent at that point.
    """
    extra = {"appointment_id": str(appointment_id), "channel": "sms"}

    if not await claim():
        logger.info(f"{label} SMS for appointment {appointment_id} already handled, skipping", extra=extra)
        return SmsDeliveryStatus.NOT_CLAIMED, None

    try:
        result = await sms_sender.send(phone, message)
    except Exception as e:
        logger.error(f"{label} SMS sender raised for appointment {appointment_id}: {e}", exc_info=True, extra=extra)
        result = SendResult.failed(f"{e.__class__.__name__}: {e}")

    if result.success:
        logger.info(f"{label} SMS sent for appointment {appointment_id}", extra=extra)
        return SmsDeliveryStatus.SENT, result

    logger.error(f"{label} SMS failed for appointment {appointment_id}: {result.error}", extra=extra)
    try:
        released = await release()
    except Exception as e:
        logger.error(
            f"Could not release {label} SMS claim for appointment {appointment_id}: {e}",
            exc_info=True,
            extra=extra,
        )
    else:
        if not released:
            logger.warning(f"{label} SMS claim for appointment {appointment_id} was already released", extra=extra)

    return SmsDeliveryStatus.FAILED, result
