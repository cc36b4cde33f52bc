"""
Confirmation dispatcher - runs once, right after an appointment is created.

Decision table (lead time = appointment_time - created_at):
    - always: send the confirmation email (salon templates when configured)
    - lead < 24h: send the confirmation SMS now (immediate_lt24h); the
      reminder SMS is suppressed because this SMS already covers it
    - lead >= 24h: no SMS now; the deferred job sends one if the email stays
      unopened and the reminder job sends the 24h reminder

Nothing here raises for provider or store failures: the appointment flags
stay unset and the periodic jobs pick up whatever is still owed.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from uuid import UUID

from database.models import EmailEventType, SmsConfirmationType
from notifications.email_templates import render_confirmation_email, resolve_confirmation_templates
from notifications.sms_delivery import SmsDeliveryStatus, deliver_guarded_sms
from notifications.sms_templates import build_confirmation_sms, build_sms_context
from notifications.store import NotificationStore
from notifications.types import (
    ContextLoader,
    EmailSender,
    NotificationContext,
    SalonEmailTemplates,
    SmsSender,
)
from shared.clock import Clock, SystemClock, hours_between

logger = logging.getLogger(__name__)

# Metadata key echoed back by the email provider's webhooks
CORRELATION_KEY = "appointmentId"


@dataclass
class DispatchOutcome:
    """What the dispatcher did for one appointment."""

    appointment_id: UUID
    lead_time_hours: float
    immediate_sms: bool
    email_sent: bool = False
    email_error: str | None = None
    sms_status: SmsDeliveryStatus | None = None
    sms_error: str | None = None
    skipped_reason: str | None = None


class ConfirmationDispatcher:
    """
    Sends the creation-time confirmation email and, for short-notice
    bookings, the immediate confirmation SMS.

    Args:
        store: Notification state store
        contexts: Builds the message context for an appointment
        email_sender: Email channel
        sms_sender: SMS channel
        clock: Source of "now"
        timezone: Salon display timezone for dates in messages
        immediate_lead_hours: Lead time under which the SMS is sent immediately
    """

    def __init__(
        self,
        store: NotificationStore,
        contexts: ContextLoader,
        email_sender: EmailSender,
        sms_sender: SmsSender,
        clock: Clock | None = None,
        timezone: str = "Europe/Zurich",
        immediate_lead_hours: float = 24,
    ):
        self.store = store
        self.contexts = contexts
        self.email_sender = email_sender
        self.sms_sender = sms_sender
        self.clock = clock or SystemClock()
        self.timezone = timezone
        self.immediate_lead_hours = immediate_lead_hours

    async def dispatch(
        self,
        appointment_id: UUID,
        appointment_time: datetime,
        created_at: datetime,
    ) -> DispatchOutcome:
        """
        Run the creation-time decision for one appointment.

        Returns:
            DispatchOutcome describing what was sent
        """
        lead_time_hours = hours_between(created_at, appointment_time)
        immediate = lead_time_hours < self.immediate_lead_hours
        outcome = DispatchOutcome(
            appointment_id=appointment_id,
            lead_time_hours=lead_time_hours,
            immediate_sms=immediate,
        )
        extra = {"appointment_id": str(appointment_id)}

        logger.info(
            f"Dispatching confirmation for appointment {appointment_id}: "
            f"lead_time={lead_time_hours:.2f}h, immediate_sms={immediate}",
            extra=extra,
        )

        try:
            context = await self.contexts.build(appointment_id)
        except Exception as e:
            logger.error(f"Failed to load context for appointment {appointment_id}: {e}", exc_info=True, extra=extra)
            context = None

        if context is None:
            outcome.skipped_reason = "context_unavailable"
            outcome.email_error = "Appointment context unavailable"
            # Still keep the reminder eligible for long-notice bookings
            if not immediate:
                await self._clear_skip_reminder(appointment_id)
            return outcome

        await self._send_email(context, outcome)

        if immediate:
            await self._send_immediate_sms(context, outcome)
        else:
            await self._clear_skip_reminder(appointment_id)

        logger.info(
            f"Dispatch finished for appointment {appointment_id}: email_sent={outcome.email_sent}, "
            f"sms_status={outcome.sms_status.value if outcome.sms_status else None}",
            extra=extra,
        )
        return outcome

    async def _send_email(self, context: NotificationContext, outcome: DispatchOutcome) -> None:
        appointment_id = context.appointment_id
        extra = {"appointment_id": str(appointment_id), "channel": "email"}

        if not context.client_email:
            logger.warning(f"No email address for appointment {appointment_id}, skipping email", extra=extra)
            outcome.email_error = "Client has no email address"
            return

        subject_template, html_template, text_template = resolve_confirmation_templates(
            await self._load_salon_templates(context)
        )
        email = render_confirmation_email(
            context,
            self.timezone,
            subject_template=subject_template,
            html_template=html_template,
            text_template=text_template,
        )
        try:
            result = await self.email_sender.send(
                to=context.client_email,
                subject=email.subject,
                html=email.html,
                text=email.text,
                metadata={CORRELATION_KEY: str(appointment_id)},
            )
        except Exception as e:
            logger.error(f"Email sender raised for appointment {appointment_id}: {e}", exc_info=True, extra=extra)
            outcome.email_error = f"{e.__class__.__name__}: {e}"
            return

        if not result.success:
            logger.error(f"Confirmation email failed for appointment {appointment_id}: {result.error}", extra=extra)
            outcome.email_error = result.error
            return

        outcome.email_sent = True
        sent_at = self.clock.now()
        try:
            await self.store.mark_email_sent(appointment_id, sent_at)
            await self.store.append_email_event(
                appointment_id,
                EmailEventType.SENT,
                provider=getattr(self.email_sender, "provider_name", "email"),
                timestamp=sent_at,
                provider_event_id=result.provider_message_id,
                metadata={"to": context.client_email, **result.metadata},
            )
        except Exception as e:
            logger.error(
                f"Email sent but state not recorded for appointment {appointment_id}: {e}",
                exc_info=True,
                extra=extra,
            )

    async def _load_salon_templates(self, context: NotificationContext) -> SalonEmailTemplates | None:
        """Salon templates, or None (defaults) when unset or unreadable."""
        try:
            return await self.store.get_salon_email_templates(context.salon_id)
        except Exception as e:
            logger.error(
                f"Failed to load email templates for salon {context.salon_id}, using defaults: {e}",
                exc_info=True,
                extra={"appointment_id": str(context.appointment_id), "channel": "email"},
            )
            return None

    async def _send_immediate_sms(self, context: NotificationContext, outcome: DispatchOutcome) -> None:
        appointment_id = context.appointment_id
        extra = {"appointment_id": str(appointment_id), "channel": "sms"}

        if not context.client_phone:
            logger.warning(f"No phone number for appointment {appointment_id}, skipping immediate SMS", extra=extra)
            outcome.skipped_reason = "no_phone"
            return

        message = build_confirmation_sms(build_sms_context(context, self.timezone))
        sms_type = SmsConfirmationType.IMMEDIATE_LT24H

        try:
            status, result = await deliver_guarded_sms(
                appointment_id,
                claim=lambda: self.store.claim_sms_confirmation(appointment_id, sms_type),
                release=lambda: self.store.release_sms_confirmation(appointment_id, sms_type),
                sms_sender=self.sms_sender,
                phone=context.client_phone,
                message=message,
                label="Immediate confirmation",
            )
        except Exception as e:
            logger.error(f"Could not claim immediate SMS for appointment {appointment_id}: {e}", exc_info=True, extra=extra)
            outcome.sms_status = SmsDeliveryStatus.FAILED
            outcome.sms_error = f"{e.__class__.__name__}: {e}"
            return

        outcome.sms_status = status
        if result is not None and not result.success:
            outcome.sms_error = result.error

    async def _clear_skip_reminder(self, appointment_id: UUID) -> None:
        try:
            await self.store.set_skip_reminder(appointment_id, False)
        except Exception as e:
            logger.error(
                f"Failed to reset skip_reminder_sms for appointment {appointment_id}: {e}",
                exc_info=True,
                extra={"appointment_id": str(appointment_id)},
            )
