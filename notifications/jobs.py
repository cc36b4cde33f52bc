"""
Periodic SMS jobs.

Both jobs are stateless ticks: they only need "now". Each tick selects the
appointments whose state says an SMS is owed, then for each one claims the
flag with a conditional update before sending. Overlapping ticks, a webhook
landing mid-tick, or a retried tick therefore never send twice.

1. DeferredConfirmationSmsJob (hourly): confirmation SMS for emails sent
   3-6h ago and still unopened.
2. ReminderSmsJob (every 15 min): reminder SMS for appointments starting in
   [now+24h, now+24h+15min), unless an immediate SMS already covered it.

The reminder window width must be >= the tick interval or some
appointments fall between two ticks.
"""

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

from database.models import SmsConfirmationType
from notifications.sms_delivery import SmsDeliveryStatus, deliver_guarded_sms
from notifications.sms_templates import (
    build_confirmation_sms,
    build_reminder_sms,
    build_sms_context,
)
from notifications.store import NotificationStore
from notifications.types import AppointmentSnapshot, ContextLoader, SmsSender
from shared.clock import Clock, SystemClock, hours_between

logger = logging.getLogger(__name__)

SENT = "sent"
SKIPPED = "skipped"
FAILED = "failed"

_STATUS_TO_OUTCOME = {
    SmsDeliveryStatus.SENT: SENT,
    SmsDeliveryStatus.NOT_CLAIMED: SKIPPED,
    SmsDeliveryStatus.FAILED: FAILED,
}


@dataclass
class JobReport:
    """Summary of one job tick."""

    job_name: str
    started_at: datetime
    window_start: datetime
    window_end: datetime
    matched: int = 0
    sent: int = 0
    skipped: int = 0
    failed: int = 0
    duration_seconds: float = 0.0
    outcomes: dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "job_name": self.job_name,
            "started_at": self.started_at.isoformat(),
            "window_start": self.window_start.isoformat(),
            "window_end": self.window_end.isoformat(),
            "matched": self.matched,
            "sent": self.sent,
            "skipped": self.skipped,
            "failed": self.failed,
            "duration_seconds": round(self.duration_seconds, 3),
        }


class _SmsJob(ABC):
    """Shared tick loop: select, then process candidates with bounded concurrency."""

    name = "sms_job"

    def __init__(
        self,
        store: NotificationStore,
        contexts: ContextLoader,
        sms_sender: SmsSender,
        clock: Clock | None = None,
        timezone: str = "Europe/Zurich",
        concurrency: int = 5,
    ):
        self.store = store
        self.contexts = contexts
        self.sms_sender = sms_sender
        self.clock = clock or SystemClock()
        self.timezone = timezone
        self.concurrency = max(1, concurrency)

    @abstractmethod
    def window(self, now: datetime) -> tuple[datetime, datetime]:
        """Return the [start, end] range this tick scans."""

    @abstractmethod
    async def select(self, window_start: datetime, window_end: datetime) -> list[AppointmentSnapshot]:
        """Return the appointments owed an SMS in the window."""

    @abstractmethod
    async def process(self, appointment: AppointmentSnapshot) -> str:
        """Handle one candidate and return SENT, SKIPPED or FAILED."""

    async def run(self) -> JobReport:
        """
        Run one tick.

        Returns:
            JobReport with per-outcome counters. One appointment failing
            never stops the others.
        """
        started = time.monotonic()
        now = self.clock.now()
        window_start, window_end = self.window(now)
        report = JobReport(
            job_name=self.name,
            started_at=now,
            window_start=window_start,
            window_end=window_end,
        )
        extra = {"job_name": self.name}

        logger.info(
            f"Starting {self.name} at {now.isoformat()} "
            f"(window {window_start.isoformat()} -> {window_end.isoformat()})",
            extra=extra,
        )

        candidates = await self.select(window_start, window_end)
        report.matched = len(candidates)

        semaphore = asyncio.Semaphore(self.concurrency)

        async def guarded(appointment: AppointmentSnapshot) -> str:
            async with semaphore:
                try:
                    return await self.process(appointment)
                except Exception as e:
                    logger.error(
                        f"Error processing appointment {appointment.id} in {self.name}: {e}",
                        exc_info=True,
                        extra={"job_name": self.name, "appointment_id": str(appointment.id)},
                    )
                    return FAILED

        results = await asyncio.gather(*(guarded(a) for a in candidates))

        report.outcomes = {str(a.id): outcome for a, outcome in zip(candidates, results)}
        counts = Counter(results)
        report.sent = counts[SENT]
        report.skipped = counts[SKIPPED]
        report.failed = counts[FAILED]
        report.duration_seconds = time.monotonic() - started

        logger.info(
            f"{self.name} completed: matched={report.matched}, sent={report.sent}, "
            f"skipped={report.skipped}, failed={report.failed}, "
            f"duration={report.duration_seconds:.2f}s",
            extra=extra,
        )
        return report

    async def _send(self, appointment: AppointmentSnapshot, build_message, claim, release, label: str) -> str:
        extra = {"job_name": self.name, "appointment_id": str(appointment.id)}

        context = await self.contexts.build(appointment.id)
        if context is None:
            logger.warning(f"No context for appointment {appointment.id}, skipping", extra=extra)
            return SKIPPED
        if not context.client_phone:
            logger.warning(f"No phone number for appointment {appointment.id}, skipping", extra=extra)
            return SKIPPED

        message = build_message(build_sms_context(context, self.timezone))
        status, _ = await deliver_guarded_sms(
            appointment.id,
            claim=claim,
            release=release,
            sms_sender=self.sms_sender,
            phone=context.client_phone,
            message=message,
            label=label,
        )
        return _STATUS_TO_OUTCOME[status]


class DeferredConfirmationSmsJob(_SmsJob):
    """
    Confirmation SMS fallback for unopened emails.

    Selects appointments whose email_sent_at is in [now - max_hours,
    now - min_hours] (both bounds inclusive), email still unopened, no
    confirmation SMS yet, status scheduled/confirmed. The claim re-checks
    email_opened_at at write time, so an open landing mid-tick wins.
    skip_reminder_sms stays false: this SMS replaces the email
    confirmation, not the reminder.
    """

    name = "deferred_confirmation_sms"

    def __init__(
        self,
        store: NotificationStore,
        contexts: ContextLoader,
        sms_sender: SmsSender,
        clock: Clock | None = None,
        timezone: str = "Europe/Zurich",
        concurrency: int = 5,
        min_hours: float = 3,
        max_hours: float = 6,
        immediate_lead_hours: float = 24,
    ):
        super().__init__(store, contexts, sms_sender, clock, timezone, concurrency)
        self.min_hours = min_hours
        self.max_hours = max_hours
        self.immediate_lead_hours = immediate_lead_hours

    def window(self, now: datetime) -> tuple[datetime, datetime]:
        return now - timedelta(hours=self.max_hours), now - timedelta(hours=self.min_hours)

    async def select(self, window_start: datetime, window_end: datetime) -> list[AppointmentSnapshot]:
        return await self.store.find_deferred_confirmation_candidates(window_start, window_end)

    async def process(self, appointment: AppointmentSnapshot) -> str:
        lead_time_hours = hours_between(appointment.created_at, appointment.appointment_time)
        if lead_time_hours < self.immediate_lead_hours:
            # Short-notice bookings were handled by the dispatcher
            logger.warning(
                f"Appointment {appointment.id} has lead time {lead_time_hours:.2f}h "
                f"< {self.immediate_lead_hours}h in deferred job, skipping",
                extra={"job_name": self.name, "appointment_id": str(appointment.id)},
            )
            return SKIPPED

        sms_type = SmsConfirmationType.DEFERRED_UNOPENED
        return await self._send(
            appointment,
            build_confirmation_sms,
            claim=lambda: self.store.claim_sms_confirmation(
                appointment.id, sms_type, require_unopened_email=True
            ),
            release=lambda: self.store.release_sms_confirmation(appointment.id, sms_type),
            label="Deferred confirmation",
        )


class ReminderSmsJob(_SmsJob):
    """
    Reminder SMS roughly 24h ahead.

    Selects appointments starting in [now + lead, now + lead + window)
    with no reminder sent, not exempted by an immediate SMS, status
    scheduled/confirmed.
    """

    name = "reminder_sms"

    def __init__(
        self,
        store: NotificationStore,
        contexts: ContextLoader,
        sms_sender: SmsSender,
        clock: Clock | None = None,
        timezone: str = "Europe/Zurich",
        concurrency: int = 5,
        lead_hours: float = 24,
        window_minutes: int = 15,
    ):
        super().__init__(store, contexts, sms_sender, clock, timezone, concurrency)
        self.lead_hours = lead_hours
        self.window_minutes = window_minutes

    def window(self, now: datetime) -> tuple[datetime, datetime]:
        start = now + timedelta(hours=self.lead_hours)
        return start, start + timedelta(minutes=self.window_minutes)

    async def select(self, window_start: datetime, window_end: datetime) -> list[AppointmentSnapshot]:
        return await self.store.find_reminder_candidates(window_start, window_end)

    async def process(self, appointment: AppointmentSnapshot) -> str:
        return await self._send(
            appointment,
            build_reminder_sms,
            claim=lambda: self.store.claim_sms_reminder(appointment.id),
            release=lambda: self.store.release_sms_reminder(appointment.id),
            label="Reminder",
        )
