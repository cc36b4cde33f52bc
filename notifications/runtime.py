"""
Composition root for the notification engine.

Wires settings, database, senders and clock into the dispatcher, the open
tracker and the two jobs. Nothing else in the package reads settings or
picks a provider.
"""

from dataclasses import dataclass

from database.connection import get_async_session
from notifications.context_builder import NotificationContextBuilder
from notifications.dispatcher import ConfirmationDispatcher
from notifications.email_tracker import EmailOpenTracker
from notifications.jobs import DeferredConfirmationSmsJob, ReminderSmsJob
from notifications.providers.factory import build_senders
from notifications.store import NotificationStore, SqlAlchemyNotificationStore
from notifications.types import ContextLoader, EmailSender, SmsSender
from shared.clock import Clock, SystemClock
from shared.config import Settings, get_settings


@dataclass
class NotificationRuntime:
    store: NotificationStore
    contexts: ContextLoader
    email_sender: EmailSender
    sms_sender: SmsSender
    clock: Clock
    dispatcher: ConfirmationDispatcher
    tracker: EmailOpenTracker
    deferred_job: DeferredConfirmationSmsJob
    reminder_job: ReminderSmsJob


def assemble_runtime(
    settings: Settings,
    store: NotificationStore,
    contexts: ContextLoader,
    email_sender: EmailSender,
    sms_sender: SmsSender,
    clock: Clock,
) -> NotificationRuntime:
    """Wire components from already-built collaborators."""
    return NotificationRuntime(
        store=store,
        contexts=contexts,
        email_sender=email_sender,
        sms_sender=sms_sender,
        clock=clock,
        dispatcher=ConfirmationDispatcher(
            store,
            contexts,
            email_sender,
            sms_sender,
            clock=clock,
            timezone=settings.TIMEZONE,
            immediate_lead_hours=settings.IMMEDIATE_SMS_LEAD_HOURS,
        ),
        tracker=EmailOpenTracker(
            store,
            clock=clock,
            delivered_counts_as_opened=settings.EMAIL_DELIVERED_COUNTS_AS_OPENED,
        ),
        deferred_job=DeferredConfirmationSmsJob(
            store,
            contexts,
            sms_sender,
            clock=clock,
            timezone=settings.TIMEZONE,
            concurrency=settings.JOB_CONCURRENCY,
            min_hours=settings.DEFERRED_SMS_MIN_HOURS,
            max_hours=settings.DEFERRED_SMS_MAX_HOURS,
            immediate_lead_hours=settings.IMMEDIATE_SMS_LEAD_HOURS,
        ),
        reminder_job=ReminderSmsJob(
            store,
            contexts,
            sms_sender,
            clock=clock,
            timezone=settings.TIMEZONE,
            concurrency=settings.JOB_CONCURRENCY,
            lead_hours=settings.REMINDER_LEAD_HOURS,
            window_minutes=settings.REMINDER_WINDOW_MINUTES,
        ),
    )


def build_runtime(settings: Settings | None = None, clock: Clock | None = None) -> NotificationRuntime:
    """
    Build the production runtime: PostgreSQL store, configured providers.

    A misconfigured channel is replaced by a disabled sender (logged as
    critical) so the other channel keeps working.
    """
    settings = settings or get_settings()
    email_sender, sms_sender = build_senders(settings)
    return assemble_runtime(
        settings,
        store=SqlAlchemyNotificationStore(get_async_session),
        contexts=NotificationContextBuilder(get_async_session),
        email_sender=email_sender,
        sms_sender=sms_sender,
        clock=clock or SystemClock(),
    )
