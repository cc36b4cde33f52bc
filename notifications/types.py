"""
Shared types for the notification engine.

Senders are plain protocols so components receive them through their
constructors; which concrete provider backs a channel is decided once, in
notifications.providers.factory.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Protocol
from uuid import UUID


@dataclass
class SendResult:
    """Outcome of one outbound message."""

    success: bool
    error: str | None = None
    provider_message_id: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def failed(cls, error: str, **metadata: Any) -> "SendResult":
        return cls(success=False, error=error, metadata=dict(metadata))


class EmailSender(Protocol):
    """Sends one email. `metadata` carries the correlation id echoed by webhooks."""

    async def send(
        self,
        to: str,
        subject: str,
        html: str,
        text: str | None = None,
        metadata: dict[str, str] | None = None,
    ) -> SendResult: ...


class SmsSender(Protocol):
    """Sends one SMS. Callers guarantee a single 160-char ASCII segment."""

    async def send(self, to: str, message: str) -> SendResult: ...


@dataclass(frozen=True)
class NotificationContext:
    """Denormalized, read-only view of one appointment used to render messages."""

    appointment_id: UUID
    salon_id: UUID
    client_full_name: str
    client_first_name: str
    client_email: str | None
    client_phone: str | None
    service_name: str
    salon_name: str
    stylist_name: str
    start_time: datetime
    end_time: datetime


class ContextLoader(Protocol):
    """Anything that can build a NotificationContext (see notifications.context_builder)."""

    async def build(self, appointment_id: UUID) -> NotificationContext | None: ...


@dataclass(frozen=True)
class SmsContext:
    """Already-formatted values substituted into the SMS templates."""

    client_first_name: str
    service_name: str
    salon_name: str
    weekday: str
    date: str
    time: str


@dataclass(frozen=True)
class AppointmentSnapshot:
    """Notification state of one appointment as read from the store."""

    id: UUID
    appointment_time: datetime
    created_at: datetime
    status: str
    email_sent_at: datetime | None = None
    email_opened_at: datetime | None = None
    sms_confirmation_sent: bool = False
    sms_confirmation_type: str | None = None
    sms_reminder_sent: bool = False
    skip_reminder_sms: bool = False


@dataclass(frozen=True)
class SalonEmailTemplates:
    """Per-salon confirmation email templates; None or "" means use the default."""

    subject: str | None = None
    html: str | None = None
    text: str | None = None
