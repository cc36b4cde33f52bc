"""
Email open tracker - consumes inbound email provider events.

An "opened" event (or "delivered", when EMAIL_DELIVERED_COUNTS_AS_OPENED is
on for providers without open tracking) sets email_opened_at once. That
single timestamp is what makes the deferred confirmation SMS job skip the
appointment.

Correlation, first match wins:
    1. tag named "appointmentId" attached at send time
    2. metadata["appointmentId"]
    3. most recent appointment of the client owning the recipient address

Events that cannot be correlated are logged and acknowledged; nothing is
written for them.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID

from database.models import EmailEventType
from notifications.dispatcher import CORRELATION_KEY
from notifications.store import NotificationStore
from shared.clock import Clock, SystemClock

logger = logging.getLogger(__name__)

EVENT_OPENED = "email.opened"
EVENT_DELIVERED = "email.delivered"


@dataclass
class InboundEmailEvent:
    """Provider-agnostic view of one webhook event."""

    type: str
    email_id: str | None = None
    to: list[str] = field(default_factory=list)
    tags: dict[str, str] = field(default_factory=dict)
    metadata: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime | None = None
    provider: str = "resend"


class TrackingResult(str, Enum):
    OPENED = "opened"
    ALREADY_OPENED = "already_opened"
    RECORDED = "recorded"
    UNCORRELATED = "uncorrelated"


class EmailOpenTracker:
    """
    Applies inbound email events to appointment state.

    Args:
        store: Notification state store
        clock: Source of "now" (email_opened_at is set to the receive time)
        delivered_counts_as_opened: Treat email.delivered like email.opened
    """

    def __init__(
        self,
        store: NotificationStore,
        clock: Clock | None = None,
        delivered_counts_as_opened: bool = False,
    ):
        self.store = store
        self.clock = clock or SystemClock()
        self.delivered_counts_as_opened = delivered_counts_as_opened

    async def handle(self, event: InboundEmailEvent) -> TrackingResult:
        """
        Process one event.

        Returns:
            TrackingResult. Store failures propagate so the provider retries;
            replays are harmless because the open is a conditional update.
        """
        appointment_id = await self.correlate(event)
        if appointment_id is None:
            logger.warning(
                f"Uncorrelated {event.type} event (email_id={event.email_id}, to={event.to}), ignoring"
            )
            return TrackingResult.UNCORRELATED

        extra = {"appointment_id": str(appointment_id), "channel": "email"}
        now = self.clock.now()
        event_time = event.timestamp or now
        event_metadata = {"provider_type": event.type, "to": event.to, **event.metadata}

        counts_as_open = event.type == EVENT_OPENED or (
            event.type == EVENT_DELIVERED and self.delivered_counts_as_opened
        )

        if not counts_as_open:
            event_type = EmailEventType.DELIVERED if event.type == EVENT_DELIVERED else EmailEventType.OTHER
            await self.store.append_email_event(
                appointment_id,
                event_type,
                provider=event.provider,
                timestamp=event_time,
                provider_event_id=event.email_id,
                metadata=event_metadata,
            )
            logger.info(f"Recorded {event.type} for appointment {appointment_id}", extra=extra)
            return TrackingResult.RECORDED

        if event.type == EVENT_DELIVERED:
            await self.store.append_email_event(
                appointment_id,
                EmailEventType.DELIVERED,
                provider=event.provider,
                timestamp=event_time,
                provider_event_id=event.email_id,
                metadata=event_metadata,
            )

        if not await self.store.mark_email_opened(appointment_id, now):
            logger.info(f"Email for appointment {appointment_id} already marked opened", extra=extra)
            return TrackingResult.ALREADY_OPENED

        await self.store.append_email_event(
            appointment_id,
            EmailEventType.OPENED,
            provider=event.provider,
            timestamp=event_time,
            provider_event_id=event.email_id,
            metadata=event_metadata,
        )
        logger.info(f"Email opened for appointment {appointment_id} ({event.type})", extra=extra)
        return TrackingResult.OPENED

    async def correlate(self, event: InboundEmailEvent) -> UUID | None:
        """Resolve the appointment an event belongs to, or None."""
        explicit = event.tags.get(CORRELATION_KEY) or event.metadata.get(CORRELATION_KEY)

        if explicit:
            try:
                appointment_id = UUID(str(explicit))
            except ValueError:
                logger.warning(f"Invalid {CORRELATION_KEY} in {event.type} event: {explicit!r}")
                return None
            if await self.store.get_appointment(appointment_id) is None:
                logger.warning(f"{event.type} event references unknown appointment {appointment_id}")
                return None
            return appointment_id

        for recipient in event.to:
            if not recipient:
                continue
            appointment_id = await self.store.find_latest_appointment_id_for_email(recipient)
            if appointment_id is not None:
                logger.info(
                    f"{event.type} event correlated by recipient {recipient} -> appointment {appointment_id}",
                    extra={"appointment_id": str(appointment_id)},
                )
                return appointment_id

        return None
