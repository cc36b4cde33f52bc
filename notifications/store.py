"""
Notification state store.

Every write that gates an outbound SMS is a compare-and-set: an UPDATE whose
WHERE clause requires the flag to still be unset. The row count tells the
caller whether it won the flag; only the winner may call the SMS sender.
Reads are never used to decide ownership.
"""

import logging
from collections.abc import Callable
from contextlib import AbstractAsyncContextManager
from datetime import datetime
from typing import Any, Protocol
from uuid import UUID

from sqlalchemy import and_, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from database.models import (
    ACTIVE_STATUSES,
    Appointment,
    Client,
    EmailEvent,
    EmailEventType,
    NotificationSettings,
    SmsConfirmationType,
)
from notifications.types import AppointmentSnapshot, SalonEmailTemplates

logger = logging.getLogger(__name__)

SessionFactory = Callable[[], AbstractAsyncContextManager[AsyncSession]]


class NotificationStore(Protocol):
    """Persistence operations used by the dispatcher, tracker and jobs."""

    async def get_appointment(self, appointment_id: UUID) -> AppointmentSnapshot | None: ...

    async def claim_sms_confirmation(
        self,
        appointment_id: UUID,
        sms_type: SmsConfirmationType,
        require_unopened_email: bool = False,
    ) -> bool: ...

    async def release_sms_confirmation(
        self, appointment_id: UUID, sms_type: SmsConfirmationType
    ) -> bool: ...

    async def claim_sms_reminder(self, appointment_id: UUID) -> bool: ...

    async def release_sms_reminder(self, appointment_id: UUID) -> bool: ...

    async def mark_email_sent(self, appointment_id: UUID, sent_at: datetime) -> bool: ...

    async def mark_email_opened(self, appointment_id: UUID, opened_at: datetime) -> bool: ...

    async def set_skip_reminder(self, appointment_id: UUID, value: bool) -> bool: ...

    async def append_email_event(
        self,
        appointment_id: UUID,
        event_type: EmailEventType,
        provider: str,
        timestamp: datetime,
        provider_event_id: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> None: ...

    async def find_latest_appointment_id_for_email(self, email: str) -> UUID | None: ...

    async def get_salon_email_templates(self, salon_id: UUID) -> SalonEmailTemplates | None: ...

    async def find_deferred_confirmation_candidates(
        self, sent_from: datetime, sent_until: datetime
    ) -> list[AppointmentSnapshot]: ...

    async def find_reminder_candidates(
        self, window_start: datetime, window_end: datetime
    ) -> list[AppointmentSnapshot]: ...


def to_snapshot(appointment: Appointment) -> AppointmentSnapshot:
    return AppointmentSnapshot(
        id=appointment.id,
        appointment_time=appointment.appointment_time,
        created_at=appointment.created_at,
        status=str(appointment.status),
        email_sent_at=appointment.email_sent_at,
        email_opened_at=appointment.email_opened_at,
        sms_confirmation_sent=appointment.sms_confirmation_sent,
        sms_confirmation_type=(
            str(appointment.sms_confirmation_type)
            if appointment.sms_confirmation_type is not None
            else None
        ),
        sms_reminder_sent=appointment.sms_reminder_sent,
        skip_reminder_sms=appointment.skip_reminder_sms,
    )


class SqlAlchemyNotificationStore:
    """
    PostgreSQL-backed store.

    Each call opens its own short session and commits before returning, so
    no row lock is ever held across a provider call.
    """

    def __init__(self, session_factory: SessionFactory):
        self._session_factory = session_factory

    async def _execute_update(self, statement) -> bool:
        async with self._session_factory() as session:
            result = await session.execute(statement)
            await session.commit()
            return result.rowcount == 1

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_appointment(self, appointment_id: UUID) -> AppointmentSnapshot | None:
        async with self._session_factory() as session:
            result = await session.execute(
                select(Appointment).where(Appointment.id == appointment_id)
            )
            appointment = result.scalar_one_or_none()
            return to_snapshot(appointment) if appointment else None

    async def find_latest_appointment_id_for_email(self, email: str) -> UUID | None:
        """Most recently created appointment of the client owning `email` (case-insensitive)."""
        async with self._session_factory() as session:
            result = await session.execute(
                select(Appointment.id)
                .join(Client, Client.id == Appointment.client_id)
                .where(func.lower(Client.email) == email.strip().lower())
                .order_by(Appointment.created_at.desc())
                .limit(1)
            )
            return result.scalar_one_or_none()

    async def get_salon_email_templates(self, salon_id: UUID) -> SalonEmailTemplates | None:
        """Confirmation email templates configured by the salon, or None when it has no settings row."""
        async with self._session_factory() as session:
            result = await session.execute(
                select(NotificationSettings).where(NotificationSettings.salon_id == salon_id)
            )
            settings = result.scalar_one_or_none()
            if settings is None:
                return None
            return SalonEmailTemplates(
                subject=settings.confirmation_email_subject,
                html=settings.confirmation_email_html,
                text=settings.confirmation_email_text,
            )

    async def find_deferred_confirmation_candidates(
        self, sent_from: datetime, sent_until: datetime
    ) -> list[AppointmentSnapshot]:
        """Unopened, unconfirmed active appointments whose email went out in [sent_from, sent_until]."""
        async with self._session_factory() as session:
            result = await session.execute(
                select(Appointment)
                .where(
                    and_(
                        Appointment.email_sent_at >= sent_from,
                        Appointment.email_sent_at <= sent_until,
                        Appointment.email_opened_at.is_(None),
                        Appointment.sms_confirmation_sent.is_(False),
                        Appointment.status.in_(ACTIVE_STATUSES),
                    )
                )
                .order_by(Appointment.email_sent_at)
            )
            return [to_snapshot(a) for a in result.scalars().all()]

    async def find_reminder_candidates(
        self, window_start: datetime, window_end: datetime
    ) -> list[AppointmentSnapshot]:
        """Active appointments starting in [window_start, window_end) still owed a reminder."""
        async with self._session_factory() as session:
            result = await session.execute(
                select(Appointment)
                .where(
                    and_(
                        Appointment.appointment_time >= window_start,
                        Appointment.appointment_time < window_end,
                        Appointment.sms_reminder_sent.is_(False),
                        Appointment.skip_reminder_sms.is_(False),
                        Appointment.status.in_(ACTIVE_STATUSES),
                    )
                )
                .order_by(Appointment.appointment_time)
            )
            return [to_snapshot(a) for a in result.scalars().all()]

    # ------------------------------------------------------------------
    # Conditional writes
    # ------------------------------------------------------------------

    async def claim_sms_confirmation(
        self,
        appointment_id: UUID,
        sms_type: SmsConfirmationType,
        require_unopened_email: bool = False,
    ) -> bool:
        """
        Take ownership of the confirmation SMS.

        An immediate SMS also suppresses the reminder. With
        `require_unopened_email`, an open that landed after the candidate
        query makes the claim fail.

        Returns:
            True if this caller set the flag and must send the SMS
        """
        conditions = [
            Appointment.id == appointment_id,
            Appointment.sms_confirmation_sent.is_(False),
            Appointment.status.in_(ACTIVE_STATUSES),
        ]
        if require_unopened_email:
            conditions.append(Appointment.email_opened_at.is_(None))

        return await self._execute_update(
            update(Appointment)
            .where(and_(*conditions))
            .values(
                sms_confirmation_sent=True,
                sms_confirmation_type=sms_type,
                skip_reminder_sms=sms_type == SmsConfirmationType.IMMEDIATE_LT24H,
            )
        )

    async def release_sms_confirmation(
        self, appointment_id: UUID, sms_type: SmsConfirmationType
    ) -> bool:
        """Undo a claim after a failed send so the appointment stays eligible."""
        return await self._execute_update(
            update(Appointment)
            .where(
                and_(
                    Appointment.id == appointment_id,
                    Appointment.sms_confirmation_sent.is_(True),
                    Appointment.sms_confirmation_type == sms_type,
                )
            )
            .values(
                sms_confirmation_sent=False,
                sms_confirmation_type=None,
                skip_reminder_sms=False,
            )
        )

    async def claim_sms_reminder(self, appointment_id: UUID) -> bool:
        return await self._execute_update(
            update(Appointment)
            .where(
                and_(
                    Appointment.id == appointment_id,
                    Appointment.sms_reminder_sent.is_(False),
                    Appointment.skip_reminder_sms.is_(False),
                    Appointment.status.in_(ACTIVE_STATUSES),
                )
            )
            .values(sms_reminder_sent=True)
        )

    async def release_sms_reminder(self, appointment_id: UUID) -> bool:
        return await self._execute_update(
            update(Appointment)
            .where(
                and_(
                    Appointment.id == appointment_id,
                    Appointment.sms_reminder_sent.is_(True),
                )
            )
            .values(sms_reminder_sent=False)
        )

    async def mark_email_sent(self, appointment_id: UUID, sent_at: datetime) -> bool:
        """Record the first successful confirmation email; later sends keep the original time."""
        return await self._execute_update(
            update(Appointment)
            .where(
                and_(
                    Appointment.id == appointment_id,
                    Appointment.email_sent_at.is_(None),
                )
            )
            .values(email_sent_at=sent_at)
        )

    async def mark_email_opened(self, appointment_id: UUID, opened_at: datetime) -> bool:
        return await self._execute_update(
            update(Appointment)
            .where(
                and_(
                    Appointment.id == appointment_id,
                    Appointment.email_opened_at.is_(None),
                )
            )
            .values(email_opened_at=opened_at)
        )

    async def set_skip_reminder(self, appointment_id: UUID, value: bool) -> bool:
        """
        Write skip_reminder_sms.

        Guarded so the flag always matches the confirmation type: True
        requires an immediate SMS, False requires none.
        """
        if value:
            guard = Appointment.sms_confirmation_type == SmsConfirmationType.IMMEDIATE_LT24H
        else:
            guard = or_(
                Appointment.sms_confirmation_type.is_(None),
                Appointment.sms_confirmation_type != SmsConfirmationType.IMMEDIATE_LT24H,
            )

        return await self._execute_update(
            update(Appointment)
            .where(and_(Appointment.id == appointment_id, guard))
            .values(skip_reminder_sms=value)
        )

    # ------------------------------------------------------------------
    # Event log
    # ------------------------------------------------------------------

    async def append_email_event(
        self,
        appointment_id: UUID,
        event_type: EmailEventType,
        provider: str,
        timestamp: datetime,
        provider_event_id: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        async with self._session_factory() as session:
            session.add(
                EmailEvent(
                    appointment_id=appointment_id,
                    type=event_type,
                    provider=provider,
                    provider_event_id=provider_event_id,
                    timestamp=timestamp,
                    event_metadata=metadata or {},
                )
            )
            await session.commit()
        logger.debug(
            f"Email event {event_type.value} recorded for appointment {appointment_id}",
            extra={"appointment_id": str(appointment_id)},
        )
