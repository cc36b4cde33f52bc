"""
Notification context builder.

Loads one appointment with its client, service, salon and stylist and
flattens it into a NotificationContext. Read-only: never writes.
"""

import logging
from collections.abc import Callable
from contextlib import AbstractAsyncContextManager
from datetime import timedelta
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from database.models import Appointment, Client, Salon, Service, Stylist
from notifications.email_templates import DEFAULT_STYLIST_LABEL
from notifications.types import NotificationContext
from shared.clock import as_utc

logger = logging.getLogger(__name__)

DEFAULT_DURATION_MINUTES = 30
DEFAULT_CLIENT_NAME = "Client"
DEFAULT_SERVICE_NAME = "Service"
DEFAULT_SALON_NAME = "Salon"


def _join_name(first: str | None, last: str | None) -> str:
    return " ".join(part.strip() for part in (first, last) if part and part.strip())


def assemble_context(
    appointment: Appointment,
    client: Client,
    service: Service,
    salon: Salon,
    stylist: Stylist | None = None,
) -> NotificationContext:
    """
    Flatten loaded rows into a NotificationContext.

    Empty labels fall back to neutral defaults so templates never render
    blanks. The first name is the first token of the full name.
    """
    full_name = _join_name(client.first_name, client.last_name) or DEFAULT_CLIENT_NAME
    first_name = full_name.split()[0]

    stylist_name = _join_name(stylist.first_name, stylist.last_name) if stylist else ""

    duration = (
        appointment.duration_minutes
        or getattr(service, "duration_minutes", None)
        or DEFAULT_DURATION_MINUTES
    )
    start_time = as_utc(appointment.appointment_time)

    return NotificationContext(
        appointment_id=appointment.id,
        salon_id=appointment.salon_id,
        client_full_name=full_name,
        client_first_name=first_name,
        client_email=client.email or None,
        client_phone=client.phone or None,
        service_name=service.name or DEFAULT_SERVICE_NAME,
        salon_name=salon.name or DEFAULT_SALON_NAME,
        stylist_name=stylist_name or DEFAULT_STYLIST_LABEL,
        start_time=start_time,
        end_time=start_time + timedelta(minutes=duration),
    )


class NotificationContextBuilder:
    """
    Builds contexts from the database.

    Args:
        session_factory: Callable returning an async session context manager
            (database.connection.get_async_session in production)
    """

    def __init__(self, session_factory: Callable[[], AbstractAsyncContextManager[AsyncSession]]):
        self._session_factory = session_factory

    async def build(self, appointment_id: UUID) -> NotificationContext | None:
        """
        Load and flatten one appointment.

        Returns:
            NotificationContext, or None when the appointment, its client,
            service or salon cannot be found
        """
        async with self._session_factory() as session:
            result = await session.execute(
                select(Appointment)
                .options(
                    selectinload(Appointment.client),
                    selectinload(Appointment.service),
                    selectinload(Appointment.salon),
                    selectinload(Appointment.stylist),
                )
                .where(Appointment.id == appointment_id)
            )
            appointment = result.scalar_one_or_none()

        if appointment is None:
            logger.warning(
                f"Appointment {appointment_id} not found",
                extra={"appointment_id": str(appointment_id)},
            )
            return None

        missing = [
            name
            for name, row in (
                ("client", appointment.client),
                ("service", appointment.service),
                ("salon", appointment.salon),
            )
            if row is None
        ]
        if missing:
            logger.warning(
                f"Appointment {appointment_id} is missing {', '.join(missing)}",
                extra={"appointment_id": str(appointment_id)},
            )
            return None

        if appointment.stylist_id is not None and appointment.stylist is None:
            logger.warning(
                f"Stylist {appointment.stylist_id} not found for appointment {appointment_id}, "
                "using default label",
                extra={"appointment_id": str(appointment_id)},
            )

        return assemble_context(
            appointment,
            appointment.client,
            appointment.service,
            appointment.salon,
            appointment.stylist,
        )
