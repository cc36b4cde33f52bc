"""
SQLAlchemy ORM models for the notification engine.

This module defines the tables the notification engine reads and writes:
- salons, clients, services, stylists: reference data owned by the booking
  application (read-only from this codebase)
- appointments: booking rows, including the notification state columns
- email_events: append-only audit log of outbound/inbound email events
- notification_settings: per-salon confirmation email templates, edited by
  the booking application (read-only from this codebase)

All models use:
- UUID primary keys (auto-generated)
- TIMESTAMP WITH TIME ZONE for datetime fields
- JSONB for flexible metadata storage
"""

from datetime import datetime
from enum import Enum as PyEnum
from typing import Any, Optional
from uuid import UUID, uuid4

from sqlalchemy import (
    TIMESTAMP,
    Boolean,
    CheckConstraint,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    func,
    text,
)
from sqlalchemy import (
    Enum as SQLEnum,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.dialects.postgresql import UUID as PGUUID
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

# ============================================================================
# Base Class
# ============================================================================


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


# ============================================================================
# Enums
# ============================================================================


class AppointmentStatus(str, PyEnum):
    """Appointment lifecycle status."""

    SCHEDULED = "scheduled"
    CONFIRMED = "confirmed"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    NO_SHOW = "no_show"

    def __str__(self):
        return self.value


# Only these statuses receive confirmations or reminders
ACTIVE_STATUSES = (AppointmentStatus.SCHEDULED, AppointmentStatus.CONFIRMED)


class SmsConfirmationType(str, PyEnum):
    """Which rule produced the confirmation SMS."""

    IMMEDIATE_LT24H = "immediate_lt24h"      # Booked less than 24h ahead, sent at creation
    DEFERRED_UNOPENED = "deferred_unopened"  # Confirmation email left unopened

    def __str__(self):
        return self.value


class EmailEventType(str, PyEnum):
    """Type of email event recorded in the audit log."""

    SENT = "sent"
    DELIVERED = "delivered"
    OPENED = "opened"
    OTHER = "other"


def _enum_values(enum_cls: type[PyEnum]) -> list[str]:
    return [e.value for e in enum_cls]


# ============================================================================
# Reference Models (owned by the booking application)
# ============================================================================


class Salon(Base):
    """Salon model - Business running the bookings."""

    __tablename__ = "salons"

    id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True), primary_key=True, default=uuid4
    )
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), server_default=func.now(), nullable=False
    )

    def __repr__(self) -> str:
        return f"<Salon(id={self.id}, name='{self.name}')>"


class Client(Base):
    """Client model - Person booking appointments."""

    __tablename__ = "clients"

    id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True), primary_key=True, default=uuid4
    )
    first_name: Mapped[str | None] = mapped_column(String(100), nullable=True)
    last_name: Mapped[str | None] = mapped_column(String(100), nullable=True)
    email: Mapped[str | None] = mapped_column(String(255), nullable=True, index=True)
    phone: Mapped[str | None] = mapped_column(String(30), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), server_default=func.now(), nullable=False
    )

    appointments: Mapped[list["Appointment"]] = relationship(
        "Appointment", back_populates="client"
    )

    def __repr__(self) -> str:
        return f"<Client(id={self.id}, email='{self.email}')>"


class Service(Base):
    """Service model - Individual salon service."""

    __tablename__ = "services"

    id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True), primary_key=True, default=uuid4
    )
    salon_id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True),
        ForeignKey("salons.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    duration_minutes: Mapped[int] = mapped_column(Integer, default=30, nullable=False)

    def __repr__(self) -> str:
        return f"<Service(id={self.id}, name='{self.name}')>"


class Stylist(Base):
    """Stylist model - Salon professional."""

    __tablename__ = "stylists"

    id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True), primary_key=True, default=uuid4
    )
    salon_id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True),
        ForeignKey("salons.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    first_name: Mapped[str | None] = mapped_column(String(100), nullable=True)
    last_name: Mapped[str | None] = mapped_column(String(100), nullable=True)

    def __repr__(self) -> str:
        return f"<Stylist(id={self.id}, first_name='{self.first_name}')>"


# ============================================================================
# Appointment
# ============================================================================


class Appointment(Base):
    """
    Appointment model - Booking row plus its notification state.

    The booking flow creates the row with every notification flag false/null.
    Afterwards the flags are only written through the conditional updates in
    notifications.store, which is what keeps concurrent actors from sending
    the same SMS twice.
    """

    __tablename__ = "appointments"

    id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True), primary_key=True, default=uuid4
    )

    # Foreign keys
    salon_id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True),
        ForeignKey("salons.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    client_id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True),
        ForeignKey("clients.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    service_id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True),
        ForeignKey("services.id", ondelete="RESTRICT"),
        nullable=False,
    )
    stylist_id: Mapped[UUID | None] = mapped_column(
        PGUUID(as_uuid=True),
        ForeignKey("stylists.id", ondelete="SET NULL"),
        nullable=True,
    )

    # Scheduling
    appointment_time: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), nullable=False, index=True
    )
    duration_minutes: Mapped[int | None] = mapped_column(Integer, nullable=True)

    status: Mapped[AppointmentStatus] = mapped_column(
        SQLEnum(
            AppointmentStatus,
            name="appointment_status",
            values_callable=_enum_values,
        ),
        default=AppointmentStatus.SCHEDULED,
        nullable=False,
        index=True,
    )

    # Notification state
    email_sent_at: Mapped[datetime | None] = mapped_column(
        TIMESTAMP(timezone=True), nullable=True
    )
    email_opened_at: Mapped[datetime | None] = mapped_column(
        TIMESTAMP(timezone=True), nullable=True
    )
    sms_confirmation_sent: Mapped[bool] = mapped_column(
        Boolean, default=False, server_default="false", nullable=False
    )
    sms_confirmation_type: Mapped[SmsConfirmationType | None] = mapped_column(
        SQLEnum(
            SmsConfirmationType,
            name="sms_confirmation_type",
            values_callable=_enum_values,
        ),
        nullable=True,
    )
    sms_reminder_sent: Mapped[bool] = mapped_column(
        Boolean, default=False, server_default="false", nullable=False
    )
    skip_reminder_sms: Mapped[bool] = mapped_column(
        Boolean, default=False, server_default="false", nullable=False
    )

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    # Relationships
    client: Mapped["Client"] = relationship("Client", back_populates="appointments")
    service: Mapped["Service"] = relationship("Service")
    salon: Mapped["Salon"] = relationship("Salon")
    stylist: Mapped[Optional["Stylist"]] = relationship("Stylist")

    __table_args__ = (
        CheckConstraint(
            "skip_reminder_sms = (sms_confirmation_type IS NOT NULL "
            "AND sms_confirmation_type = 'immediate_lt24h')",
            name="check_skip_reminder_matches_immediate_sms",
        ),
        # Deferred confirmation job: unopened emails sent in a trailing window
        Index(
            "idx_appointments_deferred_sms",
            "email_sent_at",
            postgresql_where=text(
                "email_opened_at IS NULL AND sms_confirmation_sent = false"
            ),
        ),
        # Reminder job: upcoming appointments still owed a reminder
        Index(
            "idx_appointments_reminder_sms",
            "appointment_time",
            postgresql_where=text(
                "sms_reminder_sent = false AND skip_reminder_sms = false"
            ),
        ),
    )

    def __repr__(self) -> str:
        return f"<Appointment(id={self.id}, client_id={self.client_id}, status='{self.status.value}')>"


# ============================================================================
# Notification Settings (owned by the booking application)
# ============================================================================


class NotificationSettings(Base):
    """
    NotificationSettings model - Per-salon confirmation email templates.

    NULL or empty columns mean "use the default template". When only
    confirmation_email_text is set, the HTML body is generated from it.
    """

    __tablename__ = "notification_settings"

    id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True), primary_key=True, default=uuid4
    )
    salon_id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True),
        ForeignKey("salons.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )
    confirmation_email_subject: Mapped[str | None] = mapped_column(Text, nullable=True)
    confirmation_email_text: Mapped[str | None] = mapped_column(Text, nullable=True)
    confirmation_email_html: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"<NotificationSettings(id={self.id}, salon_id={self.salon_id})>"


# ============================================================================
# Email Events (append-only)
# ============================================================================


class EmailEvent(Base):
    """
    EmailEvent model - Audit trail of email activity per appointment.

    Rows are never updated after insert. Decisions are made on the
    appointment flags only; this table exists for debugging and support.
    """

    __tablename__ = "email_events"

    id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True), primary_key=True, default=uuid4
    )
    appointment_id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True),
        ForeignKey("appointments.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    type: Mapped[EmailEventType] = mapped_column(
        SQLEnum(
            EmailEventType,
            name="email_event_type",
            values_callable=_enum_values,
        ),
        nullable=False,
    )
    provider: Mapped[str] = mapped_column(String(50), nullable=False)
    provider_event_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    timestamp: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), nullable=False
    )
    # "metadata" is reserved on declarative classes
    event_metadata: Mapped[dict[str, Any]] = mapped_column(
        "metadata", JSONB, default=dict, server_default="{}", nullable=False
    )

    def __repr__(self) -> str:
        return f"<EmailEvent(id={self.id}, appointment_id={self.appointment_id}, type='{self.type.value}')>"
