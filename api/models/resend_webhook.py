"""Pydantic models for Resend webhook payloads and notification API requests."""

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator

from notifications.email_tracker import InboundEmailEvent


class ResendTag(BaseModel):
    """Tag attached at send time and echoed back by Resend."""
    model_config = ConfigDict(extra="allow")

    name: str
    value: str


class ResendEventData(BaseModel):
    """`data` object of a Resend webhook event."""
    model_config = ConfigDict(extra="allow")

    email_id: str | None = None
    to: list[str] = []
    tags: list[ResendTag] = []
    metadata: dict[str, Any] = {}
    timestamp: datetime | None = None
    created_at: datetime | None = None

    @field_validator("to", mode="before")
    @classmethod
    def normalize_recipients(cls, v: Any) -> list[str]:
        """Accept a single address or a list."""
        if v is None:
            return []
        if isinstance(v, str):
            return [v]
        return list(v)

    @field_validator("tags", mode="before")
    @classmethod
    def normalize_tags(cls, v: Any) -> list[dict[str, Any]]:
        """Accept both [{"name", "value"}] and {"name": "value"} shapes; null values are dropped."""
        if v is None:
            return []
        if isinstance(v, dict):
            return [{"name": name, "value": str(value)} for name, value in v.items() if value is not None]
        return [tag for tag in v if not isinstance(tag, dict) or tag.get("value") is not None]

    @field_validator("metadata", mode="before")
    @classmethod
    def default_metadata(cls, v: Any) -> dict[str, Any]:
        return v or {}


class ResendWebhookEvent(BaseModel):
    """Resend webhook event structure."""
    model_config = ConfigDict(extra="allow")

    type: str = Field(min_length=1)
    created_at: datetime | None = None
    data: ResendEventData = Field(default_factory=ResendEventData)

    def to_inbound_event(self) -> InboundEmailEvent:
        return InboundEmailEvent(
            type=self.type,
            email_id=self.data.email_id,
            to=self.data.to,
            tags={tag.name: tag.value for tag in self.data.tags},
            metadata=self.data.metadata,
            timestamp=self.data.timestamp or self.data.created_at or self.created_at,
            provider="resend",
        )


class DispatchConfirmationRequest(BaseModel):
    """Optional overrides when triggering the creation-time dispatcher."""

    appointment_time: datetime | None = None
    created_at: datetime | None = None


class SimulateEmailOpenedRequest(BaseModel):
    """Development-only open simulation."""

    appointment_id: UUID

    @field_validator("appointment_id", mode="before")
    @classmethod
    def validate_uuid(cls, v: Any) -> UUID:
        """Validate appointment_id is a valid UUID."""
        if isinstance(v, UUID):
            return v
        if isinstance(v, str):
            try:
                return UUID(v)
            except ValueError as exc:
                raise ValueError(f"Invalid UUID format: {v}") from exc
        raise ValueError(f"appointment_id must be UUID or string, got {type(v)}")
