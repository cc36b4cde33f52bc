"""
Provider factory - the only place that maps settings to concrete senders.

Each channel is built independently. A channel that cannot be configured
raises ChannelConfigurationError; build_senders() turns that into a
disabled sender for that channel so the other one keeps working.
"""

import logging

import httpx

from notifications.providers.clicksend_sms import ClickSendSmsSender
from notifications.providers.resend_email import ResendEmailSender
from notifications.types import EmailSender, SendResult, SmsSender
from shared.config import Settings

logger = logging.getLogger(__name__)


class ChannelConfigurationError(Exception):
    """Raised when a notification channel is missing required settings."""

    def __init__(self, channel: str, missing: list[str]):
        self.channel = channel
        self.missing = missing
        super().__init__(
            f"{channel} channel is not configured: missing {', '.join(missing)}"
        )


class DisabledEmailSender:
    """Stands in for a misconfigured email channel: every send fails."""

    provider_name = "disabled"

    def __init__(self, reason: str):
        self.reason = reason

    async def send(self, to, subject, html, text=None, metadata=None) -> SendResult:
        logger.error(f"Email channel disabled, not sending to {to}: {self.reason}", extra={"channel": "email"})
        return SendResult.failed(f"EMAIL_CHANNEL_DISABLED: {self.reason}")


class DisabledSmsSender:
    """Stands in for a misconfigured SMS channel: every send fails."""

    provider_name = "disabled"

    def __init__(self, reason: str):
        self.reason = reason

    async def send(self, to, message) -> SendResult:
        logger.error(f"SMS channel disabled, not sending to {to}: {self.reason}", extra={"channel": "sms"})
        return SendResult.failed(f"SMS_CHANNEL_DISABLED: {self.reason}")


def build_email_sender(
    settings: Settings, transport: httpx.AsyncBaseTransport | None = None
) -> ResendEmailSender:
    """
    Build the Resend sender.

    Raises:
        ChannelConfigurationError: RESEND_API_KEY missing outside dry-run,
            or RESEND_FROM empty
    """
    missing = []
    if not settings.email_dry_run and not settings.RESEND_API_KEY.strip():
        missing.append("RESEND_API_KEY")
    if not settings.RESEND_FROM.strip():
        missing.append("RESEND_FROM")
    if missing:
        raise ChannelConfigurationError("email", missing)

    return ResendEmailSender(
        api_key=settings.RESEND_API_KEY.strip(),
        from_address=settings.RESEND_FROM.strip(),
        api_url=settings.RESEND_API_URL,
        dry_run=settings.email_dry_run,
        timeout=settings.PROVIDER_TIMEOUT_SECONDS,
        transport=transport,
    )


def build_sms_sender(
    settings: Settings, transport: httpx.AsyncBaseTransport | None = None
) -> ClickSendSmsSender:
    """
    Build the ClickSend sender.

    Raises:
        ChannelConfigurationError: credentials or sender ID missing outside dry-run
    """
    missing = []
    if not settings.sms_dry_run:
        if not settings.CLICKSEND_USERNAME.strip():
            missing.append("CLICKSEND_USERNAME")
        if not settings.CLICKSEND_API_KEY.strip():
            missing.append("CLICKSEND_API_KEY")
        if not settings.CLICKSEND_SMS_FROM.strip():
            missing.append("CLICKSEND_SMS_FROM")
    if missing:
        raise ChannelConfigurationError("sms", missing)

    return ClickSendSmsSender(
        username=settings.CLICKSEND_USERNAME.strip(),
        api_key=settings.CLICKSEND_API_KEY.strip(),
        sender_id=settings.CLICKSEND_SMS_FROM.strip(),
        api_url=settings.CLICKSEND_API_URL,
        default_region=settings.SMS_DEFAULT_REGION,
        dry_run=settings.sms_dry_run,
        timeout=settings.PROVIDER_TIMEOUT_SECONDS,
        transport=transport,
    )


def build_senders(settings: Settings) -> tuple[EmailSender, SmsSender]:
    """
    Build both channels, degrading a misconfigured channel to a disabled sender.

    Returns:
        (email_sender, sms_sender)
    """
    email_sender: EmailSender
    sms_sender: SmsSender

    try:
        email_sender = build_email_sender(settings)
    except ChannelConfigurationError as e:
        logger.critical(f"{e} - email notifications are disabled", extra={"channel": "email"})
        email_sender = DisabledEmailSender(str(e))

    try:
        sms_sender = build_sms_sender(settings)
    except ChannelConfigurationError as e:
        logger.critical(f"{e} - SMS notifications are disabled", extra={"channel": "sms"})
        sms_sender = DisabledSmsSender(str(e))

    logger.info(
        f"Notification senders ready: email={type(email_sender).__name__} "
        f"(dry_run={settings.email_dry_run}), sms={type(sms_sender).__name__} "
        f"(dry_run={settings.sms_dry_run})"
    )
    return email_sender, sms_sender
