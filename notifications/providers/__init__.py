"""Concrete email/SMS senders and the factory that picks them from settings."""

from notifications.providers.clicksend_sms import ClickSendSmsSender
from notifications.providers.factory import (
    ChannelConfigurationError,
    DisabledEmailSender,
    DisabledSmsSender,
    build_email_sender,
    build_senders,
    build_sms_sender,
)
from notifications.providers.resend_email import ResendEmailSender

__all__ = [
    "ChannelConfigurationError",
    "ClickSendSmsSender",
    "DisabledEmailSender",
    "DisabledSmsSender",
    "ResendEmailSender",
    "build_email_sender",
    "build_senders",
    "build_sms_sender",
]
