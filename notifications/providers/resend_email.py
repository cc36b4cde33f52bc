"""
Resend email sender.

Sends through the Resend REST API. Metadata passed to send() is attached as
Resend tags, which Resend echoes back in its webhooks; this is how an
email.opened event finds its appointment again.
"""

import logging
from typing import Any

import httpx

from notifications.providers.retry import retry_on_connection_error
from notifications.types import SendResult

logger = logging.getLogger(__name__)


class ResendEmailSender:
    """
    Email sender backed by Resend.

    Args:
        api_key: Resend API key (may be empty in dry-run)
        from_address: Sender, e.g. "Salon <noreply@example.ch>"
        api_url: Base API URL
        dry_run: Log the email instead of sending it
        timeout: Request timeout in seconds
        transport: Optional httpx transport (tests)
    """

    provider_name = "resend"

    def __init__(
        self,
        api_key: str,
        from_address: str,
        api_url: str = "https://api.resend.com",
        dry_run: bool = False,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.api_key = api_key
        self.from_address = from_address
        self.api_url = api_url.rstrip("/")
        self.dry_run = dry_run
        self.timeout = timeout
        self._transport = transport

    def build_payload(
        self,
        to: str,
        subject: str,
        html: str,
        text: str | None = None,
        metadata: dict[str, str] | None = None,
    ) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "from": self.from_address,
            "to": [to],
            "subject": subject,
            "html": html,
        }
        if text:
            payload["text"] = text
        if metadata:
            payload["tags"] = [
                {"name": name, "value": str(value)} for name, value in metadata.items()
            ]
        return payload

    @retry_on_connection_error
    async def _post(self, payload: dict[str, Any]) -> httpx.Response:
        async with httpx.AsyncClient(transport=self._transport, timeout=self.timeout) as client:
            return await client.post(
                f"{self.api_url}/emails",
                json=payload,
                headers={
                    "Authorization": f"Bearer {self.api_key}",
                    "Content-Type": "application/json",
                },
            )

    async def send(
        self,
        to: str,
        subject: str,
        html: str,
        text: str | None = None,
        metadata: dict[str, str] | None = None,
    ) -> SendResult:
        """
        Send one email.

        Never raises for transport problems: HTTP errors and non-2xx
        responses come back as SendResult(success=False).
        """
        payload = self.build_payload(to, subject, html, text, metadata)

        if self.dry_run:
            logger.info(
                f"[DRY RUN] Email to {to}: subject='{subject}', "
                f"html={len(html)} chars, tags={payload.get('tags', [])}",
                extra={"channel": "email"},
            )
            return SendResult(success=True, metadata={"dry_run": True, "to": to})

        try:
            response = await self._post(payload)
        except httpx.HTTPError as e:
            logger.error(f"Resend request failed for {to}: {e}", extra={"channel": "email"})
            return SendResult.failed(f"RESEND_SEND_FAILED: {e.__class__.__name__}: {e}")

        if response.is_success:
            try:
                message_id = response.json().get("id")
            except ValueError:
                message_id = None
            logger.info(
                f"Email sent to {to} via Resend (id={message_id})",
                extra={"channel": "email"},
            )
            return SendResult(success=True, provider_message_id=message_id)

        try:
            body = response.json()
            detail = body.get("message") or body.get("name") or response.text
        except ValueError:
            detail = response.text

        logger.error(
            f"Resend rejected email to {to}: HTTP {response.status_code} {detail}",
            extra={"channel": "email"},
        )
        return SendResult.failed(
            f"RESEND_SEND_FAILED: HTTP {response.status_code}: {detail}",
            status_code=response.status_code,
        )
