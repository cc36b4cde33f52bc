"""
ClickSend SMS sender.

Phone numbers are normalized to E.164 with phonenumbers before sending;
numbers without a country code are parsed in SMS_DEFAULT_REGION.
"""

import logging
from typing import Any

import httpx
import phonenumbers

from notifications.providers.retry import retry_on_connection_error
from notifications.types import SendResult

logger = logging.getLogger(__name__)


def normalize_phone(phone: str, region: str = "CH") -> str | None:
    """
    Normalize phone number to E.164 format.

    Args:
        phone: Phone number in any format
        region: Region used when the number has no country code

    Returns:
        E.164 formatted phone number (e.g., "+41791234567") or None if invalid

    Examples:
        "079 123 45 67" -> "+41791234567"
        "0041 79 123 45 67" -> "+41791234567"
        "invalid" -> None
    """
    if not phone:
        return None

    candidate = phone.strip()
    if candidate.startswith("00"):
        candidate = "+" + candidate[2:]

    try:
        parsed = phonenumbers.parse(candidate, region)
    except phonenumbers.NumberParseException as e:
        logger.warning(f"Failed to parse phone number '{phone}': {e}")
        return None

    if not phonenumbers.is_valid_number(parsed):
        logger.warning(f"Invalid phone number: {phone}")
        return None

    return phonenumbers.format_number(parsed, phonenumbers.PhoneNumberFormat.E164)


class ClickSendSmsSender:
    """
    SMS sender backed by the ClickSend REST API (basic auth).

    Args:
        username: ClickSend username
        api_key: ClickSend API key
        sender_id: Alphanumeric sender ID or E.164 number
        api_url: Base API URL
        default_region: Region for numbers without country code
        dry_run: Log the SMS instead of sending it
        timeout: Request timeout in seconds
        transport: Optional httpx transport (tests)
    """

    provider_name = "clicksend"

    def __init__(
        self,
        username: str,
        api_key: str,
        sender_id: str,
        api_url: str = "https://rest.clicksend.com/v3",
        default_region: str = "CH",
        dry_run: bool = True,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.username = username
        self.api_key = api_key
        self.sender_id = sender_id
        self.api_url = api_url.rstrip("/")
        self.default_region = default_region
        self.dry_run = dry_run
        self.timeout = timeout
        self._transport = transport

    @retry_on_connection_error
    async def _post(self, payload: dict[str, Any]) -> httpx.Response:
        async with httpx.AsyncClient(transport=self._transport, timeout=self.timeout) as client:
            return await client.post(
                f"{self.api_url}/sms/send",
                json=payload,
                auth=(self.username, self.api_key),
            )

    async def send(self, to: str, message: str) -> SendResult:
        """
        Send one SMS.

        Invalid numbers fail without calling the API. Transport errors and
        ClickSend rejections come back as SendResult(success=False).
        """
        normalized = normalize_phone(to, self.default_region)
        if normalized is None:
            return SendResult.failed(f"Invalid phone number: {to}")

        if self.dry_run:
            logger.info(
                f"[DRY RUN] SMS to {normalized} from {self.sender_id}: {message}",
                extra={"channel": "sms"},
            )
            return SendResult(
                success=True,
                metadata={"dry_run": True, "to": normalized, "from": self.sender_id},
            )

        payload = {
            "messages": [
                {
                    "source": "sdk",
                    "from": self.sender_id,
                    "body": message,
                    "to": normalized,
                }
            ]
        }

        try:
            response = await self._post(payload)
        except httpx.HTTPError as e:
            logger.error(f"ClickSend request failed for {normalized}: {e}", extra={"channel": "sms"})
            return SendResult.failed(f"CLICKSEND_SEND_FAILED: {e.__class__.__name__}: {e}")

        try:
            body = response.json()
        except ValueError:
            body = {}

        if not response.is_success or body.get("response_code") != "SUCCESS":
            detail = body.get("response_msg") or body.get("message") or f"HTTP {response.status_code}"
            logger.error(
                f"ClickSend rejected SMS to {normalized}: {detail}",
                extra={"channel": "sms"},
            )
            return SendResult.failed(
                f"CLICKSEND_SEND_FAILED: {detail}",
                status_code=response.status_code,
            )

        messages = (body.get("data") or {}).get("messages") or [{}]
        first = messages[0]
        status = first.get("status")
        if status and status != "SUCCESS":
            logger.error(
                f"ClickSend refused message to {normalized}: status={status}",
                extra={"channel": "sms"},
            )
            return SendResult.failed(f"CLICKSEND_SEND_FAILED: {status}", status=status)

        message_id = first.get("message_id")
        logger.info(
            f"SMS sent to {normalized} via ClickSend (id={message_id})",
            extra={"channel": "sms"},
        )
        return SendResult(
            success=True,
            provider_message_id=message_id,
            metadata={"to": normalized, "status": status},
        )
