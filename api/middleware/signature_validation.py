"""Middleware for webhook signature validation and job endpoint authentication."""

import base64
import binascii
import hashlib
import hmac
import json
import logging
import secrets
import time
from typing import Any, cast

from fastapi import HTTPException, Request

from shared.config import get_settings

logger = logging.getLogger(__name__)

# Svix rejects deliveries older (or newer) than this
SIGNATURE_TOLERANCE_SECONDS = 300


def _decode_secret(secret: str) -> bytes | None:
    """Svix secrets are "whsec_" + base64; anything else is used as raw bytes."""
    if not secret.startswith("whsec_"):
        return secret.encode("utf-8")

    encoded = secret[len("whsec_"):]
    padded = encoded + "=" * (-len(encoded) % 4)
    try:
        return base64.b64decode(padded, validate=True)
    except (binascii.Error, ValueError):
        logger.warning("Invalid Resend webhook secret: malformed whsec_ encoding")
        return None


def compute_svix_signature(secret: str, msg_id: str, timestamp: str, body: bytes) -> str:
    """Return the base64 HMAC-SHA256 of "{id}.{timestamp}.{body}"."""
    key = _decode_secret(secret) or b""
    signed = f"{msg_id}.{timestamp}.".encode() + body
    return base64.b64encode(hmac.new(key, signed, hashlib.sha256).digest()).decode()


def verify_svix_signature(
    body: bytes,
    headers: dict[str, str],
    secret: str,
    now: int | None = None,
) -> bool:
    """
    Verify a Svix-signed webhook (the scheme Resend uses).

    Args:
        body: Raw request body
        headers: Request headers (svix-id, svix-timestamp, svix-signature)
        secret: Signing secret ("whsec_...")
        now: Current unix time (defaults to time.time())

    Returns:
        True if one of the v1 signatures matches and the timestamp is fresh
    """
    msg_id = headers.get("svix-id", "")
    timestamp = headers.get("svix-timestamp", "")
    signature_header = headers.get("svix-signature", "")

    if not msg_id or not timestamp or not signature_header:
        return False

    try:
        sent_at = int(timestamp)
    except ValueError:
        return False

    current = int(time.time()) if now is None else now
    if abs(current - sent_at) > SIGNATURE_TOLERANCE_SECONDS:
        logger.warning(f"Resend webhook timestamp outside tolerance: {timestamp}")
        return False

    if _decode_secret(secret) is None:
        return False

    expected = compute_svix_signature(secret, msg_id, timestamp, body)

    # Header format: "v1,<sig> v1,<sig2>" (several during secret rotation)
    for entry in signature_header.split():
        version, _, signature = entry.partition(",")
        if version == "v1" and hmac.compare_digest(signature, expected):
            return True
    return False


async def validate_resend_signature(request: Request) -> dict[str, Any]:
    """
    Validate Resend webhook signature (when a secret is configured) and parse the body.

    Args:
        request: FastAPI request object

    Returns:
        Parsed JSON payload

    Raises:
        HTTPException: 401 if signature verification fails, 400 if the body is not JSON
    """
    settings = get_settings()
    body = await request.body()

    if settings.RESEND_WEBHOOK_SECRET:
        headers = {key.lower(): value for key, value in request.headers.items()}
        if not verify_svix_signature(body, headers, settings.RESEND_WEBHOOK_SECRET):
            logger.warning("Resend webhook signature verification failed")
            raise HTTPException(status_code=401, detail="Invalid webhook signature")

    try:
        payload = json.loads(body)
    except ValueError as e:
        logger.warning(f"Resend webhook body is not valid JSON: {e}")
        raise HTTPException(status_code=400, detail="Invalid JSON payload") from e

    if not isinstance(payload, dict):
        raise HTTPException(status_code=400, detail="Invalid JSON payload")

    return cast(dict[str, Any], payload)


async def require_cron_secret(request: Request) -> None:
    """
    Check `Authorization: Bearer <CRON_SECRET>` on job trigger endpoints.

    Open when CRON_SECRET is empty (local development).

    Raises:
        HTTPException: 401 if the token is missing or wrong
    """
    expected = get_settings().CRON_SECRET
    if not expected:
        return

    authorization = request.headers.get("Authorization", "")
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not secrets.compare_digest(token.strip(), expected):
        logger.warning(
            f"Unauthorized job trigger on {request.url.path}",
            extra={"request_path": request.url.path},
        )
        raise HTTPException(status_code=401, detail="Unauthorized")
