"""
Tests for webhook signature validation and the job endpoint bearer check.
"""

import base64
import json
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from fastapi import HTTPException

from api.middleware.signature_validation import (
    SIGNATURE_TOLERANCE_SECONDS,
    compute_svix_signature,
    require_cron_secret,
    validate_resend_signature,
    verify_svix_signature,
)

SECRET = "whsec_" + base64.b64encode(b"super-secret-signing-key").decode()
BODY = json.dumps({"type": "email.opened", "data": {"email_id": "re_1"}}).encode()
NOW = 1_764_576_000


def signed_headers(body: bytes = BODY, timestamp: int = NOW, secret: str = SECRET, msg_id: str = "msg_1"):
    signature = compute_svix_signature(secret, msg_id, str(timestamp), body)
    return {
        "svix-id": msg_id,
        "svix-timestamp": str(timestamp),
        "svix-signature": f"v1,{signature}",
    }


def make_request(body: bytes = BODY, headers: dict[str, str] | None = None, path: str = "/webhook/resend"):
    request = MagicMock()
    request.body = AsyncMock(return_value=body)
    request.headers = headers or {}
    request.url.path = path
    return request


class TestVerifySvixSignature:
    def test_valid_signature(self):
        assert verify_svix_signature(BODY, signed_headers(), SECRET, now=NOW) is True

    def test_tampered_body(self):
        headers = signed_headers()

        assert verify_svix_signature(BODY + b" ", headers, SECRET, now=NOW) is False

    def test_wrong_secret(self):
        other = "whsec_" + base64.b64encode(b"another-key").decode()

        assert verify_svix_signature(BODY, signed_headers(secret=other), SECRET, now=NOW) is False

    def test_stale_timestamp(self):
        headers = signed_headers(timestamp=NOW - SIGNATURE_TOLERANCE_SECONDS - 1)

        assert verify_svix_signature(BODY, headers, SECRET, now=NOW) is False

    def test_timestamp_at_tolerance_edge(self):
        headers = signed_headers(timestamp=NOW - SIGNATURE_TOLERANCE_SECONDS)

        assert verify_svix_signature(BODY, headers, SECRET, now=NOW) is True

    def test_rotated_secret_second_signature_matches(self):
        headers = signed_headers()
        headers["svix-signature"] = "v1,bm90LXRoZS1yaWdodC1vbmU= " + headers["svix-signature"]

        assert verify_svix_signature(BODY, headers, SECRET, now=NOW) is True

    @pytest.mark.parametrize("missing", ["svix-id", "svix-timestamp", "svix-signature"])
    def test_missing_header(self, missing):
        headers = signed_headers()
        del headers[missing]

        assert verify_svix_signature(BODY, headers, SECRET, now=NOW) is False

    def test_non_numeric_timestamp(self):
        headers = signed_headers()
        headers["svix-timestamp"] = "yesterday"

        assert verify_svix_signature(BODY, headers, SECRET, now=NOW) is False

    def test_malformed_secret(self):
        assert verify_svix_signature(BODY, signed_headers(), "whsec_!!!", now=NOW) is False


class TestValidateResendSignature:
    @pytest.mark.asyncio
    async def test_no_secret_configured_skips_check(self):
        with patch("api.middleware.signature_validation.get_settings") as mock_settings:
            mock_settings.return_value.RESEND_WEBHOOK_SECRET = ""

            payload = await validate_resend_signature(make_request())

        assert payload["type"] == "email.opened"

    @pytest.mark.asyncio
    async def test_valid_signature_accepted(self):
        with (
            patch("api.middleware.signature_validation.get_settings") as mock_settings,
            patch("api.middleware.signature_validation.time.time", return_value=NOW),
        ):
            mock_settings.return_value.RESEND_WEBHOOK_SECRET = SECRET

            payload = await validate_resend_signature(make_request(headers=signed_headers()))

        assert payload["data"]["email_id"] == "re_1"

    @pytest.mark.asyncio
    async def test_invalid_signature_rejected(self):
        with patch("api.middleware.signature_validation.get_settings") as mock_settings:
            mock_settings.return_value.RESEND_WEBHOOK_SECRET = SECRET

            with pytest.raises(HTTPException) as exc_info:
                await validate_resend_signature(make_request(headers={"svix-id": "x"}))

        assert exc_info.value.status_code == 401

    @pytest.mark.asyncio
    @pytest.mark.parametrize("body", [b"not json", b"[1, 2]"])
    async def test_non_object_body_rejected(self, body):
        with patch("api.middleware.signature_validation.get_settings") as mock_settings:
            mock_settings.return_value.RESEND_WEBHOOK_SECRET = ""

            with pytest.raises(HTTPException) as exc_info:
                await validate_resend_signature(make_request(body=body))

        assert exc_info.value.status_code == 400


class TestRequireCronSecret:
    @pytest.mark.asyncio
    async def test_open_without_secret(self):
        with patch("api.middleware.signature_validation.get_settings") as mock_settings:
            mock_settings.return_value.CRON_SECRET = ""

            assert await require_cron_secret(make_request()) is None

    @pytest.mark.asyncio
    async def test_valid_bearer(self):
        with patch("api.middleware.signature_validation.get_settings") as mock_settings:
            mock_settings.return_value.CRON_SECRET = "tick-token"

            await require_cron_secret(make_request(headers={"Authorization": "Bearer tick-token"}))

    @pytest.mark.asyncio
    @pytest.mark.parametrize("authorization", ["", "Bearer wrong", "Basic tick-token"])
    async def test_rejected(self, authorization):
        with patch("api.middleware.signature_validation.get_settings") as mock_settings:
            mock_settings.return_value.CRON_SECRET = "tick-token"

            with pytest.raises(HTTPException) as exc_info:
                await require_cron_secret(make_request(headers={"Authorization": authorization}))

        assert exc_info.value.status_code == 401
