"""
Tests for the Resend and ClickSend senders and the provider factory.

HTTP is served by httpx.MockTransport; no request leaves the process.
"""

import json

import httpx
import pytest

from notifications.providers import (
    ChannelConfigurationError,
    ClickSendSmsSender,
    DisabledEmailSender,
    DisabledSmsSender,
    ResendEmailSender,
    build_email_sender,
    build_senders,
    build_sms_sender,
)
from notifications.providers.clicksend_sms import normalize_phone
from shared.config import Settings


def recording_transport(response: httpx.Response | None = None, raises: Exception | None = None):
    requests: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        if raises is not None:
            raise raises
        return response

    return httpx.MockTransport(handler), requests


def make_settings(**overrides) -> Settings:
    values = {
        "EMAIL_DRY_RUN": False,
        "SMS_DRY_RUN": False,
        "RESEND_API_KEY": "re_test",
        "RESEND_FROM": "HairPlay <noreply@hairplay.ch>",
        "CLICKSEND_USERNAME": "salon",
        "CLICKSEND_API_KEY": "ck_test",
        "CLICKSEND_SMS_FROM": "HairPlay",
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


class TestNormalizePhone:
    @pytest.mark.parametrize(
        "raw, expected",
        [
            ("079 123 45 67", "+41791234567"),
            ("+41 79 123 45 67", "+41791234567"),
            ("0041791234567", "+41791234567"),
            ("+33 6 12 34 56 78", "+33612345678"),
        ],
    )
    def test_valid_numbers(self, raw, expected):
        assert normalize_phone(raw, "CH") == expected

    @pytest.mark.parametrize("raw", ["", "invalid", "123", "+41 00"])
    def test_invalid_numbers(self, raw):
        assert normalize_phone(raw, "CH") is None

    def test_region_applies_to_national_numbers(self):
        assert normalize_phone("06 12 34 56 78", "FR") == "+33612345678"


class TestResendEmailSender:
    def test_payload_carries_tags(self):
        sender = ResendEmailSender(api_key="k", from_address="Salon <a@b.ch>")

        payload = sender.build_payload("c@d.ch", "Hi", "<p>Hi</p>", "Hi", {"appointmentId": "abc"})

        assert payload == {
            "from": "Salon <a@b.ch>",
            "to": ["c@d.ch"],
            "subject": "Hi",
            "html": "<p>Hi</p>",
            "text": "Hi",
            "tags": [{"name": "appointmentId", "value": "abc"}],
        }

    @pytest.mark.asyncio
    async def test_send_success(self):
        transport, requests = recording_transport(httpx.Response(200, json={"id": "re_123"}))
        sender = ResendEmailSender(api_key="re_key", from_address="a@b.ch", transport=transport)

        result = await sender.send("c@d.ch", "Hi", "<p>Hi</p>", metadata={"appointmentId": "abc"})

        assert result.success is True
        assert result.provider_message_id == "re_123"
        request = requests[0]
        assert request.url == "https://api.resend.com/emails"
        assert request.headers["Authorization"] == "Bearer re_key"
        assert json.loads(request.content)["tags"] == [{"name": "appointmentId", "value": "abc"}]

    @pytest.mark.asyncio
    async def test_send_rejected(self):
        transport, _ = recording_transport(
            httpx.Response(422, json={"name": "validation_error", "message": "Invalid `to` field"})
        )
        sender = ResendEmailSender(api_key="re_key", from_address="a@b.ch", transport=transport)

        result = await sender.send("bad", "Hi", "<p>Hi</p>")

        assert result.success is False
        assert result.error == "RESEND_SEND_FAILED: HTTP 422: Invalid `to` field"
        assert result.metadata == {"status_code": 422}

    @pytest.mark.asyncio
    async def test_send_non_json_error(self):
        transport, _ = recording_transport(httpx.Response(502, text="Bad Gateway"))
        sender = ResendEmailSender(api_key="re_key", from_address="a@b.ch", transport=transport)

        result = await sender.send("c@d.ch", "Hi", "<p>Hi</p>")

        assert result.success is False
        assert "HTTP 502: Bad Gateway" in result.error

    @pytest.mark.asyncio
    async def test_read_timeout_is_not_retried(self):
        transport, requests = recording_transport(raises=httpx.ReadTimeout("slow"))
        sender = ResendEmailSender(api_key="re_key", from_address="a@b.ch", transport=transport)

        result = await sender.send("c@d.ch", "Hi", "<p>Hi</p>")

        assert result.success is False
        assert result.error.startswith("RESEND_SEND_FAILED: ReadTimeout")
        assert len(requests) == 1

    @pytest.mark.asyncio
    async def test_connect_error_is_retried(self):
        transport, requests = recording_transport(raises=httpx.ConnectError("refused"))
        sender = ResendEmailSender(api_key="re_key", from_address="a@b.ch", transport=transport)

        result = await sender.send("c@d.ch", "Hi", "<p>Hi</p>")

        assert result.success is False
        assert len(requests) == 3

    @pytest.mark.asyncio
    async def test_dry_run_never_calls_api(self):
        transport, requests = recording_transport(httpx.Response(500))
        sender = ResendEmailSender(api_key="", from_address="a@b.ch", dry_run=True, transport=transport)

        result = await sender.send("c@d.ch", "Hi", "<p>Hi</p>")

        assert result.success is True
        assert result.metadata["dry_run"] is True
        assert requests == []


class TestClickSendSmsSender:
    @pytest.mark.asyncio
    async def test_send_success(self):
        transport, requests = recording_transport(
            httpx.Response(
                200,
                json={
                    "http_code": 200,
                    "response_code": "SUCCESS",
                    "data": {"messages": [{"status": "SUCCESS", "message_id": "msg-1"}]},
                },
            )
        )
        sender = ClickSendSmsSender("salon", "ck_key", "HairPlay", dry_run=False, transport=transport)

        result = await sender.send("079 123 45 67", "Bonjour")

        assert result.success is True
        assert result.provider_message_id == "msg-1"
        request = requests[0]
        assert request.url == "https://rest.clicksend.com/v3/sms/send"
        assert request.headers["Authorization"].startswith("Basic ")
        assert json.loads(request.content) == {
            "messages": [{"source": "sdk", "from": "HairPlay", "body": "Bonjour", "to": "+41791234567"}]
        }

    @pytest.mark.asyncio
    async def test_invalid_number_fails_without_request(self):
        transport, requests = recording_transport(httpx.Response(200))
        sender = ClickSendSmsSender("salon", "ck_key", "HairPlay", dry_run=False, transport=transport)

        result = await sender.send("not a number", "Bonjour")

        assert result.success is False
        assert result.error == "Invalid phone number: not a number"
        assert requests == []

    @pytest.mark.asyncio
    async def test_account_level_rejection(self):
        transport, _ = recording_transport(
            httpx.Response(401, json={"response_code": "UNAUTHORIZED", "response_msg": "Invalid credentials"})
        )
        sender = ClickSendSmsSender("salon", "bad", "HairPlay", dry_run=False, transport=transport)

        result = await sender.send("+41791234567", "Bonjour")

        assert result.success is False
        assert result.error == "CLICKSEND_SEND_FAILED: Invalid credentials"
        assert result.metadata == {"status_code": 401}

    @pytest.mark.asyncio
    async def test_message_level_rejection(self):
        transport, _ = recording_transport(
            httpx.Response(
                200,
                json={
                    "response_code": "SUCCESS",
                    "data": {"messages": [{"status": "INSUFFICIENT_CREDIT"}]},
                },
            )
        )
        sender = ClickSendSmsSender("salon", "ck_key", "HairPlay", dry_run=False, transport=transport)

        result = await sender.send("+41791234567", "Bonjour")

        assert result.success is False
        assert result.error == "CLICKSEND_SEND_FAILED: INSUFFICIENT_CREDIT"

    @pytest.mark.asyncio
    async def test_dry_run_validates_but_does_not_send(self):
        transport, requests = recording_transport(httpx.Response(500))
        sender = ClickSendSmsSender("", "", "HairPlay", dry_run=True, transport=transport)

        result = await sender.send("0041 79 123 45 67", "Bonjour")

        assert result.success is True
        assert result.metadata == {"dry_run": True, "to": "+41791234567", "from": "HairPlay"}
        assert requests == []


class TestFactory:
    def test_builds_live_senders(self):
        settings = make_settings()

        email_sender = build_email_sender(settings)
        sms_sender = build_sms_sender(settings)

        assert isinstance(email_sender, ResendEmailSender)
        assert email_sender.dry_run is False
        assert isinstance(sms_sender, ClickSendSmsSender)
        assert sms_sender.sender_id == "HairPlay"

    def test_missing_resend_key_outside_dry_run(self):
        with pytest.raises(ChannelConfigurationError) as exc_info:
            build_email_sender(make_settings(RESEND_API_KEY=" "))

        assert exc_info.value.channel == "email"
        assert exc_info.value.missing == ["RESEND_API_KEY"]

    def test_dry_run_does_not_need_credentials(self):
        settings = make_settings(
            EMAIL_DRY_RUN=True,
            SMS_DRY_RUN=True,
            RESEND_API_KEY="",
            CLICKSEND_USERNAME="",
            CLICKSEND_API_KEY="",
        )

        assert build_email_sender(settings).dry_run is True
        assert build_sms_sender(settings).dry_run is True

    def test_missing_clicksend_credentials(self):
        with pytest.raises(ChannelConfigurationError) as exc_info:
            build_sms_sender(make_settings(CLICKSEND_USERNAME="", CLICKSEND_API_KEY=""))

        assert exc_info.value.missing == ["CLICKSEND_USERNAME", "CLICKSEND_API_KEY"]

    def test_broken_channel_is_disabled_independently(self):
        email_sender, sms_sender = build_senders(make_settings(CLICKSEND_API_KEY=""))

        assert isinstance(email_sender, ResendEmailSender)
        assert isinstance(sms_sender, DisabledSmsSender)

    @pytest.mark.asyncio
    async def test_disabled_senders_always_fail(self):
        email_result = await DisabledEmailSender("no key").send("a@b.ch", "s", "<p></p>")
        sms_result = await DisabledSmsSender("no key").send("+41791234567", "m")

        assert email_result.success is False
        assert email_result.error == "EMAIL_CHANNEL_DISABLED: no key"
        assert sms_result.success is False
        assert sms_result.error == "SMS_CHANNEL_DISABLED: no key"
