"""
Tests for the periodic SMS jobs.

Coverage:
- Deferred confirmation window [now-6h, now-3h] and its filters
- Reminder window [now+24h, now+24h15m) and its filters
- Idempotent ticks, failure release, per-appointment error isolation
- JobReport counters
"""

import asyncio
from datetime import timedelta
from unittest.mock import AsyncMock

import pytest

from database.models import SmsConfirmationType
from notifications.jobs import (
    FAILED,
    SENT,
    SKIPPED,
    DeferredConfirmationSmsJob,
    JobReport,
    ReminderSmsJob,
    _SmsJob,
)
from tests.fakes import T0, RecordingSmsSender


def add_long_notice(store, email_sent_at, **fields):
    """Appointment booked at email_sent_at, 48h ahead, confirmation email sent."""
    return store.add(
        appointment_time=email_sent_at + timedelta(hours=48),
        created_at=email_sent_at,
        email_sent_at=email_sent_at,
        **fields,
    )


class TestDeferredConfirmationWindow:
    def test_window_bounds(self, deferred_job, clock):
        assert deferred_job.window(clock.now()) == (T0 - timedelta(hours=6), T0 - timedelta(hours=3))

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "sent_hours_ago, expected_sent",
        [
            (2.99, False),
            (3, True),
            (4.5, True),
            (6, True),
            (6.01, False),
        ],
    )
    async def test_window_is_inclusive(self, store, deferred_job, sms_sender, sent_hours_ago, expected_sent):
        record = add_long_notice(store, T0 - timedelta(hours=sent_hours_ago))

        await deferred_job.run()

        assert record.sms_confirmation_sent is expected_sent
        assert len(sms_sender.sent) == (1 if expected_sent else 0)


class TestDeferredConfirmationJob:
    @pytest.mark.asyncio
    async def test_sends_deferred_sms(self, store, deferred_job, sms_sender):
        record = add_long_notice(store, T0 - timedelta(hours=3))

        report = await deferred_job.run()

        assert report.matched == 1
        assert report.sent == 1
        assert report.outcomes == {str(record.id): SENT}
        assert record.sms_confirmation_sent is True
        assert record.sms_confirmation_type == SmsConfirmationType.DEFERRED_UNOPENED
        assert record.skip_reminder_sms is False
        assert sms_sender.sent[0].message.startswith("Bonjour Colette,")
        assert "est confirme le" in sms_sender.sent[0].message

    @pytest.mark.asyncio
    async def test_skips_opened_email(self, store, deferred_job, sms_sender):
        add_long_notice(store, T0 - timedelta(hours=4), email_opened_at=T0 - timedelta(hours=3, minutes=30))

        report = await deferred_job.run()

        assert report.matched == 0
        assert sms_sender.attempts == 0

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", ["cancelled", "completed", "no_show"])
    async def test_skips_inactive_status(self, store, deferred_job, sms_sender, status):
        add_long_notice(store, T0 - timedelta(hours=4), status=status)

        report = await deferred_job.run()

        assert report.matched == 0
        assert sms_sender.attempts == 0

    @pytest.mark.asyncio
    async def test_short_lead_time_skipped(self, store, deferred_job, sms_sender):
        record = store.add(
            appointment_time=T0 + timedelta(hours=10),
            created_at=T0 - timedelta(hours=4),
            email_sent_at=T0 - timedelta(hours=4),
        )

        report = await deferred_job.run()

        assert report.outcomes == {str(record.id): SKIPPED}
        assert record.sms_confirmation_sent is False
        assert sms_sender.attempts == 0

    @pytest.mark.asyncio
    async def test_open_landing_after_select_wins(self, store, deferred_job, sms_sender, contexts):
        record = add_long_notice(store, T0 - timedelta(hours=4))
        original_build = contexts.build

        async def build_then_open(appointment_id):
            # Webhook lands between select and claim
            record.email_opened_at = T0
            return await original_build(appointment_id)

        contexts.build = build_then_open

        report = await deferred_job.run()

        assert report.matched == 1
        assert report.skipped == 1
        assert record.sms_confirmation_sent is False
        assert sms_sender.attempts == 0

    @pytest.mark.asyncio
    async def test_second_tick_is_noop(self, store, deferred_job, sms_sender):
        add_long_notice(store, T0 - timedelta(hours=5))

        first = await deferred_job.run()
        second = await deferred_job.run()

        assert first.sent == 1
        assert second.matched == 0
        assert len(sms_sender.sent) == 1

    @pytest.mark.asyncio
    async def test_failed_send_is_retried_next_tick(self, store, contexts, clock):
        failing = RecordingSmsSender(error="CLICKSEND_SEND_FAILED: 503")
        record = add_long_notice(store, T0 - timedelta(hours=3))

        report = await DeferredConfirmationSmsJob(store, contexts, failing, clock=clock).run()

        assert report.failed == 1
        assert record.sms_confirmation_sent is False

        working = RecordingSmsSender()
        clock.advance(timedelta(hours=1))
        report = await DeferredConfirmationSmsJob(store, contexts, working, clock=clock).run()

        assert report.sent == 1
        assert record.sms_confirmation_sent is True

    @pytest.mark.asyncio
    async def test_missing_phone_skipped(self, store, deferred_job, sms_sender):
        record = add_long_notice(store, T0 - timedelta(hours=4), client_phone=None)

        report = await deferred_job.run()

        assert report.outcomes == {str(record.id): SKIPPED}
        assert record.sms_confirmation_sent is False


class TestReminderJob:
    def test_window_bounds(self, reminder_job, clock):
        start, end = reminder_job.window(clock.now())

        assert start == T0 + timedelta(hours=24)
        assert end == T0 + timedelta(hours=24, minutes=15)

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "offset, expected_sent",
        [
            (timedelta(hours=23, minutes=59), False),
            (timedelta(hours=24), True),
            (timedelta(hours=24, minutes=14, seconds=59), True),
            (timedelta(hours=24, minutes=15), False),
        ],
    )
    async def test_window_is_half_open(self, store, reminder_job, sms_sender, offset, expected_sent):
        record = store.add(appointment_time=T0 + offset, created_at=T0 - timedelta(days=3))

        await reminder_job.run()

        assert record.sms_reminder_sent is expected_sent

    @pytest.mark.asyncio
    async def test_sends_reminder(self, store, reminder_job, sms_sender):
        record = store.add(appointment_time=T0 + timedelta(hours=24, minutes=5), created_at=T0 - timedelta(days=3))

        report = await reminder_job.run()

        assert report.sent == 1
        assert record.sms_reminder_sent is True
        assert sms_sender.sent[0].message.startswith("Rappel de RDV: Bonjour Colette")

    @pytest.mark.asyncio
    async def test_skips_immediate_confirmation(self, store, reminder_job, sms_sender):
        store.add(
            appointment_time=T0 + timedelta(hours=24, minutes=5),
            created_at=T0 + timedelta(hours=10),
            sms_confirmation_sent=True,
            sms_confirmation_type=SmsConfirmationType.IMMEDIATE_LT24H,
            skip_reminder_sms=True,
        )

        report = await reminder_job.run()

        assert report.matched == 0
        assert sms_sender.attempts == 0

    @pytest.mark.asyncio
    async def test_deferred_confirmation_still_gets_reminder(self, store, reminder_job, sms_sender):
        record = store.add(
            appointment_time=T0 + timedelta(hours=24),
            created_at=T0 - timedelta(hours=24),
            sms_confirmation_sent=True,
            sms_confirmation_type=SmsConfirmationType.DEFERRED_UNOPENED,
        )

        report = await reminder_job.run()

        assert report.sent == 1
        assert record.sms_reminder_sent is True

    @pytest.mark.asyncio
    async def test_cancelled_appointment_skipped(self, store, reminder_job, sms_sender):
        store.add(appointment_time=T0 + timedelta(hours=24), created_at=T0 - timedelta(days=3), status="cancelled")

        report = await reminder_job.run()

        assert report.matched == 0

    @pytest.mark.asyncio
    async def test_overlapping_ticks_send_once(self, store, contexts, clock):
        sms_sender = RecordingSmsSender(yield_control=True)
        store.add(appointment_time=T0 + timedelta(hours=24, minutes=1), created_at=T0 - timedelta(days=3))
        job_a = ReminderSmsJob(store, contexts, sms_sender, clock=clock)
        job_b = ReminderSmsJob(store, contexts, sms_sender, clock=clock)

        reports = await asyncio.gather(job_a.run(), job_b.run())

        assert len(sms_sender.sent) == 1
        assert sorted(r.sent for r in reports) == [0, 1]
        assert sorted(r.skipped for r in reports) == [0, 1]

    @pytest.mark.asyncio
    async def test_failed_reminder_released(self, store, contexts, clock):
        sms_sender = RecordingSmsSender(error="boom")
        record = store.add(appointment_time=T0 + timedelta(hours=24), created_at=T0 - timedelta(days=3))

        report = await ReminderSmsJob(store, contexts, sms_sender, clock=clock).run()

        assert report.failed == 1
        assert record.sms_reminder_sent is False


class TestJobIsolation:
    @pytest.mark.asyncio
    async def test_one_failure_does_not_stop_batch(self, store, contexts, sms_sender, clock):
        ok_a = store.add(appointment_time=T0 + timedelta(hours=24, minutes=1), created_at=T0 - timedelta(days=3))
        broken = store.add(appointment_time=T0 + timedelta(hours=24, minutes=2), created_at=T0 - timedelta(days=3))
        ok_b = store.add(appointment_time=T0 + timedelta(hours=24, minutes=3), created_at=T0 - timedelta(days=3))
        original_build = contexts.build

        async def build(appointment_id):
            if appointment_id == broken.id:
                raise RuntimeError("corrupt row")
            return await original_build(appointment_id)

        contexts.build = build
        job = ReminderSmsJob(store, contexts, sms_sender, clock=clock, concurrency=2)

        report = await job.run()

        assert report.matched == 3
        assert report.sent == 2
        assert report.failed == 1
        assert report.outcomes[str(broken.id)] == FAILED
        assert ok_a.sms_reminder_sent and ok_b.sms_reminder_sent

    @pytest.mark.asyncio
    async def test_select_error_propagates(self, store, deferred_job):
        store.fail_next["find_deferred_confirmation_candidates"] = ConnectionError("db down")

        with pytest.raises(ConnectionError):
            await deferred_job.run()

    @pytest.mark.asyncio
    async def test_concurrency_floor(self, store, contexts, sms_sender, clock):
        job = ReminderSmsJob(store, contexts, sms_sender, clock=clock, concurrency=0)

        assert job.concurrency == 1

    def test_job_without_process_cannot_be_built(self, store, contexts, sms_sender, clock):
        class WindowOnlyJob(_SmsJob):
            def window(self, now):
                return now, now

            async def select(self, window_start, window_end):
                return []

        with pytest.raises(TypeError):
            WindowOnlyJob(store, contexts, sms_sender, clock=clock)


class TestJobReport:
    @pytest.mark.asyncio
    async def test_to_dict(self, store, reminder_job):
        report = await reminder_job.run()

        data = report.to_dict()

        assert data["job_name"] == "reminder_sms"
        assert data["matched"] == 0
        assert data["window_start"] == (T0 + timedelta(hours=24)).isoformat()
        assert "outcomes" not in data

    def test_defaults(self):
        report = JobReport(job_name="x", started_at=T0, window_start=T0, window_end=T0)

        assert (report.matched, report.sent, report.skipped, report.failed) == (0, 0, 0, 0)

    @pytest.mark.asyncio
    async def test_context_loader_exception_counts_as_failed(self, store, contexts, sms_sender, clock):
        store.add(appointment_time=T0 + timedelta(hours=24), created_at=T0 - timedelta(days=3))
        contexts.build = AsyncMock(side_effect=RuntimeError("boom"))

        report = await ReminderSmsJob(store, contexts, sms_sender, clock=clock).run()

        assert report.failed == 1
