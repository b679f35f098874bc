"""Unit tests for NotificationDispatcher."""

from __future__ import annotations

import threading
from datetime import datetime, timezone

import pytest

from sentinel.core.exceptions import StoreError
from sentinel.engine.dispatcher import NotificationDispatcher
from sentinel.models.notification import Contact, NotificationPayload, NotificationStatus
from tests.fakes import (
    TENANT,
    FixedClock,
    MemoryDirectory,
    MemoryNotificationLog,
    MockChannel,
    seed_org,
)

PAYLOAD = NotificationPayload(title="Escalation - Manager", body="Please review")


# ---------- fixtures ----------

@pytest.fixture
def log():
    return MemoryNotificationLog()


@pytest.fixture
def directory():
    d = MemoryDirectory()
    seed_org(d)
    return d


@pytest.fixture
def telegram():
    return MockChannel("telegram")


@pytest.fixture
def whatsapp():
    return MockChannel("whatsapp")


@pytest.fixture
def clock():
    return FixedClock()


@pytest.fixture
def dispatcher(log, directory, telegram, whatsapp, clock):
    return NotificationDispatcher(
        log, {"telegram": telegram, "whatsapp": whatsapp}, directory, clock=clock,
    )


# ---------- dedup ----------

class TestDedup:
    @pytest.mark.asyncio
    async def test_same_key_sends_once(self, dispatcher, log, telegram):
        first = await dispatcher.dispatch_to(TENANT, "escalation:x", "sup", ["telegram"], PAYLOAD)
        second = await dispatcher.dispatch_to(TENANT, "escalation:x", "sup", ["telegram"], PAYLOAD)

        assert first["telegram"].status == NotificationStatus.SENT
        assert second["telegram"].status == NotificationStatus.SKIPPED
        assert second["telegram"].error == "duplicate"
        assert telegram.attempts == 1
        assert len(log.entries()) == 1

    @pytest.mark.asyncio
    async def test_one_entry_per_day_across_channels(self, dispatcher, log, telegram, whatsapp):
        first = await dispatcher.dispatch_to(TENANT, "s", "sup", ["telegram", "whatsapp"], PAYLOAD)
        second = await dispatcher.dispatch_to(TENANT, "s", "sup", ["telegram", "whatsapp"], PAYLOAD)

        assert {o.status for o in first.values()} == {NotificationStatus.SENT}
        assert {o.error for o in second.values()} == {"duplicate"}
        assert (telegram.attempts, whatsapp.attempts) == (1, 1)
        [entry] = log.entries()
        assert entry.channel == "telegram,whatsapp"
        assert set(entry.outcomes) == {"telegram", "whatsapp"}
        assert entry.status == NotificationStatus.SENT

    @pytest.mark.asyncio
    async def test_other_channel_later_same_day_is_a_duplicate(self, dispatcher, log, telegram, whatsapp):
        await dispatcher.dispatch_to(TENANT, "s", "sup", ["telegram"], PAYLOAD)
        outcomes = await dispatcher.dispatch_to(TENANT, "s", "sup", ["whatsapp"], PAYLOAD)

        assert outcomes["whatsapp"].error == "duplicate"
        assert whatsapp.attempts == 0
        assert len(log.entries()) == 1

    @pytest.mark.asyncio
    async def test_next_day_sends_again(self, dispatcher, telegram, clock):
        await dispatcher.dispatch_to(TENANT, "escalation:x", "sup", ["telegram"], PAYLOAD)
        clock.now = datetime(2025, 3, 11, 9, 0, tzinfo=timezone.utc)
        await dispatcher.dispatch_to(TENANT, "escalation:x", "sup", ["telegram"], PAYLOAD)
        assert telegram.attempts == 2

    @pytest.mark.asyncio
    async def test_failed_attempt_is_not_retried_same_day(self, log, directory):
        flaky = MockChannel("telegram", fail_with="chat not found")
        dispatcher = NotificationDispatcher(log, {"telegram": flaky}, directory, clock=FixedClock())

        first = await dispatcher.dispatch_to(TENANT, "s", "sup", ["telegram"], PAYLOAD)
        await dispatcher.dispatch_to(TENANT, "s", "sup", ["telegram"], PAYLOAD)

        assert first["telegram"].status == NotificationStatus.FAILED
        assert flaky.attempts == 1
        entry = log.get_entry("s", "sup", "2025-03-10")
        assert entry.status == NotificationStatus.FAILED
        assert entry.error == "telegram: chat not found"

    @pytest.mark.asyncio
    async def test_duplicate_channels_collapse(self, dispatcher, telegram):
        outcomes = await dispatcher.dispatch_to(
            TENANT, "s", "sup", ["telegram", "telegram"], PAYLOAD,
        )
        assert list(outcomes) == ["telegram"]
        assert telegram.attempts == 1


# ---------- isolation ----------

class TestIsolation:
    @pytest.mark.asyncio
    async def test_one_channel_raising_does_not_affect_other(self, log, directory, whatsapp):
        broken = MockChannel("telegram", raise_error=True)
        dispatcher = NotificationDispatcher(
            log, {"telegram": broken, "whatsapp": whatsapp}, directory, clock=FixedClock(),
        )

        outcomes = await dispatcher.dispatch_to(TENANT, "s", "sup", ["telegram", "whatsapp"], PAYLOAD)

        assert outcomes["telegram"].status == NotificationStatus.FAILED
        assert "simulated transport failure" in outcomes["telegram"].error
        assert outcomes["whatsapp"].status == NotificationStatus.SENT
        assert whatsapp.sent[0][0] == "0501234567"

    @pytest.mark.asyncio
    async def test_mixed_results_are_recorded_on_one_entry(self, log, directory, whatsapp):
        broken = MockChannel("telegram", raise_error=True)
        dispatcher = NotificationDispatcher(
            log, {"telegram": broken, "whatsapp": whatsapp}, directory, clock=FixedClock(),
        )

        await dispatcher.dispatch_to(TENANT, "s", "sup", ["telegram", "whatsapp"], PAYLOAD)

        entry = log.get_entry("s", "sup", "2025-03-10")
        assert entry.status == NotificationStatus.SENT
        assert entry.outcomes["telegram"].status == NotificationStatus.FAILED
        assert entry.outcomes["whatsapp"].status == NotificationStatus.SENT
        assert entry.error.startswith("telegram: ")

    @pytest.mark.asyncio
    async def test_claim_store_error_fails_without_sending(self, directory, telegram, whatsapp):
        class BrokenLog(MemoryNotificationLog):
            def claim(self, entry):
                raise StoreError("throttled")

        dispatcher = NotificationDispatcher(
            BrokenLog(), {"telegram": telegram, "whatsapp": whatsapp}, directory, clock=FixedClock(),
        )
        outcomes = await dispatcher.dispatch_to(TENANT, "s", "sup", ["telegram", "whatsapp", "email"], PAYLOAD)

        assert outcomes["telegram"].status == NotificationStatus.FAILED
        assert outcomes["whatsapp"].error == "throttled"
        assert outcomes["email"].error == "channel disabled"
        assert (telegram.attempts, whatsapp.attempts) == (0, 0)

    @pytest.mark.asyncio
    async def test_outcome_write_failure_keeps_send_result(self, directory, telegram):
        class NoOutcomeLog(MemoryNotificationLog):
            def record_outcome(self, entry):
                raise StoreError("down")

        dispatcher = NotificationDispatcher(NoOutcomeLog(), {"telegram": telegram}, directory, clock=FixedClock())
        outcomes = await dispatcher.dispatch_to(TENANT, "s", "sup", ["telegram"], PAYLOAD)
        assert outcomes["telegram"].status == NotificationStatus.SENT


# ---------- skipped ----------

class TestSkipped:
    @pytest.mark.asyncio
    async def test_unconfigured_channel(self, dispatcher):
        outcomes = await dispatcher.dispatch_to(TENANT, "s", "sup", ["email"], PAYLOAD)
        assert outcomes["email"].status == NotificationStatus.SKIPPED
        assert outcomes["email"].error == "channel disabled"

    @pytest.mark.asyncio
    async def test_opted_out_contact(self, dispatcher, directory, whatsapp):
        directory.put_contact(Contact(
            id="quiet", tenant_id=TENANT, phone="0500000000", allow_whatsapp=False,
        ))
        outcomes = await dispatcher.dispatch_to(TENANT, "s", "quiet", ["whatsapp"], PAYLOAD)
        assert outcomes["whatsapp"].error == "no address"
        assert whatsapp.attempts == 0

    @pytest.mark.asyncio
    async def test_unknown_recipient(self, dispatcher, log):
        outcomes = await dispatcher.dispatch_to(TENANT, "s", "ghost", ["telegram", "whatsapp"], PAYLOAD)
        assert {o.status for o in outcomes.values()} == {NotificationStatus.SKIPPED}
        assert log.entries() == []


# ---------- fan-out ----------

class TestDispatchMany:
    @pytest.mark.asyncio
    async def test_each_recipient_gets_its_own_outcomes(self, dispatcher, telegram):
        results = await dispatcher.dispatch_many(
            TENANT, "finish:item-1", ["emp", "sup", "emp"], ["telegram"], PAYLOAD,
        )
        assert set(results) == {"emp", "sup"}
        assert telegram.attempts == 2

    def test_day_bucket_uses_configured_timezone(self, log):
        late_evening = datetime(2025, 3, 10, 22, 30, tzinfo=timezone.utc)
        riyadh = NotificationDispatcher(log, {}, timezone_name="Asia/Riyadh", clock=FixedClock(late_evening))
        assert riyadh.day_bucket() == "2025-03-11"
        assert NotificationDispatcher(log, {}, clock=FixedClock(late_evening)).day_bucket() == "2025-03-10"


# ---------- event loop ----------

class TestEventLoop:
    @pytest.mark.asyncio
    async def test_log_writes_run_off_the_loop_thread(self, directory, telegram):
        seen: list[int] = []

        class ThreadRecordingLog(MemoryNotificationLog):
            def claim(self, entry):
                seen.append(threading.get_ident())
                return super().claim(entry)

            def record_outcome(self, entry):
                seen.append(threading.get_ident())
                super().record_outcome(entry)

        dispatcher = NotificationDispatcher(
            ThreadRecordingLog(), {"telegram": telegram}, directory, clock=FixedClock(),
        )
        await dispatcher.dispatch_to(TENANT, "s", "sup", ["telegram"], PAYLOAD)

        assert len(seen) == 2
        assert threading.get_ident() not in seen
