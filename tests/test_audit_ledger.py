"""
Tests for the audit ledger, payload encryption and audit sinks.
"""

import asyncio
import threading
from datetime import timedelta

import pytest

from conftest import FailingAuditSink, FakeClock, TEST_AUDIT_KEY
from ctxauth.audit import AuditLedger, FileAuditSink, MemoryAuditSink, PayloadCipher
from ctxauth.core.config import AuditConfig
from ctxauth.errors import AuditWriteFailure, ConfigurationError
from ctxauth.types import AuditEvent, AuditEventType, AuditSeverity, ReasonCode


def audit_config(**overrides):
    settings = dict(
        encryption_key=TEST_AUDIT_KEY,
        retry_attempts=3,
        retry_initial_delay=timedelta(milliseconds=1),
        retry_max_delay=timedelta(milliseconds=5),
    )
    settings.update(overrides)
    return AuditConfig(**settings)


def decision_event(clock, **details):
    return AuditEvent(
        event_type=AuditEventType.AUTHORIZATION_DECISION,
        principal="alice",
        reason_code=ReasonCode.ALLOWED_BY_ROLE,
        action="read",
        resource="report",
        context="contextA",
        decision="allow",
        timestamp=clock(),
        details=details or {"fingerprint": "abc", "cached": False, "session_id": "ses_1"},
    )


class TestPayloadCipher:
    """Audit payload encryption"""

    @pytest.mark.parametrize("algorithm", ["AES-256-GCM", "FERNET"])
    def test_encrypt_decrypt(self, algorithm):
        cipher = PayloadCipher("passphrase", algorithm)
        token = cipher.encrypt('{"a": 1}', associated_data="evt_1")
        assert token != '{"a": 1}'
        assert cipher.decrypt(token, associated_data="evt_1") == '{"a": 1}'

    def test_gcm_binds_associated_data(self):
        cipher = PayloadCipher("passphrase")
        token = cipher.encrypt("secret", associated_data="evt_1")
        with pytest.raises(ValueError):
            cipher.decrypt(token, associated_data="evt_2")

    def test_wrong_key_rejected(self):
        token = PayloadCipher("one").encrypt("secret")
        with pytest.raises(ValueError):
            PayloadCipher("two").decrypt(token)

    def test_unsupported_algorithm(self):
        with pytest.raises(ConfigurationError):
            PayloadCipher("passphrase", "ROT13")


class TestAuditLedger:
    """Sealing, durability and failure handling"""

    @pytest.fixture
    def clock(self):
        return FakeClock()

    @pytest.mark.asyncio
    async def test_record_seals_and_encrypts(self, clock):
        sink = MemoryAuditSink()
        ledger = AuditLedger(sink, audit_config(), clock=clock)

        sealed = await ledger.record(decision_event(clock))

        assert sink.events == [sealed]
        assert sealed.encrypted
        assert sealed.details == {}
        assert "ses_1" not in sealed.payload
        assert sealed.severity == AuditSeverity.LOW
        assert sealed.retain_until == clock() + timedelta(days=365)
        assert ledger.decrypt_payload(sealed)["session_id"] == "ses_1"

    @pytest.mark.asyncio
    async def test_review_flag_follows_event_type(self, clock):
        ledger = AuditLedger(MemoryAuditSink(), audit_config(), clock=clock)
        event = AuditEvent(
            event_type=AuditEventType.PERMISSION_ELEVATION,
            principal="alice",
            reason_code=ReasonCode.ELEVATION_GRANTED,
            timestamp=clock(),
        )
        sealed = await ledger.record(event)
        assert sealed.requires_review
        assert sealed.severity == AuditSeverity.HIGH

    def test_required_encryption_without_key_is_configuration_error(self):
        with pytest.raises(ConfigurationError):
            AuditLedger(MemoryAuditSink(), AuditConfig(encryption_required=True, encryption_key=None))

    @pytest.mark.asyncio
    async def test_plaintext_when_encryption_not_required(self, clock):
        ledger = AuditLedger(
            MemoryAuditSink(), AuditConfig(encryption_required=False), clock=clock
        )
        sealed = await ledger.record(decision_event(clock))
        assert not sealed.encrypted
        assert ledger.decrypt_payload(sealed)["fingerprint"] == "abc"

    @pytest.mark.asyncio
    async def test_reduced_payload_without_comprehensive_audit(self, clock):
        ledger = AuditLedger(MemoryAuditSink(), audit_config(), clock=clock, comprehensive=False)
        sealed = await ledger.record(decision_event(clock))
        assert ledger.decrypt_payload(sealed) == {"fingerprint": "abc", "cached": False}

    @pytest.mark.asyncio
    async def test_failure_raises_and_notice_is_written_once_restored(self, clock):
        sink = FailingAuditSink()
        ledger = AuditLedger(sink, audit_config(retry_attempts=10), clock=clock)

        with pytest.raises(AuditWriteFailure) as exc_info:
            await ledger.record(decision_event(clock))
        assert exc_info.value.reason_code == ReasonCode.DENIED_AUDIT_FAILURE

        sink.failing = False
        await ledger.drain()

        notices = await ledger.query(event_type=AuditEventType.AUDIT_WRITE_FAILED)
        assert len(notices) == 1
        payload = ledger.decrypt_payload(notices[0])
        assert payload["forced_decision"] == ReasonCode.DENIED_AUDIT_FAILURE.value
        assert ledger.escalations == []

    @pytest.mark.asyncio
    async def test_exhausted_retries_escalate(self, clock):
        sink = FailingAuditSink()
        escalated = []
        ledger = AuditLedger(sink, audit_config(), clock=clock, on_escalation=escalated.append)

        with pytest.raises(AuditWriteFailure):
            await ledger.record(decision_event(clock))
        await ledger.drain()

        # One failed write plus three notice attempts
        assert sink.attempts == 4
        assert len(ledger.escalations) == 1
        assert escalated == ledger.escalations
        assert escalated[0].event_type == AuditEventType.AUDIT_WRITE_FAILED

    @pytest.mark.asyncio
    async def test_slow_sink_times_out(self, clock):
        class SlowSink(MemoryAuditSink):
            async def write(self, event):
                await asyncio.sleep(1)

        ledger = AuditLedger(
            SlowSink(), audit_config(write_timeout=timedelta(milliseconds=10), retry_attempts=1), clock=clock
        )
        with pytest.raises(AuditWriteFailure):
            await ledger.record(decision_event(clock))
        await ledger.drain()

    @pytest.mark.asyncio
    async def test_cancelled_caller_does_not_abort_write(self, clock):
        started = asyncio.Event()
        release = asyncio.Event()

        class GatedSink(MemoryAuditSink):
            async def write(self, event):
                started.set()
                await release.wait()
                await super().write(event)

        sink = GatedSink()
        ledger = AuditLedger(sink, audit_config(), clock=clock)

        task = asyncio.create_task(ledger.record(decision_event(clock)))
        await started.wait()
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        release.set()
        for _ in range(5):
            await asyncio.sleep(0)
        assert len(sink.events) == 1

    @pytest.mark.asyncio
    async def test_abandoned_write_failure_is_still_escalated(self, clock):
        started = asyncio.Event()
        release = asyncio.Event()

        class GatedFailingSink(FailingAuditSink):
            async def write(self, event):
                if not started.is_set():
                    started.set()
                    await release.wait()
                await super().write(event)

        ledger = AuditLedger(GatedFailingSink(), audit_config(), clock=clock)

        task = asyncio.create_task(ledger.record(decision_event(clock)))
        await started.wait()
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        release.set()
        await asyncio.sleep(0.01)
        await ledger.drain()
        assert len(ledger.escalations) == 1


class TestFileAuditSink:
    """JSON-lines audit sink"""

    @pytest.mark.asyncio
    async def test_write_and_query(self, tmp_path):
        clock = FakeClock()
        sink = FileAuditSink(str(tmp_path / "audit.log"))
        ledger = AuditLedger(sink, audit_config(), clock=clock)

        sealed = await ledger.record(decision_event(clock))
        clock.advance(timedelta(minutes=1))
        await ledger.record(decision_event(clock))

        events = await sink.get_events(principal="alice", end_time=sealed.timestamp)
        assert [e.event_id for e in events] == [sealed.event_id]
        assert ledger.decrypt_payload(events[0])["fingerprint"] == "abc"

    @pytest.mark.asyncio
    async def test_missing_file_is_empty(self, tmp_path):
        sink = FileAuditSink(str(tmp_path / "absent.log"))
        assert await sink.get_events() == []

    @pytest.mark.asyncio
    async def test_stalled_disk_write_still_times_out(self, tmp_path):
        clock = FakeClock()
        release = threading.Event()

        class StalledFileSink(FileAuditSink):
            def _append(self, line):
                release.wait(5)
                super()._append(line)

        ledger = AuditLedger(
            StalledFileSink(str(tmp_path / "audit.log")),
            audit_config(write_timeout=timedelta(milliseconds=20), retry_attempts=1),
            clock=clock,
        )
        try:
            with pytest.raises(AuditWriteFailure):
                await ledger.record(decision_event(clock))
        finally:
            release.set()
        await ledger.drain()
