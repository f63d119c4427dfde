"""
Append-only, encrypted audit ledger.

The ledger seals an event (severity, review flag, retention deadline and
encrypted payload), writes it through an ``AuditSink`` and only returns once
the sink has accepted it. A failed write raises ``AuditWriteFailure`` so the
caller can fail closed; the ledger then keeps trying in the background to
record that the failure happened and escalates if it never can.
"""

import asyncio
import inspect
import json
import logging
from dataclasses import replace
from typing import Any, Callable, Dict, List, Optional, Set

from .cipher import PayloadCipher
from .sink import AuditSink
from ..common.utils import Clock, get_current_time
from ..core.config import AuditConfig
from ..errors import AuditWriteFailure, ConfigurationError
from ..metrics import MetricsCollector
from ..resilience import Retry, RetryConfig
from ..types import AuditEvent, AuditEventType, ReasonCode


logger = logging.getLogger(__name__)

# Detail keys kept on authorization decisions when comprehensive audit is off
_REDUCED_DETAIL_KEYS = ("fingerprint", "cached")

EscalationHandler = Callable[[AuditEvent], Any]


class AuditLedger:
    """Durable audit trail with write-before-respond semantics."""

    def __init__(
        self,
        sink: AuditSink,
        config: Optional[AuditConfig] = None,
        clock: Clock = get_current_time,
        metrics: Optional[MetricsCollector] = None,
        comprehensive: bool = True,
        on_escalation: Optional[EscalationHandler] = None,
    ):
        """
        Initialize the ledger.

        Args:
            sink: Durable storage for sealed events
            config: Audit settings (encryption, retention, timeouts, retries)
            clock: Time source for retention deadlines and failure notices
            metrics: Optional metrics collector
            comprehensive: Keep full decision payloads; reduced payloads otherwise
            on_escalation: Called with the failure notice when retries are exhausted
        """
        self.sink = sink
        self.config = config or AuditConfig()
        self.comprehensive = comprehensive
        self.metrics = metrics
        self.on_escalation = on_escalation
        self.escalations: List[AuditEvent] = []
        self._clock = clock
        self._pending: Set[asyncio.Task] = set()

        if self.config.encryption_key:
            self.cipher: Optional[PayloadCipher] = PayloadCipher(
                self.config.encryption_key, self.config.encryption_algorithm
            )
        elif self.config.encryption_required:
            raise ConfigurationError("Audit encryption is required but no encryption key is configured")
        else:
            self.cipher = None

    def seal(self, event: AuditEvent) -> AuditEvent:
        """
        Produce the persisted form of an event.

        The returned copy has severity, review flag and retention deadline
        filled in, carries its details as a (possibly encrypted) payload and
        no longer holds the plaintext details.
        """
        details = dict(event.details)
        if not self.comprehensive and event.event_type == AuditEventType.AUTHORIZATION_DECISION:
            details = {k: v for k, v in details.items() if k in _REDUCED_DETAIL_KEYS}

        payload = json.dumps(details, sort_keys=True, default=str)
        encrypted = False
        if self.cipher is not None:
            payload = self.cipher.encrypt(payload, associated_data=event.event_id)
            encrypted = True

        return replace(
            event,
            severity=event.event_type.severity,
            requires_review=event.event_type.requires_review,
            retain_until=event.timestamp + self.config.retention_period,
            payload=payload,
            encrypted=encrypted,
            details={},
        )

    async def record(self, event: AuditEvent) -> AuditEvent:
        """
        Durably write an event.

        The write runs shielded from the caller: cancelling the caller never
        aborts a write that is already in flight.

        Returns:
            The sealed event as persisted

        Raises:
            AuditWriteFailure: If the sink rejected the write or timed out
        """
        sealed = self.seal(event)
        write = asyncio.ensure_future(self._write(sealed))
        try:
            await asyncio.shield(write)
        except asyncio.CancelledError:
            write.add_done_callback(lambda done: self._after_abandoned_write(sealed, done))
            raise
        except AuditWriteFailure as e:
            logger.error(f"Audit write failed for {sealed.event_type.value} event {sealed.event_id}: {e.message}")
            if self.metrics:
                self.metrics.record_audit_write("failed")
            self._schedule_failure_notice(sealed, e)
            raise

        if self.metrics:
            self.metrics.record_audit_write("ok")
        logger.debug(f"Recorded audit event {sealed.event_id} ({sealed.event_type.value})")
        return sealed

    async def _write(self, sealed: AuditEvent) -> None:
        timeout = self.config.write_timeout.total_seconds()
        try:
            await asyncio.wait_for(self.sink.write(sealed), timeout=timeout)
        except asyncio.TimeoutError as e:
            raise AuditWriteFailure(
                f"Audit write timed out after {timeout:.3f}s", event_id=sealed.event_id, cause=e
            ) from e
        except AuditWriteFailure:
            raise
        except Exception as e:
            raise AuditWriteFailure(
                f"Audit sink rejected event: {e}", event_id=sealed.event_id, cause=e
            ) from e

    def _after_abandoned_write(self, sealed: AuditEvent, write: asyncio.Future) -> None:
        if write.cancelled():
            return
        error = write.exception()
        if error is None:
            return
        logger.error(f"Audit write for abandoned request {sealed.event_id} failed: {error}")
        if self.metrics:
            self.metrics.record_audit_write("failed")
        self._schedule_failure_notice(sealed, error)

    def _schedule_failure_notice(self, failed: AuditEvent, error: AuditWriteFailure) -> None:
        notice = AuditEvent(
            event_type=AuditEventType.AUDIT_WRITE_FAILED,
            principal=failed.principal,
            reason_code=ReasonCode.AUDIT_WRITE_FAILED,
            action=failed.action,
            resource=failed.resource,
            context=failed.context,
            decision="deny",
            timestamp=self._clock(),
            details={
                "failed_event_id": failed.event_id,
                "failed_event_type": failed.event_type.value,
                "forced_decision": ReasonCode.DENIED_AUDIT_FAILURE.value,
                "error": error.message,
            },
        )
        task = asyncio.ensure_future(self._deliver_failure_notice(notice))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _deliver_failure_notice(self, notice: AuditEvent) -> None:
        sealed = self.seal(notice)
        retry = Retry(RetryConfig(
            max_attempts=self.config.retry_attempts,
            initial_delay=self.config.retry_initial_delay,
            max_delay=self.config.retry_max_delay,
        ))
        try:
            await retry.execute(self._write, sealed)
        except AuditWriteFailure as e:
            await self._escalate(sealed, e)
            return

        logger.warning(
            f"Recorded audit failure notice {sealed.event_id} after {retry.attempts} attempt(s)"
        )

    async def _escalate(self, notice: AuditEvent, error: AuditWriteFailure) -> None:
        logger.critical(
            f"Audit failure notice {notice.event_id} could not be written after "
            f"{self.config.retry_attempts} attempts: {error.message}"
        )
        self.escalations.append(notice)
        if self.metrics:
            self.metrics.record_audit_escalation()

        if self.on_escalation is None:
            return
        try:
            result = self.on_escalation(notice)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.error(f"Audit escalation handler failed: {e}")

    async def drain(self) -> None:
        """Wait for every outstanding failure notice to be written or escalated."""
        while self._pending:
            await asyncio.gather(*list(self._pending))

    async def query(
        self,
        principal: Optional[str] = None,
        event_type: Optional[AuditEventType] = None,
        start_time=None,
        end_time=None,
    ) -> List[AuditEvent]:
        """Retrieve persisted events with optional filtering."""
        return await self.sink.get_events(
            principal=principal,
            event_type=event_type.value if event_type else None,
            start_time=start_time,
            end_time=end_time,
        )

    def decrypt_payload(self, event: AuditEvent) -> Dict[str, Any]:
        """Return the plaintext details of a persisted event."""
        if event.payload is None:
            return {}
        if not event.encrypted:
            return json.loads(event.payload)
        if self.cipher is None:
            raise ConfigurationError("Cannot decrypt audit payload without an encryption key")
        return json.loads(self.cipher.decrypt(event.payload, associated_data=event.event_id))

    async def close(self) -> None:
        await self.drain()
        await self.sink.close()
