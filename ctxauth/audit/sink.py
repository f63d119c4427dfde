"""
Audit sinks: where sealed audit events become durable.

Copyright (c) 2025 Gimel Foundation and the persons identified as the document authors.
All rights reserved. This file is subject to the Gimel Foundation's Legal Provisions Relating to GiFo Documents.
See http://GimelFoundation.com or https://github.com/Gimel-Foundation for details.
Code Components extracted from GiFo-RfC 0111 must include this license text and are provided without warranty.
"""

from abc import ABC, abstractmethod
from typing import List, Optional
from datetime import datetime
import asyncio
import json
import logging
import os
import threading

from ..store.types import RecordStore
from ..types import AuditEvent


logger = logging.getLogger(__name__)


class AuditSink(ABC):
    """Abstract base class for durable audit storage"""

    @abstractmethod
    async def write(self, event: AuditEvent) -> None:
        """Persist a sealed audit event; raise on any failure"""
        pass

    @abstractmethod
    async def get_events(
        self,
        principal: Optional[str] = None,
        event_type: Optional[str] = None,
        start_time: Optional[datetime] = None,
        end_time: Optional[datetime] = None,
    ) -> List[AuditEvent]:
        """Retrieve audit events with optional filtering"""
        pass

    async def close(self) -> None:
        """Close the sink and release resources"""
        pass


def _matches(event: AuditEvent, principal, event_type, start_time, end_time) -> bool:
    if principal and event.principal != principal:
        return False
    if event_type and event.event_type.value != str(event_type):
        return False
    if start_time and event.timestamp < start_time:
        return False
    if end_time and event.timestamp > end_time:
        return False
    return True


class MemoryAuditSink(AuditSink):
    """In-memory audit sink for development and testing"""

    def __init__(self):
        self.events: List[AuditEvent] = []
        self._lock = asyncio.Lock()

    async def write(self, event: AuditEvent) -> None:
        async with self._lock:
            self.events.append(event)

    async def get_events(
        self,
        principal: Optional[str] = None,
        event_type: Optional[str] = None,
        start_time: Optional[datetime] = None,
        end_time: Optional[datetime] = None,
    ) -> List[AuditEvent]:
        async with self._lock:
            return [
                e for e in self.events
                if _matches(e, principal, event_type, start_time, end_time)
            ]


class RecordStoreAuditSink(AuditSink):
    """Audit sink backed by the persistence collaborator"""

    def __init__(self, store: RecordStore):
        self.store = store

    async def write(self, event: AuditEvent) -> None:
        await self.store.append_audit_event(event)

    async def get_events(
        self,
        principal: Optional[str] = None,
        event_type: Optional[str] = None,
        start_time: Optional[datetime] = None,
        end_time: Optional[datetime] = None,
    ) -> List[AuditEvent]:
        return await self.store.list_audit_events(
            principal=principal,
            event_type=event_type,
            start_time=start_time,
            end_time=end_time,
        )


class FileAuditSink(AuditSink):
    """
    Append-only JSON-lines audit sink.

    Each write is flushed and fsynced before returning, so a returned write
    is durable on local disk. The blocking file work runs in the default
    executor so the ledger's write timeout still applies. Write errors
    propagate to the ledger.
    """

    def __init__(self, file_path: str):
        self.file_path = file_path
        # Held by executor threads; an abandoned write still finishes its line
        self._lock = threading.Lock()

    def _append(self, line: str) -> None:
        with self._lock:
            with open(self.file_path, "a", encoding="utf-8") as f:
                f.write(line)
                f.flush()
                os.fsync(f.fileno())

    async def write(self, event: AuditEvent) -> None:
        line = json.dumps(event.to_dict()) + "\n"
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, self._append, line)

    async def get_events(
        self,
        principal: Optional[str] = None,
        event_type: Optional[str] = None,
        start_time: Optional[datetime] = None,
        end_time: Optional[datetime] = None,
    ) -> List[AuditEvent]:
        events = []

        try:
            with open(self.file_path, "r", encoding="utf-8") as f:
                for line_number, line in enumerate(f, start=1):
                    if not line.strip():
                        continue
                    try:
                        event = AuditEvent.from_dict(json.loads(line))
                    except (json.JSONDecodeError, KeyError, ValueError) as e:
                        logger.warning(f"Skipping malformed audit line {line_number} in {self.file_path}: {e}")
                        continue

                    if _matches(event, principal, event_type, start_time, end_time):
                        events.append(event)

        except FileNotFoundError:
            return []

        return events


def create_audit_sink(sink_type: str = "memory", **kwargs) -> AuditSink:
    """
    Factory function to create audit sinks

    Args:
        sink_type: Type of sink ("memory", "file" or "store")
        **kwargs: Additional arguments for the sink

    Returns:
        AuditSink instance
    """
    if sink_type == "memory":
        return MemoryAuditSink()
    elif sink_type == "file":
        return FileAuditSink(kwargs.get("file_path", "audit.log"))
    elif sink_type == "store":
        return RecordStoreAuditSink(kwargs["store"])
    else:
        raise ValueError(f"Unknown sink type: {sink_type}")
