"""
In-memory storage implementations.

These back the engine in tests, demos and single-instance deployments. The
record store can run an optional background reaper; decision correctness
never depends on it because grant expiry is evaluated on read.
"""

import asyncio
import heapq
import logging
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Tuple

from .types import CacheStore, RecordStore
from ..common.utils import Clock, get_current_time
from ..types import (
    AuditEvent,
    CorporateContext,
    Delegation,
    Elevation,
    PermissionNode,
    Principal,
)


logger = logging.getLogger(__name__)


class MemoryCacheStore(CacheStore):
    """
    Dictionary-backed cache store with per-key expiry.

    Expiry times are also kept in a heap; every ``set`` purges the keys whose
    time has passed, so entries that are never read again do not pile up.
    """

    def __init__(self, clock: Clock = get_current_time):
        self._clock = clock
        self._data: Dict[str, Tuple[Dict[str, Any], float]] = {}
        self._expiry: List[Tuple[float, str]] = []
        self._lock = asyncio.Lock()

    def _now(self) -> float:
        return self._clock().timestamp()

    def _purge_expired(self, now: float) -> int:
        purged = 0
        while self._expiry and self._expiry[0][0] <= now:
            expires_at, key = heapq.heappop(self._expiry)
            item = self._data.get(key)
            # Records left behind by an overwrite no longer match the entry
            if item is not None and item[1] == expires_at:
                del self._data[key]
                purged += 1
        return purged

    def _put(self, key: str, value: Dict[str, Any], ttl: float, now: float) -> None:
        self._purge_expired(now)
        expires_at = now + ttl
        self._data[key] = (dict(value), expires_at)
        heapq.heappush(self._expiry, (expires_at, key))

    async def get(self, key: str) -> Optional[Dict[str, Any]]:
        item = self._data.get(key)
        if item is None:
            return None
        value, expires_at = item
        if self._now() >= expires_at:
            self._data.pop(key, None)
            return None
        return dict(value)

    async def set(self, key: str, value: Dict[str, Any], ttl: float) -> None:
        self._put(key, value, ttl, self._now())

    async def delete(self, key: str) -> bool:
        return self._data.pop(key, None) is not None

    async def take_token(
        self,
        key: str,
        capacity: float,
        refill_per_second: float,
        now: float,
        ttl: float,
        cost: float = 1.0,
    ) -> Tuple[bool, float, float]:
        async with self._lock:
            bucket = await self.get(key)
            if bucket is None:
                tokens = capacity
            else:
                # Calculate tokens to add based on time elapsed
                elapsed = max(0.0, now - float(bucket["last_update"]))
                tokens = min(capacity, float(bucket["tokens"]) + elapsed * refill_per_second)

            allowed = tokens >= cost
            retry_after = 0.0
            if allowed:
                tokens -= cost
            else:
                retry_after = (cost - tokens) / refill_per_second

            self._put(key, {"tokens": tokens, "last_update": now}, ttl, self._now())
            return allowed, tokens, retry_after

    def __len__(self) -> int:
        return len(self._data)


class MemoryRecordStore(RecordStore):
    """
    In-memory record store.

    Uses a single asyncio lock around its dictionaries. Audit events are
    append-only and are only ever removed by ``reap`` once their
    ``retain_until`` has passed.
    """

    def __init__(
        self,
        clock: Clock = get_current_time,
        reap_interval: float = 300.0,
        grant_grace_period: timedelta = timedelta(days=1),
    ):
        """
        Initialize memory record store.

        Args:
            clock: Time source
            reap_interval: Seconds between background reaper runs
            grant_grace_period: How long expired grants are kept before reclaiming
        """
        self._clock = clock
        self._principals: Dict[str, Principal] = {}
        self._tenants: Dict[str, CorporateContext] = {}
        self._roles: Dict[str, PermissionNode] = {}
        self._delegations: Dict[str, Delegation] = {}
        self._elevations: Dict[str, Elevation] = {}
        self._audit: List[AuditEvent] = []
        self._lock = asyncio.Lock()
        self._reap_interval = reap_interval
        self._grant_grace_period = grant_grace_period
        self._reaper_task: Optional[asyncio.Task] = None
        self._running = False

    async def start(self) -> None:
        """Start the background reaper."""
        if not self._running:
            self._running = True
            self._reaper_task = asyncio.create_task(self._auto_reap())
            logger.info("Started memory record store with background reaper")

    async def stop(self) -> None:
        """Stop the background reaper."""
        if self._running:
            self._running = False
            if self._reaper_task:
                self._reaper_task.cancel()
                try:
                    await self._reaper_task
                except asyncio.CancelledError:
                    pass
            logger.info("Stopped memory record store reaper")

    async def _auto_reap(self) -> None:
        while self._running:
            try:
                await asyncio.sleep(self._reap_interval)
                if self._running:
                    reclaimed = await self.reap(self._clock())
                    if reclaimed > 0:
                        logger.debug(f"Reaper reclaimed {reclaimed} records")
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Error in background reaper: {e}")

    async def close(self) -> None:
        await self.stop()

    # Principals

    async def get_principal(self, principal_id: str) -> Optional[Principal]:
        async with self._lock:
            return self._principals.get(principal_id)

    async def save_principal(self, principal: Principal) -> None:
        async with self._lock:
            self._principals[principal.id] = principal

    # Tenants

    async def get_tenant(self, tenant_id: str) -> Optional[CorporateContext]:
        async with self._lock:
            return self._tenants.get(tenant_id)

    async def save_tenant(self, tenant: CorporateContext) -> None:
        async with self._lock:
            self._tenants[tenant.id] = tenant

    async def list_tenants(self) -> List[CorporateContext]:
        async with self._lock:
            return list(self._tenants.values())

    # Roles

    async def save_role(self, node: PermissionNode) -> None:
        async with self._lock:
            self._roles[node.role_id] = node

    async def list_roles(self) -> List[PermissionNode]:
        async with self._lock:
            return list(self._roles.values())

    # Delegations

    async def save_delegation(self, delegation: Delegation) -> None:
        async with self._lock:
            self._delegations[delegation.id] = delegation

    async def get_delegation(self, delegation_id: str) -> Optional[Delegation]:
        async with self._lock:
            return self._delegations.get(delegation_id)

    async def list_delegations(
        self,
        grantor_id: Optional[str] = None,
        grantee_id: Optional[str] = None,
    ) -> List[Delegation]:
        async with self._lock:
            return [
                d for d in self._delegations.values()
                if (grantor_id is None or d.grantor_id == grantor_id)
                and (grantee_id is None or d.grantee_id == grantee_id)
            ]

    # Elevations

    async def save_elevation(self, elevation: Elevation) -> None:
        async with self._lock:
            self._elevations[elevation.id] = elevation

    async def get_elevation(self, elevation_id: str) -> Optional[Elevation]:
        async with self._lock:
            return self._elevations.get(elevation_id)

    async def list_elevations(self, principal_id: Optional[str] = None) -> List[Elevation]:
        async with self._lock:
            return [
                e for e in self._elevations.values()
                if principal_id is None or e.principal_id == principal_id
            ]

    # Audit events

    async def append_audit_event(self, event: AuditEvent) -> None:
        async with self._lock:
            self._audit.append(event)

    async def list_audit_events(
        self,
        principal: Optional[str] = None,
        event_type: Optional[str] = None,
        start_time: Optional[datetime] = None,
        end_time: Optional[datetime] = None,
    ) -> List[AuditEvent]:
        async with self._lock:
            filtered_events = []

            for event in self._audit:
                if principal and event.principal != principal:
                    continue

                if event_type and event.event_type.value != str(event_type):
                    continue

                if start_time and event.timestamp < start_time:
                    continue

                if end_time and event.timestamp > end_time:
                    continue

                filtered_events.append(event)

            return filtered_events

    async def reap(self, now: datetime) -> int:
        """Reclaim long-expired grants and audit events past retention."""
        async with self._lock:
            cutoff = now - self._grant_grace_period

            expired_delegations = [k for k, d in self._delegations.items() if d.expires_at <= cutoff]
            for key in expired_delegations:
                del self._delegations[key]

            expired_elevations = [k for k, e in self._elevations.items() if e.expires_at <= cutoff]
            for key in expired_elevations:
                del self._elevations[key]

            retained = [e for e in self._audit if e.retain_until is None or e.retain_until > now]
            purged_events = len(self._audit) - len(retained)
            self._audit = retained

            reclaimed = len(expired_delegations) + len(expired_elevations) + purged_events
            if reclaimed:
                logger.info(
                    f"Reclaimed {len(expired_delegations)} delegations, "
                    f"{len(expired_elevations)} elevations, {purged_events} audit events"
                )
            return reclaimed
