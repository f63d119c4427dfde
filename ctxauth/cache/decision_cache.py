"""
Time-bounded memoization of authorization decisions.

Entries are never evicted on mutation. Instead every input that can change a
decision (role set, context, active grant ids) is part of the fingerprint, so
a mutation simply produces a new key and the old entry ages out by TTL.
"""

import asyncio
import logging
from datetime import timedelta
from typing import Awaitable, Callable, Dict, Iterable, Optional, Tuple

from ..common.utils import Clock, get_current_time, sorted_ids, stable_hash
from ..metrics import MetricsCollector
from ..store.types import CacheStore
from ..types import DecisionCacheEntry, Principal, ReasonCode


logger = logging.getLogger(__name__)

Computation = Callable[[], Awaitable[Tuple[bool, ReasonCode]]]


def compute_fingerprint(
    principal: Principal,
    action: str,
    resource: str,
    context_id: str,
    delegation_ids: Iterable[str] = (),
    elevation_ids: Iterable[str] = (),
) -> str:
    """Stable hash of every input that determines a decision."""
    return stable_hash({
        "principal": principal.id,
        "roles": sorted_ids(principal.roles),
        "action": action,
        "resource": resource,
        "context": context_id,
        "delegations": sorted_ids(delegation_ids),
        "elevations": sorted_ids(elevation_ids),
    })


class DecisionCache:
    """
    Decision cache over a ``CacheStore`` with single-flight computation.

    Concurrent requests for the same fingerprint share one computation; all
    other fingerprints proceed independently.
    """

    def __init__(
        self,
        store: CacheStore,
        ttl: timedelta = timedelta(seconds=60),
        clock: Clock = get_current_time,
        metrics: Optional[MetricsCollector] = None,
        key_prefix: str = "decision:",
    ):
        self.store = store
        self.ttl = ttl
        self.metrics = metrics
        self.key_prefix = key_prefix
        self._clock = clock
        self._inflight: Dict[str, asyncio.Future] = {}

    def _key(self, fingerprint: str) -> str:
        return f"{self.key_prefix}{fingerprint}"

    async def get(self, fingerprint: str) -> Optional[DecisionCacheEntry]:
        """Return a fresh entry or None on miss."""
        data = await self.store.get(self._key(fingerprint))
        if data is None:
            return None
        entry = DecisionCacheEntry.from_dict(data)
        if not entry.is_fresh(self._clock().timestamp()):
            return None
        return entry

    async def put(
        self,
        fingerprint: str,
        allowed: bool,
        reason_code: ReasonCode,
        ttl: Optional[timedelta] = None,
    ) -> DecisionCacheEntry:
        ttl_seconds = (ttl or self.ttl).total_seconds()
        entry = DecisionCacheEntry(
            fingerprint=fingerprint,
            allowed=allowed,
            reason_code=reason_code,
            computed_at=self._clock().timestamp(),
            ttl=ttl_seconds,
        )
        await self.store.set(self._key(fingerprint), entry.to_dict(), ttl_seconds)
        return entry

    async def get_or_compute(self, fingerprint: str, compute: Computation) -> Tuple[DecisionCacheEntry, str]:
        """
        Return the cached entry, or compute and cache it exactly once.

        Returns:
            ``(entry, status)`` where status is ``hit``, ``miss`` or ``coalesced``
        """
        while True:
            leader = self._inflight.get(fingerprint)
            if leader is None:
                break
            try:
                entry = await asyncio.shield(leader)
            except asyncio.CancelledError:
                if not leader.cancelled():
                    raise
                # The computing task was cancelled; take over
                continue
            self._record("coalesced")
            return entry, "coalesced"

        future = asyncio.get_running_loop().create_future()
        self._inflight[fingerprint] = future
        try:
            entry = await self.get(fingerprint)
            status = "hit"
            if entry is None:
                allowed, reason_code = await compute()
                entry = await self.put(fingerprint, allowed, reason_code)
                status = "miss"
            future.set_result(entry)
        except asyncio.CancelledError:
            future.cancel()
            raise
        except Exception as e:
            future.set_exception(e)
            # Mark retrieved; waiters still receive the exception
            future.exception()
            raise
        finally:
            self._inflight.pop(fingerprint, None)

        self._record(status)
        return entry, status

    def _record(self, status: str) -> None:
        if self.metrics:
            self.metrics.record_cache_operation(status)
        logger.debug(f"Decision cache {status}")
