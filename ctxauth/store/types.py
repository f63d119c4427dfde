"""
Storage interfaces the engine talks to.

The engine never embeds storage-engine logic. It issues reads and writes
against two collaborators:

- ``CacheStore``: opaque string keys, dictionary values, TTL semantics. Backs
  the decision cache and the rate limiter buckets.
- ``RecordStore``: durable records for principals, tenants, roles,
  delegations, elevations and audit events.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from ..types import (
    AuditEvent,
    CorporateContext,
    Delegation,
    Elevation,
    PermissionNode,
    Principal,
)


class CacheStore(ABC):
    """Time-bounded key-value store."""

    @abstractmethod
    async def get(self, key: str) -> Optional[Dict[str, Any]]:
        """Return the value for key, or None when absent or expired."""
        pass

    @abstractmethod
    async def set(self, key: str, value: Dict[str, Any], ttl: float) -> None:
        """Store value under key for ttl seconds."""
        pass

    @abstractmethod
    async def delete(self, key: str) -> bool:
        """Remove key; returns whether it existed."""
        pass

    @abstractmethod
    async def take_token(
        self,
        key: str,
        capacity: float,
        refill_per_second: float,
        now: float,
        ttl: float,
        cost: float = 1.0,
    ) -> Tuple[bool, float, float]:
        """
        Atomically refill the token bucket at key and take ``cost`` tokens.

        The read, refill and write happen as one step in the store, so
        engine instances sharing the store never both spend the same token.
        A cost of zero refreshes the bucket without consuming.

        Returns:
            (allowed, tokens left, seconds until ``cost`` tokens are available)
        """
        pass

    async def close(self) -> None:
        """Release resources held by the store."""
        pass


class RecordStore(ABC):
    """Durable record storage."""

    # Principals
    @abstractmethod
    async def get_principal(self, principal_id: str) -> Optional[Principal]:
        pass

    @abstractmethod
    async def save_principal(self, principal: Principal) -> None:
        pass

    # Tenants
    @abstractmethod
    async def get_tenant(self, tenant_id: str) -> Optional[CorporateContext]:
        pass

    @abstractmethod
    async def save_tenant(self, tenant: CorporateContext) -> None:
        pass

    @abstractmethod
    async def list_tenants(self) -> List[CorporateContext]:
        pass

    # Roles
    @abstractmethod
    async def save_role(self, node: PermissionNode) -> None:
        pass

    @abstractmethod
    async def list_roles(self) -> List[PermissionNode]:
        pass

    # Delegations
    @abstractmethod
    async def save_delegation(self, delegation: Delegation) -> None:
        pass

    @abstractmethod
    async def get_delegation(self, delegation_id: str) -> Optional[Delegation]:
        pass

    @abstractmethod
    async def list_delegations(
        self,
        grantor_id: Optional[str] = None,
        grantee_id: Optional[str] = None,
    ) -> List[Delegation]:
        pass

    # Elevations
    @abstractmethod
    async def save_elevation(self, elevation: Elevation) -> None:
        pass

    @abstractmethod
    async def get_elevation(self, elevation_id: str) -> Optional[Elevation]:
        pass

    @abstractmethod
    async def list_elevations(self, principal_id: Optional[str] = None) -> List[Elevation]:
        pass

    # Audit events
    @abstractmethod
    async def append_audit_event(self, event: AuditEvent) -> None:
        """Append a sealed event. Must raise if the write is not durable."""
        pass

    @abstractmethod
    async def list_audit_events(
        self,
        principal: Optional[str] = None,
        event_type: Optional[str] = None,
        start_time: Optional[datetime] = None,
        end_time: Optional[datetime] = None,
    ) -> List[AuditEvent]:
        pass

    async def reap(self, now: datetime) -> int:
        """Reclaim storage for expired grants and audit events past retention."""
        return 0

    async def close(self) -> None:
        """Release resources held by the store."""
        pass
