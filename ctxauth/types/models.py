"""
Core data structures for the ctxauth engine.

Copyright (c) 2025 Gimel Foundation and the persons identified as the document authors.
All rights reserved. This file is subject to the Gimel Foundation's Legal Provisions Relating to GiFo Documents.
See http://GimelFoundation.com or https://github.com/Gimel-Foundation for details.
Code Components extracted from GiFo-RfC 0111 must include this license text and are provided without warranty.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, FrozenSet, Iterable, Optional, Set

from .codes import (
    AuditEventType,
    AuditSeverity,
    CapabilityKind,
    ReasonCode,
    SessionState,
)
from ..common.utils import generate_id, get_current_time, parse_iso_timestamp


WILDCARD_RESOURCE = "*"


@dataclass(frozen=True, order=True)
class Capability:
    """
    A permission to perform one kind of action on one resource.

    Written as ``<kind>:<resource>``, e.g. ``read:report``. A resource of
    ``*`` covers every resource for that kind.
    """
    kind: CapabilityKind
    resource: str

    def __str__(self) -> str:
        return f"{self.kind.value}:{self.resource}"

    @classmethod
    def parse(cls, value: str) -> "Capability":
        """Parse ``kind:resource``; raises ValueError on malformed input."""
        if isinstance(value, Capability):
            return value
        if not isinstance(value, str) or ":" not in value:
            raise ValueError(f"Malformed capability: {value!r}")
        kind, _, resource = value.strip().partition(":")
        resource = resource.strip()
        if not resource:
            raise ValueError(f"Capability has no resource: {value!r}")
        try:
            return cls(CapabilityKind(kind.strip().lower()), resource)
        except ValueError:
            raise ValueError(f"Unknown capability kind {kind!r} in {value!r}") from None

    @classmethod
    def of(cls, action: str, resource: str) -> "Capability":
        """Build the capability an action on a resource requires."""
        return cls.parse(f"{action}:{resource}")

    def covers(self, other: "Capability") -> bool:
        """Check whether holding this capability satisfies ``other``."""
        if self.kind != other.kind:
            return False
        return self.resource == WILDCARD_RESOURCE or self.resource == other.resource


def parse_capabilities(values: Iterable[Any]) -> FrozenSet[Capability]:
    """Parse a collection of capability strings into a frozen set."""
    return frozenset(Capability.parse(v) for v in values)


def covers_all(held: Iterable[Capability], requested: Iterable[Capability]) -> bool:
    """Check that every requested capability is covered by a held one."""
    held = list(held)
    return all(any(h.covers(r) for h in held) for r in requested)


def uncovered(held: Iterable[Capability], requested: Iterable[Capability]) -> FrozenSet[Capability]:
    """Return the requested capabilities not covered by any held one."""
    held = list(held)
    return frozenset(r for r in requested if not any(h.covers(r) for h in held))


@dataclass
class Principal:
    """An authenticated actor: stable identity, corporate domain and mutable role set."""
    id: str
    domain: str
    roles: Set[str] = field(default_factory=set)
    created_at: datetime = field(default_factory=get_current_time)
    version: int = 1

    def __post_init__(self):
        self.domain = self.domain.strip().lower()
        self.roles = set(self.roles)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            'id': self.id,
            'domain': self.domain,
            'roles': sorted(self.roles),
            'created_at': self.created_at.isoformat(),
            'version': self.version,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Principal':
        """Create from dictionary representation."""
        return cls(
            id=data['id'],
            domain=data['domain'],
            roles=set(data.get('roles', [])),
            created_at=parse_iso_timestamp(data.get('created_at')) or get_current_time(),
            version=data.get('version', 1),
        )


@dataclass(frozen=True)
class CorporateContext:
    """Tenant boundary: which domains may operate in it and whether roles inherit."""
    id: str
    name: str = ""
    domain_whitelist: FrozenSet[str] = field(default_factory=frozenset)
    sso_enabled: bool = False
    inheritance_enabled: bool = False

    def admits(self, domain: str) -> bool:
        """Check whether a principal domain is whitelisted for this tenant."""
        return domain.strip().lower() in self.domain_whitelist

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            'id': self.id,
            'name': self.name,
            'domain_whitelist': sorted(self.domain_whitelist),
            'sso_enabled': self.sso_enabled,
            'inheritance_enabled': self.inheritance_enabled,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'CorporateContext':
        """Create from dictionary representation."""
        return cls(
            id=data['id'],
            name=data.get('name', data['id']),
            domain_whitelist=frozenset(d.strip().lower() for d in data.get('domain_whitelist', [])),
            sso_enabled=bool(data.get('sso_enabled', False)),
            inheritance_enabled=bool(data.get('inheritance_enabled', False)),
        )


@dataclass(frozen=True)
class PermissionNode:
    """A role: granted capabilities plus references to parent roles."""
    role_id: str
    capabilities: FrozenSet[Capability] = field(default_factory=frozenset)
    parents: FrozenSet[str] = field(default_factory=frozenset)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            'role_id': self.role_id,
            'capabilities': sorted(str(c) for c in self.capabilities),
            'parents': sorted(self.parents),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'PermissionNode':
        """Create from dictionary representation; raises ValueError on bad capabilities."""
        return cls(
            role_id=data['role_id'],
            capabilities=parse_capabilities(data.get('capabilities', [])),
            parents=frozenset(data.get('parents', [])),
        )


@dataclass
class ActiveContext:
    """Per-session record of which tenant a principal is currently operating under."""
    session_id: str
    principal: Principal
    context: CorporateContext
    state: SessionState = SessionState.CONTEXT_ACTIVE
    switched_at: datetime = field(default_factory=get_current_time)
    switch_count: int = 0
    window_started_at: datetime = field(default_factory=get_current_time)
    previous_context_id: Optional[str] = None

    @property
    def context_id(self) -> str:
        return self.context.id

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            'session_id': self.session_id,
            'principal_id': self.principal.id,
            'context_id': self.context.id,
            'state': self.state.value,
            'switched_at': self.switched_at.isoformat(),
            'switch_count': self.switch_count,
            'previous_context_id': self.previous_context_id,
        }


@dataclass
class Delegation:
    """A bounded-duration grant of part of one principal's capabilities to another."""
    grantor_id: str
    grantee_id: str
    scope: FrozenSet[Capability]
    context_id: str
    expires_at: datetime
    id: str = field(default_factory=lambda: generate_id("dlg_"))
    created_at: datetime = field(default_factory=get_current_time)
    reason: Optional[str] = None
    clamped: bool = False
    revoked: bool = False
    revoked_at: Optional[datetime] = None
    revoked_by: Optional[str] = None

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at

    def is_active(self, now: datetime) -> bool:
        """Active means neither revoked nor expired; evaluated on read."""
        return not self.revoked and not self.is_expired(now)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            'id': self.id,
            'grantor_id': self.grantor_id,
            'grantee_id': self.grantee_id,
            'scope': sorted(str(c) for c in self.scope),
            'context_id': self.context_id,
            'created_at': self.created_at.isoformat(),
            'expires_at': self.expires_at.isoformat(),
            'reason': self.reason,
            'clamped': self.clamped,
            'revoked': self.revoked,
            'revoked_at': self.revoked_at.isoformat() if self.revoked_at else None,
            'revoked_by': self.revoked_by,
        }


@dataclass
class Elevation:
    """A bounded-duration grant of additional capabilities to a single principal."""
    principal_id: str
    scope: FrozenSet[Capability]
    context_id: str
    expires_at: datetime
    id: str = field(default_factory=lambda: generate_id("elv_"))
    created_at: datetime = field(default_factory=get_current_time)
    granted_by: Optional[str] = None
    reason: Optional[str] = None
    clamped: bool = False
    revoked: bool = False
    revoked_at: Optional[datetime] = None
    revoked_by: Optional[str] = None

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at

    def is_active(self, now: datetime) -> bool:
        return not self.revoked and not self.is_expired(now)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            'id': self.id,
            'principal_id': self.principal_id,
            'scope': sorted(str(c) for c in self.scope),
            'context_id': self.context_id,
            'created_at': self.created_at.isoformat(),
            'expires_at': self.expires_at.isoformat(),
            'granted_by': self.granted_by,
            'reason': self.reason,
            'clamped': self.clamped,
            'revoked': self.revoked,
            'revoked_at': self.revoked_at.isoformat() if self.revoked_at else None,
            'revoked_by': self.revoked_by,
        }


@dataclass
class DecisionCacheEntry:
    """A memoized allow/deny outcome for one decision fingerprint."""
    fingerprint: str
    allowed: bool
    reason_code: ReasonCode
    computed_at: float
    ttl: float

    def is_fresh(self, now: float) -> bool:
        return now < self.computed_at + self.ttl

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            'fingerprint': self.fingerprint,
            'allowed': self.allowed,
            'reason_code': self.reason_code.value,
            'computed_at': self.computed_at,
            'ttl': self.ttl,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'DecisionCacheEntry':
        """Create from dictionary representation."""
        return cls(
            fingerprint=data['fingerprint'],
            allowed=bool(data['allowed']),
            reason_code=ReasonCode(data['reason_code']),
            computed_at=float(data['computed_at']),
            ttl=float(data['ttl']),
        )


@dataclass
class AuditEvent:
    """
    Append-only record of a security-relevant decision or state change.

    ``details`` holds the plaintext payload only until the ledger seals the
    event; the sealed form carries ``payload`` (encrypted when required) and
    never the plaintext.
    """
    event_type: AuditEventType
    principal: Optional[str]
    reason_code: ReasonCode
    action: Optional[str] = None
    resource: Optional[str] = None
    context: Optional[str] = None
    decision: Optional[str] = None
    event_id: str = field(default_factory=lambda: generate_id("evt_"))
    timestamp: datetime = field(default_factory=get_current_time)
    severity: AuditSeverity = AuditSeverity.MEDIUM
    requires_review: bool = False
    retain_until: Optional[datetime] = None
    payload: Optional[str] = None
    encrypted: bool = False
    details: Dict[str, Any] = field(default_factory=dict, repr=False)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the persisted dictionary form (plaintext details excluded)."""
        return {
            'event_id': self.event_id,
            'event_type': self.event_type.value,
            'timestamp': self.timestamp.isoformat(),
            'principal': self.principal,
            'action': self.action,
            'resource': self.resource,
            'context': self.context,
            'decision': self.decision,
            'reason_code': self.reason_code.value,
            'severity': self.severity.value,
            'requires_review': self.requires_review,
            'retain_until': self.retain_until.isoformat() if self.retain_until else None,
            'payload': self.payload,
            'encrypted': self.encrypted,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'AuditEvent':
        """Create from the persisted dictionary form."""
        return cls(
            event_id=data['event_id'],
            event_type=AuditEventType(data['event_type']),
            timestamp=parse_iso_timestamp(data['timestamp']),
            principal=data.get('principal'),
            action=data.get('action'),
            resource=data.get('resource'),
            context=data.get('context'),
            decision=data.get('decision'),
            reason_code=ReasonCode(data['reason_code']),
            severity=AuditSeverity(data.get('severity', AuditSeverity.MEDIUM.value)),
            requires_review=bool(data.get('requires_review', False)),
            retain_until=parse_iso_timestamp(data.get('retain_until')),
            payload=data.get('payload'),
            encrypted=bool(data.get('encrypted', False)),
        )


@dataclass
class Decision:
    """Answer to "may principal P perform action A on resource R in context C"."""
    allowed: bool
    reason_code: ReasonCode
    principal_id: str
    action: str
    resource: str
    context_id: str
    fingerprint: Optional[str] = None
    event_id: Optional[str] = None
    cached: bool = False
    decided_at: datetime = field(default_factory=get_current_time)

    @property
    def denied_by_policy(self) -> bool:
        return not self.allowed and not self.reason_code.is_infrastructure

    @property
    def denied_by_infrastructure(self) -> bool:
        return not self.allowed and self.reason_code.is_infrastructure

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            'allowed': self.allowed,
            'reason_code': self.reason_code.value,
            'principal_id': self.principal_id,
            'action': self.action,
            'resource': self.resource,
            'context_id': self.context_id,
            'fingerprint': self.fingerprint,
            'event_id': self.event_id,
            'cached': self.cached,
            'decided_at': self.decided_at.isoformat(),
        }


@dataclass(frozen=True)
class IdentityClaims:
    """What the identity provider resolved an external token into."""
    principal_id: str
    domain: str
    provider: str = "unknown"
    attributes: Dict[str, str] = field(default_factory=dict, compare=False, hash=False)

    def __post_init__(self):
        # Compared against stored principal domains, which are lowercased
        object.__setattr__(self, "domain", self.domain.strip().lower())
