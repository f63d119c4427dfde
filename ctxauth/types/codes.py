"""
Enumerations shared by every ctxauth component.

Copyright (c) 2025 Gimel Foundation and the persons identified as the document authors.
All rights reserved. This file is subject to the Gimel Foundation's Legal Provisions Relating to GiFo Documents.
See http://GimelFoundation.com or https://github.com/Gimel-Foundation for details.
Code Components extracted from GiFo-RfC 0111 must include this license text and are provided without warranty.
"""

from enum import Enum


class CapabilityKind(str, Enum):
    """Closed set of capability kinds a role may grant."""
    READ = "read"
    WRITE = "write"
    CREATE = "create"
    DELETE = "delete"
    EXECUTE = "execute"
    APPROVE = "approve"
    MANAGE = "manage"
    ADMIN = "admin"

    def __str__(self) -> str:
        return self.value


class SessionState(str, Enum):
    """Lifecycle of a session's active context."""
    IDLE = "idle"
    CONTEXT_ACTIVE = "context_active"
    SWITCH_PENDING = "switch_pending"

    def __str__(self) -> str:
        return self.value


class RateLimitCategory(str, Enum):
    """Operations that are rate limited per principal."""
    CONTEXT_SWITCH = "context_switch"
    DELEGATION_GRANT = "delegation_grant"
    IDENTITY_FEDERATION = "identity_federation"

    def __str__(self) -> str:
        return self.value


class AuditSeverity(str, Enum):
    """Audit event severity levels."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    def __str__(self) -> str:
        return self.value


class AuditEventType(str, Enum):
    """Kinds of security-relevant events written to the audit ledger."""
    AUTHORIZATION_DECISION = "authorization_decision"
    SESSION_STARTED = "session_started"
    CONTEXT_SWITCHED = "context_switched"
    SESSION_ENDED = "session_ended"
    PERMISSION_DELEGATED = "permission_delegated"
    DELEGATION_REVOKED = "delegation_revoked"
    PERMISSION_ELEVATION = "permission_elevation"
    ELEVATION_REVOKED = "elevation_revoked"
    ROLES_ASSIGNED = "roles_assigned"
    IDENTITY_FEDERATED = "identity_federated"
    AUDIT_WRITE_FAILED = "audit_write_failed"

    def __str__(self) -> str:
        return self.value

    @property
    def severity(self) -> AuditSeverity:
        return _EVENT_SEVERITY.get(self, AuditSeverity.MEDIUM)

    @property
    def requires_review(self) -> bool:
        return self in _EVENTS_REQUIRING_REVIEW


_EVENT_SEVERITY = {
    AuditEventType.AUTHORIZATION_DECISION: AuditSeverity.LOW,
    AuditEventType.SESSION_STARTED: AuditSeverity.LOW,
    AuditEventType.CONTEXT_SWITCHED: AuditSeverity.LOW,
    AuditEventType.SESSION_ENDED: AuditSeverity.LOW,
    AuditEventType.PERMISSION_DELEGATED: AuditSeverity.MEDIUM,
    AuditEventType.DELEGATION_REVOKED: AuditSeverity.MEDIUM,
    AuditEventType.PERMISSION_ELEVATION: AuditSeverity.HIGH,
    AuditEventType.ELEVATION_REVOKED: AuditSeverity.MEDIUM,
    AuditEventType.ROLES_ASSIGNED: AuditSeverity.MEDIUM,
    AuditEventType.IDENTITY_FEDERATED: AuditSeverity.LOW,
    AuditEventType.AUDIT_WRITE_FAILED: AuditSeverity.CRITICAL,
}

_EVENTS_REQUIRING_REVIEW = frozenset({
    AuditEventType.PERMISSION_DELEGATED,
    AuditEventType.DELEGATION_REVOKED,
    AuditEventType.PERMISSION_ELEVATION,
    AuditEventType.ROLES_ASSIGNED,
    AuditEventType.AUDIT_WRITE_FAILED,
})


class ReasonCode(str, Enum):
    """
    Why a decision or mutation came out the way it did.

    Denials are split into policy outcomes and infrastructure outcomes,
    since operators respond to them differently.
    """
    # Decisions
    ALLOWED_BY_ROLE = "allowed_by_role"
    ALLOWED_BY_DELEGATION = "allowed_by_delegation"
    ALLOWED_BY_ELEVATION = "allowed_by_elevation"
    DENIED_NO_CAPABILITY = "denied_no_capability"
    DENIED_CONTEXT_INVALID = "denied_context_invalid"
    DENIED_SESSION_MISMATCH = "denied_session_mismatch"
    DENIED_AUDIT_FAILURE = "denied_audit_failure"
    CONFIGURATION_FAULT = "configuration_fault"

    # Sessions and context switching
    SESSION_STARTED = "session_started"
    SESSION_ENDED = "session_ended"
    SESSION_NOT_ACTIVE = "session_not_active"
    CONTEXT_SWITCHED = "context_switched"
    CONTEXT_SWITCH_REJECTED = "context_switch_rejected"
    CONTEXT_VALIDATION_TIMEOUT = "context_validation_timeout"
    RATE_LIMITED = "rate_limited"

    # Delegation and elevation
    DELEGATION_GRANTED = "delegation_granted"
    DELEGATION_GRANTED_CLAMPED = "delegation_granted_clamped"
    DELEGATION_REVOKED = "delegation_revoked"
    DELEGATION_ALREADY_INACTIVE = "delegation_already_inactive"
    INSUFFICIENT_SCOPE = "insufficient_scope"
    NON_DELEGATABLE = "non_delegatable"
    DELEGATION_LIMIT = "delegation_limit"
    ELEVATION_GRANTED = "elevation_granted"
    ELEVATION_GRANTED_CLAMPED = "elevation_granted_clamped"
    ELEVATION_REVOKED = "elevation_revoked"
    ELEVATION_ALREADY_INACTIVE = "elevation_already_inactive"
    GRANT_NOT_FOUND = "grant_not_found"
    REVOCATION_DENIED = "revocation_denied"

    # Identity and roles
    ROLES_ASSIGNED = "roles_assigned"
    IDENTITY_FEDERATED = "identity_federated"
    IDENTITY_REJECTED = "identity_rejected"

    # General
    FEATURE_DISABLED = "feature_disabled"
    INVALID_REQUEST = "invalid_request"
    AUDIT_WRITE_FAILED = "audit_write_failed"

    def __str__(self) -> str:
        return self.value

    @property
    def is_infrastructure(self) -> bool:
        """True when the outcome was caused by infrastructure, not policy."""
        return self in _INFRASTRUCTURE_REASONS

    @property
    def is_allow(self) -> bool:
        return self in _ALLOW_REASONS


_INFRASTRUCTURE_REASONS = frozenset({
    ReasonCode.DENIED_AUDIT_FAILURE,
    ReasonCode.CONFIGURATION_FAULT,
    ReasonCode.CONTEXT_VALIDATION_TIMEOUT,
    ReasonCode.AUDIT_WRITE_FAILED,
})

_ALLOW_REASONS = frozenset({
    ReasonCode.ALLOWED_BY_ROLE,
    ReasonCode.ALLOWED_BY_DELEGATION,
    ReasonCode.ALLOWED_BY_ELEVATION,
})
