"""
Structured error handling for the ctxauth engine.

Every error carries an ``ErrorCode`` for programmatic handling, the
component it came from, a severity, and the ``ReasonCode`` that is written
into the audit trail. None of these are swallowed inside the engine; they
propagate to the facade's caller as typed results.
"""

from enum import Enum
from datetime import datetime
from typing import Dict, Any, Optional, Iterable, List
from dataclasses import dataclass

from ..types.codes import ReasonCode, RateLimitCategory


class ErrorCode(Enum):
    """Structured error codes."""

    # Identity
    UNRESOLVED_PRINCIPAL = "unresolved_principal"

    # Configuration
    CONFIGURATION_ERROR = "configuration_error"
    UNKNOWN_ROLE = "unknown_role"
    CYCLIC_ROLE_GRAPH = "cyclic_role_graph"
    FEATURE_DISABLED = "feature_disabled"

    # Context switching
    CONTEXT_VALIDATION_TIMEOUT = "context_validation_timeout"
    CONTEXT_SWITCH_REJECTED = "context_switch_rejected"
    SESSION_NOT_ACTIVE = "session_not_active"

    # Grants
    INSUFFICIENT_SCOPE = "insufficient_scope"
    GRANT_NOT_FOUND = "grant_not_found"
    DELEGATION_LIMIT = "delegation_limit"
    REVOCATION_DENIED = "revocation_denied"

    # Rate limiting
    RATE_LIMIT_EXCEEDED = "rate_limit_exceeded"

    # Audit
    AUDIT_WRITE_FAILURE = "audit_write_failure"

    # Validation
    INVALID_PARAMETER = "invalid_parameter"


class ErrorSource(Enum):
    """Components where errors can originate."""

    IDENTITY = "identity"
    CONFIGURATION = "configuration"
    PERMISSION_GRAPH = "permission_graph"
    CONTEXT_MANAGER = "context_manager"
    DELEGATION = "delegation"
    ELEVATION = "elevation"
    RATE_LIMITER = "rate_limiter"
    AUDIT_LEDGER = "audit_ledger"
    VALIDATION = "validation"


class ErrorSeverity(Enum):
    """Error severity levels."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


@dataclass
class ErrorContext:
    """Additional context for errors."""

    principal_id: Optional[str] = None
    context_id: Optional[str] = None
    session_id: Optional[str] = None
    timestamp: datetime = None
    metadata: Dict[str, Any] = None

    def __post_init__(self):
        if self.timestamp is None:
            self.timestamp = datetime.now()
        if self.metadata is None:
            self.metadata = {}


class CtxAuthError(Exception):
    """
    Base exception class for all ctxauth errors.

    Provides structured error information with error codes, sources,
    severity levels, the audit reason code and additional context.
    """

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        reason_code: ReasonCode = ReasonCode.INVALID_REQUEST,
        source: ErrorSource = ErrorSource.VALIDATION,
        severity: ErrorSeverity = ErrorSeverity.MEDIUM,
        context: Optional[ErrorContext] = None,
        cause: Optional[Exception] = None
    ):
        self.code = code
        self.message = message
        self.reason_code = reason_code
        self.source = source
        self.severity = severity
        self.context = context or ErrorContext()
        self.cause = cause

        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert error to dictionary representation."""
        result = {
            "error": self.code.value,
            "error_description": self.message,
            "reason_code": self.reason_code.value,
            "error_source": self.source.value,
            "error_severity": self.severity.value,
            "infrastructure": self.reason_code.is_infrastructure,
            "timestamp": self.context.timestamp.isoformat(),
        }

        if self.context.principal_id:
            result["principal_id"] = self.context.principal_id

        if self.context.context_id:
            result["context_id"] = self.context.context_id

        if self.context.metadata:
            result["metadata"] = self.context.metadata

        if self.cause:
            result["caused_by"] = str(self.cause)

        return result

    def is_retryable(self) -> bool:
        """Check if this error might be resolved by retrying."""
        return self.code in [
            ErrorCode.RATE_LIMIT_EXCEEDED,
            ErrorCode.CONTEXT_VALIDATION_TIMEOUT,
            ErrorCode.AUDIT_WRITE_FAILURE,
        ]


class AuthenticationError(CtxAuthError):
    """The principal could not be resolved. Recovery belongs to the caller."""

    def __init__(self, message: str, **kwargs):
        kwargs.setdefault("reason_code", ReasonCode.IDENTITY_REJECTED)
        super().__init__(
            code=ErrorCode.UNRESOLVED_PRINCIPAL,
            message=message,
            source=ErrorSource.IDENTITY,
            **kwargs
        )


class ConfigurationError(CtxAuthError):
    """Fatal configuration fault; never a permission denial."""

    def __init__(self, message: str, code: ErrorCode = ErrorCode.CONFIGURATION_ERROR, **kwargs):
        kwargs.setdefault("source", ErrorSource.CONFIGURATION)
        kwargs.setdefault("severity", ErrorSeverity.HIGH)
        super().__init__(
            code=code,
            message=message,
            reason_code=ReasonCode.CONFIGURATION_FAULT,
            **kwargs
        )


class UnknownRoleError(ConfigurationError):
    """A role reference does not resolve to a known role."""

    def __init__(self, role_id: str, message: Optional[str] = None, **kwargs):
        self.role_id = role_id
        super().__init__(
            message or f"Unknown role: {role_id}",
            code=ErrorCode.UNKNOWN_ROLE,
            source=ErrorSource.PERMISSION_GRAPH,
            **kwargs
        )


class CyclicRoleGraphError(ConfigurationError):
    """The role inheritance graph contains one or more cycles."""

    def __init__(self, cycles: Iterable[List[str]], **kwargs):
        self.cycles = [list(c) for c in cycles]
        rendered = "; ".join(" -> ".join(c + c[:1]) for c in self.cycles)
        super().__init__(
            f"Cyclic role inheritance: {rendered}",
            code=ErrorCode.CYCLIC_ROLE_GRAPH,
            source=ErrorSource.PERMISSION_GRAPH,
            severity=ErrorSeverity.CRITICAL,
            **kwargs
        )


class FeatureDisabledError(CtxAuthError):
    """The requested operation is switched off by a feature flag."""

    def __init__(self, feature: str, **kwargs):
        self.feature = feature
        super().__init__(
            code=ErrorCode.FEATURE_DISABLED,
            message=f"Feature disabled: {feature}",
            reason_code=ReasonCode.FEATURE_DISABLED,
            source=ErrorSource.CONFIGURATION,
            **kwargs
        )


class ContextValidationTimeout(CtxAuthError):
    """Context validation did not complete within the configured timeout."""

    def __init__(self, message: str = "Context validation timed out", **kwargs):
        super().__init__(
            code=ErrorCode.CONTEXT_VALIDATION_TIMEOUT,
            message=message,
            reason_code=ReasonCode.CONTEXT_VALIDATION_TIMEOUT,
            source=ErrorSource.CONTEXT_MANAGER,
            **kwargs
        )


class ContextSwitchRejected(CtxAuthError):
    """A context switch or session start failed validation."""

    def __init__(self, message: str, reason_code: ReasonCode = ReasonCode.CONTEXT_SWITCH_REJECTED,
                 code: ErrorCode = ErrorCode.CONTEXT_SWITCH_REJECTED, **kwargs):
        super().__init__(
            code=code,
            message=message,
            reason_code=reason_code,
            source=ErrorSource.CONTEXT_MANAGER,
            **kwargs
        )


class SessionNotActiveError(ContextSwitchRejected):
    """The session is unknown or has ended; no further switches are possible."""

    def __init__(self, session_id: str, **kwargs):
        self.session_id = session_id
        super().__init__(
            f"Session not active: {session_id}",
            reason_code=ReasonCode.SESSION_NOT_ACTIVE,
            code=ErrorCode.SESSION_NOT_ACTIVE,
            **kwargs
        )


class InsufficientScopeError(CtxAuthError):
    """A delegation asked for capabilities the grantor cannot give."""

    def __init__(self, message: str, missing: Iterable[Any] = (),
                 reason_code: ReasonCode = ReasonCode.INSUFFICIENT_SCOPE, **kwargs):
        self.missing = sorted(str(m) for m in missing)
        super().__init__(
            code=ErrorCode.INSUFFICIENT_SCOPE,
            message=message,
            reason_code=reason_code,
            source=ErrorSource.DELEGATION,
            **kwargs
        )


class GrantNotFoundError(CtxAuthError):
    """No delegation or elevation exists with the given identifier."""

    def __init__(self, grant_id: str, **kwargs):
        self.grant_id = grant_id
        kwargs.setdefault("source", ErrorSource.DELEGATION)
        super().__init__(
            code=ErrorCode.GRANT_NOT_FOUND,
            message=f"Grant not found: {grant_id}",
            reason_code=ReasonCode.GRANT_NOT_FOUND,
            **kwargs
        )


class RevocationDeniedError(CtxAuthError):
    """The caller is neither the grant's issuer nor an administrator of its context."""

    def __init__(self, grant_id: str, revoked_by: str, **kwargs):
        self.grant_id = grant_id
        self.revoked_by = revoked_by
        kwargs.setdefault("source", ErrorSource.DELEGATION)
        super().__init__(
            code=ErrorCode.REVOCATION_DENIED,
            message=f"{revoked_by} may not revoke grant {grant_id}",
            reason_code=ReasonCode.REVOCATION_DENIED,
            **kwargs
        )


class DelegationLimitError(CtxAuthError):
    """The grantor already holds the maximum number of active delegations."""

    def __init__(self, grantor_id: str, limit: int, **kwargs):
        self.limit = limit
        super().__init__(
            code=ErrorCode.DELEGATION_LIMIT,
            message=f"Maximum active delegations ({limit}) reached for {grantor_id}",
            reason_code=ReasonCode.DELEGATION_LIMIT,
            source=ErrorSource.DELEGATION,
            **kwargs
        )


class RateLimitExceeded(CtxAuthError):
    """A per-principal token bucket is empty."""

    def __init__(self, category: RateLimitCategory, retry_after: Optional[float] = None,
                 message: Optional[str] = None, **kwargs):
        self.category = category
        self.retry_after = retry_after
        super().__init__(
            code=ErrorCode.RATE_LIMIT_EXCEEDED,
            message=message or f"Rate limit exceeded for {category.value}",
            reason_code=ReasonCode.RATE_LIMITED,
            source=ErrorSource.RATE_LIMITER,
            **kwargs
        )


class AuditWriteFailure(CtxAuthError):
    """A required audit write did not become durable."""

    def __init__(self, message: str, event_id: Optional[str] = None, **kwargs):
        self.event_id = event_id
        super().__init__(
            code=ErrorCode.AUDIT_WRITE_FAILURE,
            message=message,
            reason_code=ReasonCode.DENIED_AUDIT_FAILURE,
            source=ErrorSource.AUDIT_LEDGER,
            severity=ErrorSeverity.CRITICAL,
            **kwargs
        )


class ValidationError(CtxAuthError):
    """Errors related to input validation."""

    def __init__(self, message: str, field: Optional[str] = None, **kwargs):
        context = kwargs.pop("context", ErrorContext())
        if field:
            context.metadata["field"] = field

        super().__init__(
            code=ErrorCode.INVALID_PARAMETER,
            message=message,
            reason_code=ReasonCode.INVALID_REQUEST,
            source=ErrorSource.VALIDATION,
            context=context,
            **kwargs
        )


__all__ = [
    "ErrorCode",
    "ErrorSource",
    "ErrorSeverity",
    "ErrorContext",
    "CtxAuthError",
    "AuthenticationError",
    "ConfigurationError",
    "UnknownRoleError",
    "CyclicRoleGraphError",
    "FeatureDisabledError",
    "ContextValidationTimeout",
    "ContextSwitchRejected",
    "SessionNotActiveError",
    "InsufficientScopeError",
    "GrantNotFoundError",
    "RevocationDeniedError",
    "DelegationLimitError",
    "RateLimitExceeded",
    "AuditWriteFailure",
    "ValidationError",
]
