"""
ctxauth: context-aware authorization and delegation engine.

Copyright (c) 2025 Gimel Foundation and the persons identified as the document authors.
All rights reserved. This file is subject to the Gimel Foundation's Legal Provisions Relating to GiFo Documents.
See http://GimelFoundation.com or https://github.com/Gimel-Foundation for details.
Code Components extracted from GiFo-RfC 0111 must include this license text and are provided without warranty.

Answers "may principal P perform action A on resource R in context C" from
role inheritance, time-bounded delegations and elevations, and writes every
decision and privileged change to an encrypted audit ledger before acting.
"""

__version__ = "0.1.0"
__author__ = "ctxauth contributors"

from .core.config import Config, FeatureFlags, AuditConfig, RateLimitConfig
from .core.engine import CtxAuth
from .errors import (
    CtxAuthError,
    AuthenticationError,
    ConfigurationError,
    UnknownRoleError,
    CyclicRoleGraphError,
    FeatureDisabledError,
    ContextValidationTimeout,
    ContextSwitchRejected,
    SessionNotActiveError,
    InsufficientScopeError,
    GrantNotFoundError,
    RevocationDeniedError,
    DelegationLimitError,
    RateLimitExceeded,
    AuditWriteFailure,
    ValidationError,
)
from .types import (
    Capability,
    CapabilityKind,
    Principal,
    CorporateContext,
    PermissionNode,
    ActiveContext,
    SessionState,
    Delegation,
    Elevation,
    Decision,
    AuditEvent,
    AuditEventType,
    ReasonCode,
    RateLimitCategory,
)

__all__ = [
    "__version__",
    "CtxAuth",
    "Config",
    "FeatureFlags",
    "AuditConfig",
    "RateLimitConfig",
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
    "Capability",
    "CapabilityKind",
    "Principal",
    "CorporateContext",
    "PermissionNode",
    "ActiveContext",
    "SessionState",
    "Delegation",
    "Elevation",
    "Decision",
    "AuditEvent",
    "AuditEventType",
    "ReasonCode",
    "RateLimitCategory",
]
