# Copyright (c) 2025 Gimel Foundation and the persons identified as the document authors.
# All rights reserved. This file is subject to the Gimel Foundation's Legal Provisions Relating to GiFo Documents.
# See http://GimelFoundation.com or https://github.com/Gimel-Foundation for details.
# Code Components extracted from GiFo-RfC 0111 must include this license text and are provided without warranty.

"""
Package types provides the shared data model for the ctxauth engine.

This package contains the types used across components:
- Closed enumerations (capability kinds, reason codes, audit event types)
- Principals, tenant contexts and role nodes
- Delegation and elevation grants
- Decisions, cache entries and audit events
"""

from .codes import (
    CapabilityKind,
    SessionState,
    RateLimitCategory,
    AuditSeverity,
    AuditEventType,
    ReasonCode,
)

from .models import (
    WILDCARD_RESOURCE,
    Capability,
    parse_capabilities,
    covers_all,
    uncovered,
    Principal,
    CorporateContext,
    PermissionNode,
    ActiveContext,
    Delegation,
    Elevation,
    DecisionCacheEntry,
    AuditEvent,
    Decision,
    IdentityClaims,
)

__all__ = [
    # Enumerations
    'CapabilityKind',
    'SessionState',
    'RateLimitCategory',
    'AuditSeverity',
    'AuditEventType',
    'ReasonCode',

    # Capabilities
    'WILDCARD_RESOURCE',
    'Capability',
    'parse_capabilities',
    'covers_all',
    'uncovered',

    # Records
    'Principal',
    'CorporateContext',
    'PermissionNode',
    'ActiveContext',
    'Delegation',
    'Elevation',
    'DecisionCacheEntry',
    'AuditEvent',
    'Decision',
    'IdentityClaims',
]
