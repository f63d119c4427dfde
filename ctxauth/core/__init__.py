"""
Core configuration for ctxauth.

The ``CtxAuth`` facade lives in ``ctxauth.core.engine`` and is exported from
the top-level package.
"""

from .config import (
    Config,
    FeatureFlags,
    AuditConfig,
    RateLimitConfig,
    SUPPORTED_AUDIT_ALGORITHMS,
)

__all__ = [
    "Config",
    "FeatureFlags",
    "AuditConfig",
    "RateLimitConfig",
    "SUPPORTED_AUDIT_ALGORITHMS",
]
