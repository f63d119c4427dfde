"""
Configuration module for the ctxauth engine.

Copyright (c) 2025 Gimel Foundation and the persons identified as the document authors.
All rights reserved. This file is subject to the Gimel Foundation's Legal Provisions Relating to GiFo Documents.
See http://GimelFoundation.com or https://github.com/Gimel-Foundation for details.
Code Components extracted from GiFo-RfC 0111 must include this license text and are provided without warranty.

A single Config tree is built once and handed to every component. Absent
settings fall back to the more restrictive choice: features off, audit
encryption required, comprehensive audit on.
"""

from datetime import timedelta
from typing import Any, Dict, List, Optional, Union
from dataclasses import dataclass, field

from ..errors import ConfigurationError
from ..types.codes import RateLimitCategory
from ..util.config import (
    get_bool_config,
    get_config_value,
    get_int_config,
    get_list_config,
    get_millis_config,
    load_config_file,
    parse_bool,
    parse_duration_string,
)


SUPPORTED_AUDIT_ALGORITHMS = ("AES-256-GCM", "FERNET")


def _duration(value: Union[str, int, float, timedelta], unit: str = "s") -> timedelta:
    """Accept a timedelta, a duration string ('5m') or a bare number in ``unit``."""
    if isinstance(value, timedelta):
        return value
    if isinstance(value, str):
        return parse_duration_string(value)
    if unit == "ms":
        return timedelta(milliseconds=value)
    return timedelta(seconds=value)


@dataclass
class RateLimitConfig:
    """Token bucket settings for one rate-limit category."""
    max_requests: int = 100
    time_window: timedelta = field(default_factory=lambda: timedelta(minutes=1))


def _default_rate_limits() -> Dict[RateLimitCategory, RateLimitConfig]:
    return {
        RateLimitCategory.CONTEXT_SWITCH: RateLimitConfig(max_requests=100),
        RateLimitCategory.DELEGATION_GRANT: RateLimitConfig(max_requests=20),
        RateLimitCategory.IDENTITY_FEDERATION: RateLimitConfig(max_requests=1000),
    }


@dataclass
class FeatureFlags:
    """Feature switches; everything except comprehensive audit is off by default."""
    inheritance: bool = False
    context_switching: bool = False
    delegation: bool = False
    elevation: bool = False
    comprehensive_audit: bool = True


@dataclass
class AuditConfig:
    """Audit ledger settings"""
    encryption_required: bool = True
    encryption_algorithm: str = "AES-256-GCM"
    encryption_key: Optional[str] = None
    retention_period: timedelta = field(default_factory=lambda: timedelta(days=365))
    write_timeout: timedelta = field(default_factory=lambda: timedelta(seconds=5))
    retry_attempts: int = 5
    retry_initial_delay: timedelta = field(default_factory=lambda: timedelta(milliseconds=200))
    retry_max_delay: timedelta = field(default_factory=lambda: timedelta(seconds=30))


@dataclass
class Config:
    """Configuration for the authorization and delegation engine"""
    cache_ttl: timedelta = field(default_factory=lambda: timedelta(seconds=60))
    context_validation_timeout: timedelta = field(default_factory=lambda: timedelta(milliseconds=5000))
    max_delegation_duration: timedelta = field(default_factory=lambda: timedelta(hours=24))
    max_elevation_duration: timedelta = field(default_factory=lambda: timedelta(hours=4))
    max_active_delegations: int = 10
    non_delegatable: List[str] = field(default_factory=list)
    strict_role_graph: bool = False
    redis_url: Optional[str] = None
    metrics_enabled: bool = True
    features: FeatureFlags = field(default_factory=FeatureFlags)
    audit: AuditConfig = field(default_factory=AuditConfig)
    rate_limits: Dict[RateLimitCategory, RateLimitConfig] = field(default_factory=_default_rate_limits)

    def __post_init__(self):
        # Categories missing from a partial mapping keep their defaults
        merged = _default_rate_limits()
        merged.update(self.rate_limits or {})
        self.rate_limits = merged

    def rate_limit_for(self, category: RateLimitCategory) -> RateLimitConfig:
        return self.rate_limits[category]

    @classmethod
    def from_env(cls, env_prefix: str = "") -> "Config":
        """Create configuration from environment variables"""
        window = timedelta(seconds=get_int_config("RATE_LIMIT_WINDOW", 60, env_prefix))

        return cls(
            cache_ttl=timedelta(seconds=get_int_config("PERMISSION_CACHE_TTL", 60, env_prefix)),
            context_validation_timeout=get_millis_config(
                "CONTEXT_VALIDATION_TIMEOUT", timedelta(milliseconds=5000), env_prefix
            ),
            max_delegation_duration=get_millis_config(
                "DELEGATION_MAX_DURATION", timedelta(hours=24), env_prefix
            ),
            max_elevation_duration=get_millis_config(
                "ELEVATION_MAX_DURATION", timedelta(hours=4), env_prefix
            ),
            max_active_delegations=get_int_config("DELEGATION_MAX_ACTIVE", 10, env_prefix),
            non_delegatable=get_list_config("NON_DELEGATABLE_CAPABILITIES", [], env_prefix),
            strict_role_graph=get_bool_config("STRICT_ROLE_GRAPH", False, env_prefix),
            redis_url=get_config_value("REDIS_URL", None, env_prefix=env_prefix),
            metrics_enabled=get_bool_config("METRICS_ENABLED", True, env_prefix),
            features=FeatureFlags(
                inheritance=get_bool_config("ENABLE_PERMISSION_INHERITANCE", False, env_prefix),
                context_switching=get_bool_config("ENABLE_CONTEXT_SWITCHING", False, env_prefix),
                delegation=get_bool_config("ENABLE_PERMISSION_DELEGATION", False, env_prefix),
                elevation=get_bool_config("ENABLE_TEMPORARY_ELEVATION", False, env_prefix),
                comprehensive_audit=get_bool_config("ENABLE_COMPREHENSIVE_AUDIT", True, env_prefix),
            ),
            audit=AuditConfig(
                encryption_required=get_bool_config("REQUIRE_AUDIT_ENCRYPTION", True, env_prefix),
                encryption_algorithm=get_config_value(
                    "AUDIT_ENCRYPTION_ALGORITHM", "AES-256-GCM", env_prefix=env_prefix
                ).upper(),
                encryption_key=get_config_value("AUDIT_ENCRYPTION_KEY", None, env_prefix=env_prefix),
                retention_period=get_millis_config(
                    "AUDIT_RETENTION_PERIOD", timedelta(days=365), env_prefix
                ),
                write_timeout=get_millis_config(
                    "AUDIT_WRITE_TIMEOUT", timedelta(milliseconds=5000), env_prefix
                ),
                retry_attempts=get_int_config("AUDIT_RETRY_ATTEMPTS", 5, env_prefix),
            ),
            rate_limits={
                RateLimitCategory.CONTEXT_SWITCH: RateLimitConfig(
                    get_int_config("CONTEXT_SWITCH_RATE_LIMIT", 100, env_prefix), window
                ),
                RateLimitCategory.DELEGATION_GRANT: RateLimitConfig(
                    get_int_config("DELEGATION_RATE_LIMIT", 20, env_prefix), window
                ),
                RateLimitCategory.IDENTITY_FEDERATION: RateLimitConfig(
                    get_int_config("OAUTH_RATE_LIMIT", 1000, env_prefix), window
                ),
            },
        )

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Config":
        """
        Create configuration from a nested dictionary.

        Durations accept strings such as ``"30s"`` or bare numbers; bare
        numbers are seconds for ``cache_ttl`` and milliseconds everywhere
        else, matching the environment keys.
        """
        features = data.get("features", {})
        audit = data.get("audit", {})
        defaults = AuditConfig()

        rate_limits = {}
        for name, settings in (data.get("rate_limits") or {}).items():
            rate_limits[RateLimitCategory(name)] = RateLimitConfig(
                max_requests=int(settings.get("max_requests", 100)),
                time_window=_duration(settings.get("time_window", 60)),
            )

        return cls(
            cache_ttl=_duration(data.get("cache_ttl", 60)),
            context_validation_timeout=_duration(data.get("context_validation_timeout", 5000), "ms"),
            max_delegation_duration=_duration(data.get("max_delegation_duration", 86400000), "ms"),
            max_elevation_duration=_duration(data.get("max_elevation_duration", 14400000), "ms"),
            max_active_delegations=int(data.get("max_active_delegations", 10)),
            non_delegatable=list(data.get("non_delegatable", [])),
            strict_role_graph=parse_bool(data.get("strict_role_graph"), False),
            redis_url=data.get("redis_url"),
            metrics_enabled=parse_bool(data.get("metrics_enabled"), True),
            features=FeatureFlags(
                inheritance=parse_bool(features.get("inheritance"), False),
                context_switching=parse_bool(features.get("context_switching"), False),
                delegation=parse_bool(features.get("delegation"), False),
                elevation=parse_bool(features.get("elevation"), False),
                comprehensive_audit=parse_bool(features.get("comprehensive_audit"), True),
            ),
            audit=AuditConfig(
                encryption_required=parse_bool(audit.get("encryption_required"), True),
                encryption_algorithm=str(audit.get("encryption_algorithm", "AES-256-GCM")).upper(),
                encryption_key=audit.get("encryption_key"),
                retention_period=_duration(audit.get("retention_period", 31536000000), "ms"),
                write_timeout=_duration(audit.get("write_timeout", 5000), "ms"),
                retry_attempts=int(audit.get("retry_attempts", defaults.retry_attempts)),
            ),
            rate_limits=rate_limits,
        )

    @classmethod
    def from_file(cls, file_path: str) -> "Config":
        """Create configuration from a JSON or YAML file"""
        return cls.from_dict(load_config_file(file_path))

    def validate(self) -> bool:
        """Validate the configuration"""
        if self.cache_ttl.total_seconds() <= 0:
            raise ConfigurationError("cache_ttl must be positive")
        if self.context_validation_timeout.total_seconds() <= 0:
            raise ConfigurationError("context_validation_timeout must be positive")
        if self.max_delegation_duration.total_seconds() <= 0:
            raise ConfigurationError("max_delegation_duration must be positive")
        if self.max_elevation_duration.total_seconds() <= 0:
            raise ConfigurationError("max_elevation_duration must be positive")
        if self.max_active_delegations <= 0:
            raise ConfigurationError("max_active_delegations must be positive")
        if self.audit.retention_period.total_seconds() <= 0:
            raise ConfigurationError("audit retention_period must be positive")
        if self.audit.retry_attempts <= 0:
            raise ConfigurationError("audit retry_attempts must be positive")
        if self.audit.encryption_algorithm not in SUPPORTED_AUDIT_ALGORITHMS:
            raise ConfigurationError(
                f"Unsupported audit encryption algorithm: {self.audit.encryption_algorithm}"
            )
        if self.audit.encryption_required and not self.audit.encryption_key:
            raise ConfigurationError("Audit encryption is required but no encryption key is configured")
        for category, limit in self.rate_limits.items():
            if limit.max_requests <= 0 or limit.time_window.total_seconds() <= 0:
                raise ConfigurationError(f"Rate limit for {category.value} must be positive")
        return True
