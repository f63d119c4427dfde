"""
Tests for configuration loading and validation.
"""

from datetime import timedelta

import pytest

from ctxauth.core.config import AuditConfig, Config, FeatureFlags, RateLimitConfig
from ctxauth.errors import ConfigurationError
from ctxauth.types import RateLimitCategory
from ctxauth.util.config import get_bool_config, get_list_config, parse_duration_string


class TestDefaults:
    """Absent settings fall back to the restrictive choice"""

    def test_features_default_off(self):
        flags = FeatureFlags()
        assert not flags.inheritance
        assert not flags.context_switching
        assert not flags.delegation
        assert not flags.elevation
        assert flags.comprehensive_audit

    def test_defaults(self):
        config = Config()
        assert config.cache_ttl == timedelta(seconds=60)
        assert config.context_validation_timeout == timedelta(seconds=5)
        assert config.max_delegation_duration == timedelta(hours=24)
        assert config.max_elevation_duration == timedelta(hours=4)
        assert config.audit.encryption_required
        assert config.audit.retention_period == timedelta(days=365)
        assert config.rate_limit_for(RateLimitCategory.CONTEXT_SWITCH).max_requests == 100
        assert config.rate_limit_for(RateLimitCategory.DELEGATION_GRANT).max_requests == 20
        assert config.rate_limit_for(RateLimitCategory.IDENTITY_FEDERATION).max_requests == 1000

    def test_partial_rate_limits_keep_other_defaults(self):
        config = Config(rate_limits={RateLimitCategory.DELEGATION_GRANT: RateLimitConfig(5)})
        assert config.rate_limit_for(RateLimitCategory.DELEGATION_GRANT).max_requests == 5
        assert config.rate_limit_for(RateLimitCategory.CONTEXT_SWITCH).max_requests == 100


class TestFromEnv:
    """Environment variable loading"""

    def test_reads_documented_keys(self, monkeypatch):
        monkeypatch.setenv("PERMISSION_CACHE_TTL", "30")
        monkeypatch.setenv("CONTEXT_VALIDATION_TIMEOUT", "250")
        monkeypatch.setenv("DELEGATION_MAX_DURATION", "3600000")
        monkeypatch.setenv("AUDIT_RETENTION_PERIOD", "86400000")
        monkeypatch.setenv("CONTEXT_SWITCH_RATE_LIMIT", "10")
        monkeypatch.setenv("RATE_LIMIT_WINDOW", "30")
        monkeypatch.setenv("ENABLE_PERMISSION_DELEGATION", "true")
        monkeypatch.setenv("REQUIRE_AUDIT_ENCRYPTION", "false")
        monkeypatch.setenv("AUDIT_ENCRYPTION_ALGORITHM", "fernet")
        monkeypatch.setenv("NON_DELEGATABLE_CAPABILITIES", "admin:*, delete:ledger")

        config = Config.from_env()

        assert config.cache_ttl == timedelta(seconds=30)
        assert config.context_validation_timeout == timedelta(milliseconds=250)
        assert config.max_delegation_duration == timedelta(hours=1)
        assert config.audit.retention_period == timedelta(days=1)
        limit = config.rate_limit_for(RateLimitCategory.CONTEXT_SWITCH)
        assert limit.max_requests == 10
        assert limit.time_window == timedelta(seconds=30)
        assert config.features.delegation
        assert not config.features.elevation
        assert not config.audit.encryption_required
        assert config.audit.encryption_algorithm == "FERNET"
        assert config.non_delegatable == ["admin:*", "delete:ledger"]
        assert config.validate()

    def test_prefix(self, monkeypatch):
        monkeypatch.setenv("CTX_ENABLE_TEMPORARY_ELEVATION", "yes")
        monkeypatch.setenv("CTX_AUDIT_ENCRYPTION_KEY", "k")
        config = Config.from_env(env_prefix="CTX_")
        assert config.features.elevation
        assert config.audit.encryption_key == "k"

    def test_unparseable_values_fall_back_to_default(self, monkeypatch):
        monkeypatch.setenv("PERMISSION_CACHE_TTL", "soon")
        assert Config.from_env().cache_ttl == timedelta(seconds=60)

    def test_misspelled_flags_keep_restrictive_defaults(self, monkeypatch):
        monkeypatch.setenv("REQUIRE_AUDIT_ENCRYPTION", "ture")
        monkeypatch.setenv("ENABLE_COMPREHENSIVE_AUDIT", "nope")
        monkeypatch.setenv("ENABLE_PERMISSION_DELEGATION", "enabled")

        config = Config.from_env()

        assert config.audit.encryption_required
        assert config.features.comprehensive_audit
        assert not config.features.delegation

    def test_false_words(self, monkeypatch):
        for word in ("false", "0", "No", "OFF"):
            monkeypatch.setenv("REQUIRE_AUDIT_ENCRYPTION", word)
            assert not Config.from_env().audit.encryption_required

    def test_helpers(self, monkeypatch):
        monkeypatch.setenv("FLAG", "On")
        monkeypatch.setenv("ITEMS", "a, b,,c")
        assert get_bool_config("FLAG")
        assert get_list_config("ITEMS") == ["a", "b", "c"]
        assert get_list_config("MISSING_ITEMS") == []


class TestFromFile:
    """Dictionary and file loading"""

    def test_from_dict_durations(self):
        config = Config.from_dict({
            "cache_ttl": "2m",
            "context_validation_timeout": 100,
            "max_elevation_duration": "1h",
            "features": {"context_switching": True},
            "audit": {"encryption_key": "secret", "write_timeout": "1s"},
            "rate_limits": {"delegation_grant": {"max_requests": 3, "time_window": "10s"}},
        })
        assert config.cache_ttl == timedelta(minutes=2)
        assert config.context_validation_timeout == timedelta(milliseconds=100)
        assert config.max_elevation_duration == timedelta(hours=1)
        assert config.features.context_switching
        assert config.audit.write_timeout == timedelta(seconds=1)

    def test_from_dict_string_flags(self):
        config = Config.from_dict({
            "features": {"delegation": "false", "elevation": "yes", "comprehensive_audit": "sometimes"},
            "audit": {"encryption_required": "off", "encryption_key": "secret"},
        })
        assert not config.features.delegation
        assert config.features.elevation
        assert config.features.comprehensive_audit
        assert not config.audit.encryption_required
        limit = config.rate_limit_for(RateLimitCategory.DELEGATION_GRANT)
        assert (limit.max_requests, limit.time_window) == (3, timedelta(seconds=10))

    def test_from_yaml_file(self, tmp_path):
        path = tmp_path / "ctxauth.yaml"
        path.write_text(
            "cache_ttl: 15\n"
            "features:\n"
            "  inheritance: true\n"
            "audit:\n"
            "  encryption_key: from-file\n"
        )
        config = Config.from_file(str(path))
        assert config.cache_ttl == timedelta(seconds=15)
        assert config.features.inheritance
        assert config.audit.encryption_key == "from-file"

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            Config.from_file(str(tmp_path / "absent.yaml"))

    def test_unsupported_extension(self, tmp_path):
        path = tmp_path / "ctxauth.ini"
        path.write_text("[ctxauth]\n")
        with pytest.raises(ValueError):
            Config.from_file(str(path))

    @pytest.mark.parametrize("text,expected", [
        ("500ms", timedelta(milliseconds=500)),
        ("30s", timedelta(seconds=30)),
        ("5m", timedelta(minutes=5)),
        ("2h", timedelta(hours=2)),
        ("1d", timedelta(days=1)),
    ])
    def test_parse_duration_string(self, text, expected):
        assert parse_duration_string(text) == expected

    def test_parse_duration_string_rejects_garbage(self):
        with pytest.raises(ValueError):
            parse_duration_string("forever")


class TestValidate:
    """Configuration validation"""

    def test_missing_key_when_encryption_required(self):
        with pytest.raises(ConfigurationError):
            Config().validate()

    def test_plaintext_allowed_when_not_required(self):
        assert Config(audit=AuditConfig(encryption_required=False)).validate()

    @pytest.mark.parametrize("field,value", [
        ("cache_ttl", timedelta(0)),
        ("context_validation_timeout", timedelta(seconds=-1)),
        ("max_delegation_duration", timedelta(0)),
        ("max_active_delegations", 0),
    ])
    def test_non_positive_values_rejected(self, field, value):
        config = Config(audit=AuditConfig(encryption_key="k"))
        setattr(config, field, value)
        with pytest.raises(ConfigurationError):
            config.validate()

    def test_unknown_algorithm_rejected(self):
        config = Config(audit=AuditConfig(encryption_key="k", encryption_algorithm="DES"))
        with pytest.raises(ConfigurationError):
            config.validate()

    def test_zero_rate_limit_rejected(self):
        config = Config(
            audit=AuditConfig(encryption_key="k"),
            rate_limits={RateLimitCategory.CONTEXT_SWITCH: RateLimitConfig(0)},
        )
        with pytest.raises(ConfigurationError):
            config.validate()
