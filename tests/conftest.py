"""
Shared fixtures for ctxauth tests.
"""

from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio

from ctxauth import Config, CtxAuth
from ctxauth.audit import MemoryAuditSink
from ctxauth.core.config import AuditConfig, FeatureFlags
from ctxauth.types import AuditEventType, CorporateContext, PermissionNode, Principal, parse_capabilities


TEST_AUDIT_KEY = "test-audit-passphrase"


class FakeClock:
    """Controllable clock; starts at a fixed UTC instant."""

    def __init__(self, start: datetime = datetime(2025, 1, 1, tzinfo=timezone.utc)):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, delta: timedelta) -> None:
        self.now += delta


class FailingAuditSink(MemoryAuditSink):
    """Memory sink that rejects writes while ``failing`` is set."""

    def __init__(self, failing: bool = True):
        super().__init__()
        self.failing = failing
        self.attempts = 0

    async def write(self, event) -> None:
        self.attempts += 1
        if self.failing:
            raise IOError("audit backend unavailable")
        await super().write(event)


def make_config(**overrides) -> Config:
    """Config with every feature on and fast audit retries."""
    config = Config(
        features=FeatureFlags(
            inheritance=True,
            context_switching=True,
            delegation=True,
            elevation=True,
        ),
        audit=AuditConfig(
            encryption_key=TEST_AUDIT_KEY,
            retry_attempts=3,
            retry_initial_delay=timedelta(milliseconds=1),
            retry_max_delay=timedelta(milliseconds=5),
        ),
    )
    for key, value in overrides.items():
        setattr(config, key, value)
    return config


def standard_roles():
    return [
        PermissionNode("viewer", parse_capabilities(["read:report"])),
        PermissionNode("editor", parse_capabilities(["write:report"]), frozenset({"viewer"})),
        PermissionNode("admin", parse_capabilities(["admin:*"]), frozenset({"editor"})),
    ]


def standard_tenants():
    return [
        CorporateContext("contextA", "Company A", frozenset({"company.com"}),
                         sso_enabled=True, inheritance_enabled=True),
        CorporateContext("contextB", "Company B", frozenset({"company.com"})),
        CorporateContext("partner", "Partner Corp", frozenset({"partner.org"}), sso_enabled=True),
    ]


def standard_principals():
    return [
        Principal("alice", "company.com", {"viewer"}),
        Principal("bob", "company.com", {"editor"}),
        Principal("carol", "company.com"),
        Principal("dave", "partner.org", {"viewer"}),
    ]


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def config():
    return make_config()


@pytest.fixture
def audit_sink():
    return MemoryAuditSink()


def events_of(sink: MemoryAuditSink, event_type: AuditEventType):
    return [e for e in sink.events if e.event_type == event_type]


@pytest_asyncio.fixture
async def engine_factory(clock):
    """Build engines over the standard roles, tenants and principals; closed on teardown."""
    created = []

    async def factory(config=None, audit_sink=None, **kwargs):
        instance = await CtxAuth.new(
            config or make_config(),
            roles=standard_roles(),
            tenants=standard_tenants(),
            principals=standard_principals(),
            clock=clock,
            audit_sink=audit_sink if audit_sink is not None else MemoryAuditSink(),
            **kwargs
        )
        created.append(instance)
        return instance

    yield factory
    for instance in created:
        await instance.close()


@pytest_asyncio.fixture
async def engine(engine_factory, config, audit_sink):
    return await engine_factory(config, audit_sink)
