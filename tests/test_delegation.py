"""
Tests for delegation and temporary elevation.
"""

import asyncio
from datetime import timedelta

import pytest

from conftest import FailingAuditSink, events_of, make_config
from ctxauth.core.config import FeatureFlags
from ctxauth.errors import (
    AuditWriteFailure,
    DelegationLimitError,
    FeatureDisabledError,
    GrantNotFoundError,
    InsufficientScopeError,
    RevocationDeniedError,
    ValidationError,
)
from ctxauth.delegation import clamp_duration, parse_scope
from ctxauth.types import AuditEventType, Capability, ReasonCode


class TestGrantHelpers:
    """Scope parsing and duration clamping"""

    def test_parse_scope_rejects_empty(self):
        with pytest.raises(ValidationError):
            parse_scope([])

    def test_parse_scope_rejects_malformed(self):
        with pytest.raises(ValidationError):
            parse_scope(["report"])

    def test_clamp(self, clock):
        now = clock()
        assert clamp_duration(now, timedelta(hours=1), timedelta(hours=4)) == (now + timedelta(hours=1), False)
        assert clamp_duration(now, timedelta(hours=9), timedelta(hours=4)) == (now + timedelta(hours=4), True)
        with pytest.raises(ValidationError):
            clamp_duration(now, timedelta(0), timedelta(hours=4))


class TestDelegation:
    """Delegating role capabilities between principals"""

    @pytest.mark.asyncio
    async def test_delegation_allows_until_expiry(self, engine, clock, audit_sink):
        delegation = await engine.delegate("bob", "carol", ["read:report"], timedelta(hours=1), "contextA")

        decision = await engine.authorize("carol", "read", "report", "contextA")
        assert decision.allowed
        assert decision.reason_code == ReasonCode.ALLOWED_BY_DELEGATION

        clock.advance(timedelta(hours=1))
        decision = await engine.authorize("carol", "read", "report", "contextA")
        assert not decision.allowed
        assert decision.reason_code == ReasonCode.DENIED_NO_CAPABILITY

        events = events_of(audit_sink, AuditEventType.PERMISSION_DELEGATED)
        assert len(events) == 1
        assert events[0].reason_code == ReasonCode.DELEGATION_GRANTED
        assert events[0].requires_review
        assert engine.ledger.decrypt_payload(events[0])["id"] == delegation.id

    @pytest.mark.asyncio
    async def test_delegation_is_bound_to_its_context(self, engine):
        await engine.delegate("bob", "carol", ["write:report"], timedelta(hours=1), "contextA")
        assert (await engine.authorize("carol", "write", "report", "contextA")).allowed
        assert not (await engine.authorize("carol", "write", "report", "contextB")).allowed

    @pytest.mark.asyncio
    async def test_scope_not_held_by_grantor(self, engine, audit_sink):
        with pytest.raises(InsufficientScopeError) as exc_info:
            await engine.delegate("alice", "carol", ["write:report"], timedelta(hours=1), "contextA")

        assert exc_info.value.missing == ["write:report"]
        assert exc_info.value.reason_code == ReasonCode.INSUFFICIENT_SCOPE
        assert await engine.delegations.list_by_grantor("alice") == []

        events = events_of(audit_sink, AuditEventType.PERMISSION_DELEGATED)
        assert [e.decision for e in events] == ["deny"]

    @pytest.mark.asyncio
    async def test_inherited_capability_only_in_inheriting_context(self, engine):
        await engine.delegate("bob", "carol", ["read:report"], timedelta(hours=1), "contextA")
        with pytest.raises(InsufficientScopeError):
            await engine.delegate("bob", "carol", ["read:report"], timedelta(hours=1), "contextB")

    @pytest.mark.asyncio
    async def test_delegated_capabilities_cannot_be_passed_on(self, engine):
        await engine.delegate("bob", "carol", ["write:report"], timedelta(hours=1), "contextA")
        with pytest.raises(InsufficientScopeError):
            await engine.delegate("carol", "alice", ["write:report"], timedelta(hours=1), "contextA")

    @pytest.mark.asyncio
    async def test_duration_clamped(self, engine, clock, audit_sink):
        delegation = await engine.delegate("bob", "carol", ["read:report"], timedelta(hours=48), "contextA")

        assert delegation.clamped
        assert delegation.expires_at == clock() + timedelta(hours=24)
        events = events_of(audit_sink, AuditEventType.PERMISSION_DELEGATED)
        assert events[0].reason_code == ReasonCode.DELEGATION_GRANTED_CLAMPED

    @pytest.mark.asyncio
    @pytest.mark.parametrize("duration", [timedelta(0), timedelta(seconds=-5)])
    async def test_non_positive_duration_rejected(self, engine, duration):
        with pytest.raises(ValidationError):
            await engine.delegate("bob", "carol", ["read:report"], duration, "contextA")

    @pytest.mark.asyncio
    async def test_self_delegation_rejected(self, engine):
        with pytest.raises(ValidationError):
            await engine.delegate("bob", "bob", ["read:report"], timedelta(hours=1), "contextA")

    @pytest.mark.asyncio
    async def test_grantee_outside_context_rejected(self, engine):
        with pytest.raises(ValidationError):
            await engine.delegate("bob", "dave", ["read:report"], timedelta(hours=1), "contextA")

    @pytest.mark.asyncio
    async def test_non_delegatable_capability(self, engine_factory):
        engine = await engine_factory(make_config(non_delegatable=["write:report"]))
        with pytest.raises(InsufficientScopeError) as exc_info:
            await engine.delegate("bob", "carol", ["write:report"], timedelta(hours=1), "contextA")
        assert exc_info.value.reason_code == ReasonCode.NON_DELEGATABLE

        await engine.delegate("bob", "carol", ["read:report"], timedelta(hours=1), "contextA")

    @pytest.mark.asyncio
    async def test_active_delegation_limit(self, engine_factory):
        engine = await engine_factory(make_config(max_active_delegations=2))
        first = await engine.delegate("bob", "carol", ["read:report"], timedelta(hours=1), "contextA")
        await engine.delegate("bob", "alice", ["write:report"], timedelta(hours=1), "contextA")

        with pytest.raises(DelegationLimitError):
            await engine.delegate("bob", "carol", ["write:report"], timedelta(hours=1), "contextA")

        await engine.revoke_delegation(first.id, revoked_by="bob")
        await engine.delegate("bob", "carol", ["write:report"], timedelta(hours=1), "contextA")

    @pytest.mark.asyncio
    async def test_concurrent_grants_respect_limit(self, engine_factory):
        engine = await engine_factory(make_config(max_active_delegations=2))
        results = await asyncio.gather(
            *[
                engine.delegate("bob", "carol", ["read:report"], timedelta(hours=1), "contextA")
                for _ in range(5)
            ],
            return_exceptions=True,
        )
        assert sum(1 for r in results if isinstance(r, DelegationLimitError)) == 3
        assert len(await engine.delegations.list_by_grantor("bob", active_only=True)) == 2

    @pytest.mark.asyncio
    async def test_failed_audit_leaves_no_delegation(self, engine_factory):
        sink = FailingAuditSink()
        engine = await engine_factory(make_config(max_active_delegations=1), audit_sink=sink)

        with pytest.raises(AuditWriteFailure):
            await engine.delegate("bob", "carol", ["read:report"], timedelta(hours=1), "contextA")
        assert await engine.delegations.list_by_grantor("bob") == []
        assert not (await engine.authorize("carol", "read", "report", "contextA")).allowed

        # The reserved slot was released
        sink.failing = False
        await engine.delegate("bob", "carol", ["read:report"], timedelta(hours=1), "contextA")

    @pytest.mark.asyncio
    async def test_requires_feature(self, engine_factory):
        engine = await engine_factory(make_config(features=FeatureFlags()))
        with pytest.raises(FeatureDisabledError):
            await engine.delegate("bob", "carol", ["read:report"], timedelta(hours=1), "contextA")


class TestRevocation:
    """Revoking delegations"""

    @pytest.mark.asyncio
    async def test_revocation_takes_effect_immediately(self, engine):
        delegation = await engine.delegate("bob", "carol", ["read:report"], timedelta(hours=1), "contextA")
        assert (await engine.authorize("carol", "read", "report", "contextA")).allowed

        revoked = await engine.revoke_delegation(delegation.id, revoked_by="bob")
        assert revoked.revoked
        assert revoked.revoked_by == "bob"
        assert not (await engine.authorize("carol", "read", "report", "contextA")).allowed

    @pytest.mark.asyncio
    async def test_revoke_is_idempotent(self, engine, audit_sink):
        delegation = await engine.delegate("bob", "carol", ["read:report"], timedelta(hours=1), "contextA")
        first = await engine.revoke_delegation(delegation.id, revoked_by="bob")
        second = await engine.revoke_delegation(delegation.id, revoked_by="bob")

        assert second.revoked_at == first.revoked_at
        assert second.revoked_by == "bob"
        reasons = [e.reason_code for e in events_of(audit_sink, AuditEventType.DELEGATION_REVOKED)]
        assert reasons == [ReasonCode.DELEGATION_REVOKED, ReasonCode.DELEGATION_ALREADY_INACTIVE]

    @pytest.mark.asyncio
    async def test_revoking_expired_delegation_succeeds(self, engine, clock):
        delegation = await engine.delegate("bob", "carol", ["read:report"], timedelta(minutes=5), "contextA")
        clock.advance(timedelta(minutes=10))

        result = await engine.revoke_delegation(delegation.id, revoked_by="bob")
        assert not result.revoked

    @pytest.mark.asyncio
    async def test_unknown_delegation(self, engine):
        with pytest.raises(GrantNotFoundError) as exc_info:
            await engine.revoke_delegation("dlg_missing", revoked_by="bob")
        assert exc_info.value.grant_id == "dlg_missing"

    @pytest.mark.asyncio
    async def test_unrelated_principal_cannot_revoke(self, engine, audit_sink):
        delegation = await engine.delegate("bob", "carol", ["write:report"], timedelta(hours=1), "contextA")

        for intruder in ("dave", "alice", "carol", "mallory"):
            with pytest.raises(RevocationDeniedError) as exc_info:
                await engine.revoke_delegation(delegation.id, revoked_by=intruder)
            assert exc_info.value.reason_code == ReasonCode.REVOCATION_DENIED

        assert (await engine.authorize("carol", "write", "report", "contextA")).allowed
        events = events_of(audit_sink, AuditEventType.DELEGATION_REVOKED)
        assert len(events) == 4
        assert all(e.decision == "deny" for e in events)
        assert {e.principal for e in events} == {"dave", "alice", "carol", "mallory"}

    @pytest.mark.asyncio
    async def test_context_admin_can_revoke(self, engine):
        delegation = await engine.delegate("bob", "carol", ["write:report"], timedelta(hours=1), "contextA")
        await engine.assign_roles("alice", {"admin"}, assigned_by="root")

        revoked = await engine.revoke_delegation(delegation.id, revoked_by="alice")
        assert revoked.revoked_by == "alice"
        assert not (await engine.authorize("carol", "write", "report", "contextA")).allowed

    @pytest.mark.asyncio
    async def test_authority_checked_before_idempotent_noop(self, engine, clock):
        delegation = await engine.delegate("bob", "carol", ["read:report"], timedelta(minutes=5), "contextA")
        clock.advance(timedelta(minutes=10))

        with pytest.raises(RevocationDeniedError):
            await engine.revoke_delegation(delegation.id, revoked_by="dave")

    @pytest.mark.asyncio
    async def test_revocation_allowed_with_feature_disabled(self, engine):
        delegation = await engine.delegate("bob", "carol", ["read:report"], timedelta(hours=1), "contextA")
        engine.config.features.delegation = False
        revoked = await engine.revoke_delegation(delegation.id, revoked_by="bob")
        assert revoked.revoked


class TestElevation:
    """Temporary privilege elevation"""

    @pytest.mark.asyncio
    async def test_elevation_grants_scope_nobody_holds(self, engine, audit_sink):
        elevation = await engine.elevate(
            "alice", ["approve:invoice"], timedelta(hours=1), "contextA",
            granted_by="security-officer", reason="quarter close",
        )

        decision = await engine.authorize("alice", "approve", "invoice", "contextA")
        assert decision.allowed
        assert decision.reason_code == ReasonCode.ALLOWED_BY_ELEVATION
        assert elevation.granted_by == "security-officer"
        assert Capability.parse("approve:invoice") in await engine.effective_capabilities("alice", "contextA")

        events = events_of(audit_sink, AuditEventType.PERMISSION_ELEVATION)
        assert len(events) == 1
        assert events[0].requires_review

    @pytest.mark.asyncio
    async def test_elevation_clamped_to_four_hours(self, engine, clock, audit_sink):
        elevation = await engine.elevate("alice", ["write:report"], timedelta(hours=10), "contextA")
        assert elevation.clamped
        assert elevation.expires_at == clock() + timedelta(hours=4)
        assert elevation.granted_by == "alice"

        events = events_of(audit_sink, AuditEventType.PERMISSION_ELEVATION)
        assert events[0].reason_code == ReasonCode.ELEVATION_GRANTED_CLAMPED

    @pytest.mark.asyncio
    async def test_elevation_bound_to_context_and_expires(self, engine, clock):
        await engine.elevate("alice", ["write:report"], timedelta(hours=1), "contextA")
        assert not (await engine.authorize("alice", "write", "report", "contextB")).allowed

        clock.advance(timedelta(hours=2))
        assert not (await engine.authorize("alice", "write", "report", "contextA")).allowed

    @pytest.mark.asyncio
    async def test_revoke_elevation(self, engine, audit_sink):
        elevation = await engine.elevate(
            "alice", ["write:report"], timedelta(hours=1), "contextA", granted_by="security-officer"
        )
        await engine.revoke_elevation(elevation.id, revoked_by="security-officer")
        again = await engine.revoke_elevation(elevation.id, revoked_by="security-officer")

        assert again.revoked
        assert not (await engine.authorize("alice", "write", "report", "contextA")).allowed
        reasons = [e.reason_code for e in events_of(audit_sink, AuditEventType.ELEVATION_REVOKED)]
        assert reasons == [ReasonCode.ELEVATION_REVOKED, ReasonCode.ELEVATION_ALREADY_INACTIVE]

    @pytest.mark.asyncio
    async def test_elevation_revoke_authority(self, engine):
        elevation = await engine.elevate(
            "alice", ["write:report"], timedelta(hours=1), "contextA", granted_by="security-officer"
        )

        with pytest.raises(RevocationDeniedError):
            await engine.revoke_elevation(elevation.id, revoked_by="bob")
        assert (await engine.authorize("alice", "write", "report", "contextA")).allowed

        revoked = await engine.revoke_elevation(elevation.id, revoked_by="alice")
        assert revoked.revoked_by == "alice"

    @pytest.mark.asyncio
    async def test_unknown_elevation(self, engine):
        with pytest.raises(GrantNotFoundError):
            await engine.revoke_elevation("elv_missing", revoked_by="alice")

    @pytest.mark.asyncio
    async def test_context_not_admitting_principal(self, engine):
        with pytest.raises(ValidationError):
            await engine.elevate("alice", ["write:report"], timedelta(hours=1), "partner")

    @pytest.mark.asyncio
    async def test_requires_feature(self, engine_factory):
        engine = await engine_factory(make_config(features=FeatureFlags(delegation=True)))
        with pytest.raises(FeatureDisabledError):
            await engine.elevate("alice", ["write:report"], timedelta(hours=1), "contextA")
