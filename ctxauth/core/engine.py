"""
Authorization facade for ctxauth.

Copyright (c) 2025 Gimel Foundation and the persons identified as the document authors.
All rights reserved. This file is subject to the Gimel Foundation's Legal Provisions Relating to GiFo Documents.
See http://GimelFoundation.com or https://github.com/Gimel-Foundation for details.
Code Components extracted from GiFo-RfC 0111 must include this license text and are provided without warranty.

Read decisions flow: context check -> decision cache (single-flight) ->
permission graph plus active grants on a miss -> audit write -> decision.
Privileged mutations are audited before they are committed, so a failed
audit write leaves no trace in state.
"""

import logging
from dataclasses import replace
from datetime import timedelta
from typing import Any, Dict, FrozenSet, Iterable, List, Optional, Sequence, Set, Tuple, Union

from .config import Config
from ..audit import AuditLedger, AuditSink, RecordStoreAuditSink
from ..cache import DecisionCache, compute_fingerprint
from ..common.utils import Clock, get_current_time, mask_identifier
from ..context import ContextManager, ContextValidator
from ..delegation import DelegationManager, ElevationManager
from ..errors import (
    AuditWriteFailure,
    AuthenticationError,
    ConfigurationError,
    ContextSwitchRejected,
    ContextValidationTimeout,
    CtxAuthError,
    DelegationLimitError,
    ErrorSource,
    FeatureDisabledError,
    GrantNotFoundError,
    InsufficientScopeError,
    RateLimitExceeded,
    RevocationDeniedError,
    ValidationError,
)
from ..graph import PermissionGraph, load_policy_file
from ..identity import IdentityProvider
from ..metrics import MetricsCollector, create_metrics_collector
from ..ratelimit import PrincipalRateLimiter
from ..store import CacheStore, MemoryRecordStore, RecordStore, create_cache_store
from ..types import (
    ActiveContext,
    AuditEvent,
    AuditEventType,
    Capability,
    CapabilityKind,
    CorporateContext,
    Decision,
    Delegation,
    Elevation,
    PermissionNode,
    Principal,
    RateLimitCategory,
    ReasonCode,
    WILDCARD_RESOURCE,
)


logger = logging.getLogger(__name__)

PrincipalRef = Union[Principal, str]
ContextRef = Union[CorporateContext, str]

# Holders of this capability in a grant's context may revoke any grant there
REVOCATION_AUTHORITY = Capability(CapabilityKind.ADMIN, WILDCARD_RESOURCE)


class CtxAuth:
    """
    Context-aware authorization and delegation engine.

    Use ``await CtxAuth.new(config, roles=..., tenants=...)`` to construct an
    engine with a validated configuration and a loaded role graph.
    """

    def __init__(
        self,
        config: Config,
        graph: Optional[PermissionGraph] = None,
        record_store: Optional[RecordStore] = None,
        cache_store: Optional[CacheStore] = None,
        audit_sink: Optional[AuditSink] = None,
        identity_provider: Optional[IdentityProvider] = None,
        metrics: Optional[MetricsCollector] = None,
        clock: Clock = get_current_time,
        context_validator: Optional[ContextValidator] = None,
        on_audit_escalation=None,
    ):
        """
        Initialize the engine.

        Args:
            config: Engine configuration
            graph: Role graph (defaults to an empty graph)
            record_store: Persistence collaborator (defaults to in-memory)
            cache_store: Decision cache and rate-limit backend (Redis when
                ``config.redis_url`` is set, in-memory otherwise)
            audit_sink: Durable audit storage (defaults to the record store)
            identity_provider: Collaborator for ``resolve_identity``
            metrics: Metrics collector
            clock: Time source shared by every component
            context_validator: Extra check run when validating a context
            on_audit_escalation: Called when an audit failure cannot be recorded
        """
        self.config = config
        self._clock = clock
        self.graph = graph or PermissionGraph([], strict=config.strict_role_graph)
        self.records = record_store or MemoryRecordStore(clock=clock)
        self.cache_store = cache_store or create_cache_store(config.redis_url, clock=clock)
        self.metrics = metrics or create_metrics_collector(enabled=config.metrics_enabled)
        self.identity_provider = identity_provider

        self.ledger = AuditLedger(
            audit_sink or RecordStoreAuditSink(self.records),
            config.audit,
            clock=clock,
            metrics=self.metrics,
            comprehensive=config.features.comprehensive_audit,
            on_escalation=on_audit_escalation,
        )
        self.cache = DecisionCache(self.cache_store, config.cache_ttl, clock=clock, metrics=self.metrics)
        self.rate_limiter = PrincipalRateLimiter(
            self.cache_store, config.rate_limits, clock=clock, metrics=self.metrics
        )
        self.contexts = ContextManager(
            self.records,
            self.rate_limiter,
            validation_timeout=config.context_validation_timeout,
            rate_window=config.rate_limit_for(RateLimitCategory.CONTEXT_SWITCH).time_window,
            clock=clock,
            validator=context_validator,
        )
        self.delegations = DelegationManager(
            self.records,
            max_duration=config.max_delegation_duration,
            max_active=config.max_active_delegations,
            non_delegatable=config.non_delegatable,
            clock=clock,
        )
        self.elevations = ElevationManager(
            self.records, max_duration=config.max_elevation_duration, clock=clock
        )

        # Incremented once per permission graph evaluation (cache miss)
        self.evaluation_count = 0

    @classmethod
    async def new(
        cls,
        config: Config,
        roles: Iterable[PermissionNode] = (),
        tenants: Iterable[CorporateContext] = (),
        principals: Iterable[Principal] = (),
        **kwargs: Any,
    ) -> "CtxAuth":
        """
        Create an engine from a validated configuration.

        Roles, tenants and principals are written to the record store.

        Raises:
            ConfigurationError: Invalid configuration, unknown parent role, or
                (with ``strict_role_graph``) a cyclic role graph
        """
        config.validate()
        roles = list(roles)
        engine = cls(config, graph=PermissionGraph(roles, strict=config.strict_role_graph), **kwargs)

        for node in roles:
            await engine.records.save_role(node)
        for tenant in tenants:
            await engine.records.save_tenant(tenant)
        for principal in principals:
            await engine.records.save_principal(principal)

        logger.info(
            f"ctxauth engine ready: {len(engine.graph)} roles, "
            f"{len(engine.graph.excluded_roles)} excluded"
        )
        return engine

    @classmethod
    async def from_policy_file(cls, config: Config, file_path: str, **kwargs: Any) -> "CtxAuth":
        """Create an engine with roles and tenants loaded from a JSON/YAML file."""
        roles, tenants = load_policy_file(file_path)
        return await cls.new(config, roles=roles, tenants=tenants, **kwargs)

    # Helpers

    def _require(self, enabled: bool, feature: str) -> None:
        if not enabled:
            raise FeatureDisabledError(feature)

    async def _principal(self, principal: PrincipalRef) -> Principal:
        principal_id = principal if isinstance(principal, str) else principal.id
        stored = await self.records.get_principal(principal_id)
        if stored is not None:
            return stored
        if isinstance(principal, str):
            raise AuthenticationError(f"Unknown principal: {mask_identifier(principal_id)}")
        return principal

    async def _context(self, context: ContextRef) -> Tuple[str, Optional[CorporateContext]]:
        context_id = context if isinstance(context, str) else context.id
        return context_id, await self.records.get_tenant(context_id)

    async def _context_for(self, principal: Principal, context: ContextRef) -> CorporateContext:
        context_id, tenant = await self._context(context)
        if tenant is None:
            raise ValidationError(f"Unknown context: {context_id}", field="context")
        if not tenant.admits(principal.domain):
            raise ValidationError(
                f"Context {context_id} does not admit domain {principal.domain}", field="context"
            )
        return tenant

    async def _audit(
        self,
        event_type: AuditEventType,
        principal_id: Optional[str],
        reason_code: ReasonCode,
        context: Optional[str] = None,
        action: Optional[str] = None,
        resource: Optional[str] = None,
        decision: str = "allow",
        details: Optional[Dict[str, Any]] = None,
    ) -> AuditEvent:
        return await self.ledger.record(AuditEvent(
            event_type=event_type,
            principal=principal_id,
            reason_code=reason_code,
            action=action,
            resource=resource,
            context=context,
            decision=decision,
            timestamp=self._clock(),
            details=details or {},
        ))

    async def _audit_rejection(
        self,
        event_type: AuditEventType,
        principal_id: Optional[str],
        error: CtxAuthError,
        context: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        """Record a rejected request; the rejection itself is what the caller sees."""
        payload = dict(details or {})
        payload["error"] = error.code.value
        payload["message"] = error.message
        try:
            await self._audit(
                event_type, principal_id, error.reason_code,
                context=context, decision="deny", details=payload,
            )
        except AuditWriteFailure as e:
            # The ledger has already scheduled a failure notice
            logger.error(f"Rejection of {event_type.value} for {principal_id} not audited: {e.message}")

    # Read decisions

    async def _evaluate(
        self,
        principal: Principal,
        context: CorporateContext,
        required: Capability,
        delegations: Sequence[Delegation],
        elevations: Sequence[Elevation],
    ) -> Tuple[bool, ReasonCode]:
        self.evaluation_count += 1

        role_capabilities = self.graph.resolve(principal, context, self.config.features.inheritance)
        if any(c.covers(required) for c in role_capabilities):
            return True, ReasonCode.ALLOWED_BY_ROLE
        if any(c.covers(required) for d in delegations for c in d.scope):
            return True, ReasonCode.ALLOWED_BY_DELEGATION
        if any(c.covers(required) for e in elevations for c in e.scope):
            return True, ReasonCode.ALLOWED_BY_ELEVATION
        return False, ReasonCode.DENIED_NO_CAPABILITY

    async def _active_grants(
        self, principal_id: str, context_id: str
    ) -> Tuple[List[Delegation], List[Elevation]]:
        features = self.config.features
        delegations = await self.delegations.active_for(principal_id, context_id) if features.delegation else []
        elevations = await self.elevations.active_for(principal_id, context_id) if features.elevation else []
        return delegations, elevations

    async def authorize(
        self,
        principal: PrincipalRef,
        action: str,
        resource: str,
        context: ContextRef,
        session_id: Optional[str] = None,
    ) -> Decision:
        """
        Decide whether a principal may perform an action on a resource in a context.

        Every returned decision has a committed audit event; if that write
        fails the decision is a deny with ``DENIED_AUDIT_FAILURE``.

        Raises:
            AuthenticationError: Unknown principal id
            ValidationError: Malformed action or resource
            ConfigurationError: The principal holds an unknown role
        """
        with self.metrics.decision_timer():
            principal = await self._principal(principal)
            try:
                required = Capability.of(action, resource)
            except ValueError as e:
                raise ValidationError(str(e), field="action", cause=e) from e

            context_id, tenant = await self._context(context)
            details: Dict[str, Any] = {"session_id": session_id}
            fingerprint = None
            cached = False

            if tenant is None or not tenant.admits(principal.domain):
                allowed, reason_code = False, ReasonCode.DENIED_CONTEXT_INVALID
            elif session_id is not None and not self._session_matches(session_id, principal, context_id):
                allowed, reason_code = False, ReasonCode.DENIED_SESSION_MISMATCH
            else:
                delegations, elevations = await self._active_grants(principal.id, context_id)
                fingerprint = compute_fingerprint(
                    principal, required.kind.value, resource, context_id,
                    [d.id for d in delegations], [e.id for e in elevations],
                )
                details.update({
                    "fingerprint": fingerprint,
                    "delegations": [d.id for d in delegations],
                    "elevations": [e.id for e in elevations],
                })
                try:
                    entry, status = await self.cache.get_or_compute(
                        fingerprint,
                        lambda: self._evaluate(principal, tenant, required, delegations, elevations),
                    )
                except ConfigurationError as e:
                    await self._audit_rejection(
                        AuditEventType.AUTHORIZATION_DECISION, principal.id, e,
                        context=context_id, details=details,
                    )
                    raise
                allowed, reason_code = entry.allowed, entry.reason_code
                cached = status != "miss"
                details["cached"] = cached

            event_id = None
            try:
                sealed = await self._audit(
                    AuditEventType.AUTHORIZATION_DECISION, principal.id, reason_code,
                    context=context_id, action=action, resource=resource,
                    decision="allow" if allowed else "deny", details=details,
                )
                event_id = sealed.event_id
            except AuditWriteFailure:
                allowed, reason_code = False, ReasonCode.DENIED_AUDIT_FAILURE

        decision = Decision(
            allowed=allowed,
            reason_code=reason_code,
            principal_id=principal.id,
            action=action,
            resource=resource,
            context_id=context_id,
            fingerprint=fingerprint,
            event_id=event_id,
            cached=cached,
            decided_at=self._clock(),
        )
        self.metrics.record_decision(allowed, reason_code.value)

        if allowed:
            logger.debug(f"Allowed {principal.id} {action}:{resource} in {context_id} ({reason_code.value})")
        else:
            logger.warning(f"Denied {principal.id} {action}:{resource} in {context_id} ({reason_code.value})")
        return decision

    def _session_matches(self, session_id: str, principal: Principal, context_id: str) -> bool:
        session = self.contexts.get_session(session_id)
        return (
            session is not None
            and session.principal.id == principal.id
            and session.context_id == context_id
        )

    async def effective_capabilities(self, principal: PrincipalRef, context: ContextRef) -> FrozenSet[Capability]:
        """Role, delegated and elevated capabilities a principal holds in a context."""
        principal = await self._principal(principal)
        context_id, tenant = await self._context(context)
        if tenant is None or not tenant.admits(principal.domain):
            return frozenset()

        capabilities = set(self.graph.resolve(principal, tenant, self.config.features.inheritance))
        delegations, elevations = await self._active_grants(principal.id, context_id)
        for grant in list(delegations) + list(elevations):
            capabilities.update(grant.scope)
        return frozenset(capabilities)

    async def available_contexts(self, principal: PrincipalRef) -> List[CorporateContext]:
        """Tenants whose domain whitelist admits the principal."""
        return await self.contexts.available_contexts(await self._principal(principal))

    # Sessions and context switching

    async def start_session(self, principal: PrincipalRef, context: ContextRef) -> ActiveContext:
        """
        Open a session for a principal in an initial context.

        Raises:
            ContextSwitchRejected: Unknown context or domain not whitelisted
            ContextValidationTimeout: Validation exceeded the timeout
            AuditWriteFailure: The session could not be audited; none was opened
        """
        principal = await self._principal(principal)
        context_id = context if isinstance(context, str) else context.id

        async def audit(session: ActiveContext) -> None:
            await self._audit(
                AuditEventType.SESSION_STARTED, principal.id, ReasonCode.SESSION_STARTED,
                context=session.context_id, details={"session_id": session.session_id},
            )

        try:
            return await self.contexts.start_session(principal, context_id, on_commit=audit)
        except (ContextSwitchRejected, ContextValidationTimeout) as e:
            await self._audit_rejection(AuditEventType.SESSION_STARTED, principal.id, e, context=context_id)
            raise

    async def switch_context(
        self,
        session_id: str,
        context: ContextRef,
        timeout: Optional[timedelta] = None,
    ) -> ActiveContext:
        """
        Switch a session to another context.

        Raises:
            FeatureDisabledError: Context switching is disabled
            SessionNotActiveError: Unknown or ended session
            ContextSwitchRejected: Target context does not admit the principal
            ContextValidationTimeout: Validation exceeded ``timeout``
            RateLimitExceeded: Too many switches for this principal
            AuditWriteFailure: The switch could not be audited; it did not happen
        """
        self._require(self.config.features.context_switching, "context_switching")
        context_id = context if isinstance(context, str) else context.id
        current = self.contexts.get_session(session_id)
        principal_id = current.principal.id if current else None

        async def audit(session: ActiveContext, target: CorporateContext) -> None:
            await self._audit(
                AuditEventType.CONTEXT_SWITCHED, session.principal.id, ReasonCode.CONTEXT_SWITCHED,
                context=target.id,
                details={"session_id": session_id, "from_context": session.context_id},
            )

        try:
            session = await self.contexts.switch_context(session_id, context_id, timeout, on_commit=audit)
        except (ContextSwitchRejected, ContextValidationTimeout, RateLimitExceeded) as e:
            await self._audit_rejection(
                AuditEventType.CONTEXT_SWITCHED, principal_id, e,
                context=context_id, details={"session_id": session_id},
            )
            self.metrics.record_mutation("switch_context", "rejected")
            raise

        self.metrics.record_mutation("switch_context", "ok")
        return session

    async def end_session(self, session_id: str) -> None:
        """End a session; no further switches are permitted on it."""
        async def audit(session: ActiveContext) -> None:
            await self._audit(
                AuditEventType.SESSION_ENDED, session.principal.id, ReasonCode.SESSION_ENDED,
                context=session.context_id, details={"session_id": session_id},
            )

        await self.contexts.end_session(session_id, on_commit=audit)

    # Delegation

    async def delegate(
        self,
        grantor: PrincipalRef,
        grantee: PrincipalRef,
        scope: Iterable,
        duration: timedelta,
        context: ContextRef,
        reason: Optional[str] = None,
    ) -> Delegation:
        """
        Delegate part of the grantor's role capabilities to the grantee.

        Durations above the configured maximum are clamped and recorded with
        ``DELEGATION_GRANTED_CLAMPED``.

        Raises:
            FeatureDisabledError: Delegation is disabled
            RateLimitExceeded: Too many grants by this grantor
            ValidationError: Bad context, scope, duration or self-delegation
            InsufficientScopeError: Grantor does not hold the scope, or it is non-delegatable
            DelegationLimitError: Grantor has too many active delegations
            AuditWriteFailure: The grant could not be audited; it was not created
        """
        self._require(self.config.features.delegation, "delegation")
        grantor = await self._principal(grantor)
        grantee = await self._principal(grantee)
        context_id = context if isinstance(context, str) else context.id
        requested = sorted(str(s) for s in scope)

        try:
            await self.rate_limiter.admit(grantor.id, RateLimitCategory.DELEGATION_GRANT)
            tenant = await self._context_for(grantor, context)
            await self._context_for(grantee, tenant)
            delegation = await self.delegations.prepare_grant(
                grantor, grantee, requested, duration, tenant,
                self.graph.resolve(grantor, tenant, self.config.features.inheritance),
                reason=reason,
            )
        except (RateLimitExceeded, ValidationError, InsufficientScopeError, DelegationLimitError) as e:
            await self._audit_rejection(
                AuditEventType.PERMISSION_DELEGATED, grantor.id, e, context=context_id,
                details={"grantee_id": grantee.id, "scope": requested},
            )
            self.metrics.record_mutation("delegate", "rejected")
            raise

        reason_code = (
            ReasonCode.DELEGATION_GRANTED_CLAMPED if delegation.clamped else ReasonCode.DELEGATION_GRANTED
        )
        try:
            await self._audit(
                AuditEventType.PERMISSION_DELEGATED, grantor.id, reason_code,
                context=tenant.id, action="delegate", resource=grantee.id,
                details=delegation.to_dict(),
            )
        except BaseException:
            self.delegations.abort(delegation)
            raise

        await self.delegations.commit(delegation)
        self.metrics.record_mutation("delegate", "ok")
        return delegation

    async def _may_revoke(self, revoked_by: str, owners: Set[Optional[str]], context_id: str) -> bool:
        if revoked_by in owners:
            return True
        revoker = await self.records.get_principal(revoked_by)
        if revoker is None:
            return False
        held = await self.effective_capabilities(revoker, context_id)
        return any(c.covers(REVOCATION_AUTHORITY) for c in held)

    async def revoke_delegation(self, delegation_id: str, revoked_by: str) -> Delegation:
        """
        Revoke a delegation. Revoking one that is already revoked or expired
        succeeds and returns it unchanged.

        Only the grantor or a holder of ``admin:*`` in the delegation's
        context may revoke it.

        Raises:
            GrantNotFoundError: No delegation has this id
            RevocationDeniedError: ``revoked_by`` has no authority over it
        """
        try:
            delegation, changed = await self.delegations.prepare_revoke(delegation_id, revoked_by)
            if not await self._may_revoke(revoked_by, {delegation.grantor_id}, delegation.context_id):
                raise RevocationDeniedError(delegation_id, revoked_by)
        except (GrantNotFoundError, RevocationDeniedError) as e:
            await self._audit_rejection(
                AuditEventType.DELEGATION_REVOKED, revoked_by, e, details={"delegation_id": delegation_id}
            )
            self.metrics.record_mutation("revoke_delegation", "rejected")
            raise

        await self._audit(
            AuditEventType.DELEGATION_REVOKED, revoked_by,
            ReasonCode.DELEGATION_REVOKED if changed else ReasonCode.DELEGATION_ALREADY_INACTIVE,
            context=delegation.context_id, action="revoke", resource=delegation.id,
            details={"delegation_id": delegation.id, "grantee_id": delegation.grantee_id},
        )
        if changed:
            await self.delegations.commit(delegation)
        self.metrics.record_mutation("revoke_delegation", "ok" if changed else "noop")
        return delegation

    # Elevation

    async def elevate(
        self,
        principal: PrincipalRef,
        scope: Iterable,
        duration: timedelta,
        context: ContextRef,
        granted_by: Optional[str] = None,
        reason: Optional[str] = None,
    ) -> Elevation:
        """
        Grant a principal temporary additional capabilities.

        Approval is expected to have happened before this call. The scope
        need not be held by anyone.

        Raises:
            FeatureDisabledError: Elevation is disabled
            ValidationError: Bad context, scope or duration
            AuditWriteFailure: The elevation could not be audited; it was not created
        """
        self._require(self.config.features.elevation, "elevation")
        principal = await self._principal(principal)
        context_id = context if isinstance(context, str) else context.id
        requested = sorted(str(s) for s in scope)

        try:
            tenant = await self._context_for(principal, context)
            elevation = await self.elevations.prepare_grant(
                principal, requested, duration, tenant, granted_by=granted_by, reason=reason
            )
        except ValidationError as e:
            await self._audit_rejection(
                AuditEventType.PERMISSION_ELEVATION, principal.id, e, context=context_id,
                details={"scope": requested, "granted_by": granted_by},
            )
            self.metrics.record_mutation("elevate", "rejected")
            raise

        await self._audit(
            AuditEventType.PERMISSION_ELEVATION, principal.id,
            ReasonCode.ELEVATION_GRANTED_CLAMPED if elevation.clamped else ReasonCode.ELEVATION_GRANTED,
            context=tenant.id, action="elevate", resource=principal.id,
            details=elevation.to_dict(),
        )
        await self.elevations.commit(elevation)
        self.metrics.record_mutation("elevate", "ok")
        return elevation

    async def revoke_elevation(self, elevation_id: str, revoked_by: str) -> Elevation:
        """
        Revoke an elevation; idempotent for revoked or expired elevations.

        The elevated principal, whoever granted it, or a holder of ``admin:*``
        in its context may revoke it. Anyone else gets RevocationDeniedError.
        """
        try:
            elevation, changed = await self.elevations.prepare_revoke(elevation_id, revoked_by)
            owners = {elevation.principal_id, elevation.granted_by}
            if not await self._may_revoke(revoked_by, owners, elevation.context_id):
                raise RevocationDeniedError(elevation_id, revoked_by, source=ErrorSource.ELEVATION)
        except (GrantNotFoundError, RevocationDeniedError) as e:
            await self._audit_rejection(
                AuditEventType.ELEVATION_REVOKED, revoked_by, e, details={"elevation_id": elevation_id}
            )
            self.metrics.record_mutation("revoke_elevation", "rejected")
            raise

        await self._audit(
            AuditEventType.ELEVATION_REVOKED, revoked_by,
            ReasonCode.ELEVATION_REVOKED if changed else ReasonCode.ELEVATION_ALREADY_INACTIVE,
            context=elevation.context_id, action="revoke", resource=elevation.id,
            details={"elevation_id": elevation.id, "principal_id": elevation.principal_id},
        )
        if changed:
            await self.elevations.commit(elevation)
        self.metrics.record_mutation("revoke_elevation", "ok" if changed else "noop")
        return elevation

    # Roles and identity

    async def assign_roles(self, principal: PrincipalRef, roles: Iterable[str], assigned_by: str) -> Principal:
        """
        Replace a principal's role set.

        Raises:
            UnknownRoleError: A role id is not defined in the graph
        """
        principal = await self._principal(principal)
        roles = set(roles)
        self.graph.validate_roles(roles)

        updated = replace(principal, roles=roles, version=principal.version + 1)
        await self._audit(
            AuditEventType.ROLES_ASSIGNED, principal.id, ReasonCode.ROLES_ASSIGNED,
            action="assign_roles", resource=principal.id,
            details={
                "assigned_by": assigned_by,
                "previous_roles": sorted(principal.roles),
                "roles": sorted(roles),
            },
        )
        await self.records.save_principal(updated)
        self.metrics.record_mutation("assign_roles", "ok")
        logger.info(f"Roles of {principal.id} set to {sorted(roles)} by {assigned_by}")
        return updated

    async def resolve_identity(self, token: str) -> Principal:
        """
        Identity-federation flow: resolve an external token to a principal.

        The principal is created on first resolution. At least one
        SSO-enabled context must whitelist the principal's domain.

        Raises:
            ConfigurationError: No identity provider is configured
            AuthenticationError: Token rejected, domain not federated, or domain mismatch
            RateLimitExceeded: Too many federation flows for this principal
        """
        if self.identity_provider is None:
            raise ConfigurationError("No identity provider configured")

        try:
            claims = await self.identity_provider.resolve(token)
        except AuthenticationError as e:
            await self._audit_rejection(AuditEventType.IDENTITY_FEDERATED, None, e)
            raise

        try:
            await self.rate_limiter.admit(claims.principal_id, RateLimitCategory.IDENTITY_FEDERATION)

            federated = [
                t.id for t in await self.records.list_tenants()
                if t.sso_enabled and t.admits(claims.domain)
            ]
            if not federated:
                raise AuthenticationError(f"No SSO-enabled context admits domain {claims.domain}")

            principal = await self.records.get_principal(claims.principal_id)
            if principal is not None and principal.domain != claims.domain:
                raise AuthenticationError(f"Identity domain does not match principal {claims.principal_id}")
        except (AuthenticationError, RateLimitExceeded) as e:
            await self._audit_rejection(
                AuditEventType.IDENTITY_FEDERATED, claims.principal_id, e,
                details={"provider": claims.provider, "domain": claims.domain},
            )
            raise

        created = principal is None
        if created:
            principal = Principal(id=claims.principal_id, domain=claims.domain, created_at=self._clock())

        await self._audit(
            AuditEventType.IDENTITY_FEDERATED, principal.id, ReasonCode.IDENTITY_FEDERATED,
            details={"provider": claims.provider, "created": created, "contexts": sorted(federated)},
        )
        if created:
            await self.records.save_principal(principal)
            logger.info(f"Created principal {principal.id} from {claims.provider}")
        return principal

    async def close(self) -> None:
        """Flush pending audit notices and release collaborators."""
        await self.ledger.close()
        await self.records.close()
        await self.cache_store.close()
        if self.identity_provider is not None:
            await self.identity_provider.close()
