"""
Delegation of a grantor's capabilities to another principal.

Copyright (c) 2025 Gimel Foundation and the persons identified as the document authors.
All rights reserved. This file is subject to the Gimel Foundation's Legal Provisions Relating to GiFo Documents.
See http://GimelFoundation.com or https://github.com/Gimel-Foundation for details.
Code Components extracted from GiFo-RfC 0111 must include this license text and are provided without warranty.

Grants and revocations are two-phase: ``prepare_*`` validates and builds the
new record without persisting it, the caller writes the audit event, then
``commit`` persists. Expiry is never swept for correctness; ``is_active`` is
evaluated against the clock on every read.
"""

import asyncio
import logging
from collections import Counter
from dataclasses import replace
from datetime import timedelta
from typing import FrozenSet, Iterable, List, Optional, Tuple

from .grants import clamp_duration, parse_scope
from ..common.utils import Clock, get_current_time
from ..errors import (
    DelegationLimitError,
    GrantNotFoundError,
    InsufficientScopeError,
    ValidationError,
)
from ..store.types import RecordStore
from ..types import (
    Capability,
    CorporateContext,
    Delegation,
    Principal,
    ReasonCode,
    parse_capabilities,
    uncovered,
)


logger = logging.getLogger(__name__)


class DelegationManager:
    """Creates, revokes and looks up delegations."""

    def __init__(
        self,
        store: RecordStore,
        max_duration: timedelta = timedelta(hours=24),
        max_active: int = 10,
        non_delegatable: Iterable[str] = (),
        clock: Clock = get_current_time,
    ):
        """
        Initialize the delegation manager.

        Args:
            store: Persistence collaborator
            max_duration: Longer requests are clamped to this
            max_active: Active delegations allowed per grantor
            non_delegatable: Capabilities that may never be delegated
            clock: Time source
        """
        self.store = store
        self.max_duration = max_duration
        self.max_active = max_active
        self.non_delegatable: FrozenSet[Capability] = parse_capabilities(non_delegatable)
        self._clock = clock
        # Grants prepared but not yet committed or aborted, per grantor
        self._reserved: Counter = Counter()
        self._lock = asyncio.Lock()

    def _forbidden(self, scope: FrozenSet[Capability]) -> List[Capability]:
        return sorted(
            c for c in scope
            if any(nd.covers(c) or c.covers(nd) for nd in self.non_delegatable)
        )

    async def prepare_grant(
        self,
        grantor: Principal,
        grantee: Principal,
        scope: Iterable,
        duration: timedelta,
        context: CorporateContext,
        grantor_capabilities: FrozenSet[Capability],
        reason: Optional[str] = None,
    ) -> Delegation:
        """
        Validate a grant and build the delegation record.

        ``grantor_capabilities`` are the grantor's role-derived capabilities
        in ``context``; delegated or elevated capabilities cannot be passed on.
        A successful prepare reserves one of the grantor's active slots until
        ``commit`` or ``abort``.

        Raises:
            ValidationError: Self-delegation, empty scope or non-positive duration
            InsufficientScopeError: Scope not held by the grantor, or non-delegatable
            DelegationLimitError: Grantor already at the active delegation limit
        """
        if grantor.id == grantee.id:
            raise ValidationError("A principal cannot delegate to itself", field="grantee")

        requested = parse_scope(scope)
        now = self._clock()
        expires_at, clamped = clamp_duration(now, duration, self.max_duration)

        forbidden = self._forbidden(requested)
        if forbidden:
            raise InsufficientScopeError(
                f"Capabilities cannot be delegated: {', '.join(str(c) for c in forbidden)}",
                missing=forbidden,
                reason_code=ReasonCode.NON_DELEGATABLE,
            )

        missing = uncovered(grantor_capabilities, requested)
        if missing:
            raise InsufficientScopeError(
                f"{grantor.id} does not hold {', '.join(sorted(str(c) for c in missing))} in {context.id}",
                missing=missing,
            )

        async with self._lock:
            existing = await self.store.list_delegations(grantor_id=grantor.id)
            active = sum(1 for d in existing if d.is_active(now))
            if active + self._reserved[grantor.id] >= self.max_active:
                raise DelegationLimitError(grantor.id, self.max_active)
            self._reserved[grantor.id] += 1

        if clamped:
            logger.info(f"Clamped delegation from {grantor.id} to {self.max_duration}")

        return Delegation(
            grantor_id=grantor.id,
            grantee_id=grantee.id,
            scope=requested,
            context_id=context.id,
            expires_at=expires_at,
            created_at=now,
            reason=reason,
            clamped=clamped,
        )

    def _release(self, delegation: Delegation) -> None:
        if self._reserved[delegation.grantor_id] > 0:
            self._reserved[delegation.grantor_id] -= 1
        if self._reserved[delegation.grantor_id] == 0:
            del self._reserved[delegation.grantor_id]

    async def commit(self, delegation: Delegation) -> Delegation:
        """Persist a prepared grant or revocation."""
        try:
            await self.store.save_delegation(delegation)
        finally:
            if not delegation.revoked:
                self._release(delegation)
        logger.info(
            f"Delegation {delegation.id} {'revoked' if delegation.revoked else 'granted'}: "
            f"{delegation.grantor_id} -> {delegation.grantee_id}"
        )
        return delegation

    def abort(self, delegation: Delegation) -> None:
        """Give back the slot reserved by ``prepare_grant``."""
        self._release(delegation)

    async def prepare_revoke(self, delegation_id: str, revoked_by: str) -> Tuple[Delegation, bool]:
        """
        Build the revoked form of a delegation.

        Returns:
            ``(delegation, changed)``; ``changed`` is False when the delegation
            was already revoked or expired, which is not an error

        Raises:
            GrantNotFoundError: If no delegation has this id
        """
        delegation = await self.store.get_delegation(delegation_id)
        if delegation is None:
            raise GrantNotFoundError(delegation_id)

        now = self._clock()
        if not delegation.is_active(now):
            logger.debug(f"Delegation {delegation_id} already inactive")
            return delegation, False

        return replace(delegation, revoked=True, revoked_at=now, revoked_by=revoked_by), True

    async def active_for(self, grantee_id: str, context_id: str) -> List[Delegation]:
        """Delegations currently contributing to a grantee in a context."""
        now = self._clock()
        return sorted(
            (
                d for d in await self.store.list_delegations(grantee_id=grantee_id)
                if d.context_id == context_id and d.is_active(now)
            ),
            key=lambda d: d.id,
        )

    async def list_by_grantor(self, grantor_id: str, active_only: bool = False) -> List[Delegation]:
        now = self._clock()
        delegations = await self.store.list_delegations(grantor_id=grantor_id)
        if active_only:
            delegations = [d for d in delegations if d.is_active(now)]
        return sorted(delegations, key=lambda d: d.created_at)
