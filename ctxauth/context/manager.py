"""
Session context tracking and switching.

Copyright (c) 2025 Gimel Foundation and the persons identified as the document authors.
All rights reserved. This file is subject to the Gimel Foundation's Legal Provisions Relating to GiFo Documents.
See http://GimelFoundation.com or https://github.com/Gimel-Foundation for details.
Code Components extracted from GiFo-RfC 0111 must include this license text and are provided without warranty.

Each session moves through ``IDLE -> CONTEXT_ACTIVE -> SWITCH_PENDING ->
CONTEXT_ACTIVE``. ``SWITCH_PENDING`` doubles as the per-session claim: while
a switch (or session end) is in flight, further requests on that session
wait on a condition. The condition's lock is never held while validating or
while the commit hook (the audit write) runs.
"""

import asyncio
import logging
from datetime import timedelta
from typing import Awaitable, Callable, Dict, List, Optional

from ..common.utils import Clock, generate_id, get_current_time
from ..errors import (
    ContextSwitchRejected,
    ContextValidationTimeout,
    SessionNotActiveError,
)
from ..ratelimit import PrincipalRateLimiter
from ..store.types import RecordStore
from ..types import (
    ActiveContext,
    CorporateContext,
    Principal,
    RateLimitCategory,
    ReasonCode,
    SessionState,
)


logger = logging.getLogger(__name__)

# Extra validation run against the target tenant, e.g. a directory lookup
ContextValidator = Callable[[Principal, CorporateContext], Awaitable[None]]
SwitchHook = Callable[[ActiveContext, CorporateContext], Awaitable[None]]
SessionHook = Callable[[ActiveContext], Awaitable[None]]


class ContextManager:
    """Owns every ``ActiveContext``; the only component that mutates them."""

    def __init__(
        self,
        store: RecordStore,
        rate_limiter: PrincipalRateLimiter,
        validation_timeout: timedelta = timedelta(milliseconds=5000),
        rate_window: timedelta = timedelta(minutes=1),
        clock: Clock = get_current_time,
        validator: Optional[ContextValidator] = None,
    ):
        self.store = store
        self.rate_limiter = rate_limiter
        self.validation_timeout = validation_timeout
        self.rate_window = rate_window
        self.validator = validator
        self._clock = clock
        self._sessions: Dict[str, ActiveContext] = {}
        self._condition = asyncio.Condition()

    async def _load_context(self, context_id: str) -> CorporateContext:
        context = await self.store.get_tenant(context_id)
        if context is None:
            raise ContextSwitchRejected(
                f"Unknown context: {context_id}",
                reason_code=ReasonCode.DENIED_CONTEXT_INVALID,
            )
        return context

    async def validate(self, principal: Principal, context_id: str) -> CorporateContext:
        """
        Check that a principal may operate in a context.

        Raises:
            ContextSwitchRejected: Unknown context or domain not whitelisted
        """
        context = await self._load_context(context_id)
        if not context.admits(principal.domain):
            raise ContextSwitchRejected(
                f"Domain {principal.domain} is not whitelisted for context {context.id}"
            )
        if self.validator is not None:
            await self.validator(principal, context)
        return context

    async def _validate_within_timeout(
        self, principal: Principal, context_id: str, timeout: Optional[timedelta]
    ) -> CorporateContext:
        limit = (timeout or self.validation_timeout).total_seconds()
        try:
            return await asyncio.wait_for(self.validate(principal, context_id), timeout=limit)
        except asyncio.TimeoutError as e:
            raise ContextValidationTimeout(
                f"Validation of context {context_id} exceeded {limit:.3f}s", cause=e
            ) from e

    async def start_session(
        self,
        principal: Principal,
        context_id: str,
        on_commit: Optional[SessionHook] = None,
    ) -> ActiveContext:
        """Open a session in an initial context."""
        context = await self._validate_within_timeout(principal, context_id, None)
        now = self._clock()
        session = ActiveContext(
            session_id=generate_id("ses_"),
            principal=principal,
            context=context,
            state=SessionState.CONTEXT_ACTIVE,
            switched_at=now,
            window_started_at=now,
        )
        if on_commit is not None:
            await on_commit(session)

        async with self._condition:
            self._sessions[session.session_id] = session
        logger.info(f"Started session {session.session_id} for {principal.id} in {context.id}")
        return session

    async def _claim(self, session_id: str) -> ActiveContext:
        async with self._condition:
            session = self._sessions.get(session_id)
            if session is None:
                raise SessionNotActiveError(session_id)
            await self._condition.wait_for(lambda: session.state != SessionState.SWITCH_PENDING)
            if session.state == SessionState.IDLE:
                raise SessionNotActiveError(session_id)
            session.state = SessionState.SWITCH_PENDING
            return session

    async def _release(self, session: ActiveContext, state: SessionState) -> None:
        async with self._condition:
            session.state = state
            if state == SessionState.IDLE:
                self._sessions.pop(session.session_id, None)
            self._condition.notify_all()

    async def switch_context(
        self,
        session_id: str,
        context_id: str,
        timeout: Optional[timedelta] = None,
        on_commit: Optional[SwitchHook] = None,
    ) -> ActiveContext:
        """
        Move a session to another context.

        On any failure the session stays in its prior context.

        Raises:
            SessionNotActiveError: Unknown or ended session
            ContextSwitchRejected: Target context unknown or not admitting the principal
            ContextValidationTimeout: Validation exceeded the timeout
            RateLimitExceeded: Too many switches in the current window
        """
        session = await self._claim(session_id)
        principal = session.principal
        try:
            target = await self._validate_within_timeout(principal, context_id, timeout)
            await self.rate_limiter.admit(principal.id, RateLimitCategory.CONTEXT_SWITCH)
            if on_commit is not None:
                await on_commit(session, target)

            now = self._clock()
            if now - session.window_started_at >= self.rate_window:
                session.window_started_at = now
                session.switch_count = 0
            session.previous_context_id = session.context.id
            session.context = target
            session.switched_at = now
            session.switch_count += 1
        except BaseException:
            logger.warning(f"Context switch of session {session_id} to {context_id} rejected; keeping {session.context.id}")
            raise
        finally:
            await self._release(session, SessionState.CONTEXT_ACTIVE)

        logger.info(f"Session {session_id} switched from {session.previous_context_id} to {target.id}")
        return session

    async def end_session(self, session_id: str, on_commit: Optional[SessionHook] = None) -> ActiveContext:
        """End a session; it accepts no further switches."""
        session = await self._claim(session_id)
        try:
            if on_commit is not None:
                await on_commit(session)
        except BaseException:
            await self._release(session, SessionState.CONTEXT_ACTIVE)
            raise

        await self._release(session, SessionState.IDLE)
        logger.info(f"Ended session {session_id}")
        return session

    def get_session(self, session_id: str) -> Optional[ActiveContext]:
        return self._sessions.get(session_id)

    @property
    def active_sessions(self) -> int:
        return len(self._sessions)

    async def available_contexts(self, principal: Principal) -> List[CorporateContext]:
        """Tenants whose whitelist admits the principal's domain."""
        tenants = await self.store.list_tenants()
        return sorted((t for t in tenants if t.admits(principal.domain)), key=lambda t: t.id)
