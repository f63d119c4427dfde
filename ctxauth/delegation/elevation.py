"""
Temporary privilege elevation for a single principal.

Unlike a delegation, an elevation's scope is not required to be held by
anyone; approval is the caller's concern and happens before ``prepare_grant``.
"""

import logging
from dataclasses import replace
from datetime import timedelta
from typing import Iterable, List, Optional, Tuple

from .grants import clamp_duration, parse_scope
from ..common.utils import Clock, get_current_time
from ..errors import ErrorSource, GrantNotFoundError
from ..store.types import RecordStore
from ..types import CorporateContext, Elevation, Principal


logger = logging.getLogger(__name__)


class ElevationManager:
    """Creates, revokes and looks up elevations."""

    def __init__(
        self,
        store: RecordStore,
        max_duration: timedelta = timedelta(hours=4),
        clock: Clock = get_current_time,
    ):
        self.store = store
        self.max_duration = max_duration
        self._clock = clock

    async def prepare_grant(
        self,
        principal: Principal,
        scope: Iterable,
        duration: timedelta,
        context: CorporateContext,
        granted_by: Optional[str] = None,
        reason: Optional[str] = None,
    ) -> Elevation:
        """Validate and build an elevation without persisting it."""
        requested = parse_scope(scope)
        now = self._clock()
        expires_at, clamped = clamp_duration(now, duration, self.max_duration)

        if clamped:
            logger.info(f"Clamped elevation for {principal.id} to {self.max_duration}")

        return Elevation(
            principal_id=principal.id,
            scope=requested,
            context_id=context.id,
            expires_at=expires_at,
            created_at=now,
            granted_by=granted_by or principal.id,
            reason=reason,
            clamped=clamped,
        )

    async def commit(self, elevation: Elevation) -> Elevation:
        await self.store.save_elevation(elevation)
        logger.info(
            f"Elevation {elevation.id} {'revoked' if elevation.revoked else 'granted'} "
            f"for {elevation.principal_id}"
        )
        return elevation

    async def prepare_revoke(self, elevation_id: str, revoked_by: str) -> Tuple[Elevation, bool]:
        """Build the revoked form; ``changed`` is False if already inactive."""
        elevation = await self.store.get_elevation(elevation_id)
        if elevation is None:
            raise GrantNotFoundError(elevation_id, source=ErrorSource.ELEVATION)

        now = self._clock()
        if not elevation.is_active(now):
            return elevation, False

        return replace(elevation, revoked=True, revoked_at=now, revoked_by=revoked_by), True

    async def active_for(self, principal_id: str, context_id: str) -> List[Elevation]:
        now = self._clock()
        return sorted(
            (
                e for e in await self.store.list_elevations(principal_id=principal_id)
                if e.context_id == context_id and e.is_active(now)
            ),
            key=lambda e: e.id,
        )
