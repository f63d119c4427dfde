"""
Per-principal rate limiting.

Copyright (c) 2025 Gimel Foundation and the persons identified as the document authors.
All rights reserved. This file is subject to the Gimel Foundation's Legal Provisions Relating to GiFo Documents.
See http://GimelFoundation.com or https://github.com/Gimel-Foundation for details.
Code Components extracted from GiFo-RfC 0111 must include this license text and are provided without warranty.
"""

import logging
from typing import Dict, Optional

from ..common.utils import Clock, get_current_time
from ..core.config import RateLimitConfig
from ..errors import RateLimitExceeded
from ..metrics import MetricsCollector
from ..store.types import CacheStore
from ..types import RateLimitCategory


logger = logging.getLogger(__name__)


class PrincipalRateLimiter:
    """
    Token bucket rate limiter keyed by (principal, category).

    Bucket state lives in the cache store and every refill-and-spend is a
    single ``take_token`` call, so several engine instances sharing a Redis
    store share limits without over-admitting.
    """

    def __init__(
        self,
        store: CacheStore,
        limits: Dict[RateLimitCategory, RateLimitConfig],
        clock: Clock = get_current_time,
        metrics: Optional[MetricsCollector] = None,
        key_prefix: str = "ratelimit:",
    ):
        self.store = store
        self.limits = limits
        self.metrics = metrics
        self.key_prefix = key_prefix
        self._clock = clock

    def _key(self, principal_id: str, category: RateLimitCategory) -> str:
        return f"{self.key_prefix}{category.value}:{principal_id}"

    async def _take(self, principal_id: str, category: RateLimitCategory, cost: float):
        limit = self.limits[category]
        capacity = float(limit.max_requests)
        window = limit.time_window.total_seconds()
        return await self.store.take_token(
            self._key(principal_id, category),
            capacity=capacity,
            refill_per_second=capacity / window,
            now=self._clock().timestamp(),
            ttl=window,
            cost=cost,
        )

    async def admit(self, principal_id: str, category: RateLimitCategory) -> None:
        """
        Take one token from the principal's bucket for ``category``.

        Raises:
            RateLimitExceeded: If the bucket is empty
        """
        allowed, _, retry_after = await self._take(principal_id, category, 1.0)
        if not allowed:
            if self.metrics:
                self.metrics.record_rate_limited(category.value)
            logger.warning(f"Rate limit exceeded for {principal_id} ({category.value})")
            raise RateLimitExceeded(category, retry_after=retry_after)

    async def remaining(self, principal_id: str, category: RateLimitCategory) -> float:
        """Tokens currently available, without consuming any."""
        _, tokens, _ = await self._take(principal_id, category, 0.0)
        return tokens

    async def reset(self, principal_id: str, category: RateLimitCategory) -> None:
        """Reset rate limit for a specific principal and category"""
        await self.store.delete(self._key(principal_id, category))
