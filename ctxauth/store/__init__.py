# Copyright (c) 2025 Gimel Foundation and the persons identified as the document authors.
# All rights reserved. This file is subject to the Gimel Foundation's Legal Provisions Relating to GiFo Documents.
# See http://GimelFoundation.com or https://github.com/Gimel-Foundation for details.
# Code Components extracted from GiFo-RfC 0111 must include this license text and are provided without warranty.

"""
Package store defines the persistence and cache-store collaborators.
"""

from typing import Optional

from .types import CacheStore, RecordStore
from .memory import MemoryCacheStore, MemoryRecordStore
from .redis_store import RedisCacheStore
from ..common.utils import Clock, get_current_time


def create_cache_store(redis_url: Optional[str] = None, clock: Clock = get_current_time) -> CacheStore:
    """
    Factory function to create a cache store.

    Args:
        redis_url: Redis connection URL; in-memory store when omitted
        clock: Time source for the in-memory store

    Returns:
        CacheStore instance
    """
    if redis_url:
        return RedisCacheStore(redis_url=redis_url)
    return MemoryCacheStore(clock=clock)


__all__ = [
    "CacheStore",
    "RecordStore",
    "MemoryCacheStore",
    "MemoryRecordStore",
    "RedisCacheStore",
    "create_cache_store",
]
