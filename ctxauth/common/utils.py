# Copyright (c) 2025 Gimel Foundation and the persons identified as the document authors.
# All rights reserved. This file is subject to the Gimel Foundation's Legal Provisions Relating to GiFo Documents.
# See http://GimelFoundation.com or https://github.com/Gimel-Foundation for details.
# Code Components extracted from GiFo-RfC 0111 must include this license text and are provided without warranty.

"""
Common utilities and helper functions for the ctxauth engine.
"""

import hashlib
import json
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Iterable, Optional


# A clock returns the current aware UTC datetime. Components accept one so
# expiry and refill can be driven deterministically in tests.
Clock = Callable[[], datetime]


def get_current_time() -> datetime:
    """Get the current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def generate_id(prefix: str = "") -> str:
    """Generate a unique identifier with optional prefix."""
    unique_id = uuid.uuid4().hex
    return f"{prefix}{unique_id}" if prefix else unique_id


def hash_string(data: str, algorithm: str = "sha256") -> str:
    """
    Hash a string using the specified algorithm.

    Args:
        data: String to hash
        algorithm: Hash algorithm (sha256, sha512)

    Returns:
        Hexadecimal hash string
    """
    if algorithm == "sha256":
        return hashlib.sha256(data.encode('utf-8')).hexdigest()
    elif algorithm == "sha512":
        return hashlib.sha512(data.encode('utf-8')).hexdigest()
    else:
        raise ValueError(f"Unsupported hash algorithm: {algorithm}")


def stable_hash(parts: Dict[str, Any]) -> str:
    """Hash a dictionary of parts independent of key order."""
    canonical = json.dumps(parts, sort_keys=True, separators=(',', ':'), default=str)
    return hash_string(canonical)


def sorted_ids(values: Iterable[str]) -> list:
    """Return a de-duplicated, sorted list of identifiers."""
    return sorted(set(values))


def to_millis(duration: timedelta) -> int:
    """Convert a timedelta to whole milliseconds."""
    return int(duration.total_seconds() * 1000)


def from_millis(value: Any) -> timedelta:
    """Convert a millisecond count into a timedelta."""
    return timedelta(milliseconds=int(value))


def parse_iso_timestamp(timestamp_str: Optional[str]) -> Optional[datetime]:
    """Parse an ISO timestamp string, returning None for empty input."""
    if not timestamp_str:
        return None
    return datetime.fromisoformat(timestamp_str)


def mask_identifier(value: str, visible_chars: int = 4, mask_char: str = "*") -> str:
    """Mask all but the last few characters of an identifier for logs."""
    if not value or len(value) <= visible_chars:
        return mask_char * len(value or "")
    return mask_char * (len(value) - visible_chars) + value[-visible_chars:]
