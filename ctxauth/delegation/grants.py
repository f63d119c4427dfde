"""
Helpers shared by delegation and elevation grants.
"""

from datetime import datetime, timedelta
from typing import FrozenSet, Iterable, Tuple

from ..errors import ValidationError
from ..types import Capability, parse_capabilities


def parse_scope(scope: Iterable, field: str = "scope") -> FrozenSet[Capability]:
    """Parse a requested scope; it must be non-empty and well formed."""
    try:
        parsed = parse_capabilities(scope)
    except ValueError as e:
        raise ValidationError(str(e), field=field, cause=e) from e
    if not parsed:
        raise ValidationError("Scope must contain at least one capability", field=field)
    return parsed


def clamp_duration(now: datetime, duration: timedelta, maximum: timedelta) -> Tuple[datetime, bool]:
    """
    Compute an expiry, capping the duration at ``maximum``.

    Returns:
        ``(expires_at, clamped)``

    Raises:
        ValidationError: If the duration is not positive
    """
    if duration.total_seconds() <= 0:
        raise ValidationError("Duration must be positive", field="duration")
    if duration > maximum:
        return now + maximum, True
    return now + duration, False
