"""
Delegation and elevation package for ctxauth.
"""

from .manager import DelegationManager
from .elevation import ElevationManager
from .grants import clamp_duration, parse_scope

__all__ = [
    "DelegationManager",
    "ElevationManager",
    "clamp_duration",
    "parse_scope",
]
