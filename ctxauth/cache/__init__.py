"""
Decision cache package for ctxauth.
"""

from .decision_cache import DecisionCache, compute_fingerprint

__all__ = ["DecisionCache", "compute_fingerprint"]
