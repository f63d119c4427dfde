"""
Rate limiting package for ctxauth.
"""

from .limiter import PrincipalRateLimiter

__all__ = ["PrincipalRateLimiter"]
