"""
Identity-provider collaborators for ctxauth.
"""

from .provider import IdentityProvider, StaticIdentityProvider

__all__ = ["IdentityProvider", "StaticIdentityProvider"]
