"""
Identity-provider collaborator interface.

The engine never sees raw credentials. A provider turns an external token
into ``IdentityClaims`` or raises ``AuthenticationError``.
"""

from abc import ABC, abstractmethod
from typing import Dict, Optional

from ..errors import AuthenticationError
from ..types import IdentityClaims


class IdentityProvider(ABC):
    """Abstract base class for identity resolution"""

    @abstractmethod
    async def resolve(self, token: str) -> IdentityClaims:
        """Resolve an external token; raise AuthenticationError if it is not valid"""
        pass

    async def close(self) -> None:
        """Close the provider and release resources"""
        pass


class StaticIdentityProvider(IdentityProvider):
    """Token table provider for tests, demos and offline deployments"""

    def __init__(self, tokens: Optional[Dict[str, IdentityClaims]] = None, name: str = "static"):
        self.name = name
        self._tokens: Dict[str, IdentityClaims] = dict(tokens or {})

    def register(self, token: str, principal_id: str, domain: str, **attributes: str) -> IdentityClaims:
        claims = IdentityClaims(
            principal_id=principal_id,
            domain=domain,
            provider=self.name,
            attributes=dict(attributes),
        )
        self._tokens[token] = claims
        return claims

    def revoke(self, token: str) -> None:
        self._tokens.pop(token, None)

    async def resolve(self, token: str) -> IdentityClaims:
        claims = self._tokens.get(token)
        if claims is None:
            raise AuthenticationError("Token could not be resolved to a principal")
        return claims
