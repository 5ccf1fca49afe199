"""
Bearer token authentication and the capability gate for caching actions.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, FrozenSet, Iterable, Optional

import jwt

from shared.logging import get_logger
from shared.errors import AuthenticationError, AuthorizationError


class Capability(str, Enum):
    """Roles that unlock gated actions."""
    ADMIN = "admin"
    DEVOPS = "devops"


ADMIN_OR_DEVOPS: FrozenSet[Capability] = frozenset({Capability.ADMIN, Capability.DEVOPS})


@dataclass(frozen=True)
class Identity:
    """Authenticated caller."""
    user_id: str
    roles: FrozenSet[str] = field(default_factory=frozenset)

    def has_any(self, capabilities: Iterable[Capability]) -> bool:
        return any(capability.value in self.roles for capability in capabilities)


def _extract_roles(claims: Dict[str, Any]) -> FrozenSet[str]:
    """Collect roles from a flat `roles` claim or a Keycloak-style realm_access block."""
    roles = set()
    flat = claims.get("roles")
    if isinstance(flat, str):
        roles.add(flat)
    elif isinstance(flat, (list, tuple)):
        roles.update(str(role) for role in flat)

    realm_access = claims.get("realm_access")
    if isinstance(realm_access, dict):
        roles.update(str(role) for role in realm_access.get("roles", []) or [])
    return frozenset(roles)


class TokenAuthenticator:
    """Validates HS256 bearer tokens and resolves them to an Identity."""

    def __init__(self, secret: str, algorithm: str = "HS256", audience: Optional[str] = None):
        self.secret = secret
        self.algorithm = algorithm
        self.audience = audience
        self.logger = get_logger("caching.auth")

    def authenticate(self, authorization: Optional[str]) -> Identity:
        """Resolve an Authorization header to an Identity or raise AuthenticationError."""
        if not authorization:
            raise AuthenticationError()
        scheme, _, token = authorization.partition(" ")
        if scheme.lower() != "bearer" or not token.strip():
            raise AuthenticationError("Invalid authorization header format")

        options = {"require": ["sub"], "verify_aud": self.audience is not None}
        try:
            claims = jwt.decode(
                token.strip(),
                self.secret,
                algorithms=[self.algorithm],
                audience=self.audience,
                options=options
            )
        except jwt.ExpiredSignatureError:
            self.logger.warning("Expired bearer token")
            raise AuthenticationError("Token expired")
        except jwt.InvalidTokenError as e:
            self.logger.warning("Invalid bearer token", error=str(e))
            raise AuthenticationError("Invalid token")

        user_id = claims.get("sub")
        if not isinstance(user_id, str) or not user_id:
            raise AuthenticationError("Invalid token")

        return Identity(user_id=user_id, roles=_extract_roles(claims))


def authorize(identity: Identity, requires: FrozenSet[Capability]):
    """Raise AuthorizationError unless identity holds one of requires; empty means any caller."""
    if requires and not identity.has_any(requires):
        raise AuthorizationError(details={"required": sorted(c.value for c in requires)})
