"""
Identity resolution and role merging.

Token verification itself belongs to an external identity provider;
this module only decides guest vs. authenticated and collapses every
role signal into one normalized set per request.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, Optional, Protocol, Tuple

from ai_chat_guard.storage.models import Profile

logger = logging.getLogger(__name__)

DEFAULT_PERSONA = "Physician"


@dataclass(frozen=True)
class Identity:
    """Authenticated caller as reported by the identity provider."""
    id: str
    email: Optional[str] = None
    role: Optional[str] = None
    user_metadata: Dict[str, Any] = field(default_factory=dict, compare=False)
    app_metadata: Dict[str, Any] = field(default_factory=dict, compare=False)


class IdentityProvider(Protocol):
    async def authenticate(self, token: str) -> Optional[Identity]:
        ...


def extract_bearer_token(authorization: Optional[str]) -> Optional[str]:
    """Pull the token out of an Authorization header value."""
    if not authorization:
        return None
    parts = authorization.split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        return None
    token = parts[1]
    if token in ("null", "undefined"):
        return None
    return token


async def resolve_identity(
    provider: IdentityProvider, authorization: Optional[str]
) -> Optional[Identity]:
    """Authenticate the caller; any failure means guest, never an error."""
    token = extract_bearer_token(authorization)
    if token is None:
        return None
    try:
        return await provider.authenticate(token)
    except Exception as e:
        logger.warning("Token validation failed, treating as guest: %s", e)
        return None


@dataclass(frozen=True)
class RoleSet:
    """Ordered, de-duplicated, lower-cased role names from every source."""
    roles: Tuple[str, ...] = ()

    @classmethod
    def merge(cls, *sources: Optional[str]) -> "RoleSet":
        merged = []
        for role in sources:
            if not isinstance(role, str):
                continue
            normalized = role.strip().lower()
            if normalized and normalized not in merged:
                merged.append(normalized)
        return cls(tuple(merged))

    def is_privileged(self, privileged_roles: Iterable[str]) -> bool:
        """True if any source claims any privileged role."""
        wanted = {r.strip().lower() for r in privileged_roles if isinstance(r, str)}
        return bool(wanted.intersection(self.roles))

    def __contains__(self, role: str) -> bool:
        return role.strip().lower() in self.roles


def collect_roles(identity: Identity, profile: Optional[Profile]) -> RoleSet:
    """Merge profile, session and both metadata roles, in that order."""
    return RoleSet.merge(
        profile.role if profile else None,
        identity.role,
        identity.user_metadata.get("role"),
        identity.app_metadata.get("role"),
    )


def resolve_persona(
    identity: Optional[Identity],
    profile: Optional[Profile],
    requested: Optional[str] = None,
) -> str:
    """Professional role used as AI context; never a permission signal."""
    candidates = []
    if profile:
        candidates.extend([profile.professional_role, profile.specialty, profile.title])
    if identity:
        candidates.append(identity.user_metadata.get("professional_role"))
    candidates.append(requested)
    for candidate in candidates:
        if isinstance(candidate, str) and candidate.strip():
            return candidate.strip()
    return DEFAULT_PERSONA
