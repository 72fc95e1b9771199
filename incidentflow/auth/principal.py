"""The authenticated requester as seen by services."""

import uuid
from dataclasses import dataclass, field
from typing import Optional

from ..errors import UnauthorizedError


@dataclass(frozen=True)
class Requester:
    """Identity and claimed permission tokens of the caller.

    ``user_id`` may be missing when a token carries permissions but no user
    claim; reads still work, mutations raise ``UnauthorizedError``.
    """

    user_id: Optional[uuid.UUID]
    permissions: frozenset[str] = field(default_factory=frozenset)
    role: Optional[str] = None
    username: Optional[str] = None

    def require_user_id(self) -> uuid.UUID:
        if self.user_id is None:
            raise UnauthorizedError()
        return self.user_id

    @classmethod
    def from_claims(cls, claims: dict) -> "Requester":
        """Build a requester from decoded JWT claims."""
        raw_user_id = claims.get("user_id") or claims.get("sub")
        try:
            user_id = uuid.UUID(str(raw_user_id)) if raw_user_id else None
        except ValueError:
            user_id = None
        return cls(
            user_id=user_id,
            permissions=frozenset(claims.get("permissions") or ()),
            role=claims.get("role"),
            username=claims.get("username"),
        )
