"""Route-level permission checks."""

from fastapi import Depends, HTTPException, status

from ..auth.principal import Requester
from ..dependencies import get_current_user
from ..utils.logging import get_logger

logger = get_logger("auth.rbac")


def require_permission(*required_perms: str):
    """FastAPI dependency factory that checks the requester holds every permission."""
    async def _check(current_user: Requester = Depends(get_current_user)) -> Requester:
        for perm in required_perms:
            if perm not in current_user.permissions:
                logger.info(
                    "permission_missing",
                    permission=perm,
                    user_id=str(current_user.user_id) if current_user.user_id else None,
                )
                raise HTTPException(
                    status_code=status.HTTP_403_FORBIDDEN,
                    detail=f"Permission required: {perm}",
                )
        return current_user

    return _check
