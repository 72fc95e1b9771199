"""Authentication routes: JWT login, logout and identity echo."""

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status
from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ...auth.permissions import permissions_for_role
from ...auth.principal import Requester
from ...config import IncidentFlowConfig
from ...dependencies import get_app_config, get_current_user, get_db
from ...models.user import User
from ...utils.logging import get_logger
from ...utils.security import create_access_token, verify_password

logger = get_logger("api.auth")

router = APIRouter(prefix="/auth", tags=["auth"])


class LoginRequest(BaseModel):
    username_or_email: str = ""
    password: str = ""


def token_claims(user: User) -> dict:
    """JWT claims for a user: identity plus the role's permission list."""
    return {
        "sub": str(user.id),
        "user_id": str(user.id),
        "username": user.username,
        "email": user.email,
        "role": user.role,
        "permissions": sorted(permissions_for_role(user.role)),
    }


@router.post("/login")
async def login(
    body: LoginRequest,
    request: Request,
    response: Response,
    db: AsyncSession = Depends(get_db),
    config: IncidentFlowConfig = Depends(get_app_config),
):
    """Authenticate by username or email and return a JWT (also set as httpOnly cookie)."""
    identifier = body.username_or_email.strip()
    if not identifier or not body.password.strip():
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Username/email and password are required.",
        )

    column = User.email if "@" in identifier else User.username
    user = (await db.execute(select(User).where(column == identifier))).scalar_one_or_none()

    if not user or not user.password_hash or not verify_password(body.password, user.password_hash):
        logger.info("login_failed", identifier=identifier)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid credentials.",
        )

    token = create_access_token(
        data=token_claims(user),
        secret_key=config.secret_key,
        algorithm=config.jwt_algorithm,
        expires_minutes=config.jwt_expiry_minutes,
    )

    is_https = request.url.scheme == "https"
    response.set_cookie(
        key=config.session_cookie_name,
        value=token,
        httponly=True,
        samesite="none" if is_https else "lax",
        secure=is_https,
        max_age=config.jwt_expiry_minutes * 60,
        path="/",
    )

    logger.info("login_succeeded", user_id=str(user.id), role=user.role)
    return {
        "access_token": token,
        "token_type": "bearer",
        "user": {
            "id": str(user.id),
            "username": user.username,
            "email": user.email,
            "role": user.role,
        },
    }


@router.post("/logout", status_code=204)
async def logout(
    current_user: Requester = Depends(get_current_user),
    config: IncidentFlowConfig = Depends(get_app_config),
):
    response = Response(status_code=204)
    response.delete_cookie(key=config.session_cookie_name, path="/")
    return response


@router.get("/me")
async def me(current_user: Requester = Depends(get_current_user)):
    """Echo the identity and permissions carried by the token."""
    return {
        "user_id": str(current_user.user_id) if current_user.user_id else None,
        "username": current_user.username,
        "role": current_user.role,
        "permissions": sorted(current_user.permissions),
    }
