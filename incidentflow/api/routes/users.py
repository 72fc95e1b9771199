"""User management routes: accounts, assignee pickers and the user directory."""

import uuid
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Response, status
from pydantic import BaseModel, Field
from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from ...auth.permissions import (
    PERM_INCIDENTS_ASSIGN,
    PERM_INCIDENTS_READ,
    PERM_USERS_MANAGE,
    ROLE_USER,
)
from ...auth.principal import Requester
from ...auth.rbac import require_permission
from ...dependencies import get_db, get_optional_user
from ...models.user import User
from ...utils.clock import utcnow
from ...utils.logging import get_logger
from ...utils.security import hash_password

logger = get_logger("api.users")

router = APIRouter(prefix="/users", tags=["users"])


# --- Request bodies ---

class CreateUserRequest(BaseModel):
    username: str = Field(min_length=1, max_length=100)
    email: str = Field(min_length=3, max_length=255)
    full_name: str = Field(default="", max_length=200)
    password: str = ""
    role: Optional[str] = None


class UpdateUserRequest(BaseModel):
    username: Optional[str] = Field(default=None, max_length=100)
    email: Optional[str] = Field(default=None, max_length=255)
    full_name: Optional[str] = Field(default=None, max_length=200)
    role: Optional[str] = None
    password: Optional[str] = None


def _to_dict(user: User) -> dict:
    return {
        "id": str(user.id),
        "username": user.username,
        "email": user.email,
        "full_name": user.full_name,
        "role": user.role,
        "created_at": user.created_at.isoformat(),
    }


# --- Helpers ---

async def _get_user_or_404(user_id: uuid.UUID, db: AsyncSession) -> User:
    """Fetch user by ID or raise 404."""
    user = (await db.execute(select(User).where(User.id == user_id))).scalar_one_or_none()
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    return user


async def _ensure_unique(
    db: AsyncSession,
    username: Optional[str],
    email: Optional[str],
    exclude_id: Optional[uuid.UUID] = None,
) -> None:
    clauses = []
    if username:
        clauses.append(User.username == username)
    if email:
        clauses.append(User.email == email)
    if not clauses:
        return
    query = select(User.id).where(or_(*clauses))
    if exclude_id is not None:
        query = query.where(User.id != exclude_id)
    if (await db.execute(query)).first() is not None:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Username or email already exists",
        )


async def _all_users(db: AsyncSession) -> list[dict]:
    rows = (await db.execute(select(User).order_by(User.username.asc()))).scalars().all()
    return [_to_dict(u) for u in rows]


# --- Endpoints ---

@router.get("")
async def list_users(
    db: AsyncSession = Depends(get_db),
    current_user: Requester = Depends(require_permission(PERM_USERS_MANAGE)),
):
    return await _all_users(db)


@router.get("/assignable")
async def list_assignable_users(
    db: AsyncSession = Depends(get_db),
    current_user: Requester = Depends(require_permission(PERM_INCIDENTS_ASSIGN)),
):
    """Users an incident can be assigned to."""
    return await _all_users(db)


@router.get("/directory")
async def user_directory(
    db: AsyncSession = Depends(get_db),
    current_user: Requester = Depends(require_permission(PERM_INCIDENTS_READ)),
):
    """Names for resolving creator and assignee ids in the UI."""
    return await _all_users(db)


@router.get("/{user_id}")
async def get_user(
    user_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    current_user: Requester = Depends(require_permission(PERM_USERS_MANAGE)),
):
    return _to_dict(await _get_user_or_404(user_id, db))


@router.post("", status_code=201)
async def create_user(
    body: CreateUserRequest,
    db: AsyncSession = Depends(get_db),
    current_user: Optional[Requester] = Depends(get_optional_user),
):
    """Register an account. Only users:manage holders may pick the role."""
    if not body.password.strip():
        raise HTTPException(status_code=400, detail="Password is required.")

    username = body.username.strip()
    email = body.email.strip()
    await _ensure_unique(db, username, email)

    can_manage = current_user is not None and PERM_USERS_MANAGE in current_user.permissions
    role = body.role if can_manage and body.role else ROLE_USER

    user = User(
        id=uuid.uuid4(),
        username=username,
        email=email,
        full_name=body.full_name.strip(),
        role=role,
        password_hash=hash_password(body.password),
        created_at=utcnow(),
    )
    db.add(user)
    await db.commit()

    logger.info("user_created", user_id=str(user.id), username=username, role=role)
    return _to_dict(user)


@router.put("/{user_id}", status_code=204)
async def update_user(
    user_id: uuid.UUID,
    body: UpdateUserRequest,
    db: AsyncSession = Depends(get_db),
    current_user: Requester = Depends(require_permission(PERM_USERS_MANAGE)),
):
    """Update account fields. Blank values leave the field unchanged."""
    user = await _get_user_or_404(user_id, db)

    username = body.username.strip() if body.username and body.username.strip() else None
    email = body.email.strip() if body.email and body.email.strip() else None
    await _ensure_unique(db, username, email, exclude_id=user_id)

    if username:
        user.username = username
    if email:
        user.email = email
    if body.full_name is not None and body.full_name.strip():
        user.full_name = body.full_name.strip()
    if body.role is not None and body.role.strip():
        user.role = body.role.strip()
    if body.password is not None and body.password.strip():
        user.password_hash = hash_password(body.password)

    await db.commit()
    logger.info("user_updated", user_id=str(user_id), performed_by=str(current_user.user_id))
    return Response(status_code=204)


@router.delete("/{user_id}", status_code=204)
async def delete_user(
    user_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    current_user: Requester = Depends(require_permission(PERM_USERS_MANAGE)),
):
    user = await _get_user_or_404(user_id, db)
    await db.delete(user)
    await db.commit()

    logger.warning("user_deleted", user_id=str(user_id), performed_by=str(current_user.user_id))
    return Response(status_code=204)
