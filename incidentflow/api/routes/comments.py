"""Comment routes: discussion threads on incidents."""

import uuid
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Response
from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ...auth.guard import AccessContext, can_add_comment, can_write_comment, enforce
from ...auth.permissions import PERM_INCIDENTS_READ
from ...auth.principal import Requester
from ...auth.rbac import require_permission
from ...dependencies import get_current_user, get_db
from ...engine.query_engine import not_deleted
from ...models.comment import Comment
from ...models.incident import Incident
from ...utils.clock import utcnow
from ...utils.logging import get_logger

logger = get_logger("api.comments")

router = APIRouter(prefix="/comments", tags=["comments"])


# --- Request bodies ---

class CreateCommentRequest(BaseModel):
    incident_id: uuid.UUID
    content: str = Field(min_length=1, max_length=5000)


class UpdateCommentRequest(BaseModel):
    content: Optional[str] = Field(default=None, max_length=5000)


def _to_dict(c: Comment) -> dict:
    return {
        "id": str(c.id),
        "incident_id": str(c.incident_id),
        "content": c.content,
        "created_by_user_id": str(c.created_by_user_id),
        "created_at": c.created_at.isoformat(),
    }


# --- Helpers ---

async def _get_comment_or_404(comment_id: uuid.UUID, db: AsyncSession) -> Comment:
    comment = (await db.execute(
        select(Comment).where(Comment.id == comment_id)
    )).scalar_one_or_none()
    if comment is None:
        raise HTTPException(status_code=404, detail="Comment not found")
    return comment


def _authorize_author(current_user: Requester, comment: Comment, operation: str) -> None:
    user_id = current_user.require_user_id()
    ctx = AccessContext.for_record(current_user.permissions, user_id, comment.created_by_user_id)
    enforce(can_write_comment(ctx), operation, comment_id=str(comment.id), user_id=str(user_id))


# --- Endpoints ---

@router.get("")
async def list_comments(
    incident_id: Optional[uuid.UUID] = None,
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_db),
    current_user: Requester = Depends(require_permission(PERM_INCIDENTS_READ)),
):
    """Comments oldest first, optionally for a single incident."""
    query = select(Comment).order_by(Comment.created_at.asc()).limit(limit).offset(offset)
    if incident_id is not None:
        query = query.where(Comment.incident_id == incident_id)
    rows = (await db.execute(query)).scalars().all()
    return [_to_dict(c) for c in rows]


@router.get("/{comment_id}")
async def get_comment(
    comment_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    current_user: Requester = Depends(require_permission(PERM_INCIDENTS_READ)),
):
    return _to_dict(await _get_comment_or_404(comment_id, db))


@router.post("", status_code=201)
async def add_comment(
    body: CreateCommentRequest,
    db: AsyncSession = Depends(get_db),
    current_user: Requester = Depends(get_current_user),
):
    """Add a comment to an active incident."""
    user_id = current_user.require_user_id()
    enforce(
        can_add_comment(AccessContext(permissions=current_user.permissions)),
        "add_comment",
        user_id=str(user_id),
    )
    if not body.content.strip():
        raise HTTPException(status_code=400, detail="Content is required.")

    incident = (await db.execute(
        select(Incident.id).where(Incident.id == body.incident_id, not_deleted())
    )).scalar_one_or_none()
    if incident is None:
        raise HTTPException(status_code=404, detail="Incident not found")

    comment = Comment(
        id=uuid.uuid4(),
        incident_id=body.incident_id,
        content=body.content.strip(),
        created_by_user_id=user_id,
        created_at=utcnow(),
    )
    db.add(comment)
    await db.commit()

    logger.info("comment_added", comment_id=str(comment.id), incident_id=str(body.incident_id))
    return _to_dict(comment)


@router.put("/{comment_id}", status_code=204)
async def update_comment(
    comment_id: uuid.UUID,
    body: UpdateCommentRequest,
    db: AsyncSession = Depends(get_db),
    current_user: Requester = Depends(get_current_user),
):
    """Edit a comment. Only the author or an edit:any holder may do so."""
    comment = await _get_comment_or_404(comment_id, db)
    _authorize_author(current_user, comment, "update_comment")

    if body.content is not None and body.content.strip():
        comment.content = body.content.strip()
    await db.commit()
    return Response(status_code=204)


@router.delete("/{comment_id}", status_code=204)
async def delete_comment(
    comment_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    current_user: Requester = Depends(get_current_user),
):
    comment = await _get_comment_or_404(comment_id, db)
    _authorize_author(current_user, comment, "delete_comment")

    await db.delete(comment)
    await db.commit()

    logger.info("comment_deleted", comment_id=str(comment_id), performed_by=str(current_user.user_id))
    return Response(status_code=204)
