from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from board.database import get_db
from board.dependencies import CursorParams, get_caller_id, require_caller_id
from board.schemas import CommentCreate, CommentSummary, CommentUpdate, CursorPage
from board.services import comment_service

router = APIRouter(prefix="/api/v1/posts/{post_id}/comments", tags=["comments"])


@router.get("", response_model=CursorPage[CommentSummary])
async def list_comments(
    post_id: int,
    cursor: CursorParams = Depends(),
    caller_id: int | None = Depends(get_caller_id),
    db: AsyncSession = Depends(get_db),
):
    return await comment_service.list_comments(
        db, post_id, cursor.last_seen_id, cursor.limit, caller_id
    )


@router.post("", status_code=201)
async def create_comment(
    post_id: int,
    data: CommentCreate,
    caller_id: int = Depends(require_caller_id),
    db: AsyncSession = Depends(get_db),
):
    return await comment_service.create_comment(db, caller_id, post_id, data)


@router.patch("/{comment_id}")
async def update_comment(
    post_id: int,
    comment_id: int,
    data: CommentUpdate,
    caller_id: int = Depends(require_caller_id),
    db: AsyncSession = Depends(get_db),
):
    return await comment_service.update_comment(db, caller_id, post_id, comment_id, data)


@router.delete("/{comment_id}")
async def delete_comment(
    post_id: int,
    comment_id: int,
    caller_id: int = Depends(require_caller_id),
    db: AsyncSession = Depends(get_db),
):
    return await comment_service.delete_comment(db, caller_id, post_id, comment_id)
