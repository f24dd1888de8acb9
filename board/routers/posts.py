from fastapi import APIRouter, BackgroundTasks, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from board.database import get_db
from board.dependencies import (
    CursorParams,
    get_caller_id,
    get_image_deleter,
    get_view_cache,
    require_caller_id,
)
from board.schemas import CursorPage, LikeResult, PostCreate, PostDetail, PostSummary, PostUpdate
from board.services import like_service, post_service
from board.view_cache import ViewCountCache

router = APIRouter(prefix="/api/v1/posts", tags=["posts"])


@router.get("", response_model=CursorPage[PostSummary])
async def list_posts(
    cursor: CursorParams = Depends(),
    caller_id: int | None = Depends(get_caller_id),
    view_cache: ViewCountCache = Depends(get_view_cache),
    db: AsyncSession = Depends(get_db),
):
    return await post_service.list_posts(
        db, view_cache, cursor.last_seen_id, cursor.limit, caller_id
    )


@router.post("", status_code=201)
async def create_post(
    data: PostCreate,
    caller_id: int = Depends(require_caller_id),
    db: AsyncSession = Depends(get_db),
):
    return await post_service.create_post(db, caller_id, data)


@router.get("/{post_id}", response_model=PostDetail)
async def get_post(
    post_id: int,
    caller_id: int | None = Depends(get_caller_id),
    view_cache: ViewCountCache = Depends(get_view_cache),
    db: AsyncSession = Depends(get_db),
):
    return await post_service.get_post_detail(db, view_cache, post_id, caller_id)


@router.patch("/{post_id}")
async def update_post(
    post_id: int,
    data: PostUpdate,
    background_tasks: BackgroundTasks,
    caller_id: int = Depends(require_caller_id),
    image_deleter=Depends(get_image_deleter),
    db: AsyncSession = Depends(get_db),
):
    result = await post_service.update_post(db, caller_id, post_id, data)
    background_tasks.add_task(post_service.purge_images, result["released_image_urls"], image_deleter)
    return {"post_id": result["post_id"]}


@router.delete("/{post_id}", status_code=204)
async def delete_post(
    post_id: int,
    background_tasks: BackgroundTasks,
    caller_id: int = Depends(require_caller_id),
    image_deleter=Depends(get_image_deleter),
    db: AsyncSession = Depends(get_db),
):
    released = await post_service.delete_post(db, caller_id, post_id)
    background_tasks.add_task(post_service.purge_images, released, image_deleter)


@router.post("/{post_id}/like", response_model=LikeResult)
async def toggle_like(
    post_id: int,
    caller_id: int = Depends(require_caller_id),
    db: AsyncSession = Depends(get_db),
):
    return await like_service.toggle_like(db, caller_id, post_id)
