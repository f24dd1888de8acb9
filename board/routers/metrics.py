from fastapi import APIRouter, Depends
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from board.database import get_db
from board.dependencies import get_view_cache
from board.models import Comment, Post, PostLike, User
from board.schemas import MetricsResponse
from board.view_cache import ViewCountCache

router = APIRouter(prefix="/api/v1/metrics", tags=["metrics"])


@router.get("", response_model=MetricsResponse)
async def get_metrics(
    view_cache: ViewCountCache = Depends(get_view_cache),
    db: AsyncSession = Depends(get_db),
):
    total_posts = (
        await db.execute(select(func.count()).select_from(Post).where(Post.live()))
    ).scalar_one()

    total_comments = (
        await db.execute(select(func.count()).select_from(Comment).where(Comment.live()))
    ).scalar_one()

    total_likes = (await db.execute(select(func.count()).select_from(PostLike))).scalar_one()

    total_users = (
        await db.execute(select(func.count()).select_from(User).where(User.live()))
    ).scalar_one()

    return MetricsResponse(
        total_posts=total_posts,
        total_comments=total_comments,
        total_likes=total_likes,
        total_users=total_users,
        view_cache=await view_cache.stats(),
    )
