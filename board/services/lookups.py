"""Point lookups shared by the mutating services."""
import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from board.exceptions import NotFoundError
from board.models import Comment, Post, User

logger = logging.getLogger(__name__)


async def _load(db: AsyncSession, model, entity_id: int):
    # populate_existing: bulk soft-deletes bypass the identity map, so a
    # previously loaded instance may carry a stale deleted_at.
    q = select(model).where(model.id == entity_id).execution_options(populate_existing=True)
    return (await db.execute(q)).scalar_one_or_none()


async def get_post(db: AsyncSession, post_id: int) -> Post | None:
    """Return the post row whether live or soft-deleted, or None."""
    return await _load(db, Post, post_id)


async def get_live_post(db: AsyncSession, post_id: int) -> Post:
    post = await get_post(db, post_id)
    if post is None or post.is_deleted:
        logger.warning("Post lookup failed - missing or deleted: post_id=%s", post_id)
        raise NotFoundError("post_not_found")
    return post


async def get_live_user(db: AsyncSession, user_id: int) -> User:
    user = await _load(db, User, user_id)
    if user is None or user.is_deleted:
        logger.error("User lookup failed - missing or withdrawn: user_id=%s", user_id)
        raise NotFoundError("user_not_found")
    return user


async def get_live_comment(db: AsyncSession, comment_id: int) -> Comment:
    comment = await _load(db, Comment, comment_id)
    if comment is None or comment.is_deleted:
        logger.warning("Comment lookup failed - missing or deleted: comment_id=%s", comment_id)
        raise NotFoundError("comment_not_found")
    return comment
