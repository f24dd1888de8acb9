"""
Post service — post lifecycle, detail reads and the deletion cascade.

Design notes
------------
- A post and its aggregate row are inserted in the same transaction, so
  every live post has counters to increment.
- Detail reads record a view in the write-back cache and report
  ``stored view_count + cached delta``; the stored value alone would
  appear to go backwards between flushes.
- Deleting a post is a cascade of bulk statements, in this order:

    1. soft-delete the post
    2. soft-delete its images
    3. soft-delete its live comments
    4. hard-delete its likes
    5. hard-delete its aggregate row

  Each step is logged with its row count; zero rows for steps 2-5 is
  normal.  The steps share the request transaction.  The post is hidden
  first so that, on engines without transactions, a partial failure
  still leaves it invisible to readers.  Step 1 is conditional on the
  post still being live, so of two overlapping deletes only one runs
  the cascade and the other is NotFound.
- Image blobs are not part of the transaction.  Services return the URLs
  they released and the HTTP layer hands them to ``purge_images`` after
  the response, where failures are logged and never raised.
"""
import logging
from typing import Awaitable, Callable, Iterable

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from board.exceptions import ForbiddenError, InvalidRequestError, NotFoundError
from board.models import Comment, Post, PostImage, PostLike, utcnow
from board.schemas import CursorPage, PostCreate, PostUpdate
from board.services import aggregate_store, cursor_query
from board.services.lookups import get_live_post, get_live_user, get_post

logger = logging.getLogger(__name__)

ImageDeleter = Callable[[str], Awaitable[None]]


# ---------------------------------------------------------------------------
# Image helpers
# ---------------------------------------------------------------------------

async def _soft_delete_images(db: AsyncSession, post_id: int, at) -> list[str]:
    """Soft-delete every live image of *post_id* and return their URLs."""
    urls = (
        await db.execute(
            select(PostImage.image_url).where(PostImage.post_id == post_id, PostImage.live())
        )
    ).scalars().all()
    if urls:
        await db.execute(
            update(PostImage)
            .where(PostImage.post_id == post_id, PostImage.live())
            .values(deleted_at=at)
            .execution_options(synchronize_session=False)
        )
    return list(urls)


async def purge_images(urls: Iterable[str], image_deleter: ImageDeleter | None) -> int:
    """
    Best-effort blob removal for released image URLs.

    Returns the number of blobs removed.  Orphaned blobs are cleaned up
    elsewhere, so failures are only logged.
    """
    urls = list(urls)
    if not urls:
        return 0
    if image_deleter is None:
        logger.debug("No image deleter configured; %d blob(s) left in place", len(urls))
        return 0

    removed = 0
    for url in urls:
        try:
            await image_deleter(url)
            removed += 1
        except Exception:
            logger.exception("Image blob deletion failed - url=%s", url)
    return removed


# ---------------------------------------------------------------------------
# Public service functions
# ---------------------------------------------------------------------------

async def create_post(db: AsyncSession, user_id: int, data: PostCreate) -> dict:
    logger.info("Post create - user_id=%s title=%r", user_id, data.title)

    await get_live_user(db, user_id)

    post = Post(user_id=user_id, title=data.title, content=data.content)
    db.add(post)
    await db.flush()

    await aggregate_store.create_aggregate(db, post.id)

    if data.image_url:
        db.add(PostImage(post_id=post.id, image_url=data.image_url, image_order=0, is_main=True))
        await db.flush()

    logger.info("Post created - post_id=%s", post.id)
    return {"post_id": post.id}


async def update_post(db: AsyncSession, user_id: int, post_id: int, data: PostUpdate) -> dict:
    """
    Partially update a live post.

    Returns ``{"post_id": int, "released_image_urls": [...]}``; the URLs
    belong to images replaced or removed by this update.
    """
    logger.info("Post update - user_id=%s post_id=%s", user_id, post_id)

    post = await get_live_post(db, post_id)
    if not post.belongs_to(user_id):
        logger.warning("Post update denied - user_id=%s post_id=%s", user_id, post_id)
        raise ForbiddenError("not_post_author")
    if not data.has_any_update():
        logger.warning("Post update rejected - nothing to update: post_id=%s", post_id)
        raise InvalidRequestError(detail="nothing to update")

    now = utcnow()
    released: list[str] = []
    if data.image_url is not None:
        released = await _soft_delete_images(db, post_id, now)
        if data.image_url:
            db.add(PostImage(post_id=post_id, image_url=data.image_url, image_order=0, is_main=True))

    if data.title is not None:
        post.title = data.title
    if data.content is not None:
        post.content = data.content
    post.updated_at = now
    await db.flush()

    logger.info("Post updated - post_id=%s released_images=%d", post_id, len(released))
    return {"post_id": post_id, "released_image_urls": released}


async def list_posts(
    db: AsyncSession,
    view_cache,
    last_seen_id: int | None = None,
    limit: int | None = None,
    caller_id: int | None = None,
) -> CursorPage:
    return await cursor_query.list_posts(db, view_cache, last_seen_id, limit, caller_id)


async def get_post_detail(
    db: AsyncSession, view_cache, post_id: int, caller_id: int | None = None
) -> dict:
    """
    Return the detail of a live post and count the view.

    Raises ``NotFoundError`` for missing and soft-deleted posts alike.
    """
    detail = await cursor_query.find_post_detail(db, post_id, caller_id)
    if detail is None:
        logger.warning("Post detail failed - missing or deleted: post_id=%s", post_id)
        raise NotFoundError("post_not_found")

    stored = detail["stats"]["view"]
    delta = await view_cache.record_view(post_id)
    detail["stats"]["view"] = stored + delta

    logger.info(
        "Post detail served - post_id=%s views=%s (stored=%s cached=+%s)",
        post_id, stored + delta, stored, delta,
    )
    return detail


async def delete_post(db: AsyncSession, user_id: int, post_id: int) -> list[str]:
    """
    Soft-delete a post and cascade to its images, comments, likes and
    aggregate row.  Returns the URLs of the images it released.

    Deleting an already deleted post is NotFound, not a no-op.
    """
    logger.info("Post delete - user_id=%s post_id=%s", user_id, post_id)

    post = await get_post(db, post_id)
    if post is None:
        logger.warning("Post delete failed - missing: post_id=%s", post_id)
        raise NotFoundError("post_not_found")
    if post.is_deleted:
        logger.warning("Post delete failed - already deleted: post_id=%s", post_id)
        raise NotFoundError("post_not_found")
    if not post.belongs_to(user_id):
        logger.warning("Post delete denied - user_id=%s post_id=%s", user_id, post_id)
        raise ForbiddenError("not_post_author")

    now = utcnow()

    # 1. post; zero rows means a concurrent delete got there first
    hidden = await db.execute(
        update(Post)
        .where(Post.id == post_id, Post.live())
        .values(deleted_at=now)
        .execution_options(synchronize_session=False)
    )
    if hidden.rowcount == 0:
        logger.warning("Post delete lost a race - already deleted: post_id=%s", post_id)
        raise NotFoundError("post_not_found")
    logger.info("Post soft-deleted - post_id=%s", post_id)

    # 2. images
    released = await _soft_delete_images(db, post_id, now)
    logger.info("Post images soft-deleted - post_id=%s rows=%d", post_id, len(released))

    # 3. comments
    comments = await db.execute(
        update(Comment)
        .where(Comment.post_id == post_id, Comment.live())
        .values(deleted_at=now)
        .execution_options(synchronize_session=False)
    )
    logger.info("Post comments soft-deleted - post_id=%s rows=%d", post_id, comments.rowcount)

    # 4. likes
    likes = await db.execute(
        delete(PostLike)
        .where(PostLike.post_id == post_id)
        .execution_options(synchronize_session=False)
    )
    logger.info("Post likes hard-deleted - post_id=%s rows=%d", post_id, likes.rowcount)

    # 5. aggregate
    aggregates = await aggregate_store.delete_aggregate(db, post_id)
    logger.info("Post aggregate hard-deleted - post_id=%s rows=%d", post_id, aggregates)

    logger.info("Post delete done - post_id=%s", post_id)
    return released
