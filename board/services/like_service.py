"""
Like toggle — one call flips the caller's like on a post.

The like row is written first and the aggregate counter second, inside
the request's transaction.  Two concurrent "like" calls from the same
user are serialised by the (post_id, user_id) unique constraint: the
loser's insert fails, its transaction is rolled back and it reports the
post as liked, which is the state the winner produced.  Two concurrent
"unlike" calls both try to delete the same row; only the one whose DELETE
reports a row decrements the counter.
"""
import logging

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from board.models import PostLike
from board.services import aggregate_store
from board.services.lookups import get_live_post, get_live_user

logger = logging.getLogger(__name__)


async def _current_like_count(db: AsyncSession, post_id: int) -> int:
    counts = await aggregate_store.read_aggregate(db, post_id)
    return counts.like if counts is not None else 0


async def _find_like(db: AsyncSession, user_id: int, post_id: int) -> int | None:
    return (
        await db.execute(
            select(PostLike.id).where(PostLike.post_id == post_id, PostLike.user_id == user_id)
        )
    ).scalar_one_or_none()


async def toggle_like(db: AsyncSession, user_id: int, post_id: int) -> dict:
    """
    Like the post if the caller has not, unlike it otherwise.

    Returns ``{"is_liked": bool, "like_count": int}``.
    Raises ``NotFoundError`` for a missing/deleted post or unknown user and
    ``InternalError`` if the post has no aggregate row to increment.
    """
    logger.info("Like toggle - user_id=%s post_id=%s", user_id, post_id)

    await get_live_post(db, post_id)
    await get_live_user(db, user_id)

    existing = await _find_like(db, user_id, post_id)

    if existing is not None:
        removed = await db.execute(
            delete(PostLike)
            .where(PostLike.id == existing)
            .execution_options(synchronize_session=False)
        )
        is_liked = False
        if removed.rowcount == 1:
            await aggregate_store.decrement_like(db, post_id)
            logger.info("Like removed - like_id=%s user_id=%s post_id=%s", existing, user_id, post_id)
        else:
            # A concurrent unlike deleted the row and already decremented.
            logger.warning(
                "Like already removed - like_id=%s user_id=%s post_id=%s", existing, user_id, post_id
            )
    else:
        like = PostLike(post_id=post_id, user_id=user_id)
        db.add(like)
        try:
            await db.flush()
        except IntegrityError:
            await db.rollback()
            logger.warning(
                "Like toggle raced a concurrent like - user_id=%s post_id=%s", user_id, post_id
            )
            return {"is_liked": True, "like_count": await _current_like_count(db, post_id)}

        rows = await aggregate_store.increment_like(db, post_id)
        aggregate_store.require_row(rows, post_id, "like")
        is_liked = True
        logger.info("Like added - like_id=%s user_id=%s post_id=%s", like.id, user_id, post_id)

    like_count = await _current_like_count(db, post_id)
    logger.info(
        "Like toggle done - user_id=%s post_id=%s is_liked=%s like_count=%s",
        user_id, post_id, is_liked, like_count,
    )
    return {"is_liked": is_liked, "like_count": like_count}
