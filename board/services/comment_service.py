"""
Comment service — create, edit, soft-delete and list comments on a post.

Comment writes keep ``post_aggregates.comment_count`` in lock-step: the
row change is flushed first, the counter is shifted second, and the
count handed back to the caller is read after both, all inside the
request's transaction.

Edit and delete check, in this order: the comment exists and is live
(NotFound), it belongs to the post in the path (InvalidRequest), the
caller wrote it (Forbidden).  A soft-deleted comment is terminal: any
further edit or delete is NotFound, never a silent success.
"""
import logging

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from board.exceptions import ForbiddenError, InvalidRequestError, NotFoundError
from board.models import Comment, utcnow
from board.schemas import CommentCreate, CommentUpdate, CursorPage
from board.services import aggregate_store, cursor_query
from board.services.lookups import get_live_comment, get_live_post, get_live_user

logger = logging.getLogger(__name__)


async def _current_comment_count(db: AsyncSession, post_id: int) -> int:
    counts = await aggregate_store.read_aggregate(db, post_id)
    return counts.comment if counts is not None else 0


async def _load_owned_comment(
    db: AsyncSession, user_id: int, post_id: int, comment_id: int
) -> Comment:
    comment = await get_live_comment(db, comment_id)

    if not comment.belongs_to_post(post_id):
        logger.warning(
            "Comment post mismatch - comment_id=%s path_post_id=%s actual_post_id=%s",
            comment_id, post_id, comment.post_id,
        )
        raise InvalidRequestError(detail="comment does not belong to this post")

    if not comment.is_written_by(user_id):
        logger.warning(
            "Comment access denied - user_id=%s comment_id=%s author_id=%s",
            user_id, comment_id, comment.user_id,
        )
        raise ForbiddenError("not_comment_author")

    return comment


async def create_comment(
    db: AsyncSession, user_id: int, post_id: int, data: CommentCreate
) -> dict:
    """
    Attach a comment to a live post.

    Returns ``{"comment": {...}, "comment_count": int}`` where the count
    already includes the new comment.
    """
    logger.info("Comment create - user_id=%s post_id=%s", user_id, post_id)

    await get_live_post(db, post_id)
    user = await get_live_user(db, user_id)

    comment = Comment(post_id=post_id, user_id=user_id, content=data.content)
    db.add(comment)
    await db.flush()

    rows = await aggregate_store.increment_comment(db, post_id)
    aggregate_store.require_row(rows, post_id, "comment")

    comment_count = await _current_comment_count(db, post_id)
    logger.info(
        "Comment created - comment_id=%s post_id=%s comment_count=%s",
        comment.id, post_id, comment_count,
    )
    return {
        "comment": {
            "comment_id": comment.id,
            "content": comment.content,
            "author": {
                "nickname": user.nickname,
                "profile_image_url": user.profile_image_url,
            },
            "created_at": comment.created_at,
        },
        "comment_count": comment_count,
    }


async def update_comment(
    db: AsyncSession, user_id: int, post_id: int, comment_id: int, data: CommentUpdate
) -> dict:
    logger.info("Comment edit - user_id=%s post_id=%s comment_id=%s", user_id, post_id, comment_id)

    comment = await _load_owned_comment(db, user_id, post_id, comment_id)
    comment.content = data.content
    comment.updated_at = utcnow()
    await db.flush()

    logger.info("Comment edited - comment_id=%s", comment_id)
    return {"comment_id": comment_id}


async def delete_comment(db: AsyncSession, user_id: int, post_id: int, comment_id: int) -> dict:
    """
    Soft-delete a comment and decrement the post's comment count.

    A missing aggregate row during the decrement (the post is being
    deleted concurrently) is logged by the aggregate store and does not
    fail the call: the comment itself was deleted.
    """
    logger.info(
        "Comment delete - user_id=%s post_id=%s comment_id=%s", user_id, post_id, comment_id
    )

    await _load_owned_comment(db, user_id, post_id, comment_id)

    # Only the caller whose UPDATE hides the row owns the decrement.
    hidden = await db.execute(
        update(Comment)
        .where(Comment.id == comment_id, Comment.live())
        .values(deleted_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    if hidden.rowcount == 0:
        logger.warning("Comment delete lost a race - already deleted: comment_id=%s", comment_id)
        raise NotFoundError("comment_not_found")

    await aggregate_store.decrement_comment(db, post_id)

    comment_count = await _current_comment_count(db, post_id)
    logger.info(
        "Comment deleted - comment_id=%s post_id=%s comment_count=%s",
        comment_id, post_id, comment_count,
    )
    return {"comment_count": comment_count}


async def list_comments(
    db: AsyncSession,
    post_id: int,
    last_seen_id: int | None = None,
    limit: int | None = None,
    caller_id: int | None = None,
) -> CursorPage:
    return await cursor_query.list_comments(db, post_id, last_seen_id, limit, caller_id)
