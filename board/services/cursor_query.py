"""
Cursor query engine — keyset-paginated, reverse-chronological listings.

Paging works on the primary key, which grows with creation order:

- first page:   WHERE live ORDER BY id DESC LIMIT n + 1
- next pages:   WHERE live AND id < :last_seen_id ORDER BY id DESC LIMIT n + 1

The extra row only answers "is there a next page" and is trimmed before
returning; the cursor handed back is the id of the last row actually
returned.  Posts inserted after the first call sort above every cursor,
so already-seen pages never shift.  Rows deleted above the cursor between
calls are not compensated for: a page may then hold fewer than ``limit``
live items even though ``has_next`` is true.

Each page or detail read is exactly one SQL statement: author and
aggregate columns are joined, and the detail's "liked by caller",
"caller is author" and main-image values are computed inline.
"""
import logging
from typing import Sequence

from sqlalchemy import false, select
from sqlalchemy.ext.asyncio import AsyncSession

from board.config import settings
from board.exceptions import NotFoundError
from board.models import Comment, Post, PostAggregate, PostImage, PostLike, User
from board.schemas import CursorPage

logger = logging.getLogger(__name__)

WITHDRAWN_NICKNAME = "Withdrawn user"


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def resolve_limit(limit: int | None, default: int, maximum: int) -> int:
    """Clamp *limit* to *maximum*; ``None`` or non-positive values mean *default*."""
    if limit is None or limit <= 0:
        return default
    return min(limit, maximum)


def split_page(rows: Sequence, page_size: int, key: str = "id") -> tuple[list, int | None, bool]:
    """Trim the look-ahead row and return ``(rows, next_cursor, has_next)``."""
    rows = list(rows)
    has_next = len(rows) > page_size
    if has_next:
        rows = rows[:page_size]
    next_cursor = getattr(rows[-1], key) if rows else None
    return rows, next_cursor, has_next


def _author(row) -> dict:
    if row.author_withdrawn:
        return {"nickname": WITHDRAWN_NICKNAME, "profile_image_url": None}
    return {"nickname": row.nickname, "profile_image_url": row.profile_image_url}


def _liked_by(user_id: int | None):
    if user_id is None:
        return false()
    return (
        select(PostLike.id)
        .where(PostLike.post_id == Post.id, PostLike.user_id == user_id)
        .exists()
    )


def _written_by(column, user_id: int | None):
    if user_id is None:
        return false()
    return column == user_id


_AUTHOR_COLUMNS = (
    User.nickname,
    User.profile_image_url,
    User.deleted_at.is_not(None).label("author_withdrawn"),
)


# ---------------------------------------------------------------------------
# Posts
# ---------------------------------------------------------------------------

async def list_posts(
    db: AsyncSession,
    view_cache,
    last_seen_id: int | None = None,
    limit: int | None = None,
    caller_id: int | None = None,
) -> CursorPage:
    """
    Return one page of live posts, newest first.

    View counts combine the stored value with the cache's unflushed
    delta, fetched for the whole page in one call.
    """
    page_size = resolve_limit(limit, settings.DEFAULT_PAGE_SIZE, settings.MAX_PAGE_SIZE)

    q = (
        select(
            Post.id,
            Post.title,
            Post.created_at,
            *_AUTHOR_COLUMNS,
            PostAggregate.like_count,
            PostAggregate.comment_count,
            PostAggregate.view_count,
            _liked_by(caller_id).label("is_liked"),
        )
        .join(User, User.id == Post.user_id)
        .join(PostAggregate, PostAggregate.post_id == Post.id)
        .where(Post.live())
    )
    if last_seen_id is not None:
        q = q.where(Post.id < last_seen_id)
    q = q.order_by(Post.id.desc()).limit(page_size + 1)

    rows, next_cursor, has_next = split_page((await db.execute(q)).all(), page_size)
    deltas = await view_cache.peek_many(r.id for r in rows)

    items = [
        {
            "post_id": r.id,
            "title": r.title,
            "author": _author(r),
            "created_at": r.created_at,
            "stats": {
                "like": r.like_count,
                "comment": r.comment_count,
                "view": r.view_count + deltas.get(r.id, 0),
            },
            "is_liked": bool(r.is_liked),
        }
        for r in rows
    ]
    logger.info(
        "Post list served - last_seen_id=%s limit=%s returned=%d has_next=%s",
        last_seen_id, page_size, len(items), has_next,
    )
    return CursorPage(items=items, last_seen_id=next_cursor, has_next=has_next, limit=page_size)


async def find_post_detail(db: AsyncSession, post_id: int, caller_id: int | None = None) -> dict | None:
    """
    Return the stored detail of a live post, or None.

    The view count here is the stored value only; ``post_service``
    adds the cache delta after recording the view.
    """
    main_image = (
        select(PostImage.image_url)
        .where(PostImage.post_id == Post.id, PostImage.is_main.is_(True), PostImage.live())
        .order_by(PostImage.id.desc())
        .limit(1)
        .scalar_subquery()
    )
    q = (
        select(
            Post.id,
            Post.title,
            Post.content,
            Post.created_at,
            Post.updated_at,
            main_image.label("image_url"),
            *_AUTHOR_COLUMNS,
            PostAggregate.like_count,
            PostAggregate.comment_count,
            PostAggregate.view_count,
            _liked_by(caller_id).label("is_liked"),
            _written_by(Post.user_id, caller_id).label("is_author"),
        )
        .join(User, User.id == Post.user_id)
        .join(PostAggregate, PostAggregate.post_id == Post.id)
        .where(Post.id == post_id, Post.live())
    )
    row = (await db.execute(q)).one_or_none()
    if row is None:
        return None
    return {
        "post_id": row.id,
        "title": row.title,
        "content": row.content,
        "image_url": row.image_url,
        "created_at": row.created_at,
        "updated_at": row.updated_at,
        "author": _author(row),
        "stats": {
            "like": row.like_count,
            "comment": row.comment_count,
            "view": row.view_count,
        },
        "is_liked": bool(row.is_liked),
        "is_author": bool(row.is_author),
    }


# ---------------------------------------------------------------------------
# Comments
# ---------------------------------------------------------------------------

async def list_comments(
    db: AsyncSession,
    post_id: int,
    last_seen_id: int | None = None,
    limit: int | None = None,
    caller_id: int | None = None,
) -> CursorPage:
    """Return one page of a live post's live comments, newest first."""
    post_live = (
        await db.execute(select(Post.id).where(Post.id == post_id, Post.live()))
    ).scalar_one_or_none()
    if post_live is None:
        logger.warning("Comment list failed - post missing or deleted: post_id=%s", post_id)
        raise NotFoundError("post_not_found")

    page_size = resolve_limit(
        limit, settings.DEFAULT_COMMENT_PAGE_SIZE, settings.MAX_COMMENT_PAGE_SIZE
    )
    q = (
        select(
            Comment.id,
            Comment.content,
            Comment.created_at,
            *_AUTHOR_COLUMNS,
            _written_by(Comment.user_id, caller_id).label("is_author"),
        )
        .join(User, User.id == Comment.user_id)
        .where(Comment.post_id == post_id, Comment.live())
    )
    if last_seen_id is not None:
        q = q.where(Comment.id < last_seen_id)
    q = q.order_by(Comment.id.desc()).limit(page_size + 1)

    rows, next_cursor, has_next = split_page((await db.execute(q)).all(), page_size)
    items = [
        {
            "comment_id": r.id,
            "content": r.content,
            "author": _author(r),
            "created_at": r.created_at,
            "is_author": bool(r.is_author),
        }
        for r in rows
    ]
    logger.info(
        "Comment list served - post_id=%s last_seen_id=%s returned=%d has_next=%s",
        post_id, last_seen_id, len(items), has_next,
    )
    return CursorPage(items=items, last_seen_id=next_cursor, has_next=has_next, limit=page_size)
