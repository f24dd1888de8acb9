"""
Aggregate store — durable per-post view/like/comment counters.

Every counter change is one ``UPDATE ... SET c = c + :n`` executed by the
database, never a read-then-write in Python, so concurrent toggles on the
same post cannot lose updates.  Each write returns the number of rows it
touched; ``0`` means the aggregate row is gone (or, for a decrement, the
counter is already zero).

Callers decide how serious a zero is:

- decrements: benign (racing a cascade delete), logged and ignored;
- like/comment increments: an invariant violation, see ``require_row``.
"""
import logging
from dataclasses import dataclass

from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from board.exceptions import InternalError
from board.models import Comment, Post, PostAggregate, PostLike

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AggregateCounts:
    view: int
    like: int
    comment: int


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------

async def _shift(db: AsyncSession, post_id: int, column, amount: int) -> int:
    stmt = (
        update(PostAggregate)
        .where(PostAggregate.post_id == post_id)
        .values({column: column + amount})
        .execution_options(synchronize_session=False)
    )
    if amount < 0:
        # Clamp at zero: a decrement on an empty counter matches no row.
        stmt = stmt.where(column >= -amount)
    result = await db.execute(stmt)
    return result.rowcount


def _log_missed_decrement(rows: int, post_id: int, counter: str) -> int:
    if rows == 0:
        logger.warning(
            "%s decrement skipped - aggregate missing or already 0: post_id=%s",
            counter, post_id,
        )
    return rows


def require_row(rows: int, post_id: int, counter: str) -> None:
    """Raise ``InternalError`` when an increment found no aggregate row."""
    if rows == 0:
        logger.error("%s increment failed - aggregate row missing: post_id=%s", counter, post_id)
        raise InternalError(detail=f"aggregate row missing for post {post_id}")


# ---------------------------------------------------------------------------
# Counter operations
# ---------------------------------------------------------------------------

async def increment_like(db: AsyncSession, post_id: int) -> int:
    return await _shift(db, post_id, PostAggregate.like_count, 1)


async def decrement_like(db: AsyncSession, post_id: int) -> int:
    rows = await _shift(db, post_id, PostAggregate.like_count, -1)
    return _log_missed_decrement(rows, post_id, "like")


async def increment_comment(db: AsyncSession, post_id: int) -> int:
    return await _shift(db, post_id, PostAggregate.comment_count, 1)


async def decrement_comment(db: AsyncSession, post_id: int) -> int:
    rows = await _shift(db, post_id, PostAggregate.comment_count, -1)
    return _log_missed_decrement(rows, post_id, "comment")


async def increment_view(db: AsyncSession, post_id: int, amount: int) -> int:
    """Add *amount* flushed views; only the view-count cache calls this."""
    if amount <= 0:
        raise ValueError("amount must be positive")
    return await _shift(db, post_id, PostAggregate.view_count, amount)


async def read_aggregate(db: AsyncSession, post_id: int) -> AggregateCounts | None:
    """
    Return the stored counters for *post_id*, or None when the row is gone.

    Columns are selected directly (not the entity) so the values always
    come from the database rather than a stale identity-map instance.
    """
    q = select(
        PostAggregate.view_count, PostAggregate.like_count, PostAggregate.comment_count
    ).where(PostAggregate.post_id == post_id)
    row = (await db.execute(q)).one_or_none()
    if row is None:
        return None
    return AggregateCounts(view=row.view_count, like=row.like_count, comment=row.comment_count)


# ---------------------------------------------------------------------------
# Row lifecycle
# ---------------------------------------------------------------------------

async def create_aggregate(db: AsyncSession, post_id: int) -> None:
    db.add(PostAggregate(post_id=post_id, view_count=0, like_count=0, comment_count=0))
    await db.flush()


async def delete_aggregate(db: AsyncSession, post_id: int) -> int:
    result = await db.execute(
        delete(PostAggregate)
        .where(PostAggregate.post_id == post_id)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount


# ---------------------------------------------------------------------------
# Drift reconciliation
# ---------------------------------------------------------------------------

async def reconcile_aggregates(db: AsyncSession) -> int:
    """
    Recompute like/comment counts of live posts from their live rows and
    rewrite the aggregates that drifted.  Returns the number of rows fixed.

    Drift only appears if a process dies between a row write and its
    counter write outside a transaction; view counts are not touched.
    """
    like_counts = (
        select(PostLike.post_id, func.count().label("n"))
        .group_by(PostLike.post_id)
        .subquery()
    )
    comment_counts = (
        select(Comment.post_id, func.count().label("n"))
        .where(Comment.live())
        .group_by(Comment.post_id)
        .subquery()
    )
    actual_likes = func.coalesce(like_counts.c.n, 0)
    actual_comments = func.coalesce(comment_counts.c.n, 0)

    q = (
        select(PostAggregate.post_id, actual_likes.label("likes"), actual_comments.label("comments"))
        .join(Post, Post.id == PostAggregate.post_id)
        .outerjoin(like_counts, like_counts.c.post_id == PostAggregate.post_id)
        .outerjoin(comment_counts, comment_counts.c.post_id == PostAggregate.post_id)
        .where(
            Post.live(),
            (PostAggregate.like_count != actual_likes)
            | (PostAggregate.comment_count != actual_comments),
        )
    )
    drifted = (await db.execute(q)).all()

    for row in drifted:
        await db.execute(
            update(PostAggregate)
            .where(PostAggregate.post_id == row.post_id)
            .values(like_count=row.likes, comment_count=row.comments)
            .execution_options(synchronize_session=False)
        )
        logger.warning(
            "Aggregate drift corrected: post_id=%s likes=%s comments=%s",
            row.post_id, row.likes, row.comments,
        )

    if drifted:
        logger.info("Aggregate reconciliation fixed %d row(s)", len(drifted))
    return len(drifted)
