"""
Aggregate store tests — atomic counter shifts, zero clamping, missing-row
signalling and drift reconciliation.
"""
import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from board.models import Comment, PostLike, User
from board.schemas import PostCreate
from board.services import aggregate_store, post_service


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

async def _create_user(db: AsyncSession, nickname: str = "counter") -> User:
    user = User(email=f"{nickname}@example.com", nickname=nickname)
    db.add(user)
    await db.flush()
    return user


async def _create_post(db: AsyncSession, user_id: int) -> int:
    created = await post_service.create_post(db, user_id, PostCreate(title="Counted", content="C"))
    return created["post_id"]


# ---------------------------------------------------------------------------
# Counter operations
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_new_post_has_zeroed_aggregate(db_session: AsyncSession):
    user = await _create_user(db_session)
    post_id = await _create_post(db_session, user.id)

    counts = await aggregate_store.read_aggregate(db_session, post_id)
    assert counts == aggregate_store.AggregateCounts(view=0, like=0, comment=0)


@pytest.mark.asyncio
async def test_increments_and_decrements_shift_one_row(db_session: AsyncSession):
    user = await _create_user(db_session)
    post_id = await _create_post(db_session, user.id)

    assert await aggregate_store.increment_like(db_session, post_id) == 1
    assert await aggregate_store.increment_like(db_session, post_id) == 1
    assert await aggregate_store.decrement_like(db_session, post_id) == 1
    assert await aggregate_store.increment_comment(db_session, post_id) == 1
    assert await aggregate_store.increment_view(db_session, post_id, 7) == 1

    counts = await aggregate_store.read_aggregate(db_session, post_id)
    assert counts.like == 1
    assert counts.comment == 1
    assert counts.view == 7


@pytest.mark.asyncio
async def test_decrement_clamps_at_zero(db_session: AsyncSession):
    user = await _create_user(db_session)
    post_id = await _create_post(db_session, user.id)

    assert await aggregate_store.decrement_like(db_session, post_id) == 0
    assert await aggregate_store.decrement_comment(db_session, post_id) == 0

    counts = await aggregate_store.read_aggregate(db_session, post_id)
    assert counts.like == 0
    assert counts.comment == 0


@pytest.mark.asyncio
async def test_missing_row_reports_zero_rows(db_session: AsyncSession):
    assert await aggregate_store.increment_like(db_session, 424242) == 0
    assert await aggregate_store.decrement_like(db_session, 424242) == 0
    assert await aggregate_store.increment_view(db_session, 424242, 3) == 0
    assert await aggregate_store.read_aggregate(db_session, 424242) is None


@pytest.mark.asyncio
async def test_increment_view_rejects_non_positive_amount(db_session: AsyncSession):
    with pytest.raises(ValueError):
        await aggregate_store.increment_view(db_session, 1, 0)


def test_require_row_raises_internal_error():
    from board.exceptions import InternalError

    aggregate_store.require_row(1, 5, "like")
    with pytest.raises(InternalError):
        aggregate_store.require_row(0, 5, "like")


@pytest.mark.asyncio
async def test_delete_aggregate(db_session: AsyncSession):
    user = await _create_user(db_session)
    post_id = await _create_post(db_session, user.id)

    assert await aggregate_store.delete_aggregate(db_session, post_id) == 1
    assert await aggregate_store.delete_aggregate(db_session, post_id) == 0
    assert await aggregate_store.read_aggregate(db_session, post_id) is None


# ---------------------------------------------------------------------------
# Reconciliation
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_reconcile_fixes_drifted_counts(db_session: AsyncSession):
    author = await _create_user(db_session, "author")
    fan = await _create_user(db_session, "fan")
    drifted = await _create_post(db_session, author.id)
    healthy = await _create_post(db_session, author.id)

    # Rows written without their counter updates, as after a crash mid-toggle.
    db_session.add(PostLike(post_id=drifted, user_id=fan.id))
    db_session.add(Comment(post_id=drifted, user_id=fan.id, content="live"))
    gone = Comment(post_id=drifted, user_id=fan.id, content="gone")
    gone.soft_delete()
    db_session.add(gone)
    await db_session.flush()
    await aggregate_store.increment_view(db_session, drifted, 9)

    fixed = await aggregate_store.reconcile_aggregates(db_session)
    assert fixed == 1

    counts = await aggregate_store.read_aggregate(db_session, drifted)
    assert counts.like == 1
    assert counts.comment == 1
    assert counts.view == 9  # views are never recomputed

    assert await aggregate_store.read_aggregate(db_session, healthy) == aggregate_store.AggregateCounts(0, 0, 0)
    assert await aggregate_store.reconcile_aggregates(db_session) == 0
