"""
Like toggle tests — state flips, counter consistency and rejection paths.
"""
import random

import pytest
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from board.exceptions import NotFoundError
from board.models import PostLike, User
from board.schemas import PostCreate
from board.services import aggregate_store, like_service, post_service


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

async def _create_user(db: AsyncSession, nickname: str) -> User:
    user = User(email=f"{nickname}@example.com", nickname=nickname)
    db.add(user)
    await db.flush()
    return user


async def _create_post(db: AsyncSession, user_id: int) -> int:
    created = await post_service.create_post(db, user_id, PostCreate(title="Likeable", content="C"))
    return created["post_id"]


async def _like_rows(db: AsyncSession, post_id: int) -> int:
    return (
        await db.execute(select(func.count()).select_from(PostLike).where(PostLike.post_id == post_id))
    ).scalar_one()


# ---------------------------------------------------------------------------
# Toggle
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_toggle_like_on_then_off(db_session: AsyncSession):
    author = await _create_user(db_session, "author")
    fan = await _create_user(db_session, "fan")
    post_id = await _create_post(db_session, author.id)

    first = await like_service.toggle_like(db_session, fan.id, post_id)
    assert first == {"is_liked": True, "like_count": 1}
    assert await _like_rows(db_session, post_id) == 1

    second = await like_service.toggle_like(db_session, fan.id, post_id)
    assert second == {"is_liked": False, "like_count": 0}
    assert await _like_rows(db_session, post_id) == 0


@pytest.mark.asyncio
async def test_likes_from_distinct_users_accumulate(db_session: AsyncSession):
    author = await _create_user(db_session, "author")
    post_id = await _create_post(db_session, author.id)
    fans = [await _create_user(db_session, f"fan{i}") for i in range(4)]

    results = [await like_service.toggle_like(db_session, fan.id, post_id) for fan in fans]
    assert [r["like_count"] for r in results] == [1, 2, 3, 4]

    counts = await aggregate_store.read_aggregate(db_session, post_id)
    assert counts.like == 4


@pytest.mark.asyncio
async def test_like_count_matches_last_action_per_user(db_session: AsyncSession):
    """Any interleaving of toggles leaves like_count equal to the liking users."""
    author = await _create_user(db_session, "author")
    post_id = await _create_post(db_session, author.id)
    users = [await _create_user(db_session, f"user{i}") for i in range(6)]

    rng = random.Random(20240611)
    liked: dict[int, bool] = {u.id: False for u in users}
    for _ in range(60):
        user = rng.choice(users)
        result = await like_service.toggle_like(db_session, user.id, post_id)
        liked[user.id] = not liked[user.id]
        assert result["is_liked"] is liked[user.id]

    expected = sum(liked.values())
    counts = await aggregate_store.read_aggregate(db_session, post_id)
    assert counts.like == expected
    assert await _like_rows(db_session, post_id) == expected


# ---------------------------------------------------------------------------
# Rejections
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_like_on_missing_or_deleted_post_is_not_found(db_session: AsyncSession):
    author = await _create_user(db_session, "author")
    fan = await _create_user(db_session, "fan")
    post_id = await _create_post(db_session, author.id)
    await post_service.delete_post(db_session, author.id, post_id)

    with pytest.raises(NotFoundError) as deleted:
        await like_service.toggle_like(db_session, fan.id, post_id)
    assert deleted.value.code == "post_not_found"

    with pytest.raises(NotFoundError):
        await like_service.toggle_like(db_session, fan.id, 99999)


@pytest.mark.asyncio
async def test_like_by_unknown_or_withdrawn_user_is_not_found(db_session: AsyncSession):
    author = await _create_user(db_session, "author")
    post_id = await _create_post(db_session, author.id)
    leaver = await _create_user(db_session, "leaver")
    leaver.soft_delete()
    await db_session.flush()

    with pytest.raises(NotFoundError) as unknown:
        await like_service.toggle_like(db_session, 99999, post_id)
    assert unknown.value.code == "user_not_found"

    with pytest.raises(NotFoundError):
        await like_service.toggle_like(db_session, leaver.id, post_id)

    assert await _like_rows(db_session, post_id) == 0


# ---------------------------------------------------------------------------
# Overlapping toggles
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_overlapping_unlikes_decrement_once(db_session: AsyncSession, monkeypatch):
    author = await _create_user(db_session, "author")
    fan = await _create_user(db_session, "fan")
    other = await _create_user(db_session, "other")
    post_id = await _create_post(db_session, author.id)
    await like_service.toggle_like(db_session, fan.id, post_id)
    await like_service.toggle_like(db_session, other.id, post_id)

    real_find = like_service._find_like
    raced = False

    async def find_then_race(db, user_id, pid):
        # A second unlike by the same user finishes after our lookup.
        nonlocal raced
        found = await real_find(db, user_id, pid)
        if not raced:
            raced = True
            await like_service.toggle_like(db, user_id, pid)
        return found

    monkeypatch.setattr(like_service, "_find_like", find_then_race)
    result = await like_service.toggle_like(db_session, fan.id, post_id)

    assert result == {"is_liked": False, "like_count": 1}
    assert await _like_rows(db_session, post_id) == 1
    counts = await aggregate_store.read_aggregate(db_session, post_id)
    assert counts.like == 1


@pytest.mark.asyncio
async def test_interleaved_toggles_from_distinct_users(db_session: AsyncSession, monkeypatch):
    """Toggles landing inside another toggle's read-then-write window stay consistent."""
    author = await _create_user(db_session, "author")
    post_id = await _create_post(db_session, author.id)
    users = [await _create_user(db_session, f"user{i}") for i in range(5)]

    real_find = like_service._find_like
    pending: list[int] = []

    async def find_then_interleave(db, user_id, pid):
        found = await real_find(db, user_id, pid)
        while pending:
            await like_service.toggle_like(db, pending.pop(), pid)
        return found

    monkeypatch.setattr(like_service, "_find_like", find_then_interleave)

    rng = random.Random(99)
    liked: dict[int, bool] = {u.id: False for u in users}
    for _ in range(40):
        caller, intruder = rng.sample(users, 2)
        pending.append(intruder.id)
        await like_service.toggle_like(db_session, caller.id, post_id)
        liked[caller.id] = not liked[caller.id]
        liked[intruder.id] = not liked[intruder.id]

    expected = sum(liked.values())
    counts = await aggregate_store.read_aggregate(db_session, post_id)
    assert counts.like == expected
    assert await _like_rows(db_session, post_id) == expected


@pytest.mark.asyncio
async def test_duplicate_like_insert_reports_liked(db_session: AsyncSession, monkeypatch):
    author = await _create_user(db_session, "author")
    fan = await _create_user(db_session, "fan")
    fan_id = fan.id
    post_id = await _create_post(db_session, author.id)
    await like_service.toggle_like(db_session, fan_id, post_id)
    await db_session.commit()

    async def lookup_before_winner(db, user_id, pid):
        # Both requests looked before either inserted.
        return None

    monkeypatch.setattr(like_service, "_find_like", lookup_before_winner)
    result = await like_service.toggle_like(db_session, fan_id, post_id)

    assert result == {"is_liked": True, "like_count": 1}
    assert await _like_rows(db_session, post_id) == 1
