import asyncio
import logging
from dataclasses import dataclass
from typing import Iterable

import redis.asyncio as redis
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from board.config import settings
from board.scheduler import PeriodicTask
from board.services import aggregate_store

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Delta stores
# ---------------------------------------------------------------------------

class MemoryDeltaStore:
    """
    Process-local map of post id -> views since the last flush.

    Each method reads and writes the dict without awaiting in between, so
    every per-entry increment or subtraction is atomic on the event loop
    and no lock spans the whole map.
    """

    def __init__(self) -> None:
        self._deltas: dict[int, int] = {}

    async def incr(self, post_id: int) -> int:
        value = self._deltas.get(post_id, 0) + 1
        self._deltas[post_id] = value
        return value

    async def get(self, post_id: int) -> int:
        return self._deltas.get(post_id, 0)

    async def get_many(self, post_ids: Iterable[int]) -> dict[int, int]:
        return {pid: self._deltas.get(pid, 0) for pid in post_ids}

    async def snapshot(self) -> dict[int, int]:
        return dict(self._deltas)

    async def ack(self, post_id: int, amount: int) -> None:
        """Subtract a flushed *amount*; views recorded since the snapshot stay."""
        remaining = self._deltas.get(post_id, 0) - amount
        if remaining > 0:
            self._deltas[post_id] = remaining
        else:
            self._deltas.pop(post_id, None)

    async def discard(self, post_id: int) -> None:
        self._deltas.pop(post_id, None)

    async def close(self) -> None:
        pass


# Subtract the flushed amount and prune the field once it reaches zero, in
# one atomic step so a concurrent HINCRBY is never deleted with it.
_ACK_SCRIPT = """
local remaining = redis.call('HINCRBY', KEYS[1], ARGV[1], -tonumber(ARGV[2]))
if remaining <= 0 then
    redis.call('HDEL', KEYS[1], ARGV[1])
end
return remaining
"""


class RedisDeltaStore:
    """
    View deltas kept in one Redis hash, shared by every API process.

    Recording and peeking degrade gracefully: on Redis errors a view is
    logged and not counted instead of failing the detail request.
    """

    def __init__(self, client: redis.Redis | None = None, key: str | None = None) -> None:
        self._redis = client
        self._key = key or settings.VIEW_COUNT_REDIS_KEY
        self._ack = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def connect(self) -> None:
        if self._redis is None:
            self._redis = redis.from_url(
                settings.REDIS_URL,
                decode_responses=True,
                socket_connect_timeout=2,
                socket_timeout=2,
            )
        self._ack = self._redis.register_script(_ACK_SCRIPT)
        try:
            await self._redis.ping()
            logger.info("View-count deltas stored in Redis hash %r", self._key)
        except Exception as exc:  # pragma: no cover
            logger.warning("Redis ping failed, view deltas may be lost: %s", exc)

    async def close(self) -> None:
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None

    # ------------------------------------------------------------------
    # Delta operations
    # ------------------------------------------------------------------

    async def incr(self, post_id: int) -> int:
        try:
            return int(await self._redis.hincrby(self._key, str(post_id), 1))
        except Exception as exc:
            logger.warning("View not recorded for post_id=%s: %s", post_id, exc)
            return 0

    async def get(self, post_id: int) -> int:
        try:
            value = await self._redis.hget(self._key, str(post_id))
        except Exception as exc:
            logger.debug("View delta read failed for post_id=%s: %s", post_id, exc)
            return 0
        return int(value) if value is not None else 0

    async def get_many(self, post_ids: Iterable[int]) -> dict[int, int]:
        ids = list(post_ids)
        if not ids:
            return {}
        try:
            values = await self._redis.hmget(self._key, [str(pid) for pid in ids])
        except Exception as exc:
            logger.debug("View delta batch read failed: %s", exc)
            return {pid: 0 for pid in ids}
        return {pid: int(v) if v is not None else 0 for pid, v in zip(ids, values)}

    async def snapshot(self) -> dict[int, int]:
        raw = await self._redis.hgetall(self._key)
        return {int(field): int(value) for field, value in raw.items()}

    async def ack(self, post_id: int, amount: int) -> None:
        await self._ack(keys=[self._key], args=[str(post_id), amount])

    async def discard(self, post_id: int) -> None:
        await self._redis.hdel(self._key, str(post_id))


# ---------------------------------------------------------------------------
# Write-back cache
# ---------------------------------------------------------------------------

@dataclass
class FlushResult:
    flushed: int = 0
    failed: int = 0
    dropped: int = 0


class ViewCountCache:
    """
    Write-back cache for post view counts.

    Detail views call ``record_view``; the counts reach ``post_aggregates``
    only when ``flush`` runs, periodically and once more on shutdown.
    The externally visible view count is always
    ``stored view_count + peek_delta(post_id)``.

    One instance is created per application (see ``board.main``) and
    handed to the services that need it.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        store: MemoryDeltaStore | RedisDeltaStore | None = None,
        flush_interval: float | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._store = store if store is not None else MemoryDeltaStore()
        self._flush_lock = asyncio.Lock()
        interval = settings.VIEW_FLUSH_INTERVAL_SECONDS if flush_interval is None else flush_interval
        self._scheduler = PeriodicTask("view-count-flush", interval, self.flush)
        self._flushed_total = 0
        self._failed_total = 0

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        if isinstance(self._store, RedisDeltaStore):
            await self._store.connect()
        self._scheduler.start()

    async def stop(self) -> None:
        """Stop the schedule, then flush whatever is still pending."""
        await self._scheduler.stop()
        logger.warning("Shutdown: flushing pending view counts")
        await self.flush()
        await self._store.close()

    # ------------------------------------------------------------------
    # Hot path
    # ------------------------------------------------------------------

    async def record_view(self, post_id: int) -> int:
        delta = await self._store.incr(post_id)
        logger.debug("View recorded (cached): post_id=%s delta=%s", post_id, delta)
        return delta

    async def peek_delta(self, post_id: int) -> int:
        return await self._store.get(post_id)

    async def peek_many(self, post_ids: Iterable[int]) -> dict[int, int]:
        return await self._store.get_many(post_ids)

    # ------------------------------------------------------------------
    # Flush
    # ------------------------------------------------------------------

    async def flush(self) -> FlushResult:
        """
        Drain every pending delta into the aggregate store.

        Each entry is written in its own transaction.  A failing entry is
        logged and kept for the next cycle; an entry whose aggregate row
        no longer exists (deleted post) is dropped.
        """
        async with self._flush_lock:
            result = FlushResult()
            try:
                pending = await self._store.snapshot()
            except Exception:
                logger.exception("View-count flush skipped: delta store unreadable")
                return result

            if not pending:
                logger.debug("View-count flush: nothing pending")
                return result

            logger.info("View-count flush started: %d post(s) pending", len(pending))
            for post_id, delta in pending.items():
                if delta <= 0:
                    continue
                try:
                    async with self._session_factory() as session:
                        rows = await aggregate_store.increment_view(session, post_id, delta)
                        await session.commit()
                except Exception:
                    result.failed += 1
                    logger.exception("View-count flush failed: post_id=%s delta=%s", post_id, delta)
                    continue

                try:
                    if rows == 0:
                        result.dropped += 1
                        await self._store.discard(post_id)
                        logger.warning("View-count flush dropped: post_id=%s has no aggregate", post_id)
                    else:
                        result.flushed += 1
                        await self._store.ack(post_id, delta)
                        logger.debug("View-count flushed: post_id=%s +%s", post_id, delta)
                except Exception:
                    # The write landed; the entry would be counted again next cycle.
                    logger.exception("View-count ack failed after write: post_id=%s", post_id)

            self._flushed_total += result.flushed
            self._failed_total += result.failed
            logger.info(
                "View-count flush finished: flushed=%d failed=%d dropped=%d",
                result.flushed, result.failed, result.dropped,
            )
            return result

    # ------------------------------------------------------------------
    # Observability
    # ------------------------------------------------------------------

    async def stats(self) -> dict:
        try:
            pending = await self._store.snapshot()
        except Exception:
            pending = {}
        return {
            "backend": type(self._store).__name__,
            "pending_posts": len(pending),
            "pending_views": sum(pending.values()),
            "flushed_entries": self._flushed_total,
            "failed_entries": self._failed_total,
        }
