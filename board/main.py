import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from board.config import settings
from board.database import async_session
from board.exceptions import BoardError, InternalError
from board.middleware import TimingMiddleware
from board.routers import comments, metrics, posts
from board.scheduler import PeriodicTask
from board.services import aggregate_store
from board.view_cache import MemoryDeltaStore, RedisDeltaStore, ViewCountCache

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


def build_view_cache() -> ViewCountCache:
    store = RedisDeltaStore() if settings.VIEW_COUNT_BACKEND == "redis" else MemoryDeltaStore()
    return ViewCountCache(async_session, store=store)


async def reconcile_once() -> int:
    async with async_session() as session:
        fixed = await aggregate_store.reconcile_aggregates(session)
        await session.commit()
    return fixed


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    view_cache = build_view_cache()
    app.state.view_cache = view_cache
    await view_cache.start()
    reconciler = PeriodicTask("aggregate-reconcile", settings.RECONCILE_INTERVAL_SECONDS, reconcile_once)
    reconciler.start()
    yield
    # Shutdown: stop schedules first, then drain pending views
    await reconciler.stop()
    await view_cache.stop()


app = FastAPI(
    title="Board API",
    description="Discussion board engagement and cursor-pagination engine",
    version="1.0.0",
    lifespan=lifespan,
)

# Middleware
app.add_middleware(TimingMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(BoardError)
async def board_error_handler(request: Request, exc: BoardError):
    if isinstance(exc, InternalError):
        logger.error("Invariant violation on %s %s: %s", request.method, request.url.path, exc.detail)
    return JSONResponse(status_code=exc.status_code, content={"message": exc.code})


# Routers
app.include_router(posts.router)
app.include_router(comments.router)
app.include_router(metrics.router)


@app.get("/health")
async def health():
    return {"status": "healthy", "version": "1.0.0"}
