import time
from contextvars import ContextVar

from sqlalchemy import event
from starlette.types import ASGIApp, Receive, Scope, Send

# ---------------------------------------------------------------------------
# Statements issued by the current request
# ---------------------------------------------------------------------------

query_count_var: ContextVar[int] = ContextVar("query_count", default=0)


def install_query_counter(engine) -> None:
    """
    Count every SQL statement sent through *engine* into ``query_count_var``.

    A post or comment page and a post detail are one statement each; a
    like toggle or comment write is a handful (lookups, row write, counter
    shift, count read-back).  The view-count flush runs outside any
    request and lands in the scheduler task's own context.  Call once per
    engine (``database.py``, ``conftest.py``).
    """
    sync_engine = engine.sync_engine

    @event.listens_for(sync_engine, "before_cursor_execute")
    def _count_query(conn, cursor, statement, parameters, context, executemany):
        query_count_var.set(query_count_var.get() + 1)


# ---------------------------------------------------------------------------
# Middleware (pure ASGI, so ContextVar mutations stay visible)
# ---------------------------------------------------------------------------

class TimingMiddleware:
    """
    Stamp board API responses with ``X-Response-Time-Ms`` and
    ``X-Query-Count``.

    The headers are written on ``http.response.start``, so statements run
    by background tasks after the response (image purging) are not
    counted.
    ``BaseHTTPMiddleware`` would run the endpoint in a child task and hide
    the counter updates.
    """

    def __init__(self, app: ASGIApp) -> None:
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        query_count_var.set(0)
        start = time.perf_counter()

        async def send_wrapper(message):
            if message["type"] == "http.response.start":
                duration_ms = round((time.perf_counter() - start) * 1000, 2)
                headers = list(message.get("headers", []))
                headers.append((b"x-response-time-ms", str(duration_ms).encode()))
                headers.append((b"x-query-count", str(query_count_var.get()).encode()))
                message["headers"] = headers
            await send(message)

        await self.app(scope, receive, send_wrapper)
