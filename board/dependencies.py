from fastapi import Header, HTTPException, Query, Request

from board.view_cache import ViewCountCache


class CursorParams:
    """
    Reusable FastAPI dependency parsing keyset-pagination query parameters.

    Usage in a router::

        @router.get("/posts")
        async def list_posts(cursor: CursorParams = Depends()):
            ...

    Attributes
    ----------
    last_seen_id:
        Id of the last item of the previous page; omitted for the first page.
    limit:
        Requested page size.  Left unvalidated on purpose: the service
        clamps oversized values and treats missing or non-positive ones as
        the default, so the same rules apply to HTTP and direct callers.
    """

    def __init__(
        self,
        last_seen_id: int | None = Query(
            None,
            ge=1,
            description="Id of the last item already seen (cursor).",
        ),
        limit: int | None = Query(
            None,
            description="Items per page; clamped to the configured maximum.",
        ),
    ) -> None:
        self.last_seen_id = last_seen_id
        self.limit = limit


def get_caller_id(x_user_id: int | None = Header(None)) -> int | None:
    """Caller identity as forwarded by the upstream authentication layer."""
    return x_user_id


def require_caller_id(x_user_id: int | None = Header(None)) -> int:
    if x_user_id is None:
        raise HTTPException(status_code=401, detail="unauthorized")
    return x_user_id


def get_view_cache(request: Request) -> ViewCountCache:
    return request.app.state.view_cache


def get_image_deleter(request: Request):
    return getattr(request.app.state, "image_deleter", None)
