"""
Typed failures raised by the board services.

The HTTP adapter maps each class to a status code in one exception
handler (see ``board.main``); services never build HTTP responses
themselves.  ``NotFoundError`` deliberately covers both "missing" and
"soft-deleted" so callers cannot tell the two apart.
"""


class BoardError(Exception):
    status_code: int = 500
    code: str = "internal_server_error"

    def __init__(self, code: str | None = None, detail: str | None = None) -> None:
        if code is not None:
            self.code = code
        self.detail = detail or self.code
        super().__init__(self.detail)


class NotFoundError(BoardError):
    status_code = 404
    code = "not_found"


class ForbiddenError(BoardError):
    status_code = 403
    code = "forbidden"


class InvalidRequestError(BoardError):
    status_code = 400
    code = "invalid_request"


class ConflictError(BoardError):
    """Reserved for collaborators; the engine itself never raises it."""

    status_code = 409
    code = "conflict"


class InternalError(BoardError):
    """A data-model invariant was violated (e.g. a live post without aggregates)."""

    status_code = 500
    code = "internal_server_error"
