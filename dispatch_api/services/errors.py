"""
Typed errors raised by the dispatch services.

Each error carries the HTTP status the API layer answers with, so routers
translate them without re-deciding the mapping.
"""


class DispatchError(Exception):
    """Base class for dispatch service errors."""

    status_code: int = 500

    def __init__(self, detail: str = "Internal error"):
        self.detail = detail
        super().__init__(detail)


class ValidationError(DispatchError):
    """Malformed input such as a bad date key (400)."""

    status_code = 400


class NotFoundError(DispatchError):
    """Dispatch, task or link is missing or belongs to someone else (404)."""

    status_code = 404


class ConflictError(DispatchError):
    """Duplicate dispatch for a date, or duplicate explicit link (409)."""

    status_code = 409


class InvalidStateError(DispatchError):
    """Operation not allowed in the dispatch's current state (400)."""

    status_code = 400


class AlreadyFinalizedError(InvalidStateError):
    def __init__(self, detail: str = "Dispatch is already finalized"):
        super().__init__(detail)


class NotFinalizedError(InvalidStateError):
    def __init__(self, detail: str = "Dispatch is not finalized"):
        super().__init__(detail)


class DispatchFinalizedError(InvalidStateError):
    """Edits to a finalized dispatch."""

    def __init__(self, detail: str = "Cannot modify a finalized dispatch"):
        super().__init__(detail)
