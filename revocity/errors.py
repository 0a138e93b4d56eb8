"""Domain errors raised by the core complaint logic.

The HTTP layer maps each of these onto a status code; core functions never
raise ``HTTPException`` themselves so they can run outside a request.
"""


class RevoCityError(Exception):
    status_code = 500

    def __init__(self, detail: str):
        super().__init__(detail)
        self.detail = detail


class ValidationError(RevoCityError):
    status_code = 400


class AuthorizationError(RevoCityError):
    status_code = 403


class NotFoundError(RevoCityError):
    status_code = 404


class InvalidTransitionError(RevoCityError):
    status_code = 409


class AggregationConflictError(RevoCityError):
    """Optimistic update kept losing to concurrent writers."""
    status_code = 503
