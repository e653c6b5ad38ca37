"""Application errors mapped to HTTP status codes by the handlers in main.py."""


class AppError(Exception):
    """Base error. Unexpected failures surface as a generic 500."""
    status_code = 500
    default_detail = "Internal server error"

    def __init__(self, detail: str | None = None):
        self.detail = detail or self.default_detail
        super().__init__(self.detail)


class ValidationFailed(AppError):
    status_code = 400
    default_detail = "Invalid request"


class Unauthenticated(AppError):
    status_code = 401
    default_detail = "Could not validate credentials"


class Forbidden(AppError):
    status_code = 403
    default_detail = "Not allowed"


class NotFound(AppError):
    status_code = 404
    default_detail = "Not found"


class Conflict(AppError):
    status_code = 409
    default_detail = "Already exists"


class Expired(AppError):
    # expired reset links are reported as a bad request
    status_code = 400
    default_detail = "Token has expired"
