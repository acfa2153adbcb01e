"""
Error taxonomy shared by services and route handlers.

Services raise these; the handlers registered in main.py turn them into
JSON responses of the form {"detail": "..."}.
"""


class AppError(Exception):
    status_code = 500
    default_message = "Internal server error"

    def __init__(self, message: str = None):
        super().__init__(message or self.default_message)
        self.message = message or self.default_message


class ValidationError(AppError):
    status_code = 400
    default_message = "Invalid input"


class UnauthorizedError(AppError):
    status_code = 401
    default_message = "Unauthorized"


class ForbiddenError(AppError):
    status_code = 403
    default_message = "Forbidden"


class NotFoundError(AppError):
    status_code = 404
    default_message = "Not found"


class ConflictError(AppError):
    status_code = 409
    default_message = "Conflict"


class UpstreamError(AppError):
    """Data store or third-party failure. The message is logged, never returned."""

    status_code = 500
    default_message = "Upstream failure"
