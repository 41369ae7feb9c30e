"""HTTP-facing application errors.

Raised from API handlers and rendered by the exception handler registered in
``app.main`` as ``{"success": false, "error": message}``.
"""


class AppError(Exception):
    status_code = 500

    def __init__(self, message: str = "Internal error"):
        super().__init__(message)
        self.message = message


class BadRequestError(AppError):
    status_code = 400


class NotFoundError(AppError):
    status_code = 404


class ConflictError(AppError):
    status_code = 409
