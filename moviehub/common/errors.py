"""Exceptions rendered as JSON error responses by every service."""


class ApiError(Exception):
    """Base error carrying the HTTP status returned to the client."""

    status_code = 400

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class ValidationFailed(ApiError):
    status_code = 400


class Unauthorized(ApiError):
    status_code = 401


class NotFoundError(ApiError):
    status_code = 404


class Conflict(ApiError):
    status_code = 409


class RateLimited(ApiError):
    status_code = 429


class ConfigurationError(ApiError):
    status_code = 500


class ServiceUnavailable(ApiError):
    status_code = 503
