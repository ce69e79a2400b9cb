from typing import Dict


class ApiError(Exception):
    """Error carrying the HTTP status and message shown to the caller."""

    status_code = 500
    default_message = "Internal server error"

    def __init__(self, message: str = "", **extra):
        super().__init__(message or self.default_message)
        self.message = message or self.default_message
        self.extra = extra

    def to_dict(self) -> Dict[str, object]:
        return {"message": self.message, **self.extra}


class Unauthorized(ApiError):
    status_code = 401
    default_message = "Unauthorized access."


class Forbidden(ApiError):
    status_code = 403
    default_message = "Forbidden access."


class InvalidInput(ApiError):
    status_code = 400
    default_message = "Invalid request."


class NotFound(ApiError):
    status_code = 404
    default_message = "Not found."


class Conflict(ApiError):
    status_code = 409
    default_message = "Already exists."


class ExternalServiceError(ApiError):
    status_code = 502
    default_message = "An external service failed to respond."


class InternalError(ApiError):
    status_code = 500
