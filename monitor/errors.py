from typing import Any, Dict


class DashboardError(Exception):
    """
    Base error carrying the HTTP status class and the short error label
    rendered in ``{"success": false, "error": ..., "message": ...}`` bodies.
    """

    status_code = 500
    error = "Internal server error"

    def __init__(self, message: str = "", error: str = None):
        super().__init__(message or self.error)
        self.message = message or self.error
        if error is not None:
            self.error = error

    def to_dict(self) -> Dict[str, Any]:
        return {"success": False, "error": self.error, "message": self.message}


class ValidationError(DashboardError):
    status_code = 400
    error = "Invalid request"


class UnauthorizedError(DashboardError):
    status_code = 401
    error = "Unauthorized"


class NotFoundError(DashboardError):
    status_code = 404
    error = "Not found"


class UpstreamUnavailableError(DashboardError):
    status_code = 503
    error = "Upstream unavailable"


class StorageError(DashboardError):
    status_code = 500
    error = "Storage failure"
