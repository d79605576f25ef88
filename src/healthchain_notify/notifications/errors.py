"""
Notification error taxonomy.
"""

from typing import Any, Dict, List, Optional


class NotificationError(Exception):
    """Notification system error."""

    kind = "NotificationError"
    http_status = 500

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.kind, "message": str(self)}


class NotFoundError(NotificationError):
    """Template or notification record does not exist."""

    kind = "NotFound"
    http_status = 404


class RenderError(NotificationError):
    """Template body could not be compiled or rendered."""

    kind = "RenderError"
    http_status = 422


class ValidationError(NotificationError):
    """Malformed request."""

    kind = "ValidationError"
    http_status = 400

    def __init__(self, message: str, details: Optional[List[Dict[str, Any]]] = None):
        super().__init__(message)
        self.details = details or []

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        if self.details:
            data["details"] = self.details
        return data

    @classmethod
    def from_pydantic(cls, exc) -> "ValidationError":
        details = [
            {
                "field": ".".join(str(part) for part in error.get("loc", ())),
                "message": error.get("msg", ""),
            }
            for error in exc.errors()
        ]
        return cls("Invalid request", details)


class ProviderError(NotificationError):
    """A channel provider failed to deliver a message."""

    kind = "ProviderError"
    http_status = 502
