"""
HTTP interface for HealthChain Notify.
"""

from .server import NotificationServer, WebServerError

__all__ = ["NotificationServer", "WebServerError"]
