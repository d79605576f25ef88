"""
Database components for HealthChain Notify.
"""

from .models import Base, TemplateRecord, NotificationRecord, DispatchJobRecord
from .manager import DatabaseManager, DatabaseError, as_utc

__all__ = [
    "Base",
    "TemplateRecord",
    "NotificationRecord",
    "DispatchJobRecord",
    "DatabaseManager",
    "DatabaseError",
    "as_utc",
]
