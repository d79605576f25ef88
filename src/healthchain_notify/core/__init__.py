"""
Core application components for HealthChain Notify.
"""

from .config import (
    AppConfig,
    LoggingConfig,
    DatabaseConfig,
    QueueConfig,
    NotificationsConfig,
    HttpServerConfig,
    SmsConfig,
    EmailConfig,
    PushConfig,
)
from .models import (
    Channel,
    NotificationStatus,
    Template,
    Notification,
    SendNotificationRequest,
    NotificationQuery,
    NotificationPage,
    PageMeta,
    ChannelOutcome,
    RetryPolicy,
    DispatchJob,
    build_dispatch_job,
    utcnow,
)

__all__ = [
    "AppConfig",
    "LoggingConfig",
    "DatabaseConfig",
    "QueueConfig",
    "NotificationsConfig",
    "HttpServerConfig",
    "SmsConfig",
    "EmailConfig",
    "PushConfig",
    "Channel",
    "NotificationStatus",
    "Template",
    "Notification",
    "SendNotificationRequest",
    "NotificationQuery",
    "NotificationPage",
    "PageMeta",
    "ChannelOutcome",
    "RetryPolicy",
    "DispatchJob",
    "build_dispatch_job",
    "utcnow",
]
