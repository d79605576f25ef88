"""
Notification system for HealthChain Notify.
"""

from .errors import NotificationError, NotFoundError, RenderError, ValidationError, ProviderError
from .templates import TemplateRenderer, TemplateStore
from .records import RecordStore
from .delivery import DispatchQueue, ClaimedJob, JobState
from .gateway import RealtimeGateway
from .providers import (
    ChannelProvider,
    ProviderRegistry,
    ContactResolver,
    SmsProvider,
    EmailProvider,
    PushProvider,
    InAppProvider,
)
from .worker import DeliveryWorker
from .manager import NotificationManager

__all__ = [
    "NotificationError",
    "NotFoundError",
    "RenderError",
    "ValidationError",
    "ProviderError",
    "TemplateRenderer",
    "TemplateStore",
    "RecordStore",
    "DispatchQueue",
    "ClaimedJob",
    "JobState",
    "RealtimeGateway",
    "ChannelProvider",
    "ProviderRegistry",
    "ContactResolver",
    "SmsProvider",
    "EmailProvider",
    "PushProvider",
    "InAppProvider",
    "DeliveryWorker",
    "NotificationManager",
]
