"""
Channel providers for HealthChain Notify.
"""

from .base import ChannelProvider, ProviderRegistry, ContactResolver
from .sms import SmsProvider
from .email import EmailProvider
from .push import PushProvider
from .in_app import InAppProvider

__all__ = [
    "ChannelProvider",
    "ProviderRegistry",
    "ContactResolver",
    "SmsProvider",
    "EmailProvider",
    "PushProvider",
    "InAppProvider",
]
