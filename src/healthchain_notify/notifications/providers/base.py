"""
Channel provider interface and registry.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Iterable, Optional

from ...core.models import Channel
from ..errors import ProviderError

logger = logging.getLogger(__name__)


class ChannelProvider(ABC):
    """Delivers a rendered message on one channel."""

    channel: Channel

    def __init__(self):
        self.logger = logging.getLogger(f"{__name__}.{self.channel.value.lower()}")

    @property
    def dry_run(self) -> bool:
        """True when credentials are missing and sends are only logged."""
        return False

    @abstractmethod
    async def send(
        self,
        target: str,
        content: str,
        *,
        subject: Optional[str] = None,
        data: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """
        Send `content` to `target`.

        Returns a provider-specific result. Raises ProviderError on failure.
        """

    async def close(self) -> None:
        """Release network resources."""
        return None

    def describe(self) -> Dict[str, Any]:
        return {"channel": self.channel.value, "dry_run": self.dry_run}


class ProviderRegistry:
    """Fixed mapping from channel to provider, built once at startup."""

    def __init__(self, providers: Iterable[ChannelProvider]):
        self._providers: Dict[Channel, ChannelProvider] = {}
        for provider in providers:
            if provider.channel in self._providers:
                raise ValueError(f"Duplicate provider for channel {provider.channel.value}")
            self._providers[provider.channel] = provider

        missing = [channel.value for channel in Channel if channel not in self._providers]
        if missing:
            raise ValueError(f"No provider registered for channels: {', '.join(missing)}")

    def get(self, channel: Channel) -> ChannelProvider:
        try:
            return self._providers[Channel(channel)]
        except (KeyError, ValueError) as e:
            raise ProviderError(f"Unsupported channel: {channel}") from e

    def describe(self) -> Dict[str, Dict[str, Any]]:
        return {channel.value: provider.describe() for channel, provider in self._providers.items()}

    async def close(self) -> None:
        for provider in self._providers.values():
            try:
                await provider.close()
            except Exception as e:
                logger.error(f"Failed to close {provider.channel.value} provider: {e}")


class ContactResolver:
    """
    Maps a recipient and channel to the address a provider sends to.

    Recipient identity lives outside this service, so contact details are
    taken from the notification variables when present and fall back to the
    recipient id itself.
    """

    TARGET_KEYS = {
        Channel.SMS: ("phone", "phoneNumber"),
        Channel.EMAIL: ("email",),
        Channel.PUSH: ("deviceToken", "fcmToken"),
        Channel.IN_APP: (),
    }

    def resolve(self, recipient_id: str, channel: Channel, variables: Dict[str, str]) -> str:
        for key in self.TARGET_KEYS[Channel(channel)]:
            value = variables.get(key)
            if value:
                return value
        return recipient_id
