"""
In-app delivery over the realtime gateway.
"""

from typing import Any, Dict, Optional

from ...core.models import Channel
from ..errors import ProviderError
from ..gateway import RealtimeGateway
from .base import ChannelProvider


class InAppProvider(ChannelProvider):
    """Pushes the notification to the recipient's live connections."""

    channel = Channel.IN_APP

    def __init__(self, gateway: RealtimeGateway):
        super().__init__()
        self.gateway = gateway

    async def send(
        self,
        target: str,
        content: str,
        *,
        subject: Optional[str] = None,
        data: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        payload = dict(data or {})
        payload["body"] = content
        if subject:
            payload["title"] = subject

        try:
            delivered = await self.gateway.emit_to_recipient(target, payload)
        except Exception as e:
            self.logger.error(f"Error sending in-app notification to {target}: {e}")
            raise ProviderError(f"In-app delivery to {target} failed: {e}") from e

        return {"success": True, "connections": delivered}
