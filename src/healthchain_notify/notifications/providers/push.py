"""
Push notifications through Firebase Cloud Messaging.
"""

import asyncio
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import aiohttp

from ...core.config import PushConfig
from ...core.models import Channel
from ..errors import ProviderError
from .base import ChannelProvider


class PushProvider(ChannelProvider):
    """FCM push provider; runs dry when no server key is configured."""

    channel = Channel.PUSH

    FCM_URL = "https://fcm.googleapis.com/fcm/send"

    def __init__(self, config: PushConfig):
        super().__init__()
        self.config = config
        self.session: Optional[aiohttp.ClientSession] = None
        if self.dry_run:
            self.logger.warning("fcm_server_key not set. Push provider initialized in dry-run mode.")

    @property
    def dry_run(self) -> bool:
        return not self.config.fcm_server_key

    def _get_session(self) -> aiohttp.ClientSession:
        if not self.session or self.session.closed:
            self.session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.config.timeout_seconds)
            )
        return self.session

    async def send(
        self,
        target: str,
        content: str,
        *,
        subject: Optional[str] = None,
        data: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        title = subject or self.config.default_title

        if self.dry_run:
            self.logger.info(f"[Dry Run] Push would be sent to {target}: {title} - {content}")
            return {"success": True, "dry_run": True, "target": target}

        # FCM data payload values must be strings
        payload = {
            "to": target,
            "notification": {
                "title": title,
                "body": content,
                "sound": "default",
            },
            "data": {key: str(value) for key, value in (data or {}).items()},
            "priority": "high",
        }
        headers = {
            "Authorization": f"key={self.config.fcm_server_key}",
            "Content-Type": "application/json",
        }

        try:
            async with self._get_session().post(self.FCM_URL, json=payload, headers=headers) as response:
                if response.status != 200:
                    error_text = await response.text()
                    raise ProviderError(f"FCM returned HTTP {response.status}: {error_text}")
                result = await response.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise ProviderError(f"Push request to {target} failed: {e}") from e

        if result.get("failure", 0) and not result.get("success", 0):
            errors = [r.get("error") for r in result.get("results", []) if r.get("error")]
            raise ProviderError(f"FCM rejected push to {target}: {', '.join(errors) or 'unknown error'}")

        self.logger.info(f"Successfully sent push message to {target}")
        return {
            "success": True,
            "multicast_id": result.get("multicast_id"),
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

    async def close(self) -> None:
        if self.session:
            await self.session.close()
