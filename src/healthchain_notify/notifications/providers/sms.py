"""
SMS delivery through the Africa's Talking messaging API.
"""

import asyncio
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import aiohttp

from ...core.config import SmsConfig
from ...core.models import Channel
from ..errors import ProviderError
from .base import ChannelProvider


class SmsProvider(ChannelProvider):
    """SMS provider; runs dry when no API key is configured."""

    channel = Channel.SMS

    LIVE_URL = "https://api.africastalking.com/version1/messaging"
    SANDBOX_URL = "https://api.sandbox.africastalking.com/version1/messaging"

    # Recipient status codes that mean the message was accepted
    ACCEPTED_STATUS_CODES = {100, 101, 102}

    def __init__(self, config: SmsConfig):
        super().__init__()
        self.config = config
        self.session: Optional[aiohttp.ClientSession] = None
        if not config.api_key:
            self.logger.warning("SMS api_key is not set. SMS provider initialized in dry-run mode.")

    @property
    def dry_run(self) -> bool:
        return not self.config.api_key

    @property
    def url(self) -> str:
        return self.SANDBOX_URL if self.config.username == "sandbox" else self.LIVE_URL

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
        if self.dry_run:
            self.logger.info(f"[Dry Run] SMS would be sent to {target}: {content}")
            return {"success": True, "dry_run": True, "target": target}

        form = {
            "username": self.config.username,
            "to": target,
            "message": content,
        }
        if self.config.sender_id:
            form["from"] = self.config.sender_id

        headers = {
            "apiKey": self.config.api_key,
            "Accept": "application/json",
        }

        try:
            async with self._get_session().post(self.url, data=form, headers=headers) as response:
                if response.status not in (200, 201):
                    error_text = await response.text()
                    raise ProviderError(f"SMS gateway returned HTTP {response.status}: {error_text}")
                result = await response.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise ProviderError(f"SMS request to {target} failed: {e}") from e

        recipients = (result.get("SMSMessageData") or {}).get("Recipients") or []
        accepted = [r for r in recipients if r.get("statusCode") in self.ACCEPTED_STATUS_CODES]
        if not accepted:
            message = (result.get("SMSMessageData") or {}).get("Message", "no recipients accepted")
            raise ProviderError(f"SMS to {target} rejected: {message}")

        self.logger.info(f"SMS sent to {target}: {accepted[0].get('messageId')}")
        return {
            "success": True,
            "message_id": accepted[0].get("messageId"),
            "cost": accepted[0].get("cost"),
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

    async def close(self) -> None:
        if self.session:
            await self.session.close()
