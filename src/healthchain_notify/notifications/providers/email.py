"""
Email delivery over SMTP.
"""

import asyncio
import smtplib
import ssl
from datetime import datetime, timezone
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Any, Dict, Optional

from ...core.config import EmailConfig
from ...core.models import Channel
from ..errors import ProviderError
from .base import ChannelProvider


class EmailProvider(ChannelProvider):
    """SMTP email provider; runs dry when host or username is missing."""

    channel = Channel.EMAIL

    def __init__(self, config: EmailConfig):
        super().__init__()
        self.config = config
        if self.dry_run:
            self.logger.warning("SMTP config not set. Email provider initialized in dry-run mode.")

    @property
    def dry_run(self) -> bool:
        return not (self.config.smtp_host and self.config.username)

    def _create_message(self, to: str, subject: str, body: str) -> MIMEMultipart:
        message = MIMEMultipart("alternative")
        message["From"] = f"{self.config.from_name} <{self.config.from_email}>"
        message["To"] = to
        message["Subject"] = subject

        message.attach(MIMEText(body, "plain", "utf-8"))
        message.attach(MIMEText(body, "html", "utf-8"))
        return message

    def _send_message(self, message: MIMEMultipart, to: str) -> None:
        """Send email message via SMTP. Blocking; runs in a thread."""
        if self.config.use_ssl:
            context = ssl.create_default_context()
            server = smtplib.SMTP_SSL(
                self.config.smtp_host, self.config.smtp_port,
                context=context, timeout=self.config.timeout_seconds,
            )
        else:
            server = smtplib.SMTP(
                self.config.smtp_host, self.config.smtp_port,
                timeout=self.config.timeout_seconds,
            )

        try:
            if self.config.use_tls and not self.config.use_ssl:
                server.starttls(context=ssl.create_default_context())
            server.login(self.config.username, self.config.password or "")
            server.send_message(message, to_addrs=[to])
        finally:
            try:
                server.quit()
            except smtplib.SMTPException:
                server.close()

    async def send(
        self,
        target: str,
        content: str,
        *,
        subject: Optional[str] = None,
        data: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        subject = subject or self.config.default_subject

        if self.dry_run:
            self.logger.info(f"[Dry Run] Email would be sent to {target}: {subject}")
            return {"success": True, "dry_run": True, "target": target}

        message = self._create_message(target, subject, content)
        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(None, self._send_message, message, target)
        except (smtplib.SMTPException, OSError) as e:
            raise ProviderError(f"Error sending email to {target}: {e}") from e

        self.logger.info(f"Email sent to {target}: {subject}")
        return {
            "success": True,
            "target": target,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
