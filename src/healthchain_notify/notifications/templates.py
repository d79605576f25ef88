"""
Notification templates: storage lookup and rendering.
"""

import logging
from typing import Dict, List, Optional

from jinja2 import ChainableUndefined, TemplateError
from jinja2.sandbox import SandboxedEnvironment
from sqlalchemy import select

from ..core.models import Channel, Template, utcnow
from ..database.manager import DatabaseManager, as_utc
from ..database.models import TemplateRecord
from .errors import NotFoundError, RenderError

logger = logging.getLogger(__name__)


def _to_template(record: TemplateRecord) -> Template:
    return Template(
        id=record.id,
        key=record.key,
        channel=Channel(record.channel),
        body=record.body,
        created_at=as_utc(record.created_at),
        updated_at=as_utc(record.updated_at),
    )


class TemplateRenderer:
    """
    Renders template bodies with `{{placeholder}}` substitution.

    Bodies run inside a sandboxed Jinja2 environment. Unknown variables,
    including chained lookups such as `{{donor.name}}`, render as empty text.
    """

    def __init__(self, autoescape: bool = False, cache_size: int = 256):
        self.env = SandboxedEnvironment(
            autoescape=autoescape,
            undefined=ChainableUndefined,
            keep_trailing_newline=True,
        )
        self.cache_size = cache_size
        self._compiled: Dict[str, object] = {}

    def _compile(self, body: str):
        compiled = self._compiled.get(body)
        if compiled is None:
            try:
                compiled = self.env.from_string(body)
            except TemplateError as e:
                raise RenderError(f"Template compilation failed: {e}") from e
            if len(self._compiled) >= self.cache_size:
                self._compiled.pop(next(iter(self._compiled)))
            self._compiled[body] = compiled
        return compiled

    def render(self, body: str, variables: Optional[Dict[str, str]] = None) -> str:
        """Render `body` with `variables`."""
        compiled = self._compile(body)
        try:
            return compiled.render(**(variables or {}))
        except Exception as e:
            raise RenderError(f"Template rendering failed: {e}") from e


class TemplateStore:
    """Looks up templates by (key, channel)."""

    def __init__(self, database: DatabaseManager):
        self.database = database

    async def resolve(self, key: str, channel: Channel) -> Template:
        """Return the template for exactly this key and channel."""
        async with self.database.session() as session:
            result = await session.execute(
                select(TemplateRecord).where(
                    TemplateRecord.key == key,
                    TemplateRecord.channel == Channel(channel).value,
                )
            )
            record = result.scalar_one_or_none()

        if record is None:
            raise NotFoundError(f"Template '{key}' for channel '{Channel(channel).value}' not found")
        return _to_template(record)

    async def list_templates(self, channel: Optional[Channel] = None) -> List[Template]:
        """List templates, optionally for one channel."""
        query = select(TemplateRecord).order_by(TemplateRecord.key, TemplateRecord.channel)
        if channel is not None:
            query = query.where(TemplateRecord.channel == Channel(channel).value)

        async with self.database.session() as session:
            result = await session.execute(query)
            return [_to_template(record) for record in result.scalars()]

    async def upsert(self, key: str, channel: Channel, body: str) -> Template:
        """Create or replace a template body. Used for seeding."""
        channel = Channel(channel)
        async with self.database.session() as session:
            result = await session.execute(
                select(TemplateRecord).where(
                    TemplateRecord.key == key,
                    TemplateRecord.channel == channel.value,
                )
            )
            record = result.scalar_one_or_none()
            if record is None:
                record = TemplateRecord(key=key, channel=channel.value, body=body)
                session.add(record)
                logger.info(f"Created template {key}/{channel.value}")
            else:
                record.body = body
                record.updated_at = utcnow()
                logger.info(f"Updated template {key}/{channel.value}")

            await session.commit()
            return _to_template(record)
