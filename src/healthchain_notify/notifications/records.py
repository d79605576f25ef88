"""
Notification record storage and queries.
"""

import logging
from typing import Dict, Iterable, Optional

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.models import (
    Channel,
    Notification,
    NotificationPage,
    NotificationQuery,
    NotificationStatus,
    PageMeta,
    utcnow,
)
from ..database.manager import DatabaseManager, as_utc
from ..database.models import NotificationRecord
from .errors import NotFoundError

logger = logging.getLogger(__name__)


def _to_notification(record: NotificationRecord) -> Notification:
    return Notification(
        id=record.id,
        recipient_id=record.recipient_id,
        channel=Channel(record.channel),
        template_key=record.template_key,
        variables=dict(record.variables or {}),
        rendered_body=record.rendered_body,
        status=NotificationStatus(record.status),
        created_at=as_utc(record.created_at),
        updated_at=as_utc(record.updated_at),
    )


class RecordStore:
    """Owns the lifecycle of notification records."""

    def __init__(self, database: DatabaseManager):
        self.database = database

    async def create(
        self,
        recipient_id: str,
        channel: Channel,
        template_key: str,
        variables: Dict[str, str],
        rendered_body: str,
        session: Optional[AsyncSession] = None,
    ) -> Notification:
        """
        Persist a new PENDING record.

        With an outer `session` the record is only flushed; the caller owns
        the commit.
        """
        now = utcnow()
        record = NotificationRecord(
            recipient_id=recipient_id,
            channel=Channel(channel).value,
            template_key=template_key,
            variables=dict(variables),
            rendered_body=rendered_body,
            status=NotificationStatus.PENDING.value,
            created_at=now,
            updated_at=now,
        )
        if session is not None:
            session.add(record)
            await session.flush()
        else:
            async with self.database.session() as own_session:
                own_session.add(record)
                await own_session.commit()

        logger.debug(f"Stored notification {record.id} for {recipient_id} via {record.channel}")
        return _to_notification(record)

    async def get(self, notification_id: str) -> Notification:
        async with self.database.session() as session:
            record = await session.get(NotificationRecord, notification_id)
        if record is None:
            raise NotFoundError(f"Notification '{notification_id}' not found")
        return _to_notification(record)

    async def find_for_recipient(self, query: NotificationQuery) -> NotificationPage:
        """Page through records, newest first."""
        conditions = []
        if query.recipient_id:
            conditions.append(NotificationRecord.recipient_id == query.recipient_id)

        async with self.database.session() as session:
            total = (
                await session.execute(
                    select(func.count()).select_from(NotificationRecord).where(*conditions)
                )
            ).scalar_one()

            result = await session.execute(
                select(NotificationRecord)
                .where(*conditions)
                .order_by(NotificationRecord.created_at.desc(), NotificationRecord.id.desc())
                .offset(query.offset)
                .limit(query.limit)
            )
            items = [_to_notification(record) for record in result.scalars()]

        return NotificationPage(
            data=items,
            meta=PageMeta.build(total=total, page=query.page, limit=query.limit),
        )

    async def update_status(
        self,
        notification_id: str,
        status: NotificationStatus,
        expected: Optional[Iterable[NotificationStatus]] = None,
    ) -> Optional[Notification]:
        """
        Move a record to `status`.

        When `expected` is given the update only applies if the current
        status is one of them; a record in any other status is left alone
        and None is returned. Raises NotFoundError for unknown ids.
        """
        statement = (
            update(NotificationRecord)
            .where(NotificationRecord.id == notification_id)
            .values(status=NotificationStatus(status).value, updated_at=utcnow())
        )
        if expected is not None:
            statement = statement.where(
                NotificationRecord.status.in_([NotificationStatus(s).value for s in expected])
            )

        async with self.database.session() as session:
            result = await session.execute(statement)
            await session.commit()
            updated = result.rowcount

        if updated:
            return await self.get(notification_id)

        # Distinguish a missing record from a status precondition miss
        current = await self.get(notification_id)
        logger.warning(
            f"Notification {notification_id} is {current.status.value}, "
            f"not moving to {NotificationStatus(status).value}"
        )
        return None

    async def mark_read(self, notification_id: str) -> Notification:
        """Set READ regardless of the current status."""
        return await self.update_status(notification_id, NotificationStatus.READ)
