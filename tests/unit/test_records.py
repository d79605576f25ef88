"""Tests for the notification record store."""

import pytest

from healthchain_notify.core.models import MAX_OFFSET, Channel, NotificationQuery, NotificationStatus
from healthchain_notify.notifications.errors import NotFoundError


async def _create(records, recipient_id="user-1", channel=Channel.EMAIL, body="Hello"):
    return await records.create(
        recipient_id=recipient_id,
        channel=channel,
        template_key="welcome",
        variables={"name": "Alice"},
        rendered_body=body,
    )


class TestRecordStore:
    async def test_create_is_pending(self, records):
        notification = await _create(records)

        assert notification.status == NotificationStatus.PENDING
        assert notification.id
        assert notification.created_at.tzinfo is not None
        assert (await records.get(notification.id)).rendered_body == "Hello"

    async def test_get_unknown_raises(self, records):
        with pytest.raises(NotFoundError) as exc_info:
            await records.get("missing")
        assert str(exc_info.value) == "Notification 'missing' not found"

    async def test_pagination(self, records):
        for i in range(25):
            await _create(records, body=f"message {i}")
        for _ in range(3):
            await _create(records, recipient_id="user-2")

        page = await records.find_for_recipient(NotificationQuery(recipient_id="user-1", page=3, limit=10))

        assert len(page.data) == 5
        assert page.meta.total == 25
        assert page.meta.total_pages == 3
        assert page.meta.page == 3
        assert all(n.recipient_id == "user-1" for n in page.data)

    async def test_without_filter_lists_everyone(self, records):
        await _create(records, recipient_id="user-1")
        await _create(records, recipient_id="user-2")

        page = await records.find_for_recipient(NotificationQuery())
        assert page.meta.total == 2

    async def test_newest_first(self, records):
        for i in range(3):
            await _create(records, body=f"message {i}")

        page = await records.find_for_recipient(NotificationQuery(recipient_id="user-1"))
        created = [n.created_at for n in page.data]
        assert created == sorted(created, reverse=True)

    async def test_page_past_end_is_empty(self, records):
        await _create(records)
        page = await records.find_for_recipient(NotificationQuery(recipient_id="user-1", page=5))
        assert page.data == []
        assert page.meta.total == 1

    async def test_last_addressable_page_is_empty(self, records):
        await _create(records)
        last_page = MAX_OFFSET // 100 + 1

        page = await records.find_for_recipient(
            NotificationQuery(recipient_id="user-1", page=last_page, limit=100)
        )

        assert page.data == []
        assert (page.meta.total, page.meta.page, page.meta.total_pages) == (1, last_page, 1)

    async def test_conditional_update_skips_other_states(self, records):
        notification = await _create(records)
        await records.update_status(notification.id, NotificationStatus.READ)

        result = await records.update_status(
            notification.id, NotificationStatus.SENT, expected=[NotificationStatus.PENDING]
        )

        assert result is None
        assert (await records.get(notification.id)).status == NotificationStatus.READ

    async def test_conditional_update_unknown_raises(self, records):
        with pytest.raises(NotFoundError):
            await records.update_status("missing", NotificationStatus.SENT, expected=[NotificationStatus.PENDING])

    @pytest.mark.parametrize("status", list(NotificationStatus))
    async def test_mark_read_from_any_status(self, records, status):
        notification = await _create(records)
        await records.update_status(notification.id, status)

        updated = await records.mark_read(notification.id)
        assert updated.status == NotificationStatus.READ

    async def test_mark_read_unknown_raises(self, records):
        with pytest.raises(NotFoundError):
            await records.mark_read("missing")
