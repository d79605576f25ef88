"""Tests for accepting send requests and querying records."""

from unittest.mock import AsyncMock

import pytest

from healthchain_notify.core.models import Channel, NotificationQuery, NotificationStatus, RetryPolicy
from healthchain_notify.database.manager import DatabaseError
from healthchain_notify.notifications.errors import NotFoundError, RenderError, ValidationError
from healthchain_notify.notifications.manager import NotificationManager
from healthchain_notify.notifications.templates import TemplateRenderer


def _request(channels, template_key="welcome", **variables):
    return {
        "recipientId": "user-1",
        "channels": channels,
        "templateKey": template_key,
        "variables": variables or {"name": "Alice"},
    }


@pytest.fixture
def atomic_manager(template_store, records, queue):
    return NotificationManager(
        templates=template_store,
        renderer=TemplateRenderer(),
        records=records,
        queue=queue,
        retry_policy=RetryPolicy(),
        send_policy="atomic",
    )


class TestSend:
    async def test_welcome_email(self, manager, queue, welcome_templates):
        notifications = await manager.send(_request(["EMAIL"]))

        assert len(notifications) == 1
        notification = notifications[0]
        assert notification.rendered_body == "Hello Alice!"
        assert notification.status == NotificationStatus.PENDING
        assert notification.channel == Channel.EMAIL

        jobs = await queue.jobs_for_notification(notification.id)
        assert len(jobs) == 1
        assert jobs[0]["payload"]["notificationId"] == notification.id
        assert jobs[0]["payload"]["renderedBody"] == "Hello Alice!"
        assert jobs[0]["policy"] == {"maxAttempts": 5, "backoff": "exponential", "baseDelayMs": 2000}
        assert (await queue.get_queue_stats())["total_items"] == 1

    async def test_records_follow_request_order(self, manager, welcome_templates):
        notifications = await manager.send(_request(["SMS", "IN_APP", "EMAIL"]))

        assert [n.channel for n in notifications] == [Channel.SMS, Channel.IN_APP, Channel.EMAIL]
        assert notifications[0].rendered_body == "Welcome Alice"

    async def test_missing_template_keeps_earlier_channels(self, manager, records, queue, welcome_templates):
        with pytest.raises(NotFoundError):
            await manager.send(_request(["EMAIL", "PUSH", "SMS"]))

        page = await records.find_for_recipient(NotificationQuery(recipient_id="user-1"))
        assert [n.channel for n in page.data] == [Channel.EMAIL]
        assert (await queue.get_queue_stats())["total_items"] == 1

    async def test_failed_enqueue_leaves_no_record(self, manager, records, queue, worker, welcome_templates, monkeypatch):
        monkeypatch.setattr(queue, "enqueue", AsyncMock(side_effect=DatabaseError("disk full")))

        with pytest.raises(DatabaseError):
            await manager.send(_request(["EMAIL"]))
        await worker.drain()

        page = await records.find_for_recipient(NotificationQuery(recipient_id="user-1"))
        assert page.data == []
        assert (await queue.get_queue_stats())["total_items"] == 0

    async def test_render_error_aborts(self, manager, template_store, records):
        await template_store.upsert("broken", Channel.SMS, "Hello {{ name")

        with pytest.raises(RenderError):
            await manager.send(_request(["SMS"], template_key="broken"))

        assert (await records.find_for_recipient(NotificationQuery())).meta.total == 0

    async def test_atomic_policy_persists_nothing_on_failure(self, atomic_manager, records, queue, welcome_templates):
        with pytest.raises(NotFoundError):
            await atomic_manager.send(_request(["EMAIL", "PUSH"]))

        assert (await records.find_for_recipient(NotificationQuery())).meta.total == 0
        assert (await queue.get_queue_stats())["total_items"] == 0

    async def test_atomic_policy_success(self, atomic_manager, welcome_templates):
        notifications = await atomic_manager.send(_request(["EMAIL", "SMS"]))
        assert [n.rendered_body for n in notifications] == ["Hello Alice!", "Welcome Alice"]

    async def test_outcomes_report_each_channel(self, manager, records, welcome_templates):
        outcomes = await manager.send_with_outcomes(_request(["EMAIL", "PUSH", "SMS"]))

        assert [o.status for o in outcomes] == ["queued", "failed", "queued"]
        assert outcomes[1].error == "NotFound"
        assert outcomes[0].notification.rendered_body == "Hello Alice!"
        assert (await records.find_for_recipient(NotificationQuery())).meta.total == 2

    @pytest.mark.parametrize("payload", [
        {"recipientId": "", "channels": ["EMAIL"], "templateKey": "welcome"},
        {"recipientId": "user-1", "channels": [], "templateKey": "welcome"},
        {"recipientId": "user-1", "channels": ["EMAIL"], "templateKey": ""},
    ])
    async def test_malformed_request(self, manager, payload):
        with pytest.raises(ValidationError) as exc_info:
            await manager.send(payload)
        assert exc_info.value.http_status == 400
        assert exc_info.value.details

    def test_unknown_policy_rejected(self, template_store, records, queue):
        with pytest.raises(ValueError):
            NotificationManager(template_store, TemplateRenderer(), records, queue, send_policy="eventual")


class TestQueries:
    async def test_find_for_recipient(self, manager, welcome_templates):
        await manager.send(_request(["EMAIL", "SMS"]))
        page = await manager.find_for_recipient({"recipientId": "user-1", "page": "1", "limit": "1"})

        assert len(page.data) == 1
        assert page.meta.total == 2
        assert page.meta.total_pages == 2

    async def test_invalid_paging(self, manager):
        with pytest.raises(ValidationError):
            await manager.find_for_recipient({"page": "0"})
        with pytest.raises(ValidationError):
            await manager.find_for_recipient({"limit": "ten"})

    async def test_mark_read(self, manager, welcome_templates):
        notification = (await manager.send(_request(["EMAIL"])))[0]

        result = await manager.mark_read(notification.id)

        assert result["message"] == "Notification marked as read"
        assert result["data"].status == NotificationStatus.READ

    async def test_mark_read_unknown(self, manager):
        with pytest.raises(NotFoundError):
            await manager.mark_read("missing")
