"""Tests for API models, the retry policy and dispatch job payloads."""

from datetime import datetime, timezone

import pytest
from pydantic import ValidationError

from healthchain_notify.core.models import (
    Channel,
    EmailJob,
    InAppJob,
    MAX_PAGE_LIMIT,
    Notification,
    NotificationQuery,
    NotificationStatus,
    PageMeta,
    RetryPolicy,
    SendNotificationRequest,
    SmsJob,
    build_dispatch_job,
    dispatch_job_adapter,
)


def _notification(channel=Channel.EMAIL):
    now = datetime(2024, 1, 1, tzinfo=timezone.utc)
    return Notification(
        id="n-1",
        recipient_id="user-1",
        channel=channel,
        template_key="welcome",
        variables={"name": "Alice"},
        rendered_body="Hello Alice!",
        created_at=now,
        updated_at=now,
    )


class TestRetryPolicy:
    def test_defaults(self):
        policy = RetryPolicy()
        assert policy.max_attempts == 5
        assert policy.backoff == "exponential"
        assert policy.base_delay_ms == 2000

    @pytest.mark.parametrize("attempt,expected", [(1, 2000), (2, 4000), (3, 8000), (4, 16000)])
    def test_exponential_delay(self, attempt, expected):
        assert RetryPolicy().get_delay_ms(attempt) == expected

    def test_fixed_delay(self):
        policy = RetryPolicy(backoff="fixed", base_delay_ms=500)
        assert policy.get_delay_ms(1) == 500
        assert policy.get_delay_ms(4) == 500

    def test_can_retry_until_max_attempts(self):
        policy = RetryPolicy()
        assert policy.can_retry(4)
        assert not policy.can_retry(5)

    def test_wire_shape(self):
        assert RetryPolicy().to_json() == {
            "maxAttempts": 5,
            "backoff": "exponential",
            "baseDelayMs": 2000,
        }


class TestSendNotificationRequest:
    def test_accepts_camel_case(self):
        request = SendNotificationRequest.model_validate({
            "recipientId": "user-1",
            "channels": ["EMAIL", "SMS"],
            "templateKey": "welcome",
            "variables": {"name": "Alice"},
        })
        assert request.channels == [Channel.EMAIL, Channel.SMS]
        assert request.recipient_id == "user-1"

    @pytest.mark.parametrize("payload", [
        {"recipientId": "", "channels": ["EMAIL"], "templateKey": "welcome"},
        {"recipientId": "   ", "channels": ["EMAIL"], "templateKey": "welcome"},
        {"recipientId": "user-1", "channels": [], "templateKey": "welcome"},
        {"recipientId": "user-1", "channels": ["FAX"], "templateKey": "welcome"},
        {"recipientId": "user-1", "channels": ["EMAIL"]},
        {"recipientId": "user-1", "channels": ["EMAIL"], "templateKey": "welcome", "variables": {"n": 1}},
    ])
    def test_rejects_malformed_input(self, payload):
        with pytest.raises(ValidationError):
            SendNotificationRequest.model_validate(payload)


class TestPaging:
    def test_query_defaults(self):
        query = NotificationQuery()
        assert (query.page, query.limit, query.offset) == (1, 10, 0)

    def test_offset(self):
        assert NotificationQuery(page=3, limit=20).offset == 40

    @pytest.mark.parametrize("field", ["page", "limit"])
    def test_rejects_non_positive(self, field):
        with pytest.raises(ValidationError):
            NotificationQuery.model_validate({field: 0})

    @pytest.mark.parametrize("payload", [{"limit": MAX_PAGE_LIMIT + 1}, {"page": 10**19}, {"page": 2**62, "limit": 4}])
    def test_rejects_out_of_range(self, payload):
        with pytest.raises(ValidationError):
            NotificationQuery.model_validate(payload)

    @pytest.mark.parametrize("total,limit,pages", [(0, 10, 0), (10, 10, 1), (11, 10, 2), (25, 10, 3)])
    def test_total_pages(self, total, limit, pages):
        assert PageMeta.build(total=total, page=1, limit=limit).total_pages == pages


class TestDispatchJob:
    def test_build_selects_channel_variant(self):
        assert isinstance(build_dispatch_job(_notification(Channel.EMAIL)), EmailJob)
        assert isinstance(build_dispatch_job(_notification(Channel.IN_APP)), InAppJob)

    def test_wire_shape(self):
        job = build_dispatch_job(_notification(Channel.SMS))
        assert job.to_json() == {
            "notificationId": "n-1",
            "recipientId": "user-1",
            "channel": "SMS",
            "renderedBody": "Hello Alice!",
            "templateKey": "welcome",
            "variables": {"name": "Alice"},
            "attempt": 1,
        }

    def test_payload_round_trips_through_adapter(self):
        payload = build_dispatch_job(_notification(Channel.SMS)).to_json()
        assert isinstance(dispatch_job_adapter.validate_python(payload), SmsJob)

    def test_unknown_channel_is_rejected(self):
        payload = build_dispatch_job(_notification()).to_json()
        payload["channel"] = "FAX"
        with pytest.raises(ValidationError):
            dispatch_job_adapter.validate_python(payload)

    def test_status_values(self):
        assert [s.value for s in NotificationStatus] == ["PENDING", "SENT", "FAILED", "READ"]
