"""
Core data models for HealthChain Notify.
"""

import math
from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator, model_validator
from pydantic.alias_generators import to_camel


def utcnow() -> datetime:
    """Current time in UTC."""
    return datetime.now(timezone.utc)


class Channel(str, Enum):
    """Delivery channels."""

    SMS = "SMS"
    EMAIL = "EMAIL"
    PUSH = "PUSH"
    IN_APP = "IN_APP"


class NotificationStatus(str, Enum):
    """Delivery status of a notification record."""

    PENDING = "PENDING"
    SENT = "SENT"
    FAILED = "FAILED"
    READ = "READ"


class ApiModel(BaseModel):
    """Base model serialised with camelCase field names."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )

    def to_json(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class Template(ApiModel):
    """Channel-scoped message template."""

    id: str
    key: str
    channel: Channel
    body: str
    created_at: datetime
    updated_at: datetime


class Notification(ApiModel):
    """Persisted notification record and its delivery status."""

    id: str
    recipient_id: str
    channel: Channel
    template_key: str
    variables: Dict[str, str] = Field(default_factory=dict)
    rendered_body: str
    status: NotificationStatus = NotificationStatus.PENDING
    created_at: datetime
    updated_at: datetime


class SendNotificationRequest(ApiModel):
    """Request to notify one recipient on one or more channels."""

    recipient_id: str = Field(..., min_length=1)
    channels: List[Channel] = Field(..., min_length=1)
    template_key: str = Field(..., min_length=1)
    variables: Dict[str, str] = Field(default_factory=dict)

    @field_validator("recipient_id", "template_key")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("must not be blank")
        return value


# Largest row offset SQLite accepts
MAX_OFFSET = 2**63 - 1
MAX_PAGE_LIMIT = 100


class NotificationQuery(ApiModel):
    """Paging and filter parameters for listing notifications."""

    recipient_id: Optional[str] = None
    page: int = Field(1, ge=1)
    limit: int = Field(10, ge=1, le=MAX_PAGE_LIMIT)

    @model_validator(mode="after")
    def _offset_in_range(self) -> "NotificationQuery":
        if self.offset > MAX_OFFSET:
            raise ValueError("page is out of range")
        return self

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit


class PageMeta(ApiModel):
    total: int
    page: int
    limit: int
    total_pages: int

    @classmethod
    def build(cls, total: int, page: int, limit: int) -> "PageMeta":
        return cls(total=total, page=page, limit=limit, total_pages=math.ceil(total / limit))


class NotificationPage(ApiModel):
    data: List[Notification]
    meta: PageMeta


class ChannelOutcome(ApiModel):
    """Result of one channel in a send that reports instead of raising."""

    channel: Channel
    status: Literal["queued", "failed"]
    notification: Optional[Notification] = None
    error: Optional[str] = None
    message: Optional[str] = None


class RetryPolicy(ApiModel):
    """Retry policy attached to every dispatch job."""

    max_attempts: int = Field(5, ge=1)
    backoff: Literal["exponential", "fixed"] = "exponential"
    base_delay_ms: int = Field(2000, ge=0)

    def get_delay_ms(self, attempt: int) -> int:
        """Delay before retrying after `attempt` failed."""
        if attempt <= 0:
            return 0
        if self.backoff == "fixed":
            return self.base_delay_ms
        return self.base_delay_ms * 2 ** (attempt - 1)

    def can_retry(self, attempt: int) -> bool:
        return attempt < self.max_attempts


class _DispatchJobBase(ApiModel):
    notification_id: str
    recipient_id: str
    rendered_body: str
    template_key: str
    variables: Dict[str, str] = Field(default_factory=dict)
    attempt: int = Field(1, ge=1)


class SmsJob(_DispatchJobBase):
    channel: Literal["SMS"] = "SMS"


class EmailJob(_DispatchJobBase):
    channel: Literal["EMAIL"] = "EMAIL"


class PushJob(_DispatchJobBase):
    channel: Literal["PUSH"] = "PUSH"


class InAppJob(_DispatchJobBase):
    channel: Literal["IN_APP"] = "IN_APP"


DispatchJob = Annotated[
    Union[SmsJob, EmailJob, PushJob, InAppJob],
    Field(discriminator="channel"),
]

dispatch_job_adapter: TypeAdapter = TypeAdapter(DispatchJob)


def build_dispatch_job(notification: Notification, attempt: int = 1):
    """Create the queue payload for a persisted notification."""
    return dispatch_job_adapter.validate_python({
        "notification_id": notification.id,
        "recipient_id": notification.recipient_id,
        "channel": notification.channel.value,
        "rendered_body": notification.rendered_body,
        "template_key": notification.template_key,
        "variables": dict(notification.variables),
        "attempt": attempt,
    })
