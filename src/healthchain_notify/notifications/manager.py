"""
Notification manager: the entry point for sending and querying notifications.
"""

import logging
from typing import Any, Dict, List, Optional, Tuple

from pydantic import ValidationError as PydanticValidationError

from ..core.config import NotificationsConfig, QueueConfig
from ..core.models import (
    Channel,
    ChannelOutcome,
    Notification,
    NotificationPage,
    NotificationQuery,
    RetryPolicy,
    SendNotificationRequest,
    build_dispatch_job,
)
from ..utils.logging import DeliveryLogger
from .delivery import DispatchQueue
from .errors import NotFoundError, RenderError, ValidationError
from .records import RecordStore
from .templates import TemplateRenderer, TemplateStore

SEND_POLICIES = ("partial", "atomic")


class NotificationManager:
    """
    Accepts send requests and answers record queries.

    `send` works through the requested channels in order. Under the
    `partial` policy a missing template or render failure stops the loop
    and channels handled before it stay persisted and queued. Under the
    `atomic` policy every channel is resolved and rendered before anything
    is persisted.
    """

    def __init__(
        self,
        templates: TemplateStore,
        renderer: TemplateRenderer,
        records: RecordStore,
        queue: DispatchQueue,
        retry_policy: Optional[RetryPolicy] = None,
        send_policy: str = "partial",
        delivery_logger: Optional[DeliveryLogger] = None,
    ):
        if send_policy not in SEND_POLICIES:
            raise ValueError(f"Unknown send policy: {send_policy}")

        self.templates = templates
        self.renderer = renderer
        self.records = records
        self.queue = queue
        self.retry_policy = retry_policy or RetryPolicy()
        self.send_policy = send_policy
        self.delivery_logger = delivery_logger or DeliveryLogger()
        self.logger = logging.getLogger(__name__)

    @classmethod
    def from_config(
        cls,
        templates: TemplateStore,
        records: RecordStore,
        queue: DispatchQueue,
        queue_config: QueueConfig,
        notifications_config: NotificationsConfig,
        delivery_logger: Optional[DeliveryLogger] = None,
    ) -> "NotificationManager":
        return cls(
            templates=templates,
            renderer=TemplateRenderer(autoescape=notifications_config.autoescape),
            records=records,
            queue=queue,
            retry_policy=RetryPolicy(
                max_attempts=queue_config.max_attempts,
                backoff=queue_config.backoff,
                base_delay_ms=queue_config.base_delay_ms,
            ),
            send_policy=notifications_config.send_policy,
            delivery_logger=delivery_logger,
        )

    @staticmethod
    def _coerce_request(request) -> SendNotificationRequest:
        if isinstance(request, SendNotificationRequest):
            return request
        try:
            return SendNotificationRequest.model_validate(request)
        except PydanticValidationError as e:
            raise ValidationError.from_pydantic(e) from e

    async def _prepare(self, request: SendNotificationRequest, channel: Channel) -> str:
        """Resolve and render the template for one channel."""
        template = await self.templates.resolve(request.template_key, channel)
        return self.renderer.render(template.body, request.variables)

    async def _accept(self, request: SendNotificationRequest, channel: Channel,
                      rendered_body: str) -> Notification:
        """Persist a PENDING record and queue its delivery in one transaction."""
        async with self.records.database.session() as session:
            notification = await self.records.create(
                recipient_id=request.recipient_id,
                channel=channel,
                template_key=request.template_key,
                variables=request.variables,
                rendered_body=rendered_body,
                session=session,
            )
            job_id = await self.queue.enqueue(
                build_dispatch_job(notification), self.retry_policy, session=session
            )
            await session.commit()
        self.delivery_logger.log_notification_queued(
            notification.id, notification.recipient_id, channel.value,
            notification.template_key, job_id,
        )
        return notification

    async def send(self, request) -> List[Notification]:
        """
        Create one record per requested channel and queue its delivery.

        Returns the records in request order. Raises NotFoundError or
        RenderError for the first channel that cannot be prepared.
        """
        request = self._coerce_request(request)

        if self.send_policy == "atomic":
            prepared: List[Tuple[Channel, str]] = []
            for channel in request.channels:
                prepared.append((channel, await self._prepare(request, channel)))
            return [await self._accept(request, channel, body) for channel, body in prepared]

        created: List[Notification] = []
        for channel in request.channels:
            try:
                rendered_body = await self._prepare(request, channel)
            except (NotFoundError, RenderError) as e:
                if created:
                    self.logger.warning(
                        f"Send to {request.recipient_id} stopped at {channel.value} "
                        f"after {len(created)} queued channel(s): {e}"
                    )
                raise
            created.append(await self._accept(request, channel, rendered_body))

        self.logger.info(
            f"Queued {len(created)} notification(s) for {request.recipient_id} "
            f"using template {request.template_key}"
        )
        return created

    async def send_with_outcomes(self, request) -> List[ChannelOutcome]:
        """Like `send`, but every channel is attempted and reported instead of raising."""
        request = self._coerce_request(request)

        outcomes: List[ChannelOutcome] = []
        for channel in request.channels:
            try:
                rendered_body = await self._prepare(request, channel)
            except (NotFoundError, RenderError) as e:
                outcomes.append(ChannelOutcome(
                    channel=channel, status="failed", error=e.kind, message=str(e),
                ))
                continue
            notification = await self._accept(request, channel, rendered_body)
            outcomes.append(ChannelOutcome(channel=channel, status="queued", notification=notification))

        return outcomes

    async def find_for_recipient(self, query) -> NotificationPage:
        if not isinstance(query, NotificationQuery):
            try:
                query = NotificationQuery.model_validate(query)
            except PydanticValidationError as e:
                raise ValidationError.from_pydantic(e) from e
        return await self.records.find_for_recipient(query)

    async def get(self, notification_id: str) -> Notification:
        return await self.records.get(notification_id)

    async def mark_read(self, notification_id: str) -> Dict[str, Any]:
        notification = await self.records.mark_read(notification_id)
        return {"message": "Notification marked as read", "data": notification}
