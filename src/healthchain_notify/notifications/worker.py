"""
Delivery worker: drains the dispatch queue through the channel providers.
"""

import asyncio
import logging
import time
from datetime import datetime
from typing import Any, Dict, List, Optional, Set

from ..core.models import Channel, Notification, NotificationStatus, utcnow
from ..utils.logging import DeliveryLogger
from .delivery import ClaimedJob, DispatchQueue
from .errors import NotFoundError
from .providers import ContactResolver, ProviderRegistry
from .records import RecordStore


class DeliveryWorker:
    """
    Claims due jobs and hands them to the provider for their channel.

    A successful send moves the record PENDING -> SENT. A failed send is
    re-queued with backoff until the job's policy runs out of attempts, at
    which point the record becomes FAILED and the job is dead-lettered.
    Records that already left PENDING are acknowledged without sending again.
    """

    def __init__(
        self,
        queue: DispatchQueue,
        records: RecordStore,
        providers: ProviderRegistry,
        resolver: Optional[ContactResolver] = None,
        delivery_logger: Optional[DeliveryLogger] = None,
        concurrency: int = 5,
        poll_interval: float = 1.0,
        send_timeout: float = 30.0,
        retention_hours: int = 24,
    ):
        self.queue = queue
        self.records = records
        self.providers = providers
        self.resolver = resolver or ContactResolver()
        self.delivery_logger = delivery_logger or DeliveryLogger()
        self.concurrency = concurrency
        self.poll_interval = poll_interval
        self.send_timeout = send_timeout
        self.retention_hours = retention_hours
        self.logger = logging.getLogger(__name__)

        self._running = False
        self._stop_event = asyncio.Event()
        self._delivery_tasks: Set[asyncio.Task] = set()
        self._last_cleanup = 0.0

    @property
    def running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Process the queue until stop() is called."""
        self._running = True
        self._stop_event.clear()
        self.logger.info(
            f"Starting delivery worker (concurrency={self.concurrency}, poll={self.poll_interval}s)"
        )

        while self._running:
            try:
                await self._process_pending_deliveries()
                await self._maybe_cleanup()
            except Exception as e:
                self.logger.error(f"Error in delivery worker: {e}", exc_info=True)

            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.poll_interval)
            except asyncio.TimeoutError:
                pass

    async def stop(self) -> None:
        """Stop polling and wait for in-flight deliveries."""
        self._running = False
        self._stop_event.set()
        self.logger.info("Stopping delivery worker")

        if self._delivery_tasks:
            await asyncio.gather(*self._delivery_tasks, return_exceptions=True)

    async def _process_pending_deliveries(self) -> None:
        current_tasks = len([t for t in self._delivery_tasks if not t.done()])
        available_slots = self.concurrency - current_tasks
        if available_slots <= 0:
            return

        for claimed in await self.queue.claim(limit=available_slots):
            task = asyncio.create_task(self.process(claimed))
            self._delivery_tasks.add(task)
            task.add_done_callback(self._delivery_tasks.discard)

    async def _maybe_cleanup(self) -> None:
        if time.monotonic() - self._last_cleanup < 3600:
            return
        self._last_cleanup = time.monotonic()
        await self.queue.cleanup_finished_jobs(self.retention_hours)

    async def run_once(self, now: Optional[datetime] = None) -> int:
        """Claim and process one batch in the foreground; returns the batch size."""
        claimed_jobs = await self.queue.claim(limit=self.concurrency, now=now)
        if claimed_jobs:
            await asyncio.gather(*(self.process(claimed, now=now) for claimed in claimed_jobs))
        return len(claimed_jobs)

    async def process(self, claimed: ClaimedJob, now: Optional[datetime] = None) -> None:
        """Deliver one claimed job and acknowledge it."""
        job = claimed.job

        try:
            notification = await self.records.get(job.notification_id)
        except NotFoundError as e:
            self.logger.error(f"Dropping job {claimed.job_id}: {e}")
            await self.queue.dead_letter(claimed, str(e))
            return

        if notification.status != NotificationStatus.PENDING:
            self.logger.info(
                f"Notification {notification.id} is already {notification.status.value}, skipping delivery"
            )
            await self.queue.complete(claimed)
            return

        started = time.monotonic()
        try:
            await self._send(notification)
        except Exception as e:
            error = str(e) or type(e).__name__
            self.delivery_logger.log_delivery_attempt(
                notification.id, job.channel, claimed.attempt, False,
                (time.monotonic() - started) * 1000, error,
            )
            await self._handle_failure(claimed, notification, error, now)
            return

        self.delivery_logger.log_delivery_attempt(
            notification.id, job.channel, claimed.attempt, True,
            (time.monotonic() - started) * 1000,
        )
        await self.records.update_status(
            notification.id, NotificationStatus.SENT, expected=[NotificationStatus.PENDING]
        )
        await self.queue.complete(claimed)
        self.delivery_logger.log_notification_sent(notification.id, job.channel, claimed.attempt)

    async def _send(self, notification: Notification) -> Dict[str, Any]:
        provider = self.providers.get(notification.channel)
        target = self.resolver.resolve(
            notification.recipient_id, notification.channel, notification.variables
        )
        subject = notification.variables.get("subject") or notification.variables.get("title")

        data = None
        if notification.channel == Channel.IN_APP:
            data = {
                "notificationId": notification.id,
                "recipientId": notification.recipient_id,
                "templateKey": notification.template_key,
                "variables": dict(notification.variables),
                "sentAt": utcnow().isoformat(),
            }

        return await asyncio.wait_for(
            provider.send(target, notification.rendered_body, subject=subject, data=data),
            timeout=self.send_timeout,
        )

    async def _handle_failure(
        self,
        claimed: ClaimedJob,
        notification: Notification,
        error: str,
        now: Optional[datetime],
    ) -> None:
        channel = claimed.job.channel
        if claimed.policy.can_retry(claimed.attempt):
            available_at = await self.queue.retry(claimed, error, now=now)
            self.delivery_logger.log_retry_scheduled(
                notification.id, channel, claimed.attempt + 1, available_at
            )
            return

        await self.records.update_status(
            notification.id, NotificationStatus.FAILED, expected=[NotificationStatus.PENDING]
        )
        await self.queue.dead_letter(claimed, error)
        self.delivery_logger.log_dead_lettered(notification.id, channel, claimed.attempt, error)

    async def drain(self, now: Optional[datetime] = None, max_batches: int = 100) -> List[int]:
        """Run batches until nothing is due; returns the size of each batch."""
        sizes = []
        for _ in range(max_batches):
            size = await self.run_once(now=now)
            if not size:
                break
            sizes.append(size)
        return sizes
