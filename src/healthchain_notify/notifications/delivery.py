"""
Durable dispatch queue for HealthChain Notify.

Jobs live in the `dispatch_jobs` table so they survive restarts. A worker
claims a job by bumping its version under a conditional update and holds it
for a lease; a job whose lease expires without being acknowledged becomes
claimable again, which gives at-least-once delivery.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Dict, List, Optional

from sqlalchemy import and_, delete, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.models import DispatchJob, RetryPolicy, dispatch_job_adapter, utcnow
from ..database.manager import DatabaseManager, as_utc
from ..database.models import DispatchJobRecord

logger = logging.getLogger(__name__)


class JobState(Enum):
    """Queue-side job state."""
    QUEUED = "queued"
    ACTIVE = "active"
    COMPLETED = "completed"
    DEAD = "dead"


@dataclass
class ClaimedJob:
    """A job held by a worker until it is acknowledged."""

    job_id: str
    job: DispatchJob
    policy: RetryPolicy
    version: int
    locked_until: datetime

    @property
    def attempt(self) -> int:
        return self.job.attempt


class DispatchQueue:
    """Database-backed delivery queue with retry and dead-lettering."""

    def __init__(self, database: DatabaseManager, lease_seconds: int = 60):
        self.database = database
        self.lease_seconds = lease_seconds
        self.logger = logging.getLogger(__name__)

    async def enqueue(self, job: DispatchJob, policy: RetryPolicy,
                      available_at: Optional[datetime] = None,
                      session: Optional[AsyncSession] = None) -> str:
        """Add a job; returns the queue job id. An outer `session` is flushed, not committed."""
        job = dispatch_job_adapter.validate_python(job)
        now = utcnow()
        record = DispatchJobRecord(
            notification_id=job.notification_id,
            channel=job.channel,
            payload=job.to_json(),
            policy=policy.to_json(),
            attempt=job.attempt,
            state=JobState.QUEUED.value,
            available_at=available_at or now,
            version=0,
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

        self.logger.debug(f"Enqueued job {record.id} for notification {job.notification_id}")
        return record.id

    async def claim(self, limit: int = 1, now: Optional[datetime] = None) -> List[ClaimedJob]:
        """
        Claim up to `limit` jobs that are due.

        Due means queued with `available_at` in the past, or active with an
        expired lease. Each claim is a conditional update on the version the
        caller saw, so competing workers cannot both win the same job.
        """
        now = now or utcnow()
        locked_until = now + timedelta(seconds=self.lease_seconds)
        due = or_(
            and_(
                DispatchJobRecord.state == JobState.QUEUED.value,
                DispatchJobRecord.available_at <= now,
            ),
            and_(
                DispatchJobRecord.state == JobState.ACTIVE.value,
                DispatchJobRecord.locked_until <= now,
            ),
        )

        claimed: List[ClaimedJob] = []
        async with self.database.session() as session:
            result = await session.execute(
                select(DispatchJobRecord)
                .where(due)
                .order_by(DispatchJobRecord.available_at, DispatchJobRecord.created_at)
                .limit(limit * 2)
            )
            candidates = list(result.scalars())

            for record in candidates:
                if len(claimed) >= limit:
                    break
                if record.state == JobState.ACTIVE.value:
                    self.logger.warning(
                        f"Lease expired for job {record.id} (attempt {record.attempt}), reclaiming"
                    )
                outcome = await session.execute(
                    update(DispatchJobRecord)
                    .where(
                        DispatchJobRecord.id == record.id,
                        DispatchJobRecord.version == record.version,
                    )
                    .values(
                        state=JobState.ACTIVE.value,
                        locked_until=locked_until,
                        version=record.version + 1,
                        updated_at=now,
                    )
                    .execution_options(synchronize_session=False)
                )
                if outcome.rowcount != 1:
                    continue
                claimed.append(ClaimedJob(
                    job_id=record.id,
                    job=dispatch_job_adapter.validate_python(record.payload),
                    policy=RetryPolicy.model_validate(record.policy),
                    version=record.version + 1,
                    locked_until=locked_until,
                ))
            await session.commit()

        return claimed

    async def _transition(self, claimed: ClaimedJob, **values: Any) -> bool:
        values.setdefault("updated_at", utcnow())
        values["version"] = claimed.version + 1
        async with self.database.session() as session:
            result = await session.execute(
                update(DispatchJobRecord)
                .where(
                    DispatchJobRecord.id == claimed.job_id,
                    DispatchJobRecord.version == claimed.version,
                )
                .values(**values)
            )
            await session.commit()

        if result.rowcount != 1:
            self.logger.warning(f"Job {claimed.job_id} changed hands before acknowledgement")
            return False
        return True

    async def complete(self, claimed: ClaimedJob) -> bool:
        """Acknowledge a delivered job."""
        now = utcnow()
        return await self._transition(
            claimed,
            state=JobState.COMPLETED.value,
            locked_until=None,
            finished_at=now,
            updated_at=now,
        )

    async def retry(self, claimed: ClaimedJob, error: str, now: Optional[datetime] = None) -> datetime:
        """Re-queue a failed job for its next attempt after the backoff delay."""
        now = now or utcnow()
        delay_ms = claimed.policy.get_delay_ms(claimed.attempt)
        available_at = now + timedelta(milliseconds=delay_ms)
        next_job = claimed.job.model_copy(update={"attempt": claimed.attempt + 1})

        await self._transition(
            claimed,
            state=JobState.QUEUED.value,
            payload=next_job.to_json(),
            attempt=next_job.attempt,
            available_at=available_at,
            locked_until=None,
            last_error=error,
            updated_at=now,
        )
        self.logger.debug(
            f"Scheduled retry {next_job.attempt} for job {claimed.job_id} in {delay_ms}ms"
        )
        return available_at

    async def dead_letter(self, claimed: ClaimedJob, error: str) -> bool:
        """Stop retrying a job."""
        now = utcnow()
        return await self._transition(
            claimed,
            state=JobState.DEAD.value,
            locked_until=None,
            last_error=error,
            finished_at=now,
            updated_at=now,
        )

    async def jobs_for_notification(self, notification_id: str) -> List[Dict[str, Any]]:
        async with self.database.session() as session:
            result = await session.execute(
                select(DispatchJobRecord)
                .where(DispatchJobRecord.notification_id == notification_id)
                .order_by(DispatchJobRecord.created_at)
            )
            return [self._describe(record) for record in result.scalars()]

    def _describe(self, record: DispatchJobRecord) -> Dict[str, Any]:
        return {
            "id": record.id,
            "notification_id": record.notification_id,
            "channel": record.channel,
            "state": record.state,
            "attempt": record.attempt,
            "payload": record.payload,
            "policy": record.policy,
            "available_at": as_utc(record.available_at),
            "last_error": record.last_error,
        }

    async def get_queue_stats(self) -> Dict[str, Any]:
        """Job counts per state."""
        stats = {state.value: 0 for state in JobState}
        async with self.database.session() as session:
            result = await session.execute(
                select(DispatchJobRecord.state, func.count()).group_by(DispatchJobRecord.state)
            )
            for state, count in result.all():
                stats[state] = count
        stats["total_items"] = sum(stats[state.value] for state in JobState)
        return stats

    async def cleanup_finished_jobs(self, max_age_hours: int = 24) -> int:
        """Remove completed and dead jobs older than the given age."""
        cutoff_time = utcnow() - timedelta(hours=max_age_hours)
        async with self.database.session() as session:
            result = await session.execute(
                delete(DispatchJobRecord).where(
                    DispatchJobRecord.state.in_([JobState.COMPLETED.value, JobState.DEAD.value]),
                    DispatchJobRecord.finished_at < cutoff_time,
                )
            )
            await session.commit()
            removed_count = result.rowcount or 0

        if removed_count > 0:
            self.logger.info(f"Cleaned up {removed_count} finished jobs")
        return removed_count
