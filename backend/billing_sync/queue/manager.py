"""WebhookQueue: Redis sorted set of webhook jobs scored by due time."""

import time

from redis.asyncio import Redis

from billing_sync.queue.schemas import QueuedJob


class WebhookQueue:
    """Durable queue of webhook jobs, isolated under its own key prefix.

    Layout:
    - ``queue:{name}`` sorted set, member = event id, score = due unix time
    - ``queue:{name}:job:{event_id}`` hash with ``event_type`` and ``attempts``

    One member per event id, so enqueueing the same event twice is a no-op.
    """

    def __init__(self, redis: Redis, name: str = "webhooks"):
        self.redis = redis
        self.name = name
        self.queue_key = f"queue:{name}"

    def _job_key(self, event_id: str) -> str:
        return f"{self.queue_key}:job:{event_id}"

    async def enqueue(self, event_id: str, event_type: str, delay_seconds: float = 0, now: float | None = None) -> bool:
        """Add a job due after ``delay_seconds``.

        Returns True if the job was added, False if it was already queued.
        """
        now = now if now is not None else time.time()
        await self.redis.hsetnx(self._job_key(event_id), "event_type", event_type)
        await self.redis.hsetnx(self._job_key(event_id), "attempts", 0)
        added = await self.redis.zadd(self.queue_key, {event_id: now + delay_seconds}, nx=True)
        return bool(added)

    async def dequeue(self, now: float | None = None) -> QueuedJob | None:
        """Claim the earliest due job, or None if nothing is due.

        The claim is the ZREM: when several workers race for the same member
        only the one whose ZREM removes it gets the job.
        """
        now = now if now is not None else time.time()
        due = await self.redis.zrangebyscore(self.queue_key, "-inf", now, start=0, num=1)
        if not due:
            return None

        event_id = due[0]
        if not await self.redis.zrem(self.queue_key, event_id):
            return None

        attempts = await self.redis.hincrby(self._job_key(event_id), "attempts", 1)
        event_type = await self.redis.hget(self._job_key(event_id), "event_type")
        return QueuedJob(event_id=event_id, event_type=event_type or "", attempts=attempts)

    async def reschedule(self, job: QueuedJob, delay_seconds: float, now: float | None = None) -> None:
        """Put a claimed job back, due after ``delay_seconds``. Attempts are kept."""
        now = now if now is not None else time.time()
        await self.redis.zadd(self.queue_key, {job.event_id: now + delay_seconds})

    async def complete(self, event_id: str) -> None:
        """Forget a job entirely (finished, or dropped after its last attempt)."""
        await self.redis.zrem(self.queue_key, event_id)
        await self.redis.delete(self._job_key(event_id))

    async def reset_attempts(self, event_id: str) -> None:
        """Give a job a fresh retry budget (operator replay)."""
        await self.redis.hset(self._job_key(event_id), "attempts", 0)

    async def is_queued(self, event_id: str) -> bool:
        return await self.redis.zscore(self.queue_key, event_id) is not None

    async def get_length(self) -> int:
        """Return current queue size."""
        return await self.redis.zcard(self.queue_key)
