"""Queue schemas and the webhook retry policy."""

from dataclasses import dataclass

from pydantic import BaseModel

from billing_sync.core.config import Settings

# Used when no delays are configured at all
DEFAULT_RETRY_DELAYS_SECONDS = (60, 300, 900, 1800, 3600)


class QueuedJob(BaseModel):
    """A webhook job claimed from the queue."""

    event_id: str
    event_type: str
    attempts: int = 0


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded retry schedule applied uniformly to every webhook job.

    ``delays_seconds[n]`` is the wait before retry ``n + 1``; the first
    attempt is not counted as a retry.
    """

    delays_seconds: tuple[int, ...] = DEFAULT_RETRY_DELAYS_SECONDS

    @classmethod
    def from_settings(cls, settings: Settings) -> "RetryPolicy":
        delays = tuple(settings.webhook_retry_delays_seconds) or DEFAULT_RETRY_DELAYS_SECONDS
        return cls(delays_seconds=delays)

    @property
    def max_retries(self) -> int:
        return len(self.delays_seconds)

    @property
    def max_attempts(self) -> int:
        return self.max_retries + 1

    def delay_for(self, retry_number: int) -> int:
        """Delay before the given 1-indexed retry; clamps to the last delay."""
        index = min(max(retry_number, 1), self.max_retries) - 1
        return self.delays_seconds[index]

    def should_retry(self, attempts: int) -> bool:
        """True if a job that has run ``attempts`` times may run again."""
        return attempts < self.max_attempts
