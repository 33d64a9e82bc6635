"""Retry and dead-letter policy for failed render jobs."""

from dataclasses import dataclass

from ..core.types import RenderJob


@dataclass(frozen=True)
class RetryPolicy:
    """Exponential backoff without jitter.

    The delay before retry ``n`` (1-based) is ``base ** n * delay_scale``,
    so with the defaults retries wait 2, 4 and 8 seconds.

    Attributes:
        exponential_base: Backoff base
        delay_scale: Multiplier applied to every delay
    """

    exponential_base: float = 2.0
    delay_scale: float = 1.0

    def __post_init__(self) -> None:
        if self.exponential_base < 1.0:
            raise ValueError("exponential_base must be >= 1")
        if self.delay_scale < 0:
            raise ValueError("delay_scale must be >= 0")

    def get_delay(self, attempt: int) -> float:
        """Seconds to wait before retry ``attempt``."""
        return max(0.0, (self.exponential_base ** attempt) * self.delay_scale)

    @staticmethod
    def should_retry(job: RenderJob) -> bool:
        return job.retry_count < job.max_retries

    @staticmethod
    def retry_reason(job: RenderJob) -> str:
        return f"Retry {job.retry_count}/{job.max_retries}"
