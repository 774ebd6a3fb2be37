"""
Retry Controller for the job scheduler.

- Classifies execution errors into kinds
- Decides retry vs terminal failure per job type
- Computes exponential backoff

What RetryController MUST NOT do:
- Execute jobs
- Write to the job store (ResilientExecutor applies the decision)
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Callable, Optional

import httpx

from .config import ResiliencePolicy, policy_for
from .entities import Job, utc_now
from .errors import JobExecutionError


logger = logging.getLogger(__name__)


# Message fragments used when an exception carries no structured kind.
# Order matters: the first matching kind wins.
_MESSAGE_PATTERNS: tuple[tuple[str, tuple[str, ...]], ...] = (
    ("network_timeout", ("timeout", "timed out")),
    ("rate_limit", ("rate limit", "too many requests", "429")),
    ("network", ("network", "econnreset", "connection reset", "connection refused")),
    ("server_error", ("500", "502", "503", "504", "internal server error", "service unavailable")),
    ("temporary", ("temporary", "temporarily")),
)


def kind_for_status(status_code: int) -> str:
    """Map an HTTP status code to an error kind."""
    if status_code == 429:
        return "rate_limit"
    if status_code == 408:
        return "network_timeout"
    if status_code >= 500:
        return "server_error"
    if status_code >= 400:
        return "client_error"
    return "unknown"


class RetryAction(str, Enum):
    RETRY = "retry"
    FAIL = "fail"


@dataclass
class RetryDecision:
    """What to do with a job after a failed execution."""

    action: RetryAction
    kind: str
    delay_seconds: float = 0.0
    scheduled_at: Optional[datetime] = None
    reason: str = ""

    @property
    def should_retry(self) -> bool:
        return self.action == RetryAction.RETRY


class RetryController:
    """
    Retry policy per job type.

    Backoff calculation:
        delay = min(base_delay * 2 ^ (attempts - 1), max_delay)
        Example with 1s base, 30s cap: 1s -> 2s -> 4s ... -> 30s
    """

    def __init__(
        self,
        policies: Optional[dict[str, ResiliencePolicy]] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.policies = policies
        self.clock = clock

    # =========================================================================
    # Classification
    # =========================================================================

    def classify_error(self, exc: BaseException) -> str:
        """Derive an error kind from an exception."""
        if isinstance(exc, JobExecutionError):
            if exc.kind and exc.kind != "unknown":
                return exc.kind
            if exc.status_code is not None:
                return kind_for_status(exc.status_code)

        if isinstance(exc, (asyncio.TimeoutError, httpx.TimeoutException)):
            return "network_timeout"
        if isinstance(exc, httpx.HTTPStatusError):
            return kind_for_status(exc.response.status_code)
        if isinstance(exc, (httpx.TransportError, ConnectionError)):
            return "network"

        message = str(exc).lower()
        for kind, fragments in _MESSAGE_PATTERNS:
            if any(fragment in message for fragment in fragments):
                return kind

        return "unknown"

    def is_retryable(self, job_type: str, kind: str) -> bool:
        """Check a kind against the job type's allow-list. Unlisted kinds are terminal."""
        return kind in policy_for(job_type, self.policies).retryable_error_kinds

    # =========================================================================
    # Backoff
    # =========================================================================

    def calculate_backoff(self, attempts: int, job_type: Optional[str] = None) -> float:
        """
        Delay in seconds before the next attempt.

        Args:
            attempts: Attempts made so far, including the one that failed
            job_type: Selects base and cap from the job type's policy
        """
        policy = policy_for(job_type or "", self.policies)
        exponent = max(attempts - 1, 0)
        return min(policy.base_delay_seconds * (2 ** exponent), policy.max_delay_seconds)

    # =========================================================================
    # Decision
    # =========================================================================

    def evaluate(self, job: Job, exc: BaseException) -> RetryDecision:
        """
        Decide between retry and terminal failure for a job that just failed.

        job.attempts must already count the failed attempt.
        """
        kind = self.classify_error(exc)

        if job.attempts >= job.max_attempts:
            logger.info(
                f"Job {job.id} ({job.job_type}) exhausted {job.attempts}/{job.max_attempts} "
                f"attempts, marking failed"
            )
            return RetryDecision(
                action=RetryAction.FAIL,
                kind=kind,
                reason=f"max attempts ({job.max_attempts}) reached",
            )

        if not self.is_retryable(job.job_type, kind):
            logger.info(f"Job {job.id} ({job.job_type}) failed with non-retryable {kind} error")
            return RetryDecision(
                action=RetryAction.FAIL,
                kind=kind,
                reason=f"{kind} is not retryable for {job.job_type}",
            )

        delay = self.calculate_backoff(job.attempts, job.job_type)
        scheduled_at = self.clock() + timedelta(seconds=delay)

        logger.info(
            f"Job {job.id} ({job.job_type}) will retry in {delay:g}s "
            f"(attempt {job.attempts}/{job.max_attempts}, {kind})"
        )

        return RetryDecision(
            action=RetryAction.RETRY,
            kind=kind,
            delay_seconds=delay,
            scheduled_at=scheduled_at,
            reason=f"retryable {kind}",
        )
