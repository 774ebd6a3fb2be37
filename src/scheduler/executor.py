"""
Executor for the job scheduler.

- ExecutorRegistry maps job types to async callables (payload) -> result
- HttpJobExecutor posts a job's payload to a worker endpoint
- ResilientExecutor runs one job through circuit breaker, claim, executor
  and retry decision, and reports a JobOutcome

What executors MUST NOT do:
- Decide retry policy (RetryController's responsibility)
- Choose which jobs run (BatchScheduler's responsibility)
"""

import logging
import time
from datetime import datetime
from typing import Any, Awaitable, Callable, Iterable, Optional

import httpx

from .circuit_breaker import CircuitBreakerRegistry
from .config import WORKER_BASE_URL, WORKER_TIMEOUT_SECONDS
from .entities import Job, JobOutcome, JobStatus, utc_now
from .errors import (
    CircuitOpenError,
    ConcurrencyViolationError,
    JobExecutionError,
    JobNotFoundError,
)
from .retry_controller import RetryController, kind_for_status
from .store import AsyncJobStore


logger = logging.getLogger(__name__)


JobExecutorFn = Callable[[dict], Awaitable[Any]]


class ExecutorRegistry:
    """Job type -> async executor callable."""

    def __init__(self, executors: Optional[dict[str, JobExecutorFn]] = None):
        self._executors: dict[str, JobExecutorFn] = dict(executors or {})

    def register(self, job_type: str, executor: JobExecutorFn) -> None:
        job_type = str(getattr(job_type, "value", job_type))
        if job_type in self._executors:
            logger.info(f"Replacing executor for job type {job_type}")
        self._executors[job_type] = executor

    def get(self, job_type: str) -> JobExecutorFn:
        """
        Raises:
            JobExecutionError: kind "configuration" when nothing is registered
        """
        executor = self._executors.get(job_type)
        if executor is None:
            raise JobExecutionError(
                f"No executor registered for job type '{job_type}'",
                kind="configuration",
            )
        return executor

    def has(self, job_type: str) -> bool:
        return job_type in self._executors

    @property
    def job_types(self) -> list[str]:
        return list(self._executors)


class HttpJobExecutor:
    """
    Runs a job by POSTing its payload to {base_url}/jobs/{job_type}.

    Failures are raised as JobExecutionError with a kind derived from the
    HTTP status or transport error.
    """

    def __init__(
        self,
        job_type: str,
        base_url: str = WORKER_BASE_URL,
        timeout: float = WORKER_TIMEOUT_SECONDS,
    ):
        self.job_type = job_type
        self.url = f"{base_url.rstrip('/')}/jobs/{job_type}"
        self.timeout = timeout

    async def __call__(self, payload: dict) -> Any:
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(
                    self.url,
                    json=payload,
                    headers={
                        "Content-Type": "application/json",
                        "User-Agent": "JobOrchestrator/1.0",
                        "X-Job-Type": self.job_type,
                    },
                )
        except httpx.TimeoutException as e:
            raise JobExecutionError(
                f"Worker timeout after {self.timeout}s for {self.job_type}",
                kind="network_timeout",
            ) from e
        except httpx.RequestError as e:
            raise JobExecutionError(
                f"Worker request error for {self.job_type}: {e}",
                kind="network",
            ) from e

        if not 200 <= response.status_code < 300:
            raise JobExecutionError(
                f"Worker returned HTTP {response.status_code}: {response.text[:200]}",
                kind=kind_for_status(response.status_code),
                status_code=response.status_code,
            )

        if not response.content:
            return None
        return response.json()


def register_http_executors(
    registry: ExecutorRegistry,
    job_types: Iterable[str],
    base_url: str = WORKER_BASE_URL,
    timeout: float = WORKER_TIMEOUT_SECONDS,
) -> ExecutorRegistry:
    """Register an HttpJobExecutor for each job type."""
    for job_type in job_types:
        registry.register(job_type, HttpJobExecutor(job_type, base_url=base_url, timeout=timeout))
    return registry


class ResilientExecutor:
    """
    Executes single jobs with circuit breaking and retry.

    Flow for one job:
    1. Circuit check: open -> job moved to RETRY at the end of the cooldown,
       attempts untouched, executor not called
    2. Atomic claim: PENDING|RETRY -> PROCESSING, attempts + 1
    3. Executor call
    4. Success -> COMPLETED; failure -> RETRY with scheduled_at, or FAILED

    Errors of the job itself never leave execute(); they end up in the
    returned JobOutcome.
    """

    def __init__(
        self,
        store: AsyncJobStore,
        registry: ExecutorRegistry,
        breakers: CircuitBreakerRegistry,
        retry_controller: RetryController,
        notifier=None,
        clock: Callable[[], datetime] = utc_now,
    ):
        """
        Args:
            store: Job store
            registry: Executors per job type
            breakers: Circuit breakers per job type
            retry_controller: Retry decisions
            notifier: Optional src.infra.events.EventNotifier
            clock: Time source
        """
        self.store = store
        self.registry = registry
        self.breakers = breakers
        self.retry_controller = retry_controller
        self.notifier = notifier
        self.clock = clock

    async def execute(self, job: Job) -> JobOutcome:
        try:
            self.breakers.before_call(job.job_type)
        except CircuitOpenError as e:
            return await self._defer_for_open_circuit(job, e)

        try:
            claimed = await self.store.claim_job(job.id, self.clock())
        except (ConcurrencyViolationError, JobNotFoundError) as e:
            self.breakers.release_trial(job.job_type)
            logger.warning(f"Skipping job {job.id}: {e}")
            return JobOutcome(
                job_id=job.id,
                tenant_id=job.tenant_id,
                job_type=job.job_type,
                success=False,
                status=job.status,
                error=str(e),
                skipped=True,
            )
        except Exception:
            self.breakers.release_trial(job.job_type)
            raise

        logger.info(
            f"Processing {claimed.job_type} for tenant {claimed.tenant_id} "
            f"(job {claimed.id}, attempt {claimed.attempts}/{claimed.max_attempts})"
        )
        if self.notifier is not None:
            await self.notifier.job_started(claimed)

        started = time.monotonic()
        try:
            executor = self.registry.get(claimed.job_type)
            await executor(claimed.payload)
        except Exception as exc:
            duration_ms = int((time.monotonic() - started) * 1000)
            self.breakers.record_failure(claimed.job_type)
            outcome = await self._handle_failure(claimed, exc, duration_ms)
        else:
            duration_ms = int((time.monotonic() - started) * 1000)
            self.breakers.record_success(claimed.job_type)
            await self.store.update_status(
                claimed.id,
                JobStatus.COMPLETED,
                completed_at=self.clock(),
                error=None,
            )
            logger.info(
                f"{claimed.job_type} completed for tenant {claimed.tenant_id} ({duration_ms}ms)"
            )
            outcome = JobOutcome(
                job_id=claimed.id,
                tenant_id=claimed.tenant_id,
                job_type=claimed.job_type,
                success=True,
                status=JobStatus.COMPLETED,
                duration_ms=duration_ms,
            )

        if self.notifier is not None:
            await self.notifier.job_finished(claimed, outcome)
        return outcome

    async def _defer_for_open_circuit(self, job: Job, error: CircuitOpenError) -> JobOutcome:
        retry_at = error.retry_at or self.clock()
        await self.store.update_status(
            job.id,
            JobStatus.RETRY,
            scheduled_at=retry_at,
            error=str(error),
        )
        logger.warning(f"Deferred job {job.id} for tenant {job.tenant_id}: {error}")
        return JobOutcome(
            job_id=job.id,
            tenant_id=job.tenant_id,
            job_type=job.job_type,
            success=False,
            status=JobStatus.RETRY,
            error=str(error),
            error_kind="circuit_open",
            circuit_open=True,
            scheduled_at=retry_at,
        )

    async def _handle_failure(self, job: Job, exc: Exception, duration_ms: int) -> JobOutcome:
        message = str(exc) or exc.__class__.__name__
        decision = self.retry_controller.evaluate(job, exc)

        if decision.should_retry:
            await self.store.update_status(
                job.id,
                JobStatus.RETRY,
                scheduled_at=decision.scheduled_at,
                error=message,
            )
            status = JobStatus.RETRY
        else:
            await self.store.update_status(
                job.id,
                JobStatus.FAILED,
                completed_at=self.clock(),
                error=message,
            )
            status = JobStatus.FAILED

        logger.error(
            f"{job.job_type} failed for tenant {job.tenant_id}: {message} "
            f"({decision.kind}, {status.value})"
        )
        return JobOutcome(
            job_id=job.id,
            tenant_id=job.tenant_id,
            job_type=job.job_type,
            success=False,
            status=status,
            duration_ms=duration_ms,
            error=message,
            error_kind=decision.kind,
            scheduled_at=decision.scheduled_at,
        )
