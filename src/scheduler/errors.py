"""
Scheduler-specific exceptions.

Propagation rules:
- GraphBuildError is fatal to a scheduling pass and reaches the caller.
- DependencyCycleError is logged; nodes on the cycle are never ready.
- JobExecutionError and CircuitOpenError stay inside the job they belong to.
- ConfigurationError is recovered locally by the planner with defaults.
"""

from datetime import datetime
from typing import Optional


class SchedulerError(Exception):
    """Base exception for all scheduler errors."""
    pass


class GraphBuildError(SchedulerError):
    """
    Raised when the job store fails while the dependency graph is built.

    No partial graph is ever used; the pass aborts before executing anything.
    """

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        self.cause = cause
        super().__init__(message)


class DependencyCycleError(SchedulerError):
    """Raised (or logged) when the precedence configuration contains a cycle."""

    def __init__(self, cycles: list[list[str]]):
        self.cycles = cycles
        rendered = "; ".join(" -> ".join(cycle + cycle[:1]) for cycle in cycles)
        super().__init__(f"Dependency cycle detected: {rendered}")


class JobExecutionError(SchedulerError):
    """
    Raised by job executors to report a classified failure.

    `kind` is matched against the per-job-type retryable allow-list,
    e.g. "network_timeout", "rate_limit", "server_error".
    """

    def __init__(self, message: str, kind: str = "unknown", status_code: Optional[int] = None):
        self.kind = kind
        self.status_code = status_code
        super().__init__(message)


class CircuitOpenError(SchedulerError):
    """
    Raised when a job type's circuit is open.

    The executor is not invoked and the job's attempt count is untouched.
    """

    def __init__(self, job_type: str, retry_at: Optional[datetime] = None):
        self.job_type = job_type
        self.retry_at = retry_at
        suffix = f" until {retry_at.isoformat()}" if retry_at is not None else ""
        super().__init__(f"Circuit open for job type '{job_type}'{suffix}")


class TenantPassError(SchedulerError):
    """
    Raised when a tenant task dies after some of its jobs already ran.

    Carries the outcomes of those jobs so the pass summary still counts them.
    """

    def __init__(self, tenant_id: str, outcomes: list, cause: BaseException):
        self.tenant_id = tenant_id
        self.outcomes = outcomes
        self.cause = cause
        super().__init__(str(cause) or cause.__class__.__name__)


class ConfigurationError(SchedulerError):
    """Raised for unmapped timezones, bad local times or unknown priority tiers."""
    pass


class InvalidOperationError(SchedulerError):
    """
    Raised when an operation violates a job store invariant.

    Examples:
    - Enqueueing a second live job for the same (tenant_id, job_type)
    - Unknown job type passed to the store
    """
    pass


class JobNotFoundError(SchedulerError):
    """Raised when a requested job does not exist."""

    def __init__(self, job_id: str):
        self.job_id = job_id
        super().__init__(f"Job not found: {job_id}")


class ConcurrencyViolationError(SchedulerError):
    """
    Raised when a concurrent modification is detected.

    Used for atomic claim operations where the job was already claimed
    by another process.
    """

    def __init__(self, job_id: str, expected_status: str, actual_status: str):
        self.job_id = job_id
        self.expected_status = expected_status
        self.actual_status = actual_status
        super().__init__(
            f"Concurrency violation for job {job_id}: "
            f"expected status '{expected_status}', got '{actual_status}'"
        )
