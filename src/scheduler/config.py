"""
Configuration constants for the job orchestration engine.

Values come from the environment (a .env file is loaded by the CLI entry
point) with the defaults below.
"""

import os
from dataclasses import dataclass, field
from typing import Optional

from .entities import JobType


def _env_int(key: str, default: int) -> int:
    return int(os.getenv(key, str(default)))


def _env_float(key: str, default: Optional[float]) -> Optional[float]:
    raw = os.getenv(key, "")
    if not raw:
        return default
    return float(raw)


def _env_bool(key: str, default: bool = False) -> bool:
    return os.getenv(key, "true" if default else "false").lower() == "true"


# Storage
DEFAULT_DB_PATH = os.getenv("SCHEDULER_DB_PATH", "./data/scheduler/jobs.db")

# Batch scheduling
MAX_CONCURRENT_TENANTS = _env_int("SCHEDULER_MAX_CONCURRENT_TENANTS", 3)
MAX_JOBS_PER_TENANT = _env_int("SCHEDULER_MAX_JOBS_PER_TENANT", 2)
DEFAULT_PASS_BUDGET = _env_int("SCHEDULER_PASS_BUDGET", 10)
PASS_TIMEOUT_SECONDS = _env_float("SCHEDULER_PASS_TIMEOUT_SECONDS", None)
PENDING_FETCH_LIMIT = _env_int("SCHEDULER_PENDING_FETCH_LIMIT", 1000)
RECOMPUTE_READY_AFTER_EACH_JOB = _env_bool("SCHEDULER_RECOMPUTE_READY_AFTER_EACH_JOB")

# Retry policy
DEFAULT_MAX_ATTEMPTS = _env_int("JOB_MAX_ATTEMPTS", 3)
RETRY_BASE_DELAY_SECONDS = float(os.getenv("RETRY_BASE_DELAY_SECONDS", "1"))
RETRY_MAX_DELAY_SECONDS = float(os.getenv("RETRY_MAX_DELAY_SECONDS", "30"))

# Circuit breaker
CIRCUIT_FAILURE_THRESHOLD = _env_int("CIRCUIT_FAILURE_THRESHOLD", 5)
CIRCUIT_COOLDOWN_SECONDS = float(os.getenv("CIRCUIT_COOLDOWN_SECONDS", "60"))
CIRCUIT_WINDOW_SECONDS = float(os.getenv("CIRCUIT_WINDOW_SECONDS", "300"))

# Recovery
STUCK_JOB_TIMEOUT_MINUTES = _env_int("STUCK_JOB_TIMEOUT_MINUTES", 30)

# Worker endpoints for HttpJobExecutor
WORKER_BASE_URL = os.getenv("WORKER_BASE_URL", "http://localhost:8080")
WORKER_TIMEOUT_SECONDS = float(os.getenv("WORKER_TIMEOUT_SECONDS", "120"))

# Planner
PLANNER_DST_AWARE = _env_bool("PLANNER_DST_AWARE")
TENANT_DIRECTORY_PATH = os.getenv("TENANT_DIRECTORY_PATH", "./data/tenants.json")


# Error kinds every job type may retry
NETWORK_ERROR_KINDS = frozenset({"network_timeout", "network"})


@dataclass(frozen=True)
class ResiliencePolicy:
    """Per-job-type circuit breaker and retry settings."""

    retryable_error_kinds: frozenset = field(default_factory=lambda: NETWORK_ERROR_KINDS)
    failure_threshold: int = CIRCUIT_FAILURE_THRESHOLD
    cooldown_seconds: float = CIRCUIT_COOLDOWN_SECONDS
    window_seconds: float = CIRCUIT_WINDOW_SECONDS
    base_delay_seconds: float = RETRY_BASE_DELAY_SECONDS
    max_delay_seconds: float = RETRY_MAX_DELAY_SECONDS


# Feed endpoints fail with 5xx; the link provider rate-limits.
DEFAULT_POLICIES: dict[str, ResiliencePolicy] = {
    JobType.FEED_INGEST.value: ResiliencePolicy(
        retryable_error_kinds=NETWORK_ERROR_KINDS | {"server_error", "temporary"},
    ),
    JobType.FEED_ENRICH.value: ResiliencePolicy(
        retryable_error_kinds=NETWORK_ERROR_KINDS | {"server_error", "temporary"},
    ),
    JobType.DETAIL_ENRICH.value: ResiliencePolicy(
        retryable_error_kinds=NETWORK_ERROR_KINDS,
    ),
    JobType.LINK_PUBLISH.value: ResiliencePolicy(
        retryable_error_kinds=NETWORK_ERROR_KINDS | {"rate_limit", "temporary"},
    ),
}

FALLBACK_POLICY = ResiliencePolicy(
    retryable_error_kinds=NETWORK_ERROR_KINDS | {"server_error", "temporary"},
)


def policy_for(job_type: str, policies: Optional[dict[str, ResiliencePolicy]] = None) -> ResiliencePolicy:
    """Get the resilience policy for a job type."""
    table = DEFAULT_POLICIES if policies is None else policies
    return table.get(job_type, FALLBACK_POLICY)
