"""
Scheduler Test Fixtures.

Base fixtures:
  - Empty database (temporary file, one connection per operation)
  - Mocked clock at fixed time
  - Mock executors with controllable outcomes

Per-test fixtures:
  - Job factory writing straight to the store
  - Fully wired ResilientExecutor / BatchScheduler
"""

import pytest
import tempfile
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Callable, Generator, Optional

from src.scheduler import (
    AsyncJobStore,
    BatchScheduler,
    CircuitBreakerRegistry,
    DependencyGraphBuilder,
    ExecutorRegistry,
    Job,
    JobStatus,
    PersistenceAdapter,
    ResilientExecutor,
    RetryController,
)
from src.scheduler.recovery import RecoveryManager


FIXED_DATETIME = datetime(2026, 1, 1, 0, 0, 0, tzinfo=timezone.utc)


class MockClock:
    """
    Mock clock for deterministic time control.

    - Starts at fixed epoch
    - Advances only when explicitly ticked
    """

    def __init__(self, start_time: datetime = FIXED_DATETIME):
        self._current = start_time

    def now(self) -> datetime:
        return self._current

    def tick(self, seconds: float = 1) -> None:
        """Advance time by specified seconds."""
        self._current += timedelta(seconds=seconds)

    def set(self, time: datetime) -> None:
        """Set time to specific value."""
        self._current = time


class MockExecutor:
    """
    Async job executor for testing.

    Fails with the queued exceptions first, then succeeds.
    """

    def __init__(self):
        self.payloads = []
        self._errors = []

    def fail_with(self, *errors: Exception) -> None:
        """Queue exceptions raised by the next calls, in order."""
        self._errors.extend(errors)

    @property
    def calls(self) -> int:
        return len(self.payloads)

    async def __call__(self, payload: dict):
        self.payloads.append(payload)
        if self._errors:
            raise self._errors.pop(0)
        return {"ok": True}


class MockExecutors:
    """One MockExecutor per job type, created on first access."""

    def __init__(self):
        self._by_type: dict[str, MockExecutor] = {}

    def __getitem__(self, job_type: str) -> MockExecutor:
        return self._by_type.setdefault(job_type, MockExecutor())

    def registry(self, job_types) -> ExecutorRegistry:
        registry = ExecutorRegistry()
        for job_type in job_types:
            registry.register(job_type, self[job_type])
        return registry


JOB_TYPES = ("feed_ingest", "feed_enrich", "detail_enrich", "link_publish")


# =============================================================================
# Database Fixtures
# =============================================================================


@pytest.fixture
def temp_db_path() -> Generator[str, None, None]:
    """Create a temporary database file."""
    with tempfile.NamedTemporaryFile(suffix=".db", delete=False) as f:
        db_path = f.name

    yield db_path

    # Cleanup
    Path(db_path).unlink(missing_ok=True)
    # Also cleanup WAL and SHM files
    Path(f"{db_path}-wal").unlink(missing_ok=True)
    Path(f"{db_path}-shm").unlink(missing_ok=True)


@pytest.fixture
def persistence(temp_db_path: str) -> PersistenceAdapter:
    """Create a fresh PersistenceAdapter with empty database."""
    return PersistenceAdapter(temp_db_path)


@pytest.fixture
def store(persistence: PersistenceAdapter) -> AsyncJobStore:
    return AsyncJobStore(persistence)


# =============================================================================
# Component Fixtures
# =============================================================================


@pytest.fixture
def mock_clock() -> MockClock:
    """Create a mock clock at fixed time."""
    return MockClock()


@pytest.fixture
def executors() -> MockExecutors:
    return MockExecutors()


@pytest.fixture
def graph_builder(store: AsyncJobStore) -> DependencyGraphBuilder:
    return DependencyGraphBuilder(store)


@pytest.fixture
def breakers(mock_clock: MockClock) -> CircuitBreakerRegistry:
    return CircuitBreakerRegistry(clock=mock_clock.now)


@pytest.fixture
def retry_controller(mock_clock: MockClock) -> RetryController:
    return RetryController(clock=mock_clock.now)


@pytest.fixture
def resilient_executor(
    store: AsyncJobStore,
    executors: MockExecutors,
    breakers: CircuitBreakerRegistry,
    retry_controller: RetryController,
    mock_clock: MockClock,
) -> ResilientExecutor:
    return ResilientExecutor(
        store=store,
        registry=executors.registry(JOB_TYPES),
        breakers=breakers,
        retry_controller=retry_controller,
        clock=mock_clock.now,
    )


@pytest.fixture
def make_scheduler(
    store: AsyncJobStore,
    graph_builder: DependencyGraphBuilder,
    resilient_executor: ResilientExecutor,
    mock_clock: MockClock,
) -> Callable[..., BatchScheduler]:
    """Factory for BatchScheduler with overridable limits."""

    def _make(**options) -> BatchScheduler:
        options.setdefault("max_concurrent_tenants", 3)
        options.setdefault("max_jobs_per_tenant", 2)
        options.setdefault("pass_timeout_seconds", None)
        options.setdefault("recompute_ready_after_each_job", False)
        return BatchScheduler(
            store=store,
            graph_builder=graph_builder,
            executor=resilient_executor,
            clock=mock_clock.now,
            **options,
        )

    return _make


@pytest.fixture
def recovery_manager(store: AsyncJobStore, mock_clock: MockClock) -> RecoveryManager:
    return RecoveryManager(store, stuck_timeout_minutes=30, clock=mock_clock.now)


# =============================================================================
# Job Factory Fixtures
# =============================================================================


@pytest.fixture
def create_job(persistence: PersistenceAdapter) -> Callable[..., Job]:
    """
    Factory fixture for creating jobs.

    Returns a function that creates jobs with specified parameters.
    """
    counter = {"n": 0}

    def _create(
        tenant_id: str = "tenant-a",
        job_type: str = "feed_ingest",
        status: JobStatus = JobStatus.PENDING,
        attempts: int = 0,
        max_attempts: int = 3,
        payload: Optional[dict] = None,
        created_at: Optional[datetime] = None,
        **fields,
    ) -> Job:
        # Strictly increasing creation times keep ordering deterministic
        counter["n"] += 1
        job = Job.create(
            tenant_id=tenant_id,
            job_type=job_type,
            payload=payload or {"tenant_id": tenant_id},
            max_attempts=max_attempts,
            created_at=created_at or FIXED_DATETIME - timedelta(hours=1) + timedelta(seconds=counter["n"]),
        )
        job = persistence.create_job(job)

        if status != JobStatus.PENDING or attempts or fields:
            job = persistence.update_status(job.id, status, attempts=attempts, **fields)

        return job

    return _create


# =============================================================================
# Assertion Helpers
# =============================================================================


def assert_job_status(persistence: PersistenceAdapter, job_id: str, expected: JobStatus):
    """Assert a job has the expected status."""
    job = persistence.get_job(job_id)
    assert job is not None, f"Job {job_id} not found"
    assert job.status == expected, f"Expected {expected}, got {job.status}"
