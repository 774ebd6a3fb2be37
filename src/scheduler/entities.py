"""
Scheduler Domain Entities.

- Job: one unit of work for one tenant and one job type
- DependencyNode / DependencyGraph: throwaway per-pass structures built
  from the job store, never persisted
- JobOutcome / PassSummary: result of a scheduling pass

Timestamps are timezone-aware UTC datetimes. The store persists them as
fixed-width ISO strings so they compare correctly as text.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional
import uuid


ISO_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"


class JobStatus(str, Enum):
    """
    Job status values.

    - PENDING: waiting for its prerequisites and a scheduling pass
    - PROCESSING: claimed by a pass and executing
    - COMPLETED: finished successfully (terminal)
    - FAILED: terminal failure, error recorded on the job
    - RETRY: waiting for scheduled_at before it becomes eligible again
    """

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    RETRY = "retry"


LIVE_STATUSES = (JobStatus.PENDING, JobStatus.PROCESSING, JobStatus.RETRY)


class JobType(str, Enum):
    """Job types of the per-tenant inventory chain."""

    FEED_INGEST = "feed_ingest"
    FEED_ENRICH = "feed_enrich"
    DETAIL_ENRICH = "detail_enrich"
    LINK_PUBLISH = "link_publish"


def generate_uuid() -> str:
    """Generate a new UUID string."""
    return str(uuid.uuid4())


def utc_now() -> datetime:
    """Get the current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def to_iso(value: Optional[datetime]) -> Optional[str]:
    """Serialize a datetime to the store's fixed-width UTC format."""
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime(ISO_FORMAT)


def from_iso(value: Optional[str]) -> Optional[datetime]:
    """Parse a timestamp written by to_iso (or any ISO-8601 string)."""
    if not value:
        return None
    try:
        return datetime.strptime(value, ISO_FORMAT).replace(tzinfo=timezone.utc)
    except ValueError:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed


def node_id(tenant_id: str, job_type: str) -> str:
    """Graph node identifier for a (tenant, job type) pair."""
    return f"{tenant_id}:{job_type}"


@dataclass
class Job:
    """
    Single unit of work for one tenant.

    Mutability rules:
    - id, tenant_id, job_type, payload, created_at: immutable
    - status, attempts, started_at, completed_at, scheduled_at, error:
      changed only through the job store
    """

    id: str
    tenant_id: str
    job_type: str
    status: JobStatus
    payload: dict = field(default_factory=dict)
    attempts: int = 0
    max_attempts: int = 3
    created_at: datetime = field(default_factory=utc_now)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    scheduled_at: Optional[datetime] = None
    error: Optional[str] = None

    @classmethod
    def create(
        cls,
        tenant_id: str,
        job_type: str,
        payload: Optional[dict] = None,
        max_attempts: int = 3,
        created_at: Optional[datetime] = None,
    ) -> "Job":
        """Create a new PENDING job with generated ID."""
        return cls(
            id=generate_uuid(),
            tenant_id=tenant_id,
            job_type=str(getattr(job_type, "value", job_type)),
            status=JobStatus.PENDING,
            payload=payload or {},
            max_attempts=max_attempts,
            created_at=created_at or utc_now(),
        )

    def is_live(self) -> bool:
        """Check if the job still occupies its (tenant, job type) slot."""
        return self.status in LIVE_STATUSES

    def is_terminal(self) -> bool:
        """Check if job is in a terminal state."""
        return self.status in (JobStatus.COMPLETED, JobStatus.FAILED)


@dataclass
class Prerequisite:
    """A prerequisite of a dependency node and its last-known status."""

    tenant_id: str
    job_type: str
    status: Optional[JobStatus] = None

    @property
    def node_id(self) -> str:
        return node_id(self.tenant_id, self.job_type)

    @property
    def satisfied(self) -> bool:
        return self.status == JobStatus.COMPLETED


@dataclass
class DependencyNode:
    """Node of the per-pass dependency graph."""

    tenant_id: str
    job_type: str
    priority: int
    job: Job
    depends_on: list[Prerequisite] = field(default_factory=list)

    @property
    def node_id(self) -> str:
        return node_id(self.tenant_id, self.job_type)


@dataclass
class DependencyGraph:
    """
    Per-pass dependency graph.

    edges are (prerequisite node id, dependent node id) pairs.
    cycles is expected to be empty under a correct precedence table.
    """

    nodes: dict[str, DependencyNode] = field(default_factory=dict)
    edges: list[tuple[str, str]] = field(default_factory=list)
    cycles: list[list[str]] = field(default_factory=list)

    def nodes_for_tenant(self, tenant_id: str) -> list[DependencyNode]:
        return [n for n in self.nodes.values() if n.tenant_id == tenant_id]

    def cyclic_node_ids(self) -> set[str]:
        return {nid for cycle in self.cycles for nid in cycle}

    @property
    def tenants(self) -> list[str]:
        seen: dict[str, None] = {}
        for node in self.nodes.values():
            seen.setdefault(node.tenant_id, None)
        return list(seen)


@dataclass
class JobOutcome:
    """Result of running one job through the resilience layer."""

    job_id: str
    tenant_id: str
    job_type: str
    success: bool
    status: JobStatus
    duration_ms: int = 0
    error: Optional[str] = None
    error_kind: Optional[str] = None
    circuit_open: bool = False
    skipped: bool = False
    scheduled_at: Optional[datetime] = None


@dataclass
class PassSummary:
    """Aggregate counters of one scheduling pass."""

    pass_id: str = field(default_factory=generate_uuid)
    budget: int = 0
    processed: int = 0
    succeeded: int = 0
    failed: int = 0
    blocked: int = 0
    batches: int = 0
    tenants_touched: list[str] = field(default_factory=list)
    wall_clock_ms: int = 0
    stopped_reason: Optional[str] = None
    cycles: list[list[str]] = field(default_factory=list)
    outcomes: list[JobOutcome] = field(default_factory=list)
    tenant_errors: dict[str, str] = field(default_factory=dict)

    def record(self, outcome: JobOutcome) -> None:
        """Merge one job outcome into the counters."""
        self.outcomes.append(outcome)
        if outcome.skipped:
            return
        self.processed += 1
        if outcome.success:
            self.succeeded += 1
        else:
            self.failed += 1
        self._touch(outcome.tenant_id)

    def record_tenant_failure(self, tenant_id: str, error: str) -> None:
        """Count a tenant task that died outside job execution as one failure."""
        self.failed += 1
        self.tenant_errors[tenant_id] = error
        self._touch(tenant_id)

    def _touch(self, tenant_id: str) -> None:
        if tenant_id not in self.tenants_touched:
            self.tenants_touched.append(tenant_id)

    @property
    def errors(self) -> dict[str, str]:
        errors = {o.job_id: o.error for o in self.outcomes if o.error and not o.skipped}
        errors.update(self.tenant_errors)
        return errors

    def to_dict(self) -> dict[str, Any]:
        return {
            "pass_id": self.pass_id,
            "budget": self.budget,
            "processed": self.processed,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "blocked": self.blocked,
            "batches": self.batches,
            "tenants_touched": list(self.tenants_touched),
            "wall_clock_ms": self.wall_clock_ms,
            "stopped_reason": self.stopped_reason,
            "cycles": [list(c) for c in self.cycles],
            "errors": self.errors,
        }
