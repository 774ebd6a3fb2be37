"""
JSON output schemas for the CLI.
"""

from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from src.planner import PlannedRun, TimezoneDistribution
from src.scheduler import Job, JobOutcome, PassSummary


class JobOutcomeResponse(BaseModel):
    """Result of one job in a pass."""

    job_id: str
    tenant_id: str
    job_type: str
    success: bool
    status: str = Field(..., description="Job status after the pass")
    duration_ms: int = 0
    error: Optional[str] = None
    error_kind: Optional[str] = None
    circuit_open: bool = False
    skipped: bool = False
    scheduled_at: Optional[datetime] = Field(default=None, description="Next attempt for retried jobs")

    @classmethod
    def from_outcome(cls, outcome: JobOutcome) -> "JobOutcomeResponse":
        return cls(
            job_id=outcome.job_id,
            tenant_id=outcome.tenant_id,
            job_type=outcome.job_type,
            success=outcome.success,
            status=outcome.status.value,
            duration_ms=outcome.duration_ms,
            error=outcome.error,
            error_kind=outcome.error_kind,
            circuit_open=outcome.circuit_open,
            skipped=outcome.skipped,
            scheduled_at=outcome.scheduled_at,
        )


class PassSummaryResponse(BaseModel):
    """Summary of one scheduling pass."""

    pass_id: str
    budget: int = Field(..., ge=0)
    processed: int
    succeeded: int
    failed: int
    blocked: int = Field(..., description="Pending nodes not ready (unmet dependency or cycle)")
    batches: int
    tenants_touched: List[str]
    wall_clock_ms: int
    stopped_reason: Optional[str] = Field(default=None, description="budget, timeout or cancelled")
    cycles: List[List[str]] = Field(default_factory=list)
    errors: Dict[str, str] = Field(default_factory=dict)
    outcomes: List[JobOutcomeResponse] = Field(default_factory=list)

    @classmethod
    def from_summary(cls, summary: PassSummary) -> "PassSummaryResponse":
        data = summary.to_dict()
        data["outcomes"] = [JobOutcomeResponse.from_outcome(o) for o in summary.outcomes]
        return cls(**data)


class PlannedRunResponse(BaseModel):
    """Planned run of one tenant."""

    tenant_id: str
    utc_run_time: datetime
    local_run_time: str = Field(..., description="Local start time and zone, e.g. '01:43 America/Chicago'")
    priority_tier: str
    timezone: str
    stagger_offset_minutes: int
    window_start: datetime
    window_end: datetime
    window_minutes: int

    @classmethod
    def from_run(cls, run: PlannedRun) -> "PlannedRunResponse":
        return cls(
            tenant_id=run.tenant_id,
            utc_run_time=run.utc_run_time,
            local_run_time=run.local_run_time,
            priority_tier=run.priority_tier,
            timezone=run.timezone,
            stagger_offset_minutes=run.stagger_offset_minutes,
            window_start=run.processing_window.start,
            window_end=run.processing_window.end,
            window_minutes=run.processing_window.duration_minutes,
        )


class TimezoneDistributionResponse(BaseModel):
    """Tenant count and UTC window of one zone."""

    timezone: str
    utc_offset: int
    tenant_count: int
    window_start: str = Field(..., description="UTC HH:00 when 01:00 local begins")
    window_end: str

    @classmethod
    def from_distribution(cls, entry: TimezoneDistribution) -> "TimezoneDistributionResponse":
        return cls(
            timezone=entry.timezone,
            utc_offset=entry.utc_offset,
            tenant_count=entry.tenant_count,
            window_start=entry.window_start,
            window_end=entry.window_end,
        )


class JobResponse(BaseModel):
    """A job as stored."""

    job_id: str
    tenant_id: str
    job_type: str
    status: str
    attempts: int
    max_attempts: int
    created_at: datetime
    scheduled_at: Optional[datetime] = None
    error: Optional[str] = None

    @classmethod
    def from_job(cls, job: Job) -> "JobResponse":
        return cls(
            job_id=job.id,
            tenant_id=job.tenant_id,
            job_type=job.job_type,
            status=job.status.value,
            attempts=job.attempts,
            max_attempts=job.max_attempts,
            created_at=job.created_at,
            scheduled_at=job.scheduled_at,
            error=job.error,
        )
