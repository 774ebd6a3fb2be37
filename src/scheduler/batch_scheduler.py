"""
Batch Scheduler.

One scheduling pass:
1. Fetch pending work and build the dependency graph
2. Split the tenants with pending work into batches
3. Run batches one after another; tenants inside a batch run concurrently,
   each tenant's ready jobs run sequentially
4. Stop starting batches once the budget is spent, the deadline passed or
   the pass was cancelled

A batch in flight is never preempted. Errors of a single job or tenant stay
inside the pass summary; only a failed graph build aborts the pass.
"""

import asyncio
import logging
import time
from datetime import datetime
from typing import Callable, Optional, Sequence, TypeVar

from .config import (
    DEFAULT_PASS_BUDGET,
    MAX_CONCURRENT_TENANTS,
    MAX_JOBS_PER_TENANT,
    PASS_TIMEOUT_SECONDS,
    PENDING_FETCH_LIMIT,
    RECOMPUTE_READY_AFTER_EACH_JOB,
)
from .dependency_graph import DependencyGraphBuilder
from .entities import DependencyGraph, Job, JobOutcome, PassSummary, utc_now
from .errors import DependencyCycleError, GraphBuildError, TenantPassError
from .executor import ResilientExecutor
from .precedence import find_precedence_cycles
from .store import AsyncJobStore


logger = logging.getLogger(__name__)

T = TypeVar("T")

STOP_BUDGET = "budget"
STOP_TIMEOUT = "timeout"
STOP_CANCELLED = "cancelled"


def partition_batches(items: Sequence[T], batch_size: int) -> list[list[T]]:
    """Split items into consecutive batches of at most batch_size."""
    if batch_size < 1:
        raise ValueError(f"batch_size must be positive, got {batch_size}")
    return [list(items[i:i + batch_size]) for i in range(0, len(items), batch_size)]


class BatchScheduler:
    """
    Runs scheduling passes over all tenants with pending work.
    """

    def __init__(
        self,
        store: AsyncJobStore,
        graph_builder: DependencyGraphBuilder,
        executor: ResilientExecutor,
        max_concurrent_tenants: int = MAX_CONCURRENT_TENANTS,
        max_jobs_per_tenant: int = MAX_JOBS_PER_TENANT,
        pending_fetch_limit: int = PENDING_FETCH_LIMIT,
        pass_timeout_seconds: Optional[float] = PASS_TIMEOUT_SECONDS,
        recompute_ready_after_each_job: bool = RECOMPUTE_READY_AFTER_EACH_JOB,
        notifier=None,
        clock: Callable[[], datetime] = utc_now,
    ):
        """
        Args:
            store: Job store
            graph_builder: Builds graphs and ready sets
            executor: Runs single jobs with resilience
            max_concurrent_tenants: Tenants per batch
            max_jobs_per_tenant: Ready jobs taken per tenant per pass
            pending_fetch_limit: Upper bound of pending jobs read per pass
            pass_timeout_seconds: Stop starting batches after this long
            recompute_ready_after_each_job: Re-read the tenant's ready set
                after every job instead of once per pass
            notifier: Optional src.infra.events.EventNotifier
            clock: Time source for store queries
        """
        if max_concurrent_tenants < 1:
            raise ValueError("max_concurrent_tenants must be positive")
        if max_jobs_per_tenant < 1:
            raise ValueError("max_jobs_per_tenant must be positive")

        self.store = store
        self.graph_builder = graph_builder
        self.executor = executor
        self.max_concurrent_tenants = max_concurrent_tenants
        self.max_jobs_per_tenant = max_jobs_per_tenant
        self.pending_fetch_limit = pending_fetch_limit
        self.pass_timeout_seconds = pass_timeout_seconds
        self.recompute_ready_after_each_job = recompute_ready_after_each_job
        self.notifier = notifier
        self.clock = clock

        self.precedence_cycles = self._check_precedence()

    def _check_precedence(self) -> list[list[str]]:
        cycles = find_precedence_cycles(self.graph_builder.precedence)
        if cycles:
            logger.error(f"Invalid precedence table: {DependencyCycleError(cycles)}")
        return cycles

    # =========================================================================
    # Pass
    # =========================================================================

    async def run_pass(
        self,
        budget: int = DEFAULT_PASS_BUDGET,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> PassSummary:
        """
        Run one scheduling pass.

        Args:
            budget: Jobs to process before no further batch is started
            cancel_event: When set, no further batch is started

        Returns:
            PassSummary of the pass

        Raises:
            GraphBuildError: If pending work or dependency status could not
                be read
        """
        summary = PassSummary(budget=budget)
        started = time.monotonic()
        deadline = started + self.pass_timeout_seconds if self.pass_timeout_seconds else None

        logger.info(f"Starting scheduling pass {summary.pass_id} (budget: {budget})")
        if self.notifier is not None:
            await self.notifier.pass_started(summary.pass_id, budget)

        self.precedence_cycles = self._check_precedence()

        try:
            pending = await self.store.fetch_pending(
                limit=self.pending_fetch_limit,
                now=self.clock(),
            )
        except Exception as e:
            logger.error(f"Failed to fetch pending jobs: {e}", exc_info=True)
            raise GraphBuildError(f"Failed to fetch pending jobs: {e}", cause=e) from e

        graph = await self.graph_builder.build(pending)
        summary.cycles = [list(cycle) for cycle in graph.cycles]
        summary.blocked = len(self.graph_builder.blocked_nodes(graph))

        tenants = graph.tenants
        batches = partition_batches(tenants, self.max_concurrent_tenants)
        logger.info(
            f"Found {len(tenants)} tenants with pending jobs "
            f"in {len(batches)} batches"
        )

        for batch in batches:
            stop_reason = self._stop_reason(summary, budget, deadline, cancel_event)
            if stop_reason is not None:
                summary.stopped_reason = stop_reason
                logger.info(f"Pass {summary.pass_id} stopping before next batch: {stop_reason}")
                break

            logger.info(f"Processing batch of {len(batch)} tenants: {', '.join(batch)}")
            results = await asyncio.gather(
                *(self._process_tenant(graph, tenant_id) for tenant_id in batch),
                return_exceptions=True,
            )
            summary.batches += 1

            for tenant_id, result in zip(batch, results):
                if isinstance(result, TenantPassError):
                    for outcome in result.outcomes:
                        summary.record(outcome)
                if isinstance(result, BaseException):
                    logger.error(
                        f"Tenant {tenant_id} failed during pass: {result}",
                        exc_info=result,
                    )
                    summary.record_tenant_failure(tenant_id, str(result) or result.__class__.__name__)
                    continue
                for outcome in result:
                    summary.record(outcome)

        summary.wall_clock_ms = int((time.monotonic() - started) * 1000)

        logger.info(
            f"Pass {summary.pass_id} completed: processed={summary.processed}, "
            f"succeeded={summary.succeeded}, failed={summary.failed}, "
            f"blocked={summary.blocked}, tenants={len(summary.tenants_touched)}, "
            f"batches={summary.batches}, {summary.wall_clock_ms}ms"
        )
        if self.notifier is not None:
            await self.notifier.pass_completed(summary)

        return summary

    def _stop_reason(
        self,
        summary: PassSummary,
        budget: int,
        deadline: Optional[float],
        cancel_event: Optional[asyncio.Event],
    ) -> Optional[str]:
        if summary.processed >= budget:
            return STOP_BUDGET
        if cancel_event is not None and cancel_event.is_set():
            return STOP_CANCELLED
        if deadline is not None and time.monotonic() >= deadline:
            return STOP_TIMEOUT
        return None

    # =========================================================================
    # Tenant
    # =========================================================================

    async def _process_tenant(self, graph: DependencyGraph, tenant_id: str) -> list[JobOutcome]:
        """Run up to max_jobs_per_tenant ready jobs of one tenant, in rank order."""
        outcomes: list[JobOutcome] = []

        if not self.recompute_ready_after_each_job:
            ready = self.graph_builder.ready_jobs(graph, tenant_id)[:self.max_jobs_per_tenant]
            logger.info(f"Tenant {tenant_id}: {len(ready)} ready jobs")
            for job in ready:
                outcomes.append(await self._execute_one(job))
            return outcomes

        attempted: set[str] = set()
        ready = self.graph_builder.ready_jobs(graph, tenant_id)
        while len(attempted) < self.max_jobs_per_tenant:
            candidates = [job for job in ready if job.id not in attempted]
            if not candidates:
                break
            job = candidates[0]
            attempted.add(job.id)
            outcomes.append(await self._execute_one(job))
            try:
                ready = await self._current_ready_jobs(tenant_id)
            except Exception as e:
                logger.error(
                    f"Tenant {tenant_id}: failed to refresh ready jobs after "
                    f"{len(outcomes)} executed: {e}"
                )
                raise TenantPassError(tenant_id, outcomes, e) from e
        return outcomes

    async def _current_ready_jobs(self, tenant_id: str) -> list[Job]:
        pending = await self.store.fetch_pending(limit=self.pending_fetch_limit, now=self.clock())
        graph = await self.graph_builder.build(job for job in pending if job.tenant_id == tenant_id)
        return self.graph_builder.ready_jobs(graph, tenant_id)

    async def _execute_one(self, job: Job) -> JobOutcome:
        try:
            return await self.executor.execute(job)
        except Exception as e:
            logger.error(
                f"Unexpected error executing job {job.id} for tenant {job.tenant_id}: {e}",
                exc_info=True,
            )
            return JobOutcome(
                job_id=job.id,
                tenant_id=job.tenant_id,
                job_type=job.job_type,
                success=False,
                status=job.status,
                error=str(e) or e.__class__.__name__,
                error_kind="unknown",
            )
