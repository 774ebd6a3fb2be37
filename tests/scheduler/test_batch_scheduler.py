"""
Batch Scheduler Tests.

- Tenant batching and concurrency limits
- Budget, cancellation and deadline are checked between batches
- Per-tenant job limit, ready-set snapshot vs recompute
- Failures stay inside the pass summary; a failed fetch aborts the pass
"""

import asyncio
import sqlite3
import pytest
from unittest.mock import AsyncMock, MagicMock

from src.scheduler import (
    AsyncJobStore,
    BatchScheduler,
    DependencyGraphBuilder,
    ExecutorRegistry,
    GraphBuildError,
    JobExecutionError,
    JobStatus,
    PersistenceAdapter,
    PrecedenceTable,
    ResilientExecutor,
    partition_batches,
)

from .conftest import assert_job_status


def _tenants(create_job, count: int, job_type: str = "feed_ingest") -> list[str]:
    tenants = [f"tenant-{i:02d}" for i in range(count)]
    for tenant in tenants:
        create_job(tenant_id=tenant, job_type=job_type)
    return tenants


class TestPartitionBatches:

    def test_ten_tenants_in_batches_of_three(self):
        batches = partition_batches([f"t{i}" for i in range(10)], 3)

        assert [len(b) for b in batches] == [3, 3, 3, 1]
        assert batches[0] == ["t0", "t1", "t2"]

    def test_empty(self):
        assert partition_batches([], 3) == []

    def test_invalid_size(self):
        with pytest.raises(ValueError):
            partition_batches(["t0"], 0)


class TestRunPass:

    @pytest.mark.asyncio
    async def test_all_tenants_processed_in_batches(self, make_scheduler, create_job):
        _tenants(create_job, 10)

        summary = await make_scheduler(max_concurrent_tenants=3).run_pass(budget=100)

        assert summary.batches == 4
        assert summary.processed == 10
        assert summary.succeeded == 10
        assert summary.failed == 0
        assert summary.stopped_reason is None

    @pytest.mark.asyncio
    async def test_tenant_order_is_deterministic(self, make_scheduler, create_job):
        for tenant in ("t3", "t1", "t4", "t2"):
            create_job(tenant_id=tenant)

        summary = await make_scheduler(max_concurrent_tenants=1).run_pass(budget=100)

        assert summary.tenants_touched == ["t3", "t1", "t4", "t2"]

    @pytest.mark.asyncio
    async def test_empty_store(self, make_scheduler):
        summary = await make_scheduler().run_pass(budget=10)

        assert summary.processed == 0
        assert summary.batches == 0
        assert summary.stopped_reason is None

    @pytest.mark.asyncio
    async def test_notifier_receives_pass_events(self, store, graph_builder, resilient_executor, mock_clock):
        notifier = MagicMock()
        notifier.pass_started = AsyncMock()
        notifier.pass_completed = AsyncMock()
        scheduler = BatchScheduler(
            store, graph_builder, resilient_executor, notifier=notifier, clock=mock_clock.now,
        )

        summary = await scheduler.run_pass(budget=5)

        notifier.pass_started.assert_awaited_once_with(summary.pass_id, 5)
        notifier.pass_completed.assert_awaited_once_with(summary)


class TestStopConditions:

    @pytest.mark.asyncio
    async def test_budget_stops_before_next_batch(self, make_scheduler, create_job):
        _tenants(create_job, 5)

        summary = await make_scheduler(max_concurrent_tenants=2).run_pass(budget=2)

        assert summary.processed == 2
        assert summary.batches == 1
        assert summary.stopped_reason == "budget"

    @pytest.mark.asyncio
    async def test_batch_in_flight_may_overrun_budget(self, make_scheduler, create_job):
        _tenants(create_job, 4)

        summary = await make_scheduler(max_concurrent_tenants=3).run_pass(budget=1)

        assert summary.processed == 3
        assert summary.batches == 1
        assert summary.stopped_reason == "budget"

    @pytest.mark.asyncio
    async def test_cancelled_pass_starts_no_batch(self, make_scheduler, persistence: PersistenceAdapter, create_job):
        _tenants(create_job, 2)
        cancel_event = asyncio.Event()
        cancel_event.set()

        summary = await make_scheduler().run_pass(budget=10, cancel_event=cancel_event)

        assert summary.batches == 0
        assert summary.stopped_reason == "cancelled"
        assert persistence.count_by_status()["pending"] == 2

    @pytest.mark.asyncio
    async def test_deadline_stops_pass(self, make_scheduler, create_job):
        _tenants(create_job, 2)

        summary = await make_scheduler(pass_timeout_seconds=1e-9).run_pass(budget=10)

        assert summary.batches == 0
        assert summary.stopped_reason == "timeout"


class TestTenantLimits:

    @pytest.mark.asyncio
    async def test_max_jobs_per_tenant(self, make_scheduler, persistence: PersistenceAdapter, create_job):
        create_job(job_type="feed_ingest", status=JobStatus.COMPLETED)
        enrich = create_job(job_type="feed_enrich")
        detail = create_job(job_type="detail_enrich")
        create_job(job_type="link_publish")

        summary = await make_scheduler(max_jobs_per_tenant=1).run_pass(budget=10)

        assert summary.processed == 1
        assert summary.blocked == 1
        assert_job_status(persistence, enrich.id, JobStatus.COMPLETED)
        assert_job_status(persistence, detail.id, JobStatus.PENDING)

    @pytest.mark.asyncio
    async def test_snapshot_mode_does_not_unlock_dependents(self, make_scheduler, create_job):
        create_job(job_type="feed_ingest")
        create_job(job_type="detail_enrich")
        create_job(job_type="link_publish")

        summary = await make_scheduler(max_jobs_per_tenant=3).run_pass(budget=10)

        assert summary.processed == 1
        assert summary.blocked == 2

    @pytest.mark.asyncio
    async def test_recompute_mode_runs_unlocked_dependents(
        self, make_scheduler, persistence: PersistenceAdapter, create_job
    ):
        create_job(job_type="feed_ingest")
        create_job(job_type="detail_enrich")
        create_job(job_type="link_publish")

        summary = await make_scheduler(
            max_jobs_per_tenant=3,
            recompute_ready_after_each_job=True,
        ).run_pass(budget=10)

        assert summary.processed == 3
        assert persistence.count_by_status()["completed"] == 3

    @pytest.mark.asyncio
    async def test_failed_job_is_not_retried_in_same_pass(
        self, make_scheduler, persistence: PersistenceAdapter, executors, create_job
    ):
        executors["feed_ingest"].fail_with(JobExecutionError("timeout", kind="network_timeout"))
        job = create_job(job_type="feed_ingest")

        summary = await make_scheduler(
            max_jobs_per_tenant=3,
            recompute_ready_after_each_job=True,
        ).run_pass(budget=10)

        assert summary.processed == 1
        assert summary.failed == 1
        assert_job_status(persistence, job.id, JobStatus.RETRY)


class TestFailures:

    @pytest.mark.asyncio
    async def test_tenant_failure_is_isolated(self, make_scheduler, create_job, monkeypatch):
        _tenants(create_job, 3)
        scheduler = make_scheduler(max_concurrent_tenants=3)
        ready_jobs = scheduler.graph_builder.ready_jobs

        def flaky_ready_jobs(graph, tenant_id):
            if tenant_id == "tenant-01":
                raise RuntimeError("tenant lookup failed")
            return ready_jobs(graph, tenant_id)

        monkeypatch.setattr(scheduler.graph_builder, "ready_jobs", flaky_ready_jobs)

        summary = await scheduler.run_pass(budget=10)

        assert summary.processed == 2
        assert summary.succeeded == 2
        assert summary.failed == 1
        assert summary.errors == {"tenant-01": "tenant lookup failed"}
        assert set(summary.tenants_touched) == {"tenant-00", "tenant-01", "tenant-02"}

    @pytest.mark.asyncio
    async def test_unexpected_executor_error_becomes_failed_outcome(
        self, store: AsyncJobStore, graph_builder, mock_clock, create_job
    ):
        job = create_job()
        executor = MagicMock()
        executor.execute = AsyncMock(side_effect=RuntimeError("boom"))
        scheduler = BatchScheduler(store, graph_builder, executor, clock=mock_clock.now)

        summary = await scheduler.run_pass(budget=10)

        assert summary.processed == 1
        assert summary.failed == 1
        assert summary.errors == {job.id: "boom"}

    @pytest.mark.asyncio
    async def test_fetch_failure_aborts_pass(self, resilient_executor, mock_clock):
        store = MagicMock()
        store.fetch_pending = AsyncMock(side_effect=sqlite3.OperationalError("disk I/O error"))
        scheduler = BatchScheduler(
            store, DependencyGraphBuilder(store), resilient_executor, clock=mock_clock.now,
        )

        with pytest.raises(GraphBuildError):
            await scheduler.run_pass(budget=10)

    @pytest.mark.asyncio
    async def test_precedence_cycle_blocks_cycle_nodes(
        self, store: AsyncJobStore, resilient_executor, mock_clock, create_job
    ):
        cyclic = PrecedenceTable(ranks={"a": 1, "b": 2}, prerequisites={"a": ("b",), "b": ("a",)})
        create_job(job_type="a")
        create_job(job_type="b")
        scheduler = BatchScheduler(
            store, DependencyGraphBuilder(store, cyclic), resilient_executor, clock=mock_clock.now,
        )

        summary = await scheduler.run_pass(budget=10)

        assert scheduler.precedence_cycles == [["a", "b"]]
        assert summary.cycles == [["tenant-a:a", "tenant-a:b"]]
        assert summary.processed == 0
        assert summary.blocked == 2

    def test_invalid_limits(self, store, graph_builder, resilient_executor):
        with pytest.raises(ValueError):
            BatchScheduler(store, graph_builder, resilient_executor, max_concurrent_tenants=0)
        with pytest.raises(ValueError):
            BatchScheduler(store, graph_builder, resilient_executor, max_jobs_per_tenant=0)

    @pytest.mark.asyncio
    async def test_refresh_failure_keeps_outcomes_of_executed_jobs(
        self, make_scheduler, persistence: PersistenceAdapter, create_job, monkeypatch
    ):
        ingest = create_job(job_type="feed_ingest")
        create_job(job_type="feed_enrich")
        scheduler = make_scheduler(max_jobs_per_tenant=3, recompute_ready_after_each_job=True)
        monkeypatch.setattr(
            scheduler, "_current_ready_jobs", AsyncMock(side_effect=RuntimeError("store down"))
        )

        summary = await scheduler.run_pass(budget=10)

        assert summary.processed == 1
        assert summary.succeeded == 1
        assert summary.failed == 1
        assert [outcome.job_id for outcome in summary.outcomes] == [ingest.id]
        assert summary.tenant_errors == {"tenant-a": "store down"}
        assert_job_status(persistence, ingest.id, JobStatus.COMPLETED)


class RecordingExecutor:
    """
    Records enter/exit per tenant.

    Tenants listed in `hold_until_all_started` wait for each other on their
    first call, so the test fails instead of passing by luck when they do not
    run concurrently.
    """

    def __init__(self, hold_until_all_started: set[str]):
        self.events: list[tuple[str, str]] = []
        self._waiting = set(hold_until_all_started)
        self._started: set[str] = set()
        self._all_started = asyncio.Event()

    async def __call__(self, payload: dict):
        tenant_id = payload["tenant_id"]
        self.events.append(("enter", tenant_id))
        if tenant_id in self._waiting and tenant_id not in self._started:
            self._started.add(tenant_id)
            if self._started == self._waiting:
                self._all_started.set()
            await asyncio.wait_for(self._all_started.wait(), timeout=5)
        await asyncio.sleep(0)
        self.events.append(("exit", tenant_id))
        return {"ok": True}


class TestConcurrency:

    @pytest.mark.asyncio
    async def test_tenants_overlap_within_batch_and_batches_do_not(
        self, store: AsyncJobStore, graph_builder, breakers, retry_controller, mock_clock, create_job
    ):
        tenants = ["t0", "t1", "t2", "t3"]
        for tenant in tenants:
            create_job(tenant_id=tenant, job_type="feed_ingest", status=JobStatus.COMPLETED)
            create_job(tenant_id=tenant, job_type="feed_enrich")
            create_job(tenant_id=tenant, job_type="detail_enrich")

        recorder = RecordingExecutor(hold_until_all_started={"t0", "t1"})
        registry = ExecutorRegistry()
        for job_type in ("feed_ingest", "feed_enrich", "detail_enrich", "link_publish"):
            registry.register(job_type, recorder)
        executor = ResilientExecutor(
            store=store,
            registry=registry,
            breakers=breakers,
            retry_controller=retry_controller,
            clock=mock_clock.now,
        )
        scheduler = BatchScheduler(
            store,
            graph_builder,
            executor,
            max_concurrent_tenants=2,
            max_jobs_per_tenant=2,
            pass_timeout_seconds=None,
            clock=mock_clock.now,
        )

        summary = await scheduler.run_pass(budget=100)

        assert summary.batches == 2
        assert summary.succeeded == 8

        active: dict[str, int] = {}
        max_tenants_active = 0
        for kind, tenant_id in recorder.events:
            active[tenant_id] = active.get(tenant_id, 0) + (1 if kind == "enter" else -1)
            # jobs of one tenant never overlap
            assert active[tenant_id] <= 1
            max_tenants_active = max(max_tenants_active, sum(active.values()))
        assert max_tenants_active == 2

        positions = {
            tenant_id: [i for i, (_, t) in enumerate(recorder.events) if t == tenant_id]
            for tenant_id in tenants
        }
        last_of_first_batch = max(positions["t0"] + positions["t1"])
        first_of_second_batch = min(positions["t2"] + positions["t3"])
        assert last_of_first_batch < first_of_second_batch
