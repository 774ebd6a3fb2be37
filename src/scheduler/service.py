"""
Scheduler Service - Main entry point for the job orchestration engine.

This service wires all scheduler components:
- PersistenceAdapter / AsyncJobStore (storage)
- DependencyGraphBuilder (eligibility)
- CircuitBreakerRegistry + RetryController (resilience)
- ResilientExecutor (single job execution)
- BatchScheduler (scheduling pass)
- RecoveryManager (crash recovery)

Usage:
    service = SchedulerService.create(db_path)
    await service.recover()
    summary = await service.run_pass(budget=10)
"""

import asyncio
import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Optional

from src.infra.events import EventNotifier

from .batch_scheduler import BatchScheduler
from .circuit_breaker import CircuitBreakerRegistry
from .config import (
    DEFAULT_DB_PATH,
    DEFAULT_MAX_ATTEMPTS,
    DEFAULT_PASS_BUDGET,
    ResiliencePolicy,
)
from .dependency_graph import DependencyGraphBuilder, render_graph
from .entities import Job, PassSummary, utc_now
from .errors import InvalidOperationError
from .executor import ExecutorRegistry, ResilientExecutor, register_http_executors
from .persistence import PersistenceAdapter
from .precedence import DEFAULT_PRECEDENCE, PrecedenceTable
from .recovery import RecoveryManager
from .retry_controller import RetryController
from .store import AsyncJobStore


logger = logging.getLogger(__name__)


class SchedulerService:
    """
    Main service that coordinates all scheduler components.

    Provides:
    - Component initialization and wiring
    - Scheduling passes and startup recovery
    - Job chain enqueueing and graph inspection
    """

    def __init__(
        self,
        persistence: PersistenceAdapter,
        store: AsyncJobStore,
        precedence: PrecedenceTable,
        graph_builder: DependencyGraphBuilder,
        executors: ExecutorRegistry,
        breakers: CircuitBreakerRegistry,
        retry_controller: RetryController,
        executor: ResilientExecutor,
        batch_scheduler: BatchScheduler,
        recovery_manager: RecoveryManager,
        notifier: Optional[EventNotifier] = None,
    ):
        """
        Initialize SchedulerService with all components.

        Use SchedulerService.create() for convenient construction.
        """
        self.persistence = persistence
        self.store = store
        self.precedence = precedence
        self.graph_builder = graph_builder
        self.executors = executors
        self.breakers = breakers
        self.retry_controller = retry_controller
        self.executor = executor
        self.batch_scheduler = batch_scheduler
        self.recovery_manager = recovery_manager
        self.notifier = notifier

    @classmethod
    def create(
        cls,
        db_path: str | Path = DEFAULT_DB_PATH,
        executors: Optional[ExecutorRegistry] = None,
        precedence: PrecedenceTable = DEFAULT_PRECEDENCE,
        policies: Optional[dict[str, ResiliencePolicy]] = None,
        notifier: Optional[EventNotifier] = None,
        clock: Callable[[], datetime] = utc_now,
        **scheduler_options: Any,
    ) -> "SchedulerService":
        """
        Create a SchedulerService with all components wired together.

        Args:
            db_path: Path to SQLite database
            executors: Executors per job type; defaults to HTTP workers for
                every job type of the precedence table
            precedence: Job type precedence table
            policies: Resilience policies per job type
            notifier: Event notifier; defaults to one configured from env
            clock: Time source
            **scheduler_options: Passed to BatchScheduler

        Returns:
            Configured SchedulerService
        """
        persistence = PersistenceAdapter(db_path)
        store = AsyncJobStore(persistence)

        if executors is None:
            executors = register_http_executors(ExecutorRegistry(), precedence.job_types)
        if notifier is None:
            notifier = EventNotifier()

        graph_builder = DependencyGraphBuilder(store, precedence)
        breakers = CircuitBreakerRegistry(policies, clock=clock)
        retry_controller = RetryController(policies, clock=clock)

        executor = ResilientExecutor(
            store=store,
            registry=executors,
            breakers=breakers,
            retry_controller=retry_controller,
            notifier=notifier,
            clock=clock,
        )

        batch_scheduler = BatchScheduler(
            store=store,
            graph_builder=graph_builder,
            executor=executor,
            notifier=notifier,
            clock=clock,
            **scheduler_options,
        )

        recovery_manager = RecoveryManager(store, clock=clock)

        return cls(
            persistence=persistence,
            store=store,
            precedence=precedence,
            graph_builder=graph_builder,
            executors=executors,
            breakers=breakers,
            retry_controller=retry_controller,
            executor=executor,
            batch_scheduler=batch_scheduler,
            recovery_manager=recovery_manager,
            notifier=notifier,
        )

    # =========================================================================
    # Passes
    # =========================================================================

    async def run_pass(
        self,
        budget: int = DEFAULT_PASS_BUDGET,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> PassSummary:
        """Run one scheduling pass. See BatchScheduler.run_pass."""
        return await self.batch_scheduler.run_pass(budget, cancel_event=cancel_event)

    async def recover(self) -> dict:
        """Run startup recovery."""
        return await self.recovery_manager.recover_on_startup()

    # =========================================================================
    # Jobs
    # =========================================================================

    async def enqueue_job(
        self,
        tenant_id: str,
        job_type: str,
        payload: Optional[dict] = None,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    ) -> Job:
        """
        Enqueue one pending job.

        Raises:
            InvalidOperationError: If the tenant already has a live job of
                this type
        """
        job = Job.create(
            tenant_id=tenant_id,
            job_type=job_type,
            payload={"tenant_id": tenant_id, **(payload or {})},
            max_attempts=max_attempts,
        )
        job = await self.store.create_job(job)
        logger.info(f"Enqueued {job.job_type} for tenant {tenant_id} (job {job.id})")
        return job

    async def enqueue_chain(
        self,
        tenant_id: str,
        payload: Optional[dict] = None,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    ) -> list[Job]:
        """
        Create a pending job for every job type in the chain that has no
        live job for the tenant.

        Returns:
            Jobs created, in chain order
        """
        created = []
        for job_type in self.precedence.job_types:
            live = await self.store.fetch_live(tenant_id, job_type)
            if live is not None:
                logger.debug(
                    f"Tenant {tenant_id} already has live {job_type} job {live.id} ({live.status.value})"
                )
                continue

            try:
                created.append(
                    await self.enqueue_job(tenant_id, job_type, payload, max_attempts)
                )
            except InvalidOperationError as e:
                logger.warning(f"Skipped {job_type} for tenant {tenant_id}: {e}")

        return created

    async def get_job(self, job_id: str) -> Optional[Job]:
        return await self.store.get_job(job_id)

    async def list_jobs(self, tenant_id: Optional[str] = None, limit: int = 100) -> list[Job]:
        return await self.store.list_jobs(tenant_id, limit)

    # =========================================================================
    # Inspection
    # =========================================================================

    async def render_graph(self) -> str:
        """Text view of the dependency graph of the current pending work."""
        pending = await self.store.fetch_pending(
            limit=self.batch_scheduler.pending_fetch_limit,
            now=self.batch_scheduler.clock(),
        )
        graph = await self.graph_builder.build(pending)
        return render_graph(graph)

    async def status(self) -> dict:
        """Job counts per status and circuit breaker states."""
        return {
            "jobs": await self.store.count_by_status(),
            "circuits": self.breakers.snapshot(),
        }
