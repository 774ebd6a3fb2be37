"""
Job Scheduler Core Module.

Multi-tenant job orchestration:
- Dependency graph and ready sets per tenant
- Concurrency-bounded batch scheduling passes
- Per-job-type circuit breakers and per-job retry with backoff
"""

from .entities import (
    JobStatus,
    JobType,
    Job,
    Prerequisite,
    DependencyNode,
    DependencyGraph,
    JobOutcome,
    PassSummary,
)
from .errors import (
    SchedulerError,
    GraphBuildError,
    DependencyCycleError,
    JobExecutionError,
    CircuitOpenError,
    TenantPassError,
    ConfigurationError,
    InvalidOperationError,
    JobNotFoundError,
    ConcurrencyViolationError,
)
from .config import ResiliencePolicy
from .precedence import PrecedenceTable, DEFAULT_PRECEDENCE
from .persistence import PersistenceAdapter
from .store import AsyncJobStore
from .dependency_graph import DependencyGraphBuilder, render_graph
from .circuit_breaker import BreakerState, CircuitState, CircuitBreakerRegistry
from .retry_controller import RetryAction, RetryDecision, RetryController
from .executor import ExecutorRegistry, HttpJobExecutor, ResilientExecutor
from .batch_scheduler import BatchScheduler, partition_batches
from .recovery import RecoveryManager
from .service import SchedulerService

__all__ = [
    # Entities
    "JobStatus",
    "JobType",
    "Job",
    "Prerequisite",
    "DependencyNode",
    "DependencyGraph",
    "JobOutcome",
    "PassSummary",
    # Errors
    "SchedulerError",
    "GraphBuildError",
    "DependencyCycleError",
    "JobExecutionError",
    "CircuitOpenError",
    "TenantPassError",
    "ConfigurationError",
    "InvalidOperationError",
    "JobNotFoundError",
    "ConcurrencyViolationError",
    # Configuration
    "ResiliencePolicy",
    "PrecedenceTable",
    "DEFAULT_PRECEDENCE",
    # Persistence
    "PersistenceAdapter",
    "AsyncJobStore",
    # Graph
    "DependencyGraphBuilder",
    "render_graph",
    # Resilience
    "BreakerState",
    "CircuitState",
    "CircuitBreakerRegistry",
    "RetryAction",
    "RetryDecision",
    "RetryController",
    # Executor
    "ExecutorRegistry",
    "HttpJobExecutor",
    "ResilientExecutor",
    # Scheduling
    "BatchScheduler",
    "partition_batches",
    # Recovery
    "RecoveryManager",
    # Service
    "SchedulerService",
]
