"""
Dependency Graph for the batch scheduler.

Built fresh on every pass from the pending jobs and the job store:
- one node per (tenant, job type) that has pending work
- prerequisite status is the status of the most recently created job of
  the prerequisite type for that tenant, as stored right now
- cycles are found with a depth-first search; nodes on a cycle are never
  ready

What the graph MUST NOT do:
- Persist anything
- Execute jobs
"""

import logging
from typing import Iterable, Optional

from .entities import (
    DependencyGraph,
    DependencyNode,
    Job,
    JobStatus,
    Prerequisite,
    node_id,
)
from .errors import DependencyCycleError, GraphBuildError
from .precedence import DEFAULT_PRECEDENCE, PrecedenceTable, detect_cycles
from .store import AsyncJobStore


logger = logging.getLogger(__name__)


class DependencyGraphBuilder:
    """
    Builds per-pass dependency graphs and answers ready-set queries.

    build() talks to the store; ready_jobs(), blocked_nodes() and
    render_graph() are pure functions of a built graph.
    """

    def __init__(
        self,
        store: AsyncJobStore,
        precedence: PrecedenceTable = DEFAULT_PRECEDENCE,
    ):
        self.store = store
        self.precedence = precedence

    # =========================================================================
    # Build
    # =========================================================================

    async def build(self, pending_jobs: Iterable[Job]) -> DependencyGraph:
        """
        Build the dependency graph for a set of pending jobs.

        Raises:
            GraphBuildError: If any store query fails. No partial graph is
                returned.
        """
        graph = DependencyGraph()

        by_tenant: dict[str, dict[str, Job]] = {}
        for job in pending_jobs:
            jobs = by_tenant.setdefault(job.tenant_id, {})
            # Oldest pending job per type wins
            jobs.setdefault(job.job_type, job)

        try:
            for tenant_id, jobs in by_tenant.items():
                for job_type in sorted(jobs, key=lambda jt: (self.precedence.rank(jt), jt)):
                    node = await self._build_node(tenant_id, job_type, jobs[job_type])
                    graph.nodes[node.node_id] = node
                    for prereq in node.depends_on:
                        graph.edges.append((prereq.node_id, node.node_id))
        except Exception as e:
            logger.error(f"Failed to build dependency graph: {e}", exc_info=True)
            raise GraphBuildError(f"Failed to build dependency graph: {e}", cause=e) from e

        graph.cycles = self._find_cycles(by_tenant)

        logger.info(
            f"Built dependency graph with {len(graph.nodes)} nodes "
            f"and {len(graph.edges)} edges"
        )
        if graph.cycles:
            logger.warning(
                f"Detected {len(graph.cycles)} dependency cycles: "
                f"{DependencyCycleError(graph.cycles)}"
            )

        return graph

    async def _build_node(self, tenant_id: str, job_type: str, job: Job) -> DependencyNode:
        depends_on = []
        for prereq_type in self.precedence.prerequisites_of(job_type):
            latest = await self.store.fetch_latest(tenant_id, prereq_type)
            status = latest.status if latest is not None else JobStatus.PENDING
            depends_on.append(Prerequisite(tenant_id, prereq_type, status))
            logger.debug(
                f"Dependency {node_id(tenant_id, prereq_type)} for {job_type}: "
                f"{latest.status.value if latest is not None else 'not found'}"
            )

        return DependencyNode(
            tenant_id=tenant_id,
            job_type=job_type,
            priority=self.precedence.rank(job_type),
            job=job,
            depends_on=depends_on,
        )

    def _find_cycles(self, by_tenant: dict[str, dict[str, Job]]) -> list[list[str]]:
        """
        Run cycle detection over every (tenant, job type) the tenant's
        chain can reach, not only the nodes with pending work.
        """
        adjacency: dict[str, list[str]] = {}
        for tenant_id, jobs in by_tenant.items():
            job_types = set(self.precedence.ranks) | set(self.precedence.prerequisites) | set(jobs)
            for job_type in sorted(job_types, key=lambda jt: (self.precedence.rank(jt), jt)):
                adjacency[node_id(tenant_id, job_type)] = [
                    node_id(tenant_id, prereq)
                    for prereq in self.precedence.prerequisites_of(job_type)
                ]
        return detect_cycles(adjacency)

    # =========================================================================
    # Ready set
    # =========================================================================

    def is_ready(self, graph: DependencyGraph, node: DependencyNode) -> bool:
        """A node is ready when it is off every cycle and all prerequisites completed."""
        if node.node_id in graph.cyclic_node_ids():
            return False
        return all(prereq.satisfied for prereq in node.depends_on)

    def ready_jobs(self, graph: DependencyGraph, tenant_id: str) -> list[Job]:
        """Pending jobs of a tenant whose dependencies are satisfied, by rank."""
        ready = [
            node for node in graph.nodes_for_tenant(tenant_id)
            if self.is_ready(graph, node)
        ]
        ready.sort(key=lambda node: node.priority)
        return [node.job for node in ready]

    def blocked_nodes(
        self,
        graph: DependencyGraph,
        tenant_id: Optional[str] = None,
    ) -> list[DependencyNode]:
        """Nodes that are not ready, for one tenant or the whole graph."""
        nodes = graph.nodes.values() if tenant_id is None else graph.nodes_for_tenant(tenant_id)
        return [node for node in nodes if not self.is_ready(graph, node)]


def render_graph(graph: DependencyGraph) -> str:
    """Plain-text view of a dependency graph."""
    lines = ["Dependency Graph:", "=================", ""]

    for nid, node in graph.nodes.items():
        lines.append(f"{nid} (Priority: {node.priority})")
        if node.depends_on:
            lines.append("  Depends on:")
            for prereq in node.depends_on:
                status = prereq.status.value if prereq.status is not None else "unknown"
                lines.append(f"    - {prereq.node_id} ({status})")
        else:
            lines.append("  No dependencies")
        lines.append("")

    if graph.cycles:
        lines.append("Cycles detected:")
        for cycle in graph.cycles:
            lines.append(f"  {' -> '.join(cycle + cycle[:1])}")

    return "\n".join(lines).rstrip() + "\n"
