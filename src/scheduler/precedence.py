"""
Static job-type precedence table.

The chain is modelled as an explicit directed table (job type ->
prerequisite job types) plus a rank per type. Lower rank runs earlier.
The table is checked for cycles when a scheduler is constructed and again
on every pass.
"""

from dataclasses import dataclass, field
from typing import Iterable

from .entities import JobType


@dataclass(frozen=True)
class PrecedenceTable:
    """Job types, their ranks and their prerequisites within one tenant."""

    ranks: dict[str, int]
    prerequisites: dict[str, tuple[str, ...]] = field(default_factory=dict)

    def rank(self, job_type: str) -> int:
        # Unknown types sort after every configured type
        return self.ranks.get(job_type, max(self.ranks.values(), default=0) + 1)

    def prerequisites_of(self, job_type: str) -> tuple[str, ...]:
        return tuple(self.prerequisites.get(job_type, ()))

    @property
    def job_types(self) -> list[str]:
        """Job types in chain order (ascending rank)."""
        return sorted(self.ranks, key=lambda jt: (self.ranks[jt], jt))


DEFAULT_PRECEDENCE = PrecedenceTable(
    ranks={
        JobType.FEED_INGEST.value: 1,
        JobType.FEED_ENRICH.value: 2,
        JobType.DETAIL_ENRICH.value: 3,
        JobType.LINK_PUBLISH.value: 4,
    },
    prerequisites={
        JobType.FEED_ENRICH.value: (JobType.FEED_INGEST.value,),
        JobType.DETAIL_ENRICH.value: (JobType.FEED_INGEST.value,),
        JobType.LINK_PUBLISH.value: (JobType.DETAIL_ENRICH.value,),
    },
)


def detect_cycles(adjacency: dict[str, Iterable[str]]) -> list[list[str]]:
    """
    Find cycles with a depth-first search over `adjacency`.

    A node reached again while it is still on the recursion stack closes a
    cycle; the cycle is the path from that node's first occurrence.
    Nodes referenced but absent from `adjacency` are leaves.
    """
    cycles: list[list[str]] = []
    visited: set[str] = set()
    on_stack: set[str] = set()

    def dfs(current: str, path: list[str]) -> None:
        if current in on_stack:
            cycles.append(path[path.index(current):])
            return
        if current in visited:
            return

        visited.add(current)
        on_stack.add(current)
        path.append(current)

        for neighbour in adjacency.get(current, ()):
            dfs(neighbour, path)

        path.pop()
        on_stack.discard(current)

    for start in adjacency:
        if start not in visited:
            dfs(start, [])

    return cycles


def find_precedence_cycles(table: PrecedenceTable) -> list[list[str]]:
    """Check the precedence table itself for cycles."""
    adjacency = {jt: table.prerequisites_of(jt) for jt in table.job_types}
    for jt, prereqs in table.prerequisites.items():
        adjacency.setdefault(jt, tuple(prereqs))
    return detect_cycles(adjacency)
