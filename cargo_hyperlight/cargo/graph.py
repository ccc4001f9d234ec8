"""
Resolved crate dependency graph.

Nodes are crates as resolved by cargo (one node per package id, so two
versions of the same crate are two nodes). Edges point from a crate to the
crates it links against: normal dependencies only, since dev- and
build-dependencies never reach the final binary.
"""

import logging
from collections import deque
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Set

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Crate:
    """
    A resolved package.

    Attributes:
        id: cargo package id (unique within a resolve)
        name: Package name as published
        version: Package version
    """

    id: str
    name: str
    version: str

    def __str__(self) -> str:
        return f"{self.name} v{self.version}"


@dataclass
class DependencyGraph:
    """
    Crates and their "depends on" edges.

    Attributes:
        crates: Nodes by package id
        edges: Package id -> ids of its direct dependencies
        roots: Package ids the build starts from (root package or
            default workspace members)
    """

    crates: Dict[str, Crate] = field(default_factory=dict)
    edges: Dict[str, Set[str]] = field(default_factory=dict)
    roots: List[str] = field(default_factory=list)

    def add_crate(self, crate: Crate) -> None:
        self.crates[crate.id] = crate
        self.edges.setdefault(crate.id, set())

    def add_dependency(self, dependent: str, dependency: str) -> None:
        """Record that dependent depends on dependency."""
        if dependent not in self.crates or dependency not in self.crates:
            raise KeyError(f"Unknown crate in edge {dependent} -> {dependency}")
        self.edges[dependent].add(dependency)

    def dependencies(self, crate_id: str) -> Set[str]:
        """Direct dependencies of a crate."""
        return set(self.edges.get(crate_id, ()))

    def find_by_name(self, name: str) -> List[Crate]:
        """All crates with a package name; hyphen and underscore are equivalent."""
        wanted = name.replace("_", "-")
        return [c for c in self.crates.values() if c.name.replace("_", "-") == wanted]

    def reachable(self, start: str) -> Set[str]:
        """
        Package ids reachable from start, including start itself.

        Breadth-first over the full transitive closure.
        """
        if start not in self.crates:
            return set()

        seen = {start}
        queue = deque([start])
        while queue:
            current = queue.popleft()
            for dependency in self.edges.get(current, ()):
                if dependency not in seen:
                    seen.add(dependency)
                    queue.append(dependency)
        return seen

    def path_to(self, start: str, target_name: str) -> Optional[List[Crate]]:
        """
        Shortest dependency chain from start to a crate named target_name.

        Returns:
            Crates from start to the match inclusive, or None if unreachable
        """
        if start not in self.crates:
            return None

        wanted = target_name.replace("_", "-")
        parents: Dict[str, Optional[str]] = {start: None}
        queue = deque([start])
        while queue:
            current = queue.popleft()
            if self.crates[current].name.replace("_", "-") == wanted:
                chain = []
                node: Optional[str] = current
                while node is not None:
                    chain.append(self.crates[node])
                    node = parents[node]
                return list(reversed(chain))
            for dependency in sorted(self.edges.get(current, ())):
                if dependency not in parents:
                    parents[dependency] = current
                    queue.append(dependency)
        return None

    def reaches(self, start: str, target_name: str) -> bool:
        """Whether a crate named target_name is reachable from start."""
        return self.path_to(start, target_name) is not None

    def root_crates(self) -> List[Crate]:
        return [self.crates[r] for r in self.roots if r in self.crates]

    @classmethod
    def from_edges(
        cls,
        crates: Iterable[Crate],
        edges: Dict[str, Iterable[str]],
        roots: Iterable[str],
    ) -> "DependencyGraph":
        """Build a graph from crates, an adjacency mapping and root ids."""
        graph = cls()
        for crate in crates:
            graph.add_crate(crate)
        for dependent, dependencies in edges.items():
            for dependency in dependencies:
                graph.add_dependency(dependent, dependency)
        graph.roots = list(roots)
        return graph
