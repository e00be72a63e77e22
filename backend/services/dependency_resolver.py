from typing import Dict, List, Optional, Set, Tuple
from collections import defaultdict
from dataclasses import dataclass, field
import heapq
import logging

from models.base import ObjectDifference
from core.errors import DependencyCycleError
from services.registry import rank_of

logger = logging.getLogger(__name__)


@dataclass
class ResolvedOrder:
    """Apply and teardown orderings for a set of differences"""
    apply_order: List[ObjectDifference] = field(default_factory=list)
    teardown_order: List[ObjectDifference] = field(default_factory=list)
    cycles: List[List[str]] = field(default_factory=list)
    skipped: List[ObjectDifference] = field(default_factory=list)

    @property
    def has_cycles(self) -> bool:
        return bool(self.cycles)

    def cycle_error(self) -> Optional[DependencyCycleError]:
        if not self.cycles:
            return None
        return DependencyCycleError(
            f"Dependency cycle among {sum(len(c) for c in self.cycles)} objects; "
            f"DDL skipped for {len(self.skipped)} differences",
            {
                "cycles": self.cycles,
                "skipped": [d.qualified_name for d in self.skipped],
            },
        )


def _routine_base(name: str) -> str:
    return name.split("(", 1)[0]


class DependencyResolver:
    """
    Topologically order differences for safe DDL sequencing.

    Edges run from prerequisite to dependent: a table before its columns,
    indexes and constraints, a referenced table before the foreign key, a
    table before the views reading it.
    """

    def __init__(self, differences: List[ObjectDifference]):
        self.differences = differences
        self.graph: Dict[int, Set[int]] = defaultdict(set)
        self.reverse: Dict[int, Set[int]] = defaultdict(set)
        self._by_name: Dict[str, List[int]] = defaultdict(list)
        self._build_dependency_graph()

    # ------------------------------------------------------------------
    # Graph construction
    # ------------------------------------------------------------------

    def _build_dependency_graph(self):
        for index, diff in enumerate(self.differences):
            self._by_name[diff.qualified_name].append(index)
            base = _routine_base(diff.qualified_name)
            if base != diff.qualified_name:
                self._by_name[base].append(index)

        for index, diff in enumerate(self.differences):
            if diff.parent_qualified_name:
                for parent in self.lookup(diff.parent_qualified_name):
                    self._add_edge(parent, index)
            for name in diff.dependent_objects:
                for dependent in self.lookup(name):
                    self._add_edge(index, dependent)
            for name in diff.referenced_objects:
                for prerequisite in self.lookup(name):
                    self._add_edge(prerequisite, index)

    def lookup(self, qualified_name: str) -> List[int]:
        """Indexes of the differences a qualified name refers to"""
        return self._by_name.get(qualified_name, [])

    def _add_edge(self, before: int, after: int):
        if before == after:
            return
        self.graph[before].add(after)
        self.reverse[after].add(before)

    # ------------------------------------------------------------------
    # Ordering
    # ------------------------------------------------------------------

    def _sort_key(self, index: int) -> Tuple[int, str, int]:
        diff = self.differences[index]
        return rank_of(diff.object_type), diff.qualified_name, index

    def _kahn(self, nodes: Set[int], edges: Dict[int, Set[int]], reverse_rank: bool = False) -> List[int]:
        """Kahn's algorithm restricted to nodes; ties broken by rank then name"""
        in_degree = {n: 0 for n in nodes}
        for node in nodes:
            for neighbor in edges.get(node, ()):
                if neighbor in nodes:
                    in_degree[neighbor] += 1

        def priority(n: int):
            rank, name, index = self._sort_key(n)
            return (-rank if reverse_rank else rank, name, index)

        queue = [(priority(n), n) for n in nodes if in_degree[n] == 0]
        heapq.heapify(queue)
        ordered = []

        while queue:
            _, current = heapq.heappop(queue)
            ordered.append(current)
            for neighbor in edges.get(current, ()):
                if neighbor not in nodes:
                    continue
                in_degree[neighbor] -= 1
                if in_degree[neighbor] == 0:
                    heapq.heappush(queue, (priority(neighbor), neighbor))

        return ordered

    def find_cycles(self) -> List[List[int]]:
        """Strongly connected components that form cycles (Tarjan)"""
        index_of: Dict[int, int] = {}
        lowlink: Dict[int, int] = {}
        on_stack: Set[int] = set()
        stack: List[int] = []
        cycles: List[List[int]] = []
        counter = 0

        for root in range(len(self.differences)):
            if root in index_of:
                continue
            # Iterative DFS: (node, iterator over successors)
            work = [(root, iter(sorted(self.graph.get(root, ()))))]
            index_of[root] = lowlink[root] = counter
            counter += 1
            stack.append(root)
            on_stack.add(root)

            while work:
                node, successors = work[-1]
                advanced = False
                for succ in successors:
                    if succ not in index_of:
                        index_of[succ] = lowlink[succ] = counter
                        counter += 1
                        stack.append(succ)
                        on_stack.add(succ)
                        work.append((succ, iter(sorted(self.graph.get(succ, ())))))
                        advanced = True
                        break
                    elif succ in on_stack:
                        lowlink[node] = min(lowlink[node], index_of[succ])
                if advanced:
                    continue

                work.pop()
                if work:
                    parent = work[-1][0]
                    lowlink[parent] = min(lowlink[parent], lowlink[node])

                if lowlink[node] == index_of[node]:
                    component = []
                    while True:
                        member = stack.pop()
                        on_stack.discard(member)
                        component.append(member)
                        if member == node:
                            break
                    if len(component) > 1:
                        cycles.append(sorted(component, key=self._sort_key))

        return cycles

    def resolve(self) -> ResolvedOrder:
        """Apply order (parents first) and teardown order (dependents first)"""
        all_nodes = set(range(len(self.differences)))
        apply_indexes = self._kahn(all_nodes, self.graph)

        result = ResolvedOrder()
        if len(apply_indexes) != len(all_nodes):
            # Nodes left over sit on a cycle or depend on one
            blocked = all_nodes - set(apply_indexes)
            result.cycles = [
                [self.differences[i].qualified_name for i in component]
                for component in self.find_cycles()
            ]
            result.skipped = [self.differences[i] for i in sorted(blocked, key=self._sort_key)]
            logger.warning(
                f"Dependency cycle detected: {result.cycles}; "
                f"skipping DDL for {len(blocked)} differences"
            )

        orderable = set(apply_indexes)
        teardown_indexes = self._kahn(orderable, self.reverse, reverse_rank=True)

        result.apply_order = [self.differences[i] for i in apply_indexes]
        result.teardown_order = [self.differences[i] for i in teardown_indexes]
        return result
