"""Graph algorithms for workflow validation and scheduling.

This module provides the graph algorithms shared by the validator and the
orchestrator:
- Cycle detection using DFS with a recursion stack
- Level-based topological sort using Kahn's algorithm
- Entry, terminal and orphan node discovery
- Reachability and downstream analysis using BFS

All results preserve node insertion order so reports and schedules are
reproducible.

Time Complexity: O(V + E) for every traversal.
"""

from __future__ import annotations

from collections import deque
from collections.abc import Hashable, Iterable
from typing import TYPE_CHECKING, TypeVar

if TYPE_CHECKING:
    from blockflow.services.workflow.graph import Graph

NodeId = TypeVar("NodeId", bound=Hashable)


class GraphAlgorithms:
    """Static graph algorithms over ``Graph``.

    Example:
        >>> graph = Graph[str]()
        >>> graph.add_edge("a", "b")
        >>> graph.add_edge("b", "a")
        >>> GraphAlgorithms.detect_cycle(graph)
        ['a', 'b', 'a']
    """

    @staticmethod
    def detect_cycle(graph: Graph[NodeId]) -> list[NodeId] | None:
        """Detect a cycle using DFS with path tracking.

        Args:
            graph: The graph to check for cycles.

        Returns:
            The cycle as a closed path (first node repeated at the end) if
            one exists, None otherwise.
        """
        visited: set[NodeId] = set()
        rec_stack: set[NodeId] = set()
        path: list[NodeId] = []

        def dfs(node: NodeId) -> list[NodeId] | None:
            visited.add(node)
            rec_stack.add(node)
            path.append(node)

            for neighbor in graph.get_successors(node):
                if neighbor not in visited:
                    result = dfs(neighbor)
                    if result:
                        return result
                elif neighbor in rec_stack:
                    # Back edge closes the cycle
                    start = path.index(neighbor)
                    return [*path[start:], neighbor]

            path.pop()
            rec_stack.remove(node)
            return None

        for node in graph:
            if node not in visited:
                result = dfs(node)
                if result:
                    return result

        return None

    @staticmethod
    def topological_sort_levels(graph: Graph[NodeId]) -> list[list[NodeId]] | None:
        """Kahn's algorithm for level-based topological sort.

        Nodes of one level only depend on nodes of earlier levels and may run
        concurrently.

        Args:
            graph: The graph to sort.

        Returns:
            List of levels, each a list of node IDs in insertion order.
            None if the graph contains a cycle.

        Example:
            >>> graph.add_edge("a", "b")
            >>> graph.add_edge("a", "c")
            >>> graph.add_edge("b", "d")
            >>> graph.add_edge("c", "d")
            >>> GraphAlgorithms.topological_sort_levels(graph)
            [['a'], ['b', 'c'], ['d']]
        """
        in_degree: dict[NodeId, int] = {
            node: graph.get_in_degree(node) for node in graph
        }
        current = [node for node in graph if in_degree[node] == 0]
        levels: list[list[NodeId]] = []
        placed = 0

        while current:
            levels.append(current)
            placed += len(current)
            ready: dict[NodeId, None] = {}
            for node in current:
                for successor in graph.get_successors(node):
                    in_degree[successor] -= 1
                    if in_degree[successor] == 0:
                        ready[successor] = None
            # Keep definition order inside a level
            current = [node for node in graph if node in ready]

        if placed != len(graph):
            return None
        return levels

    @staticmethod
    def find_entry_nodes(graph: Graph[NodeId]) -> list[NodeId]:
        """Nodes without incoming edges."""
        return [node for node in graph if graph.get_in_degree(node) == 0]

    @staticmethod
    def find_terminal_nodes(graph: Graph[NodeId]) -> list[NodeId]:
        """Nodes without outgoing edges."""
        return [node for node in graph if graph.get_out_degree(node) == 0]

    @staticmethod
    def find_orphan_nodes(graph: Graph[NodeId]) -> list[NodeId]:
        """Find nodes with no incoming or outgoing edges.

        A single-node graph has no orphans.
        """
        if len(graph) <= 1:
            return []
        return [
            node
            for node in graph
            if graph.get_in_degree(node) == 0 and graph.get_out_degree(node) == 0
        ]

    @staticmethod
    def find_reachable_from(
        graph: Graph[NodeId],
        start_nodes: Iterable[NodeId],
    ) -> set[NodeId]:
        """All nodes reachable from any start node (start nodes included)."""
        reachable: set[NodeId] = set()
        queue: deque[NodeId] = deque(start_nodes)

        while queue:
            current = queue.popleft()
            if current in reachable:
                continue
            reachable.add(current)
            for successor in graph.get_successors(current):
                if successor not in reachable:
                    queue.append(successor)

        return reachable

    @staticmethod
    def find_unreachable_from(
        graph: Graph[NodeId],
        start_nodes: Iterable[NodeId],
    ) -> list[NodeId]:
        """Find nodes not reachable from any start node using BFS.

        Args:
            graph: The graph to analyze.
            start_nodes: Starting nodes (typically the entry nodes).

        Returns:
            Unreachable node IDs in insertion order.
        """
        reachable = GraphAlgorithms.find_reachable_from(graph, start_nodes)
        return [node for node in graph if node not in reachable]

    @staticmethod
    def collect_downstream(graph: Graph[NodeId], node_id: NodeId) -> list[NodeId]:
        """All transitive successors of a node, in BFS order.

        The node itself is not included.
        """
        seen: set[NodeId] = {node_id}
        ordered: list[NodeId] = []
        queue: deque[NodeId] = deque(graph.get_successors(node_id))

        while queue:
            current = queue.popleft()
            if current in seen:
                continue
            seen.add(current)
            ordered.append(current)
            queue.extend(graph.get_successors(current))

        return ordered


__all__ = ["GraphAlgorithms"]
