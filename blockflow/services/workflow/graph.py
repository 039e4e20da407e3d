"""Directed graph data structure for DAG operations.

This module provides a generic directed graph used by the validator and the
orchestrator for cycle detection, level computation and reachability.

Nodes and adjacency lists keep insertion order, so every traversal over a
graph built from a workflow definition is deterministic.

Time Complexity:
- Node/Edge addition: O(1)
- Cycle detection: O(V + E)
- Topological sort: O(V + E)
- Reachability analysis: O(V + E)
"""

from __future__ import annotations

from collections.abc import Hashable, Iterator
from typing import TYPE_CHECKING, Generic, TypeVar

if TYPE_CHECKING:
    from blockflow.schemas.workflow import WorkflowDefinition

NodeId = TypeVar("NodeId", bound=Hashable)


class Graph(Generic[NodeId]):
    """Directed graph with forward and reverse adjacency.

    Type Parameters:
        NodeId: Hashable type used as node identifier (node id strings for
            workflow graphs).

    Example:
        >>> graph = Graph[str]()
        >>> graph.add_edge("a", "b")
        >>> graph.get_successors("a")
        ['b']
    """

    __slots__ = ("_adjacency", "_edge_count", "_nodes", "_reverse_adjacency")

    def __init__(self) -> None:
        """Initialize an empty directed graph."""
        # dict used as an ordered set
        self._nodes: dict[NodeId, None] = {}
        self._adjacency: dict[NodeId, list[NodeId]] = {}
        self._reverse_adjacency: dict[NodeId, list[NodeId]] = {}
        self._edge_count: int = 0

    @classmethod
    def from_definition(cls, definition: WorkflowDefinition) -> Graph[str]:
        """Build a graph from a workflow definition.

        Nodes are added in definition order. Edges whose endpoints are not
        declared nodes are ignored; the validator reports them separately.

        Args:
            definition: The workflow definition.

        Returns:
            A graph keyed by node id.
        """
        graph: Graph[str] = Graph()
        for node in definition.nodes:
            graph.add_node(node.id)
        for edge in definition.edges:
            if edge.source in graph and edge.target in graph:
                graph.add_edge(edge.source, edge.target)
        return graph

    @property
    def node_count(self) -> int:
        """Get the number of nodes in the graph."""
        return len(self._nodes)

    @property
    def edge_count(self) -> int:
        """Get the number of edges in the graph."""
        return self._edge_count

    @property
    def nodes(self) -> list[NodeId]:
        """All node ids in insertion order."""
        return list(self._nodes)

    def add_node(self, node_id: NodeId) -> None:
        """Add a node to the graph.

        If the node already exists, this is a no-op.

        Args:
            node_id: The identifier for the node to add.
        """
        self._nodes.setdefault(node_id, None)

    def add_edge(self, source: NodeId, target: NodeId) -> None:
        """Add a directed edge from source to target.

        Both nodes are added to the graph if they don't exist.
        Parallel edges are kept; higher layers decide whether they matter.

        Args:
            source: The source node ID.
            target: The target node ID.
        """
        self.add_node(source)
        self.add_node(target)
        self._adjacency.setdefault(source, []).append(target)
        self._reverse_adjacency.setdefault(target, []).append(source)
        self._edge_count += 1

    def has_edge(self, source: NodeId, target: NodeId) -> bool:
        """Check if an edge exists from source to target."""
        return target in self._adjacency.get(source, [])

    def get_successors(self, node_id: NodeId) -> list[NodeId]:
        """Get all successor nodes (outgoing neighbors).

        Args:
            node_id: The node ID.

        Returns:
            List of successor node IDs. Empty list if node has no successors.
        """
        return self._adjacency.get(node_id, [])

    def get_predecessors(self, node_id: NodeId) -> list[NodeId]:
        """Get all predecessor nodes (incoming neighbors).

        Args:
            node_id: The node ID.

        Returns:
            List of predecessor node IDs. Empty list if node has no predecessors.
        """
        return self._reverse_adjacency.get(node_id, [])

    def get_in_degree(self, node_id: NodeId) -> int:
        """Get the number of incoming edges for a node."""
        return len(self._reverse_adjacency.get(node_id, []))

    def get_out_degree(self, node_id: NodeId) -> int:
        """Get the number of outgoing edges for a node."""
        return len(self._adjacency.get(node_id, []))

    def copy(self) -> Graph[NodeId]:
        """Create a copy with independent adjacency lists.

        Returns:
            A new Graph instance with the same nodes and edges.
        """
        new_graph: Graph[NodeId] = Graph()
        new_graph._nodes = dict(self._nodes)
        new_graph._adjacency = {k: v.copy() for k, v in self._adjacency.items()}
        new_graph._reverse_adjacency = {
            k: v.copy() for k, v in self._reverse_adjacency.items()
        }
        new_graph._edge_count = self._edge_count
        return new_graph

    def __contains__(self, node_id: object) -> bool:
        """Check if a node exists in the graph."""
        return node_id in self._nodes

    def __iter__(self) -> Iterator[NodeId]:
        """Iterate node ids in insertion order."""
        return iter(self._nodes)

    def __len__(self) -> int:
        """Get the number of nodes in the graph."""
        return len(self._nodes)

    def __repr__(self) -> str:
        """Return string representation of the graph."""
        return f"Graph(nodes={self.node_count}, edges={self.edge_count})"


__all__ = ["Graph", "NodeId"]
