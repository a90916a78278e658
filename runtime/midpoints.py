"""Node id allocation and the per-run registry of edge midpoints."""

from __future__ import annotations

import logging
import threading
from typing import Dict, Iterable, Iterator, List, Optional, Tuple

from core.exceptions import MissingMidpointError
from geometry.entities import Node
from runtime.edges import EdgeKey, canonicalize
from runtime.parallel import max_reduction

logger = logging.getLogger("mesh_refiner")


def compute_next_id(
    entities: Iterable, *, num_workers: int = 1, chunk_size: Optional[int] = None
) -> int:
    """One past the largest entity id (parallel max-reduction); 1 when empty."""
    return (
        max_reduction(
            entities,
            key=lambda entity: entity.id,
            initial=0,
            num_workers=num_workers,
            chunk_size=chunk_size,
        )
        + 1
    )


class IdAllocator:
    """Hands out consecutive ids starting at ``next_id``.

    Not thread-safe on its own: callers serialise ``allocate`` (the midpoint
    registry calls it under its lock).
    """

    def __init__(self, next_id: int = 1):
        self._next_id = int(next_id)

    @classmethod
    def from_entities(
        cls, entities: Iterable, *, num_workers: int = 1, chunk_size: Optional[int] = None
    ) -> "IdAllocator":
        return cls(compute_next_id(entities, num_workers=num_workers, chunk_size=chunk_size))

    @property
    def next_id(self) -> int:
        return self._next_id

    def allocate(self) -> int:
        value = self._next_id
        self._next_id += 1
        return value


class MidpointRegistry:
    """Edge key -> midpoint node, at most one node per edge.

    ``get_or_create_midpoint`` may be called from any number of worker threads;
    the lookup, id allocation, node creation and insertion happen as one
    critical section.
    """

    def __init__(self, allocator: IdAllocator, lock: Optional[threading.Lock] = None):
        self._allocator = allocator
        self._lock = lock if lock is not None else threading.Lock()
        self._midpoints: Dict[EdgeKey, Node] = {}

    @property
    def allocator(self) -> IdAllocator:
        return self._allocator

    def get_or_create_midpoint(self, edge_key: EdgeKey, endpoint_a: Node, endpoint_b: Node) -> Node:
        edge_key = EdgeKey(*edge_key)
        if canonicalize(endpoint_a, endpoint_b) != edge_key:
            raise ValueError(
                f"Endpoints {endpoint_a.id} and {endpoint_b.id} do not match edge {tuple(edge_key)}"
            )
        node = self._midpoints.get(edge_key)
        if node is not None:
            return node
        with self._lock:
            node = self._midpoints.get(edge_key)
            if node is None:
                coordinates = (endpoint_a.coordinates + endpoint_b.coordinates) * 0.5
                node = Node(self._allocator.allocate(), coordinates)
                self._midpoints[edge_key] = node
            return node

    def lookup(self, edge_key) -> Node:
        try:
            return self._midpoints[EdgeKey(*edge_key)]
        except KeyError:
            raise MissingMidpointError(edge_key) from None

    def midpoint_between(self, node_a, node_b) -> Node:
        return self.lookup(canonicalize(node_a, node_b))

    def items(self) -> List[Tuple[EdgeKey, Node]]:
        """Registered (edge key, midpoint) pairs in ascending key order."""
        return sorted(self._midpoints.items())

    def nodes(self) -> List[Node]:
        return [node for _, node in self.items()]

    def __contains__(self, edge_key) -> bool:
        return EdgeKey(*edge_key) in self._midpoints

    def __iter__(self) -> Iterator[EdgeKey]:
        return iter(sorted(self._midpoints))

    def __len__(self) -> int:
        return len(self._midpoints)
