"""Uniform refinement of triangle meshes organised in nested scopes.

Every triangle is split into four and every boundary segment into two. One
midpoint node is created per distinct edge and shared by all entities on that
edge. The destination hierarchy mirrors the scope tree of the source.
"""

import logging
import time
from collections import Counter
from contextlib import contextmanager
from typing import Dict, List, Optional, Sequence

from core.exceptions import NonManifoldEdgeError, UnsupportedTopologyError
from geometry.entities import Condition, Element, Scope
from parameters.global_parameters import GlobalParameters
from runtime.edges import EdgeKey, cycle_edges
from runtime.hierarchy import (
    distribute_children,
    distribute_existing_nodes,
    replicate_structure,
)
from runtime.midpoints import IdAllocator, MidpointRegistry
from runtime.parallel import block_for_each, parallel_map

logger = logging.getLogger("mesh_refiner")

TRIANGLE_NODES = 3
SEGMENT_NODES = 2
TRIANGLE_CHILDREN = 4
SEGMENT_CHILDREN = 2


def _require_node_count(entity, expected: int) -> None:
    found = len(entity.node_ids)
    if found != expected:
        raise UnsupportedTopologyError(entity.entity_kind, entity.id, expected, found)


def refine_triangle(
    element: Element, registry: MidpointRegistry, first_child_id: int
) -> List[Element]:
    """Split a triangle into its four children.

    #          n0
    #         /  \\
    #        / 0  \\
    #      m01----m20
    #      / \\ 3 / \\
    #     / 1 \\ / 2 \\
    #   n1----m12----n2
    """
    _require_node_count(element, TRIANGLE_NODES)
    n0, n1, n2 = element.node_ids
    m01 = registry.midpoint_between(n0, n1).id
    m12 = registry.midpoint_between(n1, n2).id
    m20 = registry.midpoint_between(n2, n0).id

    corners = (
        (n0, m01, m20),
        (m01, n1, m12),
        (m20, m12, n2),
        (m01, m12, m20),
    )
    return [
        Element(first_child_id + i, nodes, element.properties_id, element.kind)
        for i, nodes in enumerate(corners)
    ]


def refine_condition(
    condition: Condition, registry: MidpointRegistry, first_child_id: int
) -> List[Condition]:
    """Split a segment in two: (n0, m01) then (m01, n1)."""
    _require_node_count(condition, SEGMENT_NODES)
    n0, n1 = condition.node_ids
    m01 = registry.midpoint_between(n0, n1).id
    return [
        Condition(first_child_id, (n0, m01), condition.properties_id, condition.kind),
        Condition(first_child_id + 1, (m01, n1), condition.properties_id, condition.kind),
    ]


def _edge_keys(entity, expected: int) -> List[EdgeKey]:
    _require_node_count(entity, expected)
    return cycle_edges(entity.node_ids)


def find_non_manifold_edges(edge_keys_per_element: Sequence[Sequence[EdgeKey]]) -> List[EdgeKey]:
    """Edges used by more than two elements, in ascending key order."""
    counts = Counter(key for keys in edge_keys_per_element for key in keys)
    return sorted(key for key, count in counts.items() if count > 2)


def build_midpoints(
    source: Scope,
    registry: MidpointRegistry,
    *,
    num_workers: int = 1,
    chunk_size: Optional[int] = None,
    deterministic: bool = True,
    strict_manifold: bool = False,
) -> MidpointRegistry:
    """Create the midpoint of every edge of the root's elements and conditions."""
    nodes = source.nodes
    element_keys = parallel_map(
        source.elements,
        lambda element: _edge_keys(element, TRIANGLE_NODES),
        num_workers=num_workers,
        chunk_size=chunk_size,
    )
    condition_keys = parallel_map(
        source.conditions,
        lambda condition: _edge_keys(condition, SEGMENT_NODES),
        num_workers=num_workers,
        chunk_size=chunk_size,
    )

    non_manifold = find_non_manifold_edges(element_keys)
    if non_manifold:
        if strict_manifold:
            raise NonManifoldEdgeError(non_manifold)
        logger.warning(
            "%d edge(s) are shared by more than two elements (first: %s); "
            "each still gets a single midpoint.",
            len(non_manifold),
            tuple(non_manifold[0]),
        )

    def _register(keys: Sequence[EdgeKey]) -> None:
        for key in keys:
            registry.get_or_create_midpoint(key, nodes[key.low], nodes[key.high])

    all_keys = element_keys + condition_keys
    if deterministic:
        for keys in all_keys:
            _register(keys)
    else:
        block_for_each(all_keys, _register, num_workers=num_workers, chunk_size=chunk_size)
    return registry


def _refine_all(entities, refine_fn, registry, children_per_parent, num_workers, chunk_size):
    def _refine(indexed):
        index, entity = indexed
        return entity.id, refine_fn(entity, registry, children_per_parent * index + 1)

    pairs = parallel_map(
        list(enumerate(entities)), _refine, num_workers=num_workers, chunk_size=chunk_size
    )
    return dict(pairs)


def refine_elements(
    source: Scope,
    registry: MidpointRegistry,
    *,
    num_workers: int = 1,
    chunk_size: Optional[int] = None,
) -> Dict[int, List[Element]]:
    """Parent element id -> its four children, ids numbered from 1 in parent id order."""
    return _refine_all(
        source.elements, refine_triangle, registry, TRIANGLE_CHILDREN, num_workers, chunk_size
    )


def refine_conditions(
    source: Scope,
    registry: MidpointRegistry,
    *,
    num_workers: int = 1,
    chunk_size: Optional[int] = None,
) -> Dict[int, List[Condition]]:
    """Parent condition id -> its two children, ids numbered from 1 in parent id order."""
    return _refine_all(
        source.conditions, refine_condition, registry, SEGMENT_CHILDREN, num_workers, chunk_size
    )


@contextmanager
def _stage(name: str):
    start = time.perf_counter()
    logger.debug("Refinement stage %s started", name)
    yield
    logger.debug(
        "Refinement stage %s finished in %.3f s", name, time.perf_counter() - start
    )


def refine_hierarchy(
    source: Scope,
    parameters: Optional[GlobalParameters] = None,
    *,
    destination_name: Optional[str] = None,
) -> Scope:
    """Run one uniform refinement pass and return the new hierarchy.

    ``source`` must be a root scope. The source is left untouched; original
    nodes are shared with the result, elements and conditions are new.
    """
    if not source.is_root:
        raise ValueError(f"Refinement needs a root scope; '{source.full_name}' has a parent")
    params = (parameters or GlobalParameters()).validate()
    workers = params.num_workers
    chunk_size = params.chunk_size

    with _stage("ScanMaxIds"):
        allocator = IdAllocator.from_entities(
            source.nodes, num_workers=workers, chunk_size=chunk_size
        )
        first_new_node = allocator.next_id
    with _stage("ReplicateStructure"):
        destination = replicate_structure(source, destination_name)
    with _stage("BuildMidpoints"):
        registry = build_midpoints(
            source,
            MidpointRegistry(allocator),
            num_workers=workers,
            chunk_size=chunk_size,
            deterministic=params.deterministic,
            strict_manifold=params.strict_manifold,
        )
    with _stage("DistributeNodes"):
        distribute_existing_nodes(destination, source, registry)
    with _stage("RefineElements"):
        element_children = refine_elements(
            source, registry, num_workers=workers, chunk_size=chunk_size
        )
    with _stage("RefineConditions"):
        condition_children = refine_conditions(
            source, registry, num_workers=workers, chunk_size=chunk_size
        )
    with _stage("DistributeElementChildren"):
        distribute_children(destination, source, element_children, "elements")
    with _stage("DistributeConditionChildren"):
        distribute_children(destination, source, condition_children, "conditions")

    logger.info(
        "Refined %d elements -> %d and %d conditions -> %d; "
        "added %d midpoint nodes (ids %d..%d).",
        len(source.elements),
        len(destination.elements),
        len(source.conditions),
        len(destination.conditions),
        len(registry),
        first_new_node,
        allocator.next_id - 1,
    )
    return destination

