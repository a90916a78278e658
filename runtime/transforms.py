"""Whole-hierarchy transforms and reporting."""

import logging
from typing import List, Optional

from geometry.entities import Node, Scope
from runtime.hierarchy import replicate_structure, zip_scopes
from runtime.parallel import parallel_map

logger = logging.getLogger("mesh_refiner")


def scale_coordinates(
    source: Scope,
    factor: float,
    *,
    num_workers: int = 1,
    chunk_size: Optional[int] = None,
) -> Scope:
    """Return a copy of ``source`` with every node coordinate multiplied by ``factor``.

    Ids, scope structure, elements and conditions are kept; elements and
    conditions are shared with the source.
    """
    factor = float(factor)
    scaled = parallel_map(
        source.nodes,
        lambda node: Node(node.id, node.coordinates * factor),
        num_workers=num_workers,
        chunk_size=chunk_size,
    )
    by_id = {node.id: node for node in scaled}

    destination = replicate_structure(source)
    for dest_scope, src_scope in zip_scopes(destination, source):
        dest_scope.add_nodes(by_id[node_id] for node_id in src_scope.nodes.ids())
        dest_scope.add_elements(src_scope.elements)
        dest_scope.add_conditions(src_scope.conditions)
    logger.info("Scaled %d nodes by %g", len(scaled), factor)
    return destination


def summarize_hierarchy(root: Scope) -> str:
    """Indented per-scope entity counts."""
    lines: List[str] = []

    def _visit(scope: Scope, depth: int) -> None:
        lines.append(
            f"{'    ' * depth}{scope.name}: "
            f"{len(scope.nodes)} nodes, "
            f"{len(scope.elements)} elements, "
            f"{len(scope.conditions)} conditions"
        )
        for child in scope.sub_scopes():
            _visit(child, depth + 1)

    _visit(root, 0)
    return "\n".join(lines)
