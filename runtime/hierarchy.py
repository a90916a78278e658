"""Mirror a source scope tree into a destination tree and fill it.

All passes here are single-threaded; they run between the parallel stages of
the refinement pipeline.
"""

from __future__ import annotations

import logging
from typing import Dict, Iterator, List, Optional, Sequence, Tuple

from core.exceptions import MissingChildMappingError
from geometry.entities import Scope
from runtime.midpoints import MidpointRegistry

logger = logging.getLogger("mesh_refiner")


def replicate_structure(source: Scope, destination_name: Optional[str] = None) -> Scope:
    """Return an empty scope tree with the names and nesting of ``source``."""
    destination = Scope(destination_name or source.name)
    _replicate_children(destination, source)
    return destination


def _replicate_children(destination: Scope, source: Scope) -> None:
    for name in source.sub_scope_names:
        _replicate_children(destination.create_sub_scope(name), source.get_sub_scope(name))


def zip_scopes(destination: Scope, source: Scope) -> Iterator[Tuple[Scope, Scope]]:
    """Yield name-matched (destination, source) pairs, parents before children.

    Raises ScopeNotFoundError if the destination lacks a scope of the source.
    """
    yield destination, source
    for name in source.sub_scope_names:
        yield from zip_scopes(destination.get_sub_scope(name), source.get_sub_scope(name))


def distribute_existing_nodes(
    destination: Scope, source: Scope, registry: MidpointRegistry
) -> None:
    """Place original nodes and midpoints in every destination scope.

    A midpoint joins a scope when both endpoints of its edge are nodes of the
    matching source scope.
    """
    midpoints = registry.items()
    for dest_scope, src_scope in zip_scopes(destination, source):
        dest_scope.add_nodes(src_scope.nodes)
        src_nodes = src_scope.nodes
        new_nodes = [
            node
            for (low, high), node in midpoints
            if low in src_nodes and high in src_nodes
        ]
        dest_scope.add_nodes(new_nodes)
        logger.debug(
            "Scope '%s': %d original + %d new nodes",
            dest_scope.full_name,
            len(src_nodes),
            len(new_nodes),
        )


def distribute_children(
    destination: Scope,
    source: Scope,
    children_by_parent: Dict[int, Sequence],
    kind: str,
) -> None:
    """Insert the refined children of each source entity into the mirror scope.

    ``kind`` is ``"elements"`` or ``"conditions"``.
    """
    if kind not in ("elements", "conditions"):
        raise ValueError(f"Cannot distribute children of kind {kind!r}")
    singular = kind[:-1]
    for dest_scope, src_scope in zip_scopes(destination, source):
        children: List = []
        for entity in getattr(src_scope, kind):
            try:
                children.extend(children_by_parent[entity.id])
            except KeyError:
                raise MissingChildMappingError(
                    singular, entity.id, src_scope.full_name
                ) from None
        getattr(dest_scope, f"add_{kind}")(children)
        logger.debug(
            "Scope '%s': %d child %s",
            dest_scope.full_name,
            len(children),
            kind,
        )
