# entities.py

import logging
from dataclasses import dataclass
from typing import Any, ClassVar, Dict, Iterable, Iterator, List, Optional, Tuple

import numpy as np

from core.exceptions import (
    DuplicateEntityError,
    DuplicateScopeError,
    MissingEntityError,
    ScopeNotFoundError,
)

logger = logging.getLogger("mesh_refiner")

ENTITY_KINDS = ("nodes", "elements", "conditions")


@dataclass(eq=False)
class Node:
    """A mesh vertex. Coordinates are frozen once the node exists."""

    id: int
    coordinates: np.ndarray

    def __post_init__(self):
        self.id = int(self.id)
        coords = np.array(self.coordinates, dtype=float).reshape(-1)
        if coords.shape != (3,):
            raise ValueError(
                f"Node {self.id} needs 3 coordinates; got {coords.shape[0]}"
            )
        coords.setflags(write=False)
        self.coordinates = coords

    @property
    def x(self) -> float:
        return float(self.coordinates[0])

    @property
    def y(self) -> float:
        return float(self.coordinates[1])

    @property
    def z(self) -> float:
        return float(self.coordinates[2])

    def __repr__(self):
        x, y, z = self.coordinates
        return f"Node(id={self.id}, x={x:g}, y={y:g}, z={z:g})"


@dataclass(eq=False)
class _Connectivity:
    id: int
    node_ids: Tuple[int, ...]
    properties_id: int = 0
    kind: str = ""

    entity_kind: ClassVar[str] = "entity"
    default_kind: ClassVar[str] = ""

    def __post_init__(self):
        self.id = int(self.id)
        self.node_ids = tuple(int(n) for n in self.node_ids)
        self.properties_id = int(self.properties_id)
        if not self.kind:
            self.kind = self.default_kind

    def __len__(self):
        return len(self.node_ids)


@dataclass(eq=False)
class Element(_Connectivity):
    """A surface cell; refinement only accepts triangles."""

    entity_kind: ClassVar[str] = "element"
    default_kind: ClassVar[str] = "Element2D3N"


@dataclass(eq=False)
class Condition(_Connectivity):
    """A boundary entity; refinement only accepts two-node segments."""

    entity_kind: ClassVar[str] = "condition"
    default_kind: ClassVar[str] = "LineCondition2D2N"


class EntityCollection:
    """Id-keyed set of entities of one kind, iterated in ascending id order.

    The same object may be inserted any number of times; a *different* object
    under an already used id is rejected.
    """

    def __init__(self, entity_kind: str):
        self.entity_kind = entity_kind
        self._items: Dict[int, Any] = {}
        self._sorted_ids: Optional[List[int]] = None

    def insert(self, entity) -> bool:
        """Insert ``entity``; return False if it was already present."""
        existing = self._items.get(entity.id)
        if existing is not None:
            if existing is entity:
                return False
            raise DuplicateEntityError(self.entity_kind, entity.id)
        self._items[entity.id] = entity
        self._sorted_ids = None
        return True

    def extend(self, entities: Iterable) -> int:
        return sum(1 for entity in entities if self.insert(entity))

    def get(self, entity_id: int, default=None):
        return self._items.get(entity_id, default)

    def ids(self) -> List[int]:
        if self._sorted_ids is None:
            self._sorted_ids = sorted(self._items)
        return list(self._sorted_ids)

    def max_id(self) -> int:
        """Largest id in the collection, 0 when empty."""
        return max(self._items, default=0)

    def __getitem__(self, entity_id: int):
        return self._items[entity_id]

    def __contains__(self, item) -> bool:
        if isinstance(item, (int, np.integer)):
            return int(item) in self._items
        return self._items.get(getattr(item, "id", None)) is item

    def __iter__(self) -> Iterator:
        items = self._items
        return (items[i] for i in self.ids())

    def __len__(self) -> int:
        return len(self._items)

    def __repr__(self):
        return f"EntityCollection({self.entity_kind}, size={len(self)})"


class Scope:
    """A named grouping of mesh entities; the root scope owns them all.

    Sub-scopes hold references to the root's entities. Nothing may be added to
    a sub-scope unless its parent already holds it, and elements/conditions
    are only accepted when every node they use is in the scope.
    """

    def __init__(self, name: str = "root", parent: Optional["Scope"] = None):
        if not isinstance(name, str) or not name or "." in name:
            raise ValueError(f"Invalid scope name {name!r}")
        self.name = name
        self.parent = parent
        self._sub_scopes: Dict[str, "Scope"] = {}
        self.nodes = EntityCollection("node")
        self.elements = EntityCollection("element")
        self.conditions = EntityCollection("condition")

    # ------------------------------------------------------------------
    # structure
    @property
    def is_root(self) -> bool:
        return self.parent is None

    @property
    def root(self) -> "Scope":
        scope = self
        while scope.parent is not None:
            scope = scope.parent
        return scope

    @property
    def full_name(self) -> str:
        if self.parent is None:
            return self.name
        return f"{self.parent.full_name}.{self.name}"

    @property
    def sub_scope_names(self) -> List[str]:
        return list(self._sub_scopes)

    def sub_scopes(self) -> List["Scope"]:
        return list(self._sub_scopes.values())

    def has_sub_scope(self, name: str) -> bool:
        return name in self._sub_scopes

    def create_sub_scope(self, name: str) -> "Scope":
        if name in self._sub_scopes:
            raise DuplicateScopeError(name, self.full_name)
        child = Scope(name, parent=self)
        self._sub_scopes[name] = child
        return child

    def get_sub_scope(self, name: str) -> "Scope":
        try:
            return self._sub_scopes[name]
        except KeyError:
            raise ScopeNotFoundError(name, self.full_name) from None

    def walk(self) -> Iterator["Scope"]:
        """Yield this scope and all nested scopes, depth first."""
        yield self
        for child in self._sub_scopes.values():
            yield from child.walk()

    # ------------------------------------------------------------------
    # entity insertion
    def add_nodes(self, nodes: Iterable[Node], *, propagate: bool = False) -> None:
        self._add("nodes", nodes, propagate)

    def add_elements(self, elements: Iterable[Element], *, propagate: bool = False) -> None:
        self._add("elements", elements, propagate)

    def add_conditions(
        self, conditions: Iterable[Condition], *, propagate: bool = False
    ) -> None:
        self._add("conditions", conditions, propagate)

    def _add(self, attr: str, entities: Iterable, propagate: bool) -> None:
        entities = list(entities)
        if not entities:
            return
        collection: EntityCollection = getattr(self, attr)

        if self.parent is not None:
            parent_collection: EntityCollection = getattr(self.parent, attr)
            missing = [e for e in entities if parent_collection.get(e.id) is not e]
            if missing:
                if not propagate:
                    raise MissingEntityError(
                        collection.entity_kind,
                        missing[0].id,
                        self.parent.full_name,
                        message=(
                            f"Cannot add {collection.entity_kind} {missing[0].id} to "
                            f"scope '{self.full_name}': it does not exist in the "
                            f"parent scope '{self.parent.full_name}'."
                        ),
                    )
                self.parent._add(attr, missing, propagate)

        if attr != "nodes":
            for entity in entities:
                for node_id in entity.node_ids:
                    if node_id not in self.nodes:
                        raise MissingEntityError(
                            "node",
                            node_id,
                            self.full_name,
                            message=(
                                f"{collection.entity_kind.capitalize()} {entity.id} "
                                f"references node {node_id}, which is not in scope "
                                f"'{self.full_name}'."
                            ),
                        )

        collection.extend(entities)

    # ------------------------------------------------------------------
    # entity creation with explicit ids
    def create_node(self, node_id: int, x: float, y: float, z: float = 0.0) -> Node:
        node = Node(node_id, (x, y, z))
        self.add_nodes([node], propagate=True)
        return node

    def create_element(
        self,
        element_id: int,
        node_ids: Iterable[int],
        properties_id: int = 0,
        kind: str = "",
    ) -> Element:
        element = Element(element_id, tuple(node_ids), properties_id, kind)
        self.add_elements([element], propagate=True)
        return element

    def create_condition(
        self,
        condition_id: int,
        node_ids: Iterable[int],
        properties_id: int = 0,
        kind: str = "",
    ) -> Condition:
        condition = Condition(condition_id, tuple(node_ids), properties_id, kind)
        self.add_conditions([condition], propagate=True)
        return condition

    def __str__(self):
        return (
            f"Scope '{self.full_name}' with {len(self.nodes)} nodes, "
            f"{len(self.elements)} elements, {len(self.conditions)} conditions "
            f"and {len(self._sub_scopes)} sub-scopes."
        )

    def __repr__(self):
        return f"Scope(name={self.name!r}, sub_scopes={self.sub_scope_names})"
