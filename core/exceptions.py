"""Custom exception types for the mesh refiner."""

from __future__ import annotations

from typing import Iterable


class MeshRefinerError(Exception):
    """Base class for domain-specific errors."""


class UnsupportedTopologyError(MeshRefinerError):
    """Raised when an element is not a triangle or a condition is not a segment."""

    def __init__(
        self,
        entity_kind: str,
        entity_id: int,
        expected: int,
        found: int,
        message: str | None = None,
    ) -> None:
        if message is None:
            message = (
                f"{entity_kind} {entity_id} has {found} nodes; "
                f"only {expected}-node {entity_kind}s can be refined."
            )
        super().__init__(message)
        self.entity_kind = entity_kind
        self.entity_id = entity_id
        self.expected = expected
        self.found = found


class MissingChildMappingError(MeshRefinerError):
    """Raised when a scope references an entity that was never refined at the root."""

    def __init__(self, entity_kind: str, entity_id: int, scope_name: str) -> None:
        super().__init__(
            f"The {entity_kind} id {entity_id} in scope '{scope_name}' is not "
            "found in the map of refined entities. Please make sure this id is "
            "present in the root scope."
        )
        self.entity_kind = entity_kind
        self.entity_id = entity_id
        self.scope_name = scope_name


class UnsupportedFileFormatError(MeshRefinerError):
    """Raised when a mesh path has an extension no reader/writer handles."""

    def __init__(self, path, extension: str) -> None:
        shown = extension if extension else "<none>"
        super().__init__(f"Unsupported file format: {shown} (path: {path})")
        self.path = str(path)
        self.extension = extension


class MeshFormatError(MeshRefinerError):
    """Raised when a mesh file is syntactically or structurally invalid."""

    def __init__(self, path, line_number: int | None, message: str) -> None:
        where = f"{path}:{line_number}" if line_number is not None else str(path)
        super().__init__(f"{where}: {message}")
        self.path = str(path)
        self.line_number = line_number


class DuplicateScopeError(MeshRefinerError):
    """Raised when creating a sub-scope whose name already exists."""

    def __init__(self, scope_name: str, parent_name: str) -> None:
        super().__init__(
            f"Scope '{parent_name}' already has a sub-scope named '{scope_name}'."
        )
        self.scope_name = scope_name
        self.parent_name = parent_name


class ScopeNotFoundError(MeshRefinerError):
    """Raised when a named sub-scope does not exist."""

    def __init__(self, scope_name: str, parent_name: str) -> None:
        super().__init__(f"Scope '{parent_name}' has no sub-scope named '{scope_name}'.")
        self.scope_name = scope_name
        self.parent_name = parent_name


class DuplicateEntityError(MeshRefinerError):
    """Raised when a different entity is inserted under an existing id."""

    def __init__(self, entity_kind: str, entity_id: int) -> None:
        super().__init__(
            f"A different {entity_kind} with id {entity_id} already exists."
        )
        self.entity_kind = entity_kind
        self.entity_id = entity_id


class MissingEntityError(MeshRefinerError):
    """Raised when an entity is inserted into a scope that cannot reach it."""

    def __init__(
        self, entity_kind: str, entity_id: int, scope_name: str, message: str | None = None
    ) -> None:
        if message is None:
            message = f"The {entity_kind} with id {entity_id} does not exist in scope '{scope_name}'."
        super().__init__(message)
        self.entity_kind = entity_kind
        self.entity_id = entity_id
        self.scope_name = scope_name


class MissingMidpointError(MeshRefinerError, KeyError):
    """Raised when an edge has no registered midpoint."""

    def __init__(self, edge_key) -> None:
        super().__init__(f"No midpoint registered for edge {tuple(edge_key)}.")
        self.edge_key = edge_key

    def __str__(self) -> str:
        # KeyError would otherwise repr() the message
        return self.args[0]


class NonManifoldEdgeError(MeshRefinerError):
    """Raised when an edge is shared by more than two elements."""

    def __init__(self, edges: Iterable) -> None:
        self.edges = [tuple(edge) for edge in edges]
        preview = ", ".join(str(edge) for edge in self.edges[:5])
        more = f" (+{len(self.edges) - 5} more)" if len(self.edges) > 5 else ""
        super().__init__(
            f"{len(self.edges)} edge(s) are shared by more than two elements: "
            f"{preview}{more}"
        )


__all__ = [
    "MeshRefinerError",
    "UnsupportedTopologyError",
    "MissingChildMappingError",
    "UnsupportedFileFormatError",
    "MeshFormatError",
    "DuplicateScopeError",
    "ScopeNotFoundError",
    "DuplicateEntityError",
    "MissingEntityError",
    "MissingMidpointError",
    "NonManifoldEdgeError",
]
