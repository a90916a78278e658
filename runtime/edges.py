"""Canonical, order-independent keys for mesh edges."""

from __future__ import annotations

from typing import NamedTuple


class EdgeKey(NamedTuple):
    low: int
    high: int


def _node_id(node) -> int:
    return int(getattr(node, "id", node))


def canonicalize(node_a, node_b) -> EdgeKey:
    """Return the key of the edge between two nodes (ids or Node objects).

    ``canonicalize(a, b) == canonicalize(b, a)`` for any a, b.
    """
    a = _node_id(node_a)
    b = _node_id(node_b)
    return EdgeKey(a, b) if a <= b else EdgeKey(b, a)


def cycle_edges(node_ids) -> list[EdgeKey]:
    """Keys of the closed polygon ``n0 -> n1 -> ... -> n0``.

    Two-node input yields the single segment key.
    """
    ids = tuple(node_ids)
    if len(ids) == 2:
        return [canonicalize(ids[0], ids[1])]
    return [canonicalize(ids[i], ids[(i + 1) % len(ids)]) for i in range(len(ids))]
