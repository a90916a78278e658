import os
import sys

import numpy as np

sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from geometry.entities import Node
from runtime.edges import EdgeKey, canonicalize, cycle_edges


def test_canonicalize_is_symmetric():
    assert canonicalize(7, 3) == canonicalize(3, 7) == EdgeKey(3, 7)


def test_canonicalize_accepts_nodes_and_ids():
    a = Node(12, np.zeros(3))
    b = Node(5, np.ones(3))
    assert canonicalize(a, b) == EdgeKey(5, 12)
    assert canonicalize(a, 5) == canonicalize(5, a)


def test_edge_key_fields():
    key = canonicalize(9, 2)
    assert key.low == 2
    assert key.high == 9
    assert key == (2, 9)


def test_cycle_edges_closes_the_triangle():
    assert cycle_edges((1, 2, 3)) == [(1, 2), (2, 3), (1, 3)]


def test_cycle_edges_for_a_segment_is_a_single_key():
    assert cycle_edges((4, 1)) == [(1, 4)]
