import os
import sys

import pytest

sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from core.exceptions import (
    MeshFormatError,
    MeshRefinerError,
    MissingChildMappingError,
    MissingMidpointError,
    NonManifoldEdgeError,
    UnsupportedFileFormatError,
    UnsupportedTopologyError,
)
from runtime.edges import EdgeKey


def test_topology_error_names_the_entity():
    err = UnsupportedTopologyError("element", 7, 3, 4)
    assert isinstance(err, MeshRefinerError)
    assert (err.entity_id, err.expected, err.found) == (7, 3, 4)
    assert "element 7 has 4 nodes" in str(err)


def test_missing_child_mapping_message():
    err = MissingChildMappingError("element", 12, "model.left")
    assert "12" in str(err)
    assert "model.left" in str(err)


def test_missing_midpoint_is_a_key_error():
    err = MissingMidpointError(EdgeKey(2, 5))
    assert isinstance(err, KeyError)
    assert str(err) == "No midpoint registered for edge (2, 5)."
    with pytest.raises(KeyError):
        raise err


def test_non_manifold_message_is_truncated():
    edges = [(i, i + 1) for i in range(8)]
    err = NonManifoldEdgeError(edges)
    assert err.edges == edges
    assert str(err).startswith("8 edge(s)")
    assert "(+3 more)" in str(err)


def test_file_errors():
    assert "<none>" in str(UnsupportedFileFormatError("mesh", ""))
    assert str(MeshFormatError("a.json", None, "broken")) == "a.json: broken"
