import copy
import json
import os
import subprocess
import sys
from pathlib import Path

import meshio
import numpy as np
import pytest

sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

import main as main_module
from geometry.geom_io import read_mesh
from sample_meshes import SAMPLE_DOCUMENT, write_sample_document, write_sample_mdpa


def _repo_root() -> Path:
    return Path(__file__).resolve().parents[1]


def _run_main(*args: str) -> subprocess.CompletedProcess:
    root = _repo_root()
    cmd = [sys.executable, str(root / "main.py"), *args]
    return subprocess.run(
        cmd,
        cwd=root,
        capture_output=True,
        text=True,
        check=False,
    )


def test_main_script_refines_mdpa(tmp_path):
    """End-to-end: both paths given as base names without extension."""
    write_sample_mdpa(tmp_path, name="coarse.mdpa")
    proc = _run_main(str(tmp_path / "coarse"), str(tmp_path / "fine"))

    assert proc.returncode == 0, proc.stderr
    assert "Refinement complete" in proc.stderr
    refined = read_mesh(tmp_path / "fine.mdpa")
    assert len(refined.elements) == 8
    assert len(refined.conditions) == 4
    upper = refined.get_sub_scope("upper")
    assert upper.elements.ids() == [5, 6, 7, 8]
    assert upper.get_sub_scope("edge").conditions.ids() == [3, 4]


def test_main_script_requires_two_paths(tmp_path):
    proc = _run_main(str(tmp_path / "only_one.mdpa"))
    assert proc.returncode == 2
    assert "usage" in proc.stderr.lower()


def test_main_in_process_json(tmp_path):
    input_path = write_sample_document(tmp_path)
    output_path = tmp_path / "out" / "refined.json"

    assert main_module.main([str(input_path), str(output_path), "-q", "-j", "2"]) == 0

    data = json.loads(output_path.read_text())
    assert data["name"] == "model"
    assert len(data["nodes"]) == 4 + 5 + 0
    assert [row[0] for row in data["elements"]] == list(range(1, 9))
    kinds = {row[0]: row[-1] for row in data["elements"] if isinstance(row[-1], dict)}
    assert set(kinds) == {5, 6, 7, 8}


def test_main_output_without_extension_uses_input_format(tmp_path):
    input_path = write_sample_document(tmp_path, name="mesh.yaml")
    assert main_module.main([str(input_path), str(tmp_path / "refined"), "-q"]) == 0
    assert (tmp_path / "refined.yaml").is_file()


def test_main_rejects_quadrilaterals(tmp_path, caplog):
    data = copy.deepcopy(SAMPLE_DOCUMENT)
    data["elements"].append([3, 1, 1, 2, 4, 3])
    input_path = write_sample_document(tmp_path, data=data)
    output_path = tmp_path / "refined.json"

    assert main_module.main([str(input_path), str(output_path), "-q"]) == 1
    assert not output_path.exists()
    assert "only 3-node elements can be refined" in caplog.text


def test_main_reports_missing_input(tmp_path, caplog):
    code = main_module.main([str(tmp_path / "nothing"), str(tmp_path / "out.json"), "-q"])
    assert code == 1
    assert "Cannot find mesh file" in caplog.text


def test_main_dotted_base_names(tmp_path):
    write_sample_mdpa(tmp_path, name="coarse_0.5.mdpa")
    code = main_module.main(
        [str(tmp_path / "coarse_0.5"), str(tmp_path / "fine_0.25"), "-q"]
    )
    assert code == 0
    refined = read_mesh(tmp_path / "fine_0.25.mdpa")
    assert len(refined.elements) == 8


def test_main_reports_malformed_yaml(tmp_path, caplog):
    bad = tmp_path / "bad.yaml"
    bad.write_text("nodes: [[1, 0, 0\n")
    output_path = tmp_path / "o.json"

    assert main_module.main([str(bad), str(output_path), "-q"]) == 1
    assert "Invalid YAML" in caplog.text
    assert not output_path.exists()


def test_main_reports_malformed_parameter_file(tmp_path, caplog):
    input_path = write_sample_document(tmp_path)
    config = tmp_path / "params.yaml"
    config.write_text("parameters: {num_workers: [2\n")
    args = [str(input_path), str(tmp_path / "o.json"), "-q", "--config", str(config)]

    assert main_module.main(args) == 1
    assert "params.yaml" in caplog.text


def test_main_reports_unwritable_output(tmp_path, caplog):
    input_path = write_sample_document(tmp_path)
    output_path = tmp_path / "taken.json"
    output_path.mkdir()

    assert main_module.main([str(input_path), str(output_path), "-q"]) == 1
    assert "Refinement failed" in caplog.text


def test_main_strict_manifold(tmp_path):
    data = {
        "nodes": [[1, 0, 0, 0], [2, 1, 0, 0], [3, 0, 1, 0], [4, 1, 1, 0], [5, 0, -1, 0]],
        "elements": [[1, 1, 1, 2, 3], [2, 1, 2, 1, 4], [3, 1, 1, 2, 5]],
    }
    input_path = write_sample_document(tmp_path, data=data)

    assert main_module.main([str(input_path), str(tmp_path / "a.json"), "-q"]) == 0
    assert (
        main_module.main(
            [str(input_path), str(tmp_path / "b.json"), "-q", "--strict-manifold"]
        )
        == 1
    )
    assert not (tmp_path / "b.json").exists()


def test_main_nondeterministic_gives_same_topology(tmp_path):
    input_path = write_sample_document(tmp_path)
    output_path = tmp_path / "refined.json"
    args = [str(input_path), str(output_path), "-q", "-j", "4", "--nondeterministic"]

    assert main_module.main(args) == 0
    refined = read_mesh(output_path)
    assert refined.nodes.ids() == list(range(1, 10))
    assert len(refined.elements) == 8


def test_main_reads_parameter_file(tmp_path):
    input_path = write_sample_document(tmp_path)
    config = tmp_path / "params.yaml"
    config.write_text("parameters:\n  num_workers: 2\n  compact_output: true\n")
    output_path = tmp_path / "refined.json"

    args = [str(input_path), str(output_path), "-q", "--config", str(config)]
    assert main_module.main(args) == 0
    assert "\n" not in output_path.read_text()


def test_main_log_file(tmp_path):
    input_path = write_sample_document(tmp_path)
    log_path = tmp_path / "run.log"
    args = [str(input_path), str(tmp_path / "r.json"), "-q", "--log", str(log_path)]

    assert main_module.main(args) == 0
    text = log_path.read_text()
    assert " - INFO - Input mesh name" in text
    assert "model: 9 nodes, 8 elements, 4 conditions" in text


def test_scale_main(tmp_path):
    input_path = write_sample_document(tmp_path)
    output_path = tmp_path / "scaled.json"

    assert main_module.scale_main([str(input_path), str(output_path), "3", "-q"]) == 0
    scaled = read_mesh(output_path)
    np.testing.assert_array_equal(scaled.nodes[4].coordinates, [3.0, 3.0, 0.0])
    assert scaled.get_sub_scope("upper").get_sub_scope("edge").nodes.ids() == [2, 4]


def test_scale_main_needs_factor(tmp_path):
    input_path = write_sample_document(tmp_path)
    with pytest.raises(SystemExit) as excinfo:
        main_module.scale_main([str(input_path), str(tmp_path / "s.json")])
    assert excinfo.value.code == 2


def test_visualize_main_writes_vtu_per_scope(tmp_path):
    input_path = write_sample_mdpa(tmp_path, name="coarse.mdpa")

    assert main_module.visualize_main([str(tmp_path / "coarse"), "-q"]) == 0

    output_dir = tmp_path / "coarse"
    assert sorted(p.name for p in output_dir.iterdir()) == [
        "root.upper.edge.vtu",
        "root.upper.vtu",
        "root.vtu",
    ]
    edge = meshio.read(output_dir / "root.upper.edge.vtu")
    np.testing.assert_array_equal(edge.point_data["node_ids"], [2, 4])
    np.testing.assert_array_equal(edge.cell_data["condition_ids"][0], [2])
    assert input_path.is_file()


def test_visualize_main_output_dir(tmp_path):
    input_path = write_sample_document(tmp_path)
    output_dir = tmp_path / "views"
    args = [str(input_path), "-o", str(output_dir), "-q"]

    assert main_module.visualize_main(args) == 0
    assert (output_dir / "model.upper.edge.vtu").is_file()
    assert (output_dir / "model.bottom.vtu").is_file()
