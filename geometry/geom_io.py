# geom_io.py
import json
import logging
import os
from pathlib import Path
from typing import Iterator, List, Tuple

import meshio
import numpy as np
import yaml

from core.exceptions import MeshFormatError, UnsupportedFileFormatError
from geometry.entities import Condition, Element, Node, Scope

logger = logging.getLogger("mesh_refiner")

JSON_EXTENSIONS = (".json",)
YAML_EXTENSIONS = (".yaml", ".yml")
MDPA_EXTENSIONS = (".mdpa",)
MESH_EXTENSIONS = MDPA_EXTENSIONS + JSON_EXTENSIONS + YAML_EXTENSIONS


def _extension(path) -> str:
    return Path(str(path)).suffix.lower()


def has_mesh_extension(path) -> bool:
    """True when the path ends in a known mesh extension.

    Base names may contain dots (`coarse_0.5`); such a suffix is not an
    extension.
    """
    return _extension(path) in MESH_EXTENSIONS


def resolve_mesh_path(path) -> str:
    """Return an existing mesh file path, allowing a base name without extension."""
    path_str = str(path)
    if os.path.isfile(path_str):
        return path_str
    if not has_mesh_extension(path_str):
        for ext in MESH_EXTENSIONS:
            candidate = path_str + ext
            if os.path.isfile(candidate):
                return candidate
    raise FileNotFoundError(
        f"Cannot find mesh file '{path_str}' (also tried {', '.join(MESH_EXTENSIONS)})"
    )


# ---------------------------------------------------------------------------
# JSON / YAML documents
# ---------------------------------------------------------------------------


def load_data(filename):
    """Load a mesh document from a JSON or YAML file.

    Expected layout:
    {
        "name": "model",
        "nodes": [[id, x, y, z], ...] or {id: [x, y, z], ...},
        "elements": [[id, properties_id, n0, n1, n2] or [..., {"kind": "Element2D3N"}], ...],
        "conditions": [[id, properties_id, n0, n1], ...],
        "element_kinds": {id: "SmallDisplacementElement2D3N"},   (optional)
        "condition_kinds": {id: "LineLoadCondition2D2N"},        (optional)
        "sub_scopes": [
            {"name": "inlet", "nodes": [ids], "elements": [ids],
             "conditions": [ids], "sub_scopes": [...]},
        ]
    }"""
    filename_str = str(filename)
    ext = _extension(filename_str)
    with open(filename_str, "r") as f:
        if ext in YAML_EXTENSIONS:
            try:
                data = yaml.safe_load(f)
            except yaml.YAMLError as exc:
                mark = getattr(exc, "problem_mark", None)
                line = mark.line + 1 if mark is not None else None
                raise MeshFormatError(filename_str, line, f"Invalid YAML: {exc}") from exc
        elif ext in JSON_EXTENSIONS:
            data = json.load(f)
        else:
            logger.error(f"Unsupported file format for: {filename_str}")
            raise UnsupportedFileFormatError(filename_str, ext)

    return data


def _parse_id(value, *, label: str, source) -> int:
    if isinstance(value, bool):
        raise MeshFormatError(source, None, f"{label} IDs must be integers; got {value!r}")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        text = value.strip()
        if text.isdigit():
            return int(text)
    raise MeshFormatError(
        source, None, f"{label} IDs must be integers (or integer strings); got {value!r}"
    )


def _split_options(row, *, label: str, source) -> Tuple[list, dict]:
    if not isinstance(row, (list, tuple)):
        raise MeshFormatError(source, None, f"{label} entry must be a list; got {row!r}")
    row = list(row)
    if row and isinstance(row[-1], dict):
        return row[:-1], row[-1]
    return row, {}


def _parse_connectivity(rows, cls, *, label: str, source) -> List:
    entities = []
    for row in rows or []:
        values, options = _split_options(row, label=label, source=source)
        if len(values) < 3:
            raise MeshFormatError(
                source, None, f"{label} entry needs id, properties id and nodes; got {row!r}"
            )
        entity_id = _parse_id(values[0], label=label, source=source)
        properties_id = _parse_id(values[1], label="Properties", source=source)
        node_ids = [_parse_id(v, label="Node", source=source) for v in values[2:]]
        entities.append(cls(entity_id, node_ids, properties_id, options.get("kind", "")))
    return entities


def _lookup_all(collection, ids, *, label: str, scope_name: str, source) -> List:
    found = []
    for raw in ids or []:
        entity_id = _parse_id(raw, label=label, source=source)
        entity = collection.get(entity_id)
        if entity is None:
            raise MeshFormatError(
                source,
                None,
                f"Scope '{scope_name}' references unknown {label.lower()} {entity_id}",
            )
        found.append(entity)
    return found


def _parse_sub_scopes(parent: Scope, specs, *, source) -> None:
    for spec in specs or []:
        if not isinstance(spec, dict) or "name" not in spec:
            raise MeshFormatError(source, None, f"Sub-scope entry needs a name; got {spec!r}")
        scope = parent.create_sub_scope(str(spec["name"]))
        root = scope.root
        scope.add_nodes(
            _lookup_all(root.nodes, spec.get("nodes"), label="Node", scope_name=scope.full_name, source=source),
            propagate=True,
        )
        scope.add_elements(
            _lookup_all(
                root.elements, spec.get("elements"), label="Element", scope_name=scope.full_name, source=source
            ),
            propagate=True,
        )
        scope.add_conditions(
            _lookup_all(
                root.conditions,
                spec.get("conditions"),
                label="Condition",
                scope_name=scope.full_name,
                source=source,
            ),
            propagate=True,
        )
        _parse_sub_scopes(scope, spec.get("sub_scopes"), source=source)


def _node_rows(nodes, *, source):
    """(id, coordinate values, raw entry) from either node layout."""
    if nodes is None:
        return
    if isinstance(nodes, dict):
        for raw_id, coords in nodes.items():
            if not isinstance(coords, (list, tuple)):
                raise MeshFormatError(
                    source, None, f"Node {raw_id!r} coordinates must be a list; got {coords!r}"
                )
            yield _parse_id(raw_id, label="Node", source=source), list(coords), coords
        return
    for row in nodes:
        values, _ = _split_options(row, label="Node", source=source)
        if not values:
            raise MeshFormatError(source, None, f"Empty node entry: {row!r}")
        yield _parse_id(values[0], label="Node", source=source), values[1:], row


def _parse_nodes(nodes, *, source) -> List[Node]:
    parsed = []
    for node_id, values, raw in _node_rows(nodes, source=source):
        if len(values) not in (2, 3):
            raise MeshFormatError(
                source, None, f"Node {node_id} needs [x, y] or [x, y, z]; got {raw!r}"
            )
        try:
            coords = [float(v) for v in values]
        except (TypeError, ValueError) as exc:
            raise MeshFormatError(source, None, f"Invalid coordinates for node {node_id}: {exc}") from exc
        if len(coords) == 2:
            coords.append(0.0)
        parsed.append(Node(node_id, coords))
    return parsed


def _apply_kinds(entities, kinds, *, label: str, source) -> None:
    """Override entity kinds from an ``{id: kind}`` mapping."""
    if not kinds:
        return
    if not isinstance(kinds, dict):
        raise MeshFormatError(source, None, f"{label} kinds must be a mapping; got {kinds!r}")
    by_id = {entity.id: entity for entity in entities}
    for raw_id, kind in kinds.items():
        entity_id = _parse_id(raw_id, label=label, source=source)
        if entity_id not in by_id:
            raise MeshFormatError(source, None, f"Kind given for unknown {label.lower()} {entity_id}")
        by_id[entity_id].kind = str(kind)


def parse_hierarchy(data: dict, *, source="<data>") -> Scope:
    if not isinstance(data, dict):
        raise MeshFormatError(source, None, "Mesh document must be a mapping")

    root = Scope(str(data.get("name", "root")))

    root.add_nodes(_parse_nodes(data.get("nodes"), source=source))

    elements = _parse_connectivity(data.get("elements"), Element, label="Element", source=source)
    _apply_kinds(elements, data.get("element_kinds"), label="Element", source=source)
    root.add_elements(elements)

    conditions = _parse_connectivity(
        data.get("conditions"), Condition, label="Condition", source=source
    )
    _apply_kinds(conditions, data.get("condition_kinds"), label="Condition", source=source)
    root.add_conditions(conditions)
    _parse_sub_scopes(root, data.get("sub_scopes"), source=source)

    logger.debug(f"Parsed {root} from {source}")
    return root


def _connectivity_rows(entities) -> list:
    rows = []
    for entity in entities:
        row = [entity.id, entity.properties_id, *entity.node_ids]
        if entity.kind != entity.default_kind:
            row.append({"kind": entity.kind})
        rows.append(row)
    return rows


def _scope_to_data(scope: Scope) -> dict:
    return {
        "name": scope.name,
        "nodes": scope.nodes.ids(),
        "elements": scope.elements.ids(),
        "conditions": scope.conditions.ids(),
        "sub_scopes": [_scope_to_data(child) for child in scope.sub_scopes()],
    }


def hierarchy_to_data(root: Scope) -> dict:
    return {
        "name": root.name,
        "nodes": [[node.id, *node.coordinates.tolist()] for node in root.nodes],
        "elements": _connectivity_rows(root.elements),
        "conditions": _connectivity_rows(root.conditions),
        "sub_scopes": [_scope_to_data(child) for child in root.sub_scopes()],
    }


# ---------------------------------------------------------------------------
# MDPA (Kratos model part) text format
# ---------------------------------------------------------------------------

_SUB_BLOCKS = {
    "SubModelPartNodes": "nodes",
    "SubModelPartElements": "elements",
    "SubModelPartConditions": "conditions",
}


class _MdpaLines:
    """Comment-stripped, non-empty lines with their 1-based line numbers."""

    def __init__(self, text: str, path):
        self.path = path
        self._lines: Iterator[Tuple[int, List[str]]] = (
            (number, tokens)
            for number, line in enumerate(text.splitlines(), start=1)
            for tokens in [line.split("//", 1)[0].split()]
            if tokens
        )
        self.line_number = 0

    def __iter__(self):
        return self

    def __next__(self) -> List[str]:
        self.line_number, tokens = next(self._lines)
        return tokens

    def error(self, message: str) -> MeshFormatError:
        return MeshFormatError(self.path, self.line_number, message)

    def block_rows(self, block: str) -> Iterator[List[str]]:
        """Rows up to ``End <block>``."""
        for tokens in self:
            if tokens[0] == "End":
                if len(tokens) < 2 or tokens[1] != block:
                    raise self.error(f"Expected 'End {block}', got '{' '.join(tokens)}'")
                return
            if tokens[0] == "Begin":
                raise self.error(f"Unexpected nested block inside '{block}'")
            yield tokens
        raise self.error(f"Missing 'End {block}'")

    def skip_block(self, block: str) -> None:
        depth = 1
        for tokens in self:
            if tokens[0] == "Begin":
                depth += 1
            elif tokens[0] == "End":
                depth -= 1
                if depth == 0:
                    if len(tokens) < 2 or tokens[1] != block:
                        raise self.error(f"Expected 'End {block}', got '{' '.join(tokens)}'")
                    return
        raise self.error(f"Missing 'End {block}'")


def _int_token(lines: _MdpaLines, token: str, label: str) -> int:
    try:
        return int(token)
    except ValueError:
        raise lines.error(f"Invalid {label} id '{token}'") from None


def _read_mdpa_entities(lines: _MdpaLines, block: str, cls, kind: str) -> List:
    entities = []
    for tokens in lines.block_rows(block):
        if len(tokens) < 3:
            raise lines.error(f"{block} row needs id, properties id and nodes")
        entity_id, properties_id, *node_ids = (
            _int_token(lines, token, block[:-1].lower()) for token in tokens
        )
        entities.append(cls(entity_id, node_ids, properties_id, kind))
    return entities


def _read_sub_model_part(lines: _MdpaLines, scope: Scope) -> None:
    root = scope.root
    for tokens in lines:
        keyword = tokens[0]
        if keyword == "End":
            if tokens[1:2] != ["SubModelPart"]:
                raise lines.error(f"Expected 'End SubModelPart', got '{' '.join(tokens)}'")
            return
        if keyword != "Begin" or len(tokens) < 2:
            raise lines.error(f"Unexpected line in SubModelPart '{scope.name}'")
        block = tokens[1]
        if block == "SubModelPart":
            if len(tokens) < 3:
                raise lines.error("SubModelPart needs a name")
            _read_sub_model_part(lines, scope.create_sub_scope(tokens[2]))
        elif block in _SUB_BLOCKS:
            attr = _SUB_BLOCKS[block]
            owner = getattr(root, attr)
            found = []
            for row in lines.block_rows(block):
                for token in row:
                    entity_id = _int_token(lines, token, attr[:-1])
                    entity = owner.get(entity_id)
                    if entity is None:
                        raise lines.error(
                            f"SubModelPart '{scope.full_name}' references unknown "
                            f"{attr[:-1]} {entity_id}"
                        )
                    found.append(entity)
            getattr(scope, f"add_{attr}")(found, propagate=True)
        else:
            logger.debug(f"Skipping block '{block}' in SubModelPart '{scope.name}'")
            lines.skip_block(block)
    raise lines.error(f"Missing 'End SubModelPart' for '{scope.name}'")


def parse_mdpa(text: str, *, name: str = "root", source="<mdpa>") -> Scope:
    root = Scope(name)
    lines = _MdpaLines(text, source)
    for tokens in lines:
        if tokens[0] != "Begin" or len(tokens) < 2:
            raise lines.error(f"Expected 'Begin <block>', got '{' '.join(tokens)}'")
        block = tokens[1]
        if block == "Nodes":
            nodes = []
            for row in lines.block_rows("Nodes"):
                if len(row) != 4:
                    raise lines.error("Node row must be 'id x y z'")
                try:
                    nodes.append(Node(int(row[0]), [float(v) for v in row[1:]]))
                except ValueError as exc:
                    raise lines.error(f"Invalid node row: {exc}") from exc
            root.add_nodes(nodes)
        elif block == "Elements":
            kind = tokens[2] if len(tokens) > 2 else Element.default_kind
            root.add_elements(_read_mdpa_entities(lines, "Elements", Element, kind))
        elif block == "Conditions":
            kind = tokens[2] if len(tokens) > 2 else Condition.default_kind
            root.add_conditions(_read_mdpa_entities(lines, "Conditions", Condition, kind))
        elif block == "SubModelPart":
            if len(tokens) < 3:
                raise lines.error("SubModelPart needs a name")
            _read_sub_model_part(lines, root.create_sub_scope(tokens[2]))
        else:
            logger.debug(f"Skipping block '{block}'")
            lines.skip_block(block)
    logger.debug(f"Parsed {root} from {source}")
    return root


def _format_coordinate(value: float) -> str:
    return f"{value:.16e}"


def _group_by_kind(entities) -> List[Tuple[str, list]]:
    groups: dict = {}
    for entity in entities:
        groups.setdefault(entity.kind, []).append(entity)
    return list(groups.items())


def _write_sub_model_part(out: List[str], scope: Scope, indent: str) -> None:
    inner = indent + "    "
    out.append(f"{indent}Begin SubModelPart {scope.name}")
    out.append(f"{inner}Begin SubModelPartData")
    out.append(f"{inner}End SubModelPartData")
    out.append(f"{inner}Begin SubModelPartTables")
    out.append(f"{inner}End SubModelPartTables")
    for block, attr in _SUB_BLOCKS.items():
        out.append(f"{inner}Begin {block}")
        out.extend(f"{inner}    {entity_id}" for entity_id in getattr(scope, attr).ids())
        out.append(f"{inner}End {block}")
    for child in scope.sub_scopes():
        _write_sub_model_part(out, child, inner)
    out.append(f"{indent}End SubModelPart")


def format_mdpa(root: Scope) -> str:
    out: List[str] = ["Begin ModelPartData", "End ModelPartData", ""]

    property_ids = sorted(
        {e.properties_id for e in root.elements} | {c.properties_id for c in root.conditions}
    )
    for properties_id in property_ids:
        out += [f"Begin Properties {properties_id}", "End Properties", ""]

    out.append("Begin Nodes")
    out.extend(
        f"    {node.id} " + " ".join(_format_coordinate(v) for v in node.coordinates)
        for node in root.nodes
    )
    out += ["End Nodes", ""]

    for block, entities in (("Elements", root.elements), ("Conditions", root.conditions)):
        for kind, group in _group_by_kind(entities):
            out.append(f"Begin {block} {kind}")
            out.extend(
                f"    {e.id} {e.properties_id} " + " ".join(str(n) for n in e.node_ids)
                for e in group
            )
            out += [f"End {block}", ""]

    for child in root.sub_scopes():
        _write_sub_model_part(out, child, "")
        out.append("")
    return "\n".join(out)


# ---------------------------------------------------------------------------
# VTU export, one file per scope
# ---------------------------------------------------------------------------

VTU_CELL_TYPES = {"element": "triangle", "condition": "line"}


def scope_to_meshio(scope: Scope) -> meshio.Mesh:
    """Unstructured grid of a single scope with its entity ids as data.

    Cells are the scope's elements; a scope without elements shows its
    conditions, and a scope with neither shows its nodes as vertices.
    """
    nodes = list(scope.nodes)
    index_of = {node.id: index for index, node in enumerate(nodes)}
    points = np.array([node.coordinates for node in nodes], dtype=float).reshape(-1, 3)
    point_data = {"node_ids": np.array([node.id for node in nodes], dtype=np.int64)}

    if len(scope.elements):
        entities, data_name = list(scope.elements), "element_ids"
        cell_type = VTU_CELL_TYPES["element"]
    elif len(scope.conditions):
        entities, data_name = list(scope.conditions), "condition_ids"
        cell_type = VTU_CELL_TYPES["condition"]
    else:
        vertices = np.arange(len(nodes), dtype=np.int64).reshape(-1, 1)
        return meshio.Mesh(points, [("vertex", vertices)], point_data=point_data)

    connectivity = np.array(
        [[index_of[node_id] for node_id in entity.node_ids] for entity in entities],
        dtype=np.int64,
    )
    ids = np.array([entity.id for entity in entities], dtype=np.int64)
    return meshio.Mesh(
        points,
        [(cell_type, connectivity)],
        point_data=point_data,
        cell_data={data_name: [ids]},
    )


def write_vtu_per_scope(root: Scope, output_dir) -> List[str]:
    """Write ``<output_dir>/<scope full name>.vtu`` for every scope, parents first.

    Scopes without nodes are skipped. Returns the written paths.
    """
    output_dir = str(output_dir)
    os.makedirs(output_dir, exist_ok=True)
    written = []
    for scope in root.walk():
        if not len(scope.nodes):
            logger.debug(f"Skipping empty scope '{scope.full_name}'")
            continue
        path = os.path.join(output_dir, f"{scope.full_name}.vtu")
        meshio.write(path, scope_to_meshio(scope), file_format="vtu")
        logger.debug(f"Wrote {scope} to {path}")
        written.append(path)
    return written


# ---------------------------------------------------------------------------
# Format dispatch
# ---------------------------------------------------------------------------


def read_mesh(path) -> Scope:
    """Read a mesh hierarchy, choosing the reader from the file extension."""
    path_str = str(path)
    ext = _extension(path_str)
    if ext in MDPA_EXTENSIONS:
        with open(path_str, "r") as f:
            text = f.read()
        return parse_mdpa(text, source=path_str)
    if ext in JSON_EXTENSIONS + YAML_EXTENSIONS:
        return parse_hierarchy(load_data(path_str), source=path_str)
    logger.error(f"Unsupported file format for: {path_str}")
    raise UnsupportedFileFormatError(path_str, ext)


def write_mesh(root: Scope, path, *, compact: bool = False) -> None:
    """Write a mesh hierarchy; the whole document is rendered before the file is opened."""
    path_str = str(path)
    ext = _extension(path_str)
    if ext in MDPA_EXTENSIONS:
        text = format_mdpa(root)
    elif ext in JSON_EXTENSIONS:
        data = hierarchy_to_data(root)
        if compact:
            text = json.dumps(data, separators=(",", ":"), ensure_ascii=False)
        else:
            text = json.dumps(data, indent=4, ensure_ascii=False)
    elif ext in YAML_EXTENSIONS:
        text = yaml.safe_dump(hierarchy_to_data(root), sort_keys=False)
    else:
        logger.error(f"Unsupported file format for: {path_str}")
        raise UnsupportedFileFormatError(path_str, ext)

    parent = os.path.dirname(path_str)
    if parent:
        os.makedirs(parent, exist_ok=True)
    with open(path_str, "w") as f:
        f.write(text)
    logger.debug(f"Wrote {root} to {path_str}")

