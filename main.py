import argparse
import logging
import os
import sys

from core.exceptions import MeshRefinerError
from geometry.geom_io import (
    has_mesh_extension,
    load_data,
    read_mesh,
    resolve_mesh_path,
    write_mesh,
    write_vtu_per_scope,
)
from mesh_refiner import __version__
from parameters.global_parameters import GlobalParameters
from runtime.logging_config import setup_logging
from runtime.refinement import refine_hierarchy
from runtime.transforms import scale_coordinates, summarize_hierarchy

logger = logging.getLogger("mesh_refiner")


def resolve_output_path(output: str, input_path: str) -> str:
    """Give an output base name the extension of the input file.

    Only a known mesh extension counts as one, so `fine_0.25` is a base name.
    """
    if has_mesh_extension(output):
        return output
    return output + os.path.splitext(input_path)[1]


def _add_common_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "-j",
        "--workers",
        type=int,
        default=None,
        help="Number of worker threads (default: parameter file or CPU count).",
    )
    parser.add_argument(
        "--config",
        default=None,
        help="Optional YAML/JSON file with run parameters.",
    )
    parser.add_argument(
        "--compact-output-json",
        action="store_true",
        help="Write JSON output in compact (single-line) form.",
    )
    parser.add_argument("--log", default=None, help="Optional log file")
    parser.add_argument(
        "-q", "--quiet", action="store_true", help="Suppress console output"
    )
    parser.add_argument(
        "--debug", action="store_true", help="Enable verbose debug logging"
    )
    parser.add_argument(
        "--version", action="version", version=f"%(prog)s {__version__}"
    )


def _load_parameters(args) -> GlobalParameters:
    params = GlobalParameters()
    if args.config:
        data = load_data(args.config) or {}
        if not isinstance(data, dict):
            raise ValueError(f"Parameter file '{args.config}' must contain a mapping")
        params.update(data.get("parameters", data))
    if args.workers is not None:
        params.set("num_workers", args.workers)
    if args.compact_output_json:
        params.set("compact_output", True)
    if getattr(args, "strict_manifold", False):
        params.set("strict_manifold", True)
    if getattr(args, "nondeterministic", False):
        params.set("deterministic", False)
    return params.validate()


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(
        prog="mesh-refine",
        description=(
            "Uniformly refine a triangle mesh: every element is split into 4 and "
            "every condition into 2. Paths may omit the extension."
        ),
    )
    parser.add_argument("input", help="Input mesh (.mdpa, .json, .yaml)")
    parser.add_argument("output", help="Output mesh (.mdpa, .json, .yaml)")
    parser.add_argument(
        "--strict-manifold",
        action="store_true",
        help="Abort if an edge is shared by more than two elements.",
    )
    parser.add_argument(
        "--nondeterministic",
        action="store_true",
        help="Register midpoints from the worker threads directly; node ids then depend on scheduling.",
    )
    _add_common_arguments(parser)
    args = parser.parse_args(argv)

    global logger
    logger = setup_logging(args.log, quiet=args.quiet, debug=args.debug)

    try:
        params = _load_parameters(args)
        input_path = resolve_mesh_path(args.input)
        output_path = resolve_output_path(args.output, input_path)
        logger.info(f"Input mesh name : {input_path}")
        logger.info(f"Output mesh name: {output_path}")

        source = read_mesh(input_path)
        logger.info("Input hierarchy:\n%s", summarize_hierarchy(source))

        refined = refine_hierarchy(source, params)
        logger.info("Output hierarchy:\n%s", summarize_hierarchy(refined))

        write_mesh(refined, output_path, compact=params.compact_output)
    except (MeshRefinerError, OSError, ValueError) as exc:
        logger.error(f"Refinement failed: {exc}")
        return 1

    logger.info(f"Refinement complete. Output saved to {output_path}")
    return 0


def scale_main(argv=None) -> int:
    parser = argparse.ArgumentParser(
        prog="mesh-scale",
        description="Multiply every node coordinate of a mesh by a scaling factor.",
    )
    parser.add_argument("input", help="Input mesh (.mdpa, .json, .yaml)")
    parser.add_argument("output", help="Output mesh (.mdpa, .json, .yaml)")
    parser.add_argument("factor", type=float, help="Scaling factor")
    _add_common_arguments(parser)
    args = parser.parse_args(argv)

    global logger
    logger = setup_logging(args.log, quiet=args.quiet, debug=args.debug)

    try:
        params = _load_parameters(args)
        input_path = resolve_mesh_path(args.input)
        output_path = resolve_output_path(args.output, input_path)
        logger.info(f"Input mesh name : {input_path}")
        logger.info(f"Output mesh name: {output_path}")
        logger.info(f"Scaling factor  : {args.factor}")

        source = read_mesh(input_path)
        scaled = scale_coordinates(
            source,
            args.factor,
            num_workers=params.num_workers,
            chunk_size=params.chunk_size,
        )
        write_mesh(scaled, output_path, compact=params.compact_output)
    except (MeshRefinerError, OSError, ValueError) as exc:
        logger.error(f"Scaling failed: {exc}")
        return 1

    logger.info(f"Scaling complete. Output saved to {output_path}")
    return 0


def visualize_main(argv=None) -> int:
    parser = argparse.ArgumentParser(
        prog="mesh-visualize",
        description=(
            "Write one VTU file per scope with node, element and condition ids "
            "attached, for inspection in ParaView."
        ),
    )
    parser.add_argument("input", help="Input mesh (.mdpa, .json, .yaml)")
    parser.add_argument(
        "-o",
        "--output-dir",
        default=None,
        help="Directory for the VTU files (default: input path without extension).",
    )
    _add_common_arguments(parser)
    args = parser.parse_args(argv)

    global logger
    logger = setup_logging(args.log, quiet=args.quiet, debug=args.debug)

    try:
        input_path = resolve_mesh_path(args.input)
        output_dir = args.output_dir or os.path.splitext(input_path)[0]
        logger.info(f"Input mesh name : {input_path}")
        logger.info(f"Output directory: {output_dir}")

        source = read_mesh(input_path)
        logger.info("Input hierarchy:\n%s", summarize_hierarchy(source))
        written = write_vtu_per_scope(source, output_dir)
    except (MeshRefinerError, OSError, ValueError) as exc:
        logger.error(f"Visualization output failed: {exc}")
        return 1

    logger.info(f"Wrote {len(written)} VTU files to {output_dir}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
