import argparse
import warnings
import unittest.mock
import logging
import math
import sys
import traceback
import functools
from contextlib import contextmanager
from pathlib import Path

import fieldmesh.mesh
import fieldmesh.paraview
import fieldmesh.shapeio
from fieldmesh import __version__


DEFAULT_EDGE_LENGTH = 0.1


def setup_logging(debug_mode: bool):
    """Configures basic logging for the application."""
    level = logging.DEBUG if debug_mode else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[
            logging.StreamHandler()
        ]
    )


@contextmanager
def collect_warnings():
    """Context manager to collect warnings."""
    # warnings.catch_warnings would not print the warnings as they occur
    warns = []
    orig_showwarning = warnings.showwarning

    def showwarning_wrapper(message, category, filename, lineno, file=None, line=None):
        msg = warnings.WarningMessage(message, category, filename, lineno, file, line)
        warns.append(msg)
        orig_showwarning(message, category, filename, lineno, file=file, line=line)

    with unittest.mock.patch("warnings.showwarning", new=showwarning_wrapper):
        yield warns


def parse_args(argv=None):
    parser = argparse.ArgumentParser(formatter_class=argparse.ArgumentDefaultsHelpFormatter)
    parser.add_argument(
        "-d", "--debug",
        action="store_true",
        help="Enable debug logging output."
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"fieldmesh {__version__}"
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    parser_mesh = subparsers.add_parser(
        "mesh",
        help="Mesh a shape and export it to ParaView VTK format",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter
    )
    parser_mesh.add_argument("shape_file", type=Path, help="Path to the shape JSON file")
    parser_mesh.add_argument("output_file", type=Path, help="Path of the .vtu file to write")
    parser_mesh.add_argument(
        "--edge-length",
        type=float,
        default=DEFAULT_EDGE_LENGTH,
        help="Longest triangle edge permitted, 0 for no refinement"
    )

    parser_check = subparsers.add_parser(
        "check",
        help="Check a shape for geometry problems",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter
    )
    parser_check.add_argument("shape_file", type=Path, help="Path to the shape JSON file")

    parser_xy = subparsers.add_parser(
        "xy",
        help="Write the shape boundary as x y lines",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter
    )
    parser_xy.add_argument("shape_file", type=Path, help="Path to the shape JSON file")
    parser_xy.add_argument("output_file", type=Path, help="Path of the text file to write")

    return parser.parse_args(argv)


def handle_errors(func):
    """Decorator for handling errors with enhanced display."""
    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except Exception as e:
            traceback.print_exc()
            # Bold yellow
            print(f"\033[1;33m{str(e)}\033[0m")
            sys.exit(1)
    return wrapper


@handle_errors
def do_mesh(args):
    log = logging.getLogger(__name__)
    shape = fieldmesh.shapeio.load_shape(args.shape_file)

    with collect_warnings() as warns:
        m = fieldmesh.mesh.Mesh(shape, args.edge_length)

    mesh_warnings = [w for w in warns if issubclass(w.category, fieldmesh.mesh.MeshWarning)]
    if not m.valid:
        log.error(f"Meshing failed: {m.error}")
        return 1
    if mesh_warnings:
        log.info(f"{len(mesh_warnings)} mesh warnings")

    stats = m.stats()
    log.info(
        f"{stats['points']} points, {stats['triangles']} triangles, "
        f"longest edge {stats['longest_edge']:.4g}"
    )
    fieldmesh.paraview.export_mesh(m, args.output_file)
    return 0


@handle_errors
def do_check(args):
    shape = fieldmesh.shapeio.load_shape(args.shape_file)
    error = shape.geometry_error()
    print(f"pieces: {shape.num_pieces}")
    if error:
        print(f"error: {error}")
        return 1
    print(f"area: {shape.total_area().value:.10g}")
    print(f"sharpest angle: {math.degrees(shape.sharpest_angle()):.4g} degrees")
    return 0


@handle_errors
def do_xy(args):
    log = logging.getLogger(__name__)
    shape = fieldmesh.shapeio.load_shape(args.shape_file)
    fieldmesh.shapeio.save_boundary_as_xy(shape, args.output_file)
    log.info(f"Boundary written to {args.output_file}")
    return 0


def main(argv=None):
    args = parse_args(argv)
    setup_logging(args.debug)

    log = logging.getLogger(__name__)
    log.debug(f"Parsed arguments: {args}")

    command_func = {
        "mesh": do_mesh,
        "check": do_check,
        "xy": do_xy,
    }[args.command]
    result = command_func(args)

    if isinstance(result, int):
        sys.exit(result)


if __name__ == "__main__":
    main()
