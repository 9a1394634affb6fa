import json
import logging

from dataclasses import replace
from pathlib import Path
from typing import Union

from .dual import Dual
from .edges import EdgeKind
from .shape import Material, Shape

log = logging.getLogger(__name__)

# Shapes on disk are JSON documents of the form
#
#   {"pieces": [{"points": [[x, y], [x, y, dx, dy], ...],
#                "material": {"color": 0xe0e0ff, "epsilon": [re, im],
#                             "epsilon_derivative": [re, im], "callback": "..."},
#                "ports": {"0": {"port": 1}, "2": {"abc": true}}}]}
#
# where the optional dx, dy are coordinate derivatives, callback is a
# PropertyRegistry key and the ports map is keyed by edge index within the
# piece.

PathLike = Union[str, Path]


class ShapeFormatError(ValueError):
    pass


def _complex(values, what: str) -> complex:
    if isinstance(values, (int, float)):
        values = [values]
    if not 1 <= len(values) <= 2:
        raise ShapeFormatError(f"{what} must have 1 or 2 components, got {values!r}")
    return complex(*(float(v) for v in values))


def _parse_material(data: dict) -> Material:
    if not isinstance(data, dict):
        raise ShapeFormatError(f"Material must be an object, got {data!r}")
    material = Material(color=int(data.get("color", Material.color)))
    epsilon = data.get("epsilon")
    if epsilon is not None:
        value = _complex(epsilon, "epsilon")
        derivative = _complex(data.get("epsilon_derivative", 0.0), "epsilon_derivative")
        material = replace(material, epsilon=Dual(value, derivative))
    callback = data.get("callback", "")
    if not isinstance(callback, str):
        raise ShapeFormatError(f"callback must be a string, got {callback!r}")
    return replace(material, callback=callback)


def _parse_kind(data: dict) -> EdgeKind:
    if data.get("abc"):
        return EdgeKind.absorbing()
    if "port" in data:
        return EdgeKind.port_number(int(data["port"]))
    raise ShapeFormatError(f"Edge kind must name a port or abc, got {data!r}")


def shape_from_dict(data: dict) -> Shape:
    if not isinstance(data, dict) or not isinstance(data.get("pieces"), list):
        raise ShapeFormatError("Shape document must have a list of pieces")

    shape = Shape()
    for n, piece in enumerate(data["pieces"]):
        points = piece.get("points")
        if not isinstance(points, list):
            raise ShapeFormatError(f"Piece {n} has no point list")
        ring = []
        for p in points:
            if len(p) not in (2, 4):
                raise ShapeFormatError(f"Piece {n}: points need 2 or 4 numbers, got {p!r}")
            ring.append(tuple(float(v) for v in p))
        shape.add_piece(ring, _parse_material(piece.get("material", {})))

        for edge, kind in piece.get("ports", {}).items():
            if not shape.assign_port(n, int(edge), _parse_kind(kind)):
                log.warning(f"Piece {n} edge {edge} already has a different kind, ignoring")
    return shape


def shape_to_dict(shape: Shape) -> dict:
    pieces = []
    for n in range(shape.num_pieces):
        points = []
        ports = {}
        for j, p in enumerate(shape.piece(n)):
            if p.x.derivative or p.y.derivative:
                points.append([p.x.value, p.y.value, p.x.derivative, p.y.derivative])
            else:
                points.append([p.x.value, p.y.value])
            kind = p.edge.kind[0]
            if kind.abc:
                ports[str(j)] = {"abc": True}
            elif kind.port:
                ports[str(j)] = {"port": kind.port}
        material = shape.material(n)
        eps = complex(material.epsilon.value)
        material_entry = {"color": material.color, "epsilon": [eps.real, eps.imag]}
        deps = complex(material.epsilon.derivative)
        if deps:
            material_entry["epsilon_derivative"] = [deps.real, deps.imag]
        if material.callback:
            material_entry["callback"] = material.callback
        entry = {"points": points, "material": material_entry}
        if ports:
            entry["ports"] = ports
        pieces.append(entry)
    return {"pieces": pieces}


def load_shape(path: PathLike) -> Shape:
    log.info(f"Loading shape from {path}")
    with open(path, "r") as f:
        try:
            data = json.load(f)
        except json.JSONDecodeError as e:
            raise ShapeFormatError(f"{path}: {e}") from e
    return shape_from_dict(data)


def save_shape(shape: Shape, path: PathLike) -> None:
    with open(path, "w") as f:
        json.dump(shape_to_dict(shape), f, indent=2)


def save_boundary_as_xy(shape: Shape, path: PathLike) -> None:
    """
    Write the shape boundary as "x y" lines, each piece closed by repeating
    its first point and followed by a blank line. Readable by gnuplot.
    """
    with open(path, "w") as f:
        for n in range(shape.num_pieces):
            coords = shape.coords(n)
            for x, y in coords + coords[:1]:
                f.write(f"{x:.10g} {y:.10g}\n")
            f.write("\n")
