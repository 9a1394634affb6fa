import enum
import logging
import math

import numpy as np
import scipy.spatial
import shapely
import shapely.geometry

from dataclasses import dataclass, field, replace
from typing import Iterable, Optional, Sequence, Union

from . import clipping
from .dual import Dual, Number
from . import dual
from .edges import EdgeInfo, EdgeKind, DEFAULT_EDGE
from .geometry import XY, any_point_in_poly, interior_angle, project_onto_segment

log = logging.getLogger(__name__)

# This file holds the boundary description that gets passed to the mesher.
# A shape is a list of pieces, each a closed polygon whose winding decides
# whether it is an outer boundary (anticlockwise) or a hole (clockwise).

Scalar = Union[Dual, Number]


@dataclass(frozen=True, eq=False)
class Material:
    """
    Interior properties of a piece.
    """
    # 0xrrggbb, for drawing only
    color: int = 0xe0e0ff
    # Multiplies k^2 in the field problem. 1 is vacuum.
    epsilon: Dual = Dual(1 + 0j, 0j)
    # Key of a property callback computing epsilon from (x, y), see
    # fieldmesh.properties.PropertyRegistry. Empty if there is none.
    callback: str = ""

    def _key(self):
        return (self.color, complex(self.epsilon.value), self.callback)

    # Derivatives do not take part in comparisons
    def __eq__(self, other) -> bool:
        if not isinstance(other, Material):
            return NotImplemented
        return self._key() == other._key()

    def __hash__(self) -> int:
        return hash(self._key())

    def with_parameters(self, parameters: Sequence[Scalar]) -> "Material":
        """
        Return a copy with epsilon set from a parameter list: one value sets
        a real epsilon, two values set the real and imaginary parts.
        """
        if len(parameters) == 0:
            return self
        if len(parameters) == 1:
            eps = Dual.lift(parameters[0])
            return replace(self, epsilon=Dual(complex(eps.value), complex(eps.derivative)))
        re = Dual.lift(parameters[0])
        im = Dual.lift(parameters[1])
        return replace(self, epsilon=Dual(
            complex(re.value, im.value),
            complex(re.derivative, im.derivative),
        ))


@dataclass(frozen=True)
class BoundaryPoint:
    x: Dual
    y: Dual
    # Describes the edges leaving and entering this point
    edge: EdgeInfo = DEFAULT_EDGE

    @property
    def xy(self) -> XY:
        return (self.x.value, self.y.value)


@dataclass
class Piece:
    points: list[BoundaryPoint] = field(default_factory=list)
    material: Material = field(default_factory=Material)

    def coords(self) -> list[XY]:
        return [p.xy for p in self.points]


class CornerStyle(enum.Enum):
    SQUARE = "SQUARE"
    ROUND = "ROUND"
    MITER = "MITER"
    BUTT = "BUTT"


class Shape:
    """
    An ordered list of pieces. Pieces may share edges and points with other
    pieces (e.g. adjacent regions of different materials) but they are stored
    independently.
    """

    def __init__(self, pieces: Optional[Iterable[Piece]] = None):
        self._pieces: list[Piece] = [
            Piece(list(p.points), p.material) for p in (pieces or [])
        ]

    @classmethod
    def from_rings(cls,
                   *rings: Sequence[tuple],
                   material: Optional[Material] = None) -> "Shape":
        """
        Build a shape from rings of (x, y) or (x, y, dx, dy) tuples, where
        dx and dy are the coordinate derivatives.
        """
        shape = cls()
        for ring in rings:
            shape.add_piece(ring, material)
        return shape

    def __eq__(self, other) -> bool:
        if not isinstance(other, Shape):
            return NotImplemented
        return self._pieces == other._pieces

    def __repr__(self) -> str:
        return f"Shape({self.num_pieces} pieces)"

    def copy(self) -> "Shape":
        return Shape(self._pieces)

    def clear(self) -> None:
        self._pieces = []

    def swap(self, other: "Shape") -> None:
        self._pieces, other._pieces = other._pieces, self._pieces

    @property
    def is_empty(self) -> bool:
        return not self._pieces or not self._pieces[0].points

    @property
    def num_pieces(self) -> int:
        return len(self._pieces)

    def piece(self, n: int) -> tuple[BoundaryPoint, ...]:
        return tuple(self._pieces[n].points)

    def material(self, n: int) -> Material:
        return self._pieces[n].material

    def coords(self, n: int) -> list[XY]:
        return self._pieces[n].coords()

    def rings(self) -> list[list[XY]]:
        return [p.coords() for p in self._pieces]

    def set_to_piece(self, n: int, other: "Shape") -> None:
        piece = other._pieces[n]
        self._pieces = [Piece(list(piece.points), piece.material)]

    def set_material(self, material: Material) -> None:
        for piece in self._pieces:
            piece.material = material

    # ------------------------------------------------------------------
    # Construction

    def add_piece(self, ring: Sequence[tuple], material: Optional[Material] = None) -> None:
        self._pieces.append(Piece([], material if material is not None else Material()))
        for item in ring:
            if isinstance(item, BoundaryPoint):
                self._pieces[-1].points.append(item)
            elif len(item) == 4:
                self.add_point(Dual(item[0], item[2]), Dual(item[1], item[3]))
            else:
                self.add_point(item[0], item[1])

    def add_point(self, x: Scalar, y: Scalar) -> None:
        """Add a point to the last piece in the shape."""
        if not self._pieces:
            self._pieces.append(Piece())
        self._pieces[-1].points.append(BoundaryPoint(Dual.lift(x), Dual.lift(y)))

    def make_polyline(self) -> None:
        """
        Turn the last piece into a polyline by adding points s[n-2], ..., s[1],
        making a zero area polygon that retraces itself.
        """
        if not self._pieces:
            return
        points = self._pieces[-1].points
        for i in range(len(points) - 2, 0, -1):
            points.append(BoundaryPoint(points[i].x, points[i].y))

    def set_rectangle(self, x1: Scalar, y1: Scalar, x2: Scalar, y2: Scalar) -> None:
        self.clear()
        self.add_point(x1, y1)
        self.add_point(x2, y1)
        self.add_point(x2, y2)
        self.add_point(x1, y2)
        if self.area(0) < 0:
            self.reverse()

    def set_circle(self, x: Scalar, y: Scalar, radius: Scalar, npoints: int) -> None:
        if npoints < 3:
            raise ValueError(f"A circle needs at least 3 points, got {npoints}")
        self.clear()
        radius = Dual.lift(radius)
        for i in range(npoints):
            theta = 2 * math.pi * i / npoints
            self.add_point(radius * math.cos(theta) + x, radius * math.sin(theta) + y)

    # ------------------------------------------------------------------
    # Measurements

    def area(self, n: int) -> Dual:
        """
        Area of the n'th piece. Outer pieces have positive area, holes
        negative area.
        """
        points = self._pieces[n].points
        count = len(points)
        total = Dual(0.0)
        for i in range(count):
            p = points[i]
            q = points[(i + 1) % count]
            total = total + (p.x * q.y - q.x * p.y)
        return total * 0.5

    def total_area(self) -> Dual:
        total = Dual(0.0)
        for n in range(self.num_pieces):
            total = total + self.area(n)
        return total

    def orientation(self, n: int) -> bool:
        """True for outer (anticlockwise) pieces, False for holes."""
        return self.area(n) >= 0

    def sharpest_angle(self) -> float:
        """
        The smallest convex angle over all pieces, measured on the material
        side of the boundary. 0 is maximally sharp, pi is the least sharp
        (and is also returned for shapes without any convex corner).
        """
        sharpest = math.pi
        for piece in self._pieces:
            coords = piece.coords()
            n = len(coords)
            if n < 3:
                continue
            for i in range(n):
                angle = interior_angle(coords[i - 1], coords[i], coords[(i + 1) % n])
                if angle <= math.pi:
                    sharpest = min(sharpest, angle)
        return sharpest

    def extreme_side_lengths(self) -> tuple[Dual, Dual]:
        """Return the (longest, shortest) side lengths."""
        longest = None
        shortest = None
        for piece in self._pieces:
            points = piece.points
            for i, p in enumerate(points):
                q = points[(i + 1) % len(points)]
                length = dual.hypot(q.x - p.x, q.y - p.y)
                if longest is None or length > longest:
                    longest = length
                if shortest is None or length < shortest:
                    shortest = length
        if longest is None:
            raise ValueError("Shape is empty")
        return longest, shortest

    def bounds(self) -> tuple[Dual, Dual, Dual, Dual]:
        """
        Return (min_x, min_y, max_x, max_y).

        Raises:
            ValueError: If the shape is empty
        """
        points = [p for piece in self._pieces for p in piece.points]
        if not points:
            raise ValueError("Can not compute the bounds of an empty shape")
        min_x = min((p.x for p in points), key=lambda d: d.value)
        max_x = max((p.x for p in points), key=lambda d: d.value)
        min_y = min((p.y for p in points), key=lambda d: d.value)
        max_y = max((p.y for p in points), key=lambda d: d.value)
        return min_x, min_y, max_x, max_y

    def geometry_error(self, enforce_positive_area: bool = True) -> Optional[str]:
        """
        Return None if the shape geometry is well formed, otherwise a message
        describing the first problem found. If enforce_positive_area is True
        then only positive area pieces and negative area holes are allowed.
        """
        if not self._pieces:
            return "Shape is empty"
        for n, piece in enumerate(self._pieces):
            coords = piece.coords()
            if not coords:
                return f"Piece {n} is empty"
            if len(coords) < 3:
                return f"Piece {n} has fewer than 3 points"
            for i, xy in enumerate(coords):
                if xy == coords[(i + 1) % len(coords)]:
                    return f"Piece {n} has a zero length edge at point {i}"
            if self.area(n).value == 0:
                if enforce_positive_area:
                    return f"Piece {n} has zero area"
                # Polylines retrace themselves and are never simple
                continue
            if not shapely.geometry.LinearRing(coords).is_simple:
                return f"Piece {n} is self intersecting"
        if enforce_positive_area and self.total_area().value <= 0:
            return "Shape does not have positive area"
        return None

    def contains(self, x: Scalar, y: Scalar) -> int:
        """
        Return 0 if (x, y) is outside the shape, 1 if it is inside and -1 if
        it is exactly on the boundary. Points inside holes are outside.
        """
        geometry = clipping.rings_to_geometry(self.rings())
        point = shapely.geometry.Point(float(Dual.lift(x)), float(Dual.lift(y)))
        if geometry.contains(point):
            return 1
        if geometry.touches(point):
            return -1
        return 0

    def a_point_inside(self) -> Optional[XY]:
        """
        Return a point that is guaranteed to be inside the shape. This works
        for a nonempty single piece of any orientation, or for a single
        positive area piece with any number of holes. Returns None for other
        cases.
        """
        if self.is_empty:
            return None
        if self.num_pieces == 1:
            return any_point_in_poly(self.coords(0))
        outer = [n for n in range(self.num_pieces) if self.area(n) > 0]
        holes = [n for n in range(self.num_pieces) if self.area(n) < 0]
        if len(outer) != 1:
            return None
        return any_point_in_poly(self.coords(outer[0]), [self.coords(h) for h in holes])

    def find_closest_edge(self, x: Scalar, y: Scalar) -> tuple[int, int]:
        """
        Return (piece, edge) of the edge closest to (x, y), where edge N runs
        from vertex N to vertex N + 1.
        """
        if self.is_empty:
            raise ValueError("Shape is empty")
        xy = (float(Dual.lift(x)), float(Dual.lift(y)))
        best = None
        for n, piece in enumerate(self._pieces):
            coords = piece.coords()
            for i in range(len(coords)):
                _, d = project_onto_segment(xy, coords[i], coords[(i + 1) % len(coords)])
                if best is None or d < best[0]:
                    best = (d, n, i)
        return best[1], best[2]

    def find_closest_vertex(self, x: Scalar, y: Scalar) -> tuple[int, int]:
        """Return (piece, index) of the vertex closest to (x, y)."""
        if self.is_empty:
            raise ValueError("Shape is empty")
        owners = []
        coords = []
        for n, piece in enumerate(self._pieces):
            for i, xy in enumerate(piece.coords()):
                owners.append((n, i))
                coords.append(xy)
        tree = scipy.spatial.cKDTree(np.array(coords))
        _, idx = tree.query([float(Dual.lift(x)), float(Dual.lift(y))])
        return owners[int(idx)]

    # ------------------------------------------------------------------
    # Edge kinds

    def assign_port(self, piece: int, edge: int, kind: EdgeKind) -> bool:
        """
        Set the given piece, edge to the given edge kind. Returns False if
        the edge already has a different non-default kind.
        """
        if not 0 <= piece < self.num_pieces:
            raise ValueError(f"Piece index {piece} out of range")
        points = self._pieces[piece].points
        if not 0 <= edge < len(points):
            raise ValueError(f"Edge index {edge} out of range for piece {piece}")

        nxt = (edge + 1) % len(points)
        existing = points[edge].edge.kind[0]
        if not existing.is_default and existing != kind:
            return False
        existing = points[nxt].edge.kind[1]
        if not existing.is_default and existing != kind:
            return False

        points[edge] = replace(points[edge], edge=points[edge].edge.with_outgoing(kind))
        points[nxt] = replace(points[nxt], edge=points[nxt].edge.with_incoming(kind))
        self._update_port_distances(piece)
        return True

    def _update_port_distances(self, piece: int) -> None:
        # Each port is parameterized by normalized arc length along all of its
        # edges in this piece, starting from the first edge of a run
        points = self._pieces[piece].points
        n = len(points)
        ports = {p.edge.kind[0] for p in points if p.edge.kind[0].port}
        for kind in sorted(ports, key=lambda k: k.port):
            in_port = [points[i].edge.kind[0] == kind for i in range(n)]
            start = 0
            for i in range(n):
                if in_port[i] and not in_port[i - 1]:
                    start = i
                    break
            order = [(start + k) % n for k in range(n) if in_port[(start + k) % n]]
            lengths = []
            for i in order:
                a, b = points[i].xy, points[(i + 1) % n].xy
                lengths.append(math.hypot(b[0] - a[0], b[1] - a[1]))
            total = sum(lengths)
            if total == 0:
                continue
            travelled = 0.0
            for i, length in zip(order, lengths):
                j = (i + 1) % n
                d_start = travelled / total
                travelled += length
                d_end = travelled / total
                points[i] = replace(points[i], edge=points[i].edge.with_outgoing(kind, d_start))
                points[j] = replace(points[j], edge=points[j].edge.with_incoming(kind, d_end))

    # ------------------------------------------------------------------
    # Boolean operations

    def _whole(self) -> shapely.Geometry:
        return clipping.rings_to_geometry(self.rings())

    def _regions(self) -> list[tuple[Material, shapely.Geometry]]:
        # A material owns the area its own rings wind around. Holes cut all
        # materials, whatever material the hole piece carries.
        whole = self._whole()
        groups: dict[Material, list[list[XY]]] = {}
        for piece in self._pieces:
            groups.setdefault(piece.material, []).append(piece.coords())
        return [
            (material, clipping.rings_to_geometry(rings).intersection(whole))
            for material, rings in groups.items()
            if rings
        ]

    def _assign_regions(self,
                        regions: list[tuple[Material, shapely.Geometry]],
                        sources: list["Shape"]) -> None:
        merged: dict[Material, list[shapely.Geometry]] = {}
        for material, geometry in regions:
            if geometry.is_empty:
                continue
            merged.setdefault(material, []).append(geometry)

        source_points = [p.points for s in sources for p in s._pieces]
        pieces = []
        for material, geometries in merged.items():
            rings = clipping.geometry_to_rings(shapely.union_all(geometries))
            for ring in clipping.restore_rings(rings, source_points):
                pieces.append(Piece(
                    [BoundaryPoint(x, y, e) for x, y, e in ring],
                    material,
                ))
        self._pieces = pieces

    def set_intersect(self, c1: "Shape", c2: "Shape") -> None:
        w2 = c2._whole()
        self._assign_regions([(m, g.intersection(w2)) for m, g in c1._regions()], [c1, c2])

    def set_union(self, c1: "Shape", c2: "Shape") -> None:
        w2 = c2._whole()
        regions = [(m, g.difference(w2)) for m, g in c1._regions()]
        regions += c2._regions()
        self._assign_regions(regions, [c1, c2])

    def set_difference(self, c1: "Shape", c2: "Shape") -> None:
        w2 = c2._whole()
        self._assign_regions([(m, g.difference(w2)) for m, g in c1._regions()], [c1, c2])

    def set_xor(self, c1: "Shape", c2: "Shape") -> None:
        w1 = c1._whole()
        w2 = c2._whole()
        regions = [(m, g.difference(w2)) for m, g in c1._regions()]
        regions += [(m, g.difference(w1)) for m, g in c2._regions()]
        self._assign_regions(regions, [c1, c2])

    def paint(self, s: "Shape", material: Material) -> None:
        """
        Paint material into this shape where it overlaps s. This splits
        pieces into unmerged pieces with different materials.
        """
        painted = s._whole()
        regions = [(m, g.difference(painted)) for m, g in self._regions()]
        regions.append((material, self._whole().intersection(painted)))
        self._assign_regions(regions, [self, s])

    def set_merge(self, s: "Shape") -> None:
        """
        Set this shape to s with all adjacent pieces merged together,
        erasing the distinction between materials. This undoes paint().
        """
        material = s.material(0) if s.num_pieces else Material()
        self._assign_regions([(material, s._whole())], [s])

    # ------------------------------------------------------------------
    # Transformations. All of them preserve the orientation except reverse().

    def _map_points(self, func) -> None:
        for piece in self._pieces:
            piece.points = [func(p) for p in piece.points]

    def offset(self, dx: Scalar, dy: Scalar) -> None:
        self._map_points(lambda p: replace(p, x=p.x + dx, y=p.y + dy))

    def scale(self, scalex: Scalar, scaley: Scalar) -> None:
        self._map_points(lambda p: replace(p, x=p.x * scalex, y=p.y * scaley))
        if float(Dual.lift(scalex)) * float(Dual.lift(scaley)) < 0:
            self.reverse()

    def rotate(self, theta: Scalar) -> None:
        """Rotate anticlockwise about the origin, theta in degrees."""
        radians = Dual.lift(theta) * (math.pi / 180)
        c = dual.cos(radians)
        s = dual.sin(radians)
        self._map_points(lambda p: replace(p, x=c * p.x - s * p.y, y=s * p.x + c * p.y))

    def mirror_x(self, x_coord: Scalar) -> None:
        """Mirror about the line x == x_coord."""
        self._map_points(lambda p: replace(p, x=x_coord * 2 - p.x))
        self.reverse()

    def mirror_y(self, y_coord: Scalar) -> None:
        """Mirror about the line y == y_coord."""
        self._map_points(lambda p: replace(p, y=y_coord * 2 - p.y))
        self.reverse()

    def reverse(self) -> None:
        for piece in self._pieces:
            piece.points = [replace(p, edge=p.edge.reversed()) for p in reversed(piece.points)]

    def grow(self,
             delta: Scalar,
             style: CornerStyle,
             limit: Scalar,
             endcap_style: CornerStyle = CornerStyle.BUTT) -> None:
        """
        Grow (delta > 0) or shrink (delta < 0) the shape. Only positive area
        pieces (with holes) and polylines are supported. For MITER, limit is
        the miter limit. For ROUND, limit is the maximum distance between the
        polygon approximation of an arc and the true circle.
        """
        material = self.material(0) if self._pieces else Material()
        geometry = clipping.grow(
            self.rings(),
            float(Dual.lift(delta)),
            style.value,
            float(Dual.lift(limit)),
            endcap_style.value,
        )
        self._assign_regions([(material, geometry)], [self])

    def clean(self, threshold: Scalar = 0) -> None:
        """
        Remove vertices closer than threshold to the previous kept vertex. A
        zero threshold means a small fraction of the longest side length.
        Pieces left with fewer than 3 points are dropped.
        """
        if self.is_empty:
            return
        threshold = float(Dual.lift(threshold))
        if threshold == 0:
            longest, _ = self.extreme_side_lengths()
            threshold = longest.value * 1e-6

        pieces = []
        for piece in self._pieces:
            kept: list[BoundaryPoint] = []
            for p in piece.points:
                if kept:
                    q = kept[-1]
                    if math.hypot(p.xy[0] - q.xy[0], p.xy[1] - q.xy[1]) < threshold:
                        continue
                kept.append(p)
            while len(kept) > 1:
                a, b = kept[0].xy, kept[-1].xy
                if math.hypot(a[0] - b[0], a[1] - b[1]) >= threshold:
                    break
                kept.pop()
            if len(kept) >= 3:
                pieces.append(Piece(kept, piece.material))
            else:
                log.debug(f"Dropping piece with {len(kept)} points after cleaning")
        self._pieces = pieces
