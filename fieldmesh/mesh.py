import logging
import math
import warnings

import numpy as np

from dataclasses import dataclass, replace
from typing import Generic, Hashable, Iterator, Optional, TypeVar

from . import triangulate
from .dual import Dual
from .edges import EdgeInfo, EdgeKind, DEFAULT_EDGE
from .geometry import XY, any_point_in_poly, project_onto_segment, rings_inside
from .properties import PropertyEvaluator, PropertyEvaluationError, determine_point_dielectric
from .shape import Material, Shape, BoundaryPoint
from .spatial import SpatialIndex

log = logging.getLogger(__name__)

# The purpose of this module is to generate triangular meshes from shapes,
# keeping track of which boundary each mesh point came from so that edge
# kinds and coordinate derivatives survive refinement.

# Extremely acute angles make refinement consume a huge amount of time and
# memory, shapes with sharper angles than this are rejected.
SHARPEST_ALLOWABLE_ANGLE = 1e-4


class MeshWarning(Warning):
    """
    A warning about geometry that can not be meshed. The mesh is left
    invalid, but this is not an error of the program.
    """
    pass


class MeshingException(RuntimeError):
    """
    Raised when a mesh is used inconsistently, e.g. refreshing derivatives
    from a shape whose topology changed since the mesh was built.
    """
    pass


class MeshInvariantError(MeshingException):
    """
    The triangulation library returned something that breaks the contract
    between it and the mesher. Not recoverable.
    """
    pass


_reported_errors: set[str] = set()


def _report_once(message: str) -> None:
    if message in _reported_errors:
        log.debug(message)
        return
    _reported_errors.add(message)
    log.warning(message)
    warnings.warn(message, MeshWarning)


T = TypeVar("T", bound=Hashable)


class IndexMap(Generic[T]):
    """
    A simple class that maps objects to indices and vice versa.
    """

    def __init__(self):
        self._obj_to_idx: dict[T, int] = {}
        self._idx_to_obj: list[T] = []

    def add(self, obj: T) -> int:
        if obj not in self._obj_to_idx:
            idx = len(self._idx_to_obj)
            self._obj_to_idx[obj] = idx
            self._idx_to_obj.append(obj)
        return self._obj_to_idx[obj]

    def to_index(self, obj: T) -> int:
        return self._obj_to_idx[obj]

    def to_object(self, idx: int) -> T:
        return self._idx_to_obj[idx]

    def __len__(self) -> int:
        return len(self._idx_to_obj)

    def __iter__(self) -> Iterator[T]:
        return iter(self._idx_to_obj)

    def __contains__(self, obj: T) -> bool:
        return obj in self._obj_to_idx

    def items(self) -> Iterator[tuple[int, T]]:
        for idx, obj in enumerate(self._idx_to_obj):
            yield idx, obj


@dataclass(frozen=True)
class MeshPoint:
    x: Dual
    y: Dual
    edge: EdgeInfo = DEFAULT_EDGE
    # For points on the boundary, the piece and edge of the original shape
    # the point was copied or interpolated from. -1 for interior points.
    original_piece: int = -1
    original_edge: int = -1

    @property
    def xy(self) -> XY:
        return (self.x.value, self.y.value)

    @property
    def on_boundary(self) -> bool:
        return self.original_piece >= 0


@dataclass(frozen=True)
class Triangle:
    index: tuple[int, int, int]       # Anticlockwise point indices
    material: int                     # Index into Mesh.materials
    # neighbor[j] is the triangle across the edge index[j] -> index[(j+1)%3],
    # or -1 if that edge is on the mesh boundary
    neighbor: tuple[int, int, int]


@dataclass(frozen=True)
class BoundaryEdge:
    triangle: int
    edge: int            # Local edge of the triangle
    p1: int
    p2: int
    kind: EdgeKind
    dist1: float
    dist2: float


class Mesh:
    """
    A conforming triangle mesh of a shape.

    Construction never raises for bad geometry: the mesh is left invalid
    (`valid` is False, `error` says why) and all queries on it report
    absence. Points keep the derivatives of the shape they were built from,
    see update_derivatives().
    """

    def __init__(self,
                 shape: Shape,
                 longest_edge_permitted: float,
                 evaluator: Optional[PropertyEvaluator] = None):
        self.valid = False
        self.error: Optional[str] = None
        self.longest_edge_permitted = float(longest_edge_permitted)
        self.points: list[MeshPoint] = []
        self.triangles: list[Triangle] = []
        self.materials: list[Material] = []
        self.dielectric: Optional[np.ndarray] = None
        self._spatial_index: Optional[SpatialIndex] = None

        self._build(shape)
        if self.valid and evaluator is not None:
            self._determine_point_dielectric(evaluator)

    def _fail(self, message: str) -> None:
        self.error = message
        _report_once(message)

    @staticmethod
    def _find_hole_points(shape: Shape) -> list[XY]:
        # Paint() can split a shape into pieces that enclose a hole without
        # any of them being a negative area polygon, so merge everything
        # first and look for holes in the result.
        # The seed must also avoid islands inside the hole.
        hole_finder = Shape()
        hole_finder.set_merge(shape)
        rings = hole_finder.rings()
        return [
            any_point_in_poly(rings[i], rings_inside(rings, i))
            for i in range(hole_finder.num_pieces)
            if hole_finder.area(i) < 0
        ]

    def _build(self, shape: Shape) -> None:
        geometry_error = shape.geometry_error()
        if geometry_error:
            self._fail(f"Can not create mesh: {geometry_error}")
            return

        sharpest = shape.sharpest_angle()
        if sharpest < SHARPEST_ALLOWABLE_ANGLE:
            self._fail(
                f"Can not create mesh because sharpest angle is {sharpest:g} "
                f"(min is {SHARPEST_ALLOWABLE_ANGLE:g})"
            )
            return

        log.info(f"Meshing shape with {shape.num_pieces} pieces")
        pieces = [shape.piece(i) for i in range(shape.num_pieces)]
        hole_points = self._find_hole_points(shape)
        is_hole = [shape.area(i) < 0 for i in range(shape.num_pieces)]

        # Remove duplicate points and give the remaining points unique point
        # indexes (UPIs). Duplicates happen where unmerged pieces of different
        # materials meet.
        point_map = IndexMap[XY]()
        upi_owner: list[tuple[int, int]] = []      # UPI -> (piece, index)
        for i, piece in enumerate(pieces):
            for j, p in enumerate(piece):
                if p.xy not in point_map:
                    point_map.add(p.xy)
                    upi_owner.append((i, j))

        # Points are marked 2 + UPI since Triangle reserves 0 and 1. Segments
        # are marked -1 - (UPI of their first point), new points created on a
        # segment pick up its marker.
        segments = []
        segment_markers = []
        segment_owners: dict[int, list[tuple[int, int]]] = {}
        seen = set()
        for i, piece in enumerate(pieces):
            for j, p in enumerate(piece):
                u = point_map.to_index(p.xy)
                v = point_map.to_index(piece[(j + 1) % len(piece)].xy)
                segment_owners.setdefault(u, []).append((i, j))
                if (u, v) not in seen:
                    seen.add((u, v))
                    segments.append((u, v))
                    segment_markers.append(-1 - u)

        # One seed per non-hole piece, with the piece index as the region
        # attribute. The seed must avoid every ring nested inside the piece
        # (holes, painted pieces, islands) or that region would get the
        # wrong attribute.
        rings = shape.rings()
        regions = []
        for i in range(shape.num_pieces):
            if is_hole[i]:
                continue
            try:
                x, y = any_point_in_poly(rings[i], rings_inside(rings, i))
            except ValueError as e:
                self._fail(f"Can not create mesh: piece {i}: {e}")
                return
            regions.append((x, y, i, -1))

        kernel_input = triangulate.KernelInput(
            points=np.array(list(point_map), dtype=np.float64).reshape(-1, 2),
            point_markers=np.arange(len(point_map)) + 2,
            segments=np.array(segments, dtype=np.int64).reshape(-1, 2),
            segment_markers=np.array(segment_markers, dtype=np.int64),
            regions=np.array(regions, dtype=np.float64).reshape(-1, 4),
            holes=np.array(hole_points, dtype=np.float64).reshape(-1, 2),
        )
        result = triangulate.triangulate(kernel_input, self.longest_edge_permitted)
        if not result.ok:
            self._fail(f"Can not create mesh: {result.error}")
            return

        points = self._interpret_points(result.output, pieces, upi_owner, segment_owners)
        triangles = self._interpret_triangles(result.output, shape.num_pieces)

        # Only publish once everything is interpreted
        self.points = points
        self.triangles = triangles
        self.materials = [shape.material(i) for i in range(shape.num_pieces)]
        self._spatial_index = SpatialIndex(
            self.coordinates(), self.triangle_array(), self.longest_edge_permitted
        )
        self.valid = True
        log.info(f"Mesh has {len(self.points)} points and {len(self.triangles)} triangles")
        self.update_derivatives(shape)

    @staticmethod
    def _interpret_points(output: triangulate.KernelOutput,
                          pieces: list[tuple[BoundaryPoint, ...]],
                          upi_owner: list[tuple[int, int]],
                          segment_owners: dict[int, list[tuple[int, int]]]) -> list[MeshPoint]:
        points = []
        for (x, y), marker in zip(output.points, output.point_markers):
            x = float(x)
            y = float(y)
            marker = int(marker)
            if marker >= 2:
                # Copied from an input point, which keeps its edge kinds
                upi = marker - 2
                if upi >= len(upi_owner):
                    raise MeshInvariantError(f"Point marker {marker} does not name an input point")
                piece, index = upi_owner[upi]
                points.append(MeshPoint(
                    Dual(x), Dual(y), pieces[piece][index].edge, piece, index
                ))
            elif marker < 0:
                # Created on the input segment starting at this UPI. Several
                # segments may start there, pick the one the point is on.
                upi = -marker - 1
                owners = segment_owners.get(upi)
                if not owners:
                    raise MeshInvariantError(f"Point marker {marker} does not name an input segment")
                piece, index = min(
                    owners,
                    key=lambda o: project_onto_segment(
                        (x, y),
                        pieces[o[0]][o[1]].xy,
                        pieces[o[0]][(o[1] + 1) % len(pieces[o[0]])].xy,
                    )[1],
                )
                p1 = pieces[piece][index]
                p2 = pieces[piece][(index + 1) % len(pieces[piece])]
                kind, d1, d2 = p1.edge.shared_kind(p2.edge)
                len1 = (x - p1.xy[0]) ** 2 + (y - p1.xy[1]) ** 2
                len2 = (p2.xy[0] - p1.xy[0]) ** 2 + (p2.xy[1] - p1.xy[1]) ** 2
                t = math.sqrt(len1 / len2)
                dist = (1 - t) * d1 + t * d2
                points.append(MeshPoint(
                    Dual(x), Dual(y), EdgeInfo((kind, kind), (dist, dist)), piece, index
                ))
            elif marker == 1:
                # Reserved by Triangle for boundary points, we never use it
                raise MeshInvariantError("Internal error, marker==1 found")
            else:
                points.append(MeshPoint(Dual(x), Dual(y)))
        return points

    @staticmethod
    def _interpret_triangles(output: triangulate.KernelOutput, num_pieces: int) -> list[Triangle]:
        if output.triangles.shape[1] != 3:
            raise MeshInvariantError(f"Expected 3 corners per triangle, got {output.triangles.shape[1]}")
        if output.triangle_attributes.shape != (len(output.triangles), 1):
            raise MeshInvariantError(
                f"Expected one attribute per triangle, got shape {output.triangle_attributes.shape}"
            )
        if output.neighbors.shape != (len(output.triangles), 3):
            raise MeshInvariantError(f"Neighbor table has shape {output.neighbors.shape}")

        triangles = []
        for i in range(len(output.triangles)):
            attribute = float(output.triangle_attributes[i, 0])
            piece = int(round(attribute))
            if piece != attribute:
                raise MeshInvariantError(f"Region attribute {attribute} is not an integer")
            if not 0 <= piece < num_pieces:
                raise MeshInvariantError(f"Region attribute {piece} out of range")
            # Triangle's neighbor[k] is opposite corner k, so the neighbor
            # across edge j -> j+1 is at k = j+2
            triangles.append(Triangle(
                index=tuple(int(v) for v in output.triangles[i]),
                material=piece,
                neighbor=tuple(int(output.neighbors[i, (j + 2) % 3]) for j in range(3)),
            ))
        return triangles

    def _determine_point_dielectric(self, evaluator: PropertyEvaluator) -> None:
        try:
            self.dielectric = determine_point_dielectric(
                self.coordinates(),
                self.triangle_array(),
                np.array([t.material for t in self.triangles], dtype=np.int64),
                self.materials,
                evaluator,
            )
        except PropertyEvaluationError as e:
            # Dielectric data is optional, the mesh stays usable without it
            log.error(f"Can not determine point dielectric: {e}")
            self.dielectric = None

    def update_derivatives(self, shape: Shape) -> None:
        """
        Recompute point and material derivatives from `shape`, which must be
        the shape this mesh was built from with only parameter derivatives
        changed. Boundary points interpolate the derivatives of the original
        edge endpoints, interior points are left alone.

        Raises:
            MeshingException: If the shape topology or materials changed
        """
        if not self.valid:
            return
        if shape.num_pieces != len(self.materials):
            raise MeshingException(
                f"Shape has {shape.num_pieces} pieces but the mesh was built from "
                f"{len(self.materials)}, rebuild the mesh"
            )

        pieces = [shape.piece(i) for i in range(shape.num_pieces)]
        for i, p in enumerate(self.points):
            if not p.on_boundary:
                continue
            piece = pieces[p.original_piece]
            if not 0 <= p.original_edge < len(piece):
                raise MeshingException(f"Point {i} refers to a missing edge, rebuild the mesh")
            p1 = piece[p.original_edge]
            p2 = piece[(p.original_edge + 1) % len(piece)]
            length = math.dist(p2.xy, p1.xy)
            alpha = math.dist(p.xy, p1.xy) / length if length > 0 else 0.0
            self.points[i] = replace(
                p,
                x=Dual(p.x.value, (1 - alpha) * p1.x.derivative + alpha * p2.x.derivative),
                y=Dual(p.y.value, (1 - alpha) * p1.y.derivative + alpha * p2.y.derivative),
            )

        for i in range(len(self.materials)):
            material = shape.material(i)
            # Equality ignores derivatives
            if material != self.materials[i]:
                raise MeshingException(f"Material {i} changed, rebuild the mesh")
            self.materials[i] = material

    # ------------------------------------------------------------------
    # Queries

    @property
    def num_points(self) -> int:
        return len(self.points)

    @property
    def num_triangles(self) -> int:
        return len(self.triangles)

    def coordinates(self) -> np.ndarray:
        """(n, 2) array of point coordinates, without derivatives."""
        return np.array([p.xy for p in self.points], dtype=np.float64).reshape(-1, 2)

    def derivatives(self) -> np.ndarray:
        """(n, 2) array of point coordinate derivatives."""
        return np.array(
            [(p.x.derivative, p.y.derivative) for p in self.points], dtype=np.float64
        ).reshape(-1, 2)

    def triangle_array(self) -> np.ndarray:
        return np.array([t.index for t in self.triangles], dtype=np.int64).reshape(-1, 3)

    def triangle_area(self, i: int) -> float:
        a, b, c = (self.points[k].xy for k in self.triangles[i].index)
        return 0.5 * ((b[0] - a[0]) * (c[1] - a[1]) - (b[1] - a[1]) * (c[0] - a[0]))

    def total_area(self) -> float:
        return sum(self.triangle_area(i) for i in range(len(self.triangles)))

    def boundary_edges(self) -> Iterator[BoundaryEdge]:
        """
        Iterate over the mesh boundary edges, i.e. triangle edges without a
        neighbor. Having both points on the boundary is not enough.
        """
        for t, tri in enumerate(self.triangles):
            for j in range(3):
                if tri.neighbor[j] != -1:
                    continue
                p1 = tri.index[j]
                p2 = tri.index[(j + 1) % 3]
                kind, d1, d2 = self.points[p1].edge.shared_kind(self.points[p2].edge)
                yield BoundaryEdge(t, j, p1, p2, kind, d1, d2)

    def find_triangle(self, x: float, y: float) -> int:
        """
        Return the index of a triangle containing (x, y), or -1 if the point
        is outside the mesh.
        """
        if not self.valid or self._spatial_index is None:
            return -1
        return self._spatial_index.find(x, y)

    @property
    def spatial_index(self) -> Optional[SpatialIndex]:
        return self._spatial_index

    def stats(self) -> dict:
        if not self.valid:
            return {"valid": False, "error": self.error}
        coords = self.coordinates()
        tris = self.triangle_array()
        edges = np.concatenate([
            np.linalg.norm(coords[tris[:, j]] - coords[tris[:, (j + 1) % 3]], axis=1)
            for j in range(3)
        ])
        return {
            "valid": True,
            "points": len(self.points),
            "triangles": len(self.triangles),
            "materials": len(self.materials),
            "boundary_edges": sum(1 for _ in self.boundary_edges()),
            "area": self.total_area(),
            "longest_edge": float(edges.max()) if len(edges) else 0.0,
            "shortest_edge": float(edges.min()) if len(edges) else 0.0,
        }
