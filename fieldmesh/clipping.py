import logging
import math

import numpy as np
import shapely
import shapely.geometry
from shapely.geometry.polygon import orient

from typing import Iterable, Optional, Sequence

from .dual import Dual
from .edges import EdgeInfo, EdgeKind, DEFAULT_EDGE, DEFAULT_KIND
from .geometry import XY, signed_area, project_onto_segment

log = logging.getLogger(__name__)

# The purpose of this module is to run polygon boolean operations through
# Shapely. Shapes are exchanged as plain rings of (x, y) coordinates, the
# caller is responsible for attaching derivatives and edge kinds afterwards
# (see PointRestorer).


def rings_to_geometry(rings: Iterable[Sequence[XY]]) -> shapely.Geometry:
    """
    Convert closed rings to a Shapely geometry with the nonzero winding
    rule. Anticlockwise rings wind +1 and clockwise rings -1; every point
    with a positive winding sum is filled. So a clockwise ring cuts a hole
    into the ring around it, and an anticlockwise ring inside that hole is
    an island. Zero area rings do not contribute.
    """
    oriented = []
    for ring in rings:
        if len(ring) < 3:
            continue
        area = signed_area(ring)
        if area != 0:
            oriented.append((shapely.geometry.Polygon(ring), 1 if area > 0 else -1))

    if not oriented:
        return shapely.geometry.Polygon()
    if all(winding > 0 for _, winding in oriented):
        return shapely.union_all([poly for poly, _ in oriented])

    # Split the plane into faces bounded by the noded ring outlines. A face
    # never straddles an outline, so one sample point gives its winding.
    noded = shapely.union_all([poly.exterior for poly, _ in oriented])
    faces = shapely.get_parts(shapely.polygonize(shapely.get_parts(noded)))
    if len(faces) == 0:
        return shapely.geometry.Polygon()
    samples = [face.representative_point() for face in faces]
    xs = np.array([p.x for p in samples])
    ys = np.array([p.y for p in samples])

    total = np.zeros(len(faces), dtype=np.int64)
    for poly, winding in oriented:
        total += winding * shapely.contains_xy(poly, xs, ys)

    filled = [face for face, n in zip(faces, total) if n > 0]
    if not filled:
        return shapely.geometry.Polygon()
    return shapely.union_all(filled)


def polygons_of(geometry: shapely.Geometry) -> list[shapely.geometry.Polygon]:
    """Flatten a geometry to its non-empty polygons, dropping lines and points."""
    if geometry.is_empty:
        return []
    if isinstance(geometry, shapely.geometry.Polygon):
        return [geometry]
    if isinstance(geometry, (shapely.geometry.MultiPolygon,
                             shapely.geometry.GeometryCollection)):
        result = []
        for g in geometry.geoms:
            result.extend(polygons_of(g))
        return result
    return []


def geometry_to_rings(geometry: shapely.Geometry) -> list[list[XY]]:
    """
    Convert a Shapely geometry to rings: for every polygon the anticlockwise
    exterior followed by its clockwise holes. The repeated closing coordinate
    is dropped.
    """
    rings = []
    for poly in polygons_of(geometry):
        poly = orient(poly, sign=1.0)
        rings.append([tuple(c) for c in poly.exterior.coords[:-1]])
        for interior in poly.interiors:
            rings.append([tuple(c) for c in interior.coords[:-1]])
    return [r for r in rings if len(r) >= 3]


_JOIN_STYLES = {
    "SQUARE": "bevel",
    "ROUND": "round",
    "MITER": "mitre",
    "BUTT": "bevel",
}

_CAP_STYLES = {
    "SQUARE": "square",
    "ROUND": "round",
    "MITER": "flat",
    "BUTT": "flat",
}


def _quad_segs(delta: float, limit: float) -> int:
    """
    Number of segments per quarter circle so that the polygon approximation
    of an arc of radius |delta| deviates by at most `limit`.
    """
    radius = abs(delta)
    if limit <= 0 or radius <= limit:
        return 8
    step = 2 * math.acos(1 - limit / radius)
    return max(1, math.ceil((math.pi / 2) / step))


def grow(rings: Sequence[Sequence[XY]],
         delta: float,
         style: str,
         limit: float,
         endcap_style: str = "BUTT") -> shapely.Geometry:
    """
    Grow (delta > 0) or shrink (delta < 0) the area described by `rings`.
    Zero area rings are treated as polylines (see Shape.make_polyline) and
    are stroked with the end cap style.
    """
    join_style = _JOIN_STYLES[style]
    quad_segs = _quad_segs(delta, limit) if style == "ROUND" else 8
    mitre_limit = limit if style == "MITER" and limit > 0 else 5.0

    parts = []
    area_rings = [r for r in rings if len(r) >= 3 and signed_area(r) != 0]
    if area_rings:
        parts.append(rings_to_geometry(area_rings).buffer(
            delta,
            quad_segs=quad_segs,
            join_style=join_style,
            mitre_limit=mitre_limit,
        ))

    for ring in rings:
        if len(ring) >= 2 and (len(ring) < 3 or signed_area(ring) == 0):
            # A polyline ring is p0..pn followed by p(n-1)..p1
            line = ring[:len(ring) // 2 + 1]
            if delta <= 0:
                continue
            parts.append(shapely.geometry.LineString(line).buffer(
                delta,
                quad_segs=quad_segs,
                cap_style=_CAP_STYLES[endcap_style],
                join_style=join_style,
                mitre_limit=mitre_limit,
            ))

    if not parts:
        return shapely.geometry.Polygon()
    return shapely.union_all(parts)


class PointRestorer:
    """
    Reattach derivatives and edge kinds to the coordinates produced by a
    clipping operation. Output vertices that coincide with an input vertex
    get that vertex back exactly, vertices on an input edge get a derivative
    interpolated along the edge. Output edges that lie along an input edge
    inherit its kind.

    The sources are sequences of point objects with `x`, `y` (Dual) and
    `edge` (EdgeInfo) attributes.
    """

    def __init__(self, sources: Iterable[Sequence]):
        self._exact = {}
        self._segments = []
        extent = 0.0
        for points in sources:
            n = len(points)
            for i, p in enumerate(points):
                key = (p.x.value, p.y.value)
                self._exact.setdefault(key, p)
                q = points[(i + 1) % n]
                if n > 1:
                    self._segments.append((p, q))
                extent = max(extent, abs(p.x.value), abs(p.y.value))
        self.tolerance = 1e-9 * max(extent, 1.0)

    def _find_segment(self, xy: XY):
        for p, q in self._segments:
            a = (p.x.value, p.y.value)
            b = (q.x.value, q.y.value)
            t, d = project_onto_segment(xy, a, b)
            if d <= self.tolerance:
                return p, q, t
        return None

    def _find_segment_containing(self, xy1: XY, xy2: XY):
        """Find an input segment that contains both points, and the parameters of each."""
        for p, q in self._segments:
            a = (p.x.value, p.y.value)
            b = (q.x.value, q.y.value)
            t1, d1 = project_onto_segment(xy1, a, b)
            if d1 > self.tolerance:
                continue
            t2, d2 = project_onto_segment(xy2, a, b)
            if d2 > self.tolerance or t1 == t2:
                continue
            return p, q, t1, t2
        return None

    def restore_coordinate(self, xy: XY) -> tuple[Dual, Dual]:
        exact = self._exact.get(xy)
        if exact is not None:
            return exact.x, exact.y
        found = self._find_segment(xy)
        if found is None:
            return Dual(xy[0]), Dual(xy[1])
        p, q, t = found
        return (
            Dual(xy[0], (1 - t) * p.x.derivative + t * q.x.derivative),
            Dual(xy[1], (1 - t) * p.y.derivative + t * q.y.derivative),
        )

    def restore_ring(self, ring: Sequence[XY]) -> list[tuple[Dual, Dual, EdgeInfo]]:
        n = len(ring)
        coords = [self.restore_coordinate(xy) for xy in ring]
        out_kinds: list[tuple[EdgeKind, float]] = [(DEFAULT_KIND, 0.0)] * n
        in_kinds: list[tuple[EdgeKind, float]] = [(DEFAULT_KIND, 0.0)] * n

        for k in range(n):
            found = self._find_segment_containing(ring[k], ring[(k + 1) % n])
            if found is None:
                continue
            p, q, t1, t2 = found
            kind = p.edge.kind[0]
            if kind.is_default:
                continue
            d_start, d_end = p.edge.dist[0], q.edge.dist[1]
            out_kinds[k] = (kind, (1 - t1) * d_start + t1 * d_end)
            in_kinds[(k + 1) % n] = (kind, (1 - t2) * d_start + t2 * d_end)

        result = []
        for k in range(n):
            edge = DEFAULT_EDGE
            if not (out_kinds[k][0].is_default and in_kinds[k][0].is_default):
                edge = EdgeInfo(
                    (out_kinds[k][0], in_kinds[k][0]),
                    (out_kinds[k][1], in_kinds[k][1]),
                )
            result.append((coords[k][0], coords[k][1], edge))
        return result


def restore_rings(rings: Sequence[Sequence[XY]],
                  sources: Optional[Iterable[Sequence]]) -> list[list[tuple[Dual, Dual, EdgeInfo]]]:
    restorer = PointRestorer(sources or [])
    return [restorer.restore_ring(ring) for ring in rings]
