import math

import shapely
import shapely.geometry

from typing import Iterable, Sequence

# Plain floating point geometry on (x, y) tuples. Nothing here knows about
# derivatives, callers strip them first.

XY = tuple[float, float]


def cross(o: XY, a: XY, b: XY) -> float:
    """Z component of (a - o) x (b - o)."""
    return (a[0] - o[0]) * (b[1] - o[1]) - (a[1] - o[1]) * (b[0] - o[0])


def signed_area(coords: Sequence[XY]) -> float:
    """
    Shoelace area of a closed polygon given without the repeated first point.
    Anticlockwise polygons have positive area.
    """
    n = len(coords)
    area = 0.0
    for i in range(n):
        x1, y1 = coords[i]
        x2, y2 = coords[(i + 1) % n]
        area += x1 * y2 - x2 * y1
    return 0.5 * area


def point_in_triangle(p: XY, a: XY, b: XY, c: XY) -> int:
    """
    Returns 0 if p is outside the triangle abc, 1 if it is strictly inside
    and -1 if it is on the triangle boundary. Either winding is accepted.
    Degenerate triangles contain nothing.
    """
    orientation = cross(a, b, c)
    if orientation == 0:
        return 0
    d1 = cross(a, b, p)
    d2 = cross(b, c, p)
    d3 = cross(c, a, p)
    if orientation < 0:
        d1, d2, d3 = -d1, -d2, -d3
    if d1 < 0 or d2 < 0 or d3 < 0:
        return 0
    if d1 == 0 or d2 == 0 or d3 == 0:
        return -1
    return 1


def triangle_intersects_box(a: XY, b: XY, c: XY,
                            xmin: float, xmax: float,
                            ymin: float, ymax: float) -> bool:
    """
    Separating axis test between triangle abc and a closed axis aligned box.
    Touching counts as intersecting.
    """
    xs = (a[0], b[0], c[0])
    ys = (a[1], b[1], c[1])
    if max(xs) < xmin or min(xs) > xmax or max(ys) < ymin or min(ys) > ymax:
        return False

    corners = ((xmin, ymin), (xmax, ymin), (xmax, ymax), (xmin, ymax))
    tri = (a, b, c)
    for i in range(3):
        p1 = tri[i]
        p2 = tri[(i + 1) % 3]
        # Edge normal
        nx = p2[1] - p1[1]
        ny = p1[0] - p2[0]
        tri_proj = [nx * p[0] + ny * p[1] for p in tri]
        box_proj = [nx * p[0] + ny * p[1] for p in corners]
        if max(tri_proj) < min(box_proj) or max(box_proj) < min(tri_proj):
            return False
    return True


def project_onto_segment(p: XY, a: XY, b: XY) -> tuple[float, float]:
    """
    Returns (t, distance) where t in [0, 1] is the parameter of the closest
    point of segment ab to p.
    """
    dx = b[0] - a[0]
    dy = b[1] - a[1]
    length_sq = dx * dx + dy * dy
    if length_sq == 0:
        return 0.0, math.hypot(p[0] - a[0], p[1] - a[1])
    t = ((p[0] - a[0]) * dx + (p[1] - a[1]) * dy) / length_sq
    t = min(1.0, max(0.0, t))
    qx = a[0] + t * dx
    qy = a[1] + t * dy
    return t, math.hypot(p[0] - qx, p[1] - qy)


def interior_angle(prev: XY, cur: XY, nxt: XY) -> float:
    """
    The angle at `cur` on the left hand side of the path prev -> cur -> nxt,
    in [0, 2*pi). For an anticlockwise polygon this is the interior angle.
    """
    ax, ay = prev[0] - cur[0], prev[1] - cur[1]
    bx, by = nxt[0] - cur[0], nxt[1] - cur[1]
    angle = math.atan2(bx * ay - by * ax, bx * ax + by * ay)
    if angle < 0:
        angle += 2 * math.pi
    return angle


def any_point_in_poly(poly: Sequence[XY], holes: Iterable[Sequence[XY]] = ()) -> XY:
    """
    Return a point that is guaranteed to lie inside the polygon `poly`
    (regardless of its orientation) and outside all of the `holes`. Holes
    that do not overlap the polygon are harmless.

    Raises:
        ValueError: If nothing of the polygon remains once holes are removed
    """
    region = shapely.geometry.Polygon(poly)
    hole_polys = [shapely.geometry.Polygon(h) for h in holes if len(h) >= 3]
    if hole_polys:
        region = region.difference(shapely.union_all(hole_polys))

    if region.is_empty:
        raise ValueError("Polygon has no interior outside of its holes")

    if isinstance(region, shapely.geometry.Polygon):
        candidates = [region]
    else:
        candidates = [
            g for g in getattr(region, "geoms", [])
            if isinstance(g, shapely.geometry.Polygon) and not g.is_empty
        ]
    if not candidates:
        raise ValueError("Polygon has no interior outside of its holes")

    largest = max(candidates, key=lambda g: g.area)
    point = largest.representative_point()
    return (point.x, point.y)


def rings_inside(rings: Sequence[Sequence[XY]], i: int) -> list[Sequence[XY]]:
    """
    Return the rings other than rings[i] that lie within rings[i], whatever
    their orientation. Copies of rings[i] itself are not within it.
    """
    outer = shapely.geometry.Polygon(rings[i])
    inside = []
    for k, ring in enumerate(rings):
        if k == i or len(ring) < 3:
            continue
        inner = shapely.geometry.Polygon(ring)
        if outer.covers(inner) and not inner.covers(outer):
            inside.append(ring)
    return inside
