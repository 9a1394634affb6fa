import contextlib
import logging
import threading

import numpy as np
import triangle

from dataclasses import dataclass
from typing import Iterator, Optional

log = logging.getLogger(__name__)

# Adapter around the Triangle library (constrained Delaunay triangulation).
# Triangle signals errors abruptly, this module turns every failure into a
# KernelResult carrying an error message so that callers never see a half
# built triangulation.

# Oracle driven refinement stops after this many passes
MAX_REFINEMENT_PASSES = 64

# The refinement oracle has no way to receive caller context, so the size
# threshold is process wide. It is only set while the lock is held, see
# refinement_threshold().
_oracle_lock = threading.Lock()
_square_of_longest_edge_permitted: Optional[float] = None


def triangle_unsuitable(v1, v2, v3, area: float) -> bool:
    """
    Return True if the triangle (v1, v2, v3) is too big and needs refinement,
    i.e. its longest edge exceeds the permitted length.
    """
    if _square_of_longest_edge_permitted is None:
        raise RuntimeError("Refinement oracle used outside of a triangulation")

    dx1 = v1[0] - v3[0]
    dy1 = v1[1] - v3[1]
    dx2 = v2[0] - v3[0]
    dy2 = v2[1] - v3[1]
    dx3 = v1[0] - v2[0]
    dy3 = v1[1] - v2[1]

    len1 = dx1 * dx1 + dy1 * dy1
    len2 = dx2 * dx2 + dy2 * dy2
    len3 = dx3 * dx3 + dy3 * dy3

    return max(len1, len2, len3) > _square_of_longest_edge_permitted


@contextlib.contextmanager
def refinement_threshold(longest_edge_permitted: float) -> Iterator[None]:
    """
    Hold the oracle lock and set the refinement threshold for the duration
    of one triangulation. The threshold is cleared on every exit path.
    """
    global _square_of_longest_edge_permitted
    with _oracle_lock:
        _square_of_longest_edge_permitted = longest_edge_permitted ** 2
        try:
            yield
        finally:
            _square_of_longest_edge_permitted = None


@dataclass(frozen=True)
class KernelInput:
    points: np.ndarray            # (n, 2)
    point_markers: np.ndarray     # (n,)
    segments: np.ndarray          # (m, 2)
    segment_markers: np.ndarray   # (m,)
    regions: np.ndarray           # (r, 4) x, y, attribute, max area (ignored)
    holes: np.ndarray             # (h, 2)

    def to_dict(self) -> dict:
        data = {
            "vertices": np.asarray(self.points, dtype=np.float64).reshape(-1, 2),
            "vertex_markers": np.asarray(self.point_markers, dtype=np.intc).reshape(-1, 1),
            "segments": np.asarray(self.segments, dtype=np.intc).reshape(-1, 2),
            "segment_markers": np.asarray(self.segment_markers, dtype=np.intc).reshape(-1, 1),
        }
        # Triangle does not like empty arrays for these
        if len(self.regions):
            data["regions"] = np.asarray(self.regions, dtype=np.float64).reshape(-1, 4)
        if len(self.holes):
            data["holes"] = np.asarray(self.holes, dtype=np.float64).reshape(-1, 2)
        return data


@dataclass(frozen=True)
class KernelOutput:
    points: np.ndarray                # (n, 2)
    point_markers: np.ndarray         # (n,)
    triangles: np.ndarray             # (t, 3)
    triangle_attributes: np.ndarray   # (t, k)
    neighbors: np.ndarray             # (t, 3), -1 where there is no neighbor

    @classmethod
    def from_dict(cls, data: dict) -> "KernelOutput":
        triangles = np.asarray(data.get("triangles", np.zeros((0, 3))), dtype=np.int64)
        if triangles.ndim != 2:
            triangles = triangles.reshape(-1, 3)
        attributes = np.asarray(
            data.get("triangle_attributes", np.zeros((len(triangles), 0))),
            dtype=np.float64,
        )
        if attributes.ndim != 2:
            attributes = attributes.reshape(-1, 1)
        return cls(
            points=np.asarray(data["vertices"], dtype=np.float64).reshape(-1, 2),
            point_markers=np.asarray(data["vertex_markers"], dtype=np.int64).reshape(-1),
            triangles=triangles,
            triangle_attributes=attributes,
            neighbors=np.asarray(data["neighbors"], dtype=np.int64).reshape(-1, 3),
        )


@dataclass(frozen=True)
class KernelResult:
    output: Optional[KernelOutput] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.output is not None and self.error is None


class KernelError(RuntimeError):
    pass


def _unsuitable_area_bounds(data: dict) -> Optional[np.ndarray]:
    """
    Ask the oracle about every triangle. Returns per triangle area bounds
    (half the current area for unsuitable triangles, -1 meaning unconstrained
    for the rest), or None if every triangle is acceptable.
    """
    points = np.asarray(data["vertices"], dtype=np.float64)
    triangles = np.asarray(data["triangles"], dtype=np.int64)
    bounds = np.full((len(triangles), 1), -1.0)
    any_unsuitable = False
    for i, (a, b, c) in enumerate(triangles):
        v1, v2, v3 = points[a], points[b], points[c]
        area = 0.5 * abs((v2[0] - v1[0]) * (v3[1] - v1[1]) - (v2[1] - v1[1]) * (v3[0] - v1[0]))
        if triangle_unsuitable(v1, v2, v3, area):
            bounds[i, 0] = 0.5 * area
            any_unsuitable = True
    return bounds if any_unsuitable else None


def _refine(data: dict) -> dict:
    # The Python binding of Triangle has no hook for a user supplied
    # "triangle unsuitable" test, so the oracle is applied between passes:
    # unsuitable triangles get an area bound and the mesh is refined with
    # markers and attributes carried through.
    for n_pass in range(MAX_REFINEMENT_PASSES):
        bounds = _unsuitable_area_bounds(data)
        if bounds is None:
            log.debug(f"Refinement converged after {n_pass} passes, {len(data['triangles'])} triangles")
            return data
        refine_input = {
            "vertices": data["vertices"],
            "vertex_markers": data["vertex_markers"],
            "triangles": data["triangles"],
            "triangle_attributes": data["triangle_attributes"],
            "triangle_max_area": bounds,
            "segments": data["segments"],
            "segment_markers": data["segment_markers"],
        }
        data = triangle.triangulate(refine_input, "rpzQqna")
    raise KernelError(f"Refinement did not converge after {MAX_REFINEMENT_PASSES} passes")


def triangulate(kernel_input: KernelInput, longest_edge_permitted: float) -> KernelResult:
    """
    Run the constrained Delaunay triangulation of the input outline, with one
    region attribute per triangle and the triangle adjacency table. If
    longest_edge_permitted > 0 the mesh is refined until no triangle edge is
    longer than that, otherwise the minimal conforming triangulation is
    returned.
    """
    # z: index from zero, p: triangulate a PSLG, A: regional attributes,
    # Q: quiet, q: quality mesh, n: neighbor list
    refine = longest_edge_permitted > 0
    flags = "zpAQqn" if refine else "zpAQn"
    log.debug(
        f"Triangulating {len(kernel_input.points)} points, {len(kernel_input.segments)} segments, "
        f"{len(kernel_input.regions)} regions, {len(kernel_input.holes)} holes"
    )
    scope = refinement_threshold(longest_edge_permitted) if refine else contextlib.nullcontext()
    try:
        with scope:
            data = triangle.triangulate(kernel_input.to_dict(), flags)
            if refine:
                data = _refine(data)
        output = KernelOutput.from_dict(data)
    except (RuntimeError, ValueError, KeyError, IndexError) as e:
        log.debug(f"Triangulation failed: {e}")
        return KernelResult(error=f"Triangulation failed: {e}")

    return KernelResult(output=output)
