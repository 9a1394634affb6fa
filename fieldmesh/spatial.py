import logging
import math
import threading

import numpy as np

from typing import Optional

from .geometry import point_in_triangle, triangle_intersects_box

log = logging.getLogger(__name__)


class SpatialIndex:
    """
    A uniform grid over a triangle mesh for point location.

    The meshes we index are refined with a longest edge constraint, so the
    triangles have bounded aspect ratios and are roughly the same size. The
    grid cell is a power of two comparable to that edge length, each cell
    records every triangle that geometrically intersects it.

    The grid is built lazily on the first query.
    """

    def __init__(self,
                 points: np.ndarray,
                 triangles: np.ndarray,
                 longest_edge_permitted: float):
        _, exponent = math.frexp(longest_edge_permitted)
        self.cell_exponent = exponent - 2
        self.cell_size = math.ldexp(1.0, self.cell_exponent)
        self._points = np.asarray(points, dtype=np.float64).reshape(-1, 2)
        self._triangles = np.asarray(triangles, dtype=np.int64).reshape(-1, 3)
        self._cells: Optional[dict[tuple[int, int], list[int]]] = None
        self._lock = threading.Lock()

    def __getstate__(self):
        state = self.__dict__.copy()
        # Rebuilt on demand after unpickling
        del state["_lock"]
        state["_cells"] = None
        return state

    def __setstate__(self, state):
        self.__dict__.update(state)
        self._lock = threading.Lock()

    @property
    def is_built(self) -> bool:
        return self._cells is not None

    def cell_of(self, x: float, y: float) -> tuple[int, int]:
        return (math.floor(x / self.cell_size), math.floor(y / self.cell_size))

    def cell_box(self, ix: int, iy: int) -> tuple[float, float, float, float]:
        """Return (xmin, xmax, ymin, ymax) of a grid cell."""
        cell = self.cell_size
        return (ix * cell, (ix + 1) * cell, iy * cell, (iy + 1) * cell)

    def _triangle_points(self, i: int):
        a, b, c = self._triangles[i]
        return tuple(self._points[a]), tuple(self._points[b]), tuple(self._points[c])

    def _build(self) -> dict[tuple[int, int], list[int]]:
        cells: dict[tuple[int, int], list[int]] = {}
        for i in range(len(self._triangles)):
            a, b, c = self._triangle_points(i)
            ix_min, iy_min = self.cell_of(min(a[0], b[0], c[0]), min(a[1], b[1], c[1]))
            ix_max, iy_max = self.cell_of(max(a[0], b[0], c[0]), max(a[1], b[1], c[1]))
            # The bounding box alone would register the triangle in cells it
            # does not touch
            for ix in range(ix_min, ix_max + 1):
                for iy in range(iy_min, iy_max + 1):
                    if triangle_intersects_box(a, b, c, *self.cell_box(ix, iy)):
                        cells.setdefault((ix, iy), []).append(i)
        log.debug(f"Built spatial index with {len(cells)} cells of size {self.cell_size}")
        return cells

    def _ensure_built(self) -> dict[tuple[int, int], list[int]]:
        cells = self._cells
        if cells is None:
            with self._lock:
                if self._cells is None:
                    self._cells = self._build()
                cells = self._cells
        return cells

    def cells(self) -> dict[tuple[int, int], list[int]]:
        return self._ensure_built()

    def find(self, x: float, y: float) -> int:
        """
        Return the index of a triangle containing (x, y), boundary included,
        or -1 if there is none.
        """
        cells = self._ensure_built()
        candidates = cells.get(self.cell_of(x, y))
        if not candidates:
            return -1
        p = (x, y)
        for i in candidates:
            a, b, c = self._triangle_points(i)
            if point_in_triangle(p, a, b, c):
                return i
        return -1
