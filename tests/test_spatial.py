import pickle

import numpy as np
import pytest

from fieldmesh.geometry import triangle_intersects_box
from fieldmesh.spatial import SpatialIndex


POINTS = np.array([[0.0, 0.0], [1.0, 0.0], [0.0, 1.0]])
TRIANGLES = np.array([[0, 1, 2]])


class TestCellSize:
    @pytest.mark.parametrize("length, exponent", [
        (0.1, -5),
        (0.5, -2),
        (1.0, -1),
        (3.0, 0),
    ])
    def test_cell_exponent(self, length, exponent):
        index = SpatialIndex(POINTS, TRIANGLES, length)
        assert index.cell_exponent == exponent
        assert index.cell_size == 2.0 ** exponent

    def test_cell_of(self):
        index = SpatialIndex(POINTS, TRIANGLES, 0.5)
        assert index.cell_of(0.3, 0.9) == (1, 3)
        assert index.cell_of(-0.1, 0.0) == (-1, 0)
        assert index.cell_box(1, 3) == (0.25, 0.5, 0.75, 1.0)


class TestCells:
    def test_lazy(self):
        index = SpatialIndex(POINTS, TRIANGLES, 0.5)
        assert not index.is_built
        index.find(0.1, 0.1)
        assert index.is_built

    def test_only_intersecting_cells(self):
        # Cells are 0.25 wide, the hypotenuse x + y = 1 cuts the 4x4 grid
        cells = SpatialIndex(POINTS, TRIANGLES, 0.5).cells()
        assert cells[(0, 0)] == [0]
        assert cells[(3, 0)] == [0]
        assert cells[(2, 2)] == [0]       # Touches at (0.5, 0.5)
        assert (3, 3) not in cells
        assert (2, 3) not in cells

    def test_cells_are_exact(self):
        index = SpatialIndex(POINTS, TRIANGLES, 0.5)
        cells = index.cells()
        a, b, c = (tuple(p) for p in POINTS)
        # Every cell a point of the triangle can fall into
        for ix in range(0, 5):
            for iy in range(0, 5):
                expected = triangle_intersects_box(a, b, c, *index.cell_box(ix, iy))
                assert ((ix, iy) in cells) == expected


class TestFind:
    def test_inside_and_outside(self):
        index = SpatialIndex(POINTS, TRIANGLES, 0.5)
        assert index.find(0.2, 0.2) == 0
        assert index.find(0.5, 0.5) == 0
        assert index.find(0.9, 0.9) == -1
        assert index.find(-5.0, 0.0) == -1

    def test_pickle_drops_cells(self):
        index = SpatialIndex(POINTS, TRIANGLES, 0.5)
        index.find(0.2, 0.2)
        restored = pickle.loads(pickle.dumps(index))
        assert not restored.is_built
        assert restored.find(0.2, 0.2) == 0
