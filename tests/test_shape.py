import math

import pytest

from fieldmesh.dual import Dual
from fieldmesh.edges import EdgeKind
from fieldmesh.shape import Shape, Material, BoundaryPoint, CornerStyle

from conftest import UNIT_SQUARE, square


class TestMaterial:
    def test_equality_ignores_derivative(self):
        assert Material(epsilon=Dual(2.0, 1.0)) == Material(epsilon=Dual(2.0, 5.0))
        assert Material(epsilon=Dual(2.0)) != Material(epsilon=Dual(3.0))
        assert Material(color=1) != Material(color=2)

    def test_hashable(self):
        assert len({Material(), Material(), Material(color=1)}) == 2

    def test_with_parameters(self):
        m = Material().with_parameters([Dual(2.0, 1.0), 0.5])
        assert m.epsilon.value == 2.0 + 0.5j
        assert m.epsilon.derivative == 1.0 + 0j
        assert Material().with_parameters([]) == Material()


class TestConstruction:
    def test_from_rings(self, unit_square):
        assert unit_square.num_pieces == 1
        assert unit_square.coords(0) == UNIT_SQUARE
        assert not unit_square.is_empty

    def test_from_rings_with_derivatives(self, scaled_unit_square):
        p = scaled_unit_square.piece(0)[2]
        assert p.x == Dual(1.0, 1.0)
        assert p.y == Dual(1.0, 1.0)

    def test_rectangle_is_anticlockwise(self):
        s = Shape()
        s.set_rectangle(1, 1, 0, 0)
        assert s.area(0).value == pytest.approx(1.0)

    def test_circle(self):
        s = Shape()
        s.set_circle(1.0, 2.0, 1.0, 64)
        assert len(s.piece(0)) == 64
        assert s.area(0).value == pytest.approx(math.pi, rel=1e-2)
        with pytest.raises(ValueError):
            s.set_circle(0, 0, 1, 2)

    def test_copy_is_independent(self, unit_square):
        c = unit_square.copy()
        c.offset(1, 0)
        assert unit_square.coords(0) == UNIT_SQUARE
        assert c != unit_square

    def test_swap_and_clear(self, unit_square):
        other = Shape()
        unit_square.swap(other)
        assert unit_square.is_empty
        assert other.num_pieces == 1
        other.clear()
        assert other.is_empty

    def test_set_to_piece(self, square_with_hole):
        s = Shape()
        s.set_to_piece(1, square_with_hole)
        assert s.num_pieces == 1
        assert s.coords(0) == square_with_hole.coords(1)

    def test_make_polyline(self):
        s = Shape.from_rings([(0, 0), (1, 0), (2, 1)])
        s.make_polyline()
        assert s.coords(0) == [(0, 0), (1, 0), (2, 1), (1, 0)]
        assert s.area(0).value == 0


class TestMeasurements:
    def test_area_and_orientation(self, square_with_hole):
        areas = sorted(square_with_hole.area(n).value for n in range(2))
        assert areas == pytest.approx([-0.04, 1.0])
        assert square_with_hole.total_area().value == pytest.approx(0.96)

    def test_area_derivative(self, scaled_unit_square):
        # Scaling by (1 + t) changes the area at rate 2
        assert scaled_unit_square.area(0).derivative == pytest.approx(2.0)

    def test_sharpest_angle(self, unit_square):
        assert unit_square.sharpest_angle() == pytest.approx(math.pi / 2)

    def test_sharpest_angle_ignores_hole_corners(self, square_with_hole):
        assert square_with_hole.sharpest_angle() == pytest.approx(math.pi / 2)

    def test_sharpest_angle_thin_triangle(self):
        s = Shape.from_rings([(0, 0), (1, 0), (0, 1e-3)])
        assert s.sharpest_angle() == pytest.approx(1e-3, rel=1e-3)

    def test_extreme_side_lengths(self):
        s = square(0, 0, 2, 1)
        longest, shortest = s.extreme_side_lengths()
        assert longest.value == pytest.approx(2.0)
        assert shortest.value == pytest.approx(1.0)

    def test_bounds(self, square_with_hole):
        assert [b.value for b in square_with_hole.bounds()] == [0, 0, 1, 1]
        with pytest.raises(ValueError):
            Shape().bounds()


class TestGeometryError:
    def test_valid(self, unit_square, square_with_hole):
        assert unit_square.geometry_error() is None
        assert square_with_hole.geometry_error() is None

    def test_empty(self):
        assert Shape().geometry_error() == "Shape is empty"

    def test_too_few_points(self):
        assert "fewer than 3" in Shape.from_rings([(0, 0), (1, 0)]).geometry_error()

    def test_zero_length_edge(self):
        s = Shape.from_rings([(0, 0), (1, 0), (1, 0), (0, 1)])
        assert "zero length edge" in s.geometry_error()

    def test_zero_area(self):
        s = Shape.from_rings([(0, 0), (1, 0), (2, 0)])
        assert "zero area" in s.geometry_error()
        assert s.geometry_error(enforce_positive_area=False) is None

    def test_self_intersecting(self):
        s = Shape.from_rings([(0, 0), (1, 1), (1, 0), (0, 1), (-1, 0.5)])
        assert "self intersecting" in s.geometry_error()

    def test_negative_total_area(self):
        s = Shape.from_rings(UNIT_SQUARE[::-1])
        assert s.geometry_error() == "Shape does not have positive area"


class TestQueries:
    def test_contains(self, square_with_hole):
        assert square_with_hole.contains(0.1, 0.1) == 1
        assert square_with_hole.contains(0.5, 0.5) == 0
        assert square_with_hole.contains(2.0, 0.5) == 0
        assert square_with_hole.contains(0.4, 0.5) == -1
        assert square_with_hole.contains(1.0, 0.5) == -1

    def test_contains_island_in_hole(self, island_in_hole):
        assert island_in_hole.contains(0.5, 0.5) == 1
        assert island_in_hole.contains(0.3, 0.5) == 0
        assert island_in_hole.contains(0.1, 0.5) == 1
        assert island_in_hole.contains(0.4, 0.5) == -1

    def test_a_point_inside(self, square_with_hole):
        x, y = square_with_hole.a_point_inside()
        assert square_with_hole.contains(x, y) == 1
        assert Shape().a_point_inside() is None

    def test_find_closest_edge(self, unit_square):
        assert unit_square.find_closest_edge(0.5, -0.1) == (0, 0)
        assert unit_square.find_closest_edge(1.1, 0.5) == (0, 1)
        assert unit_square.find_closest_edge(-0.1, 0.5) == (0, 3)

    def test_find_closest_vertex(self, square_with_hole):
        n, i = square_with_hole.find_closest_vertex(0.41, 0.39)
        assert square_with_hole.coords(n)[i] == (0.4, 0.4)


class TestPorts:
    def test_assign_port(self, unit_square):
        port = EdgeKind.port_number(1)
        assert unit_square.assign_port(0, 0, port)
        p0, p1 = unit_square.piece(0)[:2]
        assert p0.edge.kind[0] == port
        assert p1.edge.kind[1] == port
        assert p0.edge.dist[0] == pytest.approx(0.0)
        assert p1.edge.dist[1] == pytest.approx(1.0)

    def test_port_distance_spans_edges(self, unit_square):
        port = EdgeKind.port_number(1)
        assert unit_square.assign_port(0, 0, port)
        assert unit_square.assign_port(0, 1, port)
        p = unit_square.piece(0)
        assert p[1].edge.dist[0] == pytest.approx(0.5)
        assert p[2].edge.dist[1] == pytest.approx(1.0)

    def test_conflicting_port(self, unit_square):
        assert unit_square.assign_port(0, 0, EdgeKind.port_number(1))
        assert not unit_square.assign_port(0, 0, EdgeKind.port_number(2))
        assert unit_square.assign_port(0, 0, EdgeKind.port_number(1))

    def test_out_of_range(self, unit_square):
        with pytest.raises(ValueError):
            unit_square.assign_port(1, 0, EdgeKind.absorbing())
        with pytest.raises(ValueError):
            unit_square.assign_port(0, 4, EdgeKind.absorbing())


class TestBooleans:
    def test_intersect(self):
        s = Shape()
        s.set_intersect(square(0, 0, 1, 1), square(0.5, 0.5, 2, 2))
        assert s.num_pieces == 1
        assert s.total_area().value == pytest.approx(0.25)

    def test_union(self):
        s = Shape()
        s.set_union(square(0, 0, 1, 1), square(0.5, 0.5, 2, 2))
        assert s.total_area().value == pytest.approx(1 + 2.25 - 0.25)

    def test_difference_makes_hole(self, square_with_hole):
        assert square_with_hole.num_pieces == 2
        assert sum(1 for n in range(2) if square_with_hole.area(n) < 0) == 1

    def test_xor(self):
        s = Shape()
        s.set_xor(square(0, 0, 1, 1), square(0.5, 0, 1.5, 1))
        assert s.total_area().value == pytest.approx(1.0)

    def test_intersect_keeps_derivatives(self, scaled_unit_square):
        s = Shape()
        s.set_intersect(scaled_unit_square, square(-1, -1, 2, 2))
        corner = [p for p in s.piece(0) if p.xy == (1.0, 1.0)]
        assert corner[0].x == Dual(1.0, 1.0)

    def test_new_points_interpolate_derivatives(self, scaled_unit_square):
        s = Shape()
        s.set_intersect(scaled_unit_square, square(-1, -1, 0.5, 2))
        mid = [p for p in s.piece(0) if p.xy == (0.5, 0.0)]
        assert mid[0].x.derivative == pytest.approx(0.5)

    def test_edge_kinds_survive(self, unit_square):
        unit_square.assign_port(0, 0, EdgeKind.port_number(1))
        s = Shape()
        s.set_intersect(unit_square, square(-1, -1, 0.5, 2))
        starts = [p for p in s.piece(0) if p.xy == (0.0, 0.0)]
        assert starts[0].edge.kind[0] == EdgeKind.port_number(1)

    def test_paint(self, painted_square, two_materials):
        m1, m2 = two_materials
        assert painted_square.num_pieces == 2
        by_material = {painted_square.material(n): painted_square.area(n).value
                       for n in range(2)}
        assert by_material[m1] == pytest.approx(0.5)
        assert by_material[m2] == pytest.approx(0.5)

    def test_merge_undoes_paint(self, painted_square, two_materials):
        s = Shape()
        s.set_merge(painted_square)
        assert s.num_pieces == 1
        assert s.total_area().value == pytest.approx(1.0)
        assert s.material(0) == two_materials[0]

    def test_paint_center(self, painted_center, two_materials):
        _, m2 = two_materials
        s = painted_center
        assert s.total_area().value == pytest.approx(1.0)
        painted = [n for n in range(s.num_pieces) if s.material(n) == m2]
        assert len(painted) == 1
        assert s.area(painted[0]).value == pytest.approx(0.04)
        assert s.contains(0.5, 0.5) == 1

    def test_merge_undoes_paint_center(self, painted_center):
        s = Shape()
        s.set_merge(painted_center)
        assert s.num_pieces == 1
        assert s.area(0).value == pytest.approx(1.0)

    def test_paint_over_painted_center(self, painted_center, two_materials):
        m1, m2 = two_materials
        m3 = Material(color=0x0000ff)
        s = painted_center.copy()
        s.paint(square(0.5, -1, 2, 2), m3)
        areas = {}
        for n in range(s.num_pieces):
            areas[s.material(n)] = areas.get(s.material(n), 0.0) + s.area(n).value
        assert areas[m1] == pytest.approx(0.5 - 0.02)
        assert areas[m2] == pytest.approx(0.02)
        assert areas[m3] == pytest.approx(0.5)

    def test_difference_keeps_island(self, island_in_hole):
        s = Shape()
        s.set_difference(island_in_hole, square(0.9, 0.9, 2, 2))
        assert s.total_area().value == pytest.approx(0.68 - 0.01)
        assert s.contains(0.5, 0.5) == 1


class TestTransformations:
    def test_offset(self, unit_square):
        unit_square.offset(1, 2)
        assert unit_square.coords(0)[0] == (1.0, 2.0)

    def test_scale_negative_keeps_orientation(self, unit_square):
        unit_square.scale(-2, 1)
        assert unit_square.area(0).value == pytest.approx(2.0)

    def test_rotate(self):
        s = Shape.from_rings([(1, 0), (2, 0), (2, 1)])
        s.rotate(90)
        x, y = s.coords(0)[0]
        assert x == pytest.approx(0.0, abs=1e-12)
        assert y == pytest.approx(1.0)

    def test_rotate_derivative(self):
        s = Shape.from_rings([(1, 0), (2, 0), (2, 1)])
        s.rotate(Dual(0.0, 1.0))
        # d/dtheta of (cos, sin) at 0, theta in degrees
        assert s.piece(0)[0].y.derivative == pytest.approx(math.pi / 180)

    def test_mirror(self, unit_square):
        unit_square.mirror_x(0)
        assert unit_square.area(0).value == pytest.approx(1.0)
        xs = sorted(x for x, _ in unit_square.coords(0))
        assert xs == [-1, -1, 0, 0]
        unit_square.mirror_y(2)
        ys = sorted(y for _, y in unit_square.coords(0))
        assert ys == [3, 3, 4, 4]

    def test_reverse_swaps_edge_slots(self, unit_square):
        port = EdgeKind.port_number(1)
        unit_square.assign_port(0, 0, port)
        unit_square.reverse()
        assert unit_square.area(0).value < 0
        p = {q.xy: q for q in unit_square.piece(0)}
        # The edge (1,0) -> (0,0) now leaves (1,0)
        assert p[(1.0, 0.0)].edge.kind[0] == port
        assert p[(0.0, 0.0)].edge.kind[1] == port

    def test_grow(self, unit_square):
        unit_square.grow(0.1, CornerStyle.MITER, 2.0)
        assert unit_square.total_area().value == pytest.approx(1.44)

    def test_clean(self):
        s = Shape.from_rings([(0, 0), (1, 0), (1, 1e-9), (1, 1), (0, 1)])
        s.clean(1e-6)
        assert len(s.piece(0)) == 4

    def test_clean_drops_degenerate_pieces(self):
        s = Shape.from_rings(UNIT_SQUARE, [(5, 5), (5, 5 + 1e-9), (5 + 1e-9, 5)])
        s.clean(1e-6)
        assert s.num_pieces == 1
