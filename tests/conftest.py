import pytest

from fieldmesh import mesh
from fieldmesh.dual import Dual
from fieldmesh.edges import EdgeKind
from fieldmesh.shape import Material, Shape


UNIT_SQUARE = [(0.0, 0.0), (1.0, 0.0), (1.0, 1.0), (0.0, 1.0)]


def square(x1, y1, x2, y2, material=None) -> Shape:
    s = Shape()
    s.set_rectangle(x1, y1, x2, y2)
    if material is not None:
        s.set_material(material)
    return s


@pytest.fixture(autouse=True)
def reset_reported_errors():
    # Mesh warnings are reported once per process, start each test afresh
    mesh._reported_errors.clear()
    yield
    mesh._reported_errors.clear()


@pytest.fixture
def unit_square():
    return Shape.from_rings(UNIT_SQUARE)


@pytest.fixture
def scaled_unit_square():
    """Unit square whose coordinates have derivative equal to themselves."""
    return Shape.from_rings([(x, y, x, y) for x, y in UNIT_SQUARE])


@pytest.fixture
def square_with_hole():
    """Unit square minus [0.4, 0.6]^2, with the hole edges marked absorbing."""
    s = Shape()
    s.set_difference(square(0, 0, 1, 1), square(0.4, 0.4, 0.6, 0.6))
    for n in range(s.num_pieces):
        if s.area(n) < 0:
            for e in range(len(s.piece(n))):
                assert s.assign_port(n, e, EdgeKind.absorbing())
    return s


@pytest.fixture
def two_materials():
    return Material(color=0xff0000), Material(color=0x00ff00, epsilon=Dual(4.0))


@pytest.fixture
def painted_square(two_materials):
    """Unit square, left half of the first material and right half of the second."""
    m1, m2 = two_materials
    s = square(0, 0, 1, 1, m1)
    s.paint(square(0.5, -1, 2, 2), m2)
    return s


@pytest.fixture
def island_in_hole():
    """Unit square with the hole [0.2, 0.8]^2 and the island [0.4, 0.6]^2 inside it."""
    return Shape.from_rings(
        UNIT_SQUARE,
        [(0.2, 0.2), (0.2, 0.8), (0.8, 0.8), (0.8, 0.2)],
        [(0.4, 0.4), (0.6, 0.4), (0.6, 0.6), (0.4, 0.6)],
    )


@pytest.fixture
def painted_center(two_materials):
    """Unit square of the first material with [0.4, 0.6]^2 painted in the second."""
    m1, m2 = two_materials
    s = square(0, 0, 1, 1, m1)
    s.paint(square(0.4, 0.4, 0.6, 0.6), m2)
    return s
