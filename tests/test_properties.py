import numpy as np
import pytest

from fieldmesh.properties import (
    PropertyRegistry, PropertyEvaluationError, determine_point_dielectric,
)
from fieldmesh.shape import Material


POINTS = np.array([[0.0, 0.0], [1.0, 0.0], [1.0, 1.0], [0.0, 1.0], [2.0, 0.0]])
TRIANGLES = np.array([[0, 1, 2], [0, 2, 3], [1, 4, 2]])


class TestPropertyRegistry:
    def test_register(self):
        registry = PropertyRegistry()
        key = registry.register(lambda xs, ys: xs + 1)
        assert key in registry
        assert len(registry) == 1

    def test_key_depends_on_code(self):
        assert PropertyRegistry.key_of(lambda xs, ys: xs + 1) != \
            PropertyRegistry.key_of(lambda xs, ys: xs + 2)
        def f(xs, ys):
            return xs
        assert PropertyRegistry.key_of(f) == PropertyRegistry.key_of(f)

    def test_evaluate_real(self):
        registry = PropertyRegistry()
        key = registry.register(lambda xs, ys: xs + ys)
        values, imag = registry.evaluate(key, np.array([1.0, 2.0]), np.array([3.0, 4.0]))
        assert list(values) == [4.0, 6.0]
        assert imag is None

    def test_evaluate_complex(self):
        registry = PropertyRegistry()
        key = registry.register(lambda xs, ys: (xs, ys))
        values, imag = registry.evaluate(key, np.array([1.0]), np.array([3.0]))
        assert list(values) == [1.0]
        assert list(imag) == [3.0]

    def test_unknown_callback(self):
        with pytest.raises(PropertyEvaluationError):
            PropertyRegistry().evaluate("nope", np.zeros(1), np.zeros(1))

    def test_callback_raises(self):
        registry = PropertyRegistry()
        key = registry.register(lambda xs, ys: 1 / 0)
        with pytest.raises(PropertyEvaluationError):
            registry.evaluate(key, np.zeros(1), np.zeros(1))

    @pytest.mark.parametrize("result", [
        np.zeros(3),
        (np.zeros(2), np.zeros(2), np.zeros(2)),
        np.zeros((2, 2)),
        np.array(["a", "b"]),
    ])
    def test_bad_results(self, result):
        registry = PropertyRegistry()
        key = registry.register(lambda xs, ys: result)
        with pytest.raises(PropertyEvaluationError):
            registry.evaluate(key, np.zeros(2), np.zeros(2))


class TestPointDielectric:
    def test_no_callbacks(self):
        materials = [Material(), Material(color=1)]
        result = determine_point_dielectric(
            POINTS, TRIANGLES, np.array([0, 0, 1]), materials, PropertyRegistry()
        )
        assert result is None

    def test_callback_material(self):
        registry = PropertyRegistry()
        key = registry.register(lambda xs, ys: xs + 10)
        materials = [Material(), Material(callback=key)]
        eps = determine_point_dielectric(POINTS, TRIANGLES, np.array([0, 0, 1]), materials, registry)
        # Points 1, 2 and 4 touch the second material
        assert eps[0] == 1
        assert eps[3] == 1
        assert eps[1] == 11
        assert eps[2] == 11
        assert eps[4] == 12

    def test_complex_callback(self):
        registry = PropertyRegistry()
        key = registry.register(lambda xs, ys: (np.ones_like(xs), -ys))
        materials = [Material(callback=key)]
        eps = determine_point_dielectric(POINTS, TRIANGLES, np.zeros(3, dtype=int), materials, registry)
        assert eps[2] == 1 - 1j

    def test_failure_propagates(self):
        registry = PropertyRegistry()
        key = registry.register(lambda xs, ys: np.zeros(1))
        with pytest.raises(PropertyEvaluationError):
            determine_point_dielectric(
                POINTS, TRIANGLES, np.zeros(3, dtype=int), [Material(callback=key)], registry
            )
