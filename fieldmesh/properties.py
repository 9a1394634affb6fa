import hashlib
import logging
import threading

import numpy as np

from typing import Callable, Optional, Protocol, Sequence

log = logging.getLogger(__name__)

# Per point material properties. Materials may name a callback that computes
# epsilon from point coordinates; the mesh asks a PropertyEvaluator to run it
# without knowing how the callback is implemented.

PropertyResult = tuple[np.ndarray, Optional[np.ndarray]]


class PropertyEvaluationError(RuntimeError):
    """
    Raised when a property callback can not be run or returns garbage.
    """
    pass


class PropertyEvaluator(Protocol):
    def evaluate(self, callback: str, xs: np.ndarray, ys: np.ndarray) -> PropertyResult:
        """
        Run the callback named by `callback` on the given coordinates.

        Returns:
            (values, imag_values): with imag_values None the values are used
            as they are, otherwise epsilon = values + 1j * imag_values

        Raises:
            PropertyEvaluationError: If the callback fails
        """
        ...


class PropertyRegistry:
    """
    A PropertyEvaluator backed by Python callables. Each callable is stored
    under a hash of its code, which is what Material.callback holds. It is
    assumed that two callables with the same hash compute the same values.

    Callbacks may touch global state, calls are serialized.
    """

    def __init__(self):
        self._functions: dict[str, Callable] = {}
        self._lock = threading.Lock()

    @staticmethod
    def key_of(func: Callable) -> str:
        code = getattr(func, "__code__", None)
        h = hashlib.md5()
        if code is None:
            h.update(repr(func).encode("utf-8"))
        else:
            h.update(getattr(func, "__qualname__", "").encode("utf-8"))
            h.update(code.co_code)
            h.update(repr(code.co_consts).encode("utf-8"))
            closure = getattr(func, "__closure__", None) or ()
            h.update(repr([cell.cell_contents for cell in closure]).encode("utf-8"))
        return h.hexdigest()

    def register(self, func: Callable) -> str:
        key = self.key_of(func)
        self._functions[key] = func
        return key

    def __contains__(self, key: str) -> bool:
        return key in self._functions

    def __len__(self) -> int:
        return len(self._functions)

    def evaluate(self, callback: str, xs: np.ndarray, ys: np.ndarray) -> PropertyResult:
        func = self._functions.get(callback)
        if func is None:
            raise PropertyEvaluationError(f"Unknown property callback {callback}")

        with self._lock:
            try:
                result = func(xs, ys)
            except Exception as e:
                raise PropertyEvaluationError(f"Property callback raised: {e}") from e

        return _normalize_result(result, len(xs))


def _normalize_result(result, count: int) -> PropertyResult:
    if isinstance(result, (tuple, list)) and len(result) in (1, 2) \
            and all(np.ndim(r) == 1 for r in result):
        arrays = [np.asarray(r) for r in result]
    else:
        arrays = [np.asarray(result)]

    if len(arrays) not in (1, 2):
        raise PropertyEvaluationError(f"Property callback must return 1 or 2 arrays, got {len(arrays)}")
    for a in arrays:
        if a.ndim != 1 or len(a) != count:
            raise PropertyEvaluationError(
                f"Property callback returned an array of shape {a.shape}, expected ({count},)"
            )
        if not np.issubdtype(a.dtype, np.number):
            raise PropertyEvaluationError(f"Property callback returned non numeric data ({a.dtype})")

    if len(arrays) == 1:
        return arrays[0], None
    return arrays[0], arrays[1]


def determine_point_dielectric(points: np.ndarray,
                               triangles: np.ndarray,
                               triangle_materials: np.ndarray,
                               materials: Sequence,
                               evaluator: PropertyEvaluator) -> Optional[np.ndarray]:
    """
    Compute epsilon at every mesh point from the materials' callbacks.

    Args:
        points: (n, 2) point coordinates
        triangles: (t, 3) point indices
        triangle_materials: (t,) material index of each triangle
        materials: Materials, indexed by triangle_materials
        evaluator: Runs the callbacks

    Returns:
        A complex (n,) array, 1 at points not touched by any material with a
        callback. None if no material has a callback.

    Raises:
        PropertyEvaluationError: If any callback fails. No partial results
            are returned.
    """
    if not any(m.callback for m in materials):
        return None

    points = np.asarray(points, dtype=np.float64).reshape(-1, 2)
    triangles = np.asarray(triangles, dtype=np.int64).reshape(-1, 3)
    triangle_materials = np.asarray(triangle_materials, dtype=np.int64)
    dielectric = np.ones(len(points), dtype=np.complex128)

    for i, material in enumerate(materials):
        if not material.callback:
            continue
        # All points touched by this material
        mark = np.zeros(len(points), dtype=bool)
        mark[triangles[triangle_materials == i].reshape(-1)] = True
        indices = np.flatnonzero(mark)
        if len(indices) == 0:
            continue

        log.debug(f"Evaluating property callback of material {i} at {len(indices)} points")
        values, imag_values = evaluator.evaluate(
            material.callback,
            points[indices, 0].copy(),
            points[indices, 1].copy(),
        )
        if imag_values is None:
            dielectric[indices] = values
        else:
            dielectric[indices] = values + 1j * imag_values

    return dielectric
