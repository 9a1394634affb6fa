import cmath
import math

from dataclasses import dataclass
from typing import Union

# Forward-mode derivatives. Every geometric scalar carries its first derivative
# with respect to one external design parameter.

Number = Union[int, float, complex]


@dataclass(frozen=True)
class Dual:
    value: Number
    derivative: Number = 0.0

    @classmethod
    def lift(cls, x: Union["Dual", Number]) -> "Dual":
        """Return x as a Dual, treating plain numbers as constants."""
        if isinstance(x, Dual):
            return x
        return cls(x, 0.0)

    def __float__(self) -> float:
        return float(self.value)

    def __complex__(self) -> complex:
        return complex(self.value)

    def __add__(self, other) -> "Dual":
        if isinstance(other, Dual):
            return Dual(self.value + other.value,
                        self.derivative + other.derivative)
        if isinstance(other, (int, float, complex)):
            return Dual(self.value + other, self.derivative)
        return NotImplemented

    def __radd__(self, other) -> "Dual":
        return self.__add__(other)

    def __sub__(self, other) -> "Dual":
        if isinstance(other, Dual):
            return Dual(self.value - other.value,
                        self.derivative - other.derivative)
        if isinstance(other, (int, float, complex)):
            return Dual(self.value - other, self.derivative)
        return NotImplemented

    def __rsub__(self, other) -> "Dual":
        if isinstance(other, (int, float, complex)):
            return Dual(other - self.value, -self.derivative)
        return NotImplemented

    def __mul__(self, other) -> "Dual":
        if isinstance(other, Dual):
            return Dual(self.value * other.value,
                        self.derivative * other.value + self.value * other.derivative)
        if isinstance(other, (int, float, complex)):
            return Dual(self.value * other, self.derivative * other)
        return NotImplemented

    def __rmul__(self, other) -> "Dual":
        return self.__mul__(other)

    def __truediv__(self, other) -> "Dual":
        if isinstance(other, Dual):
            if other.value == 0:
                raise ZeroDivisionError("Dual division by zero")
            return Dual(
                self.value / other.value,
                (self.derivative * other.value - self.value * other.derivative)
                / (other.value * other.value),
            )
        if isinstance(other, (int, float, complex)):
            if other == 0:
                raise ZeroDivisionError("Dual division by zero")
            return Dual(self.value / other, self.derivative / other)
        return NotImplemented

    def __rtruediv__(self, other) -> "Dual":
        if isinstance(other, (int, float, complex)):
            return Dual.lift(other) / self
        return NotImplemented

    def __neg__(self) -> "Dual":
        return Dual(-self.value, -self.derivative)

    def __pos__(self) -> "Dual":
        return self

    # Ordering looks at values only, derivatives do not take part
    def __lt__(self, other) -> bool:
        return self.value < _value(other)

    def __le__(self, other) -> bool:
        return self.value <= _value(other)

    def __gt__(self, other) -> bool:
        return self.value > _value(other)

    def __ge__(self, other) -> bool:
        return self.value >= _value(other)


def _value(x) -> Number:
    return x.value if isinstance(x, Dual) else x


def sqrt(x: Union[Dual, Number]) -> Dual:
    x = Dual.lift(x)
    if isinstance(x.value, complex):
        root = cmath.sqrt(x.value)
    else:
        if x.value < 0:
            raise ValueError(f"sqrt of negative value {x.value}")
        root = math.sqrt(x.value)
    if root == 0:
        # The derivative is unbounded at zero, follow the convention of
        # treating it as zero so that degenerate geometry stays finite
        return Dual(root, 0.0)
    return Dual(root, x.derivative / (2 * root))


def sin(x: Union[Dual, Number]) -> Dual:
    x = Dual.lift(x)
    return Dual(math.sin(x.value), math.cos(x.value) * x.derivative)


def cos(x: Union[Dual, Number]) -> Dual:
    x = Dual.lift(x)
    return Dual(math.cos(x.value), -math.sin(x.value) * x.derivative)


def hypot(dx: Union[Dual, Number], dy: Union[Dual, Number]) -> Dual:
    dx = Dual.lift(dx)
    dy = Dual.lift(dy)
    return sqrt(dx * dx + dy * dy)


def values(xs) -> list:
    """Strip derivatives from a sequence of Duals (or plain numbers)."""
    return [_value(x) for x in xs]
