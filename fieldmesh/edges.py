import logging

from dataclasses import dataclass

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class EdgeKind:
    """
    Classification of a boundary edge. The default kind is an ordinary wall,
    a nonzero port number marks a numbered port and abc marks an absorbing
    boundary.
    """
    port: int = 0
    abc: bool = False

    def __post_init__(self):
        if self.port < 0:
            raise ValueError(f"Port number must be non-negative, got {self.port}")
        if self.port and self.abc:
            raise ValueError("An edge can not be both a port and an absorbing boundary")

    @classmethod
    def default(cls) -> "EdgeKind":
        return cls()

    @classmethod
    def port_number(cls, n: int) -> "EdgeKind":
        if n < 1:
            raise ValueError(f"Port numbers start at 1, got {n}")
        return cls(port=n)

    @classmethod
    def absorbing(cls) -> "EdgeKind":
        return cls(abc=True)

    @property
    def is_default(self) -> bool:
        return self.port == 0 and not self.abc

    def __str__(self) -> str:
        if self.abc:
            return "abc"
        if self.port:
            return f"port{self.port}"
        return "default"


DEFAULT_KIND = EdgeKind()


@dataclass(frozen=True)
class EdgeInfo:
    """
    Edge metadata carried by a boundary point. Slot 0 describes the outgoing
    edge (this point to the next one), slot 1 the incoming edge (previous
    point to this one). The dist values are the port parameterization at this
    point, 0 at the start of a port and 1 at its end.
    """
    kind: tuple[EdgeKind, EdgeKind] = (DEFAULT_KIND, DEFAULT_KIND)
    dist: tuple[float, float] = (0.0, 0.0)

    @property
    def is_default(self) -> bool:
        return self.kind[0].is_default and self.kind[1].is_default

    def with_outgoing(self, kind: EdgeKind, dist: float = 0.0) -> "EdgeInfo":
        return EdgeInfo((kind, self.kind[1]), (dist, self.dist[1]))

    def with_incoming(self, kind: EdgeKind, dist: float = 0.0) -> "EdgeInfo":
        return EdgeInfo((self.kind[0], kind), (self.dist[0], dist))

    def reversed(self) -> "EdgeInfo":
        """Swap the slots, for a point whose piece has its winding reversed."""
        return EdgeInfo((self.kind[1], self.kind[0]), (self.dist[1], self.dist[0]))

    def shared_kind(self, other: "EdgeInfo") -> tuple[EdgeKind, float, float]:
        """
        Resolve the kind of the edge that runs from this point to `other`.

        Returns:
            (kind, d1, d2) where d1 and d2 are the port distances at this
            point and at `other`.

        When the two endpoints agree the result is unambiguous. Otherwise a
        non-default kind beats the default one, and between two different
        non-default kinds the outgoing kind of this (the first) point wins.
        In the disagreeing cases the distance is held constant along the edge.
        """
        k_out, k_in = self.kind[0], other.kind[1]
        if k_out == k_in:
            return k_out, self.dist[0], other.dist[1]

        if k_in.is_default:
            winner, d = k_out, self.dist[0]
        elif k_out.is_default:
            winner, d = k_in, other.dist[1]
        else:
            winner, d = k_out, self.dist[0]
        log.debug(f"Edge kind conflict between {k_out} and {k_in}, using {winner}")
        return winner, d, d


DEFAULT_EDGE = EdgeInfo()
