"""Tensor shape descriptors."""

from __future__ import annotations

import operator
from collections.abc import Iterable, Iterator

MAX_TENSOR_DIM = 7


class Dim:
    """Shape of a tensor with up to seven extents.

    Extents past the last stored one read as 1, so a vector of length n
    behaves like an n x 1 matrix wherever rows and columns are asked for.
    """

    __slots__ = ("_d",)

    def __init__(self, *args):
        if len(args) == 1 and isinstance(args[0], Dim):
            values: Iterable = args[0]._d
        elif len(args) == 1 and isinstance(args[0], Iterable):
            values = args[0]
        else:
            values = args
        extents = tuple(operator.index(v) for v in values)
        if len(extents) > MAX_TENSOR_DIM:
            raise ValueError(
                f"a Dim holds at most {MAX_TENSOR_DIM} extents, got {len(extents)}"
            )
        if any(e < 0 for e in extents):
            raise ValueError(f"extents must be non-negative: {extents}")
        self._d = extents

    def size(self) -> int:
        """Number of elements a tensor of this shape holds."""
        p = 1
        for e in self._d:
            p *= e
        return p

    def extent(self, i: int) -> int:
        """Extent along axis ``i``; 1 past the stored axes."""
        return self[i]

    def sum_dims(self) -> int:
        return sum(self._d)

    def truncate(self) -> Dim:
        """Drop trailing axes of extent 1, keeping at least one axis."""
        m = 1
        for i, e in enumerate(self._d[1:], start=1):
            if e > 1:
                m = i + 1
        return self.resized(m)

    def resized(self, n: int) -> Dim:
        """A Dim with ``n`` axes; new axes get extent 1."""
        if not 0 <= n <= MAX_TENSOR_DIM:
            raise ValueError(f"cannot resize a Dim to {n} axes")
        return Dim(self._d[:n] + (1,) * (n - len(self._d)))

    def with_dim(self, i: int, s: int) -> Dim:
        """A copy with the extent of existing axis ``i`` set to ``s``."""
        if not 0 <= i < len(self._d):
            raise IndexError(f"axis {i} out of range for {self}")
        if s <= 0:
            raise ValueError(f"extent must be positive, got {s}")
        extents = list(self._d)
        extents[i] = s
        return Dim(extents)

    def ndims(self) -> int:
        return len(self._d)

    def rows(self) -> int:
        return self[0]

    def cols(self) -> int:
        return self[1]

    def transpose(self) -> Dim:
        if len(self._d) == 1:
            return Dim(1, self._d[0])
        if len(self._d) == 2:
            return Dim(self._d[1], self._d[0])
        raise ValueError("Cannot transpose Dim object with more than 2 dimensions")

    def __getitem__(self, i: int) -> int:
        i = operator.index(i)
        if i < 0:
            raise IndexError("axis index must be non-negative")
        return self._d[i] if i < len(self._d) else 1

    def __iter__(self) -> Iterator[int]:
        return iter(self._d)

    def __eq__(self, other) -> bool:
        if not isinstance(other, Dim):
            return NotImplemented
        return self._d == other._d

    def __hash__(self) -> int:
        return hash(self._d)

    def __str__(self) -> str:
        return "{" + ",".join(str(e) for e in self._d) + "}"

    def __repr__(self) -> str:
        return f"Dim{self._d!r}"


def format_dims(dims: Iterable[Dim]) -> str:
    """Render a sequence of shapes as ``[{a,b} {c}]``."""
    return "[" + " ".join(str(d) for d in dims) + "]"