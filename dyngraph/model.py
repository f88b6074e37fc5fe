"""Trainable parameters and the model that owns them."""

from __future__ import annotations

import math
import sys
from collections.abc import Iterable

import numpy as np

from .dim import Dim
from .rng import get_rng


def _as_dim(dim) -> Dim:
    return dim if isinstance(dim, Dim) else Dim(dim)


def _randomized(dim: Dim, scale: float = 0.0) -> np.ndarray:
    """Uniform values in (-scale, scale), or Glorot-scaled when scale is 0."""
    if not scale:
        total = dim.sum_dims()
        if total <= 0:
            raise ValueError(f"cannot Glorot-initialise shape {dim}")
        scale = math.sqrt(6.0) / math.sqrt(total)
    values = get_rng().uniform(-scale, scale, size=tuple(dim))
    return np.asarray(values, dtype=np.float32)


def _shaped(data, shape: tuple[int, ...]) -> np.ndarray:
    """``data`` as float32 in ``shape``; flat input is read column-major."""
    arr = np.asarray(data, dtype=np.float32)
    if arr.shape == shape:
        return arr
    expected = math.prod(shape)
    if arr.size != expected:
        raise ValueError(f"expected {expected} values, got {arr.size}")
    return arr.reshape(shape, order="F")


def _sqnorm(arr: np.ndarray) -> float:
    flat = arr.ravel()
    return float(np.dot(flat, flat))


class Parameters:
    """A densely updated tensor of weights with its gradient."""

    def __init__(self, dim, scale: float = 0.0):
        self.dim = _as_dim(dim)
        self.values = _randomized(self.dim, scale)
        self.g = np.zeros(tuple(self.dim), dtype=np.float32)

    def size(self) -> int:
        return self.dim.size()

    def scale_parameters(self, a: float) -> None:
        """Multiply the accumulated gradient by ``a``."""
        self.g *= np.float32(a)

    def squared_l2norm(self) -> float:
        return _sqnorm(self.values)

    def g_squared_l2norm(self) -> float:
        return _sqnorm(self.g)

    def copy_from(self, other: Parameters) -> None:
        """Take over the values of parameters of the same shape."""
        if self.dim != other.dim:
            raise ValueError(f"shape mismatch: {self.dim} vs {other.dim}")
        self.values[...] = other.values

    def accumulate_grad(self, grad) -> None:
        self.g += _shaped(grad, self.g.shape)

    def clear(self) -> None:
        """Zero the gradient."""
        self.g.fill(0.0)


class LookupParameters:
    """A table of embeddings whose gradients are tracked sparsely."""

    def __init__(self, n: int, dim):
        self.dim = _as_dim(dim)
        shape = tuple(self.dim)
        self.values = [_randomized(self.dim) for _ in range(n)]
        self.grads = [np.zeros(shape, dtype=np.float32) for _ in range(n)]
        self.non_zero_grads: set[int] = set()

    def size(self) -> int:
        return len(self.values) * self.dim.size()

    def initialize(self, index: int, values: Iterable[float]) -> None:
        """Set row ``index`` from a flat, column-major list of values."""
        arr = np.asarray(list(values), dtype=np.float32)
        if arr.size != self.dim.size():
            raise ValueError(
                f"expected {self.dim.size()} values, got {arr.size}"
            )
        self.values[index][...] = _shaped(arr, tuple(self.dim))

    def scale_parameters(self, a: float) -> None:
        """Multiply every embedding by ``a``."""
        for v in self.values:
            v *= np.float32(a)

    def squared_l2norm(self) -> float:
        return sum(_sqnorm(v) for v in self.values)

    def g_squared_l2norm(self) -> float:
        return sum(_sqnorm(self.grads[i]) for i in self.non_zero_grads)

    def copy_from(self, other: LookupParameters) -> None:
        """Take over the embeddings of a table of the same shape."""
        if self.dim != other.dim:
            raise ValueError(f"shape mismatch: {self.dim} vs {other.dim}")
        if len(other.values) > len(self.values):
            raise ValueError("source table has more rows than this one")
        for mine, theirs in zip(self.values, other.values):
            mine[...] = theirs

    def accumulate_grad(self, index: int, grad) -> None:
        self.non_zero_grads.add(index)
        self.grads[index] += _shaped(grad, self.grads[index].shape)

    def clear(self) -> None:
        """Zero the gradients that were touched."""
        for i in self.non_zero_grads:
            self.grads[i].fill(0.0)
        self.non_zero_grads.clear()


class Model:
    """Owns every parameter and lookup table of a network."""

    def __init__(self):
        self._all: list[Parameters | LookupParameters] = []
        self._params: list[Parameters] = []
        self._lookup_params: list[LookupParameters] = []

    def gradient_l2_norm(self) -> float:
        return math.sqrt(sum(p.g_squared_l2norm() for p in self._all))

    def reset_gradient(self) -> None:
        for p in self._params:
            p.clear()
        for p in self._lookup_params:
            p.clear()

    def add_parameters(self, dim, scale: float = 0.0) -> Parameters:
        p = Parameters(dim, scale)
        self._all.append(p)
        self._params.append(p)
        return p

    def add_lookup_parameters(self, n: int, dim) -> LookupParameters:
        p = LookupParameters(n, dim)
        self._all.append(p)
        self._lookup_params.append(p)
        return p

    def project_weights(self, radius: float = 1.0) -> float:
        """Report the L2 norm of all weights on stderr and return it."""
        norm = math.sqrt(sum(p.squared_l2norm() for p in self._all))
        print(f"NORM: {norm}", file=sys.stderr)
        return norm

    def all_parameters_list(self) -> list:
        return list(self._all)

    def parameters_list(self) -> list[Parameters]:
        return list(self._params)

    def lookup_parameters_list(self) -> list[LookupParameters]:
        return list(self._lookup_params)