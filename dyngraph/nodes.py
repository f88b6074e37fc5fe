"""Differentiable operations that make up a computation graph.

Every node computes its output from the values of its arguments and, given
the derivative of the objective with respect to its output, the derivative
with respect to any one argument.  Values are float32 numpy arrays whose
shape matches the node's :class:`~dyngraph.dim.Dim`; flat element order is
column-major throughout.
"""

from __future__ import annotations

import math
from collections.abc import Iterable, Sequence

import numpy as np

from .dim import Dim, format_dims
from .rng import get_rng


def looks_like_vector(dim: Dim) -> bool:
    """True when every axis after the first has extent 1."""
    return all(dim[i] == 1 for i in range(1, dim.ndims()))


def _fmt(v) -> str:
    return format(v, "g") if isinstance(v, float) else str(v)


def _flat(a: np.ndarray) -> np.ndarray:
    return np.ravel(np.asarray(a, dtype=np.float32), order="F")


def _mat(a: np.ndarray) -> np.ndarray:
    a = np.asarray(a, dtype=np.float32)
    if a.ndim <= 1:
        return a.reshape(-1, 1)
    return a.reshape(a.shape[0], -1, order="F")


def _dim_of(a: np.ndarray) -> Dim:
    shape = np.shape(a)
    return Dim(shape if shape else (1,))


def _bad(name: str, xs: Sequence[Dim], what: str = "Bad input dimensions") -> ValueError:
    return ValueError(f"{what} in {name}: {format_dims(xs)}")


class Node:
    """A function of zero or more argument nodes."""

    def __init__(self, args: Iterable[int] = ()):
        self.args: tuple[int, ...] = tuple(args)
        self.dim = Dim()

    def arity(self) -> int:
        return len(self.args)

    def dim_forward(self, xs: Sequence[Dim]) -> Dim:
        """Shape of the result for argument shapes ``xs``; raises if incompatible."""
        raise NotImplementedError

    def as_string(self, arg_names: Sequence[str]) -> str:
        raise NotImplementedError

    def aux_storage_size(self) -> int:
        return 0

    def forward(self, xs: Sequence[np.ndarray]) -> np.ndarray:
        """The node's value given its argument values."""
        self.dim = self.dim_forward([_dim_of(x) for x in xs])
        result = np.asarray(self._compute(list(xs)), dtype=np.float32)
        return result.reshape(tuple(self.dim), order="F")

    def backward(self, xs, fx, dEdf, i: int) -> np.ndarray:
        """Derivative of the objective with respect to argument ``i``."""
        if not 0 <= i < len(xs):
            raise IndexError(f"argument {i} out of range")
        grad = np.asarray(self._grad(list(xs), fx, dEdf, i), dtype=np.float32)
        return grad.reshape(np.shape(xs[i]), order="F")

    def _compute(self, xs):
        raise NotImplementedError

    def _grad(self, xs, fx, dEdf, i):
        raise NotImplementedError


class _Unary(Node):
    _label = ""

    def as_string(self, arg_names):
        return f"{self._label}({arg_names[0]})"

    def dim_forward(self, xs):
        if len(xs) != 1:
            raise _bad(type(self).__name__, xs)
        return xs[0]


def _same_pair(name: str, xs, what="invalid arguments") -> None:
    if len(xs) != 2 or xs[0] != xs[1]:
        raise _bad(name, xs, what)


class Min(Node):
    def as_string(self, arg_names):
        return f"min{{{arg_names[0]}, {arg_names[1]}}}"

    def dim_forward(self, xs):
        _same_pair("Min", xs, "Bad arguments")
        return xs[0]

    def _compute(self, xs):
        return np.minimum(xs[0], xs[1])

    def _grad(self, xs, fx, dEdf, i):
        a, b = _flat(xs[0]), _flat(xs[1])
        mask = a <= b if i == 0 else b < a
        return _flat(dEdf) * mask


class Max(Node):
    def as_string(self, arg_names):
        return f"max{{{arg_names[0]}, {arg_names[1]}}}"

    def dim_forward(self, xs):
        _same_pair("Max", xs, "Bad arguments")
        return xs[0]

    def _compute(self, xs):
        return np.maximum(xs[0], xs[1])

    def _grad(self, xs, fx, dEdf, i):
        a, b = _flat(xs[0]), _flat(xs[1])
        mask = a >= b if i == 0 else b > a
        return _flat(dEdf) * mask


class TraceOfProduct(Node):
    def as_string(self, arg_names):
        return f"Tr({arg_names[0]} * {arg_names[1]}^T)"

    def dim_forward(self, xs):
        _same_pair("TraceOfProduct", xs, "Bad arguments")
        return Dim(1)

    def _compute(self, xs):
        return np.sum(_flat(xs[0]) * _flat(xs[1]))

    def _grad(self, xs, fx, dEdf, i):
        return _flat(dEdf)[0] * _flat(xs[1 - i])


class ConstScalarMultiply(Node):
    def __init__(self, args=(), alpha: float = 1.0):
        super().__init__(args)
        self.alpha = alpha

    def as_string(self, arg_names):
        return f"{arg_names[0]} * {_fmt(self.alpha)}"

    def dim_forward(self, xs):
        if len(xs) != 1:
            raise _bad("ConstScalarMultiply", xs, "expects one argument")
        return xs[0]

    def _compute(self, xs):
        return _flat(xs[0]) * np.float32(self.alpha)

    def _grad(self, xs, fx, dEdf, i):
        return _flat(dEdf) * np.float32(self.alpha)


class DotProduct(Node):
    def as_string(self, arg_names):
        return f"{arg_names[0]}^T . {arg_names[1]}"

    def dim_forward(self, xs):
        if (len(xs) != 2 or not looks_like_vector(xs[0])
                or not looks_like_vector(xs[1]) or xs[0].rows() != xs[1].rows()):
            raise _bad("DotProduct", xs, "Bad arguments")
        return Dim(1)

    def _compute(self, xs):
        return np.dot(_flat(xs[0]), _flat(xs[1]))

    def _grad(self, xs, fx, dEdf, i):
        return _flat(dEdf)[0] * _flat(xs[1 - i])


class Transpose(Node):
    def as_string(self, arg_names):
        return f"{arg_names[0]}^T"

    def dim_forward(self, xs):
        if len(xs) != 1:
            raise _bad("Transpose", xs, "Bad arguments")
        return xs[0].transpose()

    def _compute(self, xs):
        return _flat(_mat(xs[0]).T)

    def _grad(self, xs, fx, dEdf, i):
        return _flat(_mat(dEdf).T)


class Reshape(Node):
    def __init__(self, args=(), to: Dim = Dim(1)):
        super().__init__(args)
        self.to = to if isinstance(to, Dim) else Dim(to)

    def as_string(self, arg_names):
        return f"reshape({arg_names[0]} --> {self.to})"

    def dim_forward(self, xs):
        if len(xs) != 1 or xs[0].size() != self.to.size():
            raise _bad("Reshape", xs)
        return self.to

    def _compute(self, xs):
        return _flat(xs[0])

    def _grad(self, xs, fx, dEdf, i):
        return _flat(dEdf)


class SumColumns(Node):
    def as_string(self, arg_names):
        s = f"sum_cols(matrix={arg_names[0]}"
        if len(arg_names) == 2:
            s += f", col_weighting={arg_names[1]}"
        return s + ")"

    def dim_forward(self, xs):
        if len(xs) not in (1, 2):
            raise _bad("SumColumns", xs)
        return Dim(xs[0].rows())

    def _compute(self, xs):
        m = _mat(xs[0])
        if len(xs) == 2:
            return m @ _flat(xs[1])
        return m.sum(axis=1)

    def _grad(self, xs, fx, dEdf, i):
        d = _flat(dEdf)
        m = _mat(xs[0])
        if i == 0:
            w = _flat(xs[1]) if len(xs) == 2 else np.ones(m.shape[1], np.float32)
            return _flat(np.outer(d, w))
        return m.T @ d


class KMHNGram(Node):
    def __init__(self, args=(), n: int = 1):
        super().__init__(args)
        self.n = n

    def as_string(self, arg_names):
        return f"kmh-ngram({arg_names[0]})"

    def dim_forward(self, xs):
        if len(xs) != 1 or xs[0].ndims() != 2:
            raise _bad("KMHNGram", xs)
        new_cols = xs[0].cols() - self.n + 1
        if new_cols < 1:
            raise _bad("KMHNGram", xs)
        return Dim(xs[0][0], new_cols)

    def _compute(self, xs):
        m = _mat(xs[0])
        cols = m.shape[1] - self.n + 1
        return _flat(sum(m[:, k:k + cols] for k in range(self.n)))

    def _grad(self, xs, fx, dEdf, i):
        m = _mat(xs[0])
        d = _mat(dEdf)
        cols = d.shape[1]
        g = np.zeros_like(m)
        for k in range(self.n):
            g[:, k:k + cols] += d
        return _flat(g)


class InnerProduct3D_1D(Node):
    def as_string(self, arg_names):
        s = f"dot({arg_names[0]},{arg_names[1]})"
        if len(arg_names) == 3:
            s += f" + {arg_names[2]}"
        return s

    def dim_forward(self, xs):
        if len(xs) not in (2, 3):
            raise ValueError("Expected two or three arguments in InnerProduct3D_1D")
        if xs[0].ndims() != 3 or xs[1].ndims() != 1 or xs[0][2] != xs[1][0]:
            raise _bad("InnerProduct3D_1D", xs)
        d = Dim(xs[0][0], xs[0][1])
        if len(xs) == 3 and xs[2] != d:
            raise _bad("InnerProduct3D_1D", xs)
        return d

    def _compute(self, xs):
        y = np.tensordot(np.asarray(xs[0], np.float32), _flat(xs[1]), axes=([2], [0]))
        if len(xs) == 3:
            y = y + np.asarray(xs[2], np.float32)
        return _flat(y)

    def _grad(self, xs, fx, dEdf, i):
        d = np.asarray(dEdf, np.float32).reshape(np.shape(fx), order="F")
        if i == 0:
            return _flat(d[:, :, None] * _flat(xs[1])[None, None, :])
        if i == 1:
            return np.tensordot(np.asarray(xs[0], np.float32), d, axes=([0, 1], [0, 1]))
        return _flat(d)


class GaussianNoise(Node):
    def __init__(self, args=(), stddev: float = 0.0):
        super().__init__(args)
        self.stddev = stddev

    def as_string(self, arg_names):
        return f"{arg_names[0]} + N(0,{_fmt(self.stddev)})"

    def dim_forward(self, xs):
        if len(xs) != 1:
            raise _bad("GaussianNoise", xs)
        return xs[0]

    def _compute(self, xs):
        x = _flat(xs[0])
        return x + get_rng().normal(0.0, self.stddev, size=x.shape)

    def _grad(self, xs, fx, dEdf, i):
        return _flat(dEdf)


class Dropout(Node):
    def __init__(self, args=(), p: float = 0.5):
        super().__init__(args)
        self.p = p
        self._mask = np.ones(0, np.float32)

    def as_string(self, arg_names):
        return f"dropout({arg_names[0]},p={_fmt(self.p)})"

    def dim_forward(self, xs):
        if len(xs) != 1:
            raise _bad("Dropout", xs)
        return xs[0]

    def aux_storage_size(self):
        return 4 * self.dim.size()

    def _compute(self, xs):
        x = _flat(xs[0])
        keep = 1.0 - self.p
        scale = 1.0 / keep if keep > 0 else 0.0
        self._mask = ((get_rng().random(x.shape) < keep) * scale).astype(np.float32)
        return x * self._mask

    def _grad(self, xs, fx, dEdf, i):
        return _flat(dEdf) * self._mask


class BlockDropout(Node):
    def __init__(self, args=(), dropout_probability: float = 0.5):
        super().__init__(args)
        self.dropout_probability = dropout_probability
        self._multiplier = 1.0

    def as_string(self, arg_names):
        return (f"block_dropout({arg_names[0]},dropout_probability="
                f"{_fmt(self.dropout_probability)})")

    def dim_forward(self, xs):
        if len(xs) != 1:
            raise _bad("BlockDropout", xs)
        return xs[0]

    def _compute(self, xs):
        keep = 1.0 - self.dropout_probability
        self._multiplier = (1.0 / keep) if get_rng().random() < keep else 0.0
        return _flat(xs[0]) * np.float32(self._multiplier)

    def _grad(self, xs, fx, dEdf, i):
        return _flat(dEdf) * np.float32(self._multiplier)


class ConstantPlusX(Node):
    def __init__(self, args=(), c: float = 0.0):
        super().__init__(args)
        self.c = c

    def as_string(self, arg_names):
        return f"{_fmt(self.c)} + {arg_names[0]}"

    def dim_forward(self, xs):
        if len(xs) != 1:
            raise _bad("ConstantPlusX", xs)
        return xs[0]

    def _compute(self, xs):
        return _flat(xs[0]) + np.float32(self.c)

    def _grad(self, xs, fx, dEdf, i):
        return _flat(dEdf)


class ConstantMinusX(Node):
    def __init__(self, args=(), c: float = 0.0):
        super().__init__(args)
        self.c = c

    def as_string(self, arg_names):
        return f"{_fmt(self.c)} - {arg_names[0]}"

    def dim_forward(self, xs):
        if len(xs) != 1:
            raise _bad("ConstantMinusX", xs)
        return xs[0]

    def _compute(self, xs):
        return np.float32(self.c) - _flat(xs[0])

    def _grad(self, xs, fx, dEdf, i):
        return -_flat(dEdf)


def _same_truncated(name: str, xs) -> Dim:
    if not xs:
        raise _bad(name, xs)
    d = xs[0].truncate()
    if any(x.truncate() != d for x in xs[1:]):
        raise _bad(name, xs, "Mismatched input dimensions")
    return d


class LogSumExp(Node):
    def as_string(self, arg_names):
        return "log(exp " + " + exp ".join(arg_names) + ")"

    def dim_forward(self, xs):
        return _same_truncated("LogSumExp", xs)

    def _compute(self, xs):
        stacked = np.stack([_flat(x) for x in xs])
        m = stacked.max(axis=0)
        return m + np.log(np.exp(stacked - m).sum(axis=0))

    def _grad(self, xs, fx, dEdf, i):
        return _flat(dEdf) * np.exp(_flat(xs[i]) - _flat(fx))


class Sum(Node):
    def as_string(self, arg_names):
        return " + ".join(arg_names)

    def dim_forward(self, xs):
        return _same_truncated("Sum", xs)

    def _compute(self, xs):
        return sum(_flat(x) for x in xs)

    def _grad(self, xs, fx, dEdf, i):
        return _flat(dEdf)


class Average(Node):
    def as_string(self, arg_names):
        return "average(" + ", ".join(arg_names) + ")"

    def dim_forward(self, xs):
        if not xs or any(x != xs[0] for x in xs[1:]):
            raise _bad("Average", xs, "Mismatched input dimensions")
        return xs[0]

    def _compute(self, xs):
        return sum(_flat(x) for x in xs) / np.float32(len(xs))

    def _grad(self, xs, fx, dEdf, i):
        return _flat(dEdf) / np.float32(len(xs))


class Tanh(_Unary):
    _label = "tanh"

    def _compute(self, xs):
        return np.tanh(_flat(xs[0]))

    def _grad(self, xs, fx, dEdf, i):
        f = _flat(fx)
        return _flat(dEdf) * (1.0 - f * f)


class Square(_Unary):
    _label = "square"

    def _compute(self, xs):
        x = _flat(xs[0])
        return x * x

    def _grad(self, xs, fx, dEdf, i):
        return _flat(dEdf) * 2.0 * _flat(xs[0])


class Cube(_Unary):
    _label = "cube"

    def _compute(self, xs):
        return _flat(xs[0]) ** 3

    def _grad(self, xs, fx, dEdf, i):
        x = _flat(xs[0])
        return _flat(dEdf) * 3.0 * x * x


class Exp(_Unary):
    _label = "exp"

    def _compute(self, xs):
        return np.exp(_flat(xs[0]))

    def _grad(self, xs, fx, dEdf, i):
        return _flat(dEdf) * _flat(fx)


class Log(_Unary):
    _label = "log"

    def _compute(self, xs):
        return np.log(_flat(xs[0]))

    def _grad(self, xs, fx, dEdf, i):
        return _flat(dEdf) / _flat(xs[0])


class Concatenate(Node):
    """Stacks its arguments along the first axis."""

    def as_string(self, arg_names):
        return "concat(" + ",".join(arg_names) + ")"

    def dim_forward(self, xs):
        if not xs:
            raise _bad("Concatenate", xs)
        dr = xs[0].resized(1) if looks_like_vector(xs[0]) else xs[0]
        new_rows = 0
        for c in xs:
            if looks_like_vector(c):
                c = c.resized(1)
            new_rows += c[0]
            dr = dr.with_dim(0, c[0])
            if dr != c:
                raise _bad("Concatenate", xs)
        return dr.with_dim(0, new_rows)

    def _compute(self, xs):
        rest = max(_mat(x).shape[1] for x in xs)
        return _flat(np.vstack([_flat(x).reshape(-1, rest, order="F") for x in xs]))

    def _grad(self, xs, fx, dEdf, i):
        rows = [_dim_of(x)[0] for x in xs]
        start = sum(rows[:i])
        total = sum(rows)
        d = _flat(dEdf).reshape(total, -1, order="F")
        return _flat(d[start:start + rows[i]])


class ConcatenateColumns(Node):
    def as_string(self, arg_names):
        return "concat_cols(" + ",".join(arg_names) + ")"

    def dim_forward(self, xs):
        if not xs:
            raise _bad("ConcatenateColumns", xs)
        rows = xs[0][0]
        if any(d[0] != rows for d in xs):
            raise _bad("ConcatenateColumns", xs)
        return Dim(rows, sum(d[1] for d in xs))

    def _compute(self, xs):
        return _flat(np.hstack([_mat(x) for x in xs]))

    def _grad(self, xs, fx, dEdf, i):
        cols = [_mat(x).shape[1] for x in xs]
        start = sum(cols[:i])
        return _flat(_mat(dEdf)[:, start:start + cols[i]])


class PairwiseRankLoss(Node):
    def __init__(self, args=(), margin: float = 1.0):
        super().__init__(args)
        self.margin = margin

    def as_string(self, arg_names):
        return f"max(0, {_fmt(self.margin)} - {arg_names[0]} + {arg_names[1]})"

    def dim_forward(self, xs):
        if (len(xs) != 2 or xs[0] != xs[1] or xs[0].rows() != 1
                or xs[0].ndims() not in (1, 2)):
            raise _bad("PairwiseRankLoss", xs)
        return xs[0]

    def _compute(self, xs):
        return np.maximum(0.0, self.margin - _flat(xs[0]) + _flat(xs[1]))

    def _grad(self, xs, fx, dEdf, i):
        g = _flat(dEdf) * (_flat(fx) > 0)
        return -g if i == 0 else g


class Hinge(Node):
    def __init__(self, args=(), index: int = 0, margin: float = 1.0):
        super().__init__(args)
        self.index = index
        self.margin = margin

    def as_string(self, arg_names):
        return f"hinge({arg_names[0]}, pe={self.index}, m={_fmt(self.margin)})"

    def dim_forward(self, xs):
        if len(xs) != 1 or not looks_like_vector(xs[0]):
            raise _bad("Hinge", xs)
        return Dim(1)

    def aux_storage_size(self):
        return 0

    def _margins(self, x: np.ndarray) -> np.ndarray:
        if not 0 <= self.index < x.size:
            raise IndexError(f"hinge index {self.index} out of range")
        m = np.maximum(0.0, self.margin - x[self.index] + x).astype(np.float32)
        m[self.index] = 0.0
        return m

    def _compute(self, xs):
        return self._margins(_flat(xs[0])).sum()

    def _grad(self, xs, fx, dEdf, i):
        d = _flat(dEdf)[0]
        g = (self._margins(_flat(xs[0])) > 0).astype(np.float32) * d
        g[self.index] = -g.sum()
        return g


class Identity(_Unary):
    def as_string(self, arg_names):
        return arg_names[0]

    def _compute(self, xs):
        return _flat(xs[0])

    def _grad(self, xs, fx, dEdf, i):
        return _flat(dEdf)


class _VectorUnary(_Unary):
    def dim_forward(self, xs):
        if len(xs) != 1 or not looks_like_vector(xs[0]):
            raise _bad(type(self).__name__, xs)
        return xs[0]


def _softmax(v: np.ndarray) -> np.ndarray:
    e = np.exp(v - v.max())
    return e / e.sum()


def _logsumexp(v: np.ndarray) -> float:
    m = v.max()
    return float(m + np.log(np.exp(v - m).sum()))


class Softmax(_VectorUnary):
    _label = "softmax"

    def _compute(self, xs):
        return _softmax(_flat(xs[0]))

    def _grad(self, xs, fx, dEdf, i):
        f, d = _flat(fx), _flat(dEdf)
        return f * (d - np.dot(f, d))


class SoftSign(_VectorUnary):
    _label = "softsign"

    def _compute(self, xs):
        x = _flat(xs[0])
        return x / (1.0 + np.abs(x))

    def _grad(self, xs, fx, dEdf, i):
        den = 1.0 + np.abs(_flat(xs[0]))
        return _flat(dEdf) / (den * den)


class PickNegLogSoftmax(Node):
    def __init__(self, args=(), val: int = 0):
        super().__init__(args)
        self.val = val

    def as_string(self, arg_names):
        return f"log_softmax({arg_names[0]})_{{{self.val}}}"

    def dim_forward(self, xs):
        if len(xs) != 1 or not looks_like_vector(xs[0]):
            raise _bad("PickNegLogSoftmax", xs)
        return Dim(1)

    def _compute(self, xs):
        x = _flat(xs[0])
        if not 0 <= self.val < x.size:
            raise IndexError(f"index {self.val} out of range")
        return _logsumexp(x) - x[self.val]

    def _grad(self, xs, fx, dEdf, i):
        d = _flat(dEdf)[0]
        g = _softmax(_flat(xs[0])) * d
        g[self.val] -= d
        return g


class LogSoftmax(_VectorUnary):
    _label = "log_softmax"

    def _compute(self, xs):
        x = _flat(xs[0])
        return x - _logsumexp(x)

    def _grad(self, xs, fx, dEdf, i):
        d = _flat(dEdf)
        return d - np.exp(_flat(fx)) * d.sum()


class RestrictedLogSoftmax(_VectorUnary):
    def __init__(self, args=(), denominators: Iterable[int] = ()):
        super().__init__(args)
        self.denominators = list(denominators)

    def as_string(self, arg_names):
        return f"r_log_softmax({arg_names[0]})"

    def _compute(self, xs):
        x = _flat(xs[0])
        idx = np.asarray(self.denominators, dtype=int)
        out = np.full(x.shape, -np.inf, dtype=np.float32)
        out[idx] = x[idx] - _logsumexp(x[idx])
        return out

    def _grad(self, xs, fx, dEdf, i):
        d = _flat(dEdf)
        idx = np.asarray(self.denominators, dtype=int)
        g = np.zeros_like(d)
        g[idx] = d[idx] - np.exp(_flat(fx)[idx]) * d[idx].sum()
        return g


class PickElement(Node):
    def __init__(self, args=(), val: int = 0):
        super().__init__(args)
        self.val = val

    def as_string(self, arg_names):
        return f"pick({arg_names[0]},{self.val})"

    def dim_forward(self, xs):
        if len(xs) != 1 or not looks_like_vector(xs[0]):
            raise _bad("PickElement", xs)
        return Dim(1)

    def _compute(self, xs):
        x = _flat(xs[0])
        if not 0 <= self.val < x.size:
            raise IndexError(f"index {self.val} out of range")
        return x[self.val]

    def _grad(self, xs, fx, dEdf, i):
        g = np.zeros(_flat(xs[0]).size, np.float32)
        g[self.val] = _flat(dEdf)[0]
        return g


class PickRange(Node):
    """The slice ``x[start:end]`` of a vector."""

    def __init__(self, args=(), start: int = 0, end: int = 1):
        super().__init__(args)
        self.start = start
        self.end = end

    def as_string(self, arg_names):
        return f"slice({arg_names[0]},{self.start}:{self.end})"

    def dim_forward(self, xs):
        if len(xs) != 1 or not looks_like_vector(xs[0]):
            raise _bad("PickRange", xs)
        if not 0 <= self.start < self.end <= xs[0][0]:
            raise _bad("PickRange", xs, f"Bad range {self.start}:{self.end}")
        return Dim(self.end - self.start)

    def _compute(self, xs):
        return _flat(xs[0])[self.start:self.end]

    def _grad(self, xs, fx, dEdf, i):
        g = np.zeros(_flat(xs[0]).size, np.float32)
        g[self.start:self.end] = _flat(dEdf)
        return g


class MatrixMultiply(Node):
    def as_string(self, arg_names):
        return f"{arg_names[0]} * {arg_names[1]}"

    def dim_forward(self, xs):
        if len(xs) != 2 or xs[0].cols() != xs[1].rows():
            raise _bad("MatrixMultiply", xs, "Mismatched input dimensions")
        if xs[1].ndims() == 1:
            return Dim(xs[0].rows())
        return Dim(xs[0].rows(), xs[1].cols())

    def _compute(self, xs):
        return _flat(_mat(xs[0]) @ _mat(xs[1]))

    def _grad(self, xs, fx, dEdf, i):
        d = _mat(dEdf)
        if i == 0:
            return _flat(d @ _mat(xs[1]).T)
        return _flat(_mat(xs[0]).T @ d)


class CwiseMultiply(Node):
    def as_string(self, arg_names):
        return f"{arg_names[0]} \\cdot {arg_names[1]}"

    def dim_forward(self, xs):
        if len(xs) != 2:
            raise _bad("CwiseMultiply", xs)
        return _same_truncated("CwiseMultiply", xs)

    def _compute(self, xs):
        return _flat(xs[0]) * _flat(xs[1])

    def _grad(self, xs, fx, dEdf, i):
        return _flat(dEdf) * _flat(xs[1 - i])


class CwiseQuotient(Node):
    def as_string(self, arg_names):
        return f"{arg_names[0]} / {arg_names[1]}"

    def dim_forward(self, xs):
        if len(xs) != 2:
            raise _bad("CwiseQuotient", xs)
        return _same_truncated("CwiseQuotient", xs)

    def _compute(self, xs):
        return _flat(xs[0]) / _flat(xs[1])

    def _grad(self, xs, fx, dEdf, i):
        d, y = _flat(dEdf), _flat(xs[1])
        if i == 0:
            return d / y
        return -d * _flat(fx) / y


class AffineTransform(Node):
    """``b + W1 x1 + W2 x2 + ...`` with arguments ``b, W1, x1, W2, x2, ...``."""

    def as_string(self, arg_names):
        s = arg_names[0]
        for w, x in zip(arg_names[1::2], arg_names[2::2]):
            s += f" + {w} * {x}"
        return s

    def dim_forward(self, xs):
        if not xs or (len(xs) - 1) % 2 != 0:
            raise _bad("AffineTransform", xs, "Bad number of inputs")
        for w, x in zip(xs[1::2], xs[2::2]):
            if (w.cols() != x.rows() or xs[0].rows() != w.rows()
                    or xs[0].cols() != x.cols()):
                raise _bad("AffineTransform", xs, "Bad dimensions")
        return xs[0]

    def _compute(self, xs):
        y = _mat(xs[0]).copy()
        for w, x in zip(xs[1::2], xs[2::2]):
            y += _mat(w) @ _mat(x)
        return _flat(y)

    def _grad(self, xs, fx, dEdf, i):
        d = _mat(dEdf)
        if i == 0:
            return _flat(d)
        if i % 2 == 1:
            return _flat(d @ _mat(xs[i + 1]).T)
        return _flat(_mat(xs[i - 1]).T @ d)


class Negate(_Unary):
    def as_string(self, arg_names):
        return f"-{arg_names[0]}"

    def _compute(self, xs):
        return -_flat(xs[0])

    def _grad(self, xs, fx, dEdf, i):
        return -_flat(dEdf)


class Rectify(_Unary):
    _label = "ReLU"

    def _compute(self, xs):
        return np.maximum(0.0, _flat(xs[0]))

    def _grad(self, xs, fx, dEdf, i):
        return _flat(dEdf) * (_flat(fx) > 0)


class _Distance(Node):
    def dim_forward(self, xs):
        _same_pair(type(self).__name__, xs, "Mismatched input dimensions")
        return Dim(1)


class HuberDistance(_Distance):
    def __init__(self, args=(), d: float = 1.345):
        super().__init__(args)
        self.d = d

    def as_string(self, arg_names):
        return f"|| {arg_names[0]} - {arg_names[1]} ||_H({_fmt(self.d)})"

    def _compute(self, xs):
        a = np.abs(_flat(xs[0]) - _flat(xs[1]))
        return np.where(a < self.d, a * a, self.d * (2.0 * a - self.d)).sum()

    def _grad(self, xs, fx, dEdf, i):
        a = _flat(xs[0]) - _flat(xs[1])
        g = np.where(np.abs(a) < self.d, 2.0 * a, 2.0 * self.d * np.sign(a))
        g = g * _flat(dEdf)[0]
        return g if i == 0 else -g


class L1Distance(_Distance):
    def as_string(self, arg_names):
        return f"|| {arg_names[0]} - {arg_names[1]} ||_1"

    def _compute(self, xs):
        return np.abs(_flat(xs[0]) - _flat(xs[1])).sum()

    def _grad(self, xs, fx, dEdf, i):
        g = np.sign(_flat(xs[0]) - _flat(xs[1])) * _flat(dEdf)[0]
        return g if i == 0 else -g


class PoissonRegressionLoss(Node):
    def __init__(self, args=(), y: int = 0):
        super().__init__(args)
        self.y = y

    def as_string(self, arg_names):
        return f"-log Poisson({self.y}; lambda=\\exp{arg_names[0]})"

    def dim_forward(self, xs):
        if len(xs) != 1 or xs[0].size() != 1:
            raise _bad("PoissonRegressionLoss", xs)
        return xs[0]

    def _compute(self, xs):
        x = _flat(xs[0])[0]
        return math.exp(x) - self.y * x + math.lgamma(self.y + 1)

    def _grad(self, xs, fx, dEdf, i):
        x = _flat(xs[0])[0]
        return _flat(dEdf) * (math.exp(x) - self.y)


class SquaredEuclideanDistance(_Distance):
    def as_string(self, arg_names):
        return f"|| {arg_names[0]} - {arg_names[1]} ||^2"

    def _compute(self, xs):
        a = _flat(xs[0]) - _flat(xs[1])
        return np.dot(a, a)

    def _grad(self, xs, fx, dEdf, i):
        g = 2.0 * (_flat(xs[0]) - _flat(xs[1])) * _flat(dEdf)[0]
        return g if i == 0 else -g


class LogisticSigmoid(_Unary):
    def as_string(self, arg_names):
        return f"\\sigma({arg_names[0]})"

    def _compute(self, xs):
        return 1.0 / (1.0 + np.exp(-_flat(xs[0])))

    def _grad(self, xs, fx, dEdf, i):
        f = _flat(fx)
        return _flat(dEdf) * f * (1.0 - f)


class BinaryLogLoss(Node):
    def as_string(self, arg_names):
        return f"binary_log_loss({arg_names[0]}, {arg_names[1]})"

    def dim_forward(self, xs):
        if len(xs) != 2:
            raise _bad("BinaryLogLoss", xs)
        for d in xs:
            if d.rows() != 2 and d.ndims() != 1:
                raise _bad("BinaryLogLoss", xs)
        return Dim(1)

    def _compute(self, xs):
        x, y = _flat(xs[0]), _flat(xs[1])
        return -(y * np.log(x) + (1.0 - y) * np.log(1.0 - x)).sum()

    def _grad(self, xs, fx, dEdf, i):
        x, y = _flat(xs[0]), _flat(xs[1])
        d = _flat(dEdf)[0]
        if i == 0:
            return d * ((1.0 - y) / (1.0 - x) - y / x)
        return d * (np.log(1.0 - x) - np.log(x))