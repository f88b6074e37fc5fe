"""Convolution, pooling and column-broadcast operations on matrices."""

from __future__ import annotations

import numpy as np

from .dim import Dim, format_dims
from .nodes import Node


def _mat(a) -> np.ndarray:
    a = np.asarray(a, dtype=np.float32)
    if a.ndim <= 1:
        return a.reshape(-1, 1)
    return a.reshape(a.shape[0], -1, order="F")


def _bad(name: str, xs) -> ValueError:
    return ValueError(f"bad input dimensions in {name}: {format_dims(xs)}")


class AddVectorToAllColumns(Node):
    """Adds a column vector to every column of a matrix."""

    def as_string(self, arg_names):
        return f"fold_rows({arg_names[0]}, {arg_names[1]})"

    def dim_forward(self, xs):
        if (len(xs) != 2 or xs[0].rows() != xs[1].rows()
                or xs[0].ndims() != 2 or xs[1].ndims() != 1):
            raise _bad("AddVectorToAllColumns", xs)
        return xs[0]

    def _compute(self, xs):
        return _mat(xs[0]) + _mat(xs[1])[:, :1]

    def _grad(self, xs, fx, dEdf, i):
        d = _mat(dEdf)
        if i == 0:
            return d
        return d.sum(axis=1)


class KMaxPooling(Node):
    """Keeps the ``k`` largest entries of each row, in their original order."""

    def __init__(self, args=(), k: int = 1):
        super().__init__(args)
        self.k = k
        self._maxmap = np.zeros((0, 0), dtype=np.int64)

    def as_string(self, arg_names):
        return f"kmaxpool({arg_names[0]}, k={self.k})"

    def dim_forward(self, xs):
        if self.k < 1:
            raise ValueError(f"bad k in KMaxPooling: {self.k}")
        if len(xs) != 1 or xs[0].ndims() != 2 or xs[0].cols() < self.k:
            raise _bad("KMaxPooling", xs)
        return Dim(xs[0].rows(), self.k)

    def aux_storage_size(self):
        return 4 * self.dim.size()

    def _compute(self, xs):
        x = _mat(xs[0])
        k = self.k
        y = np.zeros((x.shape[0], k), dtype=np.float32)
        maxmap = np.zeros((x.shape[0], k), dtype=np.int64)
        for r, row in enumerate(x):
            threshold = np.sort(row)[-k]
            picked = np.flatnonzero(row >= threshold)[:k]
            maxmap[r] = picked
            y[r] = row[picked]
        self._maxmap = maxmap
        return y

    def _grad(self, xs, fx, dEdf, i):
        d = _mat(dEdf)
        g = np.zeros_like(_mat(xs[0]))
        for r, (cols, drow) in enumerate(zip(self._maxmap, d)):
            np.add.at(g[r], cols, drow)
        return g


class FoldRows(Node):
    """Sums each consecutive block of ``nrows`` rows into one row."""

    def __init__(self, args=(), nrows: int = 2):
        super().__init__(args)
        self.nrows = nrows

    def as_string(self, arg_names):
        return f"fold_rows({arg_names[0]}, nrows={self.nrows})"

    def dim_forward(self, xs):
        if len(xs) != 1 or xs[0].ndims() != 2 or self.nrows < 1:
            raise _bad("FoldRows", xs)
        orows = xs[0].rows() // self.nrows
        if orows * self.nrows != xs[0].rows():
            raise _bad("FoldRows", xs)
        return Dim(orows, xs[0].cols())

    def _compute(self, xs):
        x = _mat(xs[0])
        orows = x.shape[0] // self.nrows
        return x.reshape(orows, self.nrows, x.shape[1]).sum(axis=1)

    def _grad(self, xs, fx, dEdf, i):
        return np.repeat(_mat(dEdf), self.nrows, axis=0)


class Conv1DNarrow(Node):
    """Row-wise narrow convolution of an input ``d x s`` with a filter ``d x m``."""

    def as_string(self, arg_names):
        return f"conv1d_narrow({arg_names[0]}, f={arg_names[1]})"

    def dim_forward(self, xs):
        if len(xs) != 2:
            raise ValueError(f"Conv1DNarrow requires two inputs: {format_dims(xs)}")
        ocols = xs[0].cols() - xs[1].cols() + 1
        if (xs[0].ndims() != 2 or xs[1].ndims() != 2
                or xs[0].rows() != xs[1].rows() or ocols < 1):
            raise _bad("Conv1DNarrow", xs)
        return Dim(xs[0].rows(), ocols)

    def _compute(self, xs):
        x, f = _mat(xs[0]), _mat(xs[1])
        ycols = x.shape[1] - f.shape[1] + 1
        y = np.zeros((x.shape[0], ycols), dtype=np.float32)
        for k in range(f.shape[1]):
            y += f[:, k:k + 1] * x[:, k:k + ycols]
        return y

    def _grad(self, xs, fx, dEdf, i):
        x, f, d = _mat(xs[0]), _mat(xs[1]), _mat(dEdf)
        ycols = d.shape[1]
        if i == 0:
            g = np.zeros_like(x)
            for k in range(f.shape[1]):
                g[:, k:k + ycols] += f[:, k:k + 1] * d
            return g
        g = np.zeros_like(f)
        for k in range(f.shape[1]):
            g[:, k] = (x[:, k:k + ycols] * d).sum(axis=1)
        return g


class Conv1DWide(Node):
    """Row-wise wide convolution of an input ``d x s`` with a filter ``d x m``."""

    def as_string(self, arg_names):
        return f"conv1d_wide({arg_names[0]}, f={arg_names[1]})"

    def dim_forward(self, xs):
        if len(xs) != 2:
            raise ValueError(f"Conv1DWide requires two inputs: {format_dims(xs)}")
        if (xs[0].ndims() != 2 or xs[1].ndims() != 2
                or xs[0].rows() != xs[1].rows()):
            raise _bad("Conv1DWide", xs)
        return Dim(xs[0].rows(), xs[0].cols() + xs[1].cols() - 1)

    def _compute(self, xs):
        x, f = _mat(xs[0]), _mat(xs[1])
        xcols = x.shape[1]
        y = np.zeros((x.shape[0], xcols + f.shape[1] - 1), dtype=np.float32)
        for k in range(f.shape[1]):
            y[:, k:k + xcols] += f[:, k:k + 1] * x
        return y

    def _grad(self, xs, fx, dEdf, i):
        x, f, d = _mat(xs[0]), _mat(xs[1]), _mat(dEdf)
        xcols = x.shape[1]
        if i == 0:
            g = np.zeros_like(x)
            for k in range(f.shape[1]):
                g += f[:, k:k + 1] * d[:, k:k + xcols]
            return g
        g = np.zeros_like(f)
        for k in range(f.shape[1]):
            g[:, k] = (x * d[:, k:k + xcols]).sum(axis=1)
        return g