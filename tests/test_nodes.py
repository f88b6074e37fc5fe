import math

import numpy as np
import pytest

from dyngraph.dim import Dim
from dyngraph import nodes as n


def ccm(shape, values):
    return np.asarray(values, dtype=np.float32).reshape(shape, order="F")


def t(T, i, j=0):
    return float(T[i]) if T.ndim == 1 else float(T[i, j])


def test_squared_l2():
    U, V = ccm((2,), [4, 5]), ccm((2,), [1, 1])
    e = n.SquaredEuclideanDistance()
    xs = [U, V]
    W = e.forward(xs)
    assert t(W, 0) == pytest.approx(25.0)
    dEdf = ccm((1,), [1])
    d1 = e.backward(xs, W, dEdf, 0)
    d2 = e.backward(xs, W, dEdf, 1)
    assert list(d1) == pytest.approx([6, 8])
    assert list(d2) == pytest.approx([-6, -8])


def test_matrix_multiply():
    U = ccm((2, 3), [1, 2, 3, 4, 5, 6])
    V = ccm((3, 2), [7, 8, 9, 10, 11, 12])
    mm = n.MatrixMultiply()
    xs = [U, V]
    W = mm.forward(xs)
    assert W.shape == (2, 2)
    assert W.tolist() == pytest.approx([[76, 103], [100, 136]])
    dEdf = ccm((2, 2), [-1, 0.5, 1, 2])
    d0 = mm.backward(xs, W, dEdf, 0)
    assert d0.tolist() == [pytest.approx([3, 3, 3]), pytest.approx([23.5, 26, 28.5])]
    d1 = mm.backward(xs, W, dEdf, 1)
    assert d1.tolist() == [pytest.approx([0, 5]), pytest.approx([-1, 11]),
                           pytest.approx([-2, 17])]


def test_column_concat():
    u = [ccm((2,), [1, 2]), ccm((2,), [3, 4]), ccm((2,), [5, 6])]
    cc = n.ConcatenateColumns()
    U = cc.forward(u)
    W = n.MatrixMultiply().forward([U, ccm((3, 2), [7, 8, 9, 10, 11, 12])])
    assert W.tolist() == pytest.approx([[76, 103], [100, 136]]) or \
        W.tolist() == [pytest.approx([76, 103]), pytest.approx([100, 136])]
    for i in range(3):
        assert cc.backward(u, U, U, i).tolist() == u[i].tolist()


def test_row_concat():
    u = [ccm((2,), [1, 4]), ccm((2,), [2, 5]), ccm((3,), [3, 6, 7])]
    cr = n.Concatenate()
    U = cr.forward(u)
    assert U.tolist()[:6] == pytest.approx([1, 4, 2, 5, 3, 6])
    assert U.shape == (7,)
    for i in range(3):
        assert cr.backward(u, U, U, i).tolist() == u[i].tolist()


def test_affine_transform_as_multilinear():
    b = ccm((3,), [1, 2, 3])
    W = ccm((3, 2), [2, 4, 6, 3, 5, 7])
    x = ccm((2,), [-1, 1])
    ml = n.AffineTransform()
    xs = [b, W, x]
    r1 = ml.forward(xs)
    p = n.MatrixMultiply().forward([W, x])
    r2 = n.Sum().forward([p, b])
    assert r1.tolist() == pytest.approx([2, 3, 4])
    assert r2.tolist() == pytest.approx([2, 3, 4])
    dEdf = ccm((3,), [1, 0.5, 0.25])
    assert ml.backward(xs, r1, dEdf, 0).tolist() == pytest.approx([1, 0.5, 0.25])
    dW = ml.backward(xs, r1, dEdf, 1)
    assert dW.shape == (3, 2)
    assert dW[:, 0].tolist() == pytest.approx([-1, -0.5, -0.25])
    assert dW[:, 1].tolist() == pytest.approx([1, 0.5, 0.25])
    assert ml.backward(xs, r1, dEdf, 2).tolist() == pytest.approx([5.5, 7.25])


def test_logistic_sigmoid():
    x = ccm((5, 1), [-6, -math.log(3), 0, math.log(3), 6])
    ls = n.LogisticSigmoid()
    r = ls.forward([x])
    assert r.shape == (5, 1)
    assert t(r, 0) == pytest.approx(1 / (1 + math.exp(6)), rel=1e-4)
    assert [t(r, i) for i in (1, 2, 3)] == pytest.approx([0.25, 0.5, 0.75], rel=1e-4)
    assert t(r, 4) == pytest.approx(1 - t(r, 0), rel=1e-4)
    d = ls.backward([x], r, ccm((5, 1), [1] * 5), 0)
    assert t(d, 1) == pytest.approx(0.1875, rel=1e-4)
    assert t(d, 2) == pytest.approx(0.25, rel=1e-4)
    assert t(d, 3) == pytest.approx(t(d, 1), rel=1e-4)
    assert t(d, 4) == pytest.approx(t(d, 0), rel=1e-3)


def test_tanh():
    x = ccm((5, 1), [-6, -math.log(3), 0, math.log(3), 6])
    th = n.Tanh()
    r = th.forward([x])
    assert [t(r, i) for i in (1, 2, 3)] == pytest.approx([-0.8, 0, 0.8], abs=1e-5)
    assert t(r, 4) == pytest.approx(-t(r, 0))
    d = th.backward([x], r, ccm((5, 1), [1] * 5), 0)
    assert t(d, 1) == pytest.approx(0.36, rel=1e-4)
    assert t(d, 2) == pytest.approx(1.0)
    assert t(d, 3) == pytest.approx(t(d, 1), rel=1e-4)


def test_matrix_vector():
    W = ccm((3, 2), [2, 4, 6, 3, 5, 7])
    x = ccm((2,), [-1, 1])
    mm = n.MatrixMultiply()
    fx = mm.forward([W, x])
    dEdf = ccm((3,), [-0.5, 0.25, 5])
    M = mm.backward([W, x], fx, dEdf, 0)
    assert M[:, 0].tolist() == pytest.approx([0.5, -0.25, -5])
    assert M[:, 1].tolist() == pytest.approx([-0.5, 0.25, 5])
    assert mm.backward([W, x], fx, dEdf, 1).tolist() == pytest.approx([30, 34.75])


def test_constant_minus():
    W = ccm((2, 2), [1, 2, 3, -4])
    O = n.ConstantMinusX(c=1.0).forward([W])
    assert O.tolist() == pytest.approx((1 - W).tolist())


@pytest.mark.parametrize("v", [float(v) for v in range(-12, 12)])
def test_softmax_uniform(v):
    u = ccm((4,), [v] * 4)
    sm = n.Softmax()
    m = sm.forward([u])
    assert m.tolist() == pytest.approx([0.25] * 4)
    dEdf = ccm((4,), [1, 0, 0, 0])
    assert sm.backward([u], m, dEdf, 0).tolist() == pytest.approx(
        [0.1875, -0.0625, -0.0625, -0.0625])
    lsm = n.LogSoftmax()
    lm = lsm.forward([u])
    assert lm.tolist() == pytest.approx(np.log(m).tolist(), abs=1e-6)
    assert lsm.backward([u], lm, dEdf, 0).tolist() == pytest.approx(
        [0.75, -0.25, -0.25, -0.25])


def test_looks_like_vector():
    assert n.looks_like_vector(Dim(3))
    assert n.looks_like_vector(Dim(3, 1))
    assert not n.looks_like_vector(Dim(3, 2))


def test_min_rejects_mismatch():
    with pytest.raises(ValueError):
        n.Min().dim_forward([Dim(2), Dim(3)])


def test_affine_rejects_even_arguments():
    with pytest.raises(ValueError):
        n.AffineTransform().dim_forward([Dim(2), Dim(2, 2)])


def test_as_string():
    assert n.AffineTransform().as_string(["b", "W", "x"]) == "b + W * x"
    assert n.ConstantMinusX(c=1.0).as_string(["v0"]) == "1 - v0"
    assert n.Sum().as_string(["a", "b", "c"]) == "a + b + c"
    assert n.PickRange(start=1, end=3).as_string(["x"]) == "slice(x,1:3)"


def test_concatenate_dims():
    assert n.Concatenate().dim_forward([Dim(2), Dim(3, 1)]) == Dim(5)
    with pytest.raises(ValueError):
        n.Concatenate().dim_forward([Dim(2, 2), Dim(2, 3)])


def test_pick_neg_log_softmax():
    x = ccm((3,), [1, 2, 3])
    node = n.PickNegLogSoftmax(val=2)
    fx = node.forward([x])
    lse = math.log(sum(math.exp(v) for v in (1, 2, 3)))
    assert float(fx[0]) == pytest.approx(lse - 3, rel=1e-5)
    g = node.backward([x], fx, ccm((1,), [1]), 0)
    assert float(g.sum()) == pytest.approx(0.0, abs=1e-6)


def test_hinge():
    x = ccm((3,), [1.0, 0.5, -2.0])
    node = n.Hinge(index=0, margin=1.0)
    fx = node.forward([x])
    assert float(fx[0]) == pytest.approx(0.5)
    g = node.backward([x], fx, ccm((1,), [1]), 0)
    assert g.tolist() == pytest.approx([-1, 1, 0])


def test_reshape_round_trip():
    x = ccm((2, 3), range(6))
    node = n.Reshape(to=Dim(3, 2))
    y = node.forward([x])
    assert y.shape == (3, 2)
    assert node.backward([x], y, y, 0).tolist() == x.tolist()


def test_pick_range_bad_range():
    with pytest.raises(ValueError):
        n.PickRange(start=2, end=5).dim_forward([Dim(4)])