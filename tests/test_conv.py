import numpy as np
import pytest

from dyngraph.conv import (
    AddVectorToAllColumns,
    Conv1DNarrow,
    Conv1DWide,
    FoldRows,
    KMaxPooling,
)
from dyngraph.dim import Dim


def _arr(values):
    return np.asarray(values, dtype=np.float32)


def _numeric_grad(node, xs, weights, i, eps=1e-2):
    base = [np.array(x, dtype=np.float32) for x in xs]
    g = np.zeros_like(base[i])
    it = np.nditer(base[i], flags=["multi_index"])
    for _ in it:
        idx = it.multi_index
        plus = [x.copy() for x in base]
        minus = [x.copy() for x in base]
        plus[i][idx] += eps
        minus[i][idx] -= eps
        up = float((node.forward(plus) * weights).sum())
        down = float((node.forward(minus) * weights).sum())
        g[idx] = (up - down) / (2 * eps)
    return g


def _check_grads(node, xs, seed=0):
    rng = np.random.default_rng(seed)
    fx = node.forward(xs)
    weights = rng.uniform(-1, 1, size=fx.shape).astype(np.float32)
    for i in range(len(xs)):
        analytic = node.backward(xs, fx, weights, i)
        assert analytic.shape == np.shape(xs[i])
        numeric = _numeric_grad(node, xs, weights, i)
        np.testing.assert_allclose(analytic, numeric, atol=2e-2)


def test_add_vector_to_all_columns_broadcasts():
    node = AddVectorToAllColumns([0, 1])
    x = np.zeros((2, 3), dtype=np.float32)
    b = _arr([1.5, -2.0])
    y = node.forward([x, b])
    assert y.shape == (2, 3)
    for col in range(3):
        np.testing.assert_allclose(y[:, col], b)


def test_add_vector_to_all_columns_gradients():
    rng = np.random.default_rng(1)
    x = rng.normal(size=(3, 4)).astype(np.float32)
    b = rng.normal(size=3).astype(np.float32)
    _check_grads(AddVectorToAllColumns([0, 1]), [x, b])


def test_add_vector_to_all_columns_rejects_mismatch():
    node = AddVectorToAllColumns([0, 1])
    with pytest.raises(ValueError):
        node.dim_forward([Dim(2, 3), Dim(3)])
    with pytest.raises(ValueError):
        node.dim_forward([Dim(2), Dim(2)])


def test_fold_rows_shape_and_sum_invariant():
    rng = np.random.default_rng(2)
    x = rng.normal(size=(6, 3)).astype(np.float32)
    node = FoldRows([0], 3)
    y = node.forward([x])
    assert node.dim == Dim(2, 3)
    np.testing.assert_allclose(y.sum(axis=0), x.sum(axis=0), rtol=1e-5, atol=1e-5)


def test_fold_rows_single_row_blocks_is_identity():
    x = _arr([[1, 2], [3, 4], [5, 6]])
    y = FoldRows([0], 1).forward([x])
    np.testing.assert_array_equal(y, x)


def test_fold_rows_gradients():
    rng = np.random.default_rng(3)
    x = rng.normal(size=(4, 3)).astype(np.float32)
    _check_grads(FoldRows([0], 2), [x])


def test_fold_rows_rejects_indivisible_rows():
    with pytest.raises(ValueError):
        FoldRows([0], 2).dim_forward([Dim(5, 2)])


def test_fold_rows_as_string():
    assert FoldRows([0], 2).as_string(["v0"]) == "fold_rows(v0, nrows=2)"


def test_conv1d_narrow_unit_filter_is_identity():
    rng = np.random.default_rng(4)
    x = rng.normal(size=(3, 5)).astype(np.float32)
    f = np.ones((3, 1), dtype=np.float32)
    y = Conv1DNarrow([0, 1]).forward([x, f])
    np.testing.assert_allclose(y, x)


def test_conv1d_narrow_shifted_filter_selects_columns():
    rng = np.random.default_rng(5)
    x = rng.normal(size=(2, 5)).astype(np.float32)
    f = _arr([[0, 1], [0, 1]])
    node = Conv1DNarrow([0, 1])
    y = node.forward([x, f])
    assert node.dim == Dim(2, 4)
    np.testing.assert_allclose(y, x[:, 1:])


def test_conv1d_narrow_gradients():
    rng = np.random.default_rng(6)
    x = rng.normal(size=(2, 6)).astype(np.float32)
    f = rng.normal(size=(2, 3)).astype(np.float32)
    _check_grads(Conv1DNarrow([0, 1]), [x, f])


def test_conv1d_narrow_rejects_wide_filter():
    node = Conv1DNarrow([0, 1])
    with pytest.raises(ValueError):
        node.dim_forward([Dim(2, 3), Dim(2, 4)])
    with pytest.raises(ValueError):
        node.dim_forward([Dim(2, 3)])


def test_conv1d_narrow_as_string():
    assert Conv1DNarrow([0, 1]).as_string(["v0", "v1"]) == "conv1d_narrow(v0, f=v1)"


def test_conv1d_wide_shape_and_unit_filter():
    rng = np.random.default_rng(7)
    x = rng.normal(size=(2, 4)).astype(np.float32)
    node = Conv1DWide([0, 1])
    y = node.forward([x, np.ones((2, 1), dtype=np.float32)])
    np.testing.assert_allclose(y, x)
    y2 = node.forward([x, np.ones((2, 3), dtype=np.float32)])
    assert node.dim == Dim(2, 6)
    np.testing.assert_allclose(y2.sum(axis=1), 3 * x.sum(axis=1), rtol=1e-5, atol=1e-5)


def test_conv1d_wide_gradients():
    rng = np.random.default_rng(8)
    x = rng.normal(size=(3, 4)).astype(np.float32)
    f = rng.normal(size=(3, 2)).astype(np.float32)
    _check_grads(Conv1DWide([0, 1]), [x, f])


def test_conv1d_wide_rejects_row_mismatch():
    with pytest.raises(ValueError):
        Conv1DWide([0, 1]).dim_forward([Dim(2, 3), Dim(3, 2)])


def test_conv1d_wide_as_string():
    assert Conv1DWide([0, 1]).as_string(["v0", "v1"]) == "conv1d_wide(v0, f=v1)"


def test_kmax_pooling_keeps_order_of_largest():
    x = _arr([[3, 1, 4, 1, 5], [9, 2, 6, 5, 3]])
    node = KMaxPooling([0], 2)
    y = node.forward([x])
    assert node.dim == Dim(2, 2)
    np.testing.assert_array_equal(y[0], _arr([4, 5]))
    np.testing.assert_array_equal(y[1], _arr([9, 6]))


def test_kmax_pooling_ties_take_first_k():
    x = _arr([[2, 2, 2, 2]])
    y = KMaxPooling([0], 3).forward([x])
    np.testing.assert_array_equal(y, _arr([[2, 2, 2]]))


def test_kmax_pooling_backward_routes_to_picked_positions():
    x = _arr([[3, 1, 4, 1, 5], [9, 2, 6, 5, 3]])
    node = KMaxPooling([0], 2)
    fx = node.forward([x])
    dEdf = _arr([[10, 20], [30, 40]])
    g = node.backward([x], fx, dEdf, 0)
    assert g.shape == x.shape
    np.testing.assert_array_equal(g[0], _arr([0, 0, 10, 0, 20]))
    np.testing.assert_array_equal(g[1], _arr([30, 0, 40, 0, 0]))


def test_kmax_pooling_gradients():
    x = _arr([[0.1, 0.9, -0.4, 0.6], [1.3, -0.7, 0.2, 0.8]])
    _check_grads(KMaxPooling([0], 2), [x])


def test_kmax_pooling_errors():
    with pytest.raises(ValueError):
        KMaxPooling([0], 0).dim_forward([Dim(2, 3)])
    with pytest.raises(ValueError):
        KMaxPooling([0], 4).dim_forward([Dim(2, 3)])


def test_kmax_pooling_as_string_and_aux_size():
    node = KMaxPooling([0], 2)
    assert node.as_string(["v0"]) == "kmaxpool(v0, k=2)"
    node.forward([_arr([[1, 2, 3], [4, 5, 6]])])
    assert node.aux_storage_size() == 4 * node.dim.size()