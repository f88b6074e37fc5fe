import numpy as np

from dyngraph import rng


def test_initialize_returns_shared_generator():
    g = rng.initialize(42)
    assert rng.get_rng() is g


def test_same_seed_same_sequence():
    first = rng.initialize(7).random(5)
    second = rng.initialize(7).random(5)
    np.testing.assert_array_equal(first, second)


def test_different_seeds_differ():
    a = rng.initialize(1).random(8)
    b = rng.initialize(2).random(8)
    assert not np.array_equal(a, b)


def test_zero_seed_draws_fresh_seed():
    a = rng.initialize(0).random(8)
    b = rng.initialize(0).random(8)
    assert not np.array_equal(a, b)


def test_uniform_draws_in_unit_interval():
    values = rng.initialize(3).random(1000)
    assert values.min() >= 0.0
    assert values.max() < 1.0