"""
Tests for split constant bookkeeping
"""
import pytest
import numpy as np
from pysplitflame.solvers.split_manager import SplitConstants, SplitConstantsManager


@pytest.fixture
def manager():
    """Manager for 2 species on 4 points with distinct operator derivatives"""
    m = SplitConstantsManager(4, 2, 'balanced')
    rng = np.random.default_rng(7)
    m.ddt_conv = rng.normal(size=(4, 4))
    m.ddt_diff = rng.normal(size=(4, 4))
    m.ddt_prod = rng.normal(size=(4, 4))
    m.set_cross_derivatives(rng.normal(size=(4, 4)))
    return m


class TestBalancedSplitting:
    """Each operator sees the same share of the total derivative"""

    def test_equal_shares(self, manager):
        manager.calculate_split_constants()
        total = manager.ddt_conv + manager.ddt_diff + manager.ddt_prod + manager.ddt_cross
        for split, ddt in ((manager.split_conv, manager.ddt_conv),
                           (manager.split_diff, manager.ddt_diff),
                           (manager.split_prod, manager.ddt_prod)):
            np.testing.assert_allclose(split + ddt, total / 3.0)

    def test_splits_sum_to_cross_terms(self, manager):
        manager.calculate_split_constants()
        np.testing.assert_allclose(
            manager.split_conv + manager.split_diff + manager.split_prod,
            manager.ddt_cross, atol=1e-12)

    def test_update_derivatives_removes_split(self, manager):
        manager.calculate_split_constants()
        dt = 1e-3
        delta = np.ones((4, 4))
        manager.update_derivatives(delta, 2 * delta, 3 * delta, dt)
        np.testing.assert_allclose(manager.ddt_conv, delta / dt - manager.split_conv)
        np.testing.assert_allclose(manager.ddt_diff, 2 * delta / dt - manager.split_diff)
        np.testing.assert_allclose(manager.ddt_prod, 3 * delta / dt - manager.split_prod)


class TestSimpleSplitting:
    def test_cross_terms_go_to_diffusion(self):
        m = SplitConstantsManager(3, 1, 'simple')
        m.ddt_conv = np.ones((3, 3))
        cross = np.arange(9.0).reshape(3, 3)
        m.set_cross_derivatives(cross)
        m.calculate_split_constants()

        np.testing.assert_array_equal(m.split_diff, cross)
        np.testing.assert_array_equal(m.split_conv, 0.0)
        np.testing.assert_array_equal(m.split_prod, 0.0)


def test_unknown_method():
    with pytest.raises(ValueError):
        SplitConstantsManager(3, 1, 'strang')


def test_cross_derivative_shape_checked():
    m = SplitConstantsManager(3, 1)
    with pytest.raises(ValueError):
        m.set_cross_derivatives(np.zeros((2, 3)))


def test_resize_and_reset(manager):
    manager.calculate_split_constants()
    manager.resize(6, 3)
    assert manager.split_conv.shape == (5, 6)
    assert manager.ddt_cross.shape == (5, 6)
    assert np.all(manager.split_diff == 0)

    manager.ddt_conv[:] = 1.0
    manager.reset()
    assert np.all(manager.ddt_conv == 0)


class TestSplitConstants:
    def test_row_layout(self, manager):
        manager.calculate_split_constants()
        split = manager.get_split_constants('diffusion')
        np.testing.assert_array_equal(split.T, manager.split_diff[0])
        np.testing.assert_array_equal(split.U, manager.split_diff[1])
        np.testing.assert_array_equal(split.Y, manager.split_diff[2:])
        assert split.n_points == 4
        assert split.n_spec == 2

    def test_read_only(self, manager):
        split = manager.get_split_constants('production')
        with pytest.raises(ValueError):
            split.T[0] = 1.0
        with pytest.raises(AttributeError):
            split.T = np.zeros(4)

    def test_copies_source(self, manager):
        split = manager.get_split_constants('convection')
        before = split.U.copy()
        manager.split_conv[1] += 5.0
        np.testing.assert_array_equal(split.U, before)

    def test_unknown_process(self, manager):
        with pytest.raises(ValueError):
            manager.get_split_constants('radiation')

    def test_molecular_weight_constant(self):
        split = SplitConstants(np.zeros(2), np.zeros(2), np.array([[2.0, 4.0], [16.0, 0.0]]))
        np.testing.assert_allclose(split.W([2.0, 16.0]), [2.0, 2.0])

    def test_mismatched_lengths(self):
        with pytest.raises(ValueError):
            SplitConstants(np.zeros(3), np.zeros(2), np.zeros((1, 3)))

    def test_zeros(self):
        split = SplitConstants.zeros(3, 5)
        assert split.Y.shape == (3, 5)
        assert np.all(split.T == 0)
