"""
Unit tests for global and local autocorrelation statistics.
"""
import unittest

import numpy as np

from spatial_engine.autocorrelation import (
    HotSpot, Quadrant, classify_quadrants, geary, getis_ord,
    global_moran, local_moran, moran_permutation_test
)
from spatial_engine.core.config import initialize_config
from spatial_engine.core.exceptions import DimensionMismatchError, IsolatedUnitError
from spatial_engine.data.attributes import AttributeVector
from spatial_engine.data.synthetic import checkerboard, gradient, square_lattice, strip
from spatial_engine.geometry import Geometry, build_adjacency
from spatial_engine.weights import standardize


class TestGlobalMoran(unittest.TestCase):
    """Tests for global Moran's I."""

    def setUp(self):
        """Set up rook and queen weights on a 5 x 5 lattice."""
        initialize_config()
        lattice = square_lattice(5, 5)
        self.rook = standardize(build_adjacency(lattice, 'rook'), 'W')
        self.queen = standardize(build_adjacency(lattice, 'queen'), 'W')
        self.y = np.random.default_rng(42).normal(size=25)

    def test_four_unit_strip(self):
        """Test the [1, 1, 5, 5] example on a strip of four squares."""
        w = standardize(build_adjacency(strip(4), 'queen'), 'W')
        result = global_moran([1.0, 1.0, 5.0, 5.0], w)
        self.assertAlmostEqual(result.statistic, 0.5)
        self.assertAlmostEqual(result.expected, -1.0 / 3.0)
        self.assertGreater(result.statistic, 0)

    def test_complete_block(self):
        """Test that a 2 x 2 queen block gives -1/(n-1) for any vector."""
        w = standardize(build_adjacency(square_lattice(2, 2), 'queen'), 'W')
        result = global_moran([1.0, 1.0, 5.0, 5.0], w)
        self.assertAlmostEqual(result.statistic, -1.0 / 3.0)

    def test_sign(self):
        """Test the sign of I for checkerboard and gradient patterns."""
        board = global_moran(checkerboard(5, 5), self.rook)
        self.assertAlmostEqual(board.statistic, -1.0)
        self.assertLess(board.z_normal, 0)

        slope = global_moran(gradient(5, 5), self.rook)
        self.assertGreater(slope.statistic, 0.5)
        self.assertLess(slope.p_normal, 0.01)

    def test_against_esda(self):
        """Test the statistic and both variances against esda."""
        import esda

        result = global_moran(self.y, self.queen)
        reference = esda.Moran(self.y, self.queen.to_libpysal(), transformation='r', permutations=0)

        self.assertAlmostEqual(result.statistic, reference.I)
        self.assertAlmostEqual(result.expected, reference.EI)
        self.assertAlmostEqual(result.variance_normal, reference.VI_norm)
        self.assertAlmostEqual(result.variance_random, reference.VI_rand)
        self.assertAlmostEqual(result.z_normal, reference.z_norm)

    def test_input_errors(self):
        """Test constant, misaligned and non-finite attributes."""
        with self.assertRaises(DimensionMismatchError):
            global_moran(np.ones(25), self.rook)
        with self.assertRaises(DimensionMismatchError):
            global_moran(np.arange(24.0), self.rook)
        y = self.y.copy()
        y[3] = np.nan
        with self.assertRaises(DimensionMismatchError):
            global_moran(y, self.rook)

    def test_attribute_vector_alignment(self):
        """Test that attribute vectors are reordered to the weights ids."""
        ids = list(reversed(self.rook.ids))
        x = AttributeVector(ids, self.y[::-1])
        self.assertAlmostEqual(global_moran(x, self.rook).statistic, global_moran(self.y, self.rook).statistic)

        with self.assertRaises(DimensionMismatchError):
            global_moran(AttributeVector(range(100, 125), self.y), self.rook)

    def test_zero_policy(self):
        """Test that islands reduce n but still enter the mean."""
        far = Geometry.polygon(99, [(10, 10), (11, 10), (11, 11), (10, 11)])
        w = standardize(build_adjacency(list(strip(4)) + [far]), 'W', zero_policy=True)
        result = global_moran([1.0, 1.0, 5.0, 5.0, 3.0], w)
        self.assertEqual(result.n, 4)
        self.assertEqual(result.islands, (99,))

        z = np.array([1.0, 1.0, 5.0, 5.0, 3.0]) - 3.0
        expected = 4 / w.s0 * (z @ w.lag(z)) / (z @ z)
        self.assertAlmostEqual(result.statistic, expected)

    def test_no_links(self):
        """Test that weights without links are rejected."""
        a = Geometry.polygon(1, [(0, 0), (1, 0), (1, 1), (0, 1)])
        b = Geometry.polygon(2, [(5, 5), (6, 5), (6, 6), (5, 6)])
        w = standardize(build_adjacency([a, b]), zero_policy=True)
        with self.assertRaises(IsolatedUnitError):
            global_moran([1.0, 2.0], w)


class TestPermutationTest(unittest.TestCase):
    """Tests for the Moran permutation test."""

    def setUp(self):
        """Set up rook weights on a 5 x 5 lattice."""
        initialize_config()
        self.w = standardize(build_adjacency(square_lattice(5, 5), 'rook'), 'W')

    def test_p_values(self):
        """Test the rank-based p-values of an extreme pattern."""
        result = global_moran(gradient(5, 5), self.w, permutations=99, seed=7)
        self.assertEqual(result.permutation.permutations, 99)
        self.assertAlmostEqual(result.p_value, 0.01)

        two_sided = global_moran(gradient(5, 5), self.w, permutations=99, seed=7, alternative='two-sided')
        self.assertAlmostEqual(two_sided.permutation.p_value, 0.02)

        less = global_moran(checkerboard(5, 5), self.w, permutations=99, seed=7, alternative='less')
        self.assertAlmostEqual(less.permutation.p_value, 0.01)

    def test_seed_determinism(self):
        """Test that results depend on the seed and not on the worker count."""
        y = np.random.default_rng(3).normal(size=25)
        serial = global_moran(y, self.w, permutations=200, seed=11, chunk_size=50, executor='serial')
        threaded = global_moran(y, self.w, permutations=200, seed=11, chunk_size=50,
                                executor='thread', max_workers=4)
        np.testing.assert_array_equal(serial.permutation.simulated, threaded.permutation.simulated)
        self.assertEqual(serial.p_value, threaded.p_value)

        other = global_moran(y, self.w, permutations=200, seed=12, chunk_size=50)
        self.assertFalse(np.array_equal(serial.permutation.simulated, other.permutation.simulated))

    def test_permutation_test_defaults(self):
        """Test the configured number of permutations and the zero check."""
        config = initialize_config()
        config.set('autocorrelation.permutations', 49)
        result = moran_permutation_test(gradient(5, 5), self.w, seed=1)
        self.assertEqual(result.permutation.permutations, 49)
        initialize_config()

        with self.assertRaises(ValueError):
            moran_permutation_test(gradient(5, 5), self.w, permutations=0)


class TestGeary(unittest.TestCase):
    """Tests for Geary's C."""

    def setUp(self):
        """Set up queen weights on a 5 x 5 lattice."""
        initialize_config()
        self.w = standardize(build_adjacency(square_lattice(5, 5), 'queen'), 'W')

    def test_against_esda(self):
        """Test the statistic and its normality variance against esda."""
        import esda

        y = np.random.default_rng(5).normal(size=25)
        result = geary(y, self.w)
        reference = esda.Geary(y, self.w.to_libpysal(), transformation='r', permutations=0)
        self.assertAlmostEqual(result.statistic, reference.C)
        self.assertAlmostEqual(result.variance_normal, reference.VC_norm)

    def test_clustering(self):
        """Test that a gradient gives C below one."""
        result = geary(gradient(5, 5), self.w, permutations=99, seed=2, alternative='less')
        self.assertLess(result.statistic, 1.0)
        self.assertAlmostEqual(result.permutation.p_value, 0.01)


class TestLocalMoran(unittest.TestCase):
    """Tests for local Moran's I."""

    def setUp(self):
        """Set up queen weights on a 5 x 5 lattice."""
        initialize_config()
        self.w = standardize(build_adjacency(square_lattice(5, 5), 'queen'), 'W')
        self.y = np.random.default_rng(8).normal(size=25)

    def test_sum_equals_global(self):
        """Test that the local statistics sum to S0 times the global I."""
        lisa = local_moran(self.y, self.w, permutations=9, seed=1)
        moran = global_moran(self.y, self.w)
        self.assertAlmostEqual(np.sum(lisa.statistics), self.w.s0 * moran.statistic)

    def test_statistics(self):
        """Test the local statistics are scaled by the second moment."""
        lisa = local_moran(self.y, self.w, permutations=9, seed=1)
        z = self.y - self.y.mean()
        m2 = np.sum(z ** 2) / len(z)
        np.testing.assert_allclose(lisa.statistics, z / m2 * self.w.lag(z))
        np.testing.assert_allclose(lisa.lag, self.w.lag(self.y))

    def test_seed_determinism(self):
        """Test conditional permutations are reproducible across worker counts."""
        a = local_moran(self.y, self.w, permutations=99, seed=4, executor='serial')
        b = local_moran(self.y, self.w, permutations=99, seed=4, executor='thread', max_workers=3)
        np.testing.assert_array_equal(a.p_values, b.p_values)
        self.assertTrue(np.all((a.p_values > 0) & (a.p_values <= 0.5 + 1e-12)))

    def test_gradient_clusters(self):
        """Test that gradient corners are HIGH_HIGH and LOW_LOW clusters."""
        lisa = local_moran(gradient(5, 5), self.w, permutations=199, seed=3, significance=0.1)
        self.assertEqual(lisa.quadrants[0], Quadrant.LOW_LOW)
        self.assertEqual(lisa.quadrants[24], Quadrant.HIGH_HIGH)
        self.assertIn(lisa.classifications[24], (Quadrant.HIGH_HIGH, Quadrant.NOT_SIGNIFICANT))

    def test_threshold_tie(self):
        """Test that a p-value equal to the threshold is not significant."""
        labels = classify_quadrants(
            np.array([Quadrant.HIGH_HIGH, Quadrant.LOW_LOW, Quadrant.LOW_HIGH]),
            np.array([0.05, 0.049, np.nan]),
            0.05
        )
        self.assertEqual(labels, (Quadrant.NOT_SIGNIFICANT, Quadrant.LOW_LOW, Quadrant.NOT_SIGNIFICANT))

    def test_reclassify(self):
        """Test reclassification at a stricter threshold."""
        lisa = local_moran(gradient(5, 5), self.w, permutations=99, seed=3)
        strict = lisa.classify(1e-6)
        self.assertTrue(all(label is Quadrant.NOT_SIGNIFICANT for label in strict))

    def test_islands(self):
        """Test that islands get zero statistics and NaN p-values."""
        far = Geometry.polygon(99, [(10, 10), (11, 10), (11, 11), (10, 11)])
        w = standardize(build_adjacency(list(strip(4)) + [far]), 'W', zero_policy=True)
        lisa = local_moran([1.0, 2.0, 6.0, 7.0, 3.0], w, permutations=19, seed=1)
        self.assertEqual(lisa.islands, (99,))
        self.assertEqual(lisa.statistics[4], 0.0)
        self.assertTrue(np.isnan(lisa.p_values[4]))
        self.assertIs(lisa.classifications[4], Quadrant.NOT_SIGNIFICANT)

    def test_analytic(self):
        """Test the analytic approximation."""
        lisa = local_moran(self.y, self.w, method='analytic')
        self.assertEqual(lisa.method, 'analytic')
        self.assertEqual(lisa.permutations, 0)
        self.assertTrue(np.all((lisa.p_values > 0) & (lisa.p_values < 1)))

        with self.assertRaises(ValueError):
            local_moran(self.y, self.w, method='bootstrap')

    def test_to_frame(self):
        """Test the per-unit frame keyed by id."""
        frame = local_moran(self.y, self.w, permutations=9, seed=1).to_frame()
        self.assertEqual(list(frame.index), list(self.w.ids))
        self.assertIn('classification', frame.columns)


class TestGetisOrd(unittest.TestCase):
    """Tests for Getis-Ord local statistics."""

    def setUp(self):
        """Set up binary queen weights on a 5 x 5 lattice."""
        initialize_config()
        self.w = standardize(build_adjacency(square_lattice(5, 5), 'queen'), 'B')

    def test_hot_and_cold_spots(self):
        """Test the gradient corners are hot and cold spots."""
        result = getis_ord(gradient(5, 5), self.w)
        self.assertGreater(result.z_values[24], 0)
        self.assertLess(result.z_values[0], 0)
        self.assertIs(result.classifications[24], HotSpot.HOT_SPOT)
        self.assertIs(result.classifications[0], HotSpot.COLD_SPOT)

    def test_unit_value(self):
        """Test G_i and its z-score for one unit by hand."""
        values = gradient(5, 5).values
        result = getis_ord(values, self.w)

        others = values.sum() - values[24]
        self.assertAlmostEqual(result.statistics[24], 20.0 / others)
        mean = others / 24.0
        std = np.sqrt((np.sum(values ** 2) - values[24] ** 2) / 24.0 - mean ** 2)
        z = (20.0 - 3.0 * mean) / (std * np.sqrt((24.0 * 3.0 - 9.0) / 23.0))
        self.assertAlmostEqual(result.z_values[24], z)

    def test_star(self):
        """Test G_i* includes each unit in its own neighbourhood."""
        result = getis_ord(gradient(5, 5), self.w, star=True)
        self.assertTrue(result.star)
        self.assertGreater(result.z_values[24], 0)

        with self.assertRaises(ValueError):
            getis_ord(gradient(5, 5), self.w.with_self_neighbours(), star=False)

    def test_islands(self):
        """Test islands get NaN z-scores."""
        far = Geometry.polygon(99, [(10, 10), (11, 10), (11, 11), (10, 11)])
        w = standardize(build_adjacency(list(strip(4)) + [far]), 'B', zero_policy=True)
        result = getis_ord([1.0, 2.0, 6.0, 7.0, 3.0], w)
        self.assertTrue(np.isnan(result.z_values[4]))
        self.assertIs(result.classifications[4], HotSpot.NOT_SIGNIFICANT)


if __name__ == '__main__':
    unittest.main()
