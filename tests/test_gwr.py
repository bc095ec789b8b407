"""
Unit tests for geographically weighted regression.
"""
import unittest

import numpy as np
import statsmodels.api as sm

from spatial_engine.core.config import initialize_config
from spatial_engine.core.exceptions import (
    DimensionMismatchError, InsufficientNeighborsError, NotFittedError
)
from spatial_engine.data.synthetic import lattice_coordinates, point_lattice, simulate_gwr
from spatial_engine.gwr import GWR, neighbour_count, search_interval, select_bandwidth
from spatial_engine.models import RegressionDesign


class TestNeighbourCount(unittest.TestCase):
    """Tests for adaptive bandwidth resolution."""

    def test_proportion_and_count(self):
        """Test that values up to one are proportions and larger values are counts."""
        self.assertEqual(neighbour_count(0.5, 10), 5)
        self.assertEqual(neighbour_count(0.05, 10), 1)
        self.assertEqual(neighbour_count(1.0, 10), 10)
        self.assertEqual(neighbour_count(3, 10), 3)
        self.assertEqual(neighbour_count(25, 10), 10)
        self.assertEqual(neighbour_count(np.inf, 10), 10)
        with self.assertRaises(ValueError):
            neighbour_count(0, 10)


class TestGWRFit(unittest.TestCase):
    """Tests for fitting GWR at a given bandwidth."""

    def setUp(self):
        """Set up varying-coefficient data on an 8 x 8 grid."""
        initialize_config()
        self.coords, self.design, self.params = simulate_gwr(8, 8, seed=0)

    def test_infinite_bandwidth_is_ols(self):
        """Test that equal weights everywhere reproduce the global OLS fit."""
        gwr = GWR(self.coords, self.design, kernel='gaussian', fixed=True)
        results = gwr.fit(bandwidth=np.inf)
        ols = sm.OLS(self.design.y, self.design.X).fit()

        np.testing.assert_allclose(results.params, np.tile(ols.params, (64, 1)))
        self.assertAlmostEqual(results.tr_s, 2.0)
        self.assertAlmostEqual(results.rss, ols.ssr)
        self.assertAlmostEqual(results.aicc, gwr.aicc(np.inf))
        self.assertTrue(results.fitted_mask.all())

    def test_infinite_adaptive_bandwidth(self):
        """Test that an infinite adaptive bandwidth spans every point."""
        results = GWR(self.coords, self.design, kernel='gaussian', fixed=False).fit(bandwidth=np.inf)
        self.assertTrue(results.fitted_mask.all())
        self.assertEqual(results.bandwidth, np.inf)
        self.assertTrue(np.all(np.isfinite(results.params)))

    def test_local_slopes(self):
        """Test that local slopes follow the simulated surface."""
        results = GWR(self.coords, self.design).fit(bandwidth=20)
        self.assertEqual(results.names, ('const', 'x1'))
        self.assertLess(np.mean(np.abs(results.params[:, 1] - self.params[:, 1])), 0.3)
        self.assertGreater(results.r2, 0.9)
        self.assertTrue(np.all(results.std_errors > 0))

        frame = results.to_frame()
        self.assertEqual(len(frame), 64)
        self.assertIn('se_x1', frame.columns)
        self.assertIn('local_r2', frame.columns)

    def test_executor_independent(self):
        """Test that serial and threaded fits agree exactly."""
        gwr = GWR(self.coords, self.design)
        serial = gwr.fit(bandwidth=20, executor='serial')
        threaded = gwr.fit(bandwidth=20, executor='thread', max_workers=4)
        np.testing.assert_array_equal(serial.params, threaded.params)
        self.assertEqual(serial.aicc, threaded.aicc)

    def test_geometries_as_locations(self):
        """Test that point geometries can stand in for coordinates."""
        gwr = GWR(point_lattice(8, 8), self.design)
        np.testing.assert_allclose(gwr.coords, lattice_coordinates(8, 8))

    def test_not_fitted(self):
        """Test that results require a fit."""
        gwr = GWR(self.coords, self.design)
        with self.assertRaises(NotFittedError):
            gwr.results

    def test_mismatched_locations(self):
        """Test that locations and design must have the same length."""
        with self.assertRaises(DimensionMismatchError):
            GWR(self.coords[:10], self.design)
        with self.assertRaises(ValueError):
            GWR(self.coords, self.design, kernel='uniform')


class TestPartialFailure(unittest.TestCase):
    """Tests for units that cannot be fitted."""

    def setUp(self):
        """Set up a 5 x 5 grid plus one remote point."""
        initialize_config()
        rng = np.random.default_rng(1)
        self.coords = np.vstack([lattice_coordinates(5, 5), [[100.0, 100.0]]])
        x = rng.standard_normal(26)
        self.design = RegressionDesign(1.0 + x + 0.1 * rng.standard_normal(26), x, ids=range(26))
        self.gwr = GWR(self.coords, self.design, kernel='bisquare', fixed=True)

    def test_fitted_mask(self):
        """Test the remote unit is recorded as a failure and the rest still fit."""
        results = self.gwr.fit(bandwidth=1.5)
        self.assertEqual(results.n_fitted, 25)
        self.assertFalse(results.fitted_mask[25])
        self.assertIn(25, results.failures)
        self.assertTrue(np.all(np.isnan(results.params[25])))
        self.assertTrue(np.all(np.isfinite(results.params[:25])))

    def test_cv_infinite(self):
        """Test that cross-validation is infinite when a unit cannot be fitted."""
        self.assertEqual(self.gwr.cross_validate(1.5), float('inf'))
        self.assertEqual(self.gwr.aicc(1.5), float('inf'))

    def test_no_unit_fits(self):
        """Test that a bandwidth starving every unit raises."""
        gwr = GWR(self.coords, self.design, kernel='bisquare', fixed=False, min_neighbors=10)
        with self.assertRaises(InsufficientNeighborsError):
            gwr.fit(bandwidth=3)


class TestBandwidthSelection(unittest.TestCase):
    """Tests for bandwidth search."""

    def setUp(self):
        """Set up varying-coefficient data on an 8 x 8 grid."""
        initialize_config()
        self.coords, self.design, _ = simulate_gwr(8, 8, seed=0)
        self.gwr = GWR(self.coords, self.design)

    def test_search_interval(self):
        """Test the default adaptive interval."""
        self.assertEqual(search_interval(self.gwr), (3.0, 64.0))

        fixed = GWR(self.coords, self.design, fixed=True)
        lower, upper = search_interval(fixed)
        self.assertGreater(lower, 1.0)
        self.assertAlmostEqual(upper, np.hypot(7.0, 7.0))

    def test_search_interval_too_few_units(self):
        """Test that an adaptive interval with no room to search is rejected."""
        coords, design, _ = simulate_gwr(2, 2, seed=0)
        gwr = GWR(coords, design, min_neighbors=3)
        with self.assertRaises(InsufficientNeighborsError):
            search_interval(gwr)
        with self.assertRaises(InsufficientNeighborsError):
            select_bandwidth(gwr, executor='serial')

    def test_golden_deterministic(self):
        """Test that golden-section search is reproducible and in range."""
        first = select_bandwidth(self.gwr, executor='serial')
        second = select_bandwidth(self.gwr, executor='serial')
        self.assertEqual(first.bandwidth, second.bandwidth)
        self.assertEqual(first.score, second.score)
        self.assertTrue(first.converged)
        self.assertEqual(first.bandwidth, round(first.bandwidth))
        self.assertTrue(3 <= first.bandwidth <= 64)
        self.assertEqual(first.score, min(first.history.values()))

    def test_grid(self):
        """Test the grid search keeps the best candidate."""
        result = select_bandwidth(self.gwr, method='grid', criterion='aicc', candidates=[10, 20, 40])
        self.assertEqual(result.evaluations, 3)
        self.assertEqual(result.score, min(result.history.values()))
        self.assertEqual(result.score, self.gwr.aicc(result.bandwidth))

    def test_fit_selects_bandwidth(self):
        """Test that fitting without a bandwidth runs the selection first."""
        results = self.gwr.fit(executor='serial')
        self.assertIsNotNone(self.gwr.selection)
        self.assertEqual(results.bandwidth, self.gwr.selection.bandwidth)

    def test_unknown_options(self):
        """Test unknown search methods and criteria."""
        with self.assertRaises(ValueError):
            select_bandwidth(self.gwr, method='bisection')
        with self.assertRaises(ValueError):
            self.gwr.score(20, criterion='bic')


if __name__ == '__main__':
    unittest.main()
