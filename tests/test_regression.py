"""
Unit tests for the spatial regression models.
"""
import unittest

import numpy as np
import statsmodels.api as sm

from spatial_engine.core.config import initialize_config
from spatial_engine.core.exceptions import (
    ConvergenceError, DimensionMismatchError, ModelError, NotFittedError, SingularMatrixError
)
from spatial_engine.data.synthetic import simulate_sar, simulate_sem, square_lattice
from spatial_engine.geometry import Geometry, build_adjacency
from spatial_engine.models import (
    FittedModel, LMTest, ModelKind, ModelState, RegressionDesign, SpatialTester,
    create_model, recommend_model, spatial_diagnostics
)
from spatial_engine.weights import standardize


class TestRegressionDesign(unittest.TestCase):
    """Tests for RegressionDesign."""

    def test_constant(self):
        """Test that a constant column is prepended once."""
        design = RegressionDesign([1.0, 2.0, 3.0], [[1.0], [0.0], [2.0]], names=['x'])
        self.assertEqual(design.names, ('const', 'x'))
        self.assertEqual(design.variable_columns, [1])

        with_constant = RegressionDesign([1.0, 2.0, 3.0], design.X, names=design.names)
        self.assertEqual(with_constant.k, 2)

    def test_validation(self):
        """Test shape and finiteness checks."""
        with self.assertRaises(DimensionMismatchError):
            RegressionDesign([1.0, 2.0], [[1.0], [2.0], [3.0]])
        with self.assertRaises(DimensionMismatchError):
            RegressionDesign([1.0, np.nan, 3.0], [[1.0], [2.0], [3.0]])

    def test_align(self):
        """Test rows are reordered to match ids."""
        design = RegressionDesign([1.0, 2.0, 3.0], [[10.0], [20.0], [30.0]], ids=[5, 6, 7])
        aligned = design.align([7, 5, 6])
        np.testing.assert_array_equal(aligned.y, [3.0, 1.0, 2.0])
        with self.assertRaises(DimensionMismatchError):
            design.align([1, 2, 3])


class TestLeastSquares(unittest.TestCase):
    """Tests for OLS and SLX."""

    def setUp(self):
        """Set up row-standardised rook weights and SAR data on a 10 x 10 lattice."""
        initialize_config()
        self.w = standardize(build_adjacency(square_lattice(10, 10), 'rook'), 'W')
        self.design = simulate_sar(self.w, rho=0.5, beta=(1.0, 2.0), seed=1)

    def test_ols_matches_statsmodels(self):
        """Test OLS against a direct statsmodels fit."""
        results = create_model('ols', self.design).fit()
        reference = sm.OLS(self.design.y, self.design.X).fit()
        np.testing.assert_allclose(results.coefficients, reference.params)
        np.testing.assert_allclose(results.std_errors, reference.bse)
        self.assertAlmostEqual(results.log_likelihood, reference.llf)
        self.assertEqual(results.names, ('const', 'x1'))

    def test_rank_deficient(self):
        """Test that duplicated predictors raise SingularMatrixError."""
        x = self.design.X[:, 1]
        design = RegressionDesign(self.design.y, np.column_stack([x, 2.0 * x]), ids=self.w.ids)
        with self.assertRaises(SingularMatrixError):
            create_model('ols', design, self.w).fit()

    def test_slx(self):
        """Test SLX adds the lag of each predictor."""
        results = create_model(ModelKind.SLX, self.design, self.w).fit()
        self.assertEqual(results.names, ('const', 'x1', 'W_x1'))
        self.assertEqual(results.kind, 'slx')

    def test_slx_degenerate(self):
        """Test SLX equals OLS when every spatial lag is constant."""
        squares = [
            Geometry.polygon(i, [(2 * i, 0), (2 * i + 1, 0), (2 * i + 1, 1), (2 * i, 1)])
            for i in range(8)
        ]
        w = standardize(build_adjacency(squares), 'W', zero_policy=True)
        rng = np.random.default_rng(0)
        x = rng.normal(size=8)
        design = RegressionDesign(1.0 + 2.0 * x + rng.normal(size=8), x, ids=range(8))

        ols = create_model('ols', design, w).fit()
        slx = create_model('slx', design, w).fit()
        self.assertEqual(slx.dropped, ('W_x1',))
        np.testing.assert_allclose(slx.coefficients, ols.coefficients)
        self.assertAlmostEqual(slx.log_likelihood, ols.log_likelihood)

    def test_misaligned_weights(self):
        """Test that a design and weights of different sizes are rejected."""
        small = standardize(build_adjacency(square_lattice(3, 3), 'rook'), 'W')
        with self.assertRaises(DimensionMismatchError):
            create_model('slx', self.design, small)

    def test_requires_weights(self):
        """Test that spatial models need a weights matrix."""
        with self.assertRaises(ModelError):
            create_model('sar_lag', self.design)
        with self.assertRaises(ValueError):
            create_model('probit', self.design, self.w)


class TestMaximumLikelihood(unittest.TestCase):
    """Tests for the SAR lag and spatial error models."""

    def setUp(self):
        """Set up row-standardised rook weights on a 10 x 10 lattice."""
        initialize_config()
        self.w = standardize(build_adjacency(square_lattice(10, 10), 'rook'), 'W')
        self.sar = simulate_sar(self.w, rho=0.5, beta=(1.0, 2.0), seed=1)
        self.sem = simulate_sem(self.w, lam=0.5, beta=(1.0, 2.0), seed=2)

    def test_sar_at_zero_equals_ols(self):
        """Test the lag model evaluated at rho = 0 reproduces OLS."""
        ols = create_model('ols', self.sar).fit()
        sar = create_model('sar_lag', self.sar, self.w).fit(fixed_parameter=0.0)
        np.testing.assert_allclose(sar.coefficients, ols.coefficients)
        np.testing.assert_allclose(sar.residuals, ols.residuals, atol=1e-10)
        self.assertAlmostEqual(sar.log_likelihood, ols.log_likelihood)
        self.assertEqual(sar.optimizer['method'], 'fixed')

    def test_sem_at_zero_equals_ols(self):
        """Test the error model evaluated at lambda = 0 reproduces OLS."""
        ols = create_model('ols', self.sem).fit()
        sem = create_model('spatial_error', self.sem, self.w).fit(fixed_parameter=0.0)
        np.testing.assert_allclose(sem.coefficients, ols.coefficients)
        self.assertAlmostEqual(sem.log_likelihood, ols.log_likelihood)

    def test_sar_recovers_rho(self):
        """Test the lag model recovers the simulated parameters."""
        results = create_model('sar_lag', self.sar, self.w).fit()
        self.assertEqual(results.spatial_parameter_name, 'rho')
        self.assertAlmostEqual(results.spatial_parameter, 0.5, delta=0.25)
        self.assertAlmostEqual(results.coefficient('x1'), 2.0, delta=0.3)
        self.assertGreater(results.spatial_std_error, 0)
        self.assertTrue(results.optimizer['converged'])
        self.assertEqual(results.covariance.shape, (3, 3))

    def test_sem_recovers_lambda(self):
        """Test the error model recovers the simulated parameters."""
        results = create_model('spatial_error', self.sem, self.w).fit()
        self.assertEqual(results.spatial_parameter_name, 'lambda')
        self.assertAlmostEqual(results.spatial_parameter, 0.5, delta=0.3)
        self.assertAlmostEqual(results.coefficient('x1'), 2.0, delta=0.3)
        np.testing.assert_allclose(
            results.innovations,
            results.residuals - results.spatial_parameter * self.w.lag(results.residuals)
        )

    def test_durbin_error(self):
        """Test the spatial Durbin error model includes lagged predictors."""
        results = create_model('spatial_durbin_error', self.sem, self.w).fit()
        self.assertEqual(results.names, ('const', 'x1', 'W_x1'))
        self.assertEqual(results.kind, 'spatial_durbin_error')

    def test_outside_bounds(self):
        """Test that a fixed parameter outside the feasible interval is rejected."""
        with self.assertRaises(ValueError):
            create_model('sar_lag', self.sar, self.w).fit(fixed_parameter=1.5)

    def test_convergence_failure(self):
        """Test that an exhausted iteration budget raises ConvergenceError."""
        config = initialize_config()
        config.set('regression.max_iterations', 1)
        try:
            with self.assertRaises(ConvergenceError):
                create_model('sar_lag', self.sar, self.w).fit()
        finally:
            initialize_config()

    def test_state_machine(self):
        """Test UNFIT -> FITTED -> IMPACTS_COMPUTED."""
        model = create_model('sar_lag', self.sar, self.w)
        self.assertEqual(model.state, ModelState.UNFIT)
        with self.assertRaises(NotFittedError):
            model.results
        with self.assertRaises(NotFittedError):
            model.impacts()
        with self.assertRaises(NotFittedError):
            model.diagnostics()

        model.fit()
        self.assertEqual(model.state, ModelState.FITTED)
        model.impacts(draws=50, seed=1)
        self.assertEqual(model.state, ModelState.IMPACTS_COMPUTED)
        model.fit()
        self.assertEqual(model.state, ModelState.FITTED)

    def test_json_round_trip(self):
        """Test FittedModel survives JSON serialisation exactly."""
        results = create_model('sar_lag', self.sar, self.w).fit()
        restored = FittedModel.from_json(results.to_json())
        np.testing.assert_array_equal(restored.coefficients, results.coefficients)
        np.testing.assert_array_equal(restored.covariance, results.covariance)
        np.testing.assert_array_equal(restored.residuals, results.residuals)
        self.assertEqual(restored.spatial_parameter, results.spatial_parameter)
        self.assertEqual(restored.log_likelihood, results.log_likelihood)
        self.assertEqual(restored.names, results.names)
        self.assertEqual(restored.ids, results.ids)

    def test_residual_moran(self):
        """Test the residual Moran's I of a fitted error model."""
        model = create_model('spatial_error', self.sem, self.w)
        model.fit()
        moran = model.diagnostics()
        self.assertLess(abs(moran.statistic), 0.3)


class TestImpacts(unittest.TestCase):
    """Tests for direct, indirect and total impacts."""

    def setUp(self):
        """Set up SAR data on a 10 x 10 lattice."""
        initialize_config()
        self.w = standardize(build_adjacency(square_lattice(10, 10), 'rook'), 'W')
        self.design = simulate_sar(self.w, rho=0.5, beta=(1.0, 2.0), seed=1)

    def test_ols_impacts(self):
        """Test OLS has no indirect effects."""
        model = create_model('ols', self.design, self.w)
        results = model.fit()
        impacts = model.impacts()
        self.assertEqual(impacts.variables, ['x1'])
        self.assertEqual(impacts.get('x1', 'direct').estimate, results.coefficient('x1'))
        self.assertEqual(impacts.get('x1', 'indirect').estimate, 0.0)

    def test_slx_closed_form(self):
        """Test SLX indirect effects equal theta times S0 / n."""
        model = create_model('slx', self.design, self.w)
        results = model.fit()
        impacts = model.impacts()
        self.assertEqual(impacts.method, 'closed_form')
        theta = results.coefficient('W_x1')
        self.assertAlmostEqual(impacts.get('x1', 'indirect').estimate, theta * self.w.s0 / self.w.n)
        self.assertAlmostEqual(
            impacts.get('x1', 'total').estimate,
            results.coefficient('x1') + theta * self.w.s0 / self.w.n
        )
        self.assertGreater(impacts.get('x1', 'total').std_error, 0)

    def test_sar_simulation(self):
        """Test simulated SAR impacts are reproducible and centred on the point estimate."""
        model = create_model('sar_lag', self.design, self.w)
        results = model.fit()
        first = model.impacts(draws=200, seed=5)
        second = model.impacts(draws=200, seed=5)

        self.assertEqual(first.to_dict(), second.to_dict())
        self.assertEqual(first.accepted + first.rejected, 200)

        beta, rho = results.coefficient('x1'), results.spatial_parameter
        total = first.get('x1', 'total')
        self.assertAlmostEqual(total.estimate, beta / (1.0 - rho), places=6)
        self.assertLess(total.lower, total.estimate)
        self.assertGreater(total.upper, total.estimate)
        self.assertGreater(first.get('x1', 'direct').estimate, beta)

        frame = first.to_frame()
        self.assertEqual(len(frame), 3)

    def test_durbin_error_simulation(self):
        """Test the Durbin error model impacts."""
        model = create_model('spatial_durbin_error', self.design, self.w)
        results = model.fit()
        impacts = model.impacts(draws=100, seed=1)
        self.assertEqual(impacts.method, 'simulation')
        self.assertEqual(impacts.get('x1', 'direct').estimate, results.coefficient('x1'))


class TestDiagnostics(unittest.TestCase):
    """Tests for LM diagnostics and the model recommendation."""

    def setUp(self):
        """Set up SAR data on a 10 x 10 lattice."""
        initialize_config()
        self.w = standardize(build_adjacency(square_lattice(10, 10), 'rook'), 'W')
        self.design = simulate_sar(self.w, rho=0.6, beta=(1.0, 2.0), seed=3)

    def test_lag_dependence_detected(self):
        """Test LM lag detects a strong spatial lag."""
        diagnostics = spatial_diagnostics(self.design, self.w)
        self.assertLess(diagnostics.lm_lag.p_value, 0.05)
        self.assertAlmostEqual(
            diagnostics.sarma.statistic,
            diagnostics.robust_lm_lag.statistic + diagnostics.lm_error.statistic
        )
        self.assertEqual(diagnostics.sarma.df, 2)
        self.assertAlmostEqual(diagnostics.residual_moran.statistic, diagnostics.moran.statistic)

    def test_against_spreg(self):
        """Test the residual Moran and LM statistics against spreg on a 6 x 6 lattice."""
        import spreg

        w = standardize(build_adjacency(square_lattice(6, 6), 'rook'), 'W')
        design = simulate_sar(w, rho=0.4, beta=(1.0, 2.0), seed=5)
        diagnostics = spatial_diagnostics(design, w)
        reference = spreg.OLS(
            design.y.reshape(-1, 1), design.X[:, 1:], w=w.to_libpysal(),
            spat_diag=True, moran=True
        )

        self.assertAlmostEqual(diagnostics.residual_moran.statistic, reference.moran_res[0], places=10)
        self.assertAlmostEqual(diagnostics.residual_moran.z_value, reference.moran_res[1], places=8)
        pairs = {
            'lm_error': reference.lm_error,
            'lm_lag': reference.lm_lag,
            'robust_lm_error': reference.rlm_error,
            'robust_lm_lag': reference.rlm_lag,
            'sarma': reference.lm_sarma,
        }
        for name, (statistic, p_value) in pairs.items():
            self.assertAlmostEqual(diagnostics.tests[name].statistic, statistic, places=8, msg=name)
            self.assertAlmostEqual(diagnostics.tests[name].p_value, p_value, places=8, msg=name)

    def test_residual_moran_moments(self):
        """Test the adjusted mean and variance against the dense Cliff-Ord formulas."""
        diagnostics = spatial_diagnostics(self.design, self.w)
        X, W = self.design.X, self.w.dense()
        n, k = X.shape
        M = np.eye(n) - X @ np.linalg.inv(X.T @ X) @ X.T
        MW = M @ W
        expected = np.trace(MW) / (n - k)
        variance = (
            (np.trace(MW @ M @ W.T) + np.trace(MW @ MW) + np.trace(MW) ** 2) / ((n - k) * (n - k + 2))
            - expected ** 2
        )

        moran = diagnostics.residual_moran
        self.assertAlmostEqual(moran.expected, expected)
        self.assertAlmostEqual(moran.variance, variance)
        self.assertAlmostEqual(moran.z_value, (moran.statistic - expected) / np.sqrt(variance))

    def test_ols_model_diagnostics(self):
        """Test OLS diagnostics reuse the fitted residuals."""
        model = create_model('ols', self.design, self.w)
        results = model.fit()
        diagnostics = model.diagnostics()
        self.assertIs(diagnostics.ols, results)
        self.assertIn('recommended_model', diagnostics.to_dict())

    def test_recommendation(self):
        """Test the decision rules of the recommendation."""
        def tests(lm_error, lm_lag, robust_error, robust_lag):
            return {
                'lm_error': LMTest('LM Error', 1.0, 1, lm_error),
                'lm_lag': LMTest('LM Lag', 1.0, 1, lm_lag),
                'robust_lm_error': LMTest('Robust LM Error', 1.0, 1, robust_error),
                'robust_lm_lag': LMTest('Robust LM Lag', 1.0, 1, robust_lag),
                'sarma': LMTest('LM SARMA', 1.0, 2, 0.5),
            }

        self.assertEqual(recommend_model(tests(0.5, 0.5, 0.5, 0.5), 0.05), ModelKind.OLS)
        self.assertEqual(recommend_model(tests(0.01, 0.5, 0.5, 0.5), 0.05), ModelKind.SPATIAL_ERROR)
        self.assertEqual(recommend_model(tests(0.5, 0.01, 0.5, 0.5), 0.05), ModelKind.SAR_LAG)
        self.assertEqual(recommend_model(tests(0.01, 0.01, 0.01, 0.5), 0.05), ModelKind.SPATIAL_ERROR)
        self.assertEqual(recommend_model(tests(0.01, 0.01, 0.5, 0.01), 0.05), ModelKind.SAR_LAG)
        self.assertEqual(recommend_model(tests(0.01, 0.01, 0.01, 0.01), 0.05), ModelKind.SPATIAL_DURBIN_ERROR)
        self.assertEqual(recommend_model(tests(0.01, 0.01, 0.5, 0.5), 0.05), ModelKind.OLS)

    def test_tester(self):
        """Test the diagnostics-driven workflow."""
        tester = SpatialTester(self.design, self.w)
        with self.assertRaises(ModelError):
            tester.get_summary()

        diagnostics = tester.run_diagnostics()
        results = tester.estimate()
        self.assertEqual(results.kind, diagnostics.recommended.value)
        self.assertIn('Recommended model', tester.get_summary())
        self.assertIn('diagnostics', tester.to_dict())


if __name__ == '__main__':
    unittest.main()
