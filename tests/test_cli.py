"""
Tests for the command-line application.
"""
import os
import json
import logging
import tempfile
import unittest

import geopandas as gpd
import numpy as np
import yaml
from typer.testing import CliRunner

from spatial_engine.cli.app import app
from spatial_engine.core.config import initialize_config
from spatial_engine.data.synthetic import square_lattice


class TestCLI(unittest.TestCase):
    """End-to-end tests of the CLI on a GeoJSON lattice."""

    def setUp(self):
        """Write a 6 x 6 lattice with a smooth outcome and a quiet config."""
        self.temp_dir = tempfile.TemporaryDirectory()
        self.runner = CliRunner()

        rng = np.random.default_rng(3)
        cells = square_lattice(6, 6, start_id=100)
        rows, cols = np.divmod(np.arange(36), 6)
        rain = rng.standard_normal(36)
        frame = gpd.GeoDataFrame(
            {
                'unit': [g.id for g in cells],
                'price': rows + cols + 0.5 * rain + 0.1 * rng.standard_normal(36),
                'rain': rain,
            },
            geometry=[g.shape for g in cells],
        )
        self.data = os.path.join(self.temp_dir.name, 'lattice.geojson')
        frame.to_file(self.data, driver='GeoJSON')

        self.config = os.path.join(self.temp_dir.name, 'config.yaml')
        with open(self.config, 'w') as f:
            yaml.safe_dump({'logging': {'log_level': 'WARNING', 'logs_dir': None}}, f)

    def tearDown(self):
        """Clean up files, handlers and the global configuration."""
        root = logging.getLogger()
        for handler in root.handlers[:]:
            root.removeHandler(handler)
        self.temp_dir.cleanup()
        initialize_config()

    def invoke(self, *args):
        """Run a command and return its JSON output."""
        output = os.path.join(self.temp_dir.name, 'out', f"{args[0]}.json")
        result = self.runner.invoke(
            app, ['--config', self.config, *args, '--output', output]
        )
        self.assertEqual(result.exit_code, 0, msg=str(result.exception))
        with open(output) as f:
            return json.load(f)

    def test_weights(self):
        """Test the weights report."""
        result = self.invoke('weights', self.data, '--id-column', 'unit', '--rule', 'rook')
        self.assertEqual(result['n'], 36)
        self.assertEqual(result['islands'], [])
        self.assertEqual(set(result['neighbors']['100']), {'101', '106'})

    def test_weights_style_from_config(self):
        """Test that the weights style comes from the YAML file unless given."""
        with open(self.config, 'w') as f:
            yaml.safe_dump({'logging': {'log_level': 'WARNING', 'logs_dir': None},
                            'weights': {'style': 'B'}}, f)

        result = self.invoke('weights', self.data, '--id-column', 'unit', '--rule', 'rook')
        self.assertEqual(result['style'], 'B')
        self.assertEqual(result['neighbors']['100'], {'101': 1.0, '106': 1.0})

        result = self.invoke('weights', self.data, '--id-column', 'unit', '--style', 'W')
        self.assertEqual(result['style'], 'W')

    def test_moran(self):
        """Test global statistics with permutations."""
        result = self.invoke(
            'moran', self.data, 'price', '--id-column', 'unit',
            '--permutations', '99', '--seed', '1'
        )
        self.assertGreater(result['moran']['statistic'], 0.3)
        self.assertEqual(result['moran']['permutation']['permutations'], 99)
        self.assertLess(result['geary']['statistic'], 1.0)

    def test_lisa_and_hotspots(self):
        """Test local statistics."""
        lisa = self.invoke(
            'lisa', self.data, 'price', '--id-column', 'unit',
            '--permutations', '99', '--seed', '2'
        )
        self.assertEqual(len(lisa['units']), 36)
        self.assertEqual(lisa['seed'], 2)

        spots = self.invoke('hotspots', self.data, 'price', '--id-column', 'unit', '--star')
        self.assertTrue(spots['star'])
        self.assertEqual(len(spots['units']), 36)

    def test_diagnose_and_fit(self):
        """Test diagnostics and a lag model with impacts."""
        diagnostics = self.invoke('diagnose', self.data, 'price', 'rain', '--id-column', 'unit')
        self.assertIn(diagnostics['diagnostics']['recommended_model'],
                      ['ols', 'sar_lag', 'spatial_error', 'spatial_durbin_error'])

        fitted = self.invoke(
            'fit', self.data, 'price', 'rain', '--id-column', 'unit',
            '--kind', 'sar_lag', '--draws', '50', '--seed', '1'
        )
        self.assertEqual(fitted['model']['kind'], 'sar_lag')
        self.assertEqual(fitted['model']['spatial_parameter_name'], 'rho')
        self.assertEqual(fitted['impacts']['draws'], 50)

    def test_gwr(self):
        """Test GWR with a given bandwidth and with selection."""
        given = self.invoke('gwr', self.data, 'price', 'rain', '--id-column', 'unit', '--bandwidth', '12')
        self.assertEqual(given['gwr']['bandwidth'], 12.0)
        self.assertNotIn('bandwidth_selection', given)

        selected = self.invoke('gwr', self.data, 'price', 'rain', '--id-column', 'unit', '--criterion', 'aicc')
        self.assertEqual(selected['gwr']['bandwidth'], selected['bandwidth_selection']['bandwidth'])

    def test_errors_exit_nonzero(self):
        """Test that missing files and columns exit with code 1."""
        missing = os.path.join(self.temp_dir.name, 'missing.geojson')
        result = self.runner.invoke(app, ['--config', self.config, 'moran', missing, 'price'])
        self.assertEqual(result.exit_code, 1)

        result = self.runner.invoke(app, ['--config', self.config, 'moran', self.data, 'income'])
        self.assertEqual(result.exit_code, 1)

        result = self.runner.invoke(
            app, ['--config', self.config, 'fit', self.data, 'price', 'rain', '--kind', 'probit']
        )
        self.assertEqual(result.exit_code, 1)


if __name__ == '__main__':
    unittest.main()
