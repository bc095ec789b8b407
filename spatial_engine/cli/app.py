"""
app.py

Command-line application for Spatial Engine.
"""
import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import numpy as np
import typer

from ..core.config import initialize_config
from ..core.exceptions import SpatialEngineError
from ..core.logging_setup import setup_logging_from_config

logger = logging.getLogger(__name__)

app = typer.Typer(help="Spatial weights, autocorrelation, spatial regression and GWR")


@app.callback()
def main(
    config: Optional[str] = typer.Option(None, help='Configuration file path'),
    verbose: bool = typer.Option(False, help='Enable verbose logging')
):
    """Load configuration and set up logging for every command."""
    initialize_config(config)
    setup_logging_from_config()
    if verbose:
        logging.getLogger().setLevel(logging.DEBUG)
        logger.info("Verbose logging enabled")


def _json_default(value: Any) -> Any:
    if isinstance(value, np.generic):
        return value.item()
    if isinstance(value, np.ndarray):
        return value.tolist()
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def _write(result: Dict[str, Any], output: Optional[str]) -> None:
    text = json.dumps(result, indent=2, default=_json_default)
    if output is None:
        typer.echo(text)
        return
    path = Path(output)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text)
    logger.info(f"Results saved to {path}")


def _columns(value: str) -> List[str]:
    return [c.strip() for c in value.split(',') if c.strip()]


def _load(
    path: str,
    id_column: Optional[str],
    rule: str,
    style: Optional[str],
    zero_policy: Optional[bool],
    knn: Optional[int]
) -> Tuple[Any, Any]:
    """Read a file and build its weights matrix."""
    from ..data.loaders import geometries_from_frame, read_frame
    from ..geometry.adjacency import ContiguityRule, build_adjacency, build_knn
    from ..weights.matrix import standardize

    frame = read_frame(path)
    geometries = geometries_from_frame(frame, id_column)
    if knn is not None:
        graph = build_knn(geometries, knn)
    else:
        graph = build_adjacency(geometries, ContiguityRule.parse(rule))
    return frame, standardize(graph, style=style, zero_policy=zero_policy)


def _run(command: str, func, *args, **kwargs) -> Any:
    """Call a command body; library errors become exit code 1."""
    try:
        return func(*args, **kwargs)
    except (SpatialEngineError, FileNotFoundError, KeyError, ValueError) as e:
        logger.error(f"{command} failed with error: {e}")
        raise typer.Exit(code=1) from e


ID_OPTION = typer.Option(None, help='Integer unit id column (row position if omitted)')
RULE_OPTION = typer.Option('queen', help='Contiguity rule (queen, rook)')
STYLE_OPTION = typer.Option(None, help='Weights style (W row-standardised, B binary); defaults to weights.style')
ZERO_OPTION = typer.Option(None, '--zero-policy/--no-zero-policy', help='Allow units without neighbours')
KNN_OPTION = typer.Option(None, help='Use k nearest neighbours instead of contiguity')
OUTPUT_OPTION = typer.Option(None, help='Output JSON file (stdout if omitted)')


@app.command()
def weights(
    path: str = typer.Argument(..., help='Geometry file'),
    id_column: Optional[str] = ID_OPTION,
    rule: str = RULE_OPTION,
    style: Optional[str] = STYLE_OPTION,
    zero_policy: Optional[bool] = ZERO_OPTION,
    knn: Optional[int] = KNN_OPTION,
    output: Optional[str] = OUTPUT_OPTION
):
    """Build a spatial weights matrix and report its neighbours."""
    def body():
        _, w = _load(path, id_column, rule, style, zero_policy, knn)
        return {
            'n': w.n,
            'style': w.style.value,
            'islands': list(w.islands),
            's0': w.s0,
            'neighbors': {str(unit): {str(j): v for j, v in w.neighbors(unit).items()} for unit in w.ids},
        }

    _write(_run('weights', body), output)


@app.command()
def moran(
    path: str = typer.Argument(..., help='Geometry file'),
    column: str = typer.Argument(..., help='Attribute column'),
    id_column: Optional[str] = ID_OPTION,
    rule: str = RULE_OPTION,
    style: Optional[str] = STYLE_OPTION,
    zero_policy: Optional[bool] = ZERO_OPTION,
    knn: Optional[int] = KNN_OPTION,
    permutations: int = typer.Option(0, help='Random permutations'),
    seed: Optional[int] = typer.Option(None, help='Random seed'),
    alternative: Optional[str] = typer.Option(None, help='greater, less or two-sided'),
    output: Optional[str] = OUTPUT_OPTION
):
    """Global Moran's I and Geary's C of one attribute."""
    from ..autocorrelation import geary, global_moran
    from ..data.loaders import attributes_from_frame

    def body():
        frame, w = _load(path, id_column, rule, style, zero_policy, knn)
        x = attributes_from_frame(frame, column, id_column)
        result = global_moran(x, w, permutations=permutations, seed=seed, alternative=alternative)
        return {
            'moran': result.to_dict(),
            'geary': geary(x, w, permutations=permutations, seed=seed, alternative=alternative).to_dict(),
        }

    _write(_run('moran', body), output)


@app.command()
def lisa(
    path: str = typer.Argument(..., help='Geometry file'),
    column: str = typer.Argument(..., help='Attribute column'),
    id_column: Optional[str] = ID_OPTION,
    rule: str = RULE_OPTION,
    style: Optional[str] = STYLE_OPTION,
    zero_policy: Optional[bool] = ZERO_OPTION,
    knn: Optional[int] = KNN_OPTION,
    permutations: Optional[int] = typer.Option(None, help='Conditional permutations'),
    seed: Optional[int] = typer.Option(None, help='Random seed'),
    method: Optional[str] = typer.Option(None, help='permutation or analytic'),
    significance: Optional[float] = typer.Option(None, help='Significance threshold'),
    output: Optional[str] = OUTPUT_OPTION
):
    """Local Moran's I with cluster classification."""
    from ..autocorrelation import local_moran
    from ..data.loaders import attributes_from_frame

    def body():
        frame, w = _load(path, id_column, rule, style, zero_policy, knn)
        x = attributes_from_frame(frame, column, id_column)
        result = local_moran(
            x, w, permutations=permutations, seed=seed, method=method, significance=significance
        )
        return result.to_dict()

    _write(_run('lisa', body), output)


@app.command()
def hotspots(
    path: str = typer.Argument(..., help='Geometry file'),
    column: str = typer.Argument(..., help='Attribute column'),
    id_column: Optional[str] = ID_OPTION,
    rule: str = RULE_OPTION,
    style: Optional[str] = STYLE_OPTION,
    zero_policy: Optional[bool] = ZERO_OPTION,
    knn: Optional[int] = KNN_OPTION,
    star: bool = typer.Option(False, help='Include each unit in its own neighbourhood (Gi*)'),
    significance: Optional[float] = typer.Option(None, help='Significance threshold'),
    output: Optional[str] = OUTPUT_OPTION
):
    """Getis-Ord hot and cold spots."""
    from ..autocorrelation import getis_ord
    from ..data.loaders import attributes_from_frame

    def body():
        frame, w = _load(path, id_column, rule, style, zero_policy, knn)
        x = attributes_from_frame(frame, column, id_column)
        return getis_ord(x, w, star=star, significance=significance).to_dict()

    _write(_run('hotspots', body), output)


@app.command()
def diagnose(
    path: str = typer.Argument(..., help='Geometry file'),
    y: str = typer.Argument(..., help='Dependent variable column'),
    x: str = typer.Argument(..., help='Comma-separated predictor columns'),
    id_column: Optional[str] = ID_OPTION,
    rule: str = RULE_OPTION,
    style: Optional[str] = STYLE_OPTION,
    zero_policy: Optional[bool] = ZERO_OPTION,
    knn: Optional[int] = KNN_OPTION,
    significance: Optional[float] = typer.Option(None, help='Significance level for the recommendation'),
    output: Optional[str] = OUTPUT_OPTION
):
    """Spatial dependence diagnostics of an OLS fit."""
    from ..data.loaders import design_from_frame
    from ..models import SpatialTester

    def body():
        frame, w = _load(path, id_column, rule, style, zero_policy, knn)
        design = design_from_frame(frame, y, _columns(x), id_column)
        tester = SpatialTester(design, w)
        diagnostics = tester.run_diagnostics(significance=significance)
        logger.info(f"Recommended model: {diagnostics.recommended.value}")
        return tester.to_dict()

    _write(_run('diagnose', body), output)


@app.command()
def fit(
    path: str = typer.Argument(..., help='Geometry file'),
    y: str = typer.Argument(..., help='Dependent variable column'),
    x: str = typer.Argument(..., help='Comma-separated predictor columns'),
    kind: Optional[str] = typer.Option(None, help='ols, slx, sar_lag, spatial_error or spatial_durbin_error '
                                                  '(recommended by the diagnostics if omitted)'),
    id_column: Optional[str] = ID_OPTION,
    rule: str = RULE_OPTION,
    style: Optional[str] = STYLE_OPTION,
    zero_policy: Optional[bool] = ZERO_OPTION,
    knn: Optional[int] = KNN_OPTION,
    impacts: bool = typer.Option(True, help='Compute direct, indirect and total impacts'),
    draws: Optional[int] = typer.Option(None, help='Simulation draws for impacts'),
    seed: Optional[int] = typer.Option(None, help='Random seed for impacts'),
    output: Optional[str] = OUTPUT_OPTION
):
    """Fit a spatial regression model."""
    from ..data.loaders import design_from_frame
    from ..models import SpatialTester

    def body():
        frame, w = _load(path, id_column, rule, style, zero_policy, knn)
        design = design_from_frame(frame, y, _columns(x), id_column)
        tester = SpatialTester(design, w)
        tester.estimate(kind)
        result = tester.to_dict()
        if impacts:
            result['impacts'] = tester.model.impacts(draws=draws, seed=seed).to_dict()
        return result

    _write(_run('fit', body), output)


@app.command()
def gwr(
    path: str = typer.Argument(..., help='Geometry file'),
    y: str = typer.Argument(..., help='Dependent variable column'),
    x: str = typer.Argument(..., help='Comma-separated predictor columns'),
    id_column: Optional[str] = ID_OPTION,
    kernel: Optional[str] = typer.Option(None, help='gaussian, bisquare or exponential'),
    fixed: Optional[bool] = typer.Option(None, '--fixed/--adaptive', help='Distance or neighbour-count bandwidth'),
    bandwidth: Optional[float] = typer.Option(None, help='Bandwidth (selected by cross-validation if omitted)'),
    method: str = typer.Option('golden', help='Bandwidth search: golden or grid'),
    criterion: str = typer.Option('cv', help='Bandwidth criterion: cv or aicc'),
    output: Optional[str] = OUTPUT_OPTION
):
    """Geographically weighted regression."""
    from ..data.loaders import design_from_frame, geometries_from_frame, read_frame
    from ..gwr import GWR, select_bandwidth

    def body():
        frame = read_frame(path)
        geometries = geometries_from_frame(frame, id_column)
        design = design_from_frame(frame, y, _columns(x), id_column)
        model = GWR(geometries, design, kernel=kernel, fixed=fixed)
        result: Dict[str, Any] = {}
        selected = bandwidth
        if selected is None:
            selection = select_bandwidth(model, method=method, criterion=criterion)
            result['bandwidth_selection'] = selection.to_dict()
            selected = selection.bandwidth
        result['gwr'] = model.fit(selected).to_dict()
        return result

    _write(_run('gwr', body), output)


if __name__ == "__main__":
    app()
