"""
monte_carlo.py
Joint random perturbation of all six FCFF rates.

Every iteration is a pure function of (base inputs, base revenue, its own
seed): draw one uniform shift per rate, project, keep the per-year FCFF.
Iterations fan out over a thread pool and are only aggregated once all of
them are in, so the result is the same for any worker count.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np

import config
from dcf_valuation import FCFFInputs, FCFFProjection, project_fcff
from fcff_errors import InvalidAssumptionError

logger = logging.getLogger(__name__)

# Full width of each uniform draw in percentage points: base + (U - 0.5) * width
DRAW_WIDTHS: Tuple[Tuple[str, float], ...] = (
    ("revenue_growth_rate", 4.0),
    ("ebit_margin", 3.0),
    ("tax_rate", 2.0),
    ("depreciation_rate", 1.0),
    ("capex_rate", 2.0),
    ("nwc_rate", 1.0),
)

PERCENTILES = (10, 25, 50, 75, 90)


@dataclass(frozen=True)
class MonteCarloSample:
    iteration: int
    inputs: FCFFInputs
    projections: Tuple[FCFFProjection, ...]

    @property
    def fcff(self) -> List[float]:
        return [p.fcff for p in self.projections]


def draw_inputs(base: FCFFInputs, rng: np.random.Generator) -> FCFFInputs:
    u = rng.random(len(DRAW_WIDTHS))
    inputs = base
    for (attr, width), x in zip(DRAW_WIDTHS, u):
        inputs = inputs.shifted(attr, (float(x) - 0.5) * width)
    return inputs


def run_iteration(base: FCFFInputs, base_revenue: float, iteration: int,
                  seed: np.random.SeedSequence) -> MonteCarloSample:
    rng = np.random.default_rng(seed)
    inputs = draw_inputs(base, rng)
    return MonteCarloSample(iteration, inputs, tuple(project_fcff(base_revenue, inputs)))


def percentile_at(sorted_values: Sequence[float], p: float) -> float:
    n = len(sorted_values)
    index = min(int(p / 100 * n), n - 1)
    return sorted_values[index]


def year_statistics(values: Sequence[float]) -> Dict[str, float]:
    ordered = sorted(values)
    arr = np.asarray(ordered, dtype=float)
    stats = {f"p{p}": percentile_at(ordered, p) for p in PERCENTILES}
    stats["mean"] = float(arr.mean())
    stats["std"] = float(arr.std())
    stats["negativeShare"] = float((arr < 0).sum()) / len(arr) * 100
    return stats


def base_revenue_of(base_inputs: FCFFInputs, base_projections: Sequence[FCFFProjection]) -> float:
    """Undo one year of growth on the first projected year."""
    if not base_projections:
        raise InvalidAssumptionError("base projections are empty")
    growth = 1 + base_inputs.revenue_growth_rate / 100
    if growth == 0:
        raise InvalidAssumptionError("cannot recover base revenue with -100% growth; pass it explicitly")
    return base_projections[0].revenue / growth


def simulate(base_inputs: FCFFInputs, base_projections: Sequence[FCFFProjection],
             iterations: int = None, seed: Optional[int] = None,
             max_workers: Optional[int] = None, base_revenue: Optional[float] = None,
             keep_samples: bool = False) -> Dict[str, object]:
    iterations = config.MONTE_CARLO_ITERATIONS if iterations is None else iterations
    if isinstance(iterations, bool) or not isinstance(iterations, int) or iterations < 1:
        raise InvalidAssumptionError(f"iterations must be a positive integer, got {iterations!r}")
    if iterations > config.MONTE_CARLO_MAX_ITERATIONS:
        raise InvalidAssumptionError(
            f"iterations must be at most {config.MONTE_CARLO_MAX_ITERATIONS}, got {iterations}")
    base_inputs.validate()
    if base_revenue is None:
        base_revenue = base_revenue_of(base_inputs, base_projections)

    seeds = np.random.SeedSequence(seed).spawn(iterations)
    workers = max_workers or config.MONTE_CARLO_WORKERS
    logger.info("Monte Carlo: %d iterations on %d workers", iterations, workers)

    with ThreadPoolExecutor(max_workers=workers) as pool:
        samples = list(pool.map(
            lambda i: run_iteration(base_inputs, base_revenue, i, seeds[i]),
            range(iterations),
        ))

    years = base_inputs.projection_years
    per_year = [[s.projections[y].fcff for s in samples] for y in range(years)]
    distribution = [dict(year=y + 1, **year_statistics(values))
                    for y, values in enumerate(per_year)]

    result = {
        "iterations": iterations,
        "baseRevenue": base_revenue,
        "distribution": distribution,
    }
    if keep_samples:
        result["samples"] = samples
    return result
