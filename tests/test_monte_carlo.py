import pytest

import config
from dcf_valuation import FCFFInputs, project_fcff
from fcff_errors import InvalidAssumptionError
from monte_carlo import DRAW_WIDTHS, percentile_at, simulate, year_statistics

BASE = FCFFInputs(5, 20, 25, 5, 7, 2, 3)
PROJECTIONS = project_fcff(1_000_000, BASE)


def test_percentiles_are_ordered_every_year():
    result = simulate(BASE, PROJECTIONS, 300, seed=42)
    assert result["iterations"] == 300
    assert [d["year"] for d in result["distribution"]] == [1, 2, 3]
    for year in result["distribution"]:
        assert year["p10"] <= year["p25"] <= year["p50"] <= year["p75"] <= year["p90"]


def test_seeded_runs_do_not_depend_on_worker_count():
    one = simulate(BASE, PROJECTIONS, 120, seed=7, max_workers=1)
    many = simulate(BASE, PROJECTIONS, 120, seed=7, max_workers=8)
    assert one == many


def test_base_revenue_recovered_from_first_year():
    result = simulate(BASE, PROJECTIONS, 10, seed=1)
    assert result["baseRevenue"] == pytest.approx(1_000_000)


def test_draws_stay_within_half_width():
    result = simulate(BASE, PROJECTIONS, 200, seed=3, keep_samples=True)
    samples = result["samples"]
    assert len(samples) == 200
    for sample in samples:
        for attr, width in DRAW_WIDTHS:
            assert abs(getattr(sample.inputs, attr) - getattr(BASE, attr)) <= width / 2
        assert sample.inputs.projection_years == BASE.projection_years
        assert len(sample.fcff) == 3


def test_samples_are_independent_draws():
    samples = simulate(BASE, PROJECTIONS, 20, seed=5, keep_samples=True)["samples"]
    growths = {s.inputs.revenue_growth_rate for s in samples}
    assert len(growths) == 20


def test_percentile_indexing():
    values = [1, 2, 3, 4]
    assert percentile_at(values, 10) == 1
    assert percentile_at(values, 50) == 3
    assert percentile_at(values, 90) == 4
    assert percentile_at([7], 90) == 7


def test_year_statistics():
    stats = year_statistics([3, -1, 1])
    assert stats["mean"] == pytest.approx(1.0)
    assert stats["negativeShare"] == pytest.approx(100 / 3)
    assert stats["p50"] == 1


@pytest.mark.parametrize("iterations", [0, -5, 2.5, True])
def test_invalid_iteration_counts(iterations):
    with pytest.raises(InvalidAssumptionError):
        simulate(BASE, PROJECTIONS, iterations)


def test_iteration_cap(monkeypatch):
    monkeypatch.setattr(config, "MONTE_CARLO_MAX_ITERATIONS", 10)
    with pytest.raises(InvalidAssumptionError):
        simulate(BASE, PROJECTIONS, 11)
