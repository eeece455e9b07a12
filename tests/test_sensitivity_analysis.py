import pytest

from dcf_valuation import FCFFInputs, project_fcff
from sensitivity_analysis import SENSITIVITY_GRID, percent_impact, summarize_sensitivity, sweep

BASE = FCFFInputs(5, 20, 25, 5, 7, 2, 5)
BASE_REVENUE = 1_000_000


def base_terminal():
    return project_fcff(BASE_REVENUE, BASE)[-1].fcff


def test_one_row_per_parameter_and_shift():
    results = sweep(BASE, BASE_REVENUE)
    assert len(results) == 30
    assert [r.parameter for r in results[::5]] == [attr for attr, _, _ in SENSITIVITY_GRID]


def test_zero_shift_reproduces_base_exactly():
    base = base_terminal()
    for r in sweep(BASE, BASE_REVENUE, base):
        if r.change == 0:
            assert r.terminal_fcff == base
            assert r.impact == 0.0


def test_only_one_parameter_moves():
    results = sweep(BASE, BASE_REVENUE)
    growth_down = results[0]
    assert growth_down.parameter == "revenue_growth_rate"
    assert growth_down.change == -5
    assert growth_down.input_value == 0
    expected = project_fcff(BASE_REVENUE, FCFFInputs(0, 20, 25, 5, 7, 2, 5))[-1].fcff
    assert growth_down.terminal_fcff == pytest.approx(expected)


def test_impact_direction():
    by_key = {(r.parameter, r.change): r for r in sweep(BASE, BASE_REVENUE)}
    assert by_key[("revenue_growth_rate", 5)].impact > 0
    assert by_key[("ebit_margin", 4)].impact > 0
    assert by_key[("tax_rate", 3)].impact < 0
    assert by_key[("capex_rate", 3)].impact < 0


def test_impact_is_relative_to_base():
    base = base_terminal()
    r = sweep(BASE, BASE_REVENUE, base)[-1]
    assert r.impact == pytest.approx((r.terminal_fcff - base) / abs(base) * 100)


def test_percent_impact_zero_base():
    assert percent_impact(0.0, 0.0) == 0.0
    assert percent_impact(5.0, 0.0) is None
    assert percent_impact(-50.0, -100.0) == pytest.approx(50.0)


def test_base_inputs_are_not_mutated():
    before = BASE.to_dict()
    sweep(BASE, BASE_REVENUE)
    assert BASE.to_dict() == before


def test_summary_is_tornado_ordered():
    summary = summarize_sensitivity(sweep(BASE, BASE_REVENUE))
    assert len(summary) == 6
    spreads = [s["spread"] for s in summary]
    assert spreads == sorted(spreads, reverse=True)
    for s in summary:
        assert s["lowImpact"] <= 0 <= s["highImpact"]


def test_result_to_dict():
    d = sweep(BASE, BASE_REVENUE)[0].to_dict()
    assert set(d) == {"parameter", "label", "change", "inputValue", "terminalFcff", "impact"}
