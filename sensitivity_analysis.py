"""
sensitivity_analysis.py
One-parameter-at-a-time sweep of the FCFF projection.

Each of the six rates is moved through its own grid of percentage-point
shifts while every other input stays at base; the terminal-year FCFF of each
run is compared with the unshifted run.
"""

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple

from dcf_valuation import FCFFInputs, project_fcff, terminal_fcff

logger = logging.getLogger(__name__)

# attribute, display label, shifts in percentage points
SENSITIVITY_GRID: Tuple[Tuple[str, str, Tuple[float, ...]], ...] = (
    ("revenue_growth_rate", "Revenue growth", (-5, -2.5, 0, 2.5, 5)),
    ("ebit_margin", "EBIT margin", (-4, -2, 0, 2, 4)),
    ("tax_rate", "Tax rate", (-3, -1.5, 0, 1.5, 3)),
    ("depreciation_rate", "Depreciation rate", (-2, -1, 0, 1, 2)),
    ("capex_rate", "Capex rate", (-3, -1.5, 0, 1.5, 3)),
    ("nwc_rate", "NWC rate", (-2, -1, 0, 1, 2)),
)


@dataclass(frozen=True)
class SensitivityResult:
    parameter: str
    label: str
    change: float
    input_value: float
    terminal_fcff: float
    # percent change vs the base terminal FCFF; None when the base is 0
    impact: Optional[float]

    def to_dict(self):
        return {
            "parameter": self.parameter,
            "label": self.label,
            "change": self.change,
            "inputValue": self.input_value,
            "terminalFcff": self.terminal_fcff,
            "impact": self.impact,
        }


def percent_impact(value: float, base: float) -> Optional[float]:
    if value == base:
        return 0.0
    if base == 0:
        return None
    return (value - base) / abs(base) * 100


def sweep(base_inputs: FCFFInputs, base_revenue: float,
          base_terminal_fcff: Optional[float] = None,
          grid: Sequence = SENSITIVITY_GRID) -> List[SensitivityResult]:
    base_inputs.validate()
    if base_terminal_fcff is None:
        base_terminal_fcff = terminal_fcff(project_fcff(base_revenue, base_inputs))

    results = []
    for attr, label, shifts in grid:
        for change in shifts:
            inputs = base_inputs.shifted(attr, change)
            value = terminal_fcff(project_fcff(base_revenue, inputs))
            results.append(SensitivityResult(
                parameter=attr,
                label=label,
                change=change,
                input_value=getattr(inputs, attr),
                terminal_fcff=value,
                impact=percent_impact(value, base_terminal_fcff),
            ))
    logger.debug("sensitivity sweep: %d runs", len(results))
    return results


def summarize_sensitivity(results: Sequence[SensitivityResult]) -> List[Dict[str, object]]:
    """Per parameter low/high impact and spread, widest spread first."""
    by_parameter: Dict[str, List[SensitivityResult]] = {}
    for r in results:
        by_parameter.setdefault(r.parameter, []).append(r)

    summary = []
    for parameter, rows in by_parameter.items():
        impacts = [r.impact for r in rows if r.impact is not None]
        low = min(impacts) if impacts else None
        high = max(impacts) if impacts else None
        summary.append({
            "parameter": parameter,
            "label": rows[0].label,
            "lowImpact": low,
            "highImpact": high,
            "spread": (high - low) if impacts else None,
        })
    summary.sort(key=lambda s: s["spread"] if s["spread"] is not None else -1, reverse=True)
    return summary
