# dcf_valuation.py
import logging
import math
import numbers
from dataclasses import asdict, dataclass, replace
from typing import Dict, List, Mapping, Optional, Sequence

import config
from fcff_errors import InvalidAssumptionError

logger = logging.getLogger(__name__)


# =========================
# ASSUMPTIONS
# =========================
# Every rate is in percent; projection_years is a whole number of years
RATE_FIELDS = (
    "revenue_growth_rate",
    "ebit_margin",
    "tax_rate",
    "depreciation_rate",
    "capex_rate",
    "nwc_rate",
)

# JSON key -> attribute
WIRE_NAMES = {
    "revenueGrowthRate": "revenue_growth_rate",
    "ebitMargin": "ebit_margin",
    "taxRate": "tax_rate",
    "depreciationRate": "depreciation_rate",
    "capexRate": "capex_rate",
    "nwcRate": "nwc_rate",
    "projectionYears": "projection_years",
}


@dataclass(frozen=True)
class FCFFInputs:
    revenue_growth_rate: float
    ebit_margin: float
    tax_rate: float
    depreciation_rate: float
    capex_rate: float
    nwc_rate: float
    projection_years: int

    def validate(self) -> "FCFFInputs":
        years = self.projection_years
        if isinstance(years, bool) or not isinstance(years, numbers.Integral) or years < 1:
            raise InvalidAssumptionError(
                f"projectionYears must be a whole number of years >= 1, got {years!r}")
        for name in RATE_FIELDS:
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, numbers.Real) \
                    or not math.isfinite(value):
                raise InvalidAssumptionError(f"{name} must be a finite number, got {value!r}")
        return self

    def shifted(self, name: str, delta: float) -> "FCFFInputs":
        """Copy with one rate moved by delta percentage points."""
        return replace(self, **{name: getattr(self, name) + delta})

    @classmethod
    def from_dict(cls, data: Mapping, defaults: Optional["FCFFInputs"] = None) -> "FCFFInputs":
        """
        Build from camelCase (or attribute-named) keys. Keys that are absent
        take the value from `defaults`; values that are present must be numbers.
        """
        if not isinstance(data, Mapping):
            raise InvalidAssumptionError("inputs must be a JSON object")
        base = asdict(defaults or DEFAULT_INPUTS)
        for key, value in data.items():
            attr = WIRE_NAMES.get(key, key)
            if attr not in base:
                continue
            base[attr] = _as_number(key, value)
        years = base["projection_years"]
        if isinstance(years, float) and years.is_integer():
            base["projection_years"] = int(years)
        return cls(**base).validate()

    def to_dict(self) -> Dict[str, float]:
        return {wire: getattr(self, attr) for wire, attr in WIRE_NAMES.items()}


def _as_number(key, value):
    if isinstance(value, str):
        try:
            value = float(value.strip())
        except ValueError:
            raise InvalidAssumptionError(f"{key} must be a number, got {value!r}") from None
    if isinstance(value, bool) or not isinstance(value, numbers.Real):
        raise InvalidAssumptionError(f"{key} must be a number, got {value!r}")
    return value


DEFAULT_INPUTS = FCFFInputs(
    revenue_growth_rate=5.0,
    ebit_margin=20.0,
    tax_rate=25.0,
    depreciation_rate=5.0,
    capex_rate=7.0,
    nwc_rate=2.0,
    projection_years=5,
)


@dataclass(frozen=True)
class FCFFProjection:
    year: int
    revenue: float
    ebit: float
    nopat: float
    depreciation: float
    capex: float
    nwc_change: float
    fcff: float

    def to_dict(self) -> Dict[str, float]:
        return {
            "year": self.year,
            "revenue": self.revenue,
            "ebit": self.ebit,
            "nopat": self.nopat,
            "depreciation": self.depreciation,
            "capex": self.capex,
            "nwcChange": self.nwc_change,
            "fcff": self.fcff,
        }


# =========================
# PROJECTION
# =========================
def project_year(base_revenue: float, inputs: FCFFInputs, year: int) -> FCFFProjection:
    # every rate applies to this year's revenue, not the base
    revenue = base_revenue * (1 + inputs.revenue_growth_rate / 100) ** year
    ebit = revenue * (inputs.ebit_margin / 100)
    nopat = ebit * (1 - inputs.tax_rate / 100)
    depreciation = revenue * (inputs.depreciation_rate / 100)
    capex = revenue * (inputs.capex_rate / 100)
    nwc_change = revenue * (inputs.nwc_rate / 100)
    fcff = nopat + depreciation - capex - nwc_change
    return FCFFProjection(year, revenue, ebit, nopat, depreciation, capex, nwc_change, fcff)


def project_fcff(base_revenue: float, inputs: FCFFInputs) -> List[FCFFProjection]:
    inputs.validate()
    if isinstance(base_revenue, bool) or not isinstance(base_revenue, numbers.Real) \
            or not math.isfinite(base_revenue):
        raise InvalidAssumptionError(f"base revenue must be a finite number, got {base_revenue!r}")
    return [project_year(base_revenue, inputs, y)
            for y in range(1, inputs.projection_years + 1)]


def terminal_fcff(projections: Sequence[FCFFProjection]) -> float:
    return projections[-1].fcff


# =========================
# DISCOUNTING
# =========================
def discount_cash_flows(cash_flows, rate):
    return [cf / ((1 + rate) ** i) for i, cf in enumerate(cash_flows, 1)]


def calculate_terminal_value(last_forecast_fcf, wacc, terminal_growth):
    return (last_forecast_fcf * (1 + terminal_growth)) / (wacc - terminal_growth)


def discount_terminal_value(tv, years, rate):
    return tv / ((1 + rate) ** years)


def calculate_enterprise_value(pv_fcf, pv_terminal):
    return sum(pv_fcf) + pv_terminal


def value_firm(projections: Sequence[FCFFProjection], wacc: float = None,
               terminal_growth: float = None) -> Dict[str, object]:
    """Enterprise value of a projection. wacc and terminal_growth in percent."""
    wacc = config.WACC if wacc is None else wacc
    terminal_growth = config.TERMINAL_GROWTH if terminal_growth is None else terminal_growth
    for name, value in (("wacc", wacc), ("terminalGrowth", terminal_growth)):
        if isinstance(value, bool) or not isinstance(value, numbers.Real) or not math.isfinite(value):
            raise InvalidAssumptionError(f"{name} must be a finite number, got {value!r}")
    if wacc <= terminal_growth:
        raise InvalidAssumptionError(
            f"wacc ({wacc}%) must be greater than terminal growth ({terminal_growth}%)")
    if not projections:
        raise InvalidAssumptionError("cannot value an empty projection")

    rate, growth = wacc / 100, terminal_growth / 100
    fcffs = [p.fcff for p in projections]
    discounted = discount_cash_flows(fcffs, rate)
    tv = calculate_terminal_value(fcffs[-1], rate, growth)
    discounted_tv = discount_terminal_value(tv, len(fcffs), rate)
    return {
        "discountedFcff": discounted,
        "terminalValue": tv,
        "discountedTerminalValue": discounted_tv,
        "enterpriseValue": calculate_enterprise_value(discounted, discounted_tv),
        "wacc": wacc,
        "terminalGrowth": terminal_growth,
    }


# =========================
# ASSUMPTIONS FROM EXTRACTED DATA
# =========================
def suggest_inputs(analysis: Mapping, projection_years: int = None) -> FCFFInputs:
    """
    Starting assumptions from an extraction result: growth from the yearly
    revenue change, rates from the extracted ratios, defaults elsewhere.
    """
    changes = analysis.get("yearlyChanges") or {}
    ratios = analysis.get("ratios") or {}

    def pick(value, fallback):
        if isinstance(value, bool) or not isinstance(value, numbers.Real) or not math.isfinite(value):
            return fallback
        return float(value)

    d = DEFAULT_INPUTS
    return FCFFInputs(
        revenue_growth_rate=pick(changes.get("revenue"), d.revenue_growth_rate),
        ebit_margin=pick(ratios.get("ebitMargin"), d.ebit_margin),
        tax_rate=d.tax_rate,
        depreciation_rate=pick(ratios.get("depreciationRate"), d.depreciation_rate),
        capex_rate=pick(ratios.get("capexRate"), d.capex_rate),
        nwc_rate=pick(ratios.get("nwcRate"), d.nwc_rate),
        projection_years=projection_years or d.projection_years,
    ).validate()


# =========================
# MASTER PIPELINE
# =========================
def run_fcff_model(base_revenue, inputs: FCFFInputs, wacc=None, terminal_growth=None):
    projections = project_fcff(base_revenue, inputs)
    logger.info("FCFF projection: base revenue %s, %d years, terminal FCFF %s",
                base_revenue, len(projections), projections[-1].fcff)
    return {
        "inputs": inputs.to_dict(),
        "baseRevenue": base_revenue,
        "projections": [p.to_dict() for p in projections],
        "valuation": value_firm(projections, wacc, terminal_growth),
    }
