"""
metric_reconciler.py
RawRecord -> CanonicalMetricSet.

1. every field is resolved to a metric id; the first field per id whose value
   parses to a finite number sets it (absolute value)
2. required ids still unset go through their estimator chain (ESTIMATORS),
   first estimate that produces a number wins, each estimate logged
3. anything still unset is reported by MissingMetricsError

Also: the four projection ratios, year-over-year changes and the merge of an
externally computed (AI) metric set over the traditional result.
"""

import json
import logging
import math
import re
from collections.abc import Mapping
from typing import Callable, Dict, Iterable, Optional, Tuple

from fcff_errors import MissingMetricsError
from metric_aliases import ALIAS_TABLE, REQUIRED_METRICS, AliasResolver, is_period_field
from number_parsing import parse_amount
from statement_extractors import RawRecord

logger = logging.getLogger(__name__)

ASSUMED_TAX_RATE = 0.25


class CanonicalMetricSet(Mapping):
    """Read-only metric id -> float, plus which ids were estimated."""

    def __init__(self, values: Mapping, estimated: Iterable[str] = (), period=None):
        self._values = {k: float(v) for k, v in values.items()}
        self._estimated = frozenset(estimated)
        self.period = period

    def __getitem__(self, key):
        return self._values[key]

    def __iter__(self):
        return iter(self._values)

    def __len__(self):
        return len(self._values)

    @property
    def estimated(self) -> frozenset:
        return self._estimated

    def to_dict(self) -> Dict[str, float]:
        return dict(self._values)

    def __repr__(self):
        return f"CanonicalMetricSet({self._values!r}, estimated={sorted(self._estimated)!r})"


# ══════════════════════════════════════════════════════════════════════════════
# Estimators
# ══════════════════════════════════════════════════════════════════════════════
# Each strategy sees the metrics known so far for the record and the matched
# fields of the record for the period before it (or {}), and returns a number
# or None.
Strategy = Callable[[Mapping, Mapping], Optional[float]]


def _share_of(metric: str, share: float) -> Strategy:
    def estimate(known, previous):
        base = known.get(metric)
        return None if base is None else base * share
    return estimate


def _current_assets_less_liabilities(known, previous):
    assets, liabilities = known.get("currentAssets"), known.get("currentLiabilities")
    if assets is None or liabilities is None:
        return None
    return assets - liabilities


def _fixed_asset_delta(known, previous):
    current = known.get("fixedAssets")
    prior = known.get("previousFixedAssets")
    if prior is None:
        prior = previous.get("fixedAssets")
    if current is None or prior is None:
        return None
    delta = current - prior
    # a shrinking asset base says nothing about spending
    return delta if delta > 0 else None


def _grossed_up_net_income(known, previous):
    net = known.get("netIncome")
    return None if net is None else net / (1 - ASSUMED_TAX_RATE)


def _ebitda_less_depreciation(known, previous):
    ebitda, dep = known.get("ebitda"), known.get("depreciation")
    if ebitda is None or dep is None:
        return None
    return ebitda - dep


# Evaluated in this order, so ebit can use an estimated depreciation
ESTIMATORS: Mapping[str, Tuple[Tuple[str, Strategy], ...]] = {
    "workingCapital": (
        ("current assets - current liabilities", _current_assets_less_liabilities),
        ("15% of revenue", _share_of("revenue", 0.15)),
    ),
    "depreciation": (
        ("10% of fixed assets", _share_of("fixedAssets", 0.10)),
        ("5% of revenue", _share_of("revenue", 0.05)),
    ),
    "capex": (
        ("fixed asset delta", _fixed_asset_delta),
        ("7% of revenue", _share_of("revenue", 0.07)),
    ),
    "ebit": (
        ("net income grossed up at 25% tax", _grossed_up_net_income),
        ("EBITDA - depreciation", _ebitda_less_depreciation),
    ),
}


# ══════════════════════════════════════════════════════════════════════════════
# Reconciliation
# ══════════════════════════════════════════════════════════════════════════════
def record_label(record: RawRecord) -> str:
    if record.period:
        return f"{record.source or 'record'} {record.period}"
    return f"{record.source or 'record'} #{record.index + 1}"


def match_fields(record: RawRecord, resolver: Optional[AliasResolver] = None) -> Dict[str, float]:
    """Directly matched metrics of one record, in first-match-wins order."""
    resolver = resolver or AliasResolver()
    known: Dict[str, float] = {}
    for name, raw in record.items():
        if record.canonical:
            metric = name
        else:
            if name == record.period_field or is_period_field(name):
                continue
            metric = resolver.resolve(name)
        if metric is None or metric in known:
            continue
        value = parse_amount(raw)
        if value is None:
            continue
        known[metric] = abs(value)
    return known


def reconcile(record: RawRecord, resolver: Optional[AliasResolver] = None,
              previous: Optional[Mapping] = None) -> CanonicalMetricSet:
    known = match_fields(record, resolver)
    previous = previous or {}
    estimated = []

    for metric, strategies in ESTIMATORS.items():
        if metric in known:
            continue
        for label, strategy in strategies:
            value = strategy(known, previous)
            if value is not None and math.isfinite(value):
                known[metric] = value
                estimated.append(metric)
                logger.warning("%s: %s estimated from %s = %s",
                               record_label(record), metric, label, value)
                break

    missing = [m for m in REQUIRED_METRICS if m not in known]
    if missing:
        raise MissingMetricsError(missing)
    return CanonicalMetricSet(known, estimated, period=record.period)


def calculate_financial_ratios(metrics: Mapping) -> Dict[str, Optional[float]]:
    """The four rates the projection needs, as percent of revenue."""
    revenue = metrics.get("revenue")
    keys = (
        ("ebitMargin", "ebit"),
        ("depreciationRate", "depreciation"),
        ("capexRate", "capex"),
        ("nwcRate", "workingCapital"),
    )
    if not revenue:
        return {name: None for name, _ in keys}
    ratios = {}
    for name, metric in keys:
        value = metrics.get(metric)
        ratios[name] = None if value is None else value / revenue * 100
    return ratios


def yearly_changes(current: Mapping, previous: Optional[Mapping]) -> Dict[str, float]:
    if not previous:
        return {}
    changes = {}
    for metric, value in current.items():
        before = previous.get(metric)
        if before is None or before == 0:
            continue
        changes[metric] = (value - before) / before * 100
    return changes


# ══════════════════════════════════════════════════════════════════════════════
# AI-assisted metric set
# ══════════════════════════════════════════════════════════════════════════════
_JSON_OBJECT = re.compile(r"\{.*\}", re.DOTALL)


def parse_ai_metrics(payload) -> Optional[Dict[str, float]]:
    """
    Canonical metrics from a dict or from model text wrapping a JSON object.
    None unless at least one recognised canonical id carries a number.
    """
    if payload is None:
        return None
    if isinstance(payload, bytes):
        payload = payload.decode("utf-8", errors="replace")
    if isinstance(payload, str):
        m = _JSON_OBJECT.search(payload)
        if not m:
            return None
        try:
            payload = json.loads(m.group(0))
        except json.JSONDecodeError as exc:
            logger.warning("AI metrics: not valid JSON (%s)", exc)
            return None
    if not isinstance(payload, Mapping):
        return None
    nested = payload.get("financialData")
    if isinstance(nested, Mapping):
        payload = nested

    metrics = {}
    for key, value in payload.items():
        if key not in ALIAS_TABLE:
            continue
        amount = parse_amount(value)
        if amount is not None:
            metrics[key] = amount
    return metrics or None


def merge_ai_metrics(traditional: Optional[Mapping], ai_payload) -> Tuple[Dict[str, float], Optional[Dict[str, float]]]:
    """AI values win on overlapping ids; the traditional set is never dropped."""
    merged = dict(traditional or {})
    ai = parse_ai_metrics(ai_payload)
    if ai:
        merged.update(ai)
    elif ai_payload is not None:
        logger.info("AI metrics ignored: no recognised metric ids")
    return merged, ai
