"""
metric_aliases.py
Maps free-text column / row labels (English, Chinese, snake_case, camelCase,
truncated, suffixed with units) onto canonical metric ids.

Key design:
- ALIAS_TABLE is plain data: canonical id -> ordered aliases
- Declaration order is priority order: narrower ids (ebitdaMargin, ebitda)
  come before the broader ids whose aliases they contain (ebit)
- An exact normalized hit always wins; otherwise the first metric with an
  alias contained in the label, or containing the label, wins
- Resolved names are memoized per AliasResolver instance
"""

import re
from types import MappingProxyType
from typing import Dict, Iterable, Mapping, Optional, Tuple

REQUIRED_METRICS: Tuple[str, ...] = (
    "revenue",
    "ebit",
    "netIncome",
    "depreciation",
    "capex",
    "workingCapital",
)

ALIAS_TABLE: Mapping[str, Tuple[str, ...]] = MappingProxyType({
    # ── Ratios (declared first: their labels contain the base metric names)
    "ebitdaMargin": ("ebitdaMargin", "EBITDA Margin", "EBITDA利润率"),
    "ebitMargin": ("ebitMargin", "EBIT Margin", "EBIT利润率", "Operating Margin", "营业利润率"),
    "grossMargin": ("grossMargin", "Gross Margin", "销售毛利率", "毛利率"),
    "netMargin": ("netMargin", "Net Margin", "Net Profit Margin", "销售净利率", "净利率", "净利润率"),
    "roe": ("roe", "Return on Equity", "净资产收益率", "ROE(加权)(%)"),
    "roa": ("roa", "Return on Assets", "总资产报酬率", "总资产报酬率ROA(%)"),
    "debtRatio": ("debtRatio", "Debt Ratio", "资产负债率"),
    "assetTurnover": ("assetTurnover", "Asset Turnover", "总资产周转率"),
    "eps": ("eps", "Earnings Per Share", "每股收益", "EPS(基本)(元)"),
    "taxRate": ("taxRate", "Tax Rate", "Effective Tax Rate", "所得税率", "实际税率"),

    # ── Income statement
    "ebitda": ("ebitda", "息税折旧摊销前利润"),
    "costOfRevenue": ("costOfRevenue", "Cost of Revenue", "Cost of Sales",
                      "Cost of Goods Sold", "COGS", "营业成本"),
    "grossProfit": ("grossProfit", "Gross Profit", "毛利润", "毛利"),
    "revenue": ("revenue", "Revenues", "Operating Revenue", "Total Revenue",
                "Revenue from Operations", "Sales", "Net Sales", "Turnover",
                "营业收入", "营业总收入", "主营业务收入"),
    "ebit": ("ebit", "Operating Income", "Operating Profit", "OperatingIncome",
             "Profit from Operations", "息税前利润", "营业利润"),
    "netIncome": ("netIncome", "Net Income", "Net Profit", "Profit After Tax",
                  "Profit for the Period", "净利润", "归属于母公司股东的净利润",
                  "归属于母公司所有者的净利润"),
    "depreciation": ("depreciation", "Depreciation & Amortization",
                     "Depreciation and Amortization", "dep_amort",
                     "折旧与摊销", "折旧摊销", "折旧"),

    # ── Cash flow / investment (capex before fixedAssets: its label contains 固定资产)
    "capex": ("capex", "Capital Expenditure", "Capital Expenditures",
              "Capital Spending", "Fixed Assets Investment",
              "Purchase of Property, Plant and Equipment", "资本支出",
              "购建固定资产、无形资产和其他长期资产支付的现金"),
    "operatingCashFlow": ("operatingCashFlow", "Operating Cash Flow",
                          "Cash from Operations", "Net Cash from Operating Activities",
                          "经营活动产生的现金流量净额", "经营活动现金流", "经营现金流"),
    "investingCashFlow": ("investingCashFlow", "Investing Cash Flow",
                          "Net Cash from Investing Activities",
                          "投资活动产生的现金流量净额", "投资现金流"),
    "financingCashFlow": ("financingCashFlow", "Financing Cash Flow",
                          "Net Cash from Financing Activities",
                          "筹资活动产生的现金流量净额", "筹资现金流"),

    # ── Balance sheet (non-current before current, previous before current period)
    "workingCapital": ("workingCapital", "Working Capital", "Net Working Capital",
                       "营运资本", "营运资金", "流动资产净额"),
    "nonCurrentAssets": ("nonCurrentAssets", "Non-current Assets",
                         "Total Non-current Assets", "非流动资产", "非流动资产合计"),
    "currentAssets": ("currentAssets", "Current Assets", "Total Current Assets",
                      "流动资产", "流动资产合计", "流动资产总计"),
    "nonCurrentLiabilities": ("nonCurrentLiabilities", "Non-current Liabilities",
                              "非流动负债", "非流动负债合计"),
    "currentLiabilities": ("currentLiabilities", "Current Liabilities",
                           "Total Current Liabilities", "流动负债", "流动负债合计",
                           "流动负债总计"),
    "previousFixedAssets": ("previousFixedAssets", "Previous Fixed Assets",
                            "Prior Fixed Assets", "上期固定资产", "期初固定资产"),
    "fixedAssets": ("fixedAssets", "Fixed Assets", "Net Fixed Assets",
                    "Property, Plant and Equipment", "固定资产", "固定资产净额"),
    "totalAssets": ("totalAssets", "Total Assets", "资产总计", "资产合计", "总资产"),
    "totalLiabilities": ("totalLiabilities", "Total Liabilities", "负债合计", "总负债"),
    "shareholdersEquity": ("shareholdersEquity", "Shareholders' Equity",
                           "Stockholders' Equity", "Total Equity",
                           "股东权益", "所有者权益", "所有者权益合计"),
})

# Period columns are read for labelling and never resolved to a metric
PERIOD_ALIASES: Tuple[str, ...] = ("年份", "年度", "year", "fiscal_year", "报告期", "period")

_NON_NAME_CHARS = re.compile(r"[^a-z0-9_\u3400-\u4dbf\u4e00-\u9fff]+")
_UNDERSCORES = re.compile(r"_+")


def normalize_field_name(name) -> str:
    """Lower-case, runs of foreign characters -> one underscore, ends trimmed."""
    if name is None:
        return ""
    t = str(name).lower()
    t = _NON_NAME_CHARS.sub("_", t)
    t = _UNDERSCORES.sub("_", t)
    return t.strip("_")


_NORMALIZED_PERIOD_ALIASES = frozenset(normalize_field_name(a) for a in PERIOD_ALIASES)


def is_period_field(name) -> bool:
    return normalize_field_name(name) in _NORMALIZED_PERIOD_ALIASES


class AliasResolver:
    """
    Read-through resolver over an immutable alias table.

    One instance per analysis run (or per process); the cache only ever
    stores table-derived answers, so sharing an instance across threads is
    safe without locking.
    """

    def __init__(self, table: Mapping[str, Iterable[str]] = ALIAS_TABLE):
        self._table: Mapping[str, Tuple[str, ...]] = MappingProxyType(
            {metric: tuple(aliases) for metric, aliases in table.items()}
        )
        self._scan: Tuple[Tuple[str, Tuple[str, ...]], ...] = tuple(
            (metric, tuple(dict.fromkeys(
                n for n in (normalize_field_name(a) for a in aliases) if n
            )))
            for metric, aliases in self._table.items()
        )
        exact: Dict[str, str] = {}
        for metric, normalized in self._scan:
            for n in normalized:
                exact.setdefault(n, metric)
        self._exact = MappingProxyType(exact)
        self._cache: Dict[str, str] = {}

    @property
    def table(self) -> Mapping[str, Tuple[str, ...]]:
        return self._table

    @property
    def metrics(self) -> Tuple[str, ...]:
        return tuple(self._table)

    def resolve(self, raw_field_name) -> Optional[str]:
        key = normalize_field_name(raw_field_name)
        if not key:
            return None

        hit = self._cache.get(key)
        if hit is not None:
            return hit

        metric = self._exact.get(key)
        if metric is None:
            for candidate, aliases in self._scan:
                if any(alias in key or key in alias for alias in aliases):
                    metric = candidate
                    break

        if metric is not None:
            self._cache[key] = metric
        return metric

    def extend(self, extra: Mapping[str, Iterable[str]]) -> "AliasResolver":
        """New resolver with extra aliases appended; this one is untouched.

        Unknown metric ids are added after the existing ones.
        """
        merged = {metric: list(aliases) for metric, aliases in self._table.items()}
        for metric, aliases in extra.items():
            merged.setdefault(metric, []).extend(aliases)
        return AliasResolver(merged)

    def cached_names(self) -> Dict[str, str]:
        return dict(self._cache)
