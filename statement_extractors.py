"""
statement_extractors.py
CSV, spreadsheet and XBRL/XML readers. Each turns file bytes into an ordered
list of RawRecord, one per reporting period.

- Values are left as the file gave them ("1,000" stays a string); the
  reconciler does number conversion
- Row-per-period and label-per-row ("项目 | 2023 | 2022") layouts are both
  accepted; the latter is turned into one record per year column
- XBRL tags map straight to canonical ids without going through the
  alias resolver
"""

import io
import logging
import re
import xml.etree.ElementTree as ET
from dataclasses import dataclass, field
from datetime import date, datetime
from types import MappingProxyType
from typing import Any, Dict, Iterator, List, Optional, Tuple

import pandas as pd

from fcff_errors import MalformedInputError, UnsupportedFormatError
from metric_aliases import is_period_field
from number_parsing import parse_amount

logger = logging.getLogger(__name__)


@dataclass
class RawRecord:
    """One reporting period as found in the source, in source order."""

    fields: List[Tuple[str, Any]] = field(default_factory=list)
    period: Optional[str] = None
    period_field: Optional[str] = None
    # True when field names are already canonical metric ids (XBRL, PDF)
    canonical: bool = False
    source: str = ""
    index: int = 0

    def items(self) -> Iterator[Tuple[str, Any]]:
        return iter(self.fields)

    def get(self, name: str, default=None):
        for key, value in self.fields:
            if key == name:
                return value
        return default

    def as_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {}
        for key, value in self.fields:
            out.setdefault(key, value)
        return out

    @property
    def year(self) -> Optional[int]:
        return year_of(self.period)


# ══════════════════════════════════════════════════════════════════════════════
# Format detection
# ══════════════════════════════════════════════════════════════════════════════
EXTENSION_FORMATS = MappingProxyType({
    "csv": "csv",
    "xlsx": "xlsx",
    "xls": "xls",
    "pdf": "pdf",
    "xml": "xbrl",
    "xbrl": "xbrl",
})

MIME_FORMATS = MappingProxyType({
    "text/csv": "csv",
    "application/csv": "csv",
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet": "xlsx",
    "application/vnd.ms-excel": "xls",
    "application/pdf": "pdf",
    "application/xml": "xbrl",
    "text/xml": "xbrl",
    "application/xbrl+xml": "xbrl",
})

SOURCE_LABELS = MappingProxyType({
    "csv": "CSV",
    "xlsx": "XLSX",
    "xls": "XLS",
    "pdf": "PDF",
    "xbrl": "XBRL",
})


def detect_format(filename: Optional[str] = None, mime_type: Optional[str] = None) -> str:
    """File extension first (browsers mislabel CSV as Excel), then MIME."""
    ext = ""
    if filename and "." in filename:
        ext = filename.rsplit(".", 1)[1].strip().lower()
    if ext in EXTENSION_FORMATS:
        return EXTENSION_FORMATS[ext]

    mime = (mime_type or "").split(";")[0].strip().lower()
    if mime in MIME_FORMATS:
        return MIME_FORMATS[mime]

    raise UnsupportedFormatError(ext or mime or "unknown")


# ══════════════════════════════════════════════════════════════════════════════
# Shared helpers
# ══════════════════════════════════════════════════════════════════════════════
_YEAR = re.compile(r"(?<!\d)(19\d{2}|20\d{2})(?!\d)")


def year_of(label) -> Optional[int]:
    if label is None:
        return None
    m = _YEAR.search(str(label))
    return int(m.group(1)) if m else None


def decode_text(file_bytes: bytes, source: str) -> str:
    if file_bytes.startswith((b"\xff\xfe", b"\xfe\xff")):
        encodings = ("utf-16",)
    elif b"\x00" in file_bytes:
        raise UnsupportedFormatError(source, "binary content, not text")
    else:
        # GBK covers exports from mainland Chinese terminals
        encodings = ("utf-8-sig", "gbk")

    for enc in encodings:
        try:
            return file_bytes.decode(enc)
        except UnicodeDecodeError:
            continue
    raise UnsupportedFormatError(source, "unrecognized text encoding")


def _cell(value):
    """pandas cell -> plain python value, blanks -> None."""
    if value is None:
        return None
    if isinstance(value, str):
        value = value.strip()
        return value or None
    try:
        if pd.isna(value):
            return None
    except (TypeError, ValueError):
        pass
    if isinstance(value, pd.Timestamp):
        return value.date().isoformat()
    if hasattr(value, "item"):
        return value.item()
    return value


def _period_label(value) -> Optional[str]:
    value = _cell(value)
    if value is None:
        return None
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return str(value).strip()


def _is_label_by_period(columns: List[str]) -> bool:
    """Items down the first column, one column per year (项目 | 2023 | 2022)."""
    rest = columns[1:]
    if not rest:
        return False
    yearly = sum(1 for c in rest if year_of(c) is not None)
    return yearly * 2 > len(rest)


def records_from_frame(df: pd.DataFrame, source: str) -> List[RawRecord]:
    columns = [_period_label(c) or f"column_{i}" for i, c in enumerate(df.columns)]

    if _is_label_by_period(columns):
        labels = [_cell(v) for v in df.iloc[:, 0]]
        records = []
        for pos, col in enumerate(columns[1:], start=1):
            values = [_cell(v) for v in df.iloc[:, pos]]
            fields = [(str(lbl), v) for lbl, v in zip(labels, values) if lbl is not None]
            records.append(RawRecord(fields=fields, period=col, source=source,
                                     index=len(records)))
        logger.debug("%s: label-by-period layout, %d period columns", source, len(records))
        return records

    period_col = next((c for c in columns if is_period_field(c)), None)
    records = []
    for i, row in enumerate(df.itertuples(index=False, name=None)):
        fields = [(col, _cell(v)) for col, v in zip(columns, row)]
        period = None
        if period_col is not None:
            period = _period_label(row[columns.index(period_col)])
        records.append(RawRecord(fields=fields, period=period, period_field=period_col,
                                 source=source, index=i))
    return records


# ══════════════════════════════════════════════════════════════════════════════
# CSV / spreadsheet
# ══════════════════════════════════════════════════════════════════════════════
def extract_csv(file_bytes: bytes) -> List[RawRecord]:
    text = decode_text(file_bytes, "CSV")
    try:
        df = pd.read_csv(
            io.StringIO(text),
            dtype=str,
            keep_default_na=False,
            skipinitialspace=True,
            skip_blank_lines=True,
        )
    except (pd.errors.ParserError, pd.errors.EmptyDataError) as exc:
        raise MalformedInputError("CSV", str(exc)) from exc

    df.columns = [str(c).strip() for c in df.columns]
    if df.empty:
        raise MalformedInputError("CSV", "file has a header but no data rows")
    return records_from_frame(df, "CSV")


def extract_spreadsheet(file_bytes: bytes, fmt: str = "xlsx") -> List[RawRecord]:
    source = SOURCE_LABELS.get(fmt, "XLSX")
    engine = "xlrd" if fmt == "xls" else "openpyxl"
    try:
        df = pd.read_excel(io.BytesIO(file_bytes), sheet_name=0, engine=engine)
    except Exception as exc:
        raise MalformedInputError(source, str(exc) or exc.__class__.__name__) from exc

    df = df.dropna(how="all")
    if df.empty:
        raise MalformedInputError(source, "first worksheet has no data rows")
    return records_from_frame(df, source)


# ══════════════════════════════════════════════════════════════════════════════
# XBRL / XML
# ══════════════════════════════════════════════════════════════════════════════
# Exact, case-sensitive local element names (namespace stripped)
XBRL_TAGS = MappingProxyType({
    "Revenue": "revenue",
    "Revenues": "revenue",
    "SalesRevenueNet": "revenue",
    "RevenueFromContractWithCustomerExcludingAssessedTax": "revenue",
    "CostOfRevenue": "costOfRevenue",
    "GrossProfit": "grossProfit",
    "OperatingIncome": "ebit",
    "OperatingIncomeLoss": "ebit",
    "ProfitLossFromOperatingActivities": "ebit",
    "NetIncome": "netIncome",
    "NetIncomeLoss": "netIncome",
    "ProfitLoss": "netIncome",
    "DepreciationAndAmortization": "depreciation",
    "DepreciationDepletionAndAmortization": "depreciation",
    "CapitalExpenditure": "capex",
    "PaymentsToAcquirePropertyPlantAndEquipment": "capex",
    "PurchaseOfPropertyPlantAndEquipment": "capex",
    "WorkingCapital": "workingCapital",
    "AssetsCurrent": "currentAssets",
    "CurrentAssets": "currentAssets",
    "LiabilitiesCurrent": "currentLiabilities",
    "CurrentLiabilities": "currentLiabilities",
    "PropertyPlantAndEquipment": "fixedAssets",
    "PropertyPlantAndEquipmentNet": "fixedAssets",
    "TotalAssets": "totalAssets",
    "Assets": "totalAssets",
    "TotalLiabilities": "totalLiabilities",
    "Liabilities": "totalLiabilities",
    "TotalEquity": "shareholdersEquity",
    "StockholdersEquity": "shareholdersEquity",
    "Equity": "shareholdersEquity",
    "NetCashProvidedByUsedInOperatingActivities": "operatingCashFlow",
    "CashFlowsFromUsedInOperatingActivities": "operatingCashFlow",
})


def _local(tag: str) -> str:
    return tag.rsplit("}", 1)[-1]


def xml_to_tree(elem: ET.Element):
    """
    Element -> nested dict, the shape most XML-to-JSON converters give:
    leaf text as a plain string, attributes under "$", mixed text under "_",
    repeated child tags collected into a list.
    """
    children = list(elem)
    text = (elem.text or "").strip()
    attrs = {_local(k): v for k, v in elem.attrib.items()}
    if not children and not attrs:
        return text

    node: Dict[str, Any] = {}
    if attrs:
        node["$"] = attrs
    for child in children:
        key = _local(child.tag)
        value = xml_to_tree(child)
        if key in node:
            if isinstance(node[key], list):
                node[key].append(value)
            else:
                node[key] = [node[key], value]
        else:
            node[key] = value
    if text:
        node["_"] = text
    return node


def xbrl_scalar(value) -> Optional[float]:
    if isinstance(value, dict):
        return xbrl_scalar(value.get("_"))
    if isinstance(value, list):
        for item in value:
            n = xbrl_scalar(item)
            if n is not None:
                return n
        return None
    if isinstance(value, str):
        value = value.replace(" ", "")
    return parse_amount(value)


def _collect_tags(node, found: Dict[str, float]):
    if isinstance(node, dict):
        for key, value in node.items():
            metric = XBRL_TAGS.get(key)
            if metric is not None and metric not in found:
                amount = xbrl_scalar(value)
                if amount is not None:
                    found[metric] = amount
            _collect_tags(value, found)
    elif isinstance(node, list):
        for item in node:
            _collect_tags(item, found)


def find_context_period(node) -> Optional[str]:
    """First context.period.instant (or endDate) anywhere in the tree."""
    if isinstance(node, list):
        for item in node:
            hit = find_context_period(item)
            if hit:
                return hit
        return None
    if not isinstance(node, dict):
        return None

    for key, value in node.items():
        if key == "context":
            contexts = value if isinstance(value, list) else [value]
            for ctx in contexts:
                period = ctx.get("period") if isinstance(ctx, dict) else None
                if isinstance(period, dict):
                    for name in ("instant", "endDate"):
                        stamp = period.get(name)
                        if isinstance(stamp, str) and stamp.strip():
                            return stamp.strip()
        hit = find_context_period(value)
        if hit:
            return hit
    return None


def extract_xbrl(file_bytes: bytes) -> List[RawRecord]:
    try:
        root = ET.fromstring(file_bytes)
    except ET.ParseError as exc:
        raise MalformedInputError("XBRL", str(exc)) from exc

    tree = {_local(root.tag): xml_to_tree(root)}
    found: Dict[str, float] = {}
    _collect_tags(tree, found)
    period = find_context_period(tree)

    if not found:
        logger.warning("XBRL: no known financial tags in document")
    return [RawRecord(fields=list(found.items()), period=period,
                      canonical=True, source="XBRL", index=0)]
