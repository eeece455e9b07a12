# pdf_text_extractor.py
"""
Financial statement PDFs -> RawRecord per page.

Key design:
- pdfplumber layout text (keeps column gaps as runs of spaces), OCR fallback
  for pages with no text layer
- Two-pass table detector: classify every line, then group consecutive
  tabular lines; first line of a group is the header, the rest are split on
  runs of 2+ spaces into cells
- A metric is taken from a table row that mentions one of its keywords
  (first numeric cell of that row); failing that, from a free-text line where
  the keyword is followed by a number
- First match wins per page; 亿 / 万 magnitudes are applied
"""

import io
import logging
import re
import shutil
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

import pdfplumber

import config
from fcff_errors import MalformedInputError
from number_parsing import AMOUNT_PATTERN, magnitude_of, parse_amount
from statement_extractors import RawRecord, year_of

logger = logging.getLogger(__name__)

# ── Tesseract (only needed for scanned PDFs) ──────────────────────────────────
try:
    import pytesseract
    _TESS_OK = shutil.which("tesseract") is not None
except ImportError:
    _TESS_OK = False


# ══════════════════════════════════════════════════════════════════════════════
# Keywords
# ══════════════════════════════════════════════════════════════════════════════
# metric -> (keywords, exclusions). Exclusions stop "cost of sales" counting
# as sales or "营业利润率" as 营业利润.
PDF_KEYWORDS: Dict[str, Tuple[Tuple[str, ...], Tuple[str, ...]]] = {
    "revenue": (
        ("营业总收入", "营业收入", "主营业务收入", "revenue from operations",
         "total revenue", "operating revenue", "net sales", "revenue", "sales"),
        ("cost", "成本", "margin", "率"),
    ),
    "ebit": (
        ("息税前利润", "营业利润", "ebit", "operating profit", "operating income",
         "profit from operations"),
        ("margin", "率", "ebitda"),
    ),
    "netIncome": (
        ("归属于母公司所有者的净利润", "归属于母公司股东的净利润", "净利润",
         "net income", "net profit", "profit for the year", "profit for the period",
         "profit after tax"),
        ("margin", "率"),
    ),
    "depreciation": (
        ("折旧与摊销", "折旧摊销", "折旧", "depreciation and amortization",
         "depreciation & amortization", "depreciation"),
        ("累计折旧", "accumulated"),
    ),
    "capex": (
        ("购建固定资产、无形资产和其他长期资产支付的现金", "购建固定资产", "资本支出",
         "capital expenditure", "capex", "purchase of property, plant and equipment",
         "purchase of fixed assets"),
        (),
    ),
    "workingCapital": (
        ("营运资金", "营运资本", "流动资产净额", "net working capital", "working capital"),
        (),
    ),
    "ebitda": (
        ("息税折旧摊销前利润", "ebitda"),
        ("margin", "率"),
    ),
    "currentAssets": (
        ("流动资产合计", "流动资产", "total current assets", "current assets"),
        ("非流动", "non-current", "non current", "净额"),
    ),
    "currentLiabilities": (
        ("流动负债合计", "流动负债", "total current liabilities", "current liabilities"),
        ("非流动", "non-current", "non current"),
    ),
    "fixedAssets": (
        ("固定资产净额", "固定资产", "net fixed assets", "fixed assets",
         "property, plant and equipment"),
        ("购建", "purchase", "支付", "acquisition", "investment"),
    ),
    "totalAssets": (
        ("资产总计", "总资产", "total assets"),
        ("率", "return"),
    ),
    "operatingCashFlow": (
        ("经营活动产生的现金流量净额", "net cash from operating activities",
         "net cash generated from operating activities", "cash flow from operating activities"),
        (),
    ),
}


def _keyword_pattern(keyword: str) -> re.Pattern:
    if keyword.isascii():
        return re.compile(r"(?<![a-z])" + re.escape(keyword) + r"(?![a-z])", re.IGNORECASE)
    return re.compile(re.escape(keyword))


_MATCHERS: List[Tuple[str, Tuple[re.Pattern, ...], Tuple[str, ...]]] = [
    (metric, tuple(_keyword_pattern(k) for k in keywords), excludes)
    for metric, (keywords, excludes) in PDF_KEYWORDS.items()
]


def match_keyword(text: str, patterns, excludes) -> Optional[re.Match]:
    low = text.lower()
    if any(x in low for x in excludes):
        return None
    for pattern in patterns:
        m = pattern.search(text)
        if m:
            return m
    return None


# ══════════════════════════════════════════════════════════════════════════════
# PDF -> page text (pdfplumber primary, OCR fallback)
# ══════════════════════════════════════════════════════════════════════════════
def is_scanned_page(page, text_threshold=config.OCR_TEXT_THRESHOLD):
    text = page.extract_text()
    return text is None or len(text.strip()) < text_threshold


def ocr_page(page) -> str:
    pil_image = page.to_image(resolution=config.OCR_RESOLUTION).original
    return pytesseract.image_to_string(pil_image, lang="chi_sim+eng", config="--psm 6")


def pdf_pages_text(file_bytes: bytes) -> List[str]:
    """One layout-preserving text block per page, in page order."""
    try:
        pdf = pdfplumber.open(io.BytesIO(file_bytes))
    except Exception as exc:
        raise MalformedInputError("PDF", str(exc) or exc.__class__.__name__) from exc

    pages: List[str] = []
    with pdf:
        for number, page in enumerate(pdf.pages, start=1):
            text = ""
            try:
                if is_scanned_page(page) and _TESS_OK:
                    text = ocr_page(page)
                else:
                    text = page.extract_text(layout=True) or ""
            except Exception as exc:
                logger.warning("PDF page %d: text extraction failed: %s", number, exc)
            pages.append(text)
    return pages


# ══════════════════════════════════════════════════════════════════════════════
# Table detection
# ══════════════════════════════════════════════════════════════════════════════
TABLE_LINE_PATTERNS = (
    # two or more numeric tokens separated by whitespace
    re.compile(r"(?<![\w.])[-(（]?\d[\d,]*(?:\.\d+)?[)）]?\s+[-(（]?\d[\d,]*(?:\.\d+)?"),
    # "项目  2023年  2022年" style header
    re.compile(r"^\s*(?:项目|科目|items?)\b.*?(?<!\d)(?:19|20)\d{2}(?!\d)", re.IGNORECASE),
    # unit declaration
    re.compile(r"^\s*(?:单位|unit|units)\s*[:：]", re.IGNORECASE),
)

_UNIT_LINE = TABLE_LINE_PATTERNS[2]
_CELL_SPLIT = re.compile(r"\s{2,}|\t")


@dataclass
class DetectedTable:
    header: List[str]
    rows: List[List[str]]
    multiplier: float = 1.0


@dataclass
class PageLayout:
    tables: List[DetectedTable] = field(default_factory=list)
    text_lines: List[str] = field(default_factory=list)


def is_table_line(line: str) -> bool:
    return any(p.search(line) for p in TABLE_LINE_PATTERNS)


def split_cells(line: str) -> List[str]:
    return [c.strip() for c in _CELL_SPLIT.split(line.strip()) if c.strip()]


def detect_tables(lines: List[str]) -> PageLayout:
    """
    Pass 1 flags each line as tabular or not; pass 2 turns each run of
    consecutive tabular lines into a table. A run of a single line is not a
    table (it has no data row) and stays in the free text.
    """
    lines = [ln.strip() for ln in lines if ln and ln.strip()]
    flags = [is_table_line(ln) for ln in lines]

    layout = PageLayout()
    run: List[str] = []

    def close_run():
        # unit lines only set the multiplier, they are never header or row
        units = [ln for ln in run if _UNIT_LINE.search(ln)]
        body = [ln for ln in run if not _UNIT_LINE.search(ln)]
        if len(run) >= 2 and body:
            layout.tables.append(DetectedTable(
                header=split_cells(body[0]),
                rows=[split_cells(ln) for ln in body[1:]],
                multiplier=magnitude_of(units[0]) if units else 1.0,
            ))
        else:
            layout.text_lines.extend(run)
        run.clear()

    for line, tabular in zip(lines, flags):
        if tabular:
            run.append(line)
        else:
            close_run()
            layout.text_lines.append(line)
    close_run()
    return layout


# ══════════════════════════════════════════════════════════════════════════════
# Metric lookup
# ══════════════════════════════════════════════════════════════════════════════
def first_numeric_cell(row: List[str]) -> Optional[Tuple[float, str]]:
    for cell in row:
        value = parse_amount(cell)
        if value is not None:
            return value, cell
    return None


def find_in_tables(tables: List[DetectedTable], patterns, excludes) -> Optional[float]:
    for table in tables:
        # a table without an item/year header starts with a data row
        for row in [table.header] + table.rows:
            if not any(match_keyword(cell, patterns, excludes) for cell in row):
                continue
            hit = first_numeric_cell(row)
            if hit is None:
                continue
            value, cell = hit
            # a cell carrying its own 万/亿 already had it applied
            if magnitude_of(cell) == 1.0:
                value *= table.multiplier
            return value
    return None


def find_in_text(lines: List[str], patterns, excludes) -> Optional[float]:
    for line in lines:
        m = match_keyword(line, patterns, excludes)
        if not m:
            continue
        rest = line[m.end():]
        for amount in AMOUNT_PATTERN.finditer(rest):
            # "2023年" is a year, not an amount
            if rest[amount.end("num"):amount.end("num") + 1] == "年":
                continue
            value = parse_amount(amount.group("num"))
            if value is None:
                continue
            unit = amount.group("unit")
            value *= magnitude_of(unit) if unit else magnitude_of(rest)
            if amount.group("neg"):
                value = -value
            return value
    return None


def page_period(layout: PageLayout) -> Optional[str]:
    for table in layout.tables:
        year = year_of(" ".join(table.header))
        if year is not None:
            return str(year)
    return None


def extract_page_metrics(page_text: str) -> Tuple[List[Tuple[str, float]], Optional[str]]:
    layout = detect_tables(page_text.splitlines())
    fields: List[Tuple[str, float]] = []
    for metric, patterns, excludes in _MATCHERS:
        value = find_in_tables(layout.tables, patterns, excludes)
        if value is None:
            value = find_in_text(layout.text_lines, patterns, excludes)
        if value is not None:
            fields.append((metric, value))
            logger.debug("PDF match %-20s %s", metric, value)
    return fields, page_period(layout)


def records_from_pages(pages: List[str]) -> List[RawRecord]:
    records: List[RawRecord] = []
    for text in pages:
        if not text or not text.strip():
            continue
        fields, period = extract_page_metrics(text)
        if fields:
            records.append(RawRecord(fields=fields, period=period, canonical=True,
                                     source="PDF", index=len(records)))
    return records


def merge_page_records(records: List[RawRecord]) -> Optional[RawRecord]:
    """
    One statement spread over several pages: metrics in page order, an earlier
    page's value is never replaced.
    """
    if not records:
        return None
    fields: Dict[str, float] = {}
    period = None
    for record in records:
        for key, value in record.fields:
            fields.setdefault(key, value)
        period = period or record.period
    return RawRecord(fields=list(fields.items()), period=period, canonical=True,
                     source="PDF", index=records[0].index)


def group_pages_by_period(records: List[RawRecord]) -> List[List[RawRecord]]:
    """
    Page records of the same period, groups in order of first appearance.
    A page without a period continues the page before it; leading pages
    without one belong to the first dated group.
    """
    groups: Dict[Optional[str], List[RawRecord]] = {}
    current = None
    for record in records:
        if record.period is not None:
            current = record.period
        groups.setdefault(current, []).append(record)

    undated = groups.pop(None, [])
    if not groups:
        return [undated] if undated else []
    ordered = list(groups.values())
    ordered[0] = undated + ordered[0]
    return ordered


def extract_pdf(file_bytes: bytes) -> List[RawRecord]:
    pages = pdf_pages_text(file_bytes)
    records = records_from_pages(pages)
    logger.info("PDF: %d pages, %d pages with financial metrics", len(pages), len(records))
    return records
