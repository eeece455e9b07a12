#!/usr/bin/env python3
"""
financialanalyzer.py
Financial statement file (CSV, XLSX/XLS, PDF, XBRL) -> canonical metrics,
yearly changes and the rates an FCFF projection starts from.

Key design:
- Format picked from the file extension, then the MIME type
- Every record is reconciled on its own: a record missing metrics is
  reported with its error while its siblings carry on
- PDF pages of one period are merged into one statement before reconciling
- Records are reconciled oldest first; the fixed-asset delta and yearly
  changes only ever look at a strictly earlier period
- financialData is the latest reconciled record (greatest year, else last)
- A failing file never takes a batch down with it
- An external (AI) metric set may be layered over the result; the
  traditional result is always kept next to it
"""

import argparse
import json
import logging
import sys
from concurrent.futures import ThreadPoolExecutor
from typing import Iterable, List, Optional, Tuple

import config
from dcf_valuation import project_fcff, run_fcff_model, suggest_inputs
from fcff_errors import FCFFError, MissingMetricsError
from metric_aliases import REQUIRED_METRICS, AliasResolver, is_period_field
from metric_reconciler import (
    calculate_financial_ratios, match_fields, merge_ai_metrics, reconcile, yearly_changes,
)
from monte_carlo import simulate
from pdf_text_extractor import extract_pdf, group_pages_by_period, merge_page_records
from sensitivity_analysis import summarize_sensitivity, sweep
from statement_extractors import (
    SOURCE_LABELS, RawRecord, detect_format, extract_csv, extract_spreadsheet, extract_xbrl,
)

logger = logging.getLogger(__name__)


# ══════════════════════════════════════════════════════════════════════════════
# File -> records
# ══════════════════════════════════════════════════════════════════════════════
def extract_records(file_bytes: bytes, filename: str = None, mime_type: str = None) -> Tuple[str, List[RawRecord]]:
    fmt = detect_format(filename, mime_type)
    if fmt == "csv":
        records = extract_csv(file_bytes)
    elif fmt in ("xlsx", "xls"):
        records = extract_spreadsheet(file_bytes, fmt)
    elif fmt == "pdf":
        records = extract_pdf(file_bytes)
    else:
        records = extract_xbrl(file_bytes)
    return fmt, records


def matched_field_names(record: RawRecord, resolver: AliasResolver) -> List[str]:
    """Source field names of a record that map to a metric."""
    if record.canonical:
        return [name for name, _ in record.items()]
    names = []
    for name, _ in record.items():
        if name == record.period_field or is_period_field(name):
            continue
        if resolver.resolve(name) is not None and name not in names:
            names.append(name)
    return names


# ══════════════════════════════════════════════════════════════════════════════
# Records -> analysis
# ══════════════════════════════════════════════════════════════════════════════
def _record_entry(record: RawRecord, metrics=None, error: MissingMetricsError = None) -> dict:
    return {
        "period": record.period,
        "financialMetrics": metrics.to_dict() if metrics is not None else None,
        "estimated": sorted(metrics.estimated) if metrics is not None else [],
        "processingError": error.message if error is not None else None,
        "missingMetrics": list(error.missing) if error is not None else [],
    }


def _try_reconcile(record: RawRecord, source: str, resolver: AliasResolver, previous=None):
    try:
        return reconcile(record, resolver, previous), None
    except MissingMetricsError as exc:
        logger.warning("%s record %s: %s", source, record.period or record.index + 1, exc.message)
        return None, exc


def _period_units(records: List[RawRecord], source: str) -> List[Tuple[RawRecord, Optional[List[RawRecord]]]]:
    """
    (record, pages) per reporting period. Spreadsheet and XBRL records are
    periods already; PDF pages of one period are merged into one statement,
    pages is None unless a merge happened.
    """
    if source != "PDF":
        return [(record, None) for record in records]
    units = []
    for pages in group_pages_by_period(records):
        if len(pages) == 1:
            units.append((pages[0], None))
        else:
            units.append((merge_page_records(pages), pages))
    return units


def _chronological(records: List[RawRecord], dated: bool) -> List[RawRecord]:
    """Oldest first: by year when every record has one, else file order."""
    if dated:
        return sorted(records, key=lambda r: r.year)
    return list(records)


def _preceding(ordered: List[RawRecord], position: int, dated: bool) -> Optional[RawRecord]:
    """Nearest record of a strictly earlier year, or the one before in file order."""
    if position == 0:
        return None
    if not dated:
        return ordered[position - 1]
    year = ordered[position].year
    for prior in reversed(ordered[:position]):
        if prior.year < year:
            return prior
    return None


def analyze_records(records: List[RawRecord], source: str,
                    resolver: Optional[AliasResolver] = None) -> dict:
    resolver = resolver or AliasResolver()
    if not records:
        raise MissingMetricsError(list(REQUIRED_METRICS))

    units = _period_units(records, source)
    dated = all(record.year is not None for record, _ in units)
    ordered = _chronological([record for record, _ in units], dated)

    # reconciled oldest first, each against the period before it
    outcomes = {}
    for position, record in enumerate(ordered):
        prior = _preceding(ordered, position, dated)
        previous_fields = match_fields(prior, resolver) if prior is not None else {}
        outcomes[id(record)] = _try_reconcile(record, source, resolver, previous_fields)

    entries, failures = [], []
    for record, pages in units:
        if pages:
            # per-page outcomes are kept as an audit trail only
            for page in pages:
                metrics, error = _try_reconcile(page, source, resolver)
                entries.append(_record_entry(page, metrics, error))
            logger.info("%s: %d pages merged for period %s", source, len(pages), record.period)
        metrics, error = outcomes[id(record)]
        entry = _record_entry(record, metrics, error)
        if pages:
            entry["merged"] = True
        entries.append(entry)
        if error is not None:
            failures.append(error)

    successes = [r for r in ordered if outcomes[id(r)][0] is not None]
    if not successes:
        raise min(failures, key=lambda e: len(e.missing))

    latest_record = successes[-1]
    latest = outcomes[id(latest_record)][0]
    prior = _preceding(successes, len(successes) - 1, dated)
    previous = outcomes[id(prior)][0] if prior is not None else None
    financial_data = latest.to_dict()

    return {
        "success": True,
        "financialData": financial_data,
        "yearlyChanges": yearly_changes(financial_data, previous),
        "ratios": calculate_financial_ratios(financial_data),
        "metadata": {
            "source": source,
            "metrics": matched_field_names(latest_record, resolver),
            "years": len(units),
            "period": latest_record.period,
            "estimated": sorted(latest.estimated),
            "totalRows": len(records),
            "missingMetricsRows": sum(1 for e in entries if e["processingError"] is not None),
            "hasFinancialMetrics": True,
        },
        "records": entries,
    }


def analyze_file(file_bytes: bytes, filename: str = None, mime_type: str = None,
                 ai_metrics=None, resolver: Optional[AliasResolver] = None) -> dict:
    """
    Full extraction for one file. Never raises FCFFError: failures come back
    as {"success": False, "error": message}.
    """
    name = filename or mime_type or "upload"
    try:
        fmt, records = extract_records(file_bytes, filename, mime_type)
        result = analyze_records(records, SOURCE_LABELS[fmt], resolver)
    except FCFFError as exc:
        logger.error("%s: %s", name, exc.message)
        return {"success": False, "error": exc.message}

    if ai_metrics is not None:
        traditional = result["financialData"]
        merged, ai = merge_ai_metrics(traditional, ai_metrics)
        result["traditionalData"] = traditional
        result["aiData"] = ai
        result["financialData"] = merged
        result["ratios"] = calculate_financial_ratios(merged)
        result["metadata"]["aiAssisted"] = ai is not None

    logger.info("%s: %d records, latest period %s", name,
                result["metadata"]["totalRows"], result["metadata"]["period"])
    return result


def analyze_files(files: Iterable[Tuple], max_workers: int = None,
                  resolver: Optional[AliasResolver] = None, ai_metrics=None) -> List[dict]:
    """
    files: (filename, bytes) or (filename, bytes, mime_type) tuples.
    Results come back in input order, one per file.
    """
    jobs = [tuple(f) + (None,) * (3 - len(f)) for f in files]
    resolver = resolver or AliasResolver()

    def run(job):
        filename, data, mime = job
        try:
            result = analyze_file(data, filename, mime, ai_metrics, resolver)
        except Exception:
            logger.exception("%s: unexpected failure", filename)
            result = {"success": False, "error": f"Unexpected error while processing {filename}"}
        result["filename"] = filename
        return result

    if not jobs:
        return []
    with ThreadPoolExecutor(max_workers=max_workers or config.EXTRACTION_WORKERS) as pool:
        return list(pool.map(run, jobs))


# ══════════════════════════════════════════════════════════════════════════════
# CLI
# ══════════════════════════════════════════════════════════════════════════════
def full_report(analysis: dict, years: int = None, iterations: int = None, seed: int = None) -> dict:
    inputs = suggest_inputs(analysis, years)
    base_revenue = analysis["financialData"]["revenue"]
    model = run_fcff_model(base_revenue, inputs)
    projections = project_fcff(base_revenue, inputs)
    results = sweep(inputs, base_revenue)
    mc = simulate(inputs, projections, iterations, seed=seed, base_revenue=base_revenue)
    return {
        "fcff": model,
        "sensitivity": summarize_sensitivity(results),
        "monteCarlo": mc,
    }


def main(argv=None):
    parser = argparse.ArgumentParser(
        prog="fcff-analyzer",
        description="Extract financial metrics from statement files and project FCFF.")
    parser.add_argument("files", nargs="+", help="CSV, XLSX/XLS, PDF or XBRL/XML files")
    parser.add_argument("--years", type=int, default=None, help="projection horizon (default 5)")
    parser.add_argument("--iterations", type=int, default=None, help="Monte Carlo iterations")
    parser.add_argument("--seed", type=int, default=None, help="Monte Carlo seed")
    args = parser.parse_args(argv)

    logging.basicConfig(level=config.LOG_LEVEL, stream=sys.stderr,
                        format="%(asctime)s %(levelname)s %(name)s %(message)s")

    files = []
    for path in args.files:
        try:
            with open(path, "rb") as fh:
                files.append((path, fh.read()))
        except OSError as exc:
            parser.error(f"cannot read {path}: {exc}")

    output = []
    failed = False
    for analysis in analyze_files(files):
        entry = {"analysis": analysis}
        if analysis["success"]:
            try:
                entry.update(full_report(analysis, args.years, args.iterations, args.seed))
            except FCFFError as exc:
                entry["error"] = exc.message
                failed = True
        else:
            failed = True
        output.append(entry)

    json.dump(output, sys.stdout, ensure_ascii=False, indent=2, default=str)
    sys.stdout.write("\n")
    return 1 if failed else 0


if __name__ == "__main__":
    sys.exit(main())
