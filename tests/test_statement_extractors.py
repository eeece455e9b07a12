import io

import pandas as pd
import pytest
from openpyxl import Workbook

import statement_extractors
from fcff_errors import MalformedInputError, UnsupportedFormatError
from statement_extractors import (
    detect_format, extract_csv, extract_spreadsheet, extract_xbrl, year_of,
)

XBRL_DOC = b"""<?xml version="1.0" encoding="UTF-8"?>
<xbrl xmlns="http://www.xbrl.org/2003/instance"
      xmlns:us-gaap="http://fasb.org/us-gaap/2023">
  <context id="FY2023">
    <entity><identifier scheme="http://www.sec.gov/CIK">0000001</identifier></entity>
    <period><instant>2023-12-31</instant></period>
  </context>
  <us-gaap:Revenues contextRef="FY2023" unitRef="usd" decimals="0">1000000</us-gaap:Revenues>
  <us-gaap:OperatingIncomeLoss contextRef="FY2023" unitRef="usd">200000</us-gaap:OperatingIncomeLoss>
  <us-gaap:Revenues contextRef="FY2022" unitRef="usd" decimals="0">900000</us-gaap:Revenues>
  <us-gaap:EntityRegistrantName>ACME</us-gaap:EntityRegistrantName>
</xbrl>
"""


# ── format detection ─────────────────────────────────────────────────────────
@pytest.mark.parametrize("filename, mime, expected", [
    ("statement.CSV", None, "csv"),
    ("statement.xlsx", "text/csv", "xlsx"),
    ("old.xls", None, "xls"),
    ("report", "application/pdf", "pdf"),
    ("filing.xml", None, "xbrl"),
    (None, "text/csv; charset=utf-8", "csv"),
])
def test_detect_format(filename, mime, expected):
    assert detect_format(filename, mime) == expected


def test_detect_format_rejects_unknown_type():
    with pytest.raises(UnsupportedFormatError) as exc:
        detect_format("notes.docx", "application/msword")
    assert "docx" in exc.value.message


def test_year_of():
    assert year_of("FY2023") == 2023
    assert year_of("2022-12-31") == 2022
    assert year_of("12345") is None
    assert year_of(None) is None


# ── CSV ──────────────────────────────────────────────────────────────────────
def test_csv_rows_keep_source_order_and_strings():
    data = '营业总收入,净利润\n"1,000",200\n'.encode("utf-8")
    records = extract_csv(data)
    assert len(records) == 1
    assert records[0].fields == [("营业总收入", "1,000"), ("净利润", "200")]
    assert records[0].source == "CSV"
    assert records[0].period is None


def test_csv_period_column():
    data = "年份,营业收入\n2022,100\n2023,120\n".encode("utf-8")
    records = extract_csv(data)
    assert [r.period for r in records] == ["2022", "2023"]
    assert records[1].period_field == "年份"
    assert records[1].get("营业收入") == "120"


def test_csv_items_by_year_layout_is_transposed():
    data = "项目,2022,2023\n营业收入,100,120\n净利润,10,12\n".encode("utf-8")
    records = extract_csv(data)
    assert [r.period for r in records] == ["2022", "2023"]
    assert records[0].fields == [("营业收入", "100"), ("净利润", "10")]
    assert records[1].as_dict() == {"营业收入": "120", "净利润": "12"}


def test_csv_gbk_encoding():
    data = "营业收入,净利润\n100,10\n".encode("gbk")
    assert extract_csv(data)[0].get("营业收入") == "100"


def test_csv_utf8_bom():
    data = "\ufeffRevenue,Net Income\n100,10\n".encode("utf-8")
    assert extract_csv(data)[0].fields[0] == ("Revenue", "100")


def test_csv_binary_content_is_unsupported():
    with pytest.raises(UnsupportedFormatError):
        extract_csv(b"PK\x03\x04\x00\x00binary")


def test_csv_empty_file_is_malformed():
    with pytest.raises(MalformedInputError):
        extract_csv(b"")


def test_csv_header_only_is_malformed():
    with pytest.raises(MalformedInputError):
        extract_csv(b"Revenue,Net Income\n")


# ── spreadsheet ──────────────────────────────────────────────────────────────
def _workbook_bytes(rows):
    wb = Workbook()
    ws = wb.active
    for row in rows:
        ws.append(row)
    buf = io.BytesIO()
    wb.save(buf)
    return buf.getvalue()


def test_xlsx_rows():
    data = _workbook_bytes([
        ["年份", "营业收入", "净利润"],
        [2022, 900, 90],
        [2023, 1000, 100],
    ])
    records = extract_spreadsheet(data, "xlsx")
    assert [r.period for r in records] == ["2022", "2023"]
    assert records[1].get("营业收入") == 1000
    assert records[1].source == "XLSX"


def test_xlsx_blank_rows_dropped():
    data = _workbook_bytes([
        ["Revenue", "Net Income"],
        [None, None],
        [500, 50],
    ])
    records = extract_spreadsheet(data, "xlsx")
    assert len(records) == 1
    assert records[0].get("Revenue") == 500


def test_corrupt_xlsx_is_malformed():
    with pytest.raises(MalformedInputError) as exc:
        extract_spreadsheet(b"definitely not a zip archive", "xlsx")
    assert "XLSX" in exc.value.message


def test_xls_is_read_with_xlrd(monkeypatch):
    calls = []

    def read_excel(stream, sheet_name, engine):
        calls.append((sheet_name, engine))
        return pd.DataFrame({"年份": [2022, 2023], "营业收入": [900, 1000]})

    monkeypatch.setattr(statement_extractors.pd, "read_excel", read_excel)
    records = extract_spreadsheet(b"legacy workbook", "xls")
    assert calls == [(0, "xlrd")]
    assert [r.period for r in records] == ["2022", "2023"]
    assert records[1].get("营业收入") == 1000
    assert records[1].source == "XLS"


def test_corrupt_xls_is_malformed():
    with pytest.raises(MalformedInputError) as exc:
        extract_spreadsheet(b"not an OLE2 compound document", "xls")
    assert exc.value.message.startswith("Could not parse XLS file")


# ── XBRL ─────────────────────────────────────────────────────────────────────
def test_xbrl_tags_map_to_canonical_ids():
    records = extract_xbrl(XBRL_DOC)
    assert len(records) == 1
    record = records[0]
    assert record.canonical
    assert record.source == "XBRL"
    # first Revenues element wins
    assert record.as_dict() == {"revenue": 1000000.0, "ebit": 200000.0}
    assert record.period == "2023-12-31"


def test_xbrl_end_date_period():
    doc = b"""<xbrl><context id="c"><period><startDate>2023-01-01</startDate>
    <endDate>2023-12-31</endDate></period></context><NetIncomeLoss>5</NetIncomeLoss></xbrl>"""
    record = extract_xbrl(doc)[0]
    assert record.period == "2023-12-31"
    assert record.get("netIncome") == 5.0


def test_xbrl_tags_are_case_sensitive():
    record = extract_xbrl(b"<xbrl><revenues>10</revenues></xbrl>")[0]
    assert record.fields == []


def test_malformed_xml():
    with pytest.raises(MalformedInputError):
        extract_xbrl(b"<xbrl><Revenues>10</xbrl>")
