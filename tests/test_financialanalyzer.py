import json

import pytest

import pdf_text_extractor
from financialanalyzer import analyze_file, analyze_files, main

MULTI_YEAR_CSV = (
    "年份,营业收入,营业利润,净利润,折旧与摊销,资本支出,营运资金\n"
    '2022,"1,000,000",200000,150000,50000,70000,20000\n'
    '2023,"1,100,000",220000,165000,55000,77000,22000\n'
).encode("utf-8")

XBRL_DOC = b"""<?xml version="1.0"?>
<xbrl xmlns:us-gaap="http://fasb.org/us-gaap/2023">
  <context id="FY2023"><period><instant>2023-12-31</instant></period></context>
  <us-gaap:Revenues>1000000</us-gaap:Revenues>
  <us-gaap:OperatingIncomeLoss>200000</us-gaap:OperatingIncomeLoss>
  <us-gaap:NetIncomeLoss>150000</us-gaap:NetIncomeLoss>
  <us-gaap:DepreciationDepletionAndAmortization>40000</us-gaap:DepreciationDepletionAndAmortization>
  <us-gaap:PaymentsToAcquirePropertyPlantAndEquipment>60000</us-gaap:PaymentsToAcquirePropertyPlantAndEquipment>
  <us-gaap:AssetsCurrent>500000</us-gaap:AssetsCurrent>
  <us-gaap:LiabilitiesCurrent>300000</us-gaap:LiabilitiesCurrent>
</xbrl>
"""


def test_csv_latest_year_with_changes_and_ratios():
    result = analyze_file(MULTI_YEAR_CSV, "statements.csv")
    assert result["success"]
    assert result["financialData"]["revenue"] == 1100000
    assert result["yearlyChanges"]["revenue"] == pytest.approx(10.0)
    assert result["ratios"]["ebitMargin"] == pytest.approx(20.0)
    assert result["ratios"]["capexRate"] == pytest.approx(7.0)
    meta = result["metadata"]
    assert meta["source"] == "CSV"
    assert meta["years"] == 2
    assert meta["period"] == "2023"
    assert meta["metrics"] == ["营业收入", "营业利润", "净利润", "折旧与摊销", "资本支出", "营运资金"]
    assert meta["missingMetricsRows"] == 0


def test_latest_record_is_greatest_year_not_last_row():
    lines = MULTI_YEAR_CSV.decode("utf-8").splitlines()
    reordered = "\n".join([lines[0], lines[2], lines[1]]).encode("utf-8")
    result = analyze_file(reordered, "statements.csv")
    assert result["financialData"]["revenue"] == 1100000
    assert result["yearlyChanges"]["revenue"] == pytest.approx(10.0)


def test_comma_grouped_chinese_revenue():
    data = '营业总收入,净利润\n"1,000",100\n'.encode("utf-8")
    result = analyze_file(data, "single.csv")
    assert result["financialData"]["revenue"] == 1000


def test_record_failure_does_not_abort_file():
    data = "年份,营业收入,净利润\n2022,1000,\n2023,1200,90\n".encode("utf-8")
    result = analyze_file(data, "partial.csv")
    assert result["success"]
    first, second = result["records"]
    assert first["financialMetrics"] is None
    assert "netIncome" in first["processingError"]
    assert first["missingMetrics"] == ["ebit", "netIncome"]
    assert second["processingError"] is None
    assert result["metadata"]["missingMetricsRows"] == 1
    assert result["financialData"]["revenue"] == 1200


def test_no_usable_record_fails_file():
    result = analyze_file("备注\n无\n".encode("utf-8"), "notes.csv")
    assert result == {
        "success": False,
        "error": "Missing required financial metrics: "
                 "revenue, ebit, netIncome, depreciation, capex, workingCapital",
    }


def test_unsupported_type():
    result = analyze_file(b"hello", "notes.docx")
    assert result == {"success": False, "error": "Unsupported file type: docx"}


def test_xbrl_file():
    result = analyze_file(XBRL_DOC, "filing.xml")
    assert result["success"]
    data = result["financialData"]
    assert data["capex"] == 60000
    assert data["workingCapital"] == pytest.approx(200000)
    assert result["metadata"]["source"] == "XBRL"
    assert result["metadata"]["period"] == "2023-12-31"
    assert result["metadata"]["estimated"] == ["workingCapital"]


def test_pdf_pages_merged_when_no_single_page_reconciles(monkeypatch):
    pages = ["营业收入 1,000,000", "净利润 120,000"]
    monkeypatch.setattr(pdf_text_extractor, "pdf_pages_text", lambda data: pages)
    result = analyze_file(b"%PDF-stub", "annual.pdf")
    assert result["success"]
    assert result["financialData"]["revenue"] == 1000000
    assert result["financialData"]["ebit"] == pytest.approx(160000)
    assert result["records"][-1]["merged"] is True
    assert result["metadata"]["missingMetricsRows"] == 2


def test_ai_metrics_layered_over_traditional():
    result = analyze_file(MULTI_YEAR_CSV, "statements.csv", ai_metrics='{"revenue": 2000000}')
    assert result["financialData"]["revenue"] == 2000000
    assert result["traditionalData"]["revenue"] == 1100000
    assert result["aiData"] == {"revenue": 2000000.0}
    assert result["metadata"]["aiAssisted"] is True
    assert result["ratios"]["ebitMargin"] == pytest.approx(11.0)


def test_ai_metrics_ignored_when_unrecognised():
    result = analyze_file(MULTI_YEAR_CSV, "statements.csv", ai_metrics="sorry, I cannot help")
    assert result["financialData"]["revenue"] == 1100000
    assert result["aiData"] is None
    assert result["metadata"]["aiAssisted"] is False


def test_identical_bytes_give_identical_metrics():
    assert analyze_file(MULTI_YEAR_CSV, "a.csv") == analyze_file(MULTI_YEAR_CSV, "a.csv")


def test_batch_keeps_order_and_isolates_failures():
    results = analyze_files([
        ("good.csv", MULTI_YEAR_CSV),
        ("bad.docx", b"x"),
        ("filing.xml", XBRL_DOC, "application/xml"),
    ], max_workers=2)
    assert [r["filename"] for r in results] == ["good.csv", "bad.docx", "filing.xml"]
    assert [r["success"] for r in results] == [True, False, True]


def test_cli_prints_full_report(tmp_path, capsys):
    path = tmp_path / "statements.csv"
    path.write_bytes(MULTI_YEAR_CSV)
    code = main([str(path), "--years", "3", "--iterations", "50", "--seed", "1"])
    assert code == 0
    out = json.loads(capsys.readouterr().out)
    report = out[0]
    assert report["analysis"]["success"]
    assert len(report["fcff"]["projections"]) == 3
    assert report["monteCarlo"]["iterations"] == 50
    assert len(report["sensitivity"]) == 6


INCOME_PAGE_2023 = "\n".join([
    "项目          2023年          2022年",
    "营业收入      10,000          9,000",
    "营业利润      2,000           1,800",
    "净利润        1,500           1,300",
])


def test_pdf_pages_of_one_year_are_one_statement(monkeypatch):
    second_page = "\n".join([
        "项目          2023年          2022年",
        "营业收入      12,000          11,000",
        "营业利润      1,100           1,000",
        "净利润        1,000           900",
    ])
    monkeypatch.setattr(pdf_text_extractor, "pdf_pages_text",
                        lambda data: [INCOME_PAGE_2023, second_page])
    result = analyze_file(b"%PDF-stub", "annual.pdf")
    assert result["success"]
    assert result["yearlyChanges"] == {}
    assert result["financialData"]["revenue"] == 10000
    assert result["metadata"]["years"] == 1
    assert result["records"][-1]["merged"] is True


def test_pdf_cash_flow_page_fills_the_income_page(monkeypatch):
    cash_flow_page = "\n".join([
        "购建固定资产、无形资产和其他长期资产支付的现金 900",
        "折旧与摊销 600",
    ])
    monkeypatch.setattr(pdf_text_extractor, "pdf_pages_text",
                        lambda data: [INCOME_PAGE_2023, cash_flow_page])
    result = analyze_file(b"%PDF-stub", "annual.pdf")
    data = result["financialData"]
    assert data["capex"] == 900
    assert data["depreciation"] == 600
    assert result["metadata"]["estimated"] == ["workingCapital"]
    assert result["metadata"]["period"] == "2023"


def test_pdf_pages_of_different_years_are_compared(monkeypatch):
    page_2022 = INCOME_PAGE_2023.replace("2023年          2022年", "2022年          2021年")
    page_2022 = page_2022.replace("10,000", "8,000")
    monkeypatch.setattr(pdf_text_extractor, "pdf_pages_text",
                        lambda data: [INCOME_PAGE_2023, page_2022])
    result = analyze_file(b"%PDF-stub", "annual.pdf")
    assert result["metadata"]["period"] == "2023"
    assert result["yearlyChanges"]["revenue"] == pytest.approx(25.0)


def _newest_first_csv(fixed_2023, fixed_2022):
    return "\n".join([
        "项目,2023,2022",
        "营业收入,10000,9000",
        "营业利润,2000,1800",
        "净利润,1500,1300",
        "折旧与摊销,500,450",
        "营运资金,800,700",
        f"固定资产,{fixed_2023},{fixed_2022}",
    ]).encode("utf-8")


def test_newest_first_columns_take_fixed_asset_delta_from_the_older_year():
    result = analyze_file(_newest_first_csv(1300, 1000), "statements.csv")
    assert result["financialData"]["capex"] == pytest.approx(300)
    assert result["metadata"]["estimated"] == ["capex"]
    assert result["yearlyChanges"]["revenue"] == pytest.approx(100 / 9)
    latest, older = result["records"]
    assert latest["period"] == "2023"
    assert older["financialMetrics"]["capex"] == pytest.approx(630)


def test_newest_first_shrinking_fixed_assets_use_revenue_share():
    result = analyze_file(_newest_first_csv(1000, 1300), "statements.csv")
    assert result["financialData"]["capex"] == pytest.approx(700)
    older = result["records"][1]
    assert older["financialMetrics"]["capex"] == pytest.approx(630)


def test_rows_sharing_a_year_are_not_compared():
    data = (
        "年份,营业收入,营业利润,净利润,折旧与摊销,资本支出,营运资金\n"
        "2023,1000,200,150,50,70,20\n"
        "2023,1200,240,180,60,84,24\n"
    ).encode("utf-8")
    result = analyze_file(data, "restated.csv")
    assert result["financialData"]["revenue"] == 1200
    assert result["yearlyChanges"] == {}
