import zipfile
from io import BytesIO

import pytest
from openpyxl import load_workbook

from loan_planner import api
from loan_planner.calculator import assess_affordability, build_schedule, summarize


class TestHealth:
    def test_health(self, client):
        resp = client.get("/health")
        assert resp.status_code == 200
        assert resp.json() == {"status": "ok"}


class TestCalcSchedule:
    def test_full_schedule(self, client, loan_request):
        resp = client.post("/v1/loans/schedule:calc", json=loan_request)
        assert resp.status_code == 200
        data = resp.json()
        assert len(data["rows"]) == 241
        assert data["rows"][0]["month"] == 0
        assert data["rows"][0]["total_settlement_cost"] == pytest.approx(2_000_000_000)
        assert data["rows"][1]["annual_rate"] == 5.2
        assert data["rows"][-1]["accumulated_principal"] == pytest.approx(2_000_000_000)
        assert data["page"] is None
        assert data["summary"]["promotional_months"] == 36
        assert data["summary"]["floating_months"] == 204
        assert data["affordability"]["exceeds_threshold"] is False

    def test_page(self, client, loan_request):
        resp = client.post("/v1/loans/schedule:calc", params={"page": 2, "page_size": 24}, json=loan_request)
        assert resp.status_code == 200
        data = resp.json()
        assert [r["month"] for r in data["rows"]] == list(range(25, 49))
        assert data["page"] == 2
        assert data["page_size"] == 24
        assert data["total_pages"] == 10

    def test_page_clamped_to_last(self, client, loan_request):
        resp = client.post("/v1/loans/schedule:calc", params={"page": 99, "page_size": 60}, json=loan_request)
        data = resp.json()
        assert data["page"] == 4
        assert data["rows"][0]["month"] == 181
        assert data["rows"][-1]["month"] == 240

    def test_default_page_size(self, client, loan_request):
        resp = client.post("/v1/loans/schedule:calc", params={"page": 1}, json=loan_request)
        data = resp.json()
        assert data["page_size"] == api.DEFAULT_PAGE_SIZE
        assert len(data["rows"]) == api.DEFAULT_PAGE_SIZE
        assert data["rows"][0]["month"] == 1

    def test_unsupported_page_size(self, client, loan_request):
        resp = client.post("/v1/loans/schedule:calc", params={"page_size": 25}, json=loan_request)
        assert resp.status_code == 400

    def test_grace_period(self, client, loan_request):
        loan_request["grace_period_years"] = 2
        data = client.post("/v1/loans/schedule:calc", json=loan_request).json()
        assert all(r["is_grace_period"] for r in data["rows"][1:25])
        assert data["rows"][25]["is_grace_period"] is False
        assert data["rows"][25]["principal_payment"] == pytest.approx(2_000_000_000 / 216)


class TestValidation:
    def test_grace_must_be_shorter_than_term(self, client, loan_request):
        loan_request["grace_period_years"] = 20
        assert client.post("/v1/loans/schedule:calc", json=loan_request).status_code == 422

    def test_inverted_promotional_band(self, client, loan_request):
        loan_request["promotional_rates"] = [{"from_year": 3, "to_year": 1, "rate": 5.0}]
        assert client.post("/v1/loans/schedule:calc", json=loan_request).status_code == 422

    def test_non_positive_amount(self, client, loan_request):
        loan_request["loan_amount"] = 0
        assert client.post("/v1/loans/schedule:calc", json=loan_request).status_code == 422

    def test_term_too_long(self, client, loan_request):
        loan_request["term_years"] = api.MAX_TERM_YEARS + 1
        assert client.post("/v1/loans/schedule:calc", json=loan_request).status_code == 422

    def test_grouped_amount_strings(self, client, loan_request):
        loan_request["loan_amount"] = "2.000.000.000"
        loan_request["monthly_income"] = "60.000.000"
        resp = client.post("/v1/loans/schedule:summary", json=loan_request)
        assert resp.status_code == 200
        data = resp.json()
        assert data["summary"]["total_principal"] == pytest.approx(2_000_000_000)
        assert data["affordability"]["remaining_floating"] == pytest.approx(
            60_000_000 - data["summary"]["avg_monthly_payment_floating"]
        )

    def test_grouped_amount_matches_numeric(self, client, loan_request):
        numeric = client.post("/v1/loans/schedule:summary", json=loan_request).json()
        loan_request["loan_amount"] = "2.000.000.000 VND"
        grouped = client.post("/v1/loans/schedule:summary", json=loan_request).json()
        assert grouped == numeric

    def test_unparseable_amount_string(self, client, loan_request):
        loan_request["loan_amount"] = "abc"
        assert client.post("/v1/loans/schedule:calc", json=loan_request).status_code == 422

    def test_defaults(self, client):
        resp = client.post(
            "/v1/loans/schedule:summary",
            json={"loan_amount": 1_200_000, "term_years": 1, "floating_rate": 12.0},
        )
        assert resp.status_code == 200
        summary = resp.json()["summary"]
        assert summary["total_interest"] == pytest.approx(78_000)
        assert summary["promotional_months"] == 0


class TestSummaryEndpoint:
    def test_summary(self, client, loan_request):
        resp = client.post("/v1/loans/schedule:summary", json=loan_request)
        assert resp.status_code == 200
        data = resp.json()
        assert set(data) == {"summary", "affordability"}
        assert data["summary"]["total_principal"] == pytest.approx(2_000_000_000)
        assert data["affordability"]["income_ratio"] > 0

    def test_affordability_warning(self, client, loan_request):
        loan_request["monthly_income"] = 10_000_000
        data = client.post("/v1/loans/schedule:summary", json=loan_request).json()
        assert data["affordability"]["exceeds_threshold"] is True


class TestApiKey:
    def test_missing_key(self, client, loan_request, monkeypatch):
        monkeypatch.setattr(api, "API_KEY", "secret")
        assert client.post("/v1/loans/schedule:summary", json=loan_request).status_code == 401

    def test_valid_key(self, client, loan_request, monkeypatch):
        monkeypatch.setattr(api, "API_KEY", "secret")
        resp = client.post("/v1/loans/schedule:summary", json=loan_request, headers={"x-api-key": "secret"})
        assert resp.status_code == 200


class TestExports:
    def test_xlsx(self, client, loan_request):
        resp = client.post("/v1/loans/schedule:export-xlsx", json=loan_request)
        assert resp.status_code == 200
        assert "loan-schedule-" in resp.headers["content-disposition"]
        wb = load_workbook(BytesIO(resp.content))
        assert wb.sheetnames == ["Summary", "Schedule"]
        ws = wb["Schedule"]
        assert ws.max_row == 241
        assert ws.max_column == len(api.SCHEDULE_COLUMNS)
        assert ws.cell(row=2, column=1).value == 1
        assert ws.cell(row=2, column=2).value == 5.2
        assert ws.cell(row=241, column=7).value == pytest.approx(0, abs=0.01)
        summary = wb["Summary"]
        assert summary.cell(row=2, column=2).value == 2_000_000_000
        assert summary.cell(row=3, column=2).value == 240

    def test_xlsx_grace_flag(self, client, loan_request):
        loan_request["grace_period_years"] = 1
        resp = client.post("/v1/loans/schedule:export-xlsx", json=loan_request)
        ws = load_workbook(BytesIO(resp.content))["Schedule"]
        assert ws.cell(row=2, column=16).value == "Yes"
        assert ws.cell(row=14, column=16).value in (None, "")

    def test_pdf(self, client, loan_request):
        resp = client.post("/v1/loans/schedule:export-pdf", json=loan_request)
        assert resp.status_code == 200
        assert resp.headers["content-type"] == "application/pdf"
        assert resp.content.startswith(b"%PDF")

    def test_zip(self, client, loan_request):
        resp = client.post("/v1/loans/schedule:export-zip", json=loan_request)
        assert resp.status_code == 200
        assert float(resp.headers["x-total-interest"]) > 0
        assert float(resp.headers["x-avg-monthly-payment"]) > 0
        with zipfile.ZipFile(BytesIO(resp.content)) as zf:
            names = zf.namelist()
        assert len(names) == 2
        assert any(n.endswith(".xlsx") for n in names)
        assert any(n.endswith(".pdf") for n in names)

    def test_schedule_to_xlsx_direct(self, promo_params):
        schedule = build_schedule(promo_params)
        summary = summarize(schedule, promo_params.promotional_rates)
        affordability = assess_affordability(summary, promo_params.monthly_income)
        wb = load_workbook(BytesIO(api.schedule_to_xlsx(promo_params, schedule, summary, affordability)))
        assert wb["Schedule"].max_row == promo_params.term_months + 1
        assert wb["Summary"].cell(row=2, column=2).value == 2_000_000_000

    def test_row_limit(self, client, loan_request, monkeypatch):
        monkeypatch.setattr(api, "MAX_SCHEDULE_ROWS", 100)
        assert client.post("/v1/loans/schedule:export-xlsx", json=loan_request).status_code == 413

    def test_size_limit(self, client, loan_request, monkeypatch):
        monkeypatch.setattr(api, "MAX_EXPORT_BYTES", 10)
        assert client.post("/v1/loans/schedule:export-pdf", json=loan_request).status_code == 413


class TestScheduleCache:
    def test_identical_requests_share_schedule(self, client, loan_request):
        client.post("/v1/loans/schedule:summary", json=loan_request)
        client.post("/v1/loans/schedule:summary", json=loan_request)
        info = api._cached_schedule.cache_info()
        assert info.misses == 1
        assert info.hits == 1
