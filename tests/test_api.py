import zipfile
from io import BytesIO

import pytest
from openpyxl import load_workbook

from velocity_agent import api


LOAN = {"principal": 500000, "term_months": 300, "annual_rate": 0.063}


def test_health(client):
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok"}


def test_baseline_calc(client):
    resp = client.post("/v1/mortgages/baseline:calc", json=LOAN)
    assert resp.status_code == 200
    data = resp.json()
    assert data["total_months"] == 300
    assert data["monthly_payment"] == pytest.approx(3313.82, abs=0.5)
    assert data["reached_month_cap"] is False


def test_baseline_rejects_invalid_loan(client):
    resp = client.post("/v1/mortgages/baseline:calc", json={**LOAN, "principal": 0})
    assert resp.status_code == 422
    resp = client.post("/v1/mortgages/baseline:calc", json={**LOAN, "annual_rate": 6.3})
    assert resp.status_code == 422


def test_extra_payment_calc(client):
    resp = client.post("/v1/mortgages/extra-payment:calc", json={**LOAN, "extra_payment": 3000})
    assert resp.status_code == 200
    data = resp.json()
    assert data["total_months"] < 300
    assert data["vs_baseline"]["interest_saved"] > 0
    assert data["vs_baseline"]["time_saved_months"] == 300 - data["total_months"]
    assert data["vs_baseline"]["years_saved"] == pytest.approx(data["vs_baseline"]["time_saved_months"] / 12)


def test_velocity_calc(client):
    body = {
        **LOAN,
        "heloc_annual_rate": 0.07,
        "heloc_chunk_amount": 15000,
        "heloc_payment_per_month": 3000,
        "repeat_chunks": True,
    }
    resp = client.post("/v1/mortgages/velocity:calc", json=body)
    assert resp.status_code == 200
    data = resp.json()
    assert data["total_months"] < 300
    assert data["total_interest"] == pytest.approx(data["mortgage_interest"] + data["heloc_interest"])
    assert data["chunks_drawn"] > 1
    assert data["vs_baseline"]["interest_saved"] > 0


def test_velocity_non_amortizing_returns_structured_422(client):
    body = {
        **LOAN,
        "heloc_annual_rate": 0.12,
        "heloc_chunk_amount": 50000,
        "heloc_payment_per_month": 400,
        "repeat_chunks": True,
    }
    resp = client.post("/v1/mortgages/velocity:calc", json=body)
    assert resp.status_code == 422
    detail = resp.json()["detail"]
    assert detail["error"] == "non_amortizing_credit_line"
    assert detail["month"] == 1
    assert detail["heloc_payment"] == 400
    assert detail["minimum_payment"] == pytest.approx(500.0)
    assert "Increase HELOC payment" in detail["message"]


def test_investment_projection(client):
    body = {
        "horizon_months": 12,
        "monthly_contribution": 100,
        "annual_return": 0.0,
        "baseline_interest": 500,
        "comparison_interest": 200,
    }
    resp = client.post("/v1/investments/projection:calc", json=body)
    assert resp.status_code == 200
    data = resp.json()
    assert data["total_value"] == 1200
    assert data["investment_gains"] == 0
    assert data["net_benefit"] == -300


def test_investment_accepts_comparison_above_baseline(client):
    # HELOC 30% 的 Velocity 方案利息高于原方案，仍可作为对比方案
    velocity = client.post(
        "/v1/mortgages/velocity:calc",
        json={
            "principal": 500000,
            "term_months": 300,
            "annual_rate": 0.03,
            "heloc_annual_rate": 0.30,
            "heloc_chunk_amount": 100000,
            "heloc_payment_per_month": 2600,
            "repeat_chunks": True,
        },
    ).json()
    comparison = velocity["total_interest"]
    baseline = comparison - velocity["vs_baseline"]["interest_saved"]
    assert comparison > baseline

    body = {
        "horizon_months": velocity["total_months"],
        "monthly_contribution": 2600,
        "annual_return": 0.05,
        "baseline_interest": baseline,
        "comparison_interest": comparison,
    }
    resp = client.post("/v1/investments/projection:calc", json=body)
    assert resp.status_code == 200
    data = resp.json()
    assert data["net_benefit"] == pytest.approx(data["investment_gains"] + (comparison - baseline))


def test_compare_uses_default_scenario(client):
    resp = client.post("/v1/strategies:compare", json={})
    assert resp.status_code == 200
    data = resp.json()

    assert data["baseline"]["total_months"] == 300
    assert data["velocity_vs_extra"]["interest_saved"] == pytest.approx(
        data["extra_payment"]["total_interest"] - data["velocity"]["total_interest"]
    )
    assert data["best_paydown"]["kind"] == "paydown"
    assert data["best_paydown"]["key"] in ("extra_payment", "velocity")
    assert data["investment"]["total_months"] == data["best_paydown"]["total_months"]
    assert data["investment_net_benefit"] == data["investment"]["net_benefit"]
    if data["investment_net_benefit"] > 0:
        assert data["best_overall"]["key"] == "investment"
    else:
        assert data["best_overall"]["key"] == data["best_paydown"]["key"]


def test_compare_high_return_picks_investment(client):
    resp = client.post("/v1/strategies:compare", json={"investment_return_annual": 0.5})
    assert resp.status_code == 200
    best = resp.json()["best_overall"]
    assert best["key"] == "investment"
    assert best["kind"] == "investment"
    assert best["net_benefit"] > 0
    assert best["comparison"] is None


def test_compare_non_amortizing(client):
    resp = client.post(
        "/v1/strategies:compare",
        json={"heloc_annual_rate": 0.12, "heloc_chunk_amount": 50000, "heloc_payment_per_month": 400},
    )
    assert resp.status_code == 422
    assert resp.json()["detail"]["error"] == "non_amortizing_credit_line"


def test_export_xlsx(client):
    resp = client.post("/v1/strategies:export-xlsx", json={})
    assert resp.status_code == 200
    assert resp.headers["x-best-paydown"] in ("extra_payment", "velocity")

    wb = load_workbook(BytesIO(resp.content))
    ws = wb.active
    assert ws.title == "Strategies"
    assert ws["A1"].value == "方案"
    assert ws["A2"].value == "原方案"
    assert ws["C2"].value == 300
    assert ws["A4"].value == "Velocity Banking"


def test_export_zip_contains_xlsx_and_pdf(client):
    resp = client.post("/v1/strategies:export-zip", json={})
    assert resp.status_code == 200
    assert resp.headers["content-type"] == "application/zip"
    assert float(resp.headers["x-interest-saved-best-paydown"]) > 0

    with zipfile.ZipFile(BytesIO(resp.content)) as zf:
        names = zf.namelist()
        assert "还款策略对比.xlsx" in names
        assert "还款策略-分析报告.pdf" in names
        assert zf.read("还款策略-分析报告.pdf").startswith(b"%PDF")


def test_export_size_limit(client, monkeypatch):
    monkeypatch.setattr(api, "MAX_EXPORT_BYTES", 10)
    resp = client.post("/v1/strategies:export-xlsx", json={})
    assert resp.status_code == 413


def test_api_key_required_when_configured(client, monkeypatch):
    monkeypatch.setattr(api, "API_KEY", "secret")
    resp = client.post("/v1/mortgages/baseline:calc", json=LOAN)
    assert resp.status_code == 401

    resp = client.post("/v1/mortgages/baseline:calc", json=LOAN, headers={"x-api-key": "secret"})
    assert resp.status_code == 200
