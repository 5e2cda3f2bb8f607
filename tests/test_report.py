import os

from velocity_agent.calculator import STRATEGY_NAMES, CreditLineParams, LoanParams, simulate_all_strategies
from velocity_agent.report import STRATEGY_CN, build_pdf, generate_pdf


def test_strategy_labels_cover_every_strategy_key():
    assert set(STRATEGY_CN) == set(STRATEGY_NAMES)


def test_build_pdf_returns_pdf_bytes(loan, line):
    report = simulate_all_strategies(loan, line, investment_return=0.10)
    pdf = build_pdf(report=report, loan=loan, line=line, investment_return=0.10)
    assert pdf.startswith(b"%PDF")
    assert len(pdf) > 1000


def test_build_pdf_investment_winner_and_capped_loan(line):
    loan = LoanParams(principal=500000, term_months=300, annual_rate=0.063, max_months=60)
    report = simulate_all_strategies(loan, line, investment_return=0.5)
    assert report.baseline.reached_month_cap is True
    pdf = build_pdf(report=report, loan=loan, line=line, investment_return=0.5)
    assert pdf.startswith(b"%PDF")


def test_build_pdf_without_investment(loan):
    line = CreditLineParams(annual_rate=0.07, chunk_amount=0, monthly_payment=0)
    report = simulate_all_strategies(loan, line)
    pdf = build_pdf(report=report, loan=loan, line=line, investment_return=0.0)
    assert pdf.startswith(b"%PDF")


def test_generate_pdf_writes_file(tmp_path, loan, line):
    report = simulate_all_strategies(loan, line, investment_return=0.10)
    path = generate_pdf(report=report, loan=loan, line=line, investment_return=0.10, output_dir=str(tmp_path / "out"))
    assert os.path.dirname(path) == str(tmp_path / "out")
    with open(path, "rb") as f:
        assert f.read(4) == b"%PDF"
