import pytest
from fastapi.testclient import TestClient

from velocity_agent.api import app
from velocity_agent.calculator import CreditLineParams, LoanParams


@pytest.fixture()
def loan() -> LoanParams:
    return LoanParams(principal=500000, term_months=300, annual_rate=0.063)


@pytest.fixture()
def line() -> CreditLineParams:
    return CreditLineParams(annual_rate=0.07, chunk_amount=15000, monthly_payment=3000, repeat_chunks=True)


@pytest.fixture()
def client() -> TestClient:
    return TestClient(app)
