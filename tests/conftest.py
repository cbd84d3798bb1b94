"""Shared fixtures.

Fixture loan: 2 billion over 20 years, 5.2% in year 1, 6.7% in years 2-3,
10% floating afterwards; 3% penalty through year 3, 1% through year 5;
60 million monthly income.
"""

import pytest
from fastapi.testclient import TestClient

from loan_planner import api
from loan_planner.calculator import LoanParams, PenaltyRate, PromotionalRate


@pytest.fixture
def promo_params() -> LoanParams:
    return LoanParams(
        loan_amount=2_000_000_000,
        term_months=240,
        promotional_rates=[PromotionalRate(1, 1, 5.2), PromotionalRate(2, 3, 6.7)],
        floating_rate=10.0,
        monthly_income=60_000_000,
        penalty_rates=[PenaltyRate(3, 3), PenaltyRate(5, 1)],
    )


@pytest.fixture
def simple_params() -> LoanParams:
    """1.2M over 12 months at a flat 12%: 100K principal per month."""
    return LoanParams(loan_amount=1_200_000, term_months=12, floating_rate=12.0)


@pytest.fixture
def loan_request() -> dict:
    return {
        "loan_amount": 2_000_000_000,
        "term_years": 20,
        "grace_period_years": 0,
        "floating_rate": 10.0,
        "monthly_income": 60_000_000,
        "promotional_rates": [
            {"from_year": 1, "to_year": 1, "rate": 5.2},
            {"from_year": 2, "to_year": 3, "rate": 6.7},
        ],
        "penalty_rates": [
            {"before_year": 3, "penalty_rate": 3},
            {"before_year": 5, "penalty_rate": 1},
        ],
    }


@pytest.fixture
def client(monkeypatch) -> TestClient:
    monkeypatch.setattr(api.limiter, "enabled", False)
    monkeypatch.setattr(api, "API_KEY", None)
    api._cached_schedule.cache_clear()
    return TestClient(api.app)
