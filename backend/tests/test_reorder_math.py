from __future__ import annotations

import sys
from datetime import date
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[2]
if str(ROOT) not in sys.path:
    sys.path.append(str(ROOT))

from backend.app.core.config import DAYS_UNBOUNDED, ReorderPolicy
from backend.app.models.schemas import Urgency
from backend.app.services.reorder_service import (
    build_suggestion,
    classify_urgency,
    days_of_stock_remaining,
    estimate_velocity,
    recommend_quantity,
    score_confidence,
)
from backend.app.services.sales_history_service import empty_series
from backend.tests.stubs import dense_series, make_product

WINDOW = (date(2024, 2, 15), date(2024, 3, 16))


def test_out_of_stock_product_is_critical_with_full_target_quantity() -> None:
    days = days_of_stock_remaining(0, 2.0)
    assert days == 0
    assert classify_urgency(0, days, 7) is Urgency.CRITICAL
    assert recommend_quantity(0, 10, 2.0, 7) == 24


def test_product_without_sales_is_low_with_unbounded_days() -> None:
    days = days_of_stock_remaining(50, 0.0)
    assert days == DAYS_UNBOUNDED
    assert classify_urgency(50, days, 7) is Urgency.LOW
    assert recommend_quantity(50, 10, 0.0, 7) == 0


def test_velocity_uses_whole_period_and_population_std() -> None:
    flat = estimate_velocity([2.0] * 30, 30)
    assert flat.average_daily_sales == pytest.approx(2.0)
    assert flat.coefficient_of_variation == pytest.approx(0.0)

    alternating = estimate_velocity([0.0, 4.0] * 15, 30)
    assert alternating.average_daily_sales == pytest.approx(2.0)
    assert alternating.coefficient_of_variation == pytest.approx(1.0)

    sparse = estimate_velocity([0.0] * 29 + [30.0], 30)
    assert sparse.average_daily_sales == pytest.approx(1.0)


def test_velocity_of_no_sales_is_zero() -> None:
    result = estimate_velocity([0.0] * 30, 30)
    assert result.average_daily_sales == 0
    assert result.coefficient_of_variation == 0
    with pytest.raises(ValueError):
        estimate_velocity([1.0], 0)


def test_urgency_is_monotone_in_days_remaining() -> None:
    safety = 7
    previous = Urgency.CRITICAL.severity
    for days in [0, 3, 7, 7.5, 14, 15, 28, 29, 100, DAYS_UNBOUNDED]:
        severity = classify_urgency(10, days, safety).severity
        assert severity <= previous
        previous = severity

    assert classify_urgency(10, 7, safety) is Urgency.CRITICAL
    assert classify_urgency(10, 14, safety) is Urgency.HIGH
    assert classify_urgency(10, 28, safety) is Urgency.MEDIUM
    assert classify_urgency(10, 29, safety) is Urgency.LOW


@pytest.mark.parametrize("days", [0.0, 50.0, DAYS_UNBOUNDED])
def test_zero_or_negative_stock_is_always_critical(days: float) -> None:
    assert classify_urgency(0, days, 7) is Urgency.CRITICAL
    assert classify_urgency(-3, days, 7) is Urgency.CRITICAL


def test_policy_multipliers_shift_tiers() -> None:
    policy = ReorderPolicy(critical_multiplier=0.5, high_multiplier=1.0, medium_multiplier=2.0)
    assert classify_urgency(10, 7, 7, policy) is Urgency.HIGH
    assert classify_urgency(10, 14, 7, policy) is Urgency.MEDIUM
    with pytest.raises(ValueError):
        ReorderPolicy(critical_multiplier=3.0)


def test_quantity_rounds_up_whole_units_and_ignores_float_noise() -> None:
    assert recommend_quantity(0.8, 10, 1.0, 14) == 24
    assert recommend_quantity(0, 10, 2.0000000000001, 7) == 24


def test_fractional_products_round_to_three_decimals() -> None:
    qty = recommend_quantity(1.0, 3.34567, 0.0, 7, allows_fractional=True)
    assert qty == pytest.approx(2.346)


def test_quantity_never_exceeds_max_stock_and_is_never_negative() -> None:
    assert recommend_quantity(5, 50, 2.0, 7, max_stock=40) == 35
    assert recommend_quantity(45, 50, 2.0, 7, max_stock=40) == 0
    assert recommend_quantity(500, 10, 1.0, 7) == 0
    assert recommend_quantity(0, 10, 1.0, 7, max_stock=5.5) == 5


def test_confidence_bounds() -> None:
    assert score_confidence(0, 30, 0.0) == 0
    assert score_confidence(30, 30, 0.0) == 100
    assert score_confidence(15, 30, 1.0) == 25
    assert score_confidence(60, 30, 0.0) == 100
    assert 0 <= score_confidence(3, 30, 12.5) <= 100


def test_build_suggestion_combines_components() -> None:
    product = make_product(1, current_stock=0, reorder_level=10)
    series = dense_series(1, *WINDOW, [2.0] * 30)

    suggestion = build_suggestion(product, series, 30, 7)

    assert suggestion.urgency is Urgency.CRITICAL
    assert suggestion.days_of_stock_remaining == 0
    assert suggestion.recommended_quantity == 24
    assert suggestion.average_daily_sales == pytest.approx(2.0)
    assert suggestion.sales_velocity == suggestion.average_daily_sales
    assert suggestion.confidence == 100
    assert suggestion.data_status == "ok"


def test_build_suggestion_reports_data_status() -> None:
    product = make_product(2, current_stock=50)

    no_data = build_suggestion(product, empty_series(2, *WINDOW), 30, 7)
    assert no_data.data_status == "no_data"
    assert no_data.confidence == 0

    unavailable = build_suggestion(product, empty_series(2, *WINDOW, lookup_failed=True), 30, 7)
    assert unavailable.data_status == "history_unavailable"
    assert unavailable.confidence == 0


def test_confidence_drops_as_observed_span_shrinks() -> None:
    product = make_product(3, current_stock=40)
    scores = [
        build_suggestion(product, dense_series(3, *WINDOW, [2.0] * span), 30, 7).confidence
        for span in (30, 20, 10, 1)
    ]

    assert scores == sorted(scores, reverse=True)
    assert len(set(scores)) == len(scores)
    assert scores[0] == 100
