r"""backend\app\services\forecasting_service.py

Trend and weekday-seasonality forecaster layered on top of reorder suggestions.

The forecaster is deliberately light: a least-squares trend line and a
day-of-week factor, both fitted with numpy/pandas over a longer history
window than the base suggestion.  Products without enough observed days are
returned with neutral forecast fields so callers can tell the difference
between "forecast says no change" and "not enough data to forecast".
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import List, Sequence

import numpy as np
import pandas as pd

from ..core.config import ReorderPolicy
from ..models.schemas import (
    MLReorderSuggestion,
    MLReorderSuggestionOptions,
    ReorderSuggestion,
    SalesDailySeries,
)
from .reorder_service import estimate_velocity, recommend_quantity, score_confidence
from .sales_history_service import SalesHistoryAggregator

LOGGER = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Helper utilities (kept top-level for straightforward unit testing)


@dataclass(frozen=True)
class TrendFit:
    slope: float
    intercept: float
    direction: str
    strength: float


def fit_trend(values: Sequence[float] | pd.Series, slope_threshold: float) -> TrendFit:
    """Fit ``y = slope * t + intercept`` over a dense daily series.

    ``strength`` scales the total drift over the window by the mean level and
    is clamped to ``[0, 1]``.
    """

    y = np.asarray(values, dtype=float)
    n = len(y)
    if n < 2:
        level = float(y.mean()) if n else 0.0
        return TrendFit(0.0, level, "stable", 0.0)

    slope, intercept = np.polyfit(np.arange(n, dtype=float), y, 1)
    slope = float(slope)
    mean = float(y.mean())

    if slope > slope_threshold:
        direction = "increasing"
    elif slope < -slope_threshold:
        direction = "decreasing"
    else:
        direction = "stable"

    strength = 0.0 if mean <= 0 else float(np.clip(abs(slope) * n / mean, 0.0, 1.0))
    return TrendFit(slope, float(intercept), direction, strength)


def seasonal_factor(quantities: pd.Series, weekday: int, policy: ReorderPolicy) -> float:
    """Mean demand on ``weekday`` relative to the overall mean.

    Returns 1.0 when the weekday has too few samples or the series has no
    demand.  The factor is clamped to the policy bounds so it stays positive.
    """

    if quantities.empty:
        return 1.0
    overall = float(quantities.mean())
    if overall <= 0:
        return 1.0

    index = pd.DatetimeIndex(quantities.index)
    same_day = quantities[index.dayofweek == weekday]
    if len(same_day) < policy.min_weekday_samples:
        return 1.0

    factor = float(same_day.mean()) / overall
    return float(np.clip(factor, policy.seasonal_factor_min, policy.seasonal_factor_max))


def predict_window(train: pd.Series, future_index: pd.DatetimeIndex, policy: ReorderPolicy) -> pd.Series:
    """Project the trend line of ``train`` onto ``future_index`` with weekday factors."""

    trend = fit_trend(train.values, policy.trend_slope_threshold)
    offsets = np.arange(len(train), len(train) + len(future_index), dtype=float)
    baseline = np.clip(trend.intercept + trend.slope * offsets, 0.0, None)
    factors = np.array(
        [seasonal_factor(train, int(day.dayofweek), policy) for day in future_index], dtype=float
    )
    return pd.Series(baseline * factors, index=future_index)


def backtest_accuracy(
    quantities: pd.Series,
    forecast_period_days: int,
    policy: ReorderPolicy,
) -> int:
    """Hold out the last ``forecast_period_days`` and score the fit, 0-100.

    Accuracy is ``100 - MAPE`` over held-out days with non-zero demand.
    """

    if forecast_period_days <= 0 or len(quantities) <= forecast_period_days:
        return 0
    train = quantities.iloc[:-forecast_period_days]
    actual = quantities.iloc[-forecast_period_days:]
    if len(train) < 2:
        return 0

    predicted = predict_window(train, pd.DatetimeIndex(actual.index), policy)
    actual_arr = actual.to_numpy(dtype=float)
    pred_arr = predicted.to_numpy(dtype=float)
    mask = actual_arr != 0
    if not mask.any():
        return 0

    mape = float(np.mean(np.abs((actual_arr[mask] - pred_arr[mask]) / actual_arr[mask]))) * 100.0
    if np.isnan(mape):
        return 0
    return int(round(100.0 - min(max(mape, 0.0), 100.0)))


def neutral_ml_suggestion(suggestion: ReorderSuggestion, pattern_confidence: int) -> MLReorderSuggestion:
    """Base suggestion with forecast fields that leave the demand unchanged."""

    return MLReorderSuggestion(
        **suggestion.model_dump(),
        ml_predicted_demand=suggestion.average_daily_sales,
        seasonal_factor=1.0,
        trend_direction="stable",
        trend_strength=0.0,
        pattern_confidence=pattern_confidence,
        forecast_accuracy=0,
        ml_confidence=suggestion.confidence,
        ml_recommended_quantity=suggestion.recommended_quantity,
        ml_applied=False,
    )


# ---------------------------------------------------------------------------


class ForecastingService:
    """Enrich reorder suggestions with trend, seasonality and accuracy."""

    def __init__(self, history: SalesHistoryAggregator, policy: ReorderPolicy | None = None) -> None:
        self.history = history
        self.policy = policy or ReorderPolicy()

    def enhance(
        self,
        suggestion: ReorderSuggestion,
        series: SalesDailySeries,
        options: MLReorderSuggestionOptions,
        today: datetime | pd.Timestamp,
    ) -> MLReorderSuggestion:
        """Apply the forecaster to one suggestion given its long history window."""

        history_days = len(series) or 1
        velocity = estimate_velocity(series.quantities, history_days)
        pattern_confidence = score_confidence(
            series.observed_days, history_days, velocity.coefficient_of_variation
        )

        if series.lookup_failed or series.observed_days < options.min_data_points_for_ml:
            LOGGER.debug(
                "Skipping forecast for product_id=%s: %d observed days (need %d)",
                suggestion.product_id,
                series.observed_days,
                options.min_data_points_for_ml,
            )
            return neutral_ml_suggestion(suggestion, pattern_confidence)

        trend = fit_trend(series.quantities.values, self.policy.trend_slope_threshold)
        factor = seasonal_factor(series.quantities, pd.Timestamp(today).dayofweek, self.policy)
        demand = suggestion.average_daily_sales * factor * (1.0 + trend.strength * np.sign(trend.slope))
        demand = max(0.0, float(demand))

        accuracy = backtest_accuracy(series.quantities, options.forecast_period_days, self.policy)
        ml_quantity = recommend_quantity(
            suggestion.current_stock,
            suggestion.reorder_level,
            demand,
            options.safety_stock_days,
            max_stock=suggestion.max_stock,
            allows_fractional=suggestion.allows_fractional,
        )

        return MLReorderSuggestion(
            **suggestion.model_dump(),
            ml_predicted_demand=demand,
            seasonal_factor=factor,
            trend_direction=trend.direction,
            trend_strength=trend.strength,
            pattern_confidence=pattern_confidence,
            forecast_accuracy=accuracy,
            ml_confidence=int(round((pattern_confidence + accuracy) / 2)),
            ml_recommended_quantity=ml_quantity,
            ml_applied=True,
        )

    async def _enhance_one(
        self,
        suggestion: ReorderSuggestion,
        options: MLReorderSuggestionOptions,
        now: pd.Timestamp,
        semaphore: asyncio.Semaphore,
    ) -> MLReorderSuggestion:
        history_days = max(options.analysis_period_days, 2 * options.forecast_period_days)
        async with semaphore:
            series = await self.history.daily_series(suggestion.product_id, history_days, now)
        local_today = now.tz_convert(self.history.timezone) if now.tzinfo else now
        try:
            return self.enhance(suggestion, series, options, local_today)
        except Exception:
            LOGGER.exception("Forecast failed for product_id=%s", suggestion.product_id)
            return neutral_ml_suggestion(suggestion, 0)

    async def enhance_suggestions(
        self,
        suggestions: Sequence[ReorderSuggestion],
        options: MLReorderSuggestionOptions,
        now: datetime | pd.Timestamp,
    ) -> List[MLReorderSuggestion]:
        """Return ML suggestions in the same order as ``suggestions``."""

        if not options.enable_ml_predictions:
            return [neutral_ml_suggestion(s, s.confidence) for s in suggestions]

        stamp = pd.Timestamp(now)
        semaphore = asyncio.Semaphore(self.policy.history_concurrency)
        return list(
            await asyncio.gather(
                *[self._enhance_one(s, options, stamp, semaphore) for s in suggestions]
            )
        )
