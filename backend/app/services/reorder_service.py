"""Generate reorder suggestions from stock positions and sales velocity."""

from __future__ import annotations

import asyncio
import logging
import math
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, Iterable, List, Optional, Sequence, Tuple, Type, TypeVar

import numpy as np
import pandas as pd
from pydantic import BaseModel, ValidationError

from ..core.config import DAYS_UNBOUNDED, ReorderPolicy
from ..core.errors import ReorderInputError
from ..models.schemas import (
    MLReorderSuggestion,
    MLReorderSuggestionOptions,
    Product,
    ProductFilters,
    ReorderSuggestion,
    ReorderSuggestionOptions,
    ReorderSuggestionSummary,
    SalesDailySeries,
    Urgency,
)
from .collaborators import ProductRepository, SalesHistoryRepository
from .sales_history_service import SalesHistoryAggregator, analysis_window, empty_series

if TYPE_CHECKING:
    from .forecasting_service import ForecastingService

LOGGER = logging.getLogger(__name__)

EPSILON = 1e-9
_OptionsT = TypeVar("_OptionsT", bound=BaseModel)


# ---------------------------------------------------------------------------
# Pure building blocks (kept top-level for straightforward unit testing)


@dataclass(frozen=True)
class Velocity:
    average_daily_sales: float
    coefficient_of_variation: float


def estimate_velocity(quantities: Sequence[float] | pd.Series, analysis_period_days: int) -> Velocity:
    """Return the average daily sales and the coefficient of variation.

    Products without sales get ``Velocity(0, 0)``: no signal rather than a
    perfectly stable series.
    """

    if analysis_period_days <= 0:
        raise ValueError("analysis_period_days must be positive")

    values = np.asarray(quantities, dtype=float)
    if values.size == 0:
        return Velocity(0.0, 0.0)
    values = np.nan_to_num(values, nan=0.0)
    total = float(values.sum())
    if total <= 0:
        return Velocity(0.0, 0.0)

    average = total / analysis_period_days
    # ``np.std`` defaults to population std (ddof=0) which we use here
    std = float(np.std(values))
    return Velocity(average, std / max(average, EPSILON))


def days_of_stock_remaining(
    current_stock: float,
    average_daily_sales: float,
    days_unbounded: float = DAYS_UNBOUNDED,
) -> float:
    """Estimate days until stockout; ``days_unbounded`` when nothing sells."""

    if current_stock <= 0:
        return 0.0
    if average_daily_sales <= 0:
        return float(days_unbounded)
    return max(0.0, current_stock / average_daily_sales)


def classify_urgency(
    current_stock: float,
    days_remaining: float,
    safety_stock_days: float,
    policy: ReorderPolicy | None = None,
) -> Urgency:
    """Map a stock position onto the four urgency tiers.

    Thresholds are multiples of ``safety_stock_days`` taken from ``policy``.
    Out-of-stock products are always critical.
    """

    policy = policy or ReorderPolicy()
    if current_stock <= 0 or days_remaining <= policy.critical_multiplier * safety_stock_days:
        return Urgency.CRITICAL
    if days_remaining <= policy.high_multiplier * safety_stock_days:
        return Urgency.HIGH
    if days_remaining <= policy.medium_multiplier * safety_stock_days:
        return Urgency.MEDIUM
    return Urgency.LOW


def recommend_quantity(
    current_stock: float,
    reorder_level: float,
    average_daily_sales: float,
    safety_stock_days: float,
    max_stock: Optional[float] = None,
    allows_fractional: bool = False,
) -> float:
    """Quantity that lifts stock to the reorder level plus safety stock.

    Whole units are rounded up; the result never pushes stock above
    ``max_stock`` and is never negative.
    """

    target_stock = reorder_level + max(average_daily_sales, 0.0) * max(safety_stock_days, 0.0)
    shortfall = target_stock - current_stock

    if allows_fractional:
        quantity = max(0.0, round(shortfall, 3))
    else:
        # Tolerance keeps float noise such as 24.000000001 from rounding up.
        quantity = float(max(0, math.ceil(shortfall - EPSILON)))

    if max_stock is not None:
        headroom = max(0.0, max_stock - max(current_stock, 0.0))
        if not allows_fractional:
            headroom = float(math.floor(headroom + EPSILON))
        quantity = min(quantity, headroom)

    return max(0.0, quantity)


def score_confidence(
    observed_days: int,
    analysis_period_days: int,
    coefficient_of_variation: float,
) -> int:
    """Rate reliability from data coverage and demand stability, 0-100."""

    if analysis_period_days <= 0 or observed_days <= 0:
        return 0
    coverage = min(1.0, observed_days / analysis_period_days)
    stability = 1.0 / (1.0 + max(coefficient_of_variation, 0.0))
    return int(min(100, max(0, round(100.0 * coverage * stability))))


def _data_status(series: SalesDailySeries) -> str:
    if series.lookup_failed:
        return "history_unavailable"
    if series.observed_days == 0:
        return "no_data"
    return "ok"


def build_suggestion(
    product: Product,
    series: SalesDailySeries,
    analysis_period_days: int,
    safety_stock_days: float,
    policy: ReorderPolicy | None = None,
) -> ReorderSuggestion:
    """Combine velocity, stock status, urgency, quantity and confidence."""

    policy = policy or ReorderPolicy()
    velocity = estimate_velocity(series.quantities, analysis_period_days)
    days_remaining = days_of_stock_remaining(
        product.current_stock, velocity.average_daily_sales, policy.days_unbounded
    )
    urgency = classify_urgency(product.current_stock, days_remaining, safety_stock_days, policy)
    quantity = recommend_quantity(
        product.current_stock,
        product.reorder_level,
        velocity.average_daily_sales,
        safety_stock_days,
        max_stock=product.max_stock,
        allows_fractional=product.allows_fractional,
    )
    confidence = score_confidence(
        series.observed_days, analysis_period_days, velocity.coefficient_of_variation
    )

    return ReorderSuggestion(
        product_id=product.id,
        product_name=product.name,
        product_code=product.code,
        barcode=product.barcode,
        category=product.category_name,
        category_id=product.category_id,
        supplier=product.supplier_name,
        supplier_id=product.supplier_id,
        current_stock=product.current_stock,
        reorder_level=product.reorder_level,
        max_stock=product.max_stock,
        cost_price=product.cost_price,
        is_active=product.is_active,
        allows_fractional=product.allows_fractional,
        average_daily_sales=velocity.average_daily_sales,
        sales_velocity=velocity.average_daily_sales,
        coefficient_of_variation=velocity.coefficient_of_variation,
        days_of_stock_remaining=days_remaining,
        recommended_quantity=quantity,
        urgency=urgency,
        last_sale_date=series.last_sale_date,
        confidence=confidence,
        data_status=_data_status(series),
    )


# ---------------------------------------------------------------------------
# Suggestion aggregation


def sort_suggestions(suggestions: Iterable[ReorderSuggestion]) -> List[ReorderSuggestion]:
    """Most urgent first, then soonest stockout, then product id."""

    return sorted(
        suggestions,
        key=lambda s: (-s.urgency.severity, s.days_of_stock_remaining, s.product_id),
    )


def filter_suggestions(
    suggestions: Iterable[ReorderSuggestion],
    options: ReorderSuggestionOptions,
) -> List[ReorderSuggestion]:
    """Apply the option filters to an already materialised suggestion list."""

    allowed = set(options.urgency_filter) if options.urgency_filter is not None else None
    kept: List[ReorderSuggestion] = []
    for suggestion in suggestions:
        if not options.include_inactive and not suggestion.is_active:
            continue
        if allowed is not None and suggestion.urgency not in allowed:
            continue
        if options.supplier_id is not None and suggestion.supplier_id != options.supplier_id:
            continue
        if options.category_id is not None and suggestion.category_id != options.category_id:
            continue
        if (
            options.min_days_of_stock is not None
            and suggestion.days_of_stock_remaining < options.min_days_of_stock
        ):
            continue
        if (
            options.max_days_of_stock is not None
            and suggestion.days_of_stock_remaining > options.max_days_of_stock
        ):
            continue
        kept.append(suggestion)
    return sort_suggestions(kept)


def summarise_suggestions(suggestions: Iterable[ReorderSuggestion]) -> ReorderSuggestionSummary:
    """Fold suggestions into tier counts and the value of recommended orders."""

    counts = {urgency: 0 for urgency in Urgency}
    total_value = 0.0
    for suggestion in suggestions:
        counts[suggestion.urgency] += 1
        if suggestion.cost_price is not None and suggestion.cost_price > 0:
            total_value += suggestion.recommended_quantity * suggestion.cost_price

    return ReorderSuggestionSummary(
        total=sum(counts.values()),
        critical=counts[Urgency.CRITICAL],
        high=counts[Urgency.HIGH],
        medium=counts[Urgency.MEDIUM],
        low=counts[Urgency.LOW],
        total_recommended_value=round(total_value, 2),
    )


def coerce_options(options: object, model: Type[_OptionsT]) -> _OptionsT:
    """Validate caller options, turning validation failures into input errors."""

    if options is None:
        return model()
    if isinstance(options, model):
        return options
    if isinstance(options, BaseModel):
        options = options.model_dump()
    try:
        return model.model_validate(options)
    except ValidationError as exc:
        raise ReorderInputError(
            "Invalid reorder suggestion options.",
            code="invalid_options",
            details=exc.errors(include_url=False, include_context=False),
        ) from exc


# ---------------------------------------------------------------------------
# Service


class ReorderSuggestionService:
    """Stateless reorder engine over the product and sales collaborators."""

    def __init__(
        self,
        product_repository: ProductRepository,
        sales_repository: SalesHistoryRepository,
        policy: ReorderPolicy | None = None,
        timezone: str = "UTC",
        forecasting_service: Optional["ForecastingService"] = None,
    ) -> None:
        self.products = product_repository
        self.policy = policy or ReorderPolicy()
        self.timezone = timezone
        self.history = SalesHistoryAggregator(
            sales_repository,
            timeout_seconds=self.policy.history_timeout_seconds,
            timezone=timezone,
        )
        if forecasting_service is None:
            from .forecasting_service import ForecastingService

            forecasting_service = ForecastingService(self.history, policy=self.policy)
        self.forecasting = forecasting_service

    # ------------------------------------------------------------------
    def _now(self, now: datetime | pd.Timestamp | None) -> pd.Timestamp:
        if now is None:
            return pd.Timestamp.now(tz=self.timezone)
        stamp = pd.Timestamp(now)
        return stamp.tz_localize(self.timezone) if stamp.tzinfo is None else stamp

    async def _list_products(self, filters: ProductFilters) -> List[Product]:
        return await asyncio.wait_for(
            self.products.list_active_products(filters),
            timeout=self.policy.product_timeout_seconds,
        )

    async def _suggest_one(
        self,
        product: Product,
        analysis_period_days: int,
        safety_stock_days: float,
        now: pd.Timestamp,
        semaphore: asyncio.Semaphore,
    ) -> ReorderSuggestion:
        async with semaphore:
            series = await self.history.daily_series(product.id, analysis_period_days, now)
        try:
            return build_suggestion(
                product, series, analysis_period_days, safety_stock_days, self.policy
            )
        except Exception:
            LOGGER.exception(
                "Unable to compute suggestion for product_id=%s; emitting a no-data suggestion",
                product.id,
            )
            window_start, window_end = analysis_window(now, analysis_period_days, self.timezone)
            fallback = empty_series(product.id, window_start, window_end, lookup_failed=True)
            return build_suggestion(
                product, fallback, analysis_period_days, safety_stock_days, self.policy
            )

    async def compute_suggestions(
        self,
        products: Sequence[Product],
        analysis_period_days: int,
        safety_stock_days: float,
        now: datetime | pd.Timestamp | None = None,
    ) -> List[ReorderSuggestion]:
        """Compute one suggestion per product with bounded concurrency."""

        stamp = self._now(now)
        semaphore = asyncio.Semaphore(self.policy.history_concurrency)
        results = await asyncio.gather(
            *[
                self._suggest_one(product, analysis_period_days, safety_stock_days, stamp, semaphore)
                for product in products
            ]
        )
        return sort_suggestions(results)

    # ------------------------------------------------------------------
    async def get_suggestions(
        self,
        options: ReorderSuggestionOptions | dict | None = None,
        now: datetime | pd.Timestamp | None = None,
    ) -> List[ReorderSuggestion]:
        """Return filtered suggestions, most urgent first."""

        opts = coerce_options(options, ReorderSuggestionOptions)
        products = await self._list_products(
            ProductFilters(
                include_inactive=opts.include_inactive,
                supplier_id=opts.supplier_id,
                category_id=opts.category_id,
            )
        )
        suggestions = await self.compute_suggestions(
            products, opts.analysis_period_days, opts.safety_stock_days, now
        )
        filtered = filter_suggestions(suggestions, opts)
        LOGGER.info(
            "Computed %d reorder suggestions (%d after filters)", len(suggestions), len(filtered)
        )
        return filtered

    async def get_summary(
        self,
        options: ReorderSuggestionOptions | dict | None = None,
        now: datetime | pd.Timestamp | None = None,
    ) -> ReorderSuggestionSummary:
        return summarise_suggestions(await self.get_suggestions(options, now))

    async def get_product_suggestion(
        self,
        product_id: int,
        analysis_period_days: int = 30,
        safety_stock_days: float = 7,
        now: datetime | pd.Timestamp | None = None,
    ) -> Optional[ReorderSuggestion]:
        """Return the unfiltered suggestion for one product, or ``None``."""

        opts = coerce_options(
            {
                "analysis_period_days": analysis_period_days,
                "safety_stock_days": safety_stock_days,
            },
            ReorderSuggestionOptions,
        )
        product = await asyncio.wait_for(
            self.products.get_product(product_id),
            timeout=self.policy.product_timeout_seconds,
        )
        if product is None:
            return None
        suggestions = await self.compute_suggestions(
            [product], opts.analysis_period_days, opts.safety_stock_days, now
        )
        return suggestions[0]

    async def get_products_needing_reorder(
        self,
        supplier_id: Optional[int] = None,
        category_id: Optional[int] = None,
        now: datetime | pd.Timestamp | None = None,
    ) -> List[ReorderSuggestion]:
        return await self.get_suggestions(
            ReorderSuggestionOptions(
                supplier_id=supplier_id,
                category_id=category_id,
                urgency_filter=[Urgency.CRITICAL, Urgency.HIGH],
            ),
            now,
        )

    async def get_ml_suggestions(
        self,
        options: MLReorderSuggestionOptions | dict | None = None,
        now: datetime | pd.Timestamp | None = None,
    ) -> List[MLReorderSuggestion]:
        """Return filtered suggestions enriched by the trend/seasonality forecaster."""

        opts = coerce_options(options, MLReorderSuggestionOptions)
        stamp = self._now(now)
        base = await self.get_suggestions(
            ReorderSuggestionOptions.model_validate(
                opts.model_dump(include=set(ReorderSuggestionOptions.model_fields))
            ),
            stamp,
        )
        return await self.forecasting.enhance_suggestions(base, opts, stamp)

    async def suggestions_for_products(
        self,
        product_ids: Sequence[int],
        options: ReorderSuggestionOptions | dict | None = None,
        now: datetime | pd.Timestamp | None = None,
    ) -> Tuple[List[ReorderSuggestion], List[int]]:
        """Recompute suggestions for specific products.

        Returns the suggestions plus the ids that could not be found.
        """

        opts = coerce_options(options, ReorderSuggestionOptions)
        unique_ids = list(dict.fromkeys(int(pid) for pid in product_ids))
        found: List[Product] = []
        missing: List[int] = []
        for product_id in unique_ids:
            try:
                product = await asyncio.wait_for(
                    self.products.get_product(product_id),
                    timeout=self.policy.product_timeout_seconds,
                )
            except Exception as exc:
                LOGGER.warning("Product lookup failed for product_id=%s: %s", product_id, exc)
                product = None
            if product is None:
                missing.append(product_id)
            else:
                found.append(product)

        suggestions = await self.compute_suggestions(
            found, opts.analysis_period_days, opts.safety_stock_days, now
        )
        return suggestions, missing

