r"""backend\app\models\schemas.py

Pydantic models used throughout the API and the reorder engine.

These models serve as both request payload validators and response
serialisation schemas.  Using typed models ensures that clients and
servers agree on the structure of the data being exchanged.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from enum import Enum
from typing import List, Literal, Optional

import pandas as pd
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class Urgency(str, Enum):
    """Urgency tiers ordered from most to least severe."""

    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @property
    def severity(self) -> int:
        """Higher value means more urgent."""
        return _SEVERITY[self]


_SEVERITY = {
    Urgency.CRITICAL: 3,
    Urgency.HIGH: 2,
    Urgency.MEDIUM: 1,
    Urgency.LOW: 0,
}

TrendDirection = Literal["increasing", "decreasing", "stable"]
DataStatus = Literal["ok", "no_data", "history_unavailable"]


# ---------------------------------------------------------------------------
# Catalog


class Product(BaseModel):
    """Snapshot of a catalog product with its stock position."""

    id: int
    name: str
    code: Optional[str] = None
    barcode: Optional[str] = None
    category_id: Optional[int] = None
    category_name: Optional[str] = None
    supplier_id: Optional[int] = None
    supplier_name: Optional[str] = None
    current_stock: float = 0.0
    reorder_level: float = 0.0
    max_stock: Optional[float] = None
    cost_price: Optional[float] = None
    selling_price: Optional[float] = None
    currency: str = "USD"
    is_active: bool = True
    allows_fractional: bool = Field(
        False, description="Whether the product is sold in fractional units (e.g. kg)"
    )


class ProductFilters(BaseModel):
    """Filters forwarded to the product collaborator."""

    include_inactive: bool = False
    supplier_id: Optional[int] = None
    category_id: Optional[int] = None


# ---------------------------------------------------------------------------
# Sales history


@dataclass(frozen=True)
class SalesDailySeries:
    """Dense per-day sales for one product over ``[window_start, window_end)``.

    ``quantities`` is indexed by calendar day and zero-filled; ``observed``
    flags the days that had at least one recorded sale line.
    """

    product_id: int
    window_start: date
    window_end: date
    quantities: pd.Series
    observed: pd.Series
    last_sale_date: Optional[datetime] = None
    lookup_failed: bool = False

    @property
    def observed_days(self) -> int:
        return int(self.observed.sum()) if not self.observed.empty else 0

    @property
    def total_quantity(self) -> float:
        return float(self.quantities.sum()) if not self.quantities.empty else 0.0

    def __len__(self) -> int:
        return len(self.quantities)


# ---------------------------------------------------------------------------
# Suggestions


class ReorderSuggestion(BaseModel):
    """Reorder recommendation for a single product; recomputed on every query."""

    model_config = ConfigDict(frozen=True)

    product_id: int
    product_name: str
    product_code: Optional[str] = None
    barcode: Optional[str] = None
    category: Optional[str] = None
    category_id: Optional[int] = None
    supplier: Optional[str] = None
    supplier_id: Optional[int] = None
    current_stock: float
    reorder_level: float
    max_stock: Optional[float] = None
    cost_price: Optional[float] = None
    is_active: bool = True
    allows_fractional: bool = False
    average_daily_sales: float = Field(..., ge=0)
    sales_velocity: float = Field(..., ge=0)
    coefficient_of_variation: float = Field(0.0, ge=0)
    days_of_stock_remaining: float = Field(..., ge=0)
    recommended_quantity: float = Field(..., ge=0)
    urgency: Urgency
    last_sale_date: Optional[datetime] = None
    confidence: int = Field(..., ge=0, le=100)
    data_status: DataStatus = "ok"


class MLReorderSuggestion(ReorderSuggestion):
    """Suggestion enriched with trend, seasonality and backtest accuracy."""

    ml_predicted_demand: float = Field(..., ge=0, description="Predicted units per day")
    seasonal_factor: float = Field(..., gt=0)
    trend_direction: TrendDirection
    trend_strength: float = Field(..., ge=0, le=1)
    pattern_confidence: int = Field(..., ge=0, le=100)
    forecast_accuracy: int = Field(..., ge=0, le=100)
    ml_confidence: int = Field(..., ge=0, le=100)
    ml_recommended_quantity: float = Field(..., ge=0)
    ml_applied: bool = False


class ReorderSuggestionSummary(BaseModel):
    """Roll-up of a filtered suggestion set."""

    total: int = 0
    critical: int = 0
    high: int = 0
    medium: int = 0
    low: int = 0
    total_recommended_value: float = 0.0


# ---------------------------------------------------------------------------
# Options

DEFAULT_URGENCY_FILTER: List[Urgency] = [Urgency.CRITICAL, Urgency.HIGH]


class ReorderSuggestionOptions(BaseModel):
    """Filters and policy knobs for a suggestion query."""

    model_config = ConfigDict(extra="forbid")

    include_inactive: bool = False
    urgency_filter: Optional[List[Urgency]] = Field(
        default_factory=lambda: list(DEFAULT_URGENCY_FILTER),
        description="Urgency tiers to keep; null keeps every tier",
    )
    supplier_id: Optional[int] = None
    category_id: Optional[int] = None
    analysis_period_days: int = Field(30, ge=1, le=365)
    safety_stock_days: float = Field(7, ge=0, le=365)
    min_days_of_stock: Optional[float] = Field(None, ge=0)
    max_days_of_stock: Optional[float] = Field(None, ge=0)

    @field_validator("urgency_filter")
    @classmethod
    def _dedupe_urgency(cls, value: Optional[List[Urgency]]) -> Optional[List[Urgency]]:
        if value is None:
            return None
        if not value:
            raise ValueError("urgency_filter must not be empty; use null to keep every tier")
        return list(dict.fromkeys(value))

    @model_validator(mode="after")
    def _check_days_range(self) -> "ReorderSuggestionOptions":
        if (
            self.min_days_of_stock is not None
            and self.max_days_of_stock is not None
            and self.min_days_of_stock > self.max_days_of_stock
        ):
            raise ValueError("min_days_of_stock must not exceed max_days_of_stock")
        return self


class MLReorderSuggestionOptions(ReorderSuggestionOptions):
    """Suggestion options plus the trend/seasonality forecaster knobs."""

    enable_ml_predictions: bool = False
    forecast_period_days: int = Field(14, ge=1, le=180)
    min_data_points_for_ml: int = Field(14, ge=2, le=365)


# ---------------------------------------------------------------------------
# Purchase orders


class PurchaseOrderItem(BaseModel):
    product_id: int
    quantity: float = Field(..., gt=0)
    unit_price: float = Field(..., gt=0)


class PurchaseOrderRequest(BaseModel):
    """Payload handed to the order-creation collaborator for one supplier."""

    supplier_id: int
    items: List[PurchaseOrderItem] = Field(..., min_length=1)
    requested_by: Optional[int] = None


class PurchaseOrderResult(BaseModel):
    success: bool
    order_id: Optional[str] = None
    error: Optional[str] = None


BatchStatus = Literal["full", "partial", "failed", "no_eligible_items"]


class PurchaseOrderBatchResult(BaseModel):
    """Outcome of turning selected suggestions into purchase orders."""

    success: bool
    status: BatchStatus
    created_count: int = 0
    failed_count: int = 0
    errors: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)
    order_ids: List[str] = Field(default_factory=list)
    message: str = ""
