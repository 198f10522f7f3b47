r"""backend/tests/stubs.py

In-memory collaborators shared by the engine and API tests."""

from __future__ import annotations

import asyncio
import sys
from datetime import date, timedelta
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence

import numpy as np
import pandas as pd

ROOT = Path(__file__).resolve().parents[2]
if str(ROOT) not in sys.path:
    sys.path.append(str(ROOT))

from backend.app.models.schemas import (  # noqa: E402
    Product,
    ProductFilters,
    PurchaseOrderRequest,
    PurchaseOrderResult,
    ReorderSuggestion,
    SalesDailySeries,
    Urgency,
)

# A Friday, so weekday-dependent tests have a fixed anchor.
NOW = pd.Timestamp("2024-03-15 12:00", tz="UTC")


def make_product(product_id: int, **overrides) -> Product:
    values = {
        "id": product_id,
        "name": f"Product {product_id}",
        "code": f"P-{product_id:03d}",
        "supplier_id": 1,
        "supplier_name": "Acme Wholesale",
        "category_id": 10,
        "category_name": "Groceries",
        "current_stock": 100.0,
        "reorder_level": 10.0,
        "cost_price": 2.5,
    }
    values.update(overrides)
    return Product(**values)


def make_suggestion(product_id: int, **overrides) -> ReorderSuggestion:
    values = {
        "product_id": product_id,
        "product_name": f"Product {product_id}",
        "supplier_id": 1,
        "supplier": "Acme Wholesale",
        "current_stock": 0.0,
        "reorder_level": 10.0,
        "cost_price": 2.5,
        "average_daily_sales": 2.0,
        "sales_velocity": 2.0,
        "days_of_stock_remaining": 0.0,
        "recommended_quantity": 24.0,
        "urgency": Urgency.CRITICAL,
        "confidence": 80,
    }
    values.update(overrides)
    return ReorderSuggestion(**values)


def dense_series(
    product_id: int,
    window_start: date,
    window_end: date,
    values: Sequence[float],
) -> SalesDailySeries:
    """Align ``values`` to the end of the window, zero-padding the front."""

    index = pd.date_range(window_start, window_end - timedelta(days=1), freq="D", name="day")
    tail = np.asarray(list(values)[-len(index):], dtype=float)
    padded = np.concatenate([np.zeros(len(index) - len(tail)), tail])
    quantities = pd.Series(padded, index=index)
    return SalesDailySeries(
        product_id=product_id,
        window_start=window_start,
        window_end=window_end,
        quantities=quantities,
        observed=quantities > 0,
        last_sale_date=None,
    )


class StubProducts:
    def __init__(self, products: Iterable[Product], failing_ids: Iterable[int] = ()) -> None:
        self.products: Dict[int, Product] = {p.id: p for p in products}
        self.failing_ids = set(failing_ids)
        self.get_calls: List[int] = []
        self.list_calls = 0

    async def get_product(self, product_id: int) -> Optional[Product]:
        self.get_calls.append(product_id)
        if product_id in self.failing_ids:
            raise RuntimeError("catalog offline")
        return self.products.get(product_id)

    async def list_active_products(self, filters: ProductFilters) -> List[Product]:
        self.list_calls += 1
        products = list(self.products.values())
        if not filters.include_inactive:
            products = [p for p in products if p.is_active]
        if filters.supplier_id is not None:
            products = [p for p in products if p.supplier_id == filters.supplier_id]
        if filters.category_id is not None:
            products = [p for p in products if p.category_id == filters.category_id]
        return products


class StubSales:
    def __init__(
        self,
        daily: Dict[int, Sequence[float]] | None = None,
        failing_ids: Iterable[int] = (),
        slow_ids: Iterable[int] = (),
        delay: float = 1.0,
    ) -> None:
        self.daily = daily or {}
        self.failing_ids = set(failing_ids)
        self.slow_ids = set(slow_ids)
        self.delay = delay
        self.calls: List[tuple] = []

    async def get_daily_sales(self, product_id: int, window_start: date, window_end: date):
        self.calls.append((product_id, window_start, window_end))
        if product_id in self.slow_ids:
            await asyncio.sleep(self.delay)
        if product_id in self.failing_ids:
            raise RuntimeError("sales log unavailable")
        values = self.daily.get(product_id)
        if values is None:
            return None
        return dense_series(product_id, window_start, window_end, values)


class StubGateway:
    def __init__(
        self,
        rejected_suppliers: Iterable[int] = (),
        raising_suppliers: Iterable[int] = (),
        slow_suppliers: Iterable[int] = (),
        delay: float = 1.0,
    ) -> None:
        self.rejected = set(rejected_suppliers)
        self.raising = set(raising_suppliers)
        self.slow = set(slow_suppliers)
        self.delay = delay
        self.requests: List[PurchaseOrderRequest] = []
        self.committed: List[str] = []

    async def create_purchase_order(self, request: PurchaseOrderRequest) -> PurchaseOrderResult:
        self.requests.append(request)
        if request.supplier_id in self.slow:
            await asyncio.sleep(self.delay)
        if request.supplier_id in self.raising:
            raise ConnectionError("supplier API unreachable")
        if request.supplier_id in self.rejected:
            return PurchaseOrderResult(success=False, error="rejected by storage")
        order_id = f"PO-{request.supplier_id}-{len(self.requests)}"
        self.committed.append(order_id)
        return PurchaseOrderResult(success=True, order_id=order_id)
