r"""backend\app\services\collaborators.py

Interfaces of the external systems the reorder engine depends on.

The engine never talks to storage directly: products, sales history and
purchase-order creation are reached through these protocols so that the
file-backed services shipped here can be swapped for a database or a remote
API without touching the suggestion logic.
"""

from __future__ import annotations

from datetime import date
from typing import List, Optional, Protocol, runtime_checkable

from ..models.schemas import (
    Product,
    ProductFilters,
    PurchaseOrderRequest,
    PurchaseOrderResult,
    SalesDailySeries,
)


@runtime_checkable
class ProductRepository(Protocol):
    async def get_product(self, product_id: int) -> Optional[Product]:
        ...

    async def list_active_products(self, filters: ProductFilters) -> List[Product]:
        ...


@runtime_checkable
class SalesHistoryRepository(Protocol):
    async def get_daily_sales(
        self, product_id: int, window_start: date, window_end: date
    ) -> SalesDailySeries:
        """Return the dense series; an empty series when there is no data."""
        ...


@runtime_checkable
class PurchaseOrderGateway(Protocol):
    async def create_purchase_order(self, request: PurchaseOrderRequest) -> PurchaseOrderResult:
        """Create one order atomically: every line commits or none does."""
        ...
