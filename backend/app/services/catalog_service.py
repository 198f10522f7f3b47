r"""backend\app\services\catalog_service.py

File-backed product catalog used as the engine's product collaborator."""

from __future__ import annotations

import asyncio
import logging
import os
import threading
from pathlib import Path
from typing import Any, Dict, List, Optional

import pandas as pd

from ..models.schemas import Product, ProductFilters
from .io_utils import missing_columns, parquet_sibling, prefer_parquet, table_exists

LOGGER = logging.getLogger(__name__)

PRODUCT_COLUMNS = [
    "id",
    "name",
    "code",
    "barcode",
    "category_id",
    "category_name",
    "supplier_id",
    "supplier_name",
    "current_stock",
    "reorder_level",
    "max_stock",
    "cost_price",
    "selling_price",
    "currency",
    "is_active",
    "allows_fractional",
]
REQUIRED_PRODUCT_COLUMNS = ["id", "name", "current_stock", "reorder_level"]

_BOOL_TRUE = {"1", "true", "yes", "y", "t"}


class CatalogService:
    """Serve product snapshots from ``products.csv`` (or its Parquet sibling).

    The frame is cached and reloaded whenever the underlying file changes, so
    ``get_product`` always reflects the latest stock and cost price on disk.
    """

    def __init__(self, data_root: str = "data") -> None:
        self.data_root = Path(os.getenv("DATA_DIR", data_root))
        self._frame: Optional[pd.DataFrame] = None
        self._loaded_mtime: Optional[float] = None
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    def _products_path(self) -> Path:
        return self.data_root / "products.csv"

    def data_files_present(self) -> bool:
        return table_exists(self._products_path())

    def _current_mtime(self) -> Optional[float]:
        for candidate in (parquet_sibling(self._products_path()), self._products_path()):
            if candidate.exists():
                return candidate.stat().st_mtime
        return None

    # ------------------------------------------------------------------
    def load_products(self) -> pd.DataFrame:
        """Return the catalog frame, reloading it when the file changed."""

        with self._lock:
            mtime = self._current_mtime()
            if mtime is None:
                raise FileNotFoundError(f"Product catalog not found at {self._products_path()}")
            if self._frame is not None and self._loaded_mtime == mtime:
                return self._frame

            frame = prefer_parquet(self._products_path())
            absent = missing_columns(frame, REQUIRED_PRODUCT_COLUMNS)
            if absent:
                raise ValueError(f"Product catalog is missing required columns: {absent}")
            for column in PRODUCT_COLUMNS:
                if column not in frame.columns:
                    frame[column] = pd.NA
            frame = frame[PRODUCT_COLUMNS].copy()
            frame["id"] = pd.to_numeric(frame["id"], errors="coerce")
            frame = frame.dropna(subset=["id"])
            frame["id"] = frame["id"].astype(int)
            frame = frame.drop_duplicates(subset="id", keep="last").set_index("id", drop=False)

            self._frame = frame
            self._loaded_mtime = mtime
            LOGGER.debug("Loaded %d products from %s", len(frame), self._products_path())
            return frame

    # ------------------------------------------------------------------
    @staticmethod
    def _clean(value: Any) -> Any:
        if value is None:
            return None
        try:
            if pd.isna(value):
                return None
        except (TypeError, ValueError):
            pass
        return value

    @staticmethod
    def _as_bool(value: Any, default: bool) -> bool:
        if value is None:
            return default
        if isinstance(value, str):
            return value.strip().lower() in _BOOL_TRUE
        return bool(value)

    @classmethod
    def _optional_int(cls, value: Any) -> Optional[int]:
        value = cls._clean(value)
        return int(float(value)) if value is not None else None

    @classmethod
    def _optional_float(cls, value: Any) -> Optional[float]:
        value = cls._clean(value)
        return float(value) if value is not None else None

    @classmethod
    def _optional_str(cls, value: Any) -> Optional[str]:
        value = cls._clean(value)
        return str(value) if value is not None else None

    def _row_to_product(self, row: pd.Series) -> Product:
        raw: Dict[str, Any] = {col: self._clean(row.get(col)) for col in PRODUCT_COLUMNS}
        return Product(
            id=int(raw["id"]),
            name=str(raw["name"] or f"Product {raw['id']}"),
            code=self._optional_str(raw["code"]),
            barcode=self._optional_str(raw["barcode"]),
            category_id=self._optional_int(raw["category_id"]),
            category_name=self._optional_str(raw["category_name"]),
            supplier_id=self._optional_int(raw["supplier_id"]),
            supplier_name=self._optional_str(raw["supplier_name"]),
            current_stock=self._optional_float(raw["current_stock"]) or 0.0,
            reorder_level=self._optional_float(raw["reorder_level"]) or 0.0,
            max_stock=self._optional_float(raw["max_stock"]),
            cost_price=self._optional_float(raw["cost_price"]),
            selling_price=self._optional_float(raw["selling_price"]),
            currency=self._optional_str(raw["currency"]) or "USD",
            is_active=self._as_bool(raw["is_active"], True),
            allows_fractional=self._as_bool(raw["allows_fractional"], False),
        )

    # ------------------------------------------------------------------
    def find_product(self, product_id: int) -> Optional[Product]:
        frame = self.load_products()
        if int(product_id) not in frame.index:
            return None
        return self._row_to_product(frame.loc[int(product_id)])

    def find_products(self, filters: ProductFilters) -> List[Product]:
        frame = self.load_products()
        products = [self._row_to_product(row) for _, row in frame.iterrows()]
        if not filters.include_inactive:
            products = [p for p in products if p.is_active]
        if filters.supplier_id is not None:
            products = [p for p in products if p.supplier_id == filters.supplier_id]
        if filters.category_id is not None:
            products = [p for p in products if p.category_id == filters.category_id]
        return sorted(products, key=lambda p: p.id)

    # ------------------------------------------------------------------
    async def get_product(self, product_id: int) -> Optional[Product]:
        return await asyncio.to_thread(self.find_product, product_id)

    async def list_active_products(self, filters: ProductFilters) -> List[Product]:
        return await asyncio.to_thread(self.find_products, filters)
