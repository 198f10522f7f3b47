r"""backend\app\services\validation_service.py"""

from __future__ import annotations

import os
from pathlib import Path

import pandas as pd

from .catalog_service import REQUIRED_PRODUCT_COLUMNS
from .io_utils import parquet_sibling
from .sales_history_service import REQUIRED_SALES_COLUMNS


def _read_header(path: Path) -> list[str] | None:
    parquet_path = parquet_sibling(path)
    if parquet_path.exists():
        return list(pd.read_parquet(parquet_path).columns)
    if path.exists():
        return list(pd.read_csv(path, nrows=3).columns)
    return None


class ValidationService:
    def __init__(self, data_root: str | None = None):
        self.data_root = Path(data_root or os.getenv("DATA_DIR", "data"))

    def run(self) -> dict:
        checks = []

        def add(name: str, ok: bool, msg: str = "") -> None:
            checks.append({"name": name, "ok": bool(ok), "message": msg})

        products = self.data_root / "products.csv"
        sales = self.data_root / "sales_lines.csv"

        product_cols = _read_header(products)
        add("file_products_exists", product_cols is not None, str(products))
        if product_cols is not None:
            absent = [c for c in REQUIRED_PRODUCT_COLUMNS if c not in product_cols]
            add("products_columns_ok", not absent, f"missing: {absent}" if absent else "")

        # A missing sales log only means "no sales yet" and is not a failure.
        sales_cols = _read_header(sales)
        if sales_cols is None:
            add("file_sales_exists", True, f"{sales} not found; products will report no_data")
        else:
            add("file_sales_exists", True, str(sales))
            absent = [c for c in REQUIRED_SALES_COLUMNS if c not in sales_cols]
            add("sales_columns_ok", not absent, f"missing: {absent}" if absent else "")

        overall = all(x["ok"] for x in checks)
        return {"ok": overall, "checks": checks}
