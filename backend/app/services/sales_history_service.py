r"""backend\app\services\sales_history_service.py

Sales history: the file-backed sales log collaborator and the aggregator that
turns raw transaction lines into dense per-day series for the reorder engine.
"""

from __future__ import annotations

import asyncio
import logging
import os
import threading
from datetime import date, datetime, timedelta
from pathlib import Path
from typing import Optional, Tuple

import numpy as np
import pandas as pd

from ..core.observability import HISTORY_FAILURES
from ..models.schemas import SalesDailySeries
from .collaborators import SalesHistoryRepository
from .io_utils import missing_columns, parquet_sibling, prefer_parquet, table_exists

LOGGER = logging.getLogger(__name__)

SALES_COLUMNS = ["product_id", "sold_at", "quantity", "status", "type"]
REQUIRED_SALES_COLUMNS = ["product_id", "sold_at", "quantity"]
COMPLETED_STATUS = "completed"
SALE_TYPE = "sale"


# ---------------------------------------------------------------------------
# Helper utilities (kept top-level for straightforward unit testing)


def analysis_window(now: datetime | pd.Timestamp, days: int, timezone: str = "UTC") -> Tuple[date, date]:
    """Return ``(window_start, window_end)`` covering ``days`` whole days.

    The window ends with the local calendar day of ``now`` (inclusive), so
    ``window_end`` is exclusive and ``window_end - window_start == days``.
    """

    if days <= 0:
        raise ValueError("analysis window must cover at least one day")
    stamp = pd.Timestamp(now)
    stamp = stamp.tz_localize(timezone) if stamp.tzinfo is None else stamp.tz_convert(timezone)
    window_end = stamp.date() + timedelta(days=1)
    return window_end - timedelta(days=days), window_end


def _day_index(window_start: date, window_end: date) -> pd.DatetimeIndex:
    return pd.date_range(window_start, window_end - timedelta(days=1), freq="D", name="day")


def empty_series(
    product_id: int,
    window_start: date,
    window_end: date,
    *,
    lookup_failed: bool = False,
) -> SalesDailySeries:
    """Return an all-zero, all-unobserved series for the window."""

    index = _day_index(window_start, window_end)
    return SalesDailySeries(
        product_id=product_id,
        window_start=window_start,
        window_end=window_end,
        quantities=pd.Series(np.zeros(len(index)), index=index, dtype=float),
        observed=pd.Series(np.zeros(len(index), dtype=bool), index=index),
        last_sale_date=None,
        lookup_failed=lookup_failed,
    )


def build_daily_series(
    lines: pd.DataFrame,
    product_id: int,
    window_start: date,
    window_end: date,
    timezone: str = "UTC",
) -> SalesDailySeries:
    """Reduce raw sale lines into a dense daily series.

    Only completed sales count when ``status``/``type`` columns are present.
    Lines are bucketed by their local calendar day; days without lines are
    zero and unobserved.
    """

    if lines.empty:
        return empty_series(product_id, window_start, window_end)

    frame = lines[lines["product_id"] == product_id]
    if "status" in frame.columns:
        frame = frame[frame["status"].astype(str).str.lower() == COMPLETED_STATUS]
    if "type" in frame.columns:
        frame = frame[frame["type"].astype(str).str.lower() == SALE_TYPE]
    if frame.empty:
        return empty_series(product_id, window_start, window_end)

    sold_at = pd.to_datetime(frame["sold_at"], errors="coerce", utc=True)
    local_day = sold_at.dt.tz_convert(timezone).dt.tz_localize(None).dt.normalize()
    quantities = pd.to_numeric(frame["quantity"], errors="coerce").fillna(0.0)

    in_window = (local_day >= pd.Timestamp(window_start)) & (local_day < pd.Timestamp(window_end))
    if not in_window.any():
        return empty_series(product_id, window_start, window_end)

    daily = quantities[in_window].groupby(local_day[in_window]).sum()
    index = _day_index(window_start, window_end)
    dense = daily.reindex(index, fill_value=0.0).astype(float)
    dense.index.name = "day"
    observed = pd.Series(index.isin(daily.index), index=index)

    last_sale = sold_at[in_window].max()
    return SalesDailySeries(
        product_id=product_id,
        window_start=window_start,
        window_end=window_end,
        quantities=dense,
        observed=observed,
        last_sale_date=last_sale.to_pydatetime() if pd.notna(last_sale) else None,
    )


def _local_days(index: pd.Index, timezone: str) -> pd.DatetimeIndex:
    days = pd.DatetimeIndex(index)
    if days.tz is not None:
        days = days.tz_convert(timezone).tz_localize(None)
    return days.normalize()


def conform_series(
    series: SalesDailySeries,
    window_start: date,
    window_end: date,
    timezone: str = "UTC",
) -> SalesDailySeries:
    """Reindex a collaborator-supplied series onto the requested dense window.

    Timezone-aware indexes are converted to local days first; entries that
    land on the same local day are summed (quantities) or OR-ed (observed).
    """

    index = _day_index(window_start, window_end)
    quantities = series.quantities.astype(float)
    observed = series.observed.astype(bool)
    quantities = quantities.groupby(_local_days(quantities.index, timezone)).sum()
    observed = observed.groupby(_local_days(observed.index, timezone)).any()
    return SalesDailySeries(
        product_id=series.product_id,
        window_start=window_start,
        window_end=window_end,
        quantities=quantities.reindex(index, fill_value=0.0).fillna(0.0).astype(float),
        observed=observed.reindex(index, fill_value=False).fillna(False).astype(bool),
        last_sale_date=series.last_sale_date,
        lookup_failed=series.lookup_failed,
    )


# ---------------------------------------------------------------------------
# File-backed sales log collaborator


class SalesLogService:
    """Serve daily sales from ``sales_lines.csv`` (or its Parquet sibling)."""

    def __init__(self, data_root: str = "data", timezone: str = "UTC") -> None:
        self.data_root = Path(os.getenv("DATA_DIR", data_root))
        self.timezone = timezone
        self._frame: Optional[pd.DataFrame] = None
        self._loaded_mtime: Optional[float] = None
        self._lock = threading.Lock()

    def _sales_path(self) -> Path:
        return self.data_root / "sales_lines.csv"

    def data_files_present(self) -> bool:
        return table_exists(self._sales_path())

    def _current_mtime(self) -> Optional[float]:
        for candidate in (parquet_sibling(self._sales_path()), self._sales_path()):
            if candidate.exists():
                return candidate.stat().st_mtime
        return None

    def load_lines(self) -> pd.DataFrame:
        with self._lock:
            mtime = self._current_mtime()
            if mtime is None:
                LOGGER.debug("Sales log not found at %s; treating as no sales.", self._sales_path())
                return pd.DataFrame(columns=SALES_COLUMNS)
            if self._frame is not None and self._loaded_mtime == mtime:
                return self._frame

            frame = prefer_parquet(self._sales_path())
            absent = missing_columns(frame, REQUIRED_SALES_COLUMNS)
            if absent:
                raise ValueError(f"Sales log is missing required columns: {absent}")
            frame["product_id"] = pd.to_numeric(frame["product_id"], errors="coerce")
            frame = frame.dropna(subset=["product_id"])
            frame["product_id"] = frame["product_id"].astype(int)

            self._frame = frame
            self._loaded_mtime = mtime
            return frame

    def daily_sales(self, product_id: int, window_start: date, window_end: date) -> SalesDailySeries:
        return build_daily_series(
            self.load_lines(), product_id, window_start, window_end, timezone=self.timezone
        )

    async def get_daily_sales(
        self, product_id: int, window_start: date, window_end: date
    ) -> SalesDailySeries:
        return await asyncio.to_thread(self.daily_sales, product_id, window_start, window_end)


# ---------------------------------------------------------------------------
# Engine-side aggregator


class SalesHistoryAggregator:
    """Fetch a product's daily series, degrading any failure to an empty series."""

    def __init__(
        self,
        repository: SalesHistoryRepository,
        timeout_seconds: float = 5.0,
        timezone: str = "UTC",
    ) -> None:
        self.repository = repository
        self.timeout_seconds = timeout_seconds
        self.timezone = timezone

    async def daily_series(
        self,
        product_id: int,
        analysis_period_days: int,
        now: datetime | pd.Timestamp,
    ) -> SalesDailySeries:
        window_start, window_end = analysis_window(now, analysis_period_days, self.timezone)
        try:
            series = await asyncio.wait_for(
                self.repository.get_daily_sales(product_id, window_start, window_end),
                timeout=self.timeout_seconds,
            )
        except asyncio.TimeoutError:
            LOGGER.warning(
                "Sales history lookup timed out after %.1fs for product_id=%s",
                self.timeout_seconds,
                product_id,
            )
            HISTORY_FAILURES.labels("timeout").inc()
            return empty_series(product_id, window_start, window_end, lookup_failed=True)
        except Exception as exc:
            LOGGER.warning("Sales history lookup failed for product_id=%s: %s", product_id, exc)
            HISTORY_FAILURES.labels("error").inc()
            return empty_series(product_id, window_start, window_end, lookup_failed=True)

        if series is None:
            return empty_series(product_id, window_start, window_end)
        try:
            return conform_series(series, window_start, window_end, self.timezone)
        except (AttributeError, TypeError, ValueError) as exc:
            LOGGER.warning("Malformed sales history for product_id=%s: %s", product_id, exc)
            HISTORY_FAILURES.labels("error").inc()
            return empty_series(product_id, window_start, window_end, lookup_failed=True)
