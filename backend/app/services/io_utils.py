from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, Iterable, Optional

import pandas as pd


def parquet_sibling(csv_path: str | Path) -> Path:
    return Path(csv_path).with_suffix(".parquet")


def table_exists(csv_path: str | Path) -> bool:
    """Return ``True`` when either the CSV or its Parquet sibling exists."""

    path = Path(csv_path)
    return path.exists() or parquet_sibling(path).exists()


def prefer_parquet(
    csv_path: str | Path,
    parquet_path: Optional[str | Path] = None,
    *,
    columns: Optional[Iterable[str]] = None,
    dtype: Optional[Dict[str, Any]] = None,
    parse_dates: Optional[Iterable[str]] = None,
    **csv_kwargs: Any,
) -> pd.DataFrame:
    """Load a dataset preferring Parquet with CSV fallback.

    Parameters
    ----------
    csv_path:
        Location of the canonical CSV file.
    parquet_path:
        Optional explicit Parquet path. When omitted we look for ``<csv>.parquet``.
    columns:
        Optional list/iterable of columns to read. Forwarded to the Parquet
        reader when available and mapped to ``usecols`` for CSV reads.
    dtype:
        Optional dtype mapping applied to the CSV fallback.
    parse_dates:
        Columns converted with :func:`pandas.to_datetime` after loading,
        whichever format was read.
    csv_kwargs:
        Additional keyword arguments forwarded to :func:`pandas.read_csv`.
    """

    csv_path = Path(csv_path)
    pq_path = Path(parquet_path) if parquet_path is not None else parquet_sibling(csv_path)

    column_list = list(columns) if columns is not None else None
    date_columns = list(parse_dates) if parse_dates is not None else []

    if pq_path.exists():
        frame = pd.read_parquet(pq_path, columns=column_list)
    else:
        if not csv_path.exists():
            raise FileNotFoundError(f"Dataset not found at {csv_path}")
        if column_list is not None and "usecols" not in csv_kwargs:
            csv_kwargs["usecols"] = column_list
        if dtype is not None and "dtype" not in csv_kwargs:
            csv_kwargs["dtype"] = dtype
        frame = pd.read_csv(csv_path, **csv_kwargs)

    for column in date_columns:
        if column in frame.columns:
            frame[column] = pd.to_datetime(frame[column], errors="coerce", utc=True)
    return frame


def missing_columns(frame: pd.DataFrame, required: Iterable[str]) -> list[str]:
    return [column for column in required if column not in frame.columns]
