"""API endpoints for reading and updating configuration YAML files."""

from __future__ import annotations

import os
import shutil
import tempfile
from typing import Any, Dict, List, Optional

import yaml
from fastapi import APIRouter, HTTPException, status
from pydantic import BaseModel, ConfigDict, Field

from ...core.config import ReorderPolicy
from ...models.schemas import Urgency
from .dependencies import config_dir, reset_services

router = APIRouter()


def _settings_path() -> str:
    return os.path.join(config_dir(), "settings.yaml")


def _reorder_path() -> str:
    return os.path.join(config_dir(), "reorder.yaml")


def _load_yaml(path: str) -> Dict[str, Any]:
    with open(path, "r", encoding="utf-8") as handle:
        return yaml.safe_load(handle) or {}


def _safe_write_yaml(path: str, payload: Dict[str, Any]) -> None:
    directory = os.path.dirname(path) or "."
    os.makedirs(directory, exist_ok=True)

    fd, tmp_path = tempfile.mkstemp(
        prefix=".tmp-", suffix=".yaml", dir=directory
    )
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            yaml.safe_dump(payload, handle, sort_keys=False)
        shutil.move(tmp_path, path)
    finally:
        if os.path.exists(tmp_path):
            os.unlink(tmp_path)


class SettingsUpdate(BaseModel):
    """Default suggestion options applied when a request omits them."""

    model_config = ConfigDict(extra="forbid")

    analysis_period_days: Optional[int] = Field(None, ge=1, le=365)
    safety_stock_days: Optional[float] = Field(None, ge=0, le=365)
    urgency_filter: Optional[List[Urgency]] = Field(None, min_length=1)
    include_inactive: Optional[bool] = None
    forecast_period_days: Optional[int] = Field(None, ge=1, le=180)
    min_data_points_for_ml: Optional[int] = Field(None, ge=2, le=365)
    enable_ml_predictions: Optional[bool] = None


class ReorderPolicyUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    critical_multiplier: Optional[float] = Field(None, gt=0)
    high_multiplier: Optional[float] = Field(None, gt=0)
    medium_multiplier: Optional[float] = Field(None, gt=0)
    days_unbounded: Optional[float] = Field(None, gt=0)
    trend_slope_threshold: Optional[float] = Field(None, ge=0)
    min_weekday_samples: Optional[int] = Field(None, ge=1)
    seasonal_factor_min: Optional[float] = Field(None, gt=0, le=1.0)
    seasonal_factor_max: Optional[float] = Field(None, ge=1.0)
    history_concurrency: Optional[int] = Field(None, ge=1, le=256)
    supplier_concurrency: Optional[int] = Field(None, ge=1, le=64)
    history_timeout_seconds: Optional[float] = Field(None, gt=0)
    product_timeout_seconds: Optional[float] = Field(None, gt=0)
    order_timeout_seconds: Optional[float] = Field(None, gt=0)


def _merge_updates(original: Dict[str, Any], updates: Dict[str, Any]) -> Dict[str, Any]:
    result = original.copy()
    result.update({k: v for k, v in updates.items() if v is not None})
    return result


def _write_or_500(path: str, payload: Dict[str, Any]) -> None:
    try:
        _safe_write_yaml(path, payload)
    except OSError as exc:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"error": "write_failed", "message": str(exc)},
        ) from exc
    reset_services()


@router.get("/configs/settings")
def get_settings() -> Dict[str, Any]:
    try:
        return _load_yaml(_settings_path())
    except FileNotFoundError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={
                "error": "not_found",
                "message": "settings.yaml not found",
            },
        ) from exc


@router.put("/configs/settings")
def put_settings(body: SettingsUpdate) -> Dict[str, Any]:
    try:
        current = _load_yaml(_settings_path())
    except FileNotFoundError:
        current = {}

    updated = _merge_updates(current, body.model_dump(mode="json", exclude_none=True))
    if updated == current:
        return current

    _write_or_500(_settings_path(), updated)
    return updated


@router.get("/configs/reorder")
def get_reorder_policy() -> Dict[str, Any]:
    """Return the effective engine policy: file values merged over defaults."""

    try:
        current = _load_yaml(_reorder_path())
    except FileNotFoundError:
        current = {}
    return ReorderPolicy.from_mapping(current).as_dict()


@router.put("/configs/reorder")
def put_reorder_policy(body: ReorderPolicyUpdate) -> Dict[str, Any]:
    try:
        current = _load_yaml(_reorder_path())
    except FileNotFoundError:
        current = {}

    updated = _merge_updates(current, body.model_dump(exclude_none=True))
    try:
        policy = ReorderPolicy.from_mapping(updated)
    except ValueError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"error": "invalid_policy", "message": str(exc)},
        ) from exc

    if updated != current:
        _write_or_500(_reorder_path(), updated)
    return policy.as_dict()
