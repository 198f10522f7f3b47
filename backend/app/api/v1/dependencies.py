r"""backend\app\api\v1\dependencies.py

Wiring of the file-backed collaborators into the engine services.

Services are built lazily on first use and rebuilt after a configuration
change.  Routes receive them through FastAPI dependencies, which tests
replace with ``app.dependency_overrides``.
"""

from __future__ import annotations

import os
import threading
from typing import Any, Dict, Optional, Type

from pydantic import BaseModel

from ...core.config import ReorderPolicy, get_settings, load_yaml
from ...services.catalog_service import CatalogService
from ...services.procurement_service import ProcurementService
from ...services.purchase_order_store import PurchaseOrderStore
from ...services.reorder_service import ReorderSuggestionService
from ...services.sales_history_service import SalesLogService

_lock = threading.Lock()
_services: Dict[str, Any] = {}


def config_dir() -> str:
    return os.getenv("CONFIG_DIR", get_settings().config_dir)


def _build() -> Dict[str, Any]:
    settings = get_settings()
    policy = ReorderPolicy.from_yaml(config_dir())
    catalog = CatalogService(settings.data_dir)
    sales_log = SalesLogService(settings.data_dir, timezone=settings.timezone)
    store = PurchaseOrderStore(settings.data_dir)
    suggestions = ReorderSuggestionService(
        catalog, sales_log, policy=policy, timezone=settings.timezone
    )
    return {
        "catalog": catalog,
        "store": store,
        "suggestions": suggestions,
        "procurement": ProcurementService(catalog, store, suggestions, policy),
    }


def _get(name: str) -> Any:
    with _lock:
        if not _services:
            _services.update(_build())
        return _services[name]


def reset_services() -> None:
    """Drop the cached services so the next request picks up new config."""

    with _lock:
        _services.clear()


def get_suggestion_service() -> ReorderSuggestionService:
    return _get("suggestions")


def get_procurement_service() -> ProcurementService:
    return _get("procurement")


def get_order_store() -> PurchaseOrderStore:
    return _get("store")


def option_defaults(model: Type[BaseModel]) -> Dict[str, Any]:
    """Return the ``settings.yaml`` values that are fields of ``model``."""

    settings = load_yaml(os.path.join(config_dir(), "settings.yaml"))
    if not isinstance(settings, dict):
        return {}
    return {key: value for key, value in settings.items() if key in model.model_fields}


def with_defaults(model: Type[BaseModel], body: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    merged = option_defaults(model)
    merged.update(body or {})
    return merged
