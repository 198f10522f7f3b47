r"""backend\app\services\purchase_order_store.py

File-backed purchase-order collaborator writing one JSON line per order."""

from __future__ import annotations

import asyncio
import json
import logging
import os
import threading
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List

from ..models.schemas import PurchaseOrderRequest, PurchaseOrderResult

LOGGER = logging.getLogger(__name__)

ORDERS_FILENAME = "purchase_orders.jsonl"


class PurchaseOrderStore:
    """Append purchase orders to ``purchase_orders.jsonl``.

    Each order, with all of its lines, is serialised up front and written in a
    single ``write`` call under a lock, so a reader never sees half an order.
    """

    _lock = threading.Lock()

    def __init__(self, data_root: str = "data") -> None:
        self.data_root = Path(os.getenv("DATA_DIR", data_root))

    @property
    def path(self) -> Path:
        return self.data_root / ORDERS_FILENAME

    def _write_event(self, event: Dict[str, Any]) -> None:
        line = json.dumps(event, separators=(",", ":")) + "\n"
        with self._lock:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with self.path.open("a", encoding="utf-8") as handle:
                handle.write(line)

    def save_order(self, request: PurchaseOrderRequest) -> PurchaseOrderResult:
        order_id = f"PO-{uuid.uuid4().hex[:12].upper()}"
        event: Dict[str, Any] = {
            "order_id": order_id,
            "supplier_id": request.supplier_id,
            "requested_by": request.requested_by,
            "status": "draft",
            "created_at": datetime.now(timezone.utc).isoformat(),
            "items": [item.model_dump() for item in request.items],
            "total_amount": round(sum(i.quantity * i.unit_price for i in request.items), 2),
        }
        try:
            self._write_event(event)
        except OSError as exc:
            LOGGER.warning("Failed to persist purchase order for supplier_id=%s: %s", request.supplier_id, exc)
            return PurchaseOrderResult(success=False, error=f"storage error: {exc}")
        LOGGER.info(
            "Stored purchase order %s for supplier_id=%s with %d items",
            order_id,
            request.supplier_id,
            len(request.items),
        )
        return PurchaseOrderResult(success=True, order_id=order_id)

    def read_orders(self, limit: int = 50) -> List[Dict[str, Any]]:
        """Return the most recent stored orders, oldest first."""

        if not self.path.exists():
            return []
        orders: List[Dict[str, Any]] = []
        with self.path.open("r", encoding="utf-8") as handle:
            for line in handle:
                line = line.strip()
                if not line:
                    continue
                try:
                    orders.append(json.loads(line))
                except json.JSONDecodeError:
                    continue
        if limit <= 0:
            return orders
        return orders[-limit:]

    async def create_purchase_order(self, request: PurchaseOrderRequest) -> PurchaseOrderResult:
        return await asyncio.to_thread(self.save_order, request)
