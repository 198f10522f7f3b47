r"""backend/app/api/v1/procure.py

Routes for turning reorder suggestions into purchase orders."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field

from ...core.errors import ReorderInputError
from ...models import schemas
from ...services.procurement_service import ProcurementService
from ...services.purchase_order_store import PurchaseOrderStore
from .dependencies import get_order_store, get_procurement_service, with_defaults

LOGGER = logging.getLogger(__name__)

router = APIRouter()


def _error_payload(code: str, message: str) -> dict[str, str]:
    """Return a standardised error payload."""

    return {"error": code, "message": message}


class PurchaseOrderBatchRequest(BaseModel):
    """Validated payload for creating purchase orders from suggestions."""

    selected_product_ids: List[int] = Field(
        ..., description="Products whose current suggestions should be ordered"
    )
    user_id: Optional[int] = Field(None, description="User recorded as the requester")
    options: Optional[Dict[str, Any]] = Field(
        None, description="Suggestion options used to recompute quantities"
    )


@router.post("/procure/purchase-orders", response_model=schemas.PurchaseOrderBatchResult)
async def create_purchase_orders(
    body: PurchaseOrderBatchRequest,
    service: ProcurementService = Depends(get_procurement_service),
) -> schemas.PurchaseOrderBatchResult:
    """Create one purchase order per supplier for the selected products.

    Partial failures are reported in the result body with status 200.
    """

    LOGGER.info(
        "Purchase order batch requested for %d products by user_id=%s",
        len(body.selected_product_ids),
        body.user_id,
    )
    options = with_defaults(schemas.ReorderSuggestionOptions, body.options)
    try:
        return await service.create_purchase_orders_from_suggestions(
            body.selected_product_ids, body.user_id, options=options
        )
    except ReorderInputError as exc:
        LOGGER.warning("Purchase order batch rejected: %s", exc)
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=exc.to_dict()) from exc
    except FileNotFoundError as exc:
        LOGGER.exception("Purchase order batch failed due to missing dataset files")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=_error_payload(
                "data_unavailable",
                "Required dataset files are missing. Please upload products.csv and retry.",
            ),
        ) from exc
    except ValueError as exc:
        LOGGER.warning("Purchase order batch rejected: %s", exc)
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=_error_payload("invalid_request", str(exc)),
        ) from exc
    except Exception as exc:  # pragma: no cover - defensive programming
        LOGGER.exception("Unexpected error while creating purchase orders")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=_error_payload(
                "procurement_failed",
                "An unexpected error occurred while creating purchase orders.",
            ),
        ) from exc


@router.get("/procure/purchase-orders")
def list_purchase_orders(
    limit: int = Query(50),
    store: PurchaseOrderStore = Depends(get_order_store),
) -> Dict[str, List[Dict[str, Any]]]:
    """Return the most recently stored purchase orders."""

    if limit < 0:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=_error_payload("invalid_limit", "limit must be non-negative."),
        )
    return {"orders": store.read_orders(limit)}
