r"""backend/app/api/v1/reorder.py

Routes for reorder suggestions, summaries and forecast-enhanced suggestions."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Dict, List, Optional, TypeVar

from fastapi import APIRouter, Body, Depends, HTTPException, Query, status
from pydantic import BaseModel, ConfigDict

from ...core.errors import ReorderInputError
from ...models import schemas
from ...services.reorder_service import ReorderSuggestionService
from .dependencies import get_suggestion_service, with_defaults

LOGGER = logging.getLogger(__name__)

router = APIRouter()

_T = TypeVar("_T")


def _error_payload(code: str, message: str) -> dict[str, str]:
    """Return a standardised error payload."""

    return {"error": code, "message": message}


async def _guarded(action: str, awaitable: Awaitable[_T]) -> _T:
    """Await a service call and map its failures onto HTTP errors."""

    try:
        return await awaitable
    except ReorderInputError as exc:
        LOGGER.warning("Reorder %s rejected: %s", action, exc)
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=exc.to_dict()) from exc
    except FileNotFoundError as exc:
        LOGGER.exception("Reorder %s failed due to missing dataset files", action)
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=_error_payload(
                "data_unavailable",
                "Required dataset files are missing. Please upload products.csv and retry.",
            ),
        ) from exc
    except asyncio.TimeoutError as exc:
        LOGGER.warning("Reorder %s timed out waiting for the product catalog", action)
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=_error_payload("upstream_timeout", "The product catalog did not respond in time."),
        ) from exc
    except ValueError as exc:
        LOGGER.warning("Reorder %s rejected: %s", action, exc)
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=_error_payload("invalid_request", str(exc)),
        ) from exc
    except Exception as exc:  # pragma: no cover - defensive programming
        LOGGER.exception("Unexpected error during reorder %s", action)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=_error_payload(
                "reorder_failed", f"An unexpected error occurred while computing reorder {action}."
            ),
        ) from exc


class NeedingReorderRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    supplier_id: Optional[int] = None
    category_id: Optional[int] = None


@router.post("/reorder/suggestions", response_model=List[schemas.ReorderSuggestion])
async def get_suggestions(
    body: Optional[Dict[str, Any]] = Body(None),
    service: ReorderSuggestionService = Depends(get_suggestion_service),
) -> List[schemas.ReorderSuggestion]:
    """Return reorder suggestions, most urgent first."""

    LOGGER.info("Reorder suggestions requested with options=%s", body)
    options = with_defaults(schemas.ReorderSuggestionOptions, body)
    return await _guarded("suggestions", service.get_suggestions(options))


@router.post("/reorder/summary", response_model=schemas.ReorderSuggestionSummary)
async def get_summary(
    body: Optional[Dict[str, Any]] = Body(None),
    service: ReorderSuggestionService = Depends(get_suggestion_service),
) -> schemas.ReorderSuggestionSummary:
    """Return tier counts and order value of the filtered suggestions."""

    options = with_defaults(schemas.ReorderSuggestionOptions, body)
    return await _guarded("summary", service.get_summary(options))


@router.post("/reorder/ml-suggestions", response_model=List[schemas.MLReorderSuggestion])
async def get_ml_suggestions(
    body: Optional[Dict[str, Any]] = Body(None),
    service: ReorderSuggestionService = Depends(get_suggestion_service),
) -> List[schemas.MLReorderSuggestion]:
    """Return suggestions enriched with trend, seasonality and accuracy."""

    LOGGER.info("ML reorder suggestions requested with options=%s", body)
    options = with_defaults(schemas.MLReorderSuggestionOptions, body)
    return await _guarded("ml suggestions", service.get_ml_suggestions(options))


@router.get("/reorder/products/{product_id}", response_model=schemas.ReorderSuggestion)
async def get_product_suggestion(
    product_id: int,
    analysis_period_days: int = Query(30),
    safety_stock_days: float = Query(7),
    service: ReorderSuggestionService = Depends(get_suggestion_service),
) -> schemas.ReorderSuggestion:
    """Return the unfiltered suggestion for a single product."""

    suggestion = await _guarded(
        "product suggestion",
        service.get_product_suggestion(product_id, analysis_period_days, safety_stock_days),
    )
    if suggestion is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=_error_payload("product_not_found", f"Product '{product_id}' was not found."),
        )
    return suggestion


@router.post("/reorder/needing-reorder", response_model=List[schemas.ReorderSuggestion])
async def get_products_needing_reorder(
    body: Optional[NeedingReorderRequest] = None,
    service: ReorderSuggestionService = Depends(get_suggestion_service),
) -> List[schemas.ReorderSuggestion]:
    """Return the critical and high urgency suggestions."""

    body = body or NeedingReorderRequest()
    return await _guarded(
        "needing reorder",
        service.get_products_needing_reorder(body.supplier_id, body.category_id),
    )
