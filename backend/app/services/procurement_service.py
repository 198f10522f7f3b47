"""Turn selected reorder suggestions into one purchase order per supplier."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from functools import partial
from typing import Dict, List, Optional, Sequence, Tuple

import pandas as pd

from ..core.config import ReorderPolicy
from ..core.errors import ReorderInputError
from ..core.observability import PURCHASE_ORDERS
from ..models.schemas import (
    PurchaseOrderBatchResult,
    PurchaseOrderItem,
    PurchaseOrderRequest,
    PurchaseOrderResult,
    ReorderSuggestion,
    ReorderSuggestionOptions,
)
from .collaborators import ProductRepository, PurchaseOrderGateway
from .reorder_service import ReorderSuggestionService

LOGGER = logging.getLogger(__name__)


def _log_late_commit(supplier_id: int, commit: "asyncio.Future[PurchaseOrderResult]") -> None:
    if commit.cancelled():
        return
    exc = commit.exception()
    if exc is not None:
        LOGGER.warning("Late purchase order for supplier_id=%s failed: %s", supplier_id, exc)
    elif commit.result().success:
        LOGGER.warning(
            "Late purchase order for supplier_id=%s landed as order_id=%s",
            supplier_id,
            commit.result().order_id,
        )


class BatchState(str, Enum):
    IDLE = "idle"
    GROUPING = "grouping"
    PER_SUPPLIER_CREATION = "per_supplier_creation"
    DONE = "done"


_TRANSITIONS = {
    BatchState.IDLE: {BatchState.GROUPING},
    BatchState.GROUPING: {BatchState.PER_SUPPLIER_CREATION, BatchState.DONE},
    BatchState.PER_SUPPLIER_CREATION: {BatchState.DONE},
    BatchState.DONE: set(),
}


@dataclass
class BatchRun:
    """Tracks the lifecycle of one batch; a fresh run is used per call."""

    state: BatchState = BatchState.IDLE

    def advance(self, new_state: BatchState) -> None:
        if new_state not in _TRANSITIONS[self.state]:
            raise RuntimeError(f"invalid batch transition {self.state.value} -> {new_state.value}")
        LOGGER.debug("Purchase order batch %s -> %s", self.state.value, new_state.value)
        self.state = new_state


@dataclass
class SupplierOutcome:
    supplier_id: int
    supplier_name: str
    order_id: Optional[str] = None
    error: Optional[str] = None
    item_errors: List[str] = field(default_factory=list)


def group_by_supplier(
    suggestions: Sequence[ReorderSuggestion],
) -> Tuple[Dict[int, List[ReorderSuggestion]], Dict[int, str], List[ReorderSuggestion]]:
    """Partition suggestions by supplier.

    Returns the groups, a display name per supplier and the suggestions that
    have no supplier at all.
    """

    groups: Dict[int, List[ReorderSuggestion]] = {}
    names: Dict[int, str] = {}
    orphans: List[ReorderSuggestion] = []
    for suggestion in suggestions:
        if suggestion.supplier_id is None:
            orphans.append(suggestion)
            continue
        groups.setdefault(suggestion.supplier_id, []).append(suggestion)
        names.setdefault(
            suggestion.supplier_id, suggestion.supplier or f"Supplier {suggestion.supplier_id}"
        )
    return groups, names, orphans


class ProcurementService:
    """Purchase-order batch generator.

    Suppliers are processed concurrently under a semaphore; items within one
    supplier are resolved one after the other.  Each supplier's order is
    committed through the gateway as a single atomic call, and a failing
    supplier never stops the others.  There is no rollback across suppliers.
    """

    def __init__(
        self,
        product_repository: ProductRepository,
        order_gateway: PurchaseOrderGateway,
        suggestion_service: ReorderSuggestionService | None = None,
        policy: ReorderPolicy | None = None,
    ) -> None:
        self.products = product_repository
        self.orders = order_gateway
        self.suggestions = suggestion_service
        self.policy = policy or (suggestion_service.policy if suggestion_service else ReorderPolicy())

    # ------------------------------------------------------------------
    async def _select(
        self,
        product_ids: List[int],
        suggestions: Optional[Sequence[ReorderSuggestion]],
        options: ReorderSuggestionOptions | dict | None,
        now: datetime | pd.Timestamp | None,
    ) -> Tuple[List[ReorderSuggestion], List[str]]:
        warnings: List[str] = []
        if suggestions is None:
            if self.suggestions is None:
                raise ReorderInputError(
                    "Suggestions must be supplied when no suggestion service is configured.",
                    code="missing_suggestions",
                )
            selected, missing = await self.suggestions.suggestions_for_products(
                product_ids, options, now
            )
            warnings.extend(f"Product {pid} was not found and was skipped." for pid in missing)
            return selected, warnings

        by_id = {s.product_id: s for s in suggestions}
        selected = [by_id[pid] for pid in product_ids if pid in by_id]
        warnings.extend(
            f"Product {pid} is not among the supplied suggestions and was skipped."
            for pid in product_ids
            if pid not in by_id
        )
        return selected, warnings

    async def _resolve_item(
        self, suggestion: ReorderSuggestion
    ) -> Tuple[Optional[PurchaseOrderItem], Optional[str]]:
        label = suggestion.product_name or f"Product {suggestion.product_id}"
        if suggestion.recommended_quantity <= 0:
            return None, f"{label}: recommended quantity is zero"

        try:
            product = await asyncio.wait_for(
                self.products.get_product(suggestion.product_id),
                timeout=self.policy.product_timeout_seconds,
            )
        except asyncio.TimeoutError:
            return None, f"{label}: product lookup timed out"
        except Exception as exc:
            return None, f"{label}: product lookup failed ({exc})"

        if product is None:
            return None, f"{label}: product not found"
        if product.cost_price is None or product.cost_price <= 0:
            LOGGER.warning(
                "Skipping product_id=%s in purchase order: invalid cost price %r",
                product.id,
                product.cost_price,
            )
            return None, f"{product.name}: missing or invalid cost price"

        return (
            PurchaseOrderItem(
                product_id=product.id,
                quantity=suggestion.recommended_quantity,
                unit_price=product.cost_price,
            ),
            None,
        )

    async def _commit(self, request: PurchaseOrderRequest) -> PurchaseOrderResult:
        return await self.orders.create_purchase_order(request)

    async def _process_supplier(
        self,
        supplier_id: int,
        supplier_name: str,
        suggestions: List[ReorderSuggestion],
        user_id: Optional[int],
        semaphore: asyncio.Semaphore,
    ) -> SupplierOutcome:
        outcome = SupplierOutcome(supplier_id=supplier_id, supplier_name=supplier_name)
        async with semaphore:
            items: List[PurchaseOrderItem] = []
            for suggestion in suggestions:
                item, error = await self._resolve_item(suggestion)
                if error is not None:
                    outcome.item_errors.append(error)
                elif item is not None:
                    items.append(item)

            if not items:
                outcome.error = f"{supplier_name}: no valid items"
                return outcome

            request = PurchaseOrderRequest(
                supplier_id=supplier_id, items=items, requested_by=user_id
            )
            # Shielded so a cancelled batch never interrupts a commit in flight.
            commit = asyncio.ensure_future(self._commit(request))
            try:
                result = await asyncio.wait_for(
                    asyncio.shield(commit), timeout=self.policy.order_timeout_seconds
                )
            except asyncio.TimeoutError:
                LOGGER.warning(
                    "Purchase order for supplier_id=%s timed out after %.1fs",
                    supplier_id,
                    self.policy.order_timeout_seconds,
                )
                commit.add_done_callback(partial(_log_late_commit, supplier_id))
                outcome.error = f"{supplier_name}: order creation timed out"
                return outcome
            except Exception as exc:
                LOGGER.warning("Purchase order for supplier_id=%s failed: %s", supplier_id, exc)
                outcome.error = f"{supplier_name}: {exc}"
                return outcome

        if result.success:
            outcome.order_id = result.order_id
        else:
            LOGGER.warning(
                "Purchase order for supplier_id=%s rejected: %s", supplier_id, result.error
            )
            outcome.error = f"{supplier_name}: {result.error or 'order creation failed'}"
        return outcome

    # ------------------------------------------------------------------
    async def create_purchase_orders_from_suggestions(
        self,
        selected_product_ids: Sequence[int],
        user_id: Optional[int] = None,
        suggestions: Optional[Sequence[ReorderSuggestion]] = None,
        options: ReorderSuggestionOptions | dict | None = None,
        now: datetime | pd.Timestamp | None = None,
    ) -> PurchaseOrderBatchResult:
        """Create purchase orders for the selected products, grouped by supplier."""

        product_ids = list(dict.fromkeys(int(pid) for pid in selected_product_ids or []))
        if not product_ids:
            raise ReorderInputError(
                "Select at least one product to create purchase orders.",
                code="empty_selection",
            )

        run = BatchRun()
        run.advance(BatchState.GROUPING)
        selected, warnings = await self._select(product_ids, suggestions, options, now)
        groups, names, orphans = group_by_supplier(selected)
        if orphans:
            warnings.append(
                "Skipped products without a supplier: "
                + ", ".join(s.product_name for s in orphans)
            )

        if not groups:
            run.advance(BatchState.DONE)
            LOGGER.info("Purchase order batch had no eligible items (%d selected)", len(product_ids))
            return PurchaseOrderBatchResult(
                success=False,
                status="no_eligible_items",
                warnings=warnings,
                message="None of the selected products can be ordered from a supplier.",
            )

        run.advance(BatchState.PER_SUPPLIER_CREATION)
        semaphore = asyncio.Semaphore(self.policy.supplier_concurrency)
        outcomes: List[SupplierOutcome] = await asyncio.gather(
            *[
                self._process_supplier(supplier_id, names[supplier_id], items, user_id, semaphore)
                for supplier_id, items in sorted(groups.items())
            ]
        )
        run.advance(BatchState.DONE)

        errors: List[str] = []
        order_ids: List[str] = []
        for outcome in outcomes:
            errors.extend(outcome.item_errors)
            if outcome.error:
                errors.append(outcome.error)
            if outcome.order_id:
                order_ids.append(outcome.order_id)
        created_count = sum(1 for o in outcomes if o.error is None)
        failed_count = len(outcomes) - created_count

        if created_count == 0:
            status = "failed"
            message = "; ".join(errors) or "No purchase orders were created."
        elif failed_count == 0 and not errors:
            status = "full"
            message = f"Created {created_count} purchase order(s)."
        else:
            status = "partial"
            message = (
                f"Created {created_count} purchase order(s); "
                f"{failed_count} supplier(s) failed and {len(errors)} error(s) were recorded."
            )

        PURCHASE_ORDERS.labels("created").inc(created_count)
        PURCHASE_ORDERS.labels("failed").inc(failed_count)
        LOGGER.info(
            "Purchase order batch done: status=%s created=%d failed=%d errors=%d",
            status,
            created_count,
            failed_count,
            len(errors),
        )

        return PurchaseOrderBatchResult(
            success=created_count > 0,
            status=status,
            created_count=created_count,
            failed_count=failed_count,
            errors=errors,
            warnings=warnings,
            order_ids=order_ids,
            message=message,
        )
