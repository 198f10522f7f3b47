from __future__ import annotations

import asyncio
import json
import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[2]
if str(ROOT) not in sys.path:
    sys.path.append(str(ROOT))

from backend.app.core.config import ReorderPolicy
from backend.app.core.errors import ReorderInputError
from backend.app.models.schemas import PurchaseOrderItem, PurchaseOrderRequest
from backend.app.services.procurement_service import BatchRun, BatchState, ProcurementService
from backend.app.services.purchase_order_store import PurchaseOrderStore
from backend.app.services.reorder_service import ReorderSuggestionService
from backend.tests.stubs import (
    NOW,
    StubGateway,
    StubProducts,
    StubSales,
    make_product,
    make_suggestion,
)


def _two_supplier_setup():
    products = StubProducts(
        [
            make_product(1, name="Rice 5kg", supplier_id=1, cost_price=5.0),
            make_product(2, name="Olive Oil", supplier_id=2, supplier_name="Beta Supply", cost_price=0.0),
            make_product(3, name="Sea Salt", supplier_id=2, supplier_name="Beta Supply", cost_price=3.0),
        ]
    )
    suggestions = [
        make_suggestion(1, product_name="Rice 5kg", supplier_id=1, recommended_quantity=12),
        make_suggestion(2, product_name="Olive Oil", supplier_id=2, supplier="Beta Supply"),
        make_suggestion(3, product_name="Sea Salt", supplier_id=2, supplier="Beta Supply", recommended_quantity=6),
    ]
    return products, suggestions


def test_zero_cost_item_is_dropped_but_both_orders_are_created() -> None:
    products, suggestions = _two_supplier_setup()
    gateway = StubGateway()
    service = ProcurementService(products, gateway)

    result = asyncio.run(
        service.create_purchase_orders_from_suggestions([1, 2, 3], 7, suggestions=suggestions)
    )

    assert result.success is True
    assert result.created_count == 2
    assert result.failed_count == 0
    assert result.status == "partial"
    assert len(result.errors) == 1
    assert "Olive Oil" in result.errors[0]
    assert len(result.order_ids) == 2

    by_supplier = {req.supplier_id: req for req in gateway.requests}
    assert [item.product_id for item in by_supplier[1].items] == [1]
    assert [item.product_id for item in by_supplier[2].items] == [3]
    assert by_supplier[2].items[0].unit_price == 3.0
    assert by_supplier[2].items[0].quantity == 6
    assert by_supplier[2].requested_by == 7


def test_all_items_valid_gives_full_status() -> None:
    products, suggestions = _two_supplier_setup()
    service = ProcurementService(products, StubGateway())

    result = asyncio.run(
        service.create_purchase_orders_from_suggestions([1, 3], suggestions=suggestions)
    )

    assert result.status == "full"
    assert result.created_count == 2
    assert result.errors == []


def test_selection_without_suppliers_short_circuits() -> None:
    products = StubProducts([make_product(1, supplier_id=None)])
    gateway = StubGateway()
    service = ProcurementService(products, gateway)
    suggestions = [make_suggestion(1, supplier_id=None, supplier=None)]

    result = asyncio.run(
        service.create_purchase_orders_from_suggestions([1], suggestions=suggestions)
    )

    assert result.status == "no_eligible_items"
    assert result.success is False
    assert result.warnings
    assert gateway.requests == []
    assert products.get_calls == []


def test_products_without_supplier_are_skipped_with_warning() -> None:
    products, suggestions = _two_supplier_setup()
    suggestions.append(make_suggestion(4, product_name="Loose Candy", supplier_id=None, supplier=None))
    service = ProcurementService(products, StubGateway())

    result = asyncio.run(
        service.create_purchase_orders_from_suggestions([1, 4], suggestions=suggestions)
    )

    assert result.status == "full"
    assert any("Loose Candy" in warning for warning in result.warnings)


def test_empty_selection_is_an_input_error() -> None:
    service = ProcurementService(StubProducts([]), StubGateway())
    with pytest.raises(ReorderInputError) as excinfo:
        asyncio.run(service.create_purchase_orders_from_suggestions([], suggestions=[]))
    assert excinfo.value.code == "empty_selection"


def test_supplier_failures_do_not_stop_other_suppliers() -> None:
    products, suggestions = _two_supplier_setup()
    service = ProcurementService(products, StubGateway(rejected_suppliers=[1]))

    result = asyncio.run(
        service.create_purchase_orders_from_suggestions([1, 3], suggestions=suggestions)
    )

    assert result.success is True
    assert result.status == "partial"
    assert result.created_count == 1
    assert result.failed_count == 1
    assert result.errors == ["Acme Wholesale: rejected by storage"]


def test_all_suppliers_failing_reports_failed_with_joined_message() -> None:
    products, suggestions = _two_supplier_setup()
    gateway = StubGateway(rejected_suppliers=[1], raising_suppliers=[2])
    service = ProcurementService(products, gateway)

    result = asyncio.run(
        service.create_purchase_orders_from_suggestions([1, 3], suggestions=suggestions)
    )

    assert result.success is False
    assert result.status == "failed"
    assert result.created_count == 0
    assert result.failed_count == 2
    assert "Acme Wholesale" in result.message
    assert "Beta Supply: supplier API unreachable" in result.message


def test_supplier_with_no_valid_items_counts_as_failed_without_a_call() -> None:
    products, suggestions = _two_supplier_setup()
    gateway = StubGateway()
    service = ProcurementService(products, gateway)

    result = asyncio.run(
        service.create_purchase_orders_from_suggestions([1, 2], suggestions=suggestions)
    )

    assert result.created_count == 1
    assert result.failed_count == 1
    assert "Beta Supply: no valid items" in result.errors
    assert {req.supplier_id for req in gateway.requests} == {1}


def test_missing_product_and_zero_quantity_are_item_errors() -> None:
    products = StubProducts([make_product(1, cost_price=4.0)], failing_ids=[3])
    suggestions = [
        make_suggestion(1, recommended_quantity=0),
        make_suggestion(2, product_name="Ghost"),
        make_suggestion(3, product_name="Flaky"),
    ]
    service = ProcurementService(products, StubGateway())

    result = asyncio.run(
        service.create_purchase_orders_from_suggestions([1, 2, 3], suggestions=suggestions)
    )

    assert result.status == "failed"
    assert len(result.errors) == 4
    assert any("Ghost" in err and "not found" in err for err in result.errors)
    assert any("Flaky" in err for err in result.errors)
    assert products.get_calls == [2, 3]


def test_order_timeout_is_a_supplier_failure() -> None:
    products, suggestions = _two_supplier_setup()
    gateway = StubGateway(slow_suppliers=[2], delay=0.3)
    policy = ReorderPolicy(order_timeout_seconds=0.05)
    service = ProcurementService(products, gateway, policy=policy)

    result = asyncio.run(
        service.create_purchase_orders_from_suggestions([1, 3], suggestions=suggestions)
    )

    assert result.created_count == 1
    assert result.failed_count == 1
    assert any("Beta Supply" in err and "timed out" in err for err in result.errors)


def test_timed_out_order_that_lands_later_is_logged(caplog) -> None:
    products, suggestions = _two_supplier_setup()
    gateway = StubGateway(slow_suppliers=[2], delay=0.1)
    policy = ReorderPolicy(order_timeout_seconds=0.02)
    service = ProcurementService(products, gateway, policy=policy)

    async def run_and_wait():
        result = await service.create_purchase_orders_from_suggestions(
            [1, 3], suggestions=suggestions
        )
        await asyncio.sleep(0.3)
        return result

    with caplog.at_level("WARNING", logger="backend.app.services.procurement_service"):
        result = asyncio.run(run_and_wait())

    assert result.failed_count == 1
    late_order = gateway.committed[-1]
    assert late_order.startswith("PO-2-")
    assert any(
        "Late purchase order for supplier_id=2" in r.getMessage() and late_order in r.getMessage()
        for r in caplog.records
    )


def test_suggestions_are_recomputed_when_not_supplied() -> None:
    products = StubProducts([make_product(1, current_stock=0, reorder_level=10, cost_price=2.0)])
    sales = StubSales({1: [2.0] * 30})
    gateway = StubGateway()
    suggestion_service = ReorderSuggestionService(products, sales)
    service = ProcurementService(products, gateway, suggestion_service)

    result = asyncio.run(
        service.create_purchase_orders_from_suggestions([1, 99], user_id=3, now=NOW)
    )

    assert result.status == "full"
    assert gateway.requests[0].items[0].quantity == 24
    assert any("99" in warning for warning in result.warnings)


def test_batch_state_machine_rejects_invalid_transitions() -> None:
    run = BatchRun()
    with pytest.raises(RuntimeError):
        run.advance(BatchState.DONE)
    run.advance(BatchState.GROUPING)
    run.advance(BatchState.PER_SUPPLIER_CREATION)
    run.advance(BatchState.DONE)
    assert run.state is BatchState.DONE


def test_purchase_order_store_appends_whole_orders(tmp_path: Path, monkeypatch) -> None:
    monkeypatch.delenv("DATA_DIR", raising=False)
    store = PurchaseOrderStore(data_root=str(tmp_path))
    request = PurchaseOrderRequest(
        supplier_id=1,
        items=[
            PurchaseOrderItem(product_id=1, quantity=2, unit_price=3.5),
            PurchaseOrderItem(product_id=2, quantity=1, unit_price=10.0),
        ],
        requested_by=5,
    )

    first = asyncio.run(store.create_purchase_order(request))
    second = asyncio.run(store.create_purchase_order(request))

    assert first.success and second.success
    assert first.order_id != second.order_id
    lines = (tmp_path / "purchase_orders.jsonl").read_text(encoding="utf-8").splitlines()
    assert len(lines) == 2
    stored = json.loads(lines[0])
    assert stored["order_id"] == first.order_id
    assert len(stored["items"]) == 2
    assert stored["total_amount"] == 17.0
    assert [o["order_id"] for o in store.read_orders(limit=1)] == [second.order_id]
