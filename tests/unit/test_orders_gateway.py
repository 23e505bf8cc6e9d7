import pytest
from unittest.mock import MagicMock

from marketplace.orders.models import OrderCreationRequest
from marketplace.orders.repository import MemoryOrderGateway, SupabaseOrderGateway
from marketplace.orders.service import build_order_request, new_order_number, split_by_seller


def _request(transaction_id="tx-1"):
    return OrderCreationRequest(
        user_id="u1",
        payment_data={"method": "card", "transaction_id": transaction_id},
        shipping_data={},
        billing_data={},
        items=[
            {"product_id": "a", "seller_id": "s1", "quantity": 2, "price": 10.0, "subtotal": 20.0},
            {"product_id": "b", "seller_id": "s1", "quantity": 1, "price": 0.1, "subtotal": 0.1},
            {"product_id": "c", "seller_id": "s2", "quantity": 1, "price": 0.2, "subtotal": 0.2},
        ],
        calculated_totals={"final_total": 23.35},
    )


def test_split_by_seller_sums_in_cents():
    groups = split_by_seller(_request().items)
    assert set(groups) == {"s1", "s2"}
    assert groups["s1"]["total"] == 20.1
    assert len(groups["s1"]["items"]) == 2
    assert groups["s2"]["total"] == 0.2


def test_order_number_format():
    number = new_order_number()
    assert number.startswith("ORD-")
    assert len(number.split("-")[-1]) == 8


def test_build_order_request_from_snapshot(snapshot_store, calculator):
    pricing = calculator.calculate_cart_totals([{"product_id": "a", "quantity": 1, "base_price": 50, "seller_id": "s1"}], "u1")
    snapshot = snapshot_store.create(session_id="sess-1", user_id="u1", pricing=pricing, shipping_data={}, billing_data={})
    payment = MagicMock(payment_method="card", validation_type="x", transaction_id="tx-9", amount=57.5, metadata={})

    request = build_order_request(snapshot, payment)
    assert request.transaction_id == "tx-9"
    assert request.session_id == "sess-1"
    assert request.calculated_totals["final_total"] == 57.5
    assert request.items[0]["subtotal"] == 50.0
    assert request.payment_data["amount"] == 57.5


def test_memory_gateway_commits_on_success():
    gateway = MemoryOrderGateway()
    with gateway.atomic() as tx:
        result = tx.create_order(_request())
        assert gateway.orders == []
    assert gateway.orders == [result]
    assert result.order.total == 23.35


def test_memory_gateway_rolls_back_on_error():
    gateway = MemoryOrderGateway()
    with pytest.raises(RuntimeError):
        with gateway.atomic() as tx:
            tx.create_order(_request())
            raise RuntimeError("boom")
    assert gateway.orders == []
    assert len(gateway.rolled_back) == 1


def test_memory_gateway_is_idempotent_on_transaction():
    gateway = MemoryOrderGateway()
    with gateway.atomic() as tx:
        first = tx.create_order(_request())
    with gateway.atomic() as tx:
        second = tx.create_order(_request())
    assert second.created is False
    assert second.order == first.order
    assert len(gateway.orders) == 1


def _supabase_client(rpc_data=None, existing=None):
    client = MagicMock()
    client.table.return_value.select.return_value.eq.return_value.limit.return_value.execute.return_value = MagicMock(data=existing or [])
    client.table.return_value.select.return_value.eq.return_value.execute.return_value = MagicMock(data=[])
    client.rpc.return_value.execute.return_value = MagicMock(data=rpc_data)
    return client


def test_supabase_gateway_creates_via_rpc():
    client = _supabase_client(rpc_data={
        "order": {"id": "o1", "order_number": "ORD-1", "total_amount": 23.35, "status": "paid", "payment_transaction_id": "tx-1"},
        "seller_orders": [{"id": "so1", "seller_id": "s1", "total_amount": 20.1}],
    })
    gateway = SupabaseOrderGateway(client_factory=lambda: client)
    with gateway.atomic() as tx:
        result = tx.create_order(_request())

    name, params = client.rpc.call_args_list[0].args
    assert name == "create_order_with_seller_orders"
    assert params["p_payload"]["seller_orders"]["s2"]["total"] == 0.2
    assert result.order.number == "ORD-1"
    assert result.seller_orders[0].total == 20.1


def test_supabase_gateway_returns_existing_order():
    client = _supabase_client(existing=[{"id": "o1", "order_number": "ORD-1", "total_amount": 23.35, "status": "paid"}])
    gateway = SupabaseOrderGateway(client_factory=lambda: client)
    with gateway.atomic() as tx:
        result = tx.create_order(_request())
    assert result.created is False
    client.rpc.assert_not_called()


def test_supabase_gateway_compensates_on_error():
    client = _supabase_client(rpc_data=[{"order": {"id": "o1", "order_number": "ORD-1", "total_amount": 1}}])
    gateway = SupabaseOrderGateway(client_factory=lambda: client)
    with pytest.raises(ConnectionError):
        with gateway.atomic() as tx:
            tx.create_order(_request())
            raise ConnectionError("redis down")
    assert client.rpc.call_args_list[-1].args == ("rollback_order", {"p_order_id": "o1"})


def test_supabase_gateway_empty_rpc_result_raises():
    client = _supabase_client(rpc_data=None)
    gateway = SupabaseOrderGateway(client_factory=lambda: client)
    with pytest.raises(RuntimeError):
        with gateway.atomic() as tx:
            tx.create_order(_request())
