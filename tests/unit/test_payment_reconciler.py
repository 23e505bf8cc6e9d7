import threading
import pytest
from unittest.mock import MagicMock

from marketplace.audit import sink as audit
from marketplace.errors import (
    AmountMismatch,
    DiscountCodeRejected,
    OrderCreationFailure,
    ReconciliationInProgress,
    SnapshotExpiredOrMissing,
)
from marketplace.orders.repository import MemoryOrderGateway
from marketplace.payments.locks import LocalSessionLock
from marketplace.payments.models import PaymentResult, ReconciliationState
from marketplace.payments.reconciler import PaymentReconciler


def _payment(amount=93.15, success=True, transaction_id="tx-1", **kw):
    return PaymentResult(
        payment_method="card",
        validation_type="provider_confirmation",
        transaction_id=transaction_id,
        amount=amount,
        success=success,
        **kw,
    )


@pytest.fixture
def stored_snapshot(snapshot_store, calculator, catalog):
    # 2 vendeurs: p-100 (seller-a) + p-50 (seller-b) -> 90 + 50 = 140, TVA 21, livraison 0 -> 161
    lines = [catalog.get_products(["p-100"])["p-100"].to_cart_line(1), catalog.get_products(["p-50"])["p-50"].to_cart_line(1)]
    pricing = calculator.calculate_cart_totals(lines, "u1")
    snapshot = snapshot_store.create(
        session_id="sess-1", user_id="u1", pricing=pricing,
        shipping_data={"city": "Lyon"}, billing_data={"name": "Ada"},
    )
    snapshot_store.store(snapshot)
    return snapshot


def test_successful_payment_creates_one_order(reconciler, stored_snapshot, order_gateway, snapshot_store, audit_sink):
    result = reconciler.process_successful_payment(_payment(amount=161.0), "sess-1")

    assert result.state == ReconciliationState.ORDER_CREATED
    assert result.history == [
        ReconciliationState.RECEIVED,
        ReconciliationState.SNAPSHOT_FOUND,
        ReconciliationState.AMOUNT_VALIDATED,
        ReconciliationState.ORDER_CREATED,
    ]
    assert result.order["total"] == 161.0
    assert result.order["status"] == "paid"
    assert {s["seller_id"] for s in result.seller_orders} == {"seller-a", "seller-b"}
    assert result.payment == {"method": "card", "validation_type": "provider_confirmation", "transaction_id": "tx-1", "amount": 161.0}
    assert result.snapshot_removed is True

    assert len(order_gateway.orders) == 1
    assert snapshot_store.retrieve("sess-1") is None
    assert audit_sink.of_type(audit.RECONCILIATION_SUCCEEDED)[0]["order_id"] == result.order["id"]


def test_as_dict_payload(reconciler, stored_snapshot):
    payload = reconciler.process_successful_payment(_payment(amount=161.0), "sess-1").as_dict()
    assert payload["success"] is True
    assert payload["state"] == "ORDER_CREATED"
    assert payload["checkout_data_cleaned"] is True
    assert payload["session_id"] == "sess-1"


def test_order_request_comes_from_snapshot(snapshot_store, stored_snapshot, audit_sink):
    gateway = MemoryOrderGateway()
    reconciler = PaymentReconciler(snapshot_store, gateway, LocalSessionLock(), audit_sink=audit_sink)
    reconciler.process_successful_payment(_payment(amount=161.0, metadata={"payment_id": "pi_1"}), "sess-1")

    seller_orders = {s.seller_id: s for s in gateway.orders[0].seller_orders}
    assert seller_orders["seller-a"].total == 90.0
    assert seller_orders["seller-a"].items[0]["price"] == 90.0
    assert seller_orders["seller-b"].total == 50.0


def test_second_confirmation_finds_no_snapshot(reconciler, stored_snapshot, order_gateway, audit_sink):
    reconciler.process_successful_payment(_payment(amount=161.0), "sess-1")
    with pytest.raises(SnapshotExpiredOrMissing) as exc:
        reconciler.process_successful_payment(_payment(amount=161.0), "sess-1")
    assert exc.value.retry_allowed is False
    assert exc.value.transaction_id == "tx-1"
    assert len(order_gateway.orders) == 1
    assert audit_sink.of_type(audit.SNAPSHOT_MISSING)[0]["session_id"] == "sess-1"


def test_concurrent_confirmations_create_one_order(reconciler, stored_snapshot, order_gateway):
    outcomes = []
    barrier = threading.Barrier(5)

    def confirm():
        barrier.wait()
        outcomes.append(reconciler.reconcile(_payment(amount=161.0), "sess-1"))

    threads = [threading.Thread(target=confirm) for _ in range(5)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(order_gateway.orders) == 1
    assert sum(1 for o in outcomes if o["success"]) == 1
    assert sorted(o.get("state") for o in outcomes if not o["success"]) == ["SNAPSHOT_MISSING"] * 4


def test_amount_mismatch_creates_nothing(reconciler, stored_snapshot, order_gateway, snapshot_store, audit_sink):
    with pytest.raises(AmountMismatch):
        reconciler.process_successful_payment(_payment(amount=160.98), "sess-1")
    assert order_gateway.orders == []
    assert snapshot_store.retrieve("sess-1") is not None
    event = audit_sink.of_type(audit.AMOUNT_MISMATCH)[0]
    assert event["paid"] == 160.98 and event["expected"] == 161.0


def test_amount_within_a_cent_is_accepted(reconciler, stored_snapshot):
    assert reconciler.process_successful_payment(_payment(amount=160.99), "sess-1").state == ReconciliationState.ORDER_CREATED


def test_order_failure_keeps_snapshot_and_allows_retry(snapshot_store, stored_snapshot, audit_sink):
    gateway = MemoryOrderGateway(fail_on_create=True)
    reconciler = PaymentReconciler(snapshot_store, gateway, LocalSessionLock(), audit_sink=audit_sink)

    with pytest.raises(OrderCreationFailure) as exc:
        reconciler.process_successful_payment(_payment(amount=161.0), "sess-1")
    assert exc.value.retry_allowed is True
    assert snapshot_store.retrieve("sess-1") is not None
    assert gateway.orders == []

    gateway.fail_on_create = False
    assert reconciler.process_successful_payment(_payment(amount=161.0), "sess-1").state == ReconciliationState.ORDER_CREATED
    assert len(gateway.orders) == 1


def test_snapshot_removal_failure_rolls_back_order(stored_snapshot, audit_sink):
    snapshots = MagicMock()
    snapshots.retrieve.return_value = stored_snapshot
    snapshots.remove.side_effect = ConnectionError("redis down")
    gateway = MemoryOrderGateway()
    reconciler = PaymentReconciler(snapshots, gateway, LocalSessionLock(), audit_sink=audit_sink)

    with pytest.raises(OrderCreationFailure):
        reconciler.process_successful_payment(_payment(amount=161.0), "sess-1")
    assert gateway.orders == []
    assert len(gateway.rolled_back) == 1


def test_failed_payment_keeps_snapshot(reconciler, stored_snapshot, snapshot_store, order_gateway, audit_sink):
    failed = _payment(amount=161.0, success=False, error_message="Carte refusée", error_code="card_declined")
    payload = reconciler.handle_failed_payment(failed, "sess-1")

    assert payload == {
        "success": False,
        "error": {
            "message": "Carte refusée",
            "code": "card_declined",
            "payment_method": "card",
            "validation_type": "provider_confirmation",
        },
        "retry_allowed": True,
        "session_id": "sess-1",
    }
    assert snapshot_store.retrieve("sess-1") is not None
    assert audit_sink.of_type(audit.PAYMENT_FAILED)

    # nouvel essai réussi après l'échec
    assert reconciler.reconcile(_payment(amount=161.0, transaction_id="tx-2"), "sess-1")["success"] is True
    assert len(order_gateway.orders) == 1


def test_reconcile_maps_errors_to_payloads(reconciler, stored_snapshot):
    mismatch = reconciler.reconcile(_payment(amount=1.0), "sess-1")
    assert mismatch["success"] is False
    assert mismatch["state"] == "AMOUNT_MISMATCH"
    assert mismatch["retry_allowed"] is False

    missing = reconciler.reconcile(_payment(amount=161.0), "unknown")
    assert missing["state"] == "SNAPSHOT_MISSING"
    assert missing["error"]["code"] == "snapshot_missing"
    assert missing["retry_allowed"] is False


def test_busy_lock_is_retryable(snapshot_store, order_gateway, stored_snapshot):
    lock = LocalSessionLock(blocking_timeout=0.01)
    reconciler = PaymentReconciler(snapshot_store, order_gateway, lock)
    with lock.hold("sess-1"):
        payload = reconciler.reconcile(_payment(amount=161.0), "sess-1")
    assert payload["success"] is False
    assert payload["retry_allowed"] is True
    assert payload["error"]["code"] == ReconciliationInProgress.code
    assert order_gateway.orders == []


def _snapshot_with_code(snapshot_store, calculator, catalog, code="SAVE10"):
    lines = [catalog.get_products(["p-100"])["p-100"].to_cart_line(1)]
    pricing = calculator.calculate_cart_totals(lines, "u1", code)
    snapshot = snapshot_store.create(
        session_id="sess-code", user_id="u1", pricing=pricing,
        shipping_data={}, billing_data={}, discount_code=code,
    )
    snapshot_store.store(snapshot)
    return snapshot, lines


def test_discount_code_is_consumed_by_the_order(reconciler, snapshot_store, calculator, catalog, discount_repo):
    snapshot, lines = _snapshot_with_code(snapshot_store, calculator, catalog)

    reconciler.process_successful_payment(_payment(amount=snapshot.final_total), "sess-code")

    assert discount_repo.find_by_code("SAVE10").is_used is True
    # une seconde commande avec le même code est refusée dès le calcul
    with pytest.raises(DiscountCodeRejected):
        calculator.calculate_cart_totals(lines, "u2", "SAVE10")


def test_discount_code_stays_available_when_order_fails(snapshot_store, calculator, catalog, discount_repo, discount_service):
    snapshot, _ = _snapshot_with_code(snapshot_store, calculator, catalog)
    gateway = MemoryOrderGateway(fail_on_create=True)
    reconciler = PaymentReconciler(snapshot_store, gateway, LocalSessionLock(), discount_codes=discount_service)

    with pytest.raises(OrderCreationFailure):
        reconciler.process_successful_payment(_payment(amount=snapshot.final_total), "sess-code")
    assert discount_repo.find_by_code("SAVE10").is_used is False


@pytest.mark.parametrize("lines, final_total", [([], 161.0), (["line"], 0.0)])
def test_malformed_snapshot_is_treated_as_missing(lines, final_total, audit_sink):
    malformed = MagicMock(session_id="sess-1", lines=lines, final_total=final_total)
    malformed.is_well_formed.return_value = False
    snapshots = MagicMock()
    snapshots.retrieve.return_value = malformed
    gateway = MemoryOrderGateway()
    reconciler = PaymentReconciler(snapshots, gateway, LocalSessionLock(), audit_sink=audit_sink)

    with pytest.raises(SnapshotExpiredOrMissing):
        reconciler.process_successful_payment(_payment(amount=161.0), "sess-1")
    assert gateway.orders == []
    snapshots.remove.assert_not_called()
    assert audit_sink.of_type(audit.SNAPSHOT_MISSING)[0]["malformed"] is True
