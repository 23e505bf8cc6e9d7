"""
Accès aux données pour la feature 'orders' (collaborateur de création de commande).

Interface commune des gateways:
- find_by_transaction(transaction_id) -> Optional[OrderCreationResult]
- atomic() -> context manager fournissant tx.create_order(request)
  Toute exception levée dans le bloc annule les commandes créées par tx.
"""
import logging
import threading
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Optional
from uuid import uuid4

import marketplace.infra.supabase_client as supabase_client

from .models import OrderCreationRequest, OrderCreationResult, OrderRecord, SellerOrderRecord
from .service import new_order_number, split_by_seller

logger = logging.getLogger(__name__)

ORDER_STATUS_PAID = "paid"


class MemoryOrderGateway:
    """Gateway en mémoire (dev, tests). fail_on_create simule une panne du stockage."""

    name = "memory"

    def __init__(self, fail_on_create: bool = False):
        self.fail_on_create = fail_on_create
        self.orders: List[OrderCreationResult] = []
        self.rolled_back: List[OrderCreationResult] = []
        self._lock = threading.Lock()

    def find_by_transaction(self, transaction_id: str) -> Optional[OrderCreationResult]:
        if not transaction_id:
            return None
        with self._lock:
            for result in self.orders:
                if result.order.transaction_id == transaction_id:
                    return OrderCreationResult(order=result.order, seller_orders=result.seller_orders, created=False)
        return None

    @contextmanager
    def atomic(self) -> Iterator["_MemoryTransaction"]:
        tx = _MemoryTransaction(self)
        try:
            yield tx
        except Exception:
            self.rolled_back.extend(tx.staged)
            logger.warning("orders.memory rollback staged=%s", len(tx.staged))
            raise
        with self._lock:
            self.orders.extend(tx.staged)


class _MemoryTransaction:
    def __init__(self, gateway: MemoryOrderGateway):
        self.gateway = gateway
        self.staged: List[OrderCreationResult] = []

    def create_order(self, request: OrderCreationRequest) -> OrderCreationResult:
        existing = self.gateway.find_by_transaction(request.transaction_id)
        if existing is not None:
            logger.info("orders.memory already exists transaction_id=%s", request.transaction_id)
            return existing
        if self.gateway.fail_on_create:
            raise RuntimeError("order storage unavailable")
        order = OrderRecord(
            id=str(uuid4()),
            number=new_order_number(),
            total=float(request.calculated_totals.get("final_total") or 0),
            status=ORDER_STATUS_PAID,
            user_id=request.user_id,
            transaction_id=request.transaction_id,
        )
        seller_orders = [
            SellerOrderRecord(id=str(uuid4()), seller_id=seller_id, total=group["total"], items=group["items"])
            for seller_id, group in split_by_seller(request.items).items()
        ]
        result = OrderCreationResult(order=order, seller_orders=seller_orders)
        self.staged.append(result)
        return result


def _order_from_row(row: Dict[str, Any]) -> OrderRecord:
    return OrderRecord(
        id=str(row.get("id") or ""),
        number=str(row.get("order_number") or row.get("number") or ""),
        total=float(row.get("total_amount") or row.get("total") or 0),
        status=str(row.get("status") or ORDER_STATUS_PAID),
        user_id=str(row.get("user_id") or ""),
        transaction_id=str(row.get("payment_transaction_id") or row.get("transaction_id") or ""),
    )


def _seller_order_from_row(row: Dict[str, Any]) -> SellerOrderRecord:
    return SellerOrderRecord(
        id=str(row.get("id") or ""),
        seller_id=str(row.get("seller_id") or ""),
        total=float(row.get("total_amount") or row.get("total") or 0),
        items=list(row.get("items") or []),
    )


class SupabaseOrderGateway:
    """
    Gateway Supabase (service-role, bypass RLS: appelé depuis le webhook).
    - Création: RPC 'create_order_with_seller_orders' (commande + sous-commandes en une transaction SQL).
    - Annulation: RPC compensatoire 'rollback_order' pour chaque commande créée dans le bloc atomic().
    - Idempotence: lecture préalable par payment_transaction_id.
    """

    name = "supabase"
    CREATE_RPC = "create_order_with_seller_orders"
    ROLLBACK_RPC = "rollback_order"

    def __init__(self, client_factory=None):
        self.client_factory = client_factory or supabase_client.get_service_supabase

    def find_by_transaction(self, transaction_id: str) -> Optional[OrderCreationResult]:
        if not transaction_id:
            return None
        client = self.client_factory()
        res = (
            client.table("orders")
            .select("id, order_number, total_amount, status, user_id, payment_transaction_id")
            .eq("payment_transaction_id", transaction_id)
            .limit(1)
            .execute()
        )
        rows = res.data or []
        if not rows:
            return None
        order = _order_from_row(rows[0])
        sub = client.table("seller_orders").select("id, seller_id, total_amount").eq("order_id", order.id).execute()
        seller_orders = [_seller_order_from_row(r) for r in (sub.data or [])]
        return OrderCreationResult(order=order, seller_orders=seller_orders, created=False)

    def create(self, request: OrderCreationRequest) -> OrderCreationResult:
        existing = self.find_by_transaction(request.transaction_id)
        if existing is not None:
            logger.info("orders.supabase already exists transaction_id=%s", request.transaction_id)
            return existing
        payload = request.to_payload()
        payload["order_number"] = new_order_number()
        payload["seller_orders"] = split_by_seller(request.items)
        res = self.client_factory().rpc(self.CREATE_RPC, {"p_payload": payload}).execute()
        data = res.data
        if isinstance(data, list):
            data = data[0] if data else None
        if not data or not data.get("order"):
            raise RuntimeError(f"{self.CREATE_RPC} returned no order")
        return OrderCreationResult(
            order=_order_from_row(data["order"]),
            seller_orders=[_seller_order_from_row(r) for r in (data.get("seller_orders") or [])],
        )

    def compensate(self, order_id: str) -> None:
        try:
            self.client_factory().rpc(self.ROLLBACK_RPC, {"p_order_id": order_id}).execute()
            logger.warning("orders.supabase compensated order_id=%s", order_id)
        except Exception:
            # Commande orpheline: à réconcilier manuellement
            logger.exception("orders.supabase compensation failed order_id=%s", order_id)

    @contextmanager
    def atomic(self) -> Iterator["_SupabaseTransaction"]:
        tx = _SupabaseTransaction(self)
        try:
            yield tx
        except Exception:
            for result in tx.created:
                self.compensate(result.order.id)
            raise


class _SupabaseTransaction:
    def __init__(self, gateway: SupabaseOrderGateway):
        self.gateway = gateway
        self.created: List[OrderCreationResult] = []

    def create_order(self, request: OrderCreationRequest) -> OrderCreationResult:
        result = self.gateway.create(request)
        if result.created:
            self.created.append(result)
        return result
