"""
Couche service des commandes: construction de la requête de création à partir d'un
snapshot + paiement, et découpage par vendeur pour les sous-commandes.
"""
from datetime import datetime, timezone
from typing import Any, Dict, List
from uuid import uuid4

from marketplace.pricing import money

from .models import OrderCreationRequest


def new_order_number(now: datetime = None) -> str:
    now = now or datetime.now(timezone.utc)
    return f"ORD-{now:%Y%m%d}-{uuid4().hex[:8].upper()}"


def split_by_seller(items: List[Dict[str, Any]]) -> Dict[str, Dict[str, Any]]:
    """
    Regroupe les lignes par seller_id.
    Retour: {seller_id: {"items": [...], "total": <float>}} (total calculé en centimes).
    """
    grouped: Dict[str, Dict[str, Any]] = {}
    cents: Dict[str, int] = {}
    for item in items:
        seller_id = str(item.get("seller_id") or "")
        grouped.setdefault(seller_id, {"items": [], "total": 0.0})["items"].append(item)
        cents[seller_id] = cents.get(seller_id, 0) + money.to_cents(item.get("subtotal") or 0)
    for seller_id, total in cents.items():
        grouped[seller_id]["total"] = money.from_cents(total)
    return grouped


def build_order_request(snapshot, payment) -> OrderCreationRequest:
    """
    Reconstruit la requête de création de commande depuis le snapshot (source de vérité
    des prix) et le paiement normalisé (métadonnées prestataire transmises telles quelles).
    """
    items = [
        {
            "product_id": line.product_id,
            "seller_id": line.seller_id,
            "quantity": line.quantity,
            "price": line.final_unit_price,
            "base_price": line.base_price,
            "seller_discount_percentage": line.seller_discount_percentage,
            "volume_discount_percentage": line.volume_discount_percentage,
            "subtotal": line.final_line_subtotal,
        }
        for line in snapshot.lines
    ]
    totals = snapshot.totals
    payment_data = {
        "method": payment.payment_method,
        "validation_type": payment.validation_type,
        "transaction_id": payment.transaction_id,
        "payment_id": payment.metadata.get("payment_id") or payment.transaction_id,
        "amount": totals.final_total,
        "paid_amount": payment.amount,
        "currency": payment.metadata.get("currency") or snapshot.metadata.get("currency") or "usd",
        "validator_metadata": dict(payment.metadata),
    }
    return OrderCreationRequest(
        user_id=snapshot.user_id,
        payment_data=payment_data,
        shipping_data=snapshot.shipping_data,
        billing_data=snapshot.billing_data,
        items=items,
        calculated_totals={
            "subtotal_original": totals.subtotal_original,
            "subtotal_after_discounts": totals.subtotal_after_discounts,
            "total_seller_discount": totals.total_seller_discount,
            "total_volume_discount": totals.total_volume_discount,
            "discount_code_amount": totals.discount_code_amount,
            "tax_amount": totals.tax_amount,
            "shipping_cost": totals.shipping_cost,
            "final_total": totals.final_total,
        },
        discount_code=snapshot.discount_code,
        session_id=snapshot.session_id,
    )
