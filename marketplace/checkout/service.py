"""
Cas d'usage 'checkout': vérifie les prix soumis, recalcule le panier côté serveur
et fige le résultat dans un snapshot en attente de paiement.
"""
import logging
from typing import Any, Dict, List, Optional, Tuple

from marketplace.catalog.repository import build_cart_lines
from marketplace.errors import ValidationError
from marketplace.pricing.models import CartPricing
from marketplace.snapshots.models import CheckoutSnapshot

logger = logging.getLogger(__name__)


def verify_submission(
    verifier,
    *,
    items: List[Dict[str, Any]],
    user_id: str,
    totals: Optional[Dict[str, Any]] = None,
    discount_code: Optional[str] = None,
) -> bool:
    """Prix seuls, ou prix + totaux si le client a soumis ses totaux."""
    if totals:
        return verifier.verify_calculated_totals(items, totals, user_id, discount_code)
    return verifier.verify_item_prices(items, user_id, discount_code)


def open_checkout(
    *,
    verifier,
    calculator,
    catalog,
    snapshots,
    session_id: str,
    user_id: str,
    items: List[Dict[str, Any]],
    totals: Optional[Dict[str, Any]] = None,
    discount_code: Optional[str] = None,
    shipping_data: Optional[Dict[str, Any]] = None,
    billing_data: Optional[Dict[str, Any]] = None,
    metadata: Optional[Dict[str, Any]] = None,
) -> Tuple[CheckoutSnapshot, CartPricing]:
    """
    1) Vérifie les prix client (TamperingDetected en cas d'écart)
    2) Recalcule le panier depuis le catalogue
    3) Stocke le snapshot sous session_id (remplace un snapshot antérieur)
    """
    if totals:
        verifier.ensure_calculated_totals(items, totals, user_id, discount_code)
    else:
        verifier.ensure_item_prices(items, user_id, discount_code)

    lines = build_cart_lines(catalog, items)
    if len(lines) != len(items):
        raise ValidationError("Produit introuvable")
    pricing = calculator.calculate_cart_totals(lines, user_id, discount_code)

    snapshot = snapshots.create(
        session_id=session_id,
        user_id=user_id,
        pricing=pricing,
        shipping_data=shipping_data or {},
        billing_data=billing_data or {},
        discount_code=discount_code,
        metadata=metadata,
    )
    snapshots.store(snapshot)
    logger.info("checkout.open session_id=%s user_id=%s final_total=%s", session_id, user_id, pricing.totals.final_total)
    return snapshot, pricing
