import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from marketplace.catalog.repository import build_cart_lines
from marketplace.dependencies import get_calculator, get_catalog
from marketplace.errors import ValidationError
from marketplace.utils.rate_limit import optional_rate_limit
from marketplace.utils.security import require_user

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/v1/pricing", tags=["Pricing API"])


class CartRequest(BaseModel):
    items: List[Dict[str, Any]] = Field(default_factory=list)
    discount_code: Optional[str] = None


# module marketplace.pricing.views
@router.post("/cart", dependencies=[Depends(optional_rate_limit(times=30, seconds=60))])
def price_cart(
    req: CartRequest,
    user: Dict[str, Any] = Depends(require_user),
    calculator=Depends(get_calculator),
    catalog=Depends(get_catalog),
):
    """
    Calcule le panier avec les prix du catalogue (jamais ceux du client).
    - Entrée JSON: { "items": [ { "product_id": "...", "quantity": <int> } ], "discount_code": "..." }
    - Retour: { "lines": [...], "totals": {...}, "discount": {...}|null }
    - Erreurs: 400 si panier invalide, produit inconnu ou code refusé
    """
    lines = build_cart_lines(catalog, req.items)
    if len(lines) != len(req.items):
        raise ValidationError("Produit introuvable")
    pricing = calculator.calculate_cart_totals(lines, user.get("id", ""), req.discount_code)
    logger.info("pricing.views cart user_id=%s final_total=%s", user.get("id"), pricing.totals.final_total)
    return pricing.to_dict()
