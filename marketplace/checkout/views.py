import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from marketplace.config import BASE_URL, CHECKOUT_CANCEL_PATH, CHECKOUT_SUCCESS_PATH, CURRENCY
from marketplace.dependencies import get_calculator, get_catalog, get_snapshot_store, get_verification_service
from marketplace.payments import stripe_client
from marketplace.payments.adapters import SESSION_METADATA_KEY
from marketplace.utils.rate_limit import optional_rate_limit
from marketplace.utils.security import require_user

from .service import open_checkout, verify_submission

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/v1/checkout", tags=["Checkout API"])


class VerifyRequest(BaseModel):
    items: List[Dict[str, Any]] = Field(default_factory=list)
    totals: Optional[Dict[str, Any]] = None
    discount_code: Optional[str] = None


class SessionRequest(VerifyRequest):
    session_id: str = Field(min_length=1)
    shipping_data: Dict[str, Any] = Field(default_factory=dict)
    billing_data: Dict[str, Any] = Field(default_factory=dict)


# module marketplace.checkout.views
@router.post("/verify", dependencies=[Depends(optional_rate_limit(times=30, seconds=60))])
def verify_checkout(
    req: VerifyRequest,
    user: Dict[str, Any] = Depends(require_user),
    verifier=Depends(get_verification_service),
):
    """
    Vérifie les prix (et les totaux s'ils sont fournis) soumis par le client.
    - Retour: {"valid": true}
    - Erreurs: 409 "Prix invalides" (aucun détail par champ n'est renvoyé)
    """
    ok = verify_submission(
        verifier, items=req.items, user_id=user.get("id", ""), totals=req.totals, discount_code=req.discount_code,
    )
    if not ok:
        raise HTTPException(status_code=409, detail="Prix invalides")
    return {"valid": True}


@router.post("/session", dependencies=[Depends(optional_rate_limit(times=10, seconds=60))])
def create_checkout_session(
    req: SessionRequest,
    user: Dict[str, Any] = Depends(require_user),
    verifier=Depends(get_verification_service),
    calculator=Depends(get_calculator),
    catalog=Depends(get_catalog),
    snapshots=Depends(get_snapshot_store),
):
    """
    Ouvre un checkout:
      1) vérifie les prix client et recalcule le panier (checkout.service.open_checkout)
      2) stocke le snapshot sous session_id (TTL)
      3) crée la session Stripe Checkout (metadata.checkout_session_id = session_id)
    - Retour: {session_id, expires_at, url, final_total}
    - Erreurs: 400 panier invalide, 409 prix invalides, 502 si Stripe refuse la session
    """
    user_id = user.get("id", "")
    snapshot, pricing = open_checkout(
        verifier=verifier,
        calculator=calculator,
        catalog=catalog,
        snapshots=snapshots,
        session_id=req.session_id,
        user_id=user_id,
        items=req.items,
        totals=req.totals,
        discount_code=req.discount_code,
        shipping_data=req.shipping_data,
        billing_data=req.billing_data,
        metadata={"currency": CURRENCY},
    )

    base_url = BASE_URL.rstrip("/")
    sep = "&" if "?" in CHECKOUT_SUCCESS_PATH else "?"
    try:
        session = stripe_client.create_session(
            line_items=stripe_client.to_line_items(pricing, CURRENCY),
            success_url=f"{base_url}{CHECKOUT_SUCCESS_PATH}{sep}session_id={{CHECKOUT_SESSION_ID}}",
            cancel_url=f"{base_url}{CHECKOUT_CANCEL_PATH}",
            metadata={SESSION_METADATA_KEY: snapshot.session_id, "user_id": user_id},
            client_reference_id=snapshot.session_id,
        )
    except HTTPException:
        snapshots.remove(snapshot.session_id)
        raise
    except Exception:
        logger.exception("checkout.views stripe session failed session_id=%s", snapshot.session_id)
        snapshots.remove(snapshot.session_id)
        raise HTTPException(status_code=502, detail="Session de paiement indisponible")

    return {
        "session_id": snapshot.session_id,
        "expires_at": snapshot.expires_at.isoformat(),
        "url": session.get("url"),
        "final_total": snapshot.final_total,
    }
