import logging
from typing import Any, Dict

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from marketplace.dependencies import get_reconciler, get_snapshot_store, get_stripe_adapter
from marketplace.payments import stripe_client
from marketplace.utils.rate_limit import optional_rate_limit
from marketplace.utils.security import require_user

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/v1/payments", tags=["Payments API"])

# Codes HTTP par issue de réconciliation (payload 'state')
STATUS_BY_STATE = {
    "SNAPSHOT_MISSING": 404,
    "AMOUNT_MISMATCH": 409,
    "ORDER_CREATION_FAILED": 502,
    "RECEIVED": 409,
}


class ConfirmRequest(BaseModel):
    session_id: str = Field(min_length=1)
    stripe_session_id: str = Field(min_length=1)


def _status_for(outcome: Dict[str, Any]) -> int:
    if outcome.get("success"):
        return 200
    if "state" not in outcome:
        # Paiement refusé par le prestataire
        return 402
    return STATUS_BY_STATE.get(outcome.get("state"), 400)


# module marketplace.payments.views
@router.post("/webhook", include_in_schema=False)
async def webhook_stripe(request: Request, adapter=Depends(get_stripe_adapter), reconciler=Depends(get_reconciler)):
    """
    Webhook Stripe (Checkout): checkout.session.* -> PaymentResult -> réconciliation.
    - Signature: stripe_client.parse_event (Stripe-Signature + STRIPE_WEBHOOK_SECRET)
    - Réponses: {"status": "ok", ...} ou {"status": "ignored"}
    - 503 si l'échec est rejouable (Stripe renverra l'événement), 200 sinon
    """
    event = await stripe_client.parse_event(request)
    parsed = adapter.from_event(event)
    if parsed is None:
        return JSONResponse({"status": "ignored"})
    payment, session_id = parsed
    if not session_id:
        logger.warning("payments.webhook missing checkout_session_id event=%s", event.get("id"))
        return JSONResponse({"status": "ignored"})

    outcome = reconciler.reconcile(payment, session_id)
    logger.info(
        "payments.webhook session_id=%s success=%s state=%s",
        session_id, outcome.get("success"), outcome.get("state"),
    )
    if not outcome.get("success") and outcome.get("retry_allowed") and "state" in outcome:
        return JSONResponse(status_code=503, content={"status": "retry", **outcome})
    return JSONResponse({"status": "ok", **outcome})


@router.post("/confirm", dependencies=[Depends(optional_rate_limit(times=10, seconds=60))])
def confirm_payment(
    req: ConfirmRequest,
    user: Dict[str, Any] = Depends(require_user),
    snapshots=Depends(get_snapshot_store),
    adapter=Depends(get_stripe_adapter),
    reconciler=Depends(get_reconciler),
):
    """
    Confirmation au retour du client: {session_id, stripe_session_id}.
    - Le paiement n'est jamais lu dans le body: la session Stripe est relue côté serveur
      (stripe_client.get_session) puis traduite par l'adaptateur.
    - 409 si la session Stripe n'est pas liée à ce checkout.
    - Vérifie la propriété du snapshot (403 si session d'un autre utilisateur).
    - Retour: payload de réconciliation; code HTTP selon l'issue (404/409/402/502).
    """
    session = stripe_client.get_session(req.stripe_session_id)
    payment, linked_session_id = adapter.from_session(session)
    if linked_session_id != req.session_id:
        logger.warning(
            "payments.confirm session mismatch stripe=%s linked=%s requested=%s",
            req.stripe_session_id, linked_session_id, req.session_id,
        )
        raise HTTPException(status_code=409, detail="Session de paiement non liée à ce checkout")

    snapshot = snapshots.retrieve(req.session_id)
    if snapshot is not None and snapshot.user_id != str(user.get("id")):
        raise HTTPException(status_code=403, detail="Session appartenant à un autre utilisateur")

    outcome = reconciler.reconcile(payment, req.session_id)
    return JSONResponse(status_code=_status_for(outcome), content=outcome)
