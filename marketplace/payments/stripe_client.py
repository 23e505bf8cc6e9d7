"""
Adaptateur Stripe: centralise les appels et la configuration Stripe.
"""
import json
import logging
from typing import Any, Dict, List

import stripe
from fastapi import HTTPException, Request

from marketplace.config import STRIPE_SECRET_KEY, STRIPE_WEBHOOK_SECRET
from marketplace.pricing import money

logger = logging.getLogger(__name__)


# module marketplace.payments.stripe_client
def require_stripe():
    """
    Prépare et retourne le module stripe prêt à l'emploi.
    - Configure stripe.api_key via STRIPE_SECRET_KEY.
    - 500 si la clé est absente (aucun appel Stripe possible).
    """
    if not STRIPE_SECRET_KEY:
        raise HTTPException(status_code=500, detail="STRIPE_SECRET_KEY manquant")
    stripe.api_key = STRIPE_SECRET_KEY
    return stripe


def create_session(
    *,
    line_items: List[Dict[str, Any]],
    success_url: str,
    cancel_url: str,
    metadata: Dict[str, Any],
    client_reference_id: str = "",
) -> Dict[str, Any]:
    """
    Crée une session Stripe Checkout (mode paiement, carte).
    - metadata: {"checkout_session_id": "...", "user_id": "..."} (valeurs str)
    Retour: dict session (ex: {"id": "cs_test_...", "url": "https://..."})
    """
    require_stripe()
    params = dict(
        line_items=line_items,
        mode="payment",
        success_url=success_url,
        cancel_url=cancel_url,
        metadata={k: str(v) for k, v in metadata.items()},
        payment_method_types=["card"],
    )
    if client_reference_id:
        params["client_reference_id"] = client_reference_id
    session = stripe.checkout.Session.create(**params)
    # stripe retourne un objet; on le traite comme dict-compatible
    return dict(session)


def get_session(session_id: str) -> Dict[str, Any]:
    """
    Récupère une session Stripe Checkout par son identifiant (source de vérité du paiement).
    - 404 si Stripe ne connaît pas la session, 502 pour les autres erreurs Stripe.
    Retour: dict session incluant "id", "payment_status", "amount_total", "metadata", etc.
    """
    require_stripe()
    try:
        session = stripe.checkout.Session.retrieve(session_id)
    except stripe.InvalidRequestError as e:
        logger.warning("payments.stripe unknown session id=%s: %s", session_id, e)
        raise HTTPException(status_code=404, detail="Session de paiement introuvable")
    except stripe.StripeError as e:
        logger.error("payments.stripe retrieve failed id=%s: %s", session_id, e)
        raise HTTPException(status_code=502, detail="Prestataire de paiement indisponible")
    return dict(session)


async def parse_event(request: Request) -> Dict[str, Any]:
    """
    Parse et valide un événement Stripe signé (webhook).
    - Sans STRIPE_WEBHOOK_SECRET (dev uniquement): JSON brut non vérifié.
    - 400 si la signature ou le payload sont invalides.
    """
    payload = await request.body()
    sig = request.headers.get("stripe-signature")
    if not STRIPE_WEBHOOK_SECRET:
        logger.warning("payments.stripe webhook secret missing, signature not verified")
        try:
            return json.loads(payload.decode("utf-8"))
        except ValueError:
            raise HTTPException(status_code=400, detail="Invalid Stripe webhook payload")
    try:
        event = stripe.Webhook.construct_event(payload=payload, sig_header=sig, secret=STRIPE_WEBHOOK_SECRET)
    except (ValueError, stripe.SignatureVerificationError) as e:
        logger.warning("payments.stripe invalid webhook: %s", e)
        raise HTTPException(status_code=400, detail="Invalid Stripe webhook payload")
    return event.to_dict() if hasattr(event, "to_dict") else dict(event)


def to_line_items(pricing, currency: str) -> List[Dict[str, Any]]:
    """
    Une seule ligne Stripe au montant final du snapshot (taxe, livraison et code inclus),
    pour que amount_total corresponde exactement au total recalculé côté serveur.
    """
    count = sum(int(line.quantity) for line in pricing.lines)
    return [
        {
            "price_data": {
                "currency": currency,
                "product_data": {"name": f"Commande marketplace ({count} articles)"},
                "unit_amount": money.to_cents(pricing.totals.final_total),
            },
            "quantity": 1,
        }
    ]
