"""
Adaptateurs de prestataires: traduisent une confirmation externe en PaymentResult.
Le réconciliateur ne connaît que PaymentResult; chaque prestataire a son adaptateur.
"""
import logging
from typing import Any, Dict, Optional, Tuple

from marketplace.pricing import money

from .models import PaymentResult

logger = logging.getLogger(__name__)

SESSION_METADATA_KEY = "checkout_session_id"


class StripeCheckoutAdapter:
    method = "stripe"
    validation_type = "stripe_checkout"

    SUCCESS_EVENTS = ("checkout.session.completed", "checkout.session.async_payment_succeeded")
    FAILURE_EVENTS = {
        "checkout.session.async_payment_failed": "payment_failed",
        "checkout.session.expired": "session_expired",
    }

    @staticmethod
    def session_id_of(session: Dict[str, Any]) -> str:
        meta = session.get("metadata") or {}
        return str(meta.get(SESSION_METADATA_KEY) or session.get("client_reference_id") or "")

    def from_session(self, session: Dict[str, Any], error_code: Optional[str] = None) -> Tuple[PaymentResult, str]:
        """
        (PaymentResult, session_id de checkout) depuis une session Stripe Checkout.
        - amount_total est en centimes; success si payment_status == 'paid'.
        """
        status = str(session.get("payment_status") or "")
        success = error_code is None and status in ("paid", "no_payment_required")
        result = PaymentResult(
            payment_method=self.method,
            validation_type=self.validation_type,
            transaction_id=str(session.get("payment_intent") or session.get("id") or ""),
            amount=money.from_cents(int(session.get("amount_total") or 0)),
            success=success,
            error_message=None if success else f"Paiement non confirmé (payment_status={status})",
            error_code=None if success else (error_code or "payment_not_paid"),
            metadata={
                "payment_id": session.get("id"),
                "payment_intent": session.get("payment_intent"),
                "currency": session.get("currency"),
                "customer_email": (session.get("customer_details") or {}).get("email"),
            },
        )
        return result, self.session_id_of(session)

    def from_event(self, event: Dict[str, Any]) -> Optional[Tuple[PaymentResult, str]]:
        """Retourne None pour les types d'événements non gérés."""
        event_type = (event or {}).get("type") or ""
        session = ((event or {}).get("data") or {}).get("object") or {}
        if event_type in self.SUCCESS_EVENTS:
            return self.from_session(session)
        if event_type in self.FAILURE_EVENTS:
            return self.from_session(session, error_code=self.FAILURE_EVENTS[event_type])
        logger.info("payments.adapters ignored event type=%s", event_type)
        return None
