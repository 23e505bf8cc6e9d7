"""
Module 'payments' (feature-first): point d'entrée public.
Réunit résultat de paiement normalisé, adaptateurs de prestataires,
verrous de session et réconciliateur.
"""

from .models import PaymentResult, ReconciliationResult, ReconciliationState
from .adapters import StripeCheckoutAdapter
from .locks import LocalSessionLock, RedisSessionLock
from .reconciler import PaymentReconciler

__all__ = [
    # models
    "PaymentResult",
    "ReconciliationResult",
    "ReconciliationState",
    # adapters
    "StripeCheckoutAdapter",
    # locks
    "LocalSessionLock",
    "RedisSessionLock",
    # reconciliation
    "PaymentReconciler",
]
