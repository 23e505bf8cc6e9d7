"""
Réconciliation paiement → commande (au plus une commande par snapshot).

Étapes, sous verrou de session:
  RECEIVED → SNAPSHOT_FOUND → AMOUNT_VALIDATED → ORDER_CREATED
avec les sorties SNAPSHOT_MISSING, AMOUNT_MISMATCH, ORDER_CREATION_FAILED.
La suppression du snapshot a lieu dans la même frontière transactionnelle que
la création de commande: un échec annule la commande et conserve le snapshot.
"""
import logging
from typing import Any, Dict, List

from marketplace.audit import sink as audit
from marketplace.errors import (
    AmountMismatch,
    OrderCreationFailure,
    ReconciliationError,
    SnapshotExpiredOrMissing,
)
from marketplace.orders.service import build_order_request
from marketplace.pricing import money

from .models import PaymentResult, ReconciliationResult, ReconciliationState

logger = logging.getLogger(__name__)

AMOUNT_EPSILON = 0.01


class PaymentReconciler:
    def __init__(self, snapshots, orders, lock, audit_sink=None, discount_codes=None):
        self.snapshots = snapshots
        self.orders = orders
        self.lock = lock
        self.discount_codes = discount_codes
        self.audit_sink = audit_sink or audit.LoggingAuditSink()

    def process_successful_payment(self, payment: PaymentResult, session_id: str) -> ReconciliationResult:
        """
        Crée la commande pour un paiement confirmé.
        Soulève SnapshotExpiredOrMissing, AmountMismatch, OrderCreationFailure
        ou ReconciliationInProgress (verrou non obtenu).
        """
        history: List[ReconciliationState] = [ReconciliationState.RECEIVED]
        logger.info(
            "payments.reconcile start session_id=%s method=%s transaction_id=%s amount=%s",
            session_id, payment.payment_method, payment.transaction_id, payment.amount,
        )
        with self.lock.hold(session_id):
            snapshot = self.snapshots.retrieve(session_id)
            # Pré-contrôle (même règle que CheckoutSnapshotStore.validate)
            if snapshot is None or not snapshot.is_well_formed():
                # Paiement encaissé sans panier exploitable: suivi opérateur
                self.audit_sink.record(
                    audit.SNAPSHOT_MISSING,
                    session_id=session_id,
                    malformed=snapshot is not None,
                    transaction_id=payment.transaction_id,
                    payment_method=payment.payment_method,
                    amount=payment.amount,
                )
                raise SnapshotExpiredOrMissing(
                    "Données de checkout introuvables ou expirées",
                    session_id=session_id, transaction_id=payment.transaction_id,
                )
            history.append(ReconciliationState.SNAPSHOT_FOUND)

            if not money.within(payment.amount, snapshot.final_total, AMOUNT_EPSILON):
                self.audit_sink.record(
                    audit.AMOUNT_MISMATCH,
                    session_id=session_id,
                    transaction_id=payment.transaction_id,
                    paid=payment.amount,
                    expected=snapshot.final_total,
                    user_id=snapshot.user_id,
                )
                raise AmountMismatch(
                    "Le montant payé ne correspond pas au total de la commande",
                    session_id=session_id, transaction_id=payment.transaction_id,
                )
            history.append(ReconciliationState.AMOUNT_VALIDATED)

            request = build_order_request(snapshot, payment)
            try:
                with self.orders.atomic() as tx:
                    created = tx.create_order(request)
                    if snapshot.discount_code and self.discount_codes is not None:
                        self.discount_codes.mark_used(snapshot.discount_code, snapshot.user_id)
                    self.snapshots.remove(session_id)
            except Exception as e:
                logger.exception("payments.reconcile order creation failed session_id=%s", session_id)
                self.audit_sink.record(
                    audit.RECONCILIATION_FAILED,
                    session_id=session_id,
                    transaction_id=payment.transaction_id,
                    state=ReconciliationState.ORDER_CREATION_FAILED.value,
                    error=str(e),
                )
                raise OrderCreationFailure(
                    "Erreur lors de la création de la commande",
                    session_id=session_id, transaction_id=payment.transaction_id,
                ) from e
            history.append(ReconciliationState.ORDER_CREATED)

        self.audit_sink.record(
            audit.RECONCILIATION_SUCCEEDED,
            session_id=session_id,
            transaction_id=payment.transaction_id,
            order_id=created.order.id,
            order_number=created.order.number,
            total=created.order.total,
        )
        logger.info(
            "payments.reconcile ok session_id=%s order_number=%s sellers=%s",
            session_id, created.order.number, len(created.seller_orders),
        )
        return ReconciliationResult(
            order=created.order.summary(),
            seller_orders=[s.summary() for s in created.seller_orders],
            payment=payment.echo(),
            session_id=session_id,
            state=ReconciliationState.ORDER_CREATED,
            snapshot_removed=True,
            history=history,
        )

    def handle_failed_payment(self, payment: PaymentResult, session_id: str) -> Dict[str, Any]:
        """Paiement refusé: le snapshot est conservé pour permettre un nouvel essai."""
        logger.warning(
            "payments.reconcile payment failed session_id=%s method=%s code=%s",
            session_id, payment.payment_method, payment.error_code,
        )
        self.audit_sink.record(
            audit.PAYMENT_FAILED,
            session_id=session_id,
            transaction_id=payment.transaction_id,
            payment_method=payment.payment_method,
            error_code=payment.error_code,
        )
        return {
            "success": False,
            "error": {
                "message": payment.error_message or "Paiement refusé",
                "code": payment.error_code,
                "payment_method": payment.payment_method,
                "validation_type": payment.validation_type,
            },
            "retry_allowed": True,
            "session_id": session_id,
        }

    def reconcile(self, payment: PaymentResult, session_id: str) -> Dict[str, Any]:
        """Point d'entrée unique: succès → commande, échec → payload rejouable."""
        if not payment.success:
            return self.handle_failed_payment(payment, session_id)
        try:
            return self.process_successful_payment(payment, session_id).as_dict()
        except ReconciliationError as e:
            return {
                "success": False,
                "state": e.state,
                "error": {"message": str(e), "code": e.code},
                "retry_allowed": e.retry_allowed,
                "session_id": session_id,
            }
