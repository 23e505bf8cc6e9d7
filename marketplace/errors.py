"""
Taxonomie des erreurs du checkout.

- ValidationError / TamperingDetected: résolues avant tout paiement (rejet synchrone).
- ReconciliationError et sous-classes: surviennent après un paiement confirmé;
  retry_allowed distingue les cas rejouables des cas nécessitant un opérateur.
"""
from typing import Optional


class CheckoutError(Exception):
    code = "checkout_error"

    def __init__(self, message: str, code: Optional[str] = None):
        super().__init__(message)
        if code:
            self.code = code


class ValidationError(CheckoutError):
    code = "invalid"


class DiscountCodeRejected(ValidationError):
    code = "discount_code_rejected"


class TamperingDetected(CheckoutError):
    code = "tampering_detected"


class ReconciliationError(CheckoutError):
    code = "reconciliation_error"
    state = None
    retry_allowed = False

    def __init__(self, message: str, session_id: str = "", transaction_id: str = ""):
        super().__init__(message)
        self.session_id = session_id
        self.transaction_id = transaction_id


class SnapshotExpiredOrMissing(ReconciliationError):
    code = "snapshot_missing"
    state = "SNAPSHOT_MISSING"
    retry_allowed = False


class AmountMismatch(ReconciliationError):
    code = "amount_mismatch"
    state = "AMOUNT_MISMATCH"
    retry_allowed = False


class OrderCreationFailure(ReconciliationError):
    code = "order_creation_failed"
    state = "ORDER_CREATION_FAILED"
    retry_allowed = True


class ReconciliationInProgress(ReconciliationError):
    # Verrou de session non obtenu: un autre appel traite déjà ce session_id
    code = "reconciliation_in_progress"
    state = "RECEIVED"
    retry_allowed = True
