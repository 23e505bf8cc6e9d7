"""
Types de la feature 'payments': résultat de paiement normalisé et issue de réconciliation.
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


class ReconciliationState(str, Enum):
    RECEIVED = "RECEIVED"
    SNAPSHOT_FOUND = "SNAPSHOT_FOUND"
    AMOUNT_VALIDATED = "AMOUNT_VALIDATED"
    ORDER_CREATED = "ORDER_CREATED"
    SNAPSHOT_MISSING = "SNAPSHOT_MISSING"
    AMOUNT_MISMATCH = "AMOUNT_MISMATCH"
    ORDER_CREATION_FAILED = "ORDER_CREATION_FAILED"


@dataclass(frozen=True)
class PaymentResult:
    """Confirmation de paiement normalisée par un adaptateur de prestataire."""

    payment_method: str
    validation_type: str
    transaction_id: str
    amount: float
    success: bool
    error_message: Optional[str] = None
    error_code: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def echo(self) -> Dict[str, Any]:
        return {
            "method": self.payment_method,
            "validation_type": self.validation_type,
            "transaction_id": self.transaction_id,
            "amount": self.amount,
        }


@dataclass
class ReconciliationResult:
    order: Dict[str, Any]
    seller_orders: List[Dict[str, Any]]
    payment: Dict[str, Any]
    session_id: str
    state: ReconciliationState = ReconciliationState.ORDER_CREATED
    snapshot_removed: bool = True
    history: List[ReconciliationState] = field(default_factory=list)

    def as_dict(self) -> Dict[str, Any]:
        return {
            "success": True,
            "state": self.state.value,
            "order": self.order,
            "seller_orders": self.seller_orders,
            "payment": self.payment,
            "session_id": self.session_id,
            "checkout_data_cleaned": self.snapshot_removed,
        }
