"""
Contrat du collaborateur de création de commande (entrée/sortie).
"""
from dataclasses import dataclass, field, asdict
from typing import Any, Dict, List, Optional


@dataclass(frozen=True)
class OrderCreationRequest:
    user_id: str
    payment_data: Dict[str, Any]
    shipping_data: Dict[str, Any]
    billing_data: Dict[str, Any]
    items: List[Dict[str, Any]]
    calculated_totals: Dict[str, Any]
    discount_code: Optional[str] = None
    session_id: str = ""

    @property
    def transaction_id(self) -> str:
        return str(self.payment_data.get("transaction_id") or "")

    def to_payload(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class OrderRecord:
    id: str
    number: str
    total: float
    status: str
    user_id: str = ""
    transaction_id: str = ""

    def summary(self) -> Dict[str, Any]:
        return {"id": self.id, "number": self.number, "total": self.total, "status": self.status}


@dataclass(frozen=True)
class SellerOrderRecord:
    id: str
    seller_id: str
    total: float
    items: List[Dict[str, Any]] = field(default_factory=list)

    def summary(self) -> Dict[str, Any]:
        return {"id": self.id, "seller_id": self.seller_id, "total": self.total}


@dataclass(frozen=True)
class OrderCreationResult:
    order: OrderRecord
    seller_orders: List[SellerOrderRecord] = field(default_factory=list)
    created: bool = True
