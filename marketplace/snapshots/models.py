"""
CheckoutSnapshot: panier calculé, figé, en attente de confirmation de paiement.
Jamais modifié en place: un recalcul produit un nouveau snapshot sous la même clé.
"""
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from marketplace.errors import ValidationError
from marketplace.pricing.models import PricedLine, Totals


def _parse_datetime(value: Any) -> datetime:
    if isinstance(value, datetime):
        dt = value
    else:
        dt = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    return dt if dt.tzinfo else dt.replace(tzinfo=timezone.utc)


@dataclass(frozen=True)
class CheckoutSnapshot:
    session_id: str
    user_id: str
    lines: List[PricedLine]
    totals: Totals
    shipping_data: Dict[str, Any]
    billing_data: Dict[str, Any]
    created_at: datetime
    expires_at: datetime
    discount_code: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def final_total(self) -> float:
        return self.totals.final_total

    def is_expired(self, now: datetime) -> bool:
        return now > self.expires_at

    def is_well_formed(self) -> bool:
        return bool(self.session_id) and bool(self.lines) and self.totals.final_total > 0

    def to_storage_dict(self) -> Dict[str, Any]:
        return {
            "session_id": self.session_id,
            "user_id": self.user_id,
            "lines": [line.to_dict() for line in self.lines],
            "totals": self.totals.to_dict(),
            "shipping_data": self.shipping_data,
            "billing_data": self.billing_data,
            "created_at": self.created_at.isoformat(),
            "expires_at": self.expires_at.isoformat(),
            "discount_code": self.discount_code,
            "metadata": self.metadata,
        }

    @classmethod
    def from_storage_dict(cls, data: Dict[str, Any]) -> "CheckoutSnapshot":
        """Reconstruit un snapshot; soulève ValidationError si le payload est incomplet."""
        required = ("session_id", "user_id", "lines", "totals", "created_at", "expires_at")
        missing = [k for k in required if data.get(k) is None]
        if missing:
            raise ValidationError(f"Snapshot incomplet: {', '.join(missing)}")
        try:
            return cls(
                session_id=str(data["session_id"]),
                user_id=str(data["user_id"]),
                lines=[PricedLine.from_dict(line) for line in data["lines"]],
                totals=Totals.from_dict(data["totals"]),
                shipping_data=dict(data.get("shipping_data") or {}),
                billing_data=dict(data.get("billing_data") or {}),
                created_at=_parse_datetime(data["created_at"]),
                expires_at=_parse_datetime(data["expires_at"]),
                discount_code=data.get("discount_code"),
                metadata=dict(data.get("metadata") or {}),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise ValidationError(f"Snapshot corrompu: {e}")

    def summary(self) -> Dict[str, Any]:
        """Vue minimale pour les logs (sans données personnelles)."""
        return {
            "session_id": self.session_id,
            "user_id": self.user_id,
            "items": len(self.lines),
            "final_total": self.final_total,
            "expires_at": self.expires_at.isoformat(),
            "has_discount_code": bool(self.discount_code),
        }
