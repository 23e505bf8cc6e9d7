"""
Codes de réduction (pourcentage ou montant fixe) évalués sur l'agrégat du panier.
- Le code s'applique après remises vendeur + volume, avant la TVA.
- Un code invalide/expiré/utilisé/étranger soulève DiscountCodeRejected.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

from marketplace.errors import DiscountCodeRejected

from . import money

logger = logging.getLogger(__name__)

KIND_PERCENTAGE = "percentage"
KIND_FIXED = "fixed"


def _parse_datetime(value: Any) -> Optional[datetime]:
    if not value:
        return None
    if isinstance(value, datetime):
        dt = value
    else:
        dt = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    return dt if dt.tzinfo else dt.replace(tzinfo=timezone.utc)


@dataclass(frozen=True)
class DiscountCode:
    code: str
    kind: str
    value: float
    expires_at: Optional[datetime] = None
    is_used: bool = False
    owner_user_id: Optional[str] = None
    min_subtotal: float = 0.0

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "DiscountCode":
        kind = str(row.get("kind") or row.get("discount_type") or KIND_PERCENTAGE).lower()
        if kind not in (KIND_PERCENTAGE, KIND_FIXED):
            kind = KIND_PERCENTAGE
        value = row.get("value")
        if value is None:
            value = row.get("discount_percentage") or row.get("discount_amount") or 0
        owner = row.get("owner_user_id") or row.get("user_id")
        return cls(
            code=str(row.get("code") or "").strip().upper(),
            kind=kind,
            value=float(value),
            expires_at=_parse_datetime(row.get("expires_at")),
            is_used=bool(row.get("is_used")),
            owner_user_id=str(owner) if owner else None,
            min_subtotal=float(row.get("min_subtotal") or 0),
        )

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at is not None and now > self.expires_at

    def discount_cents(self, subtotal_cents: int) -> int:
        """Montant de remise en centimes, jamais supérieur au sous-total."""
        if self.kind == KIND_FIXED:
            amount = money.to_cents(self.value)
        else:
            amount = money.percentage_of(subtotal_cents, self.value)
        return max(0, min(amount, subtotal_cents))


class DiscountCodeService:
    def __init__(self, repository, clock: Optional[Callable[[], datetime]] = None):
        self.repository = repository
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    def resolve(self, code: str, user_id: str, subtotal_cents: int) -> DiscountCode:
        """
        Retrouve et valide un code pour un utilisateur et un sous-total donnés.
        - Inconnu, expiré, déjà utilisé, appartenant à un autre utilisateur
          ou sous le minimum d'achat: DiscountCodeRejected.
        """
        normalized = (code or "").strip().upper()
        if not normalized:
            raise DiscountCodeRejected("Code de réduction vide")
        discount = self.repository.find_by_code(normalized)
        if discount is None:
            raise DiscountCodeRejected("Code de réduction invalide")
        if discount.is_used:
            raise DiscountCodeRejected("Ce code de réduction a déjà été utilisé")
        if discount.is_expired(self.clock()):
            raise DiscountCodeRejected("Ce code de réduction a expiré")
        if discount.owner_user_id and discount.owner_user_id != str(user_id):
            raise DiscountCodeRejected("Ce code de réduction n'est pas valide pour ce compte")
        if subtotal_cents < money.to_cents(discount.min_subtotal):
            raise DiscountCodeRejected("Montant minimum non atteint pour ce code")
        logger.info("pricing.discount_codes resolved code=%s kind=%s user_id=%s", normalized, discount.kind, user_id)
        return discount

    def mark_used(self, code: str, user_id: str) -> bool:
        """
        Marque le code comme utilisé (appelé lors de la création de la commande).
        Retourne False si le code était déjà marqué (rejeu ou double utilisation).
        """
        normalized = (code or "").strip().upper()
        if not normalized:
            return False
        marked = self.repository.mark_used(normalized, str(user_id), self.clock())
        if marked:
            logger.info("pricing.discount_codes used code=%s user_id=%s", normalized, user_id)
        else:
            logger.warning("pricing.discount_codes already used code=%s user_id=%s", normalized, user_id)
        return marked
