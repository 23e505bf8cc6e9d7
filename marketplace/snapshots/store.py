"""
Stockage temporaire des snapshots de checkout (entre la confirmation du panier
et la confirmation du paiement par le prestataire).

- Clé: 'checkout_snapshot:<session_id>'; session_id opaque fourni par l'appelant,
  jamais dérivé du user_id.
- TTL côté backend + expires_at explicite dans le payload; retrieve() applique les deux
  et évince l'entrée périmée ou corrompue.
- Pas de balayage en tâche de fond: l'expiration est appliquée paresseusement.
"""
import json
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Optional

from marketplace.config import CHECKOUT_SNAPSHOT_TTL
from marketplace.errors import ValidationError
from marketplace.pricing.models import CartPricing

from .models import CheckoutSnapshot

logger = logging.getLogger(__name__)

KEY_PREFIX = "checkout_snapshot:"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CheckoutSnapshotStore:
    def __init__(self, backend, ttl: int = CHECKOUT_SNAPSHOT_TTL, clock: Optional[Callable[[], datetime]] = None):
        self.backend = backend
        self.ttl = int(ttl)
        self.clock = clock or _utcnow

    @staticmethod
    def key_for(session_id: str) -> str:
        if not session_id or not str(session_id).strip():
            raise ValidationError("session_id requis")
        return KEY_PREFIX + str(session_id).strip()

    def create(
        self,
        *,
        session_id: str,
        user_id: str,
        pricing: CartPricing,
        shipping_data: Dict[str, Any],
        billing_data: Dict[str, Any],
        discount_code: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> CheckoutSnapshot:
        """Construit un snapshot horodaté (created_at/expires_at) depuis un calcul de prix."""
        self.key_for(session_id)
        now = self.clock()
        return CheckoutSnapshot(
            session_id=str(session_id).strip(),
            user_id=str(user_id),
            lines=list(pricing.lines),
            totals=pricing.totals,
            shipping_data=dict(shipping_data or {}),
            billing_data=dict(billing_data or {}),
            created_at=now,
            expires_at=now + timedelta(seconds=self.ttl),
            discount_code=discount_code,
            metadata=dict(metadata or {}),
        )

    def store(self, snapshot: CheckoutSnapshot) -> str:
        """Persiste le snapshot sous sa clé de session (remplace un snapshot antérieur)."""
        key = self.key_for(snapshot.session_id)
        self.backend.put(key, json.dumps(snapshot.to_storage_dict()), self.ttl)
        logger.info(
            "snapshots.store session_id=%s user_id=%s expires_at=%s ttl=%s",
            snapshot.session_id, snapshot.user_id, snapshot.expires_at.isoformat(), self.ttl,
        )
        return key

    def _decode(self, session_id: str, raw: Optional[str]) -> Optional[CheckoutSnapshot]:
        if raw is None:
            return None
        try:
            return CheckoutSnapshot.from_storage_dict(json.loads(raw))
        except (ValueError, ValidationError) as e:
            logger.error("snapshots.retrieve corrupt payload session_id=%s error=%s", session_id, e)
            self.remove(session_id)
            return None

    def retrieve(self, session_id: str) -> Optional[CheckoutSnapshot]:
        """
        Retourne le snapshot, ou None si:
        - absent du backend,
        - expiré selon expires_at (l'entrée est alors évincée),
        - corrompu (évincé également).
        """
        key = self.key_for(session_id)
        raw = self.backend.get(key)
        if raw is None:
            logger.warning("snapshots.retrieve not found session_id=%s", session_id)
            return None
        snapshot = self._decode(session_id, raw)
        if snapshot is None:
            return None
        if snapshot.is_expired(self.clock()):
            logger.warning("snapshots.retrieve expired session_id=%s expired_at=%s", session_id, snapshot.expires_at.isoformat())
            self.remove(session_id)
            return None
        return snapshot

    def remove(self, session_id: str) -> bool:
        removed = self.backend.forget(self.key_for(session_id))
        logger.info("snapshots.remove session_id=%s removed=%s", session_id, removed)
        return removed

    def exists(self, session_id: str) -> bool:
        return self.backend.has(self.key_for(session_id))

    def validate(self, session_id: str) -> bool:
        """Pré-contrôle avant réconciliation: récupérable, lignes non vides, total > 0."""
        snapshot = self.retrieve(session_id)
        if snapshot is None:
            return False
        if not snapshot.is_well_formed():
            logger.warning("snapshots.validate invalid snapshot=%s", snapshot.summary())
            return False
        return True

    def stats(self) -> Dict[str, Any]:
        return {
            "key_prefix": KEY_PREFIX,
            "ttl_seconds": self.ttl,
            "backend": getattr(self.backend, "name", type(self.backend).__name__),
        }

    def is_checkout_request(self, payload: Dict[str, Any]) -> bool:
        """Vrai si le payload référence un session_id dont le snapshot existe."""
        session_id = (payload or {}).get("session_id")
        return bool(session_id) and self.exists(session_id)
