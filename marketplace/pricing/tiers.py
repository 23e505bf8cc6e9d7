"""
Paliers de remise par volume.
- Paliers spécifiques produit (productId -> [paliers]) prioritaires.
- Sinon, paliers par défaut issus de la configuration.
"""
import json
import logging
from typing import Any, Dict, Iterable, List, Optional

from .models import VolumeDiscountTier

logger = logging.getLogger(__name__)

DEFAULT_TIERS = [
    {"quantity": 5, "discount": 5, "label": "Remise 5+"},
    {"quantity": 6, "discount": 10, "label": "Remise 6+"},
    {"quantity": 19, "discount": 15, "label": "Remise 19+"},
]


def parse_tiers(raw: Any) -> List[VolumeDiscountTier]:
    """
    Parse une liste de paliers (list de dicts ou JSON sérialisé).
    - Retourne [] si le format est inexploitable (loggé).
    """
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except ValueError:
            logger.warning("pricing.tiers invalid JSON tiers=%s", raw)
            return []
    if not isinstance(raw, list):
        return []
    tiers = []
    for entry in raw:
        if isinstance(entry, VolumeDiscountTier):
            tiers.append(entry)
        elif isinstance(entry, dict):
            try:
                tiers.append(VolumeDiscountTier.from_dict(entry))
            except (TypeError, ValueError):
                logger.warning("pricing.tiers skipping invalid tier=%s", entry)
    return tiers


class VolumeTierCatalog:
    def __init__(
        self,
        default_tiers: Optional[Iterable[VolumeDiscountTier]] = None,
        product_tiers: Optional[Dict[str, Iterable[VolumeDiscountTier]]] = None,
        enabled: bool = True,
    ):
        self.enabled = enabled
        if default_tiers is None:
            default_tiers = parse_tiers(DEFAULT_TIERS)
        self._default = self._sorted(default_tiers)
        self._by_product = {str(pid): self._sorted(tiers) for pid, tiers in (product_tiers or {}).items()}

    @staticmethod
    def _sorted(tiers: Iterable[VolumeDiscountTier]) -> List[VolumeDiscountTier]:
        # Seuils décroissants: le premier palier atteint est le plus élevé
        return sorted(tiers, key=lambda t: t.threshold_quantity, reverse=True)

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> "VolumeTierCatalog":
        """Construit le catalogue depuis les clés volume_discounts.* de la configuration."""
        product_raw = config.get("volume_discounts.product_tiers") or {}
        if isinstance(product_raw, str):
            try:
                product_raw = json.loads(product_raw)
            except ValueError:
                logger.warning("pricing.tiers invalid product tiers JSON")
                product_raw = {}
        return cls(
            default_tiers=parse_tiers(config.get("volume_discounts.tiers", DEFAULT_TIERS)),
            product_tiers={pid: parse_tiers(t) for pid, t in (product_raw or {}).items()},
            enabled=bool(config.get("volume_discounts.enabled", True)),
        )

    def tiers_for(self, product_id: str) -> List[VolumeDiscountTier]:
        return self._by_product.get(str(product_id), self._default)

    def tier_for(self, product_id: str, quantity: int) -> Optional[VolumeDiscountTier]:
        """Palier de seuil le plus haut <= quantité, ou None."""
        if not self.enabled:
            return None
        for tier in self.tiers_for(product_id):
            if quantity >= tier.threshold_quantity:
                return tier
        return None
