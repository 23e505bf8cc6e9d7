"""
ConfigurationService: accès mis en cache aux paramètres métier (TVA, livraison, paliers).
- get(key): mémoire du process (TTL court) -> résolveurs dans l'ordre; la première valeur
  non None gagne. Une valeur trouvée après le cache Redis y est réécrite.
  Seules les valeurs du cache ou du store sont gardées en mémoire: un repli env/défaut
  (store indisponible) est relu à chaque appel.
- set(key, value): écrit dans le store persistant puis invalide les caches.
- pricing_config(): instantané typé, recalculé après invalidation.
"""
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Tuple

from marketplace.pricing.tiers import VolumeTierCatalog

logger = logging.getLogger(__name__)

_MISSING = object()

# Sources dont la valeur peut être gardée en mémoire du process
MEMOIZED_SOURCES = ("cache", "store")

PRICING_KEYS = (
    "tax.rate_percentage",
    "shipping.enabled",
    "shipping.free_threshold",
    "shipping.default_cost",
    "volume_discounts.enabled",
    "volume_discounts.tiers",
    "volume_discounts.product_tiers",
)


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "on")
    return bool(value)


@dataclass(frozen=True)
class PricingConfig:
    tax_rate_percentage: float = 15.0
    shipping_enabled: bool = True
    free_shipping_threshold: float = 50.0
    default_shipping_cost: float = 5.0
    volume_discounts_enabled: bool = True


class StaticConfigProvider:
    """Fournisseur figé (dev/tests) exposant la même interface que ConfigurationService."""

    def __init__(self, pricing: Optional[PricingConfig] = None, tier_catalog: Optional[VolumeTierCatalog] = None):
        self._pricing = pricing or PricingConfig()
        self._catalog = tier_catalog or VolumeTierCatalog(enabled=self._pricing.volume_discounts_enabled)

    def pricing_config(self) -> PricingConfig:
        return self._pricing

    def volume_tier_catalog(self) -> VolumeTierCatalog:
        return self._catalog


class ConfigurationService:
    def __init__(
        self,
        resolvers: List[Any],
        store=None,
        cache=None,
        memory_ttl: float = 30.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.resolvers = list(resolvers)
        self.store = store
        self.cache = cache
        self.memory_ttl = memory_ttl
        self.clock = clock
        # clé -> (valeur, échéance); les instantanés typés suivent la même échéance
        self._memory: Dict[str, Tuple[Any, float]] = {}
        self._pricing: Optional[Tuple[PricingConfig, float]] = None
        self._catalog: Optional[Tuple[VolumeTierCatalog, float]] = None

    def _fresh(self, entry: Optional[Tuple[Any, float]]) -> Any:
        if entry is None or self.clock() >= entry[1]:
            return _MISSING
        return entry[0]

    def get(self, key: str, default: Any = None) -> Any:
        cached = self._fresh(self._memory.get(key))
        if cached is not _MISSING:
            return cached
        self._memory.pop(key, None)
        for resolver in self.resolvers:
            value = resolver.get(key)
            if value is None:
                continue
            source = getattr(resolver, "name", "")
            if self.cache is not None and source == "store":
                self.cache.remember(key, value)
            if source in MEMOIZED_SOURCES and self.memory_ttl > 0:
                self._memory[key] = (value, self.clock() + self.memory_ttl)
            logger.debug("settings.get key=%s source=%s", key, source or resolver)
            return value
        return default

    def set(self, key: str, value: Any) -> None:
        if self.store is None:
            raise RuntimeError("Aucun store persistant configuré pour écrire la configuration")
        self.store.put(key, value)
        self.invalidate(key)
        logger.info("settings.set key=%s", key)

    def invalidate(self, key: Optional[str] = None) -> None:
        """
        Invalide une clé (ou tout) dans la mémoire du process et le cache Redis.
        Les autres workers relisent au plus tard après memory_ttl.
        """
        keys = [key] if key else list(self._memory.keys() | set(PRICING_KEYS))
        for k in keys:
            self._memory.pop(k, None)
            if self.cache is not None:
                self.cache.forget(k)
        if key is None or key in PRICING_KEYS:
            self._pricing = None
            self._catalog = None

    def pricing_config(self) -> PricingConfig:
        pricing = self._fresh(self._pricing)
        if pricing is _MISSING:
            defaults = PricingConfig()
            pricing = PricingConfig(
                tax_rate_percentage=float(self.get("tax.rate_percentage", defaults.tax_rate_percentage)),
                shipping_enabled=_as_bool(self.get("shipping.enabled", defaults.shipping_enabled)),
                free_shipping_threshold=float(self.get("shipping.free_threshold", defaults.free_shipping_threshold)),
                default_shipping_cost=float(self.get("shipping.default_cost", defaults.default_shipping_cost)),
                volume_discounts_enabled=_as_bool(self.get("volume_discounts.enabled", defaults.volume_discounts_enabled)),
            )
            self._pricing = (pricing, self.clock() + self.memory_ttl)
        return pricing

    def volume_tier_catalog(self) -> VolumeTierCatalog:
        catalog = self._fresh(self._catalog)
        if catalog is _MISSING:
            catalog = VolumeTierCatalog.from_config({
                "volume_discounts.enabled": self.pricing_config().volume_discounts_enabled,
                "volume_discounts.tiers": self.get("volume_discounts.tiers"),
                "volume_discounts.product_tiers": self.get("volume_discounts.product_tiers"),
            })
            self._catalog = (catalog, self.clock() + self.memory_ttl)
        return catalog
