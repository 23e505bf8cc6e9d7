"""
Résolveurs de configuration, essayés dans l'ordre par ConfigurationService:
cache Redis -> table Supabase 'configurations' -> variables d'environnement -> valeurs par défaut.
Chaque résolveur retourne la valeur ou None (clé inconnue / source indisponible).
"""
import json
import logging
import os
from typing import Any, Dict, Optional

import marketplace.infra.supabase_client as supabase_client

logger = logging.getLogger(__name__)

DEFAULTS: Dict[str, Any] = {
    "tax.rate_percentage": 15.0,
    "shipping.enabled": True,
    "shipping.free_threshold": 50.0,
    "shipping.default_cost": 5.0,
    "volume_discounts.enabled": True,
    "volume_discounts.tiers": [
        {"quantity": 5, "discount": 5, "label": "Remise 5+"},
        {"quantity": 6, "discount": 10, "label": "Remise 6+"},
        {"quantity": 19, "discount": 15, "label": "Remise 19+"},
    ],
    "volume_discounts.product_tiers": {},
}


def _decode(raw: Any) -> Any:
    """Les sources texte (Redis, env, colonne text) stockent du JSON; sinon valeur brute."""
    if not isinstance(raw, str):
        return raw
    try:
        return json.loads(raw)
    except ValueError:
        return raw


class RedisCacheResolver:
    name = "cache"

    def __init__(self, redis_factory, ttl: int = 3600, prefix: str = "config:"):
        self.redis_factory = redis_factory
        self.ttl = ttl
        self.prefix = prefix

    def get(self, key: str) -> Optional[Any]:
        try:
            raw = self.redis_factory().get(self.prefix + key)
        except Exception as e:
            logger.warning("settings.cache get failed key=%s error=%s", key, e)
            return None
        return _decode(raw) if raw is not None else None

    def remember(self, key: str, value: Any) -> None:
        try:
            self.redis_factory().set(self.prefix + key, json.dumps(value), ex=self.ttl)
        except Exception as e:
            logger.warning("settings.cache set failed key=%s error=%s", key, e)

    def forget(self, key: str) -> None:
        try:
            self.redis_factory().delete(self.prefix + key)
        except Exception as e:
            logger.warning("settings.cache delete failed key=%s error=%s", key, e)


class SupabaseConfigResolver:
    name = "store"
    table = "configurations"

    def get(self, key: str) -> Optional[Any]:
        try:
            res = (
                supabase_client.get_supabase()
                .table(self.table)
                .select("value")
                .eq("key", key)
                .limit(1)
                .execute()
            )
        except Exception as e:
            logger.warning("settings.store get failed key=%s error=%s", key, e)
            return None
        rows = res.data or []
        return _decode(rows[0].get("value")) if rows else None

    def put(self, key: str, value: Any) -> None:
        (
            supabase_client.get_service_supabase()
            .table(self.table)
            .upsert({"key": key, "value": json.dumps(value)}, on_conflict="key")
            .execute()
        )


class EnvironmentResolver:
    """shipping.free_threshold -> SHIPPING_FREE_THRESHOLD"""

    name = "env"

    def __init__(self, environ=None):
        self.environ = environ if environ is not None else os.environ

    @staticmethod
    def env_name(key: str) -> str:
        return key.replace(".", "_").upper()

    def get(self, key: str) -> Optional[Any]:
        raw = self.environ.get(self.env_name(key))
        if raw is None or raw == "":
            return None
        return _decode(raw)


class DefaultsResolver:
    name = "default"

    def __init__(self, defaults: Optional[Dict[str, Any]] = None):
        self.defaults = DEFAULTS if defaults is None else defaults

    def get(self, key: str) -> Optional[Any]:
        return self.defaults.get(key)
