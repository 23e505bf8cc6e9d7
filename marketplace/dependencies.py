"""
Assemblage des services (singletons paresseux) pour les vues FastAPI.
- Chaque get_* est une dépendance FastAPI; les tests les remplacent via
  app.dependency_overrides.
- Backends choisis par configuration: SNAPSHOT_BACKEND (redis|memory),
  LOCK_BACKEND (redis|local).
"""
import logging
from functools import lru_cache

from marketplace.audit.sink import LoggingAuditSink
from marketplace.catalog.repository import SupabaseProductCatalog
from marketplace.config import (
    CHECKOUT_SNAPSHOT_TTL,
    CONFIG_CACHE_TTL,
    CONFIG_MEMORY_TTL,
    LOCK_BACKEND,
    LOCK_BLOCKING_TIMEOUT_SECONDS,
    LOCK_TIMEOUT_SECONDS,
    SNAPSHOT_BACKEND,
)
from marketplace.infra.redis_client import get_redis
from marketplace.orders.repository import SupabaseOrderGateway
from marketplace.payments.adapters import StripeCheckoutAdapter
from marketplace.payments.locks import LocalSessionLock, RedisSessionLock
from marketplace.payments.reconciler import PaymentReconciler
from marketplace.pricing.calculator import PricingCalculator
from marketplace.pricing.discount_codes import DiscountCodeService
from marketplace.pricing.repository import SupabaseDiscountCodeRepository
from marketplace.settings.resolvers import (
    DefaultsResolver,
    EnvironmentResolver,
    RedisCacheResolver,
    SupabaseConfigResolver,
)
from marketplace.settings.service import ConfigurationService
from marketplace.snapshots.backends import MemorySnapshotBackend, RedisSnapshotBackend
from marketplace.snapshots.store import CheckoutSnapshotStore
from marketplace.verification.service import PriceVerificationService

logger = logging.getLogger(__name__)


@lru_cache(maxsize=1)
def get_audit_sink():
    return LoggingAuditSink()


@lru_cache(maxsize=1)
def get_configuration_service() -> ConfigurationService:
    cache = RedisCacheResolver(get_redis, ttl=CONFIG_CACHE_TTL)
    store = SupabaseConfigResolver()
    return ConfigurationService(
        resolvers=[cache, store, EnvironmentResolver(), DefaultsResolver()],
        store=store,
        cache=cache,
        memory_ttl=CONFIG_MEMORY_TTL,
    )


@lru_cache(maxsize=1)
def get_catalog():
    return SupabaseProductCatalog()


@lru_cache(maxsize=1)
def get_discount_code_service() -> DiscountCodeService:
    return DiscountCodeService(SupabaseDiscountCodeRepository())


@lru_cache(maxsize=1)
def get_calculator() -> PricingCalculator:
    return PricingCalculator(get_configuration_service(), discount_codes=get_discount_code_service())


@lru_cache(maxsize=1)
def get_verification_service() -> PriceVerificationService:
    return PriceVerificationService(get_calculator(), get_catalog(), audit_sink=get_audit_sink())


@lru_cache(maxsize=1)
def get_snapshot_store() -> CheckoutSnapshotStore:
    if SNAPSHOT_BACKEND == "memory":
        # Mono-process uniquement: les snapshots ne survivent pas au redémarrage
        logger.warning("dependencies: snapshot backend=memory")
        backend = MemorySnapshotBackend()
    else:
        backend = RedisSnapshotBackend(get_redis)
    return CheckoutSnapshotStore(backend, ttl=CHECKOUT_SNAPSHOT_TTL)


@lru_cache(maxsize=1)
def get_session_lock():
    if LOCK_BACKEND == "local":
        return LocalSessionLock(blocking_timeout=LOCK_BLOCKING_TIMEOUT_SECONDS)
    return RedisSessionLock(get_redis, timeout=LOCK_TIMEOUT_SECONDS, blocking_timeout=LOCK_BLOCKING_TIMEOUT_SECONDS)


@lru_cache(maxsize=1)
def get_reconciler() -> PaymentReconciler:
    return PaymentReconciler(
        snapshots=get_snapshot_store(),
        orders=SupabaseOrderGateway(),
        lock=get_session_lock(),
        audit_sink=get_audit_sink(),
        discount_codes=get_discount_code_service(),
    )


def get_stripe_adapter() -> StripeCheckoutAdapter:
    return StripeCheckoutAdapter()
