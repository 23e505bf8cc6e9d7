import os

# Avant l'import de l'app: pas de Redis réel pour le rate limiting ni pour les clients partagés
os.environ.setdefault("DISABLE_FASTAPI_LIMITER_INIT_FOR_TESTS", "1")
os.environ.setdefault("USE_FAKE_REDIS_FOR_TESTS", "1")

import pytest
from datetime import datetime, timedelta, timezone
from typing import Generator, Dict, Any
from fastapi.testclient import TestClient
from unittest.mock import MagicMock

from marketplace.app_setup.factory import create_app
from marketplace import dependencies as deps
from marketplace.audit.sink import MemoryAuditSink
from marketplace.catalog.repository import MemoryProductCatalog, Product
from marketplace.orders.repository import MemoryOrderGateway
from marketplace.payments.adapters import StripeCheckoutAdapter
from marketplace.payments.locks import LocalSessionLock
from marketplace.payments.reconciler import PaymentReconciler
from marketplace.pricing.calculator import PricingCalculator
from marketplace.pricing.discount_codes import DiscountCode, DiscountCodeService, KIND_FIXED, KIND_PERCENTAGE
from marketplace.pricing.repository import MemoryDiscountCodeRepository
from marketplace.settings.service import PricingConfig, StaticConfigProvider
from marketplace.snapshots.backends import MemorySnapshotBackend
from marketplace.snapshots.store import CheckoutSnapshotStore
from marketplace.utils.security import require_user
from marketplace.verification.service import PriceVerificationService

TEST_USER_ID = "test-user"
NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


# Marquage automatique selon le dossier
def pytest_collection_modifyitems(config, items):
    for item in items:
        nodeid = item.nodeid.replace("\\", "/")
        if "tests/unit/" in nodeid:
            item.add_marker(pytest.mark.unit)
        elif "tests/integration/" in nodeid:
            item.add_marker(pytest.mark.integration)


class FakeClock:
    """Horloge pilotable: now() pour le store, timestamp() pour le backend mémoire."""

    def __init__(self, start: datetime = NOW):
        self.current = start

    def now(self) -> datetime:
        return self.current

    def timestamp(self) -> float:
        return self.current.timestamp()

    def advance(self, seconds: float) -> None:
        self.current += timedelta(seconds=seconds)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def catalog() -> MemoryProductCatalog:
    return MemoryProductCatalog([
        Product(id="p-100", base_price=100.0, seller_discount_percentage=10, seller_id="seller-a", name="Casque"),
        Product(id="p-50", base_price=50.0, seller_discount_percentage=0, seller_id="seller-b", name="Lampe"),
        Product(id="p-20", base_price=20.0, seller_discount_percentage=10, seller_id="seller-a", name="Câble"),
        Product(id="p-10", base_price=10.0, seller_discount_percentage=0, seller_id="seller-c", name="Stylo"),
    ])


@pytest.fixture
def discount_repo() -> MemoryDiscountCodeRepository:
    return MemoryDiscountCodeRepository([
        DiscountCode(code="SAVE10", kind=KIND_PERCENTAGE, value=10),
        DiscountCode(code="FIVEOFF", kind=KIND_FIXED, value=5),
        DiscountCode(code="USED", kind=KIND_PERCENTAGE, value=10, is_used=True),
        DiscountCode(code="OLD", kind=KIND_PERCENTAGE, value=10, expires_at=NOW - timedelta(days=1)),
        DiscountCode(code="NOTYOURS", kind=KIND_PERCENTAGE, value=10, owner_user_id="someone-else"),
        DiscountCode(code="BIGCART", kind=KIND_FIXED, value=20, min_subtotal=200),
    ])


@pytest.fixture
def config_provider() -> StaticConfigProvider:
    return StaticConfigProvider(PricingConfig())


@pytest.fixture
def discount_service(discount_repo) -> DiscountCodeService:
    return DiscountCodeService(discount_repo, clock=lambda: NOW)


@pytest.fixture
def calculator(config_provider, discount_service) -> PricingCalculator:
    return PricingCalculator(config_provider, discount_codes=discount_service)


@pytest.fixture
def audit_sink() -> MemoryAuditSink:
    return MemoryAuditSink()


@pytest.fixture
def verifier(calculator, catalog, audit_sink) -> PriceVerificationService:
    return PriceVerificationService(calculator, catalog, audit_sink=audit_sink)


@pytest.fixture
def snapshot_store(clock) -> CheckoutSnapshotStore:
    return CheckoutSnapshotStore(MemorySnapshotBackend(clock=clock.timestamp), ttl=1800, clock=clock.now)


@pytest.fixture
def order_gateway() -> MemoryOrderGateway:
    return MemoryOrderGateway()


@pytest.fixture
def reconciler(snapshot_store, order_gateway, audit_sink, discount_service) -> PaymentReconciler:
    return PaymentReconciler(
        snapshot_store, order_gateway, LocalSessionLock(blocking_timeout=5),
        audit_sink=audit_sink, discount_codes=discount_service,
    )


@pytest.fixture(scope="session")
def app():
    return create_app()


@pytest.fixture()
def client(app) -> Generator[TestClient, None, None]:
    with TestClient(app) as c:
        yield c


# Simuler un utilisateur authentifié pour les endpoints protégés
@pytest.fixture(autouse=True)
def _override_require_user(app):
    fake_user: Dict[str, Any] = {"id": TEST_USER_ID, "email": "test@example.com"}
    app.dependency_overrides[require_user] = lambda: fake_user
    try:
        yield
    finally:
        app.dependency_overrides.pop(require_user, None)


# Services en mémoire à la place de Supabase/Redis pour les vues
@pytest.fixture(autouse=True)
def _override_services(app, calculator, catalog, verifier, snapshot_store, reconciler):
    overrides = {
        deps.get_calculator: lambda: calculator,
        deps.get_catalog: lambda: catalog,
        deps.get_verification_service: lambda: verifier,
        deps.get_snapshot_store: lambda: snapshot_store,
        deps.get_reconciler: lambda: reconciler,
        deps.get_stripe_adapter: lambda: StripeCheckoutAdapter(),
    }
    app.dependency_overrides.update(overrides)
    try:
        yield
    finally:
        for dep in overrides:
            app.dependency_overrides.pop(dep, None)


# Aucun accès Supabase réel
@pytest.fixture(autouse=True)
def mock_supabase(monkeypatch):
    monkeypatch.setattr("marketplace.infra.supabase_client.get_supabase", lambda: MagicMock())
    monkeypatch.setattr("marketplace.infra.supabase_client.get_service_supabase", lambda: MagicMock())


# Stripe: pas d'appel réseau, session factice
@pytest.fixture(autouse=True)
def fake_stripe_session(monkeypatch):
    created = MagicMock(return_value={"id": "cs_test_123", "url": "https://checkout.stripe.test/pay/cs_test_123"})
    monkeypatch.setattr("marketplace.payments.stripe_client.create_session", created)
    return created
