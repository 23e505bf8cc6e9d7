import json
import pytest
from datetime import timedelta

from marketplace.errors import ValidationError
from marketplace.snapshots.backends import MemorySnapshotBackend, RedisSnapshotBackend
from marketplace.snapshots.store import CheckoutSnapshotStore, KEY_PREFIX

try:
    import fakeredis  # tests only
except Exception:
    fakeredis = None


@pytest.fixture
def pricing(calculator, catalog):
    lines = [catalog.get_products(["p-50"])["p-50"].to_cart_line(1)]
    return calculator.calculate_cart_totals(lines, "u1")


def _snapshot(store, pricing, session_id="sess-1", **kw):
    return store.create(
        session_id=session_id,
        user_id="u1",
        pricing=pricing,
        shipping_data={"city": "Lyon"},
        billing_data={"name": "Ada"},
        **kw,
    )


def test_store_and_retrieve_roundtrip(snapshot_store, pricing):
    snapshot = _snapshot(snapshot_store, pricing, discount_code="SAVE10", metadata={"currency": "usd"})
    assert snapshot_store.store(snapshot) == KEY_PREFIX + "sess-1"

    loaded = snapshot_store.retrieve("sess-1")
    assert loaded == snapshot
    assert loaded.final_total == 57.5
    assert loaded.expires_at - loaded.created_at == timedelta(seconds=1800)


def test_snapshot_alive_just_before_ttl(snapshot_store, pricing, clock):
    snapshot_store.store(_snapshot(snapshot_store, pricing))
    clock.advance(1799)
    assert snapshot_store.retrieve("sess-1") is not None
    assert snapshot_store.exists("sess-1")


def test_snapshot_gone_after_ttl(snapshot_store, pricing, clock):
    snapshot_store.store(_snapshot(snapshot_store, pricing))
    clock.advance(1801)
    assert snapshot_store.retrieve("sess-1") is None
    assert not snapshot_store.exists("sess-1")


def test_expired_payload_is_evicted_even_if_backend_keeps_it(pricing, clock):
    # Backend sans expiration effective: seul expires_at fait foi
    backend = MemorySnapshotBackend(clock=clock.timestamp)
    store = CheckoutSnapshotStore(backend, ttl=1800, clock=clock.now)
    snapshot = _snapshot(store, pricing)
    backend.put(store.key_for("sess-1"), json.dumps(snapshot.to_storage_dict()), 10 * 3600)

    clock.advance(1801)
    assert store.retrieve("sess-1") is None
    assert not backend.has(store.key_for("sess-1"))


def test_store_replaces_previous_snapshot(snapshot_store, pricing, calculator):
    snapshot_store.store(_snapshot(snapshot_store, pricing))
    other = calculator.calculate_cart_totals([{"product_id": "x", "quantity": 2, "base_price": 10}], "u1")
    snapshot_store.store(_snapshot(snapshot_store, other))
    assert snapshot_store.retrieve("sess-1").final_total == other.totals.final_total


def test_remove(snapshot_store, pricing):
    snapshot_store.store(_snapshot(snapshot_store, pricing))
    assert snapshot_store.remove("sess-1") is True
    assert snapshot_store.remove("sess-1") is False
    assert snapshot_store.retrieve("sess-1") is None


@pytest.mark.parametrize("raw", ["{not json", json.dumps({"session_id": "sess-1"}), json.dumps({
    "session_id": "sess-1", "user_id": "u1", "lines": [{"product_id": "p"}], "totals": {},
    "created_at": "2026-01-01T00:00:00+00:00", "expires_at": "2026-01-01T00:30:00+00:00",
})])
def test_corrupt_payload_is_evicted(snapshot_store, raw):
    key = snapshot_store.key_for("sess-1")
    snapshot_store.backend.put(key, raw, 1800)
    assert snapshot_store.retrieve("sess-1") is None
    assert not snapshot_store.backend.has(key)


def test_validate(snapshot_store, pricing):
    assert snapshot_store.validate("sess-1") is False
    snapshot_store.store(_snapshot(snapshot_store, pricing))
    assert snapshot_store.validate("sess-1") is True


@pytest.mark.parametrize("session_id", ["", "   ", None])
def test_session_id_is_required(snapshot_store, session_id):
    with pytest.raises(ValidationError):
        snapshot_store.key_for(session_id)


def test_is_checkout_request(snapshot_store, pricing):
    snapshot_store.store(_snapshot(snapshot_store, pricing))
    assert snapshot_store.is_checkout_request({"session_id": "sess-1"}) is True
    assert snapshot_store.is_checkout_request({"session_id": "other"}) is False
    assert snapshot_store.is_checkout_request({}) is False


def test_stats(snapshot_store):
    stats = snapshot_store.stats()
    assert stats == {"key_prefix": KEY_PREFIX, "ttl_seconds": 1800, "backend": "memory"}


def test_summary_has_no_addresses(snapshot_store, pricing):
    summary = _snapshot(snapshot_store, pricing).summary()
    assert summary["items"] == 1
    assert "shipping_data" not in summary and "billing_data" not in summary


@pytest.mark.skipif(fakeredis is None, reason="fakeredis non installé")
def test_redis_backend_sets_ttl(pricing):
    r = fakeredis.FakeRedis(decode_responses=True)
    store = CheckoutSnapshotStore(RedisSnapshotBackend(lambda: r), ttl=1800)
    store.store(_snapshot(store, pricing, session_id="sess-r"))

    key = KEY_PREFIX + "sess-r"
    assert 0 < r.ttl(key) <= 1800
    assert store.retrieve("sess-r").final_total == 57.5
    assert store.remove("sess-r") is True
    assert r.get(key) is None
