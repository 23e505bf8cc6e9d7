def test_health_root(client):
    res = client.get("/health")
    assert res.status_code == 200
    assert res.json() == {"ok": True}


def test_health_redis_with_fake_redis(client):
    res = client.get("/health/redis")
    assert res.status_code == 200
    data = res.json()
    assert data["connect_ok"] is True
    assert data["rate_limit"]["enabled"] is False


def test_health_redis_down(client, monkeypatch):
    monkeypatch.setattr("marketplace.health.router.redis_health_info", lambda: {"connect_ok": False, "error": "down"})
    res = client.get("/health/redis")
    assert res.status_code == 503
