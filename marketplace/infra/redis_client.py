"""
Client Redis partagé (snapshots de checkout, cache de configuration, verrous).
- USE_FAKE_REDIS_FOR_TESTS=1: utilise fakeredis (tests/dev sans serveur).
"""
import os
import logging
from typing import Optional

import redis

from marketplace.config import REDIS_URL

try:
    import fakeredis  # tests only
except Exception:
    fakeredis = None

logger = logging.getLogger(__name__)

_redis: Optional[redis.Redis] = None

def get_redis() -> redis.Redis:
    global _redis
    if _redis is None:
        if os.getenv("USE_FAKE_REDIS_FOR_TESTS") == "1":
            if not fakeredis:
                raise RuntimeError("USE_FAKE_REDIS_FOR_TESTS=1 mais fakeredis n'est pas installé.")
            _redis = fakeredis.FakeRedis(decode_responses=True)
        else:
            _redis = redis.from_url(REDIS_URL, encoding="utf-8", decode_responses=True)
    return _redis

def redis_health_info() -> dict:
    try:
        ok = bool(get_redis().ping())
        return {"connect_ok": ok}
    except Exception as e:
        logger.warning("infra.redis ping failed: %s", e)
        return {"connect_ok": False, "error": str(e)}
