"""
Démarrage et arrêt de l'application.
Le limiteur de débit (FastAPILimiter sur Redis) est démarré ici; son état effectif
est publié dans app.state.rate_limit_enabled pour utils.rate_limit.
Drapeaux (valeur "1"): DISABLE_FASTAPI_LIMITER_INIT_FOR_TESTS, USE_FAKE_REDIS_FOR_TESTS,
LOCAL_RATE_LIMIT_FALLBACK.
"""
import logging
import os
from contextlib import asynccontextmanager

import redis.asyncio as aioredis
from fastapi import FastAPI
from fastapi_limiter import FastAPILimiter

from marketplace.config import CHECKOUT_SNAPSHOT_TTL, RATE_LIMIT_REDIS_URL, SNAPSHOT_BACKEND

try:
    from fakeredis.aioredis import FakeRedis  # tests only
except Exception:
    FakeRedis = None

logger = logging.getLogger(__name__)


def _flag(name: str) -> bool:
    return os.getenv(name) == "1"


def _limiter_redis():
    if _flag("USE_FAKE_REDIS_FOR_TESTS"):
        if FakeRedis is None:
            raise RuntimeError("USE_FAKE_REDIS_FOR_TESTS=1 mais fakeredis n'est pas installé.")
        return FakeRedis(decode_responses=True)
    return aioredis.from_url(RATE_LIMIT_REDIS_URL, encoding="utf-8", decode_responses=True)


async def start_rate_limiter(app: FastAPI) -> bool:
    """True si FastAPILimiter tourne sur Redis (à fermer à l'arrêt)."""
    if _flag("DISABLE_FASTAPI_LIMITER_INIT_FOR_TESTS"):
        app.state.rate_limit_enabled = False
        logger.info("app.lifespan rate limiter not started (tests)")
        return False
    try:
        await FastAPILimiter.init(_limiter_redis())
    except Exception as e:
        # sans Redis: fallback mémoire si demandé, sinon pas de limitation
        app.state.rate_limit_enabled = _flag("LOCAL_RATE_LIMIT_FALLBACK")
        logger.warning("app.lifespan rate limiter init failed fallback=%s: %s", app.state.rate_limit_enabled, e)
        return False
    app.state.rate_limit_enabled = True
    logger.info("app.lifespan rate limiter started")
    return True


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("app.lifespan checkout snapshots backend=%s ttl=%ss", SNAPSHOT_BACKEND, CHECKOUT_SNAPSHOT_TTL)
    started = await start_rate_limiter(app)
    try:
        yield
    finally:
        if started:
            await FastAPILimiter.close()
