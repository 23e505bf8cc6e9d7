"""
Verrous d'exclusion mutuelle par session_id (création de commande au plus une fois).
- RedisSessionLock: redis-py Lock, partagé entre process/instances.
- LocalSessionLock: threading.Lock par clé, pour un process unique (dev/tests).
Les deux exposent hold(session_id) -> context manager; soulève
ReconciliationInProgress si le verrou n'est pas obtenu à temps.
"""
import logging
import threading
from contextlib import contextmanager
from typing import Dict, Iterator

from redis.exceptions import LockError

from marketplace.config import LOCK_BLOCKING_TIMEOUT_SECONDS, LOCK_TIMEOUT_SECONDS
from marketplace.errors import ReconciliationInProgress

logger = logging.getLogger(__name__)

LOCK_PREFIX = "lock:checkout_snapshot:"


class RedisSessionLock:
    def __init__(self, redis_factory, timeout: int = LOCK_TIMEOUT_SECONDS, blocking_timeout: int = LOCK_BLOCKING_TIMEOUT_SECONDS):
        self.redis_factory = redis_factory
        self.timeout = timeout
        self.blocking_timeout = blocking_timeout

    @contextmanager
    def hold(self, session_id: str) -> Iterator[None]:
        lock = self.redis_factory().lock(LOCK_PREFIX + session_id, timeout=self.timeout, blocking_timeout=self.blocking_timeout)
        if not lock.acquire():
            logger.warning("payments.locks busy session_id=%s", session_id)
            raise ReconciliationInProgress("Réconciliation déjà en cours", session_id=session_id)
        try:
            yield
        finally:
            try:
                lock.release()
            except LockError:
                # Verrou expiré (timeout dépassé) avant la libération
                logger.error("payments.locks release failed session_id=%s", session_id)


class LocalSessionLock:
    def __init__(self, blocking_timeout: float = LOCK_BLOCKING_TIMEOUT_SECONDS):
        self.blocking_timeout = blocking_timeout
        # session_id -> [verrou, nombre de détenteurs + attentes]
        self._locks: Dict[str, list] = {}
        self._guard = threading.Lock()

    def _checkout(self, session_id: str) -> threading.Lock:
        with self._guard:
            entry = self._locks.setdefault(session_id, [threading.Lock(), 0])
            entry[1] += 1
            return entry[0]

    def _checkin(self, session_id: str) -> None:
        with self._guard:
            entry = self._locks[session_id]
            entry[1] -= 1
            if entry[1] == 0:
                del self._locks[session_id]

    @contextmanager
    def hold(self, session_id: str) -> Iterator[None]:
        lock = self._checkout(session_id)
        try:
            if not lock.acquire(timeout=self.blocking_timeout):
                logger.warning("payments.locks busy session_id=%s", session_id)
                raise ReconciliationInProgress("Réconciliation déjà en cours", session_id=session_id)
            try:
                yield
            finally:
                lock.release()
        finally:
            self._checkin(session_id)
