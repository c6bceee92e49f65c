"""
Per-tutor availability lock.

``tutor_availability_lock(tutor_id)`` serializes every read-check-write of
a tutor's calendar: booking validation and commit, cancellations and the
quorum scheduler's per-group resolution. It layers two locks:

* an in-process ``threading.Lock`` per tutor id, so threads of one worker
  queue up instead of racing each other to Redis;
* a Redis lock (redis-py ``Lock``) shared by every worker process.

Long holders call ``refresh()`` on the yielded handle before each slow
external step so the Redis key outlives the work.

When Redis is unreachable the lock fails open to the in-process layer and
logs a warning; the tutor row is still selected ``FOR UPDATE`` inside the
booking transaction on databases that support it.
"""

from __future__ import annotations

from contextlib import contextmanager
import logging
import threading
import time
from typing import Dict, Iterator, Optional

from redis import Redis
from redis.exceptions import LockError, RedisError
from redis.lock import Lock as RedisLock

from tutorbook.core.config import settings
from tutorbook.core.exceptions import TutorLockLostException, TutorLockTimeoutException
from tutorbook.monitoring.prometheus_metrics import prometheus_metrics

logger = logging.getLogger(__name__)

_LOCAL_LOCKS: Dict[str, "_LocalLock"] = {}
_LOCAL_LOCKS_GUARD = threading.Lock()

_SYNC_REDIS: Optional[Redis] = None
_SYNC_REDIS_LOCK = threading.Lock()


def _lock_key(tutor_id: str) -> str:
    return f"tutor:{tutor_id}:availability"


def _namespaced_key(key: str) -> str:
    return f"{settings.lock_namespace}:lock:{key}"


class _LocalLock:
    """In-process lock plus the number of threads holding or waiting for it."""

    __slots__ = ("lock", "users")

    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.users = 0


def _checkout_local_lock(tutor_id: str) -> _LocalLock:
    with _LOCAL_LOCKS_GUARD:
        entry = _LOCAL_LOCKS.get(tutor_id)
        if entry is None:
            entry = _LocalLock()
            _LOCAL_LOCKS[tutor_id] = entry
        entry.users += 1
        return entry


def _checkin_local_lock(tutor_id: str, entry: _LocalLock) -> None:
    # Idle entries are dropped so the table only holds tutors in use
    with _LOCAL_LOCKS_GUARD:
        entry.users -= 1
        if entry.users == 0 and _LOCAL_LOCKS.get(tutor_id) is entry:
            del _LOCAL_LOCKS[tutor_id]


def _get_sync_redis() -> Optional[Redis]:
    global _SYNC_REDIS
    if settings.lock_backend != "redis":
        return None
    if _SYNC_REDIS is not None:
        return _SYNC_REDIS
    with _SYNC_REDIS_LOCK:
        if _SYNC_REDIS is not None:
            return _SYNC_REDIS
        try:
            client = Redis.from_url(
                settings.redis_url,
                encoding="utf-8",
                decode_responses=True,
                socket_timeout=2,
                socket_connect_timeout=2,
            )
            client.ping()
        except RedisError as exc:
            logger.warning("tutor_lock_redis_unavailable: %s", exc)
            return None
        _SYNC_REDIS = client
        return _SYNC_REDIS


def _acquire_redis_lock(tutor_id: str, ttl_s: int, wait_s: float) -> Optional[RedisLock]:
    """
    Take the distributed half of the lock.

    Returns ``None`` when Redis is not in play (local backend or outage).
    Raises ``TutorLockTimeoutException`` when another holder outlasts ``wait_s``.
    """
    client = _get_sync_redis()
    if client is None:
        if settings.lock_backend == "redis":
            prometheus_metrics.record_tutor_lock("acquire", "redis_unavailable")
            logger.warning("tutor_lock_redis_unavailable", extra={"tutor_id": tutor_id})
        return None

    lock = client.lock(
        _namespaced_key(_lock_key(tutor_id)),
        timeout=ttl_s,
        blocking_timeout=wait_s,
        thread_local=False,
    )
    try:
        acquired = lock.acquire(blocking=True)
    except RedisError as exc:
        prometheus_metrics.record_tutor_lock("acquire", "error")
        logger.warning(
            "tutor_lock_redis_acquire_failed",
            extra={
                "tutor_id": tutor_id,
                "error": str(exc),
                "error_type": type(exc).__name__,
            },
        )
        return None
    if not acquired:
        prometheus_metrics.record_tutor_lock("acquire", "timeout")
        raise TutorLockTimeoutException(tutor_id, wait_s)
    return lock


def _release_redis_lock(tutor_id: str, lock: RedisLock) -> None:
    try:
        lock.release()
        prometheus_metrics.record_tutor_lock("release", "success")
    except LockError as exc:
        # TTL expired before release; another holder may already own the key.
        prometheus_metrics.record_tutor_lock("release", "expired")
        logger.warning(
            "tutor_lock_expired_before_release",
            extra={"tutor_id": tutor_id, "error": str(exc)},
        )
    except RedisError as exc:
        prometheus_metrics.record_tutor_lock("release", "error")
        logger.warning(
            "tutor_lock_redis_release_failed",
            extra={
                "tutor_id": tutor_id,
                "error": str(exc),
                "error_type": type(exc).__name__,
            },
        )


class TutorLockHandle:
    """Yielded by ``tutor_availability_lock``; keeps a long hold alive."""

    def __init__(self, tutor_id: str, redis_lock: Optional[RedisLock] = None):
        self.tutor_id = tutor_id
        self._redis_lock = redis_lock

    @property
    def distributed(self) -> bool:
        return self._redis_lock is not None

    def refresh(self) -> None:
        """
        Reset the Redis key's TTL to its full value.

        Raises ``TutorLockLostException`` when the key already expired, since
        another worker may now be holding the tutor's calendar.
        """
        if self._redis_lock is None:
            return
        try:
            self._redis_lock.reacquire()
        except LockError as exc:
            prometheus_metrics.record_tutor_lock("refresh", "expired")
            logger.error(
                "tutor_lock_lost_while_held",
                extra={"tutor_id": self.tutor_id, "error": str(exc)},
            )
            raise TutorLockLostException(self.tutor_id) from exc
        except RedisError as exc:
            prometheus_metrics.record_tutor_lock("refresh", "error")
            logger.warning(
                "tutor_lock_redis_refresh_failed",
                extra={
                    "tutor_id": self.tutor_id,
                    "error": str(exc),
                    "error_type": type(exc).__name__,
                },
            )


@contextmanager
def tutor_availability_lock(
    tutor_id: str,
    *,
    ttl_s: Optional[int] = None,
    wait_s: Optional[float] = None,
) -> Iterator[TutorLockHandle]:
    """
    Hold the tutor's availability lock for the body of the ``with`` block.

    Not re-entrant: never nest two acquisitions for the same tutor.
    """
    ttl = ttl_s if ttl_s is not None else settings.tutor_lock_ttl_seconds
    wait = wait_s if wait_s is not None else settings.tutor_lock_wait_seconds
    started = time.monotonic()

    local = _checkout_local_lock(tutor_id)
    try:
        if not local.lock.acquire(timeout=wait):
            prometheus_metrics.record_tutor_lock("acquire", "timeout")
            logger.info("tutor_lock_local_timeout", extra={"tutor_id": tutor_id, "wait_s": wait})
            raise TutorLockTimeoutException(tutor_id, wait)

        redis_lock: Optional[RedisLock] = None
        try:
            remaining = max(wait - (time.monotonic() - started), 0.05)
            redis_lock = _acquire_redis_lock(tutor_id, ttl, remaining)
            prometheus_metrics.observe_tutor_lock_wait(time.monotonic() - started)
            prometheus_metrics.record_tutor_lock("acquire", "success")
            yield TutorLockHandle(tutor_id, redis_lock)
        finally:
            if redis_lock is not None:
                _release_redis_lock(tutor_id, redis_lock)
            local.lock.release()
    finally:
        _checkin_local_lock(tutor_id, local)


def reset_tutor_locks() -> None:
    """Forget cached Redis client and local locks (used between tests)."""
    global _SYNC_REDIS
    with _SYNC_REDIS_LOCK:
        _SYNC_REDIS = None
    with _LOCAL_LOCKS_GUARD:
        _LOCAL_LOCKS.clear()
