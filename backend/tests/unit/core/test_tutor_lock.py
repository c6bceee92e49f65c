# backend/tests/unit/core/test_tutor_lock.py
"""Per-tutor availability lock: local layer, Redis layer and fail-open behaviour."""

import threading
from unittest.mock import MagicMock, patch

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import LockError

from tutorbook.core import tutor_lock
from tutorbook.core.config import settings
from tutorbook.core.exceptions import TutorLockLostException, TutorLockTimeoutException
from tutorbook.core.tutor_lock import tutor_availability_lock


class TestLocalLayer:
    def test_lock_is_released_after_block(self):
        with tutor_availability_lock("tutor-a"):
            pass
        with tutor_availability_lock("tutor-a", wait_s=0.05):
            pass

    def test_lock_is_released_when_body_raises(self):
        with pytest.raises(RuntimeError):
            with tutor_availability_lock("tutor-a"):
                raise RuntimeError("boom")
        with tutor_availability_lock("tutor-a", wait_s=0.05):
            pass

    def test_second_holder_times_out(self):
        entered = threading.Event()
        release = threading.Event()

        def hold():
            with tutor_availability_lock("tutor-a"):
                entered.set()
                release.wait(timeout=5)

        holder = threading.Thread(target=hold)
        holder.start()
        try:
            assert entered.wait(timeout=5)
            with pytest.raises(TutorLockTimeoutException) as exc_info:
                with tutor_availability_lock("tutor-a", wait_s=0.05):
                    pass
            assert exc_info.value.code == "TUTOR_LOCK_TIMEOUT"
            assert exc_info.value.status_code == 409
        finally:
            release.set()
            holder.join(timeout=5)

    def test_different_tutors_do_not_block_each_other(self):
        with tutor_availability_lock("tutor-a"):
            with tutor_availability_lock("tutor-b", wait_s=0.05):
                pass

    def test_local_backend_never_touches_redis(self):
        assert settings.lock_backend == "local"
        assert tutor_lock._get_sync_redis() is None

    def test_idle_tutors_are_dropped_from_the_lock_table(self):
        for n in range(50):
            with tutor_availability_lock(f"tutor-{n}"):
                assert f"tutor-{n}" in tutor_lock._LOCAL_LOCKS
        assert tutor_lock._LOCAL_LOCKS == {}

    def test_waiter_keeps_entry_until_it_leaves(self):
        entered = threading.Event()
        release = threading.Event()

        def hold():
            with tutor_availability_lock("tutor-a"):
                entered.set()
                release.wait(timeout=5)

        holder = threading.Thread(target=hold)
        holder.start()
        try:
            assert entered.wait(timeout=5)
            with pytest.raises(TutorLockTimeoutException):
                with tutor_availability_lock("tutor-a", wait_s=0.05):
                    pass
            assert tutor_lock._LOCAL_LOCKS["tutor-a"].users == 1
        finally:
            release.set()
            holder.join(timeout=5)
        assert tutor_lock._LOCAL_LOCKS == {}

    def test_refresh_is_a_no_op_without_redis(self):
        with tutor_availability_lock("tutor-a") as lock:
            assert lock.distributed is False
            lock.refresh()


class TestRedisLayer:
    @pytest.fixture
    def redis_client(self):
        client = MagicMock()
        with patch.object(tutor_lock, "_get_sync_redis", return_value=client):
            yield client

    def test_acquires_namespaced_key_and_releases(self, redis_client):
        redis_lock = redis_client.lock.return_value
        redis_lock.acquire.return_value = True

        with tutor_availability_lock("tutor-a", ttl_s=12, wait_s=1.0):
            redis_lock.release.assert_not_called()

        args, kwargs = redis_client.lock.call_args
        assert args[0] == f"{settings.lock_namespace}:lock:tutor:tutor-a:availability"
        assert kwargs["timeout"] == 12
        assert kwargs["thread_local"] is False
        redis_lock.release.assert_called_once()

    def test_timeout_raises_and_frees_local_lock(self, redis_client):
        redis_client.lock.return_value.acquire.return_value = False

        with pytest.raises(TutorLockTimeoutException):
            with tutor_availability_lock("tutor-a", wait_s=0.05):
                pytest.fail("body must not run without the lock")

        redis_client.lock.return_value.acquire.return_value = True
        with tutor_availability_lock("tutor-a", wait_s=0.05):
            pass

    def test_redis_error_fails_open(self, redis_client):
        redis_client.lock.return_value.acquire.side_effect = RedisConnectionError("down")
        ran = []
        with tutor_availability_lock("tutor-a"):
            ran.append(True)
        assert ran == [True]
        redis_client.lock.return_value.release.assert_not_called()

    def test_expired_lock_on_release_is_tolerated(self, redis_client):
        redis_lock = redis_client.lock.return_value
        redis_lock.acquire.return_value = True
        redis_lock.release.side_effect = LockError("expired")

        with tutor_availability_lock("tutor-a"):
            pass
        with tutor_availability_lock("tutor-a", wait_s=0.05):
            pass

    def test_refresh_extends_the_redis_ttl(self, redis_client):
        redis_lock = redis_client.lock.return_value
        redis_lock.acquire.return_value = True

        with tutor_availability_lock("tutor-a") as lock:
            assert lock.distributed is True
            lock.refresh()
            lock.refresh()

        assert redis_lock.reacquire.call_count == 2

    def test_refresh_after_expiry_raises_and_still_unlocks(self, redis_client):
        redis_lock = redis_client.lock.return_value
        redis_lock.acquire.return_value = True
        redis_lock.reacquire.side_effect = LockError("no longer owned")
        redis_lock.release.side_effect = LockError("no longer owned")

        with pytest.raises(TutorLockLostException) as exc_info:
            with tutor_availability_lock("tutor-a") as lock:
                lock.refresh()
                pytest.fail("work must stop once the lock is gone")

        assert exc_info.value.code == "TUTOR_LOCK_LOST"
        assert exc_info.value.details == {"tutor_id": "tutor-a"}
        assert tutor_lock._LOCAL_LOCKS == {}

    def test_refresh_redis_error_fails_open(self, redis_client):
        redis_lock = redis_client.lock.return_value
        redis_lock.acquire.return_value = True
        redis_lock.reacquire.side_effect = RedisConnectionError("down")

        with tutor_availability_lock("tutor-a") as lock:
            lock.refresh()
        redis_lock.release.assert_called_once()

class TestRedisConnection:
    def test_unreachable_redis_degrades_to_local_lock(self, monkeypatch):
        monkeypatch.setattr(settings, "lock_backend", "redis")
        client = MagicMock()
        client.ping.side_effect = RedisConnectionError("refused")

        with patch.object(tutor_lock.Redis, "from_url", return_value=client):
            assert tutor_lock._get_sync_redis() is None
            with tutor_availability_lock("tutor-a"):
                pass

    def test_client_is_cached(self, monkeypatch):
        monkeypatch.setattr(settings, "lock_backend", "redis")
        client = MagicMock()

        with patch.object(tutor_lock.Redis, "from_url", return_value=client) as from_url:
            assert tutor_lock._get_sync_redis() is client
            assert tutor_lock._get_sync_redis() is client
        from_url.assert_called_once()
