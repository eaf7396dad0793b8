"""Tests for the expiry Celery task and its non-overlap lock."""

from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from sos_relay.celery import tasks
from sos_relay.celery.tasks import EXPIRY_LOCK_KEY, expire_stale_alerts, sweep_with_lock
from sos_relay.core.errors import StorageError
from tests.helpers.factories import make_alert
from tests.helpers.fake_redis import FakeRedis


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()


class TestSweepWithLock:
    async def test_expires_and_releases_lock(self, db_session: AsyncSession, fake_redis: FakeRedis) -> None:
        await make_alert(db_session, "sender-stale", age=timedelta(hours=3))

        result = await sweep_with_lock(db_session, fake_redis, lock_ttl=120)

        assert result == {"status": "success", "expired_count": 1, "sender_ids": ["sender-stale"]}
        assert fake_redis.ttls[EXPIRY_LOCK_KEY] == 120
        assert EXPIRY_LOCK_KEY not in fake_redis.store

    async def test_threshold_is_passed_to_sweep(self, db_session: AsyncSession, fake_redis: FakeRedis) -> None:
        await make_alert(db_session, "sender-stale", age=timedelta(hours=3))

        result = await sweep_with_lock(db_session, fake_redis, threshold_minutes=300)

        assert result == {"status": "success", "expired_count": 0, "sender_ids": []}
        assert EXPIRY_LOCK_KEY not in fake_redis.store

    async def test_skips_when_another_sweep_holds_lock(self, db_session: AsyncSession, fake_redis: FakeRedis) -> None:
        await make_alert(db_session, "sender-stale", age=timedelta(hours=3))
        fake_redis.store[EXPIRY_LOCK_KEY] = "other-worker"

        result = await sweep_with_lock(db_session, fake_redis)

        assert result == {"status": "skipped", "expired_count": 0, "sender_ids": []}
        assert fake_redis.store[EXPIRY_LOCK_KEY] == "other-worker"

    async def test_lock_released_on_failure(self, db_session: AsyncSession, fake_redis: FakeRedis) -> None:
        with (
            patch(
                "sos_relay.celery.tasks.ExpirationService.expire_stale_alerts",
                AsyncMock(side_effect=StorageError("Failed to expire stale alerts")),
            ),
            pytest.raises(StorageError),
        ):
            await sweep_with_lock(db_session, fake_redis)

        assert EXPIRY_LOCK_KEY not in fake_redis.store

    async def test_does_not_release_someone_elses_lock(self, db_session: AsyncSession, fake_redis: FakeRedis) -> None:
        async def steal_lock() -> dict:
            # Lock expired mid-sweep and another worker took it
            fake_redis.store[EXPIRY_LOCK_KEY] = "other-worker"
            return {"expired_count": 0, "sender_ids": [], "cutoff": ""}

        with patch("sos_relay.celery.tasks.ExpirationService.expire_stale_alerts", side_effect=steal_lock):
            await sweep_with_lock(db_session, fake_redis)

        assert fake_redis.store[EXPIRY_LOCK_KEY] == "other-worker"


class TestExpireStaleAlertsTask:
    def test_task_registered_under_stable_name(self) -> None:
        assert expire_stale_alerts.name == "sos_relay.celery.tasks.expire_stale_alerts"

    def test_returns_result(self) -> None:
        expected = {"status": "success", "expired_count": 2, "sender_ids": ["a", "b"]}

        with patch.object(tasks, "run_in_worker_loop", return_value=expected) as mock_run:
            assert expire_stale_alerts() == expected

        mock_run.assert_called_once_with(tasks._expire_stale_alerts_async)

    def test_failure_is_reraised(self) -> None:
        with (
            patch.object(tasks, "run_in_worker_loop", side_effect=StorageError("Failed to expire stale alerts")),
            pytest.raises(StorageError),
        ):
            expire_stale_alerts()

    async def test_async_body_closes_session(self, fake_redis: FakeRedis) -> None:
        session = MagicMock()
        session.close = AsyncMock()
        expected = {"status": "skipped", "expired_count": 0, "sender_ids": []}

        with (
            patch.object(tasks, "get_worker_session", return_value=session),
            patch.object(tasks, "get_worker_redis_client", return_value=fake_redis),
            patch.object(tasks, "sweep_with_lock", AsyncMock(return_value=expected)) as mock_sweep,
        ):
            assert await tasks._expire_stale_alerts_async() == expected

        mock_sweep.assert_awaited_once_with(session, fake_redis)
        session.close.assert_awaited_once()


class TestRunInWorkerLoop:
    def test_runs_on_worker_loop(self) -> None:
        loop = MagicMock()
        loop.run_until_complete.return_value = 42

        async def work(x: int) -> int:
            return x

        with patch.object(tasks, "get_worker_loop", return_value=loop):
            assert tasks.run_in_worker_loop(work, 42) == 42

        coro = loop.run_until_complete.call_args.args[0]
        coro.close()

    def test_uninitialized_worker(self) -> None:
        async def work() -> None:
            return None

        with (
            patch.object(tasks, "get_worker_loop", side_effect=RuntimeError("Worker event loop not initialized")),
            pytest.raises(RuntimeError),
        ):
            tasks.run_in_worker_loop(work)
