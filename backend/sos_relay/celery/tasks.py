"""Celery tasks for background processing."""

import uuid
from collections.abc import Awaitable, Callable
from typing import Any, Literal, TypedDict

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from sos_relay.celery.app import EXPIRY_TASK_TIME_LIMIT, celery_app
from sos_relay.celery.database import (
    RedisClientProtocol,
    get_worker_loop,
    get_worker_redis_client,
    get_worker_session,
)
from sos_relay.services.expiration_service import ExpirationService

logger = structlog.get_logger(__name__)

EXPIRY_LOCK_KEY = "sos:expiry:lock"


def run_in_worker_loop[T](
    coro_func: Callable[..., Awaitable[T]],
    *args: Any,  # noqa: ANN401 - Pass-through args to async function
    **kwargs: Any,  # noqa: ANN401 - Pass-through kwargs to async function
) -> T:
    """
    Run an async function in the worker's persistent event loop.

    Raises:
        RuntimeError: If worker not initialized or event loop is closed
    """
    loop = get_worker_loop()
    return loop.run_until_complete(coro_func(*args, **kwargs))


class ExpireAlertsResult(TypedDict):
    """Result from expire_stale_alerts task."""

    status: Literal["success", "skipped"]
    expired_count: int
    sender_ids: list[str]


async def sweep_with_lock(
    session: AsyncSession,
    redis_client: RedisClientProtocol,
    lock_ttl: int = EXPIRY_TASK_TIME_LIMIT,
    threshold_minutes: int | None = None,
) -> ExpireAlertsResult:
    """
    Run one expiry sweep unless another is already running.

    Shared by the scheduled task and the operator CLI so a manual sweep never
    overlaps a scheduled one.

    The lock is a ``SET NX EX`` key whose TTL matches the task hard limit, so a
    worker killed mid-sweep cannot hold it forever. It is released only by the
    holder that took it.
    """
    token = uuid.uuid4().hex
    acquired = await redis_client.set(EXPIRY_LOCK_KEY, token, ex=lock_ttl, nx=True)
    if not acquired:
        logger.info("expiry_sweep_skipped", reason="lock_held")
        return ExpireAlertsResult(status="skipped", expired_count=0, sender_ids=[])

    try:
        stats = await ExpirationService(session, threshold_minutes=threshold_minutes).expire_stale_alerts()
    finally:
        if await redis_client.get(EXPIRY_LOCK_KEY) == token:
            await redis_client.delete(EXPIRY_LOCK_KEY)

    return ExpireAlertsResult(
        status="success",
        expired_count=stats["expired_count"],
        sender_ids=stats["sender_ids"],
    )


@celery_app.task(name="sos_relay.celery.tasks.expire_stale_alerts")
def expire_stale_alerts() -> ExpireAlertsResult:
    """
    Expire active alerts that stopped receiving updates.

    Failures are re-raised so the task is recorded as failed and can be
    alerted on; the next scheduled tick is the retry.
    """
    try:
        result = run_in_worker_loop(_expire_stale_alerts_async)
    except Exception as exc:
        logger.error(
            "expire_stale_alerts_task_failed",
            error=str(exc),
            error_type=type(exc).__name__,
        )
        raise

    logger.info("expire_stale_alerts_task_completed", result=result)
    return result


async def _expire_stale_alerts_async() -> ExpireAlertsResult:
    session = get_worker_session()
    try:
        return await sweep_with_lock(session, get_worker_redis_client())
    finally:
        await session.close()
