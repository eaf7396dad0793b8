"""Per-process resources for Celery workers.

Each worker process owns one persistent event loop, created after fork. The
database engine and Redis client are created lazily on that loop and reused by
every task the process runs, so connections are pooled instead of being
rebuilt per task.
"""

import asyncio
import contextlib
import threading
from typing import Protocol, cast

import redis.asyncio
import structlog
from celery.signals import worker_process_init, worker_process_shutdown
from opentelemetry import trace
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from sos_relay.core.config import settings

_worker_loop: asyncio.AbstractEventLoop | None = None
_worker_engine: AsyncEngine | None = None
_worker_session_factory: async_sessionmaker[AsyncSession] | None = None
_worker_redis_client: "RedisClientProtocol | None" = None
_worker_sqlalchemy_instrumented: bool = False

# RLock: _get_worker_engine is called while get_worker_session holds it
_init_lock = threading.RLock()

logger = structlog.get_logger(__name__)


class RedisClientProtocol(Protocol):
    """The subset of ``redis.asyncio.Redis`` the sweeper lock needs."""

    async def set(
        self,
        name: str,
        value: str,
        ex: int | None = None,
        nx: bool = False,
    ) -> bool | None: ...

    async def get(self, name: str) -> str | None: ...

    async def delete(self, *names: str) -> int: ...

    async def aclose(self, close_connection_pool: bool = True) -> None: ...


@worker_process_init.connect
def init_worker_resources(
    **kwargs: object,
) -> None:
    """
    Create this worker process's persistent event loop (after fork).

    Engine and Redis are created lazily on first use, bound to this loop.
    Idempotent.
    """
    global _worker_loop  # noqa: PLW0603

    if _worker_loop is not None and not _worker_loop.is_closed():
        logger.debug("worker_process_init_loop_already_exists")
        return

    logger.info("worker_process_init_creating_persistent_loop")
    _worker_loop = asyncio.new_event_loop()
    asyncio.set_event_loop(_worker_loop)

    if settings.OTEL_ENABLED:
        from sos_relay.core.telemetry import (  # noqa: PLC0415  # Lazy import for fork-safety
            get_tracer_provider,
            set_logger_provider,
        )

        if provider := get_tracer_provider():
            trace.set_tracer_provider(provider)
            logger.info("worker_otel_tracer_provider_initialized")
        set_logger_provider()
        logger.info("worker_otel_logger_provider_initialized")

    logger.info("worker_process_init_completed")


@worker_process_shutdown.connect
def cleanup_worker_resources(
    **kwargs: object,
) -> None:
    """Dispose the engine and Redis client, then close the loop."""
    global _worker_loop, _worker_engine, _worker_session_factory, _worker_redis_client, _worker_sqlalchemy_instrumented  # noqa: PLW0603
    logger.info("worker_process_shutdown_cleaning_up")

    if _worker_loop is None:
        logger.info("worker_process_shutdown_completed")
        return

    # Clear globals first so nothing new is created during disposal
    loop = _worker_loop
    engine = _worker_engine
    redis_client = _worker_redis_client
    _worker_loop = None
    _worker_engine = None
    _worker_session_factory = None
    _worker_redis_client = None
    _worker_sqlalchemy_instrumented = False

    try:
        if engine is not None:
            loop.run_until_complete(engine.dispose())
        if redis_client is not None:
            loop.run_until_complete(redis_client.aclose())
        if settings.OTEL_ENABLED:
            from sos_relay.core.telemetry import shutdown_tracer_provider  # noqa: PLC0415

            shutdown_tracer_provider()
    except Exception as exc:
        # Shutting down: log and keep closing
        logger.warning(
            "worker_shutdown_cleanup_error",
            error=str(exc),
            error_type=type(exc).__name__,
        )
    finally:
        pending = asyncio.all_tasks(loop)
        if pending:
            logger.debug("cancelling_pending_tasks", count=len(pending))
            for task in pending:
                task.cancel()
            with contextlib.suppress(Exception):
                loop.run_until_complete(asyncio.gather(*pending, return_exceptions=True))
        loop.close()
        asyncio.set_event_loop(None)

    logger.info("worker_process_shutdown_completed")


def _get_worker_engine() -> AsyncEngine:
    """Get or create the worker engine (pooled, instrumented when OTEL is on)."""
    global _worker_engine, _worker_sqlalchemy_instrumented  # noqa: PLW0603
    if _worker_engine is None or (settings.OTEL_ENABLED and not _worker_sqlalchemy_instrumented):
        with _init_lock:
            if _worker_engine is None:
                _worker_engine = create_async_engine(
                    settings.DATABASE_URL,
                    echo=settings.DATABASE_ECHO,
                    pool_size=settings.DATABASE_POOL_SIZE,
                    max_overflow=settings.DATABASE_MAX_OVERFLOW,
                    pool_pre_ping=True,
                )
            if settings.OTEL_ENABLED and not _worker_sqlalchemy_instrumented:
                from opentelemetry.instrumentation.sqlalchemy import (  # noqa: PLC0415
                    SQLAlchemyInstrumentor,
                )

                SQLAlchemyInstrumentor().instrument(engine=_worker_engine.sync_engine)
                _worker_sqlalchemy_instrumented = True
                logger.debug("worker_sqlalchemy_instrumented")
    return _worker_engine


def get_worker_session() -> AsyncSession:
    """
    New session on the worker engine.

    The caller closes it; the engine and its pool outlive the task.
    """
    global _worker_session_factory  # noqa: PLW0603
    if _worker_session_factory is None:
        with _init_lock:
            if _worker_session_factory is None:
                _worker_session_factory = async_sessionmaker(
                    _get_worker_engine(),
                    class_=AsyncSession,
                    expire_on_commit=False,
                    autoflush=False,
                )
    return _worker_session_factory()


def get_worker_redis_client() -> RedisClientProtocol:
    """
    Shared Redis client for this worker process.

    Do not ``aclose()`` it from task code; worker shutdown owns its lifecycle.
    """
    global _worker_redis_client  # noqa: PLW0603
    if _worker_redis_client is None:
        with _init_lock:
            if _worker_redis_client is None:
                _worker_redis_client = cast(
                    RedisClientProtocol,
                    redis.asyncio.from_url(
                        settings.REDIS_URL,
                        encoding="utf-8",
                        decode_responses=True,
                    ),
                )
    return _worker_redis_client


def get_worker_loop() -> asyncio.AbstractEventLoop:
    """
    Raises:
        RuntimeError: If init_worker_resources was not called or the loop is closed
    """
    if _worker_loop is None:
        msg = (
            "Worker event loop not initialized. "
            "Ensure init_worker_resources was called (via worker_process_init signal)."
        )
        raise RuntimeError(msg)
    if _worker_loop.is_closed():
        msg = "Worker event loop has been closed. Cannot run tasks after cleanup_worker_resources has been called."
        raise RuntimeError(msg)
    return _worker_loop
