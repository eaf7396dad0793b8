"""Core utility functions."""

from urllib.parse import urlparse, urlunparse


def convert_async_db_url_to_sync(database_url: str) -> str:
    """
    Convert an async database URL to its synchronous driver equivalent.

    Alembic runs migrations synchronously, so the asyncpg URL used by the
    application is rewritten to psycopg (psycopg3) and aiosqlite to the
    stdlib sqlite driver.

    Args:
        database_url: The async database URL (e.g., postgresql+asyncpg://...)

    Returns:
        The sync database URL (e.g., postgresql+psycopg://...)
    """
    parsed_url = urlparse(database_url)
    scheme = parsed_url.scheme
    if "+asyncpg" in scheme:
        return urlunparse(parsed_url._replace(scheme=scheme.replace("+asyncpg", "+psycopg")))
    if "+aiosqlite" in scheme:
        return urlunparse(parsed_url._replace(scheme=scheme.replace("+aiosqlite", "")))
    return database_url
