from collections.abc import AsyncGenerator
from typing import Any

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from lucid_core.config import lucid_settings
from lucid_core.logging import get_logger

from .connection import Connection

logger = get_logger(__name__)

_engines: dict[str, AsyncEngine] = {}

_DRIVER_PREFIXES = {
    "postgresql://": "postgresql+asyncpg://",
    "mysql://": "mysql+aiomysql://",
    "sqlite://": "sqlite+aiosqlite://",
}


def _enable_sqlite_foreign_keys(engine: AsyncEngine) -> None:
    """
    Enable SQLite foreign key enforcement for every DBAPI connection.
    """

    @event.listens_for(engine.sync_engine, "connect")
    def _set_sqlite_pragma(dbapi_connection, _):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


def _normalize_url(database_url: str) -> str:
    for prefix, async_prefix in _DRIVER_PREFIXES.items():
        if database_url.startswith(prefix):
            return database_url.replace(prefix, async_prefix, 1)
    return database_url


def init_db(
    database_url: str | None = None,
    *,
    name: str = "default",
    echo: bool | None = None,
    **engine_kwargs: Any,
) -> AsyncEngine:
    """
    Create the asynchronous engine for a named connection.

    Args:
        database_url: The connection URL (e.g., 'sqlite+aiosqlite:///db.sqlite3').
            Falls back to the URL configured for ``name`` in settings.
        name: Connection name, ``"default"`` unless several databases are used.
        echo: If True, SQLAlchemy will log all emitted SQL.
        **engine_kwargs: Additional keyword arguments passed to
            `create_async_engine`.

    Example:
        >>> init_db("sqlite+aiosqlite:///db.sqlite3")
        >>> init_db("mysql://app@localhost/reports", name="reports")
    """
    if database_url is None:
        database_url = lucid_settings.database_urls().get(name)
    if not database_url:
        msg = f"No database URL configured for connection '{name}'"
        raise RuntimeError(msg)

    database_url = _normalize_url(database_url)
    is_sqlite = database_url.startswith("sqlite")

    options: dict[str, Any] = {
        "echo": lucid_settings.DB_ECHO if echo is None else echo,
        **engine_kwargs,
    }

    if is_sqlite:
        # SQLite does not support pooling options
        options.pop("pool_size", None)
        options.pop("max_overflow", None)
        options.pop("pool_pre_ping", None)
    else:
        options.setdefault("pool_pre_ping", True)
        options.setdefault("pool_size", lucid_settings.DB_POOL_SIZE)
        options.setdefault("max_overflow", lucid_settings.DB_MAX_OVERFLOW)

    if name in _engines:
        logger.warning("Replacing engine for connection '%s'", name)

    engine = create_async_engine(database_url, **options)
    if is_sqlite:
        _enable_sqlite_foreign_keys(engine)

    _engines[name] = engine
    logger.info("Initialized database connection '%s'", name)
    return engine


def get_engine(name: str = "default") -> AsyncEngine:
    """
    Return the engine registered under ``name``.

    Raises:
        RuntimeError: If ``init_db`` was never called for that name.
    """
    try:
        return _engines[name]
    except KeyError:
        msg = f"Database '{name}' not initialized. Call init_db() first."
        raise RuntimeError(msg) from None


async def close_db(name: str | None = None) -> None:
    """
    Dispose of one engine, or of every engine when ``name`` is omitted.

    Example:
        >>> await close_db()
    """
    names = [name] if name is not None else list(_engines)
    for key in names:
        engine = _engines.pop(key, None)
        if engine is not None:
            await engine.dispose()
            logger.info("Closed database connection '%s'", key)


async def get_db(name: str = "default") -> AsyncGenerator[Connection, None]:
    """
    Async generator that yields a connection for one request.
    Suitable for use as a FastAPI dependency.

    Example:
        >>> async for db in get_db():
        ...     await Customer.objects.find(db, 1)
    """
    connection = Connection(get_engine(name), name)
    try:
        yield connection
    finally:
        await connection.close()
