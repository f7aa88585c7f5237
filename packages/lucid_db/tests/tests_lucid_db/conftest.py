import pytest
import pytest_asyncio
from lucid_db import db as db_module
from lucid_db.models import Model
from sqlalchemy import event


class QueryCounter:
    """Collects every statement sent to the driver."""

    def __init__(self):
        self.statements: list[str] = []

    @property
    def count(self) -> int:
        return len(self.statements)

    def reset(self) -> None:
        self.statements.clear()


@pytest_asyncio.fixture(scope="function")
async def init_test_db(tmp_path):
    """Initialize a fresh SQLite database file for each test."""
    engine = db_module.init_db(f"sqlite+aiosqlite:///{tmp_path / 'lucid.sqlite3'}")

    async with engine.begin() as conn:
        await conn.run_sync(Model.metadata.create_all)

    yield engine

    await db_module.close_db()


@pytest_asyncio.fixture()
async def db(init_test_db):
    """Provide a request-scoped connection for tests."""

    async for connection in db_module.get_db():
        yield connection


@pytest.fixture()
def queries(init_test_db):
    """Count the statements issued while a test runs."""
    counter = QueryCounter()
    sync_engine = init_test_db.sync_engine

    def _record(conn, cursor, statement, parameters, context, executemany):
        counter.statements.append(statement)

    event.listen(sync_engine, "before_cursor_execute", _record)
    yield counter
    event.remove(sync_engine, "before_cursor_execute", _record)
