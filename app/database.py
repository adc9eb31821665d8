import logging
from contextlib import asynccontextmanager

from sqlalchemy import Table, insert
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.orm import DeclarativeBase

from app.config import settings
from app.errors import ServiceError, translate_db_error
from app.middleware import install_query_counter

logger = logging.getLogger(__name__)

# Module-level engine variable allows tests to override with a test engine.
engine = create_async_engine(
    settings.DATABASE_URL,
    echo=settings.DEBUG,
    pool_pre_ping=True,
)

# Register the per-request SQL query counter on the production engine.
install_query_counter(engine)

async_session = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


class Base(DeclarativeBase):
    pass


async def get_db():
    async with async_session() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


_AFTER_COMMIT_KEY = "after_commit"


@asynccontextmanager
async def transaction(session: AsyncSession):
    """
    Run the enclosed block as one atomic unit on *session*.

    Opens a real transaction when the session is idle, or a SAVEPOINT when
    the caller already holds one, so the block can be rolled back on its
    own.  Raw DBAPI errors escaping the block are translated into the
    service error taxonomy after the rollback has happened.

    Callbacks queued with ``after_commit`` are awaited once the outermost
    block has committed, and discarded if it rolls back.
    """
    outermost = not session.in_transaction()
    scope = session.begin() if outermost else session.begin_nested()
    try:
        async with scope:
            yield session
    except ServiceError:
        logger.debug("Transaction rolled back on service error")
        raise
    except DBAPIError as exc:
        logger.warning("Transaction rolled back: %s", exc.orig)
        raise translate_db_error(exc) from exc
    finally:
        callbacks = session.info.pop(_AFTER_COMMIT_KEY, []) if outermost else []
    for callback in callbacks:
        await callback()


async def after_commit(session: AsyncSession, callback) -> None:
    """
    Await *callback* once the work done on *session* is committed.

    Runs it straight away when no transaction is open.  Inside a
    ``transaction()`` block it waits for the outermost block to commit.
    """
    if session.in_transaction():
        session.info.setdefault(_AFTER_COMMIT_KEY, []).append(callback)
    else:
        await callback()


# ---------------------------------------------------------------------------
# Conflict-safe insert
# ---------------------------------------------------------------------------

_CONFLICT_SAFE_INSERTS = {
    "postgresql": pg_insert,
    "sqlite": sqlite_insert,
}


def supports_conflict_safe_insert(session: AsyncSession) -> bool:
    return session.get_bind().dialect.name in _CONFLICT_SAFE_INSERTS


async def insert_ignoring_conflicts(
    session: AsyncSession,
    table: Table,
    rows: list[dict],
    index_elements: list[str],
) -> int:
    """
    Insert *rows* into *table*, silently skipping rows that collide with an
    existing unique key on *index_elements*.

    Returns the number of rows actually inserted.  On dialects without
    ``ON CONFLICT`` support a plain INSERT is issued and a collision raises
    ``IntegrityError`` to the caller.
    """
    if not rows:
        return 0
    dialect = session.get_bind().dialect.name
    factory = _CONFLICT_SAFE_INSERTS.get(dialect)
    if factory is None:
        result = await session.execute(insert(table), rows)
        return result.rowcount
    statement = factory(table).values(rows).on_conflict_do_nothing(
        index_elements=index_elements
    )
    result = await session.execute(statement)
    return result.rowcount
