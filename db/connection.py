"""
SINGLE DATABASE ENTRY POINT
This is the ONLY file that opens SQLite connections
"""
import asyncio
import logging
from contextlib import asynccontextmanager
from pathlib import Path

import aiosqlite

from config import settings

logger = logging.getLogger(__name__)

_db = None
_db_lock = asyncio.Lock()
_tx_lock = asyncio.Lock()


async def get_db() -> aiosqlite.Connection:
    global _db

    async with _db_lock:
        if _db is None:
            logger.info("Opening SQLite connection to %s", settings.DATABASE_PATH)

            _db = await aiosqlite.connect(
                settings.DATABASE_PATH,
                isolation_level=None,
                check_same_thread=False,
            )

            _db.row_factory = aiosqlite.Row
            await _db.execute("PRAGMA journal_mode=WAL")
            await _db.execute("PRAGMA foreign_keys=ON")
            await _db.execute("PRAGMA busy_timeout = 5000")

        return _db


@asynccontextmanager
async def transaction():
    """
    Serialized write transaction on the shared connection.
    Rolls back and re-raises on any error.
    """
    db = await get_db()
    async with _tx_lock:
        await db.execute("BEGIN IMMEDIATE")
        try:
            yield db
        except BaseException:
            await db.rollback()
            raise
        else:
            await db.commit()


async def init_database():
    schema_path = Path(__file__).parent / "schema.sql"
    db = await get_db()

    with open(schema_path, "r", encoding="utf-8") as f:
        schema = f.read()

    await db.executescript(schema)
    logger.info("Database schema loaded")


async def close_db():
    global _db, _db_lock, _tx_lock

    async with _db_lock:
        if _db is not None:
            await _db.close()
            _db = None

    # Locks bind to the running loop once contended
    _db_lock = asyncio.Lock()
    _tx_lock = asyncio.Lock()
