# campusreads/db/database.py
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

import motor.motor_asyncio
from beanie import init_beanie

from campusreads.core.config import MONGODB_URL, DATABASE_NAME, MONGODB_TRANSACTIONS
from campusreads.models.profile import Profile
from campusreads.models.book import Book
from campusreads.models.borrow_request import BorrowRequest

logger = logging.getLogger(__name__)

DOCUMENT_MODELS = [Profile, Book, BorrowRequest]


async def init_db(database=None):
    """Connect Motor and initialise Beanie. ``database`` overrides the configured one (tests)."""
    if database is None:
        logger.info("Connecting to MongoDB...")
        client = motor.motor_asyncio.AsyncIOMotorClient(MONGODB_URL, tz_aware=True)
        database = client[DATABASE_NAME]
        logger.info(f"Using database: {DATABASE_NAME}")

    await init_beanie(database=database, document_models=DOCUMENT_MODELS)
    logger.info("Beanie initialization complete for all models.")
    return database


async def ping_db() -> bool:
    await Profile.get_motor_collection().database.command("ping")
    return True


@asynccontextmanager
async def workflow_session() -> AsyncIterator[Optional[object]]:
    """
    Yields a Motor session inside an open transaction when transactions are
    enabled, otherwise None. Callers pass the result through ``session_kwargs``.
    """
    if not MONGODB_TRANSACTIONS:
        yield None
        return

    motor_client = Book.get_motor_collection().database.client
    async with await motor_client.start_session() as session:
        async with session.start_transaction():
            yield session
