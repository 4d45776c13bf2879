"""MongoDB connection and Beanie document registration."""
import logging

from beanie import init_beanie
from motor.motor_asyncio import AsyncIOMotorClient

from smartcity.config import settings
from smartcity.models import DayDocument

logger = logging.getLogger(__name__)

_client = None


async def db_startup():
    """Connect to MongoDB, register DayDocument and build its indexes."""
    global _client
    _client = AsyncIOMotorClient(
        settings.mongodb_url,
        serverSelectionTimeoutMS=settings.mongodb_timeout_ms,
    )
    await init_beanie(
        database=_client[settings.mongodb_db_name],
        document_models=[DayDocument],
    )
    logger.info(f"Connected to MongoDB database {settings.mongodb_db_name}")


async def db_shutdown():
    global _client
    if _client:
        _client.close()
        _client = None


async def init_db():
    await db_startup()
