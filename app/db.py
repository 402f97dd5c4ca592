"""
MongoDB connection.

One AsyncMongoClient per process, created lazily and closed on shutdown.

Usage:
    from app.db import get_database
    leads = get_database()[settings.leads_collection]
"""

import logging
from typing import Optional

from pymongo import AsyncMongoClient
from pymongo.asynchronous.database import AsyncDatabase

from app.config import settings

logger = logging.getLogger(__name__)

_client: Optional[AsyncMongoClient] = None


def get_client() -> AsyncMongoClient:
    global _client
    if _client is None:
        _client = AsyncMongoClient(
            settings.mongodb_uri,
            maxPoolSize=10,
            serverSelectionTimeoutMS=5000,
            socketTimeoutMS=45000,
            tz_aware=True,
        )
        logger.info(
            "mongodb.client_created",
            extra={"action": "mongodb.client_created", "database": settings.mongodb_database},
        )
    return _client


def get_database() -> AsyncDatabase:
    return get_client()[settings.mongodb_database]


async def close_client() -> None:
    global _client
    if _client is not None:
        await _client.close()
        _client = None
        logger.info("mongodb.client_closed", extra={"action": "mongodb.client_closed"})


async def ping() -> bool:
    """Readiness check: can we reach the server?"""
    try:
        await get_database().command("ping")
        return True
    except Exception as e:
        logger.warning(
            "mongodb.ping_failed",
            extra={"action": "mongodb.ping_failed", "error_type": type(e).__name__},
        )
        return False
