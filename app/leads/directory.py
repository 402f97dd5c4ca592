"""
Lead directory: read access to the lead collection.

The router only needs two operations: run a filter with a projection and a
cap, and look a lead up by name for recipient resolution. The query API adds
sorted filters and aggregation pipelines for its statistics. Lead CRUD lives
elsewhere; this module never writes.
"""

import logging
import re
import time
from typing import Any, Optional, Protocol

from pymongo.asynchronous.collection import AsyncCollection
from pymongo.errors import PyMongoError

from app.logging.audit import audit

logger = logging.getLogger(__name__)

SortSpec = list[tuple[str, int]]


class LeadDirectoryError(Exception):
    """Raised when a lead lookup or query can't be executed."""
    pass


class LeadDirectory(Protocol):
    async def find(
        self,
        query: dict[str, Any],
        projection: Optional[dict[str, int]],
        limit: int,
        sort: Optional[SortSpec] = None,
    ) -> list[dict]: ...

    async def find_one_by_name(
        self, first_name: str, last_name: Optional[str] = None
    ) -> Optional[dict]: ...

    async def aggregate(self, pipeline: list[dict[str, Any]]) -> list[dict]: ...


def name_filter(first_name: str, last_name: Optional[str] = None) -> dict:
    """Case-insensitive exact match on first name and, if given, last name."""
    query: dict[str, Any] = {
        "firstName": {"$regex": f"^{re.escape(first_name)}$", "$options": "i"},
    }
    if last_name:
        query["lastName"] = {"$regex": f"^{re.escape(last_name)}$", "$options": "i"}
    return query


class MongoLeadDirectory:
    """LeadDirectory backed by a MongoDB collection."""

    def __init__(self, collection: AsyncCollection):
        self._collection = collection

    async def find(
        self,
        query: dict[str, Any],
        projection: Optional[dict[str, int]],
        limit: int,
        sort: Optional[SortSpec] = None,
    ) -> list[dict]:
        start = time.monotonic()
        try:
            cursor = self._collection.find(query, projection)
            if sort:
                cursor = cursor.sort(sort)
            leads = await cursor.limit(limit).to_list(length=limit)
        except PyMongoError as e:
            logger.error(
                "leads.find.failed",
                extra={"action": "leads.find.failed", "error": str(e)},
            )
            raise LeadDirectoryError(f"Lead query failed: {e}") from e

        audit.info(
            "leads.queried",
            returned=len(leads),
            limit=limit,
            latency_ms=int((time.monotonic() - start) * 1000),
        )
        return leads

    async def find_one_by_name(
        self, first_name: str, last_name: Optional[str] = None
    ) -> Optional[dict]:
        try:
            return await self._collection.find_one(name_filter(first_name, last_name))
        except PyMongoError as e:
            logger.error(
                "leads.find_one.failed",
                extra={"action": "leads.find_one.failed", "error": str(e)},
            )
            raise LeadDirectoryError(f"Lead lookup failed: {e}") from e

    async def aggregate(self, pipeline: list[dict[str, Any]]) -> list[dict]:
        try:
            cursor = await self._collection.aggregate(pipeline)
            return await cursor.to_list()
        except PyMongoError as e:
            logger.error(
                "leads.aggregate.failed",
                extra={"action": "leads.aggregate.failed", "error": str(e)},
            )
            raise LeadDirectoryError(f"Lead aggregation failed: {e}") from e
