"""
Lead query execution and field projection.

Turns a classifier query result into a capped directory query and projects
each returned lead down to the requested fields. Dotted paths such as
"company.industry" walk nested structure; the result key is the last path
segment ("industry").

Usage:
    outcome = await run_lead_query(directory, query_intent, limit=100)
    outcome.results  # [{"firstName": ..., "lastName": ..., "email": ...}]
"""

import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Iterable, Optional

from bson import ObjectId

from app.assistant.schemas import QueryIntent
from app.leads.directory import LeadDirectory, SortSpec

# Always returned, whatever the classifier suggests.
BASE_FIELDS = ("firstName", "lastName")

_ISO_DATETIME = re.compile(r"^\d{4}-\d{2}-\d{2}(T\d{2}:\d{2}(:\d{2}(\.\d+)?)?(Z|[+-]\d{2}:?\d{2})?)?$")


@dataclass
class QueryOutcome:
    """Projected results of one lead query."""
    fields: list[str]
    results: list[dict] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.results)


def selected_fields(suggested: Iterable[str], base: Iterable[str] = BASE_FIELDS) -> list[str]:
    """Base fields followed by suggested fields, deduplicated, order kept."""
    fields: list[str] = []
    for name in [*base, *suggested]:
        name = (name or "").strip()
        if name and name not in fields:
            fields.append(name)
    return fields


def mongo_projection(fields: list[str]) -> dict[str, int]:
    """
    Inclusion projection for the given fields.

    A sub-path is dropped when its parent is also requested ("company" and
    "company.name"), since MongoDB rejects overlapping projection paths.
    """
    projection: dict[str, int] = {}
    for name in fields:
        parts = name.split(".")
        if any(".".join(parts[:i]) in fields for i in range(1, len(parts))):
            continue
        projection[name] = 1
    return projection


def coerce_dates(value: Any) -> Any:
    """
    Convert ISO 8601 strings in a filter into datetimes.

    The classifier is told to write dates as ISO strings; stored dates are
    BSON datetimes, and a string never compares equal to one.
    """
    if isinstance(value, dict):
        return {key: coerce_dates(item) for key, item in value.items()}
    if isinstance(value, list):
        return [coerce_dates(item) for item in value]
    if isinstance(value, str) and _ISO_DATETIME.match(value):
        try:
            return datetime.fromisoformat(value)
        except ValueError:
            return value
    return value


def resolve_path(document: Any, path: str) -> Any:
    """Walk a dotted path through nested mappings; None when any hop is missing."""
    value = document
    for part in path.split("."):
        if not isinstance(value, dict):
            return None
        value = value.get(part)
        if value is None:
            return None
    return value


def to_plain(value: Any) -> Any:
    """Make a lead value JSON-friendly (ObjectId and datetime become strings)."""
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, dict):
        return {key: to_plain(item) for key, item in value.items()}
    if isinstance(value, list):
        return [to_plain(item) for item in value]
    return value


def project_lead(lead: dict, fields: list[str]) -> dict:
    result = {}
    for name in fields:
        key = name.rsplit(".", 1)[-1]
        result[key] = to_plain(resolve_path(lead, name))
    return result


async def run_lead_query(
    directory: LeadDirectory,
    intent: QueryIntent,
    limit: int,
    fields: Optional[list[str]] = None,
) -> QueryOutcome:
    """
    Execute a classifier query against the directory.

    Raises:
        LeadDirectoryError: if the directory can't run the filter.
    """
    requested = selected_fields(fields if fields is not None else intent.suggested_fields)
    leads = await directory.find(
        coerce_dates(intent.mongo_query),
        mongo_projection(requested),
        limit,
    )
    return QueryOutcome(
        fields=requested,
        results=[project_lead(lead, requested) for lead in leads[:limit]],
    )


async def run_direct_query(
    directory: LeadDirectory,
    query: dict[str, Any],
    limit: int,
    fields: Optional[list[str]] = None,
    sort: Optional[SortSpec] = None,
) -> list[dict]:
    """
    Run a caller-written filter as is. Whole documents come back unless
    fields are given; no base fields are added.

    Raises:
        LeadDirectoryError: if the directory can't run the filter.
    """
    projection = mongo_projection([f for f in fields if f.strip()]) if fields else None
    leads = await directory.find(coerce_dates(query), projection or None, limit, sort=sort)
    return [to_plain(lead) for lead in leads[:limit]]
