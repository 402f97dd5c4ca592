"""
Lead statistics for the query API.

Three aggregations over active leads: an overview (totals, average scores,
counts per temperature, qualified count) and breakdowns by status and by
source, largest first.
"""

from datetime import datetime, timezone

from app.leads.directory import LeadDirectory

ACTIVE = {"$match": {"isActive": True}}


def _count_where(field: str, value: str) -> dict:
    return {"$sum": {"$cond": [{"$eq": [f"${field}", value]}, 1, 0]}}


OVERVIEW_PIPELINE = [
    ACTIVE,
    {
        "$group": {
            "_id": None,
            "totalLeads": {"$sum": 1},
            "avgLeadScore": {"$avg": "$leadScore"},
            "avgEngagementScore": {"$avg": "$engagementScore"},
            "hotLeads": _count_where("temperature", "hot"),
            "warmLeads": _count_where("temperature", "warm"),
            "coldLeads": _count_where("temperature", "cold"),
            "qualifiedLeads": {"$sum": {"$cond": ["$isQualified", 1, 0]}},
        }
    },
]


def breakdown_pipeline(field: str) -> list[dict]:
    return [
        ACTIVE,
        {"$group": {"_id": f"${field}", "count": {"$sum": 1}}},
        {"$sort": {"count": -1}},
    ]


async def lead_stats(directory: LeadDirectory) -> dict:
    """
    Raises:
        LeadDirectoryError: if any aggregation fails.
    """
    overview = await directory.aggregate(OVERVIEW_PIPELINE)
    by_status = await directory.aggregate(breakdown_pipeline("status"))
    by_source = await directory.aggregate(breakdown_pipeline("source"))

    return {
        "overview": {k: v for k, v in overview[0].items() if k != "_id"} if overview else {},
        "statusBreakdown": by_status,
        "sourceBreakdown": by_source,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
