"""
Query API routes.

These endpoints handle one-shot lead questions outside of a chat session:
- Translating a natural-language question into a filter and running it
- Running a caller-written filter directly
- Suggesting example questions
- Describing the lead schema the translator works against
- Summarizing active leads by temperature, status and source
"""

import logging
import time
from datetime import datetime, timezone

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from app.api.dependencies import get_intent_classifier, get_lead_directory
from app.assistant.classifier import IntentClassifier
from app.assistant.prompts import FALLBACK_SUGGESTIONS, ClassifierError
from app.assistant.schemas import DirectQueryRequest, NaturalLanguageQueryRequest
from app.config import settings
from app.leads.directory import LeadDirectory, LeadDirectoryError
from app.leads.query import run_direct_query, run_lead_query
from app.leads.stats import lead_stats
from app.logging.audit import audit

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/query", tags=["query"])


def _failure(message: str, error: Exception) -> JSONResponse:
    return JSONResponse(
        status_code=500,
        content={
            "success": False,
            "message": message,
            "error": str(error) if settings.app_env == "development" else "Internal server error",
        },
    )


@router.post("/natural-language")
async def natural_language_query(
    request: NaturalLanguageQueryRequest,
    classifier: IntentClassifier = Depends(get_intent_classifier),
    directory: LeadDirectory = Depends(get_lead_directory),
):
    """
    Convert a natural-language question to a lead filter and execute it.

    Request body:
    {
        "query": "Show me all cold leads from July",
        "limit": 50,
        "fields": ["email", "company.name"]   (optional, overrides suggestions)
    }
    """
    start = time.monotonic()

    try:
        intent = await classifier.translate_query(request.query)
        outcome = await run_lead_query(directory, intent, limit=request.limit, fields=request.fields)
    except (ClassifierError, LeadDirectoryError) as e:
        logger.error(
            "natural_language.endpoint_failed",
            extra={"action": "natural_language.endpoint_failed", "error": str(e)},
        )
        return _failure("Failed to process query", e)

    execution_ms = int((time.monotonic() - start) * 1000)
    audit.info("query.natural_language", total=outcome.total, latency_ms=execution_ms)

    return {
        "success": True,
        "data": {
            "query": {
                "original": request.query,
                "explanation": intent.explanation,
                "mongoQuery": intent.mongo_query,
                "estimatedResults": intent.estimated_results,
            },
            "results": outcome.results,
            "metadata": {
                "totalFound": outcome.total,
                "limit": request.limit,
                "executionTime": f"{execution_ms}ms",
                "fieldsReturned": outcome.fields,
                "timestamp": datetime.now(timezone.utc).isoformat(),
            },
        },
    }


@router.post("/mongodb")
async def direct_query(
    request: DirectQueryRequest,
    directory: LeadDirectory = Depends(get_lead_directory),
):
    """
    Run a lead filter as written, for advanced users.

    Request body:
    {
        "query": {"temperature": "hot", "isActive": true},
        "limit": 50,
        "fields": ["email", "company.name"],   (optional)
        "sort": {"createdAt": -1}               (optional)
    }
    """
    start = time.monotonic()

    try:
        results = await run_direct_query(
            directory, request.query, request.limit, fields=request.fields, sort=request.sort_spec()
        )
    except LeadDirectoryError as e:
        logger.error(
            "direct_query.endpoint_failed",
            extra={"action": "direct_query.endpoint_failed", "error": str(e)},
        )
        return _failure("Failed to execute query", e)

    execution_ms = int((time.monotonic() - start) * 1000)
    audit.info("query.direct", total=len(results), latency_ms=execution_ms)

    return {
        "success": True,
        "data": {
            "results": results,
            "metadata": {
                "totalFound": len(results),
                "limit": request.limit,
                "executionTime": f"{execution_ms}ms",
                "query": request.query,
                "timestamp": datetime.now(timezone.utc).isoformat(),
            },
        },
    }


@router.get("/suggestions")
async def query_suggestions(classifier: IntentClassifier = Depends(get_intent_classifier)):
    """Example questions for the natural-language endpoint. Falls back to a fixed list."""
    try:
        examples = await classifier.suggest_queries()
    except ClassifierError as e:
        logger.warning(
            "suggestions.fallback",
            extra={"action": "suggestions.fallback", "error": str(e)},
        )
        examples = list(FALLBACK_SUGGESTIONS)
    return {"success": True, "data": {"examples": examples}}


LEAD_SCHEMA = {
    "fields": {
        "firstName": {"type": "String", "required": True},
        "lastName": {"type": "String", "required": True},
        "email": {"type": "String", "required": True, "unique": True},
        "phone": {"type": "String"},
        "status": {
            "type": "String",
            "enum": ["new", "contacted", "qualified", "proposal", "negotiation", "closed-won", "closed-lost"],
            "default": "new",
        },
        "temperature": {"type": "String", "enum": ["hot", "warm", "cold"], "default": "cold"},
        "company": {
            "name": {"type": "String"},
            "industry": {"type": "String"},
            "size": {"type": "String", "enum": ["1-10", "11-50", "51-200", "201-500", "501-1000", "1000+"]},
            "website": {"type": "String"},
        },
        "source": {
            "type": "String",
            "enum": [
                "website", "social-media", "email-campaign", "referral",
                "cold-call", "event", "advertisement", "other",
            ],
            "default": "other",
        },
        "estimatedValue": {"type": "Number", "min": 0},
        "budget": {"type": "Number", "min": 0},
        "location": {
            "country": {"type": "String"},
            "state": {"type": "String"},
            "city": {"type": "String"},
            "zipCode": {"type": "String"},
        },
        "engagementScore": {"type": "Number", "min": 0, "max": 100},
        "leadScore": {"type": "Number", "min": 0, "max": 100},
        "assignedTo": {"type": "String"},
        "isQualified": {"type": "Boolean", "default": False},
        "isActive": {"type": "Boolean", "default": True},
        "createdAt": {"type": "Date"},
        "updatedAt": {"type": "Date"},
    },
    "examples": {
        "temperatureQuery": {"temperature": "cold", "isActive": True},
        "dateRangeQuery": {
            "createdAt": {"$gte": "2025-07-01T00:00:00Z", "$lte": "2025-07-31T23:59:59Z"},
            "isActive": True,
        },
        "companyQuery": {"company.industry": {"$regex": "tech", "$options": "i"}, "isActive": True},
        "valueQuery": {"estimatedValue": {"$gt": 10000}, "isQualified": True, "isActive": True},
    },
}


@router.get("/schema")
async def lead_schema():
    """The lead schema the query translator writes filters against."""
    return {"success": True, "data": LEAD_SCHEMA}


@router.get("/stats")
async def query_stats(directory: LeadDirectory = Depends(get_lead_directory)):
    """Totals, average scores and breakdowns over active leads."""
    try:
        data = await lead_stats(directory)
    except LeadDirectoryError as e:
        logger.error(
            "stats.endpoint_failed",
            extra={"action": "stats.endpoint_failed", "error": str(e)},
        )
        return JSONResponse(status_code=500, content={"success": False, "message": "Failed to fetch statistics"})
    return {"success": True, "data": data}
