"""
FastAPI dependencies that wire the assistant's collaborators.

Long-lived clients (LLM, mail transport) are created once per process;
the router itself is cheap and built per request. Tests replace any of
these through app.dependency_overrides.
"""

from functools import lru_cache

from fastapi import Depends

from app.assistant.classifier import EmailComposer, IntentClassifier
from app.assistant.router import ConversationRouter
from app.config import settings
from app.db import get_database
from app.leads.directory import LeadDirectory, MongoLeadDirectory
from app.llm.client import LLMClient
from app.mail.dispatch import EmailDispatcher
from app.mail.transport import GraphMailTransport
from app.sessions.store import MongoSessionStore, SessionStore


@lru_cache
def get_llm_client() -> LLMClient:
    return LLMClient()


@lru_cache
def get_mail_transport() -> GraphMailTransport:
    return GraphMailTransport()


def get_session_store() -> SessionStore:
    return MongoSessionStore(get_database()[settings.sessions_collection])


def get_lead_directory() -> LeadDirectory:
    return MongoLeadDirectory(get_database()[settings.leads_collection])


def get_intent_classifier() -> IntentClassifier:
    return IntentClassifier(llm_client=get_llm_client())


def get_conversation_router(
    sessions: SessionStore = Depends(get_session_store),
    directory: LeadDirectory = Depends(get_lead_directory),
    classifier: IntentClassifier = Depends(get_intent_classifier),
) -> ConversationRouter:
    return ConversationRouter(
        sessions=sessions,
        directory=directory,
        classifier=classifier,
        composer=EmailComposer(llm_client=get_llm_client()),
        dispatcher=EmailDispatcher(transport=get_mail_transport()),
    )


async def close_clients() -> None:
    """Release cached HTTP clients at shutdown."""
    if get_mail_transport.cache_info().currsize:
        await get_mail_transport().aclose()
        get_mail_transport.cache_clear()
    get_llm_client.cache_clear()
