"""Shared test configuration, fakes and fixtures."""

import os

# Settings are read at import time; give the required secrets test values
# before any app module is imported.
os.environ.setdefault("ANTHROPIC_API_KEY", "test-anthropic-key")
os.environ.setdefault("AZURE_CLIENT_ID", "test-client-id")
os.environ.setdefault("AZURE_CLIENT_SECRET", "test-client-secret")
os.environ.setdefault("AZURE_TENANT_ID", "test-tenant-id")
os.environ.setdefault("MAIL_SENDER", "assistant@crm.example.com")
os.environ.setdefault("APP_ENV", "development")

from typing import Any, Optional
from unittest.mock import MagicMock

import pytest

from app.assistant.classifier import EmailComposer, IntentClassifier
from app.assistant.router import ConversationRouter
from app.leads.directory import LeadDirectoryError
from app.logging.config import setup_logging
from app.mail.dispatch import EmailDispatcher
from app.mail.transport import DeliveryInfo, GraphMailTransport
from app.sessions.store import InMemorySessionStore


def _matches(lead: dict, query: dict) -> bool:
    """Equality-only filter matching; enough for routing tests."""
    for key, expected in query.items():
        value: Any = lead
        for part in key.split("."):
            value = value.get(part) if isinstance(value, dict) else None
        if value != expected:
            return False
    return True


class FakeLeadDirectory:
    """In-memory LeadDirectory that records the queries it receives."""

    def __init__(self, leads: Optional[list[dict]] = None):
        self.leads = leads or []
        self.find_calls: list[tuple[dict, Optional[dict], int]] = []
        self.name_lookups: list[tuple[str, Optional[str]]] = []
        self.sorts: list[Optional[list[tuple[str, int]]]] = []
        self.pipelines: list[list[dict]] = []
        # Returned by aggregate() in call order.
        self.aggregate_results: list[list[dict]] = []
        self.fail_with: Optional[str] = None

    async def find(self, query, projection, limit, sort=None):
        self.find_calls.append((query, projection, limit))
        self.sorts.append(sort)
        if self.fail_with:
            raise LeadDirectoryError(self.fail_with)
        leads = [lead for lead in self.leads if _matches(lead, query)]
        for key, direction in reversed(sort or []):
            leads.sort(key=lambda lead: lead.get(key), reverse=direction < 0)
        return leads[:limit]

    async def find_one_by_name(self, first_name, last_name=None):
        self.name_lookups.append((first_name, last_name))
        if self.fail_with:
            raise LeadDirectoryError(self.fail_with)
        for lead in self.leads:
            if lead.get("firstName", "").lower() != first_name.lower():
                continue
            if last_name and lead.get("lastName", "").lower() != last_name.lower():
                continue
            return lead
        return None

    async def aggregate(self, pipeline):
        self.pipelines.append(pipeline)
        if self.fail_with:
            raise LeadDirectoryError(self.fail_with)
        return self.aggregate_results.pop(0) if self.aggregate_results else []


def make_lead(**overrides) -> dict:
    lead = {
        "_id": "64b000000000000000000001",
        "firstName": "John",
        "lastName": "Smith",
        "email": "j@x.com",
        "temperature": "cold",
        "isActive": True,
        "company": {"name": "Acme", "industry": "Tech"},
    }
    lead.update(overrides)
    return lead


@pytest.fixture(autouse=True)
def init_logging():
    setup_logging("debug")


@pytest.fixture
def store() -> InMemorySessionStore:
    return InMemorySessionStore()


@pytest.fixture
def directory() -> FakeLeadDirectory:
    return FakeLeadDirectory([make_lead()])


@pytest.fixture
def classifier() -> MagicMock:
    return MagicMock(spec=IntentClassifier)


@pytest.fixture
def composer() -> MagicMock:
    return MagicMock(spec=EmailComposer)


@pytest.fixture
def transport() -> MagicMock:
    mock = MagicMock(spec=GraphMailTransport)

    async def send(to, subject, html, attachments):
        return DeliveryInfo(recipient=to, status_code=202)

    mock.send.side_effect = send
    return mock


@pytest.fixture
def dispatcher(transport, tmp_path_factory) -> EmailDispatcher:
    signature = tmp_path_factory.mktemp("signature") / "email-signature.jpeg"
    signature.write_bytes(b"\xff\xd8\xff\xe0signature")
    return EmailDispatcher(transport=transport, signature_path=str(signature), timeout_seconds=5)


@pytest.fixture
def router(store, directory, classifier, composer, dispatcher) -> ConversationRouter:
    return ConversationRouter(
        sessions=store,
        directory=directory,
        classifier=classifier,
        composer=composer,
        dispatcher=dispatcher,
        history_window=6,
        result_limit=100,
    )
