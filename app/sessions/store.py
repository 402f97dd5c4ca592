"""
Chat session persistence.

The router calls load() at the start of a request and save() once at the end.
Nothing here serializes concurrent requests for the same key: two overlapping
turns each load their own copy and the later save wins.

Two implementations:
- InMemorySessionStore: a dict keyed by session ID. Sessions are lost on
  restart. Used in development and tests.
- MongoSessionStore: one document per session in the chat sessions
  collection, {sessionId, history[], pendingEmail?, lastActive}.
"""

import logging
from typing import Optional, Protocol

from pymongo.asynchronous.collection import AsyncCollection
from pymongo.errors import PyMongoError

from app.assistant.schemas import ChatSession

logger = logging.getLogger(__name__)


class SessionStoreError(Exception):
    """Raised when a session can't be loaded or saved."""
    pass


class SessionStore(Protocol):
    async def load(self, session_id: str) -> ChatSession: ...

    async def save(self, session: ChatSession) -> None: ...

    async def get(self, session_id: str) -> Optional[ChatSession]: ...


class InMemorySessionStore:
    """
    Sessions kept in server memory.

    Each load returns a deep copy, so a request only changes stored state by
    calling save(), the same as with the database store.
    """

    def __init__(self):
        self._sessions: dict[str, ChatSession] = {}

    async def get(self, session_id: str) -> Optional[ChatSession]:
        stored = self._sessions.get(session_id)
        return stored.model_copy(deep=True) if stored else None

    async def load(self, session_id: str) -> ChatSession:
        session = await self.get(session_id)
        if session is None:
            logger.info(
                "session.created",
                extra={"action": "session.created", "active_sessions": len(self._sessions) + 1},
            )
            session = ChatSession(session_id=session_id)
        return session

    async def save(self, session: ChatSession) -> None:
        self._sessions[session.session_id] = session.model_copy(deep=True)

    def __len__(self) -> int:
        return len(self._sessions)


class MongoSessionStore:
    """Sessions persisted as documents keyed by sessionId."""

    def __init__(self, collection: AsyncCollection):
        self._collection = collection

    async def get(self, session_id: str) -> Optional[ChatSession]:
        try:
            doc = await self._collection.find_one({"sessionId": session_id})
        except PyMongoError as e:
            logger.error(
                "session.load_failed",
                extra={"action": "session.load_failed", "error": str(e)},
            )
            raise SessionStoreError(f"Failed to load session: {e}") from e
        return ChatSession.model_validate(doc) if doc else None

    async def load(self, session_id: str) -> ChatSession:
        session = await self.get(session_id)
        if session is None:
            logger.info("session.created", extra={"action": "session.created"})
            session = ChatSession(session_id=session_id)
        return session

    async def save(self, session: ChatSession) -> None:
        try:
            await self._collection.replace_one(
                {"sessionId": session.session_id},
                session.to_document(),
                upsert=True,
            )
        except PyMongoError as e:
            logger.error(
                "session.save_failed",
                extra={"action": "session.save_failed", "error": str(e)},
            )
            raise SessionStoreError(f"Failed to save session: {e}") from e
