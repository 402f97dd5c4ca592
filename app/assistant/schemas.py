"""
Data models for the chat assistant.

These Pydantic models define the shape of everything the conversation router
loads, mutates and persists, plus the classifier's tagged-union output.

Persisted and LLM-facing field names are camelCase (the stored session
documents and the classifier JSON use them); Python code uses snake_case.
Every model accepts either form on input.
"""

from datetime import datetime, timezone
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


Role = Literal["user", "assistant", "system"]

# Assistant turns may carry query results (a list of lead-field mappings)
# or a drafted-email descriptor instead of plain text.
MessageContent = Union[str, list[dict[str, Any]], dict[str, Any]]


class Message(BaseModel):
    """One turn in a chat session. Immutable once appended."""

    model_config = ConfigDict(frozen=True)

    role: Role
    content: MessageContent
    timestamp: datetime = Field(default_factory=utcnow)


class Attachment(BaseModel):
    """A file uploaded with a chat message and staged on a pending email."""
    filename: str
    path: str
    mimetype: str = Field(default="application/octet-stream")


class PendingEmail(BaseModel):
    """A drafted email waiting for the user to reply YES or NO."""

    model_config = ConfigDict(populate_by_name=True)

    subject: str
    body: str
    recipients: list[str] = Field(min_length=1)
    intent: str = Field(default="send_email")
    attachments: list[Attachment] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utcnow, alias="createdAt")


class ChatSession(BaseModel):
    """
    Server-side conversation state for one opaque session key.

    Invariant: at most one pending email at a time. Staging and resolving it
    always happen together with the assistant message that announces it, so a
    single save persists both.
    """

    model_config = ConfigDict(populate_by_name=True)

    session_id: str = Field(alias="sessionId")
    history: list[Message] = Field(default_factory=list)
    pending_email: Optional[PendingEmail] = Field(default=None, alias="pendingEmail")
    last_active: datetime = Field(default_factory=utcnow, alias="lastActive")

    @property
    def has_pending_email(self) -> bool:
        return self.pending_email is not None and len(self.pending_email.recipients) > 0

    def touch(self) -> None:
        self.last_active = utcnow()

    def append(self, role: Role, content: MessageContent) -> Message:
        message = Message(role=role, content=content)
        self.history.append(message)
        self.touch()
        return message

    def stage_pending(self, pending: PendingEmail, content: MessageContent) -> None:
        """Stage a draft and append the assistant message that presents it."""
        self.pending_email = pending
        self.append("assistant", content)

    def resolve_pending(self, content: MessageContent) -> None:
        """Clear the pending email and append the resulting assistant message."""
        self.pending_email = None
        self.append("assistant", content)

    def recent(self, n: int) -> list[Message]:
        """The n most recent messages before the current (last) user turn."""
        if n <= 0:
            return []
        return self.history[:-1][-n:]

    def to_document(self) -> dict:
        return self.model_dump(by_alias=True, mode="python")


# =============================================================================
# CLASSIFIER RESULT: tagged union, one variant per intent
# =============================================================================

# Operators that run server-side code; never accepted from the model.
FORBIDDEN_QUERY_OPERATORS = {"$where", "$function", "$accumulator"}


def _find_forbidden_operator(value: Any) -> Optional[str]:
    if isinstance(value, dict):
        for key, item in value.items():
            if key in FORBIDDEN_QUERY_OPERATORS:
                return key
            found = _find_forbidden_operator(item)
            if found:
                return found
    elif isinstance(value, list):
        for item in value:
            found = _find_forbidden_operator(item)
            if found:
                return found
    return None


class SmalltalkIntent(BaseModel):
    type: Literal["smalltalk"]
    category: str
    reply: str = Field(min_length=1)


class EmailIntent(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    type: Literal["email"]
    recipient_name: str = Field(alias="recipientName")
    recipient_email: Optional[str] = Field(default=None, alias="recipientEmail")
    subject: str = Field(min_length=1)
    body: str = Field(min_length=1)
    reply: str
    intent: str = Field(default="send_email")


class QueryIntent(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    type: Literal["query"]
    mongo_query: dict[str, Any] = Field(alias="mongoQuery")
    explanation: str
    suggested_fields: list[str] = Field(alias="suggestedFields")
    estimated_results: str = Field(alias="estimatedResults")

    @field_validator("mongo_query")
    @classmethod
    def reject_code_operators(cls, value: dict[str, Any]) -> dict[str, Any]:
        operator = _find_forbidden_operator(value)
        if operator:
            raise ValueError(f"operator {operator} is not allowed")
        return value

    @field_validator("estimated_results", mode="before")
    @classmethod
    def stringify_estimate(cls, value: Any) -> Any:
        # Models often answer with a bare number here.
        if isinstance(value, (int, float)):
            return str(value)
        return value


class UnknownIntent(BaseModel):
    """A well-formed classifier response whose tag we don't route."""
    type: str
    raw: dict[str, Any] = Field(default_factory=dict)


KnownIntent = Annotated[
    Union[SmalltalkIntent, EmailIntent, QueryIntent],
    Field(discriminator="type"),
]
ClassifierResult = Union[SmalltalkIntent, EmailIntent, QueryIntent, UnknownIntent]


class ComposedEmail(BaseModel):
    """What the compose step must return. Anything missing is a failure."""
    intent: str = Field(min_length=1)
    recipients: list[str] = Field(min_length=1)
    subject: str = Field(min_length=1)
    body: str = Field(min_length=1)


# =============================================================================
# RESPONSES
# =============================================================================

class EmailDraft(BaseModel):
    """The draft surfaced to the caller alongside the confirmation prompt."""

    model_config = ConfigDict(populate_by_name=True)

    subject: str
    body: str
    to: str
    recipient_name: str = Field(default="", alias="recipientName")


class ChatReply(BaseModel):
    """Response of one chat turn, serialized as the /chat JSON body."""
    success: bool
    message: Optional[str] = Field(default=None)
    data: Optional[list[Any]] = Field(default=None)
    draft: Optional[EmailDraft] = Field(default=None)
    error: Optional[str] = Field(default=None)
    status_code: int = Field(default=200, exclude=True)

    def to_json(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")


class NaturalLanguageQueryRequest(BaseModel):
    """Body of POST /api/v1/query/natural-language."""
    query: str = Field(min_length=3, max_length=500)
    limit: int = Field(default=50, ge=1, le=1000)
    fields: Optional[list[str]] = Field(default=None)

    @field_validator("query", mode="before")
    @classmethod
    def strip_query(cls, value: Any) -> Any:
        return value.strip() if isinstance(value, str) else value


class DirectQueryRequest(BaseModel):
    """Body of POST /api/v1/query/mongodb."""
    query: dict[str, Any]
    limit: int = Field(default=50, ge=1, le=1000)
    fields: Optional[list[str]] = Field(default=None)
    sort: Optional[dict[str, Literal[1, -1]]] = Field(default=None)

    @field_validator("query")
    @classmethod
    def reject_code_operators(cls, value: dict[str, Any]) -> dict[str, Any]:
        operator = _find_forbidden_operator(value)
        if operator:
            raise ValueError(f"operator {operator} is not allowed")
        return value

    def sort_spec(self) -> Optional[list[tuple[str, int]]]:
        return list(self.sort.items()) if self.sort else None
