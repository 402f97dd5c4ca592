"""
All LLM prompt templates and response parsing for the chat assistant.

This is the single file to edit when you need to change how the assistant
classifies messages, writes MongoDB filters, or drafts emails. Bump
CLASSIFIER_PROMPT_VERSION whenever the classifier contract changes; it is
logged with every classification.

IMPORTANT:
- Never put real lead data in this file. These are templates.
- The {placeholders} are filled in at runtime by the classifier adapter.
- Literal braces in templates are doubled ({{ }}) for str.format.
"""

import json
import re
from datetime import date
from typing import Any, Optional

from pydantic import TypeAdapter, ValidationError

from app.assistant.schemas import (
    ClassifierResult,
    ComposedEmail,
    KnownIntent,
    Message,
    QueryIntent,
    UnknownIntent,
)

CLASSIFIER_PROMPT_VERSION = "2025-08-crm-v3"

KNOWN_INTENT_TYPES = ("smalltalk", "email", "query")

# =============================================================================
# LEAD SCHEMA: Shared by the classifier and the query translator
# =============================================================================

LEAD_SCHEMA_BLOCK = """\
LEAD SCHEMA STRUCTURE:
{{
  "firstName": String,
  "lastName": String,
  "email": String,
  "phone": String,
  "temperature": ["cold", "warm", "hot"],
  "status": ["new", "contacted", "qualified", "proposal", "negotiation", "closed-won", "closed-lost"],
  "company": {{
    "name": String,
    "industry": String,
    "size": ["1-10", "11-50", "51-200", "201-500", "501-1000", "1000+"],
    "website": String
  }},
  "source": ["website", "social-media", "email-campaign", "referral", "cold-call", "event", "advertisement", "other"],
  "estimatedValue": Number,
  "budget": Number,
  "location": {{
    "country": String,
    "state": String,
    "city": String,
    "zipCode": String
  }},
  "engagementScore": Number,
  "leadScore": Number,
  "assignedTo": String,
  "isQualified": Boolean,
  "isActive": Boolean,
  "createdAt": Date,
  "updatedAt": Date
}}"""

QUERY_RULES_BLOCK = """\
MONGODB QUERY RULES:
1. Use case-insensitive $regex for text searches when appropriate
2. Always include {{"isActive": true}} unless specifically asked for inactive leads
3. Use proper operators like $gte, $lte, $in, $regex
4. "July" means July of the current year unless a year is given
5. "recent" means the last 30 days, "this month" means the current month
6. Format dates as ISO 8601 strings, e.g. "2025-07-01T00:00:00Z"
7. Never include JavaScript (no "new Date()", no $where, no functions)"""

# =============================================================================
# SYSTEM PROMPTS: Define the AI's role and constraints
# =============================================================================

CLASSIFIER_SYSTEM = (
    "You are an expert CRM assistant. Interpret the user's message in the context "
    "of the recent conversation and RETURN ONLY ONE JSON OBJECT in exactly one of "
    "these formats:\n\n"
    "For small talk (greetings, thanks, questions about you):\n"
    '{{"type": "smalltalk", "category": "greeting", "reply": "Hello! How can I help with your leads today?"}}\n\n'
    "For writing or sending an email to a lead:\n"
    '{{"type": "email", "recipientName": "John Smith", "recipientEmail": "", '
    '"subject": "...", "body": "...", "reply": "Here is a draft for <recipientName>."}}\n'
    "Leave recipientEmail empty unless the user typed the address. "
    "Use <recipientName> in reply where the recipient's name belongs.\n\n"
    "For questions about leads (search, filter, list, count):\n"
    '{{"type": "query", "mongoQuery": {{}}, "explanation": "...", '
    '"suggestedFields": ["email", "company.name"], "estimatedResults": "..."}}\n\n'
    + LEAD_SCHEMA_BLOCK + "\n\n" + QUERY_RULES_BLOCK + "\n\n"
    "Return ONLY the JSON object. No markdown, no notes, no extra text."
)

QUERY_SYSTEM = (
    "You are an expert MongoDB query generator for a CRM system. Convert natural "
    "language questions into MongoDB find() filters for the Lead collection.\n\n"
    + LEAD_SCHEMA_BLOCK + "\n\n" + QUERY_RULES_BLOCK + "\n\n"
    "RESPONSE FORMAT:\n"
    '{{"type": "query", "mongoQuery": {{}}, "explanation": "string", '
    '"suggestedFields": [], "estimatedResults": "string"}}\n\n'
    "Return ONLY the JSON object. No markdown, no notes, no extra text."
)

SUGGESTIONS_SYSTEM = (
    "Generate 10 example natural language queries for a CRM system that users "
    "might ask about leads.\n\n"
    'RESPONSE FORMAT:\n{{"examples": ["string", ...]}}\n\n'
    "Return ONLY the JSON object. No markdown, no notes, no extra text."
)

COMPOSE_SYSTEM = """\
You are an AI CRM assistant. The user wants to write and/or send an email. You must:
- Understand the user's intent.
- Use the recipient email addresses given in the message.
- Write a professional, context-appropriate subject and body.
- Reply with a JSON object ONLY, in this format:
{{
  "intent": "send_welcome_email",
  "recipients": ["foo@example.com"],
  "subject": "Your Subject Here",
  "body": "Your email body here. Use {{{{name}}}} where the recipient's name belongs."
}}

Do not include explanation, markdown, code blocks, or commentary."""

# =============================================================================
# USER PROMPTS: The actual instructions sent with each request
# =============================================================================

CLASSIFIER_USER = """\
Recent conversation (oldest first):
{history}

Current date context:
- Current year: {year}
- Current month: {month}
- Current date: {today}

User message: "{message}"

Return ONLY the JSON object."""

QUERY_USER = """\
Convert this natural language query to a MongoDB query: "{query}"

Current date context:
- Current year: {year}
- Current month: {month}
- Current date: {today}

Return ONLY the JSON object."""

SUGGESTIONS_USER = (
    "Provide diverse examples including queries about lead temperature, status, "
    "time periods, company information, and lead scoring."
)

COMPOSE_USER = """\
Send an email to:
Name: {name}
Email: {email}
Company: {company}
User's message: {message}"""

# =============================================================================
# ASSISTANT REPLIES: Fixed texts the router appends to history
# =============================================================================

CLASSIFIER_FAILURE_REPLY = "Sorry, I couldn't process that request. Please try again."
UNKNOWN_INTENT_REPLY = "I couldn't understand your request."
RECIPIENT_NOT_FOUND_REPLY = (
    "I could not find an email address for {name}. "
    "Check the name or include the address in your message."
)
QUERY_FAILURE_REPLY = "Failed to process query"
CONFIRM_PROMPT = "Would you like to send this email now? Reply YES to confirm or NO to cancel."
PENDING_REMINDER_REPLY = (
    "You have a draft email to {recipients} waiting. "
    "Reply YES to send it or NO to cancel."
)
CANCELED_REPLY = "Email sending canceled."
SENT_REPLY = "Email sent to {sent} recipient(s): {recipients}."
PARTIAL_SENT_REPLY = (
    "Email sent to {sent} of {total} recipient(s): {recipients}. "
    "Failed to send to: {failed}."
)
NOTHING_SENT_REPLY = "Email could not be sent to {failed}. The draft was discarded."

DRAFT_REPLY = "Here is your draft email to {to}:\nSubject: {subject}\n\n{body}"

RECIPIENT_PLACEHOLDER = "<recipientName>"
NAME_PLACEHOLDER = "{{name}}"

# Served by GET /suggestions when the model can't produce examples.
FALLBACK_SUGGESTIONS = (
    "Show me all cold leads from July",
    "Find hot leads with estimated value over $50000",
    "Get all qualified leads from tech companies",
    "Show leads that haven't been contacted in 30 days",
    "Find all leads from California",
    "Show me leads with high engagement scores",
    "Get all leads from this month",
    "Find leads assigned to John Smith",
    "Show all new leads from social media",
    "Get leads with follow-up dates this week",
)


# =============================================================================
# PROMPT BUILDING
# =============================================================================

def _date_context(today: Optional[date] = None) -> dict:
    today = today or date.today()
    return {"year": today.year, "month": today.month, "today": today.isoformat()}


def summarize_content(content: Any, max_chars: int = 300) -> str:
    """
    Render one message's content for the classifier's history block.

    Text is inlined (truncated). Structured content (query results, draft
    descriptors) is summarized as a count instead of being inlined.
    """
    if isinstance(content, str):
        text = " ".join(content.split())
        return text if len(text) <= max_chars else text[:max_chars].rstrip() + "..."
    if isinstance(content, list):
        return f"[{len(content)} records]"
    if isinstance(content, dict):
        if content.get("kind") == "email_draft":
            return "[email draft]"
        return f"[{len(content)} fields]"
    return "[unsupported content]"


def summarize_history(messages: list[Message]) -> str:
    if not messages:
        return "(no previous messages)"
    return "\n".join(f"{m.role}: {summarize_content(m.content)}" for m in messages)


def build_classifier_prompt(
    message: str, history: list[Message], today: Optional[date] = None
) -> tuple[str, str]:
    """Return (system, user) prompts for one classification."""
    user = CLASSIFIER_USER.format(
        history=summarize_history(history),
        message=message,
        **_date_context(today),
    )
    return CLASSIFIER_SYSTEM.format(), user


def build_query_prompt(query: str, today: Optional[date] = None) -> tuple[str, str]:
    return QUERY_SYSTEM.format(), QUERY_USER.format(query=query, **_date_context(today))


def build_suggestions_prompt() -> tuple[str, str]:
    return SUGGESTIONS_SYSTEM.format(), SUGGESTIONS_USER


def build_compose_prompt(message: str, lead: dict) -> str:
    """Enrich the user's message with the resolved lead for the compose step."""
    company = lead.get("company") or {}
    return COMPOSE_USER.format(
        name=f"{lead.get('firstName', '')} {lead.get('lastName', '')}".strip(),
        email=lead.get("email", ""),
        company=company.get("name", "") if isinstance(company, dict) else "",
        message=message,
    )


# =============================================================================
# RESPONSE PARSING: How we extract structured data from LLM responses
# =============================================================================

class ClassifierError(Exception):
    """Raised when the classifier's output can't be turned into a routable result."""
    pass


class ComposeError(Exception):
    """Raised when the compose step doesn't return a complete draft."""
    pass


_CURLY_QUOTES = str.maketrans({"‘": "'", "’": "'", "“": '"', "”": '"'})

_known_intent = TypeAdapter(KnownIntent)


def extract_json_block(raw: str) -> Optional[str]:
    """
    Find the first top-level {...} block in an LLM response.

    Tolerates prose before/after the object and markdown code fences. Braces
    inside JSON strings are ignored. Returns None if no balanced block exists.
    """
    if not raw:
        return None

    start = raw.find("{")
    while start != -1:
        depth = 0
        in_string = False
        escaped = False
        for i in range(start, len(raw)):
            ch = raw[i]
            if in_string:
                if escaped:
                    escaped = False
                elif ch == "\\":
                    escaped = True
                elif ch == '"':
                    in_string = False
                continue
            if ch == '"':
                in_string = True
            elif ch == "{":
                depth += 1
            elif ch == "}":
                depth -= 1
                if depth == 0:
                    return raw[start:i + 1]
        # Unbalanced from this brace; try the next one.
        start = raw.find("{", start + 1)
    return None


def _load_json_object(raw: str) -> dict:
    raw = raw or ""
    block = extract_json_block(raw)
    try:
        parsed = json.loads(block) if block is not None else None
    except json.JSONDecodeError:
        parsed = None
    if parsed is None:
        # Retry with typographic quote delimiters straightened.
        block = extract_json_block(raw.translate(_CURLY_QUOTES))
        if block is None:
            raise ClassifierError("No JSON object found in model response")
        try:
            parsed = json.loads(block)
        except json.JSONDecodeError as e:
            raise ClassifierError(f"Invalid JSON in model response: {e.msg}") from e
    if not isinstance(parsed, dict):
        raise ClassifierError("Model response is not a JSON object")
    return parsed


def parse_labeled_response(raw: str) -> ClassifierResult:
    """
    Turn raw classifier text into exactly one ClassifierResult variant.

    Raises:
        ClassifierError: no JSON object, invalid JSON, missing "type", or a
            known type missing one of its required fields.
    """
    return _validate_labeled(_load_json_object(raw))


def _validate_labeled(parsed: dict) -> ClassifierResult:
    tag = parsed.get("type")
    if not isinstance(tag, str) or not tag.strip():
        raise ClassifierError("Model response has no intent type")

    tag = tag.strip().lower()
    if tag not in KNOWN_INTENT_TYPES:
        return UnknownIntent(type=tag, raw=parsed)

    try:
        return _known_intent.validate_python({**parsed, "type": tag})
    except ValidationError as e:
        fields = sorted({".".join(str(p) for p in err["loc"][1:]) for err in e.errors()})
        raise ClassifierError(
            f"Model response failed validation for type '{tag}': {', '.join(fields)}"
        ) from e


def parse_query_response(raw: str) -> QueryIntent:
    """Parse a query-translator response; anything but a query is a failure."""
    parsed = _load_json_object(raw)
    parsed.setdefault("type", "query")
    result = _validate_labeled(parsed)
    if not isinstance(result, QueryIntent):
        raise ClassifierError(f"Expected a query, got '{result.type}'")
    return result


def parse_suggestions(raw: str) -> list[str]:
    """Example questions from {"examples": [...]}; blanks and non-strings dropped."""
    parsed = _load_json_object(raw)
    examples = parsed.get("examples")
    if not isinstance(examples, list):
        raise ClassifierError("Model response has no examples list")
    cleaned = [e.strip() for e in examples if isinstance(e, str) and e.strip()]
    if not cleaned:
        raise ClassifierError("Model response has no usable examples")
    return cleaned


def parse_composed_email(raw: str) -> ComposedEmail:
    """
    Parse the compose step's JSON.

    Raises:
        ComposeError: if the response isn't JSON or lacks intent, recipients,
            subject or body.
    """
    try:
        parsed = _load_json_object(raw)
    except ClassifierError as e:
        raise ComposeError(str(e)) from e
    try:
        return ComposedEmail.model_validate(parsed)
    except ValidationError as e:
        raise ComposeError("Incomplete response from compose step") from e


# =============================================================================
# REPLY RENDERING
# =============================================================================

def fill_recipient_placeholder(template: str, recipient_name: str) -> str:
    return template.replace(RECIPIENT_PLACEHOLDER, recipient_name)


def fill_name_placeholder(body: str, name: str) -> str:
    """Replace {{name}} in a draft body when there is a single known recipient."""
    if not name:
        return body
    return re.sub(r"\{\{\s*name\s*\}\}", lambda _: name, body)


def render_draft_reply(to: str, subject: str, body: str) -> str:
    return DRAFT_REPLY.format(to=to, subject=subject, body=body)
