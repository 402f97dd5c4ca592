"""
Conversation router, the per-request orchestrator for the chat assistant.

One call to handle() is one chat turn:

1. Load the session and append the user's message.
2. If an email draft is pending, the message is a confirmation:
   "yes" sends it, "no"/"cancel" discards it, anything else re-prompts.
   The classifier is not called.
3. Otherwise classify the message and branch:
   - smalltalk → reply verbatim
   - email     → resolve the recipient, stage a pending draft
   - query     → (email-looking messages first try the compose fallback)
                 run the filter, project the results
   - unknown   → "couldn't understand"
4. Save the session once, whatever happened, and return a ChatReply.

The router owns no global state. The session store, lead directory,
classifier, composer and dispatcher are all passed in.

Known limitations:
- Two concurrent turns on the same session both load, mutate and save;
  the later save wins.
- Sending and saving are not atomic. If the save after a confirmed send
  fails, the pending draft is still stored and a later "yes" resends it.
"""

import logging
from typing import Optional

from app.assistant.classifier import EmailComposer, IntentClassifier
from app.assistant.prompts import (
    CANCELED_REPLY,
    CLASSIFIER_FAILURE_REPLY,
    CONFIRM_PROMPT,
    NOTHING_SENT_REPLY,
    PARTIAL_SENT_REPLY,
    PENDING_REMINDER_REPLY,
    QUERY_FAILURE_REPLY,
    RECIPIENT_NOT_FOUND_REPLY,
    SENT_REPLY,
    UNKNOWN_INTENT_REPLY,
    ClassifierError,
    ComposeError,
    build_compose_prompt,
    fill_recipient_placeholder,
    render_draft_reply,
)
from app.assistant.schemas import (
    Attachment,
    ChatReply,
    ChatSession,
    EmailIntent,
    PendingEmail,
    QueryIntent,
    SmalltalkIntent,
)
from app.config import settings
from app.leads.directory import LeadDirectory, LeadDirectoryError
from app.leads.query import run_lead_query
from app.logging.audit import audit
from app.mail.dispatch import DispatchOutcome, EmailDispatcher
from app.mail.drafting import (
    Recipient,
    build_pending_email,
    draft_for,
    extract_recipient_name,
    is_email_request,
    looks_like_address,
    resolve_recipient,
)
from app.sessions.store import SessionStore

logger = logging.getLogger(__name__)

CONFIRM_WORDS = {"yes"}
CANCEL_WORDS = {"no", "cancel"}


class ConversationRouter:
    """Routes chat turns through the pending-email state machine and the classifier."""

    def __init__(
        self,
        sessions: SessionStore,
        directory: LeadDirectory,
        classifier: IntentClassifier,
        composer: EmailComposer,
        dispatcher: EmailDispatcher,
        history_window: Optional[int] = None,
        result_limit: Optional[int] = None,
    ):
        self._sessions = sessions
        self._directory = directory
        self._classifier = classifier
        self._composer = composer
        self._dispatcher = dispatcher
        self._history_window = history_window or settings.history_window
        self._result_limit = result_limit or settings.query_result_limit

    # =========================================================================
    # ENTRY POINT
    # =========================================================================

    async def handle(
        self,
        session_id: str,
        message: str,
        attachments: Optional[list[Attachment]] = None,
    ) -> ChatReply:
        session = await self._sessions.load(session_id)
        session.append("user", message)

        try:
            if session.has_pending_email:
                return await self._resolve_pending(session, message)
            return await self._route_new_intent(session, message, attachments or [])
        finally:
            await self._sessions.save(session)

    # =========================================================================
    # PENDING CONFIRMATION
    # =========================================================================

    async def _resolve_pending(self, session: ChatSession, message: str) -> ChatReply:
        pending = session.pending_email
        answer = message.strip().lower()

        if answer in CONFIRM_WORDS:
            outcome = await self._dispatcher.send_all(pending)
            text = confirmation_text(pending, outcome)
            session.resolve_pending(text)
            audit.info(
                "email.confirmed",
                sent_count=outcome.sent_count,
                failed_count=len(outcome.failed),
            )
            return ChatReply(success=outcome.all_sent, message=text)

        if answer in CANCEL_WORDS:
            session.resolve_pending(CANCELED_REPLY)
            audit.info("email.canceled", recipient_count=len(pending.recipients))
            return ChatReply(success=True, message=CANCELED_REPLY)

        reminder = PENDING_REMINDER_REPLY.format(recipients=", ".join(pending.recipients))
        session.append("assistant", reminder)
        return ChatReply(success=False, message=reminder)

    # =========================================================================
    # NEW INTENT
    # =========================================================================

    async def _route_new_intent(
        self,
        session: ChatSession,
        message: str,
        attachments: list[Attachment],
    ) -> ChatReply:
        try:
            result = await self._classifier.classify(message, session.recent(self._history_window))
        except ClassifierError as e:
            logger.warning(
                "chat.classifier_failed",
                extra={"action": "chat.classifier_failed", "error": str(e)},
            )
            return ChatReply(success=False, message=CLASSIFIER_FAILURE_REPLY)

        if isinstance(result, SmalltalkIntent):
            session.append("assistant", result.reply)
            return ChatReply(success=True, message=result.reply)

        if isinstance(result, EmailIntent):
            return await self._stage_classified_email(session, result, attachments)

        if isinstance(result, QueryIntent):
            if is_email_request(message):
                reply = await self._try_compose_fallback(session, message, attachments)
                if reply is not None:
                    return reply
            return await self._run_query(session, message, result)

        audit.warning("chat.unknown_intent", intent=result.type)
        session.append("assistant", UNKNOWN_INTENT_REPLY)
        return ChatReply(success=False, message=UNKNOWN_INTENT_REPLY)

    # -------------------------------------------------------------------------
    # email
    # -------------------------------------------------------------------------

    async def _stage_classified_email(
        self,
        session: ChatSession,
        result: EmailIntent,
        attachments: list[Attachment],
    ) -> ChatReply:
        address = (result.recipient_email or "").strip()
        recipient: Optional[Recipient]
        if address and looks_like_address(address):
            recipient = Recipient(name=result.recipient_name or address, address=address)
        else:
            try:
                recipient = await resolve_recipient(self._directory, result.recipient_name)
            except LeadDirectoryError as e:
                return self._query_error(session, e)

        if recipient is None:
            text = RECIPIENT_NOT_FOUND_REPLY.format(name=result.recipient_name or "that recipient")
            session.append("assistant", text)
            audit.info("email.recipient_not_found")
            return ChatReply(success=False, message=text)

        pending = build_pending_email(
            subject=result.subject,
            body=result.body,
            recipient=recipient,
            intent=result.intent,
            attachments=attachments,
        )
        intro = fill_recipient_placeholder(result.reply, recipient.name).strip()
        if not intro:
            intro = render_draft_reply(recipient.address, pending.subject, pending.body)
        return self._stage(session, pending, recipient, intro)

    async def _try_compose_fallback(
        self,
        session: ChatSession,
        message: str,
        attachments: list[Attachment],
    ) -> Optional[ChatReply]:
        """
        The classifier sometimes tags "email to John Smith ..." as a query.
        Recover the recipient from the message and compose a draft ourselves.
        Returns None to fall through to the query.
        """
        name = extract_recipient_name(message)
        if not name:
            return None

        try:
            recipient = await resolve_recipient(self._directory, name, retry_first_name=True)
            if recipient is None:
                return None
            composed = await self._composer.compose(build_compose_prompt(message, recipient.lead))
        except (LeadDirectoryError, ComposeError) as e:
            logger.warning(
                "chat.compose_fallback_failed",
                extra={"action": "chat.compose_fallback_failed", "error": str(e)},
            )
            return None

        pending = build_pending_email(
            subject=composed.subject,
            body=composed.body,
            recipient=recipient,
            intent=composed.intent,
            attachments=attachments,
        )
        intro = render_draft_reply(recipient.address, pending.subject, pending.body)
        return self._stage(session, pending, recipient, intro)

    def _stage(
        self,
        session: ChatSession,
        pending: PendingEmail,
        recipient: Recipient,
        intro: str,
    ) -> ChatReply:
        draft = draft_for(pending, recipient)
        text = f"{intro}\n\n{CONFIRM_PROMPT}"
        session.stage_pending(
            pending,
            {"kind": "email_draft", "text": text, **draft.model_dump(by_alias=True)},
        )
        audit.info(
            "email.staged",
            intent=pending.intent,
            recipient_count=len(pending.recipients),
            attachment_count=len(pending.attachments),
        )
        return ChatReply(success=True, message=text, draft=draft)

    # -------------------------------------------------------------------------
    # query
    # -------------------------------------------------------------------------

    async def _run_query(self, session: ChatSession, message: str, result: QueryIntent) -> ChatReply:
        try:
            outcome = await run_lead_query(self._directory, result, limit=self._result_limit)
        except LeadDirectoryError as e:
            return self._query_error(session, e)

        session.append("assistant", outcome.results)
        audit.info("chat.query_answered", total=outcome.total, field_count=len(outcome.fields))
        return ChatReply(
            success=True,
            message=result.explanation,
            data=[
                {
                    "original": message,
                    "total": outcome.total,
                    "explanation": result.explanation,
                    "mongoQuery": result.mongo_query,
                    "estimatedResults": result.estimated_results,
                    "results": outcome.results,
                }
            ],
        )

    def _query_error(self, session: ChatSession, error: LeadDirectoryError) -> ChatReply:
        logger.error(
            "chat.query_failed",
            extra={"action": "chat.query_failed", "error": str(error)},
        )
        session.append("assistant", QUERY_FAILURE_REPLY)
        return ChatReply(
            success=False,
            message=QUERY_FAILURE_REPLY,
            error=str(error) if settings.app_env == "development" else "Internal server error",
            status_code=500,
        )


def confirmation_text(pending: PendingEmail, outcome: DispatchOutcome) -> str:
    """Summary of a confirmed send, built from what actually went out."""
    if not outcome.failed:
        return SENT_REPLY.format(sent=outcome.sent_count, recipients=", ".join(outcome.sent))
    if not outcome.sent:
        return NOTHING_SENT_REPLY.format(failed=", ".join(outcome.failed))
    return PARTIAL_SENT_REPLY.format(
        sent=outcome.sent_count,
        total=len(pending.recipients),
        recipients=", ".join(outcome.sent),
        failed=", ".join(outcome.failed),
    )
