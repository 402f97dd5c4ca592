"""
Intent classifier and email composer, the two LLM-backed steps.

Both wrap LLMClient with a bounded timeout and turn every failure mode
(transport error, timeout, unparseable or incomplete output) into a single
module exception, so the router never has to know about API details.

Usage:
    classifier = IntentClassifier(llm_client=LLMClient())
    result = await classifier.classify("cold leads from July", history)

    composer = EmailComposer(llm_client=LLMClient(temperature=0.4))
    draft = await composer.compose(enriched_prompt)
"""

import asyncio
import logging
from datetime import date
from typing import Optional

from app.assistant.prompts import (
    CLASSIFIER_PROMPT_VERSION,
    COMPOSE_SYSTEM,
    ClassifierError,
    ComposeError,
    build_classifier_prompt,
    build_query_prompt,
    build_suggestions_prompt,
    parse_composed_email,
    parse_labeled_response,
    parse_query_response,
    parse_suggestions,
)
from app.assistant.schemas import ClassifierResult, ComposedEmail, Message, QueryIntent
from app.config import settings
from app.llm.client import LLMClient, LLMError
from app.logging.audit import audit

logger = logging.getLogger(__name__)


class IntentClassifier:
    """Labels a chat message as smalltalk, email or query."""

    def __init__(
        self,
        llm_client: LLMClient,
        timeout_seconds: Optional[float] = None,
    ):
        self._llm = llm_client
        self._timeout = timeout_seconds or settings.classifier_timeout_seconds

    async def classify(
        self,
        message: str,
        history: list[Message],
        today: Optional[date] = None,
    ) -> ClassifierResult:
        """
        Classify one message given the recent conversation.

        Raises:
            ClassifierError: on any transport, timeout, parse or validation failure.
        """
        system, user = build_classifier_prompt(message, history, today)
        raw = await self._call(system, user, purpose="classify")
        result = parse_labeled_response(raw)

        audit.info(
            "chat.classified",
            intent=result.type,
            prompt_version=CLASSIFIER_PROMPT_VERSION,
            history_messages=len(history),
        )
        return result

    async def translate_query(self, query: str, today: Optional[date] = None) -> QueryIntent:
        """Translate a natural-language lead question into a query result."""
        system, user = build_query_prompt(query, today)
        raw = await self._call(system, user, purpose="translate_query")
        return parse_query_response(raw)

    async def suggest_queries(self) -> list[str]:
        """Ask the model for example lead questions a user could try."""
        system, user = build_suggestions_prompt()
        raw = await self._call(system, user, purpose="suggest_queries", max_tokens=500, temperature=0.7)
        return parse_suggestions(raw)

    async def _call(
        self,
        system: str,
        user: str,
        purpose: str,
        max_tokens: Optional[int] = None,
        temperature: Optional[float] = None,
    ) -> str:
        try:
            result = await asyncio.wait_for(
                self._llm.complete(
                    system=system,
                    user=user,
                    max_tokens=max_tokens or settings.anthropic_max_tokens_classify,
                    purpose=purpose,
                    temperature=temperature,
                ),
                timeout=self._timeout,
            )
        except asyncio.TimeoutError as e:
            logger.error(
                "classifier.timeout",
                extra={"action": "classifier.timeout", "purpose": purpose, "timeout_seconds": self._timeout},
            )
            raise ClassifierError(f"Classifier timed out after {self._timeout}s") from e
        except LLMError as e:
            raise ClassifierError(f"Classifier call failed: {e}") from e
        return result.text


class EmailComposer:
    """Drafts intent, recipients, subject and body from an enriched prompt."""

    def __init__(
        self,
        llm_client: LLMClient,
        timeout_seconds: Optional[float] = None,
    ):
        self._llm = llm_client
        self._timeout = timeout_seconds or settings.classifier_timeout_seconds

    async def compose(self, prompt: str) -> ComposedEmail:
        """
        Raises:
            ComposeError: if the call fails or any of the four fields is missing.
        """
        try:
            result = await asyncio.wait_for(
                self._llm.complete(
                    system=COMPOSE_SYSTEM.format(),
                    user=f'User message: "{prompt}"',
                    max_tokens=settings.anthropic_max_tokens_compose,
                    purpose="compose",
                    temperature=0.4,
                ),
                timeout=self._timeout,
            )
        except asyncio.TimeoutError as e:
            raise ComposeError(f"Compose step timed out after {self._timeout}s") from e
        except LLMError as e:
            raise ComposeError(f"Compose call failed: {e}") from e

        composed = parse_composed_email(result.text)
        audit.info(
            "email.composed",
            intent=composed.intent,
            recipient_count=len(composed.recipients),
        )
        return composed
