"""
Anthropic LLM client wrapper.

Provides a clean interface for making LLM calls with:
- Automatic retry on transient errors (timeouts, rate limits, server errors)
- Structured logging of every call (tokens, cost, latency; never content)
- Token usage and cost tracking per call and per client
- Configurable model and token limits

The client is async: the chat router awaits it alongside the session store
and the lead directory, so a slow model never blocks the event loop.

Usage:
    from app.llm.client import LLMClient

    client = LLMClient()
    result = await client.complete(
        system="You are a CRM assistant.",
        user="Show me all cold leads from July",
        max_tokens=1500,
        purpose="classify",
    )
    print(result.text)
    print(result.cost)
"""

import asyncio
import time
import logging
from dataclasses import dataclass
from typing import Optional

import anthropic

from app.config import settings

logger = logging.getLogger(__name__)

# Claude Sonnet 4 pricing (per 1M tokens). Update if model changes
PRICING = {
    "claude-sonnet-4-20250514": {"input": 3.00, "output": 15.00},
}
# Fallback pricing if model not in pricing table
DEFAULT_PRICING = {"input": 3.00, "output": 15.00}


@dataclass
class LLMResult:
    """Result of an LLM API call."""
    text: str
    input_tokens: int
    output_tokens: int
    total_tokens: int
    input_cost: float
    output_cost: float
    cost: float
    latency_ms: int
    model: str


class LLMClient:
    """
    Wrapper around the async Anthropic API client.

    Handles retries, logging, and cost tracking so the rest of the app
    doesn't need to know about API details.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        max_retries: int = 3,
        timeout_seconds: float = 30.0,
        temperature: float = 0.1,
    ):
        self._api_key = api_key or settings.anthropic_api_key
        self._model = model or settings.anthropic_model
        self._max_retries = max_retries
        self._timeout = timeout_seconds
        self._temperature = temperature

        self._client = anthropic.AsyncAnthropic(
            api_key=self._api_key,
            timeout=self._timeout,
            max_retries=0,  # We handle retries ourselves for better logging
        )

        # Get pricing for this model
        self._pricing = PRICING.get(self._model, DEFAULT_PRICING)

        # Client-level cost tracking
        self.total_cost: float = 0.0
        self.total_input_tokens: int = 0
        self.total_output_tokens: int = 0
        self.call_count: int = 0

        logger.info(
            "llm_client.initialized",
            extra={
                "action": "llm_client.initialized",
                "model": self._model,
                "max_retries": self._max_retries,
                "timeout_seconds": self._timeout,
            },
        )

    async def complete(
        self,
        system: str,
        user: str,
        max_tokens: Optional[int] = None,
        purpose: str = "unknown",
        temperature: Optional[float] = None,
    ) -> LLMResult:
        """
        Send a completion request to the Anthropic API.

        Args:
            system: System prompt.
            user: User message content.
            max_tokens: Max output tokens (defaults to the classify limit).
            purpose: What this call is for (e.g., "classify", "compose").
                     Used in logs to distinguish different call types.
                     NEVER include message content in this field.
            temperature: Sampling temperature (defaults to the client's).

        Returns:
            LLMResult with the response text, token usage, and cost.

        Raises:
            LLMError: If all retries are exhausted or the request is rejected.
        """
        if max_tokens is None:
            max_tokens = settings.anthropic_max_tokens_classify
        if temperature is None:
            temperature = self._temperature

        last_error = None

        for attempt in range(1, self._max_retries + 1):
            start = time.monotonic()

            try:
                response = await self._client.messages.create(
                    model=self._model,
                    max_tokens=max_tokens,
                    temperature=temperature,
                    system=system,
                    messages=[{"role": "user", "content": user}],
                )

                latency_ms = int((time.monotonic() - start) * 1000)

                if not response.content:
                    raise LLMError("Anthropic API returned no content")

                # Calculate cost
                input_tokens = response.usage.input_tokens
                output_tokens = response.usage.output_tokens
                input_cost = (input_tokens / 1_000_000) * self._pricing["input"]
                output_cost = (output_tokens / 1_000_000) * self._pricing["output"]
                total_cost = input_cost + output_cost

                # Update client totals
                self.total_cost += total_cost
                self.total_input_tokens += input_tokens
                self.total_output_tokens += output_tokens
                self.call_count += 1

                result = LLMResult(
                    text=response.content[0].text.strip(),
                    input_tokens=input_tokens,
                    output_tokens=output_tokens,
                    total_tokens=input_tokens + output_tokens,
                    input_cost=input_cost,
                    output_cost=output_cost,
                    cost=total_cost,
                    latency_ms=latency_ms,
                    model=self._model,
                )

                # Log success. NEVER log prompt or response content
                logger.info(
                    "llm.call.success",
                    extra={
                        "action": "llm.call.success",
                        "purpose": purpose,
                        "attempt": attempt,
                        "model": self._model,
                        "input_tokens": input_tokens,
                        "output_tokens": output_tokens,
                        "cost_usd": round(total_cost, 6),
                        "latency_ms": latency_ms,
                        "total_cost_usd": round(self.total_cost, 4),
                        "call_count": self.call_count,
                    },
                )

                return result

            except anthropic.RateLimitError as e:
                last_error = e
                wait = min(2 ** attempt, 30)  # Exponential backoff: 2s, 4s, 8s...
                logger.warning(
                    "llm.call.rate_limited",
                    extra={
                        "action": "llm.call.rate_limited",
                        "purpose": purpose,
                        "attempt": attempt,
                        "wait_seconds": wait,
                    },
                )
                await asyncio.sleep(wait)

            except anthropic.APITimeoutError as e:
                last_error = e
                latency_ms = int((time.monotonic() - start) * 1000)
                logger.warning(
                    "llm.call.timeout",
                    extra={
                        "action": "llm.call.timeout",
                        "purpose": purpose,
                        "attempt": attempt,
                        "latency_ms": latency_ms,
                        "timeout_seconds": self._timeout,
                    },
                )
                # Don't sleep on timeout, the wait already happened

            except anthropic.APIStatusError as e:
                last_error = e
                # 5xx errors are transient, retry. 4xx errors (except 429) are not.
                if e.status_code >= 500:
                    wait = min(2 ** attempt, 30)
                    logger.warning(
                        "llm.call.server_error",
                        extra={
                            "action": "llm.call.server_error",
                            "purpose": purpose,
                            "attempt": attempt,
                            "status_code": e.status_code,
                            "wait_seconds": wait,
                        },
                    )
                    await asyncio.sleep(wait)
                else:
                    logger.error(
                        "llm.call.client_error",
                        extra={
                            "action": "llm.call.client_error",
                            "purpose": purpose,
                            "attempt": attempt,
                            "status_code": e.status_code,
                            "error": str(e),
                        },
                    )
                    raise LLMError(f"Anthropic API error (HTTP {e.status_code}): {e}") from e

            except anthropic.APIConnectionError as e:
                last_error = e
                wait = min(2 ** attempt, 30)
                logger.warning(
                    "llm.call.connection_error",
                    extra={
                        "action": "llm.call.connection_error",
                        "purpose": purpose,
                        "attempt": attempt,
                        "wait_seconds": wait,
                        "error": str(e),
                    },
                )
                await asyncio.sleep(wait)

        # All retries exhausted
        logger.error(
            "llm.call.failed",
            extra={
                "action": "llm.call.failed",
                "purpose": purpose,
                "max_retries": self._max_retries,
                "error": str(last_error),
            },
        )
        raise LLMError(
            f"LLM call failed after {self._max_retries} attempts: {last_error}"
        ) from last_error

    def get_usage_stats(self) -> dict:
        """Get client-level usage statistics."""
        return {
            "total_cost_usd": round(self.total_cost, 4),
            "total_input_tokens": self.total_input_tokens,
            "total_output_tokens": self.total_output_tokens,
            "total_calls": self.call_count,
            "model": self._model,
        }

    def reset_usage_stats(self) -> None:
        """Reset client-level counters."""
        self.total_cost = 0.0
        self.total_input_tokens = 0
        self.total_output_tokens = 0
        self.call_count = 0


class LLMError(Exception):
    """Raised when an LLM API call fails after all retries."""
    pass
