"""
Tests for the LLM client wrapper.

Uses mocked Anthropic API responses to test retry logic, cost calculation,
error handling, and usage tracking without making real API calls. Backoff
sleeps are patched out.
"""

import pytest
from unittest.mock import AsyncMock, MagicMock, patch

import anthropic

from app.llm.client import LLMClient, LLMError, LLMResult


# --- Helpers to create mock responses ---

def make_mock_response(text="Hello", input_tokens=100, output_tokens=50):
    """Create a mock Anthropic API response."""
    response = MagicMock()
    response.content = [MagicMock(text=text)]
    response.usage = MagicMock(input_tokens=input_tokens, output_tokens=output_tokens)
    return response


def make_client_with_mock(**kwargs) -> tuple[LLMClient, MagicMock]:
    """Create an LLMClient with a mocked AsyncAnthropic client inside."""
    with patch("app.llm.client.anthropic.AsyncAnthropic") as mock_cls:
        mock_anthropic = MagicMock()
        mock_anthropic.messages.create = AsyncMock()
        mock_cls.return_value = mock_anthropic
        client = LLMClient(
            api_key="test-key",
            model="claude-sonnet-4-20250514",
            **kwargs,
        )
        return client, mock_anthropic


def rate_limit_error():
    return anthropic.RateLimitError(
        message="rate limited",
        response=MagicMock(status_code=429, headers={}),
        body={"error": {"message": "rate limited", "type": "rate_limit_error"}},
    )


def status_error(code: int, kind: str):
    return anthropic.APIStatusError(
        message=kind,
        response=MagicMock(status_code=code, headers={}),
        body={"error": {"message": kind, "type": kind}},
    )


@pytest.fixture
def no_backoff():
    with patch("app.llm.client.asyncio.sleep", new_callable=AsyncMock) as sleep:
        yield sleep


# --- Tests ---

class TestSuccessfulCalls:
    @pytest.mark.asyncio
    async def test_basic_completion(self):
        """A successful call should return an LLMResult with correct fields."""
        client, mock = make_client_with_mock()
        mock.messages.create.return_value = make_mock_response(
            text='{"type": "smalltalk"}',
            input_tokens=150,
            output_tokens=40,
        )

        result = await client.complete(
            system="You are a CRM assistant.",
            user="hello",
            max_tokens=200,
            purpose="classify",
        )

        assert isinstance(result, LLMResult)
        assert result.text == '{"type": "smalltalk"}'
        assert result.input_tokens == 150
        assert result.output_tokens == 40
        assert result.total_tokens == 190
        assert result.latency_ms >= 0
        assert result.model == "claude-sonnet-4-20250514"

    @pytest.mark.asyncio
    async def test_request_parameters(self):
        client, mock = make_client_with_mock(temperature=0.1)
        mock.messages.create.return_value = make_mock_response()

        await client.complete(system="sys", user="msg", max_tokens=600, purpose="compose", temperature=0.4)

        kwargs = mock.messages.create.await_args.kwargs
        assert kwargs["system"] == "sys"
        assert kwargs["max_tokens"] == 600
        assert kwargs["temperature"] == 0.4
        assert kwargs["messages"] == [{"role": "user", "content": "msg"}]

    @pytest.mark.asyncio
    async def test_default_temperature_is_the_clients(self):
        client, mock = make_client_with_mock(temperature=0.1)
        mock.messages.create.return_value = make_mock_response()

        await client.complete(system="sys", user="msg", purpose="classify")

        assert mock.messages.create.await_args.kwargs["temperature"] == 0.1

    @pytest.mark.asyncio
    async def test_cost_calculation(self):
        """Cost should be calculated based on token counts and pricing."""
        client, mock = make_client_with_mock()
        # 1000 input tokens at $3/1M = $0.003
        # 500 output tokens at $15/1M = $0.0075
        mock.messages.create.return_value = make_mock_response(
            input_tokens=1000,
            output_tokens=500,
        )

        result = await client.complete(system="test", user="test", purpose="test")

        assert abs(result.input_cost - 0.003) < 0.0001
        assert abs(result.output_cost - 0.0075) < 0.0001
        assert abs(result.cost - 0.0105) < 0.0001

    @pytest.mark.asyncio
    async def test_text_is_stripped(self):
        client, mock = make_client_with_mock()
        mock.messages.create.return_value = make_mock_response(text="  hello world  ")

        result = await client.complete(system="test", user="test", purpose="test")

        assert result.text == "hello world"

    @pytest.mark.asyncio
    async def test_empty_content_raises(self):
        client, mock = make_client_with_mock()
        response = make_mock_response()
        response.content = []
        mock.messages.create.return_value = response

        with pytest.raises(LLMError, match="no content"):
            await client.complete(system="test", user="test", purpose="test")


class TestUsageTracking:
    @pytest.mark.asyncio
    async def test_usage_accumulates(self):
        """Multiple calls should accumulate client totals."""
        client, mock = make_client_with_mock()
        mock.messages.create.return_value = make_mock_response(
            input_tokens=1000, output_tokens=500
        )

        await client.complete(system="test", user="test", purpose="test")
        await client.complete(system="test", user="test", purpose="test")

        stats = client.get_usage_stats()
        assert stats["total_calls"] == 2
        assert stats["total_input_tokens"] == 2000
        assert stats["total_output_tokens"] == 1000
        assert stats["total_cost_usd"] > 0

    @pytest.mark.asyncio
    async def test_usage_reset(self):
        client, mock = make_client_with_mock()
        mock.messages.create.return_value = make_mock_response()

        await client.complete(system="test", user="test", purpose="test")
        client.reset_usage_stats()

        stats = client.get_usage_stats()
        assert stats["total_calls"] == 0
        assert stats["total_cost_usd"] == 0


class TestRetryLogic:
    @pytest.mark.asyncio
    async def test_retry_on_rate_limit(self, no_backoff):
        client, mock = make_client_with_mock(max_retries=3, timeout_seconds=5)

        # Fail twice with rate limit, succeed on third
        mock.messages.create.side_effect = [
            rate_limit_error(),
            rate_limit_error(),
            make_mock_response(text="success after retries"),
        ]

        result = await client.complete(system="test", user="test", purpose="test")
        assert result.text == "success after retries"
        assert mock.messages.create.await_count == 3
        assert [c.args[0] for c in no_backoff.await_args_list] == [2, 4]

    @pytest.mark.asyncio
    async def test_retry_on_server_error(self, no_backoff):
        """5xx server errors should be retried."""
        client, mock = make_client_with_mock(max_retries=2)

        mock.messages.create.side_effect = [
            status_error(500, "server_error"),
            make_mock_response(text="recovered"),
        ]

        result = await client.complete(system="test", user="test", purpose="test")
        assert result.text == "recovered"

    @pytest.mark.asyncio
    async def test_retry_on_timeout_without_sleeping(self, no_backoff):
        client, mock = make_client_with_mock(max_retries=2)

        mock.messages.create.side_effect = [
            anthropic.APITimeoutError(request=MagicMock()),
            make_mock_response(text="recovered after timeout"),
        ]

        result = await client.complete(system="test", user="test", purpose="test")
        assert result.text == "recovered after timeout"
        no_backoff.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_retry_on_connection_error(self, no_backoff):
        client, mock = make_client_with_mock(max_retries=2)

        mock.messages.create.side_effect = [
            anthropic.APIConnectionError(request=MagicMock(), message="connection failed"),
            make_mock_response(text="reconnected"),
        ]

        result = await client.complete(system="test", user="test", purpose="test")
        assert result.text == "reconnected"


class TestErrorHandling:
    @pytest.mark.asyncio
    async def test_all_retries_exhausted_raises_llm_error(self, no_backoff):
        client, mock = make_client_with_mock(max_retries=2)

        mock.messages.create.side_effect = rate_limit_error()

        with pytest.raises(LLMError, match="failed after 2 attempts"):
            await client.complete(system="test", user="test", purpose="test")

        assert mock.messages.create.await_count == 2

    @pytest.mark.asyncio
    async def test_auth_error_not_retried(self, no_backoff):
        """4xx errors (except 429) should NOT be retried."""
        client, mock = make_client_with_mock(max_retries=3)

        mock.messages.create.side_effect = status_error(401, "authentication_error")

        with pytest.raises(LLMError, match="HTTP 401"):
            await client.complete(system="test", user="test", purpose="test")

        assert mock.messages.create.await_count == 1

    @pytest.mark.asyncio
    async def test_bad_request_not_retried(self, no_backoff):
        client, mock = make_client_with_mock(max_retries=3)

        mock.messages.create.side_effect = status_error(400, "invalid_request_error")

        with pytest.raises(LLMError, match="HTTP 400"):
            await client.complete(system="test", user="test", purpose="test")

        assert mock.messages.create.await_count == 1
