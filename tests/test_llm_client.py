"""
Tests for the LLM client wrapper.

Uses mocked Anthropic API responses to test retry logic, cost calculation,
and error handling without making real API calls. Backoff sleeps are patched
out so retries run instantly.
"""

import asyncio

import pytest
from unittest.mock import AsyncMock, MagicMock, patch
from culturescope.llm.client import LLMClient, LLMError, LLMResult
from culturescope.logging.config import setup_logging

import anthropic


@pytest.fixture(autouse=True)
def init_logging():
    setup_logging("debug")


@pytest.fixture(autouse=True)
def no_backoff():
    with patch("culturescope.llm.client.asyncio.sleep", new=AsyncMock()) as sleep:
        yield sleep


# --- Helpers to create mock responses ---

def make_mock_response(text="Hola", input_tokens=100, output_tokens=50, stop_reason="end_turn"):
    """Create a mock Anthropic API response."""
    response = MagicMock()
    response.content = [MagicMock(type="text", text=text)]
    response.usage = MagicMock(input_tokens=input_tokens, output_tokens=output_tokens)
    response.stop_reason = stop_reason
    return response


def make_client_with_mock(**kwargs) -> tuple[LLMClient, MagicMock]:
    """Create an LLMClient with a mocked async Anthropic client inside."""
    with patch("culturescope.llm.client.anthropic.AsyncAnthropic") as mock_cls:
        mock_anthropic = MagicMock()
        mock_anthropic.messages.create = AsyncMock()
        mock_anthropic.models.list = AsyncMock()
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


def complete(client: LLMClient) -> LLMResult:
    return asyncio.run(client.complete(system="test", user="test", purpose="test"))


# --- Tests ---

class TestSuccessfulCalls:
    def test_basic_completion(self):
        """A successful call should return an LLMResult with correct fields."""
        client, mock = make_client_with_mock()
        mock.messages.create.return_value = make_mock_response(
            text='{"tipo_de_cultura": "Clan"}',
            input_tokens=150,
            output_tokens=40,
        )

        result = asyncio.run(client.complete(
            system="Eres un experto.",
            user="Analiza esto.",
            max_tokens=200,
            purpose="culture_analysis",
        ))

        assert isinstance(result, LLMResult)
        assert result.text == '{"tipo_de_cultura": "Clan"}'
        assert result.input_tokens == 150
        assert result.output_tokens == 40
        assert result.total_tokens == 190
        assert result.latency_ms >= 0
        assert result.model == "claude-sonnet-4-20250514"
        assert result.stop_reason == "end_turn"

        kwargs = mock.messages.create.call_args.kwargs
        assert kwargs["max_tokens"] == 200
        assert kwargs["system"] == "Eres un experto."
        assert kwargs["messages"] == [{"role": "user", "content": "Analiza esto."}]

    def test_cost_calculation(self):
        """Cost should be calculated based on token counts and pricing."""
        client, mock = make_client_with_mock()
        # 1000 input tokens at $3/1M = $0.003
        # 500 output tokens at $15/1M = $0.0075
        mock.messages.create.return_value = make_mock_response(
            input_tokens=1000,
            output_tokens=500,
        )

        result = complete(client)

        assert abs(result.cost - 0.0105) < 0.0001

    def test_only_text_blocks_are_joined(self):
        client, mock = make_client_with_mock()
        response = make_mock_response(text="  hola ")
        response.content.append(MagicMock(type="tool_use", text="ignored"))
        mock.messages.create.return_value = response

        assert complete(client).text == "hola"

    def test_totals_accumulate(self):
        client, mock = make_client_with_mock()
        mock.messages.create.return_value = make_mock_response(input_tokens=1000, output_tokens=500)

        complete(client)
        complete(client)

        assert client.call_count == 2
        assert abs(client.total_cost - 0.021) < 0.0001
        assert client.total_input_tokens == 2000
        assert client.total_output_tokens == 1000


class TestRetryLogic:
    def test_retry_on_rate_limit(self, no_backoff):
        """Rate limit errors should be retried after a backoff."""
        client, mock = make_client_with_mock(max_retries=3, timeout_seconds=5)
        mock.messages.create.side_effect = [
            rate_limit_error(),
            rate_limit_error(),
            make_mock_response(text="success after retries"),
        ]

        result = complete(client)

        assert result.text == "success after retries"
        assert mock.messages.create.call_count == 3
        assert no_backoff.await_count == 2

    def test_retry_on_server_error(self):
        """5xx server errors should be retried."""
        client, mock = make_client_with_mock(max_retries=2)
        mock.messages.create.side_effect = [
            anthropic.APIStatusError(
                message="server error",
                response=MagicMock(status_code=500, headers={}),
                body={"error": {"message": "server error", "type": "server_error"}},
            ),
            make_mock_response(text="recovered"),
        ]

        assert complete(client).text == "recovered"

    def test_retry_on_timeout(self):
        """Timeout errors should be retried."""
        client, mock = make_client_with_mock(max_retries=2)
        mock.messages.create.side_effect = [
            anthropic.APITimeoutError(request=MagicMock()),
            make_mock_response(text="recovered after timeout"),
        ]

        assert complete(client).text == "recovered after timeout"

    def test_retry_on_connection_error(self):
        """Connection errors should be retried."""
        client, mock = make_client_with_mock(max_retries=2)
        mock.messages.create.side_effect = [
            anthropic.APIConnectionError(request=MagicMock(), message="connection failed"),
            make_mock_response(text="reconnected"),
        ]

        assert complete(client).text == "reconnected"


class TestErrorHandling:
    def test_all_retries_exhausted_raises_llm_error(self):
        """If all retries fail, should raise LLMError."""
        client, mock = make_client_with_mock(max_retries=2)
        mock.messages.create.side_effect = rate_limit_error()

        with pytest.raises(LLMError, match="failed after 2 attempts"):
            complete(client)

        assert mock.messages.create.call_count == 2

    def test_auth_error_not_retried(self):
        """4xx errors (except 429) should NOT be retried."""
        client, mock = make_client_with_mock(max_retries=3)
        mock.messages.create.side_effect = anthropic.APIStatusError(
            message="invalid api key",
            response=MagicMock(status_code=401, headers={}),
            body={"error": {"message": "invalid api key", "type": "authentication_error"}},
        )

        with pytest.raises(LLMError, match="HTTP 401"):
            complete(client)

        assert mock.messages.create.call_count == 1


class TestConnection:
    def test_success(self):
        client, mock = make_client_with_mock()
        assert asyncio.run(client.test_connection()) is True
        mock.models.list.assert_awaited_once_with(limit=1)

    def test_failure(self):
        client, mock = make_client_with_mock()
        mock.models.list.side_effect = anthropic.APIConnectionError(
            request=MagicMock(), message="connection failed"
        )
        assert asyncio.run(client.test_connection()) is False
