"""
Async wrapper around the Anthropic Messages API.

One call per analysis batch. The wrapper owns the retry policy so callers
only ever see an LLMResult or an LLMError:

    RateLimitError, 5xx, connection errors  -> backoff, then retry
    APITimeoutError                         -> retry immediately
    other 4xx                               -> LLMError, no retry

Every attempt is logged with token counts, cost and latency. Prompt and
response text are never logged.

Cancelling the task that awaits complete() aborts the in-flight HTTP request;
the orchestrator relies on this when an analysis is paused.

Usage:
    from culturescope.llm.client import LLMClient

    client = LLMClient(api_key="sk-ant-...")
    result = await client.complete(
        system=ANALYSIS_SYSTEM,
        user=prompt,
        purpose="culture_analysis",
    )
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Optional

import anthropic

from culturescope.config import settings

logger = logging.getLogger(__name__)

# USD per 1M tokens
PRICING = {
    "claude-sonnet-4-20250514": {"input": 3.00, "output": 15.00},
    "claude-opus-4-20250514": {"input": 15.00, "output": 75.00},
}
DEFAULT_PRICING = {"input": 3.00, "output": 15.00}

MAX_BACKOFF_SECONDS = 30


class LLMError(Exception):
    """Raised when an LLM call fails for good (non-retryable, or out of attempts)."""
    pass


@dataclass
class LLMResult:
    text: str
    input_tokens: int
    output_tokens: int
    total_tokens: int
    cost: float
    latency_ms: int
    model: str
    stop_reason: Optional[str] = None


def _backoff(attempt: int) -> int:
    return min(2 ** attempt, MAX_BACKOFF_SECONDS)


class LLMClient:
    """Anthropic client with retries, usage accounting and structured logs."""

    def __init__(
        self,
        api_key: str,
        model: Optional[str] = None,
        max_retries: int = 3,
        timeout_seconds: Optional[float] = None,
    ):
        self._model = model or settings.anthropic_model
        self._max_retries = max_retries
        self._timeout = timeout_seconds or settings.anthropic_timeout_seconds
        self._pricing = PRICING.get(self._model, DEFAULT_PRICING)

        # SDK retries are off; complete() retries so each attempt gets logged
        self._client = anthropic.AsyncAnthropic(
            api_key=api_key,
            timeout=self._timeout,
            max_retries=0,
        )

        self.call_count = 0
        self.total_cost = 0.0
        self.total_input_tokens = 0
        self.total_output_tokens = 0

        logger.info(
            "llm_client.initialized",
            extra={
                "action": "llm_client.initialized",
                "model": self._model,
                "max_retries": self._max_retries,
                "timeout_seconds": self._timeout,
            },
        )

    @property
    def model(self) -> str:
        return self._model

    async def test_connection(self) -> bool:
        """Cheapest authenticated request: list a single model."""
        try:
            await self._client.models.list(limit=1)
        except anthropic.APIError as e:
            logger.warning(
                "llm.test_connection.failed",
                extra={"action": "llm.test_connection.failed", "error": str(e)},
            )
            return False
        return True

    async def complete(
        self,
        system: str,
        user: str,
        max_tokens: Optional[int] = None,
        purpose: str = "unknown",
    ) -> LLMResult:
        """
        Run one system + user exchange and return the joined text blocks.

        `purpose` tags the log lines (e.g. "culture_analysis"); it must never
        carry message content.

        Raises:
            LLMError: non-retryable API error, or every attempt failed.
        """
        max_tokens = max_tokens or settings.anthropic_max_tokens_analysis
        last_error: Optional[anthropic.APIError] = None

        for attempt in range(1, self._max_retries + 1):
            start = time.monotonic()
            try:
                response = await self._client.messages.create(
                    model=self._model,
                    max_tokens=max_tokens,
                    system=system,
                    messages=[{"role": "user", "content": user}],
                )
            except anthropic.APIError as e:
                last_error = e
                wait = self._retry_delay(e, attempt, purpose, start)
                if wait:
                    await asyncio.sleep(wait)
                continue

            return self._to_result(response, attempt, purpose, start)

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

    def _retry_delay(self, error: anthropic.APIError, attempt: int, purpose: str, start: float) -> int:
        """
        Log a failed attempt and return the backoff before the next one.

        Returns 0 to retry immediately. Raises LLMError when the error is
        not worth retrying.
        """
        fields = {"purpose": purpose, "attempt": attempt}

        # Subclass order matters: RateLimitError is an APIStatusError and
        # APITimeoutError is an APIConnectionError.
        if isinstance(error, anthropic.RateLimitError):
            event, wait = "llm.call.rate_limited", _backoff(attempt)
        elif isinstance(error, anthropic.APITimeoutError):
            event, wait = "llm.call.timeout", 0
            fields["latency_ms"] = int((time.monotonic() - start) * 1000)
            fields["timeout_seconds"] = self._timeout
        elif isinstance(error, anthropic.APIStatusError) and error.status_code >= 500:
            event, wait = "llm.call.server_error", _backoff(attempt)
            fields["status_code"] = error.status_code
        elif isinstance(error, anthropic.APIConnectionError):
            event, wait = "llm.call.connection_error", _backoff(attempt)
            fields["error"] = str(error)
        else:
            status = getattr(error, "status_code", None)
            logger.error(
                "llm.call.client_error",
                extra={"action": "llm.call.client_error", **fields, "status_code": status, "error": str(error)},
            )
            raise LLMError(f"Anthropic API error (HTTP {status}): {error}") from error

        logger.warning(event, extra={"action": event, **fields, "wait_seconds": wait})
        return wait

    def _to_result(self, response, attempt: int, purpose: str, start: float) -> LLMResult:
        latency_ms = int((time.monotonic() - start) * 1000)
        input_tokens = response.usage.input_tokens
        output_tokens = response.usage.output_tokens
        cost = (
            input_tokens * self._pricing["input"] + output_tokens * self._pricing["output"]
        ) / 1_000_000

        self.call_count += 1
        self.total_cost += cost
        self.total_input_tokens += input_tokens
        self.total_output_tokens += output_tokens

        text = "".join(
            block.text for block in response.content if getattr(block, "type", "text") == "text"
        )

        logger.info(
            "llm.call.success",
            extra={
                "action": "llm.call.success",
                "purpose": purpose,
                "attempt": attempt,
                "model": self._model,
                "input_tokens": input_tokens,
                "output_tokens": output_tokens,
                "stop_reason": response.stop_reason,
                "cost_usd": round(cost, 6),
                "latency_ms": latency_ms,
            },
        )

        return LLMResult(
            text=text.strip(),
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            total_tokens=input_tokens + output_tokens,
            cost=cost,
            latency_ms=latency_ms,
            model=self._model,
            stop_reason=response.stop_reason,
        )

    async def aclose(self) -> None:
        await self._client.close()
