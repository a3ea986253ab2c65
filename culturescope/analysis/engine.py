"""
Analysis engine: turns a batch of communications into a CultureAnalysis.

The engine does NOT fetch communications or touch storage. It receives the
batch and an LLM client, so it stays testable and decoupled from Graph and
the database. The LLM's free-form output is parsed and validated against the
CultureAnalysis model here, at the collaborator boundary; nothing unvalidated
leaves this module.

Usage:
    from culturescope.analysis.engine import AnalysisEngine

    engine = AnalysisEngine(llm_client=llm)
    analysis = await engine.analyze(communications)
"""

import logging

from pydantic import ValidationError

from culturescope.analysis.prompts import ANALYSIS_SYSTEM, build_analysis_prompt, extract_json
from culturescope.analysis.schemas import CultureAnalysis, UnifiedCommunication
from culturescope.config import settings
from culturescope.llm.client import LLMClient, LLMError
from culturescope.logging.audit import audit

logger = logging.getLogger(__name__)

# Confidence recorded for analyses produced by the LLM
LLM_ANALYSIS_CONFIDENCE = 85


class AnalysisEngineError(Exception):
    """Raised when the LLM call fails or returns an invalid document."""
    pass


class AnalysisEngine:
    """Submits communications to the LLM and validates the returned document."""

    def __init__(self, llm_client: LLMClient, max_tokens: int | None = None):
        self._llm = llm_client
        self._max_tokens = max_tokens or settings.anthropic_max_tokens_analysis

    async def analyze(self, communications: list[UnifiedCommunication]) -> CultureAnalysis:
        """
        Analyze the organizational climate reflected in `communications`.

        Raises:
            AnalysisEngineError: If the batch is empty, the LLM call fails, or
                the response is not a JSON document matching CultureAnalysis.
        """
        if not communications:
            raise AnalysisEngineError("No communications provided for analysis")

        try:
            result = await self._llm.complete(
                system=ANALYSIS_SYSTEM,
                user=build_analysis_prompt(communications),
                max_tokens=self._max_tokens,
                purpose="culture_analysis",
            )
        except LLMError as e:
            raise AnalysisEngineError(f"LLM analysis error: {e}") from e

        if not result.text:
            raise AnalysisEngineError("Empty response from LLM")

        try:
            analysis = CultureAnalysis.model_validate(extract_json(result.text))
        except ValueError as e:
            # ValidationError is a ValueError subclass; report the field errors
            detail = _summarize_validation(e) if isinstance(e, ValidationError) else str(e)
            logger.error(
                "analysis.response_invalid",
                extra={
                    "action": "analysis.response_invalid",
                    "error": detail,
                    "stop_reason": result.stop_reason,
                    "output_tokens": result.output_tokens,
                },
            )
            raise AnalysisEngineError(f"Invalid analysis document from LLM: {detail}") from e

        audit.info(
            "analysis.document_validated",
            communications=len(communications),
            culture_type=analysis.tipo_de_cultura,
            input_tokens=result.input_tokens,
            output_tokens=result.output_tokens,
            cost_usd=round(result.cost, 6),
            latency_ms=result.latency_ms,
        )
        return analysis


def _summarize_validation(error: ValidationError, limit: int = 5) -> str:
    parts = []
    for err in error.errors()[:limit]:
        location = ".".join(str(p) for p in err["loc"]) or "document"
        parts.append(f"{location}: {err['msg']}")
    more = error.error_count() - limit
    if more > 0:
        parts.append(f"... {more} more")
    return "; ".join(parts)
