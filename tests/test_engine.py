"""
Tests for the analysis engine.

The LLM is mocked; these tests cover the prompt hand-off, JSON extraction,
and validation of the returned document.
"""

import asyncio
import json

import pytest
from unittest.mock import AsyncMock, MagicMock

from culturescope.analysis.engine import AnalysisEngine, AnalysisEngineError
from culturescope.analysis.schemas import CommunicationSource, CultureAnalysis, UnifiedCommunication
from culturescope.llm.client import LLMClient, LLMError, LLMResult
from culturescope.logging.config import setup_logging


@pytest.fixture(autouse=True)
def init_logging():
    setup_logging("debug")


def make_llm(text: str) -> MagicMock:
    llm = MagicMock(spec=LLMClient)
    llm.complete = AsyncMock(return_value=LLMResult(
        text=text,
        input_tokens=1200,
        output_tokens=900,
        total_tokens=2100,
        cost=0.017,
        latency_ms=4200,
        model="claude-sonnet-4-20250514",
        stop_reason="end_turn",
    ))
    return llm


@pytest.fixture
def communications() -> list[UnifiedCommunication]:
    return [
        UnifiedCommunication(id=f"m{i}", source=CommunicationSource.MAIL, content=f"Mensaje {i}")
        for i in range(3)
    ]


class TestAnalyze:
    def test_valid_document(self, communications, analysis_document):
        llm = make_llm(json.dumps(analysis_document))
        engine = AnalysisEngine(llm_client=llm, max_tokens=3000)

        analysis = asyncio.run(engine.analyze(communications))

        assert isinstance(analysis, CultureAnalysis)
        assert analysis.tipo_de_cultura == "Clan"
        assert len(analysis.indicadores_estrategicos) == 8

        kwargs = llm.complete.call_args.kwargs
        assert kwargs["max_tokens"] == 3000
        assert kwargs["purpose"] == "culture_analysis"
        assert "Mensaje 2" in kwargs["user"]

    def test_fenced_document(self, communications, analysis_document):
        llm = make_llm("```json\n" + json.dumps(analysis_document) + "\n```")
        analysis = asyncio.run(AnalysisEngine(llm_client=llm).analyze(communications))
        assert analysis.diagnostico_general

    def test_empty_batch_rejected(self):
        llm = make_llm("{}")
        with pytest.raises(AnalysisEngineError):
            asyncio.run(AnalysisEngine(llm_client=llm).analyze([]))
        llm.complete.assert_not_called()


class TestRejection:
    def test_missing_required_field(self, communications, analysis_document):
        del analysis_document["people_analytics"]
        llm = make_llm(json.dumps(analysis_document))

        with pytest.raises(AnalysisEngineError, match="people_analytics"):
            asyncio.run(AnalysisEngine(llm_client=llm).analyze(communications))

    def test_indicator_out_of_range(self, communications, analysis_document):
        analysis_document["indicadores_estrategicos"][0]["valor"] = 140
        llm = make_llm(json.dumps(analysis_document))

        with pytest.raises(AnalysisEngineError):
            asyncio.run(AnalysisEngine(llm_client=llm).analyze(communications))

    def test_wrong_indicator_count(self, communications, analysis_document):
        analysis_document["indicadores_estrategicos"].pop()
        llm = make_llm(json.dumps(analysis_document))

        with pytest.raises(AnalysisEngineError, match="indicadores_estrategicos"):
            asyncio.run(AnalysisEngine(llm_client=llm).analyze(communications))

    def test_not_json(self, communications):
        llm = make_llm("Lo siento, no puedo analizar esto.")

        with pytest.raises(AnalysisEngineError):
            asyncio.run(AnalysisEngine(llm_client=llm).analyze(communications))

    def test_empty_response(self, communications):
        with pytest.raises(AnalysisEngineError, match="Empty response"):
            asyncio.run(AnalysisEngine(llm_client=make_llm("")).analyze(communications))

    def test_llm_error_wrapped(self, communications):
        llm = make_llm("")
        llm.complete.side_effect = LLMError("LLM call failed after 3 attempts")

        with pytest.raises(AnalysisEngineError, match="failed after 3 attempts"):
            asyncio.run(AnalysisEngine(llm_client=llm).analyze(communications))
