"""Tests for the demonstration-mode generator."""

from datetime import datetime, timedelta, timezone

import pytest
from unittest.mock import patch

from culturescope.analysis.demo import (
    DEMO_COUNTRIES,
    DEMO_DEPARTMENTS,
    DemoDataService,
    SEED_RESULT_CONFIDENCE,
    SEED_RESULT_TOTAL,
)
from culturescope.analysis.schemas import AnalysisFilters, CultureAnalysis
from culturescope.logging.config import setup_logging
from culturescope.storage.stores import ResultStore


@pytest.fixture(autouse=True)
def init_logging():
    setup_logging("debug")


@pytest.fixture
def demo() -> DemoDataService:
    return DemoDataService()


NOW = datetime(2025, 3, 1, tzinfo=timezone.utc)


class TestSeed:
    def test_same_inputs_same_seed(self, demo):
        a = AnalysisFilters(departments=["Ventas", "IT"], countries=["Colombia"])
        b = AnalysisFilters(departments=["IT", "Ventas"], countries=["Colombia"])
        assert demo.seed_for(a, 123.0) == demo.seed_for(b, 123.0)

    def test_timestamp_changes_seed(self, demo):
        filters = AnalysisFilters()
        assert demo.seed_for(filters, 1.0) != demo.seed_for(filters, 2.0)


class TestEstimateTotal:
    def test_within_variation_band(self, demo):
        # 30 days x 6 departments x 3 countries x 2.5 = 1350, +-15%
        filters = AnalysisFilters()
        for seed in range(20):
            total = demo.estimate_total(filters, NOW - timedelta(days=30), NOW, seed)
            assert 1147 <= total <= 1553

    def test_filters_narrow_the_total(self, demo):
        # 1 day x 1 x 1 x 2.5 = 2.5, floored at 10
        filters = AnalysisFilters(departments=["IT"], countries=["Panama"])
        assert demo.estimate_total(filters, NOW - timedelta(hours=3), NOW, seed=7) == 10


class TestGenerateDemoAnalysis:
    def test_document_is_valid(self, demo):
        analysis = demo.generate_demo_analysis(AnalysisFilters(), seed=42)

        assert isinstance(analysis, CultureAnalysis)
        assert len(analysis.indicadores_estrategicos) == 8
        assert all(0 <= i.valor <= 100 for i in analysis.indicadores_estrategicos)
        assert 5 <= len(analysis.fortalezas) <= 7
        assert 4 <= len(analysis.debilidades) <= 5
        assert analysis.people_analytics.riesgos_fuga_talento.areas_criticas == DEMO_DEPARTMENTS

    def test_deterministic_for_seed(self, demo):
        filters = AnalysisFilters(departments=["Ventas"], countries=["Ecuador"])
        first = demo.generate_demo_analysis(filters, seed=99)
        second = demo.generate_demo_analysis(filters, seed=99)
        assert first.model_dump() == second.model_dump()

    def test_narrow_filters_appear_in_text(self, demo):
        filters = AnalysisFilters(departments=["Ventas"], countries=["Ecuador"])
        analysis = demo.generate_demo_analysis(filters, seed=5)
        assert "Ventas" in analysis.diagnostico_general
        assert "Ecuador" in analysis.diagnostico_general

    def test_confidence_range(self, demo):
        assert all(85 <= demo.demo_confidence(seed) <= 94 for seed in range(50))

    def test_confidence_and_total_use_their_own_draws(self, demo):
        filters = AnalysisFilters()
        with patch.object(DemoDataService, "_rand", wraps=DemoDataService._rand) as rand:
            demo.demo_confidence(7)
            demo.estimate_total(filters, NOW - timedelta(days=30), NOW, 7)
            demo.generate_demo_analysis(filters, 7)

        offsets = [c.args[1] for c in rand.call_args_list]
        confidence_offset, variation_offset, document_offsets = offsets[0], offsets[1], offsets[2:]
        assert confidence_offset != variation_offset
        assert confidence_offset not in document_offsets
        assert variation_offset not in document_offsets


class TestSeedInitialResult:
    def test_seeds_empty_store(self, db, demo):
        store = ResultStore(db)

        assert demo.seed_initial_result(store) is True

        result = store.get_active()
        assert result.total_emails_analyzed == SEED_RESULT_TOTAL
        assert result.confidence == SEED_RESULT_CONFIDENCE
        assert result.departments == DEMO_DEPARTMENTS
        assert result.countries == DEMO_COUNTRIES
        assert (result.date_to - result.date_from).days == 365
        CultureAnalysis.model_validate(result.analysis_result)

    def test_does_not_seed_twice(self, db, demo):
        store = ResultStore(db)
        demo.seed_initial_result(store)

        assert demo.seed_initial_result(store) is False
        assert store.count() == 1


def test_demo_metadata(demo):
    metadata = demo.get_demo_metadata()
    assert metadata.departments == DEMO_DEPARTMENTS
    assert metadata.countries == DEMO_COUNTRIES
