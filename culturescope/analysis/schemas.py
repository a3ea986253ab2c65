"""
Data models for the analysis pipeline.

These Pydantic models define the shape of all data flowing through the app:
progress records, unified communications, request filters, stored results,
and the analysis document returned by the LLM. JSON field names are camelCase
(the dashboard's contract); the analysis document keeps its Spanish keys.
"""

from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Base model serialized with camelCase aliases, populated by either name."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# =============================================================================
# PROGRESS
# =============================================================================

class ProgressStatus(str, Enum):
    """
    Lifecycle of an analysis job.

    IDLE is only reported when no job has ever run; it is never stored.
    COMPLETED and ERROR are terminal. PAUSED is a soft stop with no resume.
    """
    IDLE = "idle"
    RUNNING = "running"
    PAUSED = "paused"
    COMPLETED = "completed"
    ERROR = "error"


TERMINAL_STATUSES = frozenset({ProgressStatus.COMPLETED, ProgressStatus.ERROR})


class ProgressRecord(CamelModel):
    """State of one analysis job, polled by the dashboard."""
    id: Optional[str] = None
    status: ProgressStatus
    progress: int = Field(default=0, ge=0, le=100)
    emails_processed: int = Field(default=0, ge=0)
    total_emails: int = Field(default=0, ge=0)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    error_message: Optional[str] = None

    @classmethod
    def idle(cls) -> "ProgressRecord":
        return cls(status=ProgressStatus.IDLE)


def compute_progress(processed: int, total: int) -> int:
    """Percentage of communications processed, rounded half up; 0 until the total is known."""
    if total <= 0:
        return 0
    return (processed * 200 + total) // (2 * total)


# =============================================================================
# COMMUNICATIONS
# =============================================================================

class CommunicationSource(str, Enum):
    MAIL = "mail"
    CHAT = "chat"


class ChatType(str, Enum):
    DIRECT = "direct"
    CHANNEL = "channel"
    MEETING = "meeting"


class UnifiedCommunication(CamelModel):
    """A mail or chat message normalized into one record shape."""
    id: str
    source: CommunicationSource
    chat_type: Optional[ChatType] = None
    subject: Optional[str] = None
    sender: str = Field(default="")
    sender_name: Optional[str] = None
    recipients: list[str] = Field(default_factory=list)
    content: str = Field(default="")
    sent_at: Optional[datetime] = None


# =============================================================================
# FILTERS
# =============================================================================

class AnalysisFilters(CamelModel):
    """Filters for one analysis run. Absent or empty lists mean "all"."""
    date_from: Optional[datetime] = None
    date_to: Optional[datetime] = None
    departments: Optional[list[str]] = None
    countries: Optional[list[str]] = None

    @model_validator(mode="after")
    def _check_date_order(self) -> "AnalysisFilters":
        if self.date_from and self.date_to and _as_utc(self.date_from) > _as_utc(self.date_to):
            raise ValueError("dateFrom must not be later than dateTo")
        return self

    def resolve_range(
        self, now: Optional[datetime] = None, lookback_days: int = 30
    ) -> tuple[datetime, datetime]:
        """Effective (date_from, date_to), defaulting to the last `lookback_days` days."""
        now = now or datetime.now(timezone.utc)
        date_to = _as_utc(self.date_to) if self.date_to else now
        date_from = _as_utc(self.date_from) if self.date_from else now - timedelta(days=lookback_days)
        return date_from, date_to


def _as_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


# =============================================================================
# ANALYSIS DOCUMENT: the JSON the LLM must return
# =============================================================================

class StrategicIndicator(BaseModel):
    indicador: str
    valor: float = Field(ge=0, le=100)
    descripcion: str


class KPI(BaseModel):
    nombre: str
    valor_estimado: str
    interpretacion: str


class OKR(BaseModel):
    objetivo: str
    resultados_clave: list[str]


class InternalMetrics(BaseModel):
    rotacion_estimada: str
    ausentismo_detectado: str
    nivel_desempeno_promedio: str
    interpretacion: str


class ExternalBenchmarking(BaseModel):
    comparacion_industria: str
    posicionamiento: str
    gaps_identificados: list[str]


class TalentFlightRisk(BaseModel):
    nivel_riesgo: str
    areas_criticas: list[str]
    indicadores_alerta: list[str]
    empleados_en_riesgo_estimado: str


class ClimatePerformance(BaseModel):
    correlacion: str
    areas_impacto_positivo: list[str]
    areas_impacto_negativo: list[str]
    insight_principal: str


class KeyMetric(BaseModel):
    metrica: str
    relacion_clima: str


class ProductivityLink(BaseModel):
    impacto_productividad: str
    impacto_rentabilidad_estimado: str
    metricas_clave: list[KeyMetric]
    recomendaciones_roi: list[str]


class PeopleAnalytics(BaseModel):
    metricas_internas: InternalMetrics
    benchmarking_externo: ExternalBenchmarking
    riesgos_fuga_talento: TalentFlightRisk
    relacion_clima_desempeno: ClimatePerformance
    vinculacion_productividad: ProductivityLink


STRATEGIC_INDICATOR_COUNT = 8


class CultureAnalysis(BaseModel):
    """
    The organizational-climate document produced by the analysis engine.

    Validated field-by-field before anything is stored; a document that does
    not match this shape fails the job.
    """
    diagnostico_general: str
    tipo_de_cultura: str
    indicadores_estrategicos: list[StrategicIndicator] = Field(
        min_length=STRATEGIC_INDICATOR_COUNT, max_length=STRATEGIC_INDICATOR_COUNT
    )
    kpis: list[KPI]
    okrs: list[OKR]
    fortalezas: list[str]
    debilidades: list[str]
    estrategias: list[str]
    recomendaciones_metodologicas: list[str]
    people_analytics: PeopleAnalytics


# =============================================================================
# STORED RESULTS
# =============================================================================

class AnalysisResult(CamelModel):
    """A completed analysis as stored and served to the dashboard."""
    id: str
    analysis_date: datetime
    total_emails_analyzed: int = Field(ge=0)
    analysis_result: dict[str, Any]
    confidence: Optional[int] = Field(default=None, ge=0, le=100)
    is_active: bool
    departments: Optional[list[str]] = None
    countries: Optional[list[str]] = None
    date_from: Optional[datetime] = None
    date_to: Optional[datetime] = None


# =============================================================================
# API PAYLOADS
# =============================================================================

class ConfigUpdate(CamelModel):
    """Collaborator credentials submitted from the settings page."""
    client_id: Optional[str] = None
    tenant_id: Optional[str] = None
    client_secret: Optional[str] = None
    llm_api_key: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("llmApiKey", "openaiKey", "anthropicKey", "llm_api_key"),
    )


class UserMetadata(BaseModel):
    departments: list[str]
    countries: list[str]
