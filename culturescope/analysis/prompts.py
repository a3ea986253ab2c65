"""
LLM prompt templates for the organizational-climate analysis.

This is the single file to edit when you need to change how the AI analyzes
communications. No other code changes needed.

IMPORTANT:
- Never put actual message content in this file; these are templates.
- The {placeholders} are filled in at runtime by the analysis engine.
- The JSON example in ANALYSIS_USER must stay in sync with CultureAnalysis
  in culturescope.analysis.schemas; the engine rejects anything else.
"""

import json
import re

from culturescope.analysis.schemas import CommunicationSource, UnifiedCommunication

# Only the first N communications are sent, each truncated, to bound token usage.
MAX_COMMUNICATIONS_IN_PROMPT = 100
MAX_CONTENT_CHARS = 300
MAX_RECIPIENTS_SHOWN = 3

# =============================================================================
# SYSTEM PROMPT
# =============================================================================

ANALYSIS_SYSTEM = (
    "Eres un experto en análisis de clima organizacional. Analiza las comunicaciones "
    "corporativas (correos electrónicos y mensajes de Teams) y proporciona insights "
    "profesionales sobre la cultura, comunicación y ambiente laboral. "
    "Responde únicamente con un objeto JSON válido, sin texto adicional."
)

# =============================================================================
# USER PROMPT
# =============================================================================

ANALYSIS_USER = """\
Analiza las siguientes {total} comunicaciones corporativas para evaluar el clima \
y la cultura organizacional.

COMUNICACIONES:
{communications}

Proporciona un análisis completo en el siguiente formato JSON exacto:

{{
  "diagnostico_general": "Descripción general del clima organizacional (2-3 párrafos)",
  "tipo_de_cultura": "Tipo de cultura organizacional identificada (Clan, Adhocracia, Mercado o Jerarquía)",
  "indicadores_estrategicos": [
    {{"indicador": "Clima Organizacional", "valor": 75, "descripcion": "Nivel general de satisfacción y ambiente laboral (0-100)"}},
    {{"indicador": "Liderazgo", "valor": 68, "descripcion": "Efectividad del liderazgo y dirección estratégica (0-100)"}},
    {{"indicador": "Comunicación", "valor": 82, "descripcion": "Claridad, frecuencia y efectividad de la comunicación (0-100)"}},
    {{"indicador": "Productividad", "valor": 70, "descripcion": "Nivel de productividad y eficiencia operativa (0-100)"}},
    {{"indicador": "Compromiso", "valor": 65, "descripcion": "Nivel de engagement y compromiso de los empleados (0-100)"}},
    {{"indicador": "Innovación", "valor": 58, "descripcion": "Capacidad de innovación y adaptación al cambio (0-100)"}},
    {{"indicador": "Colaboración", "valor": 78, "descripcion": "Trabajo en equipo y cooperación entre áreas (0-100)"}},
    {{"indicador": "Satisfacción", "valor": 72, "descripcion": "Satisfacción general de los empleados (0-100)"}}
  ],
  "kpis": [
    {{"nombre": "Nombre del KPI", "valor_estimado": "Valor porcentual o numérico", "interpretacion": "Interpretación del KPI"}}
  ],
  "okrs": [
    {{"objetivo": "Objetivo estratégico basado en el análisis", "resultados_clave": ["Resultado clave 1", "Resultado clave 2"]}}
  ],
  "fortalezas": ["Fortaleza 1", "Fortaleza 2", "Fortaleza 3"],
  "debilidades": ["Debilidad 1", "Debilidad 2", "Debilidad 3"],
  "estrategias": ["Estrategia 1", "Estrategia 2", "Estrategia 3"],
  "recomendaciones_metodologicas": ["Recomendación 1", "Recomendación 2", "Recomendación 3"],
  "people_analytics": {{
    "metricas_internas": {{
      "rotacion_estimada": "Porcentaje estimado de rotación anual",
      "ausentismo_detectado": "Nivel de ausentismo (Bajo/Medio/Alto) con porcentaje estimado",
      "nivel_desempeno_promedio": "Nivel de desempeño promedio (Bajo/Medio/Alto/Excelente)",
      "interpretacion": "Interpretación de las métricas internas"
    }},
    "benchmarking_externo": {{
      "comparacion_industria": "Comparación estimada con estándares de la industria",
      "posicionamiento": "Por debajo/En línea/Por encima del promedio",
      "gaps_identificados": ["Gap 1", "Gap 2", "Gap 3"]
    }},
    "riesgos_fuga_talento": {{
      "nivel_riesgo": "Bajo/Medio/Alto/Crítico",
      "areas_criticas": ["Área crítica 1", "Área crítica 2"],
      "indicadores_alerta": ["Indicador de alerta 1", "Indicador de alerta 2"],
      "empleados_en_riesgo_estimado": "Porcentaje o número estimado de empleados en riesgo"
    }},
    "relacion_clima_desempeno": {{
      "correlacion": "Positiva fuerte/Positiva moderada/Neutral/Negativa",
      "areas_impacto_positivo": ["Área 1", "Área 2"],
      "areas_impacto_negativo": ["Área 1", "Área 2"],
      "insight_principal": "Insight principal sobre la relación clima-desempeño"
    }},
    "vinculacion_productividad": {{
      "impacto_productividad": "Impacto del clima en la productividad",
      "impacto_rentabilidad_estimado": "Impacto estimado en rentabilidad",
      "metricas_clave": [
        {{"metrica": "Métrica de productividad", "relacion_clima": "Cómo el clima afecta esta métrica"}}
      ],
      "recomendaciones_roi": ["Recomendación ROI 1", "Recomendación ROI 2"]
    }}
  }}
}}

INSTRUCCIONES ESPECÍFICAS:
- Genera exactamente 8 indicadores estratégicos con valores de 0 a 100: Clima Organizacional, \
Liderazgo, Comunicación, Productividad, Compromiso, Innovación, Colaboración, Satisfacción
- Calcula cada valor con evidencia concreta de las comunicaciones (tono, patrones, frecuencias)
- Incluye mínimo 4 KPIs y 2 OKRs con sus resultados clave
- En People Analytics, estima métricas a partir de patrones de comunicación y señales de estrés o satisfacción
- Identifica señales de riesgo de fuga: quejas frecuentes, falta de engagement, búsqueda de oportunidades externas
- Proporciona recomendaciones específicas con ROI estimado
- Responde SOLO con el objeto JSON"""

COMMUNICATION_ENTRY = """\
Comunicación {index} ({channel}):
Asunto: {subject}
De: {sender}
Para: {recipients}
Fecha: {date}
Contenido: {content}
---"""


# =============================================================================
# FORMATTING
# =============================================================================

_TAGS = re.compile(r"<[^>]+>")
_SPACES = re.compile(r"\s+")


def strip_html(text: str) -> str:
    """Remove HTML tags and collapse whitespace."""
    return _SPACES.sub(" ", _TAGS.sub(" ", text or "")).strip()


def format_communications(communications: list[UnifiedCommunication]) -> str:
    """Render the communications sample for the prompt."""
    entries = []
    for index, comm in enumerate(communications[:MAX_COMMUNICATIONS_IN_PROMPT], start=1):
        if comm.source == CommunicationSource.MAIL:
            channel = "correo"
        else:
            channel = f"Teams, {comm.chat_type.value}" if comm.chat_type else "Teams"

        content = strip_html(comm.content)[:MAX_CONTENT_CHARS] or "Sin contenido"
        recipients = ", ".join(comm.recipients[:MAX_RECIPIENTS_SHOWN]) or "Sin destinatarios"

        entries.append(COMMUNICATION_ENTRY.format(
            index=index,
            channel=channel,
            subject=comm.subject or "Sin asunto",
            sender=comm.sender_name or comm.sender or "Desconocido",
            recipients=recipients,
            date=comm.sent_at.date().isoformat() if comm.sent_at else "Desconocida",
            content=content,
        ))
    return "\n\n".join(entries)


def build_analysis_prompt(communications: list[UnifiedCommunication]) -> str:
    return ANALYSIS_USER.format(
        total=len(communications),
        communications=format_communications(communications),
    )


# =============================================================================
# RESPONSE PARSING
# =============================================================================

_FENCE = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)


def extract_json(raw_response: str) -> dict:
    """
    Extract the JSON object from the LLM's response.

    Tolerates Markdown code fences and stray text around the object.

    Raises:
        ValueError: If no JSON object can be parsed.
    """
    text = _FENCE.sub("", raw_response.strip())
    start = text.find("{")
    end = text.rfind("}")
    if start == -1 or end <= start:
        raise ValueError("Response does not contain a JSON object")

    try:
        data = json.loads(text[start:end + 1])
    except json.JSONDecodeError as e:
        raise ValueError(f"Invalid JSON in response: {e.msg}") from e

    if not isinstance(data, dict):
        raise ValueError("Response JSON is not an object")
    return data
