"""
Shared test setup.

Settings are read from the environment when culturescope.config is first
imported, so the test environment is fixed here before any test module loads.
"""

import os

os.environ["CONFIG_ENCRYPTION_KEY"] = "test-encryption-secret"
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["SEED_DEMO_DATA"] = "false"
os.environ["DEMO_STEP_SECONDS"] = "0"
for _var in ("AZURE_CLIENT_ID", "AZURE_CLIENT_SECRET", "AZURE_TENANT_ID", "ANTHROPIC_API_KEY"):
    os.environ.pop(_var, None)

import pytest

from culturescope.storage.database import Database


@pytest.fixture
def db():
    """Fresh in-memory database with all tables."""
    database = Database("sqlite://")
    database.create_all()
    yield database
    database.dispose()


@pytest.fixture
def analysis_document() -> dict:
    """A complete analysis document as the LLM is asked to return it."""
    names = [
        "Clima Organizacional", "Liderazgo", "Comunicación", "Productividad",
        "Compromiso", "Innovación", "Colaboración", "Satisfacción",
    ]
    return {
        "diagnostico_general": "El clima laboral es moderadamente positivo.",
        "tipo_de_cultura": "Clan",
        "indicadores_estrategicos": [
            {"indicador": name, "valor": 60 + i, "descripcion": f"Indicador {name}"}
            for i, name in enumerate(names)
        ],
        "kpis": [
            {"nombre": "Satisfacción", "valor_estimado": "72%", "interpretacion": "Moderada"},
        ],
        "okrs": [
            {"objetivo": "Mejorar la comunicación", "resultados_clave": ["Reuniones semanales"]},
        ],
        "fortalezas": ["Colaboración"],
        "debilidades": ["Silos"],
        "estrategias": ["Feedback mensual"],
        "recomendaciones_metodologicas": ["Encuestas pulse"],
        "people_analytics": {
            "metricas_internas": {
                "rotacion_estimada": "10% anual",
                "ausentismo_detectado": "Bajo (3%)",
                "nivel_desempeno_promedio": "Alto",
                "interpretacion": "Estable",
            },
            "benchmarking_externo": {
                "comparacion_industria": "En línea",
                "posicionamiento": "En línea con el promedio",
                "gaps_identificados": ["Desarrollo profesional"],
            },
            "riesgos_fuga_talento": {
                "nivel_riesgo": "Medio",
                "areas_criticas": ["Ventas"],
                "indicadores_alerta": ["Menor participación"],
                "empleados_en_riesgo_estimado": "8%",
            },
            "relacion_clima_desempeno": {
                "correlacion": "Positiva moderada",
                "areas_impacto_positivo": ["IT"],
                "areas_impacto_negativo": ["Finanzas"],
                "insight_principal": "El clima impulsa la productividad.",
            },
            "vinculacion_productividad": {
                "impacto_productividad": "Positivo",
                "impacto_rentabilidad_estimado": "+5%",
                "metricas_clave": [{"metrica": "Entregas", "relacion_clima": "Positiva"}],
                "recomendaciones_roi": ["Programa de reconocimiento"],
            },
        },
    }
