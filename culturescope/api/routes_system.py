"""
System API routes.

These endpoints handle:
- Collaborator connection status (Microsoft 365 and the LLM)
- Saving collaborator credentials
- Department / country metadata for the analysis filters
"""

import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends

from culturescope.analysis.demo import DemoDataService
from culturescope.analysis.schemas import ConfigUpdate
from culturescope.api.dependencies import get_collaborator_factory, get_demo_service
from culturescope.collaborators import CollaboratorFactory
from culturescope.config import settings
from culturescope.graph.client import GraphError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["system"])


@router.get("/connections/status")
async def connection_status(factory: CollaboratorFactory = Depends(get_collaborator_factory)):
    """
    Report whether each collaborator is configured and reachable.

    Secrets are never returned, only whether one is set.
    """
    config = factory.load_config()

    graph_connected = False
    llm_connected = False
    async with factory.use() as collaborators:
        if collaborators.graph is not None:
            graph_connected = await collaborators.graph.test_connection()
        if collaborators.llm is not None:
            llm_connected = await collaborators.llm.test_connection()

    checked_at = datetime.now(timezone.utc).isoformat()
    return {
        "microsoft365": {
            "configured": config.graph_configured,
            "connected": graph_connected,
            "lastUpdate": checked_at,
            "config": {
                "clientId": config.client_id or "",
                "tenantId": config.tenant_id or "",
                "hasSecret": bool(config.client_secret),
            },
        },
        "anthropic": {
            "configured": config.llm_configured,
            "connected": llm_connected,
            "lastUpdate": checked_at,
            "config": {
                "hasKey": bool(config.llm_api_key),
                "model": config.llm_model,
            },
        },
    }


@router.post("/config")
async def save_config(
    update: ConfigUpdate,
    factory: CollaboratorFactory = Depends(get_collaborator_factory),
):
    """
    Save collaborator credentials (encrypted at rest).

    Request body (all optional; empty fields are left unchanged):
    {
        "clientId": "...",
        "tenantId": "...",
        "clientSecret": "...",
        "llmApiKey": "sk-ant-..."     (also accepted: "anthropicKey", "openaiKey")
    }
    """
    factory.save(update)
    await factory.close_retired()
    return {"message": "Configuration saved successfully"}


@router.get("/users/metadata")
async def users_metadata(
    factory: CollaboratorFactory = Depends(get_collaborator_factory),
    demo: DemoDataService = Depends(get_demo_service),
):
    """Departments and countries for the filters; the demo set if Graph is unavailable."""
    try:
        async with factory.use() as collaborators:
            if collaborators.graph is None:
                return demo.get_demo_metadata().model_dump()
            metadata = await collaborators.graph.get_users_metadata(
                extra_departments=settings.metadata_extra_departments,
                extra_countries=settings.metadata_extra_countries,
                excluded_countries=settings.metadata_excluded_countries,
            )
    except GraphError as e:
        logger.warning(
            "users_metadata.fallback_to_demo",
            extra={"action": "users_metadata.fallback_to_demo", "error": str(e)},
        )
        return demo.get_demo_metadata().model_dump()

    return metadata.model_dump()
