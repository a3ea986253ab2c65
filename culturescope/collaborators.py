"""
Collaborator factory: builds the Graph and LLM clients from current config.

Credentials come from the environment (culturescope.config) and are
overridden by values saved through POST /api/config (encrypted in the
ConfigStore). The built clients are cached until the config changes; after a
save the cache is invalidated and the next job gets fresh clients.

A missing Graph or LLM credential is not an error: the orchestrator falls
back to demonstration mode.

Usage:
    from culturescope.collaborators import CollaboratorFactory

    factory = CollaboratorFactory(settings, config_store)
    async with factory.use() as collaborators:
        if collaborators.demo_mode:
            ...
"""

import logging
import threading
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import AsyncIterator, Optional

from culturescope.analysis.schemas import ConfigUpdate
from culturescope.config import Settings
from culturescope.graph.auth import GraphTokenProvider
from culturescope.graph.client import GraphClient
from culturescope.llm.client import LLMClient
from culturescope.logging.audit import audit
from culturescope.storage.stores import ConfigStore

logger = logging.getLogger(__name__)

# ConfigStore keys
CLIENT_ID = "CLIENT_ID"
TENANT_ID = "TENANT_ID"
CLIENT_SECRET = "CLIENT_SECRET"
LLM_API_KEY = "LLM_API_KEY"


@dataclass(frozen=True)
class CollaboratorConfig:
    client_id: Optional[str] = None
    tenant_id: Optional[str] = None
    client_secret: Optional[str] = None
    llm_api_key: Optional[str] = None
    llm_model: Optional[str] = None

    @property
    def graph_configured(self) -> bool:
        return bool(self.client_id and self.tenant_id and self.client_secret)

    @property
    def llm_configured(self) -> bool:
        return bool(self.llm_api_key)


@dataclass(eq=False)
class Collaborators:
    """The clients one analysis job talks to. None means unconfigured."""
    graph: Optional[GraphClient]
    llm: Optional[LLMClient]
    # Jobs and requests currently holding this set (see CollaboratorFactory.use)
    leases: int = field(default=0, repr=False)

    @property
    def demo_mode(self) -> bool:
        return self.graph is None or self.llm is None

    async def aclose(self) -> None:
        if self.graph is not None:
            await self.graph.aclose()
        if self.llm is not None:
            await self.llm.aclose()


class CollaboratorFactory:
    """
    Builds and caches Collaborators; invalidated when the config changes.

    Callers hold a set through use(). A set replaced by invalidate() is
    retired and closed once its last holder lets go, so a job that started
    before a config save finishes on the clients it started with.
    """

    def __init__(self, settings: Settings, config_store: ConfigStore):
        self._settings = settings
        self._store = config_store
        self._lock = threading.Lock()
        self._cached: Optional[Collaborators] = None
        self._retired: list[Collaborators] = []

    def load_config(self) -> CollaboratorConfig:
        """Environment values overridden by stored values."""
        stored = self._store.get_all()
        return CollaboratorConfig(
            client_id=stored.get(CLIENT_ID) or self._settings.azure_client_id,
            tenant_id=stored.get(TENANT_ID) or self._settings.azure_tenant_id,
            client_secret=stored.get(CLIENT_SECRET) or self._settings.azure_client_secret,
            llm_api_key=stored.get(LLM_API_KEY) or self._settings.anthropic_api_key,
            llm_model=self._settings.anthropic_model,
        )

    def current(self) -> Collaborators:
        with self._lock:
            return self._current_locked()

    def _current_locked(self) -> Collaborators:
        if self._cached is None:
            self._cached = self._build(self.load_config())
        return self._cached

    @asynccontextmanager
    async def use(self) -> AsyncIterator[Collaborators]:
        """Hold the current set for the duration of a job or request."""
        with self._lock:
            collaborators = self._current_locked()
            collaborators.leases += 1
        try:
            yield collaborators
        finally:
            with self._lock:
                collaborators.leases -= 1
            await self.close_retired()

    def invalidate(self) -> None:
        """Retire the cached clients; the next current() rebuilds them."""
        with self._lock:
            if self._cached is not None:
                self._retired.append(self._cached)
            self._cached = None
        logger.info("collaborators.invalidated", extra={"action": "collaborators.invalidated"})

    async def close_retired(self) -> None:
        """Close retired sets nobody holds any more."""
        with self._lock:
            idle = [c for c in self._retired if c.leases == 0]
            self._retired = [c for c in self._retired if c.leases > 0]

        for collaborators in idle:
            try:
                await collaborators.aclose()
            except Exception as e:
                logger.warning(
                    "collaborators.close_failed",
                    extra={"action": "collaborators.close_failed", "error": str(e)},
                )
        if idle:
            logger.info(
                "collaborators.closed",
                extra={"action": "collaborators.closed", "count": len(idle)},
            )

    async def aclose(self) -> None:
        """Retire and close everything idle. Called at shutdown."""
        self.invalidate()
        await self.close_retired()

    def save(self, update: ConfigUpdate) -> list[str]:
        """
        Persist the submitted credentials and invalidate the cache.

        Empty or missing fields are left unchanged. Returns the keys written.
        """
        values = {
            CLIENT_ID: update.client_id,
            TENANT_ID: update.tenant_id,
            CLIENT_SECRET: update.client_secret,
            LLM_API_KEY: update.llm_api_key,
        }
        written = []
        for key, value in values.items():
            if value and value.strip():
                self._store.set(key, value.strip())
                written.append(key)

        if written:
            self.invalidate()

        # Key names only; the values are secrets
        audit.info("config.updated", keys=written)
        return written

    def _build(self, config: CollaboratorConfig) -> Collaborators:
        graph = None
        if config.graph_configured:
            provider = GraphTokenProvider(
                client_id=config.client_id,
                client_secret=config.client_secret,
                tenant_id=config.tenant_id,
                scopes=self._settings.graph_scopes,
            )
            graph = GraphClient(
                token_provider=provider,
                base_url=self._settings.graph_base_url,
                timeout_seconds=self._settings.graph_timeout_seconds,
                max_pages=self._settings.graph_max_pages,
            )

        llm = None
        if config.llm_configured:
            llm = LLMClient(
                api_key=config.llm_api_key,
                model=config.llm_model,
                timeout_seconds=self._settings.anthropic_timeout_seconds,
            )

        logger.info(
            "collaborators.built",
            extra={
                "action": "collaborators.built",
                "graph_configured": graph is not None,
                "llm_configured": llm is not None,
            },
        )
        return Collaborators(graph=graph, llm=llm)
