"""
FastAPI dependencies for the shared stores and services.

One instance of each per process, built lazily from settings. Tests swap any
of them with app.dependency_overrides.
"""

from functools import lru_cache

from culturescope.analysis.demo import DemoDataService
from culturescope.analysis.orchestrator import AnalysisOrchestrator
from culturescope.collaborators import CollaboratorFactory
from culturescope.config import settings
from culturescope.storage.database import Database
from culturescope.storage.stores import ConfigStore, MessageStore, ProgressStore, ResultStore


@lru_cache
def get_database() -> Database:
    return Database(settings.database_url)


@lru_cache
def get_progress_store() -> ProgressStore:
    return ProgressStore(get_database())


@lru_cache
def get_result_store() -> ResultStore:
    return ResultStore(get_database())


@lru_cache
def get_message_store() -> MessageStore:
    return MessageStore(get_database())


@lru_cache
def get_config_store() -> ConfigStore:
    return ConfigStore(get_database(), settings.config_encryption_key)


@lru_cache
def get_demo_service() -> DemoDataService:
    return DemoDataService()


@lru_cache
def get_collaborator_factory() -> CollaboratorFactory:
    return CollaboratorFactory(settings, get_config_store())


@lru_cache
def get_orchestrator() -> AnalysisOrchestrator:
    return AnalysisOrchestrator(
        progress_store=get_progress_store(),
        result_store=get_result_store(),
        message_store=get_message_store(),
        collaborators=get_collaborator_factory(),
        demo=get_demo_service(),
    )
