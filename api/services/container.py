"""
Service container.

Builds every long-lived dependency once per process (API app, RQ worker,
scheduler) and hands them out explicitly. Routes read it from
app.state.services through the get_services dependency.
"""

import logging
import os
from dataclasses import dataclass
from typing import Any

from fastapi import Request

from integrations.core.tokens import CredentialStore
from integrations.providers import ProviderRegistry, SyncContext, build_provider_registry
from services.anthropic import chat_completion
from services.embeddings import get_embedding
from services.job_queue import REDIS_URL, JobQueue
from services.memory import MemoryStore
from services.notifications import MemoryNotifier
from services.query import QueryService
from services.supabase import get_service_client

logger = logging.getLogger(__name__)


@dataclass
class Services:
    db: Any
    credential_store: CredentialStore
    memory_store: MemoryStore
    query_service: QueryService
    job_queue: JobQueue
    notifier: MemoryNotifier
    providers: ProviderRegistry

    @property
    def sync_context(self) -> SyncContext:
        return SyncContext(
            db=self.db,
            credential_store=self.credential_store,
            memory_store=self.memory_store,
        )


def build_services() -> Services:
    """
    Wire services from environment configuration.

    Raises:
        ValueError: If a required setting (Supabase, encryption key) is missing
    """
    redis_url = os.environ.get("REDIS_URL", REDIS_URL)
    db = get_service_client()
    notifier = MemoryNotifier(url=redis_url)
    memory_store = MemoryStore(db, embed=get_embedding, notifier=notifier)

    services = Services(
        db=db,
        credential_store=CredentialStore(),
        memory_store=memory_store,
        query_service=QueryService(memory_store, db, complete=chat_completion),
        job_queue=JobQueue.from_url(redis_url),
        notifier=notifier,
        providers=build_provider_registry(),
    )
    logger.info(f"[SERVICES] Ready with providers: {', '.join(services.providers.list_providers())}")
    return services


def get_services(request: Request) -> Services:
    """FastAPI dependency: the container attached at app creation."""
    return request.app.state.services
