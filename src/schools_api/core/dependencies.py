"""FastAPI dependency injection for database sessions and import wiring.

Provides get_async_session plus the source storage, enrichment stage and
controller factory used by the import endpoints.  Tests override the
storage and enrichment dependencies to stay offline.
"""

import uuid
from collections.abc import AsyncGenerator, Callable
from typing import Annotated

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from schools_api.core.config import Settings, get_settings
from schools_api.core.database import get_session_factory
from schools_api.lib.enrichment import build_enrichment_stage
from schools_api.lib.enrichment.stage import EnrichmentStage
from schools_api.lib.jobs.controller import ImportJobController
from schools_api.lib.jobs.storage import SourceStorage
from schools_api.services.import_service import build_controller, build_source_storage

ControllerFactory = Callable[[uuid.UUID | None], ImportJobController]


async def get_async_session() -> AsyncGenerator[AsyncSession]:
    """Yield an async database session with per-request lifecycle."""
    factory = get_session_factory()
    async with factory() as session:
        yield session


def get_source_storage(settings: Annotated[Settings, Depends(get_settings)]) -> SourceStorage:
    """Storage for uploaded import sources."""
    return build_source_storage(settings)


def get_enrichment_stage(settings: Annotated[Settings, Depends(get_settings)]) -> EnrichmentStage:
    """Enrichment stage built from the configured providers."""
    return build_enrichment_stage(settings)


def get_controller_factory(
    session: Annotated[AsyncSession, Depends(get_async_session)],
    settings: Annotated[Settings, Depends(get_settings)],
    storage: Annotated[SourceStorage, Depends(get_source_storage)],
    enrichment: Annotated[EnrichmentStage, Depends(get_enrichment_stage)],
) -> ControllerFactory:
    """Return a factory building a request-scoped controller for a job.

    The job id, when known, is stamped on inserted schools.
    """

    def _factory(job_id: uuid.UUID | None = None) -> ImportJobController:
        return build_controller(session, settings, storage=storage, enrichment=enrichment, job_id=job_id)

    return _factory
