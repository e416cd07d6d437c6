# =============================================================================
# API Dependencies — Services from the Container
# =============================================================================
#
# Route handlers never build clients. They ask for a service; the service
# comes from the ServiceContainer stored on app.state by main.py.
#
# Tests either pass a container to create_app(), or override
# get_container via app.dependency_overrides.
# =============================================================================

from fastapi import Depends, Request

from paperchat.dependencies import ServiceContainer
from paperchat.services.ingestion import IngestionService
from paperchat.services.notifier import StatusFeed
from paperchat.services.qa import QAService
from paperchat.services.records import FileRecordStore
from paperchat.workflows.summarize import SummarizationService


def get_container(request: Request) -> ServiceContainer:
    return request.app.state.container


def get_ingestion_service(
    container: ServiceContainer = Depends(get_container),
) -> IngestionService:
    return container.ingestion


def get_qa_service(container: ServiceContainer = Depends(get_container)) -> QAService:
    return container.qa


def get_record_store(
    container: ServiceContainer = Depends(get_container),
) -> FileRecordStore:
    return container.records


def get_summarization_service(
    container: ServiceContainer = Depends(get_container),
) -> SummarizationService:
    return container.summaries


def get_status_feed(container: ServiceContainer = Depends(get_container)) -> StatusFeed:
    return container.status_feed
