"""Process-wide collaborators, built lazily and injected with ``Depends``."""

from functools import lru_cache

from fastapi import Header, HTTPException

from wafr_engine.core.cancellation import CancellationRegistry
from wafr_engine.core.config import get_settings
from wafr_engine.core.llm import InferenceInvoker
from wafr_engine.core.progress import ProgressBroadcaster
from wafr_engine.core.retrieval import KnowledgeRetriever
from wafr_engine.db.work_items import DocumentStore
from wafr_engine.services.analysis_orchestrator import AnalysisOrchestrator
from wafr_engine.services.details_orchestrator import DetailsOrchestrator
from wafr_engine.services.generation_orchestrator import GenerationOrchestrator
from wafr_engine.services.taxonomy import TaxonomyCache
from wafr_engine.services.workload_answers import WorkloadAnswersClient


async def require_user_id(
    x_user_id: str | None = Header(None, alias="X-User-Id"),
) -> str:
    """Caller identity from the ``X-User-Id`` header."""
    if not x_user_id:
        raise HTTPException(status_code=400, detail="X-User-Id header is required")
    return x_user_id


@lru_cache
def get_document_store() -> DocumentStore:
    return DocumentStore()


@lru_cache
def get_progress_broadcaster() -> ProgressBroadcaster:
    return ProgressBroadcaster(queue_size=get_settings().PROGRESS_QUEUE_SIZE)


@lru_cache
def get_cancellation_registry() -> CancellationRegistry:
    return CancellationRegistry()


@lru_cache
def get_invoker() -> InferenceInvoker:
    return InferenceInvoker()


@lru_cache
def get_taxonomy_cache() -> TaxonomyCache:
    settings = get_settings()
    answers_client = WorkloadAnswersClient(
        base_url=settings.WORKLOAD_ANSWERS_URL,
        auth_token=settings.WORKLOAD_ANSWERS_TOKEN,
        lens_alias=settings.WORKLOAD_LENS_ALIAS,
    )
    return TaxonomyCache(answers_client)


@lru_cache
def get_analysis_orchestrator() -> AnalysisOrchestrator:
    return AnalysisOrchestrator(
        store=get_document_store(),
        taxonomy=get_taxonomy_cache(),
        retriever=KnowledgeRetriever(),
        invoker=get_invoker(),
        progress=get_progress_broadcaster(),
    )


@lru_cache
def get_generation_orchestrator() -> GenerationOrchestrator:
    return GenerationOrchestrator(
        store=get_document_store(),
        invoker=get_invoker(),
        progress=get_progress_broadcaster(),
    )


@lru_cache
def get_details_orchestrator() -> DetailsOrchestrator:
    return DetailsOrchestrator(
        store=get_document_store(),
        invoker=get_invoker(),
        progress=get_progress_broadcaster(),
    )
