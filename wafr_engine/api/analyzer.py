"""API endpoints for Well-Architected reviews, IaC generation and progress streaming."""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import StreamingResponse

from wafr_engine.api.dependencies import (
    get_analysis_orchestrator,
    get_cancellation_registry,
    get_details_orchestrator,
    get_generation_orchestrator,
    get_progress_broadcaster,
    get_taxonomy_cache,
    require_user_id,
)
from wafr_engine.core.cancellation import CancellationRegistry, RunKind
from wafr_engine.core.errors import (
    InputValidationError,
    TaxonomyUnavailableError,
    WafrError,
    WorkItemNotFoundError,
)
from wafr_engine.core.logging import get_logger
from wafr_engine.core.progress import ProgressBroadcaster
from wafr_engine.core.schemas_analysis import AnalysisOutcome, AnalyzeRequest, InvalidateTaxonomyRequest
from wafr_engine.core.schemas_iac import (
    DetailsOutcome,
    GenerateIacRequest,
    GenerationOutcome,
    MoreDetailsRequest,
)
from wafr_engine.services.analysis_orchestrator import AnalysisOrchestrator
from wafr_engine.services.details_orchestrator import DetailsOrchestrator
from wafr_engine.services.generation_orchestrator import GenerationOrchestrator
from wafr_engine.services.taxonomy import TaxonomyCache

logger = get_logger(__name__)

router = APIRouter()


def _to_http_error(e: Exception, action: str) -> HTTPException:
    """Map engine errors onto HTTP status codes."""
    if isinstance(e, WorkItemNotFoundError):
        return HTTPException(status_code=404, detail=str(e))
    if isinstance(e, InputValidationError):
        return HTTPException(status_code=400, detail=str(e))
    if isinstance(e, TaxonomyUnavailableError):
        return HTTPException(status_code=503, detail=str(e))
    if isinstance(e, WafrError):
        return HTTPException(status_code=502, detail=str(e))
    logger.exception(f"Failed to {action}: {e}")
    return HTTPException(status_code=500, detail=f"Failed to {action}")


@router.post("/analyze", response_model=AnalysisOutcome)
async def analyze(
    request: AnalyzeRequest,
    user_id: str = Depends(require_user_id),
    orchestrator: AnalysisOrchestrator = Depends(get_analysis_orchestrator),
    registry: CancellationRegistry = Depends(get_cancellation_registry),
) -> AnalysisOutcome:
    """
    Review a stored document against the selected Well-Architected pillars.

    Cancellation, a failing question and exhausted input all return 200 with the
    results computed so far; ``error`` and ``is_cancelled`` tell them apart.

    Raises:
        HTTPException 400: Invalid input
        HTTPException 404: Unknown work item
        HTTPException 503: Taxonomy unavailable
    """
    token = registry.begin(user_id, RunKind.ANALYSIS)
    try:
        return await orchestrator.analyze(
            user_id=user_id,
            file_id=request.file_id,
            workload_id=request.workload_id,
            selected_pillars=request.selected_pillars,
            token=token,
        )
    except Exception as e:
        raise _to_http_error(e, "analyze document") from e
    finally:
        registry.end(user_id, RunKind.ANALYSIS, token)


@router.post("/cancel-analysis")
async def cancel_analysis(
    user_id: str = Depends(require_user_id),
    registry: CancellationRegistry = Depends(get_cancellation_registry),
) -> dict:
    """Request cancellation of the caller's running analysis."""
    if registry.cancel(user_id, RunKind.ANALYSIS):
        return {"status": "cancellation_requested"}
    return {"status": "no_active_run"}


@router.post("/generate-iac", response_model=GenerationOutcome)
async def generate_iac(
    request: GenerateIacRequest,
    user_id: str = Depends(require_user_id),
    orchestrator: GenerationOrchestrator = Depends(get_generation_orchestrator),
    registry: CancellationRegistry = Depends(get_cancellation_registry),
) -> GenerationOutcome:
    """
    Generate an IaC document for a stored architecture diagram.

    Raises:
        HTTPException 400: Text document or invalid input
        HTTPException 404: Unknown work item
        HTTPException 502: Generation failed before any section was produced
    """
    token = registry.begin(user_id, RunKind.GENERATION)
    try:
        return await orchestrator.generate(
            user_id=user_id,
            file_id=request.file_id,
            recommendations=request.recommendations,
            template_type=request.template_type,
            token=token,
        )
    except Exception as e:
        raise _to_http_error(e, "generate IaC document") from e
    finally:
        registry.end(user_id, RunKind.GENERATION, token)


@router.post("/cancel-iac-generation")
async def cancel_iac_generation(
    user_id: str = Depends(require_user_id),
    registry: CancellationRegistry = Depends(get_cancellation_registry),
) -> dict:
    """Request cancellation of the caller's running IaC generation."""
    if registry.cancel(user_id, RunKind.GENERATION):
        return {"status": "cancellation_requested"}
    return {"status": "no_active_run"}


@router.post("/get-more-details", response_model=DetailsOutcome)
async def get_more_details(
    request: MoreDetailsRequest,
    user_id: str = Depends(require_user_id),
    orchestrator: DetailsOrchestrator = Depends(get_details_orchestrator),
) -> DetailsOutcome:
    """Detailed guidance for selected best practices that are not applied."""
    try:
        return await orchestrator.get_more_details(
            user_id=user_id,
            file_id=request.file_id,
            selected_items=request.selected_items,
            template_type=request.template_type,
        )
    except Exception as e:
        raise _to_http_error(e, "get detailed analysis") from e


@router.post("/taxonomy/invalidate")
async def invalidate_taxonomy(
    request: Optional[InvalidateTaxonomyRequest] = None,
    cache: TaxonomyCache = Depends(get_taxonomy_cache),
) -> dict:
    """Drop cached best practices of one workload, or all of them."""
    workload_id = request.workload_id if request else None
    cache.invalidate(workload_id)
    return {"status": "invalidated", "workload_id": workload_id}


@router.get("/progress")
async def progress_stream(
    user_id: str = Depends(require_user_id),
    broadcaster: ProgressBroadcaster = Depends(get_progress_broadcaster),
) -> StreamingResponse:
    """
    Server-Sent Events stream of the caller's progress.

    Event types: ``connected``, ``analysis_progress`` and ``implementation_progress``.
    """
    logger.info("Opening progress stream", extra={"user_id": user_id})
    return StreamingResponse(
        broadcaster.stream(user_id),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",  # Disable nginx buffering
        },
    )
