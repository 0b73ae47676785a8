"""API route definitions."""

from __future__ import annotations

from typing import TYPE_CHECKING

from fastapi import APIRouter, Request, Response, UploadFile, status
from fastapi.responses import JSONResponse

from neuroscan.api.schemas import (
    AnalysisResultBody,
    AnalysisStateResponse,
    CategoriesResponse,
    CategoryInfo,
    ErrorInfo,
    ErrorResponse,
    HealthResponse,
)
from neuroscan.errors import PipelineBusy
from neuroscan.ml.categories import CATEGORY_METADATA, CategoryMetadata
from neuroscan.ml.decoder import ImageAsset
from neuroscan.pipeline import Failed, Ready

if TYPE_CHECKING:
    from neuroscan.config import Settings
    from neuroscan.ml.inference import InferencePool
    from neuroscan.ml.model_manager import OnnxModelManager
    from neuroscan.pipeline import PipelineController

router = APIRouter(prefix="/api/v1")


def _get_settings(request: Request) -> Settings:
    settings: Settings = request.app.state.settings
    return settings


def _get_controller(request: Request) -> PipelineController:
    controller: PipelineController = request.app.state.controller
    return controller


def _category_info(metadata: CategoryMetadata) -> CategoryInfo:
    return CategoryInfo(
        label=metadata.category.value,
        display_name=metadata.display_name,
        description=metadata.description,
        symptoms=list(metadata.symptoms),
        treatment=metadata.treatment,
    )


def _state_response(controller: PipelineController) -> AnalysisStateResponse:
    state = controller.state
    body = AnalysisStateResponse(state=state.name, degraded=controller.degraded)
    if isinstance(state, Ready):
        result = state.result
        body.result = AnalysisResultBody(
            label=result.label,
            display_name=result.display_name,
            confidence=result.confidence,
            degraded=result.degraded,
            tumor_detected=result.tumor_detected,
            tumor_probability=result.tumor_probability,
            risk_level=result.risk_level,
            category=_category_info(result.metadata) if result.metadata is not None else None,
        )
    elif isinstance(state, Failed):
        body.error = ErrorInfo(kind=state.error, message=state.message, user_message=state.user_message)
    return body


@router.post(
    "/analyze",
    response_model=AnalysisStateResponse,
    status_code=status.HTTP_202_ACCEPTED,
    responses={status.HTTP_409_CONFLICT: {"model": ErrorResponse}},
    summary="Submit an MRI image for analysis",
)
async def analyze(
    request: Request,
    response: Response,
    file: UploadFile,
    wait: bool = False,
) -> AnalysisStateResponse | JSONResponse:
    """Start analysing an uploaded image.

    Returns the state right after submission (202), or the terminal state
    when ``wait=true`` (200). Rejected with 409 while another analysis runs.
    """
    settings = _get_settings(request)
    controller = _get_controller(request)
    # One byte past the limit is enough for the decoder to reject it
    data = await file.read(settings.max_file_size + 1)
    asset = ImageAsset(data=data, mime_type=file.content_type or "", filename=file.filename)

    try:
        task = controller.submit(asset)
    except PipelineBusy as exc:
        return JSONResponse(
            status_code=status.HTTP_409_CONFLICT,
            content=ErrorResponse(detail=str(exc), kind=exc.kind).model_dump(),
        )

    if wait:
        await task
        response.status_code = status.HTTP_200_OK
    return _state_response(controller)


@router.get(
    "/analysis",
    response_model=AnalysisStateResponse,
    summary="Current analysis state",
)
async def current_analysis(request: Request) -> AnalysisStateResponse:
    """Return the pipeline state and, when ready, the result."""
    return _state_response(_get_controller(request))


@router.get(
    "/categories",
    response_model=CategoriesResponse,
    summary="List tumor categories",
)
async def list_categories() -> CategoriesResponse:
    """Return the static category metadata table."""
    return CategoriesResponse(categories=[_category_info(m) for m in CATEGORY_METADATA.values()])


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
)
async def health(request: Request) -> HealthResponse:
    """Return service health status."""
    settings = _get_settings(request)
    controller = _get_controller(request)
    pool: InferencePool = request.app.state.inference_pool
    model_manager: OnnxModelManager = request.app.state.model_manager
    classifier = request.app.state.selector.classifier
    return HealthResponse(
        status="ok",
        gpu=settings.device == "cuda",
        classifier=classifier.model_name if classifier is not None else None,
        degraded=controller.degraded,
        models_loaded=model_manager.get_loaded_models(),
        concurrent_requests=pool.active_count,
        queue_depth=pool.queue_depth,
    )
