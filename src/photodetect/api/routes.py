"""API route definitions."""

from __future__ import annotations

import io
import logging
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Query, UploadFile, status
from fastapi.responses import Response

from photodetect.api.dependencies import (
    get_inference_pool,
    get_model_manager,
    get_session,
    get_settings,
    verify_api_key,
)
from photodetect.api.schemas import (
    DetectedObject,
    DetectResponse,
    ErrorResponse,
    HealthResponse,
    ImageInfoResponse,
    ModelInfo,
    ModelsResponse,
)
from photodetect.config import Settings
from photodetect.errors import DecodeError, DetectorUnavailable, NoImageSelected
from photodetect.ml.inference import InferencePool
from photodetect.ml.model_manager import ModelManager
from photodetect.session import DetectionSession

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1", dependencies=[Depends(verify_api_key)])

SettingsDep = Annotated[Settings, Depends(get_settings)]
SessionDep = Annotated[DetectionSession, Depends(get_session)]
PoolDep = Annotated[InferencePool, Depends(get_inference_pool)]
ModelManagerDep = Annotated[ModelManager, Depends(get_model_manager)]


def _busy() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail="Server busy, try again later",
    )


def _render_png(session: DetectionSession) -> bytes:
    buffer = io.BytesIO()
    session.annotated().save(buffer, format="PNG")
    return buffer.getvalue()


@router.post(
    "/images",
    response_model=ImageInfoResponse,
    responses={
        status.HTTP_413_CONTENT_TOO_LARGE: {"model": ErrorResponse},
        status.HTTP_422_UNPROCESSABLE_CONTENT: {"model": ErrorResponse},
        status.HTTP_503_SERVICE_UNAVAILABLE: {"model": ErrorResponse},
    },
    summary="Select an image",
)
async def select_image(file: UploadFile, settings: SettingsDep, session: SessionDep, pool: PoolDep) -> ImageInfoResponse:
    """Upload an image and make it the session's current image."""
    data = await file.read(settings.max_file_size + 1)
    if len(data) > settings.max_file_size:
        raise HTTPException(
            status_code=status.HTTP_413_CONTENT_TOO_LARGE,
            detail=f"File exceeds {settings.max_file_size} bytes",
        )

    try:
        state = await pool.run(session.select_image, data)
    except DecodeError as exc:
        logger.warning("Rejected upload %s: %s", file.filename, exc)
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_CONTENT, detail=str(exc)) from exc
    except TimeoutError as exc:
        raise _busy() from exc

    return ImageInfoResponse.from_state(state)


@router.post(
    "/detect",
    response_model=DetectResponse,
    responses={
        status.HTTP_409_CONFLICT: {"model": ErrorResponse},
        status.HTTP_503_SERVICE_UNAVAILABLE: {"model": ErrorResponse},
    },
    summary="Detect objects in the current image",
)
async def detect(
    session: SessionDep,
    pool: PoolDep,
    accelerated: Annotated[bool, Query(description="Run on the accelerated execution provider")] = False,
) -> DetectResponse:
    """Run the detector over the current image."""
    try:
        detections = await pool.run(session.run_detection, accelerated)
    except NoImageSelected as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    except DetectorUnavailable as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    except TimeoutError as exc:
        raise _busy() from exc

    if detections is None:
        return DetectResponse(ran=False, detections=[])
    return DetectResponse(ran=True, detections=[DetectedObject.from_detection(d) for d in detections])


@router.get(
    "/images/current",
    response_class=Response,
    responses={
        status.HTTP_200_OK: {"content": {"image/png": {}}},
        status.HTTP_404_NOT_FOUND: {"model": ErrorResponse},
        status.HTTP_503_SERVICE_UNAVAILABLE: {"model": ErrorResponse},
    },
    summary="Get the annotated current image",
)
async def current_image(session: SessionDep, pool: PoolDep) -> Response:
    """Return the current image as PNG with the latest detections drawn on it."""
    try:
        content = await pool.run(_render_png, session)
    except NoImageSelected as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except TimeoutError as exc:
        raise _busy() from exc
    return Response(content=content, media_type="image/png")


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
)
async def health(session: SessionDep, pool: PoolDep, model_manager: ModelManagerDep) -> HealthResponse:
    """Return service health status."""
    return HealthResponse(
        status="ok",
        detector_ready=session.detector_ready,
        acceleration_available=model_manager.acceleration_available(),
        image_selected=session.state is not None,
        models_loaded=model_manager.get_loaded_models(),
        concurrent_requests=pool.active_count,
        queue_depth=pool.queue_depth,
    )


@router.get(
    "/models",
    response_model=ModelsResponse,
    summary="List configured models",
)
async def list_models(settings: SettingsDep, session: SessionDep, model_manager: ModelManagerDep) -> ModelsResponse:
    """Return the configured detection model and its status."""
    name = settings.detection_model
    if not session.detector_ready:
        model_status = "unavailable"
    elif name in model_manager.get_loaded_models():
        model_status = "active"
    else:
        model_status = "idle"

    return ModelsResponse(
        models=[
            ModelInfo(
                name=name,
                status=model_status,
                source=settings.model_path or settings.model_repo_id,
            )
        ]
    )
