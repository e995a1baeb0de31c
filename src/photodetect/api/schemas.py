"""Pydantic request/response schemas for the PhotoDetect API."""

from __future__ import annotations

from typing import TYPE_CHECKING

from pydantic import BaseModel, Field

if TYPE_CHECKING:
    from photodetect.ml.detector import Detection
    from photodetect.session import SessionState


class DetectedObject(BaseModel):
    """A single detected object in display-image pixels."""

    x: float = Field(description="Left edge of the bounding box (pixels)")
    y: float = Field(description="Top edge of the bounding box (pixels)")
    w: float = Field(description="Bounding box width (pixels)")
    h: float = Field(description="Bounding box height (pixels)")
    label: str
    confidence: float = Field(ge=0.0, le=1.0)

    @classmethod
    def from_detection(cls, detection: Detection) -> DetectedObject:
        return cls(
            x=detection.x,
            y=detection.y,
            w=detection.w,
            h=detection.h,
            label=detection.label,
            confidence=detection.confidence,
        )


class ImageInfoResponse(BaseModel):
    """Response for a newly selected image."""

    width: int = Field(description="Display image width after orientation correction")
    height: int = Field(description="Display image height after orientation correction")
    source_width: int
    source_height: int
    downsample_factor: int = Field(description="Power-of-two factor applied to the inference image")
    rotation: int = Field(description="Clockwise rotation applied from orientation metadata (degrees)")

    @classmethod
    def from_state(cls, state: SessionState) -> ImageInfoResponse:
        return cls(
            width=state.display.width,
            height=state.display.height,
            source_width=state.source.width,
            source_height=state.source.height,
            downsample_factor=state.normalized.factor,
            rotation=state.display.rotation,
        )


class DetectResponse(BaseModel):
    """Response for the detection endpoint."""

    ran: bool = Field(description="False when the detector did not run")
    detections: list[DetectedObject]


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "ok"
    detector_ready: bool
    acceleration_available: bool
    image_selected: bool
    models_loaded: list[str]
    concurrent_requests: int
    queue_depth: int


class ModelInfo(BaseModel):
    """Information about the configured model."""

    name: str
    task: str = "object_detection"
    status: str = Field(description="Model status: 'active' (session loaded), 'idle' (evicted), or 'unavailable'")
    source: str | None = Field(description="Local model path or Hugging Face repository")


class ModelsResponse(BaseModel):
    """Response for the models listing endpoint."""

    models: list[ModelInfo]


class ErrorResponse(BaseModel):
    """Standard error response."""

    detail: str
