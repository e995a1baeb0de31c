"""Environment-based configuration for PhotoDetect."""

from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from PHOTODETECT_* environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="PHOTODETECT_",
        case_sensitive=False,
    )

    # Server
    host: str = "0.0.0.0"  # noqa: S104
    port: int = 8083

    # Authentication (None = disabled)
    api_key: str | None = None

    # Image normalization
    target_min_dimension: int = Field(default=640, ge=1)

    # Input limits
    max_image_pixels: int = Field(default=89_478_485, ge=1)
    max_file_size: int = Field(default=52_428_800, ge=1)

    # Model selection
    detection_model: str = "yolov5s"
    model_repo_id: str | None = None
    model_path: str | None = None
    models_dir: str = "models"

    # Detection thresholds
    input_size: int = Field(default=640, ge=32)
    prob_threshold: float = Field(default=0.25, ge=0.0, le=1.0)
    nms_threshold: float = Field(default=0.45, ge=0.0, le=1.0)

    # ONNX Runtime threading
    intra_op_threads: int = Field(default=4, ge=0)
    inter_op_threads: int = Field(default=1, ge=1)

    # Concurrency
    max_concurrent: int = Field(default=1, ge=1)
    queue_timeout: float = Field(default=30.0, gt=0)

    # Model management
    model_ttl: int = Field(default=300, ge=0)
    gpu_mem_limit: int = Field(default=2_147_483_648, ge=0)

    # Overlay style
    box_stroke_width: int = Field(default=4, ge=1)
    label_font_size: int = Field(default=26, ge=1)


def get_settings() -> Settings:
    """Create and return application settings."""
    return Settings()
