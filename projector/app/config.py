"""Central configuration for the edge projector service."""
from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Literal, Optional

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

ROOT_DIR = Path(__file__).resolve().parents[2]
DEFAULT_ENV_FILE = ROOT_DIR / ".env"

# Remote vision calls take 1-4 s and are billed per request
REMOTE_DETECTION_INTERVAL_MS = 2000


# ============================================================
# Nested Configuration Classes
# ============================================================

class TrackingSettings(BaseModel):
    """Tracked-object registry configuration."""
    smoothing_alpha: float = Field(0.15, description="EMA weight toward new detections (lower = smoother, laggier)")
    evict_timeout_ms: int = Field(2000, description="Drop objects not re-detected within this window (ms)")
    match_radius: float = Field(
        0.0,
        description="Re-key unknown ids onto same-type objects within this normalized distance (0 = stable ids required)",
    )

    @field_validator("smoothing_alpha")
    @classmethod
    def _check_alpha(cls, value: float) -> float:
        if not 0.0 < value <= 1.0:
            raise ValueError("smoothing_alpha must be in (0, 1]")
        return value

    @field_validator("evict_timeout_ms")
    @classmethod
    def _check_timeout(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("evict_timeout_ms must be positive")
        return value

    @field_validator("match_radius")
    @classmethod
    def _check_match_radius(cls, value: float) -> float:
        if value < 0:
            raise ValueError("match_radius must not be negative")
        return value


class FieldSettings(BaseModel):
    """Force-field visualization configuration (screen pixels)."""
    influence_radius: float = Field(150.0, description="Objects perturb the field within this radius (px)")
    push_scale: float = Field(30.0, description="Displacement at full strength (px)")
    grid_spacing: int = Field(40, description="Distance between field sample points (px)")
    style: Literal["grid", "particles", "both"] = Field("grid", description="Field rendering style")
    draw_columns: bool = Field(False, description="Also connect grid columns, not just rows")
    video_opacity: float = Field(0.3, description="Blend weight of the mirrored camera backdrop (0-1)")
    particle_count: int = Field(200, description="Number of flow particles when style includes particles")
    trail_decay: float = Field(0.9, description="Per-tick retention of particle trails (0-1)")

    @field_validator("influence_radius", "grid_spacing")
    @classmethod
    def _check_positive(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("must be positive")
        return value

    @field_validator("video_opacity", "trail_decay")
    @classmethod
    def _check_unit(cls, value: float) -> float:
        if not 0.0 <= value <= 1.0:
            raise ValueError("must be within [0, 1]")
        return value


class RenderSettings(BaseModel):
    """Output canvas and tick cadence."""
    width: int = Field(1280, description="Canvas width (pixels)")
    height: int = Field(720, description="Canvas height (pixels)")
    target_frame_interval_ms: int = Field(50, description="Render tick interval (ms, 50 = 20 FPS)")
    jpeg_quality: int = Field(80, description="Preview JPEG quality")
    preview_queue_size: int = Field(2, description="Max buffered preview JPEG frames per subscriber")
    ui_event_queue_size: int = Field(8, description="Max buffered UI events per subscriber")

    @field_validator("width", "height", "target_frame_interval_ms")
    @classmethod
    def _check_positive(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("must be positive")
        return value


class CameraSettings(BaseModel):
    """Webcam hardware configuration."""
    device_index: int = Field(0, description="OpenCV camera index")
    resolution_width: int = Field(640, description="Camera stream width (pixels)")
    resolution_height: int = Field(480, description="Camera stream height (pixels)")
    fps: int = Field(30, description="Capture frame rate")
    reopen_interval_s: float = Field(5.0, description="Retry interval when the camera cannot be opened")


class DetectorSettings(BaseModel):
    """Object detector backend configuration."""
    backend: Literal["yolo", "hands", "local", "remote", "none"] = Field(
        "yolo", description="Detector backend ('local' = yolo + hands)"
    )
    detection_interval_ms: Optional[int] = Field(
        None, description="Minimum time between detection request starts (ms, None = backend default)"
    )
    min_confidence: float = Field(0.35, description="Discard local detections below this score")
    yolo_model_path: str = Field("yolov8n.pt", description="Ultralytics weights path")
    yolo_tracker: str = Field("bytetrack.yaml", description="Ultralytics tracker config")
    yolo_imgsz: int = Field(640, description="Inference image size")
    yolo_device: Optional[str] = Field(None, description="Torch device (None = auto)")
    max_hands: int = Field(2, description="MediaPipe max tracked hands")
    remote_url: str = Field(
        "https://generativelanguage.googleapis.com/v1beta", description="Remote vision API base URL"
    )
    remote_model: str = Field("gemini-3-flash-preview", description="Remote vision model name")
    remote_api_key: Optional[str] = Field(None, description="API key for the remote vision call")
    remote_timeout_s: float = Field(15.0, description="Remote request timeout (seconds)")
    remote_jpeg_quality: int = Field(70, description="JPEG quality for uploaded frames")

    @field_validator("detection_interval_ms")
    @classmethod
    def _check_interval(cls, value: Optional[int]) -> Optional[int]:
        if value is not None and value < 0:
            raise ValueError("detection_interval_ms must not be negative")
        return value

    @property
    def effective_detection_interval_ms(self) -> int:
        """Configured interval, or the backend default (remote calls are rate limited)."""
        if self.detection_interval_ms is not None:
            return self.detection_interval_ms
        return REMOTE_DETECTION_INTERVAL_MS if self.backend == "remote" else 0


class Settings(BaseSettings):
    """Environment-driven settings for projector subsystems."""

    # Controller HTTP Server
    projector_host: str = Field("0.0.0.0", description="Host interface for local FastAPI server")
    projector_port: int = Field(5000, description="Port for FastAPI server")

    # Logging
    log_level: str = Field("INFO", description="Logging level")
    log_directory: Path = Field(ROOT_DIR / "logs", description="Log directory path")
    log_retention_days: int = Field(14, description="Number of log files to retain")

    # Nested Configuration Objects
    tracking: TrackingSettings = Field(default_factory=TrackingSettings, description="Registry settings")
    field: FieldSettings = Field(default_factory=FieldSettings, description="Field visualization settings")
    render: RenderSettings = Field(default_factory=RenderSettings, description="Canvas and tick settings")
    camera: CameraSettings = Field(default_factory=CameraSettings, description="Camera hardware settings")
    detector: DetectorSettings = Field(default_factory=DetectorSettings, description="Detector settings")

    model_config = SettingsConfigDict(
        env_file=str(DEFAULT_ENV_FILE),
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )


@lru_cache()
def get_settings(override_env_file: Optional[Path] = None) -> Settings:
    """Cached Settings instance; accepts optional env override for tests."""

    if override_env_file:
        return Settings(_env_file=str(override_env_file))
    return Settings()
