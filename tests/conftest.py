from __future__ import annotations

import asyncio
import os
import tempfile
from typing import Any, List, Optional

import numpy as np
import pytest

# main.py configures file logging at import time; keep it out of the repo
os.environ.setdefault("LOG_DIRECTORY", tempfile.mkdtemp(prefix="projector-logs-"))

from projector.app.config import DetectorSettings, RenderSettings, Settings  # noqa: E402
from projector.app.state import ObjectType, TrackedObject  # noqa: E402


class FakeCamera:
    """Stands in for CameraService; ``frame`` None means not ready."""

    def __init__(self, frame: Optional[np.ndarray] = None) -> None:
        self.frame = frame
        self.error: Optional[str] = None
        self.started = False
        self.stopped = False
        self.callbacks: List[Any] = []

    @property
    def ready(self) -> bool:
        return self.frame is not None

    def latest_frame(self) -> Optional[np.ndarray]:
        return self.frame

    def register_callback(self, callback) -> None:
        self.callbacks.append(callback)

    async def start(self) -> None:
        self.started = True

    async def stop(self) -> None:
        self.stopped = True


class ScriptedDetector:
    """Returns queued batches in order, then empty batches."""

    name = "scripted"

    def __init__(self, batches: Optional[List[Any]] = None, delay: float = 0.0) -> None:
        self.batches = list(batches or [])
        self.delay = delay
        self.calls = 0
        self.active = 0
        self.max_active = 0
        self.closed = False

    async def detect(self, frame):
        self.calls += 1
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            if self.batches:
                batch = self.batches.pop(0)
                if isinstance(batch, Exception):
                    raise batch
                return batch
            return []
        finally:
            self.active -= 1

    async def aclose(self) -> None:
        self.closed = True


class FakeClock:
    def __init__(self, now: float = 0.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        log_directory=tmp_path,
        render=RenderSettings(width=160, height=120, target_frame_interval_ms=10),
        detector=DetectorSettings(backend="none", detection_interval_ms=0),
    )


@pytest.fixture
def camera_frame() -> np.ndarray:
    return np.full((120, 160, 3), 128, dtype=np.uint8)


def tracked(obj_id: str = "a", x: float = 0.5, y: float = 0.5, confidence: float = 0.9,
            obj_type: ObjectType = ObjectType.CUP) -> TrackedObject:
    return TrackedObject(id=obj_id, type=obj_type, x=x, y=y, confidence=confidence, last_seen_at=0.0)


def det(obj_id: str, x: float, y: float, obj_type: str = "cup", confidence: float = 0.9) -> dict:
    return {"id": obj_id, "type": obj_type, "x": x, "y": y, "confidence": confidence}
