"""
Webcam frame source for the projector.

Keeps only the most recent frame; consumers poll ``latest_frame()`` at their
own cadence. Failure to open the device is surfaced as ``error`` (a
user-facing string) and retried in the background.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from typing import Optional

import cv2
import numpy as np

from ..config import CameraSettings

logger = logging.getLogger(__name__)

StatusCallback = Callable[[bool, Optional[str]], Awaitable[None]]

CAMERA_UNAVAILABLE = "Camera access failed. Check the camera cable or device permissions."
CAMERA_LOST = "Camera stopped delivering frames."


class CameraService:
    """Async wrapper around an OpenCV capture device."""

    def __init__(self, settings: Optional[CameraSettings] = None) -> None:
        self.settings = settings or CameraSettings()
        self._cap: Optional[cv2.VideoCapture] = None
        self._latest: Optional[np.ndarray] = None
        self._latest_ts: float = 0.0
        self._error: Optional[str] = None
        self._loop_task: Optional[asyncio.Task[None]] = None
        self._stop_event = asyncio.Event()
        self._callbacks: list[StatusCallback] = []
        self._reported: tuple[bool, Optional[str]] = (False, None)

    @property
    def ready(self) -> bool:
        """True once the device is delivering frames."""
        return self._latest is not None

    @property
    def error(self) -> Optional[str]:
        return self._error

    def latest_frame(self) -> Optional[np.ndarray]:
        return self._latest

    @property
    def latest_timestamp(self) -> float:
        return self._latest_ts

    def register_callback(self, callback: StatusCallback) -> None:
        self._callbacks.append(callback)

    async def start(self) -> None:
        """Start the capture loop."""
        if self._loop_task:
            return
        self._stop_event.clear()
        self._loop_task = asyncio.create_task(self._capture_loop(), name="camera-capture-loop")
        logger.info("Camera service started (device=%d)", self.settings.device_index)

    async def stop(self) -> None:
        """Stop capturing and release the device."""
        if not self._loop_task:
            return
        self._stop_event.set()
        try:
            await self._loop_task
        finally:
            self._loop_task = None
            self._release()
            self._latest = None
        logger.info("Camera service stopped")

    def _open(self) -> bool:
        logger.info("Opening camera (device=%d)", self.settings.device_index)
        cap = cv2.VideoCapture(self.settings.device_index)
        if not cap.isOpened():
            cap.release()
            logger.error("Failed to open camera %d", self.settings.device_index)
            return False

        cap.set(cv2.CAP_PROP_FRAME_WIDTH, self.settings.resolution_width)
        cap.set(cv2.CAP_PROP_FRAME_HEIGHT, self.settings.resolution_height)
        cap.set(cv2.CAP_PROP_FPS, self.settings.fps)
        self._cap = cap
        logger.info("Camera opened successfully")
        return True

    def _release(self) -> None:
        if self._cap is not None:
            self._cap.release()
            self._cap = None

    def _read(self) -> Optional[np.ndarray]:
        if self._cap is None:
            return None
        ret, frame = self._cap.read()
        if not ret or frame is None:
            return None
        return frame

    async def _set_error(self, error: Optional[str]) -> None:
        self._error = error
        state = (error is None and self.ready, error)
        if state == self._reported:
            return
        self._reported = state
        for callback in self._callbacks:
            try:
                await callback(*state)
            except Exception:
                logger.exception("Camera status callback failed")

    async def _capture_loop(self) -> None:
        loop = asyncio.get_running_loop()
        frame_interval = 1.0 / max(self.settings.fps, 1)
        try:
            while not self._stop_event.is_set():
                if self._cap is None:
                    opened = await loop.run_in_executor(None, self._open)
                    if not opened:
                        await self._set_error(CAMERA_UNAVAILABLE)
                        await self._wait(self.settings.reopen_interval_s)
                        continue

                frame = await loop.run_in_executor(None, self._read)
                if frame is None:
                    logger.warning("Camera read failed - reopening")
                    self._release()
                    self._latest = None
                    await self._set_error(CAMERA_LOST)
                    await self._wait(self.settings.reopen_interval_s)
                    continue

                self._latest = frame
                self._latest_ts = time.monotonic()
                await self._set_error(None)
                await self._wait(frame_interval)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Camera capture loop crashed")
            await self._set_error(CAMERA_UNAVAILABLE)
        finally:
            self._stop_event.clear()
            logger.info("Camera capture loop stopped")

    async def _wait(self, seconds: float) -> None:
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass


__all__ = ["CameraService", "CAMERA_UNAVAILABLE", "CAMERA_LOST"]
