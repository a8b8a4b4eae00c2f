"""Orchestration for the projector: camera, detection loop, render tick."""
from __future__ import annotations

import asyncio
from asyncio import QueueEmpty
import logging
import time
from collections.abc import Callable
from typing import Any, AsyncIterator, Dict, List, Mapping, Optional, Tuple

import cv2
import numpy as np

from .config import Settings, get_settings
from .detectors import Detector, NullDetector, build_detector
from .registry import TrackedObjectRegistry
from .renderer import FieldRenderer
from .sensors.camera import CameraService
from .state import EngineStatus, ProjectorEvent, TrackedObject

logger = logging.getLogger(__name__)

Clock = Callable[[], float]


class ProjectorEngine:
    """
    Owns the registry, renderer, camera and detector for one visualization run.

    Two cooperative loops share the event loop: the detection loop awaits one
    detector call at a time and feeds the registry; the render loop sweeps the
    registry, snapshots it and composes a frame every tick without ever waiting
    on detection.
    """

    _OBJECTS_HEARTBEAT_S: float = 1.0
    _FPS_WINDOW: int = 30
    _MIN_DETECT_GAP_S: float = 0.005
    _FAILURE_BACKOFF_S: float = 0.5
    _MAX_BACKOFF_S: float = 5.0

    def __init__(
        self,
        *,
        settings: Optional[Settings] = None,
        camera: Optional[CameraService] = None,
        detector: Optional[Detector] = None,
        renderer: Optional[FieldRenderer] = None,
        clock: Clock = time.monotonic,
    ) -> None:
        self.settings = settings or get_settings()
        self._clock = clock
        self._camera = camera or CameraService(self.settings.camera)
        self._detector = detector
        self._owns_detector = False
        self._renderer = renderer or FieldRenderer(
            self.settings.render.width, self.settings.render.height, self.settings.field
        )
        self._registry: Optional[TrackedObjectRegistry] = TrackedObjectRegistry.from_settings(self.settings.tracking)

        self._status = EngineStatus()
        self._stop_event = asyncio.Event()
        self._render_task: Optional[asyncio.Task[None]] = None
        self._detect_task: Optional[asyncio.Task[None]] = None
        self._detect_in_flight = False
        self._preview_subscribers: List[asyncio.Queue[bytes]] = []
        self._frame_subscribers: List[asyncio.Queue[np.ndarray]] = []
        self._ui_subscribers: List[asyncio.Queue[ProjectorEvent]] = []
        self._last_objects_signature: Optional[Tuple[Any, ...]] = None
        self._last_objects_ts: float = 0.0
        self._tick_times: List[float] = []
        self._latest_canvas: Optional[np.ndarray] = None

        self._camera.register_callback(self._handle_camera_status)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def running(self) -> bool:
        return self._render_task is not None

    @property
    def registry(self) -> Optional[TrackedObjectRegistry]:
        """None once the engine has been torn down."""
        return self._registry

    @property
    def renderer(self) -> FieldRenderer:
        return self._renderer

    async def start(self) -> None:
        if self._render_task:
            return
        logger.info("Starting projector engine")

        if self._registry is None:
            self._registry = TrackedObjectRegistry.from_settings(self.settings.tracking)

        if self._detector is None:
            try:
                self._detector = build_detector(self.settings.detector)
                self._owns_detector = True
                self._status.detector_error = None
            except Exception as e:
                # Weight downloads and model init can fail on an offline kiosk
                logger.error("Detector unavailable: %s - running without detection", e)
                self._status.detector_error = str(e)
                self._detector = NullDetector()
                self._owns_detector = True
        self._status.detector = self._detector.name

        try:
            await self._camera.start()
        except Exception as e:
            logger.exception("Failed to start camera service: %s", e)
            self._status.camera_error = str(e)

        self._stop_event.clear()
        self._status.running = True
        self._render_task = asyncio.create_task(self._render_loop(), name="projector-render-loop")
        self._detect_task = asyncio.create_task(self._detection_loop(), name="projector-detection-loop")
        logger.info(
            "Projector engine started (detector=%s, tick=%dms)",
            self._detector.name,
            self.settings.render.target_frame_interval_ms,
        )
        await self._publish_status()

    async def stop(self) -> None:
        """Stop both loops, release the camera and detector, detach the registry."""
        if self._registry is None:
            return
        logger.info("Stopping projector engine")
        self._stop_event.set()

        # Render tick ends within one interval; an in-flight detector call is abandoned
        if self._detect_task is not None:
            self._detect_task.cancel()
        for task in (self._render_task, self._detect_task):
            if task is None:
                continue
            try:
                await task
            except asyncio.CancelledError:
                pass
            except Exception as e:
                logger.warning("Error stopping engine task: %s", e)
        self._render_task = None
        self._detect_task = None

        try:
            await self._camera.stop()
        except Exception as e:
            logger.warning("Error stopping camera service: %s", e)

        # Injected detectors belong to the caller and survive a restart
        if self._detector is not None and self._owns_detector:
            try:
                await self._detector.aclose()
            except Exception as e:
                logger.warning("Error closing detector: %s", e)
            self._detector = None
            self._owns_detector = False

        # Late detection results see no registry and are discarded
        self._registry = None
        self._status.running = False
        self._status.tracked_objects = 0
        await self._publish_status()
        logger.info("Projector engine stopped")

    # ------------------------------------------------------------------
    # Detection
    # ------------------------------------------------------------------

    async def detect_once(self) -> bool:
        """
        Run one detector call against the latest camera frame.

        Returns True when the registry received an update. Never raises for
        detector failures; they are logged and counted.
        """
        if self._detect_in_flight:
            logger.debug("Detection already in flight; skipping")
            return False
        detector = self._detector
        frame = self._camera.latest_frame()
        if frame is None or detector is None:
            return False

        self._detect_in_flight = True
        started = self._clock()
        try:
            batch = await detector.detect(frame)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self._status.consecutive_failures += 1
            logger.exception("Detector %s failed: %s", detector.name, e)
            return False
        finally:
            self._detect_in_flight = False

        self._status.last_detection_latency_ms = (self._clock() - started) * 1000.0
        if batch is None:
            self._status.consecutive_failures += 1
            return False
        self._status.consecutive_failures = 0

        registry = self._registry
        if registry is None:
            logger.debug("Discarding detection result after teardown")
            return False
        registry.update(batch, self._clock())
        self._status.tracked_objects = len(registry)
        return True

    async def _detection_loop(self) -> None:
        interval = self.settings.detector.effective_detection_interval_ms / 1000.0
        try:
            while not self._stop_event.is_set():
                started = self._clock()
                updated = await self.detect_once()
                if not updated and self._camera.latest_frame() is None:
                    # Nothing to look at yet
                    await self._wait(0.1)
                    continue
                remaining = interval - (self._clock() - started)
                failures = self._status.consecutive_failures
                if failures:
                    remaining = max(remaining, min(self._FAILURE_BACKOFF_S * failures, self._MAX_BACKOFF_S))
                await self._wait(max(remaining, self._MIN_DETECT_GAP_S))
        except asyncio.CancelledError:
            logger.info("Detection loop cancelled")
            raise
        except Exception:
            logger.exception("Detection loop crashed")
        finally:
            logger.info("Detection loop stopped")

    # ------------------------------------------------------------------
    # Rendering
    # ------------------------------------------------------------------

    async def render_once(self) -> np.ndarray:
        """Sweep, snapshot and compose one frame; publishes preview and UI events."""
        now = self._clock()
        registry = self._registry
        if registry is not None:
            registry.sweep(now)
            snapshot = registry.snapshot()
        else:
            snapshot = {}
        self._status.tracked_objects = len(snapshot)

        frame = self._camera.latest_frame() if self._camera.ready else None
        loop = asyncio.get_running_loop()
        canvas = await loop.run_in_executor(None, self._renderer.render, snapshot, frame)
        self._latest_canvas = canvas

        self._record_tick(now)
        self._broadcast_canvas(canvas)
        await self._maybe_publish_objects(snapshot, now)
        return canvas

    async def _render_loop(self) -> None:
        interval = self.settings.render.target_frame_interval_ms / 1000.0
        try:
            while not self._stop_event.is_set():
                started = self._clock()
                try:
                    await self.render_once()
                except asyncio.CancelledError:
                    raise
                except Exception:
                    # A broken tick must never end the loop
                    logger.exception("Render tick failed")
                remaining = interval - (self._clock() - started)
                await self._wait(max(remaining, 0.0))
        except asyncio.CancelledError:
            raise
        finally:
            logger.info("Render loop stopped")

    def _record_tick(self, now: float) -> None:
        self._tick_times.append(now)
        if len(self._tick_times) > self._FPS_WINDOW:
            self._tick_times.pop(0)
        if len(self._tick_times) >= 2:
            span = self._tick_times[-1] - self._tick_times[0]
            if span > 0:
                self._status.render_fps = (len(self._tick_times) - 1) / span

    def latest_canvas(self) -> Optional[np.ndarray]:
        return self._latest_canvas

    # ------------------------------------------------------------------
    # Subscribers
    # ------------------------------------------------------------------

    def _broadcast_canvas(self, canvas: np.ndarray) -> None:
        for q in list(self._frame_subscribers):
            _put_latest(q, canvas)
        if not self._preview_subscribers:
            return
        try:
            ok, enc = cv2.imencode(".jpg", canvas, [cv2.IMWRITE_JPEG_QUALITY, self.settings.render.jpeg_quality])
        except cv2.error as e:
            logger.warning("Preview encoding error: %s", e)
            return
        if not ok:
            return
        payload = enc.tobytes()
        for q in list(self._preview_subscribers):
            _put_latest(q, payload)

    async def preview_stream(self) -> AsyncIterator[bytes]:
        """JPEG-encoded composited frames."""
        q: asyncio.Queue[bytes] = asyncio.Queue(maxsize=self.settings.render.preview_queue_size)
        self._preview_subscribers.append(q)
        try:
            while True:
                yield await q.get()
        finally:
            self._preview_subscribers.remove(q)

    async def frames(self) -> AsyncIterator[np.ndarray]:
        """Raw composited BGR frames, latest only."""
        q: asyncio.Queue[np.ndarray] = asyncio.Queue(maxsize=1)
        self._frame_subscribers.append(q)
        try:
            while True:
                yield await q.get()
        finally:
            self._frame_subscribers.remove(q)

    def register_ui(self) -> asyncio.Queue[ProjectorEvent]:
        q: asyncio.Queue[ProjectorEvent] = asyncio.Queue(maxsize=self.settings.render.ui_event_queue_size)
        self._ui_subscribers.append(q)
        # Late joiners get the current picture right away
        _put_latest(q, ProjectorEvent(type="status", data=self.status()))
        return q

    def unregister_ui(self, queue: asyncio.Queue[ProjectorEvent]) -> None:
        if queue in self._ui_subscribers:
            self._ui_subscribers.remove(queue)

    async def _broadcast(self, event: ProjectorEvent) -> None:
        for q in list(self._ui_subscribers):
            try:
                _put_latest(q, event)
            except Exception as e:
                logger.warning("Failed to broadcast event to subscriber: %s", e)

    async def _publish_status(self) -> None:
        await self._broadcast(ProjectorEvent(type="status", data=self.status(), error=self._status.camera_error))

    async def _maybe_publish_objects(self, snapshot: Mapping[str, TrackedObject], now: float) -> None:
        signature = tuple(
            sorted((obj.id, obj.type.value, round(obj.x, 2), round(obj.y, 2)) for obj in snapshot.values())
        )
        if signature == self._last_objects_signature and now - self._last_objects_ts < self._OBJECTS_HEARTBEAT_S:
            return
        self._last_objects_signature = signature
        self._last_objects_ts = now
        await self._broadcast(ProjectorEvent(type="objects", data={"objects": self.objects(snapshot)}))

    async def _handle_camera_status(self, ready: bool, error: Optional[str]) -> None:
        self._status.camera_ready = ready
        self._status.camera_error = error
        if error:
            logger.warning("📷 Camera unavailable: %s", error)
        else:
            logger.info("📷 Camera ready")
        await self._publish_status()

    # ------------------------------------------------------------------
    # Read-only views for the presentation shell
    # ------------------------------------------------------------------

    def status(self) -> Dict[str, Any]:
        self._status.camera_ready = self._camera.ready
        if self._camera.ready:
            self._status.camera_error = None
        elif self._camera.error:
            self._status.camera_error = self._camera.error
        return self._status.to_dict()

    def objects(self, snapshot: Optional[Mapping[str, TrackedObject]] = None) -> List[Dict[str, Any]]:
        if snapshot is None:
            snapshot = self._registry.snapshot() if self._registry is not None else {}
        positions = self._renderer.marker_positions(snapshot)
        items = []
        for obj_id, obj in snapshot.items():
            item = obj.to_dict()
            item["screen"] = list(positions[obj_id])
            items.append(item)
        return items

    async def _wait(self, seconds: float) -> None:
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass


def _put_latest(q: asyncio.Queue, item: Any) -> None:
    """Enqueue, dropping the oldest item when the subscriber lags."""
    if q.full():
        try:
            q.get_nowait()
        except QueueEmpty:
            pass
    q.put_nowait(item)


__all__ = ["ProjectorEngine"]
