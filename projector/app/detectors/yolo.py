"""Local object detection via Ultralytics YOLO with ByteTrack ids."""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Optional

import numpy as np

try:
    from ultralytics import YOLO  # type: ignore
except Exception:
    YOLO = None

from ..config import DetectorSettings
from ..state import Detection, ObjectType
from .base import DetectionBatch, DetectorError

logger = logging.getLogger(__name__)


class YoloDetector:
    """
    Wraps ``YOLO.track(persist=True)`` so object ids stay stable across calls.

    Positions are bounding-box centers normalized by the frame size. Detections
    without a tracker id fall back to ``yolo-<class>-<index>``, which is not
    stable; enable ``tracking.match_radius`` if that matters.
    """

    name = "yolo"

    def __init__(self, settings: DetectorSettings, model: Any = None) -> None:
        self.settings = settings
        if model is None:
            if YOLO is None:
                raise DetectorError("Ultralytics not found. Install with `pip install ultralytics`.")
            logger.info("Loading YOLO weights from %s", settings.yolo_model_path)
            try:
                model = YOLO(settings.yolo_model_path)
            except Exception as e:
                raise DetectorError(f"Failed to load YOLO weights {settings.yolo_model_path}: {e}") from e
        self.model = model
        # model.track keeps tracker state; never run two inferences at once
        self._lock = asyncio.Lock()

    async def detect(self, frame: np.ndarray) -> DetectionBatch:
        async with self._lock:
            loop = asyncio.get_running_loop()
            return await loop.run_in_executor(None, self._infer, frame)

    def _infer(self, frame: np.ndarray) -> List[Detection]:
        res = self.model.track(
            frame,
            conf=self.settings.min_confidence,
            imgsz=self.settings.yolo_imgsz,
            persist=True,
            tracker=self.settings.yolo_tracker,
            device=self.settings.yolo_device,
            verbose=False,
        )
        if not res:
            return []

        r = res[0]
        boxes = getattr(r, "boxes", None)
        if boxes is None or len(boxes) == 0:
            return []

        h, w = frame.shape[:2]
        xyxy = _to_numpy(boxes.xyxy)
        ids = _to_numpy(boxes.id)
        clses = _to_numpy(boxes.cls)
        confs = _to_numpy(boxes.conf)
        names = getattr(self.model, "names", {})

        results: List[Detection] = []
        for i in range(xyxy.shape[0]):
            x1, y1, x2, y2 = (float(v) for v in xyxy[i])
            cls_id = int(clses[i]) if clses is not None else -1
            label = _name_of(names, cls_id)
            obj_type = ObjectType.parse(label)
            if ids is not None and not np.isnan(ids[i]):
                obj_id = f"yolo-{int(ids[i])}"
            else:
                obj_id = f"yolo-{label}-{i}"
            results.append(
                Detection(
                    id=obj_id,
                    type=obj_type,
                    x=((x1 + x2) / 2.0) / w,
                    y=((y1 + y2) / 2.0) / h,
                    confidence=float(confs[i]) if confs is not None else 1.0,
                ).clamped()
            )
        return results

    async def aclose(self) -> None:
        self.model = None


def _to_numpy(tensor: Any) -> Optional[np.ndarray]:
    if tensor is None:
        return None
    if hasattr(tensor, "detach"):
        tensor = tensor.detach().cpu().numpy()
    return np.asarray(tensor, dtype=np.float64)


def _name_of(names: Any, idx: int) -> str:
    if isinstance(names, dict):
        return str(names.get(idx, idx))
    if isinstance(names, (list, tuple)) and 0 <= idx < len(names):
        return str(names[idx])
    return str(idx)


__all__ = ["YoloDetector"]
