"""Hand detection via MediaPipe Hands."""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List

import cv2
import numpy as np

try:
    import mediapipe as mp  # type: ignore
except Exception:
    mp = None

from ..config import DetectorSettings
from ..state import Detection, ObjectType
from .base import DetectionBatch, DetectorError

logger = logging.getLogger(__name__)

# Wrist plus finger bases; their mean approximates the palm center
PALM_LANDMARKS = (0, 5, 9, 13, 17)


class HandDetector:
    """Reports each visible hand keyed by handedness ("hand-left" / "hand-right")."""

    name = "hands"

    def __init__(self, settings: DetectorSettings, hands: Any = None) -> None:
        self.settings = settings
        if hands is None:
            if mp is None:
                raise DetectorError("MediaPipe not available - hand detection disabled")
            try:
                hands = mp.solutions.hands.Hands(
                    static_image_mode=False,
                    max_num_hands=settings.max_hands,
                    min_detection_confidence=settings.min_confidence,
                    min_tracking_confidence=0.5,
                )
            except Exception as e:
                raise DetectorError(f"MediaPipe hands failed to initialise: {e}") from e
        self._hands = hands
        self._lock = asyncio.Lock()

    async def detect(self, frame: np.ndarray) -> DetectionBatch:
        async with self._lock:
            loop = asyncio.get_running_loop()
            return await loop.run_in_executor(None, self._process, frame)

    def _process(self, frame: np.ndarray) -> List[Detection]:
        rgb = cv2.cvtColor(frame, cv2.COLOR_BGR2RGB)
        result = self._hands.process(rgb)
        if not result or not result.multi_hand_landmarks:
            return []

        handedness = result.multi_handedness or []
        detections: List[Detection] = []
        seen: Dict[str, int] = {}
        for idx, landmarks in enumerate(result.multi_hand_landmarks):
            label = "hand"
            score = 1.0
            if idx < len(handedness) and handedness[idx].classification:
                cls = handedness[idx].classification[0]
                label = f"hand-{cls.label.lower()}"
                score = float(cls.score)

            # Two hands with the same handedness still need distinct ids
            count = seen.get(label, 0)
            seen[label] = count + 1
            obj_id = label if count == 0 else f"{label}-{count}"

            points = [landmarks.landmark[i] for i in PALM_LANDMARKS]
            x = sum(p.x for p in points) / len(points)
            y = sum(p.y for p in points) / len(points)
            detections.append(
                Detection(id=obj_id, type=ObjectType.HAND, x=x, y=y, confidence=score).clamped()
            )
        return detections

    async def aclose(self) -> None:
        if self._hands is not None:
            try:
                self._hands.close()
            except Exception as e:
                logger.warning("Error closing MediaPipe hands: %s", e)
            self._hands = None


__all__ = ["HandDetector"]
