"""Detector interface shared by local and remote backends."""
from __future__ import annotations

import logging
from typing import Any, List, Mapping, Optional, Protocol, Sequence, Union

import numpy as np

from ..state import Detection

logger = logging.getLogger(__name__)

RawDetection = Union[Detection, Mapping[str, Any]]
# None = no update this cycle (transient failure, already logged); [] = nothing on the table
DetectionBatch = Optional[List[RawDetection]]


class DetectorError(RuntimeError):
    """Raised when a detector backend cannot be constructed or used."""


class Detector(Protocol):
    name: str

    async def detect(self, frame: np.ndarray) -> DetectionBatch:
        ...

    async def aclose(self) -> None:
        ...


class CompositeDetector:
    """Runs several detectors on the same frame and concatenates their batches."""

    def __init__(self, detectors: Sequence[Detector]) -> None:
        if not detectors:
            raise DetectorError("CompositeDetector needs at least one detector")
        self.detectors = list(detectors)
        self.name = "+".join(d.name for d in self.detectors)

    async def detect(self, frame: np.ndarray) -> DetectionBatch:
        merged: List[RawDetection] = []
        any_ok = False
        for detector in self.detectors:
            try:
                batch = await detector.detect(frame)
            except Exception as e:
                logger.warning("Detector %s failed: %s", detector.name, e)
                continue
            if batch is None:
                continue
            any_ok = True
            merged.extend(batch)
        return merged if any_ok else None

    async def aclose(self) -> None:
        for detector in self.detectors:
            try:
                await detector.aclose()
            except Exception as e:
                logger.warning("Error closing detector %s: %s", detector.name, e)


class NullDetector:
    """Placeholder backend that never sees anything."""

    name = "none"

    async def detect(self, frame: np.ndarray) -> DetectionBatch:
        return []

    async def aclose(self) -> None:
        return None


__all__ = ["CompositeDetector", "Detector", "DetectionBatch", "DetectorError", "NullDetector", "RawDetection"]
