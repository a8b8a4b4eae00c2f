"""Detector backends and the factory that picks one from settings."""
from __future__ import annotations

import logging

from ..config import DetectorSettings
from .base import CompositeDetector, Detector, DetectionBatch, DetectorError, NullDetector

logger = logging.getLogger(__name__)


def build_detector(settings: DetectorSettings) -> Detector:
    """Instantiate the configured backend. Raises DetectorError if it is unavailable."""
    backend = settings.backend
    logger.info("Building detector backend '%s'", backend)

    if backend == "none":
        return NullDetector()
    if backend == "yolo":
        from .yolo import YoloDetector
        return YoloDetector(settings)
    if backend == "hands":
        from .hands import HandDetector
        return HandDetector(settings)
    if backend == "local":
        from .hands import HandDetector
        from .yolo import YoloDetector
        return CompositeDetector([YoloDetector(settings), HandDetector(settings)])
    if backend == "remote":
        from .remote import RemoteDetector
        return RemoteDetector(settings)
    raise DetectorError(f"Unknown detector backend: {backend}")


__all__ = [
    "CompositeDetector",
    "Detector",
    "DetectionBatch",
    "DetectorError",
    "NullDetector",
    "build_detector",
]
